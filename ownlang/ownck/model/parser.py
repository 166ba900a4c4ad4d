# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Loader for the textual model dump format (see grammar.lark).

Example:

	struct Inner { v: Int }
	struct Foo { inner: Inner, tag: Int }

	fn get_inner(foo: &Foo) -> &Inner {
		return &foo.inner;
	}

	fn main() {
		let foo = Foo { inner: Inner { v: 1 }, tag: 2 };
		let r = get_inner(&foo);
	}

The grammar tree is turned into Program Model nodes by walking it directly;
every node gets a Span with the file name and the line/column lark reports.
Syntax errors and unresolved type names are raised as ModelError.
"""

from __future__ import annotations

import codecs
from pathlib import Path
from typing import List, Optional

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedInput

from ..core.errors import ModelError
from ..core.span import Span
from ..core.types_core import TypeId, TypeTable
from . import nodes as P
from .typeexpr import (
	TYPE_RULES,
	PendingType,
	builtin_types,
	declare_all,
	node_name,
	resolve_type,
	return_lifetime,
	type_names,
)

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="model",
	propagate_positions=True,
	maybe_placeholders=False,
)


def parse_model(text: str, *, filename: Optional[str] = None, name: Optional[str] = None) -> P.Program:
	"""Parse a model dump into a Program."""
	try:
		tree = _PARSER.parse(text)
	except UnexpectedInput as err:
		line = getattr(err, "line", None)
		column = getattr(err, "column", None)
		loc = Span(file=filename, line=line if line and line > 0 else None, column=column if column and column > 0 else None)
		first = str(err).strip().splitlines()[0] if str(err).strip() else "unexpected input"
		raise ModelError(f"syntax error: {first}", loc=loc) from err
	return _ModelBuilder(filename).build(tree, name=name or filename or "<model>")


class _ModelBuilder:
	def __init__(self, filename: Optional[str]) -> None:
		self.filename = filename
		self.types: TypeTable = builtin_types()

	def _loc(self, node: Tree | Token) -> Span:
		if isinstance(node, Token):
			return Span(file=self.filename, line=node.line, column=node.column)
		meta = node.meta
		if getattr(meta, "empty", True):
			return Span(file=self.filename)
		return Span(
			file=self.filename,
			line=meta.line,
			column=meta.column,
			end_line=meta.end_line,
			end_column=meta.end_column,
		)

	def build(self, tree: Tree, *, name: str) -> P.Program:
		type_defs = [c for c in tree.children if isinstance(c, Tree) and node_name(c) in ("struct_def", "enum_def")]
		fn_defs = [c for c in tree.children if isinstance(c, Tree) and node_name(c) == "fn_def"]
		declare_all(self.types, [self._pending(t) for t in type_defs])
		functions = [self._fn(f) for f in fn_defs]
		seen = set()
		for fn in functions:
			if fn.name in seen:
				raise ModelError(f"function '{fn.name}' is defined more than once", loc=fn.loc)
			seen.add(fn.name)
		return P.Program(types=self.types, functions=functions, name=name)

	# Declarations

	def _pending(self, tree: Tree) -> PendingType:
		loc = self._loc(tree)
		is_copy = any(isinstance(c, Token) and c.type == "COPY" for c in tree.children)
		name_tok = next(c for c in tree.children if isinstance(c, Token) and c.type == "NAME")
		members = [c for c in tree.children if isinstance(c, Tree)]
		needs = set()
		for member in members:
			for ty_tree in member.children:
				if isinstance(ty_tree, Tree):
					needs |= type_names(ty_tree)

		if node_name(tree) == "struct_def":
			def declare() -> None:
				fields = []
				for member in members:
					fname = member.children[0].value
					fields.append((fname, resolve_type(self.types, member.children[1], loc=self._loc(member))))
				self.types.declare_struct(name_tok.value, fields, copy=is_copy)
		else:
			def declare() -> None:
				variants = []
				for member in members:
					vname = member.children[0].value
					payload = [resolve_type(self.types, t, loc=self._loc(member)) for t in member.children[1:]]
					variants.append((vname, payload))
				self.types.declare_enum(name_tok.value, variants, copy=is_copy)

		return PendingType(name=name_tok.value, needs=needs, declare=declare, loc=loc)

	def _type(self, tree: Tree) -> TypeId:
		return resolve_type(self.types, tree, loc=self._loc(tree))

	def _fn(self, tree: Tree) -> P.PFunction:
		name_tok = tree.children[0]
		params: List[P.PParam] = []
		return_type: Optional[TypeId] = None
		lifetime: Optional[str] = None
		body: Optional[P.PBlock] = None
		for child in tree.children[1:]:
			kind = node_name(child)
			if kind == "param":
				params.append(self._param(child))
			elif kind in TYPE_RULES:
				return_type = self._type(child)
				lifetime = return_lifetime(child)
			elif kind == "block":
				body = self._block(child)
		return P.PFunction(
			name=name_tok.value,
			params=params,
			return_type=return_type,
			body=body,
			return_lifetime=lifetime,
			loc=self._loc(tree),
		)

	def _param(self, tree: Tree) -> P.PParam:
		mutable = any(isinstance(c, Token) and c.type == "MUT" for c in tree.children)
		name_tok = next(c for c in tree.children if isinstance(c, Token) and c.type == "NAME")
		ty_tree = next(c for c in tree.children if isinstance(c, Tree))
		return P.PParam(name=name_tok.value, ty=self._type(ty_tree), mutable=mutable, loc=self._loc(tree))

	# Statements

	def _block(self, tree: Tree) -> P.PBlock:
		return P.PBlock(statements=[self._stmt(c) for c in tree.children if isinstance(c, Tree)], loc=self._loc(tree))

	def _stmt(self, tree: Tree) -> P.PStmt:
		kind = node_name(tree)
		loc = self._loc(tree)
		if kind == "let_stmt":
			mutable = False
			name = ""
			ty: Optional[TypeId] = None
			value: Optional[P.PExpr] = None
			for child in tree.children:
				if isinstance(child, Token):
					if child.type == "MUT":
						mutable = True
					elif child.type == "NAME":
						name = child.value
				elif node_name(child) in TYPE_RULES:
					ty = self._type(child)
				else:
					value = self._expr(child)
			return P.PLet(name=name, value=value, mutable=mutable, ty=ty, loc=loc)
		if kind == "assign_stmt":
			target = self._expr(tree.children[0])
			if not isinstance(target, (P.PVar, P.PField)):
				raise ModelError("left-hand side of an assignment must be a variable or a field", loc=loc)
			return P.PAssign(target=target, value=self._expr(tree.children[1]), loc=loc)
		if kind == "expr_stmt":
			return P.PExprStmt(expr=self._expr(tree.children[0]), loc=loc)
		if kind == "if_stmt":
			cond = self._expr(tree.children[0])
			then_block = self._block(tree.children[1])
			else_block = None
			if len(tree.children) > 2:
				tail = tree.children[2]
				if node_name(tail) == "if_stmt":
					else_block = P.PBlock(statements=[self._stmt(tail)], loc=self._loc(tail))
				else:
					else_block = self._block(tail)
			return P.PIf(cond=cond, then_block=then_block, else_block=else_block, loc=loc)
		if kind == "loop_stmt":
			return P.PLoop(body=self._block(tree.children[0]), loc=loc)
		if kind == "return_stmt":
			value = self._expr(tree.children[0]) if tree.children else None
			return P.PReturn(value=value, loc=loc)
		if kind == "block":
			return self._block(tree)
		raise ModelError(f"unsupported statement '{kind}'", loc=loc)

	# Expressions

	def _exprs(self, children: List[Tree | Token]) -> List[P.PExpr]:
		return [self._expr(c) for c in children if isinstance(c, Tree)]

	def _expr(self, node: Tree | Token) -> P.PExpr:
		if isinstance(node, Token):
			raise ModelError(f"unexpected token {node.value!r}", loc=self._loc(node))
		kind = node_name(node)
		loc = self._loc(node)
		ch = node.children
		if kind == "var":
			return P.PVar(name=ch[0].value, loc=loc)
		if kind == "int_lit":
			return P.PLiteral(value=int(ch[0].value), loc=loc)
		if kind == "str_lit":
			return P.PLiteral(value=codecs.decode(ch[0].value[1:-1], "unicode_escape"), loc=loc)
		if kind == "true_lit":
			return P.PLiteral(value=True, loc=loc)
		if kind == "false_lit":
			return P.PLiteral(value=False, loc=loc)
		if kind == "unit_lit":
			return P.PLiteral(value=None, loc=loc)
		if kind == "field":
			return P.PField(subject=self._expr(ch[0]), name=ch[1].value, loc=loc)
		if kind == "binary":
			op = ch[1].children[0].value
			return P.PBinary(op=op, left=self._expr(ch[0]), right=self._expr(ch[2]), loc=loc)
		if kind == "borrow":
			return P.PBorrow(subject=self._expr(ch[0]), is_mut=False, loc=loc)
		if kind == "borrow_mut":
			return P.PBorrow(subject=self._expr(ch[-1]), is_mut=True, loc=loc)
		if kind == "move":
			return P.PMove(subject=self._expr(ch[0]), loc=loc)
		if kind == "clone":
			return P.PClone(subject=self._expr(ch[0]), loc=loc)
		if kind == "join":
			return P.PJoin(handle=self._expr(ch[0]), loc=loc)
		if kind == "rc_new":
			return P.PRcNew(value=self._expr(ch[0]), thread_safe=False, loc=loc)
		if kind == "arc_new":
			return P.PRcNew(value=self._expr(ch[0]), thread_safe=True, loc=loc)
		if kind == "call":
			return P.PCall(fn=ch[0].value, args=self._exprs(ch[1:]), loc=loc)
		if kind == "struct_init":
			fields = [(fi.children[0].value, self._expr(fi.children[1])) for fi in ch[1:]]
			return P.PStructInit(name=ch[0].value, fields=fields, loc=loc)
		if kind == "enum_init":
			return P.PEnumInit(enum=ch[0].value, variant=ch[1].value, args=self._exprs(ch[2:]), loc=loc)
		if kind == "spawn":
			captures = [self._capture(c) for c in ch[:-1]]
			return P.PSpawn(captures=captures, body=self._block(ch[-1]), loc=loc)
		raise ModelError(f"unsupported expression '{kind}'", loc=loc)

	def _capture(self, tree: Tree) -> P.PCapture:
		mode = {
			"cap_move": P.CaptureMode.MOVE,
			"cap_ref": P.CaptureMode.SHARED,
			"cap_mut": P.CaptureMode.MUT,
		}[node_name(tree)]
		return P.PCapture(name=tree.children[-1].value, mode=mode, loc=self._loc(tree))


__all__ = ["parse_model"]
