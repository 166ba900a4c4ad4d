# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
JSON loader for Program Models, and file dispatch for both formats.

JSON layout (every node is an object with a "kind"; "line"/"column" are
optional and end up in the node's Span):

	{
	  "name": "demo",
	  "types": [
	    {"kind": "struct", "name": "Foo", "copy": false, "fields": [{"name": "tag", "type": "Int"}]},
	    {"kind": "enum", "name": "Opt", "variants": [{"name": "Some", "payload": ["Foo"]}, {"name": "None"}]}
	  ],
	  "functions": [
	    {"name": "main", "params": [{"name": "x", "type": "&Foo"}], "returns": "&Foo",
	     "return_lifetime": "x", "body": [{"kind": "return", "value": {"kind": "var", "name": "x"}}]}
	  ]
	}

Statements: let, assign, expr, if, loop, return, block.
Expressions: var, field, lit, binary, borrow, move, clone, struct, enum, rc,
call, spawn, join.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional

from ..core.errors import ModelError
from ..core.span import Span
from ..core.types_core import TypeId
from . import nodes as P
from .parser import parse_model
from .typeexpr import PendingType, builtin_types, declare_all, parse_type_tree, resolve_type, type_names

logger = logging.getLogger(__name__)

_CAPTURE_MODES = {
	"move": P.CaptureMode.MOVE,
	"ref": P.CaptureMode.SHARED,
	"shared": P.CaptureMode.SHARED,
	"mut": P.CaptureMode.MUT,
}


def load_model_file(path: Path | str) -> P.Program:
	"""Load a model from `path`: `.json` files as JSON, anything else as the text dump format."""
	path = Path(path)
	try:
		text = path.read_text()
	except OSError as err:
		raise ModelError(f"cannot read {path}: {err.strerror or err}", loc=Span(file=str(path))) from err
	logger.debug("loading model %s", path)
	if path.suffix == ".json":
		try:
			data = json.loads(text)
		except json.JSONDecodeError as err:
			raise ModelError(
				f"invalid JSON: {err.msg}",
				loc=Span(file=str(path), line=err.lineno, column=err.colno),
			) from err
		return load_model_json(data, filename=str(path))
	return parse_model(text, filename=str(path), name=str(path))


def load_model_json(data: Any, *, filename: Optional[str] = None) -> P.Program:
	"""Build a Program from decoded JSON (see the module docstring for the layout)."""
	if not isinstance(data, Mapping):
		raise ModelError("model JSON must be an object", loc=Span(file=filename))
	return _JsonBuilder(filename).build(data)


class _JsonBuilder:
	def __init__(self, filename: Optional[str]) -> None:
		self.filename = filename
		self.types = builtin_types()

	def _loc(self, obj: Mapping[str, Any]) -> Span:
		return Span(file=self.filename, line=obj.get("line"), column=obj.get("column"))

	def _get(self, obj: Any, key: str, what: str) -> Any:
		if not isinstance(obj, Mapping):
			raise ModelError(f"{what} must be an object", loc=Span(file=self.filename))
		if key not in obj:
			raise ModelError(f"{what} is missing '{key}'", loc=self._loc(obj))
		return obj[key]

	def _list(self, obj: Mapping[str, Any], key: str, what: str) -> List[Any]:
		items = obj.get(key) or []
		if not isinstance(items, list):
			raise ModelError(f"{what} '{key}' must be a list", loc=self._loc(obj))
		return items

	def build(self, data: Mapping[str, Any]) -> P.Program:
		declare_all(self.types, [self._pending(t) for t in self._list(data, "types", "model")])
		functions = [self._fn(f) for f in self._list(data, "functions", "model")]
		names = [fn.name for fn in functions]
		for fn in functions:
			if names.count(fn.name) > 1:
				raise ModelError(f"function '{fn.name}' is defined more than once", loc=fn.loc)
		name = data.get("name") or self.filename or "<model>"
		return P.Program(types=self.types, functions=functions, name=str(name))

	# Declarations

	def _type(self, text: Any, obj: Mapping[str, Any]) -> TypeId:
		loc = self._loc(obj)
		if not isinstance(text, str):
			raise ModelError(f"type must be a string, got {text!r}", loc=loc)
		return resolve_type(self.types, parse_type_tree(text, loc=loc), loc=loc)

	def _pending(self, decl: Any) -> PendingType:
		kind = self._get(decl, "kind", "type declaration")
		name = self._get(decl, "name", "type declaration")
		is_copy = bool(decl.get("copy", False))
		loc = self._loc(decl)
		if kind == "struct":
			fields = [(self._get(f, "name", f"field of '{name}'"), self._get(f, "type", f"field of '{name}'")) for f in self._list(decl, "fields", name)]
			needs = set().union(*(type_names(parse_type_tree(t, loc=loc)) for _, t in fields)) if fields else set()

			def declare() -> None:
				self.types.declare_struct(name, [(fname, self._type(t, decl)) for fname, t in fields], copy=is_copy)
		elif kind == "enum":
			variants = [
				(self._get(v, "name", f"variant of '{name}'"), list(v.get("payload") or []))
				for v in self._list(decl, "variants", name)
			]
			needs = set()
			for _, payload in variants:
				for t in payload:
					needs |= type_names(parse_type_tree(t, loc=loc))

			def declare() -> None:
				self.types.declare_enum(
					name,
					[(vname, [self._type(t, decl) for t in payload]) for vname, payload in variants],
					copy=is_copy,
				)
		else:
			raise ModelError(f"unknown type declaration kind {kind!r}", loc=loc)
		return PendingType(name=name, needs=needs, declare=declare, loc=loc)

	def _fn(self, obj: Any) -> P.PFunction:
		name = self._get(obj, "name", "function")
		params = []
		for p in self._list(obj, "params", f"function '{name}'"):
			pname = self._get(p, "name", f"parameter of '{name}'")
			params.append(
				P.PParam(
					name=pname,
					ty=self._type(self._get(p, "type", f"parameter '{pname}'"), p),
					mutable=bool(p.get("mutable", False)),
					loc=self._loc(p),
				)
			)
		returns = obj.get("returns")
		body = obj.get("body")
		return P.PFunction(
			name=name,
			params=params,
			return_type=self._type(returns, obj) if returns is not None else None,
			body=P.PBlock(statements=self._stmts(body), loc=self._loc(obj)) if body is not None else None,
			return_lifetime=obj.get("return_lifetime"),
			loc=self._loc(obj),
		)

	# Statements

	def _stmts(self, items: Any) -> List[P.PStmt]:
		if not isinstance(items, list):
			raise ModelError("statement list must be a list", loc=Span(file=self.filename))
		return [self._stmt(s) for s in items]

	def _block(self, items: Any, obj: Mapping[str, Any]) -> P.PBlock:
		return P.PBlock(statements=self._stmts(items), loc=self._loc(obj))

	def _stmt(self, obj: Any) -> P.PStmt:
		kind = self._get(obj, "kind", "statement")
		loc = self._loc(obj)
		if kind == "let":
			value = obj.get("value")
			ty = obj.get("type")
			return P.PLet(
				name=self._get(obj, "name", "let"),
				value=self._expr(value) if value is not None else None,
				mutable=bool(obj.get("mutable", False)),
				ty=self._type(ty, obj) if ty is not None else None,
				loc=loc,
			)
		if kind == "assign":
			target = self._expr(self._get(obj, "target", "assign"))
			if not isinstance(target, (P.PVar, P.PField)):
				raise ModelError("assignment target must be a variable or a field", loc=loc)
			return P.PAssign(target=target, value=self._expr(self._get(obj, "value", "assign")), loc=loc)
		if kind == "expr":
			return P.PExprStmt(expr=self._expr(self._get(obj, "expr", "expression statement")), loc=loc)
		if kind == "if":
			else_items = obj.get("else")
			return P.PIf(
				cond=self._expr(self._get(obj, "cond", "if")),
				then_block=self._block(self._get(obj, "then", "if"), obj),
				else_block=self._block(else_items, obj) if else_items is not None else None,
				loc=loc,
			)
		if kind == "loop":
			return P.PLoop(body=self._block(self._get(obj, "body", "loop"), obj), loc=loc)
		if kind == "return":
			value = obj.get("value")
			return P.PReturn(value=self._expr(value) if value is not None else None, loc=loc)
		if kind == "block":
			return self._block(self._get(obj, "body", "block"), obj)
		raise ModelError(f"unknown statement kind {kind!r}", loc=loc)

	# Expressions

	def _expr(self, obj: Any) -> P.PExpr:
		kind = self._get(obj, "kind", "expression")
		loc = self._loc(obj)
		if kind == "var":
			return P.PVar(name=self._get(obj, "name", "var"), loc=loc)
		if kind == "field":
			return P.PField(subject=self._expr(self._get(obj, "subject", "field")), name=self._get(obj, "name", "field"), loc=loc)
		if kind == "lit":
			return P.PLiteral(value=obj.get("value"), loc=loc)
		if kind == "binary":
			return P.PBinary(
				op=self._get(obj, "op", "binary"),
				left=self._expr(self._get(obj, "left", "binary")),
				right=self._expr(self._get(obj, "right", "binary")),
				loc=loc,
			)
		if kind == "borrow":
			return P.PBorrow(subject=self._expr(self._get(obj, "subject", "borrow")), is_mut=bool(obj.get("mut", False)), loc=loc)
		if kind == "move":
			return P.PMove(subject=self._expr(self._get(obj, "subject", "move")), loc=loc)
		if kind == "clone":
			return P.PClone(subject=self._expr(self._get(obj, "subject", "clone")), loc=loc)
		if kind == "struct":
			fields = self._get(obj, "fields", "struct")
			if not isinstance(fields, Mapping):
				raise ModelError("struct 'fields' must be an object", loc=loc)
			return P.PStructInit(
				name=self._get(obj, "name", "struct"),
				fields=[(fname, self._expr(fexpr)) for fname, fexpr in fields.items()],
				loc=loc,
			)
		if kind == "enum":
			return P.PEnumInit(
				enum=self._get(obj, "enum", "enum"),
				variant=self._get(obj, "variant", "enum"),
				args=[self._expr(a) for a in self._list(obj, "args", "enum")],
				loc=loc,
			)
		if kind == "rc":
			return P.PRcNew(
				value=self._expr(self._get(obj, "value", "rc")),
				thread_safe=bool(obj.get("thread_safe", False)),
				loc=loc,
			)
		if kind == "call":
			return P.PCall(fn=self._get(obj, "fn", "call"), args=[self._expr(a) for a in self._list(obj, "args", "call")], loc=loc)
		if kind == "spawn":
			captures = []
			for cap in self._list(obj, "captures", "spawn"):
				mode = cap.get("mode", "move") if isinstance(cap, Mapping) else "move"
				if mode not in _CAPTURE_MODES:
					raise ModelError(f"unknown capture mode {mode!r}", loc=loc)
				captures.append(P.PCapture(name=self._get(cap, "name", "capture"), mode=_CAPTURE_MODES[mode], loc=self._loc(cap)))
			return P.PSpawn(captures=captures, body=self._block(self._get(obj, "body", "spawn"), obj), loc=loc)
		if kind == "join":
			return P.PJoin(handle=self._expr(self._get(obj, "handle", "join")), loc=loc)
		raise ModelError(f"unknown expression kind {kind!r}", loc=loc)


__all__ = ["load_model_file", "load_model_json"]
