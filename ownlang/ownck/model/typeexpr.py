# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Type expressions shared by the text and JSON loaders.

Both loaders spell types the same way (`Int`, `&Foo`, `&mut Foo`, `&'a Foo`,
`Rc<Foo>`, `Arc<Foo>`); the JSON loader parses them with the `type` start rule
of the model grammar. Struct and enum declarations may refer to each other in
any order, so they are declared in dependency order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Set

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedInput

from ..core.errors import ModelError
from ..core.span import Span
from ..core.types_core import TypeId, TypeTable

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_TYPE_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="type",
	propagate_positions=True,
	maybe_placeholders=False,
)

TYPE_RULES = {"ref_type", "rc_type", "arc_type", "named_type"}


def node_name(node: Tree | Token) -> str:
	if isinstance(node, Tree):
		data = node.data
		if isinstance(data, Token):
			return data.value
		return data
	if isinstance(node, Token):
		return node.type
	return str(node)


def parse_type_tree(text: str, *, loc: Optional[Span] = None) -> Tree:
	"""Parse a type spelling (`&mut Foo`) into a grammar tree."""
	try:
		return _TYPE_PARSER.parse(text)
	except UnexpectedInput as err:
		raise ModelError(f"invalid type {text!r}", loc=loc) from err


def type_names(tree: Tree) -> Set[str]:
	"""Nominal type names a type expression mentions."""
	return {tok.value for tok in tree.scan_values(lambda v: isinstance(v, Token) and v.type == "NAME")}


def return_lifetime(tree: Tree) -> Optional[str]:
	"""Parameter named by `&'param T` at the top of a return type, if any."""
	if node_name(tree) != "ref_type":
		return None
	for child in tree.children:
		if isinstance(child, Token) and child.type == "LIFETIME":
			return child.value[1:]
	return None


def resolve_type(types: TypeTable, tree: Tree, *, loc: Optional[Span] = None) -> TypeId:
	"""Turn a type expression into a TypeId of `types`."""
	kind = node_name(tree)
	if kind == "named_type":
		tok = tree.children[0]
		ty = types.lookup(tok.value)
		if ty is None:
			raise ModelError(f"unknown type '{tok.value}'", loc=loc)
		return ty
	inner = next(c for c in tree.children if isinstance(c, Tree))
	inner_ty = resolve_type(types, inner, loc=loc)
	if kind == "ref_type":
		is_mut = any(isinstance(c, Token) and c.type == "MUT" for c in tree.children)
		return types.ensure_ref(inner_ty, mut=is_mut)
	if kind == "rc_type":
		return types.ensure_rc(inner_ty)
	if kind == "arc_type":
		return types.ensure_rc(inner_ty, thread_safe=True)
	raise ModelError(f"unsupported type form '{kind}'", loc=loc)


def builtin_types() -> TypeTable:
	"""A TypeTable with the scalar and string builtins registered."""
	types = TypeTable()
	types.ensure_int()
	types.ensure_bool()
	types.ensure_unit()
	types.ensure_string()
	return types


@dataclass
class PendingType:
	"""A struct or enum declaration waiting for the types it mentions."""

	name: str
	needs: Set[str]
	declare: Callable[[], None]
	loc: Span = field(default_factory=Span)


def declare_all(types: TypeTable, pending: List[PendingType]) -> None:
	"""Declare nominal types in dependency order; unresolvable names are a ModelError."""
	seen: Set[str] = set()
	for item in pending:
		if item.name in seen or types.lookup(item.name) is not None:
			raise ModelError(f"type '{item.name}' is declared more than once", loc=item.loc)
		seen.add(item.name)
	remaining = list(pending)
	while remaining:
		ready = [p for p in remaining if all(types.lookup(n) is not None for n in p.needs - {p.name})]
		ready = [p for p in ready if p.name not in p.needs]
		if not ready:
			item = remaining[0]
			missing = sorted(n for n in item.needs if types.lookup(n) is None)
			unknown = [n for n in missing if n not in seen]
			if unknown:
				raise ModelError(f"unknown type(s) {', '.join(unknown)} in '{item.name}'", loc=item.loc)
			raise ModelError(f"recursive type '{item.name}' is not supported", loc=item.loc)
		for item in ready:
			item.declare()
			remaining.remove(item)


__all__ = [
	"node_name",
	"TYPE_RULES",
	"PendingType",
	"builtin_types",
	"declare_all",
	"parse_type_tree",
	"resolve_type",
	"return_lifetime",
	"type_names",
]
