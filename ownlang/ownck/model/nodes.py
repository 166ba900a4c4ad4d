# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Program Model: the typed, resolved tree the verifier consumes.

Pipeline placement:
  external front end (or model/parser.py, model/loader.py) → Program (this file)
  → verifier_pass.verify_program → diagnostics, move log, drop schedules

Guiding rules:
- Identifiers are already resolved by the front end; a name refers to the
  innermost visible binding.
- Struct and enum declarations live in the Program's TypeTable.
- Places (borrowable/moveable locations) are `PVar` optionally wrapped in
  `PField` projections.
- The verifier never mutates these nodes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional, Tuple

from ..core.span import Span
from ..core.types_core import TypeId, TypeTable


class PNode:
	"""Base class for all Program Model nodes."""
	pass


class PExpr(PNode):
	"""Base class for all expressions."""
	pass


class PStmt(PNode):
	"""Base class for all statements."""
	pass


class CaptureMode(Enum):
	"""How a spawned unit takes hold of a variable of the spawning scope."""
	MOVE = auto()    # ownership transfer
	SHARED = auto()  # shared borrow held by the join handle
	MUT = auto()     # exclusive borrow (always rejected across a spawn)


# Expressions

@dataclass
class PVar(PExpr):
	"""Use of a binding."""
	name: str
	loc: Span = field(default_factory=Span)


@dataclass
class PField(PExpr):
	"""Field access: subject.name (auto-derefs references and Rc handles)."""
	subject: PExpr
	name: str
	loc: Span = field(default_factory=Span)


@dataclass
class PLiteral(PExpr):
	"""Scalar or string literal; bool → Bool, int → Int, str → String."""
	value: object
	loc: Span = field(default_factory=Span)


@dataclass
class PBinary(PExpr):
	"""Binary operation on Copy operands."""
	op: str
	left: PExpr
	right: PExpr
	loc: Span = field(default_factory=Span)


@dataclass
class PBorrow(PExpr):
	"""Borrow a place: &subject or &mut subject."""
	subject: PExpr
	is_mut: bool = False
	loc: Span = field(default_factory=Span)


@dataclass
class PMove(PExpr):
	"""Explicit move out of a place: `move <place>`."""
	subject: PExpr
	loc: Span = field(default_factory=Span)


@dataclass
class PClone(PExpr):
	"""Explicit duplication. For Rc handles this produces a new handle to the same allocation."""
	subject: PExpr
	loc: Span = field(default_factory=Span)


@dataclass
class PStructInit(PExpr):
	"""Struct construction; field values are moved (or copied) into the new value."""
	name: str
	fields: List[Tuple[str, PExpr]]
	loc: Span = field(default_factory=Span)


@dataclass
class PEnumInit(PExpr):
	"""Enum variant construction: Enum::Variant(args...)."""
	enum: str
	variant: str
	args: List[PExpr] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class PRcNew(PExpr):
	"""Move a value into a new reference-counted allocation (Rc, or Arc when thread_safe)."""
	value: PExpr
	thread_safe: bool = False
	loc: Span = field(default_factory=Span)


@dataclass
class PCall(PExpr):
	"""
	Call of a named function.

	Calls to names with no definition in the Program are opaque (dynamic
	dispatch, externs): by-value arguments are consumed and borrowed arguments
	are released at the end of the statement.
	"""
	fn: str
	args: List[PExpr] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class PCapture(PNode):
	"""One variable handed to a spawned unit."""
	name: str
	mode: CaptureMode = CaptureMode.MOVE
	loc: Span = field(default_factory=Span)


@dataclass
class PSpawn(PExpr):
	"""Spawn a concurrent unit of work; evaluates to a join handle."""
	captures: List[PCapture]
	body: "PBlock"
	loc: Span = field(default_factory=Span)


@dataclass
class PJoin(PExpr):
	"""Wait for a spawned unit; consumes its handle."""
	handle: PExpr
	loc: Span = field(default_factory=Span)


# Statements

@dataclass
class PBlock(PStmt):
	"""Ordered list of statements. Every block opens a new lexical scope."""
	statements: List[PStmt] = field(default_factory=list)
	loc: Span = field(default_factory=Span)


@dataclass
class PLet(PStmt):
	"""
	Binding introduction.

	`value` may be None (declared, uninitialized; a later assignment
	initializes it). `ty` is the front end's resolved type; when omitted the
	verifier derives it from the initializer.
	"""
	name: str
	value: Optional[PExpr] = None
	mutable: bool = False
	ty: Optional[TypeId] = None
	loc: Span = field(default_factory=Span)


@dataclass
class PAssign(PStmt):
	"""Assignment to a place."""
	target: PExpr
	value: PExpr
	loc: Span = field(default_factory=Span)


@dataclass
class PExprStmt(PStmt):
	"""Expression used as a statement (value discarded)."""
	expr: PExpr
	loc: Span = field(default_factory=Span)


@dataclass
class PIf(PStmt):
	"""Conditional with explicit then/else blocks (else may be None)."""
	cond: PExpr
	then_block: PBlock
	else_block: Optional[PBlock] = None
	loc: Span = field(default_factory=Span)


@dataclass
class PLoop(PStmt):
	"""Loop whose body may run zero or more times."""
	body: PBlock
	loc: Span = field(default_factory=Span)


@dataclass
class PReturn(PStmt):
	value: Optional[PExpr] = None
	loc: Span = field(default_factory=Span)


# Declarations

@dataclass
class PParam(PNode):
	name: str
	ty: TypeId
	mutable: bool = False
	loc: Span = field(default_factory=Span)


@dataclass
class PFunction(PNode):
	"""
	Function definition.

	`return_lifetime` names the parameter whose borrow the returned reference
	derives from (an explicit lifetime annotation). `body` is None for
	declarations without a definition (externs); calls to those are opaque.
	"""
	name: str
	params: List[PParam] = field(default_factory=list)
	return_type: Optional[TypeId] = None
	body: Optional[PBlock] = None
	return_lifetime: Optional[str] = None
	loc: Span = field(default_factory=Span)


@dataclass
class Program(PNode):
	"""A whole model: the type table plus every function."""
	types: TypeTable
	functions: List[PFunction] = field(default_factory=list)
	name: str = "<model>"

	def function_map(self) -> Dict[str, PFunction]:
		return {fn.name: fn for fn in self.functions}


__all__ = [
	"PNode", "PExpr", "PStmt", "CaptureMode",
	"PVar", "PField", "PLiteral", "PBinary", "PBorrow", "PMove", "PClone",
	"PStructInit", "PEnumInit", "PRcNew", "PCall", "PCapture", "PSpawn", "PJoin",
	"PBlock", "PLet", "PAssign", "PExprStmt", "PIf", "PLoop", "PReturn",
	"PParam", "PFunction", "Program",
]
