# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lexical scopes, variables, and the dataflow state threaded through a walk.

Scopes form a tree built while walking a function body; every model block
opens one. A scope owns the variables declared directly in it, in
declaration order, which fixes both name resolution (innermost binding wins)
and drop order (reverse declaration order).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Dict, List, Optional

from .core.span import ProgramPoint
from .core.types_core import TypeId
from .places import Place, PlaceBase, PlaceState

if TYPE_CHECKING:
	from .borrow_checker import Loan


class ScopeKind(Enum):
	FUNCTION = auto()
	BLOCK = auto()
	BRANCH = auto()
	LOOP = auto()
	SPAWN = auto()  # body of a spawned unit; names outside it are not visible


@dataclass(eq=False)
class Variable:
	"""A binding declared in a scope. `seq` is its declaration position within that scope."""

	base: PlaceBase
	ty: Optional[TypeId]
	mutable: bool
	scope: "Scope"
	seq: int
	decl_point: ProgramPoint
	is_param: bool = False

	@property
	def name(self) -> str:
		return self.base.name


@dataclass(eq=False)
class Scope:
	"""Lexically nested region with a parent link."""

	id: int
	kind: ScopeKind
	parent: Optional["Scope"]
	label: str
	function: str
	depth: int = 0
	entry: Optional[ProgramPoint] = None
	exit: Optional[ProgramPoint] = None
	variables: List[Variable] = field(default_factory=list)
	_active: Dict[str, Variable] = field(default_factory=dict, repr=False)

	def reset(self) -> None:
		"""Forget bindings from a previous walk of the same block (loop re-walks)."""
		self._active = {}
		self.variables = []

	def declare(self, var: Variable) -> None:
		self.variables.append(var)
		self._active[var.name] = var

	def lookup(self, name: str) -> Optional[Variable]:
		"""Resolve `name` to the innermost visible binding (spawn bodies are isolated)."""
		scope: Optional[Scope] = self
		while scope is not None:
			var = scope._active.get(name)
			if var is not None:
				return var
			if scope.kind is ScopeKind.SPAWN:
				return None
			scope = scope.parent
		return None

	def is_ancestor_or_equal(self, other: "Scope") -> bool:
		scope: Optional[Scope] = other
		while scope is not None:
			if scope is self:
				return True
			scope = scope.parent
		return False

	def chain_to(self, root: "Scope") -> List["Scope"]:
		"""Scopes from self up to and including `root`, innermost first."""
		out: List[Scope] = []
		scope: Optional[Scope] = self
		while scope is not None:
			out.append(scope)
			if scope is root:
				break
			scope = scope.parent
		return out


@dataclass
class FlowState:
	"""Dataflow state at a program point: place validity, owned values, active loans, Rc counts."""

	place_states: Dict[Place, PlaceState] = field(default_factory=dict)
	bindings: Dict[PlaceBase, int] = field(default_factory=dict)  # base -> ValueId it owns
	loans: Dict[int, "Loan"] = field(default_factory=dict)
	refcounts: Dict[int, int] = field(default_factory=dict)  # allocation -> live handles
	reachable: bool = True

	def copy(self) -> "FlowState":
		return FlowState(
			place_states=dict(self.place_states),
			bindings=dict(self.bindings),
			loans=dict(self.loans),
			refcounts=dict(self.refcounts),
			reachable=self.reachable,
		)


__all__ = ["ScopeKind", "Variable", "Scope", "FlowState"]
