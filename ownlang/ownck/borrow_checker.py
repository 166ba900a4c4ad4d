#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Borrow checking: loans per place and the aliasing invariant.

Scope:
- Every reference-taking expression creates a `Loan` tied to a lexical scope.
- Shared loans may coexist; an exclusive loan excludes every other loan on an
  overlapping place.
- Moving, reading (for exclusive loans), and writing a borrowed place are
  rejected.
- Loans are strictly lexical: they end when their scope exits, or at the end
  of the statement for temporaries nobody holds on to. A loan stored into a
  longer-lived holder is re-scoped to the holder; whether the referent lives
  long enough is the lifetime resolver's question.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum, auto
from itertools import count
from typing import Dict, Iterable, List, Optional, Tuple

from .core.diagnostics import DiagnosticKind, DiagnosticsCollector
from .core.span import ProgramPoint
from .places import Place, PlaceBase, places_overlap
from .scopes import FlowState

logger = logging.getLogger(__name__)


class LoanKind(Enum):
	"""Kinds of borrows."""

	SHARED = auto()
	EXCLUSIVE = auto()


@dataclass(frozen=True)
class Loan:
	"""
	A borrow of a place.

	`holder` is the binding that carries the reference (a reference variable,
	a struct holding a reference field, a join handle). None means nobody holds
	it yet: the loan is a temporary and ends with its statement.
	`regions` describe how long the referent lives (see lifetimes.Region).
	"""

	id: int
	place: Place
	kind: LoanKind
	scope_id: int
	origin: ProgramPoint
	value: Optional[int] = None
	holder: Optional[PlaceBase] = None
	regions: Tuple[object, ...] = ()
	synthetic: bool = False  # stands for a caller-owned borrow behind a parameter

	@property
	def temporary(self) -> bool:
		return self.holder is None

	def describe(self) -> str:
		amp = "&mut " if self.kind is LoanKind.EXCLUSIVE else "&"
		return f"{amp}{self.place.describe()}"


class BorrowChecker:
	"""Aliasing checks over the active loans of a FlowState."""

	def __init__(self, diagnostics: DiagnosticsCollector) -> None:
		self.diagnostics = diagnostics
		self._ids = count(1)
		self._log: Dict[tuple, Loan] = {}

	@property
	def borrows(self) -> List[Loan]:
		"""Every loan created during the run (first occurrence per origin/place/kind)."""
		return list(self._log.values())

	def conflicting(self, state: FlowState, place: Place, kind: LoanKind) -> Optional[Loan]:
		for loan in state.loans.values():
			if loan.synthetic or not places_overlap(place, loan.place):
				continue
			if kind is LoanKind.EXCLUSIVE or loan.kind is LoanKind.EXCLUSIVE:
				return loan
		return None

	def request(
		self,
		state: FlowState,
		place: Place,
		kind: LoanKind,
		*,
		scope_id: int,
		origin: ProgramPoint,
		function: str,
		value: Optional[int] = None,
		regions: Tuple[object, ...] = (),
	) -> Optional[Loan]:
		"""Create a loan unless it would break the aliasing invariant (BorrowConflict)."""
		clash = self.conflicting(state, place, kind)
		if clash is not None:
			if kind is LoanKind.EXCLUSIVE:
				msg = f"cannot borrow '{place.describe()}' as mutable: already borrowed as {'mutable' if clash.kind is LoanKind.EXCLUSIVE else 'shared'}"
			else:
				msg = f"cannot borrow '{place.describe()}' as shared: already borrowed as mutable"
			self.diagnostics.report(
				DiagnosticKind.BORROW_CONFLICT,
				msg,
				phase="borrow",
				point=origin,
				function=function,
				involved=(place.describe(),),
				notes=[f"conflicting borrow {clash.describe()} taken at {clash.origin}"],
			)
			return None
		loan = Loan(
			id=next(self._ids),
			place=place,
			kind=kind,
			scope_id=scope_id,
			origin=origin,
			value=value,
			regions=regions,
		)
		state.loans[loan.id] = loan
		self._log.setdefault((origin.index, place, kind), loan)
		logger.debug("loan %d %s at %s", loan.id, loan.describe(), origin)
		return loan

	def synthetic_loan(
		self,
		state: FlowState,
		holder: PlaceBase,
		kind: LoanKind,
		*,
		scope_id: int,
		origin: ProgramPoint,
		regions: Tuple[object, ...],
	) -> Loan:
		"""A loan standing for caller-owned data behind a parameter; never conflicts."""
		target = PlaceBase(holder.kind, -holder.local_id - 1, f"*{holder.name}")
		loan = Loan(
			id=next(self._ids),
			place=Place(target),
			kind=kind,
			scope_id=scope_id,
			origin=origin,
			holder=holder,
			regions=regions,
			synthetic=True,
		)
		state.loans[loan.id] = loan
		return loan

	def check_move(self, state: FlowState, place: Place, point: ProgramPoint, *, function: str) -> bool:
		"""A borrowed place cannot be moved (CannotMoveWhileBorrowed)."""
		for loan in state.loans.values():
			if loan.synthetic or not places_overlap(place, loan.place):
				continue
			self.diagnostics.report(
				DiagnosticKind.CANNOT_MOVE_WHILE_BORROWED,
				f"cannot move '{place.describe()}' while borrowed",
				phase="borrow",
				point=point,
				function=function,
				involved=(place.describe(),),
				notes=[f"borrow {loan.describe()} taken at {loan.origin} is still active"],
			)
			return False
		return True

	def check_read(self, state: FlowState, place: Place, point: ProgramPoint, *, function: str) -> bool:
		"""Reading a place is blocked by an active exclusive loan on it."""
		for loan in state.loans.values():
			if loan.synthetic or loan.kind is not LoanKind.EXCLUSIVE or not places_overlap(place, loan.place):
				continue
			self.diagnostics.report(
				DiagnosticKind.BORROW_CONFLICT,
				f"cannot use '{place.describe()}' while it is mutably borrowed",
				phase="borrow",
				point=point,
				function=function,
				involved=(place.describe(),),
				notes=[f"mutable borrow {loan.describe()} taken at {loan.origin}"],
			)
			return False
		return True

	def check_write(self, state: FlowState, place: Place, point: ProgramPoint, *, function: str) -> bool:
		"""Writing a place is blocked by any active loan on it."""
		for loan in state.loans.values():
			if loan.synthetic or not places_overlap(place, loan.place):
				continue
			self.diagnostics.report(
				DiagnosticKind.BORROW_CONFLICT,
				f"cannot assign to '{place.describe()}' while it is borrowed",
				phase="borrow",
				point=point,
				function=function,
				involved=(place.describe(),),
				notes=[f"borrow {loan.describe()} taken at {loan.origin}"],
			)
			return False
		return True

	def carried_by(self, state: FlowState, holder: PlaceBase) -> List[Loan]:
		return [ln for ln in state.loans.values() if ln.holder == holder]

	def copy_to(self, state: FlowState, loans: Iterable[Loan]) -> List[int]:
		"""Duplicate loans for a copied reference; the copies start out unheld."""
		ids = []
		for ln in loans:
			dup = replace(ln, id=next(self._ids), holder=None)
			state.loans[dup.id] = dup
			ids.append(dup.id)
		return ids

	def rehome(self, state: FlowState, loan_ids: Iterable[int], holder: PlaceBase, scope_id: int) -> List[Loan]:
		"""Hand loans to a new holder; they now end when the holder's scope exits."""
		moved = []
		for lid in loan_ids:
			ln = state.loans.get(lid)
			if ln is None:
				continue
			ln = replace(ln, holder=holder, scope_id=scope_id)
			state.loans[lid] = ln
			moved.append(ln)
		return moved

	def detach(self, state: FlowState, loan_ids: Iterable[int]) -> List[int]:
		"""Loans of a moved-out holder become temporaries until someone picks them up."""
		out = []
		for lid in loan_ids:
			ln = state.loans.get(lid)
			if ln is not None:
				state.loans[lid] = replace(ln, holder=None)
				out.append(lid)
		return out

	def release(self, state: FlowState, loan_ids: Iterable[int]) -> None:
		for lid in loan_ids:
			state.loans.pop(lid, None)

	def end_statement(self, state: FlowState, keep: Iterable[int] = ()) -> None:
		"""Temporaries that nobody picked up end with their statement."""
		keep_ids = set(keep)
		for lid in [lid for lid, ln in state.loans.items() if ln.temporary and lid not in keep_ids]:
			del state.loans[lid]

	def end_scope(self, state: FlowState, scope_id: int, bases: Iterable[PlaceBase]) -> None:
		"""Force-end loans tied to the scope, held by its bindings, or pointing into them."""
		dead = set(bases)
		for lid in [
			lid for lid, ln in state.loans.items()
			if ln.scope_id == scope_id or ln.holder in dead or ln.place.base in dead
		]:
			del state.loans[lid]


__all__ = ["LoanKind", "Loan", "BorrowChecker"]
