#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Drop scheduling: deterministic release points for owned values.

At every scope exit the scheduler walks the scope's variables in reverse
declaration order and emits a `DropEvent` for each value the variable still
owns. Moved-out values are skipped; possibly-moved and possibly-initialized
values get a conditional event (the runtime would consult a drop flag). A
struct's still-owned fields are released right after the struct, in field
declaration order.

Reference-counted handles share an allocation. Each handle's drop decrements
the allocation's count; the allocation is freed when it reaches zero. A
decrement below zero means the verifier lost track of a handle and raises
`RefCountUnderflow`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Dict, List, Optional, Tuple

from .core.errors import RefCountUnderflow
from .core.span import ProgramPoint
from .core.types_core import TypeTable
from .ownership import OwnershipLedger, ValueId
from .places import FieldProj, Place, PlaceState
from .scopes import FlowState, Scope

logger = logging.getLogger(__name__)


class DropReason(Enum):
	SCOPE_EXIT = auto()
	OVERWRITE = auto()   # old value of an assigned place
	CONSUMED = auto()    # moved into a callee, which releases it
	DISCARDED = auto()   # unused expression-statement result


@dataclass(frozen=True)
class DropEvent:
	value: ValueId
	owner: str
	type_name: str
	scope_id: int
	point: ProgramPoint
	reason: DropReason = DropReason.SCOPE_EXIT
	refcount_after: Optional[int] = None
	frees_allocation: bool = False
	conditional: bool = False
	partial: bool = False

	def describe(self) -> str:
		parts = [f"{self.point}: drop {self.owner} ({self.type_name})"]
		if self.reason is not DropReason.SCOPE_EXIT:
			parts.append(self.reason.name.lower())
		if self.conditional:
			parts.append("conditional")
		if self.partial:
			parts.append("partial")
		if self.refcount_after is not None:
			parts.append(f"rc={self.refcount_after}")
		if self.frees_allocation:
			parts.append("frees allocation")
		return " ".join(parts)


def acquire(counts: Dict[int, int], allocation: int) -> int:
	counts[allocation] = counts.get(allocation, 0) + 1
	return counts[allocation]


def release(counts: Dict[int, int], allocation: int) -> int:
	current = counts.get(allocation, 0)
	if current <= 0:
		raise RefCountUnderflow(
			f"reference count of allocation {allocation} would drop below zero",
			allocation=allocation,
		)
	counts[allocation] = current - 1
	return current - 1


class DropScheduler:
	"""Produces release order per scope and maintains reference counts."""

	def __init__(self, types: TypeTable, ledger: OwnershipLedger) -> None:
		self.types = types
		self.ledger = ledger
		self.schedules: Dict[int, List[DropEvent]] = {}
		self._keys: set[tuple] = set()

	def schedule_scope_exit(
		self,
		state: FlowState,
		scope: Scope,
		point: ProgramPoint,
		state_of: Callable[[FlowState, Place], PlaceState],
	) -> List[DropEvent]:
		"""Release the scope's owned values in reverse declaration order."""
		events: List[DropEvent] = []
		for var in reversed(scope.variables):
			vid = state.bindings.get(var.base)
			if vid is None:
				continue
			place = Place(var.base)
			st = state_of(state, place)
			if st in (PlaceState.MOVED, PlaceState.UNINIT):
				continue
			events.extend(
				self.drop_value(
					state,
					vid,
					owner=var.name,
					scope_id=scope.id,
					point=point,
					conditional=st in (PlaceState.MAYBE_MOVED, PlaceState.MAYBE_INIT),
					place=place,
					state_of=state_of,
				)
			)
		return events

	def drop_value(
		self,
		state: FlowState,
		vid: ValueId,
		*,
		owner: str,
		scope_id: int,
		point: ProgramPoint,
		reason: DropReason = DropReason.SCOPE_EXIT,
		conditional: bool = False,
		place: Optional[Place] = None,
		state_of: Optional[Callable[[FlowState, Place], PlaceState]] = None,
		taken: Tuple[str, ...] = (),
	) -> List[DropEvent]:
		value = self.ledger.values.get(vid)
		if value is None or not self.types.needs_drop(value.ty):
			return []
		partial = False
		live_fields: List[tuple] = []
		if value.fields:
			for fname, fvid in value.fields.items():
				if fname in taken:
					partial = True
					continue
				fplace = place.with_projection(FieldProj(fname)) if place is not None else None
				if fplace is not None and state_of is not None and state_of(state, fplace) in (PlaceState.MOVED, PlaceState.MAYBE_MOVED):
					partial = True
					continue
				live_fields.append((fname, fvid, fplace))
		refcount_after = None
		frees = False
		if value.allocation is not None:
			refcount_after = release(state.refcounts, value.allocation)
			frees = refcount_after == 0
		type_name = self.types.get(value.ty).name if value.ty is not None else "Unknown"
		event = DropEvent(
			value=vid,
			owner=owner,
			type_name=type_name,
			scope_id=scope_id,
			point=point,
			reason=reason,
			refcount_after=refcount_after,
			frees_allocation=frees,
			conditional=conditional,
			partial=partial,
		)
		events = [self._emit(event)]
		for fname, fvid, fplace in self._field_order(value.ty, live_fields):
			events.extend(
				self.drop_value(
					state,
					fvid,
					owner=f"{owner}.{fname}",
					scope_id=scope_id,
					point=point,
					reason=reason,
					conditional=conditional,
					place=fplace,
					state_of=state_of,
				)
			)
		return events

	def _field_order(self, ty, live_fields: List[tuple]) -> List[tuple]:
		if ty is None:
			return live_fields
		decl = [name for name, _ in self.types.get(ty).fields]
		return sorted(live_fields, key=lambda f: decl.index(f[0]) if f[0] in decl else len(decl))

	def _emit(self, event: DropEvent) -> DropEvent:
		key = (event.scope_id, event.value, event.point.index, event.owner)
		if key not in self._keys:
			self._keys.add(key)
			self.schedules.setdefault(event.scope_id, []).append(event)
			logger.debug("%s", event.describe())
		return event


__all__ = ["DropReason", "DropEvent", "DropScheduler", "acquire", "release"]
