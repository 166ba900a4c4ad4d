#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Ownership tracking: values, owner slots, and the move ledger.

Scope:
- Every constructed value gets a stable identity (`ValueId`) and an owner slot.
- Moves are recorded as immutable `MoveEvent`s; the source place is marked
  MOVED in the flow state from that point on.
- Copy reads never touch ownership. `clone` mints a new independent value.
- Field places are tracked individually (partial moves): moving `foo.inner`
  leaves `foo.tag` usable and makes whole-`foo` uses an error.

The tracker only answers ownership questions and records events. Borrow
conflicts (moving a borrowed place) are the borrow checker's call; the
verification pass asks both before recording a move.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional, Tuple

from .core.diagnostics import DiagnosticKind, DiagnosticsCollector
from .core.span import ProgramPoint
from .core.types_core import TypeId
from .places import Place, PlaceBase, PlaceState, is_moved_state
from .scopes import FlowState

logger = logging.getLogger(__name__)

ValueId = int


class SlotKind(Enum):
	"""Where a value can live."""

	VAR = auto()
	FIELD = auto()
	CALL = auto()        # consumed by a callee
	SPAWN = auto()       # transferred into a spawned unit
	JOIN = auto()        # handle consumed by a join
	RETURN = auto()
	ALLOCATION = auto()  # inside a reference-counted allocation
	TEMP = auto()        # discarded expression result


@dataclass(frozen=True)
class OwnerSlot:
	kind: SlotKind
	name: str

	def describe(self) -> str:
		if self.kind in (SlotKind.VAR, SlotKind.FIELD):
			return self.name
		return f"{self.kind.name.lower()}:{self.name}"


@dataclass
class Value:
	"""An abstract unit of data with a stable identity."""

	id: ValueId
	ty: Optional[TypeId]
	owner: Optional[OwnerSlot]
	created_at: ProgramPoint
	fields: Dict[str, ValueId] = field(default_factory=dict)
	allocation: Optional[int] = None  # Rc allocation this handle points at


@dataclass(frozen=True)
class MoveEvent:
	"""Immutable record of an ownership transfer."""

	value: ValueId
	from_owner: OwnerSlot
	to_owner: OwnerSlot
	point: ProgramPoint

	def describe(self) -> str:
		return f"{self.point}: value {self.value} moved {self.from_owner.describe()} -> {self.to_owner.describe()}"


class OwnershipLedger:
	"""
	Append-only record of values and moves for one verification run.

	Values are keyed by their creation site so that re-walking a loop body
	returns the same identities instead of minting new ones.
	"""

	def __init__(self) -> None:
		self.values: Dict[ValueId, Value] = {}
		self.moves: List[MoveEvent] = []
		self._by_key: Dict[tuple, ValueId] = {}
		self._move_keys: set[tuple] = set()
		self._allocations: Dict[tuple, int] = {}

	def new_value(
		self,
		key: tuple,
		ty: Optional[TypeId],
		owner: Optional[OwnerSlot],
		point: ProgramPoint,
		*,
		allocation: Optional[int] = None,
	) -> ValueId:
		existing = self._by_key.get(key)
		if existing is not None:
			val = self.values[existing]
			val.owner = owner
			return existing
		vid = len(self.values) + 1
		self.values[vid] = Value(id=vid, ty=ty, owner=owner, created_at=point, allocation=allocation)
		self._by_key[key] = vid
		return vid

	def field_value(self, parent: ValueId, name: str, ty: Optional[TypeId], point: ProgramPoint) -> ValueId:
		"""Return the value stored in `parent.name`, materializing it on first access."""
		pval = self.values[parent]
		vid = pval.fields.get(name)
		if vid is None:
			owner_name = f"{pval.owner.name}.{name}" if pval.owner is not None else name
			vid = self.new_value(("field", parent, name), ty, OwnerSlot(SlotKind.FIELD, owner_name), point)
			pval.fields[name] = vid
		return vid

	def new_allocation(self, key: tuple) -> int:
		alloc = self._allocations.get(key)
		if alloc is None:
			alloc = len(self._allocations) + 1
			self._allocations[key] = alloc
		return alloc

	def record_move(self, value: ValueId, from_owner: OwnerSlot, to_owner: OwnerSlot, point: ProgramPoint) -> MoveEvent:
		event = MoveEvent(value=value, from_owner=from_owner, to_owner=to_owner, point=point)
		key = (value, point.index, to_owner)
		if key not in self._move_keys:
			self._move_keys.add(key)
			self.moves.append(event)
			logger.debug("move %s", event.describe())
		self.values[value].owner = to_owner
		return event


@dataclass
class OwnershipTracker:
	"""Per-run ownership checks over a FlowState."""

	ledger: OwnershipLedger
	diagnostics: DiagnosticsCollector
	copy_moves: bool = False

	def state_of(self, state: FlowState, place: Place) -> PlaceState:
		"""
		Effective state of a place: the nearest recorded state on the place or
		its prefixes. A moved prefix makes every sub-place moved.
		"""
		for prefix in place.prefixes():
			st = state.place_states.get(prefix)
			if st is not None and is_moved_state(st):
				return st
		own = state.place_states.get(place)
		if own is not None:
			return own
		for prefix in reversed(place.prefixes()):
			st = state.place_states.get(prefix)
			if st is not None:
				return st
		return PlaceState.UNINIT

	def moved_part(self, state: FlowState, place: Place) -> Optional[Tuple[Place, PlaceState]]:
		"""
		Find a moved place that makes using `place` as a whole invalid: the
		place itself, one of its prefixes, or one of its sub-places.
		"""
		for prefix in (*place.prefixes(), place):
			st = state.place_states.get(prefix)
			if st is not None and is_moved_state(st):
				return prefix, st
		for other, ost in state.place_states.items():
			if is_moved_state(ost) and other != place and place.is_prefix_of(other):
				return other, ost
		return None

	def is_uninit(self, state: FlowState, place: Place) -> bool:
		return self.state_of(state, place) is PlaceState.UNINIT

	def check_use(self, state: FlowState, place: Place, point: ProgramPoint, *, function: str) -> bool:
		"""Validate a non-moving use (read, borrow, clone). Reports UseOfMovedValue."""
		hit = self.moved_part(state, place)
		if hit is not None:
			moved, st = hit
			self._report_moved_use(place, moved, st, point, function=function)
			return False
		if self.is_uninit(state, place):
			self.diagnostics.report(
				DiagnosticKind.USE_OF_MOVED_VALUE,
				f"use of uninitialized '{place.describe()}'",
				phase="ownership",
				point=point,
				function=function,
				involved=(place.describe(),),
			)
			return False
		return True

	def check_move_source(self, state: FlowState, place: Place, point: ProgramPoint, *, function: str) -> bool:
		"""Validate a move source. Reports DoubleMove when the source is already moved-out."""
		hit = self.moved_part(state, place)
		if hit is not None:
			moved, st = hit
			if moved != place and place.is_prefix_of(moved):
				# Moving a whole value whose part is gone is a use of the partial value.
				self._report_moved_use(place, moved, st, point, function=function)
				return False
			qualifier = "possibly " if st is PlaceState.MAYBE_MOVED else ""
			if moved == place:
				msg = f"cannot move '{place.describe()}': value was {qualifier}moved already"
			else:
				msg = f"cannot move '{place.describe()}': '{moved.describe()}' was {qualifier}moved already"
			self.diagnostics.report(
				DiagnosticKind.DOUBLE_MOVE,
				msg,
				phase="ownership",
				point=point,
				function=function,
				involved=(place.describe(),),
				notes=self._move_notes(moved),
			)
			return False
		if self.is_uninit(state, place):
			self.diagnostics.report(
				DiagnosticKind.USE_OF_MOVED_VALUE,
				f"use of uninitialized '{place.describe()}'",
				phase="ownership",
				point=point,
				function=function,
				involved=(place.describe(),),
			)
			return False
		return True

	def _report_moved_use(
		self, place: Place, moved: Place, st: PlaceState, point: ProgramPoint, *, function: str
	) -> None:
		qualifier = "possibly-" if st is PlaceState.MAYBE_MOVED else ""
		if moved == place or moved.is_prefix_of(place):
			msg = f"use of {qualifier}moved value '{place.describe()}'"
		else:
			msg = f"use of partially moved value '{place.describe()}' ('{moved.describe()}' was {qualifier}moved)"
		self.diagnostics.report(
			DiagnosticKind.USE_OF_MOVED_VALUE,
			msg,
			phase="ownership",
			point=point,
			function=function,
			involved=(place.describe(),),
			notes=self._move_notes(moved),
		)

	def _move_notes(self, moved: Place) -> List[str]:
		notes = []
		for ev in self.ledger.moves:
			if ev.from_owner.name == moved.describe():
				notes.append(f"moved at {ev.point} into {ev.to_owner.describe()}")
		return notes[-1:]

	def value_of(self, state: FlowState, place: Place, ty_of_field) -> Optional[ValueId]:
		"""Value currently stored at `place` (field values are materialized lazily)."""
		vid = state.bindings.get(place.base)
		if vid is None:
			return None
		for proj in place.projections:
			if vid not in self.ledger.values:
				return None
			pty = self.ledger.values[vid].ty
			vid = self.ledger.field_value(vid, proj.name, ty_of_field(pty, proj.name), self.ledger.values[vid].created_at)
		return vid

	def bind(self, state: FlowState, base: PlaceBase, value: Optional[ValueId], owner: OwnerSlot) -> None:
		"""Make `base` the owner of `value` and mark the whole place valid."""
		self._clear_subplaces(state, Place(base))
		state.place_states[Place(base)] = PlaceState.VALID
		if value is not None:
			state.bindings[base] = value
			self.ledger.values[value].owner = owner
		else:
			state.bindings.pop(base, None)

	def declare_uninit(self, state: FlowState, base: PlaceBase) -> None:
		self._clear_subplaces(state, Place(base))
		state.place_states[Place(base)] = PlaceState.UNINIT
		state.bindings.pop(base, None)

	def reinit(self, state: FlowState, place: Place) -> None:
		"""Assignment makes a place (and everything under it) valid again."""
		self._clear_subplaces(state, place)
		state.place_states[place] = PlaceState.VALID

	def store_field(self, state: FlowState, place: Place, value: Optional[ValueId], ty_of_field) -> None:
		"""Record that a field place now holds `value`."""
		if value is None or not place.projections:
			return
		parent = self.value_of(state, Place(place.base, place.projections[:-1]), ty_of_field)
		if parent is None:
			return
		self.ledger.values[parent].fields[place.projections[-1].name] = value
		self.ledger.values[value].owner = OwnerSlot(SlotKind.FIELD, place.describe())

	def record_move(
		self,
		state: FlowState,
		place: Place,
		value: Optional[ValueId],
		to_owner: OwnerSlot,
		point: ProgramPoint,
	) -> Optional[MoveEvent]:
		"""Mark `place` moved-out and log the transfer."""
		self._clear_subplaces(state, place)
		state.place_states[place] = PlaceState.MOVED
		if value is None:
			return None
		kind = SlotKind.FIELD if place.projections else SlotKind.VAR
		return self.ledger.record_move(value, OwnerSlot(kind, place.describe()), to_owner, point)

	def is_moved(self, state: FlowState, place: Place) -> bool:
		return is_moved_state(self.state_of(state, place))

	def _clear_subplaces(self, state: FlowState, place: Place) -> None:
		for other in [p for p in state.place_states if p != place and place.is_prefix_of(p)]:
			del state.place_states[other]

	def forget(self, state: FlowState, base: PlaceBase) -> None:
		"""Drop all per-place facts about a binding whose scope has exited."""
		for other in [p for p in state.place_states if p.base == base]:
			del state.place_states[other]
		state.bindings.pop(base, None)


__all__ = [
	"ValueId",
	"SlotKind",
	"OwnerSlot",
	"Value",
	"MoveEvent",
	"OwnershipLedger",
	"OwnershipTracker",
]
