#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Place representation and basic lvalue detection.

This models the "where" of values (bindings + field projections) so the
ownership and borrow stages can track moves/borrows per place. It avoids
policy (no diagnostics) and just answers:
  * Is this model expression an lvalue (borrowable/moveable place)?
  * If so, what place does it identify?
  * Do two places overlap?
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Optional, Tuple

from .model import nodes as P


@dataclass(frozen=True)
class FieldProj:
	"""Field access projection (e.g., `.name`)."""

	name: str


Projection = FieldProj


class PlaceState(Enum):
	"""Validity state for a place."""

	UNINIT = auto()
	VALID = auto()
	MAYBE_INIT = auto()   # initialized on some but not all incoming paths
	MAYBE_MOVED = auto()  # moved on some but not all incoming paths
	MOVED = auto()


def merge_place_state(a: PlaceState, b: PlaceState) -> PlaceState:
	"""
	Join operation for place states at control-flow merges.

	MOVED on both sides stays MOVED; MOVED on one side only becomes
	MAYBE_MOVED (still unusable, but its drop is conditional). UNINIT joined
	with VALID is MAYBE_INIT: the value stays usable and its drop is
	conditional.
	"""
	if a is b:
		return a
	if PlaceState.MAYBE_MOVED in (a, b):
		return PlaceState.MAYBE_MOVED
	if PlaceState.MOVED in (a, b):
		other = b if a is PlaceState.MOVED else a
		return PlaceState.MOVED if other is PlaceState.UNINIT else PlaceState.MAYBE_MOVED
	return PlaceState.MAYBE_INIT


def is_moved_state(state: PlaceState) -> bool:
	return state in (PlaceState.MOVED, PlaceState.MAYBE_MOVED)


class PlaceKind(Enum):
	LOCAL = auto()
	PARAM = auto()
	CAPTURE = auto()
	TEMP = auto()


@dataclass(frozen=True)
class PlaceBase:
	"""Identity for the root of a Place (locals, params, spawn captures)."""

	kind: PlaceKind
	local_id: int
	name: str


@dataclass(frozen=True)
class Place:
	"""
	A borrowable/moveable storage location.

	`base` carries identity (local/param/etc). `projections` capture field
	accesses, so `foo.bar.baz` becomes base `foo` with projections `.bar`, `.baz`.
	"""

	base: PlaceBase
	projections: Tuple[Projection, ...] = field(default_factory=tuple)

	def with_projection(self, proj: Projection) -> "Place":
		"""Return a new Place with an additional projection appended."""
		return Place(self.base, self.projections + (proj,))

	def is_prefix_of(self, other: "Place") -> bool:
		"""True when `other` is this place or one of its sub-places."""
		if self.base != other.base or len(self.projections) > len(other.projections):
			return False
		return other.projections[: len(self.projections)] == self.projections

	def prefixes(self) -> Tuple["Place", ...]:
		"""All strict prefixes, outermost first (`foo`, `foo.bar` for `foo.bar.baz`)."""
		return tuple(Place(self.base, self.projections[:i]) for i in range(len(self.projections)))

	def describe(self) -> str:
		return ".".join([self.base.name, *(p.name for p in self.projections)])


def places_overlap(a: Place, b: Place) -> bool:
	"""
	Return True when two places may refer to overlapping storage.

	- Different bases never overlap.
	- Prefix overlap counts: `x` overlaps `x.field`.
	- Field projections are disjoint when the field names differ.
	"""
	if a.base != b.base:
		return False
	for pa, pb in zip(a.projections, b.projections):
		if pa != pb:
			return False
	return True


def place_from_expr(expr: P.PExpr, *, base_lookup: Callable[[str], Optional[PlaceBase]]) -> Optional[Place]:
	"""
	Construct a `Place` from a model expression when the expression is an lvalue.

	Returns None for rvalues and for names `base_lookup` cannot resolve.
	"""
	if isinstance(expr, P.PVar):
		base = base_lookup(expr.name)
		if base is None:
			return None
		return Place(base)
	if isinstance(expr, P.PField):
		base_place = place_from_expr(expr.subject, base_lookup=base_lookup)
		if base_place is None:
			return None
		return base_place.with_projection(FieldProj(expr.name))
	return None


__all__ = [
	"FieldProj",
	"Projection",
	"PlaceState",
	"PlaceKind",
	"PlaceBase",
	"Place",
	"merge_place_state",
	"is_moved_state",
	"places_overlap",
	"place_from_expr",
]
