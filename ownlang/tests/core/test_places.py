#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
import pytest

from ownlang.ownck.model import nodes as P
from ownlang.ownck.places import FieldProj, Place, PlaceBase, PlaceKind, PlaceState, merge_place_state, place_from_expr, places_overlap

S = PlaceState


def _place(name: str, *fields: str, local_id: int = 0) -> Place:
	return Place(PlaceBase(PlaceKind.LOCAL, local_id, name), tuple(FieldProj(f) for f in fields))


@pytest.mark.parametrize(
	"a,b,expected",
	[
		(S.VALID, S.VALID, S.VALID),
		(S.MOVED, S.MOVED, S.MOVED),
		(S.MOVED, S.VALID, S.MAYBE_MOVED),
		(S.VALID, S.MAYBE_MOVED, S.MAYBE_MOVED),
		(S.MOVED, S.UNINIT, S.MOVED),
		(S.UNINIT, S.VALID, S.MAYBE_INIT),
		(S.MAYBE_INIT, S.VALID, S.MAYBE_INIT),
		(S.MAYBE_INIT, S.MOVED, S.MAYBE_MOVED),
		(S.UNINIT, S.UNINIT, S.UNINIT),
	],
)
def test_merge_place_state(a, b, expected):
	assert merge_place_state(a, b) is expected
	assert merge_place_state(b, a) is expected


def test_overlap_rules():
	foo = _place("foo")
	inner = _place("foo", "inner")
	tag = _place("foo", "tag")
	assert places_overlap(foo, inner)
	assert places_overlap(inner, _place("foo", "inner", "v"))
	assert not places_overlap(inner, tag)
	assert not places_overlap(foo, _place("foo", local_id=1))


def test_prefixes_and_describe():
	deep = _place("foo", "inner", "v")
	assert [p.describe() for p in deep.prefixes()] == ["foo", "foo.inner"]
	assert _place("foo").is_prefix_of(deep)
	assert not deep.is_prefix_of(_place("foo"))
	assert _place("foo").with_projection(FieldProj("tag")) == _place("foo", "tag")


def test_place_from_expr_accepts_only_bindings_and_fields():
	bases = {"foo": PlaceBase(PlaceKind.LOCAL, 0, "foo")}
	lookup = bases.get
	assert place_from_expr(P.PField(P.PVar("foo"), "tag"), base_lookup=lookup) == _place("foo", "tag")
	assert place_from_expr(P.PVar("bar"), base_lookup=lookup) is None
	assert place_from_expr(P.PField(P.PCall("make"), "tag"), base_lookup=lookup) is None
	assert place_from_expr(P.PLiteral(1), base_lookup=lookup) is None
