#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Moves across if/else joins, loops, and early returns."""

from ownlang.ownck import DiagnosticKind, parse_model, verify_program

_PRELUDE = """
struct Foo { tag: Int }
fn consume(f: Foo) {
}
"""


def _verify(body: str):
	return verify_program(parse_model(_PRELUDE + body, filename="flow.own"))


def _kinds(result) -> list:
	return [d.kind for d in result.diagnostics]


def test_move_on_one_branch_makes_later_use_an_error():
	res = _verify(
		"""
		fn main() {
			let foo = Foo { tag: 1 };
			if (true) {
				consume(foo);
			}
			let r = &foo;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.USE_OF_MOVED_VALUE]
	assert "possibly-moved" in res.diagnostics[0].message


def test_move_on_both_branches():
	res = _verify(
		"""
		fn main() {
			let foo = Foo { tag: 1 };
			if (true) {
				consume(foo);
			} else {
				let other = foo;
			}
			let r = &foo;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.USE_OF_MOVED_VALUE]
	assert "possibly" not in res.diagnostics[0].message


def test_each_branch_may_move_independently():
	res = _verify(
		"""
		fn main() {
			let foo = Foo { tag: 1 };
			if (true) {
				consume(foo);
			} else {
				consume(foo);
			}
		}
		"""
	)
	assert res.diagnostics == []


def test_move_inside_loop_is_double_move_on_back_edge():
	res = _verify(
		"""
		fn main() {
			let foo = Foo { tag: 1 };
			loop {
				consume(foo);
			}
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.DOUBLE_MOVE]
	assert "possibly moved" in res.diagnostics[0].message


def test_reassignment_in_loop_keeps_value_valid():
	res = _verify(
		"""
		fn main() {
			let mut foo = Foo { tag: 1 };
			loop {
				consume(foo);
				foo = Foo { tag: 2 };
			}
		}
		"""
	)
	assert res.diagnostics == []


def test_early_return_ends_the_path():
	res = _verify(
		"""
		fn main() {
			let foo = Foo { tag: 1 };
			if (true) {
				consume(foo);
				return;
			}
			let r = &foo;
		}
		"""
	)
	assert res.diagnostics == []


def test_else_if_chain_joins_all_arms():
	res = _verify(
		"""
		fn main() {
			let foo = Foo { tag: 1 };
			let n = 3;
			if (n == 1) {
				let a = 1;
			} else if (n == 2) {
				consume(foo);
			} else {
				let b = 2;
			}
			let r = &foo;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.USE_OF_MOVED_VALUE]


def test_loop_findings_are_not_repeated():
	res = _verify(
		"""
		fn main() {
			let mut foo = Foo { tag: 1 };
			let a = &mut foo;
			loop {
				let b = &mut foo;
			}
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.BORROW_CONFLICT]
