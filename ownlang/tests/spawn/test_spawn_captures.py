#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Spawned units: capture modes, thread safety, handles, and joins."""

import pytest

from ownlang.ownck import DiagnosticKind, ModelError, parse_model, verify_many, verify_program

_TYPES = """
struct Map { size: Int }
"""


def _verify(body: str):
	return verify_program(parse_model(_TYPES + body, filename="spawn.own"))


def _kinds(result) -> list:
	return [d.kind for d in result.diagnostics]


def test_shared_thread_safe_handles_across_two_units():
	res = _verify(
		"""
		fn main() {
			let registry = arc(Map { size: 0 });
			let r1 = clone registry;
			let r2 = clone registry;
			let h1 = spawn [move r1] {
				let n = r1.size;
			};
			let h2 = spawn [move r2] {
				let n = r2.size;
			};
			join h1;
			join h2;
		}
		"""
	)
	assert res.diagnostics == []
	counts = [ev.refcount_after for ev in res.all_drops() if ev.refcount_after is not None]
	assert sorted(counts) == [0, 1, 2]
	freeing = [ev for ev in res.all_drops() if ev.frees_allocation]
	assert [ev.owner for ev in freeing] == ["registry"]


def test_mutable_reference_moved_into_unit_is_rejected():
	res = _verify(
		"""
		fn main() {
			let mut data = Map { size: 0 };
			let r = &mut data;
			let h = spawn [move r] {
				let n = r.size;
			};
			join h;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.MUTABLE_BORROW_ACROSS_SPAWN]
	assert res.diagnostics[0].involved == ("r",)


def test_mutable_capture_is_rejected():
	res = _verify(
		"""
		fn main() {
			let mut data = Map { size: 0 };
			let h = spawn [mut data] {
				data.size = 1;
			};
			join h;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.MUTABLE_BORROW_ACROSS_SPAWN]


def test_non_thread_safe_handle_is_rejected():
	res = _verify(
		"""
		fn main() {
			let shared = rc(Map { size: 0 });
			let h = spawn [move shared] {
				let n = shared.size;
			};
			join h;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.NON_THREAD_SAFE_SHARE]


def test_shared_capture_blocks_writes_until_join():
	res = _verify(
		"""
		fn main() {
			let mut data = Map { size: 0 };
			let h = spawn [ref data] {
				let n = data.size;
			};
			data.size = 1;
			join h;
			data.size = 2;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.BORROW_CONFLICT]


def test_writes_through_shared_capture_are_rejected():
	res = _verify(
		"""
		fn main() {
			let data = Map { size: 0 };
			let h = spawn [ref data] {
				data.size = 1;
			};
			join h;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.MUTABILITY_VIOLATION]


def test_shared_capture_while_mutably_borrowed_conflicts():
	res = _verify(
		"""
		fn main() {
			let mut data = Map { size: 0 };
			let w = &mut data;
			let h = spawn [ref data] {
				let n = data.size;
			};
			join h;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.BORROW_CONFLICT]


def test_moved_capture_is_gone_after_spawn():
	res = _verify(
		"""
		fn main() {
			let data = Map { size: 0 };
			let h = spawn [move data] {
				let n = data.size;
			};
			join h;
			let again = &data;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.USE_OF_MOVED_VALUE]


def test_detached_unit_may_not_borrow_locals():
	res = _verify(
		"""
		fn main() {
			let data = Map { size: 0 };
			spawn [ref data] {
				let n = data.size;
			};
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.DANGLING_REFERENCE]


def test_unit_without_captures_drops_its_own_locals():
	res = _verify(
		"""
		fn main() {
			let data = Map { size: 0 };
			let h = spawn [] {
				let local = Map { size: 1 };
			};
			join h;
			let n = data.size;
		}
		"""
	)
	assert res.diagnostics == []
	unit_drops = [ev for ev in res.all_drops() if ev.owner == "local"]
	assert len(unit_drops) == 1


def test_joining_twice_is_double_move():
	res = _verify(
		"""
		fn main() {
			let h = spawn [] {
			};
			join h;
			join h;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.DOUBLE_MOVE]


def test_spawn_body_cannot_see_uncaptured_names():
	with pytest.raises(ModelError) as exc:
		_verify(
			"""
			fn main() {
				let data = Map { size: 0 };
				let h = spawn [] {
					let n = data.size;
				};
			}
			"""
		)
	assert "unknown name 'data'" in str(exc.value)


def test_struct_holding_mutable_reference_is_rejected():
	res = _verify(
		"""
		struct Holder { r: &mut Map }
		fn main() {
			let mut data = Map { size: 0 };
			let h = Holder { r: &mut data };
			let t = spawn [move h] {
				let n = h.r.size;
			};
			join t;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.MUTABLE_BORROW_ACROSS_SPAWN]
	assert res.diagnostics[0].involved == ("h",)
	assert "holding a mutable reference" in res.diagnostics[0].message


def test_enum_payload_holding_mutable_reference_is_rejected():
	res = _verify(
		"""
		enum Slot { Some(&mut Map), Empty }
		fn main() {
			let mut data = Map { size: 0 };
			let s = Slot::Some(&mut data);
			let t = spawn [move s] {
				let k = 1;
			};
			join t;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.MUTABLE_BORROW_ACROSS_SPAWN]
	assert res.diagnostics[0].involved == ("s",)


def test_struct_holding_shared_reference_may_cross():
	res = _verify(
		"""
		struct Viewer { r: &Map }
		fn main() {
			let data = Map { size: 0 };
			let v = Viewer { r: &data };
			let t = spawn [move v] {
				let n = v.r.size;
			};
			join t;
		}
		"""
	)
	assert res.diagnostics == []


def test_verification_leaves_model_types_alone():
	prog = parse_model(
		_TYPES
		+ """
		fn main() {
			let data = Map { size: 0 };
			let r = &data;
			let shared = arc(Map { size: 1 });
			let h = spawn [ref data] {
				let n = data.size;
			};
			join h;
		}
		"""
	)
	before = dict(prog.types._defs)
	verify_program(prog)
	verify_many([prog, prog], jobs=2)
	assert prog.types._defs == before
	assert prog.types.lookup("JoinHandle") is None
