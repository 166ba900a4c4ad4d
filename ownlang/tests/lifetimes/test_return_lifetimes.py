#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Returned references, stored references, and return-lifetime summaries."""

import pytest

from ownlang.ownck import DiagnosticKind, ModelError, VerifierConfig, parse_model, verify_program
from ownlang.ownck.core.config import LifetimePolicy

_TYPES = """
struct Inner { v: Int }
struct Foo { inner: Inner, tag: Int }
"""


def _verify(body: str, **kwargs):
	return verify_program(parse_model(_TYPES + body, filename="lifetimes.own"), **kwargs)


def _kinds(result) -> list:
	return [d.kind for d in result.diagnostics]


def test_returning_field_of_borrowed_parameter_is_fine():
	res = _verify(
		"""
		fn get_inner(foo: &Foo) -> &Inner {
			return &foo.inner;
		}
		fn main() {
			let foo = Foo { inner: Inner { v: 1 }, tag: 2 };
			let r = get_inner(&foo);
			let v = r.v;
		}
		"""
	)
	assert res.diagnostics == []
	summary = res.summaries["get_inner"]
	assert summary.returns_ref
	assert summary.source_param == "foo"


def test_returning_reference_to_local_dangles():
	res = _verify(
		"""
		fn make() -> &Inner {
			let local = Inner { v: 1 };
			return &local;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.DANGLING_REFERENCE]
	diag = res.diagnostics[0]
	assert diag.involved == ("make", "local")
	assert "local 'local'" in diag.message


def test_returning_copied_parameter_reference_is_fine():
	res = _verify(
		"""
		fn ident(foo: &Foo) -> &Foo {
			let alias = foo;
			return alias;
		}
		"""
	)
	assert res.diagnostics == []


def test_result_keeps_argument_borrowed():
	res = _verify(
		"""
		fn get_inner(foo: &Foo) -> &Inner {
			return &foo.inner;
		}
		fn main() {
			let foo = Foo { inner: Inner { v: 1 }, tag: 2 };
			let r = get_inner(&foo);
			let moved = foo;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.CANNOT_MOVE_WHILE_BORROWED]


def test_reference_stored_in_longer_lived_binding_dangles():
	res = _verify(
		"""
		fn main() {
			let r: &Inner;
			{
				let local = Inner { v: 1 };
				r = &local;
			}
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.DANGLING_REFERENCE]
	assert "does not live long enough" in res.diagnostics[0].message


def test_reference_declared_before_referent_in_same_scope_dangles():
	res = _verify(
		"""
		fn main() {
			let mut r = &Inner { v: 0 };
			let local = Inner { v: 1 };
			r = &local;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.DANGLING_REFERENCE]


def test_reference_in_same_scope_after_referent_is_fine():
	res = _verify(
		"""
		fn main() {
			let local = Inner { v: 1 };
			let r = &local;
			let v = r.v;
		}
		"""
	)
	assert res.diagnostics == []


def test_two_borrowed_inputs_are_ambiguous_by_default():
	res = _verify(
		"""
		fn pick(a: &Foo, b: &Foo) -> &Foo {
			return a;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.AMBIGUOUS_LIFETIME]
	assert res.diagnostics[0].involved == ("pick", "a", "b")
	assert res.summaries["pick"].ambiguous


def test_annotation_resolves_ambiguity():
	res = _verify(
		"""
		fn pick(a: &Foo, b: &Foo) -> &'a Foo {
			return a;
		}
		"""
	)
	assert res.diagnostics == []
	assert res.summaries["pick"].source_param == "a"


def test_annotation_can_come_from_the_caller():
	src = """
	fn pick(a: &Foo, b: &Foo) -> &Foo {
		return a;
	}
	"""
	res = _verify(src, annotations={"pick": "a"})
	assert res.diagnostics == []


def test_returning_the_other_parameter_violates_the_annotation():
	res = _verify(
		"""
		fn pick(a: &Foo, b: &Foo) -> &'a Foo {
			return b;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.DANGLING_REFERENCE]
	assert "derived from 'b'" in res.diagnostics[0].message


def test_annotation_naming_unknown_parameter_is_a_model_error():
	with pytest.raises(ModelError):
		_verify(
			"""
			fn pick(a: &Foo, n: Int) -> &'n Foo {
				return a;
			}
			"""
		)


def test_trace_policy_infers_single_source():
	src = """
	fn first(a: &Foo, b: &Foo) -> &Inner {
		if (true) {
			return &a.inner;
		}
		return &a.inner;
	}
	"""
	res = _verify(src, config=VerifierConfig(lifetime_policy=LifetimePolicy.TRACE))
	assert res.diagnostics == []
	assert res.summaries["first"].source_param == "a"


def test_trace_policy_still_rejects_mixed_sources():
	src = """
	fn either(a: &Foo, b: &Foo) -> &Foo {
		if (true) {
			return a;
		}
		return b;
	}
	"""
	res = _verify(src, config=VerifierConfig(lifetime_policy=LifetimePolicy.TRACE))
	assert _kinds(res) == [DiagnosticKind.AMBIGUOUS_LIFETIME]


def test_ambiguous_result_keeps_every_argument_borrowed():
	res = _verify(
		"""
		fn pick(a: &Foo, b: &Foo) -> &Foo {
			return a;
		}
		fn main() {
			let x = Foo { inner: Inner { v: 1 }, tag: 1 };
			let y = Foo { inner: Inner { v: 2 }, tag: 2 };
			let r = pick(&x, &y);
			let moved = y;
		}
		"""
	)
	assert _kinds(res) == [DiagnosticKind.AMBIGUOUS_LIFETIME, DiagnosticKind.CANNOT_MOVE_WHILE_BORROWED]
