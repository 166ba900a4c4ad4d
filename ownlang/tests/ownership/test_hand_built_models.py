#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Models built directly from node classes, the way a front end hands them over."""

import pytest

from ownlang.ownck import DiagnosticKind, ModelError, verify_program
from ownlang.ownck.model import nodes as P
from ownlang.ownck.model.typeexpr import builtin_types


def _foo_program(statements: list) -> P.Program:
	types = builtin_types()
	types.declare_struct("Foo", [("tag", types.ensure_int())])
	main = P.PFunction(name="main", body=P.PBlock(statements=statements))
	return P.Program(types=types, functions=[main], name="hand-built")


def _new_foo() -> P.PStructInit:
	return P.PStructInit(name="Foo", fields=[("tag", P.PLiteral(1))])


def test_double_move_without_locations():
	prog = _foo_program(
		[
			P.PLet(name="foo", value=_new_foo()),
			P.PLet(name="bar1", value=P.PVar("foo")),
			P.PLet(name="bar2", value=P.PVar("foo")),
		]
	)
	res = verify_program(prog)
	assert [d.kind for d in res.diagnostics] == [DiagnosticKind.DOUBLE_MOVE]
	diag = res.diagnostics[0]
	assert diag.location()["line"] is None
	assert diag.function == "main"
	assert len(res.moves) == 1


def test_exclusive_borrows_conflict():
	prog = _foo_program(
		[
			P.PLet(name="foo", value=_new_foo(), mutable=True),
			P.PLet(name="a", value=P.PBorrow(P.PVar("foo"), is_mut=True)),
			P.PLet(name="b", value=P.PBorrow(P.PVar("foo"), is_mut=True)),
		]
	)
	res = verify_program(prog)
	assert [d.kind for d in res.diagnostics] == [DiagnosticKind.BORROW_CONFLICT]


def test_verification_is_repeatable_and_leaves_model_alone():
	stmts = [
		P.PLet(name="foo", value=_new_foo()),
		P.PLet(name="bar", value=P.PVar("foo")),
		P.PExprStmt(P.PBorrow(P.PVar("foo"))),
	]
	prog = _foo_program(stmts)
	first = verify_program(prog)
	second = verify_program(prog)
	assert [d.to_dict() for d in first.diagnostics] == [d.to_dict() for d in second.diagnostics]
	assert [d.kind for d in first.diagnostics] == [DiagnosticKind.USE_OF_MOVED_VALUE]
	assert prog.functions[0].body.statements == stmts


def test_unresolved_name_is_a_model_error():
	prog = _foo_program([P.PLet(name="x", value=P.PVar("nowhere"))])
	with pytest.raises(ModelError):
		verify_program(prog)
