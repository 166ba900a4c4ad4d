#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from ownlang.ownck.core.diagnostics import Diagnostic, DiagnosticKind, DiagnosticsCollector
from ownlang.ownck.core.span import ProgramPoint, Span


def test_kind_titles_and_codes():
	assert DiagnosticKind.USE_OF_MOVED_VALUE.title == "UseOfMovedValue"
	assert DiagnosticKind.CANNOT_MOVE_WHILE_BORROWED.title == "CannotMoveWhileBorrowed"
	assert DiagnosticKind.DOUBLE_MOVE.code == "E_DOUBLE_MOVE"
	assert Diagnostic(message="x", kind=DiagnosticKind.BORROW_CONFLICT).code == "E_BORROW_CONFLICT"


def test_collector_dedupes_repeated_findings():
	diags = DiagnosticsCollector()
	point = ProgramPoint(4, Span(file="m.own", line=3))
	first = diags.report(DiagnosticKind.DOUBLE_MOVE, "again", phase="ownership", point=point, function="main", involved=["foo"])
	second = diags.report(DiagnosticKind.DOUBLE_MOVE, "again", phase="ownership", point=point, function="main", involved=["foo"])
	assert first is not None
	assert second is None
	assert len(diags) == 1
	assert diags.has_errors()


def test_collector_orders_by_function_then_point():
	diags = DiagnosticsCollector()
	diags.report(DiagnosticKind.DOUBLE_MOVE, "b", phase="ownership", point=ProgramPoint(9), function="main")
	diags.report(DiagnosticKind.BORROW_CONFLICT, "a", phase="borrow", point=ProgramPoint(2), function="main")
	diags.report(DiagnosticKind.DANGLING_REFERENCE, "c", phase="lifetime", point=ProgramPoint(1), function="helper")
	assert [d.message for d in diags.diagnostics] == ["a", "b", "c"]
	assert [d.message for d in diags.by_kind(DiagnosticKind.DOUBLE_MOVE)] == ["b"]


def test_fatal_severity_marks_collector():
	diags = DiagnosticsCollector()
	diags.report(DiagnosticKind.REF_COUNT_UNDERFLOW, "lost", phase="drop", severity="fatal")
	assert diags.fatal


def test_to_dict_and_render():
	diag = Diagnostic(
		message="cannot move 'foo'",
		kind=DiagnosticKind.DOUBLE_MOVE,
		phase="ownership",
		span=Span(file="m.own", line=6, column=2),
		point=ProgramPoint(5),
		function="main",
		involved=["foo"],
		notes=["'foo' moved into 'bar1'"],
	)
	data = diag.to_dict()
	assert data["kind"] == "DoubleMove"
	assert data["location"] == {"file": "m.own", "line": 6, "column": 2, "function": "main", "point": 5}
	assert data["involved_identifiers"] == ["foo"]
	assert diag.render().splitlines() == [
		"m.own:6:2 in main at #5: error[DoubleMove]: cannot move 'foo'",
		"  note: 'foo' moved into 'bar1'",
	]


def test_unknown_span_renders_placeholder():
	assert Span().describe() == "<model>"
	assert Span(file="a.own", line=3).describe() == "a.own:3"
