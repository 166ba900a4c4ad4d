#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""JSON model loader and file dispatch."""

import json

import pytest

from ownlang.ownck import DiagnosticKind, ModelError, load_model_file, load_model_json, verify_program
from ownlang.ownck.model import nodes as P


def _double_move_model() -> dict:
	return {
		"name": "double-move",
		"types": [
			{"kind": "struct", "name": "Foo", "fields": [{"name": "tag", "type": "Int"}]},
		],
		"functions": [
			{
				"name": "main",
				"params": [],
				"body": [
					{
						"kind": "let",
						"name": "foo",
						"value": {"kind": "struct", "name": "Foo", "fields": {"tag": {"kind": "lit", "value": 1}}},
						"line": 2,
					},
					{"kind": "let", "name": "bar1", "value": {"kind": "var", "name": "foo"}, "line": 3},
					{"kind": "let", "name": "bar2", "value": {"kind": "var", "name": "foo"}, "line": 4, "column": 2},
				],
			}
		],
	}


def test_loads_and_verifies_json_model():
	prog = load_model_json(_double_move_model(), filename="m.json")
	assert prog.name == "double-move"
	res = verify_program(prog)
	assert [d.kind for d in res.diagnostics] == [DiagnosticKind.DOUBLE_MOVE]
	loc = res.diagnostics[0].location()
	assert (loc["file"], loc["line"], loc["column"]) == ("m.json", 4, 2)


def test_statement_and_expression_kinds():
	data = {
		"types": [
			{"kind": "struct", "name": "Foo", "copy": False, "fields": [{"name": "tag", "type": "Int"}]},
			{"kind": "enum", "name": "Opt", "variants": [{"name": "Some", "payload": ["Foo"]}, {"name": "None"}]},
		],
		"functions": [
			{
				"name": "get",
				"params": [{"name": "a", "type": "&Foo"}, {"name": "b", "type": "&Foo"}],
				"returns": "&Foo",
				"return_lifetime": "a",
				"body": [{"kind": "return", "value": {"kind": "var", "name": "a"}}],
			},
			{"name": "sink", "params": [{"name": "f", "type": "Foo"}], "body": None},
			{
				"name": "main",
				"body": [
					{"kind": "let", "name": "x", "mutable": True, "value": {"kind": "rc", "thread_safe": True, "value": {"kind": "struct", "name": "Foo", "fields": {"tag": {"kind": "lit", "value": 1}}}}},
					{"kind": "let", "name": "y", "type": "Foo"},
					{"kind": "assign", "target": {"kind": "var", "name": "y"}, "value": {"kind": "enum", "enum": "Opt", "variant": "None"}},
					{"kind": "if", "cond": {"kind": "binary", "op": "<", "left": {"kind": "lit", "value": 1}, "right": {"kind": "lit", "value": 2}}, "then": [], "else": [{"kind": "expr", "expr": {"kind": "clone", "subject": {"kind": "var", "name": "x"}}}]},
					{"kind": "loop", "body": [{"kind": "return"}]},
					{"kind": "block", "body": [{"kind": "expr", "expr": {"kind": "borrow", "mut": True, "subject": {"kind": "field", "subject": {"kind": "var", "name": "x"}, "name": "tag"}}}]},
					{"kind": "expr", "expr": {"kind": "join", "handle": {"kind": "spawn", "captures": [{"name": "x"}, {"name": "y", "mode": "ref"}], "body": []}}},
					{"kind": "expr", "expr": {"kind": "call", "fn": "sink", "args": [{"kind": "move", "subject": {"kind": "var", "name": "y"}}]}},
				],
			},
		],
	}
	prog = load_model_json(data)
	fns = prog.function_map()
	assert fns["get"].return_lifetime == "a"
	assert fns["sink"].body is None
	stmts = fns["main"].body.statements
	assert [type(s).__name__ for s in stmts] == ["PLet", "PLet", "PAssign", "PIf", "PLoop", "PBlock", "PExprStmt", "PExprStmt"]
	assert stmts[0].mutable and stmts[0].value.thread_safe
	assert stmts[3].then_block.statements == []
	assert stmts[5].statements[0].expr.is_mut
	spawn = stmts[6].expr.handle
	assert [c.mode for c in spawn.captures] == [P.CaptureMode.MOVE, P.CaptureMode.SHARED]


def test_missing_key_is_model_error():
	data = _double_move_model()
	del data["functions"][0]["body"][1]["name"]
	with pytest.raises(ModelError) as exc:
		load_model_json(data)
	assert "missing 'name'" in str(exc.value)


def test_unknown_kinds_are_model_errors():
	with pytest.raises(ModelError):
		load_model_json({"functions": [{"name": "f", "body": [{"kind": "goto"}]}]})
	with pytest.raises(ModelError):
		load_model_json({"functions": [{"name": "f", "body": [{"kind": "expr", "expr": {"kind": "yield"}}]}]})
	with pytest.raises(ModelError):
		load_model_json({"types": [{"kind": "union", "name": "U"}]})


def test_bad_type_spelling_is_model_error():
	with pytest.raises(ModelError):
		load_model_json({"functions": [{"name": "f", "params": [{"name": "a", "type": "&&"}], "body": []}]})
	with pytest.raises(ModelError):
		load_model_json({"functions": [{"name": "f", "params": [{"name": "a", "type": "Nope"}], "body": []}]})


def test_top_level_must_be_an_object():
	with pytest.raises(ModelError):
		load_model_json([1, 2, 3])


def test_file_dispatch_by_suffix(tmp_path):
	json_path = tmp_path / "m.json"
	json_path.write_text(json.dumps(_double_move_model()))
	text_path = tmp_path / "m.own"
	text_path.write_text("struct Foo { tag: Int }\nfn main() {\n\tlet foo = Foo { tag: 1 };\n}\n")
	assert load_model_file(json_path).name == "double-move"
	prog = load_model_file(text_path)
	assert prog.name == str(text_path)
	assert prog.functions[0].loc.file == str(text_path)


def test_invalid_json_file_is_model_error(tmp_path):
	path = tmp_path / "broken.json"
	path.write_text('{"functions": [\n')
	with pytest.raises(ModelError) as exc:
		load_model_file(path)
	assert exc.value.loc.file == str(path)
	assert exc.value.loc.line == 2


def test_missing_file_is_model_error(tmp_path):
	with pytest.raises(ModelError) as exc:
		load_model_file(tmp_path / "absent.own")
	assert "cannot read" in str(exc.value)
