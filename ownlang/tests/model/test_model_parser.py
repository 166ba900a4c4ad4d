#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Text model dump parser: declarations, statements, expressions, and errors."""

import pytest

from ownlang.ownck import ModelError, parse_model
from ownlang.ownck.core.types_core import TypeKind
from ownlang.ownck.model import nodes as P


def test_parses_types_and_functions():
	prog = parse_model(
		"""
		struct Inner { v: Int }
		copy struct Point { x: Int, y: Int }
		enum Shape { Dot, Circle(Inner), Pair(Point, Point) }
		fn get_inner(foo: &Foo) -> &Inner {
			return &foo.inner;
		}
		struct Foo { inner: Inner, tag: Int }
		""",
		name="demo",
	)
	assert prog.name == "demo"
	types = prog.types
	foo = types.get(types.lookup("Foo"))
	assert foo.kind is TypeKind.STRUCT
	assert [name for name, _ in foo.fields] == ["inner", "tag"]
	assert types.is_copy(types.lookup("Point"))
	assert not types.is_copy(types.lookup("Inner"))
	shape = types.get(types.lookup("Shape"))
	assert [name for name, _ in shape.variants] == ["Dot", "Circle", "Pair"]
	assert len(dict(shape.variants)["Pair"]) == 2

	(fn,) = prog.functions
	assert fn.name == "get_inner"
	assert [p.name for p in fn.params] == ["foo"]
	assert types.is_ref(fn.params[0].ty)
	assert types.get(fn.return_type).name == "&Inner"
	(ret,) = fn.body.statements
	assert isinstance(ret, P.PReturn)
	assert isinstance(ret.value, P.PBorrow)
	assert isinstance(ret.value.subject, P.PField)
	assert ret.value.subject.name == "inner"


def test_spans_carry_file_and_line():
	prog = parse_model("fn main() {\n\tlet x = 1;\n}\n", filename="m.own")
	(stmt,) = prog.functions[0].body.statements
	assert stmt.loc.file == "m.own"
	assert stmt.loc.line == 2


def test_reference_and_rc_types():
	prog = parse_model(
		"""
		struct Foo { tag: Int }
		fn f(a: &mut Foo, b: Rc<Foo>, c: Arc<Foo>, d: &'a Foo) {
		}
		"""
	)
	types = prog.types
	a, b, c, d = prog.functions[0].params
	assert types.is_mut_ref(a.ty)
	assert types.is_rc(b.ty) and not types.get(b.ty).thread_safe
	assert types.is_rc(c.ty) and types.get(c.ty).thread_safe
	assert types.is_ref(d.ty) and not types.is_mut_ref(d.ty)


def test_return_lifetime_annotation():
	prog = parse_model(
		"""
		struct Foo { tag: Int }
		fn pick(a: &Foo, b: &Foo) -> &'b Foo {
			return b;
		}
		"""
	)
	assert prog.functions[0].return_lifetime == "b"


def test_extern_declaration_has_no_body():
	prog = parse_model("struct Foo { tag: Int }\nfn sink(f: Foo);\n")
	assert prog.functions[0].body is None


def test_statement_forms():
	prog = parse_model(
		"""
		struct Foo { tag: Int }
		fn main() {
			let mut foo = Foo { tag: 1 };
			let later: Foo;
			foo.tag = 2;
			if (foo.tag == 2) {
				let a = 1;
			} else if (true) {
				let b = 2;
			}
			loop {
				return;
			}
			{
				let c = "x";
			}
		}
		"""
	)
	stmts = prog.functions[0].body.statements
	assert [type(s).__name__ for s in stmts] == ["PLet", "PLet", "PAssign", "PIf", "PLoop", "PBlock"]
	assert stmts[0].mutable
	assert stmts[1].value is None and stmts[1].ty is not None
	assert isinstance(stmts[2].target, P.PField)
	cond = stmts[3].cond
	assert isinstance(cond, P.PBinary) and cond.op == "=="
	# `else if` becomes a block holding the nested if
	(nested,) = stmts[3].else_block.statements
	assert isinstance(nested, P.PIf)
	assert stmts[5].statements[0].value.value == "x"


def test_expression_forms():
	prog = parse_model(
		"""
		struct Foo { tag: Int }
		enum Opt { Some(Foo), None }
		fn main() {
			let a = rc(Foo { tag: 1 });
			let b = arc(Foo { tag: 2 });
			let c = clone a;
			let d = move b;
			let e = Opt::Some(Foo { tag: 3 });
			let f = Opt::None;
			let g = helper(1, false, ());
			let h = spawn [x, move y, ref z, mut w] {
			};
			join h;
			let m = &mut g;
		}
		"""
	)
	values = [s.value if isinstance(s, P.PLet) else s.expr for s in prog.functions[0].body.statements]
	a, b, c, d, e, f, g, h, j, m = values
	assert isinstance(a, P.PRcNew) and not a.thread_safe
	assert isinstance(b, P.PRcNew) and b.thread_safe
	assert isinstance(c, P.PClone)
	assert isinstance(d, P.PMove)
	assert isinstance(e, P.PEnumInit) and e.variant == "Some" and len(e.args) == 1
	assert isinstance(f, P.PEnumInit) and f.args == []
	assert isinstance(g, P.PCall) and [arg.value for arg in g.args] == [1, False, None]
	assert isinstance(h, P.PSpawn)
	assert [(cap.name, cap.mode) for cap in h.captures] == [
		("x", P.CaptureMode.MOVE),
		("y", P.CaptureMode.MOVE),
		("z", P.CaptureMode.SHARED),
		("w", P.CaptureMode.MUT),
	]
	assert isinstance(j, P.PJoin)
	assert isinstance(m, P.PBorrow) and m.is_mut


def test_comments_are_ignored():
	prog = parse_model("// header\nfn main() { // trailing\n\tlet x = 1; // note\n}\n")
	assert len(prog.functions[0].body.statements) == 1


def test_syntax_error_is_model_error_with_location():
	with pytest.raises(ModelError) as exc:
		parse_model("fn main() {\n\tlet = 1;\n}\n", filename="bad.own")
	assert "syntax error" in str(exc.value)
	assert exc.value.loc.file == "bad.own"
	assert exc.value.loc.line == 2


def test_unknown_type_is_model_error():
	with pytest.raises(ModelError) as exc:
		parse_model("struct Foo { inner: Missing }\n")
	assert "Missing" in str(exc.value)


def test_recursive_type_is_model_error():
	with pytest.raises(ModelError) as exc:
		parse_model("struct Node { next: Node }\n")
	assert "recursive" in str(exc.value)


def test_duplicate_declarations_are_model_errors():
	with pytest.raises(ModelError):
		parse_model("struct Foo { a: Int }\nstruct Foo { b: Int }\n")
	with pytest.raises(ModelError):
		parse_model("fn main() {\n}\nfn main() {\n}\n")
	with pytest.raises(ModelError):
		parse_model("struct Int { a: Bool }\n")


def test_assignment_target_must_be_a_place():
	with pytest.raises(ModelError):
		parse_model("fn main() {\n\tf() = 1;\n}\n")
