#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Verification pass: walk each function body and drive every checking stage.

Scope:
- Structured forward dataflow over the Program Model (no CFG is needed: the
  model only has blocks, if/else, loops, and early returns).
- Per statement: ownership (moves, partial moves, moved-out uses), borrows
  (loans and the aliasing invariant), lifetimes (stores, returns, spawn
  captures), and at every scope exit the drop schedule.
- Branches are walked on copies of the state and joined with
  `merge_place_state`; loop bodies are walked `loop_iterations` times so a
  move on the back edge reaches the loop head.
- Program points, scopes, bindings, and values are memoized per model node
  so re-walking a loop body yields the same identities, and the collector
  collapses the repeated findings.

The pass is batch-mode: every finding goes to the DiagnosticsCollector and
the walk continues. Only `RefCountUnderflow` stops a run.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from itertools import count
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .borrow_checker import BorrowChecker, Loan, LoanKind
from .core.config import VerifierConfig
from .core.diagnostics import Diagnostic, DiagnosticKind, DiagnosticsCollector
from .core.errors import ModelError, RefCountUnderflow
from .core.span import ProgramPoint, Span
from .core.types_core import TypeId, TypeKind
from .drops import DropEvent, DropReason, DropScheduler, acquire
from .lifetimes import FnLifetimeSummary, LifetimeResolver, Region
from .model import nodes as P
from .ownership import MoveEvent, OwnerSlot, OwnershipLedger, OwnershipTracker, SlotKind, ValueId
from .places import Place, PlaceBase, PlaceKind, PlaceState, merge_place_state, place_from_expr
from .scopes import FlowState, Scope, ScopeKind, Variable

logger = logging.getLogger(__name__)

_BOOL_OPS = {"==", "!=", "<", "<=", ">", ">=", "&&", "||", "and", "or"}


@dataclass
class Operand:
	"""Result of evaluating an expression: its type, the value it yields, and the loans it carries."""

	ty: Optional[TypeId]
	value: Optional[ValueId] = None
	loans: List[int] = field(default_factory=list)


@dataclass
class _Unit:
	"""The function (or spawned unit) a statement belongs to."""

	name: str
	root: Scope
	summary: Optional[FnLifetimeSummary] = None
	unit_root: Optional[Scope] = None  # set inside spawn bodies


@dataclass
class VerificationResult:
	"""Everything one verification run produced."""

	program: str
	diagnostics: List[Diagnostic]
	moves: List[MoveEvent] = field(default_factory=list)
	borrows: List[Loan] = field(default_factory=list)
	drops: Dict[str, List[DropEvent]] = field(default_factory=dict)  # scope label -> events
	summaries: Dict[str, FnLifetimeSummary] = field(default_factory=dict)
	fatal: bool = False

	@property
	def ok(self) -> bool:
		return not self.diagnostics

	def drops_in(self, scope_label: str) -> List[DropEvent]:
		return list(self.drops.get(scope_label, []))

	def all_drops(self) -> List[DropEvent]:
		return [ev for events in self.drops.values() for ev in events]

	def to_dict(self, *, include_drops: bool = False) -> dict:
		out = {
			"program": self.program,
			"ok": self.ok,
			"fatal": self.fatal,
			"diagnostics": [d.to_dict() for d in self.diagnostics],
		}
		if include_drops:
			out["drops"] = {label: [ev.describe() for ev in events] for label, events in self.drops.items()}
		return out


class OwnershipVerifier:
	"""One verification run over one Program."""

	def __init__(
		self,
		program: P.Program,
		*,
		config: Optional[VerifierConfig] = None,
		annotations: Optional[Mapping[str, str]] = None,
	) -> None:
		self.program = program
		# Interning during the walk goes to a private table; the model stays untouched.
		self.types = program.types.fork()
		self.config = config or VerifierConfig()
		self.diagnostics = DiagnosticsCollector()
		self.ledger = OwnershipLedger()
		self.tracker = OwnershipTracker(self.ledger, self.diagnostics, copy_moves=self.config.copy_moves)
		self.borrows = BorrowChecker(self.diagnostics)
		self.lifetimes = LifetimeResolver(
			self.types,
			self.diagnostics,
			policy=self.config.lifetime_policy,
			annotations=annotations,
		)
		self.drops = DropScheduler(self.types, self.ledger)
		self._functions = program.function_map()
		self._scope_ids = count(1)
		self._base_ids = count(1)
		self._scopes: Dict[int, Scope] = {}
		self._labels: Dict[int, str] = {}
		self._bases: Dict[int, PlaceBase] = {}
		self._vars: Dict[PlaceBase, Variable] = {}
		self._points: Dict[tuple, ProgramPoint] = {}
		self._point_ids = count(1)
		self._fn_name: Optional[str] = None

	# Driver

	def run(self) -> VerificationResult:
		summaries = self.lifetimes.resolve_signatures(self.program)
		fatal = False
		try:
			for fn in self.program.functions:
				if fn.body is not None:
					self._check_function(fn)
		except RefCountUnderflow as err:
			fatal = True
			self.diagnostics.add(
				Diagnostic(
					message=f"internal error: {err}",
					kind=DiagnosticKind.REF_COUNT_UNDERFLOW,
					phase="drop",
					severity="fatal",
					function=self._fn_name,
					involved=(f"allocation#{err.allocation}",),
					notes=["this is a verifier bug; analysis was stopped"],
				)
			)
			logger.error("verification of %s aborted: %s", self.program.name, err)
		drops = {
			self._labels[sid]: list(events)
			for sid, events in sorted(self.drops.schedules.items())
		}
		return VerificationResult(
			program=self.program.name,
			diagnostics=self.diagnostics.diagnostics,
			moves=list(self.ledger.moves),
			borrows=self.borrows.borrows,
			drops=drops,
			summaries=dict(summaries),
			fatal=fatal,
		)

	def _check_function(self, fn: P.PFunction) -> None:
		assert fn.body is not None
		logger.debug("verifying function %s", fn.name)
		self._fn_name = fn.name
		self._points = {}
		self._point_ids = count(1)
		root = self._scope(fn, ScopeKind.FUNCTION, None)
		entry = self._point(fn, "entry")
		root.entry = entry
		state = FlowState()
		for param in fn.params:
			self._declare_param(state, param, root, entry)
		ctx = _Unit(name=fn.name, root=root, summary=self.lifetimes.summaries.get(fn.name))
		self._walk_statements(state, fn.body, root, ctx)
		if state.reachable:
			self._exit_scope(state, root, self._point(fn, "exit"))

	def _declare_param(self, state: FlowState, param: P.PParam, root: Scope, entry: ProgramPoint) -> None:
		if param.ty is None:
			raise ModelError(f"parameter '{param.name}' has no type", loc=param.loc)
		base = self._base(param, PlaceKind.PARAM, param.name)
		var = Variable(base, param.ty, param.mutable, root, len(root.variables), entry, is_param=True)
		self._declare(root, var)
		allocation = None
		if self.types.is_rc(param.ty):
			allocation = self.ledger.new_allocation(("param", id(param)))
			state.refcounts[allocation] = 0
			acquire(state.refcounts, allocation)
		owner = OwnerSlot(SlotKind.VAR, param.name)
		vid = self.ledger.new_value(("param", id(param)), param.ty, owner, entry, allocation=allocation)
		self.tracker.bind(state, base, vid, owner)
		if self.types.holds_refs(param.ty):
			kind = LoanKind.EXCLUSIVE if self.types.is_mut_ref(param.ty) else LoanKind.SHARED
			self.borrows.synthetic_loan(
				state,
				base,
				kind,
				scope_id=root.id,
				origin=entry,
				regions=(Region.of_param(param.name),),
			)

	# Identities

	def _point(self, node: object, tag: str = "") -> ProgramPoint:
		key = (id(node), tag)
		pt = self._points.get(key)
		if pt is None:
			pt = ProgramPoint(next(self._point_ids), Span.from_loc(getattr(node, "loc", None)))
			self._points[key] = pt
		return pt

	def _scope(self, node: object, kind: ScopeKind, parent: Optional[Scope]) -> Scope:
		scope = self._scopes.get(id(node))
		if scope is not None:
			scope.reset()
			return scope
		sid = next(self._scope_ids)
		fn = self._fn_name or "<program>"
		label = fn if kind is ScopeKind.FUNCTION else f"{fn}::{kind.name.lower()}{sid}"
		scope = Scope(
			id=sid,
			kind=kind,
			parent=parent,
			label=label,
			function=fn,
			depth=parent.depth + 1 if parent is not None else 0,
		)
		self._scopes[id(node)] = scope
		self._labels[sid] = label
		return scope

	def _base(self, node: object, kind: PlaceKind, name: str) -> PlaceBase:
		base = self._bases.get(id(node))
		if base is None:
			base = PlaceBase(kind, next(self._base_ids), name)
			self._bases[id(node)] = base
		return base

	def _declare(self, scope: Scope, var: Variable) -> None:
		scope.declare(var)
		self._vars[var.base] = var

	def _lookup(self, scope: Scope, name: str, loc: object = None) -> Variable:
		var = scope.lookup(name)
		if var is None:
			raise ModelError(f"unknown name '{name}' in '{scope.function}'", loc=loc)
		return var

	def _place(self, expr: P.PExpr, scope: Scope) -> Optional[Place]:
		return place_from_expr(expr, base_lookup=lambda name: self._lookup(scope, name, expr.loc).base)

	def _place_types(self, place: Place, loc: object = None) -> Tuple[List[TypeId], Optional[TypeId]]:
		"""Types along a place: every strict prefix, then the place itself."""
		ty = self._vars[place.base].ty
		chain: List[TypeId] = []
		for proj in place.projections:
			if ty is None:
				return chain, None
			chain.append(ty)
			fty = self.types.field_type(ty, proj.name)
			if fty is None:
				target = self.types.get(self.types.deref(self.types.deref(ty)) or ty)
				if target.kind is TypeKind.STRUCT:
					raise ModelError(f"type '{target.name}' has no field '{proj.name}'", loc=loc)
				fty = self.types.ensure_unknown()
			ty = fty
		return chain, ty

	def _through_deref(self, chain: Sequence[TypeId]) -> Optional[TypeId]:
		"""The first reference or Rc type a place is reached through, if any."""
		for ty in chain:
			if self.types.get(ty).kind in (TypeKind.REF, TypeKind.RC):
				return ty
		return None

	def _regions_of(self, state: FlowState, place: Place) -> Tuple[Region, ...]:
		"""How long the data at `place` lives."""
		var = self._vars[place.base]
		chain, _ = self._place_types(place)
		if self.types.is_ref(var.ty) or any(self.types.is_ref(t) for t in chain):
			regions = tuple(r for ln in self.borrows.carried_by(state, var.base) for r in ln.regions)
			return regions or (Region.static(),)
		return (Region.of_scope(var.scope, var.seq, var.name),)

	def _loan_regions(self, state: FlowState, loan_ids: Iterable[int]) -> List[Tuple[Region, str]]:
		out = []
		for lid in loan_ids:
			ln = state.loans.get(lid)
			if ln is None:
				continue
			for region in ln.regions:
				out.append((region, region.name or ln.place.base.name.lstrip("*")))
		return out

	# Statements

	def _walk_block(self, state: FlowState, block: P.PBlock, parent: Scope, ctx: _Unit, kind: ScopeKind = ScopeKind.BLOCK) -> None:
		scope = self._scope(block, kind, parent)
		scope.entry = self._point(block, "enter")
		self._walk_statements(state, block, scope, ctx)
		if state.reachable:
			self._exit_scope(state, scope, self._point(block, "exit"))

	def _walk_statements(self, state: FlowState, block: P.PBlock, scope: Scope, ctx: _Unit) -> None:
		for stmt in block.statements:
			if not state.reachable:
				break
			self._stmt(state, stmt, scope, ctx)

	def _exit_scope(self, state: FlowState, scope: Scope, point: ProgramPoint) -> None:
		scope.exit = point
		self.drops.schedule_scope_exit(state, scope, point, self.tracker.state_of)
		self.borrows.end_scope(state, scope.id, [v.base for v in scope.variables])
		for var in scope.variables:
			self.tracker.forget(state, var.base)
		logger.debug("exit %s at %s", scope.label, point)

	def _stmt(self, state: FlowState, stmt: P.PStmt, scope: Scope, ctx: _Unit) -> None:
		if isinstance(stmt, P.PLet):
			self._let(state, stmt, scope, ctx)
		elif isinstance(stmt, P.PAssign):
			self._assign(state, stmt, scope, ctx)
		elif isinstance(stmt, P.PExprStmt):
			self._expr_stmt(state, stmt, scope, ctx)
		elif isinstance(stmt, P.PReturn):
			self._return(state, stmt, scope, ctx)
		elif isinstance(stmt, P.PIf):
			self._if(state, stmt, scope, ctx)
		elif isinstance(stmt, P.PLoop):
			self._loop(state, stmt, scope, ctx)
		elif isinstance(stmt, P.PBlock):
			self._walk_block(state, stmt, scope, ctx)
		else:
			raise ModelError(f"unsupported statement {type(stmt).__name__}", loc=getattr(stmt, "loc", None))

	def _let(self, state: FlowState, stmt: P.PLet, scope: Scope, ctx: _Unit) -> None:
		point = self._point(stmt)
		base = self._base(stmt, PlaceKind.LOCAL, stmt.name)
		owner = OwnerSlot(SlotKind.VAR, stmt.name)
		if stmt.value is None:
			if stmt.ty is None:
				raise ModelError(f"'let {stmt.name}' needs a type or an initializer", loc=stmt.loc)
			var = Variable(base, stmt.ty, stmt.mutable, scope, len(scope.variables), point)
			self._declare(scope, var)
			self.tracker.declare_uninit(state, base)
			return
		op = self._eval(state, stmt.value, scope, ctx, owner)
		ty = stmt.ty if stmt.ty is not None else op.ty
		var = Variable(base, ty, stmt.mutable, scope, len(scope.variables), point)
		self._declare(scope, var)
		vid = op.value
		if vid is None and self.types.needs_drop(ty):
			vid = self.ledger.new_value(("let", id(stmt)), ty, owner, point)
		self.tracker.bind(state, base, vid, owner)
		self._hold(state, op.loans, var, (Region.of_scope(scope, var.seq, var.name),), point, ctx)
		self.borrows.end_statement(state)

	def _hold(
		self,
		state: FlowState,
		loan_ids: Sequence[int],
		var: Variable,
		holder_regions: Sequence[Region],
		point: ProgramPoint,
		ctx: _Unit,
	) -> None:
		"""Hand the loans an expression produced to the binding that now carries them."""
		if not loan_ids:
			return
		for ln in self.borrows.rehome(state, loan_ids, var.base, var.scope.id):
			referent = ln.place.base.name.lstrip("*")
			for holder in holder_regions:
				if not self.lifetimes.check_store(
					ln.regions,
					holder,
					referent=referent,
					holder_name=var.name,
					point=point,
					function=ctx.name,
				):
					break

	def _assign(self, state: FlowState, stmt: P.PAssign, scope: Scope, ctx: _Unit) -> None:
		point = self._point(stmt)
		place = self._place(stmt.target, scope)
		if place is None:
			raise ModelError("assignment target is not a place", loc=stmt.loc)
		var = self._vars[place.base]
		slot = OwnerSlot(SlotKind.FIELD if place.projections else SlotKind.VAR, place.describe())
		op = self._eval(state, stmt.value, scope, ctx, slot)
		chain, _ = self._place_types(place, stmt.loc)
		self.borrows.check_write(state, place, point, function=ctx.name)
		self._check_mutable(state, place, var, chain, point, ctx, borrow=False)
		through = self._through_deref(chain)

		for prefix in place.prefixes():
			prefix_state = state.place_states.get(prefix)
			if prefix_state is not None and prefix_state in (PlaceState.MOVED, PlaceState.MAYBE_MOVED):
				self.diagnostics.report(
					DiagnosticKind.USE_OF_MOVED_VALUE,
					f"cannot assign to '{place.describe()}': '{prefix.describe()}' was moved",
					phase="ownership",
					point=point,
					function=ctx.name,
					involved=(place.describe(),),
				)
				self.borrows.end_statement(state)
				return

		if through is None:
			old_state = self.tracker.state_of(state, place)
			if old_state in (PlaceState.VALID, PlaceState.MAYBE_MOVED, PlaceState.MAYBE_INIT):
				old = self.tracker.value_of(state, place, self.types.field_type)
				if old is not None and old != op.value:
					self.drops.drop_value(
						state,
						old,
						owner=place.describe(),
						scope_id=var.scope.id,
						point=point,
						reason=DropReason.OVERWRITE,
						conditional=old_state is not PlaceState.VALID,
						place=place,
						state_of=self.tracker.state_of,
					)

		if place.projections:
			self.tracker.reinit(state, place)
			if through is None:
				self.tracker.store_field(state, place, op.value, self.types.field_type)
		else:
			self.borrows.release(state, [ln.id for ln in self.borrows.carried_by(state, var.base)])
			vid = op.value
			if vid is None and self.types.needs_drop(var.ty):
				vid = self.ledger.new_value(("assign", id(stmt)), var.ty, slot, point)
			self.tracker.bind(state, var.base, vid, slot)

		if through is not None:
			holder_regions = self._regions_of(state, Place(var.base, place.projections[:1])) if place.projections else ()
		else:
			holder_regions = (Region.of_scope(var.scope, var.seq, var.name),)
		self._hold(state, op.loans, var, holder_regions, point, ctx)
		self.borrows.end_statement(state)

	def _check_mutable(
		self,
		state: FlowState,
		place: Place,
		var: Variable,
		chain: Sequence[TypeId],
		point: ProgramPoint,
		ctx: _Unit,
		*,
		borrow: bool,
	) -> bool:
		action = "borrow" if borrow else "assign to"
		suffix = " as mutable" if borrow else ""
		through = self._through_deref(chain)
		if through is not None:
			if self.types.is_mut_ref(through):
				return True
			behind = "a reference-counted handle" if self.types.is_rc(through) else "a shared reference"
			msg = f"cannot {action} '{place.describe()}'{suffix}: it is behind {behind}"
		elif var.mutable:
			return True
		elif not borrow and not place.projections and self.tracker.is_uninit(state, place):
			# Deferred initialization of `let x: T;`.
			return True
		elif borrow:
			msg = f"cannot borrow '{place.describe()}' as mutable: '{var.name}' is not declared mutable"
		elif place.projections:
			msg = f"cannot assign to '{place.describe()}': '{var.name}' is not declared mutable"
		else:
			msg = f"cannot assign twice to immutable variable '{var.name}'"
		self.diagnostics.report(
			DiagnosticKind.MUTABILITY_VIOLATION,
			msg,
			phase="ownership",
			point=point,
			function=ctx.name,
			involved=(place.describe(),),
		)
		return False

	def _expr_stmt(self, state: FlowState, stmt: P.PExprStmt, scope: Scope, ctx: _Unit) -> None:
		point = self._point(stmt)
		op = self._eval(state, stmt.expr, scope, ctx, OwnerSlot(SlotKind.TEMP, "_"))
		if isinstance(stmt.expr, P.PSpawn) and op.loans:
			self.lifetimes.check_detached(self._loan_regions(state, op.loans), point=point, function=ctx.name)
		if op.value is not None:
			self.drops.drop_value(
				state,
				op.value,
				owner="_",
				scope_id=scope.id,
				point=point,
				reason=DropReason.DISCARDED,
			)
		self.borrows.end_statement(state)

	def _return(self, state: FlowState, stmt: P.PReturn, scope: Scope, ctx: _Unit) -> None:
		point = self._point(stmt)
		if stmt.value is not None:
			op = self._eval(state, stmt.value, scope, ctx, OwnerSlot(SlotKind.RETURN, ctx.name))
			if op.loans:
				self.lifetimes.check_return(
					self._loan_regions(state, op.loans),
					ctx.summary,
					point=point,
					function=ctx.name,
					unit_root=ctx.unit_root,
				)
		for sc in scope.chain_to(ctx.root):
			self._exit_scope(state, sc, point)
		state.reachable = False

	def _if(self, state: FlowState, stmt: P.PIf, scope: Scope, ctx: _Unit) -> None:
		self._point(stmt)
		self._eval(state, stmt.cond, scope, ctx, OwnerSlot(SlotKind.TEMP, "cond"))
		self.borrows.end_statement(state)
		then_state = state.copy()
		self._walk_block(then_state, stmt.then_block, scope, ctx, ScopeKind.BRANCH)
		else_state = state.copy()
		if stmt.else_block is not None:
			self._walk_block(else_state, stmt.else_block, scope, ctx, ScopeKind.BRANCH)
		_replace_state(state, self._merge([then_state, else_state]))

	def _loop(self, state: FlowState, stmt: P.PLoop, scope: Scope, ctx: _Unit) -> None:
		self._point(stmt)
		entry = state.copy()
		current = state.copy()
		for _ in range(self.config.loop_iterations):
			body = current.copy()
			self._walk_block(body, stmt.body, scope, ctx, ScopeKind.LOOP)
			current = self._merge([entry, body])
		_replace_state(state, current)

	def _merge(self, states: Sequence[FlowState]) -> FlowState:
		live = [s for s in states if s.reachable]
		if not live:
			out = states[0].copy()
			out.reachable = False
			return out
		if len(live) == 1:
			return live[0].copy()
		out = FlowState()
		places = set()
		for s in live:
			places.update(s.place_states)
		for place in places:
			merged: Optional[PlaceState] = None
			for s in live:
				st = self.tracker.state_of(s, place)
				merged = st if merged is None else merge_place_state(merged, st)
			assert merged is not None
			out.place_states[place] = merged
		for s in live:
			for base, vid in s.bindings.items():
				out.bindings.setdefault(base, vid)
			out.loans.update(s.loans)
			for alloc, n in s.refcounts.items():
				out.refcounts[alloc] = max(n, out.refcounts.get(alloc, 0))
		return out

	# Expressions

	def _eval(self, state: FlowState, expr: P.PExpr, scope: Scope, ctx: _Unit, dest: OwnerSlot) -> Operand:
		if isinstance(expr, (P.PVar, P.PField)):
			place = self._place(expr, scope)
			if place is not None:
				return self._use_place(state, place, self._point(expr), ctx, dest, loc=expr.loc)
			assert isinstance(expr, P.PField)
			return self._temp_field(state, expr, scope, ctx, dest)
		if isinstance(expr, P.PLiteral):
			return self._literal(expr, dest)
		if isinstance(expr, P.PBinary):
			left = self._read(state, expr.left, scope, ctx)
			self._read(state, expr.right, scope, ctx)
			ty = self.types.ensure_bool() if expr.op in _BOOL_OPS else left.ty
			return Operand(ty)
		if isinstance(expr, P.PBorrow):
			return self._borrow(state, expr, scope, ctx)
		if isinstance(expr, P.PMove):
			return self._explicit_move(state, expr, scope, ctx, dest)
		if isinstance(expr, P.PClone):
			return self._clone(state, expr, scope, ctx, dest)
		if isinstance(expr, P.PStructInit):
			return self._struct_init(state, expr, scope, ctx, dest)
		if isinstance(expr, P.PEnumInit):
			return self._enum_init(state, expr, scope, ctx, dest)
		if isinstance(expr, P.PRcNew):
			return self._rc_new(state, expr, scope, ctx, dest)
		if isinstance(expr, P.PCall):
			return self._call(state, expr, scope, ctx, dest)
		if isinstance(expr, P.PSpawn):
			return self._spawn(state, expr, scope, ctx, dest)
		if isinstance(expr, P.PJoin):
			return self._join(state, expr, scope, ctx)
		raise ModelError(f"unsupported expression {type(expr).__name__}", loc=getattr(expr, "loc", None))

	def _use_place(
		self,
		state: FlowState,
		place: Place,
		point: ProgramPoint,
		ctx: _Unit,
		dest: OwnerSlot,
		*,
		loc: object = None,
	) -> Operand:
		"""By-value use of a place: a copy read for Copy types, a move otherwise."""
		_, ty = self._place_types(place, loc)
		if self.types.is_copy(ty):
			return self._copy_read(state, place, ty, point, ctx)
		return self._move_place(state, place, ty, point, ctx, dest)

	def _copy_read(self, state: FlowState, place: Place, ty: Optional[TypeId], point: ProgramPoint, ctx: _Unit) -> Operand:
		self.tracker.check_use(state, place, point, function=ctx.name)
		self.borrows.check_read(state, place, point, function=ctx.name)
		loans: List[int] = []
		if self.types.holds_refs(ty):
			loans = self.borrows.copy_to(state, self.borrows.carried_by(state, place.base))
		return Operand(ty, loans=loans)

	def _move_place(
		self,
		state: FlowState,
		place: Place,
		ty: Optional[TypeId],
		point: ProgramPoint,
		ctx: _Unit,
		dest: OwnerSlot,
	) -> Operand:
		if not self.tracker.check_move_source(state, place, point, function=ctx.name):
			return Operand(ty)
		chain, _ = self._place_types(place)
		through = self._through_deref(chain)
		if through is not None:
			behind = "a reference-counted handle" if self.types.is_rc(through) else "a reference"
			self.diagnostics.report(
				DiagnosticKind.MOVE_OUT_OF_BORROW,
				f"cannot move out of '{place.describe()}': it is behind {behind}",
				phase="ownership",
				point=point,
				function=ctx.name,
				involved=(place.describe(),),
				notes=["clone the value or borrow it instead"],
			)
			return Operand(ty)
		if not self.borrows.check_move(state, place, point, function=ctx.name):
			return Operand(ty)
		value = self.tracker.value_of(state, place, self.types.field_type)
		carried = self.borrows.carried_by(state, place.base)
		if place.projections:
			loans = self.borrows.copy_to(state, carried) if self.types.holds_refs(ty) else []
		else:
			loans = self.borrows.detach(state, [ln.id for ln in carried])
		self.tracker.record_move(state, place, value, dest, point)
		return Operand(ty, value, loans)

	def _read(self, state: FlowState, expr: P.PExpr, scope: Scope, ctx: _Unit) -> Operand:
		"""Operand of a comparison or arithmetic: places are read, never moved."""
		place = self._place(expr, scope) if isinstance(expr, (P.PVar, P.PField)) else None
		if place is None:
			return self._eval(state, expr, scope, ctx, OwnerSlot(SlotKind.TEMP, "_"))
		_, ty = self._place_types(place, expr.loc)
		return self._copy_read(state, place, ty, self._point(expr), ctx)

	def _temp_field(self, state: FlowState, expr: P.PField, scope: Scope, ctx: _Unit, dest: OwnerSlot) -> Operand:
		subject = self._eval(state, expr.subject, scope, ctx, OwnerSlot(SlotKind.TEMP, "_"))
		fty = self.types.field_type(subject.ty, expr.name)
		if fty is None:
			fty = self.types.ensure_unknown()
		if subject.value is None:
			return Operand(fty, loans=subject.loans)
		point = self._point(expr)
		taken: Tuple[str, ...] = ()
		field_value = None
		if self.types.needs_drop(fty):
			field_value = self.ledger.field_value(subject.value, expr.name, fty, point)
			taken = (expr.name,)
		# The temporary dies once its field has been read or moved out.
		self.drops.drop_value(
			state,
			subject.value,
			owner="_",
			scope_id=scope.id,
			point=point,
			reason=DropReason.DISCARDED,
			taken=taken,
		)
		return Operand(fty, field_value, subject.loans)

	def _literal(self, expr: P.PLiteral, dest: OwnerSlot) -> Operand:
		val = expr.value
		if isinstance(val, bool):
			return Operand(self.types.ensure_bool())
		if isinstance(val, int):
			return Operand(self.types.ensure_int())
		if val is None:
			return Operand(self.types.ensure_unit())
		if isinstance(val, str):
			ty = self.types.ensure_string()
			return Operand(ty, self.ledger.new_value(("lit", id(expr)), ty, dest, self._point(expr)))
		raise ModelError(f"unsupported literal {val!r}", loc=expr.loc)

	def _borrow(self, state: FlowState, expr: P.PBorrow, scope: Scope, ctx: _Unit) -> Operand:
		point = self._point(expr)
		place = self._place(expr.subject, scope)
		if place is None:
			inner = self._eval(state, expr.subject, scope, ctx, OwnerSlot(SlotKind.TEMP, "_"))
			ref_ty = self.types.ensure_ref(inner.ty, mut=expr.is_mut) if inner.ty is not None else None
			return Operand(ref_ty, loans=inner.loans)
		var = self._vars[place.base]
		chain, ty = self._place_types(place, expr.loc)
		ref_ty = self.types.ensure_ref(ty, mut=expr.is_mut) if ty is not None else None
		if not self.tracker.check_use(state, place, point, function=ctx.name):
			return Operand(ref_ty)
		if expr.is_mut and not self._check_mutable(state, place, var, chain, point, ctx, borrow=True):
			return Operand(ref_ty)
		loan = self.borrows.request(
			state,
			place,
			LoanKind.EXCLUSIVE if expr.is_mut else LoanKind.SHARED,
			scope_id=scope.id,
			origin=point,
			function=ctx.name,
			regions=self._regions_of(state, place),
		)
		return Operand(ref_ty, loans=[loan.id] if loan is not None else [])

	def _explicit_move(self, state: FlowState, expr: P.PMove, scope: Scope, ctx: _Unit, dest: OwnerSlot) -> Operand:
		place = self._place(expr.subject, scope)
		if place is None:
			return self._eval(state, expr.subject, scope, ctx, dest)
		point = self._point(expr)
		_, ty = self._place_types(place, expr.loc)
		if not self.types.is_copy(ty):
			return self._move_place(state, place, ty, point, ctx, dest)
		op = self._copy_read(state, place, ty, point, ctx)
		if self.tracker.copy_moves and not self.tracker.is_moved(state, place):
			self.tracker.record_move(state, place, self.tracker.value_of(state, place, self.types.field_type), dest, point)
		return op

	def _clone(self, state: FlowState, expr: P.PClone, scope: Scope, ctx: _Unit, dest: OwnerSlot) -> Operand:
		point = self._point(expr)
		place = self._place(expr.subject, scope)
		if place is None:
			src = self._eval(state, expr.subject, scope, ctx, OwnerSlot(SlotKind.TEMP, "_"))
			ty, source_value, loans = src.ty, src.value, src.loans
		else:
			_, ty = self._place_types(place, expr.loc)
			if not self.tracker.check_use(state, place, point, function=ctx.name):
				return Operand(ty)
			self.borrows.check_read(state, place, point, function=ctx.name)
			source_value = self.tracker.value_of(state, place, self.types.field_type)
			loans = []
			if self.types.holds_refs(ty):
				loans = self.borrows.copy_to(state, self.borrows.carried_by(state, place.base))
		if self.types.is_ref(ty) or self.types.is_copy(ty):
			return Operand(ty, loans=loans)
		allocation = None
		if self.types.is_rc(ty) and source_value is not None:
			allocation = self.ledger.values[source_value].allocation
			if allocation is not None:
				acquire(state.refcounts, allocation)
		vid = self.ledger.new_value(("clone", id(expr)), ty, dest, point, allocation=allocation)
		return Operand(ty, vid, loans)

	def _struct_init(self, state: FlowState, expr: P.PStructInit, scope: Scope, ctx: _Unit, dest: OwnerSlot) -> Operand:
		point = self._point(expr)
		ty = self.types.lookup(expr.name)
		if ty is None or self.types.get(ty).kind is not TypeKind.STRUCT:
			raise ModelError(f"unknown struct '{expr.name}'", loc=expr.loc)
		declared = {name for name, _ in self.types.get(ty).fields}
		vid = self.ledger.new_value(("struct", id(expr)), ty, dest, point)
		loans: List[int] = []
		fields: Dict[str, ValueId] = {}
		for fname, fexpr in expr.fields:
			if fname not in declared:
				raise ModelError(f"struct '{expr.name}' has no field '{fname}'", loc=expr.loc)
			op = self._eval(state, fexpr, scope, ctx, OwnerSlot(SlotKind.FIELD, f"{dest.name}.{fname}"))
			loans.extend(op.loans)
			if op.value is not None:
				fields[fname] = op.value
		self.ledger.values[vid].fields = fields
		return Operand(ty, vid, loans)

	def _enum_init(self, state: FlowState, expr: P.PEnumInit, scope: Scope, ctx: _Unit, dest: OwnerSlot) -> Operand:
		point = self._point(expr)
		ty = self.types.lookup(expr.enum)
		if ty is None or self.types.get(ty).kind is not TypeKind.ENUM:
			raise ModelError(f"unknown enum '{expr.enum}'", loc=expr.loc)
		variants = dict(self.types.get(ty).variants)
		if expr.variant not in variants:
			raise ModelError(f"enum '{expr.enum}' has no variant '{expr.variant}'", loc=expr.loc)
		loans: List[int] = []
		payload: Dict[str, ValueId] = {}
		for idx, arg in enumerate(expr.args):
			op = self._eval(state, arg, scope, ctx, OwnerSlot(SlotKind.FIELD, f"{dest.name}.{expr.variant}.{idx}"))
			loans.extend(op.loans)
			if op.value is not None:
				payload[str(idx)] = op.value
		if not self.types.needs_drop(ty):
			return Operand(ty, loans=loans)
		vid = self.ledger.new_value(("enum", id(expr)), ty, dest, point)
		self.ledger.values[vid].fields = payload
		return Operand(ty, vid, loans)

	def _rc_new(self, state: FlowState, expr: P.PRcNew, scope: Scope, ctx: _Unit, dest: OwnerSlot) -> Operand:
		point = self._point(expr)
		allocation = self.ledger.new_allocation(("rc", id(expr)))
		inner = self._eval(state, expr.value, scope, ctx, OwnerSlot(SlotKind.ALLOCATION, f"#{allocation}"))
		inner_ty = inner.ty if inner.ty is not None else self.types.ensure_unknown()
		ty = self.types.ensure_rc(inner_ty, thread_safe=expr.thread_safe)
		acquire(state.refcounts, allocation)
		vid = self.ledger.new_value(("rc", id(expr)), ty, dest, point, allocation=allocation)
		return Operand(ty, vid, inner.loans)

	def _call(self, state: FlowState, expr: P.PCall, scope: Scope, ctx: _Unit, dest: OwnerSlot) -> Operand:
		point = self._point(expr)
		callee = self._functions.get(expr.fn)
		if callee is not None and len(callee.params) != len(expr.args):
			raise ModelError(
				f"'{expr.fn}' takes {len(callee.params)} argument(s), {len(expr.args)} given",
				loc=expr.loc,
			)
		arg_loans: List[List[int]] = []
		for idx, arg in enumerate(expr.args):
			pname = callee.params[idx].name if callee is not None else str(idx)
			slot = OwnerSlot(SlotKind.CALL, f"{expr.fn}.{pname}")
			op = self._eval(state, arg, scope, ctx, slot)
			arg_loans.append(op.loans)
			if op.value is not None:
				self.drops.drop_value(
					state,
					op.value,
					owner=slot.describe(),
					scope_id=scope.id,
					point=point,
					reason=DropReason.CONSUMED,
				)
		if callee is None:
			logger.debug("opaque call to %s at %s", expr.fn, point)
			return Operand(self.types.ensure_unknown())
		ret_ty = callee.return_type if callee.return_type is not None else self.types.ensure_unit()
		loans: List[int] = []
		summary = self.lifetimes.summaries.get(expr.fn)
		if summary is not None and summary.returns_ref:
			if summary.source_param is not None:
				idx = [p.name for p in callee.params].index(summary.source_param)
				loans = list(arg_loans[idx])
			elif summary.ambiguous:
				loans = [lid for ids in arg_loans for lid in ids]
		if not self.types.needs_drop(ret_ty):
			return Operand(ret_ty, loans=loans)
		allocation = None
		if self.types.is_rc(ret_ty):
			allocation = self.ledger.new_allocation(("call", id(expr)))
			acquire(state.refcounts, allocation)
		vid = self.ledger.new_value(("call", id(expr)), ret_ty, dest, point, allocation=allocation)
		return Operand(ret_ty, vid, loans)

	# Concurrency

	def _spawn(self, state: FlowState, expr: P.PSpawn, scope: Scope, ctx: _Unit, dest: OwnerSlot) -> Operand:
		point = self._point(expr)
		unit = self._scope(expr, ScopeKind.SPAWN, scope)
		unit.entry = point
		body_state = FlowState(refcounts=state.refcounts)
		handle_loans: List[int] = []
		for cap in expr.captures:
			var = self._lookup(scope, cap.name, cap.loc)
			cap_point = self._point(cap)
			captured = self._capture(state, body_state, cap, var, unit, cap_point, ctx)
			if captured is not None:
				handle_loans.extend(captured)
		logger.debug("spawn %s at %s", unit.label, point)
		unit_ctx = _Unit(name=ctx.name, root=unit, unit_root=unit)
		self._walk_block(body_state, expr.body, unit, unit_ctx)
		if body_state.reachable:
			self._exit_scope(body_state, unit, self._point(expr, "unit-exit"))
		handle_ty = self.types.ensure_handle()
		vid = self.ledger.new_value(("spawn", id(expr)), handle_ty, dest, point)
		return Operand(handle_ty, vid, handle_loans)

	def _capture(
		self,
		state: FlowState,
		body_state: FlowState,
		cap: P.PCapture,
		var: Variable,
		unit: Scope,
		point: ProgramPoint,
		ctx: _Unit,
	) -> Optional[List[int]]:
		"""Transfer or lend one variable to a spawned unit; returns the loans its handle keeps."""
		place = Place(var.base)
		base = self._base(cap, PlaceKind.CAPTURE, var.name)
		owner = OwnerSlot(SlotKind.VAR, var.name)
		if cap.mode is P.CaptureMode.MUT or (cap.mode is P.CaptureMode.MOVE and self.types.holds_mut_refs(var.ty)):
			if cap.mode is P.CaptureMode.MUT:
				what = "mutable borrow of"
			elif self.types.is_mut_ref(var.ty):
				what = "mutable reference"
			else:
				what = "value holding a mutable reference"
			self.diagnostics.report(
				DiagnosticKind.MUTABLE_BORROW_ACROSS_SPAWN,
				f"cannot pass {what} '{var.name}' to a spawned unit",
				phase="concurrency",
				point=point,
				function=ctx.name,
				involved=(var.name,),
				notes=["only shared, immutable access may cross a spawn boundary"],
			)
			return self._reject_capture(body_state, base, var, unit, point)
		if not self.types.is_thread_safe(var.ty):
			ty_name = self.types.get(var.ty).name if var.ty is not None else "Unknown"
			self.diagnostics.report(
				DiagnosticKind.NON_THREAD_SAFE_SHARE,
				f"'{var.name}' of type {ty_name} cannot be shared with a spawned unit safely",
				phase="concurrency",
				point=point,
				function=ctx.name,
				involved=(var.name,),
				notes=["use a thread-safe reference-counted handle (arc)"],
			)
			return self._reject_capture(body_state, base, var, unit, point)
		if cap.mode is P.CaptureMode.MOVE:
			op = self._use_place(state, place, point, ctx, OwnerSlot(SlotKind.SPAWN, unit.label))
			inner = Variable(base, var.ty, var.mutable, unit, len(unit.variables), point)
			self._declare(unit, inner)
			self.tracker.bind(body_state, base, op.value, owner)
			return op.loans
		if not self.tracker.check_use(state, place, point, function=ctx.name):
			return self._reject_capture(body_state, base, var, unit, point)
		loan = self.borrows.request(
			state,
			place,
			LoanKind.SHARED,
			scope_id=var.scope.id,
			origin=point,
			function=ctx.name,
			regions=self._regions_of(state, place),
		)
		ref_ty = self.types.ensure_ref(var.ty) if var.ty is not None else None
		inner = Variable(base, ref_ty, False, unit, len(unit.variables), point)
		self._declare(unit, inner)
		self.tracker.bind(body_state, base, None, owner)
		return [loan.id] if loan is not None else None

	def _reject_capture(self, body_state: FlowState, base: PlaceBase, var: Variable, unit: Scope, point: ProgramPoint) -> None:
		"""Keep a rejected capture visible in the unit so its body can still be checked."""
		inner = Variable(base, var.ty, var.mutable, unit, len(unit.variables), point)
		self._declare(unit, inner)
		self.tracker.bind(body_state, base, None, OwnerSlot(SlotKind.VAR, var.name))
		return None

	def _join(self, state: FlowState, expr: P.PJoin, scope: Scope, ctx: _Unit) -> Operand:
		op = self._eval(state, expr.handle, scope, ctx, OwnerSlot(SlotKind.JOIN, "join"))
		self.borrows.release(state, op.loans)
		return Operand(self.types.ensure_unit())


def _replace_state(dst: FlowState, src: FlowState) -> None:
	dst.place_states = src.place_states
	dst.bindings = src.bindings
	dst.loans = src.loans
	dst.refcounts = src.refcounts
	dst.reachable = src.reachable


def verify_program(
	program: P.Program,
	*,
	config: Optional[VerifierConfig] = None,
	annotations: Optional[Mapping[str, str]] = None,
) -> VerificationResult:
	"""
	Verify one Program Model.

	Semantic violations come back as diagnostics on the result; this raises
	only for malformed models (`ModelError`).
	"""
	return OwnershipVerifier(program, config=config, annotations=annotations).run()


def verify_many(
	programs: Iterable[P.Program],
	*,
	jobs: int = 1,
	config: Optional[VerifierConfig] = None,
) -> List[VerificationResult]:
	"""Verify independent models, optionally on a thread pool; results keep input order."""
	work = list(programs)
	if jobs <= 1 or len(work) <= 1:
		return [verify_program(p, config=config) for p in work]
	results: List[Optional[VerificationResult]] = [None] * len(work)
	with ThreadPoolExecutor(max_workers=jobs) as executor:
		futures = {executor.submit(verify_program, p, config=config): idx for idx, p in enumerate(work)}
		for future in as_completed(futures):
			results[futures[future]] = future.result()
	return [r for r in results if r is not None]


__all__ = [
	"Operand",
	"VerificationResult",
	"OwnershipVerifier",
	"verify_program",
	"verify_many",
]
