#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lifetime resolution: regions, outlives checks, and return-lifetime summaries.

A `Region` says how long a referent lives:
  * SCOPE(scope, seq): a binding declared at position `seq` of `scope`; it
    dies when the scope exits, after everything declared later in it.
  * PARAM(name): data the caller lent through parameter `name`; outlives
    every scope of the function. Two PARAM regions are unrelated unless they
    name the same parameter.
  * STATIC: lives forever (literals, references of unknown provenance).

Rule: a reference into a referent is well-formed only if the referent's
region outlives the region of every holder of the reference. Returned
references must point at caller-lent data; a reference into a function
local is a DanglingReference.

Before bodies are walked, `resolve_signatures` decides for each function
returning a reference which borrowed parameter the result derives from
(single-input rule, explicit annotation, or the configured tie-break).
Call sites use these summaries to keep the right argument borrow alive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .core.config import LifetimePolicy
from .core.diagnostics import DiagnosticKind, DiagnosticsCollector
from .core.errors import ModelError
from .core.span import ProgramPoint, Span
from .core.types_core import TypeTable
from .model import nodes as P
from .scopes import Scope

logger = logging.getLogger(__name__)


class RegionKind(Enum):
	STATIC = auto()
	PARAM = auto()
	SCOPE = auto()


@dataclass(frozen=True)
class Region:
	kind: RegionKind
	scope: Optional[Scope] = None
	seq: int = 0
	param: Optional[str] = None
	name: Optional[str] = None  # binding the region belongs to, for messages

	@classmethod
	def of_scope(cls, scope: Scope, seq: int, name: Optional[str] = None) -> "Region":
		return cls(RegionKind.SCOPE, scope=scope, seq=seq, name=name)

	@classmethod
	def of_param(cls, param: str) -> "Region":
		return cls(RegionKind.PARAM, param=param, name=param)

	@classmethod
	def static(cls) -> "Region":
		return cls(RegionKind.STATIC)

	def describe(self) -> str:
		if self.kind is RegionKind.STATIC:
			return "'static"
		if self.kind is RegionKind.PARAM:
			return f"'{self.param}"
		assert self.scope is not None
		return f"{self.scope.label}[{self.seq}]"


def outlives(a: Region, b: Region) -> bool:
	"""True when a referent living for `a` is still alive everywhere in `b`."""
	if a.kind is RegionKind.STATIC:
		return True
	if a.kind is RegionKind.PARAM:
		if b.kind is RegionKind.SCOPE:
			return True
		return b.kind is RegionKind.PARAM and a.param == b.param
	if b.kind is not RegionKind.SCOPE:
		return False
	assert a.scope is not None and b.scope is not None
	if a.scope is b.scope:
		return a.seq <= b.seq
	return a.scope.is_ancestor_or_equal(b.scope)


@dataclass(frozen=True)
class FnLifetimeSummary:
	"""Which borrowed parameter a function's returned reference derives from."""

	name: str
	returns_ref: bool
	ref_params: Tuple[str, ...] = ()
	source_param: Optional[str] = None
	ambiguous: bool = False


class LifetimeResolver:
	"""Outlives checks plus per-function return-lifetime summaries."""

	def __init__(
		self,
		types: TypeTable,
		diagnostics: DiagnosticsCollector,
		*,
		policy: LifetimePolicy = LifetimePolicy.STRICT,
		annotations: Optional[Mapping[str, str]] = None,
	) -> None:
		self.types = types
		self.diagnostics = diagnostics
		self.policy = policy
		self.annotations: Dict[str, str] = dict(annotations or {})
		self.summaries: Dict[str, FnLifetimeSummary] = {}

	# Signatures

	def resolve_signatures(self, program: P.Program) -> Dict[str, FnLifetimeSummary]:
		for fn in program.functions:
			self.summaries[fn.name] = self._summarize(fn)
		return self.summaries

	def _summarize(self, fn: P.PFunction) -> FnLifetimeSummary:
		returns_ref = self.types.holds_refs(fn.return_type)
		ref_params = tuple(p.name for p in fn.params if self.types.holds_refs(p.ty))
		if not returns_ref:
			return FnLifetimeSummary(fn.name, False, ref_params)
		annotated = self.annotations.get(fn.name) or fn.return_lifetime
		if annotated is not None:
			if annotated not in ref_params:
				raise ModelError(
					f"return lifetime of '{fn.name}' names '{annotated}', which is not a borrowed parameter",
					loc=fn.loc,
				)
			return FnLifetimeSummary(fn.name, True, ref_params, source_param=annotated)
		if len(ref_params) == 1:
			return FnLifetimeSummary(fn.name, True, ref_params, source_param=ref_params[0])
		if not ref_params:
			return FnLifetimeSummary(fn.name, True, ref_params)
		if self.policy is LifetimePolicy.TRACE and fn.body is not None:
			traced = self._trace_sources(fn.body, set(ref_params))
			if len(traced) == 1:
				source = next(iter(traced))
				logger.debug("traced return lifetime of %s to '%s'", fn.name, source)
				return FnLifetimeSummary(fn.name, True, ref_params, source_param=source)
		self.diagnostics.report(
			DiagnosticKind.AMBIGUOUS_LIFETIME,
			f"cannot infer the lifetime of the reference returned by '{fn.name}': "
			f"it could borrow from any of {', '.join(repr(p) for p in ref_params)}",
			phase="lifetime",
			point=ProgramPoint(0, Span.from_loc(fn.loc)),
			function=fn.name,
			involved=(fn.name, *ref_params),
			notes=["annotate which parameter the result borrows from"],
		)
		return FnLifetimeSummary(fn.name, True, ref_params, ambiguous=True)

	def _trace_sources(self, body: P.PBlock, ref_params: set[str]) -> set[Optional[str]]:
		"""Root binding of every returned expression; None marks an untraceable return."""
		sources: set[Optional[str]] = set()
		for ret in _iter_returns(body):
			root = _root_name(ret.value) if ret.value is not None else None
			sources.add(root if root in ref_params else None)
		return sources

	# Checks

	def check_store(
		self,
		regions: Sequence[Region],
		holder: Region,
		*,
		referent: str,
		holder_name: str,
		point: ProgramPoint,
		function: str,
	) -> bool:
		"""A reference held by `holder` must not outlive its referent."""
		for region in regions:
			if outlives(region, holder):
				continue
			self.diagnostics.report(
				DiagnosticKind.DANGLING_REFERENCE,
				f"'{referent}' does not live long enough: it is borrowed by '{holder_name}', which outlives it",
				phase="lifetime",
				point=point,
				function=function,
				involved=(holder_name, referent),
				notes=[f"referent lives for {region.describe()}, holder for {holder.describe()}"],
			)
			return False
		return True

	def check_return(
		self,
		regions: Sequence[Tuple[Region, str]],
		summary: Optional[FnLifetimeSummary],
		*,
		point: ProgramPoint,
		function: str,
		unit_root: Optional[Scope] = None,
	) -> bool:
		"""
		Returned references must point at caller-lent data. `unit_root` limits
		the check to scopes of a spawned unit (data outside it outlives the unit).
		"""
		ok = True
		for region, referent in regions:
			if region.kind is RegionKind.SCOPE:
				assert region.scope is not None
				if unit_root is not None and not unit_root.is_ancestor_or_equal(region.scope):
					continue
				self.diagnostics.report(
					DiagnosticKind.DANGLING_REFERENCE,
					f"cannot return a reference to local '{referent}' of '{function}'",
					phase="lifetime",
					point=point,
					function=function,
					involved=(function, referent),
					notes=[f"'{referent}' is dropped when {region.scope.label} exits"],
				)
				ok = False
			elif region.kind is RegionKind.PARAM and summary is not None and summary.source_param is not None:
				if region.param != summary.source_param:
					self.diagnostics.report(
						DiagnosticKind.DANGLING_REFERENCE,
						f"'{function}' returns a reference derived from '{region.param}' but its result borrows from '{summary.source_param}'",
						phase="lifetime",
						point=point,
						function=function,
						involved=(function, region.param or referent),
					)
					ok = False
		return ok

	def check_detached(
		self,
		regions: Sequence[Tuple[Region, str]],
		*,
		point: ProgramPoint,
		function: str,
	) -> None:
		"""A unit whose handle is discarded runs unbounded; it may only hold 'static borrows."""
		for region, referent in regions:
			if region.kind is RegionKind.STATIC:
				continue
			self.diagnostics.report(
				DiagnosticKind.DANGLING_REFERENCE,
				f"detached unit borrows '{referent}', which may be dropped while the unit still runs",
				phase="lifetime",
				point=point,
				function=function,
				involved=(referent,),
				notes=["bind the spawn handle and join it before the borrowed value goes out of scope"],
			)


def _iter_returns(block: P.PBlock) -> Iterable[P.PReturn]:
	for stmt in block.statements:
		if isinstance(stmt, P.PReturn):
			yield stmt
		elif isinstance(stmt, P.PBlock):
			yield from _iter_returns(stmt)
		elif isinstance(stmt, P.PIf):
			yield from _iter_returns(stmt.then_block)
			if stmt.else_block is not None:
				yield from _iter_returns(stmt.else_block)
		elif isinstance(stmt, P.PLoop):
			yield from _iter_returns(stmt.body)


def _root_name(expr: P.PExpr) -> Optional[str]:
	"""Binding a returned reference expression is rooted at (`&a.b` → `a`)."""
	while True:
		if isinstance(expr, P.PVar):
			return expr.name
		if isinstance(expr, P.PField):
			expr = expr.subject
		elif isinstance(expr, (P.PBorrow, P.PMove)):
			expr = expr.subject
		else:
			return None


__all__ = [
	"RegionKind",
	"Region",
	"outlives",
	"FnLifetimeSummary",
	"LifetimeResolver",
]
