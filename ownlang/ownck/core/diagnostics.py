# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Diagnostic records and the batch collector shared by every verifier stage.

Stages never stop at the first problem: they report into a
`DiagnosticsCollector` and keep going, so one run yields the full defect
list. Each record names its kind, where it happened (span plus program
point), and the identifiers involved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .span import ProgramPoint, Span


class DiagnosticKind(Enum):
	"""Verification outcomes; values are the stable diagnostic codes."""

	USE_OF_MOVED_VALUE = "E_USE_AFTER_MOVE"
	DOUBLE_MOVE = "E_DOUBLE_MOVE"
	BORROW_CONFLICT = "E_BORROW_CONFLICT"
	CANNOT_MOVE_WHILE_BORROWED = "E_MOVE_WHILE_BORROWED"
	DANGLING_REFERENCE = "E_DANGLING_REF"
	AMBIGUOUS_LIFETIME = "E_AMBIGUOUS_LIFETIME"
	REF_COUNT_UNDERFLOW = "E_REFCOUNT_UNDERFLOW"
	MOVE_OUT_OF_BORROW = "E_MOVE_OUT_OF_BORROW"
	MUTABILITY_VIOLATION = "E_NOT_MUTABLE"
	MUTABLE_BORROW_ACROSS_SPAWN = "E_SPAWN_MUT_BORROW"
	NON_THREAD_SAFE_SHARE = "E_NOT_THREAD_SAFE"

	@property
	def code(self) -> str:
		return self.value

	@property
	def title(self) -> str:
		"""CamelCase name used in rendered output (e.g. `UseOfMovedValue`)."""
		return "".join(part.capitalize() for part in self.name.split("_"))


@dataclass
class Diagnostic:
	"""A single verification finding."""

	message: str
	kind: Optional[DiagnosticKind] = None
	code: str | None = None
	# Stage that produced the record ("ownership", "borrow", "lifetime", "drop").
	phase: str | None = None
	severity: str = "error"
	span: Span = field(default_factory=Span)  # Span() denotes unknown.
	point: Optional[ProgramPoint] = None
	function: Optional[str] = None
	involved: Tuple[str, ...] = ()
	notes: list[str] = field(default_factory=list)

	def __post_init__(self) -> None:
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()
		if self.code is None and self.kind is not None:
			self.code = self.kind.code
		self.involved = tuple(self.involved)

	def dedupe_key(self) -> tuple:
		return (
			self.kind,
			self.function,
			self.point.index if self.point is not None else None,
			self.involved,
		)

	def location(self) -> dict:
		return {
			"file": self.span.file,
			"line": self.span.line,
			"column": self.span.column,
			"function": self.function,
			"point": self.point.index if self.point is not None else None,
		}

	def to_dict(self) -> dict:
		"""Render to a structured JSON-friendly dict."""
		return {
			"kind": self.kind.title if self.kind is not None else None,
			"code": self.code,
			"phase": self.phase,
			"severity": self.severity,
			"location": self.location(),
			"involved_identifiers": list(self.involved),
			"message": self.message,
			"notes": list(self.notes),
		}

	def render(self) -> str:
		where = self.span.describe()
		if self.function:
			where = f"{where} in {self.function}"
		if self.point is not None:
			where = f"{where} at {self.point}"
		kind = self.kind.title if self.kind is not None else self.severity
		lines = [f"{where}: {self.severity}[{kind}]: {self.message}"]
		lines.extend(f"  note: {n}" for n in self.notes)
		return "\n".join(lines)


class DiagnosticsCollector:
	"""
	Batch sink for diagnostics across all stages of one verification run.

	Records are deduplicated on (kind, function, point, identifiers) because
	loop bodies are walked twice to reach a fixed point.
	"""

	def __init__(self) -> None:
		self._records: List[Diagnostic] = []
		self._seen: set[tuple] = set()
		self.fatal: bool = False

	def report(
		self,
		kind: DiagnosticKind,
		message: str,
		*,
		phase: str,
		point: Optional[ProgramPoint] = None,
		function: Optional[str] = None,
		involved: Iterable[str] = (),
		notes: Iterable[str] = (),
		severity: str = "error",
	) -> Optional[Diagnostic]:
		"""Record a diagnostic unless an identical one is already present."""
		diag = Diagnostic(
			message=message,
			kind=kind,
			phase=phase,
			severity=severity,
			span=point.span if point is not None else Span(),
			point=point,
			function=function,
			involved=tuple(involved),
			notes=list(notes),
		)
		return self.add(diag)

	def add(self, diag: Diagnostic) -> Optional[Diagnostic]:
		key = diag.dedupe_key()
		if key in self._seen:
			return None
		self._seen.add(key)
		self._records.append(diag)
		if diag.severity == "fatal":
			self.fatal = True
		return diag

	@property
	def diagnostics(self) -> List[Diagnostic]:
		"""All records, ordered by emission (functions in model order, then program point)."""
		order: Dict[Optional[str], int] = {}
		for d in self._records:
			order.setdefault(d.function, len(order))
		return sorted(
			self._records,
			key=lambda d: (order[d.function], d.point.index if d.point is not None else -1),
		)

	def has_errors(self) -> bool:
		return any(d.severity in ("error", "fatal") for d in self._records)

	def by_kind(self, kind: DiagnosticKind) -> List[Diagnostic]:
		return [d for d in self.diagnostics if d.kind is kind]

	def __len__(self) -> int:
		return len(self._records)


__all__ = ["Diagnostic", "DiagnosticKind", "DiagnosticsCollector"]
