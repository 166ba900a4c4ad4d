# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lightweight source locations used by diagnostics and analysis ledgers.

A Span can wrap whatever location object the front end attaches to model
nodes via the `raw` field while also carrying optional file/line/column info.
A ProgramPoint is the verifier's own notion of "where": a monotonically
increasing index within one function walk, paired with the span of the node
that produced it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class Span:
	"""Represents a source span (best-effort file/line/column plus raw front-end loc)."""

	file: Optional[str] = None
	line: Optional[int] = None
	column: Optional[int] = None
	end_line: Optional[int] = None
	end_column: Optional[int] = None
	raw: Any = field(default=None, compare=False)

	@classmethod
	def from_loc(cls, loc: Any) -> "Span":
		"""
		Construct a Span from an existing front-end location object.

		If `loc` is already a Span, it is returned unchanged; otherwise the
		front-end object is stored in `raw`.
		"""
		if loc is None:
			return cls()
		if isinstance(loc, cls):
			return loc
		return cls(
			file=getattr(loc, "file", None) or getattr(loc, "filename", None) or None,
			line=getattr(loc, "line", None),
			column=getattr(loc, "column", None),
			end_line=getattr(loc, "end_line", None),
			end_column=getattr(loc, "end_column", None),
			raw=loc,
		)

	def describe(self) -> str:
		"""Render as `file:line:col` with unknown parts omitted."""
		parts = [self.file or "<model>"]
		if self.line is not None:
			parts.append(str(self.line))
			if self.column is not None:
				parts.append(str(self.column))
		return ":".join(parts)


@dataclass(frozen=True, order=True)
class ProgramPoint:
	"""
	Ordered position within one function walk.

	Ordering uses `index` only; the span is carried for reporting.
	"""

	index: int
	span: Span = field(default_factory=Span, compare=False)

	def __str__(self) -> str:
		return f"#{self.index}"


__all__ = ["Span", "ProgramPoint"]
