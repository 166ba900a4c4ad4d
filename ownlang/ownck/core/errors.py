# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Exceptions raised by the verifier.

Semantic violations in the analyzed program are never exceptions; they are
reported as diagnostics. Exceptions are reserved for input that cannot be
turned into a Program Model and for broken internal invariants.
"""

from __future__ import annotations


class ModelError(ValueError):
	"""
	User-facing error for malformed Program Model input.

	Raised by the loaders (text/JSON/config) and by the verifier when the model
	references names the front end should have resolved. The driver converts
	this into an input-error report instead of crashing.
	"""

	def __init__(self, message: str, *, loc: object | None) -> None:
		super().__init__(message)
		self.loc = loc


class InternalVerifierError(AssertionError):
	"""A verifier invariant was broken; this is a checker bug, not a user defect."""


class RefCountUnderflow(InternalVerifierError):
	"""A reference-counted allocation was released more times than it was acquired."""

	def __init__(self, message: str, *, allocation: int) -> None:
		super().__init__(message)
		self.allocation = allocation


__all__ = ["ModelError", "InternalVerifierError", "RefCountUnderflow"]
