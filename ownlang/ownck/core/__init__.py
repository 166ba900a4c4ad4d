"""
ownlang.ownck.core: shared core types/diagnostics/config used across the verifier stages.

Modules:
  - span: Span and ProgramPoint locations
  - diagnostics: Diagnostic records, kinds, and the batch collector
  - types_core: TypeId/TypeTable primitives
  - config: VerifierConfig and JSON loading
  - errors: ModelError and internal invariant errors
"""

__all__ = [
	"span",
	"diagnostics",
	"types_core",
	"config",
	"errors",
]
