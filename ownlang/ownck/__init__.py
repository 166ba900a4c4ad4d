# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
ownck: static ownership-and-borrow verifier.

Stages (driven by verifier_pass):
  ownership: values, owners, moves (ownership.py)
  borrows: loans and the aliasing invariant (borrow_checker.py)
  lifetimes: regions and return-lifetime summaries (lifetimes.py)
  drops: per-scope release order and reference counts (drops.py)

The CLI entrypoint is `ownlang.ownck.ownck:main`.
"""

from .core.config import LifetimePolicy, VerifierConfig, load_config_json
from .core.diagnostics import Diagnostic, DiagnosticKind
from .core.errors import ModelError, RefCountUnderflow
from .model import load_model_file, load_model_json, parse_model
from .verifier_pass import VerificationResult, verify_many, verify_program

__all__ = [
	"Diagnostic",
	"DiagnosticKind",
	"LifetimePolicy",
	"ModelError",
	"RefCountUnderflow",
	"VerificationResult",
	"VerifierConfig",
	"load_config_json",
	"load_model_file",
	"load_model_json",
	"parse_model",
	"verify_many",
	"verify_program",
]
