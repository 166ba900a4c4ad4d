# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Verifier configuration.

Two policy points are left open by the ownership rules themselves and are
therefore configurable rather than hard-coded:

- `copy_moves`: whether an explicit `move` of a Copy value marks the source
  moved-out. Off by default: Copy values never enter move tracking.
- `lifetime_policy`: how to resolve the lifetime of a returned reference when
  a function has more than one borrowed parameter and no annotation.
  `strict` always reports AmbiguousLifetime; `trace` looks at the body's
  return expressions and accepts the signature when they all derive from the
  same parameter.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from .errors import ModelError


class LifetimePolicy(Enum):
	STRICT = "strict"
	TRACE = "trace"


@dataclass(frozen=True)
class VerifierConfig:
	"""Knobs for one verification run."""

	copy_moves: bool = False
	lifetime_policy: LifetimePolicy = LifetimePolicy.STRICT
	# Loop bodies are re-walked this many times to let moves on the back edge
	# reach the loop head.
	loop_iterations: int = 2

	def with_overrides(self, **overrides: Any) -> "VerifierConfig":
		"""Return a copy with non-None overrides applied (CLI flags win over files)."""
		clean = {k: v for k, v in overrides.items() if v is not None}
		if "lifetime_policy" in clean and not isinstance(clean["lifetime_policy"], LifetimePolicy):
			clean["lifetime_policy"] = _parse_policy(clean["lifetime_policy"])
		return replace(self, **clean)


def _parse_policy(raw: object) -> LifetimePolicy:
	try:
		return LifetimePolicy(str(raw))
	except ValueError:
		allowed = ", ".join(p.value for p in LifetimePolicy)
		raise ModelError(f"invalid lifetime_policy {raw!r} (expected one of: {allowed})", loc=None) from None


def config_from_mapping(data: Mapping[str, Any]) -> VerifierConfig:
	"""Build a VerifierConfig from a decoded JSON object, rejecting unknown keys."""
	known = {f.name for f in fields(VerifierConfig)}
	unknown = sorted(set(data) - known)
	if unknown:
		raise ModelError(f"unknown config keys: {', '.join(unknown)}", loc=None)
	kwargs: dict[str, Any] = {}
	if "copy_moves" in data:
		if not isinstance(data["copy_moves"], bool):
			raise ModelError("config 'copy_moves' must be a boolean", loc=None)
		kwargs["copy_moves"] = data["copy_moves"]
	if "lifetime_policy" in data:
		kwargs["lifetime_policy"] = _parse_policy(data["lifetime_policy"])
	if "loop_iterations" in data:
		iters = data["loop_iterations"]
		if not isinstance(iters, int) or isinstance(iters, bool) or iters < 1:
			raise ModelError("config 'loop_iterations' must be a positive integer", loc=None)
		kwargs["loop_iterations"] = iters
	return VerifierConfig(**kwargs)


def load_config_json(path: Path) -> VerifierConfig:
	"""Load a VerifierConfig from a JSON file."""
	try:
		data = json.loads(path.read_text())
	except OSError as err:
		raise ModelError(f"cannot read config {path}: {err}", loc=None) from err
	except json.JSONDecodeError as err:
		raise ModelError(f"invalid JSON in config {path}: {err}", loc=None) from err
	if not isinstance(data, dict):
		raise ModelError(f"config {path} must contain a JSON object", loc=None)
	return config_from_mapping(data)


__all__ = ["LifetimePolicy", "VerifierConfig", "config_from_mapping", "load_config_json"]
