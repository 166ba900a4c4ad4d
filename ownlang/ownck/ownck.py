#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
ownck command-line driver.

Loads one or more Program Models (text dump or JSON), verifies each, and
reports diagnostics. Exit status: 0 when every model verifies clean, 1 when
any model has diagnostics, 2 when an input cannot be loaded.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from .core.config import LifetimePolicy, VerifierConfig, load_config_json
from .core.errors import ModelError
from .core.span import Span
from .model import Program, load_model_file
from .verifier_pass import VerificationResult, verify_many

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DIAGNOSTICS = 1
EXIT_INPUT_ERROR = 2


def _error_to_json(err: ModelError, source: Optional[Path]) -> dict:
	"""Render a ModelError to a structured JSON-friendly dict."""
	span = Span.from_loc(err.loc)
	return {
		"phase": "input",
		"message": str(err),
		"severity": "error",
		"file": span.file or (str(source) if source is not None else None),
		"line": span.line,
		"column": span.column,
	}


def _render_error(err: ModelError, source: Optional[Path]) -> str:
	span = Span.from_loc(err.loc)
	file = span.file or (str(source) if source is not None else "<input>")
	line = span.line if span.line is not None else "?"
	column = span.column if span.column is not None else "?"
	return f"{file}:{line}:{column}: error: {err}"


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(prog="ownck", description="Static ownership and borrow verifier for Program Models")
	parser.add_argument("model", type=Path, nargs="+", help="Path(s) to model files (.json, or the text dump format)")
	parser.add_argument(
		"--json",
		action="store_true",
		help="Emit results as JSON (diagnostics with kind/code/location/identifiers)",
	)
	parser.add_argument("--config", type=Path, help="Path to a verifier config JSON file")
	parser.add_argument(
		"--lifetime-policy",
		choices=[p.value for p in LifetimePolicy],
		default=None,
		help="How to resolve returned references with several borrowed inputs (overrides --config)",
	)
	parser.add_argument(
		"--copy-moves",
		action="store_true",
		default=None,
		help="Treat an explicit move of a Copy value as moving the source (overrides --config)",
	)
	parser.add_argument("-j", "--jobs", type=int, default=1, help="Verify models on N worker threads")
	parser.add_argument("--show-drops", action="store_true", help="Print the drop schedule of every scope")
	parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
	return parser


def main(argv: list[str] | None = None) -> int:
	"""
	Verify model files and report.

	With --json, prints one JSON object `{exit_code, results, errors}` to
	stdout; otherwise diagnostics go to stderr in `file:line:col` form and drop
	schedules (with --show-drops) to stdout.
	"""
	parser = _build_parser()
	args = parser.parse_args(argv)
	logging.basicConfig(
		level=logging.DEBUG if args.verbose else logging.WARNING,
		format="%(levelname)s %(name)s: %(message)s",
	)
	if args.jobs < 1:
		parser.error("--jobs must be at least 1")

	errors: List[Tuple[ModelError, Optional[Path]]] = []
	try:
		config = load_config_json(args.config) if args.config is not None else VerifierConfig()
		config = config.with_overrides(lifetime_policy=args.lifetime_policy, copy_moves=args.copy_moves)
	except ModelError as err:
		return _finish(args, [], [(err, args.config)])

	programs: List[Program] = []
	for path in args.model:
		try:
			programs.append(load_model_file(path))
		except ModelError as err:
			logger.debug("cannot load %s: %s", path, err)
			errors.append((err, path))

	results: List[VerificationResult] = []
	try:
		results = verify_many(programs, jobs=args.jobs, config=config)
	except ModelError as err:
		errors.append((err, None))
	return _finish(args, results, errors)


def _finish(
	args: argparse.Namespace,
	results: List[VerificationResult],
	errors: List[Tuple[ModelError, Optional[Path]]],
) -> int:
	if errors:
		exit_code = EXIT_INPUT_ERROR
	elif any(not r.ok for r in results):
		exit_code = EXIT_DIAGNOSTICS
	else:
		exit_code = EXIT_OK

	if args.json:
		payload = {
			"exit_code": exit_code,
			"results": [r.to_dict(include_drops=args.show_drops) for r in results],
			"errors": [_error_to_json(err, src) for err, src in errors],
		}
		print(json.dumps(payload))
		return exit_code

	for err, src in errors:
		print(_render_error(err, src), file=sys.stderr)
	for result in results:
		for diag in result.diagnostics:
			print(diag.render(), file=sys.stderr)
		if args.show_drops:
			print(f"{result.program}:")
			for label, events in result.drops.items():
				print(f"  {label}:")
				for ev in events:
					print(f"    {ev.describe()}")
	return exit_code


__all__ = ["main", "EXIT_OK", "EXIT_DIAGNOSTICS", "EXIT_INPUT_ERROR"]
