# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
ownlang package: ownership tooling for resolved Program Models.

Packages:
  ownck: the ownership-and-borrow verifier
"""

__all__ = ["ownck"]
