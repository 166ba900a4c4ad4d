"""
ownlang.ownck.model: the Program Model and its loaders.

Modules:
  - nodes: Program Model node dataclasses
  - parser: textual model dump loader (lark grammar in grammar.lark)
  - loader: JSON loader and file dispatch
  - typeexpr: type spellings shared by both loaders
"""

from .nodes import *  # noqa: F401,F403
from .nodes import __all__ as _nodes_all
from .parser import parse_model
from .loader import load_model_file, load_model_json

__all__ = [*_nodes_all, "parse_model", "load_model_json", "load_model_file"]
