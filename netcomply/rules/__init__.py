"""Rule kinds: text patterns and scripts."""

from .script_rule import JavaScriptRule, PythonRule, ScriptRule
from .text_rule import TextRule

__all__ = ["JavaScriptRule", "PythonRule", "ScriptRule", "TextRule"]
