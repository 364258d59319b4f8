"""Text rules: check that device configuration contains (or lacks) a text.

The configuration attribute can be split into blocks using a context
regex; a block is a line matching the context plus the following lines
indented deeper than it (as in Cisco-style configurations).
"""

import re
from typing import List, Optional, Tuple

from ..common.logger import get_logger
from ..compliance.context import EvaluationContext
from ..compliance.device import Device
from ..compliance.errors import RuleValidationError
from ..compliance.result import ResultOption
from ..compliance.rule import Rule, Verdict

logger = get_logger("text_rule")

# Number of failing block names quoted in a comment
MAX_REPORTED_BLOCKS = 5


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


class TextRule(Rule):
    """Rule matching a text or regular expression in a configuration attribute."""

    kind = "text"
    definition_fields = (
        "field",
        "text",
        "regexp",
        "invert",
        "match_all",
        "context",
        "any_block",
        "normalize",
        "driver",
    )

    def __init__(
        self,
        name: str = "",
        policy=None,
        enabled: bool = False,
        id: int = 0,
        field: str = "running_config",
        text: str = "",
        regexp: bool = False,
        invert: bool = False,
        match_all: bool = False,
        context: Optional[str] = None,
        any_block: bool = False,
        normalize: bool = False,
        driver: Optional[str] = None,
    ):
        """
        Initialize a text rule.

        Args:
            field: Device attribute holding the configuration text
            text: Text (or regex when ``regexp``) to look for
            regexp: Interpret ``text`` as a regular expression
            invert: The text must NOT be present
            match_all: The text must match the whole block, not a part of it
            context: Regex selecting the configuration blocks to check
            any_block: One matching block is enough (default: all blocks)
            normalize: Strip lines and drop empty ones before matching
            driver: Only applies to devices using this driver
        """
        super().__init__(name=name, policy=policy, enabled=enabled, id=id)
        self.field = field
        self.text = text
        self.regexp = regexp
        self.invert = invert
        self.match_all = match_all
        self.context = context or None
        self.any_block = any_block
        self.normalize = normalize
        self.driver = driver or None

    def applies_to(self, device: Device) -> bool:
        if not self.driver:
            return True
        return getattr(device, "driver", None) == self.driver

    def validate(self) -> None:
        for label, value, optional in (
            ("field", self.field, False),
            ("text", self.text, False),
            ("context", self.context, True),
            ("driver", self.driver, True),
        ):
            if value is None and optional:
                continue
            if not isinstance(value, str):
                raise RuleValidationError(
                    f"Text rule {label} must be a string, got {type(value).__name__}",
                    rule_name=self.name,
                )
        if not self.field:
            raise RuleValidationError("Text rule has no configuration field", rule_name=self.name)
        if not self.text:
            raise RuleValidationError("Text rule has no text to look for", rule_name=self.name)
        patterns = [("context", self.context)]
        if self.regexp:
            patterns.append(("text", self.text))
        for label, pattern in patterns:
            if pattern is None:
                continue
            try:
                re.compile(pattern)
            except re.error as e:
                raise RuleValidationError(
                    f"Invalid {label} regular expression '{pattern}': {e}", rule_name=self.name
                ) from e

    def _evaluate(self, device: Device, context: EvaluationContext) -> Verdict:
        config = device.get_attribute(self.field)
        if not isinstance(config, str):
            config = str(config)

        blocks = self._blocks(config)
        if not blocks:
            return (
                ResultOption.NON_CONFORMING,
                f"No configuration block matches context '{self.context}'",
            )
        context.debug(f"Rule '{self.name}': checking {len(blocks)} block(s) of {device.name}")

        failing = [header for header, text in blocks if self._matches(text) == self.invert]
        if self.any_block:
            conforming = len(failing) < len(blocks)
        else:
            conforming = not failing

        if conforming:
            return ResultOption.CONFORMING, None
        return ResultOption.NON_CONFORMING, self._describe(failing)

    def _blocks(self, config: str) -> List[Tuple[str, str]]:
        """Split configuration into (header, text) blocks."""
        lines = config.splitlines()
        if not self.context:
            return [("", "\n".join(lines))]

        pattern = re.compile(self.context)
        blocks = []
        index = 0
        while index < len(lines):
            line = lines[index]
            if not pattern.search(line):
                index += 1
                continue
            depth = _indent(line)
            body = [line]
            index += 1
            while index < len(lines) and (
                not lines[index].strip() or _indent(lines[index]) > depth
            ):
                body.append(lines[index])
                index += 1
            blocks.append((line.strip(), "\n".join(body)))
        return blocks

    def _matches(self, text: str) -> bool:
        if self.normalize:
            text = "\n".join(line.strip() for line in text.splitlines() if line.strip())
        if self.regexp:
            flags = re.MULTILINE | (re.DOTALL if self.match_all else 0)
            pattern = re.compile(self.text, flags)
            if self.match_all:
                return pattern.fullmatch(text) is not None
            return pattern.search(text) is not None
        if self.match_all:
            return text == self.text
        return self.text in text

    def _describe(self, failing: List[str]) -> str:
        what = "pattern" if self.regexp else "text"
        if self.invert:
            comment = f"Forbidden {what} '{self.text}' found in {self.field}"
        else:
            comment = f"Expected {what} '{self.text}' not found in {self.field}"
        if self.context:
            shown = ", ".join(f"'{header}'" for header in failing[:MAX_REPORTED_BLOCKS])
            if len(failing) > MAX_REPORTED_BLOCKS:
                shown += f" and {len(failing) - MAX_REPORTED_BLOCKS} more"
            comment += f" (block(s): {shown})"
        return comment
