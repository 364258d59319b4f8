"""Script rules: conformance logic written in an embedded scripting language."""

from typing import Any, ClassVar, Optional

from ..compliance.context import EvaluationContext
from ..compliance.device import Device
from ..compliance.errors import RuleValidationError, ScriptExecutionError
from ..compliance.result import VERDICT_OPTIONS, parse_result_option
from ..compliance.rule import Rule, Verdict
from .sandbox import ScriptSandbox, get_sandbox


class ScriptRule(Rule):
    """Rule whose verdict comes from a script's ``check(device)`` function."""

    language: ClassVar[str] = ""
    definition_fields = ("script",)

    def __init__(
        self,
        name: str = "",
        policy=None,
        enabled: bool = False,
        id: int = 0,
        script: str = "",
        sandbox: Optional[ScriptSandbox] = None,
    ):
        super().__init__(name=name, policy=policy, enabled=enabled, id=id)
        self.script = script
        self._sandbox = sandbox

    @property
    def sandbox(self) -> ScriptSandbox:
        return self._sandbox or get_sandbox(self.language)

    def validate(self) -> None:
        if not self.script or not self.script.strip():
            raise RuleValidationError(f"{self.language} rule has an empty script", rule_name=self.name)
        try:
            self.sandbox.validate(self.script)
        except RuleValidationError as e:
            e.rule_name = self.name
            raise

    def _evaluate(self, device: Device, context: EvaluationContext) -> Verdict:
        output = self.sandbox.run_check(self.script, device.to_script_payload())
        for message in output.messages:
            context.debug(f"Rule '{self.name}' on {device.name}: {message}")
        return self._interpret(output.result)

    def _interpret(self, value: Any) -> Verdict:
        comment = None
        if isinstance(value, dict):
            comment = value.get("comment")
            value = value.get("result")
        try:
            option = parse_result_option(value)
        except ValueError:
            raise ScriptExecutionError(f"Script returned an invalid result: {value!r}") from None
        if option not in VERDICT_OPTIONS:
            raise ScriptExecutionError(f"Script cannot report {option.name}")
        return option, str(comment) if comment is not None else None


class PythonRule(ScriptRule):
    """Rule scripted in Python."""

    kind = "python"
    language = "python"


class JavaScriptRule(ScriptRule):
    """Rule scripted in JavaScript."""

    kind = "javascript"
    language = "javascript"
