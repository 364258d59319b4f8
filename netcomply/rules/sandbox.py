"""Script sandboxes for script rules.

Each sandbox runs rule scripts in a separate interpreter process. The
script and the device payload are sent as JSON on stdin; the interpreter
answers with a JSON document on stdout. The process is killed when it
exceeds the sandbox time limit.

Scripts define ``check(device)`` and return ``CONFORMING``,
``NON_CONFORMING`` or ``NOT_APPLICABLE`` (or a mapping with ``result`` and
``comment``). They can call ``debug(message)`` to add log entries.

Python scripts see a reduced set of builtins (no ``open``, ``eval`` or
``exec``) and may only import the modules in ``PYTHON_ALLOWED_MODULES``, so a
verdict depends on the device payload alone. This keeps rules deterministic;
it is not a security boundary against hostile scripts.
"""

import ast
import json
import subprocess
import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional

from ..common.config import SandboxConfig
from ..common.logger import get_logger
from ..compliance.errors import RuleValidationError, ScriptExecutionError, ScriptTimeoutError

logger = get_logger("sandbox")

# Longest stderr excerpt quoted in error messages
STDERR_EXCERPT = 500

# Pure modules Python rule scripts may import
PYTHON_ALLOWED_MODULES = (
    "collections",
    "functools",
    "ipaddress",
    "itertools",
    "json",
    "math",
    "re",
    "string",
)


PYTHON_RUNNER = r'''
import builtins
import json
import sys

SAFE_BUILTINS = (
    "abs", "all", "any", "bool", "chr", "dict", "divmod", "enumerate", "filter",
    "float", "format", "frozenset", "getattr", "hasattr", "hex", "int", "isinstance",
    "issubclass", "iter", "len", "list", "map", "max", "min", "next", "ord", "pow",
    "print", "range", "repr", "reversed", "round", "set", "slice", "sorted", "str",
    "sum", "tuple", "zip", "__build_class__", "ArithmeticError", "AttributeError",
    "Exception", "IndexError", "KeyError", "LookupError", "NameError", "RuntimeError",
    "StopIteration", "TypeError", "ValueError", "ZeroDivisionError",
)


def restricted_builtins(modules):
    def guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
        if level != 0 or name.split(".")[0] not in modules:
            raise ImportError("import of '%s' is not allowed in rule scripts" % name)
        return __import__(name, globals, locals, fromlist, level)

    safe = {name: getattr(builtins, name) for name in SAFE_BUILTINS}
    safe["__import__"] = guarded_import
    return safe


def main():
    payload = json.load(sys.stdin)
    out = sys.stdout
    sys.stdout = sys.stderr
    messages = []
    namespace = {
        "__name__": "__rule__",
        "__builtins__": restricted_builtins(set(payload.get("modules", []))),
        "CONFORMING": "CONFORMING",
        "NON_CONFORMING": "NON_CONFORMING",
        "NOT_APPLICABLE": "NOT_APPLICABLE",
        "debug": lambda message: messages.append(str(message)),
    }
    try:
        exec(compile(payload["script"], "<rule>", "exec"), namespace)
        check = namespace.get("check")
        if not callable(check):
            raise NameError("script does not define a check(device) function")
        response = {"ok": True, "result": check(payload["device"]), "messages": messages}
    except Exception as e:
        response = {"ok": False, "error": "%s: %s" % (type(e).__name__, e), "messages": messages}
    out.write(json.dumps(response, default=str))


main()
'''


NODE_RUNNER = r'''
const vm = require('vm');
let input = '';
process.stdin.setEncoding('utf8');
process.stdin.on('data', (chunk) => { input += chunk; });
process.stdin.on('end', () => {
  const payload = JSON.parse(input);
  const messages = [];
  let response;
  try {
    if (payload.mode === 'validate') {
      new vm.Script(payload.script, { filename: 'rule.js' });
      response = { ok: true, messages: messages };
    } else {
      const sandbox = {
        CONFORMING: 'CONFORMING',
        NON_CONFORMING: 'NON_CONFORMING',
        NOT_APPLICABLE: 'NOT_APPLICABLE',
        debug: (message) => { messages.push(String(message)); },
        __device: payload.device,
      };
      vm.createContext(sandbox);
      vm.runInContext(payload.script, sandbox, { filename: 'rule.js', timeout: payload.timeout_ms });
      if (typeof sandbox.check !== 'function') {
        throw new Error('script does not define a check(device) function');
      }
      const result = vm.runInContext('check(__device)', sandbox, { timeout: payload.timeout_ms });
      response = { ok: true, result: result, messages: messages };
    }
  } catch (e) {
    response = { ok: false, error: String(e && e.message ? e.message : e), messages: messages };
  }
  process.stdout.write(JSON.stringify(response));
});
'''


@dataclass
class SandboxOutput:
    """Raw answer of a rule script."""

    result: Any
    messages: List[str] = field(default_factory=list)


class ScriptSandbox(ABC):
    """Runs rule scripts of one language in a child interpreter."""

    language: ClassVar[str] = ""

    def __init__(self, executable: str, timeout: float = 30.0):
        self.executable = executable
        self.timeout = timeout

    @abstractmethod
    def command(self) -> List[str]:
        """Command line starting the interpreter with the runner program."""

    @abstractmethod
    def validate(self, script: str) -> None:
        """Check that a script compiles, without running it.

        Raises:
            RuleValidationError: If the script is invalid
        """

    def run_check(self, script: str, device: Dict[str, Any]) -> SandboxOutput:
        """Run the script's check function against a device payload.

        Raises:
            ScriptExecutionError: If the script fails
            ScriptTimeoutError: If the interpreter exceeds the time limit
        """
        output = self._invoke(self._check_payload(script, device))
        messages = [str(m) for m in output.get("messages", [])]
        if not output.get("ok"):
            raise ScriptExecutionError(
                f"{self.language} script error: {output.get('error', 'unknown error')}"
            )
        return SandboxOutput(result=output.get("result"), messages=messages)

    def _check_payload(self, script: str, device: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "mode": "check",
            "script": script,
            "device": device,
            "timeout_ms": int(self.timeout * 1000),
        }

    def _invoke(
self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            completed = subprocess.run(
                self.command(),
                input=json.dumps(payload),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ScriptTimeoutError(
                f"{self.language} script exceeded {self.timeout:g}s"
            ) from e
        except OSError as e:
            raise ScriptExecutionError(
                f"{self.language} interpreter not available ({self.executable}): {e}"
            ) from e

        if completed.returncode != 0:
            stderr = completed.stderr.strip()[-STDERR_EXCERPT:]
            raise ScriptExecutionError(
                f"{self.language} sandbox exited with status {completed.returncode}: {stderr}"
            )
        try:
            output = json.loads(completed.stdout)
        except json.JSONDecodeError as e:
            raise ScriptExecutionError(f"{self.language} sandbox returned invalid output") from e
        if not isinstance(output, dict):
            raise ScriptExecutionError(f"{self.language} sandbox returned invalid output")
        return output


class PythonSandbox(ScriptSandbox):
    """Runs Python rule scripts in a child interpreter with restricted builtins."""

    language = "python"

    def __init__(self, executable: str = sys.executable, timeout: float = 30.0):
        super().__init__(executable, timeout)

    def command(self) -> List[str]:
        return [self.executable, "-I", "-c", PYTHON_RUNNER]

    def _check_payload(self, script: str, device: Dict[str, Any]) -> Dict[str, Any]:
        payload = super()._check_payload(script, device)
        payload["modules"] = list(PYTHON_ALLOWED_MODULES)
        return payload

    def validate(self, script: str) -> None:
        try:
            tree = ast.parse(script, filename="<rule>")
        except SyntaxError as e:
            raise RuleValidationError(f"Python syntax error line {e.lineno}: {e.msg}") from e
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                names = [alias.name for alias in node.names]
            elif isinstance(node, ast.ImportFrom):
                names = [node.module or ""] if node.level == 0 else ["." * node.level]
            else:
                continue
            for name in names:
                if name.split(".")[0] not in PYTHON_ALLOWED_MODULES:
                    raise RuleValidationError(f"Python script may not import '{name}'")
        has_check = any(
            isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == "check"
            for node in tree.body
        )
        if not has_check:
            raise RuleValidationError("Python script does not define a check(device) function")


class NodeSandbox(ScriptSandbox):
    """Runs JavaScript rule scripts in a Node.js ``vm`` context."""

    language = "javascript"

    def __init__(self, executable: str = "node", timeout: float = 30.0):
        super().__init__(executable, timeout)

    def command(self) -> List[str]:
        return [self.executable, "-e", NODE_RUNNER]

    def validate(self, script: str) -> None:
        try:
            output = self._invoke({"mode": "validate", "script": script})
        except ScriptExecutionError as e:
            raise RuleValidationError(f"Cannot validate JavaScript: {e}") from e
        if not output.get("ok"):
            raise RuleValidationError(f"JavaScript error: {output.get('error')}")


_sandboxes: Dict[str, ScriptSandbox] = {}
_lock = threading.Lock()


def configure_sandboxes(config: SandboxConfig) -> None:
    """Set up the process-wide sandboxes (call at startup, before runs)."""
    with _lock:
        _sandboxes["python"] = PythonSandbox(config.python_executable, config.timeout)
        _sandboxes["javascript"] = NodeSandbox(config.node_executable, config.timeout)
    logger.debug(
        f"Sandboxes configured: python={config.python_executable}, "
        f"javascript={config.node_executable}, timeout={config.timeout:g}s"
    )


def get_sandbox(language: str) -> ScriptSandbox:
    """Get the sandbox for a language, with defaults if not configured.

    Raises:
        ScriptExecutionError: If the language has no sandbox
    """
    with _lock:
        if not _sandboxes:
            _sandboxes["python"] = PythonSandbox()
            _sandboxes["javascript"] = NodeSandbox()
        sandbox: Optional[ScriptSandbox] = _sandboxes.get(language)
    if sandbox is None:
        raise ScriptExecutionError(f"No sandbox for script language '{language}'")
    return sandbox
