"""Isolated execution of model-supplied Python snippets.

A snippet is treated as the body of a zero-argument function: it is indented
into ``def _snippet():`` and called once inside a fresh ``python -I``
subprocess. Its ``return`` value becomes the result. Only safe builtins and a
small set of math modules are visible. Nothing from the caller leaks in.
"""

from __future__ import annotations

import ast
import io
import json
import logging
import math
import re
import subprocess
import sys
import textwrap
import time
import tokenize
from dataclasses import dataclass
from typing import Any

from .errors import ExecutionError

logger = logging.getLogger(__name__)

SNIPPET_FUNCTION = "_snippet"


@dataclass(frozen=True)
class SandboxPolicy:
    timeout_sec: int = 6
    max_code_chars: int = 8_000
    max_output_chars: int = 4_000
    max_memory_mb: int = 512
    allowed_imports: tuple[str, ...] = (
        "math",
        "cmath",
        "itertools",
        "functools",
        "fractions",
        "decimal",
        "collections",
        "statistics",
        "random",
        "sympy",
        "numpy",
    )


@dataclass(frozen=True)
class SandboxExecution:
    result: Any = None
    error: str | None = None
    exception_type: str | None = None
    stdout: str = ""
    duration_sec: float = 0.0
    has_result: bool = False

    @property
    def success(self) -> bool:
        return self.error is None

    def as_error(self) -> ExecutionError | None:
        """The failure as an error value, or ``None`` when the run succeeded."""

        if self.error is None:
            return None
        return ExecutionError(self.error, exception_type=self.exception_type)


_BLOCKED_NAMES = {
    "open",
    "exec",
    "eval",
    "compile",
    "input",
    "__import__",
    "globals",
    "locals",
    "vars",
    "help",
    "breakpoint",
    "quit",
    "exit",
    "getattr",
    "setattr",
    "delattr",
}

# Attributes that lead from an allowed module back to the host.
_BLOCKED_ATTRIBUTES = {
    "os",
    "sys",
    "modules",
    "subprocess",
    "builtins",
    "importlib",
    "shutil",
    "socket",
    "system",
    "popen",
    "f_globals",
    "f_locals",
    "f_back",
    "gi_frame",
    "cr_frame",
    "tb_frame",
}

_DISPLAY_MATH_RE = re.compile(r"\$\$([\s\S]*?)\$\$")
_INLINE_MATH_RE = re.compile(r"\$([^$]*?)\$")
_BLOCK_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")
_LINE_COMMENT_RE = re.compile(r"(?m)^\s*#.*$")

EMPTY_SNIPPET_ERROR = "No executable code found after cleaning."


class CodeSafetyError(ValueError):
    """Raised when code violates sandbox policy."""


def _strip_python_comments(code: str) -> str:
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(code).readline))
    except (tokenize.TokenError, IndentationError, SyntaxError):
        return _LINE_COMMENT_RE.sub("", code)

    lines = code.splitlines(keepends=True)
    # Walk backwards so earlier offsets stay valid.
    for tok in reversed(tokens):
        if tok.type != tokenize.COMMENT:
            continue
        row, col = tok.start
        line = lines[row - 1]
        newline = "\n" if line.endswith("\n") else ""
        lines[row - 1] = line[:col].rstrip() + newline
    return "".join(lines)


def clean_snippet(code: str) -> str:
    """Remove LaTeX math spans and comments that models mix into code."""

    cleaned = (code or "").strip()
    cleaned = _DISPLAY_MATH_RE.sub("", cleaned)
    cleaned = _INLINE_MATH_RE.sub("", cleaned)
    cleaned = _BLOCK_COMMENT_RE.sub("", cleaned)
    cleaned = _strip_python_comments(cleaned)
    return cleaned.strip()


def wrap_snippet(code: str) -> str:
    """Turn a snippet into the source of a zero-argument function."""

    body = textwrap.indent(textwrap.dedent(code), "    ")
    return f"def {SNIPPET_FUNCTION}():\n{body}\n"


def validate_code_safety(source: str, policy: SandboxPolicy) -> None:
    """Static checks to reject unsafe code before execution."""

    if len(source) > policy.max_code_chars:
        raise CodeSafetyError("Code block too large for sandbox policy")

    try:
        tree = ast.parse(source, mode="exec")
    except SyntaxError as exc:
        raise CodeSafetyError(f"Syntax error in code: {exc.msg} (line {exc.lineno})") from exc

    if sum(1 for _ in ast.walk(tree)) > 3_000:
        raise CodeSafetyError("Code block AST too large")

    for node in ast.walk(tree):
        if isinstance(node, (ast.With, ast.AsyncWith, ast.ClassDef, ast.Global, ast.Nonlocal)):
            raise CodeSafetyError(f"Disallowed construct: {type(node).__name__}")

        if isinstance(node, ast.Name) and node.id in _BLOCKED_NAMES:
            raise CodeSafetyError(f"Blocked symbol used: {node.id}")

        if isinstance(node, ast.Attribute):
            if node.attr.startswith("_"):
                raise CodeSafetyError(f"Private attribute access is blocked: {node.attr}")
            if node.attr in _BLOCKED_ATTRIBUTES:
                raise CodeSafetyError(f"Attribute access is blocked: {node.attr}")

        if isinstance(node, ast.Import):
            for alias in node.names:
                top = alias.name.split(".")[0]
                if top not in policy.allowed_imports:
                    raise CodeSafetyError(f"Import blocked: {top}")

        if isinstance(node, ast.ImportFrom):
            module = (node.module or "").split(".")[0]
            if module not in policy.allowed_imports:
                raise CodeSafetyError(f"Import blocked: {module}")


def _build_runner(source: str, policy: SandboxPolicy) -> str:
    escaped_code = json.dumps(source)
    escaped_allowed = json.dumps(list(policy.allowed_imports))

    runner = f"""
import builtins
import io
import json
import math
import traceback
from contextlib import redirect_stdout, redirect_stderr

try:
    import resource
except Exception:
    resource = None

ALLOWED_IMPORTS = set({escaped_allowed})
USER_CODE = {escaped_code}
MAX_OUTPUT_CHARS = {policy.max_output_chars}
MAX_MEMORY_MB = {policy.max_memory_mb}

if resource is not None:
    try:
        memory = MAX_MEMORY_MB * 1024 * 1024
        resource.setrlimit(resource.RLIMIT_AS, (memory, memory))
        resource.setrlimit(resource.RLIMIT_CPU, ({policy.timeout_sec}, {policy.timeout_sec + 1}))
    except Exception:
        pass


def _guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
    if name.split(".")[0] not in ALLOWED_IMPORTS:
        raise ImportError("Import blocked: " + name)
    return builtins.__import__(name, globals, locals, fromlist, level)


safe_builtins = {{
    "__import__": _guarded_import,
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "complex": complex,
    "dict": dict,
    "divmod": divmod,
    "enumerate": enumerate,
    "filter": filter,
    "float": float,
    "frozenset": frozenset,
    "int": int,
    "isinstance": isinstance,
    "len": len,
    "list": list,
    "map": map,
    "max": max,
    "min": min,
    "pow": pow,
    "print": print,
    "range": range,
    "reversed": reversed,
    "round": round,
    "set": set,
    "sorted": sorted,
    "str": str,
    "sum": sum,
    "tuple": tuple,
    "zip": zip,
    "ArithmeticError": ArithmeticError,
    "Exception": Exception,
    "OverflowError": OverflowError,
    "RuntimeError": RuntimeError,
    "TypeError": TypeError,
    "ValueError": ValueError,
    "ZeroDivisionError": ZeroDivisionError,
}}

globals_dict = {{"__builtins__": safe_builtins, "math": math}}

for module_name in ALLOWED_IMPORTS:
    try:
        globals_dict[module_name] = __import__(module_name)
    except Exception:
        pass


def _placeholder(value):
    if callable(value):
        return "[Function]"
    if type(value).__name__ == "module":
        return "[Module]"
    if isinstance(value, (set, frozenset)):
        try:
            return sorted(value)
        except TypeError:
            return list(value)
    if hasattr(value, "item") and callable(value.item):
        try:
            return value.item()
        except Exception:
            pass
    if hasattr(value, "tolist") and callable(value.tolist):
        try:
            return value.tolist()
        except Exception:
            pass
    if isinstance(value, complex):
        return str(value)
    try:
        return float(value)
    except Exception:
        return repr(value)


stdout_buffer = io.StringIO()
stderr_buffer = io.StringIO()
result = None
error = None
exception_type = None

try:
    with redirect_stdout(stdout_buffer), redirect_stderr(stderr_buffer):
        exec(compile(USER_CODE, "<sandbox>", "exec"), globals_dict)
        result = globals_dict["{SNIPPET_FUNCTION}"]()
except BaseException as exc:
    error = str(exc) or type(exc).__name__
    exception_type = type(exc).__name__
    stderr_buffer.write(traceback.format_exc())

try:
    encoded_result = json.loads(json.dumps(result, default=_placeholder))
except Exception as exc:
    encoded_result = repr(result)

print(json.dumps({{
    "result": encoded_result,
    "has_result": result is not None,
    "stdout": stdout_buffer.getvalue()[:MAX_OUTPUT_CHARS],
    "stderr": stderr_buffer.getvalue()[:MAX_OUTPUT_CHARS],
    "error": error,
    "exception_type": exception_type,
}}))
"""

    return textwrap.dedent(runner)


def execute_snippet(code: str, policy: SandboxPolicy | None = None) -> SandboxExecution:
    """Run a snippet as a function body in a constrained subprocess.

    Never raises: every failure is reported through ``error``.
    """

    policy = policy or SandboxPolicy()
    start = time.perf_counter()

    cleaned = clean_snippet(code)
    if not cleaned:
        return SandboxExecution(error=EMPTY_SNIPPET_ERROR, exception_type="EmptySnippet")

    source = wrap_snippet(cleaned)
    try:
        validate_code_safety(source, policy)
    except CodeSafetyError as exc:
        return SandboxExecution(
            error=str(exc),
            exception_type="CodeSafetyError",
            duration_sec=time.perf_counter() - start,
        )

    runner = _build_runner(source, policy)

    try:
        process = subprocess.run(
            [sys.executable, "-I", "-c", runner],
            check=False,
            capture_output=True,
            text=True,
            timeout=policy.timeout_sec + 1,
        )
    except subprocess.TimeoutExpired:
        return SandboxExecution(
            error=f"Sandbox timed out after {policy.timeout_sec}s",
            exception_type="TimeoutExpired",
            duration_sec=time.perf_counter() - start,
        )
    except OSError as exc:
        return SandboxExecution(
            error=f"Sandbox could not start: {exc}",
            exception_type=type(exc).__name__,
            duration_sec=time.perf_counter() - start,
        )

    duration = time.perf_counter() - start

    payload = None
    stdout_lines = process.stdout.strip().splitlines()
    if stdout_lines:
        try:
            payload = json.loads(stdout_lines[-1])
        except json.JSONDecodeError:
            payload = None

    if not isinstance(payload, dict):
        stderr_excerpt = process.stderr.strip()[-policy.max_output_chars :]
        logger.warning("Sandbox output parse failure (exit=%s): %s", process.returncode, stderr_excerpt)
        return SandboxExecution(
            error="Sandbox output parse failure",
            exception_type="RuntimeError",
            stdout=process.stdout[: policy.max_output_chars],
            duration_sec=duration,
        )

    error = payload.get("error")
    return SandboxExecution(
        result=payload.get("result") if error is None else None,
        error=error,
        exception_type=payload.get("exception_type"),
        stdout=(payload.get("stdout") or "")[: policy.max_output_chars],
        duration_sec=duration,
        has_result=bool(payload.get("has_result")) and error is None,
    )


NO_RETURN_VERIFICATION = (
    "None (the verification code did not return a value. "
    "It should end with an explicit 'return ...' statement.)"
)
NO_RETURN_STEP = "None (this step's code did not return an explicit value.)"


def _format_number(value: float | int) -> str:
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer():
        return str(int(value))
    text = f"{value:.10f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_value(value: Any, *, has_result: bool = True, verification: bool = False) -> str:
    """Render a snippet return value for display."""

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _format_number(value)
    if value is None:
        if not has_result:
            return NO_RETURN_VERIFICATION if verification else NO_RETURN_STEP
        return "null"
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, indent=2, default=lambda v: "[Function]" if callable(v) else repr(v))
        except (TypeError, ValueError) as exc:
            return f"[Could not stringify object: {exc}]"
    return str(value)


def format_result(execution: SandboxExecution, *, verification: bool = False) -> str:
    """Render an execution (result or error) for display."""

    if execution.error:
        return f"Error: {execution.error}"
    return format_value(execution.result, has_result=execution.has_result, verification=verification)


def summarize_execution(execution: SandboxExecution) -> str:
    """Short string for logs/debug traces."""

    if execution.success:
        return f"ok ({execution.duration_sec:.2f}s): {format_value(execution.result, has_result=execution.has_result)[:120]}"

    reason = execution.error or "unknown error"
    return f"fail ({execution.duration_sec:.2f}s): {reason}"
