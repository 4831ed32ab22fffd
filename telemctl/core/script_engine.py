"""Sandboxed execution of user-authored frame parser scripts.

A parser script is Python source that declares exactly one ``parse`` function::

    def parse(frame):
        return frame.split(";")

The legacy form ``parse(frame, separator)`` is still accepted; it is flagged
for migration and called with the project separator as second argument.

Scripts run inside their own namespace with a reduced set of builtins and a
small host API (``hex_to_bytes``, ``bytes_to_hex``, ``base64_decode``,
``base64_encode``, ``unpack``, ``math``). Imports, dunder names and private
attribute access are rejected before the script ever executes, as are frame
and generator introspection attributes and bare ``except:`` clauses. Every
execution is bounded by a budget of script lines (``step_limit``); a script
that exceeds it is stopped. Time spent inside builtins is not counted.
"""

from __future__ import annotations

import ast
import base64
import builtins
import logging
import math
import struct
import sys
from types import FrameType
from typing import Any, Callable

from telemctl.core.decoder import payload_text
from telemctl.core.errors import ScriptRuntimeError, ScriptValidationError

LOGGER = logging.getLogger(__name__)

_SCRIPT_FILENAME = "<frame-parser>"
_SCALAR_TYPES = (str, int, float, bool)
_SAFE_BUILTINS = (
    "abs", "all", "any", "bool", "bytearray", "bytes", "chr", "dict", "divmod",
    "enumerate", "filter", "float", "format", "frozenset", "hex", "int",
    "isinstance", "len", "list", "map", "max", "min", "oct", "ord", "pow",
    "range", "repr", "reversed", "round", "set", "slice", "sorted", "str",
    "sum", "tuple", "zip",
    "Exception", "ArithmeticError", "IndexError", "KeyError", "TypeError",
    "ValueError", "ZeroDivisionError",
)
# Frame, generator, coroutine, traceback and code object internals lead back to
# the host interpreter's globals.
_INTROSPECTION_PREFIXES = ("f_", "gi_", "cr_", "ag_", "tb_", "co_")
_BLOCKED_ATTRIBUTES = frozenset({"mro"})
DEFAULT_STEP_LIMIT = 1_000_000


class _StepLimitExceeded(BaseException):
    """Raised inside the script; a BaseException so ``except Exception`` cannot hold it."""


class _StepBudget:
    """``sys.settrace`` hook counting executed script lines."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.steps = 0

    def __call__(self, frame: FrameType, event: str, arg: Any) -> Callable | None:
        if frame.f_code.co_filename != _SCRIPT_FILENAME:
            return None
        return self._count

    def _count(self, frame: FrameType, event: str, arg: Any) -> Callable:
        if event == "line":
            self.steps += 1
            if self.steps > self.limit:
                raise _StepLimitExceeded(f"script exceeded {self.limit} steps")
        return self._count


def _run_bounded(limit: int, function: Callable[..., Any], *args: Any) -> Any:
    previous = sys.gettrace()
    sys.settrace(_StepBudget(limit))
    try:
        return function(*args)
    finally:
        sys.settrace(previous)


def _script_print(*args: Any) -> None:
    LOGGER.debug("frame parser: %s", " ".join(str(arg) for arg in args))


def _hex_to_bytes(text: str) -> bytes:
    return bytes.fromhex(text)


def _bytes_to_hex(data: bytes) -> str:
    return bytes(data).hex()


def _base64_decode(text: str | bytes) -> bytes:
    return base64.b64decode(text, validate=True)


def _base64_encode(data: bytes) -> str:
    return base64.b64encode(bytes(data)).decode("ascii")


def _host_namespace() -> dict[str, Any]:
    safe_builtins = {name: getattr(builtins, name) for name in _SAFE_BUILTINS}
    safe_builtins["print"] = _script_print
    return {
        "__builtins__": safe_builtins,
        "__name__": "frame_parser",
        "hex_to_bytes": _hex_to_bytes,
        "bytes_to_hex": _bytes_to_hex,
        "base64_decode": _base64_decode,
        "base64_encode": _base64_encode,
        "unpack": struct.unpack,
        "math": math,
    }


class _SandboxChecker(ast.NodeVisitor):
    def visit_Import(self, node: ast.Import) -> None:
        raise ScriptValidationError(f"line {node.lineno}: imports are not allowed in frame parser scripts")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        raise ScriptValidationError(f"line {node.lineno}: imports are not allowed in frame parser scripts")

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            raise ScriptValidationError(f"line {node.lineno}: name '{node.id}' is not allowed")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if (
            node.attr.startswith("_")
            or node.attr.startswith(_INTROSPECTION_PREFIXES)
            or node.attr in _BLOCKED_ATTRIBUTES
        ):
            raise ScriptValidationError(f"line {node.lineno}: attribute '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.type is None:
            raise ScriptValidationError(f"line {node.lineno}: bare 'except:' is not allowed, name the exception type")
        self.generic_visit(node)

    # A stopped script unwinds with tracing off; nothing may run during that unwind.
    def visit_Try(self, node: ast.Try) -> None:
        if node.finalbody:
            raise ScriptValidationError(f"line {node.lineno}: 'finally' blocks are not allowed")
        self.generic_visit(node)

    visit_TryStar = visit_Try

    def _check_definition(self, node: ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef) -> None:
        if node.name.startswith("__"):
            raise ScriptValidationError(f"line {node.lineno}: name '{node.name}' is not allowed")
        self.generic_visit(node)

    visit_FunctionDef = visit_AsyncFunctionDef = visit_ClassDef = _check_definition


def _find_parse_definition(tree: ast.Module) -> ast.FunctionDef:
    definitions = [
        node
        for node in tree.body
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == "parse"
    ]
    if not definitions:
        raise ScriptValidationError("No valid 'parse' function declaration found in the script!")
    if len(definitions) > 1:
        lines = ", ".join(str(node.lineno) for node in definitions)
        raise ScriptValidationError(f"The 'parse' function must be declared exactly once (lines {lines})")
    definition = definitions[0]
    if isinstance(definition, ast.AsyncFunctionDef):
        raise ScriptValidationError("The 'parse' function must not be async")
    return definition


def _parameter_names(definition: ast.FunctionDef) -> tuple[str, ...]:
    args = definition.args
    if args.vararg or args.kwarg or any(default is None for default in args.kw_defaults):
        raise ScriptValidationError("The 'parse' function must take only positional arguments")
    names = tuple(arg.arg for arg in (*args.posonlyargs, *args.args))
    if len(names) not in (1, 2):
        raise ScriptValidationError(
            f"The 'parse' function must take one argument (frame), got {len(names)}"
        )
    return names


def _normalize_fields(result: Any) -> list[str]:
    if not isinstance(result, (list, tuple)):
        raise TypeError(f"parse() must return a list, got {type(result).__name__}")
    fields: list[str] = []
    for position, value in enumerate(result):
        if not isinstance(value, _SCALAR_TYPES):
            raise TypeError(f"parse() returned a non-scalar {type(value).__name__} at position {position}")
        fields.append(str(value))
    return fields


class ParseScript:
    """A validated parser script with its calling convention resolved."""

    def __init__(
        self,
        source: str,
        function: Callable[..., Any],
        parameters: tuple[str, ...],
        *,
        separator: str,
        text_input: bool,
        step_limit: int = DEFAULT_STEP_LIMIT,
    ) -> None:
        self.source = source
        self.parameters = parameters
        self.separator = separator
        self.text_input = text_input
        self.step_limit = step_limit
        self._function = function

    @property
    def legacy(self) -> bool:
        return len(self.parameters) == 2

    def parse(self, payload: bytes) -> list[str]:
        frame: str | bytes = payload_text(payload) if self.text_input else bytes(payload)
        try:
            if self.legacy:
                result = _run_bounded(self.step_limit, self._function, frame, self.separator)
            else:
                result = _run_bounded(self.step_limit, self._function, frame)
            return _normalize_fields(result)
        except _StepLimitExceeded as exc:
            raise ScriptRuntimeError(f"Frame parser stopped: {exc}") from exc
        except Exception as exc:
            raise ScriptRuntimeError(f"Frame parser failed: {type(exc).__name__}: {exc}") from exc


class ScriptEngine:
    def __init__(self, *, step_limit: int = DEFAULT_STEP_LIMIT) -> None:
        self.step_limit = step_limit

    def load(
        self,
        source: str,
        *,
        separator: str = ",",
        text_input: bool = True,
        field_count: int = 1,
        sample: str | bytes | None = None,
    ) -> ParseScript:
        """Validate ``source`` and return a ready-to-call :class:`ParseScript`.

        The script is executed once against ``sample`` or a synthetic frame:
        ``field_count`` zeros joined by ``separator`` for text input, and
        ``field_count`` zero bytes for binary input. Any failure on a sample
        or text frame rejects the script. Binary layouts rarely accept zero
        bytes, so there only undefined names and runaway loops reject it.
        """
        try:
            tree = ast.parse(source, filename=_SCRIPT_FILENAME, mode="exec")
        except SyntaxError as exc:
            raise ScriptValidationError(f"Syntax error on line {exc.lineno}: {exc.msg}") from exc

        _SandboxChecker().visit(tree)
        definition = _find_parse_definition(tree)
        parameters = _parameter_names(definition)

        namespace = _host_namespace()
        try:
            _run_bounded(self.step_limit, exec, compile(tree, _SCRIPT_FILENAME, "exec"), namespace)
        except _StepLimitExceeded as exc:
            raise ScriptValidationError(f"Frame parser script did not finish: {exc}") from exc
        except Exception as exc:
            raise ScriptValidationError(f"Frame parser script failed to run: {type(exc).__name__}: {exc}") from exc

        function = namespace.get("parse")
        if not callable(function):
            raise ScriptValidationError("The 'parse' function is not declared or is not callable!")

        script = ParseScript(
            source,
            function,
            parameters,
            separator=separator,
            text_input=text_input,
            step_limit=self.step_limit,
        )
        if script.legacy:
            LOGGER.warning(
                "Legacy frame parser function detected: 'parse' takes two arguments ('%s', '%s'). "
                "Update it to take only the frame data.",
                *parameters,
            )

        synthetic = sample is None
        if sample is not None:
            check_frame = sample.encode("utf-8") if isinstance(sample, str) else bytes(sample)
        elif text_input:
            check_frame = separator.join("0" for _ in range(max(field_count, 1))).encode("utf-8")
        else:
            check_frame = bytes(max(field_count, 1))

        try:
            script.parse(check_frame)
        except ScriptRuntimeError as exc:
            if synthetic and not text_input and not isinstance(exc.__cause__, (NameError, _StepLimitExceeded)):
                LOGGER.warning("Frame parser could not be checked against a synthetic binary frame: %s", exc)
                return script
            raise ScriptValidationError(f"Frame parser rejected the sample frame: {exc}") from exc
        return script


def migrate_legacy(source: str, separator: str = ",") -> str:
    """Rewrite ``parse(frame, separator)`` into the single-argument form.

    The separator becomes a local constant at the top of the function body.
    Scripts already in the current form are returned unchanged.
    """
    try:
        tree = ast.parse(source, filename=_SCRIPT_FILENAME, mode="exec")
    except SyntaxError as exc:
        raise ScriptValidationError(f"Syntax error on line {exc.lineno}: {exc.msg}") from exc
    definition = _find_parse_definition(tree)
    parameters = _parameter_names(definition)
    if len(parameters) == 1:
        return source

    first_statement = definition.body[0]
    if first_statement.lineno == definition.lineno:
        raise ScriptValidationError("Cannot migrate a single-line 'parse' definition")

    lines = source.splitlines()
    indent = " " * first_statement.col_offset
    returns = f" -> {ast.unparse(definition.returns)}" if definition.returns else ""
    header_indent = " " * definition.col_offset
    header = f"{header_indent}def parse({parameters[0]}){returns}:"
    body_start = first_statement.lineno - 1
    migrated = [
        *lines[: definition.lineno - 1],
        header,
        f"{indent}{parameters[1]} = {separator!r}",
        *lines[body_start:],
    ]
    return "\n".join(migrated) + ("\n" if source.endswith("\n") else "")
