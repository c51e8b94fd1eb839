"""
HookStream Sandbox — Restricted execution of user-supplied transform code.

Transform functions arrive as source strings (a function *body*):

    function:  return value.upper()
    computed:  return payload.quantity * payload.price

They are compiled into ``def transform(value, payload)`` / ``def
transform(payload)`` after AST vetting, with a restricted builtin set, and run
on a worker thread under a deadline.

Guarantees:
- No imports, no ``global``/``nonlocal``, no ``_``-prefixed names or
  attributes, no attribute assignment or deletion.
- No generators or coroutines, and no frame, code or traceback attributes.
- Literal exponents and ``range`` bounds are capped, since that work runs in C
  where the deadline cannot reach it.
- Arguments are read-only views; results are converted back to plain data.
- A trace hook aborts the function once its deadline passes.
"""

from __future__ import annotations

import ast
import concurrent.futures
import copy
import logging
import math
import sys
import textwrap
import threading
import time
from collections.abc import Mapping
from functools import lru_cache
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from hookstream.engine.errors import SandboxError, SandboxTimeoutError

logger = logging.getLogger("hookstream.engine.sandbox")

FUNCTION_KIND = "function"
COMPUTED_KIND = "computed"

_SIGNATURES = {
    FUNCTION_KIND: ("value", "payload"),
    COMPUTED_KIND: ("payload",),
}

SAFE_BUILTINS: Dict[str, Any] = {
    "abs": abs, "all": all, "any": any, "bool": bool, "dict": dict,
    "divmod": divmod, "enumerate": enumerate, "filter": filter,
    "float": float, "int": int, "isinstance": isinstance, "len": len,
    "list": list, "map": map, "max": max, "min": min, "range": range,
    "reversed": reversed, "round": round, "set": set, "sorted": sorted,
    "str": str, "sum": sum, "tuple": tuple, "zip": zip,
    "None": None, "True": True, "False": False,
    "Exception": Exception, "ValueError": ValueError,
    "TypeError": TypeError, "KeyError": KeyError,
}

_FORBIDDEN_NODES = (
    ast.Import, ast.ImportFrom, ast.Global, ast.Nonlocal,
    ast.Yield, ast.YieldFrom, ast.Await,
    ast.AsyncFunctionDef, ast.AsyncFor, ast.AsyncWith,
)

# Frame, code and traceback attributes of generators, coroutines and tracebacks
_FORBIDDEN_ATTR_PREFIXES = ("_", "gi_", "cr_", "ag_", "f_", "tb_", "co_")

# Literal bounds for work that runs inside C and cannot be interrupted
MAX_LITERAL_EXPONENT = 10_000
MAX_LITERAL_BITS = 1 << 16
MAX_LITERAL_RANGE = 10_000_000


# ---------------------------------------------------------------------------
# Read-only views
# ---------------------------------------------------------------------------

class PayloadView(Mapping):
    """
    Read-only view over a payload mapping.

    Supports ``view["key"]``, ``view.key``, ``view.get()`` and the rest of the
    Mapping protocol. Nested containers are wrapped on access.
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping):
        object.__setattr__(self, "_data", data)

    def __getitem__(self, key: str) -> Any:
        return wrap(self._data[key])

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return wrap(self._data[name])
        except KeyError:
            raise AttributeError(f"payload has no field '{name}'") from None

    def __setattr__(self, name: str, value: Any) -> None:
        raise TypeError("payload is read-only")

    def __delattr__(self, name: str) -> None:
        raise TypeError("payload is read-only")

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"PayloadView({self._data!r})"


def wrap(value: Any) -> Any:
    """Wrap containers in read-only form; scalars pass through."""
    if isinstance(value, PayloadView):
        return value
    if isinstance(value, Mapping):
        return PayloadView(value)
    if isinstance(value, (list, tuple)):
        return tuple(wrap(v) for v in value)
    return value


def unwrap(value: Any) -> Any:
    """Convert views (and anything containing them) back into plain data."""
    if isinstance(value, PayloadView):
        return {k: unwrap(v) for k, v in value._data.items()}
    if isinstance(value, Mapping):
        return {k: unwrap(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [unwrap(v) for v in value]
    if isinstance(value, list):
        return [unwrap(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return [unwrap(v) for v in value]
    return copy.deepcopy(value)


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------

class _Vetter(ast.NodeVisitor):
    """Rejects constructs that could reach engine state."""

    def __init__(self, source: str):
        self._source = source

    def _reject(self, reason: str, node: ast.AST) -> None:
        line = getattr(node, "lineno", "?")
        raise SandboxError(
            f"Transform code rejected: {reason} (line {line})",
            source=self._source,
        )

    def generic_visit(self, node: ast.AST) -> None:
        if isinstance(node, _FORBIDDEN_NODES):
            self._reject(f"'{type(node).__name__}' is not allowed", node)
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("_"):
            self._reject(f"name '{node.id}' is not allowed", node)
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith(_FORBIDDEN_ATTR_PREFIXES):
            self._reject(f"attribute '{node.attr}' is not allowed", node)
        if isinstance(node.ctx, (ast.Store, ast.Del)):
            self._reject("attribute assignment is not allowed", node)
        self.generic_visit(node)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        if node.name.startswith("_"):
            self._reject(f"name '{node.name}' is not allowed", node)
        self.generic_visit(node)

    def visit_BinOp(self, node: ast.BinOp) -> None:
        if isinstance(node.op, ast.Pow):
            base, exponent = _literal_int(node.left), _literal_int(node.right)
            if exponent is not None and exponent > MAX_LITERAL_EXPONENT:
                self._reject(f"exponent {exponent} is too large", node)
            if base is not None and exponent is not None and not _pow_fits(base, exponent):
                self._reject("power result is too large", node)
        self.generic_visit(node)

    def visit_Call(self, node: ast.Call) -> None:
        if isinstance(node.func, ast.Name) and node.func.id == "range":
            for arg in node.args:
                bound = _literal_int(arg)
                if bound is not None and abs(bound) > MAX_LITERAL_RANGE:
                    self._reject(f"range bound {bound} is too large", node)
        self.generic_visit(node)


def _pow_fits(base: int, exponent: int) -> bool:
    return abs(base).bit_length() * max(exponent, 0) <= MAX_LITERAL_BITS


def _literal_int(node: ast.AST) -> Optional[int]:
    """Value of an integer expression built only from literals, else None."""
    if isinstance(node, ast.Constant):
        value = node.value
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return None
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
        inner = _literal_int(node.operand)
        return None if inner is None else -inner
    if isinstance(node, ast.BinOp):
        left, right = _literal_int(node.left), _literal_int(node.right)
        if left is None or right is None:
            return None
        if isinstance(node.op, ast.Pow):
            if right < 0 or right > MAX_LITERAL_EXPONENT or not _pow_fits(left, right):
                return None
            return left ** right
        if isinstance(node.op, ast.Mult):
            return left * right
        if isinstance(node.op, ast.Add):
            return left + right
        if isinstance(node.op, ast.Sub):
            return left - right
    return None


@lru_cache(maxsize=512)
def compile_transform(source: str, kind: str = FUNCTION_KIND) -> Callable[..., Any]:
    """
    Compile a transform body into a callable.

    Raises SandboxError for unknown kinds, syntax errors and vetted constructs.
    Results are cached by (source, kind).
    """
    if kind not in _SIGNATURES:
        raise SandboxError(f"Unknown transform kind: {kind}", source=source)
    if not source or not source.strip():
        raise SandboxError("Transform code is empty", source=source)

    params = ", ".join(_SIGNATURES[kind])
    body = textwrap.indent(textwrap.dedent(source).strip("\n"), "    ")
    wrapped = f"def transform({params}):\n{body}\n"

    try:
        tree = ast.parse(wrapped, filename="<transform>", mode="exec")
    except SyntaxError as e:
        raise SandboxError(
            f"Transform code has a syntax error: {e.msg} (line {e.lineno})",
            source=source,
        ) from e

    _Vetter(source).visit(tree)

    code = compile(tree, filename="<transform>", mode="exec")
    namespace: Dict[str, Any] = {"__builtins__": dict(SAFE_BUILTINS), "math": math}
    exec(code, namespace)  # noqa: S102
    return namespace["transform"]


def validate_source(source: str, kind: str = FUNCTION_KIND) -> None:
    """Compile only to surface errors. Raises SandboxError."""
    compile_transform(source, kind)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

class _Deadline(BaseException):
    """Raised inside the worker thread by the trace hook."""


def _run_with_deadline(fn: Callable[..., Any], args: Tuple[Any, ...], deadline: float) -> Any:
    def tracer(frame, event, arg):
        if time.monotonic() > deadline:
            raise _Deadline()
        return tracer

    previous = sys.gettrace()
    sys.settrace(tracer)
    try:
        return fn(*args)
    finally:
        sys.settrace(previous)


class Sandbox:
    """
    Runs compiled transform functions on a bounded worker pool.

    Usage:
        sandbox = Sandbox(timeout_seconds=1.0)
        sandbox.run("return payload.a * 2", COMPUTED_KIND, payload={"a": 2})  # -> 4
        sandbox.shutdown()
    """

    def __init__(self, timeout_seconds: float = 1.0, max_workers: int = 4):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._timeout = timeout_seconds
        self._max_workers = max_workers
        self._pool: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._timeouts = 0
        self._stuck: set = set()

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    @property
    def timeout_count(self) -> int:
        return self._timeouts

    @property
    def stuck_workers(self) -> int:
        """Workers still running a call that already timed out."""
        with self._lock:
            return len(self._stuck)

    def _track_stuck(self, future: concurrent.futures.Future) -> None:
        # Queued calls are dropped; only started ones can hold a worker
        if future.cancel():
            return
        with self._lock:
            if future.done():
                return
            self._stuck.add(future)
            stuck = len(self._stuck)
        future.add_done_callback(self._release_stuck)
        if stuck >= self._max_workers:
            logger.warning(
                "Sandbox pool saturated: %d of %d workers busy with timed-out transforms",
                stuck, self._max_workers,
            )

    def _release_stuck(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._stuck.discard(future)

    def _executor(self) -> concurrent.futures.ThreadPoolExecutor:
        with self._lock:
            if self._pool is None:
                self._pool = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="hookstream-sandbox",
                )
            return self._pool

    def run(
        self,
        source: str,
        kind: str,
        *,
        value: Any = None,
        payload: Any = None,
    ) -> Any:
        """
        Execute ``source`` and return its result as plain data.

        Raises SandboxError (compile/runtime failure) or SandboxTimeoutError.
        """
        fn = compile_transform(source, kind)
        if kind == FUNCTION_KIND:
            args: Tuple[Any, ...] = (wrap(value), wrap(payload))
        else:
            args = (wrap(payload),)

        deadline = time.monotonic() + self._timeout
        future = self._executor().submit(_run_with_deadline, fn, args, deadline)
        try:
            result = future.result(timeout=self._timeout)
        except concurrent.futures.TimeoutError:
            self._timeouts += 1
            self._track_stuck(future)
            raise SandboxTimeoutError(
                f"Transform code exceeded {self._timeout}s",
                source=source,
                timeout_seconds=self._timeout,
            ) from None
        except _Deadline:
            self._timeouts += 1
            raise SandboxTimeoutError(
                f"Transform code exceeded {self._timeout}s",
                source=source,
                timeout_seconds=self._timeout,
            ) from None
        except SandboxError:
            raise
        except Exception as e:
            raise SandboxError(
                f"Transform code raised {type(e).__name__}: {e}",
                source=source,
            ) from e

        return unwrap(result)

    def shutdown(self, wait: bool = False) -> None:
        """Stop the worker pool. A new pool is created on the next run()."""
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=wait, cancel_futures=True)
            logger.info("Sandbox worker pool stopped")
