"""
Sandbox Compiler: turn handler text into a callable with an injected capability set.

A handler is the body of a function taking ``(args, context)``. The body is
wrapped into a function definition, compiled, and defined inside a fresh
namespace whose only ambient names are the curated capabilities below. Every
capability outside the allow-list is bound to ``None`` explicitly, so a
reference resolves to nothing instead of falling through to the host.

Bodies that use ``await``, ``async for`` or ``async with`` compile to
coroutine functions; the executor handles both shapes.
"""

from __future__ import annotations

import asyncio
import builtins as _builtins
import collections
import functools
import hashlib
import itertools
import json
import math
import random
import re
import statistics
import string
import textwrap
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Callable, Dict
from urllib.parse import parse_qs, quote, unquote, urlencode, urlparse

from .errors import CompilationError


ENTRYPOINT = "__primitive_handler__"

_ASYNC_BODY = re.compile(r"\bawait\b|\basync\s+(?:for|with)\b")

SAFE_BUILTIN_NAMES = (
    "abs", "all", "any", "bin", "bool", "callable", "chr", "dict", "divmod",
    "enumerate", "filter", "float", "format", "frozenset", "hasattr", "hex",
    "int", "isinstance", "issubclass", "iter", "len", "list", "map", "max",
    "min", "next", "oct", "ord", "pow", "range", "repr", "reversed", "round",
    "set", "slice", "sorted", "str", "sum", "tuple", "zip",
    "ArithmeticError", "AssertionError", "AttributeError", "Exception",
    "IndexError", "KeyError", "LookupError", "NotImplementedError",
    "OverflowError", "RuntimeError", "StopIteration", "TypeError",
    "ValueError", "ZeroDivisionError",
)

BLOCKED_BUILTIN_NAMES = (
    "__import__", "open", "eval", "exec", "compile", "globals", "locals",
    "vars", "getattr", "setattr", "delattr", "input", "breakpoint", "type",
    "object", "super", "memoryview", "__build_class__", "exit", "quit", "help",
)

BLOCKED_GLOBAL_NAMES = (
    "os", "sys", "subprocess", "socket", "importlib", "builtins", "inspect",
    "shutil", "pathlib", "threading", "multiprocessing", "ctypes", "urllib",
    "http", "requests", "httpx", "aiohttp",
)


def _noop(*_args: Any, **_kwargs: Any) -> None:
    return None


SANDBOX_GLOBALS: Dict[str, Any] = {
    # Structured data
    "json": SimpleNamespace(dumps=json.dumps, loads=json.loads, JSONDecodeError=json.JSONDecodeError),
    "collections": SimpleNamespace(
        Counter=collections.Counter,
        OrderedDict=collections.OrderedDict,
        defaultdict=collections.defaultdict,
        deque=collections.deque,
    ),
    "itertools": itertools,
    "functools": SimpleNamespace(reduce=functools.reduce, partial=functools.partial),
    # Pattern / text
    "re": SimpleNamespace(
        compile=re.compile,
        search=re.search,
        match=re.match,
        fullmatch=re.fullmatch,
        findall=re.findall,
        finditer=re.finditer,
        sub=re.sub,
        split=re.split,
        escape=re.escape,
        IGNORECASE=re.IGNORECASE,
        MULTILINE=re.MULTILINE,
        DOTALL=re.DOTALL,
        error=re.error,
    ),
    "string": SimpleNamespace(
        ascii_letters=string.ascii_letters,
        ascii_lowercase=string.ascii_lowercase,
        ascii_uppercase=string.ascii_uppercase,
        digits=string.digits,
        punctuation=string.punctuation,
        whitespace=string.whitespace,
        capwords=string.capwords,
    ),
    "urlparse": urlparse,
    "urlencode": urlencode,
    "parse_qs": parse_qs,
    "quote": quote,
    "unquote": unquote,
    # Numeric / date
    "math": math,
    "statistics": SimpleNamespace(
        mean=statistics.mean,
        median=statistics.median,
        mode=statistics.mode,
        stdev=statistics.stdev,
        pstdev=statistics.pstdev,
        variance=statistics.variance,
        pvariance=statistics.pvariance,
        StatisticsError=statistics.StatisticsError,
    ),
    "random": SimpleNamespace(
        random=random.random,
        randint=random.randint,
        uniform=random.uniform,
        choice=random.choice,
        sample=random.sample,
        shuffle=random.shuffle,
    ),
    "Decimal": Decimal,
    "datetime": datetime,
    "date": date,
    "timedelta": timedelta,
    "timezone": timezone,
    # Logging stubs: handlers may call them, nothing is emitted
    "log": SimpleNamespace(debug=_noop, info=_noop, warning=_noop, error=_noop),
    # Async results
    "asyncio": SimpleNamespace(sleep=asyncio.sleep, gather=asyncio.gather, wait_for=asyncio.wait_for),
}


def _sandbox_builtins() -> Dict[str, Any]:
    table: Dict[str, Any] = {name: getattr(_builtins, name) for name in SAFE_BUILTIN_NAMES}
    table.update(dict.fromkeys(BLOCKED_BUILTIN_NAMES))
    table["print"] = _noop
    return table


def build_namespace() -> Dict[str, Any]:
    """Fresh module namespace for one compiled handler."""
    namespace: Dict[str, Any] = dict(SANDBOX_GLOBALS)
    namespace.update(dict.fromkeys(BLOCKED_GLOBAL_NAMES))
    namespace["__builtins__"] = _sandbox_builtins()
    namespace["__name__"] = "primitive_sandbox"
    return namespace


def fingerprint(handler_text: str) -> str:
    """Cheap deterministic hash of handler text, for cache keys only."""
    return hashlib.blake2b(handler_text.encode("utf-8"), digest_size=8).hexdigest()


@dataclass(frozen=True)
class CompiledHandler:
    func: Callable[..., Any]
    fingerprint: str
    is_async: bool
    source: str = field(repr=False)

    def __call__(self, args: Any, context: Any) -> Any:
        return self.func(args, context)


def wrap_source(handler_text: str) -> tuple[str, bool]:
    body = textwrap.dedent(handler_text).strip("\n")
    if not body.strip():
        body = "return None"
    is_async = _ASYNC_BODY.search(body) is not None
    header = "async def" if is_async else "def"
    source = f"{header} {ENTRYPOINT}(args, context):\n{textwrap.indent(body, '    ')}\n"
    return source, is_async


def compile_handler(handler_text: str, name: str = "handler") -> CompiledHandler:
    """
    Compile handler text into a CompiledHandler.

    Raises CompilationError synchronously for malformed text; nothing from
    the body runs here, only the function definition.
    """
    source, is_async = wrap_source(handler_text)
    try:
        code = compile(source, f"<primitive:{name}>", "exec", dont_inherit=True)
    except (SyntaxError, ValueError) as exc:
        raise CompilationError(f"Failed to compile handler: {exc}") from exc

    namespace = build_namespace()
    exec(code, namespace)
    func = namespace[ENTRYPOINT]
    return CompiledHandler(
        func=func,
        fingerprint=fingerprint(handler_text),
        is_async=is_async,
        source=source,
    )
