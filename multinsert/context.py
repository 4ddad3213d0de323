from __future__ import annotations

import json
import math
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping, MutableMapping, Optional, Protocol

from .errors import ConfigurationError, ResolutionError, TransformError


class ValueKind(str, Enum):
    MSG = "msg"
    FLOW = "flow"
    GLOBAL = "global"
    ENV = "env"
    STR = "str"
    NUM = "num"
    BOOL = "bool"
    JSON = "json"
    PATH = "path"
    EXPR = "expr"


SOURCE_KINDS = frozenset(
    {ValueKind.MSG, ValueKind.FLOW, ValueKind.GLOBAL, ValueKind.ENV,
     ValueKind.STR, ValueKind.JSON, ValueKind.EXPR}
)
MAPPING_KINDS = frozenset(
    {ValueKind.STR, ValueKind.NUM, ValueKind.BOOL, ValueKind.JSON,
     ValueKind.ENV, ValueKind.PATH, ValueKind.EXPR}
)
DESTINATION_KINDS = frozenset({ValueKind.MSG, ValueKind.FLOW, ValueKind.GLOBAL})
DB_TARGET_KINDS = frozenset(
    {ValueKind.MSG, ValueKind.FLOW, ValueKind.GLOBAL, ValueKind.ENV, ValueKind.STR}
)

_PATH_TOKEN_RE = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def parse_kind(value: Any, allowed: frozenset, what: str) -> ValueKind:
    """Coerce a configured kind tag, rejecting kinds not valid for ``what``."""
    try:
        kind = ValueKind(value)
    except ValueError:
        raise ConfigurationError(f"Unknown value kind {value!r} for {what}") from None
    if kind not in allowed:
        raise ConfigurationError(f"Value kind {kind.value!r} is not allowed for {what}")
    return kind


def _parse_path(path: str) -> list[str | int]:
    tokens: list[str | int] = []
    for match in _PATH_TOKEN_RE.finditer(path):
        name, index = match.groups()
        tokens.append(name if name is not None else int(index))
    if not tokens:
        raise ResolutionError(f"Invalid property path {path!r}")
    return tokens


def get_path(obj: Any, path: str) -> Any:
    """
    Read ``a.b[0].c`` style paths. Missing segments resolve to None.
    """
    current = obj
    for token in _parse_path(path):
        if isinstance(token, int):
            if not isinstance(current, list) or token >= len(current):
                return None
            current = current[token]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(token)
    return current


def set_path(target: MutableMapping[str, Any], path: str, value: Any) -> None:
    """
    Write ``value`` at ``path``, creating intermediate containers and
    replacing whatever was there.
    """
    tokens = _parse_path(path)
    current: Any = target
    for token, following in zip(tokens, tokens[1:]):
        empty: Any = [] if isinstance(following, int) else {}
        if isinstance(token, int):
            if not isinstance(current, list):
                raise ResolutionError(f"Cannot index non-list while setting {path!r}")
            while len(current) <= token:
                current.append(None)
            if not isinstance(current[token], (dict, list)):
                current[token] = empty
            current = current[token]
        else:
            if not isinstance(current, MutableMapping):
                raise ResolutionError(f"Cannot set key on non-object while setting {path!r}")
            if not isinstance(current.get(token), (dict, list)):
                current[token] = empty
            current = current[token]

    last = tokens[-1]
    if isinstance(last, int):
        if not isinstance(current, list):
            raise ResolutionError(f"Cannot index non-list while setting {path!r}")
        while len(current) <= last:
            current.append(None)
        current[last] = value
    else:
        if not isinstance(current, MutableMapping):
            raise ResolutionError(f"Cannot set key on non-object while setting {path!r}")
        current[last] = value


def stringify(value: Any) -> str:
    """
    Text form of a mapped value. Whole floats drop their fraction and lists
    join their items with commas; objects are rendered as JSON.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        return ",".join("" if item is None else stringify(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value)
    return str(value)


def to_number(value: Any) -> int | float | Decimal | None:
    """
    Numeric coercion. Blank strings become None; anything that is not a
    finite number raises TransformError.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float, Decimal)):
        return value

    text = stringify(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        raise TransformError(f"Cannot convert {value!r} to a number") from None
    if not math.isfinite(number):
        raise TransformError(f"Cannot convert {value!r} to a finite number")
    return number


@dataclass
class InvocationContext:
    """
    Named values available to one invocation.

    ``message`` is local to the invocation; ``flow`` and ``global_store`` are
    shared stores owned by the caller. The run summary and returned rows are
    written back into these.
    """
    message: dict[str, Any] = field(default_factory=dict)
    flow: dict[str, Any] = field(default_factory=dict)
    global_store: dict[str, Any] = field(default_factory=dict)

    def _store_for(self, kind: ValueKind) -> dict[str, Any]:
        if kind == ValueKind.MSG:
            return self.message
        if kind == ValueKind.FLOW:
            return self.flow
        if kind == ValueKind.GLOBAL:
            return self.global_store
        raise ResolutionError(f"Value kind {kind.value!r} is not a writable store")

    def store(self, kind: ValueKind | str, path: str, value: Any) -> None:
        set_path(self._store_for(ValueKind(kind)), path, value)


class Resolver(Protocol):
    """Resolves a typed reference to a raw value."""

    def resolve(self, kind: ValueKind | str, reference: Any, context: Any) -> Any:
        ...


def _require_context(kind: ValueKind, scope: Any) -> InvocationContext:
    if not isinstance(scope, InvocationContext):
        raise ResolutionError(f"Value kind {kind.value!r} needs an invocation context")
    return scope


def _from_message(reference: Any, scope: Any) -> Any:
    return get_path(_require_context(ValueKind.MSG, scope).message, str(reference))


def _from_flow(reference: Any, scope: Any) -> Any:
    return get_path(_require_context(ValueKind.FLOW, scope).flow, str(reference))


def _from_global(reference: Any, scope: Any) -> Any:
    return get_path(_require_context(ValueKind.GLOBAL, scope).global_store, str(reference))


def _from_row_path(reference: Any, scope: Any) -> Any:
    return get_path(scope, str(reference))


def _literal_str(reference: Any, scope: Any) -> Any:
    if reference is None:
        return None
    return stringify(reference)


def _literal_num(reference: Any, scope: Any) -> Any:
    try:
        return to_number(reference)
    except TransformError as exc:
        raise ResolutionError(f"Invalid numeric literal {reference!r}") from exc


def _literal_bool(reference: Any, scope: Any) -> bool:
    if isinstance(reference, str):
        return reference.strip().lower() == "true"
    return bool(reference)


def _literal_json(reference: Any, scope: Any) -> Any:
    if not isinstance(reference, str):
        return reference
    try:
        return json.loads(reference)
    except json.JSONDecodeError as exc:
        raise ResolutionError(f"Invalid JSON literal {reference!r}: {exc}") from exc


class TypedResolver:
    """
    Default resolver: one pure handler per value kind.

    ``msg``/``flow``/``global`` read from an InvocationContext, ``path`` and
    ``expr`` read from whatever scope they are given (a source row inside
    column mappings). ``env`` reads from the supplied environment mapping.

    Computed expressions are either callables taking the scope, or strings
    handed to ``evaluator(expression, scope)``.
    """

    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        evaluator: Optional[Callable[[str, Any], Any]] = None,
    ) -> None:
        self.env = os.environ if env is None else env
        self.evaluator = evaluator
        self._handlers: dict[ValueKind, Callable[[Any, Any], Any]] = {
            ValueKind.MSG: _from_message,
            ValueKind.FLOW: _from_flow,
            ValueKind.GLOBAL: _from_global,
            ValueKind.ENV: self._from_env,
            ValueKind.STR: _literal_str,
            ValueKind.NUM: _literal_num,
            ValueKind.BOOL: _literal_bool,
            ValueKind.JSON: _literal_json,
            ValueKind.PATH: _from_row_path,
            ValueKind.EXPR: self._evaluate,
        }

    def resolve(self, kind: ValueKind | str, reference: Any, context: Any) -> Any:
        try:
            kind = ValueKind(kind)
        except ValueError:
            raise ResolutionError(f"Unknown value kind {kind!r}") from None
        return self._handlers[kind](reference, context)

    def _from_env(self, reference: Any, scope: Any) -> Optional[str]:
        return self.env.get(str(reference))

    def _evaluate(self, reference: Any, scope: Any) -> Any:
        if not callable(reference) and self.evaluator is None:
            raise ResolutionError(
                f"No expression evaluator configured for expression {reference!r}"
            )
        try:
            if callable(reference):
                return reference(scope)
            return self.evaluator(str(reference), scope)
        except ResolutionError:
            raise
        except Exception as exc:
            raise ResolutionError(f"Expression {reference!r} failed: {exc}") from exc
