"""Workflow helpers layered on top of JSONata's built-in ``$function`` library.

JSONata already provides the string, numeric, aggregate and higher-order
functions (``$uppercase``, ``$round``, ``$sum``, ``$map``, ``$filter``,
``$reduce``, ``$toMillis``, ...). The table here only adds what workflow
authors expect and JSONata lacks.
"""
import json
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from jsonata import Jsonata

from .values import is_number, to_text, truthy, type_name, values_equal

CATALOG_VERSION = "1"


class FunctionTable:
    """Versioned, extensible mapping of function name to implementation."""

    def __init__(self, version: str = CATALOG_VERSION):
        self.version = version
        self._functions: dict[str, Callable[..., Any]] = {}

    def register(self, *names: str):
        """Decorator registering a function under one or more names."""
        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            for name in names:
                self._functions[name] = fn
            return fn
        return decorator

    def get(self, name: str) -> Callable[..., Any] | None:
        return self._functions.get(name)

    def names(self) -> list[str]:
        return sorted(self._functions)

    def bindings(self) -> dict[str, Jsonata.JLambda]:
        """The table as JSONata variable bindings, callable as ``$name(...)``."""
        return {name: Jsonata.JLambda(fn) for name, fn in self._functions.items()}

    def copy(self) -> "FunctionTable":
        table = FunctionTable(self.version)
        table._functions = dict(self._functions)
        return table

    def __contains__(self, name: str) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)


default_functions = FunctionTable()
register = default_functions.register


def _num(value: Any) -> float | int:
    if is_number(value):
        return value
    if isinstance(value, str):
        return float(value.strip())
    raise TypeError(f"expected a number, got {type_name(value)}")


# --- strings ---

@register("capitalize")
def capitalize(value):
    if not isinstance(value, str) or not value:
        return value
    return value[0].upper() + value[1:]


@register("startsWith")
def starts_with(value, prefix):
    return isinstance(value, str) and isinstance(prefix, str) and value.startswith(prefix)


@register("endsWith")
def ends_with(value, suffix):
    return isinstance(value, str) and isinstance(suffix, str) and value.endswith(suffix)


@register("includes")
def includes(value, search):
    """``$contains`` for arrays as well as strings."""
    if isinstance(value, str):
        return isinstance(search, str) and search in value
    if isinstance(value, list):
        return any(values_equal(search, item) for item in value)
    return False


@register("template")
def template(text, data=None):
    """Fill ``{key}`` placeholders from ``data``; unknown keys become empty."""
    if not isinstance(text, str) or not isinstance(data, dict):
        return text
    out = []
    i = 0
    while i < len(text):
        if text[i] == "{":
            end = text.find("}", i + 1)
            key = text[i + 1:end] if end != -1 else ""
            if key and (key.isidentifier() or key.isalnum()):
                out.append(to_text(data.get(key)))
                i = end + 1
                continue
        out.append(text[i])
        i += 1
    return "".join(out)


# --- arrays ---

@register("avg")
def avg(items):
    if not isinstance(items, list) or not items:
        return 0
    return sum(_num(x) for x in items) / len(items)


@register("unique")
def unique(items):
    if not isinstance(items, list):
        return [] if items is None else [items]
    result: list = []
    for item in items:
        if not any(values_equal(item, seen) for seen in result):
            result.append(item)
    return result


@register("flatten")
def flatten(items, depth=1):
    if not isinstance(items, list):
        return []
    depth = int(_num(depth))
    result = []
    for item in items:
        if isinstance(item, list) and depth > 0:
            result.extend(flatten(item, depth - 1))
        else:
            result.append(item)
    return result


@register("first")
def first(items):
    if isinstance(items, list):
        return items[0] if items else None
    return items


@register("last")
def last(items):
    if isinstance(items, list):
        return items[-1] if items else None
    return items


@register("pluck")
def pluck(items, key):
    if isinstance(items, dict):
        items = [items]
    if not isinstance(items, list):
        return []
    return [item.get(key) if isinstance(item, dict) else None for item in items]


@register("find")
def find(items, key, expected):
    """First object whose ``key`` field equals ``expected``."""
    if isinstance(items, dict):
        items = [items]
    if not isinstance(items, list):
        return None
    for item in items:
        if isinstance(item, dict) and values_equal(item.get(key), expected):
            return item
    return None


@register("slice")
def slice_(items, start=0, end=None):
    if not isinstance(items, (list, str)):
        return []
    start = int(_num(start))
    if end is None:
        return items[start:]
    return items[start:int(_num(end))]


# --- objects ---

@register("values")
def values(value):
    return list(value.values()) if isinstance(value, dict) else []


def _key_list(keys_: tuple) -> list[str]:
    if len(keys_) == 1 and isinstance(keys_[0], list):
        keys_ = tuple(keys_[0])
    return [k for k in keys_ if isinstance(k, str)]


@register("pick")
def pick(value, *keys_):
    if not isinstance(value, dict):
        return {}
    return {k: value[k] for k in _key_list(keys_) if k in value}


@register("omit")
def omit(value, *keys_):
    if not isinstance(value, dict):
        return {}
    dropped = set(_key_list(keys_))
    return {k: v for k, v in value.items() if k not in dropped}


# --- logic ---

@register("isEmpty")
def is_empty(value):
    if value is None or value == "":
        return True
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


@register("isNotEmpty")
def is_not_empty(value):
    return not is_empty(value)


@register("default")
def default(value, fallback=None):
    return value if truthy(value) else fallback


# --- json ---

@register("stringify")
def stringify(value, indent=None):
    if indent is None:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return json.dumps(value, indent=int(_num(indent)), ensure_ascii=False, default=str)


@register("parse")
def parse(value):
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return None


# --- dates ---

def to_datetime(value: Any) -> datetime | None:
    """Accept ISO-8601 strings (``Z`` suffix included) or epoch milliseconds."""
    if isinstance(value, datetime):
        dt = value
    elif is_number(value):
        try:
            dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def iso(dt: datetime) -> str:
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


@register("formatDate")
def format_date(value, fmt="YYYY-MM-DD"):
    dt = to_datetime(value)
    if dt is None:
        return ""
    dt = dt.astimezone(timezone.utc)
    return (
        fmt.replace("YYYY", f"{dt.year:04d}")
        .replace("MM", f"{dt.month:02d}")
        .replace("DD", f"{dt.day:02d}")
        .replace("HH", f"{dt.hour:02d}")
        .replace("mm", f"{dt.minute:02d}")
        .replace("ss", f"{dt.second:02d}")
    )


@register("parseDate")
def parse_date(value):
    dt = to_datetime(value)
    return iso(dt) if dt else ""


@register("addDays")
def add_days(value, days):
    dt = to_datetime(value)
    if dt is None:
        return ""
    return iso(dt + timedelta(days=_num(days)))


@register("addHours")
def add_hours(value, hours):
    dt = to_datetime(value)
    if dt is None:
        return ""
    return iso(dt + timedelta(hours=_num(hours)))


@register("diffDays")
def diff_days(start, end):
    d1, d2 = to_datetime(start), to_datetime(end)
    if d1 is None or d2 is None:
        return 0
    return math.floor(abs((d2 - d1).total_seconds()) / 86400)


@register("isAfter")
def is_after(first_, second):
    d1, d2 = to_datetime(first_), to_datetime(second)
    return bool(d1 and d2 and d1 > d2)


@register("isBefore")
def is_before(first_, second):
    d1, d2 = to_datetime(first_), to_datetime(second)
    return bool(d1 and d2 and d1 < d2)
