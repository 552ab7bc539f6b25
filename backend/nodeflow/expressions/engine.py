"""Template resolution: finds ``{{ }}`` spans in config values and evaluates them."""
import logging
from typing import Any

from jsonata import JException, Jsonata

from ..errors import ExpressionError, ExpressionSyntaxError
from .cache import ExpressionCache
from .context import ExpressionContext
from .functions import FunctionTable, default_functions
from .values import to_native, to_text

logger = logging.getLogger(__name__)

OPEN = "{{"
CLOSE = "}}"


def _skip_string(text: str, i: int) -> int:
    """Return the index just past the string literal starting at ``i``, or -1."""
    quote = text[i]
    i += 1
    while i < len(text):
        if text[i] == "\\" and quote != "`":
            i += 2
            continue
        if text[i] == quote:
            return i + 1
        i += 1
    return -1


def _scan(text: str) -> list[tuple[int, int]]:
    """Locate balanced ``{{ ... }}`` spans as (start, end) offsets.

    Braces and quotes inside a span are tracked so object literals and
    strings containing ``}}`` don't close it early. An unterminated span ends
    the scan.
    """
    spans: list[tuple[int, int]] = []
    pos = 0
    while True:
        start = text.find(OPEN, pos)
        if start == -1:
            return spans
        i = start + len(OPEN)
        depth = 0
        end = -1
        while i < len(text):
            ch = text[i]
            if ch in "\"'`":
                i = _skip_string(text, i)
                if i == -1:
                    break
                continue
            if ch == "{":
                depth += 1
            elif ch == "}":
                if depth > 0:
                    depth -= 1
                elif text.startswith(CLOSE, i):
                    end = i + len(CLOSE)
                    break
            i += 1
        if end == -1:
            return spans
        spans.append((start, end))
        pos = end


def _strip_prefix(text: str) -> str:
    # n8n-style "={{ ... }}"
    if text.startswith("=" + OPEN):
        return text[1:]
    return text


def is_expression(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return bool(_scan(_strip_prefix(value)))


def extract_expressions(text: str) -> list[str]:
    if not isinstance(text, str):
        return []
    text = _strip_prefix(text)
    return [text[start:end] for start, end in _scan(text)]


def has_expressions(value: Any) -> bool:
    if isinstance(value, str):
        return is_expression(value)
    if isinstance(value, dict):
        return any(has_expressions(v) for v in value.values())
    if isinstance(value, list):
        return any(has_expressions(v) for v in value)
    return False


def _describe(exc: Exception) -> str:
    if isinstance(exc, JException):
        return f"{exc} ({exc.error})"
    return str(exc) or type(exc).__name__


def _position(exc: Exception) -> int | None:
    if isinstance(exc, JException) and exc.location >= 0:
        return exc.location
    return None


class ExpressionEngine:
    """Evaluates templates against an ExpressionContext.

    Each ``{{ }}`` span is a JSONata expression. The context's bindings are
    the input document and its variables are bound as ``$`` names alongside
    the helper functions. Each engine owns its compiled-expression cache, so
    separate runs or tests can hold separate engines without sharing state.
    """

    def __init__(
        self,
        functions: FunctionTable | None = None,
        *,
        strict: bool = False,
        cache_size: int = 1000,
    ):
        self.functions = functions or default_functions
        self.strict = strict
        self.cache = ExpressionCache(cache_size)
        self._function_bindings = self.functions.bindings()

    def clear_cache(self):
        self.cache.clear()

    def compile(self, source: str) -> Jsonata:
        expression = self.cache.get(source)
        if expression is None:
            try:
                expression = Jsonata(source)
            except Exception as exc:
                raise ExpressionSyntaxError(source, _describe(exc), _position(exc)) from exc
            self.cache.put(source, expression)
        return expression

    def _variables(self, context: ExpressionContext) -> dict[str, Any]:
        variables = dict(self._function_bindings)
        for name, value in context.variables().items():
            variables[name] = Jsonata.JLambda(value) if callable(value) else value
        return variables

    def evaluate_source(self, source: str, context: ExpressionContext) -> Any:
        """Evaluate a bare expression (no ``{{ }}`` delimiters)."""
        source = source.strip()
        if not source:
            return ""
        expression = self.compile(source)
        try:
            return to_native(expression.evaluate(context.bindings(), self._variables(context)))
        except Exception as exc:
            raise ExpressionError(source, _describe(exc), _position(exc)) from exc

    def _interpolate(self, source: str, context: ExpressionContext) -> str:
        value = self.evaluate_source(source, context)
        try:
            return to_text(value)
        except (TypeError, ValueError) as exc:
            raise ExpressionError(source.strip(), _describe(exc)) from exc

    def evaluate(self, text: Any, context: ExpressionContext) -> Any:
        if not isinstance(text, str):
            return text
        body = _strip_prefix(text)
        spans = _scan(body)
        if not spans:
            return text

        if len(spans) == 1 and spans[0] == (0, len(body)):
            return self.evaluate_source(body[len(OPEN):-len(CLOSE)], context)

        parts: list[str] = []
        pos = 0
        for start, end in spans:
            parts.append(body[pos:start])
            parts.append(self._interpolate(body[start + len(OPEN):end - len(CLOSE)], context))
            pos = end
        parts.append(body[pos:])
        return "".join(parts)

    def evaluate_object(
        self,
        value: Any,
        context: ExpressionContext,
        errors: list[ExpressionError] | None = None,
    ) -> Any:
        """Resolve every expression string in a JSON-shaped tree into a new tree.

        Outside strict mode a field that fails keeps its raw text and the
        error is collected in ``errors`` instead of aborting the pass.
        """
        if isinstance(value, dict):
            return {k: self.evaluate_object(v, context, errors) for k, v in value.items()}
        if isinstance(value, list):
            return [self.evaluate_object(v, context, errors) for v in value]
        if isinstance(value, str):
            try:
                return self.evaluate(value, context)
            except ExpressionError as exc:
                if self.strict:
                    raise
                logger.warning("Expression left unresolved: %s", exc)
                if errors is not None:
                    errors.append(exc)
                return value
        return value
