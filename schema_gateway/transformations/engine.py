"""JSONata transformation engine with compiled-expression caching.

Evaluations run on a small thread pool so that the caller can stop waiting
after the configured timeout. CPython cannot interrupt a running evaluation:
a timed-out evaluation keeps its worker thread until it finishes and its
result is discarded.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
import json
import logging
import time
from typing import Any, Callable, Literal

import jsonata

from .cache import ExpressionCache
from .models import IDENTITY_EXPRESSION, TransformationExpression

Direction = Literal["request", "response"]
Compiler = Callable[[str], Any]

DEFAULT_TIMEOUT_MS = 50


@dataclass(frozen=True)
class TransformationContext:
    """Versions and direction of a single transformation call."""

    from_version: str
    to_version: str
    direction: Direction
    timeout_ms: float | None = None


@dataclass(frozen=True)
class TransformationMetrics:
    duration_ms: float
    from_version: str
    to_version: str
    direction: Direction


@dataclass(frozen=True)
class TransformationOutcome:
    """Result of a transformation.

    On failure ``data`` is always the untransformed input.
    """

    success: bool
    data: Any
    error: str | None = None
    metrics: TransformationMetrics | None = None


@dataclass(frozen=True)
class ExpressionValidation:
    valid: bool
    error: str | None = None


class _CompileError(Exception):
    pass


class _EvaluationTimeout(Exception):
    pass


class _NonJsonResult(Exception):
    pass


def _ensure_json(result: Any) -> None:
    try:
        json.dumps(result)
    except (TypeError, ValueError):
        raise _NonJsonResult("Transformation produced a non-JSON result") from None


def compile_expression(source: str) -> Any:
    """Compile JSONata ``source`` into an evaluable expression."""

    return jsonata.Jsonata(source)


def validate_expression(source: str, *, compiler: Compiler | None = None) -> ExpressionValidation:
    """Check that ``source`` compiles."""

    compile_ = compiler or compile_expression
    try:
        compile_(source)
    except Exception as exc:
        return ExpressionValidation(valid=False, error=str(exc) or exc.__class__.__name__)
    return ExpressionValidation(valid=True)


def passthrough_expression() -> TransformationExpression:
    return TransformationExpression(
        source=IDENTITY_EXPRESSION,
        description="Pass-through (no transformation)",
    )


class TransformationEngine:
    """Compile, cache and evaluate transformation expressions."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        cache: ExpressionCache | None = None,
        cache_size: int = 100,
        default_timeout_ms: float = DEFAULT_TIMEOUT_MS,
        max_workers: int = 4,
        compiler: Compiler | None = None,
    ) -> None:
        self._logger = logger
        self._cache = cache if cache is not None else ExpressionCache(cache_size)
        self._default_timeout_ms = default_timeout_ms if default_timeout_ms > 0 else DEFAULT_TIMEOUT_MS
        self._compiler = compiler or compile_expression
        self._executor = ThreadPoolExecutor(
            max_workers=max(int(max_workers), 1),
            thread_name_prefix="transformation",
        )

    @property
    def default_timeout_ms(self) -> float:
        return self._default_timeout_ms

    def transform(
        self,
        data: Any,
        expression: TransformationExpression,
        context: TransformationContext,
    ) -> TransformationOutcome:
        started = time.perf_counter()

        if expression.is_identity:
            return TransformationOutcome(
                success=True, data=data, metrics=self._metrics(started, context)
            )

        timeout_ms = context.timeout_ms or self._default_timeout_ms
        try:
            compiled = self._compile(expression)
            result = self._evaluate(compiled, data, timeout_ms)
            _ensure_json(result)
        except Exception as exc:
            metrics = self._metrics(started, context)
            message = str(exc) or exc.__class__.__name__
            self._logger.error(
                "Transformation failed: %s",
                message,
                extra={
                    "direction": context.direction,
                    "from_version": context.from_version,
                    "to_version": context.to_version,
                    "duration_ms": metrics.duration_ms,
                },
            )
            return TransformationOutcome(success=False, data=data, error=message, metrics=metrics)

        metrics = self._metrics(started, context)
        self._logger.debug(
            "Transformation completed in %.3fms (%s: %s -> %s)",
            metrics.duration_ms,
            context.direction,
            context.from_version,
            context.to_version,
        )
        return TransformationOutcome(success=True, data=result, metrics=metrics)

    def register_custom_function(self, name: str, implementation: Callable[..., Any]) -> None:
        # Functions would have to be bound per compiled expression.
        self._logger.warning("Custom function registration is not supported: %s", name)

    def clear_cache(self) -> None:
        self._cache.clear()
        self._logger.info("Expression cache cleared")

    def cache_stats(self) -> dict[str, int]:
        return {"size": self._cache.size(), "max_size": self._cache.max_size}

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _compile(self, expression: TransformationExpression) -> Any:
        cached = self._cache.get(expression.source)
        if cached is not None:
            self._logger.debug("Using cached expression")
            return cached

        try:
            compiled = self._compiler(expression.source)
        except Exception as exc:
            raise _CompileError(f"Failed to compile expression: {exc}") from exc

        self._cache.put(expression.source, compiled, expression.cache_ttl_seconds * 1000)
        self._logger.debug("Compiled and cached new expression")
        return compiled

    def _evaluate(self, compiled: Any, data: Any, timeout_ms: float) -> Any:
        future = self._executor.submit(compiled.evaluate, data)
        try:
            return future.result(timeout=timeout_ms / 1000.0)
        except FutureTimeoutError:
            future.cancel()
            raise _EvaluationTimeout(
                f"Transformation timeout after {timeout_ms:g}ms"
            ) from None

    @staticmethod
    def _metrics(started: float, context: TransformationContext) -> TransformationMetrics:
        return TransformationMetrics(
            duration_ms=(time.perf_counter() - started) * 1000.0,
            from_version=context.from_version,
            to_version=context.to_version,
            direction=context.direction,
        )


__all__ = [
    "DEFAULT_TIMEOUT_MS",
    "ExpressionValidation",
    "TransformationContext",
    "TransformationEngine",
    "TransformationMetrics",
    "TransformationOutcome",
    "compile_expression",
    "passthrough_expression",
    "validate_expression",
]
