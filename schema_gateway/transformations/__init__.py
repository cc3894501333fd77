"""Version transformation utilities for the API gateway."""

from .cache import ExpressionCache
from .engine import (
    TransformationContext,
    TransformationEngine,
    TransformationMetrics,
    TransformationOutcome,
    passthrough_expression,
    validate_expression,
)
from .models import (
    IDENTITY_EXPRESSION,
    ConfigValidationError,
    TransformationConfig,
    TransformationExpression,
    VersionTransformation,
)

__all__ = [
    "ConfigValidationError",
    "ExpressionCache",
    "IDENTITY_EXPRESSION",
    "TransformationConfig",
    "TransformationContext",
    "TransformationEngine",
    "TransformationExpression",
    "TransformationMetrics",
    "TransformationOutcome",
    "VersionTransformation",
    "passthrough_expression",
    "validate_expression",
]
