"""
Content-injection policy and generator output validation.
"""

from pdpkit.filter.content_policy import (
    is_denied,
    is_generator_denied,
    sanitize_generated_values,
    validate_generator_plan,
)

__all__ = [
    "is_denied",
    "is_generator_denied",
    "sanitize_generated_values",
    "validate_generator_plan",
]
