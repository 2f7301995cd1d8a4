# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright (C) 2024-2026 SYMFLUENCE Team <dev@symfluence.org>

"""
Custom exception hierarchy for sizecal.

This module defines a hierarchy of exceptions that provide clear, specific
error types for the failure modes of the calibration engine.
"""

import logging
from contextlib import contextmanager
from typing import Any, Optional, TypeVar


class SizecalError(Exception):
    """
    Base exception for all sizecal-specific errors.

    All custom exceptions in sizecal should inherit from this class.
    This allows catching all sizecal errors with a single except clause.
    """
    pass


class ConfigurationError(SizecalError):
    """
    Configuration-related errors.

    Raised when:
    - Configuration values are invalid
    - Configuration file cannot be loaded or parsed
    """
    pass


class ValidationError(SizecalError):
    """
    Data or parameter validation failures.

    Raised when:
    - Input data fails validation checks
    - Parameter values are out of acceptable range
    """
    pass


class StructuralInputError(ValidationError):
    """
    Malformed or inconsistent input for one species.

    Raised when:
    - A species is missing from a required table
    - A trait or target value is non-finite or out of range
    - Gear selectivity lengths are out of order (e.g. descending limb
      below the ascending 50% length)
    - Growth is non-positive below maturity weight

    Aborts only the affected species' calibration.
    """

    def __init__(
        self,
        message: str,
        species: Optional[str] = None,
        stage: Optional[str] = None,
        value: Any = None,
    ):
        self.species = species
        self.stage = stage
        self.value = value
        context = []
        if species is not None:
            context.append(f"species={species}")
        if stage is not None:
            context.append(f"stage={stage}")
        if value is not None:
            context.append(f"value={value!r}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class OptimizationError(SizecalError):
    """
    Calibration/optimization failures.

    Raised when:
    - Objective function evaluation fails
    - An optimizer cannot be configured
    """
    pass


class NumericDivergenceError(OptimizationError):
    """
    Every optimizer run for a species ended at a non-finite objective or
    gradient, or failed to converge.

    Individual runs absorb their failures into an OptimizationResult; this
    is raised only once all attempts for a species are exhausted.
    """

    def __init__(self, message: str, species: Optional[str] = None, attempts: int = 0):
        self.species = species
        self.attempts = attempts
        super().__init__(message)


class StageOrderViolation(SizecalError):
    """
    A calibration stage was invoked before its precondition stage completed.

    This is a programming error. The pipeline never catches it.
    """

    def __init__(self, species: str, requested: Any, current: Any):
        self.species = species
        self.requested = requested
        self.current = current
        super().__init__(
            f"Cannot run stage {getattr(requested, 'name', requested)} for species "
            f"'{species}' at stage {getattr(current, 'name', current)}"
        )


# =============================================================================
# Validation Helpers
# =============================================================================

T = TypeVar('T')


def require(condition: bool, message: str, error_type: type = None) -> None:
    """
    Validate a condition, raising an exception if it fails.

    Args:
        condition: The condition that must be True
        message: Error message if condition is False
        error_type: Exception type to raise (default: ValidationError)

    Raises:
        ValidationError (or specified error_type) if condition is False

    Example:
        >>> require(len(lengths) > 0, "Catch histogram cannot be empty")
    """
    if error_type is None:
        error_type = ValidationError
    if not condition:
        raise error_type(message)


def require_not_none(value: Optional[T], name: str, error_type: type = None) -> T:
    """
    Validate that a value is not None, returning it if valid.

    Args:
        value: The value to check
        name: Name of the value (for error message)
        error_type: Exception type to raise (default: ValidationError)

    Returns:
        The value if it is not None
    """
    if error_type is None:
        error_type = ValidationError
    if value is None:
        raise error_type(f"{name} must not be None")
    return value


@contextmanager
def sizecal_error_handler(
    operation: str,
    logger: Optional[logging.Logger] = None,
    reraise: bool = True,
    error_type: type = SizecalError
):
    """
    Context manager for standardized error handling.

    sizecal errors are logged and re-raised unchanged; any other exception
    is logged and converted to ``error_type``.

    Args:
        operation: Description of the operation being performed (for logging)
        logger: Logger instance for error messages. If None, errors are not logged.
        reraise: Whether to re-raise the exception after handling (default: True)
        error_type: sizecal exception type to convert generic exceptions to

    Example:
        >>> with sizecal_error_handler("parsing gear table", logger, error_type=StructuralInputError):
        ...     gears = gear_params_from_frame(df)
    """
    try:
        yield
    except SizecalError:
        if logger:
            logger.error(f"Error during {operation}", exc_info=True)
        if reraise:
            raise
    except Exception as e:
        if logger:
            logger.error(f"Error during {operation}: {e}", exc_info=True)
        if reraise:
            raise error_type(f"Failed during {operation}: {e}") from e


__all__ = [
    'SizecalError',
    'ConfigurationError',
    'ValidationError',
    'StructuralInputError',
    'OptimizationError',
    'NumericDivergenceError',
    'StageOrderViolation',
    'require',
    'require_not_none',
    'sizecal_error_handler',
]
