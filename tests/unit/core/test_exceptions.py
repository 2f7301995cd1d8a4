"""Tests for the sizecal exception hierarchy and validation helpers."""

import logging

import pytest

from sizecal.core.exceptions import (
    ConfigurationError,
    NumericDivergenceError,
    OptimizationError,
    SizecalError,
    StageOrderViolation,
    StructuralInputError,
    ValidationError,
    require,
    require_not_none,
    sizecal_error_handler,
)


class TestHierarchy:
    """All custom exceptions must be rooted under SizecalError."""

    @pytest.mark.parametrize("exc_cls", [
        ConfigurationError,
        ValidationError,
        StructuralInputError,
        OptimizationError,
        NumericDivergenceError,
        StageOrderViolation,
    ])
    def test_subclass_of_base(self, exc_cls):
        assert issubclass(exc_cls, SizecalError)

    def test_structural_input_is_validation(self):
        assert issubclass(StructuralInputError, ValidationError)

    def test_divergence_is_optimization(self):
        assert issubclass(NumericDivergenceError, OptimizationError)

    def test_stage_violation_is_not_a_species_failure(self):
        """The pipeline catches structural and numeric errors; stage violations must not match."""
        assert not issubclass(StageOrderViolation, (StructuralInputError, NumericDivergenceError))


class TestContext:
    """Exceptions carry species context in attributes and message."""

    def test_structural_input_context(self):
        err = StructuralInputError("bad value", species='cod', stage='RAW', value=3.0)
        assert err.species == 'cod'
        assert err.stage == 'RAW'
        assert err.value == 3.0
        assert 'species=cod' in str(err)
        assert 'value=3.0' in str(err)

    def test_structural_input_without_context(self):
        assert str(StructuralInputError("bad value")) == "bad value"

    def test_stage_order_message_names_stages(self):
        from sizecal.calibration.stages import CalibrationStage

        err = StageOrderViolation('cod', CalibrationStage.CATCH_MATCHED, CalibrationStage.RAW)
        assert 'CATCH_MATCHED' in str(err)
        assert 'RAW' in str(err)
        assert "'cod'" in str(err)

    def test_divergence_attempts(self):
        err = NumericDivergenceError("all failed", species='cod', attempts=3)
        assert err.attempts == 3


class TestHelpers:

    def test_require_passes(self):
        require(True, "never raised")

    def test_require_raises_validation_error(self):
        with pytest.raises(ValidationError, match="empty"):
            require(False, "histogram is empty")

    def test_require_custom_type(self):
        with pytest.raises(StructuralInputError):
            require(False, "bad", error_type=StructuralInputError)

    def test_require_not_none(self):
        assert require_not_none(5, 'x') == 5
        with pytest.raises(ValidationError, match="x must not be None"):
            require_not_none(None, 'x')

    def test_error_handler_converts_foreign_errors(self):
        logger = logging.getLogger('test_sizecal')
        with pytest.raises(StructuralInputError, match="parsing gear table"):
            with sizecal_error_handler("parsing gear table", logger, error_type=StructuralInputError):
                raise KeyError('l50')

    def test_error_handler_reraises_own_errors_unchanged(self):
        with pytest.raises(NumericDivergenceError):
            with sizecal_error_handler("fitting"):
                raise NumericDivergenceError("diverged")

    def test_error_handler_can_swallow(self):
        with sizecal_error_handler("optional step", reraise=False):
            raise ValueError("ignored")
