"""
Unit test fixtures.

Provides a well-behaved test species (positive growth everywhere below
w_max), sigmoid and dome gears, and a factory for noise-free catch
histograms generated by the model itself.
"""

import logging

import numpy as np
import pytest

from sizecal.core.config import CalibrationConfig
from sizecal.models.sizespectrum.parameters import (
    DOUBLE_SIGMOID_LENGTH,
    SIGMOID_LENGTH,
    GearParams,
    ObservedCatch,
    SpeciesParams,
    complete_species_params,
)
from sizecal.optimization.objectives.catch_objective import CalibrationObjective, ObjectiveBuilder

# True parameters used to generate synthetic catches
THETA_SINGLE = np.array([25.0, 0.88, 0.4, 0.3])
THETA_DOME = np.array([25.0, 0.88, 13.0, 0.4, 0.3, 42.0 / 38.0])


# ============================================================================
# Logger fixtures
# ============================================================================

@pytest.fixture
def test_logger():
    """Create a test logger."""
    logger = logging.getLogger('test_sizecal')
    logger.setLevel(logging.DEBUG)
    return logger


# ============================================================================
# Model fixtures
# ============================================================================

@pytest.fixture
def species():
    """Species with maturity at 100 g, maximum 1000 g (about 21 and 46 cm)."""
    return complete_species_params(SpeciesParams(
        species='cod',
        w_min=0.001,
        w_mat=100.0,
        w_max=1000.0,
        h=20.0,
        ext_encounter=30.0,
        ks=1.44,
        mu_mat=0.4,
        biomass_observed=1e4,
        biomass_cutoff=1.0,
    ))


@pytest.fixture
def sigmoid_gear():
    return GearParams(
        species='cod', gear='trawl', sel_func=SIGMOID_LENGTH,
        l50=25.0, l25=22.0, catchability=0.3, effort=1.0,
    )


@pytest.fixture
def dome_gear():
    return GearParams(
        species='cod', gear='trawl', sel_func=DOUBLE_SIGMOID_LENGTH,
        l50=25.0, l25=22.0, l50_right=38.0, l25_right=42.0, catchability=0.3, effort=1.0,
    )


@pytest.fixture
def theta_single():
    return THETA_SINGLE.copy()


@pytest.fixture
def theta_dome():
    return THETA_DOME.copy()


@pytest.fixture
def calibration_config():
    """Configuration with strongly weighted yield and production terms."""
    return CalibrationConfig.from_dict({'YIELD_LAMBDA': 10.0, 'PRODUCTION_LAMBDA': 10.0})


@pytest.fixture
def synthetic_catch():
    """Factory for a catch histogram predicted exactly by the model at theta."""

    def _make(species, gears, theta, total=5000.0, config=None):
        bins = np.arange(10.0, 46.0, 1.0)
        widths = np.ones_like(bins)
        placeholder = ObservedCatch(species.species, bins, widths, np.ones_like(bins), gear=gears[0].gear)
        objective = CalibrationObjective(ObjectiveBuilder.from_params(species, gears, placeholder, config))
        predicted = objective.predicted_catch(theta)
        parts = objective.components(theta)
        return ObservedCatch(
            species=species.species,
            length=bins,
            dl=widths,
            count=predicted / predicted.sum() * total,
            gear=gears[0].gear,
            yield_observed=parts['yield'],
            production_observed=parts['production'],
        )

    return _make
