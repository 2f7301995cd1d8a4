"""Tests for the differentiable catch objective."""

from dataclasses import replace

import numpy as np
import pytest

from sizecal.core.config import CalibrationConfig
from sizecal.core.exceptions import StructuralInputError
from sizecal.models.sizespectrum.model import solve_steady_state
from sizecal.models.sizespectrum.parameters import ObservedCatch
from sizecal.optimization.objectives.catch_objective import (
    DOME_PARAM_NAMES,
    SINGLE_PARAM_NAMES,
    CalibrationObjective,
    ObjectiveBuilder,
    from_internal,
    gear_from_theta,
    length_overlap_matrix,
    perturb_theta,
    theta_from_gear,
    to_internal,
)


@pytest.fixture
def single_objective(species, sigmoid_gear, theta_single, synthetic_catch, calibration_config):
    observed = synthetic_catch(species, [sigmoid_gear], theta_single, config=calibration_config)
    return CalibrationObjective(ObjectiveBuilder.from_params(species, [sigmoid_gear], observed, calibration_config))


@pytest.fixture
def dome_objective(species, dome_gear, theta_dome, synthetic_catch, calibration_config):
    observed = synthetic_catch(species, [dome_gear], theta_dome, config=calibration_config)
    return CalibrationObjective(ObjectiveBuilder.from_params(species, [dome_gear], observed, calibration_config))


class TestParameterVector:

    def test_names_follow_gear(self, sigmoid_gear, dome_gear):
        assert theta_from_gear(sigmoid_gear, 0.4).shape == (len(SINGLE_PARAM_NAMES),)
        assert theta_from_gear(dome_gear, 0.4).shape == (len(DOME_PARAM_NAMES),)

    def test_theta_encodes_gear(self, dome_gear, theta_dome):
        np.testing.assert_allclose(theta_from_gear(dome_gear, 0.4), theta_dome)

    def test_gear_round_trip(self, dome_gear, theta_dome):
        gear, mu_mat = gear_from_theta(dome_gear, theta_dome)
        assert mu_mat == pytest.approx(0.4)
        assert gear.l25 == pytest.approx(22.0)
        assert gear.l50_right == pytest.approx(38.0)
        assert gear.l25_right == pytest.approx(42.0)

    def test_internal_round_trip(self, theta_dome):
        x = to_internal(theta_dome, DOME_PARAM_NAMES)
        np.testing.assert_allclose(from_internal(x, DOME_PARAM_NAMES), theta_dome, rtol=1e-12)

    @pytest.mark.parametrize("index, value", [
        (1, 1.0),
        (1, 0.0),
        (2, -1.0),
        (5, 0.9),
        (4, 0.0),
        (0, float('nan')),
    ])
    def test_invalid_theta(self, theta_dome, index, value):
        theta_dome[index] = value
        with pytest.raises(StructuralInputError):
            to_internal(theta_dome, DOME_PARAM_NAMES)

    def test_wrong_length(self, theta_single):
        with pytest.raises(StructuralInputError, match="one value per parameter"):
            to_internal(theta_single, DOME_PARAM_NAMES)

    def test_perturb_stays_in_domain(self, theta_dome):
        perturbed = perturb_theta(theta_dome, DOME_PARAM_NAMES, [1.2, 2.0, 0.5, 2.0, 0.2, 3.0])
        assert perturbed[0] == pytest.approx(30.0)
        assert 0 < perturbed[1] < 1
        assert perturbed[5] > 1
        to_internal(perturbed, DOME_PARAM_NAMES)


class TestOverlap:

    def test_rows_cover_bins(self, species):
        w = np.array([10.0, 80.0, 270.0])
        dw = np.array([70.0, 190.0, 370.0])
        # lengths 10-20, 20-30, 30-40 cm
        overlap = length_overlap_matrix(species, w, dw, np.array([15.0, 25.0]), np.array([10.0, 10.0]))
        np.testing.assert_allclose(overlap, [[0.5, 0.5, 0.0], [0.0, 0.5, 0.5]], atol=1e-12)


class TestBuild:

    def test_bad_gear_rejected(self, species, dome_gear, synthetic_catch, theta_dome):
        observed = synthetic_catch(species, [dome_gear], theta_dome)
        bad = replace(dome_gear, l50_right=20.0, l25_right=30.0)
        with pytest.raises(StructuralInputError, match="l50_right > l50"):
            ObjectiveBuilder.from_params(species, [bad], observed)

    def test_species_mismatch(self, species, sigmoid_gear, synthetic_catch, theta_single):
        observed = replace(synthetic_catch(species, [sigmoid_gear], theta_single), species='haddock')
        with pytest.raises(StructuralInputError, match="another species"):
            ObjectiveBuilder.from_params(species, [sigmoid_gear], observed)

    def test_multiple_gears_need_a_name(self, species, sigmoid_gear, synthetic_catch, theta_single):
        observed = replace(synthetic_catch(species, [sigmoid_gear], theta_single), gear=None)
        gillnet = replace(sigmoid_gear, gear='gillnet')
        with pytest.raises(StructuralInputError, match="must name its gear"):
            ObjectiveBuilder.from_params(species, [sigmoid_gear, gillnet], observed)

    def test_named_gear_fitted_others_fixed(self, species, sigmoid_gear, synthetic_catch, theta_single):
        observed = synthetic_catch(species, [sigmoid_gear], theta_single)
        gillnet = replace(sigmoid_gear, gear='gillnet', catchability=0.1)
        payload = ObjectiveBuilder.from_params(species, [gillnet, sigmoid_gear], observed)
        assert payload.gear.gear == 'trawl'
        assert [g.gear for g in payload.fixed_gears] == ['gillnet']
        assert np.all(payload.f_other > 0)

    def test_unknown_gear_name(self, species, sigmoid_gear, synthetic_catch, theta_single):
        observed = replace(synthetic_catch(species, [sigmoid_gear], theta_single), gear='longline')
        with pytest.raises(StructuralInputError, match="unknown gear"):
            ObjectiveBuilder.from_params(species, [sigmoid_gear], observed)

    def test_no_gear(self, species, sigmoid_gear, synthetic_catch, theta_single):
        observed = synthetic_catch(species, [sigmoid_gear], theta_single)
        with pytest.raises(StructuralInputError, match="no gear"):
            ObjectiveBuilder.from_params(species, [], observed)

    def test_bins_outside_size_range(self, species, sigmoid_gear):
        observed = ObservedCatch('cod', np.array([100.0, 101.0]), np.ones(2), np.ones(2))
        with pytest.raises(StructuralInputError, match="outside the species' size range"):
            ObjectiveBuilder.from_params(species, [sigmoid_gear], observed)

    def test_missing_biomass_disables_penalties(self, species, sigmoid_gear, synthetic_catch, theta_single):
        observed = synthetic_catch(species, [sigmoid_gear], theta_single)
        payload = ObjectiveBuilder.from_params(replace(species, biomass_observed=None), [sigmoid_gear], observed)
        assert payload.biomass_target == 1.0
        assert payload.yield_lambda == 0.0
        assert payload.production_lambda == 0.0

    def test_missing_targets_disable_their_terms(self, species, sigmoid_gear, synthetic_catch, theta_single):
        observed = replace(
            synthetic_catch(species, [sigmoid_gear], theta_single), yield_observed=None, production_observed=None
        )
        payload = ObjectiveBuilder.from_params(species, [sigmoid_gear], observed)
        assert payload.yield_lambda == 0.0
        assert payload.production_lambda == 0.0

    def test_degenerate_dome_fits_as_single(self, species, dome_gear, synthetic_catch, theta_single):
        degenerate = replace(dome_gear, l50_right=float('nan'), l25_right=float('nan'))
        observed = synthetic_catch(species, [degenerate], theta_single)
        payload = ObjectiveBuilder.from_params(species, [degenerate], observed)
        assert payload.param_names == SINGLE_PARAM_NAMES
        assert not payload.dome


class TestEvaluation:

    def test_finite_value_and_gradient(self, dome_objective, theta_dome):
        theta = perturb_theta(theta_dome, DOME_PARAM_NAMES, [1.1, 0.9, 1.2, 1.5, 0.7, 1.1])
        value, grad = dome_objective.value_and_grad(theta)
        assert np.isfinite(value) and value > 0
        assert grad.shape == theta.shape
        assert np.all(np.isfinite(grad))

    def test_zero_at_generating_parameters(self, single_objective, dome_objective, theta_single, theta_dome):
        assert single_objective.evaluate(theta_single) == pytest.approx(0.0, abs=1e-6)
        assert dome_objective.evaluate(theta_dome) == pytest.approx(0.0, abs=1e-6)

    @pytest.mark.parametrize("which", ['single', 'dome'])
    def test_generating_parameters_beat_random_draws(self, which, single_objective, dome_objective,
                                                     theta_single, theta_dome):
        objective, theta_true = {
            'single': (single_objective, theta_single),
            'dome': (dome_objective, theta_dome),
        }[which]
        at_truth = objective.evaluate(theta_true)
        rng = np.random.default_rng(2024)
        x_true = objective.to_internal(theta_true)
        for _ in range(40):
            theta = objective.from_internal(x_true + rng.normal(0.0, 0.5, size=x_true.shape))
            value = objective.evaluate(theta)
            assert value >= at_truth or np.isnan(value)

    def test_components_match_total(self, single_objective, theta_single):
        theta = theta_single * np.array([1.1, 1.0, 1.3, 0.8])
        parts = single_objective.components(theta)
        assert parts['total'] == pytest.approx(
            parts['deviance'] + parts['yield_penalty'] + parts['production_penalty']
        )
        assert parts['yield_penalty'] > 0
        assert parts['production_penalty'] > 0

    def test_yield_matches_forward_model(self, species, sigmoid_gear, single_objective, theta_single):
        state = solve_steady_state(species, [sigmoid_gear], mu_mat=0.4, biomass_target=species.biomass_observed)
        parts = single_objective.components(theta_single)
        assert parts['yield'] == pytest.approx(state.yield_(), rel=1e-8)
        assert parts['production'] == pytest.approx(state.production(), rel=1e-8)

    def test_degenerate_dome_equals_single(self, species, sigmoid_gear, dome_gear, synthetic_catch, theta_single):
        observed = synthetic_catch(species, [sigmoid_gear], theta_single * np.array([1.05, 1.0, 1.0, 1.2]))
        degenerate = replace(dome_gear, l50_right=None, l25_right=None)
        single = CalibrationObjective(ObjectiveBuilder.from_params(species, [sigmoid_gear], observed))
        dome = CalibrationObjective(ObjectiveBuilder.from_params(species, [degenerate], observed))
        assert dome.evaluate(theta_single) == pytest.approx(single.evaluate(theta_single), rel=1e-12)

    def test_zero_lambda_disables_term(self, species, sigmoid_gear, synthetic_catch, theta_single):
        observed = synthetic_catch(species, [sigmoid_gear], theta_single)
        config = CalibrationConfig.from_dict({'YIELD_LAMBDA': 0.0})
        objective = CalibrationObjective(ObjectiveBuilder.from_params(species, [sigmoid_gear], observed, config))
        parts = objective.components(theta_single * np.array([1.0, 1.0, 1.0, 3.0]))
        assert parts['yield_penalty'] == 0.0
        assert parts['production_penalty'] > 0

    def test_gradient_matches_finite_differences(self, dome_objective, theta_dome):
        theta = perturb_theta(theta_dome, DOME_PARAM_NAMES, [1.05, 0.9, 1.1, 1.3, 0.8, 1.2])
        _, grad = dome_objective.value_and_grad(theta)
        for i in range(len(theta)):
            step = 1e-6 * theta[i]
            up, down = theta.copy(), theta.copy()
            up[i] += step
            down[i] -= step
            numeric = (dome_objective.evaluate(up) - dome_objective.evaluate(down)) / (2 * step)
            assert grad[i] == pytest.approx(numeric, rel=1e-4, abs=1e-4)

    def test_internal_gradient_chain_rule(self, single_objective, theta_single):
        theta = theta_single * np.array([1.1, 1.0, 1.2, 0.9])
        _, grad = single_objective.value_and_grad(theta)
        _, grad_x = single_objective.value_and_grad_internal(single_objective.to_internal(theta))
        ratio = theta[1]
        jacobian = np.array([theta[0], ratio * (1 - ratio), theta[2], theta[3]])
        np.testing.assert_allclose(grad_x, grad * jacobian, rtol=1e-8, atol=1e-8)

    def test_invalid_theta_raises(self, single_objective, theta_single):
        theta_single[1] = 1.5
        with pytest.raises(StructuralInputError):
            single_objective.evaluate(theta_single)

    def test_predicted_catch_per_bin(self, single_objective, theta_single):
        predicted = single_objective.predicted_catch(theta_single)
        assert predicted.shape == single_objective.payload.count.shape
        assert np.all(predicted >= 0)
        np.testing.assert_allclose(
            predicted / predicted.sum(),
            single_objective.payload.count / single_objective.payload.count.sum(),
            rtol=1e-8,
        )
