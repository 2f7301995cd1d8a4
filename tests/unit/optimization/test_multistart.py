"""Tests for multi-start robustness and identifiability analysis."""

import numpy as np
import pandas as pd
import pytest

from sizecal.core.config import CalibrationConfig
from sizecal.core.exceptions import ConfigurationError, StructuralInputError
from sizecal.optimization.objectives.catch_objective import (
    DOME_PARAM_NAMES,
    SINGLE_PARAM_NAMES,
    CalibrationObjective,
    ObjectiveBuilder,
)
from sizecal.optimization.optimizers import multistart
from sizecal.optimization.optimizers.gradient_optimizer import GradientOptimizer
from sizecal.optimization.optimizers.multistart import (
    MultiStartSummary,
    draw_start_multipliers,
    flag_outliers,
    identifiability_report,
    profile_objective,
    run_multistart,
)


@pytest.fixture
def single_objective(species, sigmoid_gear, theta_single, synthetic_catch, calibration_config):
    observed = synthetic_catch(species, [sigmoid_gear], theta_single, config=calibration_config)
    return CalibrationObjective(ObjectiveBuilder.from_params(species, [sigmoid_gear], observed, calibration_config))


class _StartOnlyOptimizer(GradientOptimizer):
    """Scores each start without moving from it."""

    def run(self, objective, theta0, fixed=None):
        return super().run(objective, theta0, fixed=set(objective.param_names))


def _has_extreme_rate_multiplier(row):
    rates = (row['mult_mu_mat'], row['mult_catchability'])
    return min(rates) <= 0.5 or max(rates) >= 1.5


class TestStartMultipliers:

    def test_ranges_by_parameter_kind(self):
        rng = np.random.default_rng(0)
        mult = draw_start_multipliers(SINGLE_PARAM_NAMES, 500, (0.8, 1.2), (0.2, 2.0), rng)
        assert mult.shape == (500, 4)
        for j in (0, 1):
            assert mult[:, j].min() >= 0.8 and mult[:, j].max() <= 1.2
        for j in (2, 3):
            assert mult[:, j].min() >= 0.2 and mult[:, j].max() <= 2.0
            assert mult[:, j].max() > 1.2

    def test_dome_limb_parameters_are_shape(self):
        mult = draw_start_multipliers(DOME_PARAM_NAMES, 200, (0.8, 1.2), (0.2, 2.0), np.random.default_rng(3))
        for name in ('d50', 'r_right'):
            j = DOME_PARAM_NAMES.index(name)
            assert mult[:, j].min() >= 0.8 and mult[:, j].max() <= 1.2

    def test_unknown_parameter(self):
        with pytest.raises(ConfigurationError, match="no jitter range"):
            draw_start_multipliers(('l50', 'effort'), 3, (0.8, 1.2), (0.2, 2.0), np.random.default_rng(0))


class TestFlagOutliers:

    def test_flags_values_above_threshold(self):
        values = np.array([1.0, 1.1, 1.2, 1.3, 1.0, 50.0])
        flags, threshold = flag_outliers(values, 2.0)
        q1, q3 = np.percentile(values, [25, 75])
        assert threshold == pytest.approx(q3 + 2.0 * (q3 - q1))
        assert flags.tolist() == [False, False, False, False, False, True]

    def test_non_finite_never_flagged(self):
        flags, threshold = flag_outliers(np.array([1.0, np.nan, np.inf, 1.0]), 2.0)
        assert not flags.any()
        assert threshold == pytest.approx(1.0)

    def test_all_non_finite(self):
        flags, threshold = flag_outliers(np.array([np.nan, np.nan]), 2.0)
        assert not flags.any()
        assert np.isnan(threshold)


@pytest.mark.optimization
class TestRunMultistart:

    def test_small_run(self, single_objective, theta_single):
        config = CalibrationConfig.from_dict({
            'YIELD_LAMBDA': 10.0, 'PRODUCTION_LAMBDA': 10.0, 'N_STARTS': 4, 'MULTISTART_SEED': 1,
        })
        summary = run_multistart(single_objective, theta_single, config)
        assert len(summary.runs) == 4
        assert len(summary.results) == 4
        for name in SINGLE_PARAM_NAMES:
            assert {name, f'start_{name}', f'mult_{name}'}.issubset(summary.runs.columns)
        assert summary.min_objective == pytest.approx(summary.runs['objective'].min())
        assert summary.best is not None
        assert summary.best.objective >= summary.min_objective

    def test_seed_reproducible(self, single_objective, theta_single):
        config = CalibrationConfig.from_dict({'N_STARTS': 2, 'MULTISTART_SEED': 7, 'MAX_ITERATIONS': 3})
        first = run_multistart(single_objective, theta_single, config)
        second = run_multistart(single_objective, theta_single, config)
        pd.testing.assert_frame_equal(first.runs, second.runs)

    def test_invalid_reference_theta(self, single_objective, theta_single):
        theta_single[1] = 2.0
        with pytest.raises(StructuralInputError):
            run_multistart(single_objective, theta_single, CalibrationConfig.from_dict({'N_STARTS': 2}))

    @pytest.mark.slow
    def test_thirty_starts(self, single_objective, theta_single):
        config = CalibrationConfig.from_dict({
            'YIELD_LAMBDA': 10.0, 'PRODUCTION_LAMBDA': 10.0, 'MULTISTART_SEED': 42, 'MULTISTART_MAX_WORKERS': 2,
        })
        summary = run_multistart(single_objective, theta_single, config)
        assert len(summary.runs) == 30
        assert summary.success_rate >= 0.9

        runs = summary.runs
        assert np.all(runs.loc[runs['outlier'], 'objective'] > summary.outlier_threshold)
        inliers = runs[~runs['outlier'] & np.isfinite(runs['objective'])]
        assert np.all(inliers['objective'] <= summary.outlier_threshold)
        for _, row in summary.outliers.iterrows():
            assert _has_extreme_rate_multiplier(row)

        best = summary.best
        np.testing.assert_allclose(best.theta, theta_single, rtol=0.05)
        report = identifiability_report(summary, tolerance=0.05)
        assert report.n_runs >= 27
        assert list(report.table.index) == list(SINGLE_PARAM_NAMES)

    def test_outliers_come_from_extreme_rate_multipliers(self, monkeypatch, single_objective, theta_single):
        """Starts with extreme mortality or catchability multipliers stand out; mild ones do not."""
        extreme = {5: (0.2, 1.0), 17: (1.0, 2.0), 29: (0.25, 0.2)}
        mult = np.ones((30, len(SINGLE_PARAM_NAMES)))
        mult[:, 2] = np.linspace(0.99, 1.01, 30)
        for row, (mu_mat, catchability) in extreme.items():
            mult[row, 2:] = (mu_mat, catchability)
        monkeypatch.setattr(multistart, 'draw_start_multipliers', lambda *args: mult)

        config = CalibrationConfig.from_dict({'YIELD_LAMBDA': 10.0, 'PRODUCTION_LAMBDA': 10.0})
        summary = run_multistart(single_objective, theta_single, config, optimizer=_StartOnlyOptimizer())

        assert sorted(summary.outliers['start']) == sorted(extreme)
        for _, row in summary.outliers.iterrows():
            assert _has_extreme_rate_multiplier(row)
        assert summary.success_rate == pytest.approx(27 / 30)
        assert not summary.runs.loc[list(extreme), 'within_band'].any()


class TestProfile:

    def test_profile_minimum_at_generating_value(self, single_objective, theta_single):
        values = np.array([23.0, 24.0, 25.0, 26.0, 27.0])
        profile = profile_objective(single_objective, theta_single, 'l50', values)
        assert list(profile.columns) == ['l50', 'objective', 'converged']
        assert profile.loc[profile['objective'].idxmin(), 'l50'] == 25.0
        assert profile['converged'].all()

    def test_invalid_values_are_nan(self, single_objective, theta_single):
        profile = profile_objective(single_objective, theta_single, 'ratio', [0.5, 1.5])
        assert np.isfinite(profile['objective'].iloc[0])
        assert np.isnan(profile['objective'].iloc[1])
        assert not profile['converged'].iloc[1]

    def test_unknown_parameter(self, single_objective, theta_single):
        with pytest.raises(StructuralInputError, match="unknown parameter"):
            profile_objective(single_objective, theta_single, 'd50', [1.0])

    @pytest.mark.optimization
    def test_reoptimized_profile(self, single_objective, theta_single):
        profile = profile_objective(single_objective, theta_single, 'mu_mat', [0.4], reoptimize=True)
        assert profile['fit_mu_mat'].iloc[0] == pytest.approx(0.4)
        assert profile['objective'].iloc[0] == pytest.approx(0.0, abs=1e-4)


class TestIdentifiability:

    def _summary(self, rows):
        runs = pd.DataFrame(rows)
        return MultiStartSummary(
            runs=runs,
            results=[],
            param_names=('l50', 'mu_mat'),
            min_objective=float(runs['objective'].min()),
            success_rate=float(runs['within_band'].mean()),
            outlier_threshold=np.nan,
        )

    def test_spread_among_good_runs(self):
        summary = self._summary([
            {'l50': 25.0, 'mu_mat': 0.40, 'objective': 1.0, 'within_band': True},
            {'l50': 25.1, 'mu_mat': 0.60, 'objective': 1.1, 'within_band': True},
            {'l50': 40.0, 'mu_mat': 2.00, 'objective': 90.0, 'within_band': False},
        ])
        report = identifiability_report(summary, tolerance=0.05)
        assert report.n_runs == 2
        assert report.poorly_identified == ['mu_mat']
        assert not report.identifiable
        assert report.table.loc['l50', 'max'] == 25.1

    def test_no_good_runs(self):
        summary = self._summary([{'l50': 25.0, 'mu_mat': 0.4, 'objective': 5.0, 'within_band': False}])
        report = identifiability_report(summary)
        assert report.n_runs == 0
        assert not report.identifiable
        assert np.isnan(report.table.loc['l50', 'mean'])
