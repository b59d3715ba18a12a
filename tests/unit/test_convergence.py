import numpy as np
import pytest

from iohcma import (
    CMA,
    CONDITIONCOV,
    NOEFFECTAXIS,
    NOEFFECTCOORD,
    TOLFUN,
    TOLX,
    TOLXUP,
)


def quadratic(x):
    return (x[0] - 3) ** 2 + 100 * (x[1] + 2) ** 2


def test_fresh_distribution_is_not_converged():
    cma = CMA(np.zeros(2), 1.5, seed=0)
    assert cma.is_converged() == (False, None)


def test_ill_conditioned_covariance_reports_conditioncov():
    cma = CMA(np.zeros(2), 1.5, seed=0, cov=np.diag([1e7, 1e-8]))
    assert cma.is_converged() == (True, CONDITIONCOV)


def test_conditioncov_fires_with_spread_out_fitness():
    cma = CMA(np.zeros(2), 1.5, seed=0, cov=np.diag([1e7, 1e-8]))
    # told values spread widely, so the function-value criterion cannot fire
    solutions = [(cma.ask(), float(k * 1000)) for k in range(cma.population_size)]
    cma.tell(solutions)
    converged, reason = cma.is_converged()
    assert converged
    assert reason == CONDITIONCOV


def test_divergence_reports_tolxup():
    cma = CMA(np.zeros(2), 1e5, seed=0)
    assert cma.is_converged() == (True, TOLXUP)


def test_tiny_step_size_reports_tolx():
    cma = CMA(np.zeros(2), 1.0, seed=0)
    cma._sigma = 1e-14
    assert cma.is_converged() == (True, TOLX)


def test_no_effect_coordinate():
    cma = CMA(np.array([1e20, 0.0]), 1.0, seed=0)
    assert cma.is_converged() == (True, NOEFFECTCOORD)


def _rotated_cov(small, large=1.0):
    # principal axes along (1, -1) and (1, 1)
    R = np.array([[1.0, 1.0], [-1.0, 1.0]]) / np.sqrt(2)
    return R @ np.diag([small, large]) @ R.T


def test_no_effect_axis():
    # both coordinates have unit-order spread, only the thin axis is lost
    cma = CMA(np.array([1e10, 1e10]), 1.0, seed=0, cov=_rotated_cov(1e-12))
    assert cma.generation % cma.dim == 0
    assert cma.is_converged() == (True, NOEFFECTAXIS)


def test_no_effect_axis_needs_a_large_mean():
    cma = CMA(np.array([1.0, 1.0]), 1.0, seed=0, cov=_rotated_cov(1e-12))
    assert cma.is_converged() == (False, None)


def test_flat_function_reports_tolfun():
    cma = CMA(np.zeros(2), 1.0, seed=0)
    for _ in range(cma._funhist_term + 1):
        cma.tell([(cma.ask(), 1.0) for _ in range(cma.population_size)])
    assert cma.is_converged() == (True, TOLFUN)


def test_quadratic_converges_with_ask_tell_loop():
    cma = CMA(np.zeros(2), 1.5, seed=0)
    best_x, best_f = None, np.inf
    reason = None
    for _ in range(400):
        solutions = []
        for _ in range(cma.population_size):
            c = cma.ask()
            value = quadratic(c.x)
            if value < best_f:
                best_x, best_f = c.x, value
            solutions.append((c, value))
        cma.tell(solutions)
        converged, reason = cma.is_converged()
        if converged:
            break
    assert converged, reason
    assert np.allclose(best_x, [3, -2], atol=1e-3)
    assert best_f == pytest.approx(0, abs=1e-6)
