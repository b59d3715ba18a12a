import json
from unittest.mock import patch

import numpy as np
import pytest

from iohcma import ArgumentError, CmaesOptimizer, wrap_problem
from iohcma.optimizer import CANCELLED, MAX_GENERATIONS, NON_CONVERGENCE, NON_FINITE


def quadratic(x):
    return (x[0] - 3) ** 2 + 100 * (x[1] + 2) ** 2


def test_optimize_converges_on_quadratic():
    optimizer = CmaesOptimizer(quadratic, [0, 0], 1.5, seed=0, max_generations=400)
    result = optimizer.optimize()

    assert result.converged
    assert result.generations < 400
    assert np.allclose(result.x, [3, -2], atol=1e-3)
    assert result.fun == pytest.approx(0, abs=1e-6)
    assert np.array_equal(optimizer.result_vector, result.x)
    assert optimizer.result_value == result.fun
    assert result.evaluations == result.generations * optimizer.cma.population_size


def test_default_generation_budget_scales_with_dimension():
    optimizer = CmaesOptimizer(quadratic, [0, 0])
    assert optimizer.max_generations == 400


def test_boxed_run_never_leaves_the_box():
    optimizer = CmaesOptimizer(
        quadratic,
        [0, 0],
        1.5,
        lower_bounds=[-1, -1],
        upper_bounds=[1, 1],
        seed=0,
        max_generations=400,
    )
    result = optimizer.optimize()

    assert np.all(result.x >= -1) and np.all(result.x <= 1)
    for x, _ in result.history:
        assert np.all(x >= -1) and np.all(x <= 1)
    # the constrained optimum is the corner closest to (3, -2)
    assert np.allclose(result.x, [1, -1], atol=5e-2)


def test_exhausted_budget_is_not_an_error():
    optimizer = CmaesOptimizer(quadratic, [0, 0], 1.5, seed=0, max_generations=3)
    result = optimizer.optimize()

    assert not result.converged
    assert result.stop_reason == MAX_GENERATIONS
    assert result.message == "did not converge"
    assert result.generations == 3
    assert len(result.history) == 3


def test_best_point_keeps_first_occurrence_on_ties():
    optimizer = CmaesOptimizer(lambda x: 1.0, [0, 0], 1.0, seed=0, max_generations=2)
    result = optimizer.optimize()
    assert result.fun == 1.0
    assert np.array_equal(result.x, result.history[0][0])


def test_non_convergence_stops_run_with_best_so_far():
    optimizer = CmaesOptimizer(quadratic, [0, 0], 1.5, seed=0, max_generations=50)
    with patch(
        "numpy.linalg.eigh", side_effect=np.linalg.LinAlgError("did not converge")
    ):
        result = optimizer.optimize()

    assert not result.converged
    assert result.stop_reason == NON_CONVERGENCE
    assert result.generations == 0
    assert result.x is not None
    assert np.isfinite(result.fun)


def test_invalid_bounds_raise_argument_error():
    with pytest.raises(ArgumentError):
        CmaesOptimizer(quadratic, [0, 0], lower_bounds=[-1], upper_bounds=[1, 1])
    with pytest.raises(ArgumentError):
        CmaesOptimizer(quadratic, [0, 0], lower_bounds=[1, 1], upper_bounds=[-1, -1])
    with pytest.raises(ArgumentError):
        CmaesOptimizer(quadratic)


def test_optimize_from_problem_uses_its_settings():
    problem = wrap_problem(quadratic, [0, 0], max_iteration=150, seed=3)
    optimizer = CmaesOptimizer(problem)
    assert optimizer.max_generations == 300
    result = optimizer.optimize()
    assert result.converged
    assert np.allclose(result.x, [3, -2], atol=1e-3)


def test_parallel_thread_backend_matches_sequential():
    sequential = CmaesOptimizer(quadratic, [0, 0], 1.5, seed=0).optimize()
    parallel = CmaesOptimizer(quadratic, [0, 0], 1.5, seed=0).optimize_parallel(4)

    assert parallel.converged
    assert parallel.generations == sequential.generations
    assert np.array_equal(parallel.x, sequential.x)
    assert parallel.fun == sequential.fun


def test_parallel_process_backend_with_wrapped_lambda():
    problem = wrap_problem(
        lambda x: (x[0] - 3) ** 2 + 100 * (x[1] + 2) ** 2, [0, 0], seed=0
    )
    result = CmaesOptimizer(problem, max_generations=20).optimize_parallel(
        2, backend="process"
    )
    assert result.stop_reason != CANCELLED
    assert result.generations > 0


def test_failing_worker_cancels_generation():
    calls = {"n": 0}

    def flaky(x):
        calls["n"] += 1
        if calls["n"] > 15:
            raise RuntimeError("worker crashed")
        return quadratic(x)

    optimizer = CmaesOptimizer(flaky, [0, 0], 1.5, seed=0, max_generations=50)
    result = optimizer.optimize_parallel(1)

    assert result.stop_reason == CANCELLED
    assert not result.converged
    # 6 candidates per generation, the third generation is discarded
    assert result.generations == 2
    assert result.evaluations == 12
    assert result.x is not None


def test_cancel_from_objective_discards_generation():
    holder = {}

    def objective(x):
        if holder["optimizer"].cma.generation == 1:
            holder["optimizer"].cancel()
        return quadratic(x)

    optimizer = CmaesOptimizer(objective, [0, 0], 1.5, seed=0, max_generations=50)
    holder["optimizer"] = optimizer
    result = optimizer.optimize()

    assert result.stop_reason == CANCELLED
    assert result.generations == 1


def test_unknown_backend():
    with pytest.raises(ValueError):
        CmaesOptimizer(quadratic, [0, 0]).optimize_parallel(2, backend="gpu")


def test_result_to_dict_is_json_serializable():
    result = CmaesOptimizer(quadratic, [0, 0], 1.5, seed=0, max_generations=5).optimize()
    data = result.to_dict()
    json.dumps(data)
    assert data["generations"] == 5
    assert len(data["x"]) == 2
    assert len(data["history"]) == 5


def test_cancel_before_optimize_stops_the_next_run():
    optimizer = CmaesOptimizer(quadratic, [0, 0], 1.5, seed=0, max_generations=50)
    optimizer.cancel()
    result = optimizer.optimize()

    assert result.stop_reason == CANCELLED
    assert result.generations == 0
    assert result.x is None

    # the cancel is consumed by that run
    assert optimizer.optimize().converged


def test_non_finite_objective_value_stops_with_best_so_far():
    calls = {"n": 0}

    def objective(x):
        calls["n"] += 1
        if calls["n"] > 12:
            return float("nan")
        return quadratic(x)

    optimizer = CmaesOptimizer(objective, [0, 0], 1.5, seed=0, max_generations=50)
    result = optimizer.optimize()

    assert result.stop_reason == NON_FINITE
    assert not result.converged
    assert result.generations == 2
    assert result.x is not None and np.isfinite(result.fun)
    assert np.array_equal(optimizer.result_vector, result.x)


def test_repeated_optimize_starts_from_scratch():
    optimizer = CmaesOptimizer(quadratic, [0, 0], 1.5, seed=0, max_generations=400)
    first = optimizer.optimize()
    second = optimizer.optimize()

    assert second.generations == first.generations
    assert np.array_equal(second.x, first.x)
    assert second.fun == first.fun
