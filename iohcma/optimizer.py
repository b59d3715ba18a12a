import logging
import threading
from concurrent.futures import (
    CancelledError,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
)
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from .bounds import bounds_from_limits
from .cma import CMA
from .problem import Problem
from .utils import ArgumentError, NonConvergenceError, convert_to_serializable

logger = logging.getLogger(__name__)

MAX_GENERATIONS = "max_generations"
NON_CONVERGENCE = "non_convergence"
CANCELLED = "cancelled"
NON_FINITE = "non_finite"


@dataclass
class OptimizeResult:
    """Outcome of an optimization run.

    ``converged`` is only True when a termination criterion of the search
    distribution fired; ``stop_reason`` then names that criterion.
    """

    x: Optional[np.ndarray]
    fun: float
    converged: bool
    stop_reason: str
    message: str
    generations: int
    evaluations: int
    history: List[Tuple[np.ndarray, float]] = field(default_factory=list)

    def to_dict(self):
        return convert_to_serializable(
            {
                "x": self.x,
                "fun": self.fun,
                "converged": self.converged,
                "stop_reason": self.stop_reason,
                "message": self.message,
                "generations": self.generations,
                "evaluations": self.evaluations,
                "history": [
                    {"x": x, "fun": value} for x, value in self.history
                ],
            }
        )


def _guarded_call(function, x, cancel_event):
    if cancel_event is not None and cancel_event.is_set():
        raise CancelledError()
    return function(x)


class CmaesOptimizer:
    """
    Runs the ask/evaluate/tell loop of CMA-ES on an objective and keeps the best point.
    """

    def __init__(
        self,
        function,
        initial=None,
        sigma=1.5,
        lower_bounds=None,
        upper_bounds=None,
        seed=0,
        max_generations=None,
        show_progress=False,
    ):
        """
        Initializes the optimizer.

        Args:
            function (callable | Problem): Objective function, or a Problem that
                also provides every other setting.
            initial (array-like): Initial values.
            sigma (float): Step size of CMA-ES.
            lower_bounds (array-like, optional): Lower limit of the optimized search range.
            upper_bounds (array-like, optional): Upper limit of the optimized search range.
            seed (int, optional): A seed number.
            max_generations (int, optional): Generation budget, ``200 * dim`` by default.
            show_progress (bool): Whether to display a progress bar.
        """
        if isinstance(function, Problem):
            initial = function.initial
            sigma = function.sigma
            lower_bounds = function.lower_bounds
            upper_bounds = function.upper_bounds
            seed = function.seed
            if max_generations is None:
                max_generations = function.max_generations
        if initial is None:
            raise ArgumentError("An initial point is required.")

        initial = np.array(initial, dtype=float)
        bounds = bounds_from_limits(lower_bounds, upper_bounds, len(initial))

        self._function = function
        self._initial = initial
        self._sigma = sigma
        self._bounds = bounds
        self._seed = seed
        self._cma = self._new_cma()
        self.max_generations = (
            len(initial) * 200 if max_generations is None else max_generations
        )
        self.show_progress = show_progress
        self._cancel_event = threading.Event()

        self.result_vector = None
        self.result_value = np.inf

    @property
    def cma(self) -> CMA:
        return self._cma

    def _new_cma(self) -> CMA:
        return CMA(self._initial, self._sigma, bounds=self._bounds, seed=self._seed)

    def cancel(self):
        """Stop the current optimization before its next tell.

        A cancel issued before ``optimize`` is called stops that run before
        its first generation is told.
        """
        self._cancel_event.set()

    def optimize(self) -> OptimizeResult:
        """
        Perform optimization calculations with CMA-ES, evaluating one candidate at a time.

        Every call starts from a fresh distribution built from the constructor
        settings, so repeated calls with the same seed give the same result.
        When the objective returns a non-finite value the run stops with
        ``stop_reason="non_finite"`` and the best point found before it.
        Exceptions raised by the objective propagate.
        """

        def evaluate_generation(candidates):
            values = []
            for candidate in candidates:
                if self._cancel_event.is_set():
                    return None
                values.append(float(self._function(candidate.x)))
            return values

        return self._run(evaluate_generation)

    def optimize_parallel(self, n_jobs, backend="thread") -> OptimizeResult:
        """
        Perform optimization calculations with CMA-ES, evaluating each generation concurrently.

        Args:
            n_jobs (int): Maximum number of concurrent evaluations.
            backend (str): ``"thread"`` or ``"process"``. The process backend
                requires a picklable objective, see ``wrap_problem``.

        Returns:
            OptimizeResult: The best point found. When an evaluation fails the
            generation is discarded and the run stops with ``stop_reason="cancelled"``.
        """
        if backend == "thread":
            executor_cls = ThreadPoolExecutor
            cancel_event = self._cancel_event
        elif backend == "process":
            executor_cls = ProcessPoolExecutor
            cancel_event = None
        else:
            raise ValueError("backend must be 'thread' or 'process'")

        with executor_cls(max_workers=n_jobs) as executor:

            def evaluate_generation(candidates):
                futures = {
                    executor.submit(
                        _guarded_call, self._function, candidate.x, cancel_event
                    ): i
                    for i, candidate in enumerate(candidates)
                }
                values = [None] * len(candidates)
                for fut in as_completed(futures):
                    if self._cancel_event.is_set():
                        break
                    try:
                        values[futures[fut]] = float(fut.result())
                    except Exception as e:
                        logger.warning(
                            "Evaluation of candidate %d failed: %s", futures[fut], e
                        )
                        self._cancel_event.set()
                        break
                if self._cancel_event.is_set():
                    for fut in futures:
                        fut.cancel()
                    return None
                return values

            return self._run(evaluate_generation)

    def _run(self, evaluate_generation) -> OptimizeResult:
        self._cma = self._new_cma()
        best_x, best_f = None, np.inf
        history = []
        evaluations = 0
        converged = False
        stop_reason = MAX_GENERATIONS

        progress = tqdm(
            total=self.max_generations, desc="CMA-ES", disable=not self.show_progress
        )
        try:
            for _ in range(self.max_generations):
                candidates = [
                    self._cma.ask() for _ in range(self._cma.population_size)
                ]
                values = evaluate_generation(candidates)
                if values is None:
                    logger.info("Optimization cancelled, generation discarded.")
                    stop_reason = CANCELLED
                    break
                evaluations += len(values)
                if not np.all(np.isfinite(values)):
                    logger.warning(
                        "Objective returned a non-finite value, generation discarded."
                    )
                    stop_reason = NON_FINITE
                    break

                idx = int(np.argmin(values))
                history.append((candidates[idx].x.copy(), values[idx]))
                if values[idx] < best_f:
                    best_f = values[idx]
                    best_x = candidates[idx].x.copy()

                self._cma.tell(list(zip(candidates, values)))
                progress.update(1)

                converged, reason = self._cma.is_converged()
                if converged:
                    stop_reason = reason
                    break
        except NonConvergenceError as e:
            logger.warning("Eigendecomposition did not converge, stopping: %s", e)
            stop_reason = NON_CONVERGENCE
        finally:
            progress.close()
            self._cancel_event.clear()

        if converged:
            message = f"converged ({stop_reason})"
            logger.info("Converged after %d generations: %s", self._cma.generation, stop_reason)
        elif stop_reason == MAX_GENERATIONS:
            message = "did not converge"
            logger.info("Reached max iteration.")
        elif stop_reason == NON_CONVERGENCE:
            message = "eigendecomposition did not converge"
        elif stop_reason == NON_FINITE:
            message = "objective returned a non-finite value"
        else:
            message = "optimization cancelled"

        self.result_vector = best_x
        self.result_value = best_f
        return OptimizeResult(
            x=best_x,
            fun=float(best_f),
            converged=converged,
            stop_reason=stop_reason,
            message=message,
            generations=self._cma.generation,
            evaluations=evaluations,
            history=history,
        )
