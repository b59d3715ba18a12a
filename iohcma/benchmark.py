import logging

import ioh
import numpy as np
import pandas as pd
from ioh import LogInfo, get_problem
from ioh import logger as ioh_logger

from .cma import CMA
from .utils import NonConvergenceError, OverBudgetException

logger = logging.getLogger(__name__)


class CMAES:
    """CMA-ES as a black-box algorithm for ioh problems."""

    def __init__(self, budget: int = 10000, dim: int = 10, sigma0=None, seed=None) -> None:
        """Instantiate the optimizer.

        Args:
            budget (int): Total number of function evaluations.
            dim (int): Search space dimensionality.
            sigma0 (float, optional): Initial step size, a fifth of the widest
                bound range by default.
            seed (int, optional): Seed for the initial mean and the sampler.
        """
        self.budget = budget
        self.dim = dim
        self.sigma0 = sigma0
        self.seed = seed
        self.f_opt = np.inf
        self.x_opt = None

    def __call__(self, func):
        """Optimize ``func`` until convergence or until the budget is spent."""
        lb = np.asarray(func.bounds.lb, dtype=float)
        ub = np.asarray(func.bounds.ub, dtype=float)
        sigma0 = self.sigma0 if self.sigma0 is not None else 0.2 * np.max(ub - lb)
        rng = np.random.default_rng(self.seed)
        cma = CMA(
            rng.uniform(lb, ub),
            sigma0,
            bounds=np.column_stack([lb, ub]),
            seed=self.seed,
        )

        self.f_opt = np.inf
        self.x_opt = None
        evals = 0
        try:
            while evals + cma.population_size <= self.budget:
                solutions = []
                for _ in range(cma.population_size):
                    candidate = cma.ask()
                    f = func(candidate.x)
                    evals += 1
                    if f < self.f_opt:
                        self.f_opt = f
                        self.x_opt = candidate.x.copy()
                    solutions.append((candidate, f))
                cma.tell(solutions)
                if cma.is_converged()[0]:
                    break
        except NonConvergenceError as e:
            logger.warning("Stopping CMA-ES early: %s", e)

        return self.f_opt, self.x_opt


def correct_aoc(ioh_function, logger, budget):
    """Correct aoc values in case a run stopped before the budget was exhausted

    Args:
        ioh_function: The function in its final state (before resetting!)
        logger: The logger in its final state, so we can ensure the settings for aoc calculation match
        budget: The intended maximum budget

    Returns:
        float: The normalized aoc of the run, corrected for stopped runs
    """
    fraction = (
        logger.transform(
            np.clip(
                ioh_function.state.current_best_internal.y, logger.lower, logger.upper
            )
        )
        - logger.transform(logger.lower)
    ) / (logger.transform(logger.upper) - logger.transform(logger.lower))
    aoc = (
        logger.aoc
        + np.clip(budget - ioh_function.state.evaluations, 0, budget) * fraction
    ) / budget

    return 1 - aoc


class aoc_logger(ioh_logger.AbstractLogger):
    """aoc_logger class implementing the logging module for ioh."""

    def __init__(
        self,
        budget,
        lower=1e-8,
        upper=1e8,
        scale_log=True,
        *args,
        **kwargs,
    ):
        """Initialize the logger.

        Args:
            budget (int): Evaluation budget for calculating aoc.
        """
        super().__init__(*args, **kwargs)
        self.aoc = 0
        self.lower = lower
        self.upper = upper
        self.budget = budget
        self.transform = np.log10 if scale_log else (lambda x: x)

    def __call__(self, log_info: LogInfo):
        """Subscalculate the aoc.

        Args:
            log_info (ioh.LogInfo): info about current values.
        """
        if log_info.evaluations > self.budget:
            raise OverBudgetException
        if log_info.evaluations == self.budget:
            return
        y_value = np.clip(log_info.raw_y_best, self.lower, self.upper)
        self.aoc += (self.transform(y_value) - self.transform(self.lower)) / (
            self.transform(self.upper) - self.transform(self.lower)
        )

    def reset(self, func=None):
        super().reset()
        self.aoc = 0


class budget_logger(ioh_logger.AbstractLogger):
    """budget_logger class implementing the logging module for ioh."""

    def __init__(
        self,
        budget,
        *args,
        **kwargs,
    ):
        """Initialize the logger.

        Args:
            budget (int): Maximum number of evaluations.
        """
        super().__init__(*args, **kwargs)
        self.budget = budget

    def __call__(self, log_info: LogInfo):
        if log_info.evaluations > self.budget:
            raise OverBudgetException

    def reset(self):
        super().reset()


def run_bbob(
    fids=(1,),
    dims=(2,),
    instances=(1,),
    seeds=(0,),
    budget_factor=2000,
    upper=1e2,
):
    """Run CMA-ES on BBOB functions and collect one row per run.

    Args:
        fids: BBOB function ids.
        dims: Dimensionalities to test.
        instances: Instance ids per function.
        seeds: Seeds, one run per seed.
        budget_factor: Evaluation budget per dimension.
        upper: Upper precision bound for the AOCC normalisation.

    Returns:
        pd.DataFrame: Columns ``fid, iid, dim, seed, f_opt, precision, aocc``.
    """
    performance_data = []
    for dim in dims:
        budget = budget_factor * dim
        for fid in fids:
            for iid in instances:
                for seed in seeds:
                    problem = get_problem(
                        fid, instance=iid, dimension=dim, problem_class=ioh.ProblemClass.BBOB
                    )
                    l2 = aoc_logger(budget, upper=upper, triggers=[ioh_logger.trigger.ALWAYS])
                    problem.attach_logger(l2)
                    algorithm = CMAES(budget=budget, dim=dim, seed=seed)
                    try:
                        algorithm(problem)
                    except OverBudgetException:
                        pass
                    performance_data.append(
                        {
                            "fid": fid,
                            "iid": iid,
                            "dim": dim,
                            "seed": seed,
                            "f_opt": algorithm.f_opt,
                            "precision": algorithm.f_opt - problem.optimum.y,
                            "aocc": correct_aoc(problem, l2, budget),
                        }
                    )
                    logger.info(
                        "f%d i%d d%d seed %d: aocc %.3f",
                        fid,
                        iid,
                        dim,
                        seed,
                        performance_data[-1]["aocc"],
                    )
                    l2.reset(problem)
                    problem.reset()

    return pd.DataFrame(performance_data)
