import inspect
from abc import ABC, abstractmethod

import cloudpickle
import numpy as np

from .bounds import bounds_from_limits
from .utils import ArgumentError


class Problem(ABC):
    """
    Abstract problem class bundling an objective with its optimizer settings.
    """

    def __init__(
        self,
        initial,
        sigma=1.5,
        lower_bounds=None,
        upper_bounds=None,
        max_iteration=200,
        seed=0,
        name="Problem",
    ):
        """
        Initializes a problem with its starting point and search settings.

        Args:
            initial (array-like): Initial mean of the search distribution.
            sigma (float, optional): Initial step size.
            lower_bounds (array-like, optional): Lower limit of the search range.
            upper_bounds (array-like, optional): Upper limit of the search range.
            max_iteration (int, optional): Number of generations allowed per dimension.
            seed (int, optional): Seed for the random source of the optimizer.
            name (str, optional): Name of the problem.
        """
        self.initial = np.array(initial, dtype=float)
        if self.initial.ndim != 1 or self.initial.size == 0:
            raise ArgumentError("initial must be a non-empty one-dimensional vector.")
        self.sigma = sigma
        self.lower_bounds = None if lower_bounds is None else list(lower_bounds)
        self.upper_bounds = None if upper_bounds is None else list(upper_bounds)
        # validates lengths and ordering early
        bounds_from_limits(self.lower_bounds, self.upper_bounds, self.dim)
        self.max_iteration = max_iteration
        self.seed = seed
        self.name = name

    @property
    def dim(self):
        return len(self.initial)

    @property
    def max_generations(self):
        return self.dim * self.max_iteration

    @property
    def bounds(self):
        return bounds_from_limits(self.lower_bounds, self.upper_bounds, self.dim)

    def __call__(self, x):
        """
        Evaluates the objective at ``x``.

        Args:
            x (np.ndarray): Position to evaluate.

        Returns:
            float: The objective value, lower is better.
        """
        return float(self.evaluate(x))

    @abstractmethod
    def evaluate(self, x):
        """
        Computes the objective value of a single position.

        Args:
            x (np.ndarray): Position to evaluate.
        """
        pass

    def to_dict(self):
        """
        Returns a dictionary representation of the problem including all parameters.

        Returns:
            dict: Dictionary representation of the problem.
        """
        return {
            "name": self.name,
            "initial": self.initial.tolist(),
            "sigma": self.sigma,
            "lower_bounds": self.lower_bounds,
            "upper_bounds": self.upper_bounds,
            "max_iteration": self.max_iteration,
            "seed": self.seed,
        }


class WrappedProblem(Problem):
    def __init__(
        self,
        evaluate_fn,
        initial,
        *,
        sigma=1.5,
        lower_bounds=None,
        upper_bounds=None,
        max_iteration=200,
        seed=0,
        name="Problem",
    ):
        super().__init__(
            initial,
            sigma=sigma,
            lower_bounds=lower_bounds,
            upper_bounds=upper_bounds,
            max_iteration=max_iteration,
            seed=seed,
            name=name,
        )
        # support both signatures: (x) and (self, x)
        self._takes_self = len(inspect.signature(evaluate_fn).parameters) > 1
        # store by value
        self._evaluate_fn_bytes = cloudpickle.dumps(evaluate_fn)
        self._evaluate_fn = None  # reconstructed lazily

    def __getstate__(self):
        state = self.__dict__.copy()
        state["_evaluate_fn"] = None
        return state

    def _get_evaluate_fn(self):
        if self._evaluate_fn is None:
            self._evaluate_fn = cloudpickle.loads(self._evaluate_fn_bytes)
        return self._evaluate_fn

    def evaluate(self, x):
        fn = self._get_evaluate_fn()
        if self._takes_self:
            return fn(self, x)
        return fn(x)


def wrap_problem(
    evaluate_fn,
    initial,
    *,
    sigma=1.5,
    lower_bounds=None,
    upper_bounds=None,
    max_iteration=200,
    seed=0,
    name="Problem",
):
    return WrappedProblem(
        evaluate_fn,
        initial,
        sigma=sigma,
        lower_bounds=lower_bounds,
        upper_bounds=upper_bounds,
        max_iteration=max_iteration,
        seed=seed,
        name=name,
    )
