import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from . import linalg
from .bounds import repair, validate_bounds
from .utils import ArgumentError, InvalidGenerationError

TOLX = "tolx"
TOLFUN = "tolfun"
CONDITIONCOV = "conditioncov"
NOEFFECTCOORD = "noeffectcoord"
NOEFFECTAXIS = "noeffectaxis"
TOLXUP = "tolxup"

_SIGMA_MAX = 1e32
_MIN_EIGENVALUE = 1e-30


@dataclass(eq=False)
class Candidate:
    """One sampled point of a generation.

    ``x`` is the position handed to the objective (inside the bounds, if any),
    ``z`` the isotropic normal draw it was generated from. ``fitness`` is left
    for the caller to fill in before the generation is told.
    """

    x: np.ndarray
    z: np.ndarray
    generation: int
    fitness: Optional[float] = None


Told = Union[Candidate, Tuple[Union[Candidate, np.ndarray, Sequence[float]], float]]


class CMA:
    """CMA-ES search distribution with an ask/tell interface.

    Example:

        .. code::

            import numpy as np
            from iohcma import CMA

            def quadratic(x1, x2):
                return (x1 - 3) ** 2 + (10 * (x2 + 2)) ** 2

            optimizer = CMA(mean=np.zeros(2), sigma=1.3)

            for generation in range(50):
                solutions = []
                for _ in range(optimizer.population_size):
                    candidate = optimizer.ask()
                    value = quadratic(candidate.x[0], candidate.x[1])
                    solutions.append((candidate, value))
                optimizer.tell(solutions)
                if optimizer.is_converged()[0]:
                    break

    Args:
        mean (np.ndarray): Initial mean vector of the multivariate gaussian distribution.
        sigma (float): Initial step-size of CMA-ES.
        bounds (np.ndarray, optional): Lower and upper domain boundaries for each parameter,
            shape ``(n, 2)``.
        seed (int, optional): A seed number.
        population_size (int, optional): A population size (at least 4).
        cov (np.ndarray, optional): An initial covariance matrix, identity by default.
    """

    def __init__(
        self,
        mean: np.ndarray,
        sigma: float,
        bounds: Optional[np.ndarray] = None,
        seed: Optional[int] = None,
        population_size: Optional[int] = None,
        cov: Optional[np.ndarray] = None,
    ):
        mean = np.array(mean, dtype=float)
        if mean.ndim != 1 or mean.size == 0:
            raise ArgumentError("mean must be a non-empty one-dimensional vector.")
        if not np.all(np.isfinite(mean)):
            raise ArgumentError("mean must be finite.")
        if not (math.isfinite(sigma) and sigma > 0):
            raise ArgumentError("sigma must be a positive finite number.")

        n_dim = len(mean)
        self._n_dim = n_dim
        self._bounds = validate_bounds(bounds, n_dim)

        if population_size is None:
            population_size = 4 + math.floor(3 * math.log(n_dim))
        if (
            isinstance(population_size, bool)
            or not isinstance(population_size, (int, np.integer))
            or population_size < 4
        ):
            raise ArgumentError("population_size must be an integer of at least 4.")
        self._popsize = int(population_size)
        self._mu = self._popsize // 2

        # log-linear recombination weights, positive only
        weights_prime = np.array(
            [
                math.log((self._popsize + 1) / 2) - math.log(i + 1)
                for i in range(self._mu)
            ]
        )
        self._weights = weights_prime / np.sum(weights_prime)
        self._mu_eff = 1 / np.sum(self._weights**2)

        # learning rate for the rank-one update
        self._c1 = 2 / ((n_dim + 1.3) ** 2 + self._mu_eff)
        # learning rate for the rank-μ update
        self._cmu = min(
            1 - self._c1,
            2
            * (self._mu_eff - 2 + 1 / self._mu_eff)
            / ((n_dim + 2) ** 2 + self._mu_eff),
        )

        # step-size control
        self._c_sigma = (self._mu_eff + 2) / (n_dim + self._mu_eff + 5)
        self._d_sigma = (
            1
            + 2 * max(0, math.sqrt((self._mu_eff - 1) / (n_dim + 1)) - 1)
            + self._c_sigma
        )
        # cumulation for the rank-one update
        self._cc = (4 + self._mu_eff / n_dim) / (n_dim + 4 + 2 * self._mu_eff / n_dim)
        self._chi_n = linalg.expected_norm(n_dim)

        # distribution state
        self._mean = mean
        self._sigma = float(sigma)
        self._p_sigma = np.zeros(n_dim)
        self._pc = np.zeros(n_dim)
        if cov is None:
            self._C = np.eye(n_dim)
            self._B, self._D = np.eye(n_dim), np.ones(n_dim)
        else:
            cov = np.array(cov, dtype=float)
            if cov.shape != (n_dim, n_dim):
                raise ArgumentError(
                    f"cov must have shape ({n_dim}, {n_dim}), but got {cov.shape}."
                )
            if not np.all(np.isfinite(cov)):
                raise ArgumentError("cov must be finite.")
            self._C, self._B, self._D = linalg.eigen_decomposition(cov)

        # eigen cache bookkeeping
        self._eigen_generation = 0
        self._eigen_dirty = False
        self._lazy_gap = linalg.lazy_gap(self._c1, self._cmu, n_dim)

        self._g = 0
        self._rng = np.random.default_rng(seed)
        self._pending: List[Candidate] = []

        # termination criteria
        self._tolx = 1e-12 * self._sigma
        self._tolxup = 1e4
        self._tolfun = 1e-12
        self._tolconditioncov = 1e14
        self._funhist_term = 10 + math.ceil(30 * n_dim / self._popsize)
        self._funhist_values = np.zeros(self._funhist_term * 2)

    @property
    def dim(self) -> int:
        """A number of dimensions"""
        return self._n_dim

    @property
    def population_size(self) -> int:
        """A population size"""
        return self._popsize

    @property
    def generation(self) -> int:
        """Generation number which is monotonically incremented
        when the distribution is updated."""
        return self._g

    @property
    def mean(self) -> np.ndarray:
        return self._mean.copy()

    @property
    def sigma(self) -> float:
        return self._sigma

    @property
    def covariance(self) -> np.ndarray:
        return self._C.copy()

    @property
    def bounds(self) -> Optional[np.ndarray]:
        return None if self._bounds is None else self._bounds.copy()

    @property
    def weights(self) -> np.ndarray:
        return self._weights.copy()

    @property
    def mu_eff(self) -> float:
        return float(self._mu_eff)

    @property
    def eigen_stale(self) -> bool:
        """Whether C changed since the cached eigenbasis was computed."""
        return self._eigen_dirty

    def reseed_rng(self, seed: int) -> None:
        self._rng = np.random.default_rng(seed)

    def set_bounds(self, bounds: Optional[np.ndarray]) -> None:
        """Update boundary constraints"""
        self._bounds = validate_bounds(bounds, self._n_dim)

    def ask(self) -> Candidate:
        """Sample a candidate from the current distribution."""
        z = self._rng.standard_normal(self._n_dim)  # ~ N(0, I)
        y = self._B.dot(self._D * z)  # ~ N(0, C)
        x = repair(self._mean + self._sigma * y, self._bounds)
        candidate = Candidate(x=x, z=z, generation=self._g)
        self._pending.append(candidate)
        return candidate

    def _match_generation(self, solutions: Sequence[Told]) -> List[Tuple[Candidate, float]]:
        if len(solutions) != self._popsize:
            raise InvalidGenerationError(
                f"Must tell population_size-length solutions: "
                f"expected {self._popsize}, but got {len(solutions)}."
            )

        told: List[Tuple[Candidate, float]] = []
        used = set()
        for solution in solutions:
            if isinstance(solution, Candidate):
                item, value = solution, solution.fitness
            else:
                item, value = solution

            if isinstance(item, Candidate):
                if item.generation != self._g:
                    raise InvalidGenerationError(
                        f"Candidate was drawn for generation {item.generation}, "
                        f"but the distribution is at generation {self._g}."
                    )
                candidate = next((c for c in self._pending if c is item), None)
                if candidate is None:
                    raise InvalidGenerationError(
                        "Candidate was not issued by this distribution."
                    )
                if id(candidate) in used:
                    raise InvalidGenerationError("Candidate was told more than once.")
            else:
                x = np.asarray(item, dtype=float)
                candidate = next(
                    (
                        c
                        for c in self._pending
                        if id(c) not in used and np.array_equal(c.x, x)
                    ),
                    None,
                )
                if candidate is None:
                    raise InvalidGenerationError(
                        "Position does not belong to the current generation."
                    )

            if value is None or not math.isfinite(value):
                raise InvalidGenerationError(
                    f"Every candidate needs a finite fitness, got {value}."
                )
            used.add(id(candidate))
            told.append((candidate, float(value)))
        return told

    def tell(self, solutions: Sequence[Told]) -> None:
        """Update the distribution from an evaluated generation.

        Args:
            solutions: ``population_size`` candidates with their fitness, either
                as ``Candidate`` objects with ``fitness`` set or as
                ``(candidate_or_position, fitness)`` pairs, in any order.

        Raises:
            InvalidGenerationError: On a wrong size, a non-finite fitness or a
                candidate that was not issued since the previous tell.
            NonConvergenceError: When refreshing the eigendecomposition fails,
                either of the stale current C or of the updated one. Nothing
                is updated in that case.
        """
        told = self._match_generation(solutions)
        told.sort(key=lambda s: s[1])
        fvals = np.array([value for _, value in told])
        x_k = np.stack([candidate.x for candidate, _ in told])
        n_dim = self._n_dim

        # C^(-1/2) must come from the current C
        C_prev, B, D = self._C, self._B, self._D
        eigen_generation = self._eigen_generation
        if self._eigen_dirty:
            C_prev, B, D = linalg.eigen_decomposition(C_prev)
            eigen_generation = self._g

        # Selection and recombination
        y_k = (x_k - self._mean) / self._sigma  # ~ N(0, C)
        y_mu = y_k[: self._mu]
        y_w = np.sum(y_mu.T * self._weights, axis=1)
        mean = self._mean + self._sigma * y_w

        # Step-size control
        C_2 = linalg.inverse_sqrt(B, D)
        p_sigma = (1 - self._c_sigma) * self._p_sigma + math.sqrt(
            self._c_sigma * (2 - self._c_sigma) * self._mu_eff
        ) * C_2.dot(y_w)

        norm_p_sigma = np.linalg.norm(p_sigma)
        sigma = self._sigma * np.exp(
            (self._c_sigma / self._d_sigma) * (norm_p_sigma / self._chi_n - 1)
        )
        sigma = min(sigma, _SIGMA_MAX)

        # Covariance matrix adaption
        h_sigma_cond_left = norm_p_sigma / math.sqrt(
            1 - (1 - self._c_sigma) ** (2 * (self._g + 1))
        )
        h_sigma_cond_right = (1.4 + 2 / (n_dim + 1)) * self._chi_n
        h_sigma = 1.0 if h_sigma_cond_left < h_sigma_cond_right else 0.0

        pc = (1 - self._cc) * self._pc + h_sigma * math.sqrt(
            self._cc * (2 - self._cc) * self._mu_eff
        ) * y_w

        delta_h_sigma = (1 - h_sigma) * self._cc * (2 - self._cc)

        rank_one = np.outer(pc, pc)
        rank_mu = np.dot(y_mu.T * self._weights, y_mu)
        C = (
            (1 - self._c1 - self._cmu) * C_prev
            + self._c1 * (rank_one + delta_h_sigma * C_prev)
            + self._cmu * rank_mu
        )
        C = (C + C.T) / 2

        # C changed, so the cached eigenbasis is stale until refreshed
        generation = self._g + 1
        dirty = True
        if generation - eigen_generation >= self._lazy_gap:
            C, B, D = linalg.eigen_decomposition(C)
            eigen_generation = generation
            dirty = False
            # keep the smallest eigenvalue of sigma^2 C away from zero
            sigma = max(sigma, math.sqrt(_MIN_EIGENVALUE / np.min(D)))

        funhist_idx = 2 * (generation % self._funhist_term)
        funhist_values = self._funhist_values.copy()
        funhist_values[funhist_idx] = fvals[0]
        funhist_values[funhist_idx + 1] = fvals[-1]

        self._mean = mean
        self._sigma = float(sigma)
        self._p_sigma = p_sigma
        self._pc = pc
        self._C = C
        self._B, self._D = B, D
        self._eigen_generation = eigen_generation
        self._eigen_dirty = dirty
        self._funhist_values = funhist_values
        self._pending = []
        self._g = generation

    def is_converged(self) -> Tuple[bool, Optional[str]]:
        """Check the termination criteria.

        Returns:
            tuple: ``(True, reason)`` for the first criterion that holds,
            ``(False, None)`` otherwise.

        Raises:
            NonConvergenceError: When the stale eigenbasis cannot be refreshed.
        """
        if self._eigen_dirty:
            self._C, self._B, self._D = linalg.eigen_decomposition(self._C)
            self._eigen_generation = self._g
            self._eigen_dirty = False
        B, D = self._B, self._D
        dC = np.diag(self._C)
        std = np.sqrt(np.abs(dC))

        # Stop if the std of the normal distribution is smaller than tolx
        # in all coordinates and pc is smaller than tolx in all components.
        if np.all(self._sigma * std < self._tolx) and np.all(
            self._sigma * np.abs(self._pc) < self._tolx
        ):
            return True, TOLX

        # Stop if the range of function values of the recent generations is below tolfun.
        if (
            self._g > self._funhist_term
            and np.max(self._funhist_values) - np.min(self._funhist_values)
            < self._tolfun
        ):
            return True, TOLFUN

        # Stop if the condition number of the covariance matrix exceeds 1e14.
        condition_cov = np.max(D) ** 2 / np.min(D) ** 2
        if condition_cov > self._tolconditioncov:
            return True, CONDITIONCOV

        # No effect coordinates: stop if adding 0.2-standard deviations
        # in any single coordinate does not change m.
        if np.any(self._mean == self._mean + (0.2 * self._sigma * std)):
            return True, NOEFFECTCOORD

        # No effect axis: stop if adding 0.1-standard deviation vector in
        # any principal axis direction of C does not change m. One axis is
        # checked per generation.
        i = self._g % self._n_dim
        if np.all(self._mean == self._mean + (0.1 * self._sigma * D[i] * B[:, i])):
            return True, NOEFFECTAXIS

        # Stop if detecting divergent behavior.
        if self._sigma * np.max(D) > self._tolxup:
            return True, TOLXUP

        return False, None
