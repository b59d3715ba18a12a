from .bounds import is_feasible, repair, validate_bounds
from .cma import (
    CMA,
    CONDITIONCOV,
    NOEFFECTAXIS,
    NOEFFECTCOORD,
    TOLFUN,
    TOLX,
    TOLXUP,
    Candidate,
)
from .optimizer import CmaesOptimizer, OptimizeResult
from .problem import Problem, WrappedProblem, wrap_problem
from .utils import (
    ArgumentError,
    InvalidGenerationError,
    NonConvergenceError,
    OverBudgetException,
    convert_to_serializable,
)
