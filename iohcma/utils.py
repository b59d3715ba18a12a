import json
import math

import numpy as np


class ArgumentError(ValueError):
    """Invalid construction parameters for the search distribution."""

    pass


class InvalidGenerationError(Exception):
    """The told generation does not match the candidates issued since the last tell."""

    pass


class NonConvergenceError(Exception):
    """The eigendecomposition of the covariance matrix did not converge."""

    pass


class OverBudgetException(Exception):
    """The algorithm tried to do more evaluations than allowed."""

    pass


def is_jsonable(x):
    try:
        json.dumps(x)
        return True
    except (TypeError, OverflowError):
        return False


def sanitize(o):
    """Helper for sanitizing json data."""
    if isinstance(o, float):
        return o if math.isfinite(o) else str(o)
    if isinstance(o, dict):
        return {k: sanitize(v) for k, v in o.items()}
    if isinstance(o, (list, tuple, set)):
        return [sanitize(v) for v in o]
    return o


def convert_to_serializable(data):
    if isinstance(data, dict):
        return {key: convert_to_serializable(value) for key, value in data.items()}
    elif isinstance(data, (list, tuple)):
        return [convert_to_serializable(item) for item in data]
    elif isinstance(data, np.integer):
        return int(data)
    elif isinstance(data, np.floating):
        return sanitize(float(data))
    if isinstance(data, np.ndarray):
        return [convert_to_serializable(item) for item in data.tolist()]
    else:
        if is_jsonable(data):
            return sanitize(data)
        else:
            return str(data)
