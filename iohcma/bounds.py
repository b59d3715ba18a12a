from typing import Optional, Sequence

import numpy as np

from .utils import ArgumentError


def validate_bounds(bounds, dim: int) -> Optional[np.ndarray]:
    """Check a box specification and return it as a ``(dim, 2)`` float array.

    Args:
        bounds: ``None`` or an array-like of ``(lower, upper)`` rows, one per dimension.
        dim (int): Dimension of the search space.

    Returns:
        np.ndarray | None: The validated bounds, or ``None`` when unbounded.
    """
    if bounds is None:
        return None
    arr = np.array(bounds, dtype=float)
    if arr.ndim != 2 or arr.shape != (dim, 2):
        raise ArgumentError(
            f"bounds must have shape ({dim}, 2), but got {arr.shape}."
        )
    if np.any(np.isnan(arr)):
        raise ArgumentError("bounds must not contain NaN.")
    if np.any(arr[:, 0] > arr[:, 1]):
        raise ArgumentError("lower bounds must not exceed upper bounds.")
    return arr


def bounds_from_limits(
    lower: Optional[Sequence[float]],
    upper: Optional[Sequence[float]],
    dim: int,
) -> Optional[np.ndarray]:
    """Build a ``(dim, 2)`` box from separate lower and upper limit lists.

    The box is only used when both lists are given and non-empty.
    """
    if lower is not None and len(lower) != dim:
        raise ArgumentError("Length of lower_bounds must be equal to that of initial.")
    if upper is not None and len(upper) != dim:
        raise ArgumentError("Length of upper_bounds must be equal to that of initial.")
    if lower is None or upper is None or len(lower) == 0 or len(upper) == 0:
        return None
    return validate_bounds(np.column_stack([lower, upper]), dim)


def repair(x: np.ndarray, bounds: Optional[np.ndarray]) -> np.ndarray:
    """Map ``x`` into the box by reflecting across the violated boundary.

    Each violated component is mirrored once across the boundary it crossed.
    A component whose mirror image is still outside overshot by more than the
    width of its interval and is clipped onto the boundary it crossed instead.

    Args:
        x (np.ndarray): Unconstrained position.
        bounds (np.ndarray | None): ``(dim, 2)`` box or ``None``.

    Returns:
        np.ndarray: A position with ``lower <= x <= upper`` in every coordinate.
    """
    if bounds is None:
        return x
    lower = bounds[:, 0]
    upper = bounds[:, 1]
    if np.all((x >= lower) & (x <= upper)):
        return x

    y = np.where(x < lower, 2 * lower - x, x)
    y = np.where(x > upper, 2 * upper - x, y)
    overshot = (y < lower) | (y > upper)
    return np.where(overshot, np.clip(x, lower, upper), y)


def is_feasible(x: np.ndarray, bounds: Optional[np.ndarray]) -> bool:
    if bounds is None:
        return True
    return bool(np.all((x >= bounds[:, 0]) & (x <= bounds[:, 1])))
