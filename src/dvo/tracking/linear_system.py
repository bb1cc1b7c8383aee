"""Normal equations of the weighted Gauss-Newton step.

Accumulation is split into fixed-size chunks whose partial sums are added
in chunk order. The chunk boundaries depend only on the chunk size, so the
result is the same whether the chunks run on one thread or on a pool.
"""

from __future__ import annotations

from concurrent.futures import Executor
from dataclasses import dataclass

import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve

from ..errors import NumericalNonConvergence


@dataclass
class NormalEquations:
    """Linearized system H @ delta = g.

    Attributes:
        H: 6x6 approximate Hessian J^T W J
        g: (6,) gradient J^T W r
        num_points: Number of residuals accumulated
    """

    H: np.ndarray
    g: np.ndarray
    num_points: int = 0


def _accumulate_chunk(
    jacobians: np.ndarray, residuals: np.ndarray, weights: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    """Return (J^T W J, J^T W r) for one chunk."""
    Jw = jacobians * weights[:, None]
    return Jw.T @ jacobians, Jw.T @ residuals


def accumulate(
    jacobians: np.ndarray,
    residuals: np.ndarray,
    weights: np.ndarray,
    chunk_size: int = 4096,
    executor: Executor | None = None,
) -> NormalEquations:
    """Accumulate the weighted normal equations.

    Args:
        jacobians: Nx6 residual Jacobian
        residuals: (N,) residuals
        weights: (N,) robust weights
        chunk_size: Points per chunk
        executor: Optional pool that evaluates the chunks concurrently

    Returns:
        NormalEquations over all N points
    """
    n = len(residuals)
    H = np.zeros((6, 6), dtype=np.float64)
    g = np.zeros(6, dtype=np.float64)
    if n == 0:
        return NormalEquations(H=H, g=g, num_points=0)

    bounds = [(start, min(start + chunk_size, n)) for start in range(0, n, chunk_size)]
    chunks = [
        (jacobians[lo:hi], residuals[lo:hi], weights[lo:hi]) for lo, hi in bounds
    ]

    if executor is not None and len(chunks) > 1:
        partials = list(executor.map(lambda c: _accumulate_chunk(*c), chunks))
    else:
        partials = [_accumulate_chunk(*c) for c in chunks]

    # Fixed summation order
    for H_part, g_part in partials:
        H += H_part
        g += g_part

    return NormalEquations(H=H, g=g, num_points=n)


def solve(
    system: NormalEquations,
    damping: float = 1e-8,
    max_condition_number: float = 1e12,
) -> np.ndarray:
    """Solve the damped normal equations (H + damping * diag(H)) delta = g.

    Args:
        system: Accumulated normal equations
        damping: Relative diagonal damping
        max_condition_number: Larger condition numbers are rejected

    Returns:
        (6,) parameter increment

    Raises:
        NumericalNonConvergence: If the system is singular, ill-conditioned
            or yields a non-finite increment
    """
    H = system.H + damping * np.diag(np.diag(system.H))

    if not np.isfinite(H).all() or not np.isfinite(system.g).all():
        raise NumericalNonConvergence("Normal equations contain non-finite values")

    cond = np.linalg.cond(H)
    if not np.isfinite(cond) or cond > max_condition_number:
        raise NumericalNonConvergence(
            f"Normal equations are ill-conditioned (condition number {cond:.3g})"
        )

    try:
        factor = cho_factor(H)
    except LinAlgError as e:
        raise NumericalNonConvergence(f"Cholesky factorization failed: {e}") from e

    delta = cho_solve(factor, system.g)
    if not np.isfinite(delta).all():
        raise NumericalNonConvergence("Increment is not finite")

    return delta
