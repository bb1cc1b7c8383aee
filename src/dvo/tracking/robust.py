"""Robust M-estimators for iteratively reweighted least squares.

Residuals are normalized by a scale estimate sigma before the loss is
applied. The scale comes from the median absolute deviation (MAD), which
is insensitive to the outliers the loss is meant to suppress.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..config import AlgorithmParameters, LossFunction

# MAD to standard deviation for normally distributed residuals
MAD_TO_SIGMA = 1.4826


def estimate_scale(residuals: np.ndarray, min_scale: float = 1e-6) -> float:
    """Estimate the residual scale as 1.4826 * MAD, floored at min_scale."""
    if residuals.size == 0:
        return min_scale
    median = np.median(residuals)
    mad = np.median(np.abs(residuals - median))
    return max(MAD_TO_SIGMA * float(mad), min_scale)


@dataclass(frozen=True)
class RobustLoss:
    """Robust loss rho with its IRLS weight function.

    Attributes:
        kind: Loss family
        threshold: Tuning constant in units of sigma (unused for L2)
    """

    kind: LossFunction = LossFunction.HUBER
    threshold: float = 1.345

    @classmethod
    def from_parameters(cls, params: AlgorithmParameters) -> RobustLoss:
        """Build the loss configured in the algorithm parameters."""
        if params.loss is LossFunction.TUKEY:
            return cls(kind=LossFunction.TUKEY, threshold=params.tukey_threshold)
        if params.loss is LossFunction.HUBER:
            return cls(kind=LossFunction.HUBER, threshold=params.huber_threshold)
        return cls(kind=LossFunction.L2, threshold=np.inf)

    def weights(self, residuals: np.ndarray, sigma: float) -> np.ndarray:
        """Return IRLS weights w(r) = rho'(r) / r, in [0, 1].

        Args:
            residuals: (N,) residuals
            sigma: Residual scale

        Returns:
            (N,) weights
        """
        if self.kind is LossFunction.L2:
            return np.ones_like(residuals, dtype=np.float64)

        x = np.abs(residuals) / sigma
        c = self.threshold

        if self.kind is LossFunction.HUBER:
            w = np.ones_like(x, dtype=np.float64)
            outside = x > c
            w[outside] = c / x[outside]
            return w

        # Tukey biweight
        w = np.zeros_like(x, dtype=np.float64)
        inside = x < c
        u = x[inside] / c
        w[inside] = (1.0 - u * u) ** 2
        return w

    def cost(self, residuals: np.ndarray, sigma: float) -> float:
        """Return the mean robust cost in squared residual units.

        The loss is evaluated on r / sigma and multiplied by sigma^2 so
        that the L2 case reduces to half the mean squared residual.
        """
        if residuals.size == 0:
            return 0.0

        if self.kind is LossFunction.L2:
            return float(0.5 * np.mean(residuals * residuals))

        x = np.abs(residuals) / sigma
        c = self.threshold

        if self.kind is LossFunction.HUBER:
            rho = np.where(x <= c, 0.5 * x * x, c * (x - 0.5 * c))
        else:
            u = np.minimum(x / c, 1.0)
            rho = (c * c / 6.0) * (1.0 - (1.0 - u * u) ** 3)

        return float(sigma * sigma * np.mean(rho))
