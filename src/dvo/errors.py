"""Exception hierarchy for the odometry engine."""


class DVOError(Exception):
    """Base class for all errors raised by the odometry engine."""


class InvalidInputError(DVOError, ValueError):
    """A frame or pyramid request is malformed.

    Fatal to the call that raised it only. The engine state is left
    unchanged and the caller should skip the frame.
    """


class ConfigurationError(DVOError, ValueError):
    """Algorithm parameters are invalid. Raised at load time."""


class NumericalNonConvergence(DVOError, ArithmeticError):
    """The linearized system at a pyramid level could not be solved.

    Raised by the linear solver and handled by the pose optimizer, which
    reports the level as not converged and keeps the best pose so far.
    """
