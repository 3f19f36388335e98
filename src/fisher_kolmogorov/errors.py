##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
"""Exceptions raised by the solver.

Assembly producing non-finite values is caught by the Newton driver as a
non-finite residual norm and raised as a :class:`LinearSolverError` with
reason ``DIVERGED_NANORINF``. Output failures are logged, never raised.
"""


class FisherKolmogorovError(Exception):
    """Base class for all solver errors."""

    pass


class ConfigError(FisherKolmogorovError, ValueError):
    """A parameter is missing, unknown or outside its admissible range."""

    pass


class MeshIOError(FisherKolmogorovError, OSError):
    """The mesh file cannot be found or read."""

    pass


class MeshInvalidError(FisherKolmogorovError, ValueError):
    """The mesh is not a conforming three dimensional tetrahedral mesh."""

    pass


class LinearSolverError(FisherKolmogorovError, RuntimeError):
    """Conjugate gradients did not reach its tolerance."""

    def __init__(self, message, reason=None, iterations=None):
        super().__init__(message)
        self.reason = reason
        self.iterations = iterations


class NewtonConvergenceError(FisherKolmogorovError, RuntimeError):
    """Newton's method hit its iteration cap above tolerance."""

    def __init__(self, message, result=None):
        super().__init__(message)
        self.result = result
