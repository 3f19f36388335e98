##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
"""Norms of the difference between the discrete solution and an exact solution."""

from enum import Enum

import numpy as np
from mpi4py import MPI

from . import timing
from .discretisation import simplex_quadrature


class NormType(Enum):
    L1 = "L1"
    L2 = "L2"
    H1_SEMINORM = "H1_seminorm"
    H1 = "H1"
    LINF = "Linfty"


class ErrorNorm:
    r"""
    Computes $\| u_h - u_{ex}(\cdot, t) \|$ over the whole mesh.

    The integrals use a Gauss rule with ``degree + 2`` points per direction,
    one more than assembly. Cell contributions are combined across ranks
    (sum for $L^1$, square root of the sum of squares for $L^2$ and the
    $H^1$ variants, maximum over quadrature nodes for $L^\infty$).

    Parameters
    ----------
    dof_handler : DoFHandler
    exact : ScalarField
        Needs ``value`` and, for the $H^1$ variants, ``gradient``.
    norm_type : NormType
    """

    def __init__(self, dof_handler, exact, norm_type: NormType = NormType.L2, quadrature_points=None):
        self.dof_handler = dof_handler
        self.exact = exact
        self.norm_type = NormType(norm_type)

        element = dof_handler.element
        mesh = dof_handler.mesh

        xi, weights = simplex_quadrature(quadrature_points or element.degree + 2)
        self.phi, reference_gradients = element.tabulate(xi)

        X = mesh.cell_coordinates()
        jacobian, det, inverse_transpose = mesh.cell_jacobians()

        self.quadrature_points = X[:, None, 0, :] + np.einsum("cij,qj->cqi", jacobian, xi)
        self.JxW = det[:, None] * weights[None, :]
        self.grad_phi = np.einsum("cij,qbj->cqbi", inverse_transpose, reference_gradients)

        self.comm = mesh.comm

    def cell_errors(self, solution, t: float = 0.0) -> np.ndarray:
        """
        Per owned cell: $\\int |e|$ for L1, $\\int e^2$ for L2,
        $\\int |\\nabla e|^2$ for the H1 seminorm, their sum for H1,
        and $\\max |e|$ for Linf.
        """
        U = self.dof_handler.cell_values(solution)

        needs_values = self.norm_type is not NormType.H1_SEMINORM
        needs_gradients = self.norm_type in (NormType.H1_SEMINORM, NormType.H1)

        errors = np.zeros(U.shape[0])

        if needs_values:
            e = U @ self.phi.T - self.exact.value(self.quadrature_points, t)

            if self.norm_type is NormType.L1:
                errors += np.sum(np.abs(e) * self.JxW, axis=1)
            elif self.norm_type is NormType.LINF:
                errors = np.max(np.abs(e), axis=1, initial=0.0)
            else:
                errors += np.sum(e**2 * self.JxW, axis=1)

        if needs_gradients:
            grad_e = np.einsum("cqbd,cb->cqd", self.grad_phi, U) - self.exact.gradient(
                self.quadrature_points, t
            )
            errors += np.sum(np.sum(grad_e**2, axis=-1) * self.JxW, axis=1)

        return errors

    @timing.routine_timer_decorator
    def compute(self, solution, t: float = 0.0) -> float:
        """Global error of the ghosted vector ``solution`` at time ``t`` (collective)."""
        errors = self.cell_errors(solution, t)

        if self.norm_type is NormType.LINF:
            local = float(np.max(errors, initial=0.0))
            return self.comm.allreduce(local, op=MPI.MAX)

        total = self.comm.allreduce(float(np.sum(errors)), op=MPI.SUM)

        if self.norm_type is NormType.L1:
            return total
        return float(np.sqrt(total))

    __call__ = compute
