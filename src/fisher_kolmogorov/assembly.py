##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
r"""
Jacobian and residual of one implicit time step.

With the $\theta$-method the step from $t^n$ to $t^{n+1} = t^n + \Delta t$
solves $F(u) = 0$ where, tested against $\varphi_i$,

$$
F_i(u) = \int_\Omega \frac{u - u^n}{\Delta t} \varphi_i
    + \theta \, \mathbf{D} \nabla u \cdot \nabla \varphi_i
    + (1 - \theta) \, \mathbf{D} \nabla u^n \cdot \nabla \varphi_i
    - \theta \, \alpha u (1 - u) \varphi_i
    - (1 - \theta) \, \alpha u^n (1 - u^n) \varphi_i
    - \theta f^{n+1} \varphi_i - (1 - \theta) f^n \varphi_i
$$

The assembled right-hand side is $-F(u)$ and the Jacobian is

$$
J_{ij} = \int_\Omega \frac{1}{\Delta t} \varphi_i \varphi_j
    + \theta \, \mathbf{D} \nabla \varphi_j \cdot \nabla \varphi_i
    - \theta \, \alpha (1 - 2u) \varphi_i \varphi_j .
$$

$\theta = 1$ is backward Euler. Boundary terms vanish (homogeneous Neumann).
"""

import numpy as np

from . import timing


class Assembler:
    r"""
    Cell-wise assembly into a :class:`~fisher_kolmogorov.linear_system.LinearSystem`.

    Geometry, basis gradients and the diffusion tensor at the quadrature
    points are computed once for the owned cells. The forcing is evaluated
    at each call because it depends on time.

    Parameters
    ----------
    dof_handler : DoFHandler
    system : LinearSystem
    diffusion : TensorField
    alpha : float
    forcing : ScalarField, optional
        ``None`` means $f = 0$.
    deltat : float
    theta : float
    """

    def __init__(self, dof_handler, system, diffusion, alpha, forcing=None, deltat=0.1, theta=1.0):
        self.dof_handler = dof_handler
        self.system = system
        self.diffusion = diffusion
        self.alpha = alpha
        self.forcing = forcing
        self.deltat = deltat
        self.theta = theta

        element = dof_handler.element
        mesh = dof_handler.mesh

        xi, weights = element.quadrature
        self.phi = element.values

        X = mesh.cell_coordinates()
        jacobian, det, inverse_transpose = mesh.cell_jacobians()

        # Physical quadrature points and weights, (n_cells, n_q)
        self.quadrature_points = X[:, None, 0, :] + np.einsum("cij,qj->cqi", jacobian, xi)
        self.JxW = det[:, None] * weights[None, :]

        # Physical basis gradients, (n_cells, n_q, n_basis, 3)
        self.grad_phi = np.einsum("cij,qbj->cqbi", inverse_transpose, element.gradients)

        D = diffusion.value(self.quadrature_points)

        self.mass = np.einsum("cq,qi,qj->cij", self.JxW, self.phi, self.phi)
        self.stiffness = np.einsum(
            "cq,cqid,cqde,cqje->cij", self.JxW, self.grad_phi, D, self.grad_phi
        )

    def _forcing(self, time):
        if self.forcing is None:
            return np.zeros(self.JxW.shape)
        return self.forcing.value(self.quadrature_points, time)

    @timing.routine_timer_decorator
    def assemble_system(self, time: float):
        """
        Assemble Jacobian and right-hand side at the current iterate
        ``system.solution`` for the step ending at ``time``. Collective.
        """
        system = self.system
        cell_dofs = self.dof_handler.cell_dofs
        theta = self.theta
        alpha = self.alpha
        dt = self.deltat

        system.zero()

        U = system.solution.array_r[cell_dofs]
        U_old = system.solution_old.array_r[cell_dofs]

        u = U @ self.phi.T
        u_old = U_old @ self.phi.T

        reaction = np.einsum("cq,cq,qi,qj->cij", self.JxW, 1.0 - 2.0 * u, self.phi, self.phi)
        cell_matrix = self.mass / dt + theta * self.stiffness - theta * alpha * reaction

        source = theta * alpha * u * (1.0 - u) + (1.0 - theta) * alpha * u_old * (1.0 - u_old)
        source += theta * self._forcing(time)
        if theta != 1.0:
            source += (1.0 - theta) * self._forcing(time - dt)

        cell_residual = (
            -np.einsum("cij,cj->ci", self.mass, U - U_old) / dt
            - theta * np.einsum("cij,cj->ci", self.stiffness, U)
            - (1.0 - theta) * np.einsum("cij,cj->ci", self.stiffness, U_old)
            + np.einsum("cq,qi,cq->ci", self.JxW, self.phi, source)
        )

        system.add_cell_matrices(cell_dofs, cell_matrix)
        system.add_local_residual(cell_dofs, cell_residual)
        system.compress()
