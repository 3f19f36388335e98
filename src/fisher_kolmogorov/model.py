##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
r"""
The Fisher-Kolmogorov problem and its time march.

$$
\frac{\partial u}{\partial t} - \nabla \cdot (\mathbf{D} \nabla u) - \alpha u (1 - u) = f
\quad \text{in } \Omega \times (0, T], \qquad u(\cdot, 0) = u_0
$$

with homogeneous Neumann conditions on $\partial \Omega$.

Example
-------
>>> import fisher_kolmogorov as fk
>>> mesh = fk.Mesh.from_box((4, 4, 4))
>>> problem = fk.FisherKolmogorov3D(
...     mesh=mesh,
...     degree=1,
...     diffusion=fk.coefficients.isotropic_diffusion(0.01),
...     alpha=1.0,
...     u0=fk.coefficients.ScalarField("exp(-20*((x-0.5)**2+(y-0.5)**2+(z-0.5)**2))"),
...     T=0.5,
...     deltat=0.1,
... )
>>> problem.setup()
>>> problem.solve()
"""

import logging
from typing import Optional

from . import mpi
from . import timing
from .assembly import Assembler
from .coefficients import ScalarField, axonal_diffusion, radial_direction
from .discretisation import DoFHandler, LagrangeSimplex, Mesh
from .errors import ConfigError
from .linear_system import LinearSystem
from .norms import ErrorNorm, NormType
from .output import write_vtu_with_pvtu_record
from .solvers import CGSolver, NewtonResult, NewtonSolver

logger = logging.getLogger(__name__)

BANNER = "=" * 47
SEPARATOR = "-" * 47


class FisherKolmogorov3D:
    r"""
    Nonlinear time-dependent reaction-diffusion solver.

    Parameters
    ----------
    mesh_file : str, optional
        Gmsh file read by :meth:`setup` when ``mesh`` is not given.
    degree : int
        Polynomial degree $r$ of the Lagrange space.
    T, deltat : float
        Final time and time step.
    theta : float
        $\theta$ of the time discretisation, 1 is backward Euler.
    diffusion : TensorField
        $\mathbf{D}(\mathbf{x})$.
    alpha : float
        Reaction rate.
    forcing : ScalarField, optional
        $f(\mathbf{x}, t)$, zero when omitted.
    u0 : ScalarField
        Initial condition.
    exact_solution : ScalarField, optional
        Needed only for :meth:`compute_error`.
    mesh : Mesh, optional
        A mesh that is already built and distributed.
    """

    def __init__(
        self,
        mesh_file: Optional[str] = None,
        degree: int = 1,
        T: float = 1.0,
        deltat: float = 0.1,
        theta: float = 1.0,
        diffusion=None,
        alpha: float = 0.1,
        forcing: Optional[ScalarField] = None,
        u0: Optional[ScalarField] = None,
        exact_solution: Optional[ScalarField] = None,
        mesh: Optional[Mesh] = None,
        comm=None,
        output_directory: str = ".",
        output_enabled: bool = True,
    ):
        if mesh is None and mesh_file is None:
            raise ConfigError("Either a mesh or a mesh file is required")
        if diffusion is None:
            raise ConfigError("A diffusion tensor is required")
        if deltat <= 0:
            raise ConfigError(f"Time step must be positive, got {deltat}")

        self.mesh_file = mesh_file
        self.r = degree
        self.T = T
        self.deltat = deltat
        self.theta = theta
        self.diffusion = diffusion
        self.alpha = alpha
        self.forcing = forcing
        self.u0 = u0 if u0 is not None else ScalarField.constant(0.0, name="u0")
        self.exact_solution = exact_solution
        self.mesh = mesh
        self.comm = mesh.comm if mesh is not None else (comm or mpi.comm)

        self.output_directory = output_directory
        self.output_enabled = output_enabled

        self.time = 0.0
        self.time_step = 0

        self.max_newton_iterations = 1000
        self.newton_tolerance = 1.0e-6
        self.max_cg_iterations = 1000
        self.cg_tolerance_factor = 1.0e-6
        self.abort_on_newton_failure = False

        self.newton_history = []
        self._is_setup = False

    @classmethod
    def from_config(
        cls,
        config,
        diffusion=None,
        forcing=None,
        u0=None,
        exact_solution=None,
        mesh=None,
        comm=None,
    ):
        """
        Build a problem from a :class:`~fisher_kolmogorov.config.FisherKolmogorovConfig`.

        Without an explicit ``diffusion`` the tensor is
        $D_{ext} \\mathbf{I} + D_{axn} \\mathbf{n} \\otimes \\mathbf{n}$ with
        $\\mathbf{n}$ radial from the mesh centroid, which needs the mesh to be
        read here rather than in :meth:`setup`.
        """
        if mesh is None:
            if not config.mesh.mesh_file:
                raise ConfigError("No mesh file given (parameter 'Mesh file' or -fk_mesh_file)")
            mesh = Mesh.from_gmsh(config.mesh.mesh_file, comm=comm)

        if diffusion is None:
            center = mesh.centroid()
            diffusion = axonal_diffusion(
                config.physics.d_ext, config.physics.d_axn, radial_direction(center)
            )

        problem = cls(
            mesh_file=config.mesh.mesh_file,
            degree=config.mesh.degree,
            T=config.time_stepping.T,
            deltat=config.time_stepping.deltat,
            theta=config.time_stepping.theta,
            diffusion=diffusion,
            alpha=config.physics.alpha,
            forcing=forcing,
            u0=u0,
            exact_solution=exact_solution,
            mesh=mesh,
            output_directory=config.output.directory,
            output_enabled=config.output.enabled,
        )

        solver = config.solver
        problem.set_solver_parameters(
            solver.max_newton_iterations,
            solver.newton_tolerance,
            solver.max_cg_iterations,
            solver.cg_tolerance_factor,
            abort_on_newton_failure=solver.abort_on_newton_failure,
        )

        return problem

    def set_solver_parameters(
        self,
        max_newton_iterations: int,
        newton_tolerance: float,
        max_cg_iterations: int,
        cg_tolerance_factor: float,
        abort_on_newton_failure: bool = False,
    ):
        self.max_newton_iterations = max_newton_iterations
        self.newton_tolerance = newton_tolerance
        self.max_cg_iterations = max_cg_iterations
        self.cg_tolerance_factor = cg_tolerance_factor
        self.abort_on_newton_failure = abort_on_newton_failure

        if self._is_setup:
            self._build_solvers()

    def _print(self, *args, **kwargs):
        mpi.pprint(*args, comm=self.comm, **kwargs)

    @timing.routine_timer_decorator
    def setup(self):
        """Mesh, finite element space, DoF handler and linear system (collective)."""

        self._print("Initializing the mesh")
        if self.mesh is None:
            self.mesh = Mesh.from_gmsh(self.mesh_file, comm=self.comm)
            self.comm = self.mesh.comm
        self._print(f"  Number of elements = {self.mesh.n_global_active_cells}")
        self._print(SEPARATOR)

        self._print("Initializing the finite element space")
        self.fe = LagrangeSimplex(self.r)
        self._print(f"  Degree                     = {self.fe.degree}")
        self._print(f"  DoFs per cell              = {self.fe.dofs_per_cell}")
        self._print(f"  Quadrature points per cell = {self.fe.n_quadrature_points}")
        self._print(SEPARATOR)

        self._print("Initializing the DoF handler")
        self.dof_handler = DoFHandler(self.mesh, self.fe).distribute_dofs()
        self.locally_owned_dofs = self.dof_handler.locally_owned_dofs
        self.locally_relevant_dofs = self.dof_handler.locally_relevant_dofs
        self._print(f"  Number of DoFs = {self.dof_handler.n_dofs}")
        self._print(SEPARATOR)

        self._print("Initializing the linear system")
        self._print("  Initializing the sparsity pattern")
        self.system = LinearSystem(self.dof_handler)
        self._print("  Initializing the matrices")
        self._print("  Initializing the system right-hand side")
        self._print("  Initializing the solution vector")
        self.system.reinit()

        self.assembler = Assembler(
            self.dof_handler,
            self.system,
            self.diffusion,
            self.alpha,
            forcing=self.forcing,
            deltat=self.deltat,
            theta=self.theta,
        )

        self._build_solvers()
        self._is_setup = True

    def _build_solvers(self):
        if getattr(self, "linear_solver", None) is not None:
            self.linear_solver.destroy()

        self.linear_solver = CGSolver(
            self.mesh.petsc_comm,
            max_iterations=self.max_cg_iterations,
            tolerance_factor=self.cg_tolerance_factor,
        )
        self.newton_solver = NewtonSolver(
            self.assembler,
            self.system,
            self.solve_linear_system,
            max_iterations=self.max_newton_iterations,
            tolerance=self.newton_tolerance,
            abort_on_failure=self.abort_on_newton_failure,
            comm=self.comm,
        )

    ## Views of the linear system

    @property
    def solution(self):
        """Ghosted solution vector."""
        return self.system.solution

    @property
    def solution_owned(self):
        return self.system.solution_owned

    @property
    def solution_old(self):
        return self.system.solution_old

    @property
    def jacobian_matrix(self):
        return self.system.jacobian_matrix

    @property
    def residual_vector(self):
        return self.system.residual_vector

    ## Steps of the algorithm

    def assemble_system(self):
        """Jacobian and residual at the current iterate and time."""
        self.assembler.assemble_system(self.time)

    def solve_linear_system(self, rhs_norm=None) -> int:
        """CG solve of J delta = -F for the Newton update; returns the iteration count."""
        return self.linear_solver.solve(
            self.system.jacobian_matrix,
            self.system.delta_owned,
            self.system.residual_vector,
            rhs_norm,
        )

    def solve_newton(self) -> NewtonResult:
        result = self.newton_solver.solve(self.time)
        self.newton_history.append(result)
        return result

    def apply_initial_condition(self):
        self.dof_handler.interpolate(self.u0, self.system.solution_owned, t=0.0)
        self.system.update_ghosts()

    def output(self, time_step: int):
        if not self.output_enabled:
            return None
        return write_vtu_with_pvtu_record(
            self.dof_handler,
            self.system.solution,
            time_step,
            directory=self.output_directory,
        )

    @timing.routine_timer_decorator
    def solve(self):
        """March from t = 0 until the final time (collective)."""
        if not self._is_setup:
            self.setup()

        self._print(BANNER)

        self.time = 0.0
        self.time_step = 0
        self.newton_history = []

        self._print("Applying the initial condition")
        self.apply_initial_condition()
        self.output(0)
        self._print(SEPARATOR)

        while self.time < self.T - 0.5 * self.deltat:
            self.time += self.deltat
            self.time_step += 1

            self.system.store_old_solution()

            self._print(f"n = {self.time_step:3d}, t = {self.time:.6f}")

            result = self.solve_newton()
            logger.debug(
                f"Step {self.time_step}: {result.iterations} Newton updates, "
                f"final ||r|| = {result.final_residual:.6e}"
            )
            self.output(self.time_step)

            self._print()

        return self

    def compute_error(self, norm_type: NormType = NormType.L2) -> float:
        """Error against ``exact_solution`` at the current time (collective)."""
        if self.exact_solution is None:
            raise ConfigError("compute_error needs an exact solution")

        norm = ErrorNorm(self.dof_handler, self.exact_solution, norm_type)
        return norm.compute(self.system.solution, self.time)

    def destroy(self):
        if getattr(self, "linear_solver", None) is not None:
            self.linear_solver.destroy()
        if getattr(self, "system", None) is not None:
            self.system.destroy()
