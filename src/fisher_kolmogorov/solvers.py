##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
"""
Linear and nonlinear solvers.

:class:`CGSolver` is a PETSc KSP (conjugate gradients, SSOR preconditioner)
whose options live under their own prefix, so any of them can be changed
from the command line, e.g. ``-fk_cg_ksp_monitor`` or ``-fk_cg_pc_type jacobi``.

:class:`NewtonSolver` is the full-step Newton iteration of one time step.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List

from petsc4py import PETSc

from . import mpi
from . import timing
from .errors import LinearSolverError, NewtonConvergenceError

logger = logging.getLogger(__name__)


class CGSolver:
    """
    Preconditioned conjugate gradients.

    Convergence is declared when the unpreconditioned residual drops below
    ``tolerance_factor * rhs_norm`` (absolute tolerance, no relative one).
    The initial guess is zero.

    Parameters
    ----------
    comm : communicator
    max_iterations : int
    tolerance_factor : float
    prefix : str
        PETSc options prefix.
    """

    def __init__(self, comm, max_iterations=1000, tolerance_factor=1.0e-6, prefix="fk_cg_"):
        self.max_iterations = max_iterations
        self.tolerance_factor = tolerance_factor
        self.petsc_options_prefix = prefix

        self.petsc_options = PETSc.Options(prefix)

        # Defaults only; anything already on the command line wins
        defaults = {
            "ksp_type": "cg",
            "ksp_norm_type": "unpreconditioned",
            "pc_type": "sor",
            "pc_sor_local_symmetric": None,
            "pc_sor_omega": 1.0,
        }
        for name, value in defaults.items():
            if not self.petsc_options.hasName(name):
                self.petsc_options[name] = value

        self.ksp = PETSc.KSP().create(comm)
        self.ksp.setOptionsPrefix(prefix)
        self.ksp.setFromOptions()
        self.ksp.setInitialGuessNonzero(False)

    def __repr__(self):
        return (
            f"CGSolver(ksp={self.ksp.getType()}, pc={self.ksp.getPC().getType()}, "
            f"max_it={self.max_iterations}, factor={self.tolerance_factor})"
        )

    @timing.routine_timer_decorator
    def solve(self, matrix: PETSc.Mat, solution: PETSc.Vec, rhs: PETSc.Vec, rhs_norm=None) -> int:
        """
        Solve ``matrix @ solution = rhs``; returns the iteration count.

        Raises
        ------
        LinearSolverError
            The KSP reports divergence, including hitting the iteration cap.
        """
        if rhs_norm is None:
            rhs_norm = rhs.norm(PETSc.NormType.NORM_2)

        self.ksp.setOperators(matrix)
        self.ksp.setTolerances(
            rtol=0.0,
            atol=self.tolerance_factor * rhs_norm,
            max_it=self.max_iterations,
        )

        solution.zeroEntries()
        self.ksp.solve(rhs, solution)

        iterations = self.ksp.getIterationNumber()
        reason = self.ksp.getConvergedReason()

        if reason < 0:
            raise LinearSolverError(
                f"CG failed to converge in {iterations} iterations (reason {reason})",
                reason=reason,
                iterations=iterations,
            )

        return iterations

    def destroy(self):
        self.ksp.destroy()


@dataclass
class NewtonResult:
    """Record of one Newton solve."""

    converged: bool = False
    iterations: int = 0
    residual_norms: List[float] = field(default_factory=list)
    linear_iterations: List[int] = field(default_factory=list)

    @property
    def final_residual(self) -> float:
        return self.residual_norms[-1] if self.residual_norms else float("nan")


class NewtonSolver:
    """
    Newton's method on the assembled system.

    Each iteration assembles at the current iterate and checks the residual
    norm. Above tolerance it solves for the update, adds it to the owned
    solution and refreshes the ghosts; at or below tolerance it stops
    without solving. A non-finite residual norm raises
    :class:`LinearSolverError` with reason ``DIVERGED_NANORINF``.

    Parameters
    ----------
    assembler : Assembler
    system : LinearSystem
    solve_linear_system : callable
        ``solve_linear_system(rhs_norm)`` solves the Jacobian system for
        ``system.delta_owned`` and returns the number of linear iterations.
    max_iterations : int
    tolerance : float
    abort_on_failure : bool
        Raise :class:`NewtonConvergenceError` instead of logging a warning
        when the iteration cap is hit.
    """

    def __init__(
        self,
        assembler,
        system,
        solve_linear_system,
        max_iterations=1000,
        tolerance=1.0e-6,
        abort_on_failure=False,
        comm=None,
    ):
        self.assembler = assembler
        self.system = system
        self.solve_linear_system = solve_linear_system
        self.max_iterations = max_iterations
        self.tolerance = tolerance
        self.abort_on_failure = abort_on_failure
        self.comm = comm

    @timing.routine_timer_decorator
    def solve(self, time: float) -> NewtonResult:
        system = self.system
        result = NewtonResult()

        n_iter = 0
        residual_norm = self.tolerance + 1

        while n_iter < self.max_iterations and residual_norm > self.tolerance:
            self.assembler.assemble_system(time)
            residual_norm = system.residual_norm()
            result.residual_norms.append(residual_norm)

            mpi.pprint(
                f"  Newton iteration {n_iter}/{self.max_iterations} - ||r|| = {residual_norm:.6e}",
                end="",
                flush=True,
                comm=self.comm,
            )

            if not math.isfinite(residual_norm):
                mpi.pprint("", comm=self.comm)
                raise LinearSolverError(
                    f"Non-finite residual norm at t = {time:.6f}, Newton iteration {n_iter}",
                    reason=PETSc.KSP.ConvergedReason.DIVERGED_NANORINF,
                    iterations=0,
                )

            if residual_norm > self.tolerance:
                its = self.solve_linear_system(residual_norm)
                mpi.pprint(f"  {its} CG iterations", comm=self.comm)
                result.linear_iterations.append(its)

                system.solution_owned.axpy(1.0, system.delta_owned)
                system.update_ghosts()
                result.iterations += 1
            else:
                mpi.pprint(" < tolerance", comm=self.comm)

            n_iter += 1

        result.converged = residual_norm <= self.tolerance

        if not result.converged:
            message = (
                f"Newton did not converge at t = {time:.6f}: "
                f"||r|| = {result.final_residual:.6e} after {n_iter} iterations"
            )
            if self.abort_on_failure:
                raise NewtonConvergenceError(message, result=result)
            logger.warning(message)

        return result
