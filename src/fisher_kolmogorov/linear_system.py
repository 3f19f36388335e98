##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
"""
Distributed matrix and vectors of the Newton system.

===================  =========  =============================================
attribute            layout     role
===================  =========  =============================================
``jacobian_matrix``  global     Jacobian, sparsity fixed at :meth:`reinit`
``residual_vector``  global     right-hand side (minus the residual)
``delta_owned``      global     Newton update
``solution_owned``   global     owned DoFs, the authoritative copy
``solution``         local      owned + ghost DoFs, read by assembly
``solution_old``     local      solution at the start of the time step
===================  =========  =============================================

``compress`` and ``update_ghosts`` are collective.
"""

import numpy as np
from petsc4py import PETSc

from . import timing


class LinearSystem:
    def __init__(self, dof_handler):
        self.dof_handler = dof_handler
        self.dm = dof_handler.dm

        self.jacobian_matrix = None
        self.residual_vector = None
        self.delta_owned = None
        self.solution_owned = None
        self.solution = None
        self.solution_old = None

    @timing.routine_timer_decorator
    def reinit(self):
        """Allocate the matrix (sparsity from the DM adjacency) and all vectors."""
        dm = self.dm

        self.jacobian_matrix = dm.createMatrix()
        self.jacobian_matrix.setOption(PETSc.Mat.Option.NEW_NONZERO_ALLOCATION_ERR, True)
        self.jacobian_matrix.setOption(PETSc.Mat.Option.SYMMETRIC, True)
        self.jacobian_matrix.setName("jacobian")

        self.residual_vector = dm.createGlobalVec()
        self.residual_vector.setName("residual")
        self.delta_owned = dm.createGlobalVec()
        self.delta_owned.setName("delta")
        self.solution_owned = dm.createGlobalVec()
        self.solution_owned.setName("u")

        self.solution = dm.createLocalVec()
        self.solution_old = dm.createLocalVec()
        self._residual_local = dm.createLocalVec()

        self._lgmap = dm.getLGMap()

        return self

    def zero(self):
        self.jacobian_matrix.zeroEntries()
        self.residual_vector.zeroEntries()

    def add_cell_matrices(self, cell_dofs: np.ndarray, cell_matrices: np.ndarray):
        """Scatter-add dense (n_cells, n_basis, n_basis) blocks into the Jacobian."""
        if cell_dofs.shape[0] == 0:
            return

        rows = self._lgmap.apply(cell_dofs.ravel().astype(PETSc.IntType)).reshape(cell_dofs.shape)
        mat = self.jacobian_matrix
        for indices, block in zip(rows, cell_matrices):
            mat.setValues(indices, indices, block, addv=PETSc.InsertMode.ADD_VALUES)

    def add_local_residual(self, cell_dofs: np.ndarray, cell_vectors: np.ndarray):
        """Accumulate (n_cells, n_basis) blocks, then add them into the owners' entries."""
        local = np.zeros(self._residual_local.getLocalSize())
        np.add.at(local, cell_dofs, cell_vectors)

        self._residual_local.setArray(local)
        self.dm.localToGlobal(self._residual_local, self.residual_vector, addv=PETSc.InsertMode.ADD_VALUES)

    @timing.routine_timer_decorator
    def compress(self):
        """Merge off-process contributions (collective)."""
        self.jacobian_matrix.assemble()
        self.residual_vector.assemble()

    def update_ghosts(self):
        """Copy owner values of ``solution_owned`` into the ghosted ``solution``."""
        self.dm.globalToLocal(self.solution_owned, self.solution, addv=PETSc.InsertMode.INSERT_VALUES)

    def store_old_solution(self):
        self.solution.copy(self.solution_old)

    def residual_norm(self) -> float:
        return self.residual_vector.norm(PETSc.NormType.NORM_2)

    def destroy(self):
        for obj in (
            self.jacobian_matrix,
            self.residual_vector,
            self.delta_owned,
            self.solution_owned,
            self.solution,
            self.solution_old,
            getattr(self, "_residual_local", None),
        ):
            if obj is not None:
                obj.destroy()
