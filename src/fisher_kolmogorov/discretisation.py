##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
"""
Discretisation context: distributed tetrahedral mesh, the P_r Lagrange
element on the reference tetrahedron, and the degree-of-freedom layout.

The mesh is a PETSc DMPlex. Degrees of freedom are laid out with a
PETSc Section attached to the DM, so the DM provides the distributed
matrix (sparsity from closure-of-star adjacency), global vectors
(owned DoFs) and local vectors (owned + ghost DoFs) directly.
"""

import itertools
import os
from typing import Optional, Sequence

import numpy as np
from mpi4py import MPI
from petsc4py import PETSc

from . import timing
from .errors import MeshInvalidError, MeshIOError


def _mpi_comm(comm):
    """Accept mpi4py or PETSc communicators; return both views."""
    if comm is None:
        comm = MPI.COMM_WORLD
    if isinstance(comm, PETSc.Comm):
        return comm, comm.tompi4py()
    return PETSc.Comm(comm), comm


class Mesh:
    r"""
    Distributed three dimensional tetrahedral mesh.

    Use :meth:`Mesh.from_gmsh` to read a mesh file or :meth:`Mesh.from_box`
    for a structured simplex box. The constructor validates the plex,
    distributes it across the communicator (no overlap), and caches the
    per-cell vertex lists and coordinates used by assembly.

    Parameters
    ----------
    plex : PETSc.DMPlex
        Interpolated plex, distributed or not.
    comm : mpi4py communicator, optional
    name : str, optional
    verbose : bool

    Attributes
    ----------
    dm : PETSc.DMPlex
        The distributed mesh.
    owned_cells : numpy.ndarray
        Plex point numbers of the cells this rank owns.
    cell_vertices : numpy.ndarray
        (n_owned_cells, 4) local vertex numbers, in cell closure order.
    vertex_coords : numpy.ndarray
        (n_local_vertices, 3) coordinates of owned and ghost vertices.
    """

    @timing.routine_timer_decorator
    def __init__(self, plex: PETSc.DMPlex, comm=None, name: Optional[str] = None, verbose=False):
        self.petsc_comm, self.comm = _mpi_comm(comm)
        self.name = name or "mesh"
        self.verbose = verbose

        self._validate(plex)

        plex.setName(self.name)
        plex.setBasicAdjacency(False, True)

        if not plex.isDistributed() and self.comm.size > 1:
            partitioner = plex.getPartitioner()
            partitioner.setFromOptions()
            plex.distribute()

        self.dm = plex

        self._setup_topology()

        if verbose and self.comm.rank == 0:
            print(
                f"Mesh {self.name}: {self.n_global_active_cells} cells on {self.comm.size} processes",
                flush=True,
            )

    ## Construction

    @classmethod
    @timing.routine_timer_decorator
    def from_gmsh(cls, filename: str, comm=None, verbose=False) -> "Mesh":
        """
        Read a Gmsh ``.msh`` file (format 2 or 4, ascii or binary).

        Raises
        ------
        MeshIOError
            The file does not exist or cannot be opened.
        MeshInvalidError
            The file cannot be parsed, or it is not a 3D tetrahedral mesh.
        """
        petsc_comm, _ = _mpi_comm(comm)

        if not os.path.isfile(filename) or not os.access(filename, os.R_OK):
            raise MeshIOError(f"Cannot read mesh file {filename}")

        try:
            plex = PETSc.DMPlex().createFromFile(filename, interpolate=True, comm=petsc_comm)
        except PETSc.Error as e:
            raise MeshInvalidError(f"Malformed mesh file {filename}: {e}") from e

        name = os.path.splitext(os.path.basename(filename))[0]
        return cls(plex, comm=comm, name=name, verbose=verbose)

    @classmethod
    def from_box(
        cls,
        faces: Sequence[int] = (4, 4, 4),
        lower: Sequence[float] = (0.0, 0.0, 0.0),
        upper: Sequence[float] = (1.0, 1.0, 1.0),
        comm=None,
        verbose=False,
    ) -> "Mesh":
        """Structured box split into tetrahedra (6 per hexahedron)."""
        petsc_comm, _ = _mpi_comm(comm)

        plex = PETSc.DMPlex().createBoxMesh(
            faces,
            lower=lower,
            upper=upper,
            simplex=True,
            interpolate=True,
            comm=petsc_comm,
        )
        return cls(plex, comm=comm, name="box", verbose=verbose)

    def _validate(self, plex):
        local_ok = True
        message = ""

        if plex.getDimension() != 3:
            local_ok = False
            message = f"mesh dimension is {plex.getDimension()}, expected 3"
        else:
            vStart, vEnd = plex.getDepthStratum(0)
            cStart, cEnd = plex.getHeightStratum(0)
            if plex.getDepth() != 3 and cEnd > cStart:
                local_ok = False
                message = "mesh is not interpolated"
            else:
                for cell in range(cStart, cEnd):
                    closure = plex.getTransitiveClosure(cell)[0]
                    n_vertices = np.count_nonzero((closure >= vStart) & (closure < vEnd))
                    if plex.getConeSize(cell) != 4 or n_vertices != 4:
                        local_ok = False
                        message = f"cell {cell} is not a tetrahedron"
                        break

        # Every rank has to agree before anybody raises
        if not self.comm.allreduce(local_ok, op=MPI.LAND):
            messages = [m for m in self.comm.allgather(message) if m]
            raise MeshInvalidError(f"Invalid mesh: {messages[0] if messages else 'unknown'}")

    def _setup_topology(self):
        dm = self.dm

        self.vertex_range = dm.getDepthStratum(0)
        self.cell_range = dm.getHeightStratum(0)
        vStart, vEnd = self.vertex_range
        cStart, cEnd = self.cell_range

        # Cells that are leaves of the point SF belong to another rank
        owned = np.ones(cEnd - cStart, dtype=bool)
        if self.comm.size > 1:
            nroots, leaves, remote = dm.getPointSF().getGraph()
            if leaves is None:
                leaves = np.arange(len(remote))
            leaves = np.asarray(leaves, dtype=np.int64)
            ghost_cells = leaves[(leaves >= cStart) & (leaves < cEnd)]
            owned[ghost_cells - cStart] = False

        self.local_cells = np.arange(cStart, cEnd, dtype=np.int64)
        self.owned_mask = owned
        self.owned_cells = self.local_cells[owned]

        coords = dm.getCoordinatesLocal().array_r.reshape(-1, 3)
        self.vertex_coords = coords.copy()

        cell_vertices = np.empty((cEnd - cStart, 4), dtype=np.int64)
        for i, cell in enumerate(self.local_cells):
            closure = dm.getTransitiveClosure(cell)[0]
            cell_vertices[i] = closure[(closure >= vStart) & (closure < vEnd)] - vStart

        self._all_cell_vertices = cell_vertices
        self.cell_vertices = cell_vertices[owned]

        self.n_global_active_cells = self.comm.allreduce(len(self.owned_cells), op=MPI.SUM)

    ## Properties

    @property
    def dim(self) -> int:
        return 3

    @property
    def n_local_cells(self) -> int:
        return len(self.owned_cells)

    @property
    def n_local_vertices(self) -> int:
        return self.vertex_coords.shape[0]

    def cell_coordinates(self, owned_only=True) -> np.ndarray:
        """(n_cells, 4, 3) vertex coordinates of each cell."""
        cv = self.cell_vertices if owned_only else self._all_cell_vertices
        return self.vertex_coords[cv]

    def cell_jacobians(self, owned_only=True):
        r"""
        Affine map from the reference tetrahedron, $\mathbf{x} = \mathbf{x}_0 + J \hat{\mathbf{x}}$.

        Returns
        -------
        jacobian : (n_cells, 3, 3)
        det : (n_cells,) absolute value of the determinant
        inverse_transpose : (n_cells, 3, 3)
        """
        X = self.cell_coordinates(owned_only)
        J = np.transpose(X[:, 1:, :] - X[:, :1, :], (0, 2, 1))

        if J.shape[0] == 0:
            return J, np.zeros(0), J.copy()

        det = np.linalg.det(J)
        inverse_transpose = np.transpose(np.linalg.inv(J), (0, 2, 1))
        return J, np.abs(det), inverse_transpose

    def volume(self) -> float:
        """Total volume of the mesh (collective)."""
        _, det, _ = self.cell_jacobians()
        return self.comm.allreduce(float(np.sum(det)) / 6.0, op=MPI.SUM)

    def centroid(self) -> np.ndarray:
        """Volume-weighted centroid of the mesh (collective)."""
        _, det, _ = self.cell_jacobians()
        centres = self.cell_coordinates().mean(axis=1)
        local = np.append(np.sum(centres * det[:, None], axis=0), np.sum(det))
        total = np.zeros(4)
        self.comm.Allreduce(local, total, op=MPI.SUM)
        return total[:3] / total[3]


def simplex_quadrature(n_points: int):
    r"""
    Gauss quadrature on the unit reference tetrahedron
    $\{\hat{\mathbf{x}} \ge 0, \hat{x} + \hat{y} + \hat{z} \le 1\}$.

    ``n_points`` is the number of Gauss points per direction, so the rule
    integrates polynomials of degree ``2 n_points - 1`` exactly. The rule
    is the one PETSc builds for its own simplex finite elements.

    Returns
    -------
    points : (n_q, 3)
    weights : (n_q,) summing to 1/6
    """
    order = 2 * n_points - 1

    options = PETSc.Options()
    options.setValue("fk_quadrature_petscspace_degree", 1)

    fe = PETSc.FE().createDefault(3, 1, True, order, "fk_quadrature_", PETSc.COMM_SELF)
    quad = fe.getQuadrature()
    points, weights = quad.getData()
    fe.destroy()

    points = np.asarray(points, dtype=float).reshape(-1, 3)
    weights = np.asarray(weights, dtype=float).reshape(points.shape[0], -1)[:, 0]

    # PETSc reference simplex has its corner at (-1, -1, -1) and volume 4/3
    points = 0.5 * (points + 1.0)
    weights = weights / 8.0

    return points, weights


def _compositions(total: int, parts: int):
    """All tuples of ``parts`` positive integers summing to ``total``, lexicographic."""
    if parts == 1:
        return [(total,)] if total >= 1 else []
    result = []
    for first in range(1, total - parts + 2):
        for rest in _compositions(total - first, parts - 1):
            result.append((first,) + rest)
    return result


class LagrangeSimplex:
    r"""
    Continuous $P_r$ Lagrange element on tetrahedra.

    Nodes are the barycentric lattice points $\mathbf{a}/r$ with
    $\mathbf{a} \in \mathbb{N}^4$, $|\mathbf{a}| = r$. The nodal basis is
    obtained by inverting the monomial Vandermonde matrix on the unit
    reference tetrahedron. The first four nodes are the vertices, in the
    cell's vertex order.

    Parameters
    ----------
    degree : int
        Polynomial degree $r \ge 1$.
    quadrature_points : int, optional
        Gauss points per direction for assembly (default $r + 1$,
        exact for polynomials of degree $2r + 1$).
    """

    def __init__(self, degree: int, quadrature_points: Optional[int] = None):
        if degree < 1:
            raise ValueError(f"Polynomial degree must be >= 1, got {degree}")

        self.degree = degree
        r = degree

        self.lattice = [
            a for a in itertools.product(range(r + 1), repeat=4) if sum(a) == r
        ]
        self.lattice.sort(key=lambda a: (-max(a), tuple(-ai for ai in a)))
        self.lattice_index = {a: i for i, a in enumerate(self.lattice)}

        self.barycentric_nodes = np.array(self.lattice, dtype=float) / r
        self.nodes = self.barycentric_nodes[:, 1:]

        self.exponents = [
            e for e in itertools.product(range(r + 1), repeat=3) if sum(e) <= r
        ]

        vandermonde = self._monomials(self.nodes)
        self.coefficients = np.linalg.inv(vandermonde)

        self.quadrature_points = quadrature_points or r + 1
        self.quadrature = simplex_quadrature(self.quadrature_points)
        self.values, self.gradients = self.tabulate(self.quadrature[0])

    def __repr__(self):
        return f"FE_SimplexP<3>({self.degree})"

    @property
    def dofs_per_cell(self) -> int:
        return len(self.lattice)

    @property
    def n_quadrature_points(self) -> int:
        return self.quadrature[0].shape[0]

    def dofs_per_entity(self, n_vertices: int) -> int:
        """Interior nodes of a sub-simplex with ``n_vertices`` vertices."""
        return len(_compositions(self.degree, n_vertices))

    def entity_nodes(self, local_vertices: Sequence[int]):
        """
        Basis indices of the nodes interior to the sub-simplex spanned by
        ``local_vertices``, enumerated in the sub-simplex's own vertex order.
        """
        indices = []
        for parts in _compositions(self.degree, len(local_vertices)):
            a = [0, 0, 0, 0]
            for v, p in zip(local_vertices, parts):
                a[v] = p
            indices.append(self.lattice_index[tuple(a)])
        return indices

    def _monomials(self, points):
        points = np.asarray(points, dtype=float)
        return np.stack(
            [points[:, 0] ** i * points[:, 1] ** j * points[:, 2] ** k for i, j, k in self.exponents],
            axis=1,
        )

    def _monomial_gradients(self, points):
        points = np.asarray(points, dtype=float)
        px, py, pz = points[:, 0], points[:, 1], points[:, 2]

        def power(base, exponent):
            if exponent < 0:
                return np.zeros_like(base)
            return base**exponent

        grads = np.empty((points.shape[0], len(self.exponents), 3))
        for m, (i, j, k) in enumerate(self.exponents):
            grads[:, m, 0] = i * power(px, i - 1) * py**j * pz**k
            grads[:, m, 1] = j * px**i * power(py, j - 1) * pz**k
            grads[:, m, 2] = k * px**i * py**j * power(pz, k - 1)
        return grads

    def tabulate(self, points):
        """
        Basis values (n_points, n_basis) and reference gradients
        (n_points, n_basis, 3) at reference ``points``.
        """
        values = self._monomials(points) @ self.coefficients
        gradients = np.einsum("pmd,mb->pbd", self._monomial_gradients(points), self.coefficients)
        return values, gradients


class DoFHandler:
    """
    Degree-of-freedom enumeration for a :class:`LagrangeSimplex` on a :class:`Mesh`.

    Call :meth:`distribute_dofs` once; afterwards

    - ``locally_owned_dofs`` is this rank's contiguous slice of ``[0, n_dofs)``,
    - ``locally_relevant_dofs`` holds the global index of every entry of a
      local (ghosted) vector, a superset of the owned DoFs,
    - ``cell_dofs`` maps each owned cell to local vector indices in the
      element's basis order.
    """

    def __init__(self, mesh: Mesh, element: LagrangeSimplex):
        self.mesh = mesh
        self.element = element

        # Each handler carries its own section on a clone sharing the topology
        self.dm = mesh.dm.clone()
        self.dm.setBasicAdjacency(False, True)
        self.section = None

    @timing.routine_timer_decorator
    def distribute_dofs(self):
        dm = self.dm
        element = self.element
        vStart, vEnd = self.mesh.vertex_range

        section = PETSc.Section().create(comm=self.mesh.petsc_comm)
        pStart, pEnd = dm.getChart()
        section.setChart(pStart, pEnd)

        for depth in range(4):
            n_dofs = element.dofs_per_entity(depth + 1)
            if n_dofs == 0:
                continue
            start, end = dm.getDepthStratum(depth)
            for point in range(start, end):
                section.setDof(point, n_dofs)

        section.setUp()
        dm.setLocalSection(section)
        self.section = section
        self.global_section = dm.getGlobalSection()
        self.n_local_dofs = section.getStorageSize()

        # Sub-entity vertices are taken from each entity's own closure, so
        # every cell sharing an edge or face numbers its nodes identically.
        entity_vertices = {}

        def vertices_of(point):
            if vStart <= point < vEnd:
                return (point,)
            if point not in entity_vertices:
                closure = dm.getTransitiveClosure(point)[0]
                entity_vertices[point] = tuple(closure[(closure >= vStart) & (closure < vEnd)])
            return entity_vertices[point]

        n_cells = len(self.mesh.local_cells)
        n_basis = element.dofs_per_cell
        all_cell_dofs = np.full((n_cells, n_basis), -1, dtype=np.int64)

        for i, cell in enumerate(self.mesh.local_cells):
            closure = dm.getTransitiveClosure(cell)[0]
            cell_vertices = [p for p in closure if vStart <= p < vEnd]
            local_vertex = {v: k for k, v in enumerate(cell_vertices)}

            for point in closure:
                n_dofs = section.getDof(point)
                if n_dofs == 0:
                    continue
                offset = section.getOffset(point)
                nodes = element.entity_nodes([local_vertex[v] for v in vertices_of(point)])
                all_cell_dofs[i, nodes] = offset + np.arange(n_dofs)

        if np.any(all_cell_dofs < 0):
            raise MeshInvalidError("Cell closures do not cover every element node")

        self._all_cell_dofs = all_cell_dofs
        self.cell_dofs = all_cell_dofs[self.mesh.owned_mask]

        # Physical coordinates of every local DoF
        X = self.mesh.cell_coordinates(owned_only=False)
        node_coords = np.einsum("nk,ckd->cnd", element.barycentric_nodes, X)
        self.dof_coords = np.zeros((self.n_local_dofs, 3))
        self.dof_coords[all_cell_dofs.ravel()] = node_coords.reshape(-1, 3)

        lgmap = dm.getLGMap()
        self.locally_relevant_dofs = np.asarray(lgmap.getIndices(), dtype=np.int64).copy()

        gvec = dm.createGlobalVec()
        self.n_dofs = gvec.getSize()
        self.locally_owned_dofs = np.arange(*gvec.getOwnershipRange(), dtype=np.int64)
        gvec.destroy()

        # Positions in the local vector of the owned entries (global section offsets >= 0)
        owned_local = np.zeros(self.n_local_dofs, dtype=bool)
        pStart, pEnd = dm.getChart()
        for point in range(pStart, pEnd):
            n_dofs = section.getDof(point)
            if n_dofs and self.global_section.getOffset(point) >= 0:
                offset = section.getOffset(point)
                owned_local[offset : offset + n_dofs] = True
        self.owned_local_mask = owned_local

        return self

    @property
    def dofs_per_cell(self) -> int:
        return self.element.dofs_per_cell

    def interpolate(self, field, vec: PETSc.Vec, t: float = 0.0):
        """
        Nodal interpolation of ``field`` into the global vector ``vec``.

        ``field`` is anything with ``value(points, t)``, or a plain callable
        ``field(points, t)``.
        """
        evaluate = getattr(field, "value", field)
        values = np.asarray(evaluate(self.dof_coords, t), dtype=float)

        lvec = self.dm.getLocalVec()
        lvec.setArray(np.broadcast_to(values, (self.n_local_dofs,)))
        self.dm.localToGlobal(lvec, vec, addv=PETSc.InsertMode.INSERT_VALUES)
        self.dm.restoreLocalVec(lvec)

        return vec

    def cell_values(self, lvec: PETSc.Vec) -> np.ndarray:
        """(n_owned_cells, dofs_per_cell) coefficients gathered from a local vector."""
        return lvec.array_r[self.cell_dofs]

    def vertex_values(self, lvec: PETSc.Vec) -> np.ndarray:
        """Coefficients at the local mesh vertices (nodal values of vertex DoFs)."""
        vStart, vEnd = self.mesh.vertex_range
        offsets = np.array([self.section.getOffset(v) for v in range(vStart, vEnd)], dtype=np.int64)
        return lvec.array_r[offsets]
