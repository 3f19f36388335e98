##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
"""
Tetrahedral meshes of simple domains, generated with Gmsh.

Gmsh runs on rank 0 only and writes a ``.msh`` file; every rank then reads
that file through :meth:`~fisher_kolmogorov.discretisation.Mesh.from_gmsh`,
which distributes it. Without a ``filename`` the file goes to ``.meshes/``
under a name built from the domain parameters, so repeated runs reuse the
same path.
"""

import os
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from . import mpi
from . import timing
from .discretisation import Mesh


class boundaries_3D(Enum):
    Bottom = 11
    Top = 12
    Right = 13
    Left = 14
    Front = 15
    Back = 16


class boundaries_ball(Enum):
    Surface = 11


def _mesh_filename(filename, stem, comm):
    if filename is not None:
        return filename

    if comm.rank == 0:
        os.makedirs(".meshes", exist_ok=True)
    return f".meshes/{stem}.msh"


def _generate(filename, cellSize, gmsh_verbosity, build):
    """Rank 0 only: ``build(gmsh)`` adds the geometry and physical groups."""
    import gmsh

    gmsh.initialize()
    try:
        gmsh.option.setNumber("General.Verbosity", gmsh_verbosity)
        gmsh.option.setNumber("Mesh.CharacteristicLengthMax", cellSize)
        gmsh.option.setNumber("Mesh.MshFileVersion", 4.1)

        build(gmsh)

        gmsh.model.mesh.generate(3)
        gmsh.write(filename)
    finally:
        gmsh.finalize()


@timing.routine_timer_decorator
def UnstructuredSimplexBox(
    minCoords: Tuple = (0.0, 0.0, 0.0),
    maxCoords: Tuple = (1.0, 1.0, 1.0),
    cellSize: float = 0.25,
    filename: Optional[str] = None,
    gmsh_verbosity=0,
    verbose=False,
    comm=None,
):
    r"""
    Unstructured tetrahedral mesh of a box.

    Parameters
    ----------
    minCoords, maxCoords : tuple of float
        Opposite corners ``(x, y, z)`` of the box.
    cellSize : float
        Largest element size.
    filename : str, optional
        Where to save the ``.msh`` file.
    gmsh_verbosity : int
        Gmsh ``General.Verbosity``, 0 is silent.

    Returns
    -------
    Mesh
        The faces carry the physical groups of :class:`boundaries_3D`, the
        volume the group ``Elements``.

    Examples
    --------
    >>> mesh = UnstructuredSimplexBox((0, 0, 0), (1, 1, 1), cellSize=0.2)
    >>> mesh.n_global_active_cells
    """
    comm = comm or mpi.comm

    if len(minCoords) != 3 or len(maxCoords) != 3:
        raise ValueError("UnstructuredSimplexBox needs three dimensional corners")

    lower = np.asarray(minCoords, dtype=float)
    upper = np.asarray(maxCoords, dtype=float)
    if np.any(upper <= lower):
        raise ValueError(f"Empty box {tuple(lower)} - {tuple(upper)}")

    fk_filename = _mesh_filename(
        filename, f"fk_simplexbox_minC{tuple(minCoords)}_maxC{tuple(maxCoords)}_csize{cellSize}", comm
    )

    # Face normal axis and side for each boundary
    faces = {
        boundaries_3D.Bottom: (2, lower),
        boundaries_3D.Top: (2, upper),
        boundaries_3D.Left: (0, lower),
        boundaries_3D.Right: (0, upper),
        boundaries_3D.Front: (1, lower),
        boundaries_3D.Back: (1, upper),
    }

    tolerance = 1.0e-6 * float(np.max(upper - lower))

    def build(gmsh):
        gmsh.model.add("Box")
        volume = gmsh.model.occ.addBox(*lower, *(upper - lower))
        gmsh.model.occ.synchronize()

        for dim, tag in gmsh.model.getEntities(2):
            bbox = np.array(gmsh.model.getBoundingBox(dim, tag)).reshape(2, 3)
            for boundary, (axis, corner) in faces.items():
                if np.allclose(bbox[:, axis], corner[axis], atol=tolerance):
                    gmsh.model.addPhysicalGroup(dim, [tag], boundary.value, name=boundary.name)

        gmsh.model.addPhysicalGroup(3, [volume], 99999, name="Elements")

    if comm.rank == 0:
        _generate(fk_filename, cellSize, gmsh_verbosity, build)

    mpi.barrier(comm)

    return Mesh.from_gmsh(fk_filename, comm=comm, verbose=verbose)


@timing.routine_timer_decorator
def UnstructuredSimplexBall(
    centre: Tuple = (0.0, 0.0, 0.0),
    radius: float = 1.0,
    cellSize: float = 0.25,
    filename: Optional[str] = None,
    gmsh_verbosity=0,
    verbose=False,
    comm=None,
):
    r"""
    Unstructured tetrahedral mesh of a ball, a convenient stand-in for a
    brain geometry when axonal directions point away from the centre.

    The surface carries the physical group ``Surface``, the volume
    ``Elements``.
    """
    comm = comm or mpi.comm

    if radius <= 0:
        raise ValueError(f"Ball radius must be positive, got {radius}")

    fk_filename = _mesh_filename(
        filename, f"fk_simplexball_c{tuple(centre)}_r{radius}_csize{cellSize}", comm
    )

    def build(gmsh):
        gmsh.model.add("Ball")
        volume = gmsh.model.occ.addSphere(*centre, radius)
        gmsh.model.occ.synchronize()

        surfaces = [tag for _, tag in gmsh.model.getEntities(2)]
        gmsh.model.addPhysicalGroup(
            2, surfaces, boundaries_ball.Surface.value, name=boundaries_ball.Surface.name
        )
        gmsh.model.addPhysicalGroup(3, [volume], 99999, name="Elements")

    if comm.rank == 0:
        _generate(fk_filename, cellSize, gmsh_verbosity, build)

    mpi.barrier(comm)

    return Mesh.from_gmsh(fk_filename, comm=comm, verbose=verbose)
