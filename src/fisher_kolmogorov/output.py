##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
"""
Parallel VTK output.

Each rank writes its owned cells as a VTU piece with pyvista, rank 0 writes
the ``.pvtu`` record that ParaView opens. The solution is sampled at the
mesh vertices on linear tetrahedra, whatever the element degree.

Failures to write are logged and otherwise ignored, the collective part
(gathering piece names) is always reached.
"""

import logging
import os
import xml.etree.ElementTree as ET

import numpy as np

from . import timing

logger = logging.getLogger(__name__)


def output_basename(n_global_cells: int, step: int) -> str:
    return f"{n_global_cells}_output_{step:03d}"


def solution_to_pv_mesh(dof_handler, solution, name="u"):
    """pyvista UnstructuredGrid of the owned cells with ``name`` and ``partitioning`` data."""
    import pyvista as pv

    mesh = dof_handler.mesh

    cell_vertices = mesh.cell_vertices
    n_cells = cell_vertices.shape[0]

    cells = np.hstack([np.full((n_cells, 1), 4, dtype=np.int64), cell_vertices]).ravel()
    celltypes = np.full(n_cells, pv.CellType.TETRA, dtype=np.uint8)

    grid = pv.UnstructuredGrid(cells, celltypes, np.asarray(mesh.vertex_coords, dtype=np.float64))
    grid.point_data[name] = np.asarray(dof_handler.vertex_values(solution), dtype=np.float64)
    grid.cell_data["partitioning"] = np.full(n_cells, float(mesh.comm.rank))

    return grid


_VTK_TYPES = {
    np.dtype(np.float32): "Float32",
    np.dtype(np.float64): "Float64",
    np.dtype(np.int32): "Int32",
    np.dtype(np.int64): "Int64",
    np.dtype(np.uint8): "UInt8",
}


def _declare_arrays(parent, data):
    for name in data.keys():
        array = np.asarray(data[name])
        attributes = dict(type=_VTK_TYPES[array.dtype], Name=name)
        if array.ndim > 1:
            attributes["NumberOfComponents"] = str(array.shape[1])
        ET.SubElement(parent, "PDataArray", **attributes)


def write_pvtu_record(filename, pieces, grid):
    """
    Write the ``.pvtu`` index referencing ``pieces`` (relative file names).

    The declared point, cell and coordinate arrays are read off ``grid``,
    one of the pieces, so the index always matches what the pieces hold.
    """
    root = ET.Element(
        "VTKFile", type="PUnstructuredGrid", version="0.1", byte_order="LittleEndian"
    )
    pgrid = ET.SubElement(root, "PUnstructuredGrid", GhostLevel="0")

    _declare_arrays(ET.SubElement(pgrid, "PPointData"), grid.point_data)
    _declare_arrays(ET.SubElement(pgrid, "PCellData"), grid.cell_data)

    points = ET.SubElement(pgrid, "PPoints")
    ET.SubElement(
        points, "PDataArray", type=_VTK_TYPES[np.asarray(grid.points).dtype], NumberOfComponents="3"
    )

    for piece in pieces:
        ET.SubElement(pgrid, "Piece", Source=piece)

    ET.ElementTree(root).write(filename, xml_declaration=True, encoding="utf-8")


@timing.routine_timer_decorator
def write_vtu_with_pvtu_record(dof_handler, solution, step: int, directory=".", name="u"):
    """
    Write ``{N}_output_{step:03d}.{rank}.vtu`` on every rank and
    ``{N}_output_{step:03d}.pvtu`` on rank 0, ``N`` being the global number
    of cells. Collective.

    Returns the path of the pvtu record.
    """
    mesh = dof_handler.mesh
    comm = mesh.comm

    basename = output_basename(mesh.n_global_active_cells, step)
    piece = f"{basename}.{comm.rank}.vtu"

    grid = solution_to_pv_mesh(dof_handler, solution, name=name)

    try:
        os.makedirs(directory, exist_ok=True)
        grid.save(os.path.join(directory, piece), binary=True)
    except OSError as e:
        logger.warning(f"Could not write {piece} to {directory}: {e}")

    pieces = comm.gather(piece, root=0)

    record = os.path.join(directory, f"{basename}.pvtu")
    if comm.rank == 0:
        try:
            write_pvtu_record(record, pieces, grid)
        except OSError as e:
            logger.warning(f"Could not write {record}: {e}")

    return record
