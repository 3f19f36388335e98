##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
"""
Command line driver.

    mpirun -np 4 python -m fisher_kolmogorov -fk_params params.yaml \\
        -fk_mesh_file brain.msh -fk_seed_center 0.1,0.2,0.3 -fk_timing

Any parameter of the file can be overridden with ``-fk_<name>``, any PETSc
option (``-fk_cg_ksp_monitor``, ``-log_view`` ...) is passed through.

The problem solved has zero forcing, axonal diffusion radial from the mesh
centroid and a Gaussian seed

    u0 = A exp(-|x - c|^2 / (2 w^2))

with ``A = -fk_seed_amplitude`` (0.1), ``w = -fk_seed_radius`` (0.1)
and ``c = -fk_seed_center`` (the mesh centroid).
"""

import logging
import sys

import numpy as np
import sympy
from petsc4py import PETSc

import fisher_kolmogorov as fk
from fisher_kolmogorov.coefficients import ScalarField, X
from fisher_kolmogorov.errors import FisherKolmogorovError


def seed_initial_condition(center, radius=0.1, amplitude=0.1) -> ScalarField:
    c = sympy.Matrix([float(v) for v in center])
    r2 = (X - c).dot(X - c)
    return ScalarField(amplitude * sympy.exp(-r2 / (2 * radius**2)), name="u0")


def _parse_center(text):
    values = [float(v) for v in text.replace(",", " ").split()]
    if len(values) != 3:
        raise fk.errors.ConfigError(f"-fk_seed_center needs three values, got '{text}'")
    return np.array(values)


def _is_option_name(token):
    if not token.startswith("-"):
        return False
    try:
        float(token)
    except ValueError:
        return True
    return False


def insert_options(argv):
    """Add ``-name [value]`` pairs of ``argv`` to the PETSc options database one by one."""
    opts = PETSc.Options()
    i = 0
    while i < len(argv):
        name = argv[i]
        if not _is_option_name(name):
            raise fk.errors.ConfigError(f"Expected an option name, got '{name}'")

        value = None
        if i + 1 < len(argv) and not _is_option_name(argv[i + 1]):
            value = argv[i + 1]
            i += 1

        opts.setValue(name, value)
        i += 1


def main(argv=None):
    if argv is not None:
        insert_options(argv)

    options = fk.options

    logging.basicConfig(
        level=logging.DEBUG if options.getBool("verbose", False) else logging.WARNING,
        format=f"[{fk.mpi.rank}] %(levelname)s %(name)s: %(message)s",
    )

    if options.getBool("timing", False):
        fk.timing.start()

    try:
        params = options.getString("params", None)
        if params is not None:
            config = fk.load_config(params)
        else:
            config = fk.FisherKolmogorovConfig()

        config = fk.config.apply_options(config, options)

        if config.output.enabled and fk.mpi.rank == 0:
            fk.require_dirs([config.output.directory])

        if not config.mesh.mesh_file:
            raise fk.errors.ConfigError("No mesh file given (parameter 'Mesh file' or -fk_mesh_file)")

        mesh = fk.Mesh.from_gmsh(config.mesh.mesh_file)

        center = options.getString("seed_center", None)
        center = mesh.centroid() if center is None else _parse_center(center)

        u0 = seed_initial_condition(
            center,
            radius=options.getReal("seed_radius", 0.1),
            amplitude=options.getReal("seed_amplitude", 0.1),
        )

        problem = fk.FisherKolmogorov3D.from_config(config, u0=u0, mesh=mesh)
        problem.setup()
        problem.solve()

    except FisherKolmogorovError as e:
        fk.mpi.pprint(f"Error: {e}", file=sys.stderr)
        return 1

    if options.getBool("timing", False):
        fk.timing.print_table()

    return 0


if __name__ == "__main__":
    sys.exit(main())
