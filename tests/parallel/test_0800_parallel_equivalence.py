"""
Distributed runs agree with single process runs.

Run with pytest-mpi:
    mpirun -n 2 python -m pytest --with-mpi tests/parallel/test_0800_parallel_equivalence.py
    mpirun -n 4 python -m pytest --with-mpi tests/parallel/test_0800_parallel_equivalence.py

Each rank also solves the whole problem on COMM_SELF; DoF numberings differ,
so comparisons use permutation invariant quantities (norms, integrals).
"""

import os
import xml.etree.ElementTree as ET

import numpy as np
import pytest
import sympy
from mpi4py import MPI

import fisher_kolmogorov as fk
from fisher_kolmogorov.coefficients import ScalarField, axonal_diffusion, radial_direction, x, y, z
from fisher_kolmogorov.linear_system import LinearSystem

pytestmark = [pytest.mark.mpi(min_size=2), pytest.mark.timeout(120)]


seed = ScalarField(0.6 * sympy.exp(-8 * ((x - 0.4) ** 2 + (y - 0.5) ** 2 + (z - 0.6) ** 2)))
zero = ScalarField.constant(0.0)

tight = dict(newton_tolerance=1.0e-13, cg_tolerance_factor=1.0e-12, max_cg_iterations=5000)


def norms_of(problem):
    return np.array(
        [
            fk.ErrorNorm(problem.dof_handler, zero, norm_type).compute(problem.solution, problem.time)
            for norm_type in (fk.NormType.L1, fk.NormType.L2, fk.NormType.H1_SEMINORM, fk.NormType.LINF)
        ]
    )


@pytest.mark.mpi(min_size=2)
@pytest.mark.parametrize("degree", [1, 2])
def test_ownership_partition(degree):
    comm = MPI.COMM_WORLD
    mesh = fk.Mesh.from_box(faces=(4, 4, 4), comm=comm)
    dofs = fk.DoFHandler(mesh, fk.LagrangeSimplex(degree)).distribute_dofs()

    assert comm.allreduce(mesh.n_local_cells) == mesh.n_global_active_cells == 6 * 4**3
    assert comm.allreduce(len(dofs.locally_owned_dofs)) == dofs.n_dofs

    # Owned ranges are contiguous and tile [0, n_dofs)
    ranges = comm.allgather(
        (int(dofs.locally_owned_dofs[0]), int(dofs.locally_owned_dofs[-1]) + 1)
        if len(dofs.locally_owned_dofs)
        else None
    )
    ranges = sorted(r for r in ranges if r is not None)
    assert ranges[0][0] == 0
    assert ranges[-1][1] == dofs.n_dofs
    for (_, end), (start, _) in zip(ranges[:-1], ranges[1:]):
        assert end == start

    serial = fk.DoFHandler(fk.Mesh.from_box(faces=(4, 4, 4), comm=MPI.COMM_SELF), fk.LagrangeSimplex(degree))
    assert serial.distribute_dofs().n_dofs == dofs.n_dofs


@pytest.mark.mpi(min_size=2)
def test_ghost_values_match_owners():
    mesh = fk.Mesh.from_box(faces=(4, 4, 4), comm=MPI.COMM_WORLD)
    dofs = fk.DoFHandler(mesh, fk.LagrangeSimplex(2)).distribute_dofs()
    system = LinearSystem(dofs).reinit()

    field = ScalarField(x * y + 2 * z - x)
    dofs.interpolate(field, system.solution_owned)
    system.update_ghosts()

    assert np.allclose(system.solution.array_r, field.value(dofs.dof_coords))

    # Owned part of the local vector is the global vector
    assert np.array_equal(
        system.solution.array_r[dofs.owned_local_mask], system.solution_owned.array_r
    )

    system.destroy()


@pytest.mark.mpi(min_size=2)
def test_mesh_integrals():
    mesh = fk.Mesh.from_box(faces=(3, 3, 3), upper=(1.0, 2.0, 1.0), comm=MPI.COMM_WORLD)

    assert np.isclose(mesh.volume(), 2.0)
    assert np.allclose(mesh.centroid(), [0.5, 1.0, 0.5])


@pytest.mark.mpi(min_size=2)
def test_assembly_matches_serial(make_problem):
    residuals = []
    for comm in (MPI.COMM_SELF, MPI.COMM_WORLD):
        problem = make_problem(faces=(3, 3, 3), degree=2, alpha=2.0, u0=seed, comm=comm)
        problem.setup()
        problem.apply_initial_condition()
        problem.system.store_old_solution()
        problem.time = problem.deltat

        # Perturb away from u_old so the time derivative term is exercised
        problem.solution_owned.scale(1.1)
        problem.system.update_ghosts()
        problem.assemble_system()

        residuals.append(problem.system.residual_norm())
        assert problem.jacobian_matrix.isSymmetric(1.0e-12)

    assert np.isclose(residuals[0], residuals[1], rtol=1.0e-10)


@pytest.mark.mpi(min_size=2)
@pytest.mark.parametrize("degree", [1, 2])
def test_solution_matches_serial(make_problem, degree):
    """The time march gives the same field on one or many ranks."""
    results = []
    for comm in (MPI.COMM_SELF, MPI.COMM_WORLD):
        center = (0.5, 0.5, 0.5)
        problem = make_problem(
            faces=(3, 3, 3),
            degree=degree,
            diffusion=axonal_diffusion(0.1, 1.0, radial_direction(center)),
            alpha=3.0,
            u0=seed,
            T=0.3,
            deltat=0.1,
            comm=comm,
            **tight,
        )
        problem.solve()

        assert all(result.converged for result in problem.newton_history)
        results.append(norms_of(problem))

    assert np.allclose(results[0], results[1], rtol=1.0e-8)


@pytest.mark.mpi(min_size=2)
def test_tiny_mesh(make_problem):
    """Fewer cells than ranks per direction still steps (some ranks may own nothing)."""
    problem = make_problem(faces=(1, 1, 1), u0=seed, T=0.2, comm=MPI.COMM_WORLD)
    problem.solve()

    assert problem.time_step == 2
    assert MPI.COMM_WORLD.allreduce(problem.mesh.n_local_cells) == 6


@pytest.mark.mpi(min_size=2)
def test_parallel_output(make_problem, tmp_path):
    comm = MPI.COMM_WORLD
    directory = comm.bcast(str(tmp_path) if comm.rank == 0 else None, root=0)

    problem = make_problem(faces=(3, 3, 3), u0=seed, comm=comm, output=True)
    problem.output_directory = directory
    problem.setup()
    problem.apply_initial_condition()
    record = problem.output(0)
    comm.Barrier()

    N = problem.mesh.n_global_active_cells
    assert os.path.exists(os.path.join(directory, f"{N}_output_000.{comm.rank}.vtu"))

    if comm.rank == 0:
        sources = [p.get("Source") for p in ET.parse(record).getroot().iter("Piece")]
        assert sources == [f"{N}_output_000.{r}.vtu" for r in range(comm.size)]
