import pytest
import sympy

import fisher_kolmogorov as fk
from fisher_kolmogorov.coefficients import isotropic_diffusion, ScalarField


def pytest_configure(config):
    for level, text in (
        ("level_1", "quick tests, no time stepping"),
        ("level_2", "intermediate, a few assemblies or steps"),
        ("level_3", "physics, full time marches and convergence studies"),
    ):
        config.addinivalue_line("markers", f"{level}: {text}")


@pytest.fixture(scope="module")
def box_mesh():
    return fk.Mesh.from_box(faces=(3, 3, 3))


@pytest.fixture(scope="module")
def p1_dofs(box_mesh):
    element = fk.LagrangeSimplex(1)
    return fk.DoFHandler(box_mesh, element).distribute_dofs()


@pytest.fixture(scope="module")
def p2_dofs(box_mesh):
    element = fk.LagrangeSimplex(2)
    return fk.DoFHandler(box_mesh, element).distribute_dofs()


@pytest.fixture
def make_problem(tmp_path):
    """Factory for small problems on a structured unit cube, output disabled."""

    created = []

    def _make(
        faces=(2, 2, 2),
        degree=1,
        diffusion=None,
        alpha=1.0,
        forcing=None,
        u0=0.0,
        exact_solution=None,
        T=1.0,
        deltat=0.1,
        theta=1.0,
        output=False,
        comm=None,
        **solver_parameters,
    ):
        mesh = fk.Mesh.from_box(faces=faces, comm=comm)

        if not isinstance(u0, ScalarField):
            u0 = ScalarField(sympy.sympify(u0), name="u0")

        problem = fk.FisherKolmogorov3D(
            mesh=mesh,
            degree=degree,
            diffusion=diffusion if diffusion is not None else isotropic_diffusion(1.0),
            alpha=alpha,
            forcing=forcing,
            u0=u0,
            exact_solution=exact_solution,
            T=T,
            deltat=deltat,
            theta=theta,
            output_directory=str(tmp_path),
            output_enabled=output,
        )

        parameters = dict(
            max_newton_iterations=20,
            newton_tolerance=1.0e-10,
            max_cg_iterations=1000,
            cg_tolerance_factor=1.0e-8,
        )
        parameters.update(solver_parameters)
        problem.set_solver_parameters(**parameters)

        created.append(problem)
        return problem

    yield _make

    for problem in created:
        problem.destroy()
