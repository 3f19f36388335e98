"""
Error norms against analytic fields.
"""

import numpy as np
import pytest
import sympy

import fisher_kolmogorov as fk
from fisher_kolmogorov.coefficients import ScalarField, t, x, y, z
from fisher_kolmogorov.linear_system import LinearSystem

pytestmark = pytest.mark.level_1


@pytest.fixture
def system_for():
    created = []

    def _make(dof_handler, field=None, time=0.0):
        system = LinearSystem(dof_handler).reinit()
        if field is not None:
            dof_handler.interpolate(field, system.solution_owned, t=time)
        system.update_ghosts()
        created.append(system)
        return system

    yield _make

    for system in created:
        system.destroy()


def test_zero_solution_against_one(p1_dofs, system_for):
    system = system_for(p1_dofs)
    one = ScalarField.constant(1.0)

    def norm(norm_type):
        return fk.ErrorNorm(p1_dofs, one, norm_type).compute(system.solution)

    assert np.isclose(norm(fk.NormType.L1), 1.0)
    assert np.isclose(norm(fk.NormType.L2), 1.0)
    assert np.isclose(norm(fk.NormType.LINF), 1.0)
    assert np.isclose(norm(fk.NormType.H1_SEMINORM), 0.0)
    assert np.isclose(norm(fk.NormType.H1), 1.0)


@pytest.mark.parametrize("norm_type", list(fk.NormType))
def test_linear_field_is_exact_for_p1(p1_dofs, system_for, norm_type):
    field = ScalarField(1 + 2 * x - y + 0.5 * z)
    system = system_for(p1_dofs, field)

    error = fk.ErrorNorm(p1_dofs, field, norm_type)(system.solution)

    assert error < 1.0e-12


def test_quadratic_field_is_exact_for_p2(p2_dofs, system_for):
    field = ScalarField(x**2 - y * z + 3 * x * y)
    system = system_for(p2_dofs, field)

    for norm_type in (fk.NormType.L2, fk.NormType.H1):
        assert fk.ErrorNorm(p2_dofs, field, norm_type)(system.solution) < 1.0e-12


def test_time_argument(p1_dofs, system_for):
    field = ScalarField((1 + t) * x)
    system = system_for(p1_dofs, field, time=0.5)

    norm = fk.ErrorNorm(p1_dofs, field, "L2")
    assert norm.compute(system.solution, t=0.5) < 1.0e-12

    # u_h = 1.5 x against 2 x: ||0.5 x||^2 = 0.25 / 3
    assert np.isclose(norm.compute(system.solution, t=1.0), np.sqrt(0.25 / 3.0))


def test_norm_type_from_string():
    assert fk.NormType("L2") is fk.NormType.L2
    assert fk.NormType("Linfty") is fk.NormType.LINF

    with pytest.raises(ValueError):
        fk.NormType("L3")


@pytest.mark.parametrize("degree, rate", [(1, 2.0), (2, 3.0)])
def test_interpolation_error_rate(system_for, degree, rate):
    field = ScalarField(sympy.sin(sympy.pi * x) * sympy.cos(sympy.pi * y) * (1 + z))

    errors = []
    for n in (2, 4):
        mesh = fk.Mesh.from_box(faces=(n, n, n))
        dofs = fk.DoFHandler(mesh, fk.LagrangeSimplex(degree)).distribute_dofs()
        system = system_for(dofs, field)
        errors.append(fk.ErrorNorm(dofs, field, fk.NormType.L2)(system.solution))

    observed = np.log2(errors[0] / errors[1])
    assert observed > rate - 0.6
