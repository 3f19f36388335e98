import numpy as np
import pytest
import sympy

from fisher_kolmogorov.coefficients import (
    ScalarField,
    TensorField,
    axonal_diffusion,
    constant_direction,
    isotropic_diffusion,
    manufactured_forcing,
    radial_direction,
    t,
    x,
    y,
    z,
)

pytestmark = pytest.mark.level_1

rng = np.random.default_rng(1)
points = rng.random((50, 3))


def test_scalar_field_values_and_gradient():
    g = ScalarField(x**2 * y + sympy.sin(z) * t)

    values = g.value(points, t=0.5)
    expected = points[:, 0] ** 2 * points[:, 1] + np.sin(points[:, 2]) * 0.5
    assert np.allclose(values, expected)

    grad = g.gradient(points, t=0.5)
    assert grad.shape == (50, 3)
    assert np.allclose(grad[:, 0], 2 * points[:, 0] * points[:, 1])
    assert np.allclose(grad[:, 1], points[:, 0] ** 2)
    assert np.allclose(grad[:, 2], np.cos(points[:, 2]) * 0.5)

    assert np.allclose(g.time_derivative(points), np.sin(points[:, 2]))
    assert g.is_time_dependent


def test_scalar_field_from_string_and_constants():
    g = ScalarField("sin(pi*x) * exp(-t)")
    assert np.allclose(g.value(points, t=1.0), np.sin(np.pi * points[:, 0]) * np.exp(-1.0))

    one = ScalarField.constant(1.0)
    assert one.value(points).shape == (50,)
    assert np.all(one.value(points) == 1.0)
    assert np.all(one.gradient(points) == 0.0)
    assert not one.is_time_dependent

    # Batched shapes are preserved
    assert one.value(points.reshape(5, 10, 3)).shape == (5, 10)


def test_scalar_field_is_pure():
    g = ScalarField(x * t)
    first = g.value(points, t=0.3)
    g.value(points, t=0.9)
    assert np.array_equal(g.value(points, t=0.3), first)


def test_unknown_symbols_rejected():
    with pytest.raises(ValueError):
        ScalarField("x + w")

    with pytest.raises(ValueError):
        TensorField(sympy.eye(3) * sympy.Symbol("s"))


def test_tensor_field_shape():
    with pytest.raises(ValueError):
        TensorField(sympy.eye(2))

    D = TensorField([["1", "0", "0"], ["0", "x", "0"], ["0", "0", "2"]])
    values = D.value(points)
    assert values.shape == (50, 3, 3)
    assert np.allclose(values[:, 1, 1], points[:, 0])
    assert np.allclose(values[:, 0, 0], 1.0)


@pytest.mark.parametrize(
    "direction",
    [None, constant_direction((1.0, 2.0, 2.0)), radial_direction((0.5, 0.5, 0.5))],
)
def test_axonal_diffusion_is_spd(direction):
    D = axonal_diffusion(1.0, 10.0, direction)
    assert D.is_symmetric

    values = D.value(points)
    assert np.allclose(values, np.transpose(values, (0, 2, 1)))

    eigenvalues = np.linalg.eigvalsh(values)
    assert np.all(eigenvalues >= 1.0 - 1.0e-12)
    assert np.all(eigenvalues <= 11.0 + 1.0e-12)


def test_axonal_diffusion_along_direction():
    n = constant_direction((0.0, 0.0, 3.0))
    D = axonal_diffusion(2.0, 5.0, n).value(points[:1])[0]

    assert np.allclose(D, np.diag([2.0, 2.0, 7.0]))


def test_radial_direction_at_center():
    n = radial_direction((0.5, 0.5, 0.5))
    D = axonal_diffusion(1.0, 10.0, n)

    at_center = D.value(np.array([[0.5, 0.5, 0.5]]))[0]
    assert np.allclose(at_center, np.eye(3))


def test_constant_direction_rejects_zero():
    with pytest.raises(ValueError):
        constant_direction((0, 0, 0))


@pytest.mark.parametrize("u_exact", [sympy.Integer(0), sympy.Integer(1)])
def test_manufactured_forcing_vanishes_at_equilibria(u_exact):
    f = manufactured_forcing(ScalarField(u_exact), isotropic_diffusion(1.0), alpha=1.0)
    assert np.allclose(f.value(points, t=0.4), 0.0)


def test_manufactured_forcing():
    u = ScalarField(sympy.cos(sympy.pi * x) * sympy.exp(-t))
    f = manufactured_forcing(u, isotropic_diffusion(0.5), alpha=2.0)

    px = points[:, 0]
    tt = 0.25
    ue = np.cos(np.pi * px) * np.exp(-tt)
    expected = -ue + 0.5 * np.pi**2 * ue - 2.0 * ue * (1 - ue)

    assert np.allclose(f.value(points, t=tt), expected)
