##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
##                                                                                   ##
##  This file forms part of the fisher-kolmogorov3d reaction-diffusion solver.       ##
##                                                                                   ##
##  For full license and copyright information, please refer to the LICENSE.md file  ##
##  located at the project root, or contact the authors.                             ##
##                                                                                   ##
##~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~#~##
r"""
Coefficient fields of the Fisher-Kolmogorov equation.

$$
\frac{\partial u}{\partial t} - \nabla \cdot \bigl( \mathbf{D}(\mathbf{x}) \nabla u \bigr)
    - \alpha u (1 - u) = f(\mathbf{x}, t)
$$

Coefficients are sympy expressions in the coordinate symbols ``x, y, z`` and
the time symbol ``t``. They are lambdified once (numpy backend) and then
evaluated on arrays of points. Evaluation is pure: time is an argument, never
a stored state, so a field can be shared by any number of assembly passes.

Example
-------
>>> from fisher_kolmogorov.coefficients import ScalarField, x, y, t
>>> u0 = ScalarField(sympy.exp(-10 * ((x - 0.5)**2 + (y - 0.5)**2)))
>>> u0.value(points)            # shape (n,)
>>> f = ScalarField("sin(pi*x) * exp(-t)")
>>> f.value(points, t=0.3)
"""

from typing import Sequence, Union

import numpy as np
import sympy

x, y, z, t = sympy.symbols("x y z t", real=True)
X = sympy.Matrix([x, y, z])

_locals = {"x": x, "y": y, "z": z, "t": t}


def _as_expression(expr):
    if isinstance(expr, str):
        return sympy.sympify(expr, locals=_locals)
    return sympy.sympify(expr)


def _broadcast(values, n, shape=()):
    """lambdify returns scalars for constant entries; expand them to n points."""
    values = np.asarray(values, dtype=float)
    return np.broadcast_to(values, (n,) + shape).copy() if values.ndim == 0 else values


class ScalarField:
    """
    A scalar field $g(\\mathbf{x}, t)$.

    Parameters
    ----------
    expression : sympy expression, str or number
        Expression in ``x, y, z`` and optionally ``t``.
    name : str, optional
        Label used in ``repr``.
    """

    def __init__(self, expression, name: str = None):
        self.sym = _as_expression(expression)
        self.name = name or "g"

        unknown = self.sym.free_symbols - {x, y, z, t}
        if unknown:
            raise ValueError(
                f"Field {self.name} depends on {sorted(map(str, unknown))}; "
                "only x, y, z and t are allowed"
            )

        args = (x, y, z, t)
        self._fn = sympy.lambdify(args, self.sym, "numpy")
        self._grad_fn = [sympy.lambdify(args, sympy.diff(self.sym, xi), "numpy") for xi in X]
        self._dt_fn = sympy.lambdify(args, sympy.diff(self.sym, t), "numpy")

    def __repr__(self):
        return f"ScalarField({self.name} = {self.sym})"

    @classmethod
    def constant(cls, value: float, name: str = None):
        return cls(sympy.Float(value), name=name)

    @property
    def is_time_dependent(self) -> bool:
        return t in self.sym.free_symbols

    def value(self, points: np.ndarray, t: float = 0.0) -> np.ndarray:
        """Evaluate at ``points`` of shape (..., 3). Returns shape (...)."""
        points = np.asarray(points, dtype=float)
        flat = points.reshape(-1, 3)
        values = _broadcast(self._fn(flat[:, 0], flat[:, 1], flat[:, 2], t), flat.shape[0])
        return values.reshape(points.shape[:-1])

    def gradient(self, points: np.ndarray, t: float = 0.0) -> np.ndarray:
        """Spatial gradient at ``points`` of shape (..., 3). Returns shape (..., 3)."""
        points = np.asarray(points, dtype=float)
        flat = points.reshape(-1, 3)
        n = flat.shape[0]
        grad = np.stack(
            [_broadcast(fn(flat[:, 0], flat[:, 1], flat[:, 2], t), n) for fn in self._grad_fn],
            axis=-1,
        )
        return grad.reshape(points.shape)

    def time_derivative(self, points: np.ndarray, t: float = 0.0) -> np.ndarray:
        points = np.asarray(points, dtype=float)
        flat = points.reshape(-1, 3)
        values = _broadcast(self._dt_fn(flat[:, 0], flat[:, 1], flat[:, 2], t), flat.shape[0])
        return values.reshape(points.shape[:-1])

    # Convenience so fields can be passed where plain callables are expected
    def __call__(self, points, t: float = 0.0):
        return self.value(points, t)


class TensorField:
    """
    A 3x3 tensor field $\\mathbf{D}(\\mathbf{x})$.

    Parameters
    ----------
    matrix : sympy.Matrix or nested sequence
        3x3 matrix whose entries are expressions in ``x, y, z``.
    """

    def __init__(self, matrix, name: str = None):
        if isinstance(matrix, sympy.MatrixBase):
            self.sym = sympy.Matrix(matrix)
        else:
            self.sym = sympy.Matrix([[_as_expression(e) for e in row] for row in matrix])
        self.name = name or "D"

        if self.sym.shape != (3, 3):
            raise ValueError(f"Tensor field {self.name} must be 3x3, got {self.sym.shape}")

        unknown = self.sym.free_symbols - {x, y, z}
        if unknown:
            raise ValueError(
                f"Tensor field {self.name} depends on {sorted(map(str, unknown))}; "
                "only x, y and z are allowed"
            )

        self._fns = [
            [sympy.lambdify((x, y, z), self.sym[i, j], "numpy") for j in range(3)]
            for i in range(3)
        ]

    def __repr__(self):
        return f"TensorField({self.name} = {self.sym.tolist()})"

    @property
    def is_symmetric(self) -> bool:
        return sympy.simplify(self.sym - self.sym.T) == sympy.zeros(3, 3)

    def value(self, points: np.ndarray) -> np.ndarray:
        """Evaluate at ``points`` of shape (..., 3). Returns shape (..., 3, 3)."""
        points = np.asarray(points, dtype=float)
        flat = points.reshape(-1, 3)
        n = flat.shape[0]
        D = np.empty((n, 3, 3))
        for i in range(3):
            for j in range(3):
                D[:, i, j] = _broadcast(self._fns[i][j](flat[:, 0], flat[:, 1], flat[:, 2]), n)
        return D.reshape(points.shape[:-1] + (3, 3))

    def __call__(self, points):
        return self.value(points)


## Direction fields for the axonal diffusion model


def constant_direction(vector: Sequence[float]) -> sympy.Matrix:
    """A uniform unit direction."""
    n = sympy.Matrix([sympy.nsimplify(v) for v in vector])
    norm = sympy.sqrt(n.dot(n))
    if norm == 0:
        raise ValueError("Direction vector must be non-zero")
    return n / norm


def radial_direction(center: Sequence[float] = (0.0, 0.0, 0.0)) -> sympy.Matrix:
    """Unit vector pointing away from ``center`` (zero at the centre itself)."""
    r = X - sympy.Matrix(center)
    norm = sympy.sqrt(r.dot(r))
    return r.applyfunc(lambda c: sympy.Piecewise((c / norm, norm > 1.0e-12), (0, True)))


def isotropic_diffusion(d: float) -> TensorField:
    return TensorField(d * sympy.eye(3), name="D_iso")


def axonal_diffusion(
    d_ext: float, d_axn: float, direction: Union[sympy.Matrix, Sequence] = None
) -> TensorField:
    r"""
    Extracellular plus axonal diffusion

    $$
    \mathbf{D} = d_{ext} \mathbf{I} + d_{axn} \, \mathbf{n} \otimes \mathbf{n}
    $$

    where $\mathbf{n}$ is the (unit) axonal direction. With ``direction=None``
    the tensor is isotropic.
    """
    if direction is None:
        return isotropic_diffusion(d_ext)

    n = sympy.Matrix(direction)
    return TensorField(d_ext * sympy.eye(3) + d_axn * (n * n.T), name="D_axn")


def manufactured_forcing(u_exact: ScalarField, diffusion: TensorField, alpha: float) -> ScalarField:
    r"""
    Forcing that makes ``u_exact`` solve the equation:

    $$
    f = \frac{\partial u}{\partial t} - \nabla \cdot (\mathbf{D} \nabla u) - \alpha u (1 - u)
    $$
    """
    u = u_exact.sym
    grad_u = sympy.Matrix([sympy.diff(u, xi) for xi in X])
    flux = diffusion.sym * grad_u
    divergence = sum(sympy.diff(flux[i], X[i]) for i in range(3))

    f = sympy.diff(u, t) - divergence - alpha * u * (1 - u)

    return ScalarField(f, name="f")
