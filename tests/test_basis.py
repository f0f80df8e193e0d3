import numpy as np
import pytest

from edvr.basis import (
    AxisOperator,
    BasisKind,
    build_axis_operators,
    colbert_miller_dvr,
    fourier_grid,
    fourier_kinetic_diagonal,
    harmonic_dvr,
    pack_lower,
    packed_diagonal,
    sine_dvr,
    unpack_lower,
)
from edvr.errors import ConfigurationError


@pytest.mark.operator
@pytest.mark.quick
def test_packed_storage_layout():
    A = np.array([[1.0, 2.0, 4.0], [2.0, 3.0, 5.0], [4.0, 5.0, 6.0]])
    packed = pack_lower(A)
    # 行优先下三角：T00, T10, T11, T20, T21, T22
    assert np.array_equal(packed, [1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
    assert np.array_equal(unpack_lower(packed, 3), A)
    assert np.array_equal(packed_diagonal(packed, 3), [1.0, 3.0, 6.0])


@pytest.mark.operator
@pytest.mark.quick
@pytest.mark.parametrize("code,kind", [(1, BasisKind.HARMONIC), (0, BasisKind.SINE), (2, BasisKind.SINE),
                                       (20, BasisKind.COLBERT_MILLER), (3, BasisKind.FOURIER),
                                       ("fourier", BasisKind.FOURIER)])
def test_basis_codes(code, kind):
    assert BasisKind.from_code(code) is kind


@pytest.mark.operator
@pytest.mark.quick
def test_unknown_basis_code_raises():
    with pytest.raises(ConfigurationError):
        BasisKind.from_code(7)
    with pytest.raises(ConfigurationError):
        BasisKind.from_code("plane")


@pytest.mark.operator
@pytest.mark.quick
def test_sine_dvr_box_levels():
    # 箱中粒子：E_k = (pi k / L)^2 / 2
    L, n = 10.0, 40
    x, T, dx, _ = sine_dvr(n, -0.5 * L, 0.5 * L)
    assert np.isclose(dx, L / (n + 1))
    assert np.allclose(x, -0.5 * L + dx * np.arange(1, n + 1))
    w = np.linalg.eigvalsh(T)
    k = np.arange(1, n + 1)
    assert np.allclose(w, 0.5 * (np.pi * k / L) ** 2)


@pytest.mark.operator
@pytest.mark.quick
def test_colbert_miller_harmonic_oscillator():
    x, T, dx, _ = colbert_miller_dvr(81, -8.0, 8.0)
    H = T + np.diag(0.5 * x * x)
    w = np.linalg.eigvalsh(H)
    assert np.allclose(w[:4], [0.5, 1.5, 2.5, 3.5], atol=1e-6)


@pytest.mark.operator
@pytest.mark.quick
def test_harmonic_dvr_oscillator_levels():
    omega = 0.7
    x, T, step, U = harmonic_dvr(30, omega)
    assert step is None
    assert np.all(np.diff(x) > 0)
    assert np.allclose(U.T @ U, np.eye(30), atol=1e-12)
    H = T + np.diag(0.5 * omega**2 * x * x)
    w = np.linalg.eigvalsh(H)
    assert np.allclose(w[:5], omega * (np.arange(5) + 0.5), atol=1e-8)


@pytest.mark.operator
@pytest.mark.quick
def test_fourier_grid_kinetic_matches_position_matrix():
    op = build_axis_operators((16,), BasisKind.FOURIER, 12.0)[0]
    assert op.is_equidistant
    assert np.isclose(op.step, 12.0 / 16)
    T = op.kinetic_matrix()
    assert np.allclose(T, T.T, atol=1e-12)
    assert np.allclose(np.diag(T), op.kinetic_diagonal())
    assert np.allclose(np.sort(np.linalg.eigvalsh(T)), np.sort(op.kinetic))


@pytest.mark.operator
@pytest.mark.quick
def test_build_axis_operators_per_axis_lengths():
    axes = build_axis_operators((5, 6, 7), 2, (8.0, 9.0, 10.0))
    assert [ax.n for ax in axes] == [5, 6, 7]
    for ax, L in zip(axes, (8.0, 9.0, 10.0)):
        assert isinstance(ax, AxisOperator)
        assert ax.kind is BasisKind.SINE
        assert ax.kinetic.size == ax.n * (ax.n + 1) // 2
        assert np.isclose(ax.x[0] + ax.x[-1], 0.0)
        assert np.isclose(ax.step, L / (ax.n + 1))


@pytest.mark.operator
@pytest.mark.quick
def test_fourier_kinetic_diagonal_separable_sum():
    axes = build_axis_operators((4, 5, 6), BasisKind.FOURIER, 10.0)
    ke = fourier_kinetic_diagonal(axes)
    assert ke.shape == (4, 5, 6)
    ex, ey, ez = (ax.kinetic for ax in axes)
    assert np.isclose(ke[1, 2, 3], ex[1] + ey[2] + ez[3])
    assert np.isclose(ke[0, 0, 0], 0.0)


@pytest.mark.operator
@pytest.mark.quick
def test_fourier_kinetic_diagonal_requires_3d_fourier():
    with pytest.raises(ConfigurationError):
        fourier_kinetic_diagonal(build_axis_operators((4, 5), BasisKind.FOURIER, 10.0))
    with pytest.raises(ConfigurationError):
        fourier_kinetic_diagonal(build_axis_operators((4, 5, 6), BasisKind.SINE, 10.0))


@pytest.mark.operator
@pytest.mark.quick
def test_fourier_grid_frequencies():
    x, e, dx, _ = fourier_grid(8, 0.0, 8.0)
    assert np.isclose(dx, 1.0)
    assert np.allclose(x, np.arange(8.0))
    assert np.isclose(e[0], 0.0)
    assert np.isclose(e[1], e[-1])
