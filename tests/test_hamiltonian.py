import numpy as np
import pytest

from edvr.basis import AxisOperator, BasisKind, build_axis_operators, fourier_kinetic_diagonal, pack_lower
from edvr.grid import compute_grid_parameters, unravel_index
from edvr.hamiltonian import SeparableHamiltonian, assemble_diagonal, axis_permutation, broadcast_add_axis


def _toy_axis(diag_values):
    # 2x2 对称动能矩阵，对角元为给定值
    a0, a1 = diag_values
    T = np.array([[a0, 0.3], [0.3, a1]])
    return AxisOperator(BasisKind.SINE, np.array([-0.5, 0.5]), pack_lower(T), 1.0, None)


@pytest.mark.operator
@pytest.mark.quick
def test_diagonal_assembly_on_2x2x2_grid():
    a, b, c = (1.0, 2.0), (10.0, 20.0), (100.0, 200.0)
    axes = [_toy_axis(a), _toy_axis(b), _toy_axis(c)]
    grid = compute_grid_parameters((2, 2, 2))
    diag = assemble_diagonal(np.zeros(8), axes, grid)
    for igp in range(8):
        i, j, k = unravel_index(igp, grid.npts)
        assert diag[igp] == a[i] + b[j] + c[k]


@pytest.mark.operator
@pytest.mark.quick
def test_broadcast_add_axis_is_pure():
    grid = compute_grid_parameters((2, 3, 4))
    base = np.arange(grid.size, dtype=float)
    before = base.copy()
    out = broadcast_add_axis(base, [1.0, 2.0, 3.0], 1, grid)
    assert np.array_equal(base, before)
    for igp in range(grid.size):
        _, j, _ = unravel_index(igp, grid.npts)
        assert out[igp] == before[igp] + (j + 1)


@pytest.mark.operator
@pytest.mark.quick
def test_axis_permutation():
    assert axis_permutation(0, 3) == (0, 1, 2)
    assert axis_permutation(2, 3) == (2, 0, 1)
    with pytest.raises(ValueError):
        axis_permutation(3, 3)


@pytest.mark.operator
@pytest.mark.quick
def test_broadcast_add_axis_length_mismatch():
    grid = compute_grid_parameters((2, 3))
    with pytest.raises(ValueError):
        broadcast_add_axis(np.zeros(6), [1.0, 2.0], 1, grid)


@pytest.mark.operator
@pytest.mark.quick
@pytest.mark.parametrize("kind", [BasisKind.SINE, BasisKind.COLBERT_MILLER, BasisKind.HARMONIC, BasisKind.FOURIER])
def test_matvec_matches_dense(kind):
    npts = (4, 5, 6)
    params = (1.0, 1.3, 0.8) if kind is BasisKind.HARMONIC else (6.0, 7.0, 8.0)
    axes = build_axis_operators(npts, kind, params)
    rng = np.random.default_rng(3)
    v = rng.uniform(-1.0, 1.0, size=int(np.prod(npts)))
    ham = SeparableHamiltonian(axes, v)
    H = ham.dense()
    assert np.allclose(H, H.T, atol=1e-12)
    assert np.allclose(np.diag(H), ham.diagonal(), atol=1e-12)

    psi = rng.normal(size=ham.shape[0])
    assert np.allclose(ham.matvec(psi), H @ psi, atol=1e-10)
    block = rng.normal(size=(ham.shape[0], 3))
    assert np.allclose(ham.matmat(block), H @ block, atol=1e-10)
    assert np.allclose(ham.as_linear_operator() @ psi, H @ psi, atol=1e-10)


@pytest.mark.operator
@pytest.mark.quick
def test_fourier_matvec_in_two_dimensions_uses_per_axis_fft():
    axes = build_axis_operators((6, 8), BasisKind.FOURIER, 9.0)
    v = np.linspace(0.0, 1.0, 48)
    ham = SeparableHamiltonian(axes, v)
    psi = np.cos(np.arange(48.0))
    assert np.allclose(ham.matvec(psi), ham.dense() @ psi, atol=1e-10)


@pytest.mark.operator
@pytest.mark.quick
def test_hamiltonian_rejects_wrong_potential_length():
    axes = build_axis_operators((3, 3, 3), BasisKind.SINE, 5.0)
    with pytest.raises(ValueError):
        SeparableHamiltonian(axes, np.zeros(26))


@pytest.mark.operator
@pytest.mark.quick
def test_hamiltonian_uses_supplied_fourier_kinetic_diagonal():
    axes = build_axis_operators((4, 5, 6), BasisKind.FOURIER, 7.0)
    v = np.linspace(-1.0, 1.0, 120)
    ke = fourier_kinetic_diagonal(axes)
    psi = np.sin(np.arange(120.0))
    owned = SeparableHamiltonian(axes, v, ke_fft=ke)
    assert np.allclose(owned.matvec(psi), SeparableHamiltonian(axes, v).matvec(psi))
    # 传入的数组被直接使用
    owned_zero = SeparableHamiltonian(axes, v, ke_fft=np.zeros_like(ke))
    assert np.allclose(owned_zero.matvec(psi), v * psi)
    with pytest.raises(ValueError):
        SeparableHamiltonian(axes, v, ke_fft=np.zeros((4, 5)))
