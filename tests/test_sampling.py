import numpy as np
import pytest

from edvr.basis import BasisKind, build_axis_operators
from edvr.errors import ConfigurationError
from edvr.grid import compute_grid_parameters, grid_points, unravel_index
from edvr.potential import ConstantPotential, HarmonicPotential, SoftCoulombSites
from edvr.sampling import (
    SamplingPolicy,
    partition,
    sample_potential,
    sampling_offsets,
    smooth_potential,
    stencil_weights,
)


@pytest.fixture
def sine_axes():
    return build_axis_operators((6, 7, 8), BasisKind.SINE, (8.0, 9.0, 10.0))


@pytest.mark.sampling
@pytest.mark.quick
@pytest.mark.parametrize("n_workers", [1, 2, 3, 7])
def test_point_sampling_constant_exact(sine_axes, n_workers):
    v = sample_potential(ConstantPotential(-0.123), sine_axes, sampling=1, n_workers=n_workers)
    assert v.shape == (6 * 7 * 8,)
    assert np.all(v == -0.123)


@pytest.mark.sampling
@pytest.mark.quick
@pytest.mark.parametrize("sampling", [2, 3, 4, 5, 6, 9])
@pytest.mark.parametrize("n_workers", [1, 4])
def test_multi_point_policies_reproduce_constant(sine_axes, sampling, n_workers):
    c = 0.37
    v = sample_potential(ConstantPotential(c), sine_axes, sampling=sampling, n_workers=n_workers)
    assert np.allclose(v, c, rtol=1e-14, atol=0.0)


@pytest.mark.sampling
@pytest.mark.quick
def test_sampling_codes():
    assert SamplingPolicy.from_code(1) is SamplingPolicy.POINT
    assert SamplingPolicy.from_code(4) is SamplingPolicy.SIX_POINT
    assert SamplingPolicy.from_code(5) is SamplingPolicy.STENCIL
    assert SamplingPolicy.from_code(12) is SamplingPolicy.STENCIL
    with pytest.raises(ConfigurationError):
        SamplingPolicy.from_code(0)


@pytest.mark.sampling
@pytest.mark.quick
def test_offset_sets():
    axes = build_axis_operators((5, 5, 5), BasisKind.SINE, 6.0)
    h = axes[0].step
    octant = sampling_offsets(SamplingPolicy.OCTANT, axes)
    assert octant.shape == (8, 3)
    assert np.allclose(np.abs(octant), 0.25 * h)
    cube = sampling_offsets(SamplingPolicy.CUBE27, axes)
    assert cube.shape == (27, 3)
    assert len({tuple(np.round(o / (h / 3.0)).astype(int)) for o in cube}) == 27
    six = sampling_offsets(SamplingPolicy.SIX_POINT, axes)
    assert six.shape == (6, 3)
    assert np.allclose(np.linalg.norm(six, axis=1), 0.2)


@pytest.mark.sampling
@pytest.mark.quick
def test_worker_count_does_not_change_result(sine_axes):
    pot = SoftCoulombSites([[0.5, -0.2, 0.1], [-1.0, 0.8, 0.3]], [0.6, 0.4], softening=0.8, repulsion=0.3)
    ref = sample_potential(pot, sine_axes, sampling=3, n_workers=1)
    for nw in (2, 5):
        assert np.array_equal(sample_potential(pot, sine_axes, sampling=3, n_workers=nw), ref)


@pytest.mark.sampling
@pytest.mark.quick
def test_point_sampling_matches_direct_evaluation(sine_axes):
    pot = HarmonicPotential([0.5, 0.7, 0.9])
    v = sample_potential(pot, sine_axes, sampling=1, n_workers=2)
    q = grid_points(sine_axes)
    assert np.allclose(v, [pot.evaluate(p) for p in q])


@pytest.mark.sampling
@pytest.mark.quick
def test_six_point_average_of_quadratic():
    # 二次势的 6 点平均 = 中心值 + (1/3) * 0.5 * sum(w^2) * 0.2^2
    axes = build_axis_operators((4, 4, 4), BasisKind.SINE, 5.0)
    w = np.array([1.0, 2.0, 3.0])
    pot = HarmonicPotential(w)
    v1 = sample_potential(pot, axes, sampling=1)
    v4 = sample_potential(pot, axes, sampling=4)
    assert np.allclose(v4 - v1, 0.5 * np.sum(w**2) * 0.04 / 3.0)


@pytest.mark.sampling
@pytest.mark.quick
def test_multi_point_requires_3d():
    axes = build_axis_operators((5, 5), BasisKind.SINE, 6.0)
    with pytest.raises(ConfigurationError):
        sample_potential(ConstantPotential(1.0), axes, sampling=4)
    v = sample_potential(ConstantPotential(1.0), axes, sampling=1)
    assert np.all(v == 1.0)


@pytest.mark.sampling
@pytest.mark.quick
@pytest.mark.parametrize("sampling", [2, 3])
def test_octant_and_cube_require_equidistant_grid(sampling):
    axes = build_axis_operators((4, 4, 4), BasisKind.HARMONIC, 1.0)
    with pytest.raises(ConfigurationError):
        sample_potential(ConstantPotential(0.0), axes, sampling=sampling)


@pytest.mark.sampling
@pytest.mark.quick
def test_stencil_weights_sum_to_one():
    for q in (5, 6, 10):
        wf, we, wc, ws = stencil_weights(q)
        assert np.isclose(ws * (1.0 + 6 * wf + 12 * we + 8 * wc), 1.0, rtol=1e-15)


@pytest.mark.sampling
@pytest.mark.quick
def test_smoothing_leaves_boundary_untouched():
    npts = (5, 6, 7)
    grid = compute_grid_parameters(npts)
    rng = np.random.default_rng(11)
    v = rng.normal(size=grid.size)
    before = v.copy()
    out = smooth_potential(v, npts, 5)
    assert np.array_equal(v, before)
    idx = unravel_index(np.arange(grid.size), npts)
    boundary = np.any((idx == 0) | (idx == np.array(npts) - 1), axis=1)
    assert np.array_equal(out[boundary], before[boundary])
    assert not np.allclose(out[~boundary], before[~boundary])


@pytest.mark.sampling
@pytest.mark.quick
def test_smoothing_uses_all_twelve_edges():
    # 单位脉冲：内部点 (2,2,2) 的 26 个邻居都在内部，各自恰好接收一份权重
    npts = (5, 5, 5)
    grid = compute_grid_parameters(npts)
    v = np.zeros(grid.size)
    center = 2 + 5 * (2 + 5 * 2)
    v[center] = 1.0
    q = 5
    wf, we, wc, ws = stencil_weights(q)
    out = smooth_potential(v, npts, q).reshape(npts, order="F")
    assert np.isclose(out[2, 2, 2], ws)
    for shift in [(1, 1, 0), (-1, 1, 0), (1, 0, 1), (1, 0, -1), (-1, 0, 1), (0, 1, -1), (0, -1, 1)]:
        i, j, k = 2 + np.array(shift)
        assert np.isclose(out[i, j, k], ws * we)
    assert np.isclose(out[3, 2, 2], ws * wf)
    assert np.isclose(out[1, 3, 1], ws * wc)


@pytest.mark.sampling
@pytest.mark.quick
def test_partition_is_disjoint_and_covering():
    for size, nw in [(10, 3), (7, 7), (3, 8), (100, 1)]:
        chunks = partition(size, nw)
        covered = np.concatenate([np.arange(lo, hi) for lo, hi in chunks])
        assert np.array_equal(covered, np.arange(size))
