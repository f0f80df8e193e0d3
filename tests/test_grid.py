import numpy as np
import pytest

from edvr.grid import compute_grid_parameters, grid_points, ravel_index, unravel_index, volume_element


@pytest.mark.grid
@pytest.mark.quick
@pytest.mark.parametrize("npts", [(1,), (7,), (3, 4), (2, 3, 5), (4, 1, 6), (2, 2, 2, 3)])
def test_strides_and_size(npts):
    g = compute_grid_parameters(npts)
    assert g.strides[0] == 1
    assert g.size == int(np.prod(npts))
    assert g.max_axis == max(npts)
    for d in range(1, len(npts)):
        assert g.strides[d] == g.strides[d - 1] * npts[d - 1]


@pytest.mark.grid
@pytest.mark.quick
def test_strides_strictly_increasing():
    g = compute_grid_parameters((3, 4, 5))
    assert np.all(np.diff(g.strides) > 0)


@pytest.mark.grid
@pytest.mark.quick
@pytest.mark.parametrize("npts", [(5,), (3, 4), (2, 3, 5)])
def test_linear_index_round_trip(npts):
    g = compute_grid_parameters(npts)
    igp = np.arange(g.size)
    multi = unravel_index(igp, npts)
    assert multi.shape == (g.size, len(npts))
    assert np.array_equal(ravel_index(multi, g.strides), igp)
    # 多重索引互不相同
    assert len({tuple(m) for m in multi}) == g.size


@pytest.mark.grid
@pytest.mark.quick
def test_axis_zero_is_fastest():
    npts = (2, 3, 4)
    assert unravel_index(1, npts) == (1, 0, 0)
    assert unravel_index(2, npts) == (0, 1, 0)
    assert unravel_index(6, npts) == (0, 0, 1)
    g = compute_grid_parameters(npts)
    assert ravel_index((1, 2, 3), g.strides) == 1 + 2 * 2 + 3 * 6


@pytest.mark.grid
@pytest.mark.quick
def test_invalid_counts_raise():
    with pytest.raises(ValueError):
        compute_grid_parameters(())
    with pytest.raises(ValueError):
        compute_grid_parameters((3, 0, 2))
    with pytest.raises(ValueError):
        unravel_index(24, (2, 3, 4))


@pytest.mark.grid
@pytest.mark.quick
def test_grid_points_follow_linear_order():
    xs = [np.array([0.0, 1.0]), np.array([10.0, 20.0, 30.0]), np.array([-1.0, 1.0])]
    q = grid_points(xs)
    g = compute_grid_parameters((2, 3, 2))
    assert q.shape == (12, 3)
    for igp in range(g.size):
        i, j, k = unravel_index(igp, g.npts)
        assert np.array_equal(q[igp], [xs[0][i], xs[1][j], xs[2][k]])


@pytest.mark.grid
@pytest.mark.quick
def test_volume_element():
    xs = [np.linspace(0.0, 2.0, 5), np.linspace(-1.0, 1.0, 3), np.linspace(0.0, 3.0, 4)]
    assert np.isclose(volume_element(xs), 0.5 * 1.0 * 1.0)


@pytest.mark.grid
@pytest.mark.quick
def test_verbose_prints_grid_definition(capsys):
    compute_grid_parameters((2, 3, 4), verbose=3)
    out = capsys.readouterr().out
    assert "Total no of grid points : 24" in out
    assert "Strides for each dimension: 1 2 6" in out
