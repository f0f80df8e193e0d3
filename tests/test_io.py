import json

import numpy as np
import pytest

from edvr import DVR, BasisKind, ConfigurationError, HarmonicPotential, SolverRequest
from edvr.constants import ANGSTROM_TO_BOHR
from edvr.io import (
    export_energies_json,
    write_cube_file,
    write_one_d_cuts,
    write_potential_cuts,
    write_wavefunction_cuts,
)


@pytest.fixture(scope="module")
def solved():
    dvr = DVR(npts=(5, 6, 7), basis=BasisKind.SINE, grid_params=(6.0, 7.0, 8.0), seed=3)
    dvr.compute_potential(HarmonicPotential([1.0, 1.2, 1.4]))
    dvr.diagonalize(SolverRequest(n_states=2))
    return dvr


def _numbers(path):
    return np.array([float(t) for t in path.read_text().split()])


@pytest.mark.io
@pytest.mark.quick
def test_gaussian_cube_layout(solved, tmp_path):
    p = write_cube_file(solved, 1, tmp_path / "wf1.cube", atomic_numbers=[8, 1], positions=[[0, 0, 0], [0.9, 0, 0]])
    lines = p.read_text().splitlines()
    assert lines[0].strip() == "5 0"
    assert lines[2].split()[0] == "-2"
    assert [int(lines[k].split()[0]) for k in (3, 4, 5)] == [5, 6, 7]
    o = lines[6].split()
    assert o[0] == "8" and float(o[1]) == pytest.approx(1.52 * ANGSTROM_TO_BOHR, abs=1e-6)
    assert float(lines[7].split()[2]) == pytest.approx(0.9 * ANGSTROM_TO_BOHR, abs=1e-6)
    assert lines[8].split() == ["1", "1"]
    data = np.array([float(t) for line in lines[9:] for t in line.split()])
    assert data.size == 5 * 6 * 7
    # 每条 z 线 7 个值：一行 6 个加一行 1 个
    assert len(lines[9].split()) == 6 and len(lines[10].split()) == 1
    cube = solved.wavefunction_cube(1)
    assert np.allclose(data, cube.ravel(order="C"), atol=1e-6)


@pytest.mark.io
@pytest.mark.quick
def test_gopenmol_cube_layout(solved, tmp_path):
    p = write_cube_file(solved, 2, tmp_path / "wf2.plt", fmt="gopenmol")
    lines = p.read_text().splitlines()
    assert lines[0] == "3 3"
    assert lines[1].split() == ["7", "6", "5"]
    values = np.array([float(v) for v in lines[3:]])
    assert np.allclose(values, solved.wavefunction_cube(2).ravel(order="F"), atol=1e-6)


@pytest.mark.io
@pytest.mark.quick
def test_cube_rejects_unconverged_state_and_bad_format(solved, tmp_path):
    with pytest.raises(ValueError):
        write_cube_file(solved, 3, tmp_path / "x.cube")
    with pytest.raises(ConfigurationError):
        write_cube_file(solved, 1, tmp_path / "x.cube", fmt="xyz")


@pytest.mark.io
@pytest.mark.quick
def test_potential_and_wavefunction_cuts(solved, tmp_path):
    pot_paths = write_potential_cuts(solved, tmp_path)
    assert sorted(p.name for p in pot_paths) == ["POTENTIAL.XY", "POTENTIAL.XZ", "POTENTIAL.YZ"]
    xy = _numbers(tmp_path / "POTENTIAL.XY").reshape(-1, 3)
    assert xy.shape == (5 * 6, 3)
    vcube = solved.v_diag.reshape((5, 6, 7), order="F")
    assert np.allclose(xy[:5, 2], vcube[:, 0, 3], atol=1e-6)
    yz = _numbers(tmp_path / "POTENTIAL.YZ").reshape(-1, 3)
    assert np.allclose(yz[:7, 0], solved.axes[1].x[0])
    assert np.allclose(yz[:7, 1], solved.axes[2].x, atol=1e-6)

    wf_paths = write_wavefunction_cuts(solved, tmp_path)
    assert len(wf_paths) == 6
    assert (tmp_path / "WaveFn02.XZ").exists()


@pytest.mark.io
@pytest.mark.quick
def test_one_d_cuts(solved, tmp_path):
    paths = write_one_d_cuts(solved, tmp_path)
    assert [p.name for p in paths] == ["POTENTIAL.X", "WaveFn01.X", "WaveFn02.X"]
    rows = _numbers(tmp_path / "WaveFn01.X").reshape(-1, 4)
    assert rows.shape == (5, 4)
    assert np.allclose(rows[:, 3], solved.wavefunction_cube(1)[:, 3, 3], atol=1e-6)


@pytest.mark.io
@pytest.mark.quick
def test_export_energies_json(solved, tmp_path):
    p = tmp_path / "out" / "energies.json"
    export_energies_json(p, {"energies": solved.energies[:2], "n_converged": solved.n_converged})
    data = json.loads(p.read_text(encoding="utf-8"))
    assert data["n_converged"] == 2
    assert np.allclose(data["energies"], solved.energies[:2])


@pytest.mark.io
@pytest.mark.quick
def test_cuts_require_3d(tmp_path):
    dvr = DVR(npts=(4, 4), grid_params=5.0)
    with pytest.raises(ConfigurationError):
        write_potential_cuts(dvr, tmp_path)
