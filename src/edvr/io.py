from __future__ import annotations

import json
from pathlib import Path
from typing import List, Sequence

import numpy as np

from .constants import ANGSTROM_TO_BOHR, BOHR_TO_ANGSTROM, VDW_RADII_ANGSTROM
from .errors import ConfigurationError
from .grid import volume_element

__all__ = [
    "write_cube_file",
    "write_potential_cuts",
    "write_wavefunction_cuts",
    "write_one_d_cuts",
    "export_energies_json",
]


def _require_3d(dvr, what: str) -> None:
    if dvr.grid.ndim != 3:
        raise ConfigurationError(f"{what} 仅支持三维网格")


def write_cube_file(
    dvr,
    iwf: int,
    out_path: str | Path,
    atomic_numbers: Sequence[int] = (),
    positions=None,
    fmt: str = "gaussian",
) -> Path:
    r"""把第 ``iwf`` 个态（从 1 开始）写成体数据文件。

    波函数乘以 :math:`1/\sqrt{\mathrm dV}`，单位为 :math:`\text{Bohr}^{-3/2}`。

    Parameters
    ----------
    dvr : DVR
        已完成对角化的求解器。
    iwf : int
        态编号（1 起）。
    out_path : str | Path
        输出文件路径。
    atomic_numbers : sequence of int
        原子序数（仅 Gaussian 格式写入原子列表）。
    positions : array_like, shape (n_atoms, 3), optional
        原子坐标（Å）。
    fmt : {"gaussian", "gopenmol"}
        ``"gaussian"``：两行注释 + 负原子数头部，每行 6 个值；
        ``"gopenmol"``：gOpenMol 纯文本格式，坐标范围以 Å 给出。
    """
    _require_3d(dvr, "cube 文件输出")
    cube = dvr.wavefunction_cube(iwf)
    nx, ny, nz = dvr.grid.npts
    xg, yg, zg = (ax.x for ax in dvr.axes)
    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)

    fmt = fmt.lower()
    if fmt not in ("gaussian", "gopenmol"):
        raise ConfigurationError(f"未知的 cube 文件格式: {fmt!r}")
    if dvr.verbose > 2:
        print(f"Writing cube-file {p} for wavefunction {iwf}")

    with p.open("w", encoding="utf-8") as f:
        if fmt == "gopenmol":
            f.write(f"3 3\n{nz} {ny} {nx}\n")
            b2a = BOHR_TO_ANGSTROM
            f.write(
                f"{zg[0] * b2a:13.6e} {zg[-1] * b2a:13.6e}    "
                f"{yg[0] * b2a:13.6e} {yg[-1] * b2a:13.6e}    "
                f"{xg[0] * b2a:13.6e} {xg[-1] * b2a:13.6e}\n"
            )
            # iz 最慢，ix 最快
            for value in cube.ravel(order="F"):
                f.write(f"{value:13.6e}\n")
        else:
            zs = [int(z) for z in atomic_numbers]
            pos = np.zeros((0, 3)) if positions is None else np.asarray(positions, dtype=float).reshape(-1, 3)
            if pos.shape[0] != len(zs):
                raise ValueError("atomic_numbers 与 positions 的原子数不一致")
            dx, dy, dz = xg[1] - xg[0], yg[1] - yg[0], zg[1] - zg[0]
            f.write(" 5 0\n")
            f.write(" 0.01 0.001 0.0001 0.00001 0.000001\n")
            f.write(f"{-len(zs):5d}  {xg[0]:11.6f}  {yg[0]:11.6f}  {zg[0]:11.6f}\n")
            f.write(f"{nx:5d}  {dx:11.6f}  {0.0:11.6f}  {0.0:11.6f}\n")
            f.write(f"{ny:5d}  {0.0:11.6f}  {dy:11.6f}  {0.0:11.6f}\n")
            f.write(f"{nz:5d}  {0.0:11.6f}  {0.0:11.6f}  {dz:11.6f}\n")
            for z, r in zip(zs, pos):
                rvdw = VDW_RADII_ANGSTROM.get(z, 0.0) * ANGSTROM_TO_BOHR
                r = r * ANGSTROM_TO_BOHR
                f.write(f"   {z} {rvdw:11.6f}  {r[0]:11.6f}  {r[1]:11.6f}  {r[2]:11.6f}\n")
            f.write(f"   1  {iwf:5d} \n")
            for ix in range(nx):
                for iy in range(ny):
                    row = cube[ix, iy, :]
                    for start in range(0, nz, 6):
                        f.write(" ".join(f"{v:13.6e}" for v in row[start:start + 6]) + " \n")

    if dvr.verbose > 2:
        print(f"  Int d3r rho(r) = {np.sum(cube * cube) * volume_element(dvr.axes):11.9f}")
    return p


def _write_plane(path: Path, u, v, values, outer_first: bool = False) -> None:
    # 每行 "u v value"，values[i, j] 对应 (u[i], v[j])；一个外层索引一块，块间空行
    with path.open("w", encoding="utf-8") as f:
        if outer_first:
            for i, ui in enumerate(u):
                for j, vj in enumerate(v):
                    f.write(f"{ui:10.7f} {vj:10.7f} {values[i, j]:15.7e}\n")
                f.write("\n")
        else:
            for j, vj in enumerate(v):
                for i, ui in enumerate(u):
                    f.write(f"{ui:10.7f} {vj:10.7f} {values[i, j]:15.7e}\n")
                f.write("\n")


def _planes(dvr, cube) -> dict:
    nx, ny, nz = dvr.grid.npts
    xg, yg, zg = (ax.x for ax in dvr.axes)
    return {
        "XY": (xg, yg, cube[:, :, nz // 2], False),
        "XZ": (xg, zg, cube[:, ny // 2, :], False),
        "YZ": (yg, zg, cube[nx // 2, :, :], True),
    }


def write_potential_cuts(dvr, out_dir: str | Path) -> List[Path]:
    """写出势能沿三个坐标平面（过网格中点）的二维切片 ``POTENTIAL.XY/XZ/YZ``。"""
    _require_3d(dvr, "切片输出")
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    cube = dvr.v_diag.reshape(dvr.grid.npts, order="F")
    paths = []
    for name, (u, v, values, outer_first) in _planes(dvr, cube).items():
        p = out / f"POTENTIAL.{name}"
        _write_plane(p, u, v, values, outer_first)
        paths.append(p)
    if dvr.verbose > 0:
        nx, ny, nz = dvr.grid.npts
        print(f"Cuts through the potential at the grid points x={nx // 2}, y={ny // 2}, z={nz // 2}")
    return paths


def write_wavefunction_cuts(dvr, out_dir: str | Path) -> List[Path]:
    """为每个已收敛态写出 ``WaveFnNN.XY/XZ/YZ`` 切片（乘以 :math:`1/\\sqrt{dV}`）。"""
    _require_3d(dvr, "切片输出")
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    paths = []
    for iwf in range(1, dvr.n_converged + 1):
        cube = dvr.wavefunction_cube(iwf)
        for name, (u, v, values, outer_first) in _planes(dvr, cube).items():
            p = out / f"WaveFn{iwf:02d}.{name}"
            _write_plane(p, u, v, values, outer_first)
            paths.append(p)
    return paths


def write_one_d_cuts(dvr, out_dir: str | Path) -> List[Path]:
    """沿 x 轴（过 y、z 中点）写出势能 ``POTENTIAL.X`` 与各态 ``WaveFnNN.X``。"""
    _require_3d(dvr, "切片输出")
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    nx, ny, nz = dvr.grid.npts
    xg, yg, zg = (ax.x for ax in dvr.axes)
    iy, iz = ny // 2, nz // 2

    p = out / "POTENTIAL.X"
    vcube = dvr.v_diag.reshape(dvr.grid.npts, order="F")
    with p.open("w", encoding="utf-8") as f:
        for ix in range(nx):
            f.write(f"{xg[ix]:10.7f} {vcube[ix, iy, iz]:15.7e}\n")
        f.write("\n")
    paths = [p]

    for iwf in range(1, dvr.n_converged + 1):
        cube = dvr.wavefunction_cube(iwf)
        p = out / f"WaveFn{iwf:02d}.X"
        with p.open("w", encoding="utf-8") as f:
            for ix in range(nx):
                f.write(f"{xg[ix]:10.7f} {yg[iy]:10.7f} {zg[iz]:10.7f}  {cube[ix, iy, iz]:15.7e}\n")
            f.write("\n")
        paths.append(p)
    return paths


def export_energies_json(out_path: str | Path, energies: dict) -> None:
    """导出能级与能量分解为 JSON（``numpy`` 数组转换为列表）。"""
    p = Path(out_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    payload = {k: (np.asarray(v).tolist() if isinstance(v, np.ndarray) else v) for k, v in energies.items()}
    with p.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
