from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from joblib import Parallel, delayed

from .errors import ConfigurationError
from .grid import GridParameters, compute_grid_parameters, grid_points
from .sampling import partition

r"""概率密度加权的位点梯度累加。

.. math::
    G_j = \sum_{g} \psi(g)^2\,\frac{\partial V(\mathbf r_g)}{\partial \mathbf R_j}.

每个工作者拥有按完整输出尺寸分配的私有缓冲（梯度、电场、场梯度、偶极、偶极-偶极），
由 :class:`WorkerBufferPool` 在创建时一次性分配，并显式传入每个并行区。并行区结束后
对各工作者缓冲做串行归约，最后扣除位点-位点梯度并并入极化梯度。
"""

__all__ = ["WorkerBufferPool", "GradientResult", "accumulate_gradient"]


class WorkerBufferPool:
    """按工作者编号索引的私有累加缓冲池。

    Parameters
    ----------
    n_workers : int
        工作者数。
    n_sites : int
        梯度位点数。
    n_dipole_sites : int
        偶极位点数。
    """

    def __init__(self, n_workers: int, n_sites: int, n_dipole_sites: int = 0):
        if n_workers < 1:
            raise ValueError("n_workers 必须 >= 1")
        self.n_workers = int(n_workers)
        self.n_sites = int(n_sites)
        self.n_dipole_sites = int(n_dipole_sites)
        w, ns, nd = self.n_workers, self.n_sites, self.n_dipole_sites
        self.gradient = np.zeros((w, ns, 3))
        self.scratch = np.zeros((w, ns, 3))
        self.efield = np.zeros((w, nd, 3))
        self.field_gradient = np.zeros((w, nd, 3, 3))
        self.dipole = np.zeros((w, nd, 3))
        self.dipole_dipole = np.zeros((w, nd, 3, 3))

    def fits(self, n_workers: int, n_sites: int, n_dipole_sites: int) -> bool:
        return (
            self.n_workers >= n_workers
            and self.n_sites == n_sites
            and self.n_dipole_sites == n_dipole_sites
        )

    def reset(self, worker: int) -> None:
        """清零第 ``worker`` 个工作者的全部缓冲。"""
        for buf in (self.gradient, self.scratch, self.efield, self.field_gradient, self.dipole, self.dipole_dipole):
            buf[worker].fill(0.0)


@dataclass
class GradientResult:
    """梯度累加结果。

    Attributes
    ----------
    gradient : numpy.ndarray
        形状 ``(n_sites, 3)``。
    efield : numpy.ndarray
        形状 ``(n_dipole_sites, 3)``，电子在偶极位点处产生的电场。
    field_gradient : numpy.ndarray
        形状 ``(n_dipole_sites, 3, 3)``。
    """

    gradient: np.ndarray
    efield: np.ndarray
    field_gradient: np.ndarray


def _accumulate_chunk(potential, points, psi, lo, hi, pool, worker):
    pool.reset(worker)
    local = potential.clone()
    grad = pool.gradient[worker]
    tgrad = pool.scratch[worker]
    dipole = pool.dipole[worker]
    dipole_dipole = pool.dipole_dipole[worker]
    for igp in range(lo, hi):
        tgrad.fill(0.0)
        w = psi[igp]
        local.evaluate_gradient(points[igp], tgrad, dipole, dipole_dipole, w)
        grad += (w * w) * tgrad
    local.final_gradient(grad, dipole, dipole_dipole, pool.field_gradient[worker], pool.efield[worker])


def accumulate_gradient(
    potential,
    axes,
    grid: GridParameters | None,
    psi: np.ndarray,
    pol_grad: np.ndarray | None = None,
    n_workers: int = 1,
    pool: WorkerBufferPool | None = None,
) -> GradientResult:
    """对给定波函数计算密度加权的位点梯度。

    Parameters
    ----------
    potential : Potential
        势能求值器；每个工作者使用私有副本。
    axes : sequence of AxisOperator
        三维网格的各轴算子。
    grid : GridParameters or None
        网格几何。
    psi : numpy.ndarray
        长度 :math:`N` 的（归一化）波函数。
    pol_grad : numpy.ndarray, optional
        外部极化梯度，形状 ``(n_sites, 3)``。
    n_workers : int
        并行工作者数。
    pool : WorkerBufferPool, optional
        复用的缓冲池；缺省时按需新建。

    Returns
    -------
    GradientResult
    """
    if grid is None:
        grid = compute_grid_parameters([ax.n for ax in axes])
    if grid.ndim != 3:
        raise ConfigurationError("梯度累加仅支持三维网格")
    psi = np.asarray(psi, dtype=float)
    if psi.shape != (grid.size,):
        raise ConfigurationError(f"波函数长度 {psi.size} 与网格总点数 {grid.size} 不符")

    ns, nd = potential.n_sites, potential.n_dipole_sites
    if pool is None:
        pool = WorkerBufferPool(n_workers, ns, nd)
    elif not pool.fits(n_workers, ns, nd):
        raise ConfigurationError("缓冲池尺寸与工作者数或位点数不匹配")

    points = grid_points(axes)
    chunks = partition(grid.size, n_workers)
    Parallel(n_jobs=n_workers, prefer="threads", require="sharedmem")(
        delayed(_accumulate_chunk)(potential, points, psi, lo, hi, pool, w)
        for w, (lo, hi) in enumerate(chunks)
    )

    # 串行归约
    used = len(chunks)
    gradient = pool.gradient[:used].sum(axis=0)
    efield = pool.efield[:used].sum(axis=0)
    field_gradient = pool.field_gradient[:used].sum(axis=0)

    potential.subtract_pair_gradient(pol_grad, gradient)
    return GradientResult(gradient=gradient, efield=efield, field_gradient=field_gradient)
