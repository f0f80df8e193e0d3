from __future__ import annotations

from dataclasses import dataclass

import numpy as np

__all__ = [
    "GridParameters",
    "compute_grid_parameters",
    "ravel_index",
    "unravel_index",
    "grid_points",
    "volume_element",
]


@dataclass(frozen=True)
class GridParameters:
    r"""可分离多维网格的几何参数。

    线性网格索引与多重索引之间的关系（列主序，第 0 轴最快）：

    .. math::
        i_{gp} = \sum_{d=0}^{D-1} i_d\,s_d,\qquad s_0 = 1,\ s_d = \prod_{k<d} n_k.

    Attributes
    ----------
    npts : tuple[int, ...]
        各轴网格点数 :math:`n_d`。
    strides : tuple[int, ...]
        各轴步幅 :math:`s_d`，严格递增（当各轴 :math:`n_d \ge 2` 时）。
    size : int
        总网格点数 :math:`N=\prod_d n_d`。
    max_axis : int
        最大单轴点数 :math:`\max_d n_d`。
    """

    npts: tuple[int, ...]
    strides: tuple[int, ...]
    size: int
    max_axis: int

    @property
    def ndim(self) -> int:
        return len(self.npts)

    @property
    def shape(self) -> tuple[int, ...]:
        """与列主序展平一致的 ``numpy`` 形状（配合 ``order="F"`` 使用）。"""
        return self.npts


def compute_grid_parameters(npts, verbose: int = 0) -> GridParameters:
    r"""由各轴点数计算总点数、最大轴长与步幅。

    Parameters
    ----------
    npts : sequence of int
        各轴网格点数，要求每个 :math:`n_d \ge 1`。
    verbose : int, optional
        输出级别；``> 0`` 打印网格定义，``> 2`` 额外打印步幅。

    Returns
    -------
    GridParameters
        网格几何参数。
    """
    counts = tuple(int(n) for n in npts)
    if len(counts) == 0:
        raise ValueError("至少需要一个坐标轴")
    if any(n < 1 for n in counts):
        raise ValueError(f"每个轴的网格点数必须 >= 1，当前为 {counts}")

    strides = [1]
    for n in counts[:-1]:
        strides.append(strides[-1] * n)
    size = strides[-1] * counts[-1]

    grid = GridParameters(npts=counts, strides=tuple(strides), size=size, max_axis=max(counts))

    if verbose > 0:
        print("\nDefinition of the Grid:")
        print("  No of grid points for each dimension: " + " ".join(str(n) for n in counts))
        print(f"  Total no of grid points : {size}")
        if verbose > 2:
            print("  Strides for each dimension: " + " ".join(str(s) for s in strides))
    return grid


def ravel_index(multi_index, strides):
    """多重索引 → 线性索引（支持数组广播）。"""
    idx = np.asarray(multi_index)
    s = np.asarray(strides)
    if idx.shape[-1] != s.size:
        raise ValueError("多重索引的维数与步幅不一致")
    out = np.tensordot(idx, s, axes=([-1], [0]))
    if np.ndim(out) == 0:
        return int(out)
    return out


def unravel_index(igp, npts):
    """线性索引 → 多重索引（列主序，第 0 轴最快）。

    标量输入返回 ``tuple[int, ...]``，数组输入返回形状 ``(..., D)`` 的整数数组。
    """
    counts = tuple(int(n) for n in npts)
    total = int(np.prod(counts))
    arr = np.asarray(igp)
    if np.any(arr < 0) or np.any(arr >= total):
        raise ValueError(f"线性索引越界：要求 0 <= igp < {total}")
    parts = np.unravel_index(arr, counts, order="F")
    if arr.ndim == 0:
        return tuple(int(p) for p in parts)
    return np.stack(parts, axis=-1)


def grid_points(axes) -> np.ndarray:
    r"""按线性索引顺序列出全部网格点坐标。

    Parameters
    ----------
    axes : sequence
        各轴的横坐标数组，或带 ``x`` 属性的轴算子对象。

    Returns
    -------
    q : numpy.ndarray
        形状 :math:`(N, D)`，第 ``igp`` 行为网格点 :math:`(x_{i_0}, \dots, x_{i_{D-1}})`。
    """
    xs = [np.asarray(getattr(a, "x", a), dtype=float) for a in axes]
    mesh = np.meshgrid(*xs, indexing="ij")
    return np.stack([m.ravel(order="F") for m in mesh], axis=-1)


def volume_element(axes) -> float:
    r"""等间距网格上的体积元 :math:`\mathrm{d}V=\prod_d (x_{\max}-x_{\min})/(n_d-1)`。

    DVR 波函数在格点上的值已经包含体积元，乘以 :math:`1/\sqrt{\mathrm{d}V}`
    即得到以 :math:`\text{Bohr}^{-3/2}` 为单位的波函数。
    """
    dv = 1.0
    for a in axes:
        x = np.asarray(getattr(a, "x", a), dtype=float)
        if x.size < 2:
            raise ValueError("体积元要求每个轴至少 2 个网格点")
        dv *= (x[-1] - x[0]) / (x.size - 1)
    return float(dv)
