from __future__ import annotations

from enum import Enum
from itertools import product

import numpy as np
from joblib import Parallel, delayed

from .constants import SIX_POINT_OFFSET
from .errors import ConfigurationError
from .grid import GridParameters, compute_grid_parameters, grid_points

"""势能在网格上的采样与平滑。

五种策略（``sampling`` 代码）：

=====  =============  ==============================================
代码    策略            说明
=====  =============  ==============================================
1      POINT          每个格点求值一次
2      OCTANT         ±¼ 步长的 8 个卦限点平均（仅等间距三维网格）
3      CUBE27         ±⅓ 步长的 27 点平均（仅等间距三维网格）
4      SIX_POINT      沿各轴 ±0.2 Bohr 的 6 点平均（三维任意网格）
≥5     STENCIL        先逐点采样，再以阶数 q 的 27 点模板平滑内部格点
=====  =============  ==============================================

所有策略对格点都是完全数据并行的：网格被划分为互不相交的连续块，每个工作者持有
求值器的私有副本并只写入自己的块，因此结果与工作者数目无关。
"""

__all__ = [
    "SamplingPolicy",
    "sampling_offsets",
    "stencil_weights",
    "sample_potential",
    "smooth_potential",
    "partition",
]


class SamplingPolicy(Enum):
    POINT = 1
    OCTANT = 2
    CUBE27 = 3
    SIX_POINT = 4
    STENCIL = 5

    @classmethod
    def from_code(cls, code) -> "SamplingPolicy":
        """整数代码 → 策略；任何 ``>= 5`` 的代码都是 STENCIL。"""
        if isinstance(code, cls):
            return code
        try:
            value = int(code)
        except (TypeError, ValueError):
            raise ConfigurationError(f"非法的采样代码: {code!r}") from None
        if value < 1:
            raise ConfigurationError(f"采样代码必须 >= 1，当前为 {value}")
        return cls.STENCIL if value >= 5 else cls(value)


def partition(size: int, n_workers: int) -> list[tuple[int, int]]:
    """把 ``[0, size)`` 划分为至多 ``n_workers`` 个互不相交的连续区间。"""
    if n_workers < 1:
        raise ValueError("n_workers 必须 >= 1")
    bounds = np.linspace(0, size, min(n_workers, max(size, 1)) + 1).astype(int)
    return [(int(lo), int(hi)) for lo, hi in zip(bounds[:-1], bounds[1:])]


def sampling_offsets(policy: SamplingPolicy, axes) -> np.ndarray:
    r"""给定策略下相对格点中心的位移集合，形状 ``(n_offsets, D)``。

    - OCTANT：:math:`(\pm\tfrac14 h_x, \pm\tfrac14 h_y, \pm\tfrac14 h_z)`；
    - CUBE27：:math:`\{-1,0,1\}^3 \cdot h/3`（中心、6 面、12 棱、8 角）；
    - SIX_POINT：沿各轴 :math:`\pm 0.2` Bohr，不含中心。
    """
    ndim = len(axes)
    if policy in (SamplingPolicy.POINT, SamplingPolicy.STENCIL):
        return np.zeros((1, ndim))
    if policy is SamplingPolicy.SIX_POINT:
        eye = np.eye(ndim)
        return SIX_POINT_OFFSET * np.concatenate([eye, -eye])
    steps = np.array([ax.step for ax in axes], dtype=float)
    if policy is SamplingPolicy.OCTANT:
        signs = np.array(list(product((1.0, -1.0), repeat=ndim)))
        return signs * (0.25 * steps)
    signs = np.array(list(product((-1.0, 0.0, 1.0), repeat=ndim)))
    return signs * (steps / 3.0)


def stencil_weights(q: float) -> tuple[float, float, float, float]:
    r"""平滑模板权重 ``(w_face, w_edge, w_corner, w_sum)``。

    .. math::
        w_f = 1/q,\quad w_e = w_f/q,\quad w_c = w_e/q,\quad
        w_{\text{sum}} = \frac{q^3}{q^3 + 6q^2 + 12q + 8},

    自身权重为 1，最后整体乘以 :math:`w_{\text{sum}}`，权重之和恰为 1。
    """
    q = float(q)
    if q <= 0:
        raise ConfigurationError(f"平滑阶数必须为正，当前为 {q}")
    w_face = 1.0 / q
    w_edge = w_face / q
    w_corner = w_edge / q
    w_sum = q**3 / (q**3 + 6.0 * q**2 + 12.0 * q + 8.0)
    return w_face, w_edge, w_corner, w_sum


def smooth_potential(v: np.ndarray, npts, q: float) -> np.ndarray:
    r"""以阶数 ``q`` 的 27 点模板平滑三维网格上的势能。

    只处理内部格点（所有轴索引都在 ``1..n-2``），边界层保持不变。所有邻居值都从
    平滑前的冻结副本读取；邻居按其偏移中非零分量的个数 :math:`k` 取权 :math:`q^{-k}`，
    即 6 个面邻居、12 个互不相同的棱邻居与 8 个角邻居。

    Returns
    -------
    numpy.ndarray
        新的长度 :math:`N` 数组，输入不被修改。
    """
    counts = tuple(int(n) for n in npts)
    if len(counts) != 3:
        raise ConfigurationError("模板平滑仅支持三维网格")
    _, _, _, w_sum = stencil_weights(q)
    frozen = np.array(v, dtype=float, copy=True).reshape(counts, order="F")
    out = frozen.copy()
    if min(counts) < 3:
        return out.ravel(order="F")

    acc = frozen[1:-1, 1:-1, 1:-1].copy()
    for shift in product((-1, 0, 1), repeat=3):
        k = sum(abs(s) for s in shift)
        if k == 0:
            continue
        window = tuple(slice(1 + s, n - 1 + s) for s, n in zip(shift, counts))
        acc += float(q) ** (-k) * frozen[window]
    out[1:-1, 1:-1, 1:-1] = w_sum * acc
    return out.ravel(order="F")


def _sample_chunk(potential, points, offsets, lo, hi, out):
    local = potential.clone()
    scale = 1.0 / offsets.shape[0]
    for igp in range(lo, hi):
        acc = 0.0
        for off in offsets:
            acc += local.evaluate(points[igp] + off)
        out[igp] = scale * acc


def _resolve(sampling) -> tuple[SamplingPolicy, int]:
    policy = SamplingPolicy.from_code(sampling)
    if policy is SamplingPolicy.STENCIL and not isinstance(sampling, SamplingPolicy):
        return policy, int(sampling)
    return policy, policy.value


def sample_potential(
    potential,
    axes,
    grid: GridParameters | None = None,
    sampling=1,
    n_workers: int = 1,
    verbose: int = 0,
) -> np.ndarray:
    """按采样策略计算势能对角 :math:`V_g`。

    Parameters
    ----------
    potential : Potential
        势能求值器，每个工作者使用 ``potential.clone()``。
    axes : sequence of AxisOperator
        各轴算子（提供格点与步长）。
    grid : GridParameters, optional
        网格几何；缺省由 ``axes`` 推导。
    sampling : int | SamplingPolicy
        采样代码，见模块说明。
    n_workers : int
        并行工作者（线程）数。

    Returns
    -------
    numpy.ndarray
        长度 :math:`N` 的势能对角。

    Raises
    ------
    ConfigurationError
        多点策略用于非三维网格，或 8/27 点策略用于非等间距网格。
    """
    if grid is None:
        grid = compute_grid_parameters([ax.n for ax in axes])
    policy, order = _resolve(sampling)
    if policy is not SamplingPolicy.POINT and grid.ndim != 3:
        raise ConfigurationError(f"采样策略 {policy.name} 仅支持三维网格")
    if policy in (SamplingPolicy.OCTANT, SamplingPolicy.CUBE27) and not all(ax.is_equidistant for ax in axes):
        raise ConfigurationError(f"采样策略 {policy.name} 要求等间距网格")

    points = grid_points(axes)
    offsets = sampling_offsets(policy, axes)
    v_diag = np.empty(grid.size)
    Parallel(n_jobs=n_workers, prefer="threads", require="sharedmem")(
        delayed(_sample_chunk)(potential, points, offsets, lo, hi, v_diag)
        for lo, hi in partition(grid.size, n_workers)
    )

    if policy is SamplingPolicy.STENCIL:
        v_diag = smooth_potential(v_diag, grid.npts, order)

    if verbose > 0:
        print(f"  Potential sampling {policy.name} (code {order}): min = {v_diag.min():.6f}  max = {v_diag.max():.6f}")
    return v_diag
