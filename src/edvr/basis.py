from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np
from scipy.linalg import eigh

from .errors import ConfigurationError

"""一维 DVR 基组与各轴算子构造模块。

本模块为可分离网格的每个坐标轴提供格点横坐标与动能算子表示：

1. **HARMONIC**（Gauss–Hermite DVR）
   - 参数：振动频率 :math:`\\omega`
   - 网格：位置算子在谐振子基下的本征值，非等间距
   - 动能：稠密对称矩阵，附带 DVR ↔ FBR 变换矩阵

2. **SINE**（箱中粒子正弦 DVR，默认）
   - 参数：盒长 :math:`L`，区间 :math:`[-L/2, L/2]`，端点不含在网格内
   - 动能：稠密对称矩阵

3. **COLBERT_MILLER**（均匀 sinc 网格）
   - 参数：盒长 :math:`L`
   - 动能：Colbert–Miller 解析矩阵元

4. **FOURIER**（周期平面波网格）
   - 参数：盒长 :math:`L`
   - 动能：动量空间中的纯对角，经 FFT 作用

稠密动能矩阵以行优先压缩下三角形式存储：元素 :math:`T_{ij}\\ (j\\le i)` 位于
``packed[i*(i+1)//2 + j]``。
"""

__all__ = [
    "BasisKind",
    "AxisOperator",
    "pack_lower",
    "unpack_lower",
    "packed_diagonal",
    "harmonic_dvr",
    "sine_dvr",
    "colbert_miller_dvr",
    "fourier_grid",
    "build_axis_operators",
    "fourier_kinetic_diagonal",
]


class BasisKind(Enum):
    """一维基组种类（封闭集合）。"""

    HARMONIC = "harmonic"
    SINE = "sine"
    COLBERT_MILLER = "colbert_miller"
    FOURIER = "fourier"

    @classmethod
    def from_code(cls, code) -> "BasisKind":
        """由旧式整数代码或名称得到基组种类。

        整数代码：1 = 谐振子，0/2 = 正弦，20 = Colbert–Miller，3 = Fourier。
        """
        if isinstance(code, cls):
            return code
        if isinstance(code, str):
            try:
                return cls(code.lower())
            except ValueError:
                raise ConfigurationError(f"未知的基组类型: {code!r}") from None
        table = {1: cls.HARMONIC, 0: cls.SINE, 2: cls.SINE, 20: cls.COLBERT_MILLER, 3: cls.FOURIER}
        try:
            return table[int(code)]
        except (KeyError, TypeError, ValueError):
            raise ConfigurationError(f"未知的基组类型代码: {code!r}") from None

    @property
    def is_diagonal(self) -> bool:
        """动能是否以纯对角（动量空间）形式表示。"""
        return self is BasisKind.FOURIER


def pack_lower(mat: np.ndarray) -> np.ndarray:
    """将对称矩阵按行压缩为下三角数组。"""
    mat = np.asarray(mat, dtype=float)
    if mat.ndim != 2 or mat.shape[0] != mat.shape[1]:
        raise ValueError("pack_lower 需要方阵")
    rows, cols = np.tril_indices(mat.shape[0])
    return mat[rows, cols].copy()


def unpack_lower(packed: np.ndarray, n: int) -> np.ndarray:
    """由压缩下三角数组还原完整对称矩阵。"""
    packed = np.asarray(packed, dtype=float)
    if packed.size != n * (n + 1) // 2:
        raise ValueError(f"压缩数组长度 {packed.size} 与 n={n} 不符")
    mat = np.zeros((n, n), dtype=float)
    rows, cols = np.tril_indices(n)
    mat[rows, cols] = packed
    mat[cols, rows] = packed
    return mat


def packed_diagonal(packed: np.ndarray, n: int) -> np.ndarray:
    """从压缩下三角数组中取出对角元 :math:`T_{ii}`（位于 ``i*(i+1)//2 + i``）。"""
    i = np.arange(n)
    return np.asarray(packed, dtype=float)[i * (i + 1) // 2 + i].copy()


def harmonic_dvr(n: int, omega: float, mass: float = 1.0) -> tuple[np.ndarray, np.ndarray, None, np.ndarray]:
    r"""Gauss–Hermite（谐振子）DVR。

    在谐振子本征基 :math:`|k\rangle,\ k=0..n-1` 下对角化位置算子

    .. math::
        X_{k,k+1} = \sqrt{\frac{k+1}{2m\omega}},

    其本征值即 DVR 格点，本征向量矩阵 :math:`U` 为 FBR → DVR 变换。动能在 FBR 中取
    :math:`P^2/2m` 的精确矩阵元（而非截断后 :math:`P` 的乘积）：

    .. math::
        (P^2)_{kk} = m\omega\,(k+\tfrac12),\qquad
        (P^2)_{k,k+2} = -\frac{m\omega}{2}\sqrt{(k+1)(k+2)}.

    Returns
    -------
    x : numpy.ndarray
        格点（升序，非等间距）。
    T : numpy.ndarray
        DVR 中的动能矩阵 :math:`U^T T_{\text{FBR}} U`。
    step : None
        非等间距网格没有步长。
    U : numpy.ndarray
        变换矩阵，列为格点对应的 DVR 函数在 FBR 中的系数。
    """
    if n < 1:
        raise ValueError("n 必须 >= 1")
    if omega <= 0 or mass <= 0:
        raise ValueError("omega 与 mass 必须为正")
    k = np.arange(n, dtype=float)
    X = np.zeros((n, n))
    off = np.sqrt((k[:-1] + 1.0) / (2.0 * mass * omega))
    X[np.arange(n - 1), np.arange(1, n)] = off
    X[np.arange(1, n), np.arange(n - 1)] = off
    x, U = eigh(X)
    # 固定相位：每列首个显著分量为正
    signs = np.sign(U[np.argmax(np.abs(U) > 1e-12, axis=0), np.arange(n)])
    signs[signs == 0] = 1.0
    U = U * signs

    P2 = np.diag(mass * omega * (k + 0.5))
    if n > 2:
        off2 = -0.5 * mass * omega * np.sqrt((k[:-2] + 1.0) * (k[:-2] + 2.0))
        P2[np.arange(n - 2), np.arange(2, n)] = off2
        P2[np.arange(2, n), np.arange(n - 2)] = off2
    T = U.T @ (P2 / (2.0 * mass)) @ U
    T = 0.5 * (T + T.T)
    return x, T, None, U


def sine_dvr(n: int, xmin: float, xmax: float, mass: float = 1.0) -> tuple[np.ndarray, np.ndarray, float, None]:
    r"""箱中粒子正弦 DVR（Dirichlet 边界位于 :math:`x_{\min}, x_{\max}`）。

    .. math::
        x_j = x_{\min} + j\,\frac{L}{n+1},\qquad
        T = U\,\mathrm{diag}\!\left(\frac{(\pi k/L)^2}{2m}\right) U^T,\qquad
        U_{jk} = \sqrt{\frac{2}{n+1}}\sin\frac{\pi jk}{n+1}.
    """
    if n < 1:
        raise ValueError("n 必须 >= 1")
    if xmax <= xmin:
        raise ValueError("要求 xmax > xmin")
    L = xmax - xmin
    j = np.arange(1, n + 1)
    dx = L / (n + 1)
    x = xmin + j * dx
    U = np.sqrt(2.0 / (n + 1)) * np.sin(np.pi * np.outer(j, j) / (n + 1))
    lam = 0.5 * (np.pi * j / L) ** 2 / mass
    T = (U * lam) @ U.T
    T = 0.5 * (T + T.T)
    return x, T, float(dx), None


def colbert_miller_dvr(n: int, xmin: float, xmax: float, mass: float = 1.0) -> tuple[np.ndarray, np.ndarray, float, None]:
    r"""Colbert–Miller 均匀 sinc 网格。

    .. math::
        T_{ii} = \frac{1}{2m\,\Delta x^2}\frac{\pi^2}{3},\qquad
        T_{ij} = \frac{1}{2m\,\Delta x^2}\frac{2(-1)^{i-j}}{(i-j)^2}\ (i\neq j),

    格点 :math:`x_j = x_{\min} + j\Delta x,\ j=1..n`，:math:`\Delta x = L/(n+1)`。
    """
    if n < 1:
        raise ValueError("n 必须 >= 1")
    if xmax <= xmin:
        raise ValueError("要求 xmax > xmin")
    dx = (xmax - xmin) / (n + 1)
    x = xmin + np.arange(1, n + 1) * dx
    diff = np.subtract.outer(np.arange(n), np.arange(n))
    T = np.empty((n, n), dtype=float)
    mask = diff != 0
    T[mask] = 2.0 * (-1.0) ** diff[mask] / diff[mask].astype(float) ** 2
    np.fill_diagonal(T, np.pi**2 / 3.0)
    T *= 1.0 / (2.0 * mass * dx * dx)
    return x, T, float(dx), None


def fourier_grid(n: int, xmin: float, xmax: float, mass: float = 1.0) -> tuple[np.ndarray, np.ndarray, float, None]:
    r"""周期平面波网格：动能在动量空间对角。

    .. math::
        x_j = x_{\min} + j\Delta x,\ \Delta x = L/n,\qquad
        e_{\text{kin}}(k) = \frac{k^2}{2m},\ k = 2\pi\,\text{fftfreq}(n, \Delta x).

    返回的 ``e_kin`` 按 FFT 频率顺序排列，可直接作为 FFT 域的乘子。
    """
    if n < 1:
        raise ValueError("n 必须 >= 1")
    if xmax <= xmin:
        raise ValueError("要求 xmax > xmin")
    dx = (xmax - xmin) / n
    x = xmin + np.arange(n) * dx
    k = 2.0 * np.pi * np.fft.fftfreq(n, d=dx)
    e_kin = 0.5 * k * k / mass
    return x, e_kin, float(dx), None


@dataclass(frozen=True, eq=False)
class AxisOperator:
    r"""单个坐标轴的格点与动能表示。

    Attributes
    ----------
    kind : BasisKind
        基组种类。
    x : numpy.ndarray
        格点横坐标，长度 :math:`n`。
    kinetic : numpy.ndarray
        位置空间基组：压缩下三角动能矩阵，长度 :math:`n(n+1)/2`；
        Fourier 基组：动量空间动能对角，长度 :math:`n`。
    step : float | None
        等间距网格的步长；谐振子网格为 ``None``。
    transform : numpy.ndarray | None
        谐振子 DVR 的 FBR ↔ DVR 变换矩阵，其余基组为 ``None``。
    """

    kind: BasisKind
    x: np.ndarray
    kinetic: np.ndarray
    step: float | None = None
    transform: np.ndarray | None = None

    @property
    def n(self) -> int:
        return int(self.x.size)

    @property
    def is_equidistant(self) -> bool:
        return self.step is not None

    @property
    def extent(self) -> tuple[float, float]:
        return float(self.x[0]), float(self.x[-1])

    def kinetic_matrix(self) -> np.ndarray:
        """位置空间中的完整动能矩阵。"""
        if self.kind.is_diagonal:
            n = self.n
            # T = F^{-1} diag(e) F，逐列作用于单位矩阵
            return np.real(np.fft.ifft(self.kinetic[:, None] * np.fft.fft(np.eye(n), axis=0), axis=0))
        return unpack_lower(self.kinetic, self.n)

    def kinetic_diagonal(self) -> np.ndarray:
        r"""位置空间动能对角元 :math:`T_{ii}`。

        Fourier 网格上 :math:`T_{ii} = \frac1n\sum_k e_{\text{kin}}(k)`，对所有格点相同。
        """
        if self.kind.is_diagonal:
            return np.full(self.n, float(np.mean(self.kinetic)))
        return packed_diagonal(self.kinetic, self.n)


def _build_one_axis(n: int, kind: BasisKind, para: float, mass: float) -> AxisOperator:
    if kind is BasisKind.HARMONIC:
        x, T, step, U = harmonic_dvr(n, para, mass)
        return AxisOperator(kind, x, pack_lower(T), step, U)
    xmin, xmax = -0.5 * para, 0.5 * para
    if kind is BasisKind.FOURIER:
        x, e_kin, step, _ = fourier_grid(n, xmin, xmax, mass)
        return AxisOperator(kind, x, e_kin, step, None)
    if kind is BasisKind.COLBERT_MILLER:
        x, T, step, _ = colbert_miller_dvr(n, xmin, xmax, mass)
    else:
        x, T, step, _ = sine_dvr(n, xmin, xmax, mass)
    return AxisOperator(kind, x, pack_lower(T), step, None)


def build_axis_operators(npts, kind, params, mass: float = 1.0, verbose: int = 0) -> tuple[AxisOperator, ...]:
    r"""为每个坐标轴调用一维基组生成器。

    Parameters
    ----------
    npts : sequence of int
        各轴网格点数。
    kind : BasisKind | int | str
        基组种类（所有轴相同）。
    params : float | sequence of float
        各轴参数：谐振子为频率 :math:`\omega`，其余为盒长 :math:`L`（网格区间 :math:`[-L/2, L/2]`）。
    mass : float, optional
        粒子质量（原子单位，默认 1）。
    verbose : int, optional
        ``> 0`` 打印每轴网格范围，``> 5`` 打印全部格点。

    Returns
    -------
    tuple[AxisOperator, ...]
        每轴一个算子，生命周期与调用方对象一致。
    """
    kind = BasisKind.from_code(kind)
    counts = tuple(int(n) for n in npts)
    paras = np.broadcast_to(np.asarray(params, dtype=float), (len(counts),))
    axes = tuple(_build_one_axis(n, kind, float(p), mass) for n, p in zip(counts, paras))

    if verbose > 0:
        for k, ax in enumerate(axes):
            line = f"  Q{k} : {ax.n:3d} grid points from {ax.x[0]:10.6f} to {ax.x[-1]:10.6f}"
            if ax.is_equidistant:
                line += f"  StepSize = {ax.step:10.6f}"
            print(line)
            if verbose > 5:
                for i, xi in enumerate(ax.x):
                    print(f"      {i + 1:4d}  {xi:10.6f}")
    return axes


def fourier_kinetic_diagonal(axes) -> np.ndarray:
    r"""组装三维 Fourier 网格在 FFT 域中的动能对角：

    .. math::
        KE[i,j,k] = e_x[i] + e_y[j] + e_z[k].

    Returns
    -------
    numpy.ndarray
        形状 :math:`(n_x, n_y, n_z)`，可直接与 ``fftn`` 的结果逐元素相乘。
    """
    if len(axes) != 3:
        raise ConfigurationError("Fourier 动能对角仅支持三维网格")
    if not all(ax.kind.is_diagonal for ax in axes):
        raise ConfigurationError("Fourier 动能对角要求所有轴均为 FOURIER 基组")
    ex, ey, ez = (ax.kinetic for ax in axes)
    return ex[:, None, None] + ey[None, :, None] + ez[None, None, :]
