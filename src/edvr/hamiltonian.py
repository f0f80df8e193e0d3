from __future__ import annotations

import numpy as np
from scipy import fft as sp_fft
from scipy.sparse import diags, eye, kron
from scipy.sparse.linalg import LinearOperator

from .basis import fourier_kinetic_diagonal
from .grid import GridParameters, compute_grid_parameters

"""可分离 DVR Hamiltonian 的对角组装与无矩阵作用。

Hamiltonian 在 DVR 中写为

.. math::
    H = V + \\sum_d \\mathbb{1}\\otimes\\cdots\\otimes T^{(d)}\\otimes\\cdots\\otimes\\mathbb{1},

其中 :math:`V` 在格点上对角。只显式生成 :math:`H` 的对角（供 Davidson 预条件使用），
非对角部分通过逐轴张量缩并（或 FFT）以无矩阵方式作用于向量。
"""

__all__ = [
    "axis_permutation",
    "broadcast_add_axis",
    "assemble_diagonal",
    "SeparableHamiltonian",
]


def axis_permutation(axis: int, ndim: int) -> tuple[int, ...]:
    """把第 ``axis`` 轴排到最前面的轴置换（其余轴保持原有相对顺序）。"""
    if not 0 <= axis < ndim:
        raise ValueError(f"axis={axis} 超出范围 [0, {ndim})")
    return (axis,) + tuple(d for d in range(ndim) if d != axis)


def broadcast_add_axis(diag: np.ndarray, values: np.ndarray, axis: int, grid: GridParameters) -> np.ndarray:
    r"""将一维对角 ``values`` 沿第 ``axis`` 轴广播累加到全网格对角上。

    对每个与第 ``axis`` 轴正交的索引组合（共 :math:`N/n_d` 个），把 :math:`T^{(d)}_{ii}`
    加到步幅为 :math:`s_d` 的 :math:`n_d` 个对角位置上。本函数不修改输入，也不改动网格几何，
    通过显式轴置换的视图实现。

    Parameters
    ----------
    diag : numpy.ndarray
        长度 :math:`N` 的对角数组。
    values : numpy.ndarray
        长度 :math:`n_d` 的一维对角元。
    axis : int
        目标轴 :math:`d`。
    grid : GridParameters
        网格几何。

    Returns
    -------
    numpy.ndarray
        新的长度 :math:`N` 对角数组。
    """
    values = np.asarray(values, dtype=float)
    if values.size != grid.npts[axis]:
        raise ValueError(f"第 {axis} 轴对角长度 {values.size} 与网格点数 {grid.npts[axis]} 不符")
    out = np.array(diag, dtype=float, copy=True)
    if out.size != grid.size:
        raise ValueError("对角数组长度与网格总点数不符")
    cube = out.reshape(grid.npts, order="F")
    view = np.transpose(cube, axis_permutation(axis, grid.ndim))
    view += values.reshape((-1,) + (1,) * (grid.ndim - 1))
    return cube.ravel(order="F")


def assemble_diagonal(v_diag: np.ndarray, axes, grid: GridParameters | None = None) -> np.ndarray:
    r"""组装完整 Hamiltonian 对角：势能对角加上各轴动能对角的广播。

    .. math::
        H_{gg} = V_g + \sum_d T^{(d)}_{i_d(g)\,i_d(g)}.

    仅使用一维动能矩阵的对角元；非对角耦合由 :class:`SeparableHamiltonian` 的矩阵-向量积提供。
    """
    if grid is None:
        grid = compute_grid_parameters([ax.n for ax in axes])
    diag = np.array(v_diag, dtype=float, copy=True)
    for d, ax in enumerate(axes):
        diag = broadcast_add_axis(diag, ax.kinetic_diagonal(), d, grid)
    return diag


def _iterative_kron(factors):
    op = factors[0]
    for f in factors[1:]:
        op = kron(op, f, format="csr")
    return op


class SeparableHamiltonian:
    r"""可分离 DVR Hamiltonian 的无矩阵算子。

    向量按列主序（第 0 轴最快）展平。对第 :math:`d` 轴的作用为

    .. math::
        (T^{(d)}\psi)_{\dots i_d \dots} = \sum_{j} T^{(d)}_{i_d j}\,\psi_{\dots j \dots},

    Fourier 轴则为 :math:`\mathcal{F}^{-1}[e_{\text{kin}}\,\mathcal{F}\psi]`。

    Parameters
    ----------
    axes : sequence of AxisOperator
        各轴算子。
    v_diag : numpy.ndarray
        格点势能，长度 :math:`N`。
    grid : GridParameters, optional
        网格几何；缺省时由 ``axes`` 推导。
    ke_fft : numpy.ndarray, optional
        三维 Fourier 网格在 FFT 域中的动能对角（由调用方持有）；缺省时按需组装。
    """

    def __init__(
        self,
        axes,
        v_diag: np.ndarray,
        grid: GridParameters | None = None,
        ke_fft: np.ndarray | None = None,
    ):
        self.axes = tuple(axes)
        self.grid = grid if grid is not None else compute_grid_parameters([ax.n for ax in self.axes])
        if tuple(ax.n for ax in self.axes) != self.grid.npts:
            raise ValueError("轴算子点数与网格参数不一致")
        self.v_diag = np.asarray(v_diag, dtype=float)
        if self.v_diag.shape != (self.grid.size,):
            raise ValueError("v_diag 长度必须等于网格总点数")

        fourier = [ax.kind.is_diagonal for ax in self.axes]
        self._ke_fft = None
        if all(fourier) and self.grid.ndim == 3:
            self._ke_fft = ke_fft if ke_fft is not None else fourier_kinetic_diagonal(self.axes)
            if self._ke_fft.shape != self.grid.npts:
                raise ValueError("ke_fft 形状与网格点数不符")
        self._fourier_axes = [d for d, f in enumerate(fourier) if f]
        self._tmats = {d: ax.kinetic_matrix() for d, ax in enumerate(self.axes) if not fourier[d]}
        self._diag = assemble_diagonal(self.v_diag, self.axes, self.grid)
        self.n_matvec = 0

    @property
    def shape(self) -> tuple[int, int]:
        return (self.grid.size, self.grid.size)

    def diagonal(self) -> np.ndarray:
        return self._diag.copy()

    def matmat(self, block: np.ndarray) -> np.ndarray:
        """对一组列向量（形状 ``(N, k)``）作用 :math:`H`。"""
        X = np.asarray(block)
        if X.ndim != 2 or X.shape[0] != self.grid.size:
            raise ValueError(f"输入块形状 {X.shape} 与网格总点数 {self.grid.size} 不符")
        nd = self.grid.ndim
        ncol = X.shape[1]
        self.n_matvec += ncol
        cube = X.reshape(self.grid.npts + (ncol,), order="F")
        out = self.v_diag[:, None] * X

        acc = np.zeros(cube.shape, dtype=np.result_type(X.dtype, float))
        for d, T in self._tmats.items():
            acc += np.moveaxis(np.tensordot(T, cube, axes=([1], [d])), 0, d)
        if self._ke_fft is not None:
            spatial = tuple(range(nd))
            phi_k = sp_fft.fftn(cube, axes=spatial)
            acc += np.real(sp_fft.ifftn(self._ke_fft[..., None] * phi_k, axes=spatial))
        else:
            for d in self._fourier_axes:
                shape = [1] * (nd + 1)
                shape[d] = self.grid.npts[d]
                e = self.axes[d].kinetic.reshape(shape)
                phi_k = sp_fft.fft(cube, axis=d)
                acc += np.real(sp_fft.ifft(e * phi_k, axis=d))
        out = out + acc.reshape((self.grid.size, ncol), order="F")
        return out

    def matvec(self, psi: np.ndarray) -> np.ndarray:
        psi = np.asarray(psi)
        return self.matmat(psi.reshape(-1, 1))[:, 0]

    def as_linear_operator(self) -> LinearOperator:
        """封装为 ``scipy.sparse.linalg.LinearOperator``（实对称）。"""
        return LinearOperator(
            self.shape,
            matvec=self.matvec,
            rmatvec=self.matvec,
            matmat=self.matmat,
            dtype=float,
        )

    def dense(self) -> np.ndarray:
        r"""显式构造完整 Hamiltonian 矩阵（仅用于调试与小网格全对角化）。

        列主序下第 :math:`d` 轴动能为
        :math:`\mathbb{1}_{n_{D-1}}\otimes\cdots\otimes T^{(d)}\otimes\cdots\otimes\mathbb{1}_{n_0}`。
        """
        H = diags(self.v_diag, 0, format="csr")
        for d, ax in enumerate(self.axes):
            factors = []
            for k in reversed(range(self.grid.ndim)):
                factors.append(ax.kinetic_matrix() if k == d else eye(self.grid.npts[k], format="csr"))
            H = H + _iterative_kron(factors)
        return np.asarray(H.toarray())
