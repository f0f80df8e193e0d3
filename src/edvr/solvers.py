from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np
from scipy.linalg import eigh
from scipy.sparse.linalg import ArpackNoConvergence, LinearOperator, eigsh

from .constants import FULL_DIAG_SIZE_CAP
from .errors import CapacityError, ConfigurationError

"""本征求解器：全对角化、ARPACK Lanczos/Arnoldi 与块 Davidson。

所有求解器只需要 Hamiltonian 的作用（``matvec``/``matmat``）与对角（Davidson 预条件），
全对角化另需显式矩阵，仅用于调试与小网格。

求解器种类与修正方案是封闭集合；修正方案只对 Davidson 有意义，
非法组合在构造 :class:`SolverRequest` 时即报错。
"""

__all__ = [
    "SolverKind",
    "CorrectionScheme",
    "SolverRequest",
    "SolverOutput",
    "full_diagonalize",
    "arnoldi",
    "davidson",
]


class SolverKind(Enum):
    FULL = "full"
    ARNOLDI = "arnoldi"
    DAVIDSON = "davidson"


class CorrectionScheme(Enum):
    """Davidson 修正向量方案。

    - NONE：直接使用残差 :math:`t = r`；
    - DAVIDSON：对角预条件 :math:`t = (\\theta - D)^{-1} r`；
    - JACOBI_DAVIDSON：Olsen 形式 :math:`t = -M^{-1}r + \\epsilon M^{-1}x`，
      :math:`M = D - \\theta`，:math:`\\epsilon` 使 :math:`t \\perp x`。
    """

    NONE = "none"
    DAVIDSON = "davidson"
    JACOBI_DAVIDSON = "jacobi_davidson"


# 旧式整数对角化代码 → (求解器, 修正方案)
_LEGACY_CODES = {
    0: (SolverKind.FULL, None),
    1: (SolverKind.ARNOLDI, None),
    2: (SolverKind.DAVIDSON, CorrectionScheme.DAVIDSON),
    3: (SolverKind.DAVIDSON, CorrectionScheme.JACOBI_DAVIDSON),
    4: (SolverKind.DAVIDSON, CorrectionScheme.NONE),
}


@dataclass(frozen=True)
class SolverRequest:
    """一次对角化请求（调用期间不可变）。

    Attributes
    ----------
    n_states : int
        请求的本征态数目。
    method : SolverKind
        求解器种类。
    correction : CorrectionScheme | None
        Davidson 修正方案；Davidson 缺省为 ``CorrectionScheme.DAVIDSON``，其余求解器必须为 ``None``。
    max_subspace : int
        最大子空间维数；``0`` 表示自动选择。
    max_iterations : int
        最大迭代（重启）次数。
    tolerance_exponent : int
        收敛阈值指数，阈值为 ``10**-tolerance_exponent``。
    """

    n_states: int
    method: SolverKind = SolverKind.ARNOLDI
    correction: CorrectionScheme | None = None
    max_subspace: int = 0
    max_iterations: int = 300
    tolerance_exponent: int = 8

    def __post_init__(self):
        try:
            method = SolverKind(self.method) if not isinstance(self.method, SolverKind) else self.method
        except ValueError:
            raise ConfigurationError(f"未知的对角化方法: {self.method!r}") from None
        object.__setattr__(self, "method", method)

        correction = self.correction
        if correction is not None and not isinstance(correction, CorrectionScheme):
            try:
                correction = CorrectionScheme(correction)
            except ValueError:
                raise ConfigurationError(f"未知的修正方案: {self.correction!r}") from None
        if method is SolverKind.DAVIDSON and correction is None:
            correction = CorrectionScheme.DAVIDSON
        if method is not SolverKind.DAVIDSON and correction is not None:
            raise ConfigurationError(f"修正方案 {correction.name} 只能用于 Davidson 求解器")
        object.__setattr__(self, "correction", correction)

        if self.n_states < 1:
            raise ConfigurationError(f"n_states 必须 >= 1，当前为 {self.n_states}")
        if self.max_subspace < 0:
            raise ConfigurationError("max_subspace 不能为负")
        if self.max_iterations < 1:
            raise ConfigurationError("max_iterations 必须 >= 1")
        if self.tolerance_exponent <= 0:
            raise ConfigurationError("tolerance_exponent 必须为正")

    @property
    def tolerance(self) -> float:
        return 10.0 ** (-self.tolerance_exponent)

    @classmethod
    def from_code(cls, diag_flag: int, n_states: int, **kwargs) -> "SolverRequest":
        """由旧式代码构造：0 全对角化，1 Arnoldi，2 Davidson，3 Jacobi–Davidson，4 无修正 Davidson。"""
        try:
            method, correction = _LEGACY_CODES[int(diag_flag)]
        except (KeyError, TypeError, ValueError):
            raise ConfigurationError(f"未知的对角化方法代码: {diag_flag!r}") from None
        return cls(n_states=n_states, method=method, correction=correction, **kwargs)


@dataclass
class SolverOutput:
    """求解器输出。

    ``vectors`` 的行为本征向量（与波函数集的行存储一致），按能量升序；
    前 ``n_converged`` 行为已收敛的本征对。
    """

    n_converged: int
    energies: np.ndarray
    vectors: np.ndarray
    iterations: int = 0
    residuals: np.ndarray = field(default_factory=lambda: np.zeros(0))


def _residual_norms(ham, energies, vectors):
    if vectors.shape[0] == 0:
        return np.zeros(0)
    HV = ham.matmat(vectors.T)
    return np.linalg.norm(HV - vectors.T * energies[None, :], axis=0)


def full_diagonalize(ham, n_states: int, size_cap: int = FULL_DIAG_SIZE_CAP, verbose: int = 0) -> SolverOutput:
    """显式构造 Hamiltonian 并用 ``scipy.linalg.eigh`` 全对角化。

    Raises
    ------
    CapacityError
        网格总点数超过 ``size_cap``。
    """
    n = ham.shape[0]
    if n > size_cap:
        raise CapacityError(n, size_cap)
    k = min(int(n_states), n)
    if verbose > 0:
        print(f"  Full diagonalization of a {n} x {n} Hamiltonian")
    w, U = eigh(ham.dense(), subset_by_index=[0, k - 1])
    vectors = U.T.copy()
    return SolverOutput(n_converged=k, energies=w, vectors=vectors, residuals=_residual_norms(ham, w, vectors))


def _eigsh_lowest(op, k, v0, ncv, max_iterations, tol):
    """ARPACK 求最低 ``k`` 个本征对，返回 ``(w, V, 是否全部收敛)``。"""
    try:
        w, V = eigsh(op, k=k, which="SA", v0=v0, ncv=ncv, maxiter=max_iterations, tol=tol)
        ok = True
    except ArpackNoConvergence as exc:
        w, V = exc.eigenvalues, exc.eigenvectors
        ok = False
    w = np.asarray(w, dtype=float).reshape(-1)
    if w.size == 0:
        return w, np.zeros((op.shape[0], 0)), ok
    order = np.argsort(w)
    return w[order], np.asarray(V).reshape(op.shape[0], -1)[:, order], ok


def _deflated_operator(ham, Q, shift):
    r"""锁定子空间上移后的算子 :math:`H + \sigma QQ^T`。"""
    n = ham.shape[0]

    def matmat(X):
        X = np.asarray(X, dtype=float).reshape(n, -1)
        return ham.matmat(X) + shift * (Q @ (Q.T @ X))

    def matvec(x):
        return matmat(x)[:, 0]

    return LinearOperator((n, n), matvec=matvec, rmatvec=matvec, matmat=matmat, dtype=float)


def _rayleigh_ritz(ham, vectors):
    Q = _orthonormal_append(np.zeros((ham.shape[0], 0)), vectors)
    S = Q.T @ ham.matmat(Q)
    w, s = eigh(0.5 * (S + S.T))
    return w, Q @ s


def _unit_start(start_sum, Q=None):
    v = start_sum if Q is None else start_sum - Q @ (Q.T @ start_sum)
    nrm = np.linalg.norm(v)
    return v / nrm if nrm > 1e-10 * max(1.0, np.linalg.norm(start_sum)) else None


def arnoldi(
    ham,
    start: np.ndarray,
    n_states: int,
    max_subspace: int = 0,
    max_iterations: int = 300,
    tol: float = 1e-8,
    verbose: int = 0,
) -> SolverOutput:
    r"""ARPACK 隐式重启 Lanczos（对称 Arnoldi）求最低若干本征对。

    起始向量取 ``start`` 各行之和（归一化）。单个 Krylov 序列在每个简并本征空间中只给出
    一个方向，因此收敛后以已得的 Ritz 向量 :math:`Q` 构造上移算子
    :math:`H + \sigma QQ^T`（:math:`\sigma` 把锁定的本征值移出最低 ``n_states`` 个的窗口）
    继续求解；只要补充求解给出低于当前第 ``n_states`` 个本征值的新本征对，就在并集上做
    Rayleigh–Ritz 并重复，直到最低 ``n_states`` 个本征值不再变化。

    若 ARPACK 未完全收敛，返回其部分收敛的本征对。

    Parameters
    ----------
    ham : SeparableHamiltonian
        提供 ``as_linear_operator()`` 与 ``matmat``。
    start : numpy.ndarray
        形状 ``(m, N)`` 的起始向量。
    n_states : int
        请求的本征态数目。
    max_subspace : int
        Lanczos 向量数 ``ncv``；``0`` 为自动。
    max_iterations : int
        ARPACK 最大重启次数。
    tol : float
        ARPACK 相对收敛阈值。
    """
    n = ham.shape[0]
    k = int(n_states)
    if k >= n - 1:
        # ARPACK 要求 k < N - 1，退化为稠密求解
        return full_diagonalize(ham, k, size_cap=n, verbose=verbose)

    start = np.atleast_2d(np.asarray(start, dtype=float))
    start_sum = start.sum(axis=0)

    ncv = max_subspace if max_subspace > 0 else max(2 * k + 1, 20)
    ncv = int(min(max(ncv, k + 2), n))
    if verbose > 0:
        print(f"  Lanczos/Arnoldi: nStates = {k}, ncv = {ncv}, maxiter = {max_iterations}, tol = {tol:.1e}")

    w, X, ok = _eigsh_lowest(ham.as_linear_operator(), k, _unit_start(start_sum), ncv, max_iterations, tol)
    if not ok and verbose > 0:
        print(f"  Arnoldi: only {len(w)} of {k} eigenpairs converged")

    rounds = 0
    while ok and w.size >= k and rounds < k:
        Q = X[:, :k]
        w_k = w[k - 1]
        shift = (w_k - w[0]) + 1.0
        w2, V2, ok = _eigsh_lowest(
            _deflated_operator(ham, Q, shift), k, _unit_start(start_sum, Q), ncv, max_iterations, tol
        )
        new = w2 < w_k - tol * max(1.0, abs(w_k))
        if not new.any():
            break
        w, X = _rayleigh_ritz(ham, np.hstack([Q, V2[:, new]]))
        rounds += 1
        if verbose > 0:
            print(f"  Arnoldi: {int(new.sum())} additional eigenpair(s) found outside the locked subspace")

    w, X = w[:k], X[:, :k]
    vectors = X.T.copy()
    return SolverOutput(
        n_converged=int(w.size),
        energies=w,
        vectors=vectors,
        iterations=rounds + 1,
        residuals=_residual_norms(ham, w, vectors),
    )


def _correction_vectors(scheme, R, X, theta, diag, floor=1e-8):
    if scheme is CorrectionScheme.NONE:
        return R.copy()
    M = diag[:, None] - theta[None, :]
    M = np.where(np.abs(M) < floor, np.copysign(floor, M), M)
    if scheme is CorrectionScheme.DAVIDSON:
        return -R / M
    Minv_r = R / M
    Minv_x = X / M
    eps = np.sum(X * Minv_r, axis=0) / np.sum(X * Minv_x, axis=0)
    return -Minv_r + eps[None, :] * Minv_x


def _orthonormal_append(V, T, drop=1e-8):
    """把 ``T`` 的列对 ``V`` 做两次 Gram–Schmidt 正交化，丢弃线性相关的列。"""
    kept = []
    for j in range(T.shape[1]):
        t = T[:, j]
        nrm = np.linalg.norm(t)
        if nrm == 0.0:
            continue
        t = t / nrm
        for _ in range(2):
            t = t - V @ (V.T @ t)
            for u in kept:
                t = t - u * (u @ t)
        nrm = np.linalg.norm(t)
        if nrm > drop:
            kept.append(t / nrm)
    if not kept:
        return np.zeros((V.shape[0], 0))
    return np.stack(kept, axis=1)


def davidson(
    ham,
    start: np.ndarray,
    n_states: int,
    max_subspace: int = 0,
    max_iterations: int = 300,
    tol: float = 1e-8,
    correction: CorrectionScheme = CorrectionScheme.DAVIDSON,
    verbose: int = 0,
) -> SolverOutput:
    r"""块 Davidson 迭代（带重启）求最低 ``n_states`` 个本征对。

    每次迭代在子空间 :math:`V` 中做 Rayleigh–Ritz，对未收敛的 Ritz 对

    .. math::
        r_i = H x_i - \theta_i x_i

    生成修正向量并扩展子空间；子空间超过 ``max_subspace`` 时以当前 Ritz 向量重启。
    收敛判据为 :math:`\lVert r_i\rVert \le \text{tol}`。

    Returns
    -------
    SolverOutput
        ``n_converged`` 为从最低态起连续收敛的本征对数目；``vectors`` 包含全部
        ``n_states`` 个当前 Ritz 向量（未收敛者可作为下次调用的起始向量）。
    """
    n = ham.shape[0]
    k = min(int(n_states), n)
    if not isinstance(correction, CorrectionScheme):
        correction = CorrectionScheme(correction)
    diag = ham.diagonal()

    start = np.atleast_2d(np.asarray(start, dtype=float))
    if start.shape[1] != n:
        raise ConfigurationError(f"起始向量长度 {start.shape[1]} 与网格总点数 {n} 不符")

    m_max = max_subspace if max_subspace > 0 else max(4 * k, k + 20)
    m_max = int(min(max(m_max, 2 * k), n))

    # 起始块整体正交化（线性相关的行被丢弃），不足 k 列时以对角最小的单位向量补足
    V = _orthonormal_append(np.zeros((n, 0)), start.T)
    if V.shape[1] < k:
        idx = np.argsort(diag)[: min(n, 2 * k)]
        extra = np.zeros((n, idx.size))
        extra[idx, np.arange(idx.size)] = 1.0
        V = np.hstack([V, _orthonormal_append(V, extra)[:, : k - V.shape[1]]])
    V = V[:, :m_max]
    AV = ham.matmat(V)
    theta = np.zeros(k)
    X = V[:, :k]
    rnorm = np.full(k, np.inf)
    it = 0
    for it in range(1, max_iterations + 1):
        S = V.T @ AV
        S = 0.5 * (S + S.T)
        evals, s = eigh(S)
        theta = evals[:k]
        X = V @ s[:, :k]
        AX = AV @ s[:, :k]
        R = AX - X * theta[None, :]
        rnorm = np.linalg.norm(R, axis=0)
        conv = rnorm <= tol
        if verbose > 2:
            print(f"    Davidson it {it:4d}  dim {V.shape[1]:4d}  max|r| = {rnorm.max():.3e}  nconv = {int(conv.sum())}")
        if conv.all():
            break

        todo = np.flatnonzero(~conv)
        T = _correction_vectors(correction, R[:, todo], X[:, todo], theta[todo], diag)
        if V.shape[1] + T.shape[1] > m_max:
            V, AV = X, AX
        T = _orthonormal_append(V, T)
        if T.shape[1] == 0:
            break
        V = np.hstack([V, T])
        AV = np.hstack([AV, ham.matmat(T)])

    conv = rnorm <= tol
    n_conv = k if conv.all() else int(np.argmin(conv))
    if verbose > 0:
        print(f"  Davidson ({correction.name}): {n_conv} of {k} states converged after {it} iterations")
    return SolverOutput(
        n_converged=n_conv,
        energies=theta.copy(),
        vectors=X.T.copy(),
        iterations=it,
        residuals=rnorm,
    )
