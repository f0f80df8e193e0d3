from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from .basis import BasisKind, build_axis_operators, fourier_kinetic_diagonal
from .constants import FULL_DIAG_SIZE_CAP
from .errors import CapacityError, ConfigurationError, ConvergenceWarning, NormalizationWarning
from .gradient import GradientResult, WorkerBufferPool, accumulate_gradient
from .grid import compute_grid_parameters, grid_points, volume_element
from .hamiltonian import SeparableHamiltonian, assemble_diagonal
from .potential import ENERGY_COMPONENTS
from .sampling import SamplingPolicy, sample_potential
from .solvers import SolverKind, SolverRequest, arnoldi, davidson, full_diagonalize

"""DVR 编排器：网格、轴算子、势能对角与波函数集的持有者。

典型流程::

    dvr = DVR(DVRConfig(npts=(20, 20, 20), basis=BasisKind.SINE, grid_params=20.0))
    dvr.compute_potential(potential)
    result = dvr.diagonalize(SolverRequest(n_states=3), StartVectorPolicy.RANDOM)
    grad = dvr.compute_gradient(potential)

波函数集按行存储（形状 ``(n_wavefn, N)``，每行一个态）。``n_converged`` 记录最近一次
求解后前若干行中有效的本征向量数目；请求态数超过已分配容量时重新分配并把
``n_converged`` 置零（旧数据保留，可作为起始向量）。
"""

__all__ = [
    "DVRConfig",
    "StartVectorPolicy",
    "DiagonalizationResult",
    "ExpectationValues",
    "DVR",
]


class StartVectorPolicy(Enum):
    """起始向量策略：0 复用上次收敛向量，1 箱中粒子 + 随机，2 全随机。"""

    REUSE = 0
    PARTICLE_IN_BOX = 1
    RANDOM = 2

    @classmethod
    def from_code(cls, code) -> "StartVectorPolicy":
        if isinstance(code, cls):
            return code
        try:
            return cls(int(code))
        except (TypeError, ValueError):
            raise ConfigurationError(f"非法的起始向量策略: {code!r}") from None


@dataclass
class DVRConfig:
    r"""DVR 配置参数。

    Attributes
    ----------
    npts : tuple[int, ...]
        各轴网格点数。
    basis : BasisKind | int | str
        一维基组种类（所有轴相同）。
    grid_params : float | sequence of float
        谐振子为频率 :math:`\omega`，其余为盒长 :math:`L`（Bohr）。
    sampling : int
        势能采样代码（见 :mod:`edvr.sampling`）。
    mass : float
        粒子质量（原子单位）。
    n_workers : int
        并行区的工作者（线程）数。
    seed : int | None
        随机起始向量的种子。
    verbose : int
        输出级别。
    full_diag_cap : int
        全对角化允许的最大网格点数。
    """

    npts: tuple = (20, 20, 20)
    basis: BasisKind = BasisKind.SINE
    grid_params: object = 20.0
    sampling: int = 1
    mass: float = 1.0
    n_workers: int = 1
    seed: int | None = None
    verbose: int = 0
    full_diag_cap: int = FULL_DIAG_SIZE_CAP

    def __post_init__(self):
        self.npts = tuple(int(n) for n in self.npts)
        self.basis = BasisKind.from_code(self.basis)
        SamplingPolicy.from_code(self.sampling)
        if self.mass <= 0:
            raise ConfigurationError("mass 必须为正")
        if self.n_workers < 1:
            raise ConfigurationError("n_workers 必须 >= 1")


@dataclass
class DiagonalizationResult:
    """一次对角化的结果摘要。"""

    n_converged: int
    energies: np.ndarray
    request: SolverRequest
    start: StartVectorPolicy
    iterations: int = 0
    residuals: np.ndarray = field(default_factory=lambda: np.zeros(0))


@dataclass
class ExpectationValues:
    r"""已收敛态的坐标期望值（原子单位）。

    Attributes
    ----------
    norm : numpy.ndarray
        :math:`\sum_g \psi_n(g)^2`，形状 ``(n,)``。
    position : numpy.ndarray
        :math:`\langle n|\mathbf r|n\rangle`，形状 ``(n, 3)``。
    r_abs : numpy.ndarray
        :math:`|\langle \mathbf r\rangle|`。
    r_rms : numpy.ndarray
        :math:`\sqrt{\langle r^2\rangle}`。
    spread : numpy.ndarray
        :math:`\sqrt{\langle r^2\rangle - |\langle\mathbf r\rangle|^2}`。
    transition_dipoles : numpy.ndarray
        :math:`\langle n|\mathbf r|0\rangle,\ n\ge 1`，形状 ``(n-1, 3)``。
    transition_dipoles_sq : numpy.ndarray
        上述向量的模平方。
    """

    norm: np.ndarray
    position: np.ndarray
    r_abs: np.ndarray
    r_rms: np.ndarray
    spread: np.ndarray
    transition_dipoles: np.ndarray
    transition_dipoles_sq: np.ndarray


class DVR:
    """可分离网格上单粒子 Hamiltonian 的 DVR 求解器。

    Parameters
    ----------
    config : DVRConfig
        网格与求解配置。
    """

    def __init__(self, config: DVRConfig | None = None, **kwargs):
        if config is None:
            config = DVRConfig(**kwargs)
        elif kwargs:
            raise TypeError("不能同时给出 config 与关键字参数")
        self.config = config
        self.verbose = config.verbose
        self.grid = compute_grid_parameters(config.npts, verbose=self.verbose)
        self.axes = build_axis_operators(
            config.npts, config.basis, config.grid_params, mass=config.mass, verbose=self.verbose
        )
        self.ke_fft = None
        if config.basis.is_diagonal and self.grid.ndim == 3:
            self.ke_fft = fourier_kinetic_diagonal(self.axes)

        self.v_diag = np.zeros(self.grid.size)
        self.h_diag: np.ndarray | None = None
        self.wavefn = np.zeros((0, self.grid.size))
        self.energies = np.zeros(0)
        self.n_converged = 0
        self._rng = np.random.default_rng(config.seed)
        self._pool: WorkerBufferPool | None = None

    @property
    def size(self) -> int:
        return self.grid.size

    @property
    def n_wavefn(self) -> int:
        return self.wavefn.shape[0]

    def points(self) -> np.ndarray:
        return grid_points(self.axes)

    # ------------------------------------------------------------------
    # 势能与 Hamiltonian
    # ------------------------------------------------------------------
    def compute_potential(self, potential, sampling=None) -> np.ndarray:
        """按配置的采样策略计算势能对角，并使已组装的 Hamiltonian 对角失效。"""
        sampling = self.config.sampling if sampling is None else sampling
        self.v_diag = sample_potential(
            potential, self.axes, self.grid, sampling=sampling,
            n_workers=self.config.n_workers, verbose=self.verbose,
        )
        self.h_diag = None
        return self.v_diag

    def set_potential(self, v_diag: np.ndarray) -> None:
        v = np.asarray(v_diag, dtype=float).reshape(-1)
        if v.size != self.grid.size:
            raise ConfigurationError(f"势能长度 {v.size} 与网格总点数 {self.grid.size} 不符")
        self.v_diag = v.copy()
        self.h_diag = None

    def compute_diagonal(self) -> np.ndarray:
        """组装 Hamiltonian 对角（势能 + 各轴动能对角）。"""
        self.h_diag = assemble_diagonal(self.v_diag, self.axes, self.grid)
        return self.h_diag

    def hamiltonian(self) -> SeparableHamiltonian:
        return SeparableHamiltonian(self.axes, self.v_diag, self.grid, ke_fft=self.ke_fft)

    # ------------------------------------------------------------------
    # 波函数集与起始向量
    # ------------------------------------------------------------------
    def allocate_wavefunctions(self, n_states: int) -> np.ndarray:
        """保证波函数集至少有 ``n_states`` 行。

        扩容时保留旧数据，但 ``n_converged`` 置零（不再假定收敛）。
        """
        if n_states > self.n_wavefn:
            new = np.zeros((n_states, self.grid.size))
            new[: self.n_wavefn] = self.wavefn
            if self.n_wavefn > 0 and self.verbose > 0:
                print(f"  Reallocating the wavefunction set: {self.n_wavefn} -> {n_states} states")
            self.wavefn = new
            energies = np.zeros(n_states)
            energies[: self.energies.size] = self.energies
            self.energies = energies
            self.n_converged = 0
        return self.wavefn

    def particle_in_box_wf(self) -> np.ndarray:
        r"""可分离的箱中粒子试探函数

        .. math::
            \psi(\mathbf q) = \prod_d \sin\!\left(\frac{\pi}{L_d}(q_d - x_{0,d})\right),

        其中 :math:`x_{0,d}` 与 :math:`L_d` 为第 :math:`d` 轴格点的起点与跨度。返回归一化向量。
        """
        wf = np.ones(1)
        # 列主序：第 0 轴最快，故按轴逆序做外积
        for ax in reversed(self.axes):
            x0, x1 = ax.extent
            span = x1 - x0
            f = np.sin(np.pi / span * (ax.x - x0)) if span > 0 else np.ones(ax.n)
            if self.verbose > 1:
                print(f"  dimension  x0 = {x0:10.6f}   L = {span:10.6f}")
            wf = np.outer(wf, f).ravel()
        nrm = np.linalg.norm(wf)
        return wf / nrm if nrm > 0 else wf

    def _random_fill(self, lo: int, hi: int) -> None:
        if hi > lo:
            if self.verbose > 0:
                print(f"  Initializing {hi - lo} random start vectors.")
            self.wavefn[lo:hi] = self._rng.uniform(-1.0, 1.0, size=(hi - lo, self.grid.size))

    def _prepare_start_vectors(self, n_states: int, policy: StartVectorPolicy) -> np.ndarray:
        istart = 0
        if policy is StartVectorPolicy.REUSE:
            if self.n_converged < n_states:
                warnings.warn(
                    f"只有 {self.n_converged} 个旧波函数可用，其余 {n_states - self.n_converged} 个使用随机起始向量",
                    ConvergenceWarning,
                    stacklevel=3,
                )
            if self.verbose > 0:
                print(f"  Using {min(self.n_converged, n_states)} start vectors from a previous diagonalization.")
            istart = min(self.n_converged, n_states)
        elif policy is StartVectorPolicy.PARTICLE_IN_BOX:
            if self.verbose > 0:
                print("  Initializing one PiaB-like start vector.")
            self.wavefn[0] = self.particle_in_box_wf()
            istart = 1
        self._random_fill(istart, n_states)
        return self.wavefn[:n_states].copy()

    # ------------------------------------------------------------------
    # 对角化
    # ------------------------------------------------------------------
    def diagonalize(self, request: SolverRequest, start=StartVectorPolicy.RANDOM) -> DiagonalizationResult:
        """求最低 ``request.n_states`` 个本征态，并把结果写入波函数集的前若干行。

        Raises
        ------
        ConfigurationError
            非法的起始向量策略。
        CapacityError
            全对角化的网格点数超过 ``config.full_diag_cap``。
        """
        policy = StartVectorPolicy.from_code(start)
        k = request.n_states
        if request.method is SolverKind.FULL and self.grid.size > self.config.full_diag_cap:
            raise CapacityError(self.grid.size, self.config.full_diag_cap)
        if self.verbose > 0:
            print("Computing the energy and wavefunction using a DVR of the Hamiltonian")

        self.allocate_wavefunctions(k)
        sv = self._prepare_start_vectors(k, policy)
        ham = self.hamiltonian()
        self.h_diag = ham.diagonal()
        tol = request.tolerance

        if request.method is SolverKind.FULL:
            out = full_diagonalize(ham, k, size_cap=self.config.full_diag_cap, verbose=self.verbose)
        elif request.method is SolverKind.ARNOLDI:
            out = arnoldi(ham, sv, k, request.max_subspace, request.max_iterations, tol, verbose=self.verbose)
        else:
            pre = arnoldi(ham, sv, k, request.max_subspace, request.max_iterations, tol, verbose=self.verbose)
            # Arnoldi 向量在前，原起始块保留在后，避免起始块塌缩到较少的方向
            seed = np.vstack([pre.vectors, sv])
            out = davidson(
                ham, seed, k, request.max_subspace, request.max_iterations, tol,
                correction=request.correction, verbose=self.verbose,
            )

        m = out.vectors.shape[0]
        self.wavefn[:m] = out.vectors
        self.energies[:m] = out.energies
        self.n_converged = int(out.n_converged)
        if self.n_converged < k:
            warnings.warn(
                f"只有 {self.n_converged} 个本征态收敛（请求 {k} 个）",
                ConvergenceWarning,
                stacklevel=2,
            )
        return DiagonalizationResult(
            n_converged=self.n_converged,
            energies=self.energies[: self.n_converged].copy(),
            request=request,
            start=policy,
            iterations=out.iterations,
            residuals=out.residuals,
        )

    # ------------------------------------------------------------------
    # 收敛后的分析
    # ------------------------------------------------------------------
    def _require_converged(self, state: int = 0) -> None:
        if self.n_converged < 1:
            raise ValueError("当前没有已收敛的本征态")
        if not 0 <= state < self.n_converged:
            raise ValueError(f"态 {state} 超出已收敛范围 [0, {self.n_converged})")

    def compute_gradient(self, potential, pol_grad=None, state: int = 0) -> GradientResult:
        """以第 ``state`` 个已收敛态的概率密度加权累加位点梯度。"""
        self._require_converged(state)
        ns, nd = potential.n_sites, potential.n_dipole_sites
        if self._pool is None or not self._pool.fits(self.config.n_workers, ns, nd):
            self._pool = WorkerBufferPool(self.config.n_workers, ns, nd)
        return accumulate_gradient(
            potential, self.axes, self.grid, self.wavefn[state], pol_grad,
            n_workers=self.config.n_workers, pool=self._pool,
        )

    def expectation_values(self) -> ExpectationValues:
        """全部已收敛态的坐标期望值与相对基态的跃迁偶极。"""
        self._require_converged()
        if self.grid.ndim != 3:
            raise ConfigurationError("期望值仅支持三维网格")
        nc = self.n_converged
        wf = self.wavefn[:nc]
        rho = wf * wf
        q = self.points()

        norm = rho.sum(axis=1)
        for i, s in enumerate(norm):
            if abs(s - 1.0) > 1e-8:
                warnings.warn(f"态 {i} 的归一化积分为 {s:.12f}，而不是 1", NormalizationWarning, stacklevel=2)
        position = rho @ q
        r2 = rho @ np.sum(q * q, axis=1)
        r_abs = np.linalg.norm(position, axis=1)
        spread = np.sqrt(np.maximum(r2 - r_abs**2, 0.0))
        trans = (wf[1:] * wf[0][None, :]) @ q
        return ExpectationValues(
            norm=norm,
            position=position,
            r_abs=r_abs,
            r_rms=np.sqrt(r2),
            spread=spread,
            transition_dipoles=trans,
            transition_dipoles_sq=np.sum(trans * trans, axis=1),
        )

    def energy_partitioning(self, potential) -> dict[str, np.ndarray]:
        r"""按概率密度加权的势能分量 :math:`\sum_g \rho_n(g)\,E_c(\mathbf r_g)`（Hartree）。

        Returns
        -------
        dict
            键为 ``ENERGY_COMPONENTS``，值为长度 ``n_converged`` 的数组。
        """
        self._require_converged()
        local = potential.clone()
        q = self.points()
        ncomp = len(ENERGY_COMPONENTS)
        comps = np.empty((self.grid.size, ncomp))
        for igp in range(self.grid.size):
            local.evaluate(q[igp])
            comps[igp] = local.report_energies(ncomp)
        rho = self.wavefn[: self.n_converged] ** 2
        weighted = rho @ comps
        return {name: weighted[:, c] for c, name in enumerate(ENERGY_COMPONENTS)}

    def wavefunction_cube(self, iwf: int) -> np.ndarray:
        r"""第 ``iwf`` 个态（从 1 开始计数）的三维数组，乘以 :math:`1/\sqrt{\mathrm dV}`。"""
        if self.grid.ndim != 3:
            raise ConfigurationError("波函数立方体仅支持三维网格")
        if not 1 <= iwf <= self.n_converged:
            raise ValueError(f"请求的态 {iwf} 超出已收敛范围 1..{self.n_converged}")
        scale = 1.0 / np.sqrt(volume_element(self.axes))
        if self.verbose > 2:
            print(f"  Cube normalization factor is {scale:.8f}")
        return scale * self.wavefn[iwf - 1].reshape(self.grid.npts, order="F")
