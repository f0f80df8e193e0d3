from __future__ import annotations

import copy
from abc import ABC, abstractmethod

import numpy as np

"""势能面求值器接口与解析模型势。

DVR 核心只通过 :class:`Potential` 的方法访问势能面：

- ``evaluate(point)``：格点上的标量势能；
- ``evaluate_gradient(...)``：对各位点坐标的导数贡献，并累加偶极缓冲；
- ``final_gradient(...)``：并行区结束前由每个工作者调用一次，整理私有缓冲；
- ``subtract_pair_gradient(...)``：扣除位点-位点（非电子）梯度并并入极化梯度；
- ``report_energies(n)``：最近一次 ``evaluate`` 的能量分解；
- ``clone()``：供每个工作者私有使用的副本。

模型势仅用于测试与示例，不包含新的物理模型。
"""

__all__ = [
    "ENERGY_COMPONENTS",
    "Potential",
    "ConstantPotential",
    "HarmonicPotential",
    "SoftCoulombSites",
]

# report_energies 返回的分量顺序
ENERGY_COMPONENTS = ("elec", "ind", "rep", "pol", "total")


class Potential(ABC):
    """势能面求值器抽象基类。

    Attributes
    ----------
    n_sites : int
        梯度输出中的位点数（梯度形状 ``(n_sites, 3)``）。
    n_dipole_sites : int
        偶极缓冲中的位点数（偶极形状 ``(n_dipole_sites, 3)``，
        偶极-偶极关联形状 ``(n_dipole_sites, 3, 3)``）。
    """

    n_sites: int = 0
    n_dipole_sites: int = 0

    @abstractmethod
    def evaluate(self, point: np.ndarray) -> float:
        """返回 ``point`` 处的势能（Hartree）。"""

    def evaluate_gradient(
        self,
        point: np.ndarray,
        grad_out: np.ndarray,
        dipole: np.ndarray,
        dipole_dipole: np.ndarray,
        weight: float,
    ) -> None:
        r"""把 ``point`` 处势能对位点坐标的导数写入 ``grad_out``。

        ``weight`` 为该格点上的波函数值 :math:`\psi`；偶极类缓冲按
        :math:`\psi^2` 加权累加。``grad_out`` 本身不加权，由调用方乘以 :math:`\psi^2`。
        """
        raise NotImplementedError(f"{type(self).__name__} 未提供位点梯度")

    def final_gradient(
        self,
        gradient: np.ndarray,
        dipole: np.ndarray,
        dipole_dipole: np.ndarray,
        field_gradient: np.ndarray,
        efield: np.ndarray,
    ) -> None:
        """每个工作者在累加结束后调用一次，把私有偶极缓冲并入输出。"""

    def subtract_pair_gradient(self, pol_grad: np.ndarray | None, gradient: np.ndarray) -> None:
        """扣除位点-位点梯度，并并入外部提供的极化梯度。"""
        if pol_grad is not None:
            gradient += np.asarray(pol_grad, dtype=float).reshape(gradient.shape)

    def report_energies(self, n: int = len(ENERGY_COMPONENTS)) -> np.ndarray:
        """最近一次 ``evaluate`` 的能量分量（前 ``n`` 个）。"""
        return np.zeros(n)

    def clone(self) -> "Potential":
        return copy.deepcopy(self)


class ConstantPotential(Potential):
    """处处为常数的势能。"""

    def __init__(self, value: float = 0.0):
        self.value = float(value)

    def evaluate(self, point):
        return self.value

    def evaluate_gradient(self, point, grad_out, dipole, dipole_dipole, weight):
        # 无位点
        pass

    def report_energies(self, n=len(ENERGY_COMPONENTS)):
        comps = np.array([self.value, 0.0, 0.0, 0.0, self.value])
        return comps[:n]


class HarmonicPotential(Potential):
    r"""可分离各向异性谐振子势

    .. math::
        V(\mathbf r) = \tfrac12 m \sum_d \omega_d^2 (r_d - c_d)^2.
    """

    def __init__(self, omega, center=None, mass: float = 1.0):
        self.omega = np.atleast_1d(np.asarray(omega, dtype=float))
        self.center = None if center is None else np.asarray(center, dtype=float)
        self.mass = float(mass)
        self._last = 0.0

    def evaluate(self, point):
        q = np.asarray(point, dtype=float)
        if self.center is not None:
            q = q - self.center
        w = np.broadcast_to(self.omega, q.shape)
        self._last = float(0.5 * self.mass * np.sum(w * w * q * q))
        return self._last

    def evaluate_gradient(self, point, grad_out, dipole, dipole_dipole, weight):
        # 外势不依赖任何位点
        pass

    def report_energies(self, n=len(ENERGY_COMPONENTS)):
        comps = np.array([self._last, 0.0, 0.0, 0.0, self._last])
        return comps[:n]

    def axis_potential(self, axis: int, x: np.ndarray) -> np.ndarray:
        """第 ``axis`` 轴上的一维分量 :math:`\\tfrac12 m\\omega_d^2 (x-c_d)^2`。"""
        w = self.omega[axis] if self.omega.size > 1 else self.omega[0]
        c = 0.0 if self.center is None else self.center[axis]
        return 0.5 * self.mass * w * w * (np.asarray(x, dtype=float) - c) ** 2


class SoftCoulombSites(Potential):
    r"""带软化 Coulomb 吸引与 Gauss 排斥的点位点模型。

    .. math::
        V(\mathbf r) = \sum_j\left[-\frac{q_j}{\sqrt{|\mathbf r-\mathbf R_j|^2+a^2}}
        + A_j\,e^{-\alpha_j|\mathbf r-\mathbf R_j|^2}\right].

    位点之间的 Coulomb 对能 :math:`\sum_{i<j} q_i q_j/|\mathbf R_i-\mathbf R_j|`
    在 :meth:`subtract_pair_gradient` 中扣除其梯度。所有位点同时作为偶极位点，
    偶极缓冲累加电子在位点处产生的（软化）电场。

    Parameters
    ----------
    positions : array_like, shape (n_sites, 3)
        位点坐标（Bohr）。
    charges : array_like, shape (n_sites,)
        位点电荷。
    softening : float
        软化长度 :math:`a`。
    repulsion, exponent : float or array_like
        Gauss 排斥幅度 :math:`A_j` 与指数 :math:`\alpha_j`。
    """

    def __init__(self, positions, charges, softening: float = 1.0, repulsion=0.0, exponent=1.0):
        self.positions = np.asarray(positions, dtype=float).reshape(-1, 3)
        self.charges = np.asarray(charges, dtype=float).reshape(-1)
        if self.charges.size != self.positions.shape[0]:
            raise ValueError("charges 与 positions 的位点数不一致")
        if softening <= 0:
            raise ValueError("softening 必须为正")
        self.softening = float(softening)
        self.repulsion = np.broadcast_to(np.asarray(repulsion, dtype=float), self.charges.shape).copy()
        self.exponent = np.broadcast_to(np.asarray(exponent, dtype=float), self.charges.shape).copy()
        self.n_sites = self.positions.shape[0]
        self.n_dipole_sites = self.n_sites
        self._last = np.zeros(len(ENERGY_COMPONENTS))

    def _geometry(self, point):
        d = np.asarray(point, dtype=float)[None, :] - self.positions
        r2 = np.sum(d * d, axis=1)
        s = np.sqrt(r2 + self.softening**2)
        return d, r2, s

    def evaluate(self, point):
        d, r2, s = self._geometry(point)
        elec = float(np.sum(-self.charges / s))
        rep = float(np.sum(self.repulsion * np.exp(-self.exponent * r2)))
        self._last = np.array([elec, 0.0, rep, 0.0, elec + rep])
        return elec + rep

    def evaluate_gradient(self, point, grad_out, dipole, dipole_dipole, weight):
        d, r2, s = self._geometry(point)
        g_elec = (-self.charges / s**3)[:, None] * d
        g_rep = (2.0 * self.exponent * self.repulsion * np.exp(-self.exponent * r2))[:, None] * d
        grad_out += g_elec + g_rep

        # 电子（电荷 -1）在位点处的软化电场
        field = d / (s**3)[:, None]
        w2 = weight * weight
        dipole += w2 * field
        dipole_dipole += w2 * np.einsum("ia,ib->iab", field, field)

    def final_gradient(self, gradient, dipole, dipole_dipole, field_gradient, efield):
        efield += dipole
        field_gradient += dipole_dipole

    def pair_gradient(self) -> np.ndarray:
        r"""位点-位点 Coulomb 对能对位点坐标的梯度，形状 ``(n_sites, 3)``。"""
        diff = self.positions[:, None, :] - self.positions[None, :, :]
        r = np.linalg.norm(diff, axis=-1)
        np.fill_diagonal(r, np.inf)
        qq = self.charges[:, None] * self.charges[None, :]
        return -np.sum((qq / r**3)[:, :, None] * diff, axis=1)

    def subtract_pair_gradient(self, pol_grad, gradient):
        gradient -= self.pair_gradient()
        super().subtract_pair_gradient(pol_grad, gradient)

    def report_energies(self, n=len(ENERGY_COMPONENTS)):
        return self._last[:n].copy()
