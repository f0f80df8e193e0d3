"""edvr 包
=================

三维可分离网格上过剩电子的离散变量表示（DVR）本征求解器。

本包提供：

- 可分离网格的几何参数与列主序线性索引
- 一维 DVR 基组（谐振子、正弦、Colbert–Miller、Fourier）与各轴动能算子
- Hamiltonian 对角组装与无矩阵作用（供迭代本征求解器使用）
- 势能面的并行采样与模板平滑
- 概率密度加权的位点梯度累加
- 本征求解编排：起始向量管理、求解器分派与收敛记录

注：本项目所有文档与注释均使用中文，Docstring 采用 Sphinx + NumPy 风格，公式使用 ``:math:`` 标记。
"""

from edvr.grid import GridParameters, compute_grid_parameters, ravel_index, unravel_index, grid_points
from edvr.basis import AxisOperator, BasisKind, build_axis_operators, fourier_kinetic_diagonal
from edvr.hamiltonian import SeparableHamiltonian, assemble_diagonal, broadcast_add_axis
from edvr.potential import Potential, ConstantPotential, HarmonicPotential, SoftCoulombSites
from edvr.sampling import SamplingPolicy, sample_potential, smooth_potential
from edvr.gradient import GradientResult, WorkerBufferPool, accumulate_gradient
from edvr.solvers import CorrectionScheme, SolverKind, SolverRequest
from edvr.dvr import DVR, DVRConfig, DiagonalizationResult, ExpectationValues, StartVectorPolicy
from edvr.errors import (
    CapacityError,
    ConfigurationError,
    ConvergenceWarning,
    DVRError,
    NormalizationWarning,
)

__all__ = [
    "GridParameters",
    "compute_grid_parameters",
    "ravel_index",
    "unravel_index",
    "grid_points",
    "AxisOperator",
    "BasisKind",
    "build_axis_operators",
    "fourier_kinetic_diagonal",
    "SeparableHamiltonian",
    "assemble_diagonal",
    "broadcast_add_axis",
    "Potential",
    "ConstantPotential",
    "HarmonicPotential",
    "SoftCoulombSites",
    "SamplingPolicy",
    "sample_potential",
    "smooth_potential",
    "GradientResult",
    "WorkerBufferPool",
    "accumulate_gradient",
    "CorrectionScheme",
    "SolverKind",
    "SolverRequest",
    "DVR",
    "DVRConfig",
    "DiagonalizationResult",
    "ExpectationValues",
    "StartVectorPolicy",
    "DVRError",
    "ConfigurationError",
    "CapacityError",
    "ConvergenceWarning",
    "NormalizationWarning",
]

__version__ = "0.1.0"
