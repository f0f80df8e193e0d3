"""单位换算常量集中维护
======================

全部内部计算使用原子单位（Hartree、Bohr）；输出时换算为 Å 与 meV。

参考来源：CODATA 2018 推荐值。
"""

from __future__ import annotations

BOHR_TO_ANGSTROM = 0.529177210903
ANGSTROM_TO_BOHR = 1.0 / BOHR_TO_ANGSTROM
HARTREE_TO_EV = 27.211386245988
HARTREE_TO_MEV = 1000.0 * HARTREE_TO_EV

# 立方体文件头部使用的 van der Waals 半径（Å），按原子序数索引
VDW_RADII_ANGSTROM = {
    1: 1.20,
    6: 1.70,
    7: 1.55,
    8: 1.52,
}

# 6 点采样的固定位移（Bohr），与网格类型无关
SIX_POINT_OFFSET = 0.2

# 全对角化的默认网格点上限
FULL_DIAG_SIZE_CAP = 1000
