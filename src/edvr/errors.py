"""异常与警告类型
=================

- :class:`ConfigurationError`：配置错误（非法起始向量策略、非法对角化方法、维度不符等），
  同时继承 :class:`ValueError`，便于调用方统一捕获；
- :class:`CapacityError`：容量错误（全对角化超过网格点上限），携带独立的退出码；
- :class:`ConvergenceWarning`：收敛不足（收敛态少于请求数），非致命；
- :class:`NormalizationWarning`：一致性警告（例如波函数范数偏离 1）。

库代码只抛出异常，是否终止进程由调用方决定。
"""

from __future__ import annotations

__all__ = [
    "DVRError",
    "ConfigurationError",
    "CapacityError",
    "ConvergenceWarning",
    "NormalizationWarning",
]


class DVRError(Exception):
    """edvr 所有异常的基类。"""


class ConfigurationError(DVRError, ValueError):
    """配置错误：属于编程或输入错误，不做恢复。"""


class CapacityError(DVRError, RuntimeError):
    """容量错误：请求的全对角化规模超过上限。

    Attributes
    ----------
    exit_code : int
        供命令行入口使用的进程退出码（与配置错误区分）。
    """

    exit_code = 42

    def __init__(self, size: int, cap: int):
        self.size = size
        self.cap = cap
        super().__init__(f"全对角化网格点数 {size} 超过上限 {cap}（仅用于调试，请改用迭代求解器）")


class ConvergenceWarning(UserWarning):
    """收敛态数目少于请求数。"""


class NormalizationWarning(UserWarning):
    """数值一致性检查失败（如范数偏离 1）。"""
