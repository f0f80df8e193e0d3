#!/usr/bin/env python
"""三维 DVR 过剩电子计算统一入口。

在可分离网格上求解模型势中过剩电子的最低若干本征态，
可选输出 cube 文件、坐标平面切片与能量分解。

运行示例：

    python examples/run_dvr.py --npts 20 20 20 --length 20 --model harmonic --nstates 3
    python examples/run_dvr.py --model sites --diag 2 --sampling 5 --cube --cuts --out out/
"""

import argparse
import sys
import warnings
from pathlib import Path

# 添加 src 到路径
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np

from edvr import (
    DVR,
    CapacityError,
    ConfigurationError,
    DVRConfig,
    HarmonicPotential,
    SoftCoulombSites,
    SolverRequest,
    StartVectorPolicy,
)
from edvr.constants import BOHR_TO_ANGSTROM, HARTREE_TO_MEV
from edvr.io import (
    export_energies_json,
    write_cube_file,
    write_one_d_cuts,
    write_potential_cuts,
    write_wavefunction_cuts,
)

# 水分子状的三位点模型（Bohr）；正电荷位点吸引电子
_SITES = np.array([[0.0, 0.0, 0.0], [1.43, 1.11, 0.0], [-1.43, 1.11, 0.0]])
_CHARGES = np.array([-0.8, 0.6, 0.6])
_ATOMIC_NUMBERS = [8, 1, 1]


def build_potential(args):
    if args.model == "harmonic":
        return HarmonicPotential(args.omega)
    return SoftCoulombSites(_SITES, _CHARGES, softening=args.softening, repulsion=args.repulsion)


def print_summary(dvr, result, args):
    print("\n" + "=" * 60)
    print(f"DVR 结果：{result.n_converged} / {args.nstates} 个态收敛")
    print("=" * 60)
    print(f"{'态':>4} {'E (Ha)':>16} {'E (meV)':>14}")
    for i, e in enumerate(result.energies):
        print(f"{i:>4} {e:16.10f} {e * HARTREE_TO_MEV:14.4f}")

    if result.n_converged == 0 or dvr.grid.ndim != 3:
        return
    ev = dvr.expectation_values()
    print("\n态     <|r|>     sqrt(<r^2>)   spread  (Å)")
    for i in range(result.n_converged):
        print(
            f" {i:3d}   {ev.r_abs[i] * BOHR_TO_ANGSTROM:10.5f}  "
            f"{ev.r_rms[i] * BOHR_TO_ANGSTROM:10.5f}  {ev.spread[i] * BOHR_TO_ANGSTROM:10.5f}"
        )
    if result.n_converged > 1:
        print("\n跃迁偶极 d^2 与 d = (<n|x|0>, <n|y|0>, <n|z|0>)（原子单位）")
        for i, (d, d2) in enumerate(zip(ev.transition_dipoles, ev.transition_dipoles_sq), start=1):
            print(f" {i:3d}  {d2:10.5f}   ({d[0]:10.5f}, {d[1]:10.5f}, {d[2]:10.5f})")


def main():
    parser = argparse.ArgumentParser(
        description="三维 DVR 过剩电子计算",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    # 网格参数
    parser.add_argument("--npts", type=int, nargs="+", default=[16, 16, 16], help="各轴网格点数")
    parser.add_argument("--basis", type=int, default=2, help="基组代码：1 谐振子，0/2 正弦，20 Colbert–Miller，3 Fourier")
    parser.add_argument("--length", type=float, nargs="+", default=[16.0], help="盒长 (Bohr) 或谐振子频率")
    parser.add_argument("--sampling", type=int, default=1, help="势能采样代码（1-4，>=5 为模板平滑阶数）")
    parser.add_argument("--workers", type=int, default=1, help="并行线程数")

    # 模型势
    parser.add_argument("--model", type=str, default="harmonic", choices=["harmonic", "sites"], help="模型势")
    parser.add_argument("--omega", type=float, nargs="+", default=[0.5, 0.6, 0.7], help="谐振子频率 (Ha)")
    parser.add_argument("--softening", type=float, default=1.0, help="软化长度 (Bohr)")
    parser.add_argument("--repulsion", type=float, default=0.5, help="Gauss 排斥幅度 (Ha)")

    # 求解器参数
    parser.add_argument("--nstates", type=int, default=3, help="本征态数目")
    parser.add_argument("--diag", type=int, default=1, help="对角化代码：0 全对角化，1 Arnoldi，2/3/4 Davidson")
    parser.add_argument("--start", type=int, default=2, help="起始向量：0 复用，1 箱中粒子，2 随机")
    parser.add_argument("--max-subspace", type=int, default=0, help="最大子空间维数（0 为自动）")
    parser.add_argument("--max-iter", type=int, default=300, help="最大迭代次数")
    parser.add_argument("--tol-exp", type=int, default=8, help="收敛阈值指数")
    parser.add_argument("--seed", type=int, default=None, help="随机种子")
    parser.add_argument("-v", "--verbose", type=int, default=1, help="输出级别")

    # 输出
    parser.add_argument("--out", type=str, default="dvr_out", help="输出目录")
    parser.add_argument("--cube", action="store_true", help="写出各态 cube 文件")
    parser.add_argument("--cuts", action="store_true", help="写出势能与波函数切片")
    args = parser.parse_args()

    try:
        cfg = DVRConfig(
            npts=tuple(args.npts),
            basis=args.basis,
            grid_params=args.length if len(args.length) > 1 else args.length[0],
            sampling=args.sampling,
            n_workers=args.workers,
            seed=args.seed,
            verbose=args.verbose,
        )
        request = SolverRequest.from_code(
            args.diag,
            n_states=args.nstates,
            max_subspace=args.max_subspace,
            max_iterations=args.max_iter,
            tolerance_exponent=args.tol_exp,
        )
        start = StartVectorPolicy.from_code(args.start)
        dvr = DVR(cfg)
        potential = build_potential(args)
        dvr.compute_potential(potential)
        with warnings.catch_warnings():
            warnings.simplefilter("always")
            result = dvr.diagonalize(request, start)
    except CapacityError as e:
        print(f"容量错误: {e}", file=sys.stderr)
        sys.exit(e.exit_code)
    except ConfigurationError as e:
        print(f"配置错误: {e}", file=sys.stderr)
        sys.exit(1)

    print_summary(dvr, result, args)

    out = Path(args.out)
    summary = {"energies": result.energies, "n_converged": result.n_converged}
    if result.n_converged > 0:
        parts = dvr.energy_partitioning(potential)
        print("\n能量分解 (meV)")
        print("态     " + "  ".join(f"{k:>10}" for k in parts))
        for i in range(result.n_converged):
            print(f" {i:3d}  " + "  ".join(f"{parts[k][i] * HARTREE_TO_MEV:10.5f}" for k in parts))
        summary.update({f"v_{k}": v for k, v in parts.items()})
        if args.model == "sites":
            grad = dvr.compute_gradient(potential)
            print("\n位点梯度 (Ha/Bohr)")
            for j, g in enumerate(grad.gradient):
                print(f" {j:3d}  {g[0]:12.6f} {g[1]:12.6f} {g[2]:12.6f}")
            summary["gradient"] = grad.gradient

    if args.cube:
        for iwf in range(1, result.n_converged + 1):
            if args.model == "sites":
                write_cube_file(dvr, iwf, out / f"WaveFn{iwf:02d}.cube", _ATOMIC_NUMBERS, _SITES * BOHR_TO_ANGSTROM)
            else:
                write_cube_file(dvr, iwf, out / f"WaveFn{iwf:02d}.cube")
    if args.cuts:
        write_potential_cuts(dvr, out)
        write_wavefunction_cuts(dvr, out)
        write_one_d_cuts(dvr, out)
    export_energies_json(out / "energies.json", summary)
    print(f"\n已保存: {out / 'energies.json'}")


if __name__ == "__main__":
    main()
