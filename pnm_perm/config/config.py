# config.py - 滲透率模擬核心參數
"""
孔隙網絡滲透率模擬參數
集中管理單位換算、求解器容差、LBM理論常數與網格限制

所有數值均為模組層級常數，執行期可調整的部分透過
SimulationSettings (config_manager) 覆寫，不直接修改本模組。
"""

import numpy as np

# ==============================================
# 單位換算
# ==============================================

MICRON_TO_M = 1e-6                     # µm → m
MICRON2_TO_M2 = 1e-12                  # µm² → m²
MICRON3_TO_M3 = 1e-18                  # µm³ → m³
DARCY_TO_M2 = 9.869233e-13             # 1 Darcy = 9.869233e-13 m²
MILLIDARCY_PER_DARCY = 1000.0

# ==============================================
# 邊界孔隙選取
# ==============================================

# 沿流動軸兩端各取10%孔隙作為入口/出口
BOUNDARY_FRACTION = 0.1

# ==============================================
# 線性求解器 (Gauss-Seidel / Jacobi)
# ==============================================

SOLVER_TOLERANCE = 1e-10
CPU_SOLVER_MAX_ITERATIONS = 10000
GPU_SOLVER_MAX_ITERATIONS = 5000
SINGULAR_DIAGONAL_EPS = 1e-10       # 相對於該列最大 |A_ij|
SOLVER_LOG_INTERVAL = 100

# 喉道長度下限 (µm)，避免零長度喉道導致導率發散
MIN_THROAT_LENGTH_UM = 1e-3

# ==============================================
# D3Q19 LBM理論參數
# ==============================================

Q_3D = 19
CS2 = 1.0 / 3.0        # 格子聲速平方
INV_CS2 = 3.0

# D3Q19離散速度: 0靜止, 1-6面鄰居, 7-18邊鄰居
CX_3D = np.array([0, 1, -1, 0, 0, 0, 0, 1, -1, 1, -1, 1, -1, 1, -1, 0, 0, 0, 0], dtype=np.int32)
CY_3D = np.array([0, 0, 0, 1, -1, 0, 0, 1, -1, -1, 1, 0, 0, 0, 0, 1, -1, 1, -1], dtype=np.int32)
CZ_3D = np.array([0, 0, 0, 0, 0, 1, -1, 0, 0, 0, 0, 1, -1, -1, 1, 1, -1, -1, 1], dtype=np.int32)

WEIGHTS_3D = np.array(
    [1.0 / 3.0] + [1.0 / 18.0] * 6 + [1.0 / 36.0] * 12,
    dtype=np.float64,
)

# 反向速度索引 (bounce-back)
OPPOSITE_3D = np.array([0, 2, 1, 4, 3, 6, 5, 8, 7, 10, 9, 12, 11, 14, 13, 16, 15, 18, 17], dtype=np.int32)

assert abs(np.sum(WEIGHTS_3D) - 1.0) < 1e-12, "權重係數歸一化失敗"
assert all(
    CX_3D[OPPOSITE_3D[q]] == -CX_3D[q] and CY_3D[OPPOSITE_3D[q]] == -CY_3D[q] and CZ_3D[OPPOSITE_3D[q]] == -CZ_3D[q]
    for q in range(Q_3D)
), "反向速度表不一致"

# BGK單鬆弛時間 (τ=1 → ω=1)
LBM_TAU = 1.0
LBM_OMEGA = 1.0 / LBM_TAU
NU_LATTICE = CS2 * (LBM_TAU - 0.5)     # 格子單位運動黏滯度

# ==============================================
# LBM收斂與網格控制
# ==============================================

LBM_CONVERGENCE_TOLERANCE = 1e-6
LBM_MIN_ITERATIONS = 100
LBM_MAX_ITERATIONS = 5000
LBM_LOG_INTERVAL = 10
LBM_FLOW_THRESHOLD = 1e-10

# 網格最大邊長 (格點數)
MAX_GRID_GPU = 150
MAX_GRID_CPU = 100

# 解析度 = 平均孔隙半徑 / 3
VOXELS_PER_MEAN_RADIUS = 3.0
# 網格外擴 = 2 × 最大孔隙半徑
DOMAIN_PADDING_RADII = 2.0
# 入口/出口掃描深度 (網格比例)
BOUNDARY_SCAN_FRACTION = 0.1

# 格子單位壓力差 (密度差 δρ)，入口 ρ=1+δρ/2，出口 ρ=1-δρ/2
LBM_DENSITY_DIFFERENCE = 0.01
LBM_REFERENCE_DENSITY = 1.0

# 壓力場是否「缺乏變化」的相對判據
PRESSURE_VARIATION_THRESHOLD = 1e-6

# ==============================================
# Kozeny-Carman
# ==============================================

KOZENY_CONSTANT = 5.0
MIN_POROSITY = 0.001
MAX_POROSITY = 0.999

# ==============================================
# Navier-Stokes (Forchheimer)
# ==============================================

FLUID_DENSITY = 1000.0                 # kg/m³ (水)
ERGUN_INERTIAL_CONSTANT = 1.75
FORCHHEIMER_TOLERANCE = 1e-6
FORCHHEIMER_MAX_ITERATIONS = 100
FORCHHEIMER_RELAXATION = 0.3           # v ← 0.7 v_old + 0.3 v_new
TURBULENCE_REYNOLDS_WARNING = 10.0
NON_DARCY_REYNOLDS = 1.0
# 非線性壓力修正的最大振幅 (Δp比例)
NONLINEAR_PRESSURE_AMPLITUDE = 0.1

# ==============================================
# 執行
# ==============================================

# CPU LBM slab並行的最大執行緒數
CPU_THREADS = 4
# 方法層級執行緒池
METHOD_WORKERS = 2

# 進度里程碑
PROGRESS_START = 5
PROGRESS_GEOMETRY = 15
PROGRESS_DARCY = 40
PROGRESS_LBM = 70
PROGRESS_DONE = 100

