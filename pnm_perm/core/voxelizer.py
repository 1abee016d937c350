"""
孔隙網絡體素化
孔隙 → 實心球，喉道 → 沿 3D Bresenham 直線以喉道半徑加粗的膠囊

解析度 = 平均孔隙半徑 / 3，網格 = 孔隙中心包圍盒外擴 2×最大半徑；
任一軸超過上限時整體等比例放大格距 (不做單軸壓縮)。
"""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from ..config import config
from ..error_handling import DegenerateGeometryError
from ..network import FlowAxis, PoreNetworkModel
from ..utils.logger import SimulationLogger

logger = SimulationLogger(__name__, "Voxelizer")


@dataclass(frozen=True)
class VoxelGrid:
    """體素網格 (僅存在於單次 LBM 執行期間)"""
    fluid: np.ndarray            # (nx, ny, nz) bool
    resolution: float            # µm / 格
    origin: np.ndarray           # (3,) µm，格點 (0,0,0) 的中心

    @property
    def shape(self) -> Tuple[int, int, int]:
        return tuple(int(s) for s in self.fluid.shape)

    @property
    def n_cells(self) -> int:
        return int(self.fluid.size)

    @property
    def fluid_fraction(self) -> float:
        return float(self.fluid.mean()) if self.fluid.size else 0.0

    def to_cell(self, point_um) -> np.ndarray:
        """物理座標 → 最近格點 (限制在網格內)"""
        idx = np.rint((np.asarray(point_um, dtype=np.float64) - self.origin) / self.resolution).astype(np.int64)
        return np.clip(idx, 0, np.array(self.shape) - 1)

    def flat_index(self, cells: np.ndarray) -> np.ndarray:
        """(m, 3) 格點 → 扁平索引"""
        cells = np.asarray(cells, dtype=np.int64).reshape(-1, 3)
        _, ny, nz = self.shape
        return (cells[:, 0] * ny + cells[:, 1]) * nz + cells[:, 2]

    def cells_within(self, center_um, radius_um: float) -> np.ndarray:
        """球內的格點扁平索引 (至少包含中心格點)"""
        center = self.to_cell(center_um)
        r = max(radius_um / self.resolution, 0.0)
        lo = np.maximum(center - int(math.ceil(r)), 0)
        hi = np.minimum(center + int(math.ceil(r)) + 1, np.array(self.shape))
        ii, jj, kk = np.meshgrid(*(np.arange(a, b) for a, b in zip(lo, hi)), indexing="ij")
        d2 = (ii - center[0]) ** 2 + (jj - center[1]) ** 2 + (kk - center[2]) ** 2
        inside = d2 <= r * r
        cells = np.stack([ii[inside], jj[inside], kk[inside]], axis=1)
        return self.flat_index(cells)


def bresenham_line(start, end) -> np.ndarray:
    """3D Bresenham 直線，包含兩端點，回傳 (m, 3) 格點"""
    x, y, z = (int(v) for v in start)
    x1, y1, z1 = (int(v) for v in end)
    dx, dy, dz = abs(x1 - x), abs(y1 - y), abs(z1 - z)
    sx = 1 if x1 > x else -1
    sy = 1 if y1 > y else -1
    sz = 1 if z1 > z else -1
    points = [(x, y, z)]

    if dx >= dy and dx >= dz:
        e1, e2 = 2 * dy - dx, 2 * dz - dx
        for _ in range(dx):
            x += sx
            if e1 > 0:
                y += sy
                e1 -= 2 * dx
            if e2 > 0:
                z += sz
                e2 -= 2 * dx
            e1 += 2 * dy
            e2 += 2 * dz
            points.append((x, y, z))
    elif dy >= dx and dy >= dz:
        e1, e2 = 2 * dx - dy, 2 * dz - dy
        for _ in range(dy):
            y += sy
            if e1 > 0:
                x += sx
                e1 -= 2 * dy
            if e2 > 0:
                z += sz
                e2 -= 2 * dy
            e1 += 2 * dx
            e2 += 2 * dz
            points.append((x, y, z))
    else:
        e1, e2 = 2 * dy - dz, 2 * dx - dz
        for _ in range(dz):
            z += sz
            if e1 > 0:
                y += sy
                e1 -= 2 * dz
            if e2 > 0:
                x += sx
                e2 -= 2 * dz
            e1 += 2 * dy
            e2 += 2 * dx
            points.append((x, y, z))
    return np.array(points, dtype=np.int64)


def grid_dimensions(extent_um: np.ndarray, resolution: float, max_grid: int) -> Tuple[np.ndarray, float]:
    """
    計算網格尺寸

    超過 max_grid 時以同一比例放大格距，三軸長寬比維持不變。
    """
    dims = np.maximum(np.ceil(extent_um / resolution).astype(np.int64) + 1, 1)
    largest = int(dims.max())
    if largest > max_grid:
        resolution *= (largest - 1) / max(max_grid - 1, 1)
        dims = np.maximum(np.ceil(extent_um / resolution - 1e-9).astype(np.int64) + 1, 1)
        dims = np.minimum(dims, max_grid)
    return dims, resolution


def _paint_sphere(fluid: np.ndarray, center: np.ndarray, r_cells: float) -> None:
    shape = np.array(fluid.shape)
    reach = int(math.ceil(r_cells))
    lo = np.maximum(center - reach, 0)
    hi = np.minimum(center + reach + 1, shape)
    if np.any(hi <= lo):
        return
    ii, jj, kk = np.ogrid[lo[0]:hi[0], lo[1]:hi[1], lo[2]:hi[2]]
    d2 = (ii - center[0]) ** 2 + (jj - center[1]) ** 2 + (kk - center[2]) ** 2
    fluid[lo[0]:hi[0], lo[1]:hi[1], lo[2]:hi[2]] |= d2 <= r_cells * r_cells


def voxelize(model: PoreNetworkModel, max_grid: int) -> VoxelGrid:
    """
    把孔隙網絡轉成流體/固體網格

    Args:
        model: 孔隙網絡
        max_grid: 單軸格點上限 (GPU 150 / CPU 100)

    Raises:
        DegenerateGeometryError: 孔隙半徑全為零
    """
    centers = model.centers()
    radii = model.pore_radii()
    mean_radius = float(radii.mean()) if radii.size else 0.0
    max_radius = float(radii.max()) if radii.size else 0.0
    if mean_radius <= 0:
        raise DegenerateGeometryError("平均孔隙半徑為零，無法體素化")

    resolution = mean_radius / config.VOXELS_PER_MEAN_RADIUS
    padding = config.DOMAIN_PADDING_RADII * max_radius
    lo = centers.min(axis=0) - padding
    hi = centers.max(axis=0) + padding
    dims, resolution = grid_dimensions(hi - lo, resolution, max_grid)

    fluid = np.zeros(tuple(int(d) for d in dims), dtype=bool)
    grid = VoxelGrid(fluid, resolution, lo)

    for center, radius in zip(centers, radii):
        _paint_sphere(fluid, grid.to_cell(center), radius / resolution)

    endpoints = model.throat_endpoints()
    for throat, (a, b) in zip(model.throats, endpoints):
        r_cells = throat.radius / resolution
        for cell in bresenham_line(grid.to_cell(centers[a]), grid.to_cell(centers[b])):
            fluid[tuple(cell)] = True
            _paint_sphere(fluid, cell, r_cells)

    logger.info(
        f"🧱 體素化完成: {grid.shape}, 解析度 {resolution:.3f} µm, 流體比例 {grid.fluid_fraction:.3f}"
    )
    return grid


def _scan_face(fluid_axis_first: np.ndarray, depth: int, reverse: bool) -> np.ndarray:
    """每一列由端面向內掃描 depth 層，取第一個流體格點 → (m, 3) (軸在前)"""
    length = fluid_axis_first.shape[0]
    window = fluid_axis_first[::-1][:depth] if reverse else fluid_axis_first[:depth]
    has_fluid = window.any(axis=0)
    first = window.argmax(axis=0)
    a_idx, b_idx = np.nonzero(has_fluid)
    pos = first[a_idx, b_idx]
    if reverse:
        pos = length - 1 - pos
    return np.stack([pos, a_idx, b_idx], axis=1)


def _extreme_plane(fluid_axis_first: np.ndarray, reverse: bool) -> np.ndarray:
    """最外側含流體的平面上所有流體格點"""
    planes = np.nonzero(fluid_axis_first.any(axis=(1, 2)))[0]
    if planes.size == 0:
        return np.zeros((0, 3), dtype=np.int64)
    plane = planes[-1] if reverse else planes[0]
    a_idx, b_idx = np.nonzero(fluid_axis_first[plane])
    return np.stack([np.full(a_idx.shape, plane), a_idx, b_idx], axis=1)


def find_boundary_cells(grid: VoxelGrid, axis: FlowAxis,
                        scan_fraction: float = config.BOUNDARY_SCAN_FRACTION) -> Tuple[np.ndarray, np.ndarray]:
    """
    入口/出口格點 (扁平索引)

    入口：由低端面向內掃描前 scan_fraction 網格，每列第一個流體格點；
    出口同理由高端面。找不到時改用最外側流體平面。兩者重疊時以出口為準。
    """
    fluid = np.moveaxis(grid.fluid, axis.index, 0)
    depth = max(1, int(fluid.shape[0] * scan_fraction))

    found = []
    for reverse, name in ((False, "入口"), (True, "出口")):
        cells = _scan_face(fluid, depth, reverse)
        if cells.shape[0] == 0:
            logger.warning(f"⚠️ {name}掃描 {depth} 層未找到流體，改用最外側流體平面")
            cells = _extreme_plane(fluid, reverse)
        found.append(grid.flat_index(_restore_axis(cells, axis)))

    inlet, outlet = found
    inlet = np.setdiff1d(inlet, outlet)
    return inlet, np.unique(outlet)


def _restore_axis(cells: np.ndarray, axis: FlowAxis) -> np.ndarray:
    """(軸, a, b) 座標 → (i, j, k)"""
    cells = np.asarray(cells, dtype=np.int64).reshape(-1, 3)
    out = np.empty_like(cells)
    perp = axis.perpendicular
    out[:, axis.index] = cells[:, 0]
    out[:, perp[0]] = cells[:, 1]
    out[:, perp[1]] = cells[:, 2]
    return out
