"""
體素化與邊界格點偵測測試
====================

- 超過網格上限時等比例放大格距 (長寬比不變)
- Bresenham 直線連續且包含端點
- 入口/出口掃描找不到流體時改用最外側流體平面
"""

import numpy as np
import pytest

from pnm_perm.core.voxelizer import (
    VoxelGrid, bresenham_line, find_boundary_cells, grid_dimensions, voxelize,
)
from pnm_perm.error_handling import DegenerateGeometryError
from pnm_perm.network import FlowAxis, Pore, PoreNetworkModel

from conftest import line_network


class TestGridDimensions:
    """網格尺寸與縮放"""

    def test_within_limit_unchanged(self):
        dims, resolution = grid_dimensions(np.array([20.0, 10.0, 5.0]), 1.0, 100)
        assert dims.tolist() == [21, 11, 6]
        assert resolution == 1.0

    def test_rescale_preserves_aspect_ratio(self):
        extent = np.array([200.0, 100.0, 50.0])
        dims, resolution = grid_dimensions(extent, 1.0, 51)
        assert dims.max() <= 51
        assert resolution == pytest.approx(4.0)
        assert dims.tolist() == [51, 26, 14]
        # 每軸覆蓋範圍仍包含原始尺寸
        assert np.all((dims - 1) * resolution >= extent - 1e-9)

    def test_voxelized_grid_respects_limit(self):
        grid = voxelize(line_network(10), 24)
        assert max(grid.shape) <= 24
        assert grid.shape[1] == grid.shape[2]
        assert grid.shape[0] > grid.shape[1]
        assert 0.0 < grid.fluid_fraction < 1.0

    def test_zero_radius_degenerate(self):
        model = PoreNetworkModel((Pore(0, (0, 0, 0), 0.0), Pore(1, (5, 0, 0), 0.0)), ())
        with pytest.raises(DegenerateGeometryError):
            voxelize(model, 24)


class TestBresenham:
    """3D Bresenham"""

    @pytest.mark.parametrize("end", [(7, 3, 1), (-2, 5, 9), (0, 0, -6), (4, 4, 4)])
    def test_line_connected_with_endpoints(self, end):
        line = bresenham_line((0, 0, 0), end)
        assert tuple(line[0]) == (0, 0, 0)
        assert tuple(line[-1]) == end
        steps = np.abs(np.diff(line, axis=0))
        assert np.all(steps.max(axis=1) == 1)
        assert len(line) == max(abs(c) for c in end) + 1


class TestBoundaryCells:
    """入口/出口格點"""

    def test_scan_finds_face_cells(self):
        fluid = np.zeros((10, 3, 3), dtype=bool)
        fluid[:, 1, 1] = True
        grid = VoxelGrid(fluid, 1.0, np.zeros(3))
        inlet, outlet = find_boundary_cells(grid, FlowAxis.X, 0.1)
        assert inlet.tolist() == [grid.flat_index([[0, 1, 1]])[0]]
        assert outlet.tolist() == [grid.flat_index([[9, 1, 1]])[0]]

    def test_fallback_to_outermost_fluid_plane(self):
        fluid = np.zeros((10, 3, 3), dtype=bool)
        fluid[4:6, 1, 1] = True
        grid = VoxelGrid(fluid, 1.0, np.zeros(3))
        inlet, outlet = find_boundary_cells(grid, FlowAxis.X, 0.1)
        assert inlet.tolist() == [40]
        assert outlet.tolist() == [49]

    def test_other_axis(self):
        fluid = np.zeros((3, 3, 8), dtype=bool)
        fluid[1, 2, :] = True
        grid = VoxelGrid(fluid, 1.0, np.zeros(3))
        inlet, outlet = find_boundary_cells(grid, FlowAxis.Z, 0.1)
        assert inlet.tolist() == grid.flat_index([[1, 2, 0]]).tolist()
        assert outlet.tolist() == grid.flat_index([[1, 2, 7]]).tolist()

    def test_overlap_resolved_to_outlet(self):
        fluid = np.zeros((4, 3, 3), dtype=bool)
        fluid[2, 1, 1] = True
        grid = VoxelGrid(fluid, 1.0, np.zeros(3))
        inlet, outlet = find_boundary_cells(grid, FlowAxis.X, 0.1)
        assert inlet.size == 0
        assert outlet.tolist() == grid.flat_index([[2, 1, 1]]).tolist()
