"""
孔隙網絡模型 - 資料結構
孔隙 (球體) 與喉道 (圓柱) 組成的圖，座標與尺寸單位皆為 µm

模型由上游流程建立，本套件只讀取，不修改。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple, Union

import numpy as np

from .error_handling import InvalidInputError


class FlowAxis(Enum):
    """流動方向"""
    X = "x"
    Y = "y"
    Z = "z"

    @property
    def index(self) -> int:
        return "xyz".index(self.value)

    @property
    def perpendicular(self) -> Tuple[int, int]:
        """垂直於流動方向的兩個軸索引"""
        return tuple(i for i in range(3) if i != self.index)

    @classmethod
    def parse(cls, value: Union["FlowAxis", str, int]) -> "FlowAxis":
        if isinstance(value, FlowAxis):
            return value
        try:
            if isinstance(value, int):
                return list(cls)[value]
            return cls(str(value).lower())
        except (IndexError, ValueError):
            raise InvalidInputError(f"無效的流動方向: {value!r}")


@dataclass(frozen=True)
class Pore:
    """孔隙 (球體)"""
    id: int
    center: Tuple[float, float, float]     # µm
    radius: float                           # µm
    volume: Optional[float] = None          # µm³，量測值 (選填，Kozeny-Carman 優先採用)
    area: Optional[float] = None            # µm²

    def __post_init__(self):
        object.__setattr__(self, "center", tuple(float(c) for c in self.center))


@dataclass(frozen=True)
class Throat:
    """喉道 (圓柱)，連接兩個孔隙"""
    id: int
    pore1: int
    pore2: int
    radius: float                           # µm
    length: float                           # µm


@dataclass(frozen=True)
class PoreNetworkModel:
    """
    孔隙網絡模型

    不變量：每個喉道的端點 id 都必須對應既有孔隙。
    porosity 為選填的預設孔隙率 (None 或 ≤0 表示未預設)。
    """
    pores: Tuple[Pore, ...]
    throats: Tuple[Throat, ...]
    porosity: Optional[float] = None
    _index: Dict[int, int] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "pores", tuple(self.pores))
        object.__setattr__(self, "throats", tuple(self.throats))

        index = {}
        for i, pore in enumerate(self.pores):
            if pore.id in index:
                raise InvalidInputError(f"重複的孔隙 id: {pore.id}")
            index[pore.id] = i
        object.__setattr__(self, "_index", index)

        for throat in self.throats:
            if throat.pore1 not in index or throat.pore2 not in index:
                raise InvalidInputError(
                    f"喉道 {throat.id} 的端點 ({throat.pore1}, {throat.pore2}) 不存在",
                    {"throat": throat.id},
                )

    @classmethod
    def from_arrays(cls, centers, pore_radii, connections, throat_radii, throat_lengths,
                    porosity: Optional[float] = None) -> "PoreNetworkModel":
        """由陣列建立模型 (孔隙/喉道 id 依序編號)"""
        pores = [Pore(i, tuple(c), float(r)) for i, (c, r) in enumerate(zip(centers, pore_radii))]
        throats = [
            Throat(t, int(a), int(b), float(r), float(l))
            for t, ((a, b), r, l) in enumerate(zip(connections, throat_radii, throat_lengths))
        ]
        return cls(tuple(pores), tuple(throats), porosity)

    @property
    def has_preset_porosity(self) -> bool:
        return self.porosity is not None and self.porosity > 0

    @property
    def pore_count(self) -> int:
        return len(self.pores)

    @property
    def throat_count(self) -> int:
        return len(self.throats)

    def pore_index(self, pore_id: int) -> int:
        return self._index[pore_id]

    def centers(self) -> np.ndarray:
        """(N, 3) 孔隙中心 (µm)"""
        return np.array([p.center for p in self.pores], dtype=np.float64).reshape(-1, 3)

    def pore_radii(self) -> np.ndarray:
        return np.array([p.radius for p in self.pores], dtype=np.float64)

    def throat_radii(self) -> np.ndarray:
        return np.array([t.radius for t in self.throats], dtype=np.float64)

    def throat_lengths(self) -> np.ndarray:
        return np.array([t.length for t in self.throats], dtype=np.float64)

    def throat_endpoints(self) -> np.ndarray:
        """(T, 2) 喉道端點的孔隙索引 (非 id)"""
        return np.array(
            [(self._index[t.pore1], self._index[t.pore2]) for t in self.throats],
            dtype=np.int64,
        ).reshape(-1, 2)

    def axis_coordinates(self, axis: FlowAxis) -> np.ndarray:
        return self.centers()[:, axis.index]

    def iter_connections(self, pore_id: int) -> Iterable[Throat]:
        for throat in self.throats:
            if throat.pore1 == pore_id or throat.pore2 == pore_id:
                yield throat
