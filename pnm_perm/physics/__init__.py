"""
滲透率計算方法
- DarcyMethod: 導率網絡 + 線性求解
- LatticeBoltzmannMethod: D3Q19 BGK 流場
- KozenyCarmanMethod: 孔隙率與比表面積經驗式
- NavierStokesMethod: Forchheimer 修正
"""

from .darcy_method import DarcyMethod
from .kozeny_carman import KozenyCarmanMethod
from .lattice_boltzmann_method import LatticeBoltzmannMethod
from .navier_stokes_method import NavierStokesMethod

__all__ = ["DarcyMethod", "KozenyCarmanMethod", "LatticeBoltzmannMethod", "NavierStokesMethod"]
