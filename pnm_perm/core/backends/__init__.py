"""
計算後端系統
CPU (numpy/scipy) 參考實現與 Taichi 裝置實現
"""

from .compute_backends import (
    ACCELERATOR_LOCK, ComputeBackend, LatticeKernels, create_backend, hagen_poiseuille_conductance,
)
from .cpu_backend import CPUBackend, CPULattice

__all__ = [
    'ACCELERATOR_LOCK',
    'ComputeBackend',
    'LatticeKernels',
    'CPUBackend',
    'CPULattice',
    'create_backend',
    'hagen_poiseuille_conductance',
]
