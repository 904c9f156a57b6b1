"""
permx: edge-preserving filtering of dense grids on the permutohedral lattice.

The NumPy backend is imported here, the TF op and layer live in `permx.lattice_filter_tf`.
"""

from .config import LatticeFilterConfig
from .features import build_positions, spatial_grid
from .lattice_filter import filter_with_config, lattice_filter
from .model_src.hash_table import LatticeHashTable
from .model_src.permutohedralx_initializer import PermutohedralXInitializer
from .model_src.permutohedralx_np import PermutohedralLattice
from .model_src.simplex_embedder import SimplexAssignment, SimplexEmbedder

__version__ = "0.1.0"

__all__ = [
    "LatticeFilterConfig",
    "LatticeHashTable",
    "PermutohedralLattice",
    "PermutohedralXInitializer",
    "SimplexAssignment",
    "SimplexEmbedder",
    "build_positions",
    "filter_with_config",
    "lattice_filter",
    "spatial_grid",
]
