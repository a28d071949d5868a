"""
Dialects of the tile-to-GPU conversion.

Importing this package registers every op verifier and terminator.
"""

from . import builtin, gpu, loop, tile
from .gpu import DescType, RegType
from .tile import TileType, TileVectorType, is_tile_type

__all__ = [
    "DescType",
    "RegType",
    "TileType",
    "TileVectorType",
    "builtin",
    "gpu",
    "is_tile_type",
    "loop",
    "tile",
]
