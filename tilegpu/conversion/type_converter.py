"""
Type Converter: tile-domain types to GPU-domain types.

A tile-domain type is split into hardware blocks. For each of the last two
dims the converter picks the largest candidate block size of the target that
divides the dim (block widths are further limited by the row byte budget);
leading dims are blocked by one. The blocks form a row-major grid and the
conversion is 1:N: one ``DescType`` per block for a ``TileType`` and one
``RegType`` per block for a ``TileVectorType``.

The converter holds no mutable state, so one instance can be shared by any
number of conversion runs.
"""

from __future__ import annotations
import itertools
import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from ..attrs import CAST_SOURCE, CAST_TARGET
from ..dialects import builtin
from ..dialects.gpu import DescType, RegType
from ..dialects.tile import TileType, TileVectorType, is_tile_type
from ..ir.builder import OpBuilder
from ..ir.core import Value
from ..ir.types import ScalarType, Type
from ..target import HardwareTarget, get_target
from .errors import UnconvertibleType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlockLayout:
    """Row-major grid of equally shaped blocks covering a logical shape."""

    shape: Tuple[int, ...]
    grid: Tuple[int, ...]
    block: Tuple[int, ...]

    @property
    def num_blocks(self) -> int:
        count = 1
        for g in self.grid:
            count *= g
        return count

    def block_coords(self) -> List[Tuple[int, ...]]:
        """Grid coordinates of every block, in row-major order."""
        return list(itertools.product(*(range(g) for g in self.grid)))

    def block_offsets(self) -> List[Tuple[int, ...]]:
        """Element offsets of every block, in row-major order."""
        return [tuple(c * b for c, b in zip(coord, self.block)) for coord in self.block_coords()]

    def linear_index(self, coord: Sequence[int]) -> int:
        index = 0
        for c, g in zip(coord, self.grid):
            index = index * g + c
        return index

    @classmethod
    def uniform(cls, shape: Sequence[int], block: Sequence[int]) -> "BlockLayout":
        """Layout of ``shape`` cut into ``block`` pieces; ``block`` must divide ``shape``."""
        shape, block = tuple(shape), tuple(block)
        return cls(shape, tuple(s // b for s, b in zip(shape, block)), block)


@dataclass(frozen=True)
class SignatureConversion:
    """Result of converting an ordered list of types 1:N."""

    original: Tuple[Type, ...]
    converted: Tuple[Type, ...]
    ranges: Tuple[Tuple[int, int], ...]  # (start, count) into ``converted`` per original entry

    def inputs_for(self, index: int) -> Tuple[Type, ...]:
        start, count = self.ranges[index]
        return self.converted[start:start + count]

    def slice_for(self, index: int) -> slice:
        start, count = self.ranges[index]
        return slice(start, start + count)


class TypeConverter:
    """
    Convert tile-domain types for one hardware target.

    Args:
        target: Hardware limits to block against; defaults to ``get_target()``
    """

    def __init__(self, target: HardwareTarget = None):
        self.target = target or get_target()

    # Legality

    def is_legal(self, type: Type) -> bool:
        return not is_tile_type(type)

    def are_legal(self, types: Sequence[Type]) -> bool:
        return all(self.is_legal(t) for t in types)

    # Blocking

    def layout_for_shape(self, shape: Sequence[int], element_type: ScalarType) -> BlockLayout:
        """Hardware blocking of a logical ``shape`` of ``element_type`` values."""
        shape = tuple(shape)
        if len(shape) not in (2, 3):
            raise UnconvertibleType(format_tile(shape, element_type), f"rank {len(shape)} is not 2 or 3")
        if not isinstance(element_type, ScalarType) or not self.target.supports_element_type(element_type.name):
            raise UnconvertibleType(format_tile(shape, element_type),
                                    f"element type {element_type} is not supported by {self.target.name}")
        rows, cols = shape[-2], shape[-1]
        min_rows, min_cols = self.target.min_block
        if rows % min_rows or cols % min_cols:
            raise UnconvertibleType(
                format_tile(shape, element_type),
                f"{rows}x{cols} is not a multiple of the {min_rows}x{min_cols} load granularity")
        heights = [h for h in sorted(self.target.block_heights, reverse=True) if rows % h == 0]
        widths = [w for w in self.target.widths_for(element_type.bytewidth) if cols % w == 0]
        if not heights or not widths:
            raise UnconvertibleType(format_tile(shape, element_type),
                                    f"no block of {self.target.name} divides {rows}x{cols}")
        block = (1,) * (len(shape) - 2) + (heights[0], widths[0])
        return BlockLayout.uniform(shape, block)

    def block_layout(self, type: Type) -> BlockLayout:
        """Hardware blocking of a tile-domain type; raises ``UnconvertibleType``."""
        if not isinstance(type, (TileType, TileVectorType)):
            raise UnconvertibleType(type, "not a tile-domain type")
        return self.layout_for_shape(type.shape, type.element_type)

    # Conversion

    def convert_type(self, type: Type) -> List[Type]:
        """Convert one type 1:N; legal types convert to themselves."""
        if self.is_legal(type):
            return [type]
        layout = self.block_layout(type)
        if isinstance(type, TileType):
            block_type = DescType(layout.block, type.element_type, type.memory_space, type.strides)
        else:
            block_type = RegType(layout.block, type.element_type)
        return [block_type] * layout.num_blocks

    def convert_types(self, types: Sequence[Type]) -> List[Type]:
        converted: List[Type] = []
        for t in types:
            converted.extend(self.convert_type(t))
        return converted

    def convert_signature(self, types: Sequence[Type]) -> SignatureConversion:
        """Convert each entry independently, preserving order and arity."""
        converted: List[Type] = []
        ranges = []
        for t in types:
            pieces = self.convert_type(t)
            ranges.append((len(converted), len(pieces)))
            converted.extend(pieces)
        return SignatureConversion(tuple(types), tuple(converted), tuple(ranges))

    # Materialization

    def materialize_source(self, builder: OpBuilder, tile_type: Type, values: Sequence[Value]) -> Value:
        """Pack GPU-domain ``values`` back into one value of ``tile_type``."""
        expected = self.convert_type(tile_type)
        actual = [v.type for v in values]
        if actual != expected:
            raise UnconvertibleType(tile_type, f"cannot rebuild it from {len(actual)} value(s) of the wrong types")
        logger.debug(f"Source materialization of {len(values)} value(s) into {tile_type}")
        return builder_cast(builder, values, [tile_type], CAST_SOURCE)[0]

    def materialize_target(self, builder: OpBuilder, types: Sequence[Type], value: Value) -> List[Value]:
        """Unpack one tile-domain ``value`` into values of ``types``."""
        if list(types) != self.convert_type(value.type):
            raise UnconvertibleType(value.type, "target types do not match its conversion")
        logger.debug(f"Target materialization of {value.type} into {len(types)} value(s)")
        return builder_cast(builder, [value], types, CAST_TARGET)


def builder_cast(builder: OpBuilder, values: Sequence[Value], types: Sequence[Type], kind: str) -> List[Value]:
    return list(builtin.cast(builder, values, types, kind).results)


def format_tile(shape: Sequence[int], element_type) -> str:
    return "x".join(str(d) for d in shape) + f"x{element_type}"


__all__ = ["BlockLayout", "SignatureConversion", "TypeConverter"]
