"""
Pattern Library: rewrite rules from the tile dialect to the GPU-matrix dialect.

:func:`populate_tile_to_gpu_patterns` is the only way to obtain the rules.
Every pattern keeps the same shape:

1. check the hardware preconditions (raising ``StructuralMismatch``),
2. fetch GPU-domain operands through ``rewriter.remapped`` (which bridges
   producers that are not converted yet),
3. emit one GPU op per hardware block, and
4. hand the replacement values to ``rewriter.replace_op``.

Blocks that do not line up between producer and consumer (load blocks vs.
dpas sub-tiles, f16 blocks vs. f32 blocks) are re-sliced with ``gpu.extract``
and ``gpu.assemble`` by :class:`BlockGatherer`.
"""

from __future__ import annotations
import itertools
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from ..attrs import FN, FUNCTION_TYPE, OFFSETS
from ..dialects import builtin, gpu, loop, tile
from ..dialects.tile import TileType, TileVectorType
from ..ir.core import Operation, Value
from ..ir.types import FunctionType
from .errors import StructuralMismatch
from .pattern import PatternSet, RewritePattern
from .rewriter import ConversionRewriter
from .type_converter import BlockLayout, TypeConverter

logger = logging.getLogger(__name__)


class BlockGatherer:
    """
    Build register values covering arbitrary aligned regions of a blocked value.

    A region inside one block becomes a ``gpu.extract``, a region equal to a
    block reuses the block, and a region spanning several blocks is
    assembled from per-block pieces. Results are cached per region so each
    sub-tile is materialized once per rewrite.
    """

    def __init__(self, rewriter: ConversionRewriter, values: Sequence[Value], layout: BlockLayout):
        if len(values) != layout.num_blocks:
            raise StructuralMismatch(f"expected {layout.num_blocks} blocks, got {len(values)}")
        self.rewriter = rewriter
        self.values = list(values)
        self.layout = layout
        self._cache: Dict[Tuple[Tuple[int, ...], Tuple[int, ...]], Value] = {}

    def _piece_shape(self, offsets: Sequence[int], shape: Sequence[int]) -> Tuple[int, ...]:
        piece = []
        for o, s, b in zip(offsets, shape, self.layout.block):
            if o % b + s <= b:
                piece.append(s)
            elif o % b == 0 and s % b == 0:
                piece.append(b)
            else:
                raise StructuralMismatch(
                    f"region at {tuple(offsets)} of shape {tuple(shape)} straddles blocks of {self.layout.block}")
        return tuple(piece)

    def gather(self, offsets: Sequence[int], shape: Sequence[int]) -> Value:
        key = (tuple(offsets), tuple(shape))
        if key in self._cache:
            return self._cache[key]
        piece = self._piece_shape(offsets, shape)
        grid = tuple(s // p for s, p in zip(shape, piece))
        builder = self.rewriter.builder
        pieces = []
        for coord in itertools.product(*(range(g) for g in grid)):
            start = tuple(o + c * p for o, c, p in zip(offsets, coord, piece))
            block_coord = tuple(st // b for st, b in zip(start, self.layout.block))
            local = tuple(st - bc * b for st, bc, b in zip(start, block_coord, self.layout.block))
            block_value = self.values[self.layout.linear_index(block_coord)]
            if piece == self.layout.block:
                pieces.append(block_value)
            else:
                pieces.append(gpu.extract(builder, block_value, local, piece))
        value = pieces[0] if len(pieces) == 1 else gpu.assemble(builder, pieces, grid)
        self._cache[key] = value
        return value

    def repack(self, layout: BlockLayout) -> List[Value]:
        """The blocks of ``layout`` covering the same logical value."""
        return [self.gather(offsets, layout.block) for offsets in layout.block_offsets()]


def _flatten(groups: Sequence[Sequence[Value]]) -> List[Value]:
    return [v for group in groups for v in group]


# ----------------------------------------------------------------------
# Memory access
# ----------------------------------------------------------------------


def lower_init(op: Operation, rewriter: ConversionRewriter) -> None:
    """tile.init -> one gpu.create_desc per hardware block."""
    converter = rewriter.converter
    source = op.operands[0]
    dynamic = op.operands[1:]
    tile_type: TileType = op.result.type
    memref = source.type

    for space in (tile_type.memory_space, memref.memory_space):
        if not rewriter.target.supports_memory_space(space):
            raise StructuralMismatch(f"memory space '{space}' is not supported by {rewriter.target.name}")
    if tile_type.order != tuple(reversed(range(tile_type.rank))):
        raise StructuralMismatch(f"layout order {list(tile_type.order)} is not supported, 2-D block access is row-major")
    if memref.rank != tile_type.rank:
        raise StructuralMismatch(f"source rank {memref.rank} does not match tile rank {tile_type.rank}")
    offsets = list(op.attributes[OFFSETS])
    if not dynamic:
        for o, s, d in zip(offsets, tile_type.shape, memref.shape):
            if o < 0 or o + s > d:
                raise StructuralMismatch(f"tile at {offsets} of shape {tile_type.shape} exceeds source {memref.shape}")

    layout = converter.block_layout(tile_type)
    desc_type = converter.convert_type(tile_type)[0]
    strides = tile_type.strides if tile_type.strides is not None else memref.strides
    src = rewriter.remapped_single(source)
    dyn = [rewriter.remapped_single(v) for v in dynamic]

    descs = []
    for block_offsets in layout.block_offsets():
        block_start = [o + b for o, b in zip(offsets, block_offsets)]
        descs.append(gpu.create_desc(rewriter.builder, src, desc_type, block_start, strides, tile_type.order, dyn))
    rewriter.replace_op(op, [descs])


def lower_load(op: Operation, rewriter: ConversionRewriter) -> None:
    descs = rewriter.remapped(op.operands[0])
    regs = [gpu.load_2d(rewriter.builder, d) for d in descs]
    rewriter.replace_op(op, [regs])


def lower_store(op: Operation, rewriter: ConversionRewriter) -> None:
    values = rewriter.remapped(op.operands[0])
    descs = rewriter.remapped(op.operands[1])
    if len(values) != len(descs):
        raise StructuralMismatch(f"{len(values)} register blocks for {len(descs)} descriptors")
    for value, desc in zip(values, descs):
        gpu.store_2d(rewriter.builder, value, desc)
    rewriter.erase_op(op)


def lower_prefetch(op: Operation, rewriter: ConversionRewriter) -> None:
    for desc in rewriter.remapped(op.operands[0]):
        gpu.prefetch_2d(rewriter.builder, desc)
    rewriter.erase_op(op)


def lower_update_offset(op: Operation, rewriter: ConversionRewriter) -> None:
    descs = rewriter.remapped(op.operands[0])
    deltas = [rewriter.remapped_single(v) for v in op.operands[1:]]
    rewriter.replace_op(op, [[gpu.update_offset(rewriter.builder, d, deltas) for d in descs]])


# ----------------------------------------------------------------------
# Matrix multiply-accumulate
# ----------------------------------------------------------------------


def _check_mma(op: Operation, converter: TypeConverter) -> Tuple[int, int, int]:
    """Validate an mma against the dpas contract; returns the (m, n, k) extents."""
    target = converter.target
    a, b = op.operands[0].type, op.operands[1].type
    result = op.result.type
    if a.element_type != b.element_type:
        raise StructuralMismatch(f"a and b element types differ ({a.element_type} vs {b.element_type})")
    if a.element_type.name not in target.dpas_input_types:
        raise StructuralMismatch(f"dpas does not take {a.element_type} inputs on {target.name}")
    if result.element_type.name != target.accumulator_for(a.element_type.name):
        raise StructuralMismatch(
            f"dpas accumulates {a.element_type} in {target.accumulator_for(a.element_type.name)}, "
            f"not {result.element_type}")
    m, k = a.shape[-2:]
    if b.shape[-2] != k or a.shape[:-2] != b.shape[:-2]:
        raise StructuralMismatch(f"operand shapes {a.shape} and {b.shape} are not compatible")
    n = b.shape[-1]
    dm, dn, dk = target.dpas_shape
    if m % dm or n % dn or k % dk:
        raise StructuralMismatch(f"{m}x{n}x{k} is not a multiple of the {dm}x{dn}x{dk} dpas shape")
    return m, n, k


def is_single_dpas(op: Operation, converter: TypeConverter) -> bool:
    """An mma whose operands are each exactly one hardware block of dpas shape."""
    dm, dn, dk = converter.target.dpas_shape
    a, b = op.operands[0].type, op.operands[1].type
    if a.rank != 2 or a.shape != (dm, dk) or b.shape != (dk, dn):
        return False
    types = [v.type for v in op.operands] + [op.result.type]
    return all(converter.block_layout(t).num_blocks == 1 for t in types)


def lower_mma_single(op: Operation, rewriter: ConversionRewriter) -> None:
    """tile.mma of exactly one dpas sub-tile -> one gpu.dpas."""
    _check_mma(op, rewriter.converter)
    a = rewriter.remapped_single(op.operands[0])
    b = rewriter.remapped_single(op.operands[1])
    acc = rewriter.remapped_single(op.operands[2]) if len(op.operands) == 3 else None
    result = gpu.dpas(rewriter.builder, a, b, acc, op.result.type.element_type)
    rewriter.replace_op(op, [[result]])


def lower_mma_tiled(op: Operation, rewriter: ConversionRewriter) -> None:
    """
    tile.mma -> one gpu.dpas per (i, j, k) hardware sub-tile.

    The partial sums of one (i, j) output sub-tile are chained along k: each
    dpas takes the previous one as accumulator, and the first link takes the
    matching sub-tile of the incoming accumulator (or none).
    """
    converter = rewriter.converter
    m, n, k = _check_mma(op, converter)
    dm, dn, dk = converter.target.dpas_shape
    a_t: TileVectorType = op.operands[0].type
    b_t: TileVectorType = op.operands[1].type
    r_t: TileVectorType = op.result.type
    batch = a_t.shape[:-2]
    lead = (1,) * len(batch)

    a = BlockGatherer(rewriter, rewriter.remapped(op.operands[0]), converter.block_layout(a_t))
    b = BlockGatherer(rewriter, rewriter.remapped(op.operands[1]), converter.block_layout(b_t))
    c: Optional[BlockGatherer] = None
    if len(op.operands) == 3:
        c = BlockGatherer(rewriter, rewriter.remapped(op.operands[2]), converter.block_layout(op.operands[2].type))

    builder = rewriter.builder
    sub_tiles: List[Value] = []
    for bidx in itertools.product(*(range(d) for d in batch)):
        for i in range(m // dm):
            for j in range(n // dn):
                acc = c.gather(bidx + (i * dm, j * dn), lead + (dm, dn)) if c is not None else None
                for kk in range(k // dk):
                    a_tile = a.gather(bidx + (i * dm, kk * dk), lead + (dm, dk))
                    b_tile = b.gather(bidx + (kk * dk, j * dn), lead + (dk, dn))
                    acc = gpu.dpas(builder, a_tile, b_tile, acc, r_t.element_type)
                sub_tiles.append(acc)

    logger.debug(f"Tiled {r_t} mma into {len(sub_tiles) * (k // dk)} dpas instruction(s)")
    partials = BlockGatherer(rewriter, sub_tiles, BlockLayout.uniform(r_t.shape, lead + (dm, dn)))
    rewriter.replace_op(op, [partials.repack(converter.block_layout(r_t))])


# ----------------------------------------------------------------------
# Register computation
# ----------------------------------------------------------------------


def lower_elementwise(op: Operation, rewriter: ConversionRewriter) -> None:
    groups = rewriter.remapped_operands(op)
    if len({len(g) for g in groups}) != 1:
        raise StructuralMismatch("elementwise operands are blocked differently")
    fn = op.attributes[FN]
    results = [gpu.elementwise(rewriter.builder, fn, list(blocks)) for blocks in zip(*groups)]
    rewriter.replace_op(op, [results])


def lower_convert(op: Operation, rewriter: ConversionRewriter) -> None:
    """tile.convert -> per-block gpu.convert, repacked into the result's blocking."""
    converter = rewriter.converter
    src_layout = converter.block_layout(op.operands[0].type)
    dst_layout = converter.block_layout(op.result.type)
    elt = op.result.type.element_type
    converted = [gpu.convert(rewriter.builder, v, elt) for v in rewriter.remapped(op.operands[0])]
    rewriter.replace_op(op, [BlockGatherer(rewriter, converted, src_layout).repack(dst_layout)])


# ----------------------------------------------------------------------
# Structure: functions and loops
# ----------------------------------------------------------------------


def convert_func_signature(op: Operation, rewriter: ConversionRewriter) -> None:
    """Re-type a func.func signature and its entry block in place."""
    converter = rewriter.converter
    ftype = builtin.function_type(op)
    inputs = converter.convert_signature(ftype.inputs)
    results = converter.convert_types(ftype.results)
    rewriter.convert_block_signature(builtin.entry_block(op), inputs)
    rewriter.update_in_place(op, {FUNCTION_TYPE: FunctionType(inputs.converted, tuple(results))})


def lower_return(op: Operation, rewriter: ConversionRewriter) -> None:
    rewriter.create(builtin.RETURN, _flatten(rewriter.remapped_operands(op)))
    rewriter.erase_op(op)


def lower_for(op: Operation, rewriter: ConversionRewriter) -> None:
    """Rebuild a loop.for with 1:N converted loop-carried values, moving its body over."""
    converter = rewriter.converter
    control = [rewriter.remapped_single(v) for v in op.operands[:loop.NUM_CONTROL_OPERANDS]]
    inits = loop.init_values(op)
    carried = converter.convert_signature([v.type for v in inits])
    new_inits = _flatten([rewriter.remapped(v) for v in inits])

    new_op = rewriter.create(loop.FOR, control + new_inits, list(carried.converted))
    rewriter.move_regions(op, new_op)
    body = loop.body(new_op)
    rewriter.convert_block_signature(body, converter.convert_signature([a.type for a in body.args]))
    rewriter.replace_op(op, [new_op.results[carried.slice_for(i)] for i in range(len(inits))])


def lower_yield(op: Operation, rewriter: ConversionRewriter) -> None:
    rewriter.create(loop.YIELD, _flatten(rewriter.remapped_operands(op)))
    rewriter.erase_op(op)


def populate_tile_to_gpu_patterns(converter: TypeConverter, patterns: Optional[PatternSet] = None) -> PatternSet:
    """
    Register every tile-to-GPU rewrite rule.

    Args:
        converter: Type converter the rules consult
        patterns: Existing set to extend; a new one is created when omitted

    Returns:
        The populated pattern set
    """
    patterns = patterns if patterns is not None else PatternSet(converter)
    patterns.add(RewritePattern(tile.INIT, lower_init, name="init-to-create-desc"))
    patterns.add(RewritePattern(tile.LOAD, lower_load, name="load-to-load-2d"))
    patterns.add(RewritePattern(tile.STORE, lower_store, name="store-to-store-2d"))
    patterns.add(RewritePattern(tile.PREFETCH, lower_prefetch, name="prefetch-to-prefetch-2d"))
    patterns.add(RewritePattern(tile.UPDATE_OFFSET, lower_update_offset, name="update-offset"))
    patterns.add(RewritePattern(tile.MMA, lower_mma_single, match=is_single_dpas, specificity=1,
                                name="mma-single-dpas"))
    patterns.add(RewritePattern(tile.MMA, lower_mma_tiled, name="mma-tiled-dpas"))
    patterns.add(RewritePattern(tile.ELEMENTWISE, lower_elementwise, name="elementwise"))
    patterns.add(RewritePattern(tile.CONVERT, lower_convert, name="convert"))
    patterns.add(RewritePattern(builtin.FUNC, convert_func_signature, name="func-signature"))
    patterns.add(RewritePattern(builtin.RETURN, lower_return, name="func-return"))
    patterns.add(RewritePattern(loop.FOR, lower_for, name="loop-for"))
    patterns.add(RewritePattern(loop.YIELD, lower_yield, name="loop-yield"))
    return patterns


__all__ = [
    "BlockGatherer",
    "is_single_dpas",
    "populate_tile_to_gpu_patterns",
]
