"""Tests for the type converter: hardware blocking of tile-domain types."""

import pytest

from tilegpu.conversion import BlockLayout, TypeConverter, UnconvertibleType
from tilegpu.dialects import DescType, RegType, TileType, TileVectorType, tile
from tilegpu.ir import BF16, F16, F32, F64, I8, INDEX, MemRefType, OpBuilder
from tilegpu.target import get_target


@pytest.fixture
def converter():
    return TypeConverter(get_target("xe-hpc"))


class TestBlockLayout:

    def test_uniform(self):
        layout = BlockLayout.uniform((64, 64), (32, 16))
        assert layout.grid == (2, 4)
        assert layout.num_blocks == 8
        assert layout.block_offsets()[:3] == [(0, 0), (0, 16), (0, 32)]
        assert layout.block_offsets()[-1] == (32, 48)

    def test_linear_index_is_row_major(self):
        layout = BlockLayout.uniform((64, 64), (32, 16))
        for i, coord in enumerate(layout.block_coords()):
            assert layout.linear_index(coord) == i
        assert layout.linear_index((1, 2)) == 6


class TestLayoutSelection:
    """Largest dividing block per dim, widths limited by the row byte budget"""

    @pytest.mark.parametrize("shape,dtype,block,count", [
        ((64, 64), F16, (32, 32), 4),
        ((64, 64), BF16, (32, 32), 4),
        ((64, 64), F32, (32, 16), 8),
        ((64, 64), I8, (32, 64), 2),
        ((32, 32), F16, (32, 32), 1),
        ((16, 16), F16, (16, 16), 1),
        ((8, 48), F16, (8, 16), 3),
    ])
    def test_xe_hpc_blocks(self, converter, shape, dtype, block, count):
        layout = converter.layout_for_shape(shape, dtype)
        assert layout.block == block
        assert layout.num_blocks == count

    def test_xe_hpg_has_narrower_rows(self):
        converter = TypeConverter(get_target("xe-hpg"))
        assert converter.layout_for_shape((64, 64), F16).block == (32, 16)
        assert converter.layout_for_shape((64, 64), F32).block == (32, 8)

    def test_batched_tile_blocks_leading_dim_by_one(self, converter):
        layout = converter.block_layout(TileVectorType((2, 32, 32), F16))
        assert layout.block == (1, 32, 32)
        assert layout.grid == (2, 1, 1)
        assert layout.num_blocks == 2


class TestConvertType:

    def test_legal_types_pass_through(self, converter):
        memref = MemRefType((64, 64), F16)
        assert converter.convert_type(memref) == [memref]
        assert converter.convert_type(INDEX) == [INDEX]
        assert converter.is_legal(RegType((32, 32), F16))

    def test_tile_converts_to_descriptors(self, converter):
        tile_type = tile.tile_type_for(MemRefType((64, 64), F16, "shared"), (64, 64))
        converted = converter.convert_type(tile_type)
        assert converted == [DescType((32, 32), F16, "shared")] * 4

    def test_vector_converts_to_registers(self, converter):
        converted = converter.convert_type(TileVectorType((64, 64), F32))
        assert converted == [RegType((32, 16), F32)] * 8

    def test_strided_source_keeps_strides(self, converter):
        source = MemRefType((64, 64), F16, strides=(128, 1))
        tile_type = tile.tile_type_for(source, (32, 32))
        assert tile_type.strides == (128, 1)
        assert converter.convert_type(tile_type) == [DescType((32, 32), F16, "global", (128, 1))]

    def test_signature_ranges(self, converter):
        vec = TileVectorType((64, 64), F32)
        memref = MemRefType((64, 64), F32)
        conversion = converter.convert_signature([INDEX, vec, memref])

        assert conversion.ranges == ((0, 1), (1, 8), (9, 1))
        assert len(conversion.converted) == 10
        assert conversion.inputs_for(0) == (INDEX,)
        assert conversion.inputs_for(1) == (RegType((32, 16), F32),) * 8
        assert conversion.converted[conversion.slice_for(2)] == (memref,)

    def test_convert_types_flattens(self, converter):
        types = converter.convert_types([TileVectorType((32, 32), F16), TileVectorType((32, 32), F32)])
        assert types == [RegType((32, 32), F16), RegType((32, 16), F32), RegType((32, 16), F32)]


class TestUnconvertible:
    """Shapes and element types with no valid hardware blocking"""

    def test_not_a_multiple_of_the_minimum_block(self, converter):
        with pytest.raises(UnconvertibleType) as exc_info:
            converter.convert_type(TileVectorType((24, 24), F16))
        assert "not a multiple" in str(exc_info.value)
        assert exc_info.value.reason.startswith("24x24")

    def test_rank_one(self, converter):
        with pytest.raises(UnconvertibleType, match="rank 1"):
            converter.convert_type(TileVectorType((32,), F16))

    def test_unsupported_element_type(self, converter):
        with pytest.raises(UnconvertibleType, match="f64"):
            converter.convert_type(TileType((32, 32), F64))

    def test_not_a_tile_type(self, converter):
        with pytest.raises(UnconvertibleType):
            converter.block_layout(MemRefType((32, 32), F16))


class TestMaterialization:

    def _builder_before_return(self, module):
        ret = next(op for op in module.walk() if op.name == "func.return")
        builder = OpBuilder(module)
        builder.set_insertion_point_before(ret)
        return builder

    def test_target_then_source(self, converter, programs):
        module = programs.load(shape=(64, 64))
        loaded = next(op for op in module.walk() if op.name == tile.LOAD).result
        builder = self._builder_before_return(module)

        parts = converter.materialize_target(builder, converter.convert_type(loaded.type), loaded)
        assert [p.type for p in parts] == [RegType((32, 32), F16)] * 4
        assert parts[0].defining_op.attributes["kind"] == "target"

        packed = converter.materialize_source(builder, loaded.type, parts)
        assert packed.type == loaded.type
        assert packed.defining_op.attributes["kind"] == "source"
        assert packed.defining_op.operands == parts

    def test_source_rejects_wrong_types(self, converter, programs):
        module = programs.load(shape=(64, 64))
        loaded = next(op for op in module.walk() if op.name == tile.LOAD).result
        builder = self._builder_before_return(module)
        parts = converter.materialize_target(builder, converter.convert_type(loaded.type), loaded)

        with pytest.raises(UnconvertibleType):
            converter.materialize_source(builder, loaded.type, parts[:2])

    def test_target_rejects_wrong_types(self, converter, programs):
        module = programs.load(shape=(64, 64))
        loaded = next(op for op in module.walk() if op.name == tile.LOAD).result
        builder = self._builder_before_return(module)
        with pytest.raises(UnconvertibleType):
            converter.materialize_target(builder, [RegType((64, 64), F16)], loaded)
