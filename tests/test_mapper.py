"""Tests for Mapper32 gather/scatter and map_max."""

import numpy as np
import numpy.testing as npt
import pytest

from cudavec import (
    AliasingError,
    ContractViolation,
    DeviceError,
    DimensionError,
    IndexOutOfRange,
    Mapper32,
)


def vec(creator, values):
    return creator.make_vector_data(np.asarray(values, dtype=np.float32))


class TestConstruction:
    def test_sizes_and_table(self, creator):
        mapper = creator.make_mapper(5, [4, 0, 0])
        assert mapper.in_size == 5
        assert mapper.out_size == 3
        npt.assert_array_equal(mapper.table(), [4, 0, 0])
        assert mapper.table().dtype == np.int32

    def test_entry_out_of_range(self, creator):
        with pytest.raises(IndexOutOfRange):
            creator.make_mapper(3, [0, 3])
        with pytest.raises(IndexOutOfRange):
            creator.make_mapper(3, [-1])

    def test_negative_size(self, creator):
        with pytest.raises(DimensionError):
            Mapper32(creator, -1, 0)

    def test_empty_table(self, creator):
        mapper = creator.make_mapper(0, [])
        out = creator.make_vector(0)
        mapper.map(creator.make_vector(0), out).result()
        assert mapper.out_size == 0


class TestMap:
    def test_gather(self, creator):
        mapper = creator.make_mapper(4, [3, 1, 1])
        out = creator.make_vector(3)
        mapper.map(vec(creator, [10, 20, 30, 40]), out)
        npt.assert_array_equal(out.data(), [40, 20, 20])

    def test_empty_input_clears_output(self, creator):
        mapper = creator.make_mapper(2, [0, 1])
        out = vec(creator, [5, 6])
        mapper.map(creator.make_vector(2), out)
        npt.assert_array_equal(out.data(), [0, 0])

    def test_empty_input_leaves_empty_output(self, creator, session):
        mapper = creator.make_mapper(2, [1])
        out = creator.make_vector(1)
        mapper.map(creator.make_vector(2), out).result()
        assert not out.materialized

    def test_size_mismatch(self, creator):
        mapper = creator.make_mapper(4, [0, 1])
        with pytest.raises(DimensionError):
            mapper.map(creator.make_vector(3), creator.make_vector(2))
        with pytest.raises(DimensionError):
            mapper.map(creator.make_vector(4), creator.make_vector(3))

    def test_overlap_rejected(self, creator):
        mapper = creator.make_mapper(4, [0, 1, 2, 3])
        v = creator.make_vector(6)
        with pytest.raises(AliasingError):
            mapper.map(v.slice(0, 4), v.slice(2, 6))

    def test_other_session_rejected(self, creator):
        from cudavec import Creator32
        from tests.conftest import HostSession

        other = Creator32(HostSession())
        try:
            mapper = creator.make_mapper(2, [0, 1])
            with pytest.raises(ContractViolation):
                mapper.map(other.make_vector(2), creator.make_vector(2))
        finally:
            other.session.close()


class TestMapTranspose:
    def test_scatter_accumulates(self, creator):
        mapper = creator.make_mapper(3, [0, 2, 0])
        out = vec(creator, [1, 1, 1])
        mapper.map_transpose(vec(creator, [1, 2, 3]), out)
        npt.assert_array_equal(out.data(), [5, 1, 3])

    def test_into_empty_output(self, creator):
        mapper = creator.make_mapper(3, [1, 1])
        out = creator.make_vector(3)
        mapper.map_transpose(vec(creator, [2, 5]), out)
        npt.assert_array_equal(out.data(), [0, 7, 0])

    def test_empty_input_is_noop(self, creator, session):
        mapper = creator.make_mapper(3, [1, 1])
        out = creator.make_vector(3)
        mapper.map_transpose(creator.make_vector(2), out).result()
        assert not out.materialized

    def test_adjoint_of_map(self, creator):
        rng = np.random.default_rng(3)
        table = [4, 1, 1, 0, 3]
        mapper = creator.make_mapper(5, table)
        x_data = rng.standard_normal(5).astype(np.float32)
        y_data = rng.standard_normal(5).astype(np.float32)
        mx = creator.make_vector(5)
        mapper.map(vec(creator, x_data), mx)
        mty = creator.make_vector(5)
        mapper.map_transpose(vec(creator, y_data), mty)
        assert mx.dot(vec(creator, y_data)) == pytest.approx(
            vec(creator, x_data).dot(mty), rel=1e-5)

    def test_size_mismatch(self, creator):
        mapper = creator.make_mapper(4, [0, 1])
        with pytest.raises(DimensionError):
            mapper.map_transpose(creator.make_vector(4), creator.make_vector(4))


class TestMapMax:
    def test_row_argmax(self, creator):
        v = vec(creator, [1, 5, 3, 9, 2, 4])
        mapper = v.map_max(3)
        assert mapper.in_size == 6
        assert mapper.out_size == 2
        npt.assert_array_equal(mapper.table(), [1, 3])
        out = creator.make_vector(2)
        mapper.map(v, out)
        npt.assert_array_equal(out.data(), [5, 9])

    def test_gradient_routing(self, creator):
        v = vec(creator, [1, 5, 3, 9, 2, 4])
        mapper = v.map_max(2)
        grad = creator.make_vector(6)
        mapper.map_transpose(vec(creator, [1, 1, 1]), grad)
        npt.assert_array_equal(grad.data(), [0, 1, 0, 1, 0, 1])

    def test_empty_vector(self, creator):
        mapper = creator.make_vector(0).map_max(0)
        assert mapper.out_size == 0

    def test_non_dividing(self, creator):
        with pytest.raises(DimensionError):
            creator.make_vector(5).map_max(2)
        with pytest.raises(DimensionError):
            creator.make_vector(4).map_max(0)

    def test_release(self, creator, session):
        mapper = vec(creator, [1, 2]).map_max(2)
        mapper.release().result()
        assert session.frees == 1

    def test_failed_build_reaches_table_and_map(self, creator, session):
        v = vec(creator, [1, 5, 3, 9, 2, 4])
        session.failing.add("mapMaxRows")
        mapper = v.map_max(3)
        with pytest.raises(DeviceError):
            mapper.table()
        session.failing.clear()
        out = creator.make_vector(2)
        with pytest.raises(DeviceError):
            mapper.map(v, out).result()
        with pytest.raises(DeviceError):
            out.data()
        # the partially built table is returned
        assert session.frees == 1

    def test_failed_gather_poisons_output(self, creator, session):
        mapper = creator.make_mapper(2, [1, 0])
        session.failing.add("mapForward")
        out = creator.make_vector(2)
        mapper.map(vec(creator, [1, 2]), out)
        with pytest.raises(DeviceError):
            out.data()
