"""Tests for the lattice hash table."""

import numpy as np
import pytest

from permx import LatticeHashTable, PermutohedralLattice


@pytest.fixture
def table():
    """Small table that has to grow."""
    return LatticeHashTable(d=2, vd=3, capacity=2, dtype=np.float64)


class TestFindOrCreate:
    """Test insertion and slot assignment."""

    def test_same_coordinate_same_slot(self, table):
        a = table.find_or_create([3, -1, -2])
        b = table.find_or_create(np.array([3, -1, -2]))
        assert a == b == 0
        assert len(table) == 1

    def test_distinct_coordinates_get_distinct_slots(self, table):
        a = table.find_or_create([0, 0, 0])
        b = table.find_or_create([1, 1, -2])
        c = table.find_or_create([-1, 2, -1])
        assert len({a, b, c}) == 3
        assert table.num_vertices == 3

    def test_batch_collapses_duplicates(self, table):
        keys = np.array([
            [[0, 0, 0], [1, 1, -2]],
            [[0, 0, 0], [-1, 2, -1]],
        ])
        slots = table.find_or_create(keys)
        assert slots.shape == (2, 2)
        assert slots[0, 0] == slots[1, 0]
        assert table.num_vertices == 3

    def test_grows_past_capacity(self, table):
        keys = [[i, -i, 0] for i in range(50)]
        first = table.find_or_create(keys[0])
        table.accumulate(first, 2.0, [1.0, 2.0, 3.0])
        for key in keys[1:]:
            table.find_or_create(key)

        assert table.capacity >= 50
        np.testing.assert_array_equal(table.vertex_keys(), np.array(keys))
        values, homogeneous = table.read(first)
        np.testing.assert_allclose(values, [2.0, 4.0, 6.0])
        assert homogeneous == pytest.approx(2.0)

    def test_wrong_key_length_raises(self, table):
        with pytest.raises(ValueError):
            table.find_or_create([1, -1])

    def test_invalid_dimensions_raise(self):
        with pytest.raises(ValueError):
            LatticeHashTable(d=0, vd=1)
        with pytest.raises(ValueError):
            LatticeHashTable(d=1, vd=0)


class TestLookup:
    """Test pure look-ups."""

    def test_try_find_missing_is_none(self, table):
        table.find_or_create([0, 0, 0])
        assert table.try_find([1, 1, -2]) is None
        assert table.try_find([0, 0, 0]) == 0

    def test_try_find_does_not_insert(self, table):
        table.try_find([1, 1, -2])
        assert len(table) == 0

    def test_lookup_batch(self, table):
        table.find_or_create([0, 0, 0])
        table.find_or_create([1, 1, -2])
        slots = table.lookup(np.array([[1, 1, -2], [5, -5, 0], [0, 0, 0]]))
        np.testing.assert_array_equal(slots, [1, -1, 0])


class TestAccumulate:
    """Test accumulation into the homogeneous and value channels."""

    def test_fresh_vertex_is_zero(self, table):
        slot = table.find_or_create([0, 0, 0])
        values, homogeneous = table.read(slot)
        np.testing.assert_array_equal(values, np.zeros(3))
        assert homogeneous == 0.0

    def test_repeated_slots_are_summed(self, table):
        slot_a = table.find_or_create([0, 0, 0])
        slot_b = table.find_or_create([1, 1, -2])
        slots = np.array([slot_a, slot_b, slot_a])
        weights = np.array([0.5, 0.25, 0.25])
        values = np.array([[1.0, 0.0, 2.0], [4.0, 4.0, 4.0], [3.0, 1.0, 0.0]])
        table.accumulate(slots, weights, values)

        vals, homogeneous = table.read(np.array([slot_a, slot_b]))
        np.testing.assert_allclose(vals, [[1.25, 0.25, 1.0], [1.0, 1.0, 1.0]])
        np.testing.assert_allclose(homogeneous, [0.75, 0.25])

    def test_wrong_value_size_raises(self, table):
        slot = table.find_or_create([0, 0, 0])
        with pytest.raises(ValueError):
            table.accumulate(slot, 1.0, [1.0, 2.0])

    def test_replace_values_checks_shape(self, table):
        table.find_or_create([0, 0, 0])
        table.replace_values(np.ones((1, 4)))
        np.testing.assert_array_equal(table.vertex_values(), np.ones((1, 4)))
        with pytest.raises(ValueError):
            table.replace_values(np.ones((2, 4)))


class TestGrowthFailure:
    """Allocation errors while growing leave no partial result behind."""

    def test_memory_error_propagates_from_filter(self, monkeypatch):
        def fail_to_grow(self, min_capacity):
            raise MemoryError("cannot allocate {} slots".format(min_capacity))

        monkeypatch.setattr(LatticeHashTable, "_grow", fail_to_grow)

        rng = np.random.default_rng(1)
        N = 16
        out = np.full((N, 2), np.nan)
        lattice = PermutohedralLattice(2, 2, N)
        with pytest.raises(MemoryError):
            lattice.filter(rng.normal(size=(N, 2)), rng.normal(size=(N, 2)), out=out)

        assert np.all(np.isnan(out))
        assert lattice.hash_table is None

    def test_memory_error_propagates_from_insert(self, monkeypatch):
        def fail_to_grow(self, min_capacity):
            raise MemoryError("cannot allocate {} slots".format(min_capacity))

        table = LatticeHashTable(d=1, vd=1, capacity=1)
        table.find_or_create([0, 0])
        monkeypatch.setattr(LatticeHashTable, "_grow", fail_to_grow)
        with pytest.raises(MemoryError):
            table.find_or_create([1, -1])
        assert len(table) == 1
