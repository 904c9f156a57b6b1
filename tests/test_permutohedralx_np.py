"""Tests for splat, blur and slice of the NumPy lattice."""

import numpy as np
import pytest

from permx import PermutohedralLattice


@pytest.fixture
def rng():
    return np.random.default_rng(42)


class TestFilterLimits:
    """Infinite and vanishing bandwidth limits."""

    @pytest.mark.parametrize("reverse", [False, True])
    def test_identical_positions_give_channel_mean(self, rng, reverse):
        N, d, vd = 20, 2, 3
        inp = rng.normal(size=(N, vd))
        positions = np.tile([[0.3, -1.2]], (N, 1))

        out = PermutohedralLattice(d, vd, N).filter(inp, positions, reverse=reverse)
        np.testing.assert_allclose(out, np.broadcast_to(inp.mean(axis=0), (N, vd)), atol=1e-10)

    def test_far_apart_positions_give_identity(self, rng):
        N, d, vd = 30, 2, 2
        inp = rng.normal(size=(N, vd))
        positions = np.stack([np.arange(N) * 1000.0, np.arange(N) * -500.0], axis=-1)
        positions += rng.uniform(size=(N, d))

        out = PermutohedralLattice(d, vd, N).filter(inp, positions)
        np.testing.assert_allclose(out, inp, atol=1e-9)

    def test_spike_spreads_to_neighbors(self):
        inp = np.array([[0.0], [0.0], [10.0], [0.0], [0.0]])
        positions = 0.5 * np.arange(5, dtype=np.float64)[:, np.newaxis]

        out = PermutohedralLattice(1, 1, 5).filter(inp, positions)[:, 0]
        assert np.argmax(out) == 2
        # Lattice points are the integers t = 2 / sqrt(3) * p, two [1 2 1] / 4 passes
        np.testing.assert_allclose(out, [2.2882, 2.4304, 2.4953, 2.3494, 2.0502], atol=1e-3)
        assert out.sum() == pytest.approx(11.6135, abs=1e-3)

    def test_spike_follows_unit_gaussian(self):
        inp = np.array([[0.0], [0.0], [10.0], [0.0], [0.0]])
        p = 0.5 * np.arange(5, dtype=np.float64)
        out = PermutohedralLattice(1, 1, 5).filter(inp, p[:, np.newaxis])[:, 0]

        # Normalized Gaussian average with unit bandwidth
        g = np.exp(-0.5 * (p[:, np.newaxis] - p[np.newaxis, :]) ** 2)
        expected = (g @ inp[:, 0]) / g.sum(axis=1)

        # Direct neighbors within 5% of the Gaussian falloff, boundary samples within 0.25
        np.testing.assert_allclose(out[[1, 3]] / out[2], expected[[1, 3]] / expected[2], atol=0.05)
        np.testing.assert_allclose(out, expected, atol=0.25)


class TestSmoothing:
    """The normalized filter averages."""

    def test_output_within_input_range(self, rng):
        N = 100
        inp = rng.normal(size=(N, 1))
        positions = rng.uniform(0.0, 10.0, size=(N, 3))
        out = PermutohedralLattice(3, 1, N).filter(inp, positions)
        assert out.min() >= inp.min() - 1e-12
        assert out.max() <= inp.max() + 1e-12

    def test_filtering_twice_smooths_more(self, rng):
        N = 200
        inp = rng.normal(size=(N, 1))
        positions = 0.5 * np.arange(N, dtype=np.float64)[:, np.newaxis]

        once = PermutohedralLattice(1, 1, N).filter(inp, positions)
        twice = PermutohedralLattice(1, 1, N).filter(once, positions)
        assert np.var(twice) < np.var(once) < np.var(inp)


class TestReverse:
    """Reverse blur order is the adjoint of the forward filter."""

    def test_reverse_is_adjoint_of_forward(self, rng):
        N, d, vd = 50, 2, 3
        positions = rng.normal(scale=2.0, size=(N, d))
        x = rng.normal(size=(N, vd))
        y = rng.normal(size=(N, vd))

        lattice = PermutohedralLattice(d, vd, N)
        forward = lattice.filter(x, positions, reverse=False, normalize=False)
        backward = lattice.filter(y, positions, reverse=True, normalize=False)
        assert np.sum(forward * y) == pytest.approx(np.sum(x * backward), rel=1e-10)

    def test_reverse_differs_from_forward(self, rng):
        N, d = 50, 3
        positions = rng.normal(scale=2.0, size=(N, d))
        x = rng.normal(size=(N, 1))

        lattice = PermutohedralLattice(d, 1, N)
        forward = lattice.filter(x, positions, normalize=False)
        backward = lattice.filter(x, positions, reverse=True, normalize=False)
        assert not np.allclose(forward, backward)


class TestPasses:
    """Splat, blur and slice separately."""

    def test_splat_conserves_mass(self, rng):
        N, d, vd = 40, 3, 2
        inp = rng.normal(size=(N, vd))
        positions = rng.normal(size=(N, d))

        lattice = PermutohedralLattice(d, vd, N)
        lattice.splat(inp, positions)
        values = lattice.hash_table.vertex_values()
        np.testing.assert_allclose(values[:, :vd].sum(axis=0), inp.sum(axis=0), atol=1e-10)
        assert values[:, vd].sum() == pytest.approx(N)
        assert lattice.hash_table.num_vertices <= N * (d + 1)

    def test_blur_neighbors_are_symmetric(self, rng):
        N, d = 30, 2
        positions = rng.normal(scale=0.5, size=(N, d))
        lattice = PermutohedralLattice(d, 1, N)
        lattice.splat(np.ones((N, 1)), positions)

        for j in range(d + 1):
            neighbors = lattice.blur_neighbors(j)
            for slot, (n1, n2) in enumerate(neighbors):
                if n1 >= 0:
                    assert lattice.blur_neighbors(j)[n1, 1] == slot
                if n2 >= 0:
                    assert lattice.blur_neighbors(j)[n2, 0] == slot

    def test_zero_homogeneous_weight_slices_to_zero(self, rng):
        N, d = 10, 2
        lattice = PermutohedralLattice(d, 2, N)
        lattice.splat(rng.normal(size=(N, 2)), rng.normal(size=(N, d)))
        values = lattice.hash_table.vertex_values().copy()
        values[:, -1] = 0.0
        lattice.hash_table.replace_values(values)

        out = lattice.slice()
        assert np.all(np.isfinite(out))
        np.testing.assert_array_equal(out, 0.0)

    def test_slice_reuses_splatted_simplices(self, rng):
        N, d = 25, 2
        inp = rng.normal(size=(N, 3))
        positions = rng.normal(size=(N, d))

        lattice = PermutohedralLattice(d, 3, N)
        lattice.splat(inp, positions)
        lattice.blur()
        out = lattice.slice()
        np.testing.assert_allclose(out, PermutohedralLattice(d, 3, N).filter(inp, positions))
        with pytest.raises(TypeError):
            lattice.slice(positions)

    def test_blur_before_splat_raises(self):
        with pytest.raises(RuntimeError):
            PermutohedralLattice(2, 1, 4).blur()

    def test_table_is_scoped_to_one_call(self, rng):
        lattice = PermutohedralLattice(2, 1, 8)
        lattice.filter(rng.normal(size=(8, 1)), rng.normal(size=(8, 2)))
        assert lattice.hash_table is None


class TestFilterArguments:
    """Output buffer and argument validation."""

    def test_fills_output_buffer(self, rng):
        N = 12
        inp = rng.normal(size=(N, 2))
        positions = rng.normal(size=(N, 2))
        out = np.full((N, 2), np.nan)

        result = PermutohedralLattice(2, 2, N).filter(inp, positions, out=out)
        assert result is out
        np.testing.assert_allclose(out, PermutohedralLattice(2, 2, N).filter(inp, positions))

    @pytest.mark.parametrize("d, vd, N", [(0, 1, 1), (1, 0, 1), (1, 1, 0), (-2, 1, 1)])
    def test_invalid_dimensions_raise(self, d, vd, N):
        with pytest.raises(ValueError):
            PermutohedralLattice(d, vd, N)

    def test_shape_mismatch_raises(self):
        lattice = PermutohedralLattice(2, 1, 4)
        with pytest.raises(ValueError):
            lattice.filter(np.zeros((4, 1)), np.zeros((4, 3)))
        with pytest.raises(ValueError):
            lattice.filter(np.zeros((3, 1)), np.zeros((4, 2)))

    def test_float32_positions_keep_float32(self, rng):
        inp = rng.normal(size=(6, 1)).astype(np.float32)
        positions = rng.normal(size=(6, 2)).astype(np.float32)
        out = PermutohedralLattice(2, 1, 6).filter(inp, positions)
        assert out.dtype == np.float32
