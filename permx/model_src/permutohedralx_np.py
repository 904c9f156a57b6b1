"""
- Permutohedral lattice implementation in NP, channel-last as well.
- Sequential backend: vertices live in a `LatticeHashTable`, blur neighbors are looked up per axis.
- The homogeneous channel is appended to the values, slice divides it out per vertex.
"""

import logging

import numpy as np

from .hash_table import LatticeHashTable
from .permutohedralx_initializer import PermutohedralXInitializer
from .simplex_embedder import SimplexEmbedder

logger = logging.getLogger(__name__)


class PermutohedralLattice:
    def __init__(self, d: int, vd: int, N: int, dtype=None) -> None:
        """
        Args:
            d: dimension of positions (pd).
            vd: number of value channels.
            N: number of samples (super pixels) sharing this lattice.
            dtype: accumulator float type, defaults to the dtype of the positions.
        """
        if d <= 0 or vd <= 0 or N <= 0:
            raise ValueError("Lattice dimensions must be positive, got d={}, vd={}, N={}.".format(d, vd, N))
        self.d, self.vd, self.N = d, vd, N
        self.dtype = dtype

        self.initializer = PermutohedralXInitializer(d)
        self.embedder = SimplexEmbedder(d, self.initializer)

        self.hash_table = None
        self.os = None  # [N, d + 1], slots of the enclosing simplices
        self.ws = None  # [N, d + 1], barycentric weights

    def _check_shapes(self, inp: np.ndarray, positions: np.ndarray) -> None:
        if positions.shape != (self.N, self.d):
            raise ValueError("Expected positions of shape {}, got {}.".format((self.N, self.d), positions.shape))
        if inp is not None and inp.shape != (self.N, self.vd):
            raise ValueError("Expected input of shape {}, got {}.".format((self.N, self.vd), inp.shape))

    def splat(self, inp: np.ndarray, positions: np.ndarray) -> None:
        """
        Scatter each sample onto the vertices of its enclosing simplex.

        Args:
            inp: [N, vd], values to be filtered.
            positions: [N, d], features.
        """
        inp, positions = np.asarray(inp), np.asarray(positions)
        self._check_shapes(inp, positions)
        dtype = np.result_type(positions.dtype, np.float32) if self.dtype is None else self.dtype

        # ->> Embed every sample first, then merge their contributions into the table
        assignment = self.embedder.embed_batch(positions)
        self.hash_table = LatticeHashTable(self.d, self.vd, capacity=self.N, dtype=dtype)
        self.os = self.hash_table.find_or_create(assignment.vertices)  # [N, d + 1]
        self.ws = assignment.weights.astype(dtype)  # [N, d + 1]

        values = np.broadcast_to(inp.astype(dtype)[:, np.newaxis, :], (self.N, self.d + 1, self.vd))  # [N, d + 1, vd]
        self.hash_table.accumulate(self.os, self.ws, values)
        logger.debug("Splatted %d samples onto %d lattice vertices", self.N, self.hash_table.num_vertices)

    def blur_neighbors(self, j: int) -> np.ndarray:
        """
        Slots of the two neighbors of every vertex along axis `j`, -1 if absent.

        Returns:
            [M, 2], int32.
        """
        keys = self.hash_table.vertex_keys()  # [M, d + 1]
        offset = self.initializer.axis_offsets[j]  # [d + 1, ]
        n1s = self.hash_table.lookup(keys + offset)  # [M, ]
        n2s = self.hash_table.lookup(keys - offset)  # [M, ]
        return np.stack([n1s, n2s], axis=-1)

    def blur(self, reverse: bool = False) -> None:
        """Blur with [1 2 1] / 4 along each lattice axis, axis order reversed for the backward pass."""
        if self.hash_table is None:
            raise RuntimeError("`splat()` must run before `blur()`.")

        j_range = np.arange(self.d, -1, -1) if reverse else np.arange(self.d + 1)
        for j in j_range:
            blur_neighbors = self.blur_neighbors(j) + 1  # [M, 2], shift by 1 such that -1 -> 0

            # Row 0 stays zero for the missing neighbors
            values = self.hash_table.vertex_values()  # [M, vd + 1]
            padded = np.concatenate([np.zeros_like(values[:1]), values], axis=0)  # [M + 1, vd + 1]
            n1_vals = padded[blur_neighbors[:, 0]]  # [M, vd + 1]
            n2_vals = padded[blur_neighbors[:, 1]]  # [M, vd + 1]

            self.hash_table.replace_values(0.25 * n1_vals + 0.5 * values + 0.25 * n2_vals)

    def slice(self, normalize: bool = True) -> np.ndarray:
        """
        Gather the blurred vertices back to the samples splatted last, through the simplices cached by `splat()`.

        Args:
            normalize: divide each vertex by its homogeneous weight.

        Returns:
            out: [N, vd]
        """
        if self.hash_table is None:
            raise RuntimeError("`splat()` must run before `slice()`.")

        vals, homogeneous = self.hash_table.read(self.os)  # [N, d + 1, vd], [N, d + 1]
        if normalize:
            valid = homogeneous != 0
            scale = np.divide(self.ws, homogeneous, out=np.zeros_like(self.ws), where=valid)  # [N, d + 1]
        else:
            scale = self.ws
        return (scale[..., np.newaxis] * vals).sum(axis=1)  # [N, vd]

    def filter(self, inp: np.ndarray, positions: np.ndarray, reverse: bool = False, normalize: bool = True, out: np.ndarray = None) -> np.ndarray:
        """
        Splat, blur and slice.

        Args:
            inp: [N, vd], channel-last.
            positions: [N, d].
            reverse: run the blur axes in reverse order.
            normalize: renormalize with the homogeneous weight.
            out: optional [N, vd] buffer filled with the result.

        Returns:
            out: [N, vd]
        """
        try:
            self.splat(inp, positions)
            self.blur(reverse=reverse)
            result = self.slice(normalize=normalize)
        finally:
            self.hash_table = None

        if out is None:
            return result
        out[...] = result
        return out
