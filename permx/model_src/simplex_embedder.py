"""
- Find the enclosing simplex of each feature on the permutohedral lattice, NumPy, channel-last.
- Vectorized over features as in the lattice `init()`, `embed()` is the single-feature form.
"""

from typing import NamedTuple

import numpy as np

from .permutohedralx_initializer import PermutohedralXInitializer

MAX_EXACT_COORDINATE = 2 ** 53


class SimplexAssignment(NamedTuple):
    vertices: np.ndarray  # [..., d + 1, d + 1], int64, vertex k in row k
    weights: np.ndarray  # [..., d + 1], barycentric weights, float64
    rank: np.ndarray  # [..., d + 1], int32


class SimplexEmbedder:
    def __init__(self, d: int, initializer: PermutohedralXInitializer = None) -> None:
        self.d = d
        self.initializer = initializer if initializer is not None else PermutohedralXInitializer(d)

    def elevate(self, features: np.ndarray) -> np.ndarray:
        """Elevate features onto the hyperplane (y = Ep, see p.5 in [Adams et al. 2010]), always in float64."""
        features = np.asarray(features, dtype=np.float64)
        cf = features * self.initializer.scale_factor  # (N, d)
        return np.matmul(cf, self.initializer.E.T)  # (N, d + 1)

    def embed_batch(self, features: np.ndarray) -> SimplexAssignment:
        """
        Compute the simplex each feature lies in.

        Args:
            features: [N, d], float.

        Returns:
            SimplexAssignment of vertices [N, d + 1, d + 1], weights [N, d + 1] and rank [N, d + 1].
        """
        features = np.asarray(features)
        if features.ndim != 2 or features.shape[1] != self.d:
            raise ValueError("Expected features of shape [N, {}], got {}.".format(self.d, features.shape))
        N, d = features.shape[0], self.d

        elevated = self.elevate(features)  # (N, d + 1)
        dtype = elevated.dtype

        # Lattice coordinates must stay exact integers in float64
        if not np.all(np.isfinite(elevated)) or np.abs(elevated).max(initial=0.) > MAX_EXACT_COORDINATE - 2 * (d + 1):
            raise ValueError("Features are not finite or too large for exact lattice coordinates (|Ep| must stay below 2**53).")

        # Find the closest 0-colored simplex through rounding, halfway points round down
        down_factor = dtype.type(1.0 / (d + 1))
        up_factor = dtype.type(d + 1)
        v = down_factor * elevated  # (N, d + 1)
        up = np.ceil(v) * up_factor  # (N, d + 1)
        down = np.floor(v) * up_factor  # (N, d + 1)
        rem0 = np.where(up - elevated < elevated - down, up, down).astype(dtype)  # (N, d + 1)
        _sum = np.rint(rem0.sum(axis=-1) * down_factor).astype(np.int32)  # (N, )

        # Find the simplex we are in and store it in rank (where rank describes what position coordinate i has in the sorted order of the feature values)
        diff = elevated - rem0  # (N, d + 1)
        diff_i = diff[..., np.newaxis]  # (N, d + 1, 1)
        diff_j = diff[..., np.newaxis, :]  # (N, 1, d + 1)
        diff_valid = self.initializer.diff_valid[np.newaxis, ...]  # (1, d + 1, d + 1)
        rank = ((diff_i < diff_j) * diff_valid).sum(axis=-1).astype(np.int32)  # (N, d + 1)
        rank += ((diff_i >= diff_j) * diff_valid).sum(axis=-2).astype(np.int32)  # (N, d + 1)

        # If the point doesn't lie on the plane (sum != 0) bring it back
        rank += _sum[..., np.newaxis]  # (N, d + 1)
        ls_zero = rank < 0  # (N, d + 1)
        gt_d = rank > d  # (N, d + 1)
        rank[ls_zero] += (d + 1)
        rem0[ls_zero] += (d + 1)
        rank[gt_d] -= (d + 1)
        rem0[gt_d] -= (d + 1)

        # Compute the barycentric coordinates (p.10 in [Adams et al. 2010])
        barycentrics = np.zeros((N * (d + 2), ), dtype=dtype)  # (N * (d + 2), )
        vs = ((elevated - rem0) * down_factor).reshape(-1)  # (N * (d + 1), )
        idx = ((d - rank) + np.arange(N)[..., np.newaxis] * (d + 2)).reshape(-1)  # (N * (d + 1), )
        idx1 = ((d - rank + 1) + np.arange(N)[..., np.newaxis] * (d + 2)).reshape(-1)  # (N * (d + 1), )
        barycentrics[idx] += vs  # (N * (d + 2), )
        barycentrics[idx1] -= vs  # (N * (d + 2), )
        barycentrics = barycentrics.reshape((N, d + 2))  # (N, d + 2)
        barycentrics[..., 0] += (1. + barycentrics[..., d + 1])  # (N, d + 2)

        # Compute all vertices, vertex k is rem0 + canonical[k][rank]
        canonical_ext = self.initializer.canonical.T[rank]  # (N, d + 1, d + 1)
        canonical_ext = np.transpose(canonical_ext, axes=(0, 2, 1))  # (N, d + 1, d + 1)
        vertices = rem0.astype(np.int64)[..., np.newaxis, :] + canonical_ext  # (N, d + 1, d + 1)

        return SimplexAssignment(
            vertices=vertices,
            weights=barycentrics[..., :d + 1],
            rank=rank,
        )

    def embed(self, position: np.ndarray) -> SimplexAssignment:
        """Enclosing simplex of a single position [d, ]."""
        position = np.asarray(position).reshape((1, -1))
        assignment = self.embed_batch(position)
        return SimplexAssignment(*(field[0] for field in assignment))
