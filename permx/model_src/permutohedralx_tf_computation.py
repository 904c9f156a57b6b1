# -*- coding: utf-8 -*-

"""
- TF implementation of permutohedral lattice, channel-last as well.
- Data-parallel backend: splat is a segment sum, blur a gather per axis, slice a gather.
- Lattice build in float64 whatever the features are, `tf.int32` for slots and `tf.int64` for 1D keys.
- Float type of the output follows the input.

+ Keys are packed into 1D coordinates padded by d + 1 on both sides, such that blur neighbors never alias.
+ Look-up through `tf.searchsorted` on the sorted unique keys, graph-safe (no resource tables).
"""

import tensorflow as tf


class PermutohedralXComputation(tf.Module):
    @tf.function
    def init(self, features: tf.Tensor, canonical: tf.Tensor, E: tf.Tensor, scale_factor: tf.Tensor, diff_valid: tf.Tensor, axis_offsets: tf.Tensor):
        """
        Build the lattice of `features`.

        Args:
            features: [N, d], float.
            canonical: [d + 1, d + 1], int32.
            E: [d + 1, d], float64.
            scale_factor: [d, ], float64.
            diff_valid: [d + 1, d + 1], int32.
            axis_offsets: [d + 1, d + 1], int32, `+1` blur neighbor offset of each axis.

        Returns:
            M: the number of lattice vertices, [], int32.
            os: slots of the enclosing simplices shifted by 1, [N x (d + 1), ], int32.
            ws: barycentric weights, [N x (d + 1), ], float64.
            blur_neighbors: slots of the neighbors shifted by 1 (0 for missing), [2, M, d + 1], int32.
        """
        N, d = tf.shape(features)[0], tf.shape(features)[1]
        dtype = tf.float64

        # - Elevate the feature (y = Ep, see p.5 in [Adams et al. 2010]), in float64 such that rounding stays exact
        cf = tf.cast(features, dtype) * tf.cast(scale_factor, dtype)[tf.newaxis, ...]  # [N, d]
        elevated = tf.matmul(cf, tf.cast(E, dtype), transpose_b=True)  # [N, d + 1]
        tf.debugging.assert_less(
            tf.reduce_max(tf.abs(elevated)),
            tf.constant(2.0 ** 53, dtype=dtype) - 2.0 * tf.cast(d + 1, dtype=dtype),
            message="Features are not finite or too large for exact lattice coordinates.",
        )

        # - Find the closest 0-colored simplex through rounding, halfway points round down
        down_factor = 1.0 / tf.cast(d + 1, dtype=dtype)
        up_factor = tf.cast(d + 1, dtype=dtype)
        v = down_factor * elevated  # [N, d + 1]
        up = tf.math.ceil(v) * up_factor  # [N, d + 1]
        down = tf.math.floor(v) * up_factor  # [N, d + 1]
        rem0 = tf.where(up - elevated < elevated - down, up, down)  # [N, d + 1]
        _sum = tf.cast(tf.round(tf.reduce_sum(rem0, axis=1) * down_factor), dtype=tf.int32)  # [N, ]

        # - Find the simplex we are in and store it in rank
        diff = elevated - rem0  # [N, d + 1]
        diff_i = diff[..., tf.newaxis]  # [N, d + 1, 1]
        diff_j = diff[..., tf.newaxis, :]  # [N, 1, d + 1]
        di_lt_dj = tf.where(diff_i < diff_j, 1, 0)  # [N, d + 1, d + 1]
        di_geq_dj = tf.where(diff_i >= diff_j, 1, 0)  # [N, d + 1, d + 1]
        rank = tf.reduce_sum(di_lt_dj * diff_valid[tf.newaxis, ...], axis=2)  # [N, d + 1]
        rank = rank + tf.reduce_sum(di_geq_dj * diff_valid[tf.newaxis, ...], axis=1)  # [N, d + 1]

        # - If the point doesn't lie on the plane (sum != 0) bring it back
        rank = rank + _sum[..., tf.newaxis]  # [N, d + 1]
        ls_zero = rank < 0  # [N, d + 1]
        gt_d = rank > d  # [N, d + 1]
        rank = tf.where(ls_zero, rank + d + 1, rank)
        rem0 = tf.where(ls_zero, rem0 + up_factor, rem0)
        rank = tf.where(gt_d, rank - (d + 1), rank)
        rem0 = tf.where(gt_d, rem0 - up_factor, rem0)

        # - Compute the barycentric coordinates (p.10 in [Adams et al. 2010])
        barycentric = tf.zeros(shape=[N * (d + 2), ], dtype=dtype)  # [N x (d + 2), ]
        vs = tf.reshape((elevated - rem0) * down_factor, shape=[-1, ])  # [N x (d + 1), ]
        idx = tf.reshape((d - rank) + tf.range(N)[..., tf.newaxis] * (d + 2), shape=[-1, ])  # [N x (d + 1), ]
        idx1 = tf.reshape((d - rank + 1) + tf.range(N)[..., tf.newaxis] * (d + 2), shape=[-1, ])  # [N x (d + 1), ]
        barycentric = tf.tensor_scatter_nd_add(tensor=barycentric, indices=idx[..., tf.newaxis], updates=vs)  # [N x (d + 2), ]
        barycentric = tf.tensor_scatter_nd_sub(tensor=barycentric, indices=idx1[..., tf.newaxis], updates=vs)  # [N x (d + 2), ]
        barycentric = tf.reshape(barycentric, shape=[N, (d + 2)])  # [N, d + 2]
        idx0 = tf.stack([tf.range(N), tf.zeros([N, ], dtype=tf.int32)], axis=-1)  # [N, 2]
        barycentric = tf.tensor_scatter_nd_add(tensor=barycentric, indices=idx0, updates=(1.0 + barycentric[..., d + 1]))  # [N, d + 2]

        # - Compute all vertices
        canonicalT = tf.transpose(canonical, perm=[1, 0])  # [d + 1, d + 1]
        canonical_ext = tf.gather(params=canonicalT, indices=rank)  # [N, d + 1, d + 1]
        canonical_ext = tf.transpose(canonical_ext, perm=[0, 2, 1])  # [N, d + 1, d + 1]

        # - Get keys, the last coordinate is implied by the zero sum
        keys = tf.cast(rem0[..., tf.newaxis, :d], dtype=tf.int64) + tf.cast(canonical_ext[..., :d], dtype=tf.int64)  # [N, d + 1, d]
        keys = tf.reshape(keys, shape=[-1, d])  # flatten, [N x (d + 1), d]

        # - Get 1D coordinates, padded so that the neighbors of every key stay inside the box
        pad = tf.cast(d + 1, dtype=tf.int64)
        mins_key = tf.reduce_min(keys, axis=0) - pad  # [d, ]
        ranges_key = tf.reduce_max(keys, axis=0) + pad - mins_key + 1  # [d, ]
        tf.debugging.assert_less(
            tf.reduce_prod(tf.cast(ranges_key, dtype=tf.float64)),
            tf.constant(2.0 ** 62, dtype=tf.float64),
            message="Lattice keys span too large a range to be packed into int64.",
        )
        dims_key = tf.math.cumprod(ranges_key, exclusive=True, reverse=True)  # [d, ], row-major
        coords_1d = tf.reduce_sum((keys - mins_key[tf.newaxis, ...]) * dims_key[tf.newaxis, ...], axis=1)  # [N x (d + 1), ]

        coords_1d_uniq = tf.sort(tf.unique(coords_1d).y)  # [M, ]
        M = tf.shape(coords_1d_uniq)[0]

        # - Shift all slots by 1 such that 0 is the empty vertex (used for blurring)
        os = tf.searchsorted(coords_1d_uniq, coords_1d, out_type=tf.int32) + 1  # [N x (d + 1), ]
        ws = tf.reshape(barycentric[..., :d + 1], shape=[-1, ])  # [N x (d + 1), ], float64

        # - Find the neighbors of each lattice point, for each of d + 1 axes
        shifts_1d = tf.reduce_sum(tf.cast(axis_offsets[..., :d], dtype=tf.int64) * dims_key[tf.newaxis, ...], axis=-1)  # [d + 1, ]
        n1s = coords_1d_uniq[:, tf.newaxis] + shifts_1d[tf.newaxis, ...]  # [M, d + 1]
        n2s = coords_1d_uniq[:, tf.newaxis] - shifts_1d[tf.newaxis, ...]  # [M, d + 1]
        ns = tf.reshape(tf.stack([n1s, n2s], axis=0), shape=[-1, ])  # [2 x M x (d + 1), ]

        found = tf.minimum(tf.searchsorted(coords_1d_uniq, ns, out_type=tf.int32), M - 1)
        blur_neighbors = tf.where(tf.gather(coords_1d_uniq, found) == ns, found + 1, 0)
        blur_neighbors = tf.reshape(blur_neighbors, shape=[2, M, d + 1])  # [2, M, d + 1]

        return M, os, ws, blur_neighbors

    @tf.function
    def compute(self, inp: tf.Tensor, d: int, os: tf.Tensor, ws: tf.Tensor, blur_neighbors: tf.Tensor, M: int, reverse: bool = False, normalize: bool = True) -> tf.Tensor:
        """
        Splat, blur and slice.

        Args:
            inp: entity to be filtered, [size (a.k.a. N), value_size], channel-last.
            d: dimension of features.
            os: offset, [N x (d + 1), ], int32.
            ws: barycentric weight, [N x (d + 1), ], cast to the float type of `inp`.
            blur_neighbors: blur neighbors, [2, M, (d + 1)], int32.
            M: the number of lattice vertices, [], int32.
            reverse: indicating the blur order.
            normalize: divide each vertex by its homogeneous weight.

        Returns:
            out: [size, value_size]
        """
        value_size = tf.shape(inp)[1]
        ws = tf.cast(ws, dtype=inp.dtype)

        # ->> Splat, the homogeneous channel is appended last
        inp_h = tf.concat([inp, tf.ones_like(inp[..., :1])], axis=-1)  # [N, value_size + 1]
        inp_ext = tf.repeat(inp_h, repeats=d + 1, axis=0)  # [N x (d + 1), value_size + 1]
        values = tf.math.unsorted_segment_sum(
            ws[..., tf.newaxis] * inp_ext, segment_ids=os, num_segments=M + 1
        )  # [M + 1, value_size + 1], row 0 stays empty

        # ->> Blur
        j_range = tf.range(d, -1, -1) if reverse else tf.range(d + 1)

        for j in j_range:
            n1s = blur_neighbors[0, ..., j]  # [M, ]
            n2s = blur_neighbors[1, ..., j]  # [M, ]
            n1_vals = tf.gather(values, n1s)  # [M, value_size + 1]
            n2_vals = tf.gather(values, n2s)  # [M, value_size + 1]

            blurred = 0.25 * n1_vals + 0.5 * values[1:] + 0.25 * n2_vals  # [M, value_size + 1]
            values = tf.concat([values[:1], blurred], axis=0)  # [M + 1, value_size + 1]

        # ->> Slice
        vals = tf.gather(values, os)  # [N x (d + 1), value_size + 1]
        if normalize:
            vals = tf.math.divide_no_nan(vals[..., :value_size], vals[..., value_size:])
        else:
            vals = vals[..., :value_size]
        out = ws[..., tf.newaxis] * vals
        out = tf.reshape(out, shape=[-1, d + 1, value_size])
        out = tf.reduce_sum(out, axis=1)

        return out
