"""
Class of permutohedral lattice x, TF backend.
"""

import tensorflow as tf

from .permutohedralx_initializer import PermutohedralXInitializer
from .permutohedralx_tf_computation import PermutohedralXComputation


class PermutohedralLatticeTF:
    def __init__(self, d: int, computation: PermutohedralXComputation = None) -> None:
        initializer = PermutohedralXInitializer(d)
        self.d = d
        self.computation = computation if computation is not None else PermutohedralXComputation()

        self.canonical = tf.constant(initializer.canonical, dtype=tf.int32)  # [d + 1, d + 1]
        self.E = tf.constant(initializer.E, dtype=tf.float64)  # [d + 1, d]
        self.scale_factor = tf.constant(initializer.scale_factor, dtype=tf.float64)  # [d, ]
        self.diff_valid = tf.constant(initializer.diff_valid, dtype=tf.int32)  # [d + 1, d + 1]
        self.axis_offsets = tf.constant(initializer.axis_offsets, dtype=tf.int32)  # [d + 1, d + 1]

        self.M = None  # [], int32
        self.os = None  # [N x (d + 1), ], int32
        self.ws = None  # [N x (d + 1), ]
        self.blur_neighbors = None  # [2, M, d + 1], int32

    def build(self, features: tf.Tensor):
        """Pure lattice construction, returns (M, os, ws, blur_neighbors)."""
        features = tf.convert_to_tensor(features)
        if features.shape.rank != 2 or features.shape[-1] != self.d:
            raise ValueError("Expected features of shape [N, {}], got {}.".format(self.d, features.shape))
        if features.shape[0] == 0:
            raise ValueError("Lattice needs at least one sample.")

        return self.computation.init(
            features=features,
            canonical=self.canonical,
            E=self.E,
            scale_factor=self.scale_factor,
            diff_valid=self.diff_valid,
            axis_offsets=self.axis_offsets,
        )

    def init(self, features: tf.Tensor) -> None:
        self.M, self.os, self.ws, self.blur_neighbors = self.build(features)

    def compute(self, inp: tf.Tensor, reverse: bool = False, normalize: bool = True) -> tf.Tensor:
        if self.os is None:
            raise RuntimeError("`init()` must run before `compute()`.")
        return self.computation.compute(inp, self.d, self.os, self.ws, self.blur_neighbors, self.M, reverse, normalize)

    def filter(self, inp: tf.Tensor, positions: tf.Tensor, reverse: bool = False, normalize: bool = True) -> tf.Tensor:
        """
        Splat, blur and slice on a lattice scoped to this call.

        Args:
            inp: [N, vd], channel-last.
            positions: [N, d], any float type, the lattice is built in float64.
            reverse: run the blur axes in reverse order.
            normalize: renormalize with the homogeneous weight.

        Returns:
            out: [N, vd]
        """
        inp = tf.convert_to_tensor(inp)
        if inp.shape.rank != 2 or inp.shape[-1] == 0:
            raise ValueError("Expected input of shape [N, vd] with vd > 0, got {}.".format(inp.shape))

        M, os, ws, blur_neighbors = self.build(positions)
        return self.computation.compute(inp, self.d, os, ws, blur_neighbors, M, reverse, normalize)
