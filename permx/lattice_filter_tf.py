# -*- coding: utf-8 -*-

"""
Lattice filter op and layer in TF, channel-last input required.

- Gradient w.r.t. the input is the same filter with the blur order reversed, the reference gets none.
"""

import logging

import tensorflow as tf

from .config import LatticeFilterConfig
from .lattice_filter import check_inputs
from .model_src.permutohedralx_tf import PermutohedralLatticeTF

logger = logging.getLogger(__name__)


def build_positions_tf(reference: tf.Tensor, spatial_dims, spatial_std: float, features_std: float = None, bilateral: bool = True, dtype=tf.float32) -> tf.Tensor:
    """
    Create bilateral or spatial features.

    Args:
        reference: [*spatial_dims, n_reference_channels], ignored unless `bilateral`.
        spatial_dims: static sizes of the spatial axes.
        spatial_std: spatial bandwidth.
        features_std: bandwidth of the reference channels.
        bilateral: concatenate the scaled reference channels after the scaled coordinates.
        dtype: float type of the positions.

    Returns:
        positions: [N, pd]
    """
    spatial_dims = [int(n) for n in spatial_dims]
    if not spatial_dims or any(n <= 0 for n in spatial_dims):
        raise ValueError("Spatial dimensions must be non-empty and positive, got {}.".format(spatial_dims))
    n_spatial_dims = len(spatial_dims)

    grids = tf.meshgrid(*[tf.range(n) for n in spatial_dims], indexing="ij")  # n_spatial_dims x [*spatial_dims]
    spatial_feats = tf.cast(tf.stack(grids, axis=-1), dtype=dtype) / tf.cast(spatial_std, dtype=dtype)
    spatial_feats = tf.reshape(spatial_feats, shape=[-1, n_spatial_dims])  # [N, n_spatial_dims]
    if not bilateral:
        return spatial_feats

    if reference is None or features_std is None:
        raise ValueError("Bilateral features need a reference and features_std.")
    n_reference_channels = reference.shape[-1]
    color_feats = tf.cast(reference, dtype=dtype) / tf.cast(features_std, dtype=dtype)
    color_feats = tf.reshape(color_feats, shape=[-1, n_reference_channels])  # [N, n_reference_channels]
    return tf.concat([spatial_feats, color_feats], axis=-1)


def filter_with_config_tf(inp: tf.Tensor, reference: tf.Tensor, config: LatticeFilterConfig) -> tf.Tensor:
    inp = tf.convert_to_tensor(inp)
    if not inp.dtype.is_floating:
        inp = tf.cast(inp, dtype=tf.float32)
    reference = None if reference is None else tf.convert_to_tensor(reference)
    check_inputs(inp.shape.as_list(), None if reference is None else reference.shape.as_list(), config.bilateral)

    spatial_dims = inp.shape[1:-1].as_list()
    n_input_channels = inp.shape[-1]
    if None in spatial_dims or n_input_channels is None:
        raise ValueError("Spatial dims and channels must be static, got shape {}.".format(inp.shape))
    num_super_pixels = 1
    for n in spatial_dims:
        num_super_pixels *= n

    n_reference_channels = reference.shape[-1] if config.bilateral else 0
    pd = len(spatial_dims) + n_reference_channels
    lattice = PermutohedralLatticeTF(pd)
    logger.debug("TF lattice filter %s, pd=%d, vd=%d", config.describe(), pd, n_input_channels)

    def run(x: tf.Tensor, reverse: bool) -> tf.Tensor:
        def filter_one(elems):
            x_b = elems[0]
            ref_b = elems[1] if config.bilateral else None
            positions = build_positions_tf(
                ref_b,
                spatial_dims,
                config.spatial_std,
                config.features_std,
                bilateral=config.bilateral,
                dtype=tf.float64,
            )  # [N, pd]
            out = lattice.filter(tf.reshape(x_b, shape=[num_super_pixels, n_input_channels]), positions, reverse=reverse)
            return tf.reshape(out, shape=tf.shape(x_b))

        elems = (x, reference) if config.bilateral else (x, )
        return tf.map_fn(filter_one, elems, fn_output_signature=x.dtype)

    @tf.custom_gradient
    def lattice_filter_op(x):
        def grad(dy):
            return run(dy, not config.reverse)

        return run(x, config.reverse), grad

    return lattice_filter_op(inp)


def lattice_filter_tf(inp: tf.Tensor, reference: tf.Tensor = None, reverse: bool = False, bilateral: bool = True, theta_alpha: float = 1.0, theta_beta: float = 1.0, theta_gamma: float = 1.0) -> tf.Tensor:
    """
    Differentiable lattice filter.

    Args:
        inp: [batch, *spatial_dims, channels], static spatial dims and channels.
        reference: [batch, *spatial_dims, reference_channels], required if `bilateral`.
        reverse: blur the lattice axes in reverse order.
        bilateral: use spatial and reference features, spatial features only otherwise.
        theta_alpha, theta_beta: spatial and color bandwidths of bilateral features.
        theta_gamma: spatial bandwidth of spatial features.

    Returns:
        output: same shape as `inp`.
    """
    config = LatticeFilterConfig(
        reverse=reverse,
        bilateral=bilateral,
        theta_alpha=theta_alpha,
        theta_beta=theta_beta,
        theta_gamma=theta_gamma,
    )
    return filter_with_config_tf(inp, reference, config)


class LatticeFilterLayer(tf.keras.layers.Layer):
    """ Lattice filter layer """
    def __init__(self, reverse: bool = False, bilateral: bool = True, theta_alpha: float = 1.0, theta_beta: float = 1.0, theta_gamma: float = 1.0, **kwargs) -> None:
        super(LatticeFilterLayer, self).__init__(**kwargs)
        self.lattice_config = LatticeFilterConfig(
            reverse=reverse,
            bilateral=bilateral,
            theta_alpha=theta_alpha,
            theta_beta=theta_beta,
            theta_gamma=theta_gamma,
        )

    def call(self, inputs: tf.Tensor, reference: tf.Tensor = None) -> tf.Tensor:
        """ The order of parameters: values, reference image """
        return filter_with_config_tf(inputs, reference, self.lattice_config)

    def get_config(self) -> dict:
        config = super(LatticeFilterLayer, self).get_config()
        config.update(self.lattice_config.as_dict())
        return config
