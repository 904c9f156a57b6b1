"""
Batched lattice filter on NumPy arrays, channel-last.

- Input of shape [batch, *spatial_dims, channels], output of the same shape.
- One lattice per batch element, positions are rebuilt from the reference of that element.
"""

import logging

import numpy as np

from .config import LatticeFilterConfig
from .features import build_positions
from .model_src.permutohedralx_np import PermutohedralLattice

logger = logging.getLogger(__name__)


def check_inputs(inp_shape, reference_shape, bilateral: bool) -> None:
    if len(inp_shape) < 3:
        raise ValueError("Input must be [batch, *spatial_dims, channels], got shape {}.".format(tuple(inp_shape)))
    if not bilateral:
        return
    if reference_shape is None:
        raise ValueError("Bilateral filtering needs a reference image.")
    if len(reference_shape) != len(inp_shape) or tuple(reference_shape[:-1]) != tuple(inp_shape[:-1]):
        raise ValueError("Reference of shape {} does not match input of shape {}.".format(tuple(reference_shape), tuple(inp_shape)))


def filter_with_config(inp: np.ndarray, reference: np.ndarray, config: LatticeFilterConfig) -> np.ndarray:
    inp = np.asarray(inp)
    reference = None if reference is None else np.asarray(reference)
    check_inputs(inp.shape, None if reference is None else reference.shape, config.bilateral)

    batch_size, spatial_dims, n_input_channels = inp.shape[0], inp.shape[1:-1], inp.shape[-1]
    num_super_pixels = int(np.prod(spatial_dims))
    dtype = np.result_type(inp.dtype, np.float32)
    pd = len(spatial_dims) + (reference.shape[-1] if config.bilateral else 0)
    logger.debug("Lattice filter %s on %d x %d samples, pd=%d, vd=%d", config.describe(), batch_size, num_super_pixels, pd, n_input_channels)

    out = np.empty(inp.shape, dtype=dtype)
    for b in range(batch_size):
        positions = build_positions(
            reference[b] if config.bilateral else None,
            spatial_dims,
            config.spatial_std,
            config.features_std,
            bilateral=config.bilateral,
            dtype=np.float64,
        )  # [N, pd], float64 whatever the values are

        lattice = PermutohedralLattice(pd, n_input_channels, num_super_pixels, dtype=dtype)
        out[b] = lattice.filter(
            inp[b].reshape((num_super_pixels, n_input_channels)),
            positions,
            reverse=config.reverse,
        ).reshape(inp.shape[1:])

    return out


def lattice_filter(inp: np.ndarray, reference: np.ndarray = None, reverse: bool = False, bilateral: bool = True, theta_alpha: float = 1.0, theta_beta: float = 1.0, theta_gamma: float = 1.0) -> np.ndarray:
    """
    Filter `inp` with a Gaussian in feature space.

    Args:
        inp: [batch, *spatial_dims, channels].
        reference: [batch, *spatial_dims, reference_channels], required if `bilateral`.
        reverse: blur the lattice axes in reverse order (backward pass).
        bilateral: use spatial and reference features, spatial features only otherwise.
        theta_alpha: spatial bandwidth of bilateral features.
        theta_beta: color bandwidth of bilateral features.
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
    return filter_with_config(inp, reference, config)
