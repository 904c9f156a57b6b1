"""
Positions of the samples in feature space, channel-last.
"""

import numpy as np


def spatial_grid(spatial_dims) -> np.ndarray:
    """Row-major coordinates of every sample of a grid, [prod(spatial_dims), len(spatial_dims)], `ij` order."""
    spatial_dims = tuple(int(n) for n in spatial_dims)
    if not spatial_dims or any(n <= 0 for n in spatial_dims):
        raise ValueError("Spatial dimensions must be non-empty and positive, got {}.".format(spatial_dims))
    grids = np.meshgrid(*[np.arange(n) for n in spatial_dims], indexing="ij")
    return np.stack(grids, axis=-1).reshape((-1, len(spatial_dims)))


def build_positions(reference, spatial_dims, spatial_std: float, features_std: float = None, bilateral: bool = True, dtype=None) -> np.ndarray:
    """
    Create bilateral or spatial features.

    Args:
        reference: reference channels, [*spatial_dims, n_reference_channels], ignored unless `bilateral`.
        spatial_dims: sizes of the spatial axes.
        spatial_std: spatial bandwidth.
        features_std: bandwidth of the reference channels.
        bilateral: concatenate the scaled reference channels after the scaled coordinates.
        dtype: float type of the positions, defaults to that of `reference` (float32 at least).

    Returns:
        positions: [N, pd], pd = n_spatial_dims (+ n_reference_channels if bilateral).
    """
    if spatial_std <= 0:
        raise ValueError("spatial_std must be positive, got {}.".format(spatial_std))

    spatial_feats = spatial_grid(spatial_dims)  # [N, n_spatial_dims]
    num_super_pixels = spatial_feats.shape[0]

    if not bilateral:
        return spatial_feats.astype(np.float32 if dtype is None else dtype) / spatial_std

    if reference is None:
        raise ValueError("A reference is required for bilateral features.")
    if features_std is None or features_std <= 0:
        raise ValueError("features_std must be positive, got {}.".format(features_std))

    reference = np.asarray(reference)
    if reference.shape[:-1] != tuple(int(n) for n in spatial_dims):
        raise ValueError("Reference of shape {} does not match spatial dims {}.".format(reference.shape, tuple(spatial_dims)))
    if dtype is None:
        dtype = np.result_type(reference.dtype, np.float32)

    spatial_feats = spatial_feats.astype(dtype) / spatial_std  # [N, n_spatial_dims]
    color_feats = reference.reshape((num_super_pixels, -1)).astype(dtype) / features_std  # [N, n_reference_channels]
    return np.concatenate([spatial_feats, color_feats], axis=-1)
