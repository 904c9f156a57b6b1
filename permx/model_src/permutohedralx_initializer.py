"""
+ Initializer of our permutohedral lattice x built with NumPy.
+ Constants only depend on `d`, shared by the NumPy and TF lattices.
"""

import numpy as np


class PermutohedralXInitializer:
    def __init__(self, d: int) -> None:
        """
        Initialize this class.

        Args:
            d: the dimension of features, such as 5 for bilateral features, 2 for spatial features.

        Returns:
            None.
        """
        if d <= 0:
            raise ValueError("Feature dimension must be positive, got {}.".format(d))
        self.d = d

        canonical = np.zeros((d + 1, d + 1), dtype=np.int32)  # (d + 1, d + 1)
        for i in range(d + 1):
            canonical[i, :d + 1 - i] = i
            canonical[i, d + 1 - i:] = i - (d + 1)
        self.canonical = canonical  # (d + 1, d + 1)

        E = np.vstack(
            [
                np.ones((d,), dtype=np.float64),
                np.diag(-np.arange(d, dtype=np.float64) - 2)
                + np.triu(np.ones((d, d), dtype=np.float64)),
            ]
        )  # (d + 1, d)
        self.E = E  # (d + 1, d)

        # Expected standard deviation of our filter (p.6 in [Adams et al. 2010])
        inv_std_dev = np.sqrt(2.0 / 3.0) * np.float64(d + 1)

        # Compute the diagonal part of E (p.5 in [Adams et al 2010])
        scale_factor = (
            1.0 / np.sqrt((np.arange(d) + 2) * (np.arange(d) + 1)) * inv_std_dev
        )  # (d, )
        self.scale_factor = scale_factor  # (d, )

        diff_valid = 1 - np.tril(np.ones((d + 1, d + 1), dtype=np.int32))  # (d + 1, d + 1)
        self.diff_valid = diff_valid  # (d + 1, d + 1)

        # Helper constant values (matrices).
        d_mat = np.diag(np.ones((d + 1,), dtype=np.int32) * d)  # (d + 1, d + 1)
        diagone = np.diag(np.ones(d + 1, dtype=np.int32))  # (d + 1, d + 1)
        self.d_mat = d_mat  # (d + 1, d + 1)
        self.diagone = diagone  # (d + 1, d + 1)

        # Row `j` is the offset of the `+1` blur neighbor along axis `j`: (d + 1) * e_j - 1
        self.axis_offsets = (d_mat + diagone - 1).astype(np.int32)  # (d + 1, d + 1)
