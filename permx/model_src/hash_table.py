"""
- Hash table of the permutohedral lattice, an arena of vertices addressed by dense slots.
- Keys are lattice coordinates of length `d + 1` (summing to zero), values are `vd + 1` accumulators,
  `vd` channels plus the homogeneous weight.
"""

import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


class LatticeHashTable:
    def __init__(self, d: int, vd: int, capacity: int = 64, dtype=np.float32) -> None:
        """
        Initialize an empty table.

        Args:
            d: dimension of features, keys have `d + 1` coordinates.
            vd: number of value channels, the homogeneous channel is added here.
            capacity: initial number of slots, grows as needed.
            dtype: float type of the accumulators.
        """
        if d <= 0 or vd <= 0:
            raise ValueError("Both `d` and `vd` must be positive, got d={}, vd={}.".format(d, vd))
        self.d, self.vd = d, vd
        self.key_size, self.value_size = d + 1, vd + 1
        self.M = 0

        capacity = max(int(capacity), 1)
        self.keys = np.zeros((capacity, self.key_size), dtype=np.int64)  # [capacity, d + 1]
        self.values = np.zeros((capacity, self.value_size), dtype=dtype)  # [capacity, vd + 1]
        self.index = {}  # coordinate tuple -> slot

    def __len__(self) -> int:
        return self.M

    @property
    def num_vertices(self) -> int:
        return self.M

    @property
    def capacity(self) -> int:
        return self.keys.shape[0]

    def _check_keys(self, keys: np.ndarray) -> np.ndarray:
        keys = np.asarray(keys, dtype=np.int64)
        if keys.shape[-1] != self.key_size:
            raise ValueError("Lattice coordinates must have {} entries, got shape {}.".format(self.key_size, keys.shape))
        return keys

    def _grow(self, min_capacity: int) -> None:
        capacity = self.capacity
        while capacity < min_capacity:
            capacity *= 2
        logger.debug("Growing lattice hash table from %d to %d slots", self.capacity, capacity)

        keys = np.zeros((capacity, self.key_size), dtype=np.int64)
        values = np.zeros((capacity, self.value_size), dtype=self.values.dtype)
        keys[:self.M] = self.keys[:self.M]
        values[:self.M] = self.values[:self.M]
        self.keys, self.values = keys, values

    def _insert(self, key: tuple) -> int:
        if self.M == self.capacity:
            self._grow(self.M + 1)
        slot = self.M
        self.keys[slot] = key
        self.index[key] = slot
        self.M += 1
        return slot

    def find_or_create(self, keys):
        """
        Find the slot of each coordinate, inserting a zeroed vertex for unseen ones.

        Args:
            keys: one coordinate [d + 1, ] or a batch of them [K, d + 1].

        Returns:
            slot: an int for a single coordinate, otherwise [K, ] int32.
        """
        keys = self._check_keys(keys)
        if keys.ndim == 1:
            key = tuple(keys.tolist())
            slot = self.index.get(key)
            return self._insert(key) if slot is None else slot

        flat = keys.reshape((-1, self.key_size))
        # Reserve the worst case once instead of growing inside the loop
        if self.M + flat.shape[0] > self.capacity:
            self._grow(self.M + flat.shape[0])

        slots = np.empty((flat.shape[0], ), dtype=np.int32)
        for i, key in enumerate(map(tuple, flat.tolist())):
            slot = self.index.get(key)
            slots[i] = self._insert(key) if slot is None else slot
        return slots.reshape(keys.shape[:-1])

    def try_find(self, key) -> Optional[int]:
        """Slot of `key`, or `None` if it was never splatted."""
        key = self._check_keys(key)
        return self.index.get(tuple(key.tolist()))

    def lookup(self, keys: np.ndarray) -> np.ndarray:
        """Batched `try_find`, missing coordinates map to -1."""
        keys = self._check_keys(keys)
        flat = keys.reshape((-1, self.key_size))
        slots = np.fromiter(
            (self.index.get(key, -1) for key in map(tuple, flat.tolist())),
            dtype=np.int32,
            count=flat.shape[0],
        )
        return slots.reshape(keys.shape[:-1])

    def accumulate(self, slots, weights, values) -> None:
        """
        Add `weight * values` to the value channels and `weight` to the homogeneous channel.

        Args:
            slots: a slot or [K, ] slots, repeated slots are summed.
            weights: a weight or [K, ] weights.
            values: [vd, ] or [K, vd].
        """
        slots = np.asarray(slots, dtype=np.intp)
        weights = np.asarray(weights, dtype=self.values.dtype)
        values = np.asarray(values, dtype=self.values.dtype)
        if values.shape[-1] != self.vd:
            raise ValueError("Expected {} value channels, got shape {}.".format(self.vd, values.shape))

        update = np.concatenate(
            [weights[..., np.newaxis] * values, weights[..., np.newaxis]], axis=-1
        )  # [K, vd + 1]
        np.add.at(self.values, slots, update)

    def read(self, slots):
        """
        Read accumulators.

        Returns:
            values: [vd, ] or [K, vd].
            homogeneous: scalar or [K, ].
        """
        slots = np.asarray(slots, dtype=np.intp)
        acc = self.values[slots]
        return acc[..., :self.vd], acc[..., self.vd]

    def vertex_keys(self) -> np.ndarray:
        return self.keys[:self.M]  # [M, d + 1]

    def vertex_values(self) -> np.ndarray:
        return self.values[:self.M]  # [M, vd + 1]

    def replace_values(self, new_values: np.ndarray) -> None:
        """Swap in a freshly computed buffer of all vertex accumulators."""
        if new_values.shape != (self.M, self.value_size):
            raise ValueError("Expected values of shape {}, got {}.".format((self.M, self.value_size), new_values.shape))
        self.values[:self.M] = new_values
