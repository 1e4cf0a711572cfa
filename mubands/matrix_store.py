"""
Covariance Matrix Store
=======================

Externally computed covariance matrices pushed onto a histogram, kept under
a name, plus a parallel set of soft-deleted ("removed") matrices that can be
restored.

A matrix pushed as shape-only is stored under ``<name>_asShape``. The plain
and the shape-only entries of one name are pushed independently but always
move together between the active and the removed sets.
"""

import logging
from typing import Dict, Iterator, List, Tuple

import numpy as np

from .parameters import MU_PARAMS

logger = logging.getLogger(__name__)


def shape_key(name: str) -> str:
    return name + MU_PARAMS.SHAPE_SUFFIX


def is_shape_key(name: str) -> bool:
    return name.endswith(MU_PARAMS.SHAPE_SUFFIX)


def strip_shape_suffix(name: str) -> str:
    if is_shape_key(name):
        return name[:-len(MU_PARAMS.SHAPE_SUFFIX)]
    return name


class CovarianceMatrixStore:
    """
    Named square matrices of a fixed size.

    Parameters:
        size (int): Required matrix dimension (total bins including flow)
    """

    def __init__(self, size: int):
        self.size = int(size)
        self._active: Dict[str, np.ndarray] = {}
        self._removed: Dict[str, np.ndarray] = {}

    # ------------------------------------------------------------------
    # Push / remove / restore
    # ------------------------------------------------------------------

    def push(self, name: str, matrix, area_normalize: bool = False) -> bool:
        """
        Store a copy of matrix.

        Parameters:
            name (str): Source name; must not carry the shape suffix
            matrix: Square array of dimension size
            area_normalize (bool): Store as the shape-only variant

        Returns:
            bool: False (with a warning) if the name is reserved, removed,
            taken, or the dimensions are wrong
        """
        if is_shape_key(name):
            logger.warning(f"Cannot push a matrix whose name ends in '{MU_PARAMS.SHAPE_SUFFIX}' ({name}). "
                           f"Push it under the plain name with area_normalize=True instead")
            return False

        key = shape_key(name) if area_normalize else name

        if name in self._removed or shape_key(name) in self._removed:
            logger.warning(f"Matrix '{name}' is in the removed set; restore it with unremove('{name}')")
            return False

        matrix = np.array(matrix, dtype=float)
        if matrix.shape != (self.size, self.size):
            logger.warning(f"Matrix '{key}' has shape {matrix.shape}, expected "
                           f"({self.size}, {self.size}). Doing nothing")
            return False

        if key in self._active:
            logger.warning(f"There is already a matrix named '{key}'. Doing nothing")
            return False

        self._active[key] = matrix
        return True

    def remove(self, name: str) -> bool:
        """Move the plain and shape-only matrices of name to the removed set."""
        keys = [k for k in (name, shape_key(name)) if k in self._active]
        if not keys:
            logger.warning(f"No active matrix '{name}' (plain or shape-only) to remove")
            return False
        for key in keys:
            self._removed[key] = self._active.pop(key)
        return True

    def unremove(self, name: str) -> bool:
        """Restore the plain and shape-only matrices of name, each under its own key."""
        keys = [k for k in (name, shape_key(name)) if k in self._removed]
        if not keys:
            logger.warning(f"No removed matrix '{name}' (plain or shape-only) to restore")
            return False
        for key in keys:
            self._active[key] = self._removed.pop(key)
        return True

    def clear(self):
        """Drop every matrix, active and removed."""
        self._active.clear()
        self._removed.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has(self, key: str) -> bool:
        return key in self._active

    def has_removed(self, key: str) -> bool:
        return key in self._removed

    def has_name(self, name: str) -> bool:
        """True if name is used by any active or removed matrix, plain or shape-only."""
        keys = (name, shape_key(name))
        return any(k in self._active or k in self._removed for k in keys)

    def get(self, key: str) -> np.ndarray:
        """Copy of an active matrix; KeyError if absent."""
        return self._active[key].copy()

    def get_removed(self, key: str) -> np.ndarray:
        return self._removed[key].copy()

    def names(self) -> List[str]:
        """Active source names, shape-only keys excluded."""
        return sorted(k for k in self._active if not is_shape_key(k))

    def removed_names(self) -> List[str]:
        return sorted(k for k in self._removed if not is_shape_key(k))

    def keys(self) -> List[str]:
        return sorted(self._active)

    def removed_keys(self) -> List[str]:
        return sorted(self._removed)

    def is_empty(self) -> bool:
        return not self._active and not self._removed

    def n_removed(self) -> int:
        return len(self._removed)

    def __len__(self) -> int:
        return len(self._active)

    def items(self, removed: bool = False) -> Iterator[Tuple[str, np.ndarray]]:
        """(key, matrix copy) pairs sorted by key."""
        store = self._removed if removed else self._active
        for key in sorted(store):
            yield key, store[key].copy()

    # ------------------------------------------------------------------
    # Transformations
    # ------------------------------------------------------------------

    def scale(self, factors: np.ndarray):
        """
        Multiply every matrix (active and removed) element-wise.

        Parameters:
            factors (ndarray): (size, size) multiplier, e.g. outer(f, f)
        """
        for store in (self._active, self._removed):
            for key in store:
                store[key] = store[key] * factors

    def restore(self, key: str, matrix, removed: bool = False):
        """Put a matrix back verbatim under its storage key (used by readers)."""
        matrix = np.array(matrix, dtype=float)
        if matrix.shape != (self.size, self.size):
            raise ValueError(f"Matrix '{key}' has shape {matrix.shape}, expected ({self.size}, {self.size})")
        (self._removed if removed else self._active)[key] = matrix
