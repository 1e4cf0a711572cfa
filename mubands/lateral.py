"""
Lateral error bands: systematics modelled as a shift of the fill location.

Each universe is filled at value + shift. The target bin is found by walking
outward from the CV bin one bin at a time, stopping at the under/overflow
bins; shifts are usually small so the walk rarely goes further than one bin.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from .parameters import MU_PARAMS
from .universe_set import UniverseSet

logger = logging.getLogger(__name__)


class LatErrorBand(UniverseSet):
    """
    Universe set filled by shifting.

    Defaults to 2 universes (-1 sigma and +1 sigma shifts).
    """

    default_universes = MU_PARAMS.DEFAULT_LAT_UNIVERSES

    def _walk(self, start: int, value: float, shifted: float, axis: int) -> int:
        """Move from the CV bin on one axis until the shifted value fits."""
        edges = self.cv.edges(axis)
        n = len(edges) - 1
        b = start
        if shifted < value:
            while b > 0 and shifted < edges[b - 1]:
                b -= 1
        elif shifted > value:
            while b < n + 1 and shifted >= edges[b]:
                b += 1
        return b

    def _shift_vector(self, shift) -> np.ndarray:
        shift = np.atleast_1d(np.asarray(shift, dtype=float))
        if shift.size != self.cv.ndim:
            raise ValueError(f"Shift needs {self.cv.ndim} component(s), got {shift.size}")
        return shift

    def fill(self, value, shifts: Sequence, cv_weight: float = 1.0,
             fill_cv: bool = True, weights: Optional[Sequence[float]] = None) -> int:
        """
        Fill the CV at value and universe i at value + shifts[i].

        Parameters:
            value: Fill value (scalar for 1D, one coordinate per axis otherwise)
            shifts: One shift per universe (per-axis sequences for 2D/3D)
            cv_weight (float): Event weight
            fill_cv (bool): Also fill the CV
            weights: Optional extra weight per universe

        Returns:
            int: Global CV bin of value

        Universes whose shift is NOT_PHYSICAL_SHIFT on any axis are skipped.
        """
        self._check_count(len(shifts))
        if weights is not None:
            self._check_count(len(weights))

        if fill_cv:
            self.cv.fill(value, cv_weight)

        coords = self.cv.coordinates(value)
        cv_index = self.cv.find_index(coords)

        for i, universe in enumerate(self._universes):
            shift = self._shift_vector(shifts[i])
            if any(MU_PARAMS.is_not_physical_shift(s) for s in shift):
                continue

            index = tuple(self._walk(cv_index[axis], x, x + s, axis)
                          for axis, (x, s) in enumerate(zip(coords, shift)))

            weight = cv_weight
            if weights is not None:
                weight *= weights[i]
            universe.fill_index(index, weight)

        return self.cv.global_bin(cv_index)

    def fill_down_up(self, value, shift_down, shift_up, cv_weight: float = 1.0,
                     fill_cv: bool = True) -> int:
        """Two-universe fill (down, up)."""
        self._require_two("fill_down_up")
        return self.fill(value, [shift_down, shift_up], cv_weight, fill_cv)
