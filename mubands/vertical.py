"""
Vertical error bands: systematics modelled as per-event reweighting.

Every universe is filled in the same bin as the CV, only with a different
weight.
"""

import logging
from typing import Sequence

from .parameters import MU_PARAMS
from .universe_set import UniverseSet

logger = logging.getLogger(__name__)


class VertErrorBand(UniverseSet):
    """
    Universe set filled by reweighting.

    Defaults to 1000 universes (gaussian throws about the CV).
    """

    default_universes = MU_PARAMS.DEFAULT_VERT_UNIVERSES

    def fill(self, value, weights: Sequence[float], cv_weight: float = 1.0,
             cv_weight_from_me: float = 1.0) -> int:
        """
        Fill the CV and every universe.

        Parameters:
            value: Fill value (one coordinate per axis)
            weights: One weight per universe
            cv_weight (float): Event weight of the CV
            cv_weight_from_me (float): Part of cv_weight that already comes
                from this systematic; divided out of the universe weights

        Returns:
            int: Global bin that was filled
        """
        self._check_count(len(weights))

        cv_bin = self.cv.fill(value, cv_weight)
        index = self.cv.bin_index(cv_bin)

        apply_weight = cv_weight / cv_weight_from_me
        for universe, weight in zip(self._universes, weights):
            universe.fill_index(index, weight * apply_weight)

        return cv_bin

    def fill_down_up(self, value, weight_down: float, weight_up: float,
                     cv_weight: float = 1.0, cv_weight_from_me: float = 1.0) -> int:
        """Two-universe fill (down, up)."""
        self._require_two("fill_down_up")
        return self.fill(value, [weight_down, weight_up], cv_weight, cv_weight_from_me)
