"""
Universe Set
============

A named systematic source: a private copy of the central value (CV) plus a
fixed, ordered list of N universes, each a BinnedAccumulator with the CV's
binning.

The vertical and lateral error bands only differ in how they are filled; the
covariance estimation and the arithmetic propagation live here.
"""

import copy
import logging
from typing import List, Optional, Sequence

import numpy as np

from .accumulator import BinnedAccumulator, BinningError
from .covariance import (diagonal_errors, sample_covariance, spread_covariance,
                         to_correlation, to_fractional)
from .parameters import MU_PARAMS

logger = logging.getLogger(__name__)


class UniverseCountError(Exception):
    """Universe count does not match what the operation requires."""
    pass


class UniverseSet:
    """
    Base class for the many-universe error bands.

    Parameters:
        name (str): Name of the source (also prefixes the universe names)
        base (BinnedAccumulator): CV accumulator; copied, never shared
        n_universes (int, optional): Number of empty universes to create
        universes (list, optional): Explicit universes, deep copied in order

    Exactly one of n_universes/universes may be given; with neither the
    subclass default applies.
    """

    default_universes = MU_PARAMS.DEFAULT_VERT_UNIVERSES

    def __init__(self, name: str, base: BinnedAccumulator,
                 n_universes: Optional[int] = None,
                 universes: Optional[Sequence[BinnedAccumulator]] = None):
        if n_universes is not None and universes is not None:
            raise ValueError("Give either n_universes or universes, not both")

        self.name = name
        self.cv = base.clone(name)

        if universes is not None:
            for i, universe in enumerate(universes):
                if not self.cv.same_binning(universe):
                    raise BinningError(
                        f"Universe {i} of '{name}' does not have the CV binning")
            self._universes = [u.clone(self._universe_name(i)) for i, u in enumerate(universes)]
        else:
            n = self.default_universes if n_universes is None else int(n_universes)
            if n < 0:
                raise UniverseCountError(f"Negative number of universes ({n}) for '{name}'")
            self._universes = [base.copy_structure(self._universe_name(i)) for i in range(n)]

        self.use_spread_error = MU_PARAMS.default_use_spread_error(len(self._universes))

    def _universe_name(self, i: int) -> str:
        return f"{self.name}{MU_PARAMS.UNIVERSE_TAG}{i}"

    # ------------------------------------------------------------------
    # Universe access
    # ------------------------------------------------------------------

    @property
    def n_universes(self) -> int:
        return len(self._universes)

    def get_universe(self, i: int) -> Optional[BinnedAccumulator]:
        """Universe i, or None with an error log when out of range."""
        if not 0 <= i < len(self._universes):
            logger.error(f"Cannot return universe {i} of '{self.name}', it has {self.n_universes} universes")
            return None
        return self._universes[i]

    def get_universes(self) -> List[BinnedAccumulator]:
        return list(self._universes)

    def universe_contents(self) -> np.ndarray:
        """Universe contents stacked into an (N, total_bins) array."""
        if not self._universes:
            return np.zeros((0, self.cv.total_bins))
        return np.vstack([u.contents_flat() for u in self._universes])

    def _check_count(self, n: int):
        if n != self.n_universes:
            raise UniverseCountError(
                f"'{self.name}' has {self.n_universes} universes, got {n} values")

    def _require_two(self, operation: str):
        if self.n_universes != 2:
            raise UniverseCountError(
                f"{operation} needs exactly 2 universes, '{self.name}' has {self.n_universes}")

    # ------------------------------------------------------------------
    # Covariance
    # ------------------------------------------------------------------

    def calc_cov_mx(self, area_normalize: bool = False, as_frac: bool = False) -> np.ndarray:
        """
        Covariance matrix of this source.

        Parameters:
            area_normalize (bool): Scale each universe to the CV integral first
            as_frac (bool): Divide by CV_i * CV_k

        Returns:
            ndarray: (total_bins, total_bins) covariance matrix
        """
        cv = self.cv.contents_flat()
        values = self.universe_contents()

        if area_normalize and self.n_universes > 0:
            # Copies only; universes keep their own normalisation
            cv_area = self.cv.integral()
            for j, universe in enumerate(self._universes):
                area = universe.integral()
                if area > 0:
                    values[j] = values[j] * (cv_area / area)

        if self.n_universes > 1:
            mean = values.mean(axis=0)
        else:
            mean = cv

        if self.use_spread_error:
            cov = spread_covariance(values, cv)
        else:
            cov = sample_covariance(values, mean)

        if as_frac:
            cov = to_fractional(cov, cv)
        return cov

    def calc_corr_mx(self, area_normalize: bool = False) -> np.ndarray:
        return to_correlation(self.calc_cov_mx(area_normalize))

    def get_error_band(self, as_frac: bool = False, area_normalize: bool = False) -> BinnedAccumulator:
        """
        Accumulator whose content is sqrt of the covariance diagonal.

        Errors of the returned accumulator are zero.
        """
        band = self.cv.copy_structure(f"{self.name}_errorBand")
        band.set_contents_flat(diagonal_errors(self.calc_cov_mx(area_normalize, as_frac)))
        return band

    # ------------------------------------------------------------------
    # Arithmetic, applied to the CV and every universe
    # ------------------------------------------------------------------

    def scale(self, factor: float, width: bool = False):
        self.cv.scale(factor, width)
        for universe in self._universes:
            universe.scale(factor, width)

    def add(self, other: 'UniverseSet', c1: float = 1.0) -> bool:
        """Add another set universe by universe."""
        if other.n_universes != self.n_universes:
            logger.error(f"Cannot add '{other.name}' to '{self.name}': "
                         f"{other.n_universes} vs {self.n_universes} universes")
            return False
        self.cv.add(other.cv, c1)
        for mine, theirs in zip(self._universes, other._universes):
            mine.add(theirs, c1)
        return True

    def add_single(self, acc: BinnedAccumulator, c1: float = 1.0) -> bool:
        """Add the same accumulator to the CV and every universe."""
        self.cv.add(acc, c1)
        for universe in self._universes:
            universe.add(acc, c1)
        return True

    def multiply(self, a: 'UniverseSet', b: 'UniverseSet',
                 c1: float = 1.0, c2: float = 1.0) -> bool:
        if not (a.n_universes == b.n_universes == self.n_universes):
            logger.error(f"Cannot multiply '{self.name}': universe counts "
                         f"{a.n_universes}, {b.n_universes}, {self.n_universes} differ")
            return False
        self.cv.multiply(a.cv, b.cv, c1, c2)
        for mine, ua, ub in zip(self._universes, a._universes, b._universes):
            mine.multiply(ua, ub, c1, c2)
        return True

    def multiply_single(self, a: 'UniverseSet', acc: BinnedAccumulator,
                        c1: float = 1.0, c2: float = 1.0) -> bool:
        """Multiply set a universe by universe by one accumulator."""
        if a.n_universes != self.n_universes:
            logger.error(f"Cannot multiply '{self.name}' by '{a.name}': "
                         f"{a.n_universes} vs {self.n_universes} universes")
            return False
        self.cv.multiply(a.cv, acc, c1, c2)
        for mine, ua in zip(self._universes, a._universes):
            mine.multiply(ua, acc, c1, c2)
        return True

    def divide(self, a: 'UniverseSet', b: 'UniverseSet',
               c1: float = 1.0, c2: float = 1.0, binomial: bool = False) -> bool:
        if not (a.n_universes == b.n_universes == self.n_universes):
            logger.error(f"Cannot divide '{self.name}': universe counts "
                         f"{a.n_universes}, {b.n_universes}, {self.n_universes} differ")
            return False
        self.cv.divide(a.cv, b.cv, c1, c2, binomial)
        for mine, ua, ub in zip(self._universes, a._universes, b._universes):
            mine.divide(ua, ub, c1, c2, binomial)
        return True

    def divide_single(self, a: 'UniverseSet', acc: BinnedAccumulator,
                      c1: float = 1.0, c2: float = 1.0, binomial: bool = False) -> bool:
        if a.n_universes != self.n_universes:
            logger.error(f"Cannot divide '{a.name}' into '{self.name}': "
                         f"{a.n_universes} vs {self.n_universes} universes")
            return False
        self.cv.divide(a.cv, acc, c1, c2, binomial)
        for mine, ua in zip(self._universes, a._universes):
            mine.divide(ua, acc, c1, c2, binomial)
        return True

    def rebin(self, group=2) -> bool:
        self.cv.rebin(group)
        for universe in self._universes:
            universe.rebin(group)
        return True

    def reset(self):
        """Zero the CV and every universe; the universe count is kept."""
        self.cv.reset()
        for universe in self._universes:
            universe.reset()

    # ------------------------------------------------------------------
    # Copies and naming
    # ------------------------------------------------------------------

    def clone(self) -> 'UniverseSet':
        """Independent deep copy."""
        return copy.deepcopy(self)

    def rename(self, name: str):
        """Rename the set and its universes."""
        self.name = name
        self.cv.name = name
        for i, universe in enumerate(self._universes):
            universe.name = self._universe_name(i)

    def __repr__(self) -> str:
        return (f"{type(self).__name__}({self.name!r}, n_universes={self.n_universes}, "
                f"use_spread_error={self.use_spread_error})")
