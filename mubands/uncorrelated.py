"""
Uncorrelated errors: bin-by-bin systematics with no universes.

The accumulator's content holds the summed event weight and its bin error
holds the summed per-event error, added linearly so that
error/content stays the weighted average error per unit weight.
"""

import copy
import logging
from typing import Optional

import numpy as np

from .accumulator import BinnedAccumulator
from .covariance import errors_as_matrix

logger = logging.getLogger(__name__)


class UncorrError:
    """
    Named diagonal-only error source.

    Parameters:
        name (str): Source name
        hist (BinnedAccumulator): Storage, owned by this object
    """

    def __init__(self, name: str, hist: BinnedAccumulator):
        self.name = name
        self.hist = hist
        self.hist.name = name

    @classmethod
    def empty(cls, name: str, cv: BinnedAccumulator) -> 'UncorrError':
        """Empty source with the CV binning, meant to be filled."""
        return cls(name, cv.copy_structure(name))

    @classmethod
    def from_errors(cls, name: str, cv: BinnedAccumulator, hist: BinnedAccumulator,
                    err_in_content: bool = False) -> 'UncorrError':
        """
        Source holding the CV contents and the errors of hist.

        Parameters:
            err_in_content (bool): Read the errors from hist's contents
                instead of its bin errors
        """
        if not cv.same_binning(hist):
            raise ValueError(f"Uncorrelated error '{name}' does not have the CV binning")
        acc = cv.clone(name)
        errors = hist.contents_flat() if err_in_content else hist.errors_flat()
        acc.set_errors_flat(errors)
        return cls(name, acc)

    @classmethod
    def filled_with_cv(cls, name: str, cv: BinnedAccumulator) -> 'UncorrError':
        """Source holding the CV contents with zero errors."""
        acc = cv.clone(name)
        acc.set_errors_flat(np.zeros(acc.total_bins))
        return cls(name, acc)

    # ------------------------------------------------------------------

    def fill(self, value, err: float, cv_weight: float = 1.0) -> int:
        """Add cv_weight to the content and err (linearly) to the error of value's bin."""
        b = self.hist.find_bin(value)
        self.hist.add_bin_content(b, cv_weight)
        self.hist.set_bin_error(b, err + self.hist.get_bin_error(b))
        return b

    def errors(self) -> np.ndarray:
        return self.hist.errors_flat()

    def get_as_hist(self, cv: BinnedAccumulator, as_frac: bool = False) -> BinnedAccumulator:
        """
        Accumulator whose content is the stored error.

        With as_frac the error is divided by the absolute CV content, and bins
        with an empty CV get 0. The returned errors are always zero.
        """
        out = cv.copy_structure(f"{self.name}_asHist")
        err = self.errors()
        if as_frac:
            content = cv.contents_flat()
            frac = np.zeros_like(err)
            nonzero = content != 0
            frac[nonzero] = np.abs(err[nonzero] / content[nonzero])
            err = frac
        out.set_contents_flat(err)
        return out

    def as_matrix(self) -> np.ndarray:
        """Diagonal covariance with error² on the diagonal."""
        return errors_as_matrix(self.errors())

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def scale(self, factor: float, width: bool = False):
        self.hist.scale(factor, width)

    def add(self, other: 'UncorrError', c1: float = 1.0):
        self.hist.add(other.hist, c1)

    def add_content(self, acc: BinnedAccumulator, c1: float = 1.0):
        """Add to the content only, keeping the stored errors."""
        self.hist.add_content(acc, c1)

    def multiply(self, a: 'UncorrError', b: 'UncorrError', c1: float = 1.0, c2: float = 1.0):
        self.hist.multiply(a.hist, b.hist, c1, c2)

    def multiply_single(self, a: 'UncorrError', acc: BinnedAccumulator,
                        c1: float = 1.0, c2: float = 1.0):
        self.hist.multiply(a.hist, acc, c1, c2)

    def divide(self, a: 'UncorrError', b: 'UncorrError', c1: float = 1.0,
               c2: float = 1.0, binomial: bool = False):
        self.hist.divide(a.hist, b.hist, c1, c2, binomial)

    def divide_single(self, a: 'UncorrError', acc: BinnedAccumulator, c1: float = 1.0,
                      c2: float = 1.0, binomial: bool = False):
        self.hist.divide(a.hist, acc, c1, c2, binomial)

    def rebin(self, group=2):
        self.hist.rebin(group)

    def reset(self):
        self.hist.reset()

    def clone(self, name: Optional[str] = None) -> 'UncorrError':
        other = copy.deepcopy(self)
        if name is not None:
            other.rename(name)
        return other

    def rename(self, name: str):
        self.name = name
        self.hist.name = name

    def __repr__(self) -> str:
        return f"UncorrError({self.name!r}, n_bins={self.hist.n_bins})"
