"""
Histogram With Errors
=====================

The aggregator: a central-value accumulator plus any number of named
systematic sources.

Sources live in three disjoint namespaces (vertical error bands, lateral
error bands, uncorrelated errors) plus the store of externally pushed
covariance matrices. A name can only be used once across all of them.

Total covariance is the sum over every active source, optionally plus the
statistical (diagonal) covariance of the CV. Arithmetic on the histogram is
carried through to the CV, every universe of every band and every
uncorrelated error.
"""

import copy
import logging
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from .accumulator import BinnedAccumulator
from .covariance import (diagonal_errors, errors_as_matrix, to_correlation,
                         to_fractional)
from .lateral import LatErrorBand
from .matrix_store import (CovarianceMatrixStore, is_shape_key, shape_key,
                           strip_shape_suffix)
from .parameters import MU_PARAMS
from .uncorrelated import UncorrError
from .universe_set import UniverseSet
from .vertical import VertErrorBand

logger = logging.getLogger(__name__)


class HistogramWithErrors:
    """
    Central value plus named systematic error sources.

    Parameters:
        cv (BinnedAccumulator): Central value; copied
        norm_bin_width (float, optional): Default width for bin-width
            normalised copies (first bin width when not given)
        name (str, optional): Histogram name (defaults to the CV's name)
    """

    def __init__(self, cv: BinnedAccumulator, norm_bin_width: Optional[float] = None,
                 name: Optional[str] = None):
        self.name = cv.name if name is None else name
        self.cv = cv.clone(self.name)
        self.norm_bin_width = (self.cv.bin_width(1) if norm_bin_width is None
                               else float(norm_bin_width))

        self._vert: Dict[str, VertErrorBand] = {}
        self._lat: Dict[str, LatErrorBand] = {}
        self._uncorr: Dict[str, UncorrError] = {}
        self._matrices = CovarianceMatrixStore(self.cv.total_bins)

    @classmethod
    def regular(cls, name: str, n_bins, low, high,
                norm_bin_width: Optional[float] = None) -> 'HistogramWithErrors':
        """Empty histogram with equal-width bins."""
        return cls(BinnedAccumulator.regular(n_bins, low, high, name=name),
                   norm_bin_width=norm_bin_width)

    @classmethod
    def from_edges(cls, name: str, edges, norm_bin_width: Optional[float] = None) -> 'HistogramWithErrors':
        return cls(BinnedAccumulator(edges, name=name), norm_bin_width=norm_bin_width)

    def _band_name(self, name: str) -> str:
        return f"{self.name}_{name}"

    # ======================================================================
    # NAMESPACES
    # ======================================================================

    def has_vert_error_band(self, name: str) -> bool:
        return name in self._vert

    def has_lat_error_band(self, name: str) -> bool:
        return name in self._lat

    def has_uncorr_error(self, name: str) -> bool:
        return name in self._uncorr

    def has_error_band(self, name: str) -> bool:
        """True if name is a vertical, lateral or uncorrelated source."""
        return name in self._vert or name in self._lat or name in self._uncorr

    def has_error_matrix(self, name: str) -> bool:
        """True if an active pushed matrix is stored under this key."""
        return self._matrices.has(name)

    def has_removed_error_matrix(self, name: str) -> bool:
        return self._matrices.has_removed(name)

    def _name_taken(self, name: str) -> bool:
        return self.has_error_band(name) or self._matrices.has_name(strip_shape_suffix(name))

    def _check_new_name(self, name: str, caller: str) -> bool:
        if is_shape_key(name):
            logger.warning(f"{caller}: names ending in '{MU_PARAMS.SHAPE_SUFFIX}' are reserved ({name})")
            return False
        if self._name_taken(name):
            logger.warning(f"{caller}: there is already an error source named '{name}'. Doing nothing")
            return False
        return True

    def _check_universes(self, name: str, universes, caller: str) -> bool:
        if universes is None:
            return True
        for i, universe in enumerate(universes):
            if not self.cv.same_binning(universe):
                logger.warning(f"{caller}: universe {i} of '{name}' does not match the CV binning. Doing nothing")
                return False
        return True

    def get_vert_error_band_names(self) -> List[str]:
        return sorted(self._vert)

    def get_lat_error_band_names(self) -> List[str]:
        return sorted(self._lat)

    def get_uncorr_error_names(self) -> List[str]:
        return sorted(self._uncorr)

    def get_error_band_names(self) -> List[str]:
        """Vertical then lateral band names."""
        return self.get_vert_error_band_names() + self.get_lat_error_band_names()

    def get_sys_error_matrices_names(self) -> List[str]:
        """Every active source: vertical, lateral, uncorrelated, then pushed matrices."""
        pushed = sorted({strip_shape_suffix(k) for k in self._matrices.keys()})
        return (self.get_vert_error_band_names() + self.get_lat_error_band_names()
                + self.get_uncorr_error_names() + pushed)

    def get_removed_sys_error_matrices_names(self) -> List[str]:
        return sorted({strip_shape_suffix(k) for k in self._matrices.removed_keys()})

    def get_n_vert_error_bands(self) -> int:
        return len(self._vert)

    def get_n_lat_error_bands(self) -> int:
        return len(self._lat)

    def get_n_uncorr_errors(self) -> int:
        return len(self._uncorr)

    def get_n_sys_error_matrices(self) -> int:
        """Number of active pushed matrices (plain and shape-only keys)."""
        return len(self._matrices)

    def get_n_removed_sys_error_matrices(self) -> int:
        return self._matrices.n_removed()

    def get_n_error_sources(self) -> int:
        return len(self._vert) + len(self._lat) + len(self._uncorr) + len(self._matrices)

    # ======================================================================
    # ADDING SOURCES
    # ======================================================================

    def add_vert_error_band(self, name: str, n_universes: Optional[int] = None,
                            universes: Optional[Sequence[BinnedAccumulator]] = None) -> bool:
        """
        Create a vertical error band.

        Parameters:
            name (str): Source name, unique across every namespace
            n_universes (int, optional): Empty universes to create (default 1000)
            universes (list, optional): Explicit universes, deep copied

        Returns:
            bool: False with a warning if the name is taken or a universe
            does not have the CV binning
        """
        if not self._check_new_name(name, "add_vert_error_band"):
            return False
        if not self._check_universes(name, universes, "add_vert_error_band"):
            return False
        if n_universes is not None and n_universes <= 0:
            n_universes = None
        self._vert[name] = VertErrorBand(self._band_name(name), self.cv,
                                         n_universes=n_universes, universes=universes)
        return True

    def add_lat_error_band(self, name: str, n_universes: Optional[int] = None,
                           universes: Optional[Sequence[BinnedAccumulator]] = None) -> bool:
        """Create a lateral error band (default 2 universes)."""
        if not self._check_new_name(name, "add_lat_error_band"):
            return False
        if not self._check_universes(name, universes, "add_lat_error_band"):
            return False
        if n_universes is not None and n_universes <= 0:
            n_universes = None
        self._lat[name] = LatErrorBand(self._band_name(name), self.cv,
                                       n_universes=n_universes, universes=universes)
        return True

    def add_vert_error_band_and_fill_with_cv(self, name: str, n_universes: int) -> bool:
        """Vertical band whose universes all start as copies of the CV."""
        if n_universes < 0:
            logger.warning(f"Negative number of universes for vertical band '{name}'. Doing nothing")
            return False
        return self.add_vert_error_band(name, universes=[self.cv] * n_universes)

    def add_lat_error_band_and_fill_with_cv(self, name: str, n_universes: int) -> bool:
        if n_universes < 0:
            logger.warning(f"Negative number of universes for lateral band '{name}'. Doing nothing")
            return False
        return self.add_lat_error_band(name, universes=[self.cv] * n_universes)

    def add_uncorr_error(self, name: str, hist: Optional[BinnedAccumulator] = None,
                         err_in_content: bool = False) -> bool:
        """
        Create an uncorrelated error.

        Without hist the source starts empty and is meant to be filled. With
        hist it holds the CV contents and hist's errors (or hist's contents
        when err_in_content).
        """
        if not self._check_new_name(name, "add_uncorr_error"):
            return False
        if hist is None:
            self._uncorr[name] = UncorrError.empty(self._band_name(name), self.cv)
        else:
            if not self.cv.same_binning(hist):
                logger.warning(f"Uncorrelated error '{name}' does not match the CV binning. Doing nothing")
                return False
            self._uncorr[name] = UncorrError.from_errors(self._band_name(name), self.cv, hist,
                                                         err_in_content)
        return True

    def add_uncorr_error_and_fill_with_cv(self, name: str) -> bool:
        """Uncorrelated error holding the CV contents and zero errors."""
        if not self._check_new_name(name, "add_uncorr_error_and_fill_with_cv"):
            return False
        self._uncorr[name] = UncorrError.filled_with_cv(self._band_name(name), self.cv)
        return True

    def add_missing_error_bands_and_fill_with_cv(self, ref: 'HistogramWithErrors') -> bool:
        """
        Add every vertical and lateral band of ref that this histogram lacks,
        with ref's universe counts and universes equal to this CV.
        """
        if not isinstance(ref, HistogramWithErrors):
            logger.error("add_missing_error_bands_and_fill_with_cv needs a HistogramWithErrors")
            return False
        for name in ref.get_vert_error_band_names():
            if self.has_vert_error_band(name):
                continue
            if not self.add_vert_error_band_and_fill_with_cv(name, ref._vert[name].n_universes):
                return False
        for name in ref.get_lat_error_band_names():
            if self.has_lat_error_band(name):
                continue
            if not self.add_lat_error_band_and_fill_with_cv(name, ref._lat[name].n_universes):
                return False
        return True

    # ======================================================================
    # FILLING
    # ======================================================================

    def fill(self, value, weight: float = 1.0) -> int:
        """Fill the CV only."""
        return self.cv.fill(value, weight)

    def fill_vert_error_band(self, name: str, value, weights: Sequence[float],
                             cv_weight: float = 1.0, cv_weight_from_me: float = 1.0) -> bool:
        band = self._vert.get(name)
        if band is None:
            logger.warning(f"Could not find a vertical error band to fill with name = {name}")
            return False
        band.fill(value, weights, cv_weight, cv_weight_from_me)
        return True

    def fill_vert_error_band_down_up(self, name: str, value, weight_down: float, weight_up: float,
                                     cv_weight: float = 1.0, cv_weight_from_me: float = 1.0) -> bool:
        band = self._vert.get(name)
        if band is None:
            logger.warning(f"Could not find a vertical error band to fill with name = {name}")
            return False
        band.fill_down_up(value, weight_down, weight_up, cv_weight, cv_weight_from_me)
        return True

    def fill_lat_error_band(self, name: str, value, shifts: Sequence, cv_weight: float = 1.0,
                            fill_cv: bool = True, weights: Optional[Sequence[float]] = None) -> bool:
        band = self._lat.get(name)
        if band is None:
            logger.warning(f"Could not find a lateral error band to fill with name = {name}")
            return False
        band.fill(value, shifts, cv_weight, fill_cv, weights)
        return True

    def fill_lat_error_band_down_up(self, name: str, value, shift_down, shift_up,
                                    cv_weight: float = 1.0, fill_cv: bool = True) -> bool:
        band = self._lat.get(name)
        if band is None:
            logger.warning(f"Could not find a lateral error band to fill with name = {name}")
            return False
        band.fill_down_up(value, shift_down, shift_up, cv_weight, fill_cv)
        return True

    def fill_uncorr_error(self, name: str, value, err: float, cv_weight: float = 1.0) -> bool:
        uncorr = self._uncorr.get(name)
        if uncorr is None:
            logger.warning(f"Could not find an uncorrelated error to fill with name = {name}")
            return False
        uncorr.fill(value, err, cv_weight)
        return True

    # ======================================================================
    # ACCESS, POP, PUSH, TRANSFER
    # ======================================================================

    def get_vert_error_band(self, name: str) -> Optional[VertErrorBand]:
        band = self._vert.get(name)
        if band is None:
            logger.warning(f"There is no vertical error band with name '{name}'")
        return band

    def get_lat_error_band(self, name: str) -> Optional[LatErrorBand]:
        band = self._lat.get(name)
        if band is None:
            logger.warning(f"There is no lateral error band with name '{name}'")
        return band

    def get_uncorr_error(self, name: str) -> Optional[UncorrError]:
        uncorr = self._uncorr.get(name)
        if uncorr is None:
            logger.warning(f"There is no uncorrelated error with name '{name}'")
        return uncorr

    def pop_vert_error_band(self, name: str) -> Optional[VertErrorBand]:
        """Detach a vertical band; the caller owns it afterwards."""
        if name not in self._vert:
            logger.warning(f"There is no vertical error band with name '{name}' to pop")
            return None
        return self._vert.pop(name)

    def pop_lat_error_band(self, name: str) -> Optional[LatErrorBand]:
        if name not in self._lat:
            logger.warning(f"There is no lateral error band with name '{name}' to pop")
            return None
        return self._lat.pop(name)

    def pop_uncorr_error(self, name: str) -> Optional[UncorrError]:
        if name not in self._uncorr:
            logger.warning(f"There is no uncorrelated error with name '{name}' to pop")
            return None
        return self._uncorr.pop(name)

    def _can_accept(self, name: str, namespace: dict) -> bool:
        """A pushed source may replace its own namespace entry but not clash with another."""
        others = [ns for ns in (self._vert, self._lat, self._uncorr) if ns is not namespace]
        if any(name in ns for ns in others) or self._matrices.has_name(name) or is_shape_key(name):
            logger.warning(f"Cannot push '{name}': the name is used by another error source")
            return False
        return True

    def push_error_band(self, name: str, band: UniverseSet) -> bool:
        """
        Attach a vertical or lateral band under name, replacing (with a
        warning) a band of the same kind and name.
        """
        if isinstance(band, VertErrorBand):
            namespace, kind = self._vert, "vertical"
        elif isinstance(band, LatErrorBand):
            namespace, kind = self._lat, "lateral"
        else:
            logger.error(f"push_error_band needs a VertErrorBand or LatErrorBand, got {type(band).__name__}")
            return False

        if not self.cv.same_binning(band.cv):
            logger.error(f"Cannot push {kind} band '{name}': binning does not match '{self.name}'")
            return False
        if not self._can_accept(name, namespace):
            return False

        if name in namespace:
            logger.warning(f"Already had {kind} error band {name}. Replacing it with the new one")
        namespace[name] = band
        return True

    def push_uncorr_error(self, name: str, err: Union[UncorrError, BinnedAccumulator]) -> bool:
        """Attach an uncorrelated error, replacing one of the same name with a warning."""
        if isinstance(err, BinnedAccumulator):
            err = UncorrError(self._band_name(name), err)
        if not isinstance(err, UncorrError):
            logger.error(f"push_uncorr_error needs an UncorrError, got {type(err).__name__}")
            return False
        if not self.cv.same_binning(err.hist):
            logger.error(f"Cannot push uncorrelated error '{name}': binning does not match '{self.name}'")
            return False
        if not self._can_accept(name, self._uncorr):
            return False

        if name in self._uncorr:
            logger.warning(f"Already had uncorrelated error {name}. Replacing it with the new one")
        self._uncorr[name] = err
        return True

    def _transfer(self, dest: 'HistogramWithErrors', name: str, remove_from_me: bool,
                  source: dict, kind: str) -> bool:
        if not isinstance(dest, HistogramWithErrors):
            logger.error(f"Cannot transfer {kind} band '{name}': destination is not a HistogramWithErrors")
            return False
        if name not in source:
            logger.error(f"Could not find {kind} error band {name} to transfer")
            return False
        if not self.cv.same_binning(dest.cv):
            logger.error(f"Cannot transfer {kind} band '{name}': binning of '{dest.name}' differs")
            return False
        if not dest._can_accept(name, dest._vert if source is self._vert else dest._lat):
            return False

        band = source.pop(name) if remove_from_me else source[name].clone()

        # Adapt the band to the destination CV shape
        ratio = self.cv.copy_structure("ratio")
        ratio.divide(dest.cv, self.cv)
        band.multiply_single(band, ratio)
        band.rename(dest._band_name(name))

        return dest.push_error_band(name, band)

    def transfer_vert_error_band(self, dest: 'HistogramWithErrors', name: str,
                                 remove_from_me: bool = True) -> bool:
        """
        Move (or copy) a vertical band to dest, rescaled bin by bin by
        dest.CV / self.CV.
        """
        return self._transfer(dest, name, remove_from_me, self._vert, "vertical")

    def transfer_lat_error_band(self, dest: 'HistogramWithErrors', name: str,
                                remove_from_me: bool = True) -> bool:
        return self._transfer(dest, name, remove_from_me, self._lat, "lateral")

    def transfer_error_bands(self, dest: 'HistogramWithErrors', remove_from_me: bool = True) -> bool:
        """Transfer every vertical and lateral band; True only if all succeeded."""
        all_ok = True
        for name in self.get_vert_error_band_names():
            all_ok = self.transfer_vert_error_band(dest, name, remove_from_me) and all_ok
        for name in self.get_lat_error_band_names():
            all_ok = self.transfer_lat_error_band(dest, name, remove_from_me) and all_ok
        return all_ok

    def clear_all_error_bands(self):
        """Drop every source and every pushed matrix."""
        self._matrices.clear()
        self._vert.clear()
        self._lat.clear()
        self._uncorr.clear()

    def set_use_spread_error_all(self, use: bool):
        for band in list(self._vert.values()) + list(self._lat.values()):
            band.use_spread_error = use

    # ======================================================================
    # COVARIANCE MATRICES
    # ======================================================================

    def push_cov_matrix(self, name: str, matrix, area_normalize: bool = False) -> bool:
        """
        Store an externally computed covariance matrix.

        Parameters:
            name (str): Source name (must not end in the shape suffix)
            matrix: (total_bins, total_bins) array
            area_normalize (bool): Store it as the shape-only variant

        Returns:
            bool: False with a warning on a reserved, duplicate or removed
            name, or on a dimension mismatch
        """
        if not is_shape_key(name) and self.has_error_band(name):
            logger.warning(f"'{name}' is already a vertical, lateral or uncorrelated error source")
            return False
        return self._matrices.push(name, matrix, area_normalize)

    def remove_sys_error_matrix(self, name: str) -> bool:
        """Soft-delete a pushed matrix together with its shape-only sibling."""
        return self._matrices.remove(name)

    def unremove_sys_error_matrix(self, name: str) -> bool:
        return self._matrices.unremove(name)

    def clear_sys_error_matrices(self):
        """Drop every pushed matrix, active and removed."""
        self._matrices.clear()

    def _invalidate_matrices(self, operation: str):
        if not self._matrices.is_empty():
            logger.warning(f"{operation}: customized error matrices were found on '{self.name}'. "
                           f"They no longer apply and will be cleared")
            self._matrices.clear()

    def _source_matrix(self, name: str, area_normalize: bool) -> Optional[np.ndarray]:
        """Absolute covariance of one source, or None if there is no such source."""
        key = shape_key(name) if area_normalize else name
        if self._matrices.has(key):
            return self._matrices.get(key)
        if name in self._lat:
            return self._lat[name].calc_cov_mx(area_normalize)
        if name in self._vert:
            return self._vert[name].calc_cov_mx(area_normalize)
        if name in self._uncorr:
            return self._uncorr[name].as_matrix()
        return None

    def get_sys_error_matrix(self, name: str, as_frac: bool = False,
                             area_normalize: bool = False) -> np.ndarray:
        """
        Covariance matrix of one source.

        Lookup order: pushed matrices, lateral bands, vertical bands,
        uncorrelated errors (diagonal). An unknown name gives a zero matrix
        and a warning. A name carrying the shape suffix is read as the base
        name with area_normalize=True.
        """
        if is_shape_key(name):
            logger.warning(f"Asked for matrix '{name}'; assuming source "
                           f"'{strip_shape_suffix(name)}' with area_normalize=True")
            name = strip_shape_suffix(name)
            area_normalize = True

        cov = self._source_matrix(name, area_normalize)
        if cov is None:
            logger.warning(f"There is no covariance matrix with name '{name}'"
                           f"{' (shape only)' if area_normalize else ''}. Returning an empty matrix")
            cov = np.zeros((self.cv.total_bins, self.cv.total_bins))

        if as_frac:
            cov = to_fractional(cov, self.cv.contents_flat())
        return cov

    def get_sys_correlation_matrix(self, name: str, area_normalize: bool = False) -> np.ndarray:
        return to_correlation(self.get_sys_error_matrix(name, False, area_normalize))

    def get_stat_error_matrix(self, as_frac: bool = False) -> np.ndarray:
        """Diagonal matrix of the CV's squared statistical errors."""
        errors = self.cv.errors_flat()
        if as_frac:
            content = self.cv.contents_flat()
            frac = np.zeros_like(errors)
            nonzero = content != 0
            frac[nonzero] = errors[nonzero] / content[nonzero]
            errors = frac
        return errors_as_matrix(errors)

    def get_total_error_matrix(self, include_stat: bool = True, as_frac: bool = False,
                               area_normalize: bool = False) -> np.ndarray:
        """
        Sum of every active source's covariance (removed matrices excluded),
        plus the statistical matrix if include_stat.

        Pushed matrices only contribute the variant (plain or shape-only)
        stored for the requested normalisation. The fractional conversion is
        applied once, to the sum.
        """
        size = self.cv.total_bins
        cov = np.zeros((size, size))
        for name in self.get_sys_error_matrices_names():
            source = self._source_matrix(name, area_normalize)
            if source is None:
                logger.debug(f"No {'shape-only' if area_normalize else 'absolute'} matrix for '{name}'")
                continue
            cov += source

        if include_stat:
            cov += self.get_stat_error_matrix()

        if as_frac:
            cov = to_fractional(cov, self.cv.contents_flat())
        return cov

    def get_total_correlation_matrix(self, area_normalize: bool = False) -> np.ndarray:
        """Correlation of the systematic total (statistical errors excluded)."""
        return to_correlation(self.get_total_error_matrix(False, False, area_normalize))

    # ======================================================================
    # ERROR BANDS
    # ======================================================================

    def _band_from_diagonal(self, cov: np.ndarray, label: str) -> BinnedAccumulator:
        band = self.cv.copy_structure(f"{self.name}_{label}")
        band.set_contents_flat(diagonal_errors(cov))
        return band

    def get_error_band(self, name: str, as_frac: bool = False,
                       area_normalize: bool = False) -> BinnedAccumulator:
        """Accumulator whose content is the 1-sigma error of one source."""
        cov = self.get_sys_error_matrix(name, as_frac, area_normalize)
        return self._band_from_diagonal(cov, f"{name}_errorBand")

    def get_uncorr_error_as_hist(self, name: str, as_frac: bool = False) -> BinnedAccumulator:
        uncorr = self.get_uncorr_error(name)
        if uncorr is None:
            return self.cv.copy_structure(f"{self.name}_{name}_asHist")
        return uncorr.get_as_hist(self.cv, as_frac)

    def get_total_error(self, include_stat: bool = True, as_frac: bool = False,
                        area_normalize: bool = False) -> BinnedAccumulator:
        cov = self.get_total_error_matrix(include_stat, as_frac, area_normalize)
        return self._band_from_diagonal(cov, "TotalError")

    def get_stat_error(self, as_frac: bool = False) -> BinnedAccumulator:
        return self._band_from_diagonal(self.get_stat_error_matrix(as_frac), "StatError")

    def get_cv_histo_with_stat_error(self) -> BinnedAccumulator:
        return self.cv.clone(f"{self.name}_CV_WithStatErr")

    def get_cv_histo_with_error(self, include_stat: bool = True,
                                area_normalize: bool = False) -> BinnedAccumulator:
        """Copy of the CV whose bin errors are the total error."""
        out = self.cv.clone(f"{self.name}_CV_WithErr")
        out.set_errors_flat(self.get_total_error(include_stat, False, area_normalize).contents_flat())
        return out

    def get_area_norm_factor(self, data: 'HistogramWithErrors') -> float:
        """
        Factor that scales this histogram to the area of data (flow bins
        included); 1.0 with a warning if this histogram is empty.
        """
        other = data.cv if isinstance(data, HistogramWithErrors) else data
        if not self.cv.same_binning(other):
            logger.warning(f"Data and MC axes do not match ('{other.name}' vs '{self.name}')")
        mc_area = self.cv.integral(include_flow=True)
        if mc_area == 0:
            logger.warning(f"MC area of '{self.name}' is zero. No scale factor calculated")
            return 1.0
        return other.integral(include_flow=True) / mc_area

    def get_bin_normalized_copy(self, norm_bin_width: Optional[float] = None) -> 'HistogramWithErrors':
        """
        Copy with contents per norm_bin_width units of bin width.

        A missing or non-positive width falls back to the histogram default;
        if that is non-positive too the copy is returned unscaled.
        """
        if norm_bin_width is None or norm_bin_width <= 0:
            norm_bin_width = self.norm_bin_width
        out = self.clone()
        if norm_bin_width > 0:
            out.scale(norm_bin_width, width=True)
        return out

    # ======================================================================
    # ARITHMETIC
    # ======================================================================

    def _all_sets(self) -> List[UniverseSet]:
        return list(self._lat.values()) + list(self._vert.values())

    def scale(self, factor: float, width: bool = False):
        """
        Scale the CV, every universe and every uncorrelated error. Pushed
        matrices (active and removed) are scaled by f_i*f_k and kept.
        """
        factors = self.cv.scale(factor, width).ravel(order='F')
        for band in self._all_sets():
            band.scale(factor, width)
        for uncorr in self._uncorr.values():
            uncorr.scale(factor, width)
        self._matrices.scale(np.outer(factors, factors))

    def _check_operand(self, other, operation: str) -> bool:
        if not isinstance(other, HistogramWithErrors):
            logger.error(f"{operation}: operand is a {type(other).__name__}, "
                         f"not a HistogramWithErrors. Did nothing")
            return False
        if not self.cv.same_binning(other.cv):
            logger.error(f"{operation}: binning of '{other.name}' does not match '{self.name}'. Did nothing")
            return False
        return True

    def add(self, other: 'HistogramWithErrors', c1: float = 1.0) -> bool:
        """
        this += c1 * other, source by source.

        A band other lacks gets other's CV added to every universe; an
        uncorrelated error other lacks gets other's CV added to its content
        only. Pushed matrices are cleared.
        """
        if not self._check_operand(other, "add"):
            return False

        for mine, theirs, kind in ((self._lat, other._lat, "lateral"), (self._vert, other._vert, "vertical")):
            for name, band in mine.items():
                if name in theirs and theirs[name].n_universes != band.n_universes:
                    logger.error(f"add: {kind} band {name} has {band.n_universes} universes here "
                                 f"and {theirs[name].n_universes} in '{other.name}'. Did nothing")
                    return False

        self.cv.add(other.cv, c1)

        for mine, theirs, kind in ((self._lat, other._lat, "lateral"), (self._vert, other._vert, "vertical")):
            for name, band in mine.items():
                if name in theirs:
                    band.add(theirs[name], c1)
                else:
                    logger.warning(f"Added histogram '{other.name}' lacks {kind} band {name}. "
                                   f"Adding its central value to all universes")
                    band.add_single(other.cv, c1)

        for name, uncorr in self._uncorr.items():
            if name in other._uncorr:
                uncorr.add(other._uncorr[name], c1)
            else:
                logger.warning(f"Added histogram '{other.name}' lacks uncorrelated error {name}. "
                               f"Adding its central value to the content only")
                uncorr.add_content(other.cv, c1)

        self._invalidate_matrices("add")
        return True

    def _check_binary_sources(self, operation: str, h1: 'HistogramWithErrors',
                              h2: Optional['HistogramWithErrors']) -> bool:
        """Every source of this histogram must exist, with the same universe count, on each operand."""
        operands = [h1] if h2 is None else [h1, h2]
        for mine, attr, kind in ((self._lat, '_lat', "lateral"), (self._vert, '_vert', "vertical"),
                                 (self._uncorr, '_uncorr', "uncorrelated")):
            for name, source in mine.items():
                for operand in operands:
                    theirs = getattr(operand, attr).get(name)
                    if theirs is None:
                        logger.error(f"Could not {operation} because '{operand.name}' does not have "
                                     f"the {kind} error {name}. Did nothing")
                        return False
                    if isinstance(source, UniverseSet) and theirs.n_universes != source.n_universes:
                        logger.error(f"Could not {operation}: {kind} band {name} has "
                                     f"{theirs.n_universes} universes in '{operand.name}' "
                                     f"and {source.n_universes} here. Did nothing")
                        return False
        return True

    def multiply(self, h1: 'HistogramWithErrors', h2: 'HistogramWithErrors',
                 c1: float = 1.0, c2: float = 1.0) -> bool:
        """
        this = (c1*h1) * (c2*h2), universe by universe.

        Every source of this histogram must be present on both operands,
        otherwise nothing changes.
        """
        if not (self._check_operand(h1, "multiply") and self._check_operand(h2, "multiply")):
            return False
        if not self._check_binary_sources("multiply", h1, h2):
            return False

        self.cv.multiply(h1.cv, h2.cv, c1, c2)
        for name, band in self._lat.items():
            band.multiply(h1._lat[name], h2._lat[name], c1, c2)
        for name, band in self._vert.items():
            band.multiply(h1._vert[name], h2._vert[name], c1, c2)
        for name, uncorr in self._uncorr.items():
            uncorr.multiply(h1._uncorr[name], h2._uncorr[name], c1, c2)

        self._invalidate_matrices("multiply")
        return True

    def divide(self, h1: 'HistogramWithErrors', h2: 'HistogramWithErrors',
               c1: float = 1.0, c2: float = 1.0, binomial: bool = False) -> bool:
        """this = (c1*h1) / (c2*h2), universe by universe; see multiply."""
        if not (self._check_operand(h1, "divide") and self._check_operand(h2, "divide")):
            return False
        if not self._check_binary_sources("divide", h1, h2):
            return False

        self.cv.divide(h1.cv, h2.cv, c1, c2, binomial)
        for name, band in self._lat.items():
            band.divide(h1._lat[name], h2._lat[name], c1, c2, binomial)
        for name, band in self._vert.items():
            band.divide(h1._vert[name], h2._vert[name], c1, c2, binomial)
        for name, uncorr in self._uncorr.items():
            uncorr.divide(h1._uncorr[name], h2._uncorr[name], c1, c2, binomial)

        self._invalidate_matrices("divide")
        return True

    def _check_single_operand(self, acc, operation: str) -> bool:
        if not isinstance(acc, BinnedAccumulator):
            logger.error(f"{operation}: second operand must be a BinnedAccumulator, "
                         f"got {type(acc).__name__}. Did nothing")
            return False
        if not self.cv.same_binning(acc):
            logger.error(f"{operation}: binning of '{acc.name}' does not match '{self.name}'. Did nothing")
            return False
        return True

    def multiply_single(self, h1: 'HistogramWithErrors', acc: BinnedAccumulator,
                        c1: float = 1.0, c2: float = 1.0) -> bool:
        """this = (c1*h1) * (c2*acc); every universe is multiplied by the same acc."""
        if not (self._check_operand(h1, "multiply_single")
                and self._check_single_operand(acc, "multiply_single")):
            return False
        if not self._check_binary_sources("multiply_single", h1, None):
            return False

        acc = acc.clone()
        self.cv.multiply(h1.cv, acc, c1, c2)
        for name, band in self._lat.items():
            band.multiply_single(h1._lat[name], acc, c1, c2)
        for name, band in self._vert.items():
            band.multiply_single(h1._vert[name], acc, c1, c2)
        for name, uncorr in self._uncorr.items():
            uncorr.multiply_single(h1._uncorr[name], acc, c1, c2)

        self._invalidate_matrices("multiply_single")
        return True

    def divide_single(self, h1: 'HistogramWithErrors', acc: BinnedAccumulator,
                      c1: float = 1.0, c2: float = 1.0, binomial: bool = False) -> bool:
        """this = (c1*h1) / (c2*acc); every universe is divided by the same acc."""
        if not (self._check_operand(h1, "divide_single")
                and self._check_single_operand(acc, "divide_single")):
            return False
        if not self._check_binary_sources("divide_single", h1, None):
            return False

        acc = acc.clone()
        self.cv.divide(h1.cv, acc, c1, c2, binomial)
        for name, band in self._lat.items():
            band.divide_single(h1._lat[name], acc, c1, c2, binomial)
        for name, band in self._vert.items():
            band.divide_single(h1._vert[name], acc, c1, c2, binomial)
        for name, uncorr in self._uncorr.items():
            uncorr.divide_single(h1._uncorr[name], acc, c1, c2, binomial)

        self._invalidate_matrices("divide_single")
        return True

    def rebin(self, group=2) -> bool:
        """Merge groups of bins in the CV and every source; pushed matrices are cleared."""
        self.cv.rebin(group)
        for band in self._all_sets():
            band.rebin(group)
        for uncorr in self._uncorr.values():
            uncorr.rebin(group)

        self._invalidate_matrices("rebin")
        self._matrices = CovarianceMatrixStore(self.cv.total_bins)
        return True

    def reset(self):
        """Zero the CV and every source (sources are kept); pushed matrices are cleared."""
        self.cv.reset()
        for band in self._all_sets():
            band.reset()
        for uncorr in self._uncorr.values():
            uncorr.reset()
        self._matrices.clear()

    # ======================================================================
    # COPIES, NAMING, VISITING
    # ======================================================================

    def clone(self, name: Optional[str] = None) -> 'HistogramWithErrors':
        """Deep copy including removed matrices; optionally renamed."""
        other = copy.deepcopy(self)
        if name is not None:
            other.rename(name)
        return other

    def rename(self, name: str):
        """Rename the histogram and re-prefix every source it owns."""
        self.name = name
        self.cv.name = name
        for key, band in list(self._vert.items()) + list(self._lat.items()):
            band.rename(self._band_name(key))
        for key, uncorr in self._uncorr.items():
            uncorr.rename(self._band_name(key))

    def accept(self, visitor):
        """
        Walk the histogram: CV, vertical bands, lateral bands, uncorrelated
        errors, active matrices, removed matrices; names sorted within each.
        """
        visitor.visit_cv(self.name, self.cv, self.norm_bin_width)
        for name in self.get_vert_error_band_names():
            visitor.visit_vert_error_band(name, self._vert[name])
        for name in self.get_lat_error_band_names():
            visitor.visit_lat_error_band(name, self._lat[name])
        for name in self.get_uncorr_error_names():
            visitor.visit_uncorr_error(name, self._uncorr[name])
        for key, matrix in self._matrices.items():
            visitor.visit_matrix(key, matrix, False)
        for key, matrix in self._matrices.items(removed=True):
            visitor.visit_matrix(key, matrix, True)

    def _restore_matrix(self, key: str, matrix, removed: bool):
        self._matrices.restore(key, matrix, removed)

    def __repr__(self) -> str:
        return (f"HistogramWithErrors({self.name!r}, n_bins={self.cv.n_bins}, "
                f"vert={len(self._vert)}, lat={len(self._lat)}, uncorr={len(self._uncorr)}, "
                f"matrices={len(self._matrices)})")
