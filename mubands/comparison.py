"""
Data/MC comparison.

Chi-square between two histograms using the full covariance of one of them
(statistical plus every systematic source) and the statistical covariance
of the other. Flow bins never enter the sum.
"""

import logging
from typing import Any, Dict

import numpy as np
from scipy import linalg
from scipy.stats import chi2

from .accumulator import BinnedAccumulator
from .histogram import HistogramWithErrors

logger = logging.getLogger(__name__)


def _summary(chi_squared: float, dof: int, n_data_points: int, used_covariance: bool) -> Dict[str, Any]:
    reduced = chi_squared / dof if dof > 0 else np.nan
    p_value = float(chi2.sf(chi_squared, dof)) if dof > 0 else np.nan
    return {
        'chi_squared': float(chi_squared),
        'degrees_of_freedom': int(dof),
        'reduced_chi_squared': reduced,
        'p_value': p_value,
        'n_data_points': int(n_data_points),
        'used_covariance': used_covariance,
    }


def chi2_stat_only(data: BinnedAccumulator, mc: BinnedAccumulator,
                   mc_scale: float = 1.0) -> Dict[str, Any]:
    """
    Bin-by-bin chi-square from the statistical errors only.

    Parameters:
        data (BinnedAccumulator): Data
        mc (BinnedAccumulator): Prediction, scaled by mc_scale
        mc_scale (float): MC normalisation

    Returns:
        dict: chi-square statistics; only regular bins with a non-zero
        combined error count towards the degrees of freedom
    """
    if not data.same_binning(mc):
        raise ValueError(f"Binning of '{data.name}' and '{mc.name}' differ")

    bins = data.in_range_bins()
    d = data.contents_flat()[bins]
    m = mc.contents_flat()[bins] * mc_scale
    var = data.variances_flat()[bins] + mc.variances_flat()[bins] * mc_scale ** 2

    used = var > 0
    chi_squared = float(np.sum((d[used] - m[used]) ** 2 / var[used]))
    dof = int(np.count_nonzero(used))
    return _summary(chi_squared, dof, len(bins), used_covariance=False)


def chi2_data_mc(data: HistogramWithErrors, mc: HistogramWithErrors, mc_scale: float = 1.0,
                 use_data_error_matrix: bool = False, use_only_shape_errors: bool = False,
                 use_overflow_err: bool = False) -> Dict[str, Any]:
    """
    Chi-square between data and MC with the full covariance.

    Parameters:
        data (HistogramWithErrors): Data
        mc (HistogramWithErrors): Prediction, scaled by mc_scale
        mc_scale (float): MC normalisation
        use_data_error_matrix (bool): Take the systematic covariance from
            data instead of MC (the other side always adds its stat errors)
        use_only_shape_errors (bool): Use shape-only covariance and drop one
            degree of freedom
        use_overflow_err (bool): Invert the covariance including flow bins
            before restricting to the regular bins

    Returns:
        dict: chi_squared, degrees_of_freedom, reduced_chi_squared,
        p_value, n_data_points, used_covariance
    """
    if not data.cv.same_binning(mc.cv):
        raise ValueError(f"Binning of '{data.name}' and '{mc.name}' differ")

    scaled = mc.clone()
    scaled.scale(mc_scale)

    if use_data_error_matrix:
        cov = data.get_total_error_matrix(True, False, use_only_shape_errors)
        cov = cov + scaled.get_stat_error_matrix()
    else:
        cov = scaled.get_total_error_matrix(True, False, use_only_shape_errors)
        cov = cov + data.get_stat_error_matrix()

    bins = data.cv.in_range_bins()
    try:
        if use_overflow_err:
            inverse = linalg.pinv(cov)[np.ix_(bins, bins)]
        else:
            inverse = linalg.pinv(cov[np.ix_(bins, bins)])
    except (linalg.LinAlgError, ValueError) as e:
        logger.warning(f"Cannot invert total covariance matrix ({e}). "
                       f"Using statistical errors only for the chi-square")
        return chi2_stat_only(data.cv, mc.cv, mc_scale)

    if not np.all(np.isfinite(inverse)):
        logger.warning("Cannot invert total covariance matrix. "
                       "Using statistical errors only for the chi-square")
        return chi2_stat_only(data.cv, mc.cv, mc_scale)

    diff = data.cv.contents_flat()[bins] - scaled.cv.contents_flat()[bins]
    chi_squared = float(diff @ inverse @ diff)

    dof = len(bins)
    if use_only_shape_errors:
        dof -= 1

    logger.debug(f"chi2({data.name}, {mc.name}) = {chi_squared:.3f} / {dof}")
    return _summary(chi_squared, dof, len(bins), used_covariance=True)
