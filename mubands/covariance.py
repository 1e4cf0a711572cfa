"""
Covariance helpers.

Estimators that turn a stack of universe contents into a covariance matrix,
plus the conversions (fractional, correlation, error band) shared by the
universe sets and the aggregating histogram.

All arrays are indexed by global bin, flow bins included.
"""

import logging

import numpy as np
from scipy import stats

from .parameters import MU_PARAMS

logger = logging.getLogger(__name__)


def spread_covariance(universes: np.ndarray, cv: np.ndarray) -> np.ndarray:
    """
    Covariance from the numeric spread of the universes about the CV.

    Parameters:
        universes (ndarray): Shape (N, n_bins), one row per universe
        cv (ndarray): Central value contents, shape (n_bins,)

    Returns:
        ndarray: (n_bins, n_bins) covariance matrix

    With one universe the full spread max-min of {CV, universe} is used,
    with fewer than SPREAD_ERROR_MAX_UNIVERSES half of it, and otherwise the
    interquartile range converted to a gaussian sigma.
    """
    n_universes = universes.shape[0]
    if n_universes == 0:
        return np.zeros((cv.size, cv.size))

    if np.isnan(universes).any():
        bad_bins = np.flatnonzero(np.isnan(universes).any(axis=0))
        logger.warning(f"NaN universe contents in bins {bad_bins.tolist()} were skipped in the spread")

    # The CV always takes part in the spread
    values = np.vstack([universes, cv[np.newaxis, :]])

    if n_universes < MU_PARAMS.SPREAD_ERROR_MAX_UNIVERSES:
        spread = np.nanmax(values, axis=0) - np.nanmin(values, axis=0)
        if n_universes > 1:
            spread = 0.5 * spread
        return np.outer(spread, spread)

    iqr = stats.iqr(values, axis=0, nan_policy='omit')
    iqr = np.nan_to_num(np.asarray(iqr, dtype=float))
    return np.outer(iqr, iqr) * MU_PARAMS.IQR_TO_SIGMA ** 2


def sample_covariance(universes: np.ndarray, mean: np.ndarray) -> np.ndarray:
    """
    Population covariance (1/N) of the universes about a given mean.

    Parameters:
        universes (ndarray): Shape (N, n_bins)
        mean (ndarray): Shape (n_bins,)

    Returns:
        ndarray: (n_bins, n_bins) covariance matrix
    """
    n_universes = universes.shape[0]
    if n_universes == 0:
        return np.zeros((mean.size, mean.size))
    dev = universes - mean[np.newaxis, :]
    return dev.T @ dev / n_universes


def to_fractional(cov: np.ndarray, cv: np.ndarray) -> np.ndarray:
    """Divide cov[i, k] by cv[i]*cv[k]; entries with a zero CV become 0."""
    cv = np.asarray(cv, dtype=float)
    denom = np.outer(cv, cv)
    out = np.zeros_like(cov, dtype=float)
    np.divide(cov, denom, out=out, where=denom != 0)
    return out


def from_fractional(frac: np.ndarray, cv: np.ndarray) -> np.ndarray:
    cv = np.asarray(cv, dtype=float)
    return frac * np.outer(cv, cv)


def to_correlation(cov: np.ndarray) -> np.ndarray:
    """Correlation matrix; rows/columns with a zero diagonal are 0."""
    diag = np.diag(cov).astype(float)
    denom = np.sqrt(np.abs(np.outer(diag, diag)))
    out = np.zeros_like(cov, dtype=float)
    nonzero = np.outer(diag != 0, diag != 0)
    np.divide(cov, denom, out=out, where=nonzero)
    return out


def diagonal_errors(cov: np.ndarray) -> np.ndarray:
    """Square root of the diagonal, 0 where the diagonal is not positive."""
    diag = np.diag(cov)
    return np.where(diag > 0, np.sqrt(np.clip(diag, 0, None)), 0.0)


def errors_as_matrix(errors: np.ndarray) -> np.ndarray:
    """Diagonal covariance with error² on the diagonal."""
    errors = np.asarray(errors, dtype=float)
    return np.diag(errors * errors)
