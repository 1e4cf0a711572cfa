"""
Error Budget Reporting
======================

Tables and short text summaries of how much each systematic source
contributes to a HistogramWithErrors.
"""

import logging
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from .covariance import diagonal_errors
from .histogram import HistogramWithErrors

logger = logging.getLogger(__name__)


def error_budget_table(hist: HistogramWithErrors, as_frac: bool = False,
                       area_normalize: bool = False, include_stat: bool = True,
                       include_flow: bool = False) -> pd.DataFrame:
    """
    One row per bin, one column per error source.

    Parameters:
        hist (HistogramWithErrors): Histogram to tabulate
        as_frac (bool): Errors relative to the CV
        area_normalize (bool): Shape-only errors
        include_stat (bool): Add a 'stat' column and include it in 'total'
        include_flow (bool): Keep the under/overflow rows

    Returns:
        pd.DataFrame: Indexed by global bin, with 'low_edge' (x axis),
        'cv', one column per source, optionally 'stat', and 'total'
    """
    cv = hist.cv
    bins = np.arange(cv.total_bins) if include_flow else cv.in_range_bins()

    columns: Dict[str, np.ndarray] = {
        'low_edge': np.array([cv.bin_low_edge(cv.bin_index(b)[0]) for b in bins]),
        'cv': cv.contents_flat()[bins],
    }
    for name in hist.get_sys_error_matrices_names():
        cov = hist.get_sys_error_matrix(name, as_frac, area_normalize)
        columns[name] = diagonal_errors(cov)[bins]

    if include_stat:
        columns['stat'] = diagonal_errors(hist.get_stat_error_matrix(as_frac))[bins]

    total = hist.get_total_error_matrix(include_stat, as_frac, area_normalize)
    columns['total'] = diagonal_errors(total)[bins]

    table = pd.DataFrame(columns, index=pd.Index(bins, name='bin'))
    return table


def error_summary(hist: HistogramWithErrors, area_normalize: bool = False) -> Dict[str, Any]:
    """
    Integrated uncertainty of each source over the regular bins.

    For each source the covariance is summed over the in-range block, which
    is the variance of the integral. Returns the per-source sigma, the
    statistical sigma, the total and the dominant systematic.
    """
    bins = hist.cv.in_range_bins()
    block = np.ix_(bins, bins)

    sources = {}
    for name in hist.get_sys_error_matrices_names():
        cov = hist.get_sys_error_matrix(name, False, area_normalize)
        sources[name] = float(np.sqrt(max(cov[block].sum(), 0.0)))

    stat = float(np.sqrt(max(hist.get_stat_error_matrix()[block].sum(), 0.0)))
    total = float(np.sqrt(max(hist.get_total_error_matrix(True, False, area_normalize)[block].sum(), 0.0)))

    dominant: Optional[str] = max(sources, key=sources.get) if sources else None
    integral = hist.cv.integral()

    return {
        'name': hist.name,
        'integral': integral,
        'sources': sources,
        'stat': stat,
        'total': total,
        'relative_total': total / integral if integral != 0 else np.nan,
        'dominant_source': dominant,
        'n_error_sources': hist.get_n_error_sources(),
    }


def format_error_summary(hist: HistogramWithErrors, area_normalize: bool = False) -> str:
    """Markdown summary of error_summary for reports and the command line."""
    summary = error_summary(hist, area_normalize)

    formatted = f"### {summary['name']}\n\n"
    formatted += f"- **Integral:** {summary['integral']:.6g}\n"
    formatted += f"- **Statistical error:** {summary['stat']:.6g}\n"
    formatted += f"- **Total error:** {summary['total']:.6g}"
    if np.isfinite(summary['relative_total']):
        formatted += f" ({summary['relative_total']:.2%})"
    formatted += "\n"
    formatted += f"- **Error sources:** {summary['n_error_sources']}\n"
    if summary['dominant_source'] is not None:
        formatted += f"- **Dominant systematic:** {summary['dominant_source']}\n"

    if summary['sources']:
        formatted += "\n| Source | Integrated error |\n|---|---|\n"
        for name, sigma in sorted(summary['sources'].items(), key=lambda kv: -kv[1]):
            formatted += f"| {name} | {sigma:.6g} |\n"

    return formatted
