"""
Many-Universe Error Bands (mubands) - Core Library
==================================================

Propagation of systematic uncertainties through binned measurements with
the many-universe method.

Modules:
    parameters: Single point of truth for constants and defaults
    accumulator: Dense binned content/variance storage with flow bins
    universe_set, vertical, lateral: Universe-based systematic sources
    uncorrelated: Bin-by-bin uncorrelated errors
    matrix_store: Pushed covariance matrices and their removed set
    histogram: HistogramWithErrors, the aggregator
    comparison: Data/MC chi-square with the full covariance
    serialization: Visitor contract and JSON documents
    reporting: Error budget tables
"""

from .parameters import MUParameters, MU_PARAMS, NOT_PHYSICAL_SHIFT
from .accumulator import BinnedAccumulator, BinningError
from .universe_set import UniverseSet, UniverseCountError
from .vertical import VertErrorBand
from .lateral import LatErrorBand
from .uncorrelated import UncorrError
from .matrix_store import CovarianceMatrixStore
from .histogram import HistogramWithErrors
from .comparison import chi2_data_mc, chi2_stat_only
from .serialization import (HistogramVisitor, DictWriter, SerializationError,
                            histogram_to_dict, histogram_from_dict,
                            save_json, load_json, write_matrix)
from .reporting import error_budget_table, error_summary

__version__ = MU_PARAMS.version
__title__ = MU_PARAMS.title

# Expose key classes and instances
__all__ = [
    'MUParameters',
    'MU_PARAMS',
    'NOT_PHYSICAL_SHIFT',
    'BinnedAccumulator',
    'BinningError',
    'UniverseSet',
    'UniverseCountError',
    'VertErrorBand',
    'LatErrorBand',
    'UncorrError',
    'CovarianceMatrixStore',
    'HistogramWithErrors',
    'chi2_data_mc',
    'chi2_stat_only',
    'HistogramVisitor',
    'DictWriter',
    'SerializationError',
    'histogram_to_dict',
    'histogram_from_dict',
    'save_json',
    'load_json',
    'write_matrix',
    'error_budget_table',
    'error_summary',
    '__version__',
    '__title__'
]
