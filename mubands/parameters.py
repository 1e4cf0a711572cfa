"""
Many-Universe Parameters - Single Point of Truth
================================================

All numerical constants and configuration values used by the many-universe
error band machinery.

Every module reads its constants from here so that the sentinel values,
estimator thresholds and naming conventions stay consistent between the
universe sets, the covariance matrix store and the aggregating histogram.
"""

import numpy as np


class MUParameters:
    """
    Many-Universe Parameters - Single Point of Truth

    Holds the sentinel shift, estimator constants, the reserved shape-only
    suffix and the default universe counts.

    All parameters are treated as constants.
    """

    def __init__(self):
        """Initialize all parameters. All values are constants."""

        # ============================================================================
        # LATERAL SHIFTS
        # ============================================================================

        # Universes whose shift equals this number are not filled at all
        self.NOT_PHYSICAL_SHIFT = -12345678.87654321
        # Agreement required to call a shift "not physical" (6 decimals)
        self.NOT_PHYSICAL_TOLERANCE = 1e-6


        # ============================================================================
        # SPREAD ESTIMATOR
        # ============================================================================

        # Interquartile range of a unit gaussian is 1.34896 sigma
        self.IQR_TO_SIGMA = 1.0 / 1.34896

        # Sets with fewer universes than this use the spread estimator by default,
        # and use half the max spread instead of the interquartile range
        self.SPREAD_ERROR_MAX_UNIVERSES = 10


        # ============================================================================
        # UNIVERSE COUNTS
        # ============================================================================

        self.DEFAULT_VERT_UNIVERSES = 1000   # gaussian throws about the CV
        self.DEFAULT_LAT_UNIVERSES = 2       # +/- 1 sigma shifts


        # ============================================================================
        # COVARIANCE MATRIX NAMING
        # ============================================================================

        # Reserved ending of pushed matrices that hold shape-only covariance
        self.SHAPE_SUFFIX = "_asShape"
        # Universe accumulators are named <set name><UNIVERSE_TAG><index>
        self.UNIVERSE_TAG = "_universe"


        # ============================================================================
        # SERIALIZATION
        # ============================================================================

        self.FORMAT_NAME = "mubands-histogram"
        self.FORMAT_VERSION = 1


        # ============================================================================
        # VERSION INFORMATION
        # ============================================================================

        self.__version__ = "1.0.0"
        self.__title__ = "Many-universe systematic error bands"


    # ============================================================================
    # PROPERTIES FOR EASY ACCESS
    # ============================================================================

    @property
    def version(self) -> str:
        """Get version information."""
        return self.__version__

    @property
    def title(self) -> str:
        """Get package title."""
        return self.__title__

    def is_not_physical_shift(self, shift: float) -> bool:
        """
        Check whether a lateral shift is the "do not fill" sentinel.

        Parameters:
            shift (float): Shift for one universe

        Returns:
            bool: True if the shift agrees with NOT_PHYSICAL_SHIFT to 6 decimals
        """
        return bool(np.abs(shift - self.NOT_PHYSICAL_SHIFT) < self.NOT_PHYSICAL_TOLERANCE)

    def default_use_spread_error(self, n_universes: int) -> bool:
        """Spread errors are the default for small numbers of universes."""
        return n_universes < self.SPREAD_ERROR_MAX_UNIVERSES


# ============================================================================
# GLOBAL INSTANCE - SINGLE POINT OF TRUTH
# ============================================================================

MU_PARAMS = MUParameters()

NOT_PHYSICAL_SHIFT = MU_PARAMS.NOT_PHYSICAL_SHIFT
IQR_TO_SIGMA = MU_PARAMS.IQR_TO_SIGMA
SPREAD_ERROR_MAX_UNIVERSES = MU_PARAMS.SPREAD_ERROR_MAX_UNIVERSES
DEFAULT_VERT_UNIVERSES = MU_PARAMS.DEFAULT_VERT_UNIVERSES
DEFAULT_LAT_UNIVERSES = MU_PARAMS.DEFAULT_LAT_UNIVERSES
SHAPE_SUFFIX = MU_PARAMS.SHAPE_SUFFIX
__version__ = MU_PARAMS.version
