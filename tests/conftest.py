"""
Test configuration and fixtures for the many-universe error band library.

Provides common test fixtures and utilities for unit testing.
"""
import pytest
import numpy as np
from pathlib import Path
import tempfile

from mubands.accumulator import BinnedAccumulator
from mubands.histogram import HistogramWithErrors


@pytest.fixture
def temp_output_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def acc_1d():
    """Empty 10-bin accumulator on [0, 10)."""
    return BinnedAccumulator.regular(10, 0.0, 10.0, name="acc")


@pytest.fixture
def acc_2d():
    """Empty 3x2 accumulator."""
    return BinnedAccumulator([[0.0, 1.0, 2.0, 3.0], [0.0, 5.0, 10.0]], name="acc2d")


@pytest.fixture
def empty_hist():
    """Empty 10-bin histogram on [0, 10)."""
    return HistogramWithErrors.regular("h", 10, 0.0, 10.0)


@pytest.fixture
def flux_hist():
    """
    Histogram with a 2-universe vertical band 'flux' filled 100 times in
    bin 6 (value 5.5) with weights 0.9 / 1.1.
    """
    hist = HistogramWithErrors.regular("h", 10, 0.0, 10.0)
    hist.add_vert_error_band("flux", 2)
    for _ in range(100):
        hist.fill(5.5, 1.0)
        hist.fill_vert_error_band("flux", 5.5, [0.9, 1.1], 1.0)
    return hist


@pytest.fixture
def populated_hist():
    """
    Histogram with one source of every kind, filled with a deterministic
    spread of values so that every in-range bin has content.
    """
    rng = np.random.default_rng(42)
    hist = HistogramWithErrors.regular("mc", 5, 0.0, 5.0)
    hist.add_vert_error_band("flux", 4)
    hist.add_lat_error_band("energy_scale", 2)
    hist.add_uncorr_error("mc_stat")

    for x in rng.uniform(0.0, 5.0, 400):
        w = 1.0
        hist.fill(x, w)
        hist.fill_vert_error_band("flux", x, [0.9, 1.05, 1.1, 0.95], w)
        hist.fill_lat_error_band("energy_scale", x, [-0.1, 0.1], w, fill_cv=True)
        hist.fill_uncorr_error("mc_stat", x, 0.05, w)

    hist.push_cov_matrix("external", np.eye(hist.cv.total_bins) * 4.0)
    return hist


def make_filled_hist(name: str, contents, n_universes: int = 2, spread: float = 0.1):
    """
    5-bin histogram whose CV bins hold the given contents, with a vertical
    band whose universes are the CV scaled by (1 - spread) and (1 + spread).
    """
    hist = HistogramWithErrors.regular(name, len(contents), 0.0, float(len(contents)))
    for i, c in enumerate(contents):
        hist.cv.set_bin_content(i + 1, c)
        hist.cv.set_bin_error(i + 1, np.sqrt(c))
    universes = []
    for j in range(n_universes):
        u = hist.cv.clone()
        factor = 1.0 - spread if j % 2 == 0 else 1.0 + spread
        u.scale(factor)
        universes.append(u)
    hist.add_vert_error_band("flux", universes=universes)
    return hist


@pytest.fixture
def filled_hist_factory():
    """Factory for histograms with given CV contents and a scaled flux band."""
    return make_filled_hist
