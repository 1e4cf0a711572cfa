"""
Tests for the data/MC chi-square.
"""
import pytest
import numpy as np

from mubands.accumulator import BinnedAccumulator
from mubands.comparison import chi2_data_mc, chi2_stat_only
from mubands.histogram import HistogramWithErrors


def two_bin_hist(name, contents, errors):
    hist = HistogramWithErrors.regular(name, 2, 0.0, 2.0)
    hist.cv.set_contents_flat([0.0, contents[0], contents[1], 0.0])
    hist.cv.set_errors_flat([0.0, errors[0], errors[1], 0.0])
    return hist


class TestChi2StatOnly:
    """Test the statistical-only chi-square."""

    def test_single_bin(self):
        """chi2 = (d - m)^2 / (sigma_d^2 + sigma_m^2)."""
        data = BinnedAccumulator([0.0, 1.0])
        mc = data.copy_structure()
        data.set_bin_content(1, 10.0)
        data.set_bin_error(1, np.sqrt(10.0))
        mc.set_bin_content(1, 8.0)
        mc.set_bin_error(1, np.sqrt(8.0))
        result = chi2_stat_only(data, mc)
        assert result['chi_squared'] == pytest.approx(4.0 / 18.0)
        assert result['degrees_of_freedom'] == 1
        assert result['used_covariance'] is False

    def test_zero_error_bins_skipped(self):
        """Bins without any error do not count."""
        data = BinnedAccumulator([0.0, 1.0, 2.0])
        mc = data.copy_structure()
        data.set_contents_flat([0.0, 4.0, 3.0, 0.0])
        data.set_errors_flat([0.0, 2.0, 0.0, 0.0])
        mc.set_contents_flat([0.0, 2.0, 1.0, 0.0])
        result = chi2_stat_only(data, mc)
        assert result['chi_squared'] == pytest.approx(1.0)
        assert result['degrees_of_freedom'] == 1
        assert result['n_data_points'] == 2


class TestChi2DataMC:
    """Test the chi-square with the full covariance."""

    def test_identical_histograms(self, populated_hist):
        """A histogram compared with itself has chi2 = 0."""
        result = chi2_data_mc(populated_hist, populated_hist.clone())
        assert result['chi_squared'] == pytest.approx(0.0, abs=1e-9)
        assert result['degrees_of_freedom'] == 5
        assert result['p_value'] == pytest.approx(1.0)
        assert result['used_covariance'] is True

    def test_diagonal_covariance_matches_stat_only(self):
        """Without systematics the matrix chi-square is the bin-by-bin one."""
        data = two_bin_hist("data", [10.0, 20.0], [np.sqrt(10.0), np.sqrt(20.0)])
        mc = two_bin_hist("mc", [8.0, 25.0], [np.sqrt(8.0), np.sqrt(25.0)])
        result = chi2_data_mc(data, mc)
        assert result['chi_squared'] == pytest.approx(4.0 / 18.0 + 25.0 / 45.0)
        assert result['degrees_of_freedom'] == 2
        assert result['reduced_chi_squared'] == pytest.approx(result['chi_squared'] / 2)

    def test_mc_scale(self):
        """The MC content and errors are scaled before comparing."""
        data = two_bin_hist("data", [10.0, 20.0], [np.sqrt(10.0), np.sqrt(20.0)])
        mc = two_bin_hist("mc", [4.0, 10.0], [1.0, 2.0])
        result = chi2_data_mc(data, mc, mc_scale=2.0)
        # bin 1: (10 - 8)^2 / (10 + 4), bin 2 agrees
        assert result['chi_squared'] == pytest.approx(4.0 / 14.0)
        # the caller's histogram is not scaled
        assert mc.cv.get_bin_content(1) == pytest.approx(4.0)

    def test_systematics_reduce_chi2(self, filled_hist_factory):
        """Adding systematic covariance lowers the chi-square."""
        data = two_bin_hist("data", [12.0, 22.0], [np.sqrt(12.0), np.sqrt(22.0)])
        mc_stat = two_bin_hist("mc", [10.0, 20.0], [np.sqrt(10.0), np.sqrt(20.0)])
        mc_sys = filled_hist_factory("mc", [10.0, 20.0], spread=0.2)
        stat_only = chi2_data_mc(data, mc_stat)
        with_sys = chi2_data_mc(data, mc_sys)
        assert with_sys['chi_squared'] < stat_only['chi_squared']

    def test_data_error_matrix(self, filled_hist_factory):
        """The systematic covariance can be taken from data."""
        data = filled_hist_factory("data", [12.0, 22.0], spread=0.2)
        mc = two_bin_hist("mc", [10.0, 20.0], [np.sqrt(10.0), np.sqrt(20.0)])
        from_mc = chi2_data_mc(data, mc)
        from_data = chi2_data_mc(data, mc, use_data_error_matrix=True)
        assert from_data['chi_squared'] < from_mc['chi_squared']

    def test_shape_only_drops_one_dof(self, populated_hist):
        """Shape-only comparisons lose a degree of freedom."""
        result = chi2_data_mc(populated_hist, populated_hist.clone(), use_only_shape_errors=True)
        assert result['degrees_of_freedom'] == 4

    def test_overflow_err(self, populated_hist):
        """Inverting with flow bins still sums over regular bins only."""
        result = chi2_data_mc(populated_hist, populated_hist.clone(), use_overflow_err=True)
        assert result['chi_squared'] == pytest.approx(0.0, abs=1e-9)
        assert result['n_data_points'] == 5

    def test_binning_mismatch(self, populated_hist):
        """Histograms with different binning cannot be compared."""
        other = HistogramWithErrors.regular("other", 3, 0.0, 5.0)
        with pytest.raises(ValueError):
            chi2_data_mc(populated_hist, other)

    def test_fallback_to_stat_only(self):
        """A covariance that cannot be inverted falls back to statistical errors."""
        data = two_bin_hist("data", [10.0, 20.0], [np.nan, np.sqrt(20.0)])
        mc = two_bin_hist("mc", [8.0, 25.0], [np.sqrt(8.0), np.sqrt(25.0)])
        result = chi2_data_mc(data, mc)
        assert result['used_covariance'] is False
        assert result['chi_squared'] == pytest.approx(25.0 / 45.0)
        assert result['degrees_of_freedom'] == 1
