"""
Tests for the binned accumulator.

Tests binning, flow bins, the global bin convention, error propagation
in arithmetic, and rebinning.
"""
import pytest
import numpy as np

from mubands.accumulator import BinnedAccumulator, BinningError


class TestBinning:
    """Test axis definitions and bin lookup."""

    def test_regular_binning(self, acc_1d):
        """Regular binning has flow bins on both sides."""
        assert acc_1d.ndim == 1
        assert acc_1d.n_bins == (10,)
        assert acc_1d.n_bins_x == 10
        assert acc_1d.total_bins == 12
        assert acc_1d.bin_width(3) == pytest.approx(1.0)
        assert acc_1d.bin_low_edge(3) == pytest.approx(2.0)
        assert acc_1d.bin_center(3) == pytest.approx(2.5)

    def test_invalid_edges(self):
        """Invalid edges raise BinningError."""
        with pytest.raises(BinningError):
            BinnedAccumulator([1.0])
        with pytest.raises(BinningError):
            BinnedAccumulator([0.0, 2.0, 1.0])
        with pytest.raises(BinningError):
            BinnedAccumulator([0.0, np.inf])

    def test_find_bin_edges(self, acc_1d):
        """Lower edges are inclusive, the last edge goes to overflow."""
        assert acc_1d.find_bin(-0.5) == 0
        assert acc_1d.find_bin(0.0) == 1
        assert acc_1d.find_bin(0.999) == 1
        assert acc_1d.find_bin(1.0) == 2
        assert acc_1d.find_bin(9.999) == 10
        assert acc_1d.find_bin(10.0) == 11
        assert acc_1d.find_bin(float('nan')) == 0

    def test_global_bin_x_fastest(self, acc_2d):
        """Global bins run over x first."""
        assert acc_2d.shape == (5, 4)
        assert acc_2d.total_bins == 20
        # x bin 2, y bin 1 -> 2 + 5*1
        assert acc_2d.find_bin((1.5, 2.0)) == 7
        assert acc_2d.bin_index(7) == (2, 1)
        assert acc_2d.find_bin((-1.0, 20.0)) == 0 + 5 * 3

    def test_wrong_coordinate_count(self, acc_2d):
        """2D accumulators need two coordinates."""
        with pytest.raises(BinningError):
            acc_2d.fill(1.0)

    def test_in_range_bins(self, acc_2d):
        """In-range bins exclude flow bins on every axis."""
        bins = acc_2d.in_range_bins()
        assert len(bins) == 6
        assert 6 in bins and 7 in bins and 8 in bins
        assert 11 in bins and 12 in bins and 13 in bins


class TestFilling:
    """Test fill and bin access."""

    def test_fill_accumulates_sumw2(self, acc_1d):
        """Content adds weights, the variance adds squared weights."""
        b = acc_1d.fill(2.5, 2.0)
        acc_1d.fill(2.5, 3.0)
        assert b == 3
        assert acc_1d.get_bin_content(3) == pytest.approx(5.0)
        assert acc_1d.get_bin_error(3) == pytest.approx(np.sqrt(13.0))

    def test_add_bin_content_keeps_error(self, acc_1d):
        """add_bin_content changes the content only."""
        acc_1d.set_bin_error(4, 2.0)
        acc_1d.add_bin_content(4, 7.0)
        assert acc_1d.get_bin_content(4) == pytest.approx(7.0)
        assert acc_1d.get_bin_error(4) == pytest.approx(2.0)

    def test_integral_excludes_flow(self, acc_1d):
        """Integral covers regular bins unless flow is requested."""
        acc_1d.fill(-1.0, 3.0)
        acc_1d.fill(5.0, 2.0)
        acc_1d.fill(50.0, 1.0)
        assert acc_1d.integral() == pytest.approx(2.0)
        assert acc_1d.integral(include_flow=True) == pytest.approx(6.0)

    def test_bin_out_of_range(self, acc_1d):
        """Global bins outside the storage raise IndexError."""
        with pytest.raises(IndexError):
            acc_1d.get_bin_content(12)


class TestArithmetic:
    """Test scale, add, multiply, divide."""

    def test_scale(self, acc_1d):
        """Scale multiplies content by c and variance by c squared."""
        acc_1d.fill(1.5, 2.0)
        acc_1d.scale(3.0)
        assert acc_1d.get_bin_content(2) == pytest.approx(6.0)
        assert acc_1d.get_bin_error(2) == pytest.approx(6.0)

    def test_scale_width(self):
        """Width scaling divides regular bins by their width."""
        acc = BinnedAccumulator([0.0, 1.0, 3.0])
        acc.set_contents_flat([1.0, 2.0, 4.0, 1.0])
        factors = acc.scale(1.0, width=True)
        assert acc.contents_flat() == pytest.approx([1.0, 2.0, 2.0, 1.0])
        assert factors.ravel() == pytest.approx([1.0, 1.0, 0.5, 1.0])

    def test_add_with_coefficient(self, acc_1d):
        """Add uses c for content and c squared for variance."""
        other = acc_1d.clone()
        acc_1d.fill(0.5, 1.0)
        other.fill(0.5, 2.0)
        acc_1d.add(other, 2.0)
        assert acc_1d.get_bin_content(1) == pytest.approx(5.0)
        assert acc_1d.get_bin_error(1) ** 2 == pytest.approx(1.0 + 4.0 * 4.0)

    def test_add_binning_mismatch(self, acc_1d):
        """Mismatched binning raises BinningError."""
        with pytest.raises(BinningError):
            acc_1d.add(BinnedAccumulator.regular(5, 0.0, 10.0))

    def test_multiply_errors(self):
        """Product errors follow uncorrelated propagation."""
        a = BinnedAccumulator([0.0, 1.0])
        b = a.copy_structure()
        a.set_bin_content(1, 2.0)
        a.set_bin_error(1, 0.5)
        b.set_bin_content(1, 3.0)
        b.set_bin_error(1, 1.0)
        out = a.copy_structure()
        out.multiply(a, b)
        assert out.get_bin_content(1) == pytest.approx(6.0)
        assert out.get_bin_error(1) ** 2 == pytest.approx(0.25 * 9.0 + 1.0 * 4.0)

    def test_divide_by_empty_bin(self):
        """Division by an empty bin gives zero content and zero error."""
        a = BinnedAccumulator([0.0, 1.0, 2.0])
        b = a.copy_structure()
        a.set_contents_flat([0.0, 4.0, 4.0, 0.0])
        b.set_contents_flat([0.0, 2.0, 0.0, 0.0])
        out = a.copy_structure()
        out.divide(a, b)
        assert out.get_bin_content(1) == pytest.approx(2.0)
        assert out.get_bin_content(2) == 0.0
        assert out.get_bin_error(2) == 0.0

    def test_divide_errors(self):
        """Ratio errors follow uncorrelated propagation."""
        a = BinnedAccumulator([0.0, 1.0])
        b = a.copy_structure()
        a.set_bin_content(1, 4.0)
        a.set_bin_error(1, 2.0)
        b.set_bin_content(1, 2.0)
        b.set_bin_error(1, 1.0)
        out = a.copy_structure()
        out.divide(a, b)
        # (e1^2 b^2 + e2^2 a^2) / b^4 = (4*4 + 1*16) / 16
        assert out.get_bin_content(1) == pytest.approx(2.0)
        assert out.get_bin_error(1) ** 2 == pytest.approx(2.0)

    def test_divide_binomial(self):
        """Binomial errors vanish for an efficiency of one."""
        a = BinnedAccumulator([0.0, 1.0, 2.0])
        b = a.copy_structure()
        for _ in range(4):
            a.fill(0.5)
            b.fill(0.5)
            b.fill(1.5)
        a.fill(1.5)
        out = a.copy_structure()
        out.divide(a, b, binomial=True)
        assert out.get_bin_content(1) == pytest.approx(1.0)
        assert out.get_bin_error(1) == 0.0
        assert out.get_bin_content(2) == pytest.approx(0.25)
        # abs((1 - 2*0.25)*1 + 1*4/16) / 16
        assert out.get_bin_error(2) ** 2 == pytest.approx(0.75 / 16.0)

    def test_divide_binomial_weighted(self):
        """The weights enter both the binomial contents and the errors."""
        a = BinnedAccumulator([0.0, 1.0, 2.0])
        b = a.copy_structure()
        for _ in range(4):
            a.fill(0.5)
            b.fill(0.5)
            b.fill(1.5)
        a.fill(1.5)
        out = a.copy_structure()
        out.divide(a, b, c1=2.0, c2=4.0, binomial=True)
        assert out.get_bin_content(1) == pytest.approx(0.5)
        # w = 8/16: 0.25 * 16 * 4 / 16^2
        assert out.get_bin_error(1) ** 2 == pytest.approx(1.0 / 16.0)
        assert out.get_bin_content(2) == pytest.approx(0.125)
        # w = 2/16: ((1 - 0.25) * 4 * 1 + w^2 * 16 * 4) / 16^2
        assert out.get_bin_error(2) ** 2 == pytest.approx(1.0 / 64.0)

    def test_divide_in_place(self, acc_1d):
        """An accumulator may divide itself."""
        acc_1d.fill(1.5, 2.0)
        acc_1d.divide(acc_1d, acc_1d)
        assert acc_1d.get_bin_content(2) == pytest.approx(1.0)


class TestRebin:
    """Test rebinning."""

    def test_rebin_groups(self, acc_1d):
        """Groups of bins are merged, flows kept."""
        for x in np.arange(0.5, 10.0, 1.0):
            acc_1d.fill(x, 1.0)
        acc_1d.fill(-1.0, 3.0)
        acc_1d.rebin(2)
        assert acc_1d.n_bins == (5,)
        assert acc_1d.get_bin_content(1) == pytest.approx(2.0)
        assert acc_1d.get_bin_content(0) == pytest.approx(3.0)
        assert acc_1d.edges() == pytest.approx([0.0, 2.0, 4.0, 6.0, 8.0, 10.0])

    def test_rebin_leftover_to_overflow(self, acc_1d):
        """Bins not filling a whole group move to overflow."""
        for x in np.arange(0.5, 10.0, 1.0):
            acc_1d.fill(x, 1.0)
        acc_1d.rebin(3)
        assert acc_1d.n_bins == (3,)
        assert acc_1d.get_bin_content(3) == pytest.approx(3.0)
        assert acc_1d.get_bin_content(4) == pytest.approx(1.0)

    def test_rebin_2d(self, acc_2d):
        """Each axis can have its own group size."""
        acc_2d.fill((0.5, 2.0), 1.0)
        acc_2d.fill((1.5, 7.0), 2.0)
        acc_2d.rebin((1, 2))
        assert acc_2d.n_bins == (3, 1)
        assert acc_2d.integral() == pytest.approx(3.0)

    def test_rebin_invalid_group(self, acc_1d):
        """Group sizes must fit the axis."""
        with pytest.raises(BinningError):
            acc_1d.rebin(11)


class TestCopies:
    """Test clone, copy_structure and dict conversion."""

    def test_clone_is_independent(self, acc_1d):
        """Clones do not share storage."""
        acc_1d.fill(1.5)
        other = acc_1d.clone("other")
        other.fill(1.5)
        assert acc_1d.get_bin_content(2) == pytest.approx(1.0)
        assert other.name == "other"

    def test_dict_round_trip(self, acc_2d):
        """to_dict/from_dict keep edges and contents."""
        acc_2d.fill((1.5, 7.0), 2.0)
        restored = BinnedAccumulator.from_dict(acc_2d.to_dict())
        assert restored.same_binning(acc_2d)
        assert restored.contents_flat() == pytest.approx(acc_2d.contents_flat())
        assert restored.variances_flat() == pytest.approx(acc_2d.variances_flat())
