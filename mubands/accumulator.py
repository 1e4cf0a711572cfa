"""
Binned Accumulator
==================

Dense, dimension-generic histogram storage used by every error band.

Each axis carries one underflow bin (index 0) and one overflow bin
(index n+1) around its n regular bins. Bin content and the sum of squared
weights (the bin variance) are kept in numpy arrays of shape
(n_1+2, ..., n_d+2).

Global bin numbers follow the usual histogram convention: the x index varies
fastest, so for two axes ``g = ix + (nx+2)*iy``. All covariance matrices in
the package are indexed by global bin, flow bins included.
"""

import logging
from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)


class BinningError(Exception):
    """Invalid or incompatible binning."""
    pass


def _as_edge_arrays(edges) -> Tuple[np.ndarray, ...]:
    """Normalise a single edge array or a sequence of edge arrays."""
    if isinstance(edges, np.ndarray) and edges.ndim == 1:
        axes = [edges]
    elif len(edges) > 0 and np.ndim(edges[0]) == 0:
        axes = [edges]
    else:
        axes = list(edges)

    if not axes:
        raise BinningError("At least one axis is required")

    result = []
    for axis, axis_edges in enumerate(axes):
        arr = np.array(axis_edges, dtype=float)
        if arr.ndim != 1 or arr.size < 2:
            raise BinningError(f"Axis {axis} needs at least two edges, got {arr.size}")
        if not np.all(np.isfinite(arr)):
            raise BinningError(f"Axis {axis} has non-finite edges")
        if np.any(np.diff(arr) <= 0):
            raise BinningError(f"Axis {axis} edges must be strictly increasing")
        result.append(arr)
    return tuple(result)


class BinnedAccumulator:
    """
    Histogram of doubles with per-bin content and variance.

    Parameters:
        edges: Edge array for a single axis, or a sequence of edge arrays
        name (str): Label used in logs and serialization
    """

    def __init__(self, edges, name: str = ""):
        self._edges = _as_edge_arrays(edges)
        self.name = name
        shape = tuple(len(e) + 1 for e in self._edges)
        self._content = np.zeros(shape)
        self._sumw2 = np.zeros(shape)

    @classmethod
    def regular(cls, n_bins: Union[int, Sequence[int]],
                low: Union[float, Sequence[float]],
                high: Union[float, Sequence[float]],
                name: str = "") -> 'BinnedAccumulator':
        """
        Build an accumulator with equal-width bins on every axis.

        Parameters:
            n_bins: Number of bins (int for 1D, one per axis otherwise)
            low: Low edge(s)
            high: High edge(s)
            name (str): Label

        Returns:
            BinnedAccumulator: Empty accumulator
        """
        n_bins = np.atleast_1d(n_bins)
        low = np.broadcast_to(np.atleast_1d(low), n_bins.shape)
        high = np.broadcast_to(np.atleast_1d(high), n_bins.shape)
        if np.any(n_bins < 1):
            raise BinningError(f"Number of bins must be positive, got {n_bins.tolist()}")
        edges = [np.linspace(lo, hi, int(n) + 1) for n, lo, hi in zip(n_bins, low, high)]
        return cls(edges, name=name)

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    @property
    def ndim(self) -> int:
        return len(self._edges)

    @property
    def shape(self) -> Tuple[int, ...]:
        """Storage shape, flow bins included."""
        return self._content.shape

    @property
    def n_bins(self) -> Tuple[int, ...]:
        """Number of regular bins per axis."""
        return tuple(len(e) - 1 for e in self._edges)

    @property
    def n_bins_x(self) -> int:
        return len(self._edges[0]) - 1

    @property
    def total_bins(self) -> int:
        """Number of global bins, flow bins included."""
        return int(self._content.size)

    def edges(self, axis: int = 0) -> np.ndarray:
        """Copy of the bin edges of one axis."""
        return self._edges[axis].copy()

    def bin_low_edge(self, i: int, axis: int = 0) -> float:
        """Low edge of bin i (the underflow bin reports one bin width below the axis)."""
        e = self._edges[axis]
        if i <= 0:
            return float(e[0] - (e[1] - e[0]))
        if i > len(e) - 1:
            return float(e[-1])
        return float(e[i - 1])

    def bin_width(self, i: int, axis: int = 0) -> float:
        """Width of bin i; flow bins report the width of their neighbour."""
        e = self._edges[axis]
        n = len(e) - 1
        i = min(max(i, 1), n)
        return float(e[i] - e[i - 1])

    def bin_center(self, i: int, axis: int = 0) -> float:
        return self.bin_low_edge(i, axis) + 0.5 * self.bin_width(i, axis)

    def same_binning(self, other: 'BinnedAccumulator') -> bool:
        """True if both accumulators have identical axes."""
        if not isinstance(other, BinnedAccumulator) or other.ndim != self.ndim:
            return False
        return all(a.shape == b.shape and np.allclose(a, b)
                   for a, b in zip(self._edges, other._edges))

    def _check_binning(self, *others: 'BinnedAccumulator'):
        for other in others:
            if not self.same_binning(other):
                raise BinningError(
                    f"Binning of '{getattr(other, 'name', other)}' does not match '{self.name}'")

    def in_range_mask(self) -> np.ndarray:
        """Boolean array over storage, True for bins that are not flow bins on any axis."""
        mask = np.ones(self.shape, dtype=bool)
        for axis, n in enumerate(self.n_bins):
            idx = [slice(None)] * self.ndim
            idx[axis] = [0, n + 1]
            mask[tuple(idx)] = False
        return mask

    def in_range_bins(self) -> np.ndarray:
        """Global bin numbers of all regular (non-flow) bins, ascending."""
        return np.flatnonzero(self.in_range_mask().ravel(order='F'))

    def bin_volumes(self) -> np.ndarray:
        """Product of bin widths per storage cell (flow cells use neighbour widths)."""
        volume = np.ones(self.shape)
        for axis, e in enumerate(self._edges):
            widths = np.diff(e)
            widths = np.concatenate([[widths[0]], widths, [widths[-1]]])
            view = [1] * self.ndim
            view[axis] = -1
            volume = volume * widths.reshape(view)
        return volume

    # ------------------------------------------------------------------
    # Bin lookup
    # ------------------------------------------------------------------

    def coordinates(self, value) -> Tuple[float, ...]:
        """Turn a fill value into one coordinate per axis."""
        if np.ndim(value) == 0:
            coords = (float(value),)
        else:
            coords = tuple(float(v) for v in value)
        if len(coords) != self.ndim:
            raise BinningError(f"Expected {self.ndim} coordinate(s), got {len(coords)}")
        return coords

    def axis_index(self, x: float, axis: int = 0) -> int:
        """Bin index of x on one axis (0 = underflow, n+1 = overflow)."""
        if np.isnan(x):
            return 0
        return int(np.searchsorted(self._edges[axis], x, side='right'))

    def find_index(self, value) -> Tuple[int, ...]:
        """Per-axis bin indices for a fill value."""
        coords = self.coordinates(value)
        return tuple(self.axis_index(x, axis) for axis, x in enumerate(coords))

    def global_bin(self, index: Sequence[int]) -> int:
        return int(np.ravel_multi_index(tuple(index), self.shape, order='F'))

    def bin_index(self, global_bin: int) -> Tuple[int, ...]:
        if not 0 <= global_bin < self.total_bins:
            raise IndexError(f"Bin {global_bin} out of range for '{self.name}' ({self.total_bins} bins)")
        return tuple(int(i) for i in np.unravel_index(global_bin, self.shape, order='F'))

    def find_bin(self, value) -> int:
        """Global bin containing value."""
        return self.global_bin(self.find_index(value))

    # ------------------------------------------------------------------
    # Filling and bin access
    # ------------------------------------------------------------------

    def fill(self, value, weight: float = 1.0) -> int:
        """
        Fill one entry.

        Parameters:
            value: Scalar for 1D, one coordinate per axis otherwise
            weight (float): Entry weight

        Returns:
            int: Global bin that was filled
        """
        index = self.find_index(value)
        self._content[index] += weight
        self._sumw2[index] += weight * weight
        return self.global_bin(index)

    def fill_index(self, index: Tuple[int, ...], weight: float = 1.0):
        """Add a weighted entry to the bin with these per-axis indices."""
        self._content[index] += weight
        self._sumw2[index] += weight * weight

    def add_bin_content(self, global_bin: int, weight: float):
        """Add to the content of a bin without touching its error."""
        self._content[self.bin_index(global_bin)] += weight

    def get_bin_content(self, global_bin: int) -> float:
        return float(self._content[self.bin_index(global_bin)])

    def set_bin_content(self, global_bin: int, value: float):
        self._content[self.bin_index(global_bin)] = value

    def get_bin_error(self, global_bin: int) -> float:
        return float(np.sqrt(self._sumw2[self.bin_index(global_bin)]))

    def set_bin_error(self, global_bin: int, error: float):
        self._sumw2[self.bin_index(global_bin)] = error * error

    # Flat views in global-bin order

    def contents_flat(self) -> np.ndarray:
        return self._content.ravel(order='F').copy()

    def variances_flat(self) -> np.ndarray:
        return self._sumw2.ravel(order='F').copy()

    def errors_flat(self) -> np.ndarray:
        return np.sqrt(self.variances_flat())

    def set_contents_flat(self, values):
        values = np.asarray(values, dtype=float)
        if values.size != self.total_bins:
            raise BinningError(f"Expected {self.total_bins} values, got {values.size}")
        self._content = values.reshape(self.shape, order='F').copy()

    def set_variances_flat(self, values):
        values = np.asarray(values, dtype=float)
        if values.size != self.total_bins:
            raise BinningError(f"Expected {self.total_bins} values, got {values.size}")
        self._sumw2 = values.reshape(self.shape, order='F').copy()

    def set_errors_flat(self, errors):
        self.set_variances_flat(np.square(np.asarray(errors, dtype=float)))

    def integral(self, include_flow: bool = False) -> float:
        """Sum of bin contents (regular bins only unless include_flow)."""
        if include_flow:
            return float(self._content.sum())
        return float(self._content[self.in_range_mask()].sum())

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def scale(self, factor: float, width: bool = False) -> np.ndarray:
        """
        Scale content by factor and variance by factor².

        With width=True, regular bins are additionally divided by their bin
        volume (flow bins are scaled by factor only).

        Returns:
            ndarray: Per-bin factor that was applied, in storage shape
        """
        factors = np.full(self.shape, float(factor))
        if width:
            mask = self.in_range_mask()
            factors[mask] = factor / self.bin_volumes()[mask]
        self._content *= factors
        self._sumw2 *= factors * factors
        return factors

    def add(self, other: 'BinnedAccumulator', c1: float = 1.0):
        """this += c1 * other, variances add with c1²."""
        self._check_binning(other)
        self._content = self._content + c1 * other._content
        self._sumw2 = self._sumw2 + c1 * c1 * other._sumw2

    def add_content(self, other: 'BinnedAccumulator', c1: float = 1.0):
        """this += c1 * other on the contents only; variances are untouched."""
        self._check_binning(other)
        self._content = self._content + c1 * other._content

    def multiply(self, a: 'BinnedAccumulator', b: 'BinnedAccumulator',
                 c1: float = 1.0, c2: float = 1.0):
        """Replace this with (c1*a)*(c2*b), propagating uncorrelated errors."""
        self._check_binning(a, b)
        ya, yb = a._content.copy(), b._content.copy()
        ea2, eb2 = a._sumw2.copy(), b._sumw2.copy()
        self._content = c1 * ya * c2 * yb
        self._sumw2 = (c1 * c2) ** 2 * (ea2 * yb * yb + eb2 * ya * ya)

    def divide(self, a: 'BinnedAccumulator', b: 'BinnedAccumulator',
               c1: float = 1.0, c2: float = 1.0, binomial: bool = False):
        """
        Replace this with (c1*a)/(c2*b).

        Bins where b is empty get zero content and zero error. With binomial,
        errors follow the weighted-binomial formula used for efficiencies,
        with c1 and c2 folded into both contents and variances.
        """
        self._check_binning(a, b)
        ya, yb = a._content.copy(), b._content.copy()
        ea2, eb2 = a._sumw2.copy(), b._sumw2.copy()

        content = np.zeros(self.shape)
        sumw2 = np.zeros(self.shape)
        ok = (yb != 0) & (c2 != 0)

        content[ok] = (c1 * ya[ok]) / (c2 * yb[ok])
        if binomial:
            b1, b2 = c1 * ya, c2 * yb
            differ = ok & (b1 != b2)
            w = b1[differ] / b2[differ]
            sumw2[differ] = np.abs(
                ((1.0 - 2.0 * w) * c1 * c1 * ea2[differ]
                 + w * w * c2 * c2 * eb2[differ]) / (b2[differ] * b2[differ]))
        else:
            b22 = (yb[ok] * c2) ** 2
            sumw2[ok] = (c1 * c2) ** 2 * (ea2[ok] * yb[ok] ** 2 + eb2[ok] * ya[ok] ** 2) / (b22 * b22)

        self._content = content
        self._sumw2 = sumw2

    def rebin(self, group: Union[int, Sequence[int]] = 2):
        """
        Merge groups of consecutive bins.

        Parameters:
            group: Bins per group, either one int for every axis or one per axis.
                Bins left over at the top of an axis are moved to the overflow.
        """
        groups = [int(group)] * self.ndim if np.ndim(group) == 0 else [int(g) for g in group]
        if len(groups) != self.ndim:
            raise BinningError(f"Need {self.ndim} rebin groups, got {len(groups)}")
        for axis, (g, n) in enumerate(zip(groups, self.n_bins)):
            if g < 1 or g > n:
                raise BinningError(f"Cannot rebin axis {axis} with {n} bins in groups of {g}")

        content, sumw2 = self._content, self._sumw2
        edges = list(self._edges)
        for axis, g in enumerate(groups):
            if g == 1:
                continue
            n_new = self.n_bins[axis] // g
            content = _regroup(content, axis, g, n_new)
            sumw2 = _regroup(sumw2, axis, g, n_new)
            edges[axis] = edges[axis][:n_new * g + 1:g].copy()

        self._edges = tuple(edges)
        self._content = content
        self._sumw2 = sumw2

    def reset(self):
        """Zero contents and errors, keep binning."""
        self._content = np.zeros(self.shape)
        self._sumw2 = np.zeros(self.shape)

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    def clone(self, name: Optional[str] = None) -> 'BinnedAccumulator':
        """Deep copy, optionally renamed."""
        other = BinnedAccumulator(self._edges, name=self.name if name is None else name)
        other._content = self._content.copy()
        other._sumw2 = self._sumw2.copy()
        return other

    def copy_structure(self, name: Optional[str] = None) -> 'BinnedAccumulator':
        """Empty accumulator with the same binning."""
        return BinnedAccumulator(self._edges, name=self.name if name is None else name)

    def to_dict(self) -> dict:
        """JSON-ready description of binning, contents and variances."""
        return {
            'name': self.name,
            'edges': [e.tolist() for e in self._edges],
            'content': self.contents_flat().tolist(),
            'sumw2': self.variances_flat().tolist(),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> 'BinnedAccumulator':
        acc = cls(payload['edges'], name=payload.get('name', ''))
        acc.set_contents_flat(payload['content'])
        acc.set_variances_flat(payload['sumw2'])
        return acc

    def __repr__(self) -> str:
        return f"BinnedAccumulator({self.name!r}, n_bins={self.n_bins}, integral={self.integral():.6g})"


def _regroup(arr: np.ndarray, axis: int, group: int, n_new: int) -> np.ndarray:
    """Sum consecutive groups of regular bins along one axis."""
    moved = np.moveaxis(arr, axis, 0)
    rest = moved.shape[1:]
    out = np.zeros((n_new + 2,) + rest)
    out[0] = moved[0]
    body = moved[1:1 + n_new * group]
    out[1:n_new + 1] = body.reshape((n_new, group) + rest).sum(axis=1)
    out[n_new + 1] = moved[1 + n_new * group:].sum(axis=0)
    return np.moveaxis(out, 0, axis)
