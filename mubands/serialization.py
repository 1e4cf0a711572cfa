"""
Histogram Serialization
=======================

Explicit visitor contract over a HistogramWithErrors (CV, named sources,
pushed matrices) and a JSON document format built on top of it.

``HistogramWithErrors.accept(visitor)`` calls, in order:

    visit_cv(name, cv, norm_bin_width)
    visit_vert_error_band(name, band)     for each vertical band
    visit_lat_error_band(name, band)      for each lateral band
    visit_uncorr_error(name, uncorr)      for each uncorrelated error
    visit_matrix(key, matrix, removed)    active matrices, then removed ones
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Union

import numpy as np

from .accumulator import BinnedAccumulator, BinningError
from .histogram import HistogramWithErrors
from .parameters import MU_PARAMS

logger = logging.getLogger(__name__)


class SerializationError(Exception):
    """Error reading or writing a serialized histogram."""
    pass


class HistogramVisitor:
    """Base visitor; every hook does nothing."""

    def visit_cv(self, name: str, cv: BinnedAccumulator, norm_bin_width: float):
        pass

    def visit_vert_error_band(self, name: str, band):
        pass

    def visit_lat_error_band(self, name: str, band):
        pass

    def visit_uncorr_error(self, name: str, uncorr):
        pass

    def visit_matrix(self, key: str, matrix: np.ndarray, removed: bool):
        pass


def _bin_arrays(acc: BinnedAccumulator) -> Dict[str, list]:
    return {'content': acc.contents_flat().tolist(), 'sumw2': acc.variances_flat().tolist()}


class DictWriter(HistogramVisitor):
    """Collects a histogram into a JSON-ready dictionary (``self.document``)."""

    def __init__(self):
        self.document: Dict[str, Any] = {
            'format': MU_PARAMS.FORMAT_NAME,
            'format_version': MU_PARAMS.FORMAT_VERSION,
            'vert_error_bands': {},
            'lat_error_bands': {},
            'uncorr_errors': {},
            'matrices': {},
            'removed_matrices': {},
        }

    def visit_cv(self, name, cv, norm_bin_width):
        self.document['name'] = name
        self.document['norm_bin_width'] = norm_bin_width
        self.document['cv'] = cv.to_dict()

    def _band(self, band) -> Dict[str, Any]:
        return {
            'use_spread_error': bool(band.use_spread_error),
            'cv': _bin_arrays(band.cv),
            'universes': [_bin_arrays(u) for u in band.get_universes()],
        }

    def visit_vert_error_band(self, name, band):
        self.document['vert_error_bands'][name] = self._band(band)

    def visit_lat_error_band(self, name, band):
        self.document['lat_error_bands'][name] = self._band(band)

    def visit_uncorr_error(self, name, uncorr):
        self.document['uncorr_errors'][name] = _bin_arrays(uncorr.hist)

    def visit_matrix(self, key, matrix, removed):
        section = 'removed_matrices' if removed else 'matrices'
        self.document[section][key] = np.asarray(matrix).tolist()


def histogram_to_dict(hist: HistogramWithErrors) -> Dict[str, Any]:
    writer = DictWriter()
    hist.accept(writer)
    return writer.document


def _filled_like(template: BinnedAccumulator, arrays: Dict[str, list], name: str) -> BinnedAccumulator:
    acc = template.copy_structure(name)
    acc.set_contents_flat(arrays['content'])
    acc.set_variances_flat(arrays['sumw2'])
    return acc


def histogram_from_dict(document: Dict[str, Any]) -> HistogramWithErrors:
    """
    Rebuild a HistogramWithErrors from a DictWriter document.

    Raises:
        SerializationError: If the document is not in the expected format
    """
    if document.get('format') != MU_PARAMS.FORMAT_NAME:
        raise SerializationError(f"Not a {MU_PARAMS.FORMAT_NAME} document (format={document.get('format')!r})")
    if document.get('format_version', 0) > MU_PARAMS.FORMAT_VERSION:
        raise SerializationError(f"Unsupported format version {document.get('format_version')}")

    try:
        cv = BinnedAccumulator.from_dict(document['cv'])
        hist = HistogramWithErrors(cv, norm_bin_width=document.get('norm_bin_width'),
                                   name=document.get('name', cv.name))

        for kind, adder, getter in (
                ('vert_error_bands', hist.add_vert_error_band, hist.get_vert_error_band),
                ('lat_error_bands', hist.add_lat_error_band, hist.get_lat_error_band)):
            for name, payload in document.get(kind, {}).items():
                universes = [_filled_like(hist.cv, u, name) for u in payload['universes']]
                if not adder(name, universes=universes):
                    raise SerializationError(f"Could not restore error band '{name}'")
                band = getter(name)
                band.cv.set_contents_flat(payload['cv']['content'])
                band.cv.set_variances_flat(payload['cv']['sumw2'])
                band.use_spread_error = bool(payload['use_spread_error'])

        for name, payload in document.get('uncorr_errors', {}).items():
            if not hist.push_uncorr_error(name, _filled_like(hist.cv, payload, name)):
                raise SerializationError(f"Could not restore uncorrelated error '{name}'")

        for key, matrix in document.get('matrices', {}).items():
            hist._restore_matrix(key, matrix, removed=False)
        for key, matrix in document.get('removed_matrices', {}).items():
            hist._restore_matrix(key, matrix, removed=True)

    except (KeyError, TypeError, ValueError, BinningError) as e:
        raise SerializationError(f"Malformed histogram document: {e}") from e

    return hist


def _atomic_write_json(payload: Dict[str, Any], path: Path):
    temp_path = path.with_suffix(path.suffix + '.tmp')
    try:
        with open(temp_path, 'w') as f:
            json.dump(payload, f, indent=2)
        temp_path.replace(path)
    except Exception as e:
        if temp_path.exists():
            temp_path.unlink()
        raise SerializationError(f"Failed to write {path}: {e}") from e


def save_json(hist: HistogramWithErrors, path: Union[str, Path]) -> Path:
    """
    Write a histogram to a JSON file atomically.

    Returns:
        Path: The written file
    """
    path = Path(path)
    document = histogram_to_dict(hist)
    document['saved'] = datetime.now().isoformat()
    _atomic_write_json(document, path)
    logger.info(f"Saved histogram '{hist.name}' to {path}")
    return path


def load_json(path: Union[str, Path]) -> HistogramWithErrors:
    """Read a histogram written by save_json."""
    path = Path(path)
    try:
        with open(path, 'r') as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise SerializationError(f"Failed to read {path}: {e}") from e
    return histogram_from_dict(document)


def write_matrix(name: str, matrix, path: Union[str, Path]) -> Path:
    """
    Named-matrix hook: store one matrix as ``{"name": ..., "matrix": [[...]]}``.
    """
    path = Path(path)
    matrix = np.asarray(matrix, dtype=float)
    _atomic_write_json({'name': name, 'shape': list(matrix.shape), 'matrix': matrix.tolist()}, path)
    logger.info(f"Wrote matrix '{name}' {matrix.shape} to {path}")
    return path


def read_matrix(path: Union[str, Path]) -> np.ndarray:
    path = Path(path)
    try:
        with open(path, 'r') as f:
            payload = json.load(f)
        return np.asarray(payload['matrix'], dtype=float)
    except (OSError, KeyError, json.JSONDecodeError) as e:
        raise SerializationError(f"Failed to read matrix from {path}: {e}") from e
