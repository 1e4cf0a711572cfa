"""
Tests for the covariance matrix store.

Tests pushing, the reserved shape-only suffix, soft removal and restoring.
"""
import pytest
import numpy as np

from mubands.matrix_store import (CovarianceMatrixStore, is_shape_key, shape_key,
                                  strip_shape_suffix)


@pytest.fixture
def store():
    """Store of 4x4 matrices."""
    return CovarianceMatrixStore(4)


class TestShapeKeys:
    """Test the shape-only naming helpers."""

    def test_shape_key_helpers(self):
        """Shape keys carry the reserved suffix."""
        assert shape_key("flux") == "flux_asShape"
        assert is_shape_key("flux_asShape")
        assert not is_shape_key("flux")
        assert strip_shape_suffix("flux_asShape") == "flux"
        assert strip_shape_suffix("flux") == "flux"


class TestPush:
    """Test pushing matrices."""

    def test_push_copies(self, store):
        """Pushed matrices are copied."""
        matrix = np.eye(4)
        assert store.push("ext", matrix)
        matrix[0, 0] = 99.0
        assert store.get("ext")[0, 0] == 1.0
        assert len(store) == 1

    def test_push_duplicate(self, store):
        """A second push under the same key is refused."""
        assert store.push("ext", np.eye(4))
        assert store.push("ext", 2 * np.eye(4)) is False
        assert store.get("ext")[0, 0] == 1.0

    def test_push_wrong_dimension(self, store):
        """Matrices of the wrong size are refused."""
        assert store.push("ext", np.eye(3)) is False
        assert store.push("ext", np.ones((4, 3))) is False
        assert store.is_empty()

    def test_push_reserved_suffix(self, store):
        """Names ending in the shape suffix are reserved."""
        assert store.push("ext_asShape", np.eye(4)) is False

    def test_plain_and_shape_variants(self, store):
        """The plain and shape-only variants are pushed independently."""
        assert store.push("ext", np.eye(4))
        assert store.push("ext", 0.5 * np.eye(4), area_normalize=True)
        assert store.keys() == ["ext", "ext_asShape"]
        assert store.names() == ["ext"]
        assert store.get("ext_asShape")[1, 1] == pytest.approx(0.5)


class TestRemove:
    """Test soft removal and restoring."""

    def test_remove_moves_both_variants(self, store):
        """Removing a name moves its plain and shape-only matrices."""
        store.push("ext", np.eye(4))
        store.push("ext", 0.5 * np.eye(4), area_normalize=True)
        assert store.remove("ext")
        assert len(store) == 0
        assert store.removed_keys() == ["ext", "ext_asShape"]
        assert store.removed_names() == ["ext"]
        assert store.has_name("ext")

    def test_remove_missing(self, store):
        """Removing an unknown name returns False."""
        assert store.remove("ext") is False

    def test_push_while_removed(self, store):
        """A removed name cannot be pushed again."""
        store.push("ext", np.eye(4))
        store.remove("ext")
        assert store.push("ext", np.eye(4)) is False

    def test_push_other_variant_while_removed(self, store):
        """A removed plain matrix also blocks its shape-only variant and vice versa."""
        store.push("ext", np.eye(4))
        store.remove("ext")
        assert store.push("ext", np.eye(4), area_normalize=True) is False
        assert store.keys() == []
        assert store.removed_keys() == ["ext"]

        store.push("shp", np.eye(4), area_normalize=True)
        store.remove("shp")
        assert store.push("shp", np.eye(4)) is False
        assert store.removed_keys() == ["ext", "shp_asShape"]

    def test_unremove_restores_each_key(self, store):
        """Restoring puts each matrix back under its own key."""
        store.push("ext", np.eye(4))
        store.push("ext", 0.5 * np.eye(4), area_normalize=True)
        store.remove("ext")
        assert store.unremove("ext")
        assert store.get("ext")[0, 0] == pytest.approx(1.0)
        assert store.get("ext_asShape")[0, 0] == pytest.approx(0.5)
        assert store.n_removed() == 0

    def test_unremove_missing(self, store):
        """Restoring an unknown name returns False."""
        assert store.unremove("ext") is False

    def test_clear(self, store):
        """clear drops active and removed matrices."""
        store.push("a", np.eye(4))
        store.push("b", np.eye(4))
        store.remove("b")
        store.clear()
        assert store.is_empty()


class TestTransform:
    """Test scaling and verbatim restore."""

    def test_scale_active_and_removed(self, store):
        """Scaling applies to active and removed matrices."""
        store.push("a", np.eye(4))
        store.push("b", np.eye(4))
        store.remove("b")
        factors = np.full((4, 4), 9.0)
        store.scale(factors)
        assert store.get("a")[2, 2] == pytest.approx(9.0)
        assert store.get_removed("b")[2, 2] == pytest.approx(9.0)

    def test_restore_checks_size(self, store):
        """restore refuses matrices of the wrong size."""
        store.restore("a_asShape", np.eye(4), removed=True)
        assert store.has_removed("a_asShape")
        with pytest.raises(ValueError):
            store.restore("b", np.eye(2))

    def test_items_sorted(self, store):
        """items yields copies sorted by key."""
        store.push("b", np.eye(4))
        store.push("a", 2 * np.eye(4))
        keys = [key for key, _ in store.items()]
        assert keys == ["a", "b"]
