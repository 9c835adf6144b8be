"""Tests for alert creation/validation and owner-side management."""
import pytest

from locintel.core.alerts import AlertBook, validate_alert_params
from locintel.core.errors import AlertNotFound, InvalidAlertParameters


class TestValidation:
    @pytest.mark.parametrize("radius", [0, -5])
    def test_non_positive_radius_rejected(self, radius):
        with pytest.raises(InvalidAlertParameters):
            validate_alert_params("Home", 0.0, 0.0, radius)

    def test_missing_coordinates_rejected(self):
        with pytest.raises(InvalidAlertParameters):
            validate_alert_params("Home", None, 106.8, 100)

    def test_out_of_range_center_rejected(self):
        with pytest.raises(InvalidAlertParameters):
            validate_alert_params("Home", 95.0, 0.0, 100)

    def test_blank_name_rejected(self):
        with pytest.raises(InvalidAlertParameters):
            validate_alert_params("  ", 0.0, 0.0, 100)

    def test_any_positive_radius_without_bounds(self):
        validate_alert_params("Home", 0.0, 0.0, 5)
        validate_alert_params("Home", 0.0, 0.0, 50000)

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            validate_alert_params("Home", 0.0, 0.0, 0)


class TestAlertBook:
    def test_create_uses_default_radius(self, store):
        alert = AlertBook(store).create_alert("owner", "f1", " School ", -6.2, 106.8)
        assert alert.radius_m == 100.0
        assert alert.name == "School"
        assert alert.is_active
        assert alert.last_triggered_at is None
        assert store.get_alert(alert.id) is alert

    @pytest.mark.parametrize("radius", [49.9, 1000.1])
    def test_configured_bounds_enforced(self, store, radius):
        with pytest.raises(InvalidAlertParameters):
            AlertBook(store).create_alert("owner", "f1", "Gym", 0.0, 0.0, radius)

    def test_bounds_can_be_disabled(self, store):
        book = AlertBook(store, min_radius_m=None, max_radius_m=None)
        assert book.create_alert("owner", "f1", "Gym", 0.0, 0.0, 10).radius_m == 10

    def test_cannot_watch_self(self, store):
        with pytest.raises(InvalidAlertParameters):
            AlertBook(store).create_alert("owner", "owner", "Home", 0.0, 0.0)

    def test_toggle_and_delete(self, store):
        book = AlertBook(store)
        alert = book.create_alert("owner", "f1", "Home", 0.0, 0.0)

        assert book.toggle_alert(alert.id, False).is_active is False
        assert book.toggle_alert(alert.id, True).is_active is True

        book.delete_alert(alert.id)
        assert book.list_alerts("owner") == []
        with pytest.raises(AlertNotFound):
            book.delete_alert(alert.id)
        with pytest.raises(AlertNotFound):
            book.toggle_alert(alert.id, True)

    def test_list_newest_first_and_per_owner(self, store):
        book = AlertBook(store)
        a = book.create_alert("owner", "f1", "Home", 0.0, 0.0)
        b = book.create_alert("owner", "f2", "Work", 0.0, 0.0)
        book.create_alert("someone-else", "f1", "Cafe", 0.0, 0.0)

        listed = book.list_alerts("owner")
        assert {x.id for x in listed} == {a.id, b.id}
        assert listed[0].created_at >= listed[1].created_at
