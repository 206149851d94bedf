import pytest
from pydantic import ValidationError

from fulfillment.settings import (
    CommissionSettings,
    GeofenceSettings,
    LifecycleSettings,
    OSRMSettings,
    RouteSettings,
    Settings,
)


class TestDefaults:
    def test_defaults(self):
        settings = Settings()
        assert settings.geofence.radius_m == 50.0
        assert settings.geofence.auto_validate_delay_s == 10.0
        assert settings.throttle.min_interval_ms == 3000
        assert settings.throttle.min_distance_m == 15.0
        assert settings.route.simplify_tolerance_deg == 0.00002
        assert settings.lifecycle.offer_window_s == 25.0
        assert settings.commission.minimum_recharge == 10_000
        assert settings.session.location_interval_s == 10.0


class TestEnvironmentOverrides:
    def test_prefixed_variable(self, monkeypatch):
        monkeypatch.setenv("GEOFENCE_RADIUS_M", "80")
        assert GeofenceSettings().radius_m == 80.0

    def test_nested_variable(self, monkeypatch):
        monkeypatch.setenv("THROTTLE__MIN_INTERVAL_MS", "5000")
        assert Settings().throttle.min_interval_ms == 5000


class TestValidation:
    def test_offer_window_bounds(self):
        with pytest.raises(ValidationError):
            LifecycleSettings(offer_window_s=40)

    def test_animation_band(self):
        with pytest.raises(ValidationError):
            RouteSettings(animation_min_ms=3000, animation_max_ms=2000)

    def test_osrm_url_scheme(self):
        with pytest.raises(ValidationError):
            OSRMSettings(base_url="localhost:5000")
        assert OSRMSettings(base_url="http://osrm:5000/").base_url == "http://osrm:5000"

    def test_alert_thresholds_ordered(self):
        with pytest.raises(ValidationError):
            CommissionSettings(low_balance_threshold=500, very_low_balance_threshold=1000)
