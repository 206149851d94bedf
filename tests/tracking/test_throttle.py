import pytest

from fulfillment.settings import ThrottleSettings
from fulfillment.tracking.throttle import LocationBroadcastThrottle, LocationSample, should_emit
from tests.factories import PICKUP, offset_north


def sample(meters_north: float, timestamp_ms: int) -> LocationSample:
    lat, lon = offset_north(PICKUP, meters_north)
    return LocationSample(lat, lon, timestamp_ms)


@pytest.mark.unit
class TestShouldEmit:
    def test_first_sample_always_emitted(self):
        assert should_emit(sample(0, 0), None)

    def test_small_quick_move_suppressed(self):
        assert not should_emit(sample(5, 1000), sample(0, 0))

    def test_interval_elapsed(self):
        assert should_emit(sample(0, 3000), sample(0, 0))

    def test_distance_exceeded(self):
        assert should_emit(sample(20, 500), sample(0, 0))

    def test_custom_thresholds(self):
        assert not should_emit(sample(0, 3000), sample(0, 0), min_interval_ms=5000)


@pytest.mark.unit
class TestLocationBroadcastThrottle:
    def test_sequence(self):
        throttle = LocationBroadcastThrottle(ThrottleSettings())
        samples = [sample(0, 0), sample(2, 1000), sample(4, 2000), sample(5, 3000), sample(30, 3500)]

        emitted = [throttle.offer("order-1", s) for s in samples]

        assert emitted == [True, False, False, True, True]
        assert throttle.last_emitted("order-1") == samples[-1]

    def test_suppressed_sample_does_not_move_reference(self):
        throttle = LocationBroadcastThrottle()
        throttle.offer("order-1", sample(0, 0))

        throttle.offer("order-1", sample(10, 1000))

        assert throttle.last_emitted("order-1") == sample(0, 0)

    def test_orders_throttled_separately(self):
        throttle = LocationBroadcastThrottle()
        throttle.offer("order-1", sample(0, 0))

        assert throttle.offer("order-2", sample(1, 100))

    def test_invalid_sample_rejected(self):
        throttle = LocationBroadcastThrottle()

        assert not throttle.offer("order-1", LocationSample(120.0, 0.0, 0))
        assert throttle.last_emitted("order-1") is None

    def test_reset(self):
        throttle = LocationBroadcastThrottle()
        throttle.offer("order-1", sample(0, 0))

        throttle.reset("order-1")

        assert throttle.offer("order-1", sample(1, 100))
