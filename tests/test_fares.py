import math
from decimal import Decimal

import pytest

from ridehail.errors import InvalidInput, ValidationError
from ridehail.fares import compute_fare, round_half_up


def test_city_sedan_breakdown():
    fare = compute_fare("city", 15, 25, "sedan")
    assert fare.base == 100
    assert fare.distance == 150
    assert fare.time == 50
    assert fare.surge == 0
    assert fare.subtotal == 300
    assert fare.tax == 30
    assert fare.total == 330
    assert fare.advance_payment == 83
    assert fare.remaining_payment == 247


def test_outstation_uses_higher_per_km_rate():
    fare = compute_fare("outstation", 100, 90, "suv")
    assert fare.base == 150
    assert fare.distance == 1500
    assert fare.time == 180
    assert fare.total == 2013
    assert fare.advance_payment == 503
    assert fare.remaining_payment == 1510


def test_half_units_round_up():
    # subtotal 105 -> tax 10.5 rounds to 11, not to the even 10
    fare = compute_fare("city", 0.5, 0, "sedan")
    assert fare.subtotal == 105
    assert fare.tax == 11
    assert fare.total == 116
    assert fare.advance_payment == 29
    assert fare.remaining_payment == 87


def test_zero_trip_is_base_plus_tax():
    fare = compute_fare("airport", 0, 0, "premium")
    assert (fare.subtotal, fare.tax, fare.total) == (200, 20, 220)


def test_inputs_are_normalized():
    assert compute_fare(" City ", 15, 25, "SEDAN") == compute_fare("city", 15, 25, "sedan")


@pytest.mark.parametrize("service", ["city", "airport", "outstation", "hourly"])
@pytest.mark.parametrize("vehicle", ["sedan", "suv", "premium"])
@pytest.mark.parametrize("distance,duration", [(0, 0), (1.25, 3), (7.3, 19.5), (42, 61), (333.33, 480)])
def test_fare_invariants(service, vehicle, distance, duration):
    fare = compute_fare(service, distance, duration, vehicle)
    assert fare.subtotal == fare.base + fare.distance + fare.time + fare.surge
    assert fare.tax == round_half_up(Decimal(fare.subtotal) * Decimal("0.10"))
    assert fare.total == fare.subtotal + fare.tax
    assert fare.total >= fare.subtotal
    assert fare.advance_payment + fare.remaining_payment == fare.total
    assert fare.surge == 0


@pytest.mark.parametrize(
    "args",
    [
        ("city", -1, 10, "sedan"),
        ("city", 10, -0.5, "sedan"),
        ("city", math.nan, 10, "sedan"),
        ("city", 10, math.inf, "sedan"),
        ("city", 10, 10, "rickshaw"),
        ("teleport", 10, 10, "sedan"),
        ("city", "10", 10, "sedan"),
        (None, 10, 10, "sedan"),
    ],
)
def test_invalid_input_is_rejected(args):
    with pytest.raises(InvalidInput):
        compute_fare(*args)


def test_invalid_input_is_a_validation_error():
    with pytest.raises(ValidationError):
        compute_fare("city", -5, 0, "sedan")
