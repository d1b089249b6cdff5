"""Tests for lead-time validation."""

from datetime import timedelta

from carrymatch.lead_time import OrderComplexity, required_lead_days, trip_meets_lead_time
from carrymatch.rules import LeadTimeRules


class TestRequiredLeadDays:
    def test_simple_order_uses_base_minimum(self):
        assert required_lead_days(1, 100.0, False) == 5

    def test_each_modifier_adds_a_day(self):
        assert required_lead_days(1, 600.0, False) == 6
        assert required_lead_days(4, 100.0, False) == 6
        assert required_lead_days(1, 100.0, True) == 6

    def test_all_modifiers(self):
        assert required_lead_days(4, 600.0, True) == 8

    def test_thresholds_are_exclusive(self):
        # Exactly 500 in value and exactly 3 items don't count as complex
        assert required_lead_days(3, 500.0, False) == 5

    def test_custom_rules(self):
        rules = LeadTimeRules(minimum_days_before_departure=2, high_value_extra_days=3)
        assert required_lead_days(1, 1000.0, False, rules) == 5


class TestTripMeetsLeadTime:
    def test_enough_notice(self, t0):
        check = trip_meets_lead_time(t0 + timedelta(days=10), OrderComplexity(), t0)
        assert check.valid
        assert check.required_days == 5
        assert check.actual_days == 10
        assert check.message is None

    def test_too_soon(self, t0):
        check = trip_meets_lead_time(t0 + timedelta(days=3), OrderComplexity(), t0)
        assert not check.valid
        assert check.message == "Trip must depart at least 5 days from now. Current: 3 days."

    def test_partial_days_round_up(self, t0):
        check = trip_meets_lead_time(t0 + timedelta(days=4, hours=1), None, t0)
        assert check.actual_days == 5
        assert check.valid

    def test_complexity_raises_requirement(self, t0):
        departure = t0 + timedelta(days=6)
        simple = trip_meets_lead_time(departure, OrderComplexity(item_count=1), t0)
        complex_order = trip_meets_lead_time(
            departure,
            OrderComplexity(item_count=5, total_value=900.0, has_special_delivery=True),
            t0,
        )
        assert simple.valid
        assert not complex_order.valid
        assert complex_order.required_days == 8

    def test_past_departure(self, t0):
        check = trip_meets_lead_time(t0 - timedelta(days=1), None, t0)
        assert not check.valid
        assert check.actual_days == -1
