"""Tests for business rules configuration."""

import pytest

from carrymatch.errors import RulesFileError
from carrymatch.rules import BusinessRules, default_rules, load_rules, rules_from_dict


class TestDefaults:
    def test_default_values(self):
        rules = BusinessRules()
        assert rules.lead_time.minimum_days_before_departure == 5
        assert rules.matching.route_weight == 30.0
        assert rules.matching.carry_on_fit_weight == 25.0
        assert rules.cooldowns.shopper_cooldown_hours == 24.0
        assert rules.pricing.tax_rate == 0.08
        assert rules.schedule.purchase_deadline_interval_minutes == 10.0

    def test_to_dict_sections(self):
        data = BusinessRules().to_dict()
        assert set(data) == {"lead_time", "matching", "cooldowns", "pricing", "schedule"}


class TestLoadRules:
    def test_partial_override(self, temp_dir):
        path = temp_dir / "rules.yaml"
        path.write_text(
            "cooldowns:\n"
            "  shopper_cooldown_hours: 12\n"
            "matching:\n"
            "  fragile_bonus: 3\n"
        )
        rules = load_rules(path)
        assert rules.cooldowns.shopper_cooldown_hours == 12
        assert rules.cooldowns.traveler_purchase_window_hours == 24.0
        assert rules.matching.fragile_bonus == 3

    def test_unknown_keys_ignored(self):
        rules = rules_from_dict({"matching": {"nonsense": 1}, "extra": {"a": 1}, "pricing": "flat"})
        assert not hasattr(rules.matching, "nonsense")
        assert rules.pricing.delivery_fee == 25.0

    def test_empty_file(self, temp_dir):
        path = temp_dir / "rules.yaml"
        path.write_text("")
        assert load_rules(path) == BusinessRules()

    def test_missing_file(self, temp_dir):
        with pytest.raises(RulesFileError):
            load_rules(temp_dir / "missing.yaml")

    def test_invalid_yaml(self, temp_dir):
        path = temp_dir / "rules.yaml"
        path.write_text("matching: [unclosed\n")
        with pytest.raises(RulesFileError):
            load_rules(path)

    def test_not_a_mapping(self, temp_dir):
        path = temp_dir / "rules.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(RulesFileError) as exc_info:
            load_rules(path)
        assert "mapping" in str(exc_info.value)

    def test_env_var(self, temp_dir, monkeypatch):
        path = temp_dir / "rules.yaml"
        path.write_text("pricing:\n  delivery_fee: 30\n")
        monkeypatch.setenv("CARRYMATCH_RULES", str(path))
        assert default_rules().pricing.delivery_fee == 30

    def test_env_var_unset(self, monkeypatch):
        monkeypatch.delenv("CARRYMATCH_RULES", raising=False)
        assert default_rules() == BusinessRules()
