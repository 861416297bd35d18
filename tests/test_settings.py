"""
tests/test_settings.py — XP Settings Parsing Tests
===================================================

Covers snake_case and legacy camelCase ``xp_settings`` documents, default
filling, and the two ``shield_at_levels`` encodings.
"""

from __future__ import annotations

from classquest.config import EngineConfig
from classquest.engine.settings import (
    LevelUpRewardSettings,
    XPSettings,
    parse_shield_levels,
    parse_xp_settings,
)


class TestDefaults:
    def test_none_gives_defaults(self):
        settings = parse_xp_settings(None)
        assert settings == XPSettings()
        assert settings.level_up_rewards == LevelUpRewardSettings()

    def test_default_values(self):
        settings = parse_xp_settings({})
        assert settings.enabled is True
        assert settings.leveling_formula == "exponential"
        assert settings.base_xp_for_level2 == 100
        assert settings.bits_earned_rate == 1.0
        assert settings.bits_xp_basis == "final"
        assert settings.stat_increase_rate == 10.0
        assert settings.badge_unlock_rate == 25.0

    def test_engine_config_supplies_fallbacks(self):
        cfg = EngineConfig(
            default_leveling_formula="linear",
            default_base_xp_for_level2=200,
            badge_chain_passes=3,
            max_level=99,
        )
        settings = parse_xp_settings({}, cfg)
        assert settings.leveling_formula == "linear"
        assert settings.base_xp_for_level2 == 200
        assert settings.badge_chain_passes == 3
        assert settings.max_level == 99

    def test_document_overrides_engine_config(self):
        cfg = EngineConfig(default_leveling_formula="linear")
        settings = parse_xp_settings({"leveling_formula": "logarithmic"}, cfg)
        assert settings.leveling_formula == "logarithmic"


class TestCamelCase:
    def test_legacy_document(self):
        settings = parse_xp_settings({
            "enabled": True,
            "levelingFormula": "linear",
            "baseXPForLevel2": 150,
            "bitsEarned": 2,
            "bitsXPBasis": "base",
            "statIncrease": 5,
            "badgeUnlock": 40,
            "levelUpRewards": {
                "enabled": True,
                "bitsPerLevel": 10,
                "scaleBitsByLevel": True,
                "shieldAtLevels": "5, 10",
                "countBitsTowardXP": True,
            },
        })
        assert settings.leveling_formula == "linear"
        assert settings.base_xp_for_level2 == 150
        assert settings.bits_earned_rate == 2.0
        assert settings.bits_xp_basis == "base"
        assert settings.stat_increase_rate == 5.0
        assert settings.badge_unlock_rate == 40.0
        rewards = settings.level_up_rewards
        assert rewards.enabled is True
        assert rewards.bits_per_level == 10
        assert rewards.scale_bits_by_level is True
        assert rewards.shield_at_levels == frozenset({5, 10})
        assert rewards.count_bits_toward_xp is True
        assert rewards.count_stats_toward_xp is False


class TestValidation:
    def test_unknown_formula_becomes_linear(self):
        assert parse_xp_settings({"leveling_formula": "cubic"}).leveling_formula == "linear"

    def test_unknown_basis_becomes_final(self):
        assert parse_xp_settings({"bits_xp_basis": "weird"}).bits_xp_basis == "final"

    def test_negative_rate_falls_back(self):
        assert parse_xp_settings({"bits_earned_rate": -3}).bits_earned_rate == 0.0

    def test_zero_base_falls_back_to_hundred(self):
        assert parse_xp_settings({"base_xp_for_level2": 0}).base_xp_for_level2 == 100


class TestShieldLevels:
    def test_list(self):
        assert parse_shield_levels([2, 4]) == frozenset({2, 4})

    def test_comma_string(self):
        assert parse_shield_levels("3,6, 9") == frozenset({3, 6, 9})

    def test_empty(self):
        assert parse_shield_levels("") == frozenset()
        assert parse_shield_levels(None) == frozenset()

    def test_garbage_entries_skipped(self):
        assert parse_shield_levels("2, x, 4") == frozenset({2, 4})
