import json
from decimal import Decimal

from cashback_config import parse_cashback_config
from policy import (
    format_policy_label,
    normalize_policy_metadata,
    resolve_cashback_policy,
    select_level,
)
from schemas import PolicySource


EDU_PROGRAM = parse_cashback_config(
    {
        "program": {
            "defaultRate": 1,
            "levels": [
                {
                    "id": "l1",
                    "name": "Level 1",
                    "minTotalSpend": 10_000_000,
                    "defaultRate": 2,
                    "rules": [
                        {
                            "id": "edu",
                            "categoryIds": ["edu"],
                            "rate": 10,
                            "maxReward": 300_000,
                        }
                    ],
                }
            ],
        }
    }
)


def test_no_level_reached_uses_program_default() -> None:
    result = resolve_cashback_policy(
        EDU_PROGRAM, Decimal("100000"), Decimal("5000000"), category_id="edu"
    )

    assert result.rate == Decimal("0.01")
    assert result.max_reward is None
    assert result.metadata.policy_source == PolicySource.program_default
    assert result.reward == Decimal("1000.00")


def test_level_default_without_category() -> None:
    result = resolve_cashback_policy(EDU_PROGRAM, Decimal("100000"), Decimal("15000000"))

    assert result.rate == Decimal("0.02")
    assert result.metadata.policy_source == PolicySource.level_default
    assert result.metadata.level_id == "l1"
    assert result.metadata.rule_id is None


def test_category_rule_overrides_level_default() -> None:
    result = resolve_cashback_policy(
        EDU_PROGRAM, Decimal("5000000"), Decimal("15000000"), category_id="edu"
    )

    assert result.rate == Decimal("0.1")
    assert result.max_reward == Decimal("300000")
    assert result.reward == Decimal("300000")
    assert result.metadata.policy_source == PolicySource.category_rule
    assert result.metadata.rule_id == "edu"
    assert result.metadata.rule_max_reward == Decimal("300000")


def test_level_threshold_is_inclusive() -> None:
    result = resolve_cashback_policy(EDU_PROGRAM, Decimal("1"), Decimal("10000000"))

    assert result.metadata.policy_source == PolicySource.level_default


def test_highest_reached_level_wins_and_ties_keep_declaration_order() -> None:
    program = parse_cashback_config(
        {
            "program": {
                "levels": [
                    {"id": "low", "minTotalSpend": 0, "defaultRate": 1},
                    {"id": "high_a", "minTotalSpend": 1000, "defaultRate": 2},
                    {"id": "high_b", "minTotalSpend": 1000, "defaultRate": 3},
                ]
            }
        }
    )

    assert select_level(program.levels, Decimal("999")).id == "low"
    assert select_level(program.levels, Decimal("5000")).id == "high_a"


def test_first_declared_matching_rule_wins() -> None:
    program = parse_cashback_config(
        {
            "program": {
                "levels": [
                    {
                        "minTotalSpend": 0,
                        "rules": [
                            {"id": "first", "categoryIds": [7, 8], "rate": 5},
                            {"id": "second", "categoryIds": [7], "rate": 9},
                        ],
                    }
                ]
            }
        }
    )

    result = resolve_cashback_policy(program, Decimal("100"), Decimal("0"), category_id=7)

    assert result.metadata.rule_id == "first"
    assert result.rate == Decimal("0.05")


def test_level_without_default_rate_inherits_program_default() -> None:
    program = parse_cashback_config(
        {"program": {"defaultRate": 1.5, "levels": [{"minTotalSpend": 0}]}}
    )

    result = resolve_cashback_policy(program, Decimal("100"), Decimal("0"))

    assert result.rate == Decimal("0.015")
    assert result.metadata.policy_source == PolicySource.level_default


def test_legacy_flat_rate() -> None:
    program = parse_cashback_config({"rate": 1})

    result = resolve_cashback_policy(program, Decimal("-250000"), Decimal("0"))

    assert result.rate == Decimal("0.01")
    assert result.reward == Decimal("2500.00")
    assert result.metadata.policy_source == PolicySource.legacy


def test_legacy_tier_category_match_by_name() -> None:
    program = parse_cashback_config(
        {
            "rate": 1,
            "has_tiers": True,
            "tiers": [
                {"min_spend": 0, "categories": {"Fuel": 2}},
                {
                    "min_spend": 1000000,
                    "categories": {"Dining": {"rate": 5, "maxAmount": 100000}},
                    "default_rate": 3,
                },
            ],
        }
    )

    dining = resolve_cashback_policy(
        program, Decimal("100000"), Decimal("2000000"), category_id=4, category_name="Dining out"
    )
    other = resolve_cashback_policy(
        program, Decimal("100000"), Decimal("2000000"), category_id=5, category_name="Books"
    )
    low_tier = resolve_cashback_policy(
        program, Decimal("100000"), Decimal("10"), category_id=6, category_name="fuel"
    )

    assert dining.rate == Decimal("0.05")
    assert dining.max_reward == Decimal("100000")
    assert dining.metadata.rule_id == "legacy:tier_2:Dining"
    assert other.rate == Decimal("0.03")
    assert other.metadata.rule_id is None
    assert low_tier.rate == Decimal("0.02")
    assert low_tier.metadata.policy_source == PolicySource.legacy


def test_metadata_serializes_camel_case_and_reads_both_spellings() -> None:
    result = resolve_cashback_policy(
        EDU_PROGRAM, Decimal("100"), Decimal("15000000"), category_id="edu"
    )
    stored = result.metadata.to_storage()

    assert stored["policySource"] == "category_rule"
    assert stored["ruleMaxReward"] == "300000"
    assert normalize_policy_metadata(json.dumps(stored)) == result.metadata

    snake = normalize_policy_metadata(
        {"policy_source": "level_default", "rate": "0.02", "level_name": "Gold"}
    )
    assert snake.level_name == "Gold"
    assert normalize_policy_metadata("not json") is None
    assert normalize_policy_metadata({"reason": "missing source"}) is None
    assert normalize_policy_metadata(None) is None


def test_policy_label() -> None:
    result = resolve_cashback_policy(
        EDU_PROGRAM, Decimal("100"), Decimal("15000000"), category_id="edu"
    )

    label = format_policy_label(result.metadata)

    assert label == "Level 1 category rule | Level 1 (>= 10,000,000) | 10.0% | max 300,000"
    assert format_policy_label(None, "Manual") == "Manual"
