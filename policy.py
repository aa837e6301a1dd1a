from __future__ import annotations

import json
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Union

from pydantic import ValidationError

from cashback_config import (
    CashbackLevel,
    CashbackProgram,
    ConfigSchema,
    LegacyCategoryRate,
    LegacyTier,
)
from schemas import PolicyResolution, PolicyResolutionMetadata, PolicySource


CENT = Decimal("0.01")

CategoryKey = Union[str, int, None]


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _category_key(category_id: CategoryKey) -> Optional[str]:
    if category_id is None:
        return None
    text = str(category_id).strip()
    return text or None


def select_level(
    levels: tuple[CashbackLevel, ...], cycle_spent: Decimal
) -> Optional[CashbackLevel]:
    """Highest threshold reached wins; equal thresholds keep declaration order."""
    ordered = sorted(levels, key=lambda level: level.min_total_spend, reverse=True)
    for level in ordered:
        if cycle_spent >= level.min_total_spend:
            return level
    return None


def select_legacy_tier(
    tiers: tuple[LegacyTier, ...], cycle_spent: Decimal
) -> Optional[tuple[int, LegacyTier]]:
    ordered = sorted(enumerate(tiers), key=lambda pair: pair[1].min_spend, reverse=True)
    for index, tier in ordered:
        if cycle_spent >= tier.min_spend:
            return index, tier
    return None


def _match_legacy_category(
    tier: LegacyTier, category_name: Optional[str]
) -> Optional[LegacyCategoryRate]:
    if not category_name:
        return None
    lowered = category_name.lower()
    for entry in tier.categories:
        if entry.key.lower() in lowered:
            return entry
    return None


def _resolution(
    amount: Decimal,
    rate: Decimal,
    max_reward: Optional[Decimal],
    metadata: PolicyResolutionMetadata,
) -> PolicyResolution:
    reward = quantize_money(amount * rate)
    if max_reward is not None:
        reward = min(reward, max_reward)
    return PolicyResolution(
        rate=rate, max_reward=max_reward, reward=reward, metadata=metadata
    )


def _resolve_legacy(
    program: CashbackProgram,
    cycle_spent: Decimal,
    category_key: Optional[str],
    category_name: Optional[str],
) -> tuple[Decimal, Optional[Decimal], PolicyResolutionMetadata]:
    rate = program.default_rate
    metadata = PolicyResolutionMetadata(
        policy_source=PolicySource.legacy,
        reason="Legacy flat rate",
        rate=rate,
        category_id=category_key,
    )
    picked = select_legacy_tier(program.legacy_tiers, cycle_spent)
    if picked is None:
        return rate, None, metadata

    index, tier = picked
    match = _match_legacy_category(tier, category_name or category_key)
    if match is not None:
        rule_max = match.max_amount
        metadata = metadata.model_copy(
            update={
                "reason": f"Legacy tier >= {tier.min_spend}: {match.key}",
                "rate": match.rate,
                "level_id": f"legacy:tier_{index + 1}",
                "level_min_spend": tier.min_spend,
                "rule_id": f"legacy:tier_{index + 1}:{match.key}",
                "rule_max_reward": rule_max,
            }
        )
        return match.rate, rule_max, metadata
    if tier.default_rate is not None:
        metadata = metadata.model_copy(
            update={
                "reason": f"Legacy tier >= {tier.min_spend} default",
                "rate": tier.default_rate,
                "level_id": f"legacy:tier_{index + 1}",
                "level_min_spend": tier.min_spend,
            }
        )
        return tier.default_rate, None, metadata
    return rate, None, metadata


def resolve_cashback_policy(
    program: CashbackProgram,
    amount: Decimal,
    cycle_spent_so_far: Decimal,
    category_id: CategoryKey = None,
    category_name: Optional[str] = None,
) -> PolicyResolution:
    """Resolve the rate and cap that apply to one spend event.

    Each layer replaces the one below it: a reached level replaces the program
    default, and the first declared rule of that level listing the category
    replaces the level default.  Rates are never blended.
    """
    amount = abs(Decimal(amount))
    spent = Decimal(cycle_spent_so_far)
    category_key = _category_key(category_id)

    if program.schema == ConfigSchema.legacy:
        rate, cap, metadata = _resolve_legacy(program, spent, category_key, category_name)
        return _resolution(amount, rate, cap, metadata)

    level = select_level(program.levels, spent)
    if level is None:
        metadata = PolicyResolutionMetadata(
            policy_source=PolicySource.program_default,
            reason="Program default (no level reached)",
            rate=program.default_rate,
            category_id=category_key,
        )
        return _resolution(amount, program.default_rate, None, metadata)

    rate = level.default_rate if level.default_rate is not None else program.default_rate
    metadata = PolicyResolutionMetadata(
        policy_source=PolicySource.level_default,
        reason=f"{level.name} default",
        rate=rate,
        level_id=level.id,
        level_name=level.name,
        level_min_spend=level.min_total_spend,
        category_id=category_key,
    )

    if category_key is not None:
        rule = next((r for r in level.rules if r.matches(category_key)), None)
        if rule is not None:
            metadata = metadata.model_copy(
                update={
                    "policy_source": PolicySource.category_rule,
                    "reason": f"{level.name} category rule",
                    "rate": rule.rate,
                    "rule_id": rule.id,
                    "rule_max_reward": rule.max_reward,
                }
            )
            return _resolution(amount, rule.rate, rule.max_reward, metadata)

    return _resolution(amount, rate, None, metadata)


def normalize_policy_metadata(raw: Any) -> Optional[PolicyResolutionMetadata]:
    if not raw:
        return None
    if isinstance(raw, PolicyResolutionMetadata):
        return raw
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict):
        return None
    try:
        return PolicyResolutionMetadata.model_validate(raw)
    except ValidationError:
        return None


def format_percent(rate: Optional[Decimal], fallback: str = "--") -> str:
    if rate is None:
        return fallback
    return f"{Decimal(rate) * 100:.1f}%"


def format_policy_label(
    metadata: Optional[PolicyResolutionMetadata], fallback: Optional[str] = None
) -> Optional[str]:
    if metadata is None:
        return fallback

    rate_text = format_percent(metadata.rate)
    max_text = (
        f"max {metadata.rule_max_reward:,.0f}"
        if metadata.rule_max_reward is not None
        else None
    )
    level_text = None
    if metadata.level_name:
        level_text = metadata.level_name
        if metadata.level_min_spend:
            level_text += f" (>= {metadata.level_min_spend:,.0f})"

    if metadata.policy_source == PolicySource.category_rule:
        parts = [metadata.reason or "Category rule", level_text, rate_text, max_text]
    elif metadata.policy_source == PolicySource.level_default:
        parts = [level_text or "Level default", rate_text]
    elif metadata.policy_source == PolicySource.program_default:
        parts = [f"Default {rate_text}", level_text]
    else:
        parts = [metadata.reason or "Default policy", rate_text]
    return " | ".join(part for part in parts if part)
