"""Canonical cashback program model and the parser that builds it.

Account rows store their cashback configuration in whatever shape the UI of
the day wrote: ``None``, a JSON string (sometimes encoded twice), a flat
legacy object (``rate``, ``max_amt``, ``cycle_type`` ...) or an object with a
``program`` sub-object holding levels and category rules.  Everything past
this module works on :class:`CashbackProgram` only.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional


logger = logging.getLogger(__name__)

# Raw rates at or above this value are read as percentages (1.5 -> 0.015).
# A literal 50% stored as 0.5 is therefore read as 0.5%; there is no way to
# tell the two apart from the stored value alone.
RATE_PERCENT_THRESHOLD = Decimal("0.3")

ZERO = Decimal("0")
ONE = Decimal("1")
# larger magnitudes are never real amounts and are costly to turn into ints
MAX_EXPONENT = 18


class CycleType(str, Enum):
    calendar_month = "calendar_month"
    statement_cycle = "statement_cycle"


class ConfigSchema(str, Enum):
    legacy = "legacy"
    program = "program"


@dataclass(frozen=True)
class CashbackCategoryRule:
    id: str
    category_ids: frozenset[str]
    rate: Decimal
    max_reward: Optional[Decimal] = None

    def matches(self, category_id: Optional[str]) -> bool:
        return category_id is not None and category_id in self.category_ids


@dataclass(frozen=True)
class CashbackLevel:
    id: str
    name: str
    min_total_spend: Decimal
    default_rate: Optional[Decimal] = None
    max_reward: Optional[Decimal] = None
    rules: tuple[CashbackCategoryRule, ...] = ()


@dataclass(frozen=True)
class LegacyCategoryRate:
    key: str
    rate: Decimal
    max_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class LegacyTier:
    min_spend: Decimal
    categories: tuple[LegacyCategoryRate, ...] = ()
    default_rate: Optional[Decimal] = None


@dataclass(frozen=True)
class CashbackProgram:
    default_rate: Decimal = ZERO
    max_budget: Optional[Decimal] = None
    cycle_type: Optional[CycleType] = None
    statement_day: Optional[int] = None
    due_day: Optional[int] = None
    min_spend_target: Optional[Decimal] = None
    levels: tuple[CashbackLevel, ...] = ()
    legacy_tiers: tuple[LegacyTier, ...] = ()
    # program only when at least one level was parsed
    schema: ConfigSchema = ConfigSchema.legacy


EMPTY_PROGRAM = CashbackProgram()


def to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce a stored scalar to a finite Decimal, or None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, int):
        return _bounded(Decimal(value))
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return _bounded(Decimal(str(value)))
    if isinstance(value, Decimal):
        return _bounded(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            return None
        return _bounded(number)
    return None


def _bounded(number: Decimal) -> Optional[Decimal]:
    if not number.is_finite() or number.adjusted() > MAX_EXPONENT:
        return None
    return number


def normalize_rate(raw: Any) -> Decimal:
    value = to_decimal(raw)
    if value is None or value <= ZERO:
        return ZERO
    if value >= RATE_PERCENT_THRESHOLD:
        value = value / Decimal("100")
    return min(value, ONE)


def clamp_day(raw: Any) -> Optional[int]:
    value = to_decimal(raw)
    if value is None:
        return None
    if value >= 31:
        return 31
    if value < 1:
        return 1
    return int(math.floor(value))


def _positive(raw: Any) -> Optional[Decimal]:
    value = to_decimal(raw)
    if value is None or value <= ZERO:
        return None
    return value


def _first(source: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = source.get(key)
        if value is not None:
            return value
    return None


def _decode(raw: Any) -> Any:
    data = raw
    # double-encoded rows decode to a string on the first pass
    for _ in range(2):
        if not isinstance(data, (str, bytes)):
            break
        data = json.loads(data)
    return data


def parse_cashback_config(raw: Any) -> CashbackProgram:
    """Build a :class:`CashbackProgram` from a stored config; never raises."""
    if raw is None or raw == "":
        logger.debug("cashback_config: empty config, using zero-rate defaults")
        return EMPTY_PROGRAM

    try:
        data = _decode(raw)
    except (ValueError, TypeError) as exc:
        logger.warning(f"cashback_config: malformed json, using defaults error={exc}")
        return EMPTY_PROGRAM

    if not isinstance(data, Mapping):
        logger.warning(
            f"cashback_config: unsupported payload type={type(data).__name__}, using defaults"
        )
        return EMPTY_PROGRAM

    return _parse_candidate(data)


def _parse_candidate(data: Mapping[str, Any]) -> CashbackProgram:
    nested = data.get("program")
    program_raw: Mapping[str, Any] = nested if isinstance(nested, Mapping) else {}

    def pick(*keys: str) -> Any:
        value = _first(program_raw, *keys)
        if value is None:
            value = _first(data, *keys)
        return value

    statement_day = clamp_day(pick("statementDay", "statement_day"))
    cycle_type = CycleType.calendar_month
    if str(pick("cycleType", "cycle_type") or "") == CycleType.statement_cycle.value:
        if statement_day is not None:
            cycle_type = CycleType.statement_cycle
        else:
            logger.debug(
                "cashback_config: statement_cycle without statement day, using calendar_month"
            )

    levels = _parse_levels(pick("levels"))

    legacy_tiers: tuple[LegacyTier, ...] = ()
    tiers_raw = pick("tiers")
    if pick("hasTiers", "has_tiers") and isinstance(tiers_raw, list):
        legacy_tiers = _parse_legacy_tiers(tiers_raw)

    schema = ConfigSchema.program if levels else ConfigSchema.legacy

    return CashbackProgram(
        default_rate=normalize_rate(pick("defaultRate", "default_rate", "rate")),
        max_budget=_positive(pick("maxBudget", "max_budget", "maxAmount", "max_amt")),
        cycle_type=cycle_type,
        statement_day=statement_day,
        due_day=clamp_day(pick("dueDate", "due_date", "dueDay", "due_day")),
        min_spend_target=_positive(
            pick("minSpendTarget", "min_spend_target", "minSpend", "min_spend")
        ),
        levels=levels,
        legacy_tiers=legacy_tiers,
        schema=schema,
    )


def _parse_levels(raw: Any) -> tuple[CashbackLevel, ...]:
    if not isinstance(raw, list):
        return ()
    levels: list[CashbackLevel] = []
    for index, item in enumerate(raw, start=1):
        if not isinstance(item, Mapping):
            continue
        level_id = str(item.get("id") or f"level_{index}")
        min_total = to_decimal(
            _first(item, "minTotalSpend", "min_total_spend", "minSpend", "min_spend")
        )
        rate_raw = _first(item, "defaultRate", "default_rate", "rate")
        rules_raw = _first(item, "rules", "categoryRules", "category_rules")
        levels.append(
            CashbackLevel(
                id=level_id,
                name=str(item.get("name") or level_id),
                min_total_spend=max(min_total or ZERO, ZERO),
                default_rate=normalize_rate(rate_raw) if rate_raw is not None else None,
                max_reward=_positive(_first(item, "maxReward", "max_reward")),
                rules=_parse_rules(rules_raw, level_id),
            )
        )
    return tuple(levels)


def _parse_rules(raw: Any, level_id: str) -> tuple[CashbackCategoryRule, ...]:
    if not isinstance(raw, list):
        return ()
    rules: list[CashbackCategoryRule] = []
    for index, item in enumerate(raw, start=1):
        if not isinstance(item, Mapping):
            continue
        ids_raw = _first(item, "categoryIds", "category_ids")
        if ids_raw is None and item.get("categoryId") is not None:
            ids_raw = [item["categoryId"]]
        if isinstance(ids_raw, (str, int)):
            ids_raw = [ids_raw]
        category_ids = frozenset(
            str(value).strip()
            for value in (ids_raw or [])
            if value is not None and str(value).strip()
        )
        rule_id = str(item.get("id") or f"{level_id}:rule_{index}")
        if not category_ids:
            logger.debug(f"cashback_config: dropping rule without categories rule_id={rule_id}")
            continue
        rules.append(
            CashbackCategoryRule(
                id=rule_id,
                category_ids=category_ids,
                rate=normalize_rate(item.get("rate")),
                max_reward=_positive(_first(item, "maxReward", "max_reward")),
            )
        )
    return tuple(rules)


def _parse_legacy_tiers(raw: list[Any]) -> tuple[LegacyTier, ...]:
    tiers: list[LegacyTier] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        categories: list[LegacyCategoryRate] = []
        categories_raw = item.get("categories")
        if isinstance(categories_raw, Mapping):
            for key, value in categories_raw.items():
                if isinstance(value, Mapping):
                    rate = normalize_rate(value.get("rate"))
                    cap = _positive(_first(value, "maxAmount", "max_amount", "max_amt"))
                else:
                    rate = normalize_rate(value)
                    cap = None
                categories.append(LegacyCategoryRate(key=str(key), rate=rate, max_amount=cap))
        default_raw = _first(item, "defaultRate", "default_rate")
        tiers.append(
            LegacyTier(
                min_spend=max(to_decimal(_first(item, "minSpend", "min_spend")) or ZERO, ZERO),
                categories=tuple(categories),
                default_rate=normalize_rate(default_raw) if default_raw is not None else None,
            )
        )
    return tuple(tiers)
