from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models import (
    AccountType,
    CashbackMode,
    CashbackPreference,
    TransactionStatus,
    TransactionType,
)


class PolicySource(str, Enum):
    legacy = "legacy"
    program_default = "program_default"
    level_default = "level_default"
    category_rule = "category_rule"


class PolicyResolutionMetadata(BaseModel):
    """Explanation stored next to every cashback entry.

    Stored as camelCase JSON (``policySource``, ``ruleMaxReward`` ...); rows
    written by older code in snake_case validate as well.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    policy_source: PolicySource
    reason: str = ""
    rate: Decimal = Decimal("0")
    level_id: Optional[str] = None
    level_name: Optional[str] = None
    level_min_spend: Optional[Decimal] = None
    rule_id: Optional[str] = None
    category_id: Optional[str] = None
    rule_max_reward: Optional[Decimal] = None

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PolicyResolution(BaseModel):
    rate: Decimal
    max_reward: Optional[Decimal] = None
    # reward for the resolved amount alone, rule cap applied
    reward: Decimal = Decimal("0")
    metadata: Optional[PolicyResolutionMetadata] = None


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    type: AccountType
    cashback_config: Optional[Any] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class TransactionIn(BaseModel):
    account_id: int
    category_id: Optional[int] = None
    type: TransactionType
    amount: Decimal
    occurred_at: datetime
    note: Optional[str] = Field(default=None, max_length=500)
    cashback_mode: CashbackPreference = CashbackPreference.none_back
    cashback_share_percent: Optional[Decimal] = Field(default=None, ge=0, le=1)
    cashback_share_fixed: Optional[Decimal] = Field(default=None, ge=0)


class SimulateIn(BaseModel):
    amount: Decimal = Field(..., gt=0)
    category_id: Optional[int] = None
    reference: Optional[date] = None


class CashbackEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    cycle_id: int
    transaction_id: int
    mode: CashbackMode
    amount: Decimal
    counts_to_budget: bool
    policy_metadata: Optional[dict] = None
    policy_label: Optional[str] = None
    note: Optional[str] = None


class CycleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    cycle_tag: str
    max_budget: Optional[Decimal] = None
    min_spend_target: Optional[Decimal] = None
    spent_amount: Decimal
    real_awarded: Decimal
    virtual_profit: Decimal
    overflow_loss: Decimal
    is_exhausted: bool
    met_min_spend: bool


class CycleStats(BaseModel):
    cycle_id: Optional[int] = None
    account_id: int
    cycle_tag: str
    legacy_tag: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    label: Optional[str] = None
    max_budget: Optional[Decimal] = None
    min_spend_target: Optional[Decimal] = None
    spent_amount: Decimal = Decimal("0")
    real_awarded: Decimal = Decimal("0")
    virtual_profit: Decimal = Decimal("0")
    overflow_loss: Decimal = Decimal("0")
    is_exhausted: bool = False
    met_min_spend: bool = False
    remaining_budget: Optional[Decimal] = None
    remaining_min_spend: Optional[Decimal] = None
    budget_used_percent: Optional[Decimal] = None


class CashbackConfigIn(BaseModel):
    cashback_config: Optional[Any] = None


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: AccountType
    cashback_config: Optional[Any] = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    category_id: Optional[int] = None
    type: TransactionType
    status: TransactionStatus
    amount: Decimal
    occurred_at: datetime
    note: Optional[str] = None
    persisted_cycle_tag: Optional[str] = None
    cashback_mode: CashbackPreference


class SimulationOut(PolicyResolution):
    label: Optional[str] = None
