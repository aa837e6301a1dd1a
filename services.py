from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cashback_config import CashbackProgram, parse_cashback_config
from config import get_settings
from cycles import (
    CycleRange,
    cycle_range,
    cycle_range_for_tag,
    cycle_tags_for,
    format_cycle_label,
    iso_alias,
    legacy_alias,
    local_today,
    recent_cycle_ranges,
    tag_aliases,
)
from models import (
    Account,
    AccountType,
    CashbackCycle,
    CashbackEntry,
    CashbackMode,
    CashbackPreference,
    Category,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from policy import normalize_policy_metadata, quantize_money, resolve_cashback_policy
from schemas import (
    AccountIn,
    CategoryIn,
    CycleStats,
    PolicyResolution,
    TransactionIn,
)


logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
QUALIFYING_TYPES = (TransactionType.expense, TransactionType.debt)

CycleReference = Union[date, datetime, str]


class CycleNotFound(ValueError):
    pass


class CashbackMetadataMissing(RuntimeError):
    """A policy resolution reached persistence without its explanation."""


def compile_exclusion_pattern(patterns: Iterable[str]) -> Optional[re.Pattern[str]]:
    parts = [re.escape(p.strip()) for p in patterns if p and p.strip()]
    if not parts:
        return None
    return re.compile("|".join(parts), re.IGNORECASE)


def _reference_moment(reference: CycleReference) -> Union[date, datetime]:
    if not isinstance(reference, str):
        return reference
    try:
        return date.fromisoformat(reference)
    except ValueError as exc:
        raise ValueError("Invalid cycle reference") from exc


@dataclass(frozen=True)
class CycleHandle:
    id: int
    tag: str


@dataclass
class CashbackSyncResult:
    cycle_id: int
    entry: CashbackEntry


@dataclass(frozen=True)
class RewardTotals:
    real_awarded: Decimal
    virtual_profit: Decimal
    overflow_loss: Decimal
    is_exhausted: bool


def entry_terms(
    txn: Transaction, resolution: PolicyResolution
) -> tuple[CashbackMode, Decimal, bool]:
    """Mode, amount and budget flag of the entry a transaction produces."""
    magnitude = abs(Decimal(txn.amount))
    fixed = Decimal(txn.cashback_share_fixed or 0)
    percent = Decimal(txn.cashback_share_percent or 0)
    preference = txn.cashback_mode or CashbackPreference.none_back

    if preference == CashbackPreference.real_fixed:
        return CashbackMode.real, quantize_money(fixed), True
    if preference == CashbackPreference.real_percent:
        rate = percent if percent else resolution.rate
        return CashbackMode.real, quantize_money(magnitude * rate + fixed), True
    if preference == CashbackPreference.voluntary:
        return CashbackMode.voluntary, quantize_money(fixed), False
    return CashbackMode.virtual, quantize_money(magnitude * resolution.rate), True


def aggregate_entries(
    entries: Iterable[CashbackEntry], max_budget: Optional[Decimal]
) -> RewardTotals:
    """Fold a cycle's entries into capped reward totals.

    Real rewards consume the budget before virtual ones.  Virtual entries
    resolved under a capped rule are summed per rule and capped first; what a
    cap cuts off is reported as overflow loss together with voluntary
    entries and anything the budget cuts off.
    """
    real_total = ZERO
    virtual_raw = ZERO
    loss = ZERO
    rule_groups: dict[str, list[Decimal]] = {}

    for entry in entries:
        amount = Decimal(entry.amount or 0)
        if entry.mode == CashbackMode.real:
            if entry.counts_to_budget:
                real_total += amount
            continue
        if entry.mode == CashbackMode.voluntary:
            loss += amount
            continue
        meta = normalize_policy_metadata(entry.policy_metadata)
        if meta is not None and meta.rule_id and meta.rule_max_reward is not None:
            group = rule_groups.setdefault(meta.rule_id, [ZERO, meta.rule_max_reward])
            group[0] += amount
        else:
            virtual_raw += amount

    for total, cap in rule_groups.values():
        capped = min(total, cap)
        virtual_raw += capped
        loss += total - capped

    if max_budget is None:
        real_effective = real_total
        virtual_effective = virtual_raw
    else:
        cap_for_virtual = max(ZERO, max_budget - real_total)
        virtual_effective = min(virtual_raw, cap_for_virtual)
        loss += virtual_raw - virtual_effective
        loss += max(ZERO, real_total - max_budget)
        real_effective = min(real_total, max_budget)

    is_exhausted = max_budget is not None and (
        real_total >= max_budget or real_total + virtual_effective >= max_budget
    )
    return RewardTotals(
        real_awarded=quantize_money(real_effective),
        virtual_profit=quantize_money(virtual_effective),
        overflow_loss=quantize_money(loss),
        is_exhausted=is_exhausted,
    )


class CycleRegistry:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find(self, account_id: int, tag: str) -> Optional[CashbackCycle]:
        stmt = select(CashbackCycle).where(
            CashbackCycle.account_id == account_id, CashbackCycle.cycle_tag == tag
        )
        return self.session.scalar(stmt)

    def find_any(self, account_id: int, tag: str) -> Optional[CashbackCycle]:
        """Look a cycle up under its canonical tag first, then its aliases."""
        canonical = iso_alias(tag) or tag
        for candidate in [canonical] + sorted(tag_aliases(tag) - {canonical}):
            cycle = self.find(account_id, candidate)
            if cycle is not None:
                return cycle
        return None

    def ensure(
        self,
        account_id: int,
        tag: str,
        raw_config: object,
        fallback_tag: Optional[str] = None,
    ) -> CycleHandle:
        cycle = self.find(account_id, tag)
        if cycle is not None:
            return CycleHandle(cycle.id, cycle.cycle_tag)

        if fallback_tag and fallback_tag != tag:
            cycle = self.find(account_id, fallback_tag)
            if cycle is not None:
                return CycleHandle(cycle.id, cycle.cycle_tag)

        program = parse_cashback_config(raw_config)
        try:
            with self.session.begin_nested():
                cycle = CashbackCycle(
                    account_id=account_id,
                    cycle_tag=tag,
                    max_budget=program.max_budget,
                    min_spend_target=program.min_spend_target,
                    spent_amount=ZERO,
                    real_awarded=ZERO,
                    virtual_profit=ZERO,
                    overflow_loss=ZERO,
                    is_exhausted=False,
                    met_min_spend=program.min_spend_target is None,
                )
                self.session.add(cycle)
                self.session.flush()
        except IntegrityError:
            logger.info(
                f"cycle_registry: create conflict account_id={account_id} tag={tag}, refetching"
            )
            cycle = self.find(account_id, tag)
            if cycle is None:
                raise
            return CycleHandle(cycle.id, cycle.cycle_tag)

        logger.info(
            f"cycle_registry: created cycle_id={cycle.id} account_id={account_id} tag={tag}"
        )
        return CycleHandle(cycle.id, cycle.cycle_tag)


class CashbackService:
    def __init__(
        self, session: Session, exclusion_patterns: Optional[Sequence[str]] = None
    ) -> None:
        self.session = session
        if exclusion_patterns is None:
            exclusion_patterns = get_settings().excluded_note_patterns
        self.exclusion = compile_exclusion_pattern(exclusion_patterns)
        self.registry = CycleRegistry(session)

    def _account(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise ValueError("Account not found")
        return account

    def is_excluded(self, note: Optional[str]) -> bool:
        return bool(note and self.exclusion and self.exclusion.search(note))

    def qualifies(self, txn: Transaction, account: Account) -> bool:
        return (
            account.type == AccountType.credit_card
            and txn.status == TransactionStatus.posted
            and txn.type in QUALIFYING_TYPES
            and not self.is_excluded(txn.note)
        )

    def _resolve(
        self, program: CashbackProgram, txn: Transaction, cycle_spent: Decimal
    ) -> PolicyResolution:
        category_name = txn.category.name if txn.category else None
        return resolve_cashback_policy(
            program,
            abs(Decimal(txn.amount)),
            cycle_spent,
            category_id=txn.category_id,
            category_name=category_name,
        )

    def _upsert_entry(
        self,
        account_id: int,
        cycle_id: int,
        txn: Transaction,
        resolution: PolicyResolution,
    ) -> CashbackEntry:
        if resolution.metadata is None:
            raise CashbackMetadataMissing(
                f"Policy resolution for transaction {txn.id} carries no metadata"
            )
        mode, amount, counts_to_budget = entry_terms(txn, resolution)
        entry = self.session.scalar(
            select(CashbackEntry).where(
                CashbackEntry.account_id == account_id,
                CashbackEntry.transaction_id == txn.id,
            )
        )
        if entry is None:
            entry = CashbackEntry(account_id=account_id, transaction_id=txn.id)
            self.session.add(entry)
        entry.cycle_id = cycle_id
        entry.mode = mode
        entry.amount = amount
        entry.counts_to_budget = counts_to_budget
        entry.policy_metadata = resolution.metadata.to_storage()
        if mode == CashbackMode.virtual:
            entry.note = f"Projected: {resolution.metadata.reason}"
        else:
            entry.note = txn.note or f"Manual: {resolution.metadata.reason}"
        return entry

    def sync_transaction(self, txn: Transaction) -> Optional[CashbackSyncResult]:
        account = self._account(txn.account_id)
        if self.qualifies(txn, account):
            return self.on_transaction_qualifies(txn)
        self.on_transaction_removed(txn.id)
        return None

    def on_transaction_qualifies(self, txn: Transaction) -> CashbackSyncResult:
        account = self._account(txn.account_id)
        program = parse_cashback_config(account.cashback_config)
        tag, legacy_tag = cycle_tags_for(program, txn.occurred_at)
        handle = self.registry.ensure(
            account.id, tag, account.cashback_config, fallback_tag=legacy_tag
        )
        txn.persisted_cycle_tag = handle.tag

        to_recompute: set[int] = set()
        previous = self.session.scalars(
            select(CashbackEntry).where(CashbackEntry.transaction_id == txn.id)
        ).all()
        for old in previous:
            if old.cycle_id != handle.id:
                to_recompute.add(old.cycle_id)
            if old.account_id != account.id:
                self.session.delete(old)
        self.session.flush()

        cycle = self.session.get(CashbackCycle, handle.id)
        resolution = self._resolve(program, txn, Decimal(cycle.spent_amount or 0))
        entry = self._upsert_entry(account.id, handle.id, txn, resolution)
        self.session.flush()

        for cycle_id in sorted(to_recompute):
            self._recompute(cycle_id)
        self._recompute(handle.id)
        self.session.commit()
        return CashbackSyncResult(cycle_id=handle.id, entry=entry)

    def detach_entries(self, transaction_id: int) -> set[int]:
        """Delete a transaction's entries; returns the cycles they belonged to."""
        entries = self.session.scalars(
            select(CashbackEntry).where(CashbackEntry.transaction_id == transaction_id)
        ).all()
        cycle_ids = {entry.cycle_id for entry in entries}
        for entry in entries:
            self.session.delete(entry)
        self.session.flush()
        return cycle_ids

    def recompute_cycles(self, cycle_ids: Iterable[int]) -> None:
        for cycle_id in sorted(set(cycle_ids)):
            self._recompute(cycle_id)
        self.session.commit()

    def on_transaction_removed(self, transaction_id: int) -> None:
        self.recompute_cycles(self.detach_entries(transaction_id))

    def recompute_cycle(self, cycle_id: int) -> CashbackCycle:
        cycle = self._recompute(cycle_id)
        self.session.commit()
        return cycle

    def _owned_tags(self, cycle: CashbackCycle) -> set[str]:
        """Tags whose transactions belong to ``cycle``.

        An alias spelling counts only while no other row of the account is
        stored under it; otherwise that row owns those transactions.
        """
        tags = {cycle.cycle_tag}
        for alias in tag_aliases(cycle.cycle_tag) - tags:
            if self.registry.find(cycle.account_id, alias) is None:
                tags.add(alias)
        return tags

    def _recompute(self, cycle_id: int) -> CashbackCycle:
        cycle = self.session.get(CashbackCycle, cycle_id)
        if not cycle:
            raise CycleNotFound("Cycle not found")
        account = self._account(cycle.account_id)
        program = parse_cashback_config(account.cashback_config)

        stmt = (
            select(Transaction)
            .where(
                Transaction.account_id == account.id,
                Transaction.status == TransactionStatus.posted,
                Transaction.type.in_(QUALIFYING_TYPES),
                Transaction.persisted_cycle_tag.in_(self._owned_tags(cycle)),
            )
            .order_by(Transaction.occurred_at, Transaction.id)
        )
        qualifying = [
            txn for txn in self.session.scalars(stmt).all() if not self.is_excluded(txn.note)
        ]

        spent = quantize_money(sum((abs(Decimal(t.amount)) for t in qualifying), ZERO))
        target = cycle.min_spend_target
        met_min_spend = target is None or spent >= target

        # every entry sees the settled cycle total, not a running one
        for txn in qualifying:
            resolution = self._resolve(program, txn, spent)
            try:
                with self.session.begin_nested():
                    self._upsert_entry(account.id, cycle.id, txn, resolution)
                    self.session.flush()
            except SQLAlchemyError as exc:
                logger.error(
                    f"cashback_recompute: entry upsert failed cycle_id={cycle.id} "
                    f"transaction_id={txn.id} error={exc}"
                )

        qualifying_ids = [txn.id for txn in qualifying]
        stale = select(CashbackEntry).where(CashbackEntry.cycle_id == cycle.id)
        if qualifying_ids:
            stale = stale.where(CashbackEntry.transaction_id.not_in(qualifying_ids))
        for entry in self.session.scalars(stale).all():
            self.session.delete(entry)
        self.session.flush()

        entries = self.session.scalars(
            select(CashbackEntry).where(CashbackEntry.cycle_id == cycle.id)
        ).all()
        totals = aggregate_entries(entries, cycle.max_budget)

        cycle.spent_amount = spent
        cycle.met_min_spend = met_min_spend
        cycle.real_awarded = totals.real_awarded
        cycle.virtual_profit = totals.virtual_profit
        cycle.overflow_loss = totals.overflow_loss
        cycle.is_exhausted = totals.is_exhausted
        self.session.flush()

        logger.info(
            f"cashback_recompute: cycle_id={cycle.id} tag={cycle.cycle_tag} "
            f"entries={len(entries)} spent={spent} real={totals.real_awarded} "
            f"virtual={totals.virtual_profit} overflow={totals.overflow_loss} "
            f"exhausted={totals.is_exhausted}"
        )
        return cycle

    def get_cycle_stats(self, account_id: int, reference: CycleReference) -> CycleStats:
        account = self._account(account_id)
        program = parse_cashback_config(account.cashback_config)

        rng: Optional[CycleRange]
        tag = iso_alias(reference) if isinstance(reference, str) else None
        if tag is not None:
            rng = cycle_range_for_tag(program, tag)
        else:
            moment = _reference_moment(reference)
            rng = cycle_range(program, moment)
            tag, _ = cycle_tags_for(program, moment)

        cycle = self.registry.find_any(account_id, tag)
        stats = CycleStats(
            account_id=account_id,
            cycle_tag=tag,
            legacy_tag=legacy_alias(tag),
            start=rng.start if rng else None,
            end=rng.end if rng else None,
            label=format_cycle_label(rng) if rng else None,
            max_budget=program.max_budget,
            min_spend_target=program.min_spend_target,
            met_min_spend=program.min_spend_target is None,
        )
        if cycle is not None:
            stats = stats.model_copy(
                update={
                    "cycle_id": cycle.id,
                    "cycle_tag": cycle.cycle_tag,
                    "max_budget": cycle.max_budget,
                    "min_spend_target": cycle.min_spend_target,
                    "spent_amount": cycle.spent_amount,
                    "real_awarded": cycle.real_awarded,
                    "virtual_profit": cycle.virtual_profit,
                    "overflow_loss": cycle.overflow_loss,
                    "is_exhausted": cycle.is_exhausted,
                    "met_min_spend": cycle.met_min_spend,
                }
            )

        earned = stats.real_awarded + stats.virtual_profit
        update: dict[str, object] = {}
        if stats.max_budget is not None:
            update["remaining_budget"] = max(ZERO, stats.max_budget - earned)
            if stats.max_budget > 0:
                update["budget_used_percent"] = quantize_money(
                    min(HUNDRED, earned / stats.max_budget * HUNDRED)
                )
        if stats.min_spend_target is not None:
            update["remaining_min_spend"] = max(
                ZERO, stats.min_spend_target - stats.spent_amount
            )
        return stats.model_copy(update=update)

    def list_cycles(self, account_id: int) -> list[CashbackCycle]:
        self._account(account_id)
        cycles = self.session.scalars(
            select(CashbackCycle).where(CashbackCycle.account_id == account_id)
        ).all()
        return sorted(
            cycles,
            key=lambda c: (iso_alias(c.cycle_tag) or c.cycle_tag, c.id),
            reverse=True,
        )

    def recent_cycle_stats(
        self, account_id: int, reference: Optional[date] = None, count: int = 6
    ) -> list[CycleStats]:
        """Stats for the cycle holding ``reference`` and the ones before it."""
        account = self._account(account_id)
        program = parse_cashback_config(account.cashback_config)
        ranges = recent_cycle_ranges(program, reference or local_today(), count)
        return [self.get_cycle_stats(account_id, rng.tag) for rng in ranges]

    def list_entries(self, cycle_id: int) -> list[CashbackEntry]:
        if not self.session.get(CashbackCycle, cycle_id):
            raise CycleNotFound("Cycle not found")
        stmt = (
            select(CashbackEntry)
            .where(CashbackEntry.cycle_id == cycle_id)
            .order_by(CashbackEntry.transaction_id)
        )
        return self.session.scalars(stmt).all()

    def simulate(
        self,
        account_id: int,
        amount: Decimal,
        category_id: Optional[int] = None,
        reference: Optional[date] = None,
    ) -> PolicyResolution:
        account = self._account(account_id)
        program = parse_cashback_config(account.cashback_config)
        tag, _ = cycle_tags_for(program, reference or local_today())
        cycle = self.registry.find_any(account_id, tag)
        spent = Decimal(cycle.spent_amount) if cycle else ZERO

        category_name = None
        if category_id is not None:
            category = self.session.get(Category, category_id)
            category_name = category.name if category else None
        return resolve_cashback_policy(
            program,
            Decimal(amount),
            spent,
            category_id=category_id,
            category_name=category_name,
        )

    def recompute_open_cycles(self, reference: Optional[date] = None) -> int:
        """Recompute the cycle holding ``reference`` (today) for every card."""
        reference = reference or local_today()
        accounts = self.session.scalars(
            select(Account).where(
                Account.type == AccountType.credit_card,
                Account.cashback_config.is_not(None),
            )
        ).all()
        count = 0
        for account in accounts:
            program = parse_cashback_config(account.cashback_config)
            tag, _ = cycle_tags_for(program, reference)
            cycle = self.registry.find_any(account.id, tag)
            if cycle is None:
                continue
            try:
                self._recompute(cycle.id)
            except (SQLAlchemyError, ValueError) as exc:
                logger.error(
                    f"cashback_recompute: open cycle failed account_id={account.id} "
                    f"cycle_id={cycle.id} error={exc}"
                )
                continue
            count += 1
        self.session.commit()
        return count


def rebuild_cashback(session: Session, account_id: Optional[int] = None) -> int:
    """Drop every cycle and entry, re-tag the ledger and rebuild from scratch."""
    stmt = select(Account).where(Account.type == AccountType.credit_card)
    if account_id is not None:
        stmt = stmt.where(Account.id == account_id)
    accounts = session.scalars(stmt).all()
    account_ids = [account.id for account in accounts]
    if not account_ids:
        return 0

    session.execute(delete(CashbackEntry).where(CashbackEntry.account_id.in_(account_ids)))
    session.execute(delete(CashbackCycle).where(CashbackCycle.account_id.in_(account_ids)))
    session.flush()

    service = CashbackService(session)
    cycle_ids: set[int] = set()
    for account in accounts:
        program = parse_cashback_config(account.cashback_config)
        txns = session.scalars(
            select(Transaction)
            .where(Transaction.account_id == account.id)
            .order_by(Transaction.occurred_at, Transaction.id)
        ).all()
        for txn in txns:
            tag, legacy_tag = cycle_tags_for(program, txn.occurred_at)
            if not service.qualifies(txn, account):
                txn.persisted_cycle_tag = tag
                continue
            handle = service.registry.ensure(
                account.id, tag, account.cashback_config, fallback_tag=legacy_tag
            )
            txn.persisted_cycle_tag = handle.tag
            cycle_ids.add(handle.id)
    session.flush()

    for cycle_id in sorted(cycle_ids):
        try:
            service._recompute(cycle_id)
        except (SQLAlchemyError, ValueError) as exc:
            logger.error(f"cashback_rebuild: cycle_id={cycle_id} failed error={exc}")
    session.commit()
    logger.info(f"cashback_rebuild: accounts={len(account_ids)} cycles={len(cycle_ids)}")
    return len(cycle_ids)


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Account]:
        stmt = select(Account).where(Account.archived_at.is_(None)).order_by(Account.name)
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise ValueError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(
            name=data.name.strip(),
            type=data.type,
            cashback_config=data.cashback_config,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update_cashback_config(self, account_id: int, raw_config: object) -> Account:
        account = self.get(account_id)
        account.cashback_config = raw_config
        self.session.flush()
        service = CashbackService(self.session)
        for cycle in service.list_cycles(account_id):
            service._recompute(cycle.id)
        self.session.commit()
        return account


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        return self.session.scalars(select(Category).order_by(Category.name)).all()

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        existing = self.session.scalar(select(Category).where(Category.name == name))
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(name=name)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.cashback = CashbackService(session)

    def _validate(self, data: TransactionIn) -> None:
        if not self.session.get(Account, data.account_id):
            raise ValueError("Account not found")
        if data.category_id is not None and not self.session.get(
            Category, data.category_id
        ):
            raise ValueError("Category not found")

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        self._validate(data)
        txn = Transaction(
            account_id=data.account_id,
            category_id=data.category_id,
            type=data.type,
            status=TransactionStatus.posted,
            amount=data.amount,
            occurred_at=data.occurred_at,
            note=data.note,
            cashback_mode=data.cashback_mode,
            cashback_share_percent=data.cashback_share_percent,
            cashback_share_fixed=data.cashback_share_fixed,
        )
        self.session.add(txn)
        self.session.flush()
        self.cashback.sync_transaction(txn)
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._validate(data)
        txn.account_id = data.account_id
        txn.category_id = data.category_id
        txn.type = data.type
        txn.amount = data.amount
        txn.occurred_at = data.occurred_at
        txn.note = data.note
        txn.cashback_mode = data.cashback_mode
        txn.cashback_share_percent = data.cashback_share_percent
        txn.cashback_share_fixed = data.cashback_share_fixed
        self.session.flush()
        # relationships loaded before the edit still point at the old rows
        self.session.expire(txn, ["account", "category"])
        self.cashback.sync_transaction(txn)
        self.session.refresh(txn)
        return txn

    def void(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        if txn.status == TransactionStatus.void:
            return
        txn.status = TransactionStatus.void
        self.session.flush()
        self.cashback.on_transaction_removed(txn.id)

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        cycle_ids = self.cashback.detach_entries(txn.id)
        self.session.delete(txn)
        self.session.flush()
        self.cashback.recompute_cycles(cycle_ids)
