import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from policy import format_policy_label, normalize_policy_metadata
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountOut,
    CashbackConfigIn,
    CashbackEntryOut,
    CategoryIn,
    CategoryOut,
    CycleOut,
    CycleStats,
    SimulateIn,
    SimulationOut,
    TransactionIn,
    TransactionOut,
)
from services import (
    AccountService,
    CashbackService,
    CategoryService,
    CycleNotFound,
    TransactionService,
    rebuild_cashback,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Cashback Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if settings.scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _entry_out(entry) -> CashbackEntryOut:
    out = CashbackEntryOut.model_validate(entry)
    metadata = normalize_policy_metadata(entry.policy_metadata)
    return out.model_copy(update={"policy_label": format_policy_label(metadata, entry.note)})


@app.post("/api/accounts", response_model=AccountOut, status_code=201)
def create_account(payload: AccountIn, db: Session = Depends(get_db)):
    return AccountService(db).create(payload)


@app.get("/api/accounts", response_model=list[AccountOut])
def list_accounts(db: Session = Depends(get_db)):
    return AccountService(db).list_all()


@app.post("/api/accounts/{account_id}/cashback-config", response_model=AccountOut)
def update_cashback_config(
    account_id: int, payload: CashbackConfigIn, db: Session = Depends(get_db)
):
    try:
        return AccountService(db).update_cashback_config(
            account_id, payload.cashback_config
        )
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(payload: TransactionIn, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).create(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int, payload: TransactionIn, db: Session = Depends(get_db)
):
    service = TransactionService(db)
    try:
        service.get(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        return service.update(transaction_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/transactions/{transaction_id}/void", status_code=204)
def void_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).void(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/transactions/{transaction_id}/delete", status_code=204)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/accounts/{account_id}/cycles", response_model=list[CycleOut])
def list_cycles(account_id: int, db: Session = Depends(get_db)):
    try:
        return CashbackService(db).list_cycles(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/accounts/{account_id}/recent-cycles", response_model=list[CycleStats])
def recent_cycles(
    account_id: int,
    reference: Optional[date] = None,
    count: int = Query(6, ge=1, le=24),
    db: Session = Depends(get_db),
):
    try:
        return CashbackService(db).recent_cycle_stats(account_id, reference, count)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/accounts/{account_id}/cycles/{reference}", response_model=CycleStats)
def cycle_stats(account_id: int, reference: str, db: Session = Depends(get_db)):
    service = CashbackService(db)
    try:
        service._account(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        return service.get_cycle_stats(account_id, reference)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/accounts/{account_id}/simulate", response_model=SimulationOut)
def simulate(account_id: int, payload: SimulateIn, db: Session = Depends(get_db)):
    try:
        resolution = CashbackService(db).simulate(
            account_id,
            payload.amount,
            category_id=payload.category_id,
            reference=payload.reference,
        )
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return SimulationOut(
        **resolution.model_dump(),
        label=format_policy_label(resolution.metadata),
    )


@app.get("/api/cycles/{cycle_id}/entries", response_model=list[CashbackEntryOut])
def cycle_entries(cycle_id: int, db: Session = Depends(get_db)):
    try:
        entries = CashbackService(db).list_entries(cycle_id)
    except CycleNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [_entry_out(entry) for entry in entries]


@app.post("/api/cycles/{cycle_id}/recompute", response_model=CycleOut)
def recompute_cycle(cycle_id: int, db: Session = Depends(get_db)):
    try:
        return CashbackService(db).recompute_cycle(cycle_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/admin/rebuild-cashback")
def admin_rebuild_cashback(
    account_id: Optional[int] = None, db: Session = Depends(get_db)
):
    count = rebuild_cashback(db, account_id=account_id)
    logger.info(f"admin_rebuild_cashback: account_id={account_id} cycles={count}")
    return {"cycles": count}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
