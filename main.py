import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, UploadFile
from sqlalchemy.orm import Session

from auth import read_caller_token
from csv_utils import parse_source_periods
from database import SessionLocal, commit
from errors import PreconditionNotMetError, TransientStorageError
from models import Obligation, PeriodType, Transaction
from scheduler import SchedulerManager
from schemas import CallerContext, ObligationIn, PeriodSummaryRequest, TransactionIn
from services import ObligationService, SummaryService, TransactionService
from source_periods import SourcePeriodCalendar


logger = logging.getLogger(__name__)

app = FastAPI(title="Period Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_caller(x_caller_token: Optional[str] = Header(default=None)) -> CallerContext:
    if not x_caller_token:
        raise HTTPException(status_code=401, detail="Missing caller token")
    try:
        return read_caller_token(x_caller_token)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, PreconditionNotMetError):
        return HTTPException(status_code=412, detail=str(exc))
    if isinstance(exc, TransientStorageError):
        return HTTPException(status_code=503, detail="Storage temporarily unavailable")
    if "not found" in str(exc).lower():
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _obligation_out(obligation: Obligation) -> dict:
    return {
        "id": obligation.id,
        "kind": obligation.kind.value,
        "name": obligation.name,
        "amount_cents": obligation.amount_cents,
        "frequency": obligation.frequency.value,
        "first_date": obligation.first_date.isoformat(),
        "fixed_end_date": (
            obligation.fixed_end_date.isoformat() if obligation.fixed_end_date else None
        ),
        "is_active": obligation.is_active,
        "first_generated_period_id": obligation.first_generated_period_id,
        "last_generated_period_id": obligation.last_generated_period_id,
        "generated_until": (
            obligation.generated_until.isoformat() if obligation.generated_until else None
        ),
        "needs_future_generation": obligation.needs_future_generation,
    }


def _transaction_out(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "type": txn.type.value,
        "status": txn.status.value,
        "amount_cents": txn.amount_cents,
        "category_id": txn.category_id,
        "note": txn.note,
        "splits": [
            {
                "id": split.id,
                "obligation_id": split.obligation_id,
                "category_id": split.category_id,
                "amount_cents": split.amount_cents,
                "payment_type": split.payment_type.value,
                "period_instance_ids": sorted(p.id for p in split.period_instances),
            }
            for split in txn.splits
        ],
    }


@app.get("/api/period-summary")
def api_get_period_summary(
    period_type: PeriodType,
    source_period_id: str,
    include_entries: bool = False,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    request = PeriodSummaryRequest(
        period_type=period_type,
        source_period_id=source_period_id,
        include_entries=include_entries,
    )
    try:
        return SummaryService(db, caller.owner_id).get_period_summary(request)
    except (ValueError, TransientStorageError) as exc:
        raise _http_error(exc) from exc


@app.post("/api/period-summary/recalculate")
def api_recalculate_period_summary(
    payload: PeriodSummaryRequest,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    try:
        return SummaryService(db, caller.owner_id).recalculate_period_summary(payload)
    except (ValueError, TransientStorageError) as exc:
        raise _http_error(exc) from exc


@app.post("/api/accounts")
def api_create_account(
    caller: CallerContext = Depends(get_caller), db: Session = Depends(get_db)
):
    count = SummaryService(db, caller.owner_id).pre_create()
    logger.info(f"account_initialized: user={caller.owner_id} summaries={count}")
    return {"user_id": caller.owner_id, "summaries_created": count}


@app.post("/api/obligations")
def api_create_obligation(
    payload: ObligationIn,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    try:
        obligation = ObligationService(db, caller.owner_id).create(payload)
    except (ValueError, TransientStorageError) as exc:
        raise _http_error(exc) from exc
    return _obligation_out(obligation)


@app.post("/api/obligations/{obligation_id}/extend")
def api_extend_obligation(
    obligation_id: int,
    until: Optional[date] = None,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    service = ObligationService(db, caller.owner_id)
    try:
        result = service.extend(obligation_id, until)
    except (ValueError, TransientStorageError) as exc:
        raise _http_error(exc) from exc
    return {
        "obligation": _obligation_out(service.get(obligation_id)),
        "created_ids": result.created_ids,
    }


@app.post("/api/obligations/{obligation_id}/deactivate")
def api_deactivate_obligation(
    obligation_id: int,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    try:
        count = ObligationService(db, caller.owner_id).deactivate(obligation_id)
    except (ValueError, TransientStorageError) as exc:
        raise _http_error(exc) from exc
    return {"deactivated_periods": count}


@app.post("/api/transactions")
def api_create_transaction(
    payload: TransactionIn,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    service = TransactionService(db, caller.owner_id)
    try:
        txn = service.create(payload)
    except (ValueError, TransientStorageError) as exc:
        raise _http_error(exc) from exc
    return _transaction_out(service.get(txn.id))


@app.put("/api/transactions/{transaction_id}")
def api_update_transaction(
    transaction_id: int,
    payload: TransactionIn,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    service = TransactionService(db, caller.owner_id)
    try:
        service.update(transaction_id, payload)
    except (ValueError, TransientStorageError) as exc:
        raise _http_error(exc) from exc
    return _transaction_out(service.get(transaction_id))


@app.delete("/api/transactions/{transaction_id}")
def api_delete_transaction(
    transaction_id: int,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, caller.owner_id).soft_delete(transaction_id)
    except (ValueError, TransientStorageError) as exc:
        raise _http_error(exc) from exc
    return {"deleted": transaction_id}


@app.post("/api/source-periods/import")
async def api_import_source_periods(
    file: UploadFile = File(...),
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
):
    if caller.role != "admin":
        raise HTTPException(status_code=403, detail="Calendar import requires admin role")
    content = (await file.read()).decode("utf-8-sig")
    rows, errors = parse_source_periods(content)
    if errors:
        raise HTTPException(status_code=400, detail="; ".join(errors[:20]))
    try:
        created = SourcePeriodCalendar(db).import_rows(rows)
        commit(db)
    except (ValueError, TransientStorageError) as exc:
        db.rollback()
        raise _http_error(exc) from exc
    logger.info(f"source_periods_import: rows={len(rows)} created={created}")
    return {"rows": len(rows), "created": created}
