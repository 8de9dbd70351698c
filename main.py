import logging
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from auth import (
    SESSION_COOKIE,
    AuthSession,
    decode_session,
    encode_session,
    is_expired,
    start_session,
)
from config import get_settings
from database import SessionLocal, init_db
from ledger import LedgerEntry, SortOption, group_by_day
from models import RecurringRule, Transaction, TransactionType, categories_for
from periods import DateFilter, DateRange, describe_filter, filter_from_params
from receipts import ReceiptRejected, ReceiptStore
from recurrence import local_today
from scheduler import SchedulerManager
from schemas import RecurringRuleIn, RecurringToggleIn, TransactionIn
from services import (
    CSVService,
    LedgerService,
    NotFoundError,
    RecurringRuleService,
    TransactionService,
)


logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title="Spendify")
app.mount(
    "/receipts", StaticFiles(directory=str(settings.receipts_dir)), name="receipts"
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def current_session(request: Request) -> AuthSession:
    token = request.cookies.get(SESSION_COOKIE)
    session = decode_session(token) if token else None
    if session is None or is_expired(session, datetime.now(timezone.utc)):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return session


def filter_from_request(request: Request) -> DateFilter:
    params = request.query_params
    try:
        return filter_from_params(
            params.get("filter"),
            year=params.get("year"),
            month=params.get("month"),
            preset=params.get("preset"),
            start=params.get("start"),
            end=params.get("end"),
            step=params.get("step"),
            today=local_today(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def sort_from_request(request: Request) -> SortOption:
    raw = request.query_params.get("sort") or SortOption.date_desc.value
    try:
        return SortOption(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown sort '{raw}'") from exc


def range_payload(date_range: DateRange) -> dict[str, object]:
    return {
        "start": date_range.start.isoformat() if date_range.start else None,
        "end": date_range.end.isoformat() if date_range.end else None,
    }


def filter_payload(date_filter: DateFilter) -> dict[str, object]:
    return {
        "kind": date_filter.kind.value,
        "year": date_filter.year,
        "month": date_filter.month,
        "preset": date_filter.preset.value if date_filter.preset else None,
    }


def transaction_payload(txn: Transaction) -> dict[str, object]:
    return LedgerEntry.from_transaction(txn).as_dict()


def rule_payload(rule: RecurringRule) -> dict[str, object]:
    return {
        "id": rule.id,
        "user_id": rule.user_id,
        "type": rule.type.value,
        "content": rule.content,
        "amount": rule.amount,
        "category": rule.category,
        "day_of_month": rule.day_of_month,
        "memo": rule.memo,
        "is_active": rule.is_active,
        "created_at": rule.created_at.isoformat(),
        "updated_at": rule.updated_at.isoformat(),
    }


@app.post("/auth/session")
def create_session(request: Request, response: Response):
    user_id = (request.headers.get(settings.identity_header) or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="No authenticated identity")
    session = start_session(user_id)
    response.set_cookie(
        SESSION_COOKIE,
        encode_session(session),
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
    )
    logger.info(f"session_started: owner={user_id}")
    return {"user_id": session.user_id, "expires_at": session.expires_at.isoformat()}


@app.post("/auth/logout")
def logout():
    response = Response(status_code=204)
    response.delete_cookie(SESSION_COOKIE)
    return response


@app.get("/auth/me")
def me(session: AuthSession = Depends(current_session)):
    return {"user_id": session.user_id, "expires_at": session.expires_at.isoformat()}


@app.get("/api/categories")
def api_categories():
    return {txn_type.value: categories_for(txn_type) for txn_type in TransactionType}


@app.get("/api/ledger")
def api_ledger(
    request: Request,
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    date_filter = filter_from_request(request)
    sort_by = sort_from_request(request)
    group = request.query_params.get("group")
    if group not in (None, "", "day"):
        raise HTTPException(status_code=400, detail=f"Unknown grouping '{group}'")
    view = LedgerService(db, session.user_id).ledger(date_filter, sort_by)
    payload = {
        "range": range_payload(view.range),
        "filter": filter_payload(date_filter),
        "filter_label": describe_filter(date_filter),
        "sort": sort_by.value,
        "items": [entry.as_dict() for entry in view.entries],
        "summary": view.summary.as_dict(),
    }
    if group == "day":
        payload["days"] = [
            {
                "date": day.date.isoformat(),
                "summary": day.summary.as_dict(),
                "items": [entry.as_dict() for entry in day.entries],
            }
            for day in group_by_day(view.entries)
        ]
    return payload


@app.get("/api/summary")
def api_summary(
    request: Request,
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    date_filter = filter_from_request(request)
    view = LedgerService(db, session.user_id).ledger(date_filter)
    return {"range": range_payload(view.range), "summary": view.summary.as_dict()}


@app.get("/api/ledger/export.csv")
def api_export_ledger(
    request: Request,
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    date_filter = filter_from_request(request)
    sort_by = sort_from_request(request)
    view = LedgerService(db, session.user_id).ledger(date_filter, sort_by)
    content = CSVService(db, session.user_id).export(view)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=ledger.csv"},
    )


@app.get("/api/transactions/{transaction_id}")
def api_get_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    try:
        txn = TransactionService(db, session.user_id).get(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return transaction_payload(txn)


@app.post("/api/transactions", status_code=201)
def api_create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    try:
        txn = TransactionService(db, session.user_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return transaction_payload(txn)


@app.put("/api/transactions/{transaction_id}")
def api_update_transaction(
    transaction_id: str,
    data: TransactionIn,
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    try:
        txn = TransactionService(db, session.user_id).update(transaction_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return transaction_payload(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def api_delete_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    try:
        TransactionService(db, session.user_id).delete(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/transactions/import/preview")
async def api_import_preview(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    content = (await file.read()).decode("utf-8-sig")
    rows, errors = CSVService(db, session.user_id).preview(content)
    for row in rows:
        row["date"] = row["date"].isoformat()
    return {"rows": rows, "errors": errors}


@app.post("/api/transactions/import/commit")
async def api_import_commit(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    content = (await file.read()).decode("utf-8-sig")
    try:
        count = CSVService(db, session.user_id).commit(content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"imported": count}


@app.post("/api/receipts", status_code=201)
async def api_upload_receipt(
    file: UploadFile = File(...),
    session: AuthSession = Depends(current_session),
):
    content = await file.read()
    try:
        url = ReceiptStore().save(session.user_id, file.filename or "", content)
    except ReceiptRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"url": url}


@app.get("/api/recurring")
def api_list_recurring(
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    service = RecurringRuleService(db, session.user_id)
    return {
        "items": [rule_payload(rule) for rule in service.list()],
        "totals": service.totals().as_dict(),
    }


@app.post("/api/recurring", status_code=201)
def api_create_recurring(
    data: RecurringRuleIn,
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    try:
        rule = RecurringRuleService(db, session.user_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return rule_payload(rule)


@app.put("/api/recurring/{rule_id}")
def api_update_recurring(
    rule_id: str,
    data: RecurringRuleIn,
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    try:
        rule = RecurringRuleService(db, session.user_id).update(rule_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return rule_payload(rule)


@app.post("/api/recurring/{rule_id}/toggle")
def api_toggle_recurring(
    rule_id: str,
    data: RecurringToggleIn,
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    try:
        rule = RecurringRuleService(db, session.user_id).toggle_active(
            rule_id, data.is_active
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return rule_payload(rule)


@app.delete("/api/recurring/{rule_id}", status_code=204)
def api_delete_recurring(
    rule_id: str,
    db: Session = Depends(get_db),
    session: AuthSession = Depends(current_session),
):
    try:
        RecurringRuleService(db, session.user_id).delete(rule_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
