import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, init_db
from recurrence import RecurringEngine
from scheduler import SchedulerManager
from schemas import (
    AlertIn,
    AlertPatch,
    BudgetAmountsIn,
    BudgetTemplateIn,
    RecurringTransactionIn,
    RecurringTransactionPatch,
    TemplateCopyIn,
    TransactionIn,
)
from services import (
    AlertNotFound,
    AlertService,
    EnvelopeBudgetService,
    RecurringTransactionNotFound,
    RecurringTransactionService,
    TemplateNotFound,
    TemplateService,
    TransactionNotFound,
    TransactionService,
    ValidationError,
    validate_owner,
)
from store import StorageError

logger = logging.getLogger(__name__)

app = FastAPI(title="SpendSmart")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _owner_from_headers(request: Request) -> Optional[str]:
    user_id = (request.headers.get("x-user-id") or "").strip()
    if user_id:
        return user_id
    auth = request.headers.get("authorization") or ""
    if auth.startswith("Bearer ") and auth[7:].strip():
        return auth[7:].strip()
    return get_settings().default_owner


def current_owner(request: Request) -> str:
    owner = _owner_from_headers(request)
    if not owner:
        raise HTTPException(status_code=401, detail="Unauthorized: User ID required")
    try:
        return validate_owner(owner)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(StorageError)
def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"storage_failure: path={request.url.path} error={exc}")
    return JSONResponse(status_code=500, content={"detail": "Storage failure"})


@app.get("/api/records")
def list_records(
    month: Optional[str] = None,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, owner).list(month)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/records", status_code=201)
def create_record(
    payload: TransactionIn,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    return TransactionService(db, owner).create(payload)


@app.delete("/api/records/{transaction_id}")
def delete_record(
    transaction_id: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, owner).delete(transaction_id)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Transaction deleted successfully"}


@app.get("/api/budget-templates")
def list_templates(owner: str = Depends(current_owner), db: Session = Depends(get_db)):
    return TemplateService(db, owner).list_templates()


@app.post("/api/budget-templates", status_code=201)
def create_template(
    payload: BudgetTemplateIn,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        result = TemplateService(db, owner).create_template(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {**result, "message": "Budget template created successfully"}


@app.post("/api/budget-templates/{template_name}/copy", status_code=201)
def copy_template(
    template_name: str,
    payload: TemplateCopyIn,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        result = TemplateService(db, owner).copy_template(template_name, payload)
    except TemplateNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {**result, "message": "Budget template copied successfully"}


@app.delete("/api/budget-templates/{template_name}")
def delete_template(
    template_name: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        deleted = TemplateService(db, owner).delete_template(template_name)
    except TemplateNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        "template_name": template_name,
        "categories_deleted": deleted,
        "message": "Budget template deleted successfully",
    }


@app.get("/api/budgets/{month}")
def month_budgets(
    month: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        return EnvelopeBudgetService(db, owner).budgets_for_month(month)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/budgets/{template}/{month}")
def envelope_budgets(
    template: str,
    month: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        return EnvelopeBudgetService(db, owner).get_or_create(template, month)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TemplateNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/budgets/{template}/{month}")
def update_envelope_budgets(
    template: str,
    month: str,
    payload: BudgetAmountsIn,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        EnvelopeBudgetService(db, owner).update_budget_amounts(
            template, month, payload.budgets
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"message": "Budgets updated successfully"}


@app.get("/api/budget-analysis/{template}/{month}")
def budget_analysis(
    template: str,
    month: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        result = EnvelopeBudgetService(db, owner).analysis(template, month)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TemplateNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"analysis": result["categoryAnalysis"], "summary": result["summary"]}


@app.get("/api/recurring")
def list_recurring(owner: str = Depends(current_owner), db: Session = Depends(get_db)):
    return RecurringTransactionService(db, owner).list()


@app.post("/api/recurring", status_code=201)
def create_recurring(
    payload: RecurringTransactionIn,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    rule = RecurringTransactionService(db, owner).create(payload)
    return {"message": "Recurring transaction created successfully", "transaction": rule}


@app.get("/api/recurring/upcoming")
def upcoming_recurring(
    days: int = 7,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        return RecurringTransactionService(db, owner).upcoming(days)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/recurring/execute-due")
def execute_due_recurring(
    owner: str = Depends(current_owner), db: Session = Depends(get_db)
):
    executions = RecurringEngine(db).execute_due(owner=owner)
    logger.info(f"execute_due: owner={owner} executed={len(executions)}")
    return {
        "message": f"Executed {len(executions)} recurring transactions",
        "executed_count": len(executions),
        "executed_transactions": [e.rule.name for e in executions],
    }


@app.get("/api/recurring/{rule_id}")
def get_recurring(
    rule_id: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        return RecurringTransactionService(db, owner).get(rule_id)
    except RecurringTransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/recurring/{rule_id}")
def update_recurring(
    rule_id: str,
    payload: RecurringTransactionPatch,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        rule = RecurringTransactionService(db, owner).update(rule_id, payload)
    except RecurringTransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"message": "Recurring transaction updated successfully", "transaction": rule}


@app.delete("/api/recurring/{rule_id}")
def delete_recurring(
    rule_id: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        RecurringTransactionService(db, owner).delete(rule_id)
    except RecurringTransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Recurring transaction deleted successfully"}


@app.put("/api/recurring/{rule_id}/toggle")
def toggle_recurring(
    rule_id: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        rule = RecurringTransactionService(db, owner).toggle(rule_id)
    except RecurringTransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    state = "activated" if rule.is_active else "deactivated"
    return {"message": f"Recurring transaction {state} successfully", "transaction": rule}


@app.post("/api/recurring/{rule_id}/execute")
def execute_recurring(
    rule_id: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        execution = RecurringTransactionService(db, owner).execute(rule_id)
    except RecurringTransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "message": "Recurring transaction executed successfully",
        "transaction": execution.transaction,
        "next_execution": execution.rule.next_execution,
    }


@app.get("/api/alerts")
def list_alerts(owner: str = Depends(current_owner), db: Session = Depends(get_db)):
    alerts = AlertService(db, owner).list()
    return {"alerts": alerts, "count": len(alerts)}


@app.post("/api/alerts", status_code=201)
def create_alert(
    payload: AlertIn,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    alert = AlertService(db, owner).create(payload)
    return {"message": "Alert created successfully", "alert": alert}


@app.patch("/api/alerts/dismiss-all/{month}")
def dismiss_all_alerts(
    month: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        count = AlertService(db, owner).dismiss_all(month)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"message": f"Dismissed {count} alerts for {month}", "count": count}


@app.get("/api/alerts/{alert_id}")
def get_alert(
    alert_id: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        return AlertService(db, owner).get(alert_id)
    except AlertNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/alerts/{alert_id}")
def update_alert(
    alert_id: str,
    payload: AlertPatch,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        alert = AlertService(db, owner).update(alert_id, payload)
    except AlertNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"message": "Alert updated successfully", "alert": alert}


@app.delete("/api/alerts/{alert_id}")
def delete_alert(
    alert_id: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        alert = AlertService(db, owner).delete(alert_id)
    except AlertNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Alert deleted successfully", "alert": alert}


@app.patch("/api/alerts/{alert_id}/read")
def mark_alert_read(
    alert_id: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        alert = AlertService(db, owner).mark_read(alert_id)
    except AlertNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Alert marked as read", "alert": alert}


@app.patch("/api/alerts/{alert_id}/dismiss")
def dismiss_alert(
    alert_id: str,
    owner: str = Depends(current_owner),
    db: Session = Depends(get_db),
):
    try:
        alert = AlertService(db, owner).dismiss(alert_id)
    except AlertNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Alert dismissed", "alert": alert}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
