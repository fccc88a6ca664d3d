import logging
from datetime import date, datetime
from typing import Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from auth import TOKEN_COOKIE, issue_token, read_token
from config import get_settings
from database import get_db, session_scope
from errors import FinanceError, Forbidden, Unauthorized, ValidationFailed
from models import User
from periods import resolve_month
from schemas import (
    AccountIn,
    AccountOut,
    BackupExportIn,
    BackupImportIn,
    ExpenseIn,
    ExpenseOut,
    ImportIn,
    IncomeEventOut,
    IncomeIn,
    IncomeOut,
    LoginIn,
    SavingsIn,
    SavingsOut,
    UserIn,
    UserOut,
)
from services import (
    AccountService,
    AnnualReportService,
    BackupService,
    ExpenseService,
    ImportService,
    IncomeService,
    SavingsService,
    SummaryService,
    UserService,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")


@app.exception_handler(FinanceError)
async def finance_error_handler(request: Request, exc: FinanceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            f"request_failed: method={request.method} path={request.url.path} "
            f"error={exc!r}"
        )
    body: dict[str, object] = {"success": False, "error": str(exc)}
    if isinstance(exc, ValidationFailed) and exc.errors:
        body["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors: dict[str, str] = {}
    for err in exc.errors():
        parts = [str(p) for p in err["loc"] if p not in ("body", "query", "path")]
        errors[".".join(parts) or "__all__"] = err["msg"]
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid data", "errors": errors},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})


@app.on_event("startup")
def seed_admin() -> None:
    settings = get_settings()
    if not (settings.admin_email and settings.admin_password):
        return
    with session_scope() as session:
        UserService(session).ensure_admin(
            settings.admin_email, settings.admin_password
        )


def current_user_id(request: Request) -> int:
    payload = read_token(request.cookies.get(TOKEN_COOKIE))
    if not payload:
        raise Unauthorized("Not authenticated")
    return payload["id"]


def _expense_list(rows) -> list[dict]:
    return [ExpenseOut.model_validate(row).model_dump(mode="json") for row in rows]


def _set_session_cookie(response: Response, user: User) -> None:
    response.set_cookie(
        TOKEN_COOKIE,
        issue_token(user),
        max_age=get_settings().session_max_age_hours * 3600,
        httponly=True,
        samesite="lax",
    )


# auth


@app.post("/api/auth/login")
def login(data: LoginIn, response: Response, db: Session = Depends(get_db)):
    user = UserService(db).authenticate(data.email, data.password)
    _set_session_cookie(response, user)
    logger.info(f"user_login: user_id={user.id}")
    return {"success": True, "user": UserOut.model_validate(user).model_dump(mode="json")}


@app.post("/api/auth/logout")
def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE)
    return {"success": True}


@app.get("/api/auth/me")
def me(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    user = UserService(db, user_id).current()
    return UserOut.model_validate(user).model_dump(mode="json")


@app.post("/api/auth/register", status_code=201)
def register(
    data: UserIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    user = UserService(db, user_id).register(data)
    return {"success": True, "user": UserOut.model_validate(user).model_dump(mode="json")}


@app.post("/api/setup", status_code=201)
def setup(data: UserIn, response: Response, db: Session = Depends(get_db)):
    """Create the first admin; closed once any user exists."""
    if db.scalar(select(func.count(User.id))):
        raise Forbidden("Setup already completed")
    user, _ = UserService(db).ensure_admin(data.email, data.password, data.name)
    _set_session_cookie(response, user)
    return {"success": True, "user": UserOut.model_validate(user).model_dump(mode="json")}


# incomes


@app.get("/api/incomes")
def list_incomes(
    month: Optional[int] = None,
    year: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = IncomeService(db, user_id)
    if month is None and year is None:
        incomes = service.list_all()
    else:
        incomes = service.list_for_period(resolve_month(month, year))
    return [IncomeOut.model_validate(i).model_dump(mode="json") for i in incomes]


@app.post("/api/incomes", status_code=201)
def create_income(
    data: IncomeIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    income = IncomeService(db, user_id).create(data)
    return IncomeOut.model_validate(income).model_dump(mode="json")


@app.put("/api/incomes/{income_id}")
def update_income(
    income_id: int,
    data: IncomeIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    income = IncomeService(db, user_id).update(income_id, data)
    return IncomeOut.model_validate(income).model_dump(mode="json")


@app.delete("/api/incomes/{income_id}")
def delete_income(
    income_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    IncomeService(db, user_id).delete(income_id)
    return {"success": True}


# expenses


@app.get("/api/expenses")
def list_expenses(
    month: Optional[int] = None,
    year: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = resolve_month(month, year)
    return _expense_list(ExpenseService(db, user_id).list_for_period(period))


@app.post("/api/expenses", status_code=201)
def create_expense(
    data: ExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    rows = ExpenseService(db, user_id).create(data)
    return {"success": True, "count": len(rows), "expenses": _expense_list(rows)}


@app.put("/api/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    data: ExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    rows = ExpenseService(db, user_id).update(expense_id, data)
    return {"success": True, "count": len(rows), "expenses": _expense_list(rows)}


@app.delete("/api/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    deleted = ExpenseService(db, user_id).delete(expense_id)
    return {"success": True, "deleted": deleted}


@app.get("/api/installments/all")
def list_installments(
    from_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    rows = ExpenseService(db, user_id).list_installments_from(from_date)
    return _expense_list(rows)


@app.get("/api/installments/summary")
def installments_summary(
    from_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    schedule = ExpenseService(db, user_id).installment_schedule(from_date)
    return jsonable_encoder(schedule)


# accounts


@app.get("/api/accounts")
def list_accounts(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    accounts = AccountService(db, user_id).list_all()
    return [AccountOut.model_validate(a).model_dump(mode="json") for a in accounts]


@app.post("/api/accounts", status_code=201)
def create_account(
    data: AccountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    account = AccountService(db, user_id).create(data)
    return AccountOut.model_validate(account).model_dump(mode="json")


@app.put("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    data: AccountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    account = AccountService(db, user_id).update(account_id, data)
    return AccountOut.model_validate(account).model_dump(mode="json")


@app.delete("/api/accounts/{account_id}")
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    unlinked = AccountService(db, user_id).delete(account_id)
    return {"success": True, "unlinked_expenses": unlinked}


# savings


@app.get("/api/savings")
def list_savings(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    entries = SavingsService(db, user_id).list_all()
    return [SavingsOut.model_validate(s).model_dump(mode="json") for s in entries]


@app.get("/api/savings/evolution")
def savings_evolution(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return jsonable_encoder(SavingsService(db, user_id).evolution())


@app.post("/api/savings", status_code=201)
def create_savings(
    data: SavingsIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    entry = SavingsService(db, user_id).create(data)
    return SavingsOut.model_validate(entry).model_dump(mode="json")


@app.put("/api/savings/{savings_id}")
def update_savings(
    savings_id: int,
    data: SavingsIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    entry = SavingsService(db, user_id).update(savings_id, data)
    return SavingsOut.model_validate(entry).model_dump(mode="json")


@app.delete("/api/savings/{savings_id}")
def delete_savings(
    savings_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    SavingsService(db, user_id).delete(savings_id)
    return {"success": True}


# reports


@app.get("/api/dashboard/summary")
def dashboard_summary(
    month: Optional[int] = None,
    year: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    period = resolve_month(month, year)
    summary = SummaryService(db, user_id).summarize(period.start.month, period.start.year)
    summary["top_expenses"] = _expense_list(summary["top_expenses"])
    return jsonable_encoder(summary)


@app.get("/api/reports/annual")
def annual_report(
    year: Optional[int] = None,
    years: bool = False,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = AnnualReportService(db, user_id)
    if years:
        return {"years": service.available_years()}
    report = service.project(year or resolve_month(None, None).start.year)
    report["detailed_income_events"] = [
        IncomeEventOut.model_validate(event).model_dump(mode="json")
        for event in report["detailed_income_events"]
    ]
    return jsonable_encoder(report)


# users


@app.get("/api/users")
def list_users(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    users = UserService(db, user_id).list_users()
    return [UserOut.model_validate(u).model_dump(mode="json") for u in users]


@app.delete("/api/users/{target_id}")
def delete_user(
    target_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    UserService(db, user_id).delete_user(target_id)
    return {"success": True}


# backup and import


@app.post("/api/backup/export")
def export_backup(
    data: BackupExportIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    content = BackupService(db, user_id).export(data.password)
    filename = f"finance-backup-{datetime.utcnow().strftime('%Y%m%d%H%M%S')}.bak"
    return {"success": True, "filename": filename, "file_content": content}


@app.post("/api/backup/import")
def import_backup(
    data: BackupImportIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    counts = BackupService(db, user_id).restore(data.password, data.file_content)
    return {"success": True, "restored": counts}


@app.post("/api/import")
def import_records(
    data: ImportIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    count = ImportService(db, user_id).import_records(data.type, data.data)
    return {"success": True, "count": count}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
