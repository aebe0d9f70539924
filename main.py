import logging
from decimal import Decimal
from typing import NoReturn, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, init_db, session_scope
from models import Budget, Category, MonthName, Transaction, TransactionType, User, UserRole, UserStatus
from periods import Period, local_today, month_end, month_start, resolve_period
from scheduler import SchedulerManager
from schemas import (
    BudgetPayload,
    CategoryIn,
    TransactionPayload,
    UserIn,
    UserRoleIn,
    UserStatusIn,
)
from services import (
    AdminMetricsService,
    AdminUserService,
    BudgetAuditService,
    BudgetConflictError,
    BudgetService,
    CategoryService,
    DefaultCategoryService,
    MetricsService,
    NotFoundError,
    TransactionFilters,
    TransactionService,
    UserService,
    bootstrap_defaults,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    init_db()
    with session_scope() as session:
        bootstrap_defaults(session)
    logger.info(f"startup: database_url={settings.database_url} audit_enabled={settings.audit_enabled}")
    if settings.audit_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def current_user_id(
    x_user_id: Optional[int] = Header(default=None), db: Session = Depends(get_db)
) -> int:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    user = db.get(User, x_user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Unknown user")
    if user.status != UserStatus.active:
        raise HTTPException(status_code=403, detail="Account is inactive")
    return x_user_id


def admin_user_id(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
) -> int:
    user = db.get(User, user_id)
    if user.role != UserRole.admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user_id


def raise_http_error(exc: ValueError) -> NoReturn:
    if isinstance(exc, BudgetConflictError):
        raise HTTPException(
            status_code=409,
            detail={
                "code": "budget_exists",
                "message": str(exc),
                "budget_id": exc.budget_id,
            },
        ) from exc
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def optional_period_from_request(request: Request) -> Optional[Period]:
    params = request.query_params
    if params.get("period"):
        return period_from_request(request)
    if params.get("start") and params.get("end"):
        try:
            return resolve_period("custom", params["start"], params["end"])
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    return None


def int_query_param(request: Request, name: str, default: int) -> int:
    raw = request.query_params.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"{name} must be an integer") from exc


def format_amount(cents: int) -> str:
    return str((Decimal(cents) / 100).quantize(Decimal("0.01")))


def percentage(part: int, whole: int) -> float:
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)


def savings_rate(income_cents: int, expense_cents: int) -> float:
    if income_cents <= 0:
        return 0.0
    return round((income_cents - expense_cents) / income_cents * 100, 1)


def serialize_transaction(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "type": txn.type.value,
        "description": txn.description,
        "amount_cents": txn.amount_cents,
        "amount": format_amount(txn.amount_cents),
        "category": txn.category,
        "date": txn.date.isoformat(),
    }


def serialize_budget(budget: Budget) -> dict:
    remaining = budget.budget_cents - budget.spent_cents
    return {
        "id": budget.id,
        "category": budget.category,
        "month": budget.month.value,
        "year": budget.year,
        "budget_cents": budget.budget_cents,
        "spent_cents": budget.spent_cents,
        "remaining_cents": remaining,
        "budget_amount": format_amount(budget.budget_cents),
        "spent_amount": format_amount(budget.spent_cents),
        "remaining_amount": format_amount(remaining),
        "percentage": percentage(budget.spent_cents, budget.budget_cents),
        "over_budget": budget.spent_cents > budget.budget_cents,
    }


def serialize_category(category: Category, transactions: Optional[int] = None) -> dict:
    data = {
        "id": category.id,
        "name": category.name,
        "type": category.type.value,
        "color": category.color,
        "is_default": category.is_default,
    }
    if transactions is not None:
        data["transactions"] = transactions
    return data


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role.value,
        "status": user.status.value,
        "created_at": user.created_at.isoformat(),
    }


def serialize_totals(totals: dict) -> dict:
    data = dict(totals)
    for key in ("income_cents", "expense_cents", "balance_cents"):
        data[key.replace("_cents", "")] = format_amount(totals[key])
    return data


def with_share(rows: list[dict], amount_key: str) -> list[dict]:
    total = sum(int(row[amount_key]) for row in rows)
    return [
        {
            **row,
            "amount": format_amount(int(row[amount_key])),
            "percentage": percentage(int(row[amount_key]), total),
        }
        for row in rows
    ]


@app.get("/api/health")
def api_health():
    return {"status": "ok"}


def _list_transactions(
    request: Request, db: Session, user_id: int, txn_type: TransactionType
) -> dict:
    page = max(int_query_param(request, "page", 1), 1)
    limit = min(max(int_query_param(request, "limit", 50), 1), 100)
    offset = (page - 1) * limit
    filters = TransactionFilters(
        type=txn_type,
        category=request.query_params.get("category") or None,
        query=request.query_params.get("q") or None,
    )
    period = optional_period_from_request(request)
    items = TransactionService(db, user_id).list(
        period, filters, limit=limit + 1, offset=offset
    )
    has_more = len(items) > limit
    return {
        "items": [serialize_transaction(txn) for txn in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


def _create_transaction(
    db: Session, user_id: int, txn_type: TransactionType, payload: TransactionPayload
) -> dict:
    try:
        txn = TransactionService(db, user_id).create(payload.to_transaction_in(txn_type))
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_transaction(txn)


def _get_transaction(
    db: Session, user_id: int, txn_type: TransactionType, transaction_id: int
) -> dict:
    try:
        txn = TransactionService(db, user_id).get(transaction_id, txn_type)
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_transaction(txn)


def _update_transaction(
    db: Session,
    user_id: int,
    txn_type: TransactionType,
    transaction_id: int,
    payload: TransactionPayload,
) -> dict:
    try:
        txn = TransactionService(db, user_id).update(
            transaction_id, payload.to_transaction_in(txn_type), txn_type=txn_type
        )
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_transaction(txn)


def _delete_transaction(
    db: Session, user_id: int, txn_type: TransactionType, transaction_id: int
) -> dict:
    try:
        TransactionService(db, user_id).delete(transaction_id, txn_type=txn_type)
    except ValueError as exc:
        raise_http_error(exc)
    return {"deleted": transaction_id}


@app.post("/api/users", status_code=201)
def api_register_user(payload: UserIn, db: Session = Depends(get_db)):
    try:
        user = UserService(db).register(payload)
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_user(user)


@app.get("/api/users/me")
def api_current_user(
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return serialize_user(UserService(db).get(user_id))


@app.get("/api/income")
def api_list_income(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _list_transactions(request, db, user_id, TransactionType.income)


@app.post("/api/income", status_code=201)
def api_create_income(
    payload: TransactionPayload,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _create_transaction(db, user_id, TransactionType.income, payload)


@app.get("/api/income/{transaction_id}")
def api_get_income(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _get_transaction(db, user_id, TransactionType.income, transaction_id)


@app.put("/api/income/{transaction_id}")
def api_update_income(
    transaction_id: int,
    payload: TransactionPayload,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _update_transaction(db, user_id, TransactionType.income, transaction_id, payload)


@app.delete("/api/income/{transaction_id}")
def api_delete_income(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _delete_transaction(db, user_id, TransactionType.income, transaction_id)


def _transaction_summary(
    request: Request, db: Session, user_id: int, txn_type: TransactionType
) -> dict:
    period = optional_period_from_request(request)
    metrics = MetricsService(db, user_id)
    stats = metrics.type_stats(txn_type, period)
    categories = metrics.category_breakdown(period, txn_type, limit=None)
    return {
        "period": (
            {"start": period.start.isoformat(), "end": period.end.isoformat()}
            if period
            else None
        ),
        "total_cents": stats["total_cents"],
        "total": format_amount(stats["total_cents"]),
        "count": stats["count"],
        "average_cents": stats["avg_cents"],
        "average": format_amount(round(stats["avg_cents"])),
        "categories": with_share(categories, "amount_cents"),
    }


@app.get("/api/income/stats/summary")
def api_income_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _transaction_summary(request, db, user_id, TransactionType.income)


@app.get("/api/expenses/stats/summary")
def api_expense_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _transaction_summary(request, db, user_id, TransactionType.expense)


@app.get("/api/expenses")
def api_list_expenses(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _list_transactions(request, db, user_id, TransactionType.expense)


@app.post("/api/expenses", status_code=201)
def api_create_expense(
    payload: TransactionPayload,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _create_transaction(db, user_id, TransactionType.expense, payload)


@app.get("/api/expenses/{transaction_id}")
def api_get_expense(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _get_transaction(db, user_id, TransactionType.expense, transaction_id)


@app.put("/api/expenses/{transaction_id}")
def api_update_expense(
    transaction_id: int,
    payload: TransactionPayload,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _update_transaction(
        db, user_id, TransactionType.expense, transaction_id, payload
    )


@app.delete("/api/expenses/{transaction_id}")
def api_delete_expense(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return _delete_transaction(db, user_id, TransactionType.expense, transaction_id)


@app.get("/api/budget")
def api_list_budgets(
    month: Optional[MonthName] = None,
    year: Optional[int] = None,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    budgets = BudgetService(db, user_id).list_all()
    if month:
        budgets = [b for b in budgets if b.month == month]
    if year:
        budgets = [b for b in budgets if b.year == year]
    return [serialize_budget(b) for b in budgets]


@app.post("/api/budget", status_code=201)
def api_create_budget(
    payload: BudgetPayload,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        budget = BudgetService(db, user_id).create(payload.to_budget_in())
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_budget(budget)


@app.post("/api/budget/refresh")
def api_refresh_budgets(
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user_id)
    result = service.refresh_all()
    return {
        "message": f"Refreshed {result['refreshed']} budgets",
        "refreshed": result["refreshed"],
        "corrected": result["corrected"],
        "budgets": [serialize_budget(b) for b in service.list_all()],
    }


@app.get("/api/budget/audit")
def api_audit_budgets(
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    drifted = BudgetAuditService(db).audit(user_id)
    return {
        "drifted": [
            {**item, "month": item["month"].value} for item in drifted
        ]
    }


@app.get("/api/budget/{budget_id}")
def api_get_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        budget = BudgetService(db, user_id).get(budget_id)
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_budget(budget)


@app.put("/api/budget/{budget_id}")
def api_update_budget(
    budget_id: int,
    payload: BudgetPayload,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        budget = BudgetService(db, user_id).update(budget_id, payload.to_budget_in())
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_budget(budget)


@app.delete("/api/budget/{budget_id}")
def api_delete_budget(
    budget_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except ValueError as exc:
        raise_http_error(exc)
    return {"deleted": budget_id}


@app.get("/api/categories")
def api_list_categories(
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return [serialize_category(c) for c in CategoryService(db, user_id).list_all()]


@app.get("/api/categories/type/{txn_type}")
def api_list_categories_by_type(
    txn_type: TransactionType,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    categories = CategoryService(db, user_id).list_by_type(txn_type)
    return [serialize_category(c) for c in categories]


@app.post("/api/categories", status_code=201)
def api_create_category(
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user_id).create(payload)
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_category(category)


@app.get("/api/categories/{category_id}")
def api_get_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user_id).get(category_id)
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_category(category)


@app.put("/api/categories/{category_id}")
def api_update_category(
    category_id: int,
    payload: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user_id).update(category_id, payload)
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_category(category)


@app.delete("/api/categories/{category_id}")
def api_delete_category(
    category_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except ValueError as exc:
        raise_http_error(exc)
    return {"deleted": category_id}


def _budget_summary(budgets: list[Budget]) -> dict:
    total_budget = sum(b.budget_cents for b in budgets)
    total_spent = sum(b.spent_cents for b in budgets)
    return {
        "count": len(budgets),
        "budget_cents": total_budget,
        "spent_cents": total_spent,
        "remaining_cents": total_budget - total_spent,
        "percentage": percentage(total_spent, total_budget),
    }


@app.get("/api/dashboard")
def api_dashboard(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    settings = get_settings()
    period = period_from_request(request)
    today = local_today()
    metrics = MetricsService(db, user_id)
    budgets = BudgetService(db, user_id).list_for_month(
        MonthName.for_date(today), today.year
    )
    categories = metrics.category_breakdown(
        period, TransactionType.expense, limit=settings.top_n
    )
    return {
        "period": {
            "slug": period.slug,
            "start": period.start.isoformat(),
            "end": period.end.isoformat(),
        },
        "totals": serialize_totals(metrics.totals(period)),
        "budgets": _budget_summary(budgets),
        "category_data": with_share(categories, "amount_cents"),
        "monthly_data": metrics.monthly_series(6, today=today),
        "recent_transactions": [
            serialize_transaction(txn)
            for txn in TransactionService(db, user_id).recent(5)
        ],
    }


@app.get("/api/dashboard/summary")
def api_dashboard_summary(
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    summary = MetricsService(db, user_id).month_over_month(today=local_today())
    return {
        "current_month": serialize_totals(summary["current"]),
        "previous_month": serialize_totals(summary["previous"]),
        "income_change": round(summary["income_change"], 2),
        "expense_change": round(summary["expense_change"], 2),
    }


@app.get("/api/reports")
def api_reports(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    metrics = MetricsService(db, user_id)
    comparison = []
    for budget in BudgetService(db, user_id).list_overlapping(period):
        item = serialize_budget(budget)
        item["status"] = "over" if item["over_budget"] else "under"
        comparison.append(item)
    totals = metrics.totals(period)
    return {
        "period": {
            "slug": period.slug,
            "start": period.start.isoformat(),
            "end": period.end.isoformat(),
        },
        "totals": serialize_totals(totals),
        "summary": {
            "total_income": format_amount(totals["income_cents"]),
            "total_expense": format_amount(totals["expense_cents"]),
            "net_income": format_amount(totals["balance_cents"]),
            "savings_rate": savings_rate(totals["income_cents"], totals["expense_cents"]),
        },
        "transactions": [
            serialize_transaction(txn)
            for txn in TransactionService(db, user_id).list(period)
        ],
        "expense_categories": with_share(
            metrics.category_breakdown(period, TransactionType.expense, limit=None),
            "amount_cents",
        ),
        "income_categories": with_share(
            metrics.category_breakdown(period, TransactionType.income, limit=None),
            "amount_cents",
        ),
        "daily_trend": [
            {**day, "date": day["date"].isoformat()}
            for day in metrics.daily_trend(period)
        ],
        "monthly_data": metrics.monthly_series(6, today=local_today()),
        "budget_comparison": comparison,
    }


@app.get("/api/reports/trend")
def api_reports_trend(
    months: int = Query(12, ge=1, le=60),
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return MetricsService(db, user_id).monthly_series(months, today=local_today())


@app.get("/api/reports/categories/{txn_type}")
def api_reports_categories(
    request: Request,
    txn_type: TransactionType,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    rows = MetricsService(db, user_id).category_performance(period, txn_type)
    return with_share(rows, "total_cents")


@app.get("/api/admin/dashboard")
def api_admin_dashboard(
    _admin_id: int = Depends(admin_user_id),
    db: Session = Depends(get_db),
):
    settings = get_settings()
    today = local_today()
    this_month = Period(
        "month", month_start(today.year, today.month), month_end(today.year, today.month)
    )
    metrics = AdminMetricsService(db)
    return {
        "users": metrics.user_stats(),
        "all_time": metrics.system_summary(),
        "this_month": metrics.system_summary(this_month),
        "monthly_growth": metrics.monthly_growth(6, today=today),
        "top_categories": metrics.most_used_categories(this_month, limit=settings.top_n),
    }


@app.get("/api/admin/reports")
def api_admin_reports(
    request: Request,
    group_by: str = Query("month"),
    _admin_id: int = Depends(admin_user_id),
    db: Session = Depends(get_db),
):
    settings = get_settings()
    period = optional_period_from_request(request)
    metrics = AdminMetricsService(db)
    try:
        trends = metrics.trend(period, group_by)
    except ValueError as exc:
        raise_http_error(exc)
    return {
        "summary": metrics.system_summary(period),
        "trends": trends,
        "most_used_categories": metrics.most_used_categories(period, limit=settings.top_n),
        "top_spending_users": metrics.top_spending_users(period, limit=settings.top_n),
    }


@app.get("/api/admin/users")
def api_admin_list_users(
    search: Optional[str] = None,
    status: Optional[UserStatus] = None,
    role: Optional[UserRole] = None,
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin_id: int = Depends(admin_user_id),
    db: Session = Depends(get_db),
):
    try:
        result = AdminUserService(db, admin_id).list(
            search=search,
            status=status,
            role=role,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
    except ValueError as exc:
        raise_http_error(exc)
    return {**result, "users": [serialize_user(u) for u in result["users"]]}


@app.post("/api/admin/users", status_code=201)
def api_admin_create_user(
    payload: UserIn,
    admin_id: int = Depends(admin_user_id),
    db: Session = Depends(get_db),
):
    try:
        user = AdminUserService(db, admin_id).create(payload)
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_user(user)


@app.patch("/api/admin/users/{user_id}/role")
def api_admin_update_user_role(
    user_id: int,
    payload: UserRoleIn,
    admin_id: int = Depends(admin_user_id),
    db: Session = Depends(get_db),
):
    try:
        user = AdminUserService(db, admin_id).update_role(user_id, payload.role)
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_user(user)


@app.patch("/api/admin/users/{user_id}/status")
def api_admin_update_user_status(
    user_id: int,
    payload: UserStatusIn,
    admin_id: int = Depends(admin_user_id),
    db: Session = Depends(get_db),
):
    try:
        user = AdminUserService(db, admin_id).update_status(user_id, payload.status)
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_user(user)


@app.delete("/api/admin/users/{user_id}")
def api_admin_delete_user(
    user_id: int,
    admin_id: int = Depends(admin_user_id),
    db: Session = Depends(get_db),
):
    try:
        removed = AdminUserService(db, admin_id).delete(user_id)
    except ValueError as exc:
        raise_http_error(exc)
    return {"deleted": user_id, "removed": removed}


@app.get("/api/admin/categories")
def api_admin_list_categories(
    txn_type: Optional[TransactionType] = Query(None, alias="type"),
    search: Optional[str] = None,
    _admin_id: int = Depends(admin_user_id),
    db: Session = Depends(get_db),
):
    rows = DefaultCategoryService(db).list_with_usage(txn_type, search)
    return [serialize_category(row["category"], row["transactions"]) for row in rows]


@app.post("/api/admin/categories", status_code=201)
def api_admin_create_category(
    payload: CategoryIn,
    admin_id: int = Depends(admin_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = DefaultCategoryService(db).create(payload, created_by=admin_id)
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_category(category)


@app.put("/api/admin/categories/{category_id}")
def api_admin_update_category(
    category_id: int,
    payload: CategoryIn,
    _admin_id: int = Depends(admin_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = DefaultCategoryService(db).update(category_id, payload)
    except ValueError as exc:
        raise_http_error(exc)
    return serialize_category(category)


@app.delete("/api/admin/categories/{category_id}")
def api_admin_delete_category(
    category_id: int,
    _admin_id: int = Depends(admin_user_id),
    db: Session = Depends(get_db),
):
    try:
        DefaultCategoryService(db).delete(category_id)
    except ValueError as exc:
        raise_http_error(exc)
    return {"deleted": category_id}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
