from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Select, case, delete, extract, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from models import (
    Budget,
    Category,
    MonthName,
    Transaction,
    TransactionType,
    User,
    UserRole,
    UserStatus,
)
from periods import Period, add_months, local_today, month_end, month_start, trailing_months
from schemas import BudgetIn, CategoryIn, TransactionIn, UserIn

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class BudgetConflictError(ValueError):
    def __init__(self, message: str, budget_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.budget_id = budget_id


@dataclass(frozen=True)
class BudgetKey:
    user_id: int
    category: str
    month: MonthName
    year: int

    @classmethod
    def for_date(cls, user_id: int, category: str, on_date: date) -> BudgetKey:
        return cls(user_id, category, MonthName.for_date(on_date), on_date.year)

    @classmethod
    def for_budget(cls, budget: Budget) -> BudgetKey:
        return cls(budget.user_id, budget.category, budget.month, budget.year)

    @property
    def start(self) -> date:
        return month_start(self.year, self.month.number)

    @property
    def end(self) -> date:
        return month_end(self.year, self.month.number)

    def __str__(self) -> str:
        return f"user_id={self.user_id} category={self.category!r} month={self.month.value} year={self.year}"


@dataclass(frozen=True)
class ExpenseEntry:
    key: BudgetKey
    amount_cents: int

    @classmethod
    def from_transaction(cls, txn: Transaction) -> Optional[ExpenseEntry]:
        if txn.type != TransactionType.expense:
            return None
        return cls(BudgetKey.for_date(txn.user_id, txn.category, txn.date), txn.amount_cents)


def bucket_adjustments(
    before: Optional[ExpenseEntry], after: Optional[ExpenseEntry]
) -> list[tuple[BudgetKey, int]]:
    """Spent deltas per budget bucket for an expense going from ``before`` to ``after``.

    ``None`` on either side means the row is not an expense at that point
    (created, deleted, or typed as income).
    """
    if before and after and before.key == after.key:
        delta = after.amount_cents - before.amount_cents
        return [(after.key, delta)] if delta else []
    adjustments: list[tuple[BudgetKey, int]] = []
    if before:
        adjustments.append((before.key, -before.amount_cents))
    if after:
        adjustments.append((after.key, after.amount_cents))
    return adjustments


class BudgetReconciler:
    """Keeps ``Budget.spent_cents`` equal to the sum of matching expenses.

    Ledger writes go through :meth:`adjust`, which issues one atomic
    ``spent_cents = spent_cents + delta`` UPDATE per affected bucket. Seeding
    and refresh go through :meth:`recompute`, a single UPDATE whose value is a
    bounded scan over one owner, category and month.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def expense_sum_stmt(key: BudgetKey) -> Select:
        return select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == key.user_id,
            Transaction.type == TransactionType.expense,
            Transaction.category == key.category,
            Transaction.date.between(key.start, key.end),
        )

    def expense_sum(self, key: BudgetKey) -> int:
        return int(self.session.execute(self.expense_sum_stmt(key)).scalar_one() or 0)

    @staticmethod
    def _bucket_filter(key: BudgetKey) -> tuple:
        return (
            Budget.user_id == key.user_id,
            Budget.category == key.category,
            Budget.month == key.month,
            Budget.year == key.year,
        )

    def adjust(self, key: BudgetKey, delta_cents: int) -> Optional[int]:
        """Add ``delta_cents`` to the bucket's budget. Returns the new spent value,
        or ``None`` when no budget exists for the bucket."""
        result = self.session.execute(
            update(Budget)
            .where(*self._bucket_filter(key))
            .values(
                spent_cents=Budget.spent_cents + delta_cents,
                updated_at=datetime.utcnow(),
            )
        )
        if not result.rowcount:
            logger.debug(f"budget_adjust_skipped: {key} delta_cents={delta_cents}")
            return None
        spent = int(
            self.session.execute(
                select(Budget.spent_cents).where(*self._bucket_filter(key))
            ).scalar_one()
        )
        if spent < 0:
            logger.warning(
                f"budget_negative_spent: {key} spent_cents={spent} "
                "reconciliation was skipped for an earlier expense; run a budget refresh"
            )
        return spent

    def recompute(self, budget: Budget) -> int:
        key = BudgetKey.for_budget(budget)
        self.session.execute(
            update(Budget)
            .where(Budget.id == budget.id)
            .values(
                spent_cents=self.expense_sum_stmt(key).scalar_subquery(),
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(budget)
        return budget.spent_cents


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    query: Optional[str] = None


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _visible(self, txn_type: Optional[TransactionType] = None) -> list[Category]:
        stmt = select(Category).where(
            or_(Category.user_id == self.user_id, Category.user_id.is_(None))
        )
        if txn_type:
            stmt = stmt.where(Category.type == txn_type)
        rows = self.session.scalars(stmt).all()
        own = {(c.name, c.type) for c in rows if c.user_id == self.user_id}
        visible = [
            c
            for c in rows
            if c.user_id == self.user_id or (c.name, c.type) not in own
        ]
        visible.sort(key=lambda c: (c.type != TransactionType.income, c.name.lower()))
        return visible

    def list_all(self) -> list[Category]:
        return self._visible()

    def list_by_type(self, txn_type: TransactionType) -> list[Category]:
        return self._visible(txn_type)

    def names_for(self, txn_type: TransactionType) -> set[str]:
        return {c.name for c in self._visible(txn_type)}

    def _ensure_unique(self, data: CategoryIn, exclude_id: Optional[int] = None) -> None:
        stmt = select(Category).where(
            Category.user_id == self.user_id,
            Category.type == data.type,
            func.lower(Category.name) == data.name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError(f"{data.type.value} category '{data.name}' already exists")

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        self._ensure_unique(data)
        category = Category(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            color=data.color,
            is_default=False,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        self._ensure_unique(data, exclude_id=category.id)
        category.name = data.name
        category.type = data.type
        category.color = data.color
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        self.session.delete(category)
        self.session.commit()


class DefaultCategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _usage(self) -> dict[tuple[str, TransactionType], int]:
        rows = self.session.execute(
            select(Transaction.category, Transaction.type, func.count(Transaction.id))
            .group_by(Transaction.category, Transaction.type)
        ).all()
        return {(row[0], row[1]): int(row[2]) for row in rows}

    def list_with_usage(
        self,
        txn_type: Optional[TransactionType] = None,
        search: Optional[str] = None,
    ) -> list[dict[str, object]]:
        stmt = (
            select(Category)
            .where(Category.is_default.is_(True))
            .order_by(Category.type, Category.name)
        )
        if txn_type:
            stmt = stmt.where(Category.type == txn_type)
        if search:
            stmt = stmt.where(func.lower(Category.name).contains(search.lower()))
        usage = self._usage()
        return [
            {"category": c, "transactions": usage.get((c.name, c.type), 0)}
            for c in self.session.scalars(stmt).all()
        ]

    def _get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or not category.is_default:
            raise NotFoundError("Default category not found")
        return category

    def _ensure_unique(self, data: CategoryIn, exclude_id: Optional[int] = None) -> None:
        stmt = select(Category).where(
            Category.is_default.is_(True),
            Category.type == data.type,
            func.lower(Category.name) == data.name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError("Default category already exists")

    def create(self, data: CategoryIn, created_by: Optional[int] = None) -> Category:
        self._ensure_unique(data)
        category = Category(
            user_id=None,
            name=data.name,
            type=data.type,
            color=data.color,
            is_default=True,
            created_by=created_by,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self._get(category_id)
        self._ensure_unique(data, exclude_id=category.id)
        category.name = data.name
        category.type = data.type
        category.color = data.color
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self._get(category_id)
        used = self._usage().get((category.name, category.type), 0)
        if used:
            raise ValueError(
                f"Cannot delete category. It is being used in {used} transactions."
            )
        self.session.delete(category)
        self.session.commit()


def _check_category_name(
    session: Session, user_id: int, name: str, txn_type: TransactionType
) -> None:
    if not get_settings().strict_categories:
        return
    if name not in CategoryService(session, user_id).names_for(txn_type):
        raise ValueError(f"Unknown {txn_type.value} category '{name}'")


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.reconciler = BudgetReconciler(session)

    def _reconcile(
        self,
        before: Optional[ExpenseEntry],
        after: Optional[ExpenseEntry],
        *,
        transaction_id: int,
    ) -> None:
        # A failed budget adjustment never blocks the ledger write; refresh repairs it.
        adjustments = bucket_adjustments(before, after)
        if not adjustments:
            return
        attempts = get_settings().reconcile_attempts
        for attempt in range(1, attempts + 1):
            try:
                with self.session.begin_nested():
                    for key, delta in adjustments:
                        self.reconciler.adjust(key, delta)
                return
            except SQLAlchemyError:
                logger.exception(
                    f"budget_reconcile_failed: transaction_id={transaction_id} "
                    f"user_id={self.user_id} attempt={attempt}/{attempts}"
                )
        logger.error(
            f"budget_reconcile_abandoned: transaction_id={transaction_id} "
            f"user_id={self.user_id} budgets may drift until refreshed"
        )

    def create(self, data: TransactionIn) -> Transaction:
        _check_category_name(self.session, self.user_id, data.category, data.type)
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            description=data.description,
            amount_cents=data.amount_cents,
            category=data.category,
            date=data.date,
        )
        self.session.add(txn)
        self.session.flush()
        self._reconcile(None, ExpenseEntry.from_transaction(txn), transaction_id=txn.id)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(
        self, transaction_id: int, txn_type: Optional[TransactionType] = None
    ) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id, Transaction.id == transaction_id
        )
        if txn_type:
            stmt = stmt.where(Transaction.type == txn_type)
        txn = self.session.scalar(stmt)
        if not txn:
            label = txn_type.value.capitalize() if txn_type else "Transaction"
            raise NotFoundError(f"{label} not found")
        return txn

    def update(
        self,
        transaction_id: int,
        data: TransactionIn,
        *,
        txn_type: Optional[TransactionType] = None,
    ) -> Transaction:
        txn = self.get(transaction_id, txn_type)
        _check_category_name(self.session, self.user_id, data.category, data.type)
        before = ExpenseEntry.from_transaction(txn)

        txn.type = data.type
        txn.description = data.description
        txn.amount_cents = data.amount_cents
        txn.category = data.category
        txn.date = data.date
        self.session.flush()

        self._reconcile(
            before, ExpenseEntry.from_transaction(txn), transaction_id=txn.id
        )
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(
        self, transaction_id: int, *, txn_type: Optional[TransactionType] = None
    ) -> None:
        txn = self.get(transaction_id, txn_type)
        before = ExpenseEntry.from_transaction(txn)
        self.session.delete(txn)
        self.session.flush()
        self._reconcile(before, None, transaction_id=transaction_id)
        self.session.commit()

    def list(
        self,
        period: Optional[Period] = None,
        filters: Optional[TransactionFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
        )
        if period:
            stmt = stmt.where(Transaction.date.between(period.start, period.end))
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category:
            stmt = stmt.where(Transaction.category == filters.category)
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(func.lower(Transaction.description).like(like))
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.scalars(stmt).all()

    def recent(self, limit: int = 5) -> list[Transaction]:
        return self.list(limit=limit)


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.reconciler = BudgetReconciler(session)

    @staticmethod
    def _sorted(budgets: list[Budget]) -> list[Budget]:
        return sorted(budgets, key=lambda b: (-b.year, b.month.number, b.category))

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .execution_options(populate_existing=True)
        )
        return self._sorted(self.session.scalars(stmt).all())

    def list_for_years(self, years: set[int]) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.year.in_(sorted(years)))
            .execution_options(populate_existing=True)
        )
        return self._sorted(self.session.scalars(stmt).all())

    def list_for_month(self, month: MonthName, year: int) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(
                Budget.user_id == self.user_id,
                Budget.month == month,
                Budget.year == year,
            )
            .order_by(Budget.category)
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).all()

    def list_overlapping(self, period: Period) -> list[Budget]:
        years = set(range(period.start.year, period.end.year + 1))
        return [
            budget
            for budget in self.list_for_years(years)
            if BudgetKey.for_budget(budget).start <= period.end
            and BudgetKey.for_budget(budget).end >= period.start
        ]

    def get(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.id == budget_id)
            .execution_options(populate_existing=True)
        )
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def _find(self, category: str, month: MonthName, year: int) -> Optional[Budget]:
        return self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id,
                Budget.category == category,
                Budget.month == month,
                Budget.year == year,
            )
        )

    @staticmethod
    def _conflict(data: BudgetIn, budget_id: Optional[int]) -> BudgetConflictError:
        return BudgetConflictError(
            f"Budget already exists for {data.category} in {data.month.value} {data.year}",
            budget_id=budget_id,
        )

    def _flush_or_conflict(self, data: BudgetIn) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            existing = self._find(data.category, data.month, data.year)
            raise self._conflict(data, existing.id if existing else None) from exc

    def create(self, data: BudgetIn) -> Budget:
        _check_category_name(
            self.session, self.user_id, data.category, TransactionType.expense
        )
        existing = self._find(data.category, data.month, data.year)
        if existing:
            raise self._conflict(data, existing.id)

        budget = Budget(
            user_id=self.user_id,
            category=data.category,
            month=data.month,
            year=data.year,
            budget_cents=data.budget_cents,
            spent_cents=0,
        )
        self.session.add(budget)
        self._flush_or_conflict(data)
        self.reconciler.recompute(budget)
        self.session.commit()
        logger.info(
            f"budget_created: budget_id={budget.id} {BudgetKey.for_budget(budget)} "
            f"seeded_spent_cents={budget.spent_cents}"
        )
        return budget

    def update(self, budget_id: int, data: BudgetIn) -> Budget:
        budget = self.get(budget_id)
        _check_category_name(
            self.session, self.user_id, data.category, TransactionType.expense
        )
        existing = self._find(data.category, data.month, data.year)
        if existing and existing.id != budget.id:
            raise self._conflict(data, existing.id)

        budget.category = data.category
        budget.month = data.month
        budget.year = data.year
        budget.budget_cents = data.budget_cents
        self._flush_or_conflict(data)
        self.reconciler.recompute(budget)
        self.session.commit()
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def refresh_all(self) -> dict[str, object]:
        """Recompute every budget of the owner from the ledger.

        Each budget is committed on its own so an interrupted run leaves the
        processed budgets correct and can simply be repeated.
        """
        budget_ids = self.session.scalars(
            select(Budget.id).where(Budget.user_id == self.user_id).order_by(Budget.id)
        ).all()
        corrected: list[int] = []
        for budget_id in budget_ids:
            budget = self.session.get(Budget, budget_id, populate_existing=True)
            if budget is None:
                continue
            cached = budget.spent_cents
            spent = self.reconciler.recompute(budget)
            self.session.commit()
            if spent != cached:
                corrected.append(budget_id)
                logger.warning(
                    f"budget_refresh_corrected: budget_id={budget_id} "
                    f"cached_cents={cached} actual_cents={spent}"
                )
        logger.info(
            f"budget_refresh: user_id={self.user_id} refreshed={len(budget_ids)} "
            f"corrected={len(corrected)}"
        )
        return {"refreshed": len(budget_ids), "corrected": corrected}


class BudgetAuditService:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.reconciler = BudgetReconciler(session)

    def audit(self, user_id: Optional[int] = None) -> list[dict[str, object]]:
        """Compare cached spent values with the ledger without writing anything."""
        stmt = select(Budget).order_by(Budget.user_id, Budget.id)
        if user_id is not None:
            stmt = stmt.where(Budget.user_id == user_id)
        drifted: list[dict[str, object]] = []
        for budget in self.session.scalars(stmt.execution_options(populate_existing=True)):
            key = BudgetKey.for_budget(budget)
            actual = self.reconciler.expense_sum(key)
            if actual == budget.spent_cents:
                continue
            logger.warning(
                f"budget_drift: budget_id={budget.id} {key} "
                f"cached_cents={budget.spent_cents} actual_cents={actual}"
            )
            drifted.append(
                {
                    "budget_id": budget.id,
                    "user_id": budget.user_id,
                    "category": budget.category,
                    "month": budget.month,
                    "year": budget.year,
                    "cached_cents": budget.spent_cents,
                    "actual_cents": actual,
                }
            )
        return drifted


class MetricsService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        # user_id None aggregates across every owner.
        self.session = session
        self.user_id = user_id

    def _scoped(self, stmt: Select, period: Optional[Period] = None) -> Select:
        if self.user_id is not None:
            stmt = stmt.where(Transaction.user_id == self.user_id)
        if period is not None:
            stmt = stmt.where(Transaction.date.between(period.start, period.end))
        return stmt

    @staticmethod
    def _typed_sum(txn_type: TransactionType):
        return func.coalesce(
            func.sum(
                case(
                    (Transaction.type == txn_type, Transaction.amount_cents),
                    else_=0,
                )
            ),
            0,
        )

    @staticmethod
    def _typed_count(txn_type: TransactionType):
        return func.coalesce(
            func.sum(case((Transaction.type == txn_type, 1), else_=0)), 0
        )

    def totals(self, period: Period) -> dict[str, int]:
        stmt = self._scoped(
            select(
                self._typed_sum(TransactionType.income).label("income"),
                self._typed_sum(TransactionType.expense).label("expenses"),
                self._typed_count(TransactionType.income).label("income_count"),
                self._typed_count(TransactionType.expense).label("expense_count"),
            ),
            period,
        )
        row = self.session.execute(stmt).one()
        income = int(row.income or 0)
        expenses = int(row.expenses or 0)
        income_count = int(row.income_count or 0)
        expense_count = int(row.expense_count or 0)
        return {
            "income_cents": income,
            "expense_cents": expenses,
            "balance_cents": income - expenses,
            "income_count": income_count,
            "expense_count": expense_count,
            "count": income_count + expense_count,
        }

    def type_stats(
        self, txn_type: TransactionType, period: Optional[Period] = None
    ) -> dict[str, object]:
        stmt = self._scoped(
            select(
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("count"),
                func.avg(Transaction.amount_cents).label("avg"),
            ).where(Transaction.type == txn_type),
            period,
        )
        row = self.session.execute(stmt).one()
        return {
            "total_cents": int(row.total or 0),
            "count": int(row.count or 0),
            "avg_cents": float(row.avg or 0),
        }

    def category_breakdown(
        self,
        period: Optional[Period],
        transaction_type: TransactionType = TransactionType.expense,
        *,
        limit: Optional[int] = 10,
    ) -> list[dict[str, object]]:
        total = func.sum(Transaction.amount_cents)
        stmt = self._scoped(
            select(
                Transaction.category.label("category"),
                total.label("amount"),
                func.count(Transaction.id).label("count"),
            )
            .where(Transaction.type == transaction_type)
            .group_by(Transaction.category)
            .order_by(total.desc(), Transaction.category),
            period,
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [
            {
                "category": row.category,
                "amount_cents": int(row.amount or 0),
                "count": int(row.count),
            }
            for row in self.session.execute(stmt)
        ]

    def category_performance(
        self, period: Period, transaction_type: TransactionType
    ) -> list[dict[str, object]]:
        total = func.sum(Transaction.amount_cents)
        stmt = self._scoped(
            select(
                Transaction.category.label("category"),
                total.label("total"),
                func.count(Transaction.id).label("count"),
                func.avg(Transaction.amount_cents).label("avg"),
                func.max(Transaction.amount_cents).label("max"),
                func.min(Transaction.amount_cents).label("min"),
            )
            .where(Transaction.type == transaction_type)
            .group_by(Transaction.category)
            .order_by(total.desc(), Transaction.category),
            period,
        )
        return [
            {
                "category": row.category,
                "total_cents": int(row.total or 0),
                "count": int(row.count),
                "avg_cents": float(row.avg or 0),
                "max_cents": int(row.max or 0),
                "min_cents": int(row.min or 0),
            }
            for row in self.session.execute(stmt)
        ]

    def _month_totals(
        self, start: date, end: date
    ) -> dict[tuple[int, int], tuple[int, int]]:
        year = extract("year", Transaction.date).label("year")
        month = extract("month", Transaction.date).label("month")
        stmt = self._scoped(
            select(
                year,
                month,
                self._typed_sum(TransactionType.income).label("income"),
                self._typed_sum(TransactionType.expense).label("expenses"),
            )
            .where(Transaction.date.between(start, end))
            .group_by(year, month)
        )
        return {
            (int(row.year), int(row.month)): (int(row.income or 0), int(row.expenses or 0))
            for row in self.session.execute(stmt)
        }

    def monthly_series(
        self, months: int = 6, *, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        """One entry per calendar month, oldest first, including empty months."""
        buckets = trailing_months(today or local_today(), months)
        last = buckets[-1]
        totals = self._month_totals(buckets[0], month_end(last.year, last.month))
        series = []
        for first in buckets:
            income, expenses = totals.get((first.year, first.month), (0, 0))
            series.append(
                {
                    "year": first.year,
                    "month": first.month,
                    "label": first.strftime("%b %Y"),
                    "income_cents": income,
                    "expense_cents": expenses,
                    "balance_cents": income - expenses,
                }
            )
        return series

    def daily_trend(self, period: Period) -> list[dict[str, object]]:
        """Days with at least one transaction, ordered by date."""
        stmt = self._scoped(
            select(
                Transaction.date.label("day"),
                self._typed_sum(TransactionType.income).label("income"),
                self._typed_sum(TransactionType.expense).label("expenses"),
            )
            .group_by(Transaction.date)
            .order_by(Transaction.date),
            period,
        )
        trend = []
        for row in self.session.execute(stmt):
            income = int(row.income or 0)
            expenses = int(row.expenses or 0)
            trend.append(
                {
                    "date": row.day,
                    "income_cents": income,
                    "expense_cents": expenses,
                    "balance_cents": income - expenses,
                }
            )
        return trend

    def trend(
        self, period: Optional[Period] = None, group_by: str = "month"
    ) -> list[dict[str, object]]:
        if group_by not in ("month", "year"):
            raise ValueError("group_by must be 'month' or 'year'")
        year = extract("year", Transaction.date).label("year")
        keys = [year]
        if group_by == "month":
            keys.append(extract("month", Transaction.date).label("month"))
        stmt = self._scoped(
            select(
                *keys,
                self._typed_sum(TransactionType.income).label("income"),
                self._typed_sum(TransactionType.expense).label("expenses"),
                self._typed_count(TransactionType.income).label("income_count"),
                self._typed_count(TransactionType.expense).label("expense_count"),
            )
            .group_by(*keys)
            .order_by(*keys),
            period,
        )
        buckets = []
        for row in self.session.execute(stmt):
            income = int(row.income or 0)
            expenses = int(row.expenses or 0)
            bucket: dict[str, object] = {"year": int(row.year)}
            if group_by == "month":
                bucket["month"] = int(row.month)
            bucket.update(
                {
                    "income_cents": income,
                    "expense_cents": expenses,
                    "balance_cents": income - expenses,
                    "income_count": int(row.income_count or 0),
                    "expense_count": int(row.expense_count or 0),
                }
            )
            buckets.append(bucket)
        return buckets

    def month_over_month(self, *, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        current_first = month_start(today.year, today.month)
        previous_first = add_months(today, -1)
        current = self.totals(
            Period("month", current_first, month_end(today.year, today.month))
        )
        previous = self.totals(
            Period(
                "last_month",
                previous_first,
                month_end(previous_first.year, previous_first.month),
            )
        )

        def change(now: int, before: int) -> float:
            return ((now - before) / before * 100) if before else 0.0

        return {
            "current": current,
            "previous": previous,
            "income_change": change(current["income_cents"], previous["income_cents"]),
            "expense_change": change(
                current["expense_cents"], previous["expense_cents"]
            ),
        }


class AdminMetricsService(MetricsService):
    def __init__(self, session: Session) -> None:
        super().__init__(session, None)

    def system_summary(self, period: Optional[Period] = None) -> dict[str, object]:
        income = self.type_stats(TransactionType.income, period)
        expenses = self.type_stats(TransactionType.expense, period)
        return {
            "income": income,
            "expenses": expenses,
            "net_cents": int(income["total_cents"]) - int(expenses["total_cents"]),
        }

    def top_spending_users(
        self, period: Optional[Period] = None, *, limit: int = 10
    ) -> list[dict[str, object]]:
        total = func.sum(Transaction.amount_cents)
        stmt = self._scoped(
            select(
                Transaction.user_id.label("user_id"),
                User.name.label("name"),
                User.email.label("email"),
                total.label("total"),
                func.count(Transaction.id).label("count"),
            )
            .outerjoin(User, User.id == Transaction.user_id)
            .where(Transaction.type == TransactionType.expense)
            .group_by(Transaction.user_id, User.name, User.email)
            .order_by(total.desc(), Transaction.user_id)
            .limit(limit),
            period,
        )
        return [
            {
                "user_id": row.user_id,
                "name": row.name,
                "email": row.email,
                "total_cents": int(row.total or 0),
                "count": int(row.count),
            }
            for row in self.session.execute(stmt)
        ]

    def most_used_categories(
        self, period: Optional[Period] = None, *, limit: int = 10
    ) -> list[dict[str, object]]:
        count = func.count(Transaction.id)
        total = func.sum(Transaction.amount_cents)
        stmt = self._scoped(
            select(
                Transaction.category.label("category"),
                count.label("count"),
                total.label("total"),
                func.avg(Transaction.amount_cents).label("avg"),
                func.max(Transaction.amount_cents).label("max"),
                func.min(Transaction.amount_cents).label("min"),
            )
            .where(Transaction.type == TransactionType.expense)
            .group_by(Transaction.category)
            .order_by(count.desc(), total.desc(), Transaction.category)
            .limit(limit),
            period,
        )
        return [
            {
                "category": row.category,
                "count": int(row.count),
                "total_cents": int(row.total or 0),
                "avg_cents": float(row.avg or 0),
                "max_cents": int(row.max or 0),
                "min_cents": int(row.min or 0),
            }
            for row in self.session.execute(stmt)
        ]

    def monthly_growth(
        self, months: int = 6, *, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        series = self.monthly_series(months, today=today)
        for item in series:
            year, month = int(item["year"]), int(item["month"])
            start = datetime.combine(month_start(year, month), datetime.min.time())
            end = datetime.combine(month_end(year, month), datetime.max.time())
            item["new_users"] = int(
                self.session.execute(
                    select(func.count(User.id)).where(User.created_at.between(start, end))
                ).scalar_one()
                or 0
            )
        return series

    def user_stats(self) -> dict[str, int]:
        row = self.session.execute(
            select(
                func.count(User.id).label("total"),
                func.coalesce(
                    func.sum(case((User.status == UserStatus.active, 1), else_=0)), 0
                ).label("active"),
                func.coalesce(
                    func.sum(case((User.role == UserRole.admin, 1), else_=0)), 0
                ).label("admins"),
            )
        ).one()
        total = int(row.total or 0)
        active = int(row.active or 0)
        admins = int(row.admins or 0)
        return {
            "total_users": total,
            "active_users": active,
            "inactive_users": total - active,
            "admin_users": admins,
            "regular_users": total - admins,
        }


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def create(self, data: UserIn) -> User:
        email = data.email.lower()
        if self.session.scalar(select(User.id).where(func.lower(User.email) == email)):
            raise ValueError("Email already registered")
        user = User(
            name=data.name, email=email, role=data.role, status=UserStatus.active
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValueError("Email already registered") from exc
        self.session.refresh(user)
        logger.info(f"user_created: user_id={user.id} role={user.role.value}")
        return user

    def register(self, data: UserIn) -> User:
        """Self-service signup. Always creates a regular user."""
        return self.create(data.model_copy(update={"role": UserRole.user}))


USER_SORT_COLUMNS = {
    "created_at": User.created_at,
    "name": User.name,
    "email": User.email,
    "role": User.role,
    "status": User.status,
}


class AdminUserService:
    def __init__(self, session: Session, admin_id: int) -> None:
        self.session = session
        self.admin_id = admin_id
        self.users = UserService(session)

    def list(
        self,
        *,
        search: Optional[str] = None,
        status: Optional[UserStatus] = None,
        role: Optional[UserRole] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 10,
    ) -> dict[str, object]:
        if sort_by not in USER_SORT_COLUMNS:
            raise ValueError(f"Unsupported sort_by: {sort_by}")
        if sort_order not in ("asc", "desc"):
            raise ValueError(f"Unsupported sort_order: {sort_order}")
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")

        filters = []
        if search:
            like = f"%{search.lower()}%"
            filters.append(
                or_(func.lower(User.name).like(like), func.lower(User.email).like(like))
            )
        if status:
            filters.append(User.status == status)
        if role:
            filters.append(User.role == role)

        total = int(
            self.session.scalar(select(func.count(User.id)).where(*filters)) or 0
        )
        column = USER_SORT_COLUMNS[sort_by]
        order = column.asc() if sort_order == "asc" else column.desc()
        users = self.session.scalars(
            select(User)
            .where(*filters)
            .order_by(order, User.id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        total_pages = math.ceil(total / limit)
        return {
            "users": list(users),
            "pagination": {
                "current_page": page,
                "total_pages": total_pages,
                "total_users": total,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
            "stats": AdminMetricsService(self.session).user_stats(),
        }

    def create(self, data: UserIn) -> User:
        return self.users.create(data)

    def update_role(self, user_id: int, role: UserRole) -> User:
        if user_id == self.admin_id:
            raise ValueError("Cannot change your own role")
        user = self.users.get(user_id)
        user.role = role
        self.session.commit()
        self.session.refresh(user)
        logger.info(
            f"user_role_changed: user_id={user.id} role={role.value} by={self.admin_id}"
        )
        return user

    def update_status(self, user_id: int, status: UserStatus) -> User:
        if user_id == self.admin_id and status == UserStatus.inactive:
            raise ValueError("Cannot deactivate your own account")
        user = self.users.get(user_id)
        user.status = status
        self.session.commit()
        self.session.refresh(user)
        logger.info(
            f"user_status_changed: user_id={user.id} status={status.value} by={self.admin_id}"
        )
        return user

    def delete(self, user_id: int) -> dict[str, int]:
        """Remove a user with their ledger, budgets and own categories in one commit."""
        if user_id == self.admin_id:
            raise ValueError("Cannot delete your own account")
        user = self.users.get(user_id)
        removed: dict[str, int] = {}
        try:
            for key, model in (
                ("transactions", Transaction),
                ("budgets", Budget),
                ("categories", Category),
            ):
                result = self.session.execute(delete(model).where(model.user_id == user_id))
                removed[key] = result.rowcount or 0
            self.session.delete(user)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(f"user_delete_failed: user_id={user_id}")
            raise
        logger.info(
            f"user_deleted: user_id={user_id} by={self.admin_id} "
            f"transactions={removed['transactions']} budgets={removed['budgets']} "
            f"categories={removed['categories']}"
        )
        return removed


DEFAULT_CATEGORIES: list[tuple[str, TransactionType, str]] = [
    ("Salary", TransactionType.income, "#10b981"),
    ("Freelance", TransactionType.income, "#3b82f6"),
    ("Business", TransactionType.income, "#8b5cf6"),
    ("Investment", TransactionType.income, "#f59e0b"),
    ("Rental Income", TransactionType.income, "#06b6d4"),
    ("Bonus", TransactionType.income, "#84cc16"),
    ("Commission", TransactionType.income, "#f97316"),
    ("Gift", TransactionType.income, "#ec4899"),
    ("Dividends", TransactionType.income, "#6366f1"),
    ("Side Hustle", TransactionType.income, "#14b8a6"),
    ("Refunds", TransactionType.income, "#f472b6"),
    ("Other Income", TransactionType.income, "#64748b"),
    ("Food & Dining", TransactionType.expense, "#ef4444"),
    ("Transportation", TransactionType.expense, "#06b6d4"),
    ("Shopping", TransactionType.expense, "#84cc16"),
    ("Entertainment", TransactionType.expense, "#f97316"),
    ("Bills & Utilities", TransactionType.expense, "#64748b"),
    ("Healthcare", TransactionType.expense, "#dc2626"),
    ("Education", TransactionType.expense, "#7c3aed"),
    ("Travel", TransactionType.expense, "#059669"),
    ("Groceries", TransactionType.expense, "#22c55e"),
    ("Rent", TransactionType.expense, "#8b5cf6"),
    ("Insurance", TransactionType.expense, "#0ea5e9"),
    ("Fitness", TransactionType.expense, "#f59e0b"),
    ("Personal Care", TransactionType.expense, "#ec4899"),
    ("Home & Garden", TransactionType.expense, "#10b981"),
    ("Subscriptions", TransactionType.expense, "#8b5cf6"),
    ("Clothing", TransactionType.expense, "#f472b6"),
    ("Electronics", TransactionType.expense, "#3b82f6"),
    ("Gifts & Donations", TransactionType.expense, "#14b8a6"),
    ("Taxes", TransactionType.expense, "#dc2626"),
    ("Debt Payments", TransactionType.expense, "#991b1b"),
    ("Other Expense", TransactionType.expense, "#374151"),
]


def bootstrap_defaults(session: Session) -> dict[str, int]:
    """Seed default categories and the admin account if they are missing."""
    settings = get_settings()
    created = {"categories": 0, "admins": 0}

    has_defaults = session.scalar(
        select(func.count(Category.id)).where(Category.is_default.is_(True))
    )
    if not has_defaults:
        session.add_all(
            Category(user_id=None, name=name, type=txn_type, color=color, is_default=True)
            for name, txn_type, color in DEFAULT_CATEGORIES
        )
        created["categories"] = len(DEFAULT_CATEGORIES)

    admin = session.scalar(select(User).where(User.email == settings.admin_email))
    if admin is None:
        session.add(
            User(
                name=settings.admin_name,
                email=settings.admin_email,
                role=UserRole.admin,
                status=UserStatus.active,
            )
        )
        created["admins"] = 1

    session.commit()
    logger.info(
        f"bootstrap: categories_created={created['categories']} admins_created={created['admins']}"
    )
    return created
