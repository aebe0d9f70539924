import logging
from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from config import get_settings
from database import Base
from models import Budget, MonthName, Transaction, TransactionType
from schemas import BudgetIn, TransactionIn
from services import (
    BudgetAuditService,
    BudgetConflictError,
    BudgetService,
    NotFoundError,
    TransactionService,
    bootstrap_defaults,
)

USER_ID = 1


def _expense(amount_cents: int, category: str, on: date) -> TransactionIn:
    return TransactionIn(
        type=TransactionType.expense,
        description=f"{category} purchase",
        amount_cents=amount_cents,
        category=category,
        date=on,
    )


def test_duplicate_budget_is_rejected_with_existing_id() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, USER_ID)
        first = budgets.create(
            BudgetIn(category="Food", month=MonthName.may, year=2025, budget_cents=40_000)
        )

        with pytest.raises(BudgetConflictError) as excinfo:
            budgets.create(
                BudgetIn(
                    category="Food", month=MonthName.may, year=2025, budget_cents=10_000
                )
            )
        assert excinfo.value.budget_id == first.id
        assert "Food" in str(excinfo.value)

        # Another owner may budget the same category and month.
        other = BudgetService(session, 2).create(
            BudgetIn(category="Food", month=MonthName.may, year=2025, budget_cents=10_000)
        )
        assert other.id != first.id


def test_update_reseeds_spent_for_the_new_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        txns = TransactionService(session, USER_ID)
        txns.create(_expense(3_000, "Food", date(2025, 5, 4)))
        txns.create(_expense(1_100, "Food", date(2025, 6, 4)))
        txns.create(_expense(900, "Groceries", date(2025, 6, 9)))

        budgets = BudgetService(session, USER_ID)
        budget = budgets.create(
            BudgetIn(category="Food", month=MonthName.may, year=2025, budget_cents=40_000)
        )
        assert budget.spent_cents == 3_000

        moved = budgets.update(
            budget.id,
            BudgetIn(category="Food", month=MonthName.june, year=2025, budget_cents=45_000),
        )
        assert moved.spent_cents == 1_100
        assert moved.budget_cents == 45_000

        renamed = budgets.update(
            budget.id,
            BudgetIn(
                category="Groceries", month=MonthName.june, year=2025, budget_cents=45_000
            ),
        )
        assert renamed.spent_cents == 900


def test_update_onto_existing_key_conflicts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, USER_ID)
        may = budgets.create(
            BudgetIn(category="Food", month=MonthName.may, year=2025, budget_cents=100)
        )
        june = budgets.create(
            BudgetIn(category="Food", month=MonthName.june, year=2025, budget_cents=100)
        )

        with pytest.raises(BudgetConflictError) as excinfo:
            budgets.update(
                june.id,
                BudgetIn(category="Food", month=MonthName.may, year=2025, budget_cents=100),
            )
        assert excinfo.value.budget_id == may.id
        assert budgets.get(june.id).month == MonthName.june


def test_delete_budget_keeps_transactions() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        txn = TransactionService(session, USER_ID).create(
            _expense(2_000, "Rent", date(2025, 1, 1))
        )
        budgets = BudgetService(session, USER_ID)
        budget = budgets.create(
            BudgetIn(category="Rent", month=MonthName.january, year=2025, budget_cents=90_000)
        )
        budgets.delete(budget.id)

        assert session.scalar(select(Budget).where(Budget.id == budget.id)) is None
        assert session.get(Transaction, txn.id) is not None
        with pytest.raises(NotFoundError):
            budgets.get(budget.id)


def test_budgets_are_scoped_to_owner() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = BudgetService(session, USER_ID).create(
            BudgetIn(category="Food", month=MonthName.may, year=2025, budget_cents=100)
        )
        intruder = BudgetService(session, 2)
        with pytest.raises(NotFoundError):
            intruder.get(budget.id)
        with pytest.raises(NotFoundError):
            intruder.delete(budget.id)
        assert intruder.list_all() == []


def test_list_orders_newest_year_then_calendar_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, USER_ID)
        for month, year in (
            (MonthName.august, 2024),
            (MonthName.april, 2025),
            (MonthName.december, 2024),
            (MonthName.february, 2025),
        ):
            budgets.create(
                BudgetIn(category="Food", month=month, year=year, budget_cents=100)
            )

        ordered = [(b.year, b.month) for b in budgets.list_all()]
        assert ordered == [
            (2025, MonthName.february),
            (2025, MonthName.april),
            (2024, MonthName.august),
            (2024, MonthName.december),
        ]


def test_audit_reports_drift_without_correcting(caplog) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = BudgetService(session, USER_ID).create(
            BudgetIn(category="Food", month=MonthName.may, year=2025, budget_cents=100)
        )
        BudgetService(session, 2).create(
            BudgetIn(category="Food", month=MonthName.may, year=2025, budget_cents=100)
        )
        session.add(
            Transaction(
                user_id=USER_ID,
                type=TransactionType.expense,
                description="Imported",
                amount_cents=350,
                category="Food",
                date=date(2025, 5, 20),
            )
        )
        session.commit()

        with caplog.at_level(logging.WARNING, logger="services"):
            drifted = BudgetAuditService(session).audit()

        assert drifted == [
            {
                "budget_id": budget.id,
                "user_id": USER_ID,
                "category": "Food",
                "month": MonthName.may,
                "year": 2025,
                "cached_cents": 0,
                "actual_cents": 350,
            }
        ]
        assert any("budget_drift" in r.getMessage() for r in caplog.records)
        assert BudgetService(session, USER_ID).get(budget.id).spent_cents == 0
        assert BudgetAuditService(session).audit(user_id=2) == []


def test_strict_categories_reject_unknown_names(monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "strict_categories", True)
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        bootstrap_defaults(session)
        budgets = BudgetService(session, USER_ID)
        budgets.create(
            BudgetIn(category="Groceries", month=MonthName.may, year=2025, budget_cents=100)
        )
        with pytest.raises(ValueError):
            budgets.create(
                BudgetIn(category="Salary", month=MonthName.may, year=2025, budget_cents=100)
            )
        with pytest.raises(ValueError):
            TransactionService(session, USER_ID).create(
                _expense(100, "Made Up", date(2025, 5, 1))
            )
