import logging
from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from database import Base
from models import MonthName, Transaction, TransactionType
from schemas import BudgetIn, TransactionIn
from services import (
    BudgetKey,
    BudgetReconciler,
    BudgetService,
    ExpenseEntry,
    TransactionService,
    bucket_adjustments,
)

USER_ID = 1


def _expense(
    amount_cents: int, category: str, on: date, description: str = "Expense"
) -> TransactionIn:
    return TransactionIn(
        type=TransactionType.expense,
        description=description,
        amount_cents=amount_cents,
        category=category,
        date=on,
    )


def _budget(
    category: str, month: MonthName, year: int = 2024, budget_cents: int = 500_000
) -> BudgetIn:
    return BudgetIn(category=category, month=month, year=year, budget_cents=budget_cents)


def test_food_budget_follows_expense_lifecycle() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        txns = TransactionService(session, USER_ID)
        budgets = BudgetService(session, USER_ID)

        earlier = txns.create(_expense(30_000, "Food", date(2024, 3, 5), "Market"))
        food = budgets.create(_budget("Food", MonthName.march))
        assert food.spent_cents == 30_000

        lunch = txns.create(_expense(120_000, "Food", date(2024, 3, 10), "Lunch"))
        assert budgets.get(food.id).spent_cents == 150_000

        txns.update(lunch.id, _expense(80_000, "Food", date(2024, 3, 10), "Lunch"))
        assert budgets.get(food.id).spent_cents == 110_000

        txns.update(lunch.id, _expense(80_000, "Transport", date(2024, 3, 10), "Lunch"))
        assert budgets.get(food.id).spent_cents == 30_000
        assert len(budgets.list_all()) == 1

        txns.delete(earlier.id)
        assert budgets.get(food.id).spent_cents == 0


def test_month_boundaries_belong_to_their_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        txns = TransactionService(session, USER_ID)
        txns.create(_expense(100, "Food", date(2024, 2, 29)))
        txns.create(_expense(200, "Food", date(2024, 3, 1)))
        txns.create(_expense(400, "Food", date(2024, 3, 31)))
        txns.create(_expense(800, "Food", date(2024, 4, 1)))

        budget = BudgetService(session, USER_ID).create(_budget("Food", MonthName.march))
        assert budget.spent_cents == 600

        txns.create(_expense(1_000, "Food", date(2024, 3, 31)))
        txns.create(_expense(2_000, "Food", date(2024, 4, 1)))
        assert BudgetService(session, USER_ID).get(budget.id).spent_cents == 1_600


def test_category_and_month_moves_shift_exact_amounts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, USER_ID)
        food_march = budgets.create(_budget("Food", MonthName.march))
        food_april = budgets.create(_budget("Food", MonthName.april))
        travel_april = budgets.create(_budget("Travel", MonthName.april))

        txns = TransactionService(session, USER_ID)
        txn = txns.create(_expense(5_000, "Food", date(2024, 3, 20)))

        txns.update(txn.id, _expense(5_000, "Food", date(2024, 4, 2)))
        assert budgets.get(food_march.id).spent_cents == 0
        assert budgets.get(food_april.id).spent_cents == 5_000

        txns.update(txn.id, _expense(7_500, "Travel", date(2024, 4, 2)))
        assert budgets.get(food_april.id).spent_cents == 0
        assert budgets.get(travel_april.id).spent_cents == 7_500


def test_changing_type_to_income_releases_the_budget() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = BudgetService(session, USER_ID).create(_budget("Refunds", MonthName.may))
        txns = TransactionService(session, USER_ID)
        txn = txns.create(_expense(2_500, "Refunds", date(2024, 5, 3)))
        assert BudgetService(session, USER_ID).get(budget.id).spent_cents == 2_500

        txns.update(
            txn.id,
            TransactionIn(
                type=TransactionType.income,
                description="Refund",
                amount_cents=2_500,
                category="Refunds",
                date=date(2024, 5, 3),
            ),
        )
        assert BudgetService(session, USER_ID).get(budget.id).spent_cents == 0


def test_income_and_other_owners_never_touch_budget() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = BudgetService(session, USER_ID).create(_budget("Food", MonthName.june))
        TransactionService(session, USER_ID).create(
            TransactionIn(
                type=TransactionType.income,
                description="Sold a couch",
                amount_cents=9_000,
                category="Food",
                date=date(2024, 6, 1),
            )
        )
        TransactionService(session, 2).create(_expense(4_000, "Food", date(2024, 6, 1)))
        TransactionService(session, USER_ID).create(
            _expense(1_000, "food", date(2024, 6, 1))
        )
        assert BudgetService(session, USER_ID).get(budget.id).spent_cents == 0


def test_incremental_reconciliation_matches_bulk_recompute() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, USER_ID)
        for category in ("Food", "Rent", "Travel"):
            for month in (MonthName.january, MonthName.february):
                budgets.create(_budget(category, month))

        txns = TransactionService(session, USER_ID)
        a = txns.create(_expense(1_250, "Food", date(2024, 1, 3)))
        b = txns.create(_expense(90_000, "Rent", date(2024, 1, 1)))
        c = txns.create(_expense(4_400, "Travel", date(2024, 2, 14)))
        txns.create(_expense(610, "Food", date(2024, 2, 29)))
        txns.update(a.id, _expense(1_300, "Travel", date(2024, 1, 31)))
        txns.update(b.id, _expense(95_000, "Rent", date(2024, 2, 1)))
        txns.delete(c.id)
        txns.create(_expense(75, "Food", date(2024, 1, 31)))

        reconciler = BudgetReconciler(session)
        for budget in budgets.list_all():
            assert budget.spent_cents == reconciler.expense_sum(BudgetKey.for_budget(budget))

        result = budgets.refresh_all()
        assert result == {"refreshed": 6, "corrected": []}


def test_refresh_repairs_drift_and_is_idempotent() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budgets = BudgetService(session, USER_ID)
        budget = budgets.create(_budget("Food", MonthName.march))
        # Written behind the service's back, so the cached value drifts.
        session.add(
            Transaction(
                user_id=USER_ID,
                type=TransactionType.expense,
                description="Imported",
                amount_cents=4_200,
                category="Food",
                date=date(2024, 3, 15),
            )
        )
        session.commit()
        assert budgets.get(budget.id).spent_cents == 0

        first = budgets.refresh_all()
        assert first == {"refreshed": 1, "corrected": [budget.id]}
        assert budgets.get(budget.id).spent_cents == 4_200

        second = budgets.refresh_all()
        assert second == {"refreshed": 1, "corrected": []}
        assert budgets.get(budget.id).spent_cents == 4_200


def test_negative_spent_is_logged_not_clamped(caplog) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        budget = BudgetService(session, USER_ID).create(_budget("Food", MonthName.march))
        stray = Transaction(
            user_id=USER_ID,
            type=TransactionType.expense,
            description="Imported",
            amount_cents=700,
            category="Food",
            date=date(2024, 3, 2),
        )
        session.add(stray)
        session.commit()

        with caplog.at_level(logging.WARNING, logger="services"):
            TransactionService(session, USER_ID).delete(stray.id)

        assert BudgetService(session, USER_ID).get(budget.id).spent_cents == -700
        assert any("budget_negative_spent" in r.getMessage() for r in caplog.records)


def test_reconcile_failure_does_not_block_ledger_write(monkeypatch, caplog) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    def failing_adjust(self, key, delta_cents):
        raise OperationalError("UPDATE budgets", {}, Exception("database is locked"))

    with Session(engine) as session:
        budgets = BudgetService(session, USER_ID)
        budget = budgets.create(_budget("Food", MonthName.march))

        monkeypatch.setattr(BudgetReconciler, "adjust", failing_adjust)
        with caplog.at_level(logging.ERROR, logger="services"):
            txn = TransactionService(session, USER_ID).create(
                _expense(1_500, "Food", date(2024, 3, 9))
            )
        monkeypatch.undo()

        assert TransactionService(session, USER_ID).get(txn.id).amount_cents == 1_500
        assert budgets.get(budget.id).spent_cents == 0
        assert any("budget_reconcile_failed" in r.getMessage() for r in caplog.records)

        assert budgets.refresh_all()["corrected"] == [budget.id]
        assert budgets.get(budget.id).spent_cents == 1_500


def test_stale_session_does_not_lose_increments(tmp_path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)

    with Session(engine) as setup:
        budget_id = BudgetService(setup, USER_ID).create(_budget("Food", MonthName.march)).id

    with Session(engine) as first, Session(engine) as second:
        stale = BudgetService(second, USER_ID).get(budget_id)
        assert stale.spent_cents == 0

        TransactionService(first, USER_ID).create(_expense(1_000, "Food", date(2024, 3, 1)))
        TransactionService(second, USER_ID).create(_expense(2_000, "Food", date(2024, 3, 2)))

    with Session(engine) as check:
        assert BudgetService(check, USER_ID).get(budget_id).spent_cents == 3_000


def test_bucket_adjustments_rules() -> None:
    march = BudgetKey(USER_ID, "Food", MonthName.march, 2024)
    april = BudgetKey(USER_ID, "Food", MonthName.april, 2024)

    assert bucket_adjustments(None, ExpenseEntry(march, 500)) == [(march, 500)]
    assert bucket_adjustments(ExpenseEntry(march, 500), None) == [(march, -500)]
    assert bucket_adjustments(ExpenseEntry(march, 500), ExpenseEntry(march, 300)) == [
        (march, -200)
    ]
    assert bucket_adjustments(ExpenseEntry(march, 500), ExpenseEntry(march, 500)) == []
    assert bucket_adjustments(ExpenseEntry(march, 500), ExpenseEntry(april, 800)) == [
        (march, -500),
        (april, 800),
    ]
    assert bucket_adjustments(None, None) == []


def test_budget_key_derives_month_from_date() -> None:
    key = BudgetKey.for_date(USER_ID, "Food", date(2024, 12, 31))
    assert key.month == MonthName.december
    assert key.year == 2024
    assert key.start == date(2024, 12, 1)
    assert key.end == date(2024, 12, 31)
