from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from models import Category, TransactionType, User, UserRole
from schemas import CategoryIn, TransactionIn
from services import (
    DEFAULT_CATEGORIES,
    CategoryService,
    DefaultCategoryService,
    NotFoundError,
    TransactionService,
    bootstrap_defaults,
)

USER_ID = 1


def test_bootstrap_is_idempotent() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        first = bootstrap_defaults(session)
        second = bootstrap_defaults(session)

        assert first == {"categories": len(DEFAULT_CATEGORIES), "admins": 1}
        assert second == {"categories": 0, "admins": 0}
        assert session.scalar(select(func.count(Category.id))) == len(DEFAULT_CATEGORIES)
        admins = session.scalars(select(User).where(User.role == UserRole.admin)).all()
        assert len(admins) == 1


def test_user_category_overrides_default_of_same_name() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        bootstrap_defaults(session)
        categories = CategoryService(session, USER_ID)
        mine = categories.create(
            CategoryIn(name="Groceries", type=TransactionType.expense, color="#000000")
        )

        expense = categories.list_by_type(TransactionType.expense)
        groceries = [c for c in expense if c.name == "Groceries"]
        assert [c.id for c in groceries] == [mine.id]

        # Other users still see the default.
        theirs = CategoryService(session, 2).list_by_type(TransactionType.expense)
        assert [c.is_default for c in theirs if c.name == "Groceries"] == [True]

        listed = categories.list_all()
        assert listed[0].type == TransactionType.income
        assert "Groceries" in categories.names_for(TransactionType.expense)
        assert "Groceries" not in categories.names_for(TransactionType.income)


def test_user_category_duplicates_and_ownership() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        categories = CategoryService(session, USER_ID)
        pets = categories.create(CategoryIn(name="Pets", type=TransactionType.expense))
        with pytest.raises(ValueError):
            categories.create(CategoryIn(name="pets", type=TransactionType.expense))
        # Same name is allowed for the other type.
        categories.create(CategoryIn(name="Pets", type=TransactionType.income))

        with pytest.raises(NotFoundError):
            CategoryService(session, 2).delete(pets.id)
        categories.delete(pets.id)
        assert "Pets" not in categories.names_for(TransactionType.expense)


def test_user_category_get_and_update() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        bootstrap_defaults(session)
        categories = CategoryService(session, USER_ID)
        books = categories.create(CategoryIn(name="Books", type=TransactionType.expense))
        categories.create(CategoryIn(name="Music", type=TransactionType.expense))

        assert categories.get(books.id).name == "Books"

        updated = categories.update(
            books.id,
            CategoryIn(name="Reading", type=TransactionType.expense, color="#abcdef"),
        )
        assert (updated.name, updated.color) == ("Reading", "#abcdef")
        # Keeping its own name with different casing is not a clash.
        categories.update(books.id, CategoryIn(name="READING", type=TransactionType.expense))

        with pytest.raises(ValueError):
            categories.update(books.id, CategoryIn(name="music", type=TransactionType.expense))
        assert categories.get(books.id).name == "READING"

        with pytest.raises(NotFoundError):
            CategoryService(session, 2).get(books.id)
        with pytest.raises(NotFoundError):
            CategoryService(session, 2).update(
                books.id, CategoryIn(name="Mine", type=TransactionType.expense)
            )

        default_id = session.scalar(
            select(Category.id).where(Category.is_default.is_(True))
        )
        with pytest.raises(NotFoundError):
            categories.get(default_id)


def test_default_category_admin_and_usage_guard() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        defaults = DefaultCategoryService(session)
        hobbies = defaults.create(
            CategoryIn(name="Hobbies", type=TransactionType.expense, color="#123456"),
            created_by=7,
        )
        assert hobbies.is_default and hobbies.user_id is None

        with pytest.raises(ValueError):
            defaults.create(CategoryIn(name="hobbies", type=TransactionType.expense))

        TransactionService(session, USER_ID).create(
            TransactionIn(
                type=TransactionType.expense,
                description="Paint",
                amount_cents=1_500,
                category="Hobbies",
                date=date(2024, 3, 1),
            )
        )
        rows = defaults.list_with_usage(TransactionType.expense)
        assert [(r["category"].name, r["transactions"]) for r in rows] == [("Hobbies", 1)]

        with pytest.raises(ValueError):
            defaults.delete(hobbies.id)

        renamed = defaults.update(
            hobbies.id,
            CategoryIn(name="Crafts", type=TransactionType.expense, color="#654321"),
        )
        assert renamed.name == "Crafts"
        defaults.delete(hobbies.id)
        with pytest.raises(NotFoundError):
            defaults.delete(hobbies.id)
