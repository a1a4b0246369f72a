from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from database import Base
from models import Item
from store import ItemStore, PartialWriteFailure, StorageError


def _items(count: int) -> list[dict]:
    return [{"PK": "P", "SK": f"item#{i}", "value": i} for i in range(count)]


def test_batch_put_drops_existing_keys_by_default() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = ItemStore(session)
        store.put({"PK": "P", "SK": "a", "value": 1})

        written = store.batch_put(
            [{"PK": "P", "SK": "a", "value": 2}, {"PK": "P", "SK": "b", "value": 3}]
        )

        assert written == 1
        assert store.get("P", "a")["value"] == 1
        assert store.get("P", "b")["value"] == 3


def test_batch_put_can_overwrite() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = ItemStore(session)
        store.put({"PK": "P", "SK": "a", "value": 1})

        written = store.batch_put(
            [{"PK": "P", "SK": "a", "value": 2}], if_not_exists=False
        )

        assert written == 1
        assert store.get("P", "a")["value"] == 2


def test_batch_put_commits_once_per_chunk(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        commits = []
        original_commit = session.commit

        def counting_commit():
            commits.append(1)
            original_commit()

        monkeypatch.setattr(session, "commit", counting_commit)
        written = ItemStore(session).batch_put(_items(5), chunk_size=2)

        assert written == 5
        assert len(commits) == 3


def test_batch_put_reports_partial_write(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = ItemStore(session)
        calls = {"count": 0}
        original_commit = session.commit

        def flaky_commit():
            calls["count"] += 1
            if calls["count"] == 2:
                raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
            original_commit()

        monkeypatch.setattr(session, "commit", flaky_commit)
        with pytest.raises(PartialWriteFailure) as excinfo:
            store.batch_put(_items(4), chunk_size=2)
        monkeypatch.undo()

        assert excinfo.value.written == 2
        assert [item["SK"] for item in store.query("P")] == ["item#0", "item#1"]


def test_batch_put_first_chunk_failure_is_storage_error(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = ItemStore(session)

        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(session, "commit", failing_commit)
        with pytest.raises(StorageError) as excinfo:
            store.batch_put(_items(2))

        assert not isinstance(excinfo.value, PartialWriteFailure)


def test_query_and_index_lookups() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = ItemStore(session)
        store.batch_put(
            [
                {"PK": "ENV", "SK": "2024-02#Food", "GSI1PK": "M#2024-02", "GSI1SK": "b"},
                {"PK": "ENV", "SK": "2024-01#Food", "GSI1PK": "M#2024-01", "GSI1SK": "a"},
                {"PK": "ENV", "SK": "2024-01#Bills", "GSI1PK": "M#2024-01", "GSI1SK": "c"},
                {"PK": "OTHER", "SK": "2024-01#Food", "GSI1PK": "M#2024-01", "GSI1SK": "d"},
            ]
        )

        january = store.query("ENV", sk_prefix="2024-01#")
        assert [item["SK"] for item in january] == ["2024-01#Bills", "2024-01#Food"]

        indexed = store.query_index("M#2024-01")
        assert [item["GSI1SK"] for item in indexed] == ["a", "c", "d"]
        assert [item["GSI1SK"] for item in store.query_index("M#2024-01", sk_lt="c")] == [
            "a"
        ]


def test_scan_filtered_matches_prefix_and_attribute() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = ItemStore(session)
        store.put({"PK": "USER#a#TEMPLATE#One", "SK": "x", "template_name": "One"})
        store.put({"PK": "USER#a#TEMPLATE#Two", "SK": "x", "template_name": "Two"})
        store.put({"PK": "USER#b#TEMPLATE#One", "SK": "x", "template_name": "One"})

        assert len(store.scan_filtered("USER#a#TEMPLATE#")) == 2
        matched = store.scan_filtered("USER#a#", "template_name", "Two")
        assert [item["PK"] for item in matched] == ["USER#a#TEMPLATE#Two"]


def test_update_applies_only_present_fields() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = ItemStore(session)
        store.put(
            {
                "PK": "P",
                "SK": "a",
                "GSI1PK": "IDX",
                "GSI1SK": "old",
                "amount": Decimal("12.50"),
                "name": "Rent",
            }
        )

        updated = store.update("P", "a", {"amount": Decimal("13.00"), "GSI1SK": "new"})

        assert updated["amount"] == "13.00"
        assert updated["name"] == "Rent"
        assert updated["GSI1SK"] == "new"
        assert store.query_index("IDX")[0]["SK"] == "a"
        assert store.update("P", "missing", {"amount": 1}) is None
        assert store.get("P", "missing") is None


def test_delete_and_batch_delete() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = ItemStore(session)
        store.batch_put(_items(3))

        assert store.delete("P", "item#0") is True
        assert store.delete("P", "item#0") is False
        assert store.batch_delete([("P", "item#1"), ("P", "item#2")]) == 2
        assert store.query("P") == []


def test_batch_put_retries_chunk_after_key_collision(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = ItemStore(session)
        calls = {"count": 0}
        original_commit = session.commit

        def colliding_commit():
            calls["count"] += 1
            if calls["count"] == 1:
                # A concurrent writer commits item#0 first.
                session.rollback()
                session.add(Item(pk="P", sk="item#0", attributes={"value": "rival"}))
                original_commit()
                raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
            original_commit()

        monkeypatch.setattr(session, "commit", colliding_commit)
        written = store.batch_put(_items(2))
        monkeypatch.undo()

        assert written == 1
        assert calls["count"] == 2
        assert store.get("P", "item#0")["value"] == "rival"
        assert store.get("P", "item#1")["value"] == 1


def test_batch_put_gives_up_after_second_collision(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        store = ItemStore(session)
        calls = {"count": 0}

        def always_colliding_commit():
            calls["count"] += 1
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        monkeypatch.setattr(session, "commit", always_colliding_commit)
        with pytest.raises(StorageError):
            store.batch_put(_items(2))

        assert calls["count"] == 2
