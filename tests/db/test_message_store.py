from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from src.core.db import MessageStore, MessageStoreError
from src.models.message import PrivateMessage

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _store(tmp_path: Path) -> MessageStore:
    store = MessageStore(tmp_path / "db.sqlite3")
    store.apply_schema(Path("db/schema.sql").read_text(encoding="utf-8"))
    return store


def _msg(author_id: int = 1, created_at: datetime = T0, kind: str = "private_message") -> PrivateMessage:
    return PrivateMessage(
        author_id=author_id,
        recipient_ids=[2, 3],
        subject="hello",
        body="hi there",
        kind=kind,
        created_at=created_at,
    )


def test_insert_and_get_roundtrip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    msg = _msg()
    store.insert_message(msg)

    loaded = store.get_message(msg.message_id)
    assert loaded == msg
    assert store.get_message("msg_missing00") is None


def test_duplicate_insert_is_rejected(tmp_path: Path) -> None:
    store = _store(tmp_path)
    msg = _msg()
    store.insert_message(msg)
    with pytest.raises(MessageStoreError):
        store.insert_message(msg)


def test_count_is_strictly_after_cutoff(tmp_path: Path) -> None:
    store = _store(tmp_path)
    cutoff = T0 - timedelta(minutes=10)
    store.insert_message(_msg(created_at=cutoff))
    store.insert_message(_msg(created_at=cutoff + timedelta(microseconds=1)))
    store.insert_message(_msg(created_at=T0))
    store.insert_message(_msg(created_at=cutoff - timedelta(minutes=1)))

    assert store.count_created_since(user_id=1, kind="private_message", since=cutoff) == 2


def test_count_filters_author_and_kind(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.insert_message(_msg(author_id=1))
    store.insert_message(_msg(author_id=4))
    store.insert_message(_msg(author_id=1, kind="announcement"))

    since = T0 - timedelta(hours=1)
    assert store.count_created_since(user_id=1, kind="private_message", since=since) == 1


def test_count_compares_across_timezones(tmp_path: Path) -> None:
    store = _store(tmp_path)
    plus_two = timezone(timedelta(hours=2))
    store.insert_message(_msg(created_at=T0.astimezone(plus_two)))

    assert store.count_created_since(1, "private_message", T0 - timedelta(seconds=1)) == 1
    assert store.count_created_since(1, "private_message", T0) == 0


def test_delete_removes_message(tmp_path: Path) -> None:
    store = _store(tmp_path)
    msg = _msg()
    store.insert_message(msg)
    store.delete_message(msg.message_id)
    assert store.get_message(msg.message_id) is None
    with pytest.raises(MessageStoreError):
        store.delete_message(msg.message_id)


def test_list_messages_for_user_includes_received(tmp_path: Path) -> None:
    store = _store(tmp_path)
    sent = PrivateMessage(author_id=2, recipient_ids=[7], subject="s", body="b", created_at=T0)
    store.insert_message(
        PrivateMessage(author_id=5, recipient_ids=[2], subject="s", body="b", created_at=T0)
    )
    store.insert_message(sent)

    rows = store.list_messages_for_user(user_id=2)
    assert len(rows) == 2
    assert rows[0]["message_id"] == sent.message_id


def test_schema_apply_is_repeatable(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.apply_schema(Path("db/schema.sql").read_text(encoding="utf-8"))
    store.insert_message(_msg())
    assert store.count_created_since(1, "private_message", T0 - timedelta(minutes=1)) == 1
