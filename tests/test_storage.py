import logging
import re

from flyer_bot.media.storage import ArtifactStore, sender_digits

from conftest import SENDER


def test_sender_digits():
    assert sender_digits("5511999999999@c.us") == "5511999999999"
    assert sender_digits("120363419242712121@g.us") == "120363419242712121"
    assert sender_digits("") == ""


def test_store_uploads_under_prefix_with_upsert(db):
    store = ArtifactStore(db, "encartes")

    path = store.store(b"jpeg-bytes", "image/jpeg", SENDER)

    assert re.fullmatch(r"encartes-publico/encarte-5511999999999-\d+-[0-9a-f]{8}\.jpg", path)
    data, options = db.storage.objects[("encartes", path)]
    assert data == b"jpeg-bytes"
    assert options == {"content-type": "image/jpeg", "upsert": "true"}


def test_extension_follows_mime_type(db):
    store = ArtifactStore(db, "encartes", prefix="flyers/")

    assert store.store(b"x", "image/png", SENDER).endswith(".png")
    assert store.store(b"x", "image/webp", SENDER).startswith("flyers/encarte-")
    assert store.store(b"x", "", SENDER).endswith(".jpg")


def test_back_to_back_uploads_never_collide(db):
    store = ArtifactStore(db, "encartes")

    paths = [store.store(b"x", "image/jpeg", SENDER) for _ in range(50)]
    paths += [store.store(b"x", "image/jpeg", "5521888888888@c.us") for _ in range(5)]

    assert len(set(paths)) == len(paths)
    assert len(db.storage.objects) == len(paths)


def test_same_stamp_in_two_processes_still_differs(db, monkeypatch):
    monkeypatch.setattr("flyer_bot.media.storage.artifact_stamp", lambda: 1700000000000)
    first = ArtifactStore(db, "encartes")
    second = ArtifactStore(db, "encartes")

    a = first.store(b"x", "image/jpeg", SENDER)
    b = second.store(b"y", "image/jpeg", SENDER)

    assert a != b
    assert a.startswith("encartes-publico/encarte-5511999999999-1700000000000-")
    assert db.storage.objects[("encartes", a)][0] == b"x"


def test_upload_failure_returns_none_and_logs(db, caplog):
    db.storage.error = RuntimeError("bucket not found")
    store = ArtifactStore(db, "encartes")

    with caplog.at_level(logging.ERROR, logger="flyer_bot.media.storage"):
        assert store.store(b"x", "image/jpeg", SENDER) is None

    assert db.storage.objects == {}
    assert "bucket not found" in caplog.text
    assert SENDER in caplog.text
