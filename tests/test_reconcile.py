import io
import os
import time
from datetime import timedelta

from filevault.models import UserSession
from filevault.models.database import utcnow
from filevault.reconcile import main


def test_reconcile_command(monkeypatch, session_factory, storage, users, db):
    u1, _ = users
    monkeypatch.setattr("filevault.reconcile.SessionLocal", session_factory)
    monkeypatch.setattr("filevault.reconcile.get_storage", lambda: storage)

    storage.stage("1-orphan.txt", io.BytesIO(b"orphan"), "text/plain", max_bytes=100)
    storage.publish("1-orphan.txt")
    day_ago = time.time() - 24 * 60 * 60
    os.utime(storage.location("1-orphan.txt"), (day_ago, day_ago))

    stale = UserSession(
        token="stale",
        user_id=u1.id,
        created_at=utcnow() - timedelta(days=2),
        expires_at=utcnow() - timedelta(days=1),
    )
    db.add(stale)
    db.commit()

    assert main(["--grace-seconds", "3600"]) == 0

    assert not storage.exists("1-orphan.txt")
    db.expire_all()
    assert db.query(UserSession).filter(UserSession.token == "stale").count() == 0
