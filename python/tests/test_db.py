"""Database session smoke tests.

Verifies the session factory settings and the transaction helper.
"""

import pytest
from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from polychat.db.models import Attachment
from polychat.db.session import transaction


def _attachment(owner_id: str) -> Attachment:
    return Attachment(
        owner_id=owner_id,
        storage_ref="uploads/abc",
        format="image",
        url="https://files.test/abc.png",
        name="abc.png",
    )


class TestDatabaseConnectivity:
    def test_session_opens_and_executes_query(self, db_session: Session):
        assert db_session.execute(text("SELECT 1 AS value")).scalar_one() == 1

    def test_foreign_keys_enforced(self, db_session: Session):
        assert db_session.execute(text("PRAGMA foreign_keys")).scalar_one() == 1

    def test_wal_journaling(self, db_session: Session):
        assert db_session.execute(text("PRAGMA journal_mode")).scalar_one() == "wal"


class TestTransaction:
    def test_commits_on_success(self, db_session, session_factory, viewer_id):
        with transaction(db_session):
            db_session.add(_attachment(viewer_id))

        with session_factory() as other:
            assert other.scalar(select(func.count()).select_from(Attachment)) == 1

    def test_rolls_back_on_error(self, db_session, viewer_id):
        with pytest.raises(RuntimeError):
            with transaction(db_session):
                db_session.add(_attachment(viewer_id))
                db_session.flush()
                raise RuntimeError("boom")

        assert db_session.scalar(select(func.count()).select_from(Attachment)) == 0

    def test_objects_stay_loaded_after_commit(self, db_session, viewer_id):
        attachment = _attachment(viewer_id)
        with transaction(db_session):
            db_session.add(attachment)

        assert "name" in attachment.__dict__
