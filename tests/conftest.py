"""
Shared fixtures: a seeded SQLite hot store in tmp_path.

Seed data (as_of = 2018-01-08T12:30:00Z, default embargo 89 days -> bound 2017-10-11):
  org 1: created 2017-11-10, too new to have any archive window
  org 2: created 2017-08-10, 62 daily windows 2017-08-10 .. 2017-10-10
         two messages on 2017-08-12 (the second with two attachments), one run on 2017-08-12,
         one message at exactly 2017-08-13T00:00 and one after the embargo bound
  org 3: same age as org 2, already archived 2017-08-10 and 2017-10-08 (archive ids 1, 2)
  org 4: inactive
"""

import uuid
from datetime import datetime, timezone

import pytest

from record_archiver.db import create_engine, create_session_factory, init_db, session_scope
from record_archiver.models import Message, MessageAttachment, Org, Run
from record_archiver.models_archive import Archive

AS_OF = datetime(2018, 1, 8, 12, 30, 0, tzinfo=timezone.utc)
ORG_CREATED = datetime(2017, 8, 10, 19, 11, 59, 890662, tzinfo=timezone.utc)

MSG_1 = uuid.UUID("00000000-0000-0000-0000-000000000001")
MSG_2 = uuid.UUID("00000000-0000-0000-0000-000000000002")
MSG_MIDNIGHT = uuid.UUID("00000000-0000-0000-0000-000000000003")
MSG_LATE = uuid.UUID("00000000-0000-0000-0000-000000000004")
MSG_ORG3 = uuid.UUID("00000000-0000-0000-0000-000000000005")
RUN_1 = uuid.UUID("00000000-0000-0000-0000-0000000000a1")


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(f"sqlite:///{tmp_path / 'hot.db'}", connect_args={"timeout": 30})
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def seeded(session_factory):
    with session_scope(session_factory) as db:
        db.add_all(
            [
                Org(id=1, name="Too New", is_active=True, created_at=utc(2017, 11, 10, 21, 11, 59)),
                Org(id=2, name="Archivable", is_active=True, created_at=ORG_CREATED),
                Org(id=3, name="Partly Archived", is_active=True, created_at=ORG_CREATED),
                Org(id=4, name="Inactive", is_active=False, created_at=ORG_CREATED),
            ]
        )
        db.flush()
        db.add_all(
            [
                Archive(
                    id=1, org_id=3, archive_type="message", start_date=utc(2017, 8, 10), period="D",
                    record_count=0, size=20, hash="fa9ac5a217b5547bc7dd4e6e894fe135",
                ),
                Archive(
                    id=2, org_id=3, archive_type="message", start_date=utc(2017, 10, 8), period="D",
                    record_count=0, size=20, hash="fa9ac5a217b5547bc7dd4e6e894fe135",
                ),
            ]
        )
        db.add_all(
            [
                Message(
                    id=MSG_1, org_id=2, role="user", content="hello world",
                    created_at=utc(2017, 8, 12, 21, 11, 59, 890662),
                ),
                Message(
                    id=MSG_2, org_id=2, role="assistant", content="here are the photos",
                    metadata_={"channel": "whatsapp"},
                    created_at=utc(2017, 8, 12, 21, 11, 59, 890663),
                    attachments=[
                        MessageAttachment(position=0, content_type="image/jpeg", url="https://foo.bar/image1.png"),
                        MessageAttachment(position=1, content_type="image/jpeg", url="https://foo.bar/image2.png"),
                    ],
                ),
                Message(
                    id=MSG_MIDNIGHT, org_id=2, role="user", content="at midnight",
                    created_at=utc(2017, 8, 13, 0, 0, 0),
                ),
                Message(id=MSG_LATE, org_id=2, role="user", content="too recent", created_at=utc(2017, 12, 1, 8, 0)),
                Message(id=MSG_ORG3, org_id=3, role="user", content="other org", created_at=utc(2017, 8, 12, 9, 0)),
                Run(
                    id=RUN_1, org_id=2, flow="registration", status="completed", responded=True,
                    path=[{"node": "a1", "arrived_on": "2017-08-12T10:00:00+00:00"}],
                    results={"name": {"value": "Bob", "category": "All Responses"}},
                    created_at=utc(2017, 8, 12, 10, 0), exited_at=utc(2017, 8, 12, 10, 5),
                ),
            ]
        )
    return session_factory


@pytest.fixture
def orgs(seeded):
    from record_archiver.orgs import get_active_orgs

    with seeded() as db:
        return get_active_orgs(db)


@pytest.fixture
def scratch_dir(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return str(path)
