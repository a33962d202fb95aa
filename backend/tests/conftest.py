import json
import os
import sys

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("CRON_SECRET", "Zq8vK3xP7mW2nR5tY9bL4cF6hJ1gD0sAeUiOpQwErTy")

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.config import get_settings
from app.database import Base
from app.models.session import SessionAttendance, SessionParticipant, TrainingSession
from app.models.user import User
from app.services.delivery import DeliveryResult
from app.services.messages import load_message_catalogs


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def catalogs():
    return load_message_catalogs(get_settings().messages_dir)


@pytest.fixture
def make_user(db):
    def _make_user(**overrides):
        values = {
            "name": "Ana",
            "preferred_language": "en",
            "push_subscription": json.dumps({"endpoint": "https://push.example.com/abc"}),
            "last_active_at": "2026-03-09T12:00:00",
        }
        values.update(overrides)
        for key in ("settings", "sports", "motivation_recent_messages"):
            if isinstance(values.get(key), (dict, list)):
                values[key] = json.dumps(values[key])
        user = User(**values)
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def make_session(db):
    def _make_session(creator, participants=(), attendees=(), **overrides):
        values = {
            "creator_id": creator.id,
            "sport": "Running",
            "location": "Parque Simon Bolivar",
            "date": "2026-03-10",
            "start_time": "14:00",
            "duration": 60,
            "max_participants": 6,
            "status": "active",
        }
        values.update(overrides)
        session = TrainingSession(**values)
        db.add(session)
        db.flush()
        for user in participants:
            db.add(SessionParticipant(session_id=session.id, user_id=user.id, status="confirmed"))
        for user in attendees:
            db.add(SessionAttendance(session_id=session.id, user_id=user.id, attended=1))
        db.commit()
        return session

    return _make_session


class FakeDelivery:
    """Records deliveries and fails for chosen recipients."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []

    def deliver(self, recipient, message, deep_link, channel="push"):
        if recipient.id in self.fail_for:
            return DeliveryResult(success=False, channel=channel, error="gateway down")
        self.sent.append({
            "user_id": recipient.id,
            "title": message.title,
            "body": message.body,
            "url": deep_link,
            "channel": channel,
        })
        return DeliveryResult(success=True, channel=channel)


@pytest.fixture
def delivery():
    return FakeDelivery()


@pytest.fixture
def make_delivery():
    return FakeDelivery
