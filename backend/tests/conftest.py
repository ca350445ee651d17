"""
Shared fixtures: an in-memory SQLite schema per test, and accounts
created through the real sign-up bootstrap.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from complaint_portal.database import Base
from complaint_portal.models.db_models import AppRole, UserRoleDB, new_id
from complaint_portal.services.access import Actor
from complaint_portal.services.accounts import AccountService
from complaint_portal.services.storage import BlobStore


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory database with the full schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def blob_store(tmp_path):
    return BlobStore(root=str(tmp_path / "storage"), max_bytes=1024, public_base_url="http://testserver")


def make_actor(db, email, full_name=None, admin=False) -> Actor:
    """Sign up an account; optionally grant admin directly, as seed_admin does."""
    metadata = {"full_name": full_name} if full_name else {}
    account = AccountService(db).create_account(email, "password123", metadata)
    if admin:
        db.add(UserRoleDB(id=new_id(), user_id=account.id, role=AppRole.ADMIN))
        db.commit()
    return Actor(id=account.id, email=account.email)


@pytest.fixture
def student(db):
    return make_actor(db, "student@college.edu", full_name="Sam Student")


@pytest.fixture
def other_student(db):
    return make_actor(db, "other@college.edu", full_name="Olive Other")


@pytest.fixture
def admin(db):
    return make_actor(db, "admin@college.edu", full_name="Ada Admin", admin=True)
