"""
Shared pytest fixtures.

Provides:
    - engine: in-memory SQLite engine with every table created
    - remote: SQLTableStore over that engine
    - alice / bob: seeded profiles, returned as client-side User objects
    - make_task: builder for in-memory Task trees
    - seed: async helpers writing rows directly into the remote tables
    - messages: list that collects Workspace user notifications
"""

import pytest
from sqlmodel import Session

from apolo.database import create_db_engine, create_tables
from apolo.models import Profile
from apolo.remote import SQLTableStore
from apolo.schemas import Task, TaskStatus, User


@pytest.fixture
def engine():
    test_engine = create_db_engine("sqlite://")
    create_tables(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def remote(engine):
    return SQLTableStore(engine)


def _seed_profile(engine, user_id, email, full_name):
    with Session(engine) as session:
        session.add(Profile(id=user_id, email=email, full_name=full_name))
        session.commit()
    return User(id=user_id, email=email, name=full_name)


@pytest.fixture
def alice(engine):
    return _seed_profile(engine, "u-alice", "alice@example.com", "Alice")


@pytest.fixture
def bob(engine):
    return _seed_profile(engine, "u-bob", "bob@example.com", "Bob")


def task(task_id, *subtasks, position=None, status=TaskStatus.PENDING, **fields):
    return Task(id=task_id, title=fields.pop("title", task_id.upper()), subtasks=list(subtasks),
                position=position, status=status, **fields)


@pytest.fixture
def make_task():
    return task


class Seeder:
    """Writes rows straight into the remote tables, bypassing any client state."""

    def __init__(self, remote):
        self.remote = remote

    async def project(self, owner, title, position=None, **fields):
        return await self.remote.insert("projects", {
            "owner_id": owner.id, "title": title, "position": position, **fields,
        })

    async def task(self, project, title, position=None, parent=None, **fields):
        return await self.remote.insert("tasks", {
            "project_id": project["id"],
            "parent_id": parent["id"] if parent else None,
            "title": title,
            "position": position,
            **fields,
        })

    async def member(self, project, user):
        return await self.remote.insert("project_members", {"project_id": project["id"], "user_id": user.id})

    async def notification(self, user, content, **fields):
        return await self.remote.insert("notifications", {"user_id": user.id, "content": content, **fields})


@pytest.fixture
def seed(remote):
    return Seeder(remote)


@pytest.fixture
def messages():
    """Collects user-facing notifications raised by a Workspace."""
    return []
