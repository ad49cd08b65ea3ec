"""Tests for the PostGIS store paths that are decided before any query runs."""

import uuid

import pytest

from app.core.exceptions import ValidationError
from app.core.sql_property_store import SqlPropertyStore


def no_session():
    raise AssertionError("no session should be opened")


@pytest.fixture
def sql_store() -> SqlPropertyStore:
    return SqlPropertyStore(no_session)


async def test_malformed_user_id_is_rejected(sql_store):
    with pytest.raises(ValidationError):
        await sql_store.insert_favorite("not-a-uuid", str(uuid.uuid4()))


async def test_malformed_ids_are_not_favorites(sql_store):
    assert await sql_store.favorite_exists("not-a-uuid", str(uuid.uuid4())) is False
    assert await sql_store.delete_favorite(str(uuid.uuid4()), "nope") is False
