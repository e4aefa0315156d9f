import pytest

from waypoint.db.helpers import IntegrityConflict
from waypoint.features.marketplace.repository.marketplace_repository import (
    MAX_SLUG_ATTEMPTS,
    SLUG_UNIQUE_CONSTRAINT,
    MarketplaceRepository,
)


def _slug_conflict():
    return IntegrityConflict("slug taken", "approve", SLUG_UNIQUE_CONSTRAINT)


@pytest.fixture
def repository():
    return MarketplaceRepository()


@pytest.mark.asyncio
async def test_approval_retries_slug_collisions(repository, monkeypatch):
    calls = []

    async def approve_once(application_id, reviewer_id):
        calls.append(application_id)
        if len(calls) < 3:
            raise _slug_conflict()
        return "application", "profile"

    monkeypatch.setattr(repository, "_approve_once", approve_once)

    result = await repository.approve_application("app-1", "admin-1")

    assert result == ("application", "profile")
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_approval_raises_last_slug_collision(repository, monkeypatch):
    calls = []

    async def approve_once(application_id, reviewer_id):
        calls.append(application_id)
        raise _slug_conflict()

    monkeypatch.setattr(repository, "_approve_once", approve_once)

    with pytest.raises(IntegrityConflict) as exc_info:
        await repository.approve_application("app-1", "admin-1")

    assert exc_info.value.constraint == SLUG_UNIQUE_CONSTRAINT
    assert len(calls) == MAX_SLUG_ATTEMPTS


@pytest.mark.asyncio
async def test_approval_does_not_retry_other_conflicts(repository, monkeypatch):
    calls = []

    async def approve_once(application_id, reviewer_id):
        calls.append(application_id)
        raise IntegrityConflict("other", "approve", "seller_profiles_pkey")

    monkeypatch.setattr(repository, "_approve_once", approve_once)

    with pytest.raises(IntegrityConflict):
        await repository.approve_application("app-1", "admin-1")

    assert len(calls) == 1
