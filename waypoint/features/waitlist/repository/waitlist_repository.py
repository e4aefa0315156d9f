"""
Persistence layer for the waitlist feature.

Every status change is one conditional UPDATE (compare-and-set on the
current status), so concurrent calls on the same entry cannot lose updates.
"""

from uuid import UUID

from psycopg.types.json import Jsonb

from waypoint.db.helpers import IntegrityConflict, fetch_all, fetch_one, with_db_retry
from waypoint.db.pool import db_pool
from waypoint.domain.errors import DuplicateEntry
from waypoint.features.waitlist.domain import (
    STATUS_TIMESTAMP_COLUMNS,
    WAITLIST_LIFECYCLE,
    NewWaitlistEntry,
    WaitlistEntry,
    WaitlistStats,
    WaitlistStatus,
)
from waypoint.features.waitlist.repository.sequencer import (
    Sequencer,
    waitlist_position_sequencer,
)
from waypoint.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

EMAIL_UNIQUE_CONSTRAINT = "waitlist_entries_email_key"


def _as_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


class WaitlistRepository:
    """Postgres-backed storage for waitlist entries."""

    ENTRY_COLUMNS = """
        id, email, name, position, status, interests, referral_source,
        metadata, created_at, approved_at, invited_at, joined_at
    """

    def __init__(self, sequencer: Sequencer = waitlist_position_sequencer):
        self.sequencer = sequencer

    @staticmethod
    def _row_to_entry(row: dict | None) -> WaitlistEntry | None:
        if not row:
            return None

        return WaitlistEntry(
            id=str(row["id"]),
            email=row["email"],
            name=row.get("name"),
            position=int(row["position"]),
            status=WaitlistStatus(row["status"]),
            interests=list(row.get("interests") or []),
            referral_source=row.get("referral_source"),
            metadata=dict(row.get("metadata") or {}),
            created_at=row["created_at"],
            approved_at=row.get("approved_at"),
            invited_at=row.get("invited_at"),
            joined_at=row.get("joined_at"),
        )

    async def create_entry(self, new_entry: NewWaitlistEntry) -> WaitlistEntry:
        """
        Insert a pending entry with the next position.

        Position assignment and insert share one transaction.

        Raises:
            DuplicateEntry: the normalized email is already on the waitlist
        """
        insert_query = f"""
            INSERT INTO waitlist_entries (
                email, name, position, status, interests, referral_source, metadata,
                created_at
            )
            VALUES (%s, %s, %s, 'pending', %s, %s, %s, clock_timestamp())
            RETURNING {self.ENTRY_COLUMNS}
        """

        try:
            async with db_pool.transaction() as conn:
                position = await self.sequencer.next_value(conn)
                row = await fetch_one(
                    insert_query,
                    (
                        new_entry.email,
                        new_entry.name,
                        position,
                        new_entry.interests,
                        new_entry.referral_source,
                        Jsonb(new_entry.metadata),
                    ),
                    connection=conn,
                )
        except IntegrityConflict as e:
            if e.constraint == EMAIL_UNIQUE_CONSTRAINT:
                raise DuplicateEntry(email=new_entry.email) from e
            raise

        entry = self._row_to_entry(row)
        logger.info("Waitlist entry created", entry_id=entry.id, position=entry.position)
        return entry

    @with_db_retry(max_retries=2, base_delay=0.1)
    async def get_by_id(self, entry_id: str) -> WaitlistEntry | None:
        uuid_value = _as_uuid(entry_id)
        if uuid_value is None:
            return None

        query = f"SELECT {self.ENTRY_COLUMNS} FROM waitlist_entries WHERE id = %s"
        return self._row_to_entry(await fetch_one(query, (uuid_value,)))

    @with_db_retry(max_retries=2, base_delay=0.1)
    async def get_by_email(self, email: str) -> WaitlistEntry | None:
        query = f"SELECT {self.ENTRY_COLUMNS} FROM waitlist_entries WHERE email = %s"
        return self._row_to_entry(await fetch_one(query, (email,)))

    async def transition(self, entry_id: str, target: WaitlistStatus) -> WaitlistEntry | None:
        """
        Move an entry to ``target`` if its current status allows it.

        Returns the updated entry, or None when the entry is missing or its
        status did not permit the move (callers reload to tell which).
        """
        uuid_value = _as_uuid(entry_id)
        if uuid_value is None:
            return None
        return await self._conditional_update("id = %s", uuid_value, target)

    async def transition_by_email(
        self, email: str, target: WaitlistStatus
    ) -> WaitlistEntry | None:
        return await self._conditional_update("email = %s", email, target)

    async def _conditional_update(
        self, where: str, key, target: WaitlistStatus
    ) -> WaitlistEntry | None:
        stamp_column = STATUS_TIMESTAMP_COLUMNS[target]
        sources = [status.value for status in WAITLIST_LIFECYCLE.sources_for(target)]

        query = f"""
            UPDATE waitlist_entries
            SET status = %s,
                {stamp_column} = NOW()
            WHERE {where}
              AND status = ANY(%s)
            RETURNING {self.ENTRY_COLUMNS}
        """

        row = await fetch_one(query, (target.value, key, sources))
        return self._row_to_entry(row)

    @with_db_retry(max_retries=2, base_delay=0.1)
    async def list_entries(
        self, status: WaitlistStatus | None = None, limit: int | None = None
    ) -> list[WaitlistEntry]:
        """Entries in ascending position order, optionally filtered by status."""
        clauses = []
        params: list = []
        if status is not None:
            clauses.append("WHERE status = %s")
            params.append(status.value)
        clauses.append("ORDER BY position ASC")
        if limit is not None:
            clauses.append("LIMIT %s")
            params.append(limit)

        query = f"SELECT {self.ENTRY_COLUMNS} FROM waitlist_entries {' '.join(clauses)}"
        rows = await fetch_all(query, tuple(params))
        return [self._row_to_entry(row) for row in rows]

    @with_db_retry(max_retries=2, base_delay=0.1)
    async def count_by_status(self) -> WaitlistStats:
        query = "SELECT status, COUNT(*) AS count FROM waitlist_entries GROUP BY status"
        rows = await fetch_all(query)

        stats = WaitlistStats()
        for row in rows:
            setattr(stats, row["status"], int(row["count"]))
            stats.total += int(row["count"])
        return stats


waitlist_repository = WaitlistRepository()
