"""
Sequencer: unique, strictly increasing counters stored in Postgres.

The increment is a single upsert statement, so concurrent callers are
serialized on the counter row. It must run on the caller's transaction
connection: if the surrounding insert rolls back, so does the increment,
and values are never skipped or reused.
"""

import psycopg

from waypoint.db.helpers import fetch_val


class Sequencer:
    NEXT_VALUE_QUERY = """
        INSERT INTO sequences (name, value)
        VALUES (%s, 1)
        ON CONFLICT (name)
        DO UPDATE SET
            value = sequences.value + 1,
            updated_at = NOW()
        RETURNING value
    """

    def __init__(self, name: str):
        self.name = name

    async def next_value(self, connection: psycopg.AsyncConnection) -> int:
        value = await fetch_val(self.NEXT_VALUE_QUERY, (self.name,), connection=connection)
        return int(value)


waitlist_position_sequencer = Sequencer("waitlist_position")
