"""
Purpose
-------
PostgreSQL-backed sinks for the harvester: an append-only, size-limited
dataset of booking rows and a key-value store holding the run summary.

Key behaviors
-------------
- `PostgresDatasetSink.write(chunk)` inserts one row per booking with a single
  `execute_values` statement under a SAVEPOINT.
- Chunks whose serialized JSON exceeds the byte limit, or that PostgreSQL
  rejects with `ProgramLimitExceeded`, raise `SizeExceededError` and leave
  nothing written.
- `PostgresKeyValueSink.set_value(key, value)` upserts one JSON document,
  refusing values above the byte limit.

Conventions
-----------
- Dataset rows are `(run_id, row_number, payload)`; `row_number` is the 1-based
  position of the booking in the written sequence of the run.
- Payloads are stored as JSONB via `psycopg2.extras.Json`.
- Neither sink commits; the caller's `with connect_to_db() as conn:` block
  commits on success and rolls back on error.

Downstream usage
----------------
Build both sinks on one connection per run and hand them to
`harvest_bookings(...)`.
"""

import json
from typing import Any, List, Mapping, Sequence

import psycopg2.errors
from psycopg2.extensions import connection
from psycopg2.extras import Json

from portal_harvest.bookings.bookings_config import (
    DATASET_MAX_WRITE_BYTES,
    DATASET_TABLE,
    KV_MAX_VALUE_BYTES,
    KV_TABLE,
)
from portal_harvest.bookings.bookings_errors import SizeExceededError
from portal_harvest.utils.db_utils import flush_values_batch, savepoint


class PostgresDatasetSink:
    """
    Purpose
    -------
    Append-only sink writing normalized bookings to `DATASET_TABLE`.

    Parameters
    ----------
    conn : psycopg2.extensions.connection
        Open connection; transaction control stays with the caller.
    run_id : str
        Identifier stamped on every row of this run.
    max_write_bytes : int, default=DATASET_MAX_WRITE_BYTES
        Largest serialized chunk accepted by one `write`.

    Attributes
    ----------
    rows_written : int
        Rows durably inserted so far; also the last assigned `row_number`.
    """

    def __init__(
        self, conn: connection, run_id: str, max_write_bytes: int = DATASET_MAX_WRITE_BYTES
    ) -> None:
        self.conn = conn
        self.run_id = run_id
        self.max_write_bytes = max_write_bytes
        self.rows_written = 0

    def write(self, chunk: Sequence[Mapping[str, Any]]) -> None:
        """
        Insert `chunk` as one statement, or nothing at all.

        Parameters
        ----------
        chunk : Sequence[Mapping[str, Any]]
            Bookings to append, in order.

        Returns
        -------
        None

        Raises
        ------
        SizeExceededError
            If the serialized chunk exceeds `max_write_bytes` or PostgreSQL
            reports a program limit.
        psycopg2.Error
            Any other database error, after the savepoint is rolled back.
        """

        payload_bytes: int = serialized_size(chunk)
        if payload_bytes > self.max_write_bytes:
            raise SizeExceededError(len(chunk), payload_bytes)
        rows: List[tuple] = [
            (self.run_id, self.rows_written + offset, Json(record))
            for offset, record in enumerate(chunk, start=1)
        ]
        try:
            with savepoint(self.conn):
                flush_values_batch(self.conn, rows, generate_dataset_query())
        except psycopg2.errors.ProgramLimitExceeded as e:
            raise SizeExceededError(len(chunk), payload_bytes) from e
        self.rows_written += len(chunk)


class PostgresKeyValueSink:
    """
    Purpose
    -------
    Key-value store backed by `KV_TABLE`; each key holds one JSON document.

    Parameters
    ----------
    conn : psycopg2.extensions.connection
        Open connection; transaction control stays with the caller.
    max_value_bytes : int, default=KV_MAX_VALUE_BYTES
        Largest serialized value accepted.
    """

    def __init__(self, conn: connection, max_value_bytes: int = KV_MAX_VALUE_BYTES) -> None:
        self.conn = conn
        self.max_value_bytes = max_value_bytes

    def set_value(self, key: str, value: Mapping[str, Any]) -> None:
        """
        Upsert `value` under `key`.

        Raises
        ------
        SizeExceededError
            If the serialized value is larger than `max_value_bytes`.
        psycopg2.Error
            Propagated from the driver.
        """

        payload_bytes: int = len(json.dumps(value).encode("utf-8"))
        if payload_bytes > self.max_value_bytes:
            raise SizeExceededError(1, payload_bytes)
        with self.conn.cursor() as cur:
            cur.execute(generate_kv_upsert_query(), (key, Json(value)))


def serialized_size(chunk: Sequence[Mapping[str, Any]]) -> int:
    """Total UTF-8 byte length of the records serialized as one JSON array."""

    return len(json.dumps(list(chunk)).encode("utf-8"))


def generate_dataset_query() -> str:
    return f"""
    INSERT INTO {DATASET_TABLE} (
        run_id,
        row_number,
        payload
    ) VALUES %s;
    """


def generate_kv_upsert_query() -> str:
    return f"""
    INSERT INTO {KV_TABLE} (
        store_key,
        value,
        updated_at
    ) VALUES (%s, %s, now())
    ON CONFLICT (store_key) DO UPDATE
    SET value = EXCLUDED.value,
        updated_at = EXCLUDED.updated_at;
    """
