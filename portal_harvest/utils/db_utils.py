"""
Purpose
-------
Database utility helpers for the harvester's PostgreSQL sinks.

Key behaviors
-------------
- Opens PostgreSQL connections from environment variables.
- Executes one batched INSERT/UPSERT via `execute_values`.
- Runs a block of statements under a SAVEPOINT so a rejected write can be
  rolled back without aborting the surrounding transaction.

Conventions
-----------
- PostgreSQL credentials are read from environment variables.
- Sessions run with the UTC timezone.
- Batched writes use `psycopg2.extras.execute_values` under a cursor with a
  `page_size` large enough to send each batch as a single statement.

Downstream usage
----------------
Import and use:
- `connect_to_db()` for connection setup.
- `flush_values_batch()` to send a list of value tuples in one statement.
- `savepoint()` to make a write atomic inside an open transaction.
"""

import os
from contextlib import contextmanager
from typing import Iterator, List

import psycopg2
from psycopg2.extensions import connection
from psycopg2.extras import execute_values

SAVEPOINT_NAME: str = "harvest_write"


def connect_to_db() -> connection:
    """
    Open a PostgreSQL connection using credentials from environment variables.

    Environment variables expected
    ------------------------------
    POSTGRES_DB : str
        Database name to connect to.
    POSTGRES_USER : str
        Database user.
    POSTGRES_PASSWORD : str
        Password for the database user.
    DB_HOST : str
        Hostname of the database server.
    DB_PORT : str
        Port number of the database server.

    Returns
    -------
    psycopg2.extensions.connection
        An open psycopg2 connection. Caller is responsible for closing it.

    Raises
    ------
    KeyError
        If any required environment variable is missing.
    psycopg2.OperationalError
        If the connection cannot be established
        (bad credentials, host unreachable, etc.).

    Notes
    -----
    - Sets the connection timezone to UTC.
    """
    return psycopg2.connect(
        host=os.environ["DB_HOST"],
        port=os.environ["DB_PORT"],
        dbname=os.environ["POSTGRES_DB"],
        user=os.environ["POSTGRES_USER"],
        password=os.environ["POSTGRES_PASSWORD"],
        options="-c timezone=utc",
    )


def flush_values_batch(conn: connection, batch: List[tuple], input_query: str) -> None:
    """
    Execute a single batched INSERT/UPSERT using `psycopg2.extras.execute_values`.

    Parameters
    ----------
    conn : psycopg2.extensions.connection
        Open PostgreSQL connection.
    batch : list[tuple]
        Value tuples to insert.
    input_query : str
        SQL statement with a `%s` placeholder for `execute_values`.

    Returns
    -------
    None

    Raises
    ------
    psycopg2.Error
        Propagates database or driver errors; no internal retry logic.

    Notes
    -----
    - `page_size` equals the batch length so the sink's notion of "one write"
      is exactly one statement.
    """

    with conn.cursor() as cur:
        execute_values(cur, input_query, batch, page_size=max(len(batch), 1))


@contextmanager
def savepoint(conn: connection, name: str = SAVEPOINT_NAME) -> Iterator[None]:
    """
    Run the enclosed statements under a SAVEPOINT.

    Parameters
    ----------
    conn : psycopg2.extensions.connection
        Open PostgreSQL connection inside a transaction.
    name : str, default=SAVEPOINT_NAME
        Savepoint identifier.

    Yields
    ------
    None

    Raises
    ------
    Exception
        Whatever the enclosed block raises, after rolling back to the savepoint.
    """

    with conn.cursor() as cur:
        cur.execute(f"SAVEPOINT {name}")
    try:
        yield
    except Exception:
        with conn.cursor() as cur:
            cur.execute(f"ROLLBACK TO SAVEPOINT {name}")
        raise
    with conn.cursor() as cur:
        cur.execute(f"RELEASE SAVEPOINT {name}")
