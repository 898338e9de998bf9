import asyncio
import json
import psycopg

from datetime import datetime
from typing import List, Optional
from psycopg.rows import dict_row

from ..config import anonymize_database_url, database_url
from ..errors import CheckpointConflictError, ThreadStoreError
from ..logs import get_logger
from ..messages import CONVERTER
from .state import Checkpoint, ThreadDelta, ThreadState, apply_delta
from .store import ANY_CHECKPOINT, new_checkpoint_id

logger = get_logger("store")

CREATE_TABLE = """
  CREATE TABLE IF NOT EXISTS thread_checkpoint (
    id BIGSERIAL PRIMARY KEY,
    thread_id TEXT NOT NULL,
    checkpoint_id TEXT NOT NULL UNIQUE,
    parent_checkpoint_id TEXT,
    state JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
  )
"""

CREATE_INDEX = """
  CREATE INDEX IF NOT EXISTS idx_thread_checkpoint_lookup
  ON thread_checkpoint (thread_id, id)
"""


def state_to_dict(state: ThreadState) -> dict:
  return {
    "messages": CONVERTER.messages_to_list(state.messages),
    "metadata": state.metadata,
    "title": state.title,
    "sessions": state.sessions,
  }


def state_from_dict(
  thread_id: str, data: dict, checkpoint_id: Optional[str] = None, created_at: Optional[datetime] = None
) -> ThreadState:
  return ThreadState(
    thread_id=thread_id,
    messages=CONVERTER.messages_from_list(data.get("messages", [])),
    metadata=data.get("metadata") or {},
    title=data.get("title"),
    sessions=data.get("sessions") or {},
    checkpoint_id=checkpoint_id,
    created_at=created_at,
  )


class PostgresThreadStore:
  """
  Thread store persisting one row per checkpoint in PostgreSQL.

  Writes take a transaction scoped advisory lock on the thread, so the
  latest checkpoint cannot change between the optimistic check and the insert.
  """

  def __init__(self, db_url: Optional[str] = None):
    self.db_url = db_url or database_url()
    self.connection = None
    self.lock = asyncio.Lock()

  async def initialize_database(self, max_retries: int = 3):
    """Open the connection with retry logic and create the checkpoint table."""
    if not self.db_url:
      raise ThreadStoreError("No database configured. Set AGENT_COMMONS_DATABASE_URL or POSTGRES_HOST.")

    logger.info("Connecting to database at %s", anonymize_database_url(self.db_url))

    for attempt in range(max_retries):
      try:
        self.connection = await psycopg.AsyncConnection.connect(
          self.db_url, row_factory=dict_row, keepalives=1, keepalives_idle=30, keepalives_interval=5, keepalives_count=5
        )
        break
      except psycopg.OperationalError as e:
        if attempt == max_retries - 1:
          logger.error(f"Failed to connect after {max_retries} attempts: {e}")
          raise ThreadStoreError(context={"database": anonymize_database_url(self.db_url)}) from e
        logger.warning(f"Database connection attempt {attempt + 1} failed, retrying...")
        await asyncio.sleep(2**attempt)

    async with self.connection.cursor() as cur:
      await cur.execute(CREATE_TABLE)
      await cur.execute(CREATE_INDEX)
    await self.connection.commit()

  async def close(self):
    if self.connection:
      await self.connection.close()
      self.connection = None

  def _require_connection(self):
    if self.connection is None:
      raise ThreadStoreError("The database connection is not initialized. Call initialize_database() first.")
    return self.connection

  async def get_latest(self, thread_id: str) -> ThreadState:
    connection = self._require_connection()
    async with self.lock:
      try:
        async with connection.cursor() as cur:
          row = await self._select_latest(cur, thread_id)
        await connection.commit()
      except psycopg.Error as e:
        await connection.rollback()
        raise ThreadStoreError(context={"thread_id": thread_id, "reason": str(e)}) from e

    if row is None:
      return ThreadState(thread_id=thread_id)
    return state_from_dict(thread_id, row["state"], row["checkpoint_id"], row["thread_created_at"])

  async def append_and_checkpoint(
    self, thread_id: str, delta: ThreadDelta, expected_checkpoint_id: Optional[str] = ANY_CHECKPOINT
  ) -> ThreadState:
    connection = self._require_connection()
    async with self.lock:
      try:
        async with connection.transaction():
          async with connection.cursor() as cur:
            await cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (thread_id,))
            row = await self._select_latest(cur, thread_id)
            latest_id = row["checkpoint_id"] if row else None

            if expected_checkpoint_id is not ANY_CHECKPOINT and expected_checkpoint_id != latest_id:
              logger.warning(
                f"[STORE→CONFLICT] thread={thread_id} expected={expected_checkpoint_id} latest={latest_id}"
              )
              raise CheckpointConflictError(
                context={"thread_id": thread_id, "expected": expected_checkpoint_id, "latest": latest_id}
              )

            if row:
              base = state_from_dict(thread_id, row["state"], latest_id, row["thread_created_at"])
            else:
              base = ThreadState(thread_id=thread_id)
            state = apply_delta(base, delta)
            state.checkpoint_id = new_checkpoint_id()

            await cur.execute(
              "INSERT INTO thread_checkpoint (thread_id, checkpoint_id, parent_checkpoint_id, state) "
              "VALUES (%s, %s, %s, %s) RETURNING created_at",
              (thread_id, state.checkpoint_id, latest_id, json.dumps(state_to_dict(state), default=str)),
            )
            inserted = await cur.fetchone()
            state.created_at = base.created_at or inserted["created_at"]
      except psycopg.Error as e:
        raise ThreadStoreError(context={"thread_id": thread_id, "reason": str(e)}) from e

    logger.debug(f"[STORE→WRITE] thread={thread_id} checkpoint={state.checkpoint_id}")
    return state

  async def list_checkpoints(self, thread_id: str, limit: Optional[int] = None) -> List[Checkpoint]:
    """Checkpoints of a thread, oldest first."""
    connection = self._require_connection()
    query = (
      "SELECT checkpoint_id, parent_checkpoint_id, state, created_at FROM thread_checkpoint "
      "WHERE thread_id = %s ORDER BY id"
    )
    params: tuple = (thread_id,)
    if limit is not None:
      query += " LIMIT %s"
      params = (thread_id, limit)

    async with self.lock:
      try:
        async with connection.cursor() as cur:
          await cur.execute(query, params)
          rows = await cur.fetchall()
        await connection.commit()
      except psycopg.Error as e:
        await connection.rollback()
        raise ThreadStoreError(context={"thread_id": thread_id, "reason": str(e)}) from e

    first_created_at = rows[0]["created_at"] if rows else None
    return [
      Checkpoint(
        checkpoint_id=row["checkpoint_id"],
        thread_id=thread_id,
        parent_checkpoint_id=row["parent_checkpoint_id"],
        created_at=row["created_at"],
        state=state_from_dict(thread_id, row["state"], row["checkpoint_id"], first_created_at),
      )
      for row in rows
    ]

  @staticmethod
  async def _select_latest(cur, thread_id: str) -> Optional[dict]:
    await cur.execute(
      "SELECT checkpoint_id, state, "
      "(SELECT min(created_at) FROM thread_checkpoint WHERE thread_id = %s) AS thread_created_at "
      "FROM thread_checkpoint WHERE thread_id = %s ORDER BY id DESC LIMIT 1",
      (thread_id, thread_id),
    )
    return await cur.fetchone()
