import asyncio
import uuid

from collections import defaultdict
from copy import deepcopy
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional, Protocol

from ..errors import CheckpointConflictError
from ..logs import get_logger
from .state import Checkpoint, ThreadDelta, ThreadState, apply_delta

logger = get_logger("store")

# passed as expected_checkpoint_id to write without an optimistic concurrency check
ANY_CHECKPOINT: Any = object()


class ThreadStore(Protocol):
  async def get_latest(self, thread_id: str) -> ThreadState: ...

  async def append_and_checkpoint(
    self, thread_id: str, delta: ThreadDelta, expected_checkpoint_id: Optional[str] = ANY_CHECKPOINT
  ) -> ThreadState: ...

  async def list_checkpoints(self, thread_id: str, limit: Optional[int] = None) -> List[Checkpoint]: ...


def new_checkpoint_id() -> str:
  return str(uuid.uuid4())


class InMemoryThreadStore:
  """
  Thread store that keeps every checkpoint in process memory.
  """

  def __init__(self):
    self.checkpoints: Dict[str, List[Checkpoint]] = defaultdict(list)
    self.lock = asyncio.Lock()

  async def get_latest(self, thread_id: str) -> ThreadState:
    history = self.checkpoints.get(thread_id)
    if not history:
      return ThreadState(thread_id=thread_id)
    return _copy_state(history[-1].state)

  async def append_and_checkpoint(
    self, thread_id: str, delta: ThreadDelta, expected_checkpoint_id: Optional[str] = ANY_CHECKPOINT
  ) -> ThreadState:
    async with self.lock:
      history = self.checkpoints[thread_id]
      latest = history[-1] if history else None
      latest_id = latest.checkpoint_id if latest else None

      if expected_checkpoint_id is not ANY_CHECKPOINT and expected_checkpoint_id != latest_id:
        logger.warning(
          f"[STORE→CONFLICT] thread={thread_id} expected={expected_checkpoint_id} latest={latest_id}"
        )
        raise CheckpointConflictError(
          context={"thread_id": thread_id, "expected": expected_checkpoint_id, "latest": latest_id}
        )

      base = latest.state if latest else ThreadState(thread_id=thread_id)
      now = datetime.now(UTC)
      state = apply_delta(base, delta)
      state.checkpoint_id = new_checkpoint_id()
      state.created_at = base.created_at or now

      history.append(
        Checkpoint(
          checkpoint_id=state.checkpoint_id,
          thread_id=thread_id,
          parent_checkpoint_id=latest_id,
          created_at=now,
          state=state,
        )
      )
      logger.debug(
        f"[STORE→WRITE] thread={thread_id} checkpoint={state.checkpoint_id} "
        f"+{len(state.messages) - len(base.messages)} messages"
      )
      return _copy_state(state)

  async def list_checkpoints(self, thread_id: str, limit: Optional[int] = None) -> List[Checkpoint]:
    history = list(self.checkpoints.get(thread_id, []))
    if limit is not None:
      history = history[:limit]
    return history


def _copy_state(state: ThreadState) -> ThreadState:
  return ThreadState(
    thread_id=state.thread_id,
    messages=list(state.messages),
    metadata=deepcopy(state.metadata),
    title=state.title,
    sessions=dict(state.sessions),
    checkpoint_id=state.checkpoint_id,
    created_at=state.created_at,
  )
