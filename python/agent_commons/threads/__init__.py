from .state import ThreadState, ThreadDelta, Checkpoint, apply_delta, merge_messages
from .store import ThreadStore, InMemoryThreadStore, ANY_CHECKPOINT
from .postgres import PostgresThreadStore, state_to_dict, state_from_dict
from .pairing import get_tool_use_ids, get_tool_result_id, pending_tool_call_ids, validate_tool_pairing

__all__ = [
  "ThreadState",
  "ThreadDelta",
  "Checkpoint",
  "apply_delta",
  "merge_messages",
  "ThreadStore",
  "InMemoryThreadStore",
  "ANY_CHECKPOINT",
  "PostgresThreadStore",
  "state_to_dict",
  "state_from_dict",
  "get_tool_use_ids",
  "get_tool_result_id",
  "pending_tool_call_ids",
  "validate_tool_pairing",
]
