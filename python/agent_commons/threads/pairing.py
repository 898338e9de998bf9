from typing import List, Optional, Set, Tuple

from ..logs import get_logger
from ..messages import AssistantMessage, BaseMessage, ToolMessage

logger = get_logger("store")


# =============================================================================
# Tool Pair Detection Utilities
# =============================================================================
# A tool message is only meaningful next to the assistant message that issued
# the matching tool call. Providers reject threads where a tool result has no
# earlier tool call with the same id.


def get_tool_use_ids(message: BaseMessage) -> List[str]:
  """
  Extract tool_call IDs from an assistant message with tool_calls.

  Returns:
    List of tool_call IDs, or empty list if none found
  """
  if isinstance(message, AssistantMessage):
    return [tc.id for tc in message.tool_calls if tc.id]
  return []


def get_tool_result_id(message: BaseMessage) -> Optional[str]:
  if isinstance(message, ToolMessage):
    return message.tool_call_id
  return None


def pending_tool_call_ids(messages: List[BaseMessage]) -> Set[str]:
  """Tool calls that have been issued but have no result yet."""
  issued: Set[str] = set()
  answered: Set[str] = set()
  for message in messages:
    issued.update(get_tool_use_ids(message))
    result_id = get_tool_result_id(message)
    if result_id:
      answered.add(result_id)
  return issued - answered


def validate_tool_pairing(messages: List[BaseMessage]) -> Tuple[bool, Optional[str]]:
  """
  Validate that every tool result follows the assistant message that issued
  its tool call.

  Args:
    messages: List of conversation messages to validate, in thread order

  Returns:
    Tuple of (is_valid, error_message). error_message is None if valid.
  """
  issued: Set[str] = set()
  orphaned_results: List[str] = []

  for message in messages:
    issued.update(get_tool_use_ids(message))
    result_id = get_tool_result_id(message)
    if result_id and result_id not in issued:
      orphaned_results.append(result_id)

  if orphaned_results:
    return False, f"Orphaned tool results (no earlier tool call): {orphaned_results}"

  pending = pending_tool_call_ids(messages)
  if pending:
    logger.debug(f"Tool calls without results (may be pending): {pending}")

  return True, None
