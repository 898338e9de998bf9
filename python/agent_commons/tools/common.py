from datetime import datetime, UTC
from typing import Any, Callable, Dict, List

from ..threads import ThreadStore

SPACE_MESSAGES_LIMIT_DEFAULT = 20


class CommonTools:
  """Static tools available to every agent."""

  def __init__(self, store: ThreadStore):
    self.store = store

  def tools(self) -> List[Callable]:
    return [self.get_current_time_utc, self.get_space_messages]

  def get_current_time_utc(self, arguments: Any, execution_metadata: Dict[str, Any]) -> dict:
    """Get the current date and time in UTC, in ISO 8601 format."""
    return {"time": datetime.now(UTC).isoformat()}

  async def get_space_messages(self, arguments: Any, execution_metadata: Dict[str, Any]) -> dict:
    """Read the most recent messages of a space.

    Args:
      space_id (str): id of the space to read
      limit (int, optional): number of messages to return, 20 when omitted
    """
    arguments = arguments if isinstance(arguments, dict) else {}
    space_id = arguments.get("space_id")
    if not space_id:
      raise ValueError("space_id is required")
    limit = int(arguments.get("limit") or SPACE_MESSAGES_LIMIT_DEFAULT)

    state = await self.store.get_latest(space_id)
    messages = state.messages[-limit:] if limit > 0 else []
    return {
      "space_id": space_id,
      "title": state.title,
      "messages": [
        {
          "id": m.id,
          "role": m.role.value,
          "name": m.name,
          "content": m.content,
          "metadata": state.metadata.get(m.id, {}),
        }
        for m in messages
      ],
    }
