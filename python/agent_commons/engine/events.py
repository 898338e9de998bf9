from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..messages import AssistantMessage, ConversationMessage


class EventType(Enum):
  MODEL_CHUNK = "model_chunk"
  TOOL_DISPATCHED = "tool_dispatched"
  TOOL_COMPLETED = "tool_completed"
  TITLE_SET = "title_set"
  TURN_COMPLETED = "turn_completed"


@dataclass(frozen=True)
class StepEvent:
  type: EventType
  payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TurnResult:
  """
  Outcome of one completed turn.

  ``new_messages`` holds every message the turn appended, in order, including
  a synthesized system message, the caller's messages, tool results and the
  final answer. ``updated_metadata`` holds the per-message metadata the turn
  recorded.
  """

  session_id: str
  final_message: AssistantMessage
  new_messages: List[ConversationMessage] = field(default_factory=list)
  updated_metadata: Dict[str, Dict[str, Any]] = field(default_factory=dict)
  title: Optional[str] = None
