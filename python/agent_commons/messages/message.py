import json
import uuid

import cattrs

from dataclasses import dataclass, field
from enum import Enum
from typing import Union, Any, Optional, List


class ConversationRole(Enum):
  USER = "user"
  SYSTEM = "system"
  ASSISTANT = "assistant"
  TOOL = "tool"


def new_message_id() -> str:
  return str(uuid.uuid4())


@dataclass(frozen=True)
class ToolCall:
  id: str
  name: str
  arguments: Any = field(default_factory=dict)


class BaseMessage:
  id: str
  content: Any
  name: Optional[str]
  role: ConversationRole


@dataclass(frozen=True)
class UserMessage(BaseMessage):
  content: Any = ""
  id: str = field(default_factory=new_message_id)
  name: Optional[str] = None
  role: ConversationRole = ConversationRole.USER


@dataclass(frozen=True)
class SystemMessage(BaseMessage):
  content: Any = ""
  id: str = field(default_factory=new_message_id)
  name: Optional[str] = None
  role: ConversationRole = ConversationRole.SYSTEM


@dataclass(frozen=True)
class AssistantMessage(BaseMessage):
  content: Any = ""
  tool_calls: List[ToolCall] = field(default_factory=list)
  id: str = field(default_factory=new_message_id)
  name: Optional[str] = None
  role: ConversationRole = ConversationRole.ASSISTANT


@dataclass(frozen=True)
class ToolMessage(BaseMessage):
  tool_call_id: str
  content: Any = ""
  name: Optional[str] = None
  id: str = field(default_factory=new_message_id)
  role: ConversationRole = ConversationRole.TOOL


ConversationMessage = Union[UserMessage, SystemMessage, AssistantMessage, ToolMessage]


@dataclass(frozen=True)
class ToolResult:
  """
  Outcome of one tool call, correlated to the call by id and never by position.
  Exactly one of ``content`` and ``error`` is meaningful.
  """

  tool_call_id: str
  name: str
  content: Any = None
  error: Optional[dict] = None

  @property
  def failed(self) -> bool:
    return self.error is not None

  def to_message(self) -> ToolMessage:
    payload = self.error if self.failed else self.content
    if not isinstance(payload, str):
      payload = json.dumps(payload, default=str)
    return ToolMessage(tool_call_id=self.tool_call_id, name=self.name, content=payload)


def primary_text(message: BaseMessage) -> str:
  """
  Plain text of a message: the content itself when it is a string, otherwise
  the first text part of a multi-part content.
  """
  content = message.content
  if isinstance(content, str):
    return content
  if isinstance(content, list):
    for part in content:
      if isinstance(part, dict) and part.get("type") == "text":
        return part.get("text", "")
      if isinstance(part, str):
        return part
  return ""


class MessageConverter:
  def __init__(self):
    self.converter = cattrs.Converter()
    self._register_hooks()

  def _register_hooks(self):
    def structure_conversation_message(obj: dict, cls) -> ConversationMessage:
      role = obj.get("role")
      mapping = {
        "user": UserMessage,
        "system": SystemMessage,
        "assistant": AssistantMessage,
        "tool": ToolMessage,
      }
      typ = mapping.get(role)
      if typ is None:
        raise ValueError(f"Unknown conversation role: {role}")
      return self.converter.structure(obj, typ)

    self.converter.register_structure_hook(ConversationMessage, structure_conversation_message)

  def message_from_dict(self, data: dict) -> ConversationMessage:
    return self.converter.structure(data, ConversationMessage)

  def message_to_dict(self, message: ConversationMessage) -> dict:
    return self.converter.unstructure(message)

  def messages_from_list(self, data: list) -> list[ConversationMessage]:
    return [self.message_from_dict(m) for m in data]

  def messages_to_list(self, messages: list[ConversationMessage]) -> list[dict]:
    return [self.message_to_dict(m) for m in messages]

  def message_from_json(self, data: str) -> ConversationMessage:
    return self.message_from_dict(json.loads(data))

  def message_to_json(self, message: ConversationMessage) -> str:
    return json.dumps(self.message_to_dict(message))


CONVERTER = MessageConverter()
