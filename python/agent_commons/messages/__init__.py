from .message import (
  ConversationRole,
  ConversationMessage,
  BaseMessage,
  UserMessage,
  SystemMessage,
  AssistantMessage,
  ToolMessage,
  ToolCall,
  ToolResult,
  MessageConverter,
  CONVERTER,
  new_message_id,
  primary_text,
)

__all__ = [
  "ConversationRole",
  "ConversationMessage",
  "BaseMessage",
  "UserMessage",
  "SystemMessage",
  "AssistantMessage",
  "ToolMessage",
  "ToolCall",
  "ToolResult",
  "MessageConverter",
  "CONVERTER",
  "new_message_id",
  "primary_text",
]
