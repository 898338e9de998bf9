from .protocol import ModelInvoker, ChunkCallback
from .model import Model, normalize_messages, message_from_response, parse_tool_arguments, sanitize_name

__all__ = [
  "ModelInvoker",
  "ChunkCallback",
  "Model",
  "normalize_messages",
  "message_from_response",
  "parse_tool_arguments",
  "sanitize_name",
]
