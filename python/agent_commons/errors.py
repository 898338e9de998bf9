"""
Exception classes for the orchestration core.

Every error carries a ``context`` dictionary describing the operation that
failed. Tool-level errors can be converted into a structured payload that is
fed back to the model as a tool result, all other errors surface to the caller.
"""

from typing import Optional, Dict, Any


class CommonsError(Exception):
  """
  Base class for errors raised by agent_commons.

  Attributes:
    operation: The operation that failed
    context: Additional context about the operation
    message: Human-readable error message
  """

  operation = "Operation"

  def __init__(
    self,
    message: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
  ):
    self.context = context or {}
    if message is None:
      message = self._build_message()
    self.message = message
    super().__init__(message)

  def _build_message(self) -> str:
    parts = [f"{self.operation} failed."]
    context_parts = [f"{k}: {v}" for k, v in self.context.items() if v is not None]
    if context_parts:
      parts.append(f"Context: {', '.join(context_parts)}.")
    suggestion = self._get_suggestion()
    if suggestion:
      parts.append(suggestion)
    return " ".join(parts)

  def _get_suggestion(self) -> str:
    return ""


class ModelInvocationError(CommonsError):
  """
  Raised when the model provider fails. The turn is aborted without writing a
  checkpoint, so the same request can be retried.
  """

  operation = "Model invocation"
  retryable = True

  def _get_suggestion(self) -> str:
    return "The turn was not persisted and can be retried."


class ToolError(CommonsError):
  """
  Base class for errors that are recovered into the conversation as an error
  tool result instead of aborting the turn.
  """

  operation = "Tool call"

  def __init__(self, tool_name: str, message: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
    self.tool_name = tool_name
    super().__init__(message, {"tool": tool_name, **(context or {})})

  def to_content(self) -> Dict[str, Any]:
    return {"error": {"type": type(self).__name__, "message": self.message}}


class ToolNotFoundError(ToolError):
  """Raised when no resolution strategy knows the requested tool name."""

  operation = "Tool resolution"

  def _get_suggestion(self) -> str:
    return "No registered tool, static tool or resource matches this name."


class ToolMisconfiguredError(ToolError):
  """Raised when a tool or resource was found but has no usable API spec."""

  operation = "Tool resolution"

  def _get_suggestion(self) -> str:
    return "The tool definition has no apiSpec and no static tool is bound to its name."


class UpstreamError(ToolError):
  """
  Raised when the HTTP endpoint behind a spec tool answers with a non-2xx
  status, an unreadable body, or cannot be reached.
  """

  operation = "Upstream request"

  def __init__(
    self,
    tool_name: str,
    status: Optional[int],
    status_text: str,
    context: Optional[Dict[str, Any]] = None,
  ):
    self.status = status
    self.status_text = status_text
    super().__init__(tool_name, context={"status": status, "status_text": status_text, **(context or {})})

  def to_content(self) -> Dict[str, Any]:
    content = super().to_content()
    content["error"]["status"] = self.status
    content["error"]["statusText"] = self.status_text
    return content


class MembershipDeniedError(CommonsError):
  """Raised when a sender may not post to a space."""

  operation = "Space message"

  def _get_suggestion(self) -> str:
    return "The sender must be an active member with write permission."


class ThreadStoreError(CommonsError):
  """Raised when the thread store cannot read or persist a checkpoint."""

  operation = "Thread store access"


class CheckpointConflictError(ThreadStoreError):
  """
  Raised when a turn tries to write on top of a checkpoint that is no longer
  the latest one, meaning another turn on the same thread completed first.
  """

  operation = "Checkpoint write"

  def _get_suggestion(self) -> str:
    return "Another turn completed on this thread first. Reload the thread and retry."


class AgentNotFoundError(CommonsError):
  operation = "Agent lookup"


class TurnLimitExceededError(CommonsError):
  """Raised when a turn keeps requesting tools past the iteration limit."""

  operation = "Turn"

  def _get_suggestion(self) -> str:
    return "Consider increasing max_iterations."


class TurnTimeoutError(CommonsError):
  """Raised when a whole turn takes longer than max_execution_time."""

  operation = "Turn"

  def _get_suggestion(self) -> str:
    return "Consider increasing max_execution_time."
