from typing import Awaitable, Callable, List, Optional, Protocol

from ..messages import AssistantMessage, ConversationMessage

ChunkCallback = Callable[[str], Awaitable[None]]


class ModelInvoker(Protocol):
  """
  Anything that can turn a message sequence into one assistant message.

  When ``on_chunk`` is given, text deltas are awaited through it while the
  answer is generated; the complete message is still returned at the end.
  """

  async def invoke(
    self,
    messages: List[ConversationMessage],
    tools: Optional[List[dict]] = None,
    on_chunk: Optional[ChunkCallback] = None,
    **kwargs,
  ) -> AssistantMessage: ...
