import json
import re

import litellm

from typing import Any, List, Optional

from ..config import model_name
from ..errors import ModelInvocationError
from ..logs import apply_log_levels, get_logger
from ..messages import AssistantMessage, ConversationMessage, ToolCall
from .protocol import ChunkCallback

# litellm attaches its own stream handler on import, reconfiguring leaves only the package handler
apply_log_levels()

TEMPERATURE_DEFAULT = 0.7
TOP_P_DEFAULT = 1.0

# providers accept only these characters in a message name
INVALID_NAME_CHARACTERS = re.compile(r"[^a-zA-Z0-9_-]")


class Model:
  """
  Model invoker backed by litellm.

  Any provider litellm understands can be used by name (``gpt-4o``,
  ``anthropic/claude-sonnet-4``, ``bedrock/...``). Provider credentials are
  read by litellm from its usual environment variables.

  :param name: Model name, defaults to ``AGENT_COMMONS_MODEL``
  :param temperature: Sampling temperature (default: 0.7)
  :param top_p: Nucleus sampling parameter (default: 1.0)
  :param max_tokens: Upper bound for the answer length
  :param request_timeout: Timeout for one provider call in seconds (default: 120.0)
  :param kwargs: Additional parameters passed to ``litellm.acompletion``
  """

  def __init__(
    self,
    name: Optional[str] = None,
    temperature: float = TEMPERATURE_DEFAULT,
    top_p: float = TOP_P_DEFAULT,
    max_tokens: Optional[int] = None,
    request_timeout: float = 120.0,
    **kwargs,
  ):
    self.name = name or model_name()
    self.logger = get_logger("model")
    self.temperature = temperature
    self.top_p = top_p
    self.max_tokens = max_tokens
    self.request_timeout = request_timeout
    self.kwargs = kwargs

  def parameters(self, **overrides) -> dict:
    params = {
      "temperature": overrides.pop("temperature", self.temperature),
      "top_p": overrides.pop("top_p", self.top_p),
      "timeout": self.request_timeout,
      **self.kwargs,
    }
    max_tokens = overrides.pop("max_tokens", self.max_tokens)
    if max_tokens is not None:
      params["max_tokens"] = max_tokens
    params.update(overrides)
    return params

  async def invoke(
    self,
    messages: List[ConversationMessage],
    tools: Optional[List[dict]] = None,
    on_chunk: Optional[ChunkCallback] = None,
    **kwargs,
  ) -> AssistantMessage:
    params = self.parameters(**kwargs)
    if tools:
      params["tools"] = tools

    provider_messages = normalize_messages(messages)
    self.logger.debug(
      f"[MODEL→CALL] model={self.name} messages={len(provider_messages)} tools={len(tools or [])} "
      f"stream={on_chunk is not None}"
    )

    try:
      if on_chunk is not None:
        message = await self._complete_chat_stream(provider_messages, on_chunk, params)
      else:
        message = await self._complete_chat(provider_messages, params)
    except ModelInvocationError:
      raise
    except Exception as e:
      self.logger.error(f"[MODEL→ERROR] model={self.name}: {e}")
      raise ModelInvocationError(
        context={"model": self.name, "status": getattr(e, "status_code", None), "reason": str(e)}
      ) from e

    self.logger.debug(f"[MODEL→DONE] model={self.name} tool_calls={len(message.tool_calls)}")
    return message

  async def _complete_chat(self, messages: List[dict], params: dict) -> AssistantMessage:
    response = await litellm.acompletion(model=self.name, messages=messages, stream=False, **params)
    return message_from_response(response)

  async def _complete_chat_stream(self, messages: List[dict], on_chunk: ChunkCallback, params: dict) -> AssistantMessage:
    chunks = await litellm.acompletion(model=self.name, messages=messages, stream=True, **params)

    accumulated_content = ""
    accumulated_tool_calls: List[Optional[dict]] = []

    async for chunk in chunks:
      if not chunk.choices:
        continue
      delta = chunk.choices[0].delta

      if delta.content:
        accumulated_content += delta.content
        await on_chunk(delta.content)

      if getattr(delta, "tool_calls", None):
        for tc in delta.tool_calls:
          tc_index = tc.index if getattr(tc, "index", None) is not None else 0
          while len(accumulated_tool_calls) <= tc_index:
            accumulated_tool_calls.append(None)

          function = getattr(tc, "function", None)
          if accumulated_tool_calls[tc_index] is None:
            # first chunk for this tool call
            accumulated_tool_calls[tc_index] = {
              "id": tc.id if getattr(tc, "id", None) else f"call_{tc_index}",
              "name": getattr(function, "name", None) or "unknown",
              "arguments": getattr(function, "arguments", None) or "",
            }
          elif function is not None and getattr(function, "arguments", None):
            accumulated_tool_calls[tc_index]["arguments"] += function.arguments

    return AssistantMessage(
      content=accumulated_content,
      tool_calls=[
        ToolCall(id=tc["id"], name=tc["name"], arguments=parse_tool_arguments(tc["arguments"]))
        for tc in accumulated_tool_calls
        if tc is not None
      ],
    )


def parse_tool_arguments(raw: Any) -> Any:
  """
  Decode the JSON string a provider sends as tool-call arguments. Arguments
  that are not valid JSON are kept as the raw string.
  """
  if not isinstance(raw, str):
    return raw
  if not raw.strip():
    return {}
  try:
    return json.loads(raw)
  except json.JSONDecodeError:
    return raw


def message_from_response(response) -> AssistantMessage:
  message = response.choices[0].message
  tool_calls = []
  for tc in getattr(message, "tool_calls", None) or []:
    tool_calls.append(ToolCall(id=tc.id, name=tc.function.name, arguments=parse_tool_arguments(tc.function.arguments)))
  return AssistantMessage(content=message.content or "", tool_calls=tool_calls)


def sanitize_name(name: str) -> str:
  return INVALID_NAME_CHARACTERS.sub("_", name)[:64]


def normalize_messages(messages: List[ConversationMessage]) -> List[dict]:
  """
  Convert typed messages into the provider's chat format.
  """
  normalized = []
  for message in messages:
    msg_dict: dict = {"role": message.role.value}

    content = message.content
    if content is not None and not isinstance(content, (str, list)):
      content = json.dumps(content, default=str)
    # remove any empty text content
    if content:
      msg_dict["content"] = content

    tool_calls = getattr(message, "tool_calls", None)
    if tool_calls:
      msg_dict["tool_calls"] = [
        {
          "id": tool_call.id,
          "type": "function",
          "function": {
            "name": tool_call.name,
            "arguments": tool_call.arguments
            if isinstance(tool_call.arguments, str)
            else json.dumps(tool_call.arguments),
          },
        }
        for tool_call in tool_calls
      ]

    if message.name:
      msg_dict["name"] = sanitize_name(message.name)
    tool_call_id = getattr(message, "tool_call_id", None)
    if tool_call_id:
      msg_dict["tool_call_id"] = tool_call_id
      # tool results must always carry content
      msg_dict.setdefault("content", "")

    match msg_dict["role"]:
      case "system" | "user" if not msg_dict.get("content"):
        continue
      case "assistant" if not msg_dict.get("content") and not msg_dict.get("tool_calls"):
        continue
    normalized.append(msg_dict)
  return normalized
