import json

from typing import List, Optional, Protocol

from ..logs import get_logger
from ..messages import ConversationMessage, SystemMessage, primary_text
from ..config import router_model_name
from ..models import Model, ModelInvoker
from .membership import SpaceMember

logger = get_logger("router")


class RouterClassifier(Protocol):
  """Picks the agent that should answer the latest message of a space, if any."""

  async def classify(self, messages: List[ConversationMessage], members: List[SpaceMember]) -> Optional[str]: ...


def routing_instructions(members: List[SpaceMember]) -> str:
  listing = "\n".join(f"- {m.member_id} ({m.member_type.value})" for m in members)
  return (
    "You are an agent in a space with the following members:\n"
    f"{listing}\n\n"
    "Your task is to determine which member should handle the latest message in the space.\n"
    'Answer with a JSON object: {"agentId": "<member id>"} to pick an agent member, '
    "or {} when no agent should respond."
  )


class ModelRouterClassifier:
  """Asks a model for a JSON verdict naming the next agent."""

  def __init__(self, model: Optional[ModelInvoker] = None):
    self.model = model or Model(router_model_name(), temperature=0.0)

  async def classify(self, messages: List[ConversationMessage], members: List[SpaceMember]) -> Optional[str]:
    response = await self.model.invoke(
      [SystemMessage(content=routing_instructions(members)), *messages],
      response_format={"type": "json_object"},
    )
    return parse_verdict(primary_text(response))


def parse_verdict(text: str) -> Optional[str]:
  text = text.strip()
  if text.startswith("```"):
    text = text.strip("`").removeprefix("json").strip()
  if not text:
    return None
  try:
    verdict = json.loads(text)
  except json.JSONDecodeError:
    logger.warning(f"[ROUTER] Ignoring a verdict that is not JSON: {text[:100]!r}")
    return None
  if not isinstance(verdict, dict):
    return None
  agent_id = verdict.get("agentId") or verdict.get("agent_id")
  return str(agent_id) if agent_id else None
