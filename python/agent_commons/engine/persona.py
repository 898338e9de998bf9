import json

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Dict, Iterable, Optional, Protocol

from ..messages import SystemMessage

# fields of an agent record that are rendered separately or must stay out of prompts
HIDDEN_ATTRIBUTES = {"instructions", "persona", "wallet"}


@dataclass
class AgentProfile:
  agent_id: str
  name: Optional[str] = None
  persona: Optional[str] = None
  instructions: Optional[str] = None
  attributes: Dict[str, Any] = field(default_factory=dict)

  def public_record(self) -> Dict[str, Any]:
    record = {k: v for k, v in self.attributes.items() if k not in HIDDEN_ATTRIBUTES}
    record["agentId"] = self.agent_id
    if self.name:
      record["name"] = self.name
    return record


class AgentDirectory(Protocol):
  async def get_agent(self, agent_id: str) -> Optional[AgentProfile]: ...


class InMemoryAgentDirectory:
  def __init__(self, agents: Iterable[AgentProfile] = ()):
    self.agents = {agent.agent_id: agent for agent in agents}

  def add(self, agent: AgentProfile):
    self.agents[agent.agent_id] = agent

  async def get_agent(self, agent_id: str) -> Optional[AgentProfile]:
    return self.agents.get(agent_id)


def system_message_for(agent: AgentProfile, session_id: str, now: Optional[datetime] = None) -> SystemMessage:
  now = now or datetime.now(UTC)
  content = "\n".join(
    [
      "You are the following agent:",
      json.dumps(agent.public_record(), default=str),
      "",
      "Persona:",
      agent.persona or "",
      "",
      "Instructions:",
      agent.instructions or "",
      "",
      f"The current date and time is {now.isoformat()}.",
      f"**SESSION ID**: {session_id}",
    ]
  )
  return SystemMessage(content=content)
