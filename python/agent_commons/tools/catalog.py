from typing import Iterable, List, Optional, Protocol

from .registry import StaticToolRegistry


class ToolCatalog(Protocol):
  """Supplies the tool schemas an agent may call, in the provider's function format."""

  async def tool_specs(self, agent_id: str) -> List[dict]: ...


class StaticToolCatalog:
  """
  Offers every static tool, plus any extra schemas (for spec tools and
  resource tools registered elsewhere) to every agent.
  """

  def __init__(self, static_tools: StaticToolRegistry, extra_specs: Optional[Iterable[dict]] = None):
    self.static_tools = static_tools
    self.extra_specs = list(extra_specs or [])

  async def tool_specs(self, agent_id: str) -> List[dict]:
    return self.static_tools.specs() + self.extra_specs
