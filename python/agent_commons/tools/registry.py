from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Union

from ..logs import get_logger
from .tool import StaticTool

logger = get_logger("tool")


@dataclass(frozen=True)
class ApiSpec:
  """Describes the HTTP request behind a spec tool."""

  method: str
  base_url: str
  path: str = ""
  headers: Dict[str, str] = field(default_factory=dict)
  query_params: Dict[str, Any] = field(default_factory=dict)
  body_template: Any = None

  @classmethod
  def from_dict(cls, data: dict) -> "ApiSpec":
    """Build an ApiSpec from stored JSON, which uses camelCase keys."""
    return cls(
      method=(data.get("method") or "GET").upper(),
      base_url=data.get("baseUrl") or data.get("base_url") or "",
      path=data.get("path") or "",
      headers=dict(data.get("headers") or {}),
      query_params=dict(data.get("queryParams") or data.get("query_params") or {}),
      body_template=data.get("bodyTemplate", data.get("body_template")),
    )


@dataclass(frozen=True)
class SpecTool:
  name: str
  api_spec: Optional[ApiSpec] = None
  schema: Optional[dict] = None


@dataclass(frozen=True)
class Resource:
  resource_id: str
  api_spec: Optional[ApiSpec] = None
  schema: Optional[dict] = None


class ToolRegistry(Protocol):
  async def get_tool_by_name(self, name: str) -> Optional[SpecTool]: ...


class ResourceLookup(Protocol):
  async def get_resource_by_id(self, resource_id: str) -> Optional[Resource]: ...


class ToolService(Protocol):
  """A group of static tools, typically sharing collaborators such as a store."""

  def tools(self) -> List[Callable]: ...


class InMemoryToolRegistry:
  def __init__(self, tools: Iterable[SpecTool] = ()):
    self.tools: Dict[str, SpecTool] = {}
    for tool in tools:
      self.add(tool)

  def add(self, tool: SpecTool):
    self.tools[tool.name] = tool

  async def get_tool_by_name(self, name: str) -> Optional[SpecTool]:
    return self.tools.get(name)


class InMemoryResourceLookup:
  def __init__(self, resources: Iterable[Resource] = ()):
    self.resources: Dict[str, Resource] = {}
    for resource in resources:
      self.add(resource)

  def add(self, resource: Resource):
    self.resources[resource.resource_id] = resource

  async def get_resource_by_id(self, resource_id: str) -> Optional[Resource]:
    return self.resources.get(resource_id)


class StaticToolRegistry:
  """
  Ordered ``name → handler`` map of in-process tools.

  The map is built once from an ordered list of services and plain functions.
  When two entries share a name, the first one registered wins.
  """

  def __init__(self, services: Iterable[Union[ToolService, Callable, StaticTool]] = ()):
    self.tools: Dict[str, StaticTool] = {}
    for service in services:
      if isinstance(service, StaticTool) or not hasattr(service, "tools"):
        self.register(service)
      else:
        self.register_service(service)

  def register_service(self, service: ToolService):
    for tool in service.tools():
      self.register(tool)

  def register(self, tool: Union[Callable, StaticTool], name: Optional[str] = None) -> StaticTool:
    if not isinstance(tool, StaticTool):
      tool = StaticTool(tool, name=name)
    if tool.name in self.tools:
      logger.debug(f"[TOOL→REGISTER] '{tool.name}' is already bound, keeping the first binding")
      return self.tools[tool.name]
    self.tools[tool.name] = tool
    logger.debug(f"[TOOL→REGISTER] '{tool.name}'")
    return tool

  def get(self, name: str) -> Optional[StaticTool]:
    return self.tools.get(name)

  def names(self) -> List[str]:
    return list(self.tools)

  def specs(self) -> List[dict]:
    return [tool.spec() for tool in self.tools.values()]

  def __contains__(self, name: str) -> bool:
    return name in self.tools

  def __len__(self) -> int:
    return len(self.tools)
