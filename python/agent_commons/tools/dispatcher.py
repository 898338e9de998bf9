import re

from typing import Any, Dict, Optional

import httpx

from ..config import tool_timeout
from ..errors import ToolMisconfiguredError, ToolNotFoundError, UpstreamError
from ..identity import redact
from ..logs import DebugContext, get_logger
from .api_spec import build_request
from .registry import ApiSpec, ResourceLookup, StaticToolRegistry, ToolRegistry

logger = get_logger("dispatcher")

RESOURCE_TOOL = re.compile(r"^resourceTool_(\w+)$")


class ToolDispatcher(DebugContext):
  """
  Resolves a tool name and executes it.

  Resolution order, first match wins:

  1. a tool registered with an API spec (or a static tool bound to the same name),
  2. a static tool,
  3. ``resourceTool_<id>``, an API spec attached to a resource.

  HTTP requests are sent exactly once. Retrying a request that may have had
  side effects is left to the caller.
  """

  def __init__(
    self,
    static_tools: Optional[StaticToolRegistry] = None,
    registry: Optional[ToolRegistry] = None,
    resources: Optional[ResourceLookup] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    request_timeout: Optional[float] = None,
  ):
    self.logger = logger
    self.static_tools = static_tools if static_tools is not None else StaticToolRegistry()
    self.registry = registry
    self.resources = resources
    self.request_timeout = request_timeout if request_timeout is not None else tool_timeout()
    self._owns_client = http_client is None
    self.http_client = http_client or httpx.AsyncClient(timeout=self.request_timeout)

  async def aclose(self):
    if self._owns_client:
      await self.http_client.aclose()

  async def dispatch(self, name: str, arguments: Any, execution_metadata: Optional[Dict[str, Any]] = None) -> Any:
    execution_metadata = execution_metadata or {}
    logger.debug(f"[TOOL→RESOLVE] {name} metadata={redact(execution_metadata)}")

    # 1. registered spec tool
    if self.registry is not None:
      tool = await self.registry.get_tool_by_name(name)
      if tool is not None:
        if tool.api_spec is not None:
          logger.info(f"[TOOL→CALL] {name} (spec tool)")
          return await self.invoke_api_spec(name, tool.api_spec, arguments)
        if name not in self.static_tools:
          logger.warning(f"[TOOL→ERROR] {name} is registered without an apiSpec")
          raise ToolMisconfiguredError(name)

    # 2. static binding
    static_tool = self.static_tools.get(name)
    if static_tool is not None:
      logger.info(f"[TOOL→CALL] {name} (static tool)")
      return await static_tool.invoke(arguments, execution_metadata)

    # 3. resource-linked spec tool
    match = RESOURCE_TOOL.match(name)
    if match and self.resources is not None:
      resource_id = match.group(1)
      resource = await self.resources.get_resource_by_id(resource_id)
      if resource is None:
        raise ToolNotFoundError(name, context={"resource_id": resource_id})
      if resource.api_spec is None:
        logger.warning(f"[TOOL→ERROR] resource {resource_id} has no apiSpec")
        raise ToolMisconfiguredError(name, context={"resource_id": resource_id})
      logger.info(f"[TOOL→CALL] {name} (resource {resource_id})")
      return await self.invoke_api_spec(name, resource.api_spec, arguments)

    raise ToolNotFoundError(name)

  async def invoke_api_spec(self, name: str, api_spec: ApiSpec, arguments: Any) -> Any:
    request = build_request(self.http_client, api_spec, arguments)
    try:
      with self.debug(f"[TOOL→HTTP] {request.method} {request.url}", f"[TOOL→HTTP] {name} answered"):
        response = await self.http_client.send(request)
    except httpx.HTTPError as e:
      logger.warning(f"[TOOL→ERROR] {name}: {request.method} {request.url} failed: {e}")
      raise UpstreamError(name, None, str(e) or type(e).__name__) from e

    if not response.is_success:
      logger.warning(f"[TOOL→ERROR] {name}: {response.status_code} {response.reason_phrase}")
      raise UpstreamError(name, response.status_code, response.reason_phrase)

    try:
      return response.json()
    except ValueError as e:
      raise UpstreamError(name, response.status_code, "Response body is not valid JSON") from e
