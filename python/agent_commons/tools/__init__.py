from .tool import StaticTool, function_spec, parameters_spec
from .registry import (
  ApiSpec,
  SpecTool,
  Resource,
  ToolRegistry,
  ResourceLookup,
  ToolService,
  StaticToolRegistry,
  InMemoryToolRegistry,
  InMemoryResourceLookup,
)
from .api_spec import build_url, build_body, build_request
from .dispatcher import ToolDispatcher
from .catalog import ToolCatalog, StaticToolCatalog
from .common import CommonTools
from .postgres import PostgresToolCatalog

__all__ = [
  "StaticTool",
  "function_spec",
  "parameters_spec",
  "ApiSpec",
  "SpecTool",
  "Resource",
  "ToolRegistry",
  "ResourceLookup",
  "ToolService",
  "StaticToolRegistry",
  "InMemoryToolRegistry",
  "InMemoryResourceLookup",
  "build_url",
  "build_body",
  "build_request",
  "ToolDispatcher",
  "ToolCatalog",
  "StaticToolCatalog",
  "CommonTools",
  "PostgresToolCatalog",
]
