import inspect
import re

from functools import wraps
from typing import Any, Callable, Dict, Optional
from docstring_parser import parse

from ..logs.logs import InfoContext, get_logger

logger = get_logger("tool")

TOOL_NAME = re.compile(r"^[a-zA-Z0-9_-]+$")


class StaticTool(InfoContext):
  """
  A tool implemented in process.

  The wrapped function is called as ``func(arguments, execution_metadata)``
  and may be sync or async. Its docstring describes the tool to the model:
  the summary becomes the description and the ``Args:`` section documents the
  fields of the ``arguments`` object.

  Example:
    def echo(arguments, execution_metadata):
      \"\"\"Echo a value back.

      Args:
        x (int): value to echo
      \"\"\"
      return {"x": arguments["x"]}
  """

  def __init__(self, func: Callable, name: Optional[str] = None, parameters: Optional[dict] = None):
    self.logger = logger
    self.name = name or func.__name__
    if TOOL_NAME.match(self.name) is None:
      raise ValueError(f"Tool name '{self.name}' may only contain [a-zA-Z0-9_-] characters")
    self.func = wrap(func)
    self._spec = function_spec(self.name, func, parameters)

  def spec(self) -> dict:
    return self._spec

  async def invoke(self, arguments: Any, execution_metadata: Dict[str, Any]) -> Any:
    with self.info(f"[TOOL→CALL] {self.name}", f"[TOOL→DONE] {self.name}"):
      return await self.func(arguments, execution_metadata)


def wrap(f) -> Callable:
  @wraps(f)
  async def wrapper(arguments, execution_metadata):
    r = f(arguments, execution_metadata)
    if inspect.isawaitable(r):
      return await r
    return r

  return wrapper


def function_spec(name: str, f: Callable, parameters: Optional[dict] = None) -> dict:
  docstring = f.__doc__
  if docstring:
    parsed = parse(inspect.cleandoc(docstring))
    description = "\n\n".join(d for d in (parsed.short_description, parsed.long_description) if d)
  else:
    description = f"Function {name}"

  return {
    "type": "function",
    "function": {
      "name": name,
      "description": description or f"Function {name}",
      "parameters": parameters if parameters is not None else parameters_spec(docstring),
    },
  }


def parameters_spec(docstring: Optional[str]) -> dict:
  """JSON schema of the arguments object, read from the ``Args:`` section of a docstring."""
  f_parameters: dict = {"type": "object", "properties": {}, "required": []}
  if not docstring:
    return f_parameters

  for parameter in parse(inspect.cleandoc(docstring)).params:
    p_type = to_json_schema_type(parameter.type_name or "str")
    f_parameters["properties"][parameter.arg_name] = {
      "type": p_type,
      "description": parameter.description or f"parameter {parameter.arg_name}",
    }
    if not parameter.is_optional:
      f_parameters["required"].append(parameter.arg_name)

  return f_parameters


def to_json_schema_type(p_type: str) -> str:
  p_type = p_type.replace("Optional[", "").rstrip("]").strip()
  return {
    "bool": "boolean",
    "int": "integer",
    "float": "number",
    "str": "string",
    "list": "array",
    "dict": "object",
  }.get(p_type, "string")
