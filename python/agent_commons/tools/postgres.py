import asyncio
import psycopg

from typing import Optional
from psycopg.rows import dict_row

from ..config import anonymize_database_url, database_url
from ..errors import ThreadStoreError
from ..logs import get_logger
from .registry import ApiSpec, Resource, SpecTool

logger = get_logger("tool")


def _api_spec(schema: Optional[dict]) -> Optional[ApiSpec]:
  if not schema or not schema.get("apiSpec"):
    return None
  return ApiSpec.from_dict(schema["apiSpec"])


def tool_from_row(row: dict) -> SpecTool:
  schema = row.get("schema") or {}
  return SpecTool(name=row["name"], api_spec=_api_spec(schema), schema=schema)


def resource_from_row(row: dict) -> Resource:
  schema = row.get("schema") or {}
  return Resource(resource_id=row["resource_id"], api_spec=_api_spec(schema), schema=schema)


class PostgresToolCatalog:
  """
  Read-only access to the ``tool`` and ``resource`` tables.

  Stored schemas are provider function definitions, optionally carrying an
  ``apiSpec`` object that describes the HTTP request behind the tool.
  Implements both the tool registry and the resource lookup.
  """

  def __init__(self, db_url: Optional[str] = None):
    self.db_url = db_url or database_url()
    self.connection = None
    self.lock = asyncio.Lock()

  async def connect(self):
    if not self.db_url:
      raise ThreadStoreError("No database configured. Set AGENT_COMMONS_DATABASE_URL or POSTGRES_HOST.")
    logger.info("Connecting to database at %s", anonymize_database_url(self.db_url))
    try:
      self.connection = await psycopg.AsyncConnection.connect(self.db_url, row_factory=dict_row, autocommit=True)
    except psycopg.OperationalError as e:
      raise ThreadStoreError(context={"database": anonymize_database_url(self.db_url)}) from e

  async def close(self):
    if self.connection:
      await self.connection.close()
      self.connection = None

  async def get_tool_by_name(self, name: str) -> Optional[SpecTool]:
    row = await self._fetch_one("SELECT name, schema FROM tool WHERE name = %s LIMIT 1", (name,))
    return tool_from_row(row) if row else None

  async def get_resource_by_id(self, resource_id: str) -> Optional[Resource]:
    row = await self._fetch_one("SELECT resource_id, schema FROM resource WHERE resource_id = %s", (resource_id,))
    return resource_from_row(row) if row else None

  async def _fetch_one(self, query: str, params: tuple) -> Optional[dict]:
    if self.connection is None:
      await self.connect()
    async with self.lock:
      try:
        async with self.connection.cursor() as cur:
          await cur.execute(query, params)
          return await cur.fetchone()
      except psycopg.Error as e:
        raise ThreadStoreError(context={"query": query.split(" WHERE")[0], "reason": str(e)}) from e
