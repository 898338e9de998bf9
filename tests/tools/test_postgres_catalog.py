from unittest.mock import AsyncMock, MagicMock

import pytest

from agent_commons.errors import ThreadStoreError
from agent_commons.tools import ApiSpec, PostgresToolCatalog
from agent_commons.tools.postgres import resource_from_row, tool_from_row

SEARCH_SCHEMA = {
  "type": "function",
  "function": {"name": "search", "parameters": {"type": "object", "properties": {}}},
  "apiSpec": {"method": "get", "baseUrl": "https://api.example.com", "path": "/search", "queryParams": {"q": "{q}"}},
}


def fake_connection(row):
  cursor = MagicMock()
  cursor.execute = AsyncMock()
  cursor.fetchone = AsyncMock(return_value=row)
  cursor.__aenter__ = AsyncMock(return_value=cursor)
  cursor.__aexit__ = AsyncMock(return_value=False)
  connection = MagicMock()
  connection.cursor.return_value = cursor
  return connection, cursor


class TestRows:
  def test_tool_with_api_spec(self):
    tool = tool_from_row({"name": "search", "schema": SEARCH_SCHEMA})

    assert tool.name == "search"
    assert tool.api_spec == ApiSpec(
      method="GET", base_url="https://api.example.com", path="/search", query_params={"q": "{q}"}
    )
    assert tool.schema is SEARCH_SCHEMA

  def test_tool_without_api_spec(self):
    assert tool_from_row({"name": "legacy", "schema": {"type": "function"}}).api_spec is None
    assert tool_from_row({"name": "bare", "schema": None}).api_spec is None

  def test_resource(self):
    resource = resource_from_row({"resource_id": "42", "schema": SEARCH_SCHEMA})

    assert resource.resource_id == "42"
    assert resource.api_spec.path == "/search"


class TestPostgresToolCatalog:
  @pytest.mark.asyncio
  async def test_get_tool_by_name(self):
    catalog = PostgresToolCatalog("postgresql://localhost/tools")
    catalog.connection, cursor = fake_connection({"name": "search", "schema": SEARCH_SCHEMA})

    tool = await catalog.get_tool_by_name("search")

    assert tool.api_spec.base_url == "https://api.example.com"
    query, params = cursor.execute.call_args.args
    assert "FROM tool" in query
    assert params == ("search",)

  @pytest.mark.asyncio
  async def test_missing_resource(self):
    catalog = PostgresToolCatalog("postgresql://localhost/tools")
    catalog.connection, _ = fake_connection(None)

    assert await catalog.get_resource_by_id("42") is None

  @pytest.mark.asyncio
  async def test_requires_a_database_url(self, monkeypatch):
    monkeypatch.delenv("AGENT_COMMONS_DATABASE_URL", raising=False)
    monkeypatch.delenv("POSTGRES_HOST", raising=False)

    with pytest.raises(ThreadStoreError):
      await PostgresToolCatalog().get_tool_by_name("search")
