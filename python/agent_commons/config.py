"""
Environment configuration for agent_commons.

Environment Variables:
- AGENT_COMMONS_MODEL: Model used for agent turns (default: gpt-4o-mini)
- AGENT_COMMONS_TITLE_MODEL: Model used for thread titles (default: AGENT_COMMONS_MODEL)
- AGENT_COMMONS_ROUTER_MODEL: Model used to pick the next speaker in a space (default: AGENT_COMMONS_MODEL)
- AGENT_COMMONS_TOOL_TIMEOUT: Timeout in seconds for HTTP spec tools (default: 30)
- AGENT_COMMONS_DATABASE_URL: Full PostgreSQL connection string
- POSTGRES_USER, POSTGRES_PASSWORD, POSTGRES_HOST, POSTGRES_PORT, POSTGRES_DATABASE:
  used to build the connection string when AGENT_COMMONS_DATABASE_URL is not set
"""

from os import environ
from typing import Optional
from urllib.parse import quote

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TOOL_TIMEOUT = 30.0
DEFAULT_POSTGRES_PORT = "5432"


def model_name() -> str:
  return environ.get("AGENT_COMMONS_MODEL") or DEFAULT_MODEL


def title_model_name() -> str:
  return environ.get("AGENT_COMMONS_TITLE_MODEL") or model_name()


def router_model_name() -> str:
  return environ.get("AGENT_COMMONS_ROUTER_MODEL") or model_name()


def tool_timeout() -> float:
  value = environ.get("AGENT_COMMONS_TOOL_TIMEOUT")
  if not value:
    return DEFAULT_TOOL_TIMEOUT
  try:
    return float(value)
  except ValueError:
    raise ValueError(f"AGENT_COMMONS_TOOL_TIMEOUT must be a number of seconds, got {value!r}")


def database_url() -> Optional[str]:
  """
  Connection string for PostgreSQL, or None when no database is configured.
  """
  url = environ.get("AGENT_COMMONS_DATABASE_URL")
  if url:
    return url

  host = environ.get("POSTGRES_HOST")
  if not host:
    return None
  user = environ.get("POSTGRES_USER", "postgres")
  password = environ.get("POSTGRES_PASSWORD", "")
  port = environ.get("POSTGRES_PORT", DEFAULT_POSTGRES_PORT)
  database = environ.get("POSTGRES_DATABASE", "postgres")
  return f"postgresql://{quote(user)}:{quote(password)}@{host}:{port}/{database}"


def anonymize_database_url(url: str) -> str:
  """Hide the credentials of a connection string so it can be logged."""
  scheme, separator, rest = url.partition("://")
  if not separator:
    return "*****"
  _, at, location = rest.rpartition("@")
  if not at:
    return url
  return f"{scheme}://*****:*****@{location}"
