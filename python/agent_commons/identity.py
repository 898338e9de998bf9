from typing import Any, Dict, Optional, Protocol

# keys of execution metadata that must never reach a log line
SECRET_KEYS = {"private_key", "privateKey", "secret", "api_key", "apiKey", "password", "token"}

REDACTED = "*****"


class SecretProvider(Protocol):
  """Derives the key material an agent signs tool requests with."""

  async def derive_private_key_material(self, agent_id: str) -> str: ...


def redact(metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
  """Copy of execution metadata with secret values masked, safe to log."""
  if not metadata:
    return {}
  redacted = {}
  for key, value in metadata.items():
    if key in SECRET_KEYS:
      redacted[key] = REDACTED
    elif isinstance(value, dict):
      redacted[key] = redact(value)
    else:
      redacted[key] = value
  return redacted


def execution_metadata(agent_id: str, session_id: str, private_key: Optional[str] = None, **extra) -> Dict[str, Any]:
  metadata: Dict[str, Any] = {"agent_id": agent_id, "session_id": session_id, **extra}
  if private_key is not None:
    metadata["private_key"] = private_key
  return metadata
