from .engine import (
  ConversationEngine,
  EngineConfig,
  Turn,
  TurnState,
  MAX_ITERATIONS_DEFAULT,
  MAX_EXECUTION_TIME_DEFAULT,
  TITLE_INSTRUCTION,
)
from .events import EventType, StepEvent, TurnResult
from .persona import AgentProfile, AgentDirectory, InMemoryAgentDirectory, system_message_for

__all__ = [
  "ConversationEngine",
  "EngineConfig",
  "Turn",
  "TurnState",
  "MAX_ITERATIONS_DEFAULT",
  "MAX_EXECUTION_TIME_DEFAULT",
  "TITLE_INSTRUCTION",
  "EventType",
  "StepEvent",
  "TurnResult",
  "AgentProfile",
  "AgentDirectory",
  "InMemoryAgentDirectory",
  "system_message_for",
]
