from .errors import (
  CommonsError,
  ModelInvocationError,
  ToolError,
  ToolNotFoundError,
  ToolMisconfiguredError,
  UpstreamError,
  MembershipDeniedError,
  ThreadStoreError,
  CheckpointConflictError,
  AgentNotFoundError,
  TurnLimitExceededError,
  TurnTimeoutError,
)
from .messages import (
  ConversationRole,
  UserMessage,
  SystemMessage,
  AssistantMessage,
  ToolMessage,
  ToolCall,
  ToolResult,
)
from .threads import ThreadState, ThreadDelta, InMemoryThreadStore, PostgresThreadStore
from .models import Model, ModelInvoker
from .tools import (
  ApiSpec,
  SpecTool,
  Resource,
  StaticTool,
  StaticToolRegistry,
  ToolDispatcher,
  CommonTools,
)
from .engine import ConversationEngine, AgentProfile, EventType, StepEvent, TurnResult
from .spaces import SpaceRouter, ModelRouterClassifier, InMemoryMembership, MemberType
from .identity import redact

__all__ = [
  "CommonsError",
  "ModelInvocationError",
  "ToolError",
  "ToolNotFoundError",
  "ToolMisconfiguredError",
  "UpstreamError",
  "MembershipDeniedError",
  "ThreadStoreError",
  "CheckpointConflictError",
  "AgentNotFoundError",
  "TurnLimitExceededError",
  "TurnTimeoutError",
  "ConversationRole",
  "UserMessage",
  "SystemMessage",
  "AssistantMessage",
  "ToolMessage",
  "ToolCall",
  "ToolResult",
  "ThreadState",
  "ThreadDelta",
  "InMemoryThreadStore",
  "PostgresThreadStore",
  "Model",
  "ModelInvoker",
  "ApiSpec",
  "SpecTool",
  "Resource",
  "StaticTool",
  "StaticToolRegistry",
  "ToolDispatcher",
  "CommonTools",
  "ConversationEngine",
  "AgentProfile",
  "EventType",
  "StepEvent",
  "TurnResult",
  "SpaceRouter",
  "ModelRouterClassifier",
  "InMemoryMembership",
  "MemberType",
  "redact",
]
