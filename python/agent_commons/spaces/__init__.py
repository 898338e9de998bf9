from .membership import (
  MemberType,
  MemberStatus,
  Permissions,
  SpaceMember,
  Membership,
  InMemoryMembership,
)
from .classifier import RouterClassifier, ModelRouterClassifier, routing_instructions, parse_verdict
from .router import SpaceRouter, RouterConfig, RouterState, MAX_AGENT_TURNS_DEFAULT, CONTEXT_WINDOW_DEFAULT

__all__ = [
  "MemberType",
  "MemberStatus",
  "Permissions",
  "SpaceMember",
  "Membership",
  "InMemoryMembership",
  "RouterClassifier",
  "ModelRouterClassifier",
  "routing_instructions",
  "parse_verdict",
  "SpaceRouter",
  "RouterConfig",
  "RouterState",
  "MAX_AGENT_TURNS_DEFAULT",
  "CONTEXT_WINDOW_DEFAULT",
]
