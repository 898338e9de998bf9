import dataclasses
import uuid

from datetime import datetime, UTC
from enum import Enum
from typing import Optional, TypedDict

from ..errors import MembershipDeniedError
from ..logs import get_logger
from ..messages import AssistantMessage, ConversationMessage
from ..threads import ThreadDelta, ThreadState, ThreadStore
from ..engine import ConversationEngine
from .classifier import RouterClassifier
from .membership import MemberType, Membership, SpaceMember

logger = get_logger("router")

MAX_AGENT_TURNS_DEFAULT = 5
CONTEXT_WINDOW_DEFAULT = 20

# messages from this sender skip membership checks
SYSTEM_SENDER = "system"


class RouterConfig(TypedDict, total=False):
  max_agent_turns: int
  context_window: int
  auto_join: bool


class RouterState(Enum):
  ROUTER = "router"
  AGENT = "agent"
  DONE = "done"


class SpaceRouter:
  """
  Turn-taking for a thread shared by several agents and humans.

  Each inbound message is appended to the space thread, then the router
  repeatedly asks the classifier which agent should answer the latest message
  and runs that agent through the conversation engine under its own
  sub-session, until the classifier picks nobody or ``max_agent_turns``
  replies have been produced.
  """

  def __init__(
    self,
    store: ThreadStore,
    engine: ConversationEngine,
    classifier: RouterClassifier,
    membership: Membership,
    max_agent_turns: int = MAX_AGENT_TURNS_DEFAULT,
    context_window: int = CONTEXT_WINDOW_DEFAULT,
    auto_join: bool = False,
  ):
    if max_agent_turns < 0:
      raise ValueError("max_agent_turns must not be negative")
    self.store = store
    self.engine = engine
    self.classifier = classifier
    self.membership = membership
    self.max_agent_turns = max_agent_turns
    self.context_window = context_window
    self.auto_join = auto_join

  @classmethod
  def from_config(cls, config: RouterConfig, **collaborators) -> "SpaceRouter":
    return cls(**collaborators, **config)

  async def join(self, space_id: str, agent_id: str, session_id: Optional[str] = None) -> str:
    """Register the sub-session an agent answers from in this space."""
    session_id = session_id or str(uuid.uuid4())
    await self.store.append_and_checkpoint(space_id, ThreadDelta(sessions={agent_id: session_id}))
    logger.info(f"[ROUTER] Agent {agent_id} joined space {space_id} with session {session_id}")
    return session_id

  async def on_message(self, space_id: str, message: ConversationMessage, sender_id: str) -> None:
    member = await self._admit(space_id, sender_id)
    member_type = member.member_type.value if member else SYSTEM_SENDER

    updates = {}
    if not message.id:
      updates["id"] = str(uuid.uuid4())
    if not message.name:
      updates["name"] = f"{member_type}:{sender_id}"
    if updates:
      message = dataclasses.replace(message, **updates)

    logger.info(f"[ROUTER] Message {message.id} in space {space_id} from {member_type} {sender_id}")
    state = await self.store.append_and_checkpoint(
      space_id,
      ThreadDelta(
        messages=[message],
        metadata={
          message.id: {
            "member_id": sender_id,
            "member_type": member_type,
            "created_at": datetime.now(UTC).isoformat(),
          }
        },
      ),
    )

    await self._route(space_id, state)

    if member is not None:
      await self.membership.mark_active(space_id, sender_id)

  async def _admit(self, space_id: str, sender_id: str) -> Optional[SpaceMember]:
    if sender_id == SYSTEM_SENDER:
      return None

    if not await self.membership.is_member(space_id, sender_id):
      logger.warning(f"[ROUTER] {sender_id} is not an active member of space {space_id}")
      raise MembershipDeniedError(context={"space_id": space_id, "sender_id": sender_id, "reason": "not a member"})
    if not await self.membership.has_write_permission(space_id, sender_id):
      logger.warning(f"[ROUTER] {sender_id} may not write to space {space_id}")
      raise MembershipDeniedError(
        context={"space_id": space_id, "sender_id": sender_id, "reason": "no write permission"}
      )
    return await self.membership.get_member(space_id, sender_id)

  async def _route(self, space_id: str, state: ThreadState):
    agent_turns = 0
    router_state = RouterState.ROUTER
    agent_id: Optional[str] = None

    while router_state != RouterState.DONE:
      match router_state:
        case RouterState.ROUTER:
          if agent_turns >= self.max_agent_turns:
            logger.warning(f"[ROUTER] Space {space_id} reached max_agent_turns ({self.max_agent_turns})")
            router_state = RouterState.DONE
            continue
          agent_id = await self._select_agent(space_id, state)
          router_state = RouterState.AGENT if agent_id else RouterState.DONE
        case RouterState.AGENT:
          replied = await self._run_agent(space_id, agent_id, state)
          if replied is None:
            router_state = RouterState.DONE
            continue
          state = replied
          agent_turns += 1
          router_state = RouterState.ROUTER

    logger.debug(f"[ROUTER] Space {space_id} settled after {agent_turns} agent replies")

  async def _select_agent(self, space_id: str, state: ThreadState) -> Optional[str]:
    members = await self.membership.get_members(space_id)
    window = state.messages[-self.context_window :] if self.context_window > 0 else []
    agent_id = await self.classifier.classify(window, members)
    if not agent_id:
      logger.debug(f"[ROUTER] No agent selected in space {space_id}")
      return None

    if not any(m.member_id == agent_id and m.member_type == MemberType.AGENT for m in members):
      logger.warning(f"[ROUTER] Classifier picked {agent_id}, which is not an agent member of {space_id}")
      return None
    return agent_id

  async def _run_agent(self, space_id: str, agent_id: str, state: ThreadState) -> Optional[ThreadState]:
    session_id = state.sessions.get(agent_id)
    if session_id is None:
      if not self.auto_join:
        logger.info(f"[ROUTER] Agent {agent_id} has no session in space {space_id}, skipping")
        return None
      session_id = str(uuid.uuid4())

    logger.info(f"[ROUTER] Running agent {agent_id} in space {space_id} (session {session_id})")
    result = await self.engine.run(session_id, agent_id, state.messages)

    reply: AssistantMessage = result.final_message
    if not reply.name:
      reply = dataclasses.replace(reply, name=f"agent:{agent_id}")

    # the space is append-only, the reply lands after anything written while the agent ran
    return await self.store.append_and_checkpoint(
      space_id,
      ThreadDelta(
        messages=[reply],
        sessions={agent_id: result.session_id},
        metadata={
          reply.id: {
            "agent_id": agent_id,
            "created_at": datetime.now(UTC).isoformat(),
            **result.updated_metadata.get(reply.id, {}),
          }
        },
      ),
    )
