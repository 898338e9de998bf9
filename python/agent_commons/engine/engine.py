import asyncio
import time
import uuid

from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, TypedDict

from ..errors import (
  AgentNotFoundError,
  CommonsError,
  ModelInvocationError,
  ThreadStoreError,
  ToolError,
  ToolNotFoundError,
  TurnLimitExceededError,
  TurnTimeoutError,
)
from ..identity import SecretProvider, execution_metadata, redact
from ..logs import get_logger
from ..messages import (
  AssistantMessage,
  ConversationMessage,
  SystemMessage,
  ToolCall,
  ToolResult,
  UserMessage,
  primary_text,
)
from ..config import title_model_name
from ..models import Model, ModelInvoker
from ..models.model import TEMPERATURE_DEFAULT, TOP_P_DEFAULT
from ..threads import ThreadDelta, ThreadState, ThreadStore, merge_messages, validate_tool_pairing
from ..tools import ToolCatalog, ToolDispatcher
from .events import EventType, StepEvent, TurnResult
from .persona import AgentDirectory, AgentProfile, system_message_for

logger = get_logger("engine")

# =============================================================================
# SAFETY LIMITS
# =============================================================================

MAX_ITERATIONS_DEFAULT = 25
MAX_EXECUTION_TIME_DEFAULT = 600.0  # 10 minutes

TITLE_INPUT_LIMIT = 200
TITLE_INSTRUCTION = (
  "Generate a short, descriptive title (max 6 words) for this conversation based on the user's message. "
  "Do not use quotes or special characters."
)
TITLE_TEMPERATURE = 0.3
TITLE_MAX_TOKENS = 20

_END_OF_STREAM = object()


class EngineConfig(TypedDict, total=False):
  max_iterations: int
  max_execution_time: float
  abort_on_unresolved_tool: bool


# =============================================================================
# TURN STATE MACHINE
# =============================================================================


class TurnState(Enum):
  """
  States of one turn of an agent in a thread.

  States:
    - START: Load the thread, merge the new messages, add a system message on the first turn
    - INVOKE: Ask the model for the next assistant message
    - DISPATCH: Run the requested tool calls (and a pending title) concurrently
    - GENERATE_TITLE: Title the thread from the latest user message
    - DONE: Persist the turn as one checkpoint
  """

  START = "start"
  INVOKE = "invoke"
  DISPATCH = "dispatch"
  GENERATE_TITLE = "generate_title"
  DONE = "done"


#   START ──▶ INVOKE ──[tool calls]──▶ DISPATCH ──┐
#               ▲                      (+ title)  │
#               └─────────────────────────────────┘
#   INVOKE ──[no tool calls, no title yet]──▶ GENERATE_TITLE ──▶ DONE
#   INVOKE ──[no tool calls]──▶ DONE


class Turn:
  """
  Ephemeral orchestrator of one turn, created per call to the engine.

  ``steps()`` is the single stepper behind both the blocking and the
  streaming call modes. Nothing is written to the store until DONE, so a
  turn that fails or is cancelled leaves the last checkpoint untouched.
  """

  def __init__(
    self,
    engine: "ConversationEngine",
    session_id: str,
    agent_id: str,
    new_messages: List[ConversationMessage],
    stream: bool,
    model_params: Dict[str, Any],
  ):
    self.engine = engine
    self.session_id = session_id
    self.agent_id = agent_id
    self.new_messages = list(new_messages)
    self.stream = stream
    self.model_params = model_params

    self.state = TurnState.START
    self.iteration = 0
    self.base: Optional[ThreadState] = None
    self.agent: Optional[AgentProfile] = None
    self.messages: List[ConversationMessage] = []
    self.delta = ThreadDelta()
    self.tools: List[dict] = []
    self.private_key: Optional[str] = None

    self.tool_calls: List[ToolCall] = []
    self.title_scheduled = False
    self.title_attempted = False
    self.final_message: Optional[AssistantMessage] = None

    self.start_time = time.time()
    self.deadline: Optional[float] = None

  async def steps(self) -> AsyncIterator[StepEvent]:
    loop = asyncio.get_running_loop()
    self.deadline = loop.time() + self.engine.max_execution_time
    logger.debug(f"[TURN] Starting: session={self.session_id}, agent={self.agent_id}, stream={self.stream}")

    try:
      while self.state != TurnState.DONE:
        logger.debug(f"[TURN→{self.state.name}] iteration={self.iteration}")
        async for event in self.transition():
          yield event

      async for event in self._handle_done_state():
        yield event
    except TimeoutError as e:
      logger.error(f"[TURN] Exceeded maximum execution time ({self.engine.max_execution_time}s)")
      raise TurnTimeoutError(
        context={"session_id": self.session_id, "max_execution_time": self.engine.max_execution_time}
      ) from e

    logger.info(f"[TURN] Completed: {self.iteration} iterations in {time.time() - self.start_time:.1f}s")

  async def transition(self) -> AsyncIterator[StepEvent]:
    match self.state:
      case TurnState.START:
        await self._handle_start_state()
      case TurnState.INVOKE:
        async for event in self._handle_invoke_state():
          yield event
      case TurnState.DISPATCH:
        async for event in self._handle_dispatch_state():
          yield event
      case TurnState.GENERATE_TITLE:
        async for event in self._handle_title_state():
          yield event

  def _deadline(self):
    return asyncio.timeout_at(self.deadline)

  # ---------------------------------------------------------------------------
  # START
  # ---------------------------------------------------------------------------

  async def _handle_start_state(self):
    self.agent = await self.engine.agents.get_agent(self.agent_id)
    if self.agent is None:
      raise AgentNotFoundError(context={"agent_id": self.agent_id})

    self.base = await self.engine.load(self.session_id)
    known = self.base.message_ids()
    incoming = merge_messages([], [m for m in self.new_messages if m.id not in known])

    if not self.base.messages and not (incoming and isinstance(incoming[0], SystemMessage)):
      logger.debug(f"[STATE:START] First turn of {self.session_id}, adding the agent system message")
      incoming.insert(0, system_message_for(self.agent, self.session_id))

    self.messages = self.base.messages + incoming
    valid, error = validate_tool_pairing(self.messages)
    if not valid:
      raise ValueError(f"Cannot start a turn on session {self.session_id}: {error}")

    self.delta.messages.extend(incoming)
    self.tools = await self.engine.tool_specs(self.agent_id)
    if self.engine.secrets is not None:
      self.private_key = await self.engine.secrets.derive_private_key_material(self.agent_id)

    self.state = TurnState.INVOKE

  # ---------------------------------------------------------------------------
  # INVOKE
  # ---------------------------------------------------------------------------

  async def _handle_invoke_state(self) -> AsyncIterator[StepEvent]:
    self.iteration += 1
    if self.iteration > self.engine.max_iterations:
      logger.warning(f"[STATE:INVOKE] Reached max_iterations ({self.engine.max_iterations})")
      raise TurnLimitExceededError(context={"session_id": self.session_id, "max_iterations": self.engine.max_iterations})

    logger.debug(f"[STATE:INVOKE] Calling the model with {len(self.messages)} messages, iteration {self.iteration}")
    model = self.engine.model
    tools = self.tools or None

    if self.stream:
      queue: asyncio.Queue = asyncio.Queue()

      async def produce():
        try:
          return await model.invoke(self.messages, tools=tools, on_chunk=queue.put, **self.model_params)
        finally:
          queue.put_nowait(_END_OF_STREAM)

      task = asyncio.create_task(produce())
      try:
        while True:
          async with self._deadline():
            chunk = await queue.get()
          if chunk is _END_OF_STREAM:
            break
          yield StepEvent(EventType.MODEL_CHUNK, {"agent_id": self.agent_id, "text": chunk})
        message = await self._model_result(task)
      finally:
        if not task.done():
          task.cancel()
    else:
      async with self._deadline():
        message = await self._model_result(model.invoke(self.messages, tools=tools, **self.model_params))

    self._remember(message)
    self.delta.metadata[message.id] = {
      "agent_id": self.agent_id,
      "config": {
        "temperature": self.model_params.get("temperature", getattr(model, "temperature", TEMPERATURE_DEFAULT)),
        "top_p": self.model_params.get("top_p", getattr(model, "top_p", TOP_P_DEFAULT)),
      },
    }
    self.final_message = message
    self.tool_calls = list(message.tool_calls)

    if not self.title_attempted and not self.base.title and not self.delta.title:
      self.title_scheduled = True

    if self.tool_calls:
      logger.debug(f"[STATE:INVOKE] Model requested {len(self.tool_calls)} tool calls, transitioning to DISPATCH")
      self.state = TurnState.DISPATCH
    elif self.title_scheduled:
      self.state = TurnState.GENERATE_TITLE
    else:
      self.state = TurnState.DONE

  async def _model_result(self, awaitable) -> AssistantMessage:
    try:
      return await awaitable
    except CommonsError:
      raise
    except Exception as e:
      logger.error(f"[STATE:INVOKE] Model completion error: {e}")
      raise ModelInvocationError(context={"session_id": self.session_id, "reason": str(e)}) from e

  def _remember(self, message: ConversationMessage):
    self.messages.append(message)
    self.delta.messages.append(message)

  # ---------------------------------------------------------------------------
  # DISPATCH
  # ---------------------------------------------------------------------------

  async def _handle_dispatch_state(self) -> AsyncIterator[StepEvent]:
    for tool_call in self.tool_calls:
      yield StepEvent(
        EventType.TOOL_DISPATCHED,
        {"tool_call_id": tool_call.id, "name": tool_call.name, "arguments": tool_call.arguments},
      )

    tasks = [asyncio.create_task(self._dispatch_one(tool_call)) for tool_call in self.tool_calls]
    title_task = None
    if self.title_scheduled:
      title_task = asyncio.create_task(self._generate_title())

    pending = tasks + ([title_task] if title_task else [])
    try:
      async with self._deadline():
        await asyncio.gather(*pending)
    finally:
      for task in pending:
        if not task.done():
          task.cancel()

    # results are appended in the order the calls were issued, not the order they completed
    for task in tasks:
      result: ToolResult = task.result()
      self._remember(result.to_message())
      yield StepEvent(
        EventType.TOOL_COMPLETED,
        {"tool_call_id": result.tool_call_id, "name": result.name, "content": result.content, "error": result.error},
      )

    if title_task is not None:
      event = self._set_title(title_task.result())
      if event:
        yield event

    logger.debug("[STATE:DISPATCH] All tool calls complete, transitioning to INVOKE")
    self.tool_calls = []
    self.state = TurnState.INVOKE

  async def _dispatch_one(self, tool_call: ToolCall) -> ToolResult:
    metadata = execution_metadata(self.agent_id, self.session_id, self.private_key)
    logger.debug(f"[TOOL→CALL] {tool_call.name} id={tool_call.id} metadata={redact(metadata)}")
    try:
      content = await self.engine.dispatcher.dispatch(tool_call.name, tool_call.arguments, metadata)
      return ToolResult(tool_call_id=tool_call.id, name=tool_call.name, content=content)
    except ToolNotFoundError as e:
      if self.engine.abort_on_unresolved_tool:
        raise
      logger.warning(f"[TOOL→ERROR] {e}")
      return ToolResult(tool_call_id=tool_call.id, name=tool_call.name, error=e.to_content())
    except ToolError as e:
      logger.warning(f"[TOOL→ERROR] {e}")
      return ToolResult(tool_call_id=tool_call.id, name=tool_call.name, error=e.to_content())
    except CommonsError:
      # store and engine failures end the turn, only tool failures go back to the model
      raise
    except Exception as e:
      logger.error(f"[TOOL→ERROR] Tool '{tool_call.name}' execution failed: {type(e).__name__}: {e}")
      error = {"error": {"type": type(e).__name__, "message": str(e)}}
      return ToolResult(tool_call_id=tool_call.id, name=tool_call.name, error=error)

  # ---------------------------------------------------------------------------
  # GENERATE_TITLE
  # ---------------------------------------------------------------------------

  async def _handle_title_state(self) -> AsyncIterator[StepEvent]:
    async with self._deadline():
      title = await self._generate_title()
    event = self._set_title(title)
    if event:
      yield event
    self.state = TurnState.DONE

  async def _generate_title(self) -> Optional[str]:
    self.title_attempted = True
    self.title_scheduled = False

    last_user_message = next((m for m in reversed(self.messages) if isinstance(m, UserMessage)), None)
    if last_user_message is None:
      return None
    text = primary_text(last_user_message)[:TITLE_INPUT_LIMIT]
    if not text.strip():
      return None

    try:
      response = await self.engine.title_model.invoke(
        [SystemMessage(content=TITLE_INSTRUCTION), UserMessage(content=text)],
        temperature=TITLE_TEMPERATURE,
        max_tokens=TITLE_MAX_TOKENS,
      )
    except Exception as e:
      # an untitled thread is retried on its next turn
      logger.warning(f"[STATE:GENERATE_TITLE] Title generation failed for {self.session_id}: {e}")
      return None

    return primary_text(response).strip() or None

  def _set_title(self, title: Optional[str]) -> Optional[StepEvent]:
    if not title:
      return None
    logger.debug(f"[STATE:GENERATE_TITLE] {self.session_id} is titled '{title}'")
    self.delta.title = title
    return StepEvent(EventType.TITLE_SET, {"session_id": self.session_id, "title": title})

  # ---------------------------------------------------------------------------
  # DONE
  # ---------------------------------------------------------------------------

  async def _handle_done_state(self) -> AsyncIterator[StepEvent]:
    state = await self.engine.persist(self.session_id, self.delta, self.base.checkpoint_id)
    result = TurnResult(
      session_id=self.session_id,
      final_message=self.final_message,
      new_messages=list(self.delta.messages),
      updated_metadata=dict(self.delta.metadata),
      title=state.title,
    )
    yield StepEvent(EventType.TURN_COMPLETED, {"result": result})


# =============================================================================
# ENGINE
# =============================================================================


class ConversationEngine:
  """
  Runs turns of one agent over one thread (a session).

  A turn loads the latest checkpoint of the session, calls the model until it
  answers without tool calls, titles the thread when it has no title, and
  writes everything as a single checkpoint. Turns on the same session must be
  serialized by the caller; a turn that started from a stale checkpoint is
  rejected by the store with ``CheckpointConflictError``.

  Safety Mechanisms:
    - max_iterations bounds model calls per turn
    - max_execution_time bounds the wall time of a turn
  """

  def __init__(
    self,
    store: ThreadStore,
    model: ModelInvoker,
    dispatcher: ToolDispatcher,
    agents: AgentDirectory,
    tool_catalog: Optional[ToolCatalog] = None,
    secrets: Optional[SecretProvider] = None,
    title_model: Optional[ModelInvoker] = None,
    max_iterations: int = MAX_ITERATIONS_DEFAULT,
    max_execution_time: float = MAX_EXECUTION_TIME_DEFAULT,
    abort_on_unresolved_tool: bool = False,
  ):
    if max_iterations < 1:
      raise ValueError("max_iterations must be at least 1")
    if max_execution_time <= 0:
      raise ValueError("max_execution_time must be positive")

    self.store = store
    self.model = model
    self.dispatcher = dispatcher
    self.agents = agents
    self.tool_catalog = tool_catalog
    self.secrets = secrets
    self.title_model = title_model or model
    self.max_iterations = max_iterations
    self.max_execution_time = max_execution_time
    self.abort_on_unresolved_tool = abort_on_unresolved_tool

  @classmethod
  def from_config(cls, config: EngineConfig, **collaborators) -> "ConversationEngine":
    if collaborators.get("title_model") is None:
      collaborators["title_model"] = Model(
        title_model_name(), temperature=TITLE_TEMPERATURE, max_tokens=TITLE_MAX_TOKENS
      )
    return cls(**collaborators, **config)

  async def run(
    self,
    session_id: Optional[str],
    agent_id: str,
    new_messages: List[ConversationMessage],
    temperature: Optional[float] = None,
    top_p: Optional[float] = None,
  ) -> TurnResult:
    """Run one turn to completion and return its result."""
    turn = self._turn(session_id, agent_id, new_messages, False, temperature, top_p)
    result = None
    async for event in turn.steps():
      if event.type == EventType.TURN_COMPLETED:
        result = event.payload["result"]
    return result

  def run_stream(
    self,
    session_id: Optional[str],
    agent_id: str,
    new_messages: List[ConversationMessage],
    temperature: Optional[float] = None,
    top_p: Optional[float] = None,
  ) -> AsyncIterator[StepEvent]:
    """
    Run one turn lazily, yielding step events as they happen.

    The last event is ``turn_completed``. Closing the iterator early cancels
    the turn without writing a checkpoint.
    """
    return self._turn(session_id, agent_id, new_messages, True, temperature, top_p).steps()

  def _turn(self, session_id, agent_id, new_messages, stream, temperature, top_p) -> Turn:
    model_params = {}
    if temperature is not None:
      model_params["temperature"] = temperature
    if top_p is not None:
      model_params["top_p"] = top_p
    return Turn(self, session_id or str(uuid.uuid4()), agent_id, new_messages, stream, model_params)

  async def tool_specs(self, agent_id: str) -> List[dict]:
    if self.tool_catalog is not None:
      return await self.tool_catalog.tool_specs(agent_id)
    return self.dispatcher.static_tools.specs()

  async def load(self, session_id: str) -> ThreadState:
    try:
      return await self.store.get_latest(session_id)
    except CommonsError:
      raise
    except Exception as e:
      raise ThreadStoreError(context={"session_id": session_id, "reason": str(e)}) from e

  async def persist(self, session_id: str, delta: ThreadDelta, expected_checkpoint_id: Optional[str]) -> ThreadState:
    try:
      return await self.store.append_and_checkpoint(session_id, delta, expected_checkpoint_id=expected_checkpoint_id)
    except CommonsError:
      raise
    except Exception as e:
      raise ThreadStoreError(context={"session_id": session_id, "reason": str(e)}) from e

  async def describe_session(self, session_id: str) -> Dict[str, Any]:
    state = await self.load(session_id)
    return {
      "session_id": session_id,
      "title": state.title,
      "created_at": state.created_at,
      "message_count": len(state.messages),
    }
