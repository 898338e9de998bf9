"""
Tests for the conversation engine turn loop: persistence, tool dispatch,
title generation, failure handling, the single-writer rule and streaming.
"""

import asyncio
import json

import pytest

from agent_commons.engine import AgentProfile, ConversationEngine, EventType, TITLE_INSTRUCTION
from agent_commons.errors import (
  AgentNotFoundError,
  CheckpointConflictError,
  ModelInvocationError,
  ThreadStoreError,
  ToolNotFoundError,
  TurnLimitExceededError,
  TurnTimeoutError,
)
from agent_commons.messages import AssistantMessage, SystemMessage, ToolMessage, UserMessage
from agent_commons.threads import InMemoryThreadStore, ThreadDelta
from tests.mock_utils import ErrorMockModel, MockModel, MockSecrets, SlowMockModel, create_engine


def echo(arguments, execution_metadata):
  """Echo the arguments back.

  Args:
    x (int): value to echo
  """
  return arguments


async def seeded_store(session_id: str = "s1") -> InMemoryThreadStore:
  store = InMemoryThreadStore()
  await store.append_and_checkpoint(
    session_id, ThreadDelta(messages=[SystemMessage(content="You are terse."), UserMessage(content="say 1")])
  )
  return store


# =============================================================================
# SECTION 1: Single turns without tools
# =============================================================================


class TestSimpleTurn:
  """A turn where the model answers directly."""

  @pytest.mark.asyncio
  async def test_first_turn_persists_system_user_and_answer(self):
    model = MockModel([{"content": "Hello there"}])
    engine = create_engine(model)

    result = await engine.run(None, "agent-1", [UserMessage(content="hi")])

    state = await engine.store.get_latest(result.session_id)
    assert [type(m) for m in state.messages] == [SystemMessage, UserMessage, AssistantMessage]
    assert state.messages[-1].content == "Hello there"
    assert result.final_message.id == state.messages[-1].id
    assert result.new_messages == state.messages
    assert state.title == "Generated Title"
    assert result.title == "Generated Title"

  @pytest.mark.asyncio
  async def test_system_message_describes_the_agent(self):
    model = MockModel([{"content": "ok"}])
    agent = AgentProfile(
      agent_id="agent-1",
      name="Ada",
      persona="A careful analyst",
      instructions="Answer in one line",
      attributes={"wallet": {"address": "0xabc"}, "model": "gpt"},
    )
    engine = create_engine(model, agents=[agent])

    result = await engine.run("s1", "agent-1", [UserMessage(content="hi")])

    system = result.new_messages[0]
    assert isinstance(system, SystemMessage)
    assert "A careful analyst" in system.content
    assert "Answer in one line" in system.content
    assert "**SESSION ID**: s1" in system.content
    assert "0xabc" not in system.content
    assert '"model": "gpt"' in system.content

  @pytest.mark.asyncio
  async def test_provided_system_message_is_kept(self):
    model = MockModel([{"content": "ok"}])
    engine = create_engine(model)

    result = await engine.run("s1", "agent-1", [SystemMessage(content="custom"), UserMessage(content="hi")])

    system_messages = [m for m in result.new_messages if isinstance(m, SystemMessage)]
    assert [m.content for m in system_messages] == ["custom"]

  @pytest.mark.asyncio
  async def test_second_turn_keeps_title_and_adds_no_system_message(self):
    title_model = MockModel([{"content": "First Title"}, {"content": "Second Title"}])
    engine = create_engine(MockModel(), title_model=title_model)

    await engine.run("s1", "agent-1", [UserMessage(content="one")])
    result = await engine.run("s1", "agent-1", [UserMessage(content="two")])

    assert [type(m) for m in result.new_messages] == [UserMessage, AssistantMessage]
    assert result.title == "First Title"
    assert title_model.call_count == 1

  @pytest.mark.asyncio
  async def test_messages_already_in_the_thread_are_not_appended_again(self):
    engine = create_engine(MockModel())
    question = UserMessage(content="hi")

    await engine.run("s1", "agent-1", [question])
    result = await engine.run("s1", "agent-1", [question, UserMessage(content="again")])

    state = await engine.store.get_latest("s1")
    assert [m.id for m in state.messages].count(question.id) == 1
    assert [m.content for m in result.new_messages if isinstance(m, UserMessage)] == ["again"]

  @pytest.mark.asyncio
  async def test_assistant_metadata_records_agent_and_sampling(self):
    engine = create_engine(MockModel([{"content": "ok"}]))

    result = await engine.run("s1", "agent-1", [UserMessage(content="hi")], temperature=0.2)

    metadata = result.updated_metadata[result.final_message.id]
    assert metadata == {"agent_id": "agent-1", "config": {"temperature": 0.2, "top_p": 1.0}}
    assert engine.model.calls[0][2] == {"temperature": 0.2}


# =============================================================================
# SECTION 2: Title generation
# =============================================================================


class TestTitleGeneration:
  @pytest.mark.asyncio
  async def test_title_prompt_uses_truncated_latest_user_message(self):
    title_model = MockModel([{"content": "  Long Question Title  "}])
    engine = create_engine(MockModel(), title_model=title_model)

    result = await engine.run("s1", "agent-1", [UserMessage(content="x" * 500)])

    prompt, _, kwargs = title_model.calls[0]
    assert prompt[0].content == TITLE_INSTRUCTION
    assert prompt[1].content == "x" * 200
    assert kwargs == {"temperature": 0.3, "max_tokens": 20}
    assert result.title == "Long Question Title"

  @pytest.mark.asyncio
  async def test_title_failure_does_not_fail_the_turn(self):
    engine = create_engine(MockModel([{"content": "ok"}]), title_model=ErrorMockModel())

    result = await engine.run("s1", "agent-1", [UserMessage(content="hi")])

    assert result.final_message.content == "ok"
    assert result.title is None

  @pytest.mark.asyncio
  async def test_no_title_without_a_user_message(self):
    title_model = MockModel()
    engine = create_engine(MockModel(), title_model=title_model)

    result = await engine.run("s1", "agent-1", [SystemMessage(content="system only")])

    assert result.title is None
    assert title_model.call_count == 0


# =============================================================================
# SECTION 3: Tool dispatch
# =============================================================================


class TestToolDispatch:
  @pytest.mark.asyncio
  async def test_echo_tool_round_trip(self):
    """A tool call is answered by exactly one tool result followed by the final answer."""
    store = await seeded_store()
    model = MockModel(
      [
        {"tool_calls": [{"id": "c1", "name": "echo", "arguments": {"x": 1}}]},
        {"content": "x is 1"},
      ]
    )
    engine = create_engine(model, tools=[echo], store=store)

    result = await engine.run("s1", "agent-1", [])

    state = await store.get_latest("s1")
    assert len(state.messages) == 5
    tool_request = state.messages[2]
    assert isinstance(tool_request, AssistantMessage)
    assert tool_request.tool_calls[0].id == "c1"

    tool_result, answer = state.messages[3:]
    assert isinstance(tool_result, ToolMessage)
    assert tool_result.tool_call_id == "c1"
    assert json.loads(tool_result.content) == {"x": 1}
    assert isinstance(answer, AssistantMessage)
    assert answer.content == "x is 1"
    assert result.final_message.id == answer.id
    assert state.title == "Generated Title"

  @pytest.mark.asyncio
  async def test_tool_schemas_are_offered_to_the_model(self):
    model = MockModel([{"content": "ok"}])
    engine = create_engine(model, tools=[echo])

    await engine.run("s1", "agent-1", [UserMessage(content="hi")])

    _, tools, _ = model.calls[0]
    assert tools[0]["function"]["name"] == "echo"
    assert tools[0]["function"]["parameters"]["properties"]["x"]["type"] == "integer"

  @pytest.mark.asyncio
  async def test_results_follow_issue_order_when_completion_order_differs(self):
    fast_done = asyncio.Event()

    async def slow(arguments, execution_metadata):
      await asyncio.wait_for(fast_done.wait(), timeout=1.0)
      return "slow"

    async def fast(arguments, execution_metadata):
      fast_done.set()
      return "fast"

    model = MockModel(
      [
        {"tool_calls": [{"id": "a", "name": "slow"}, {"id": "b", "name": "fast"}]},
        {"content": "done"},
      ]
    )
    engine = create_engine(model, tools=[slow, fast])

    result = await engine.run("s1", "agent-1", [UserMessage(content="go")])

    tool_messages = [m for m in result.new_messages if isinstance(m, ToolMessage)]
    assert [(m.tool_call_id, m.content) for m in tool_messages] == [("a", "slow"), ("b", "fast")]

  @pytest.mark.asyncio
  async def test_unknown_tool_is_reported_to_the_model(self):
    model = MockModel([{"tool_calls": [{"id": "c1", "name": "missing"}]}, {"content": "sorry"}])
    engine = create_engine(model)

    result = await engine.run("s1", "agent-1", [UserMessage(content="go")])

    tool_message = next(m for m in result.new_messages if isinstance(m, ToolMessage))
    error = json.loads(tool_message.content)["error"]
    assert error["type"] == "ToolNotFoundError"
    assert result.final_message.content == "sorry"

  @pytest.mark.asyncio
  async def test_unknown_tool_aborts_when_configured(self):
    model = MockModel([{"tool_calls": [{"id": "c1", "name": "missing"}]}])
    engine = create_engine(model, abort_on_unresolved_tool=True)

    with pytest.raises(ToolNotFoundError):
      await engine.run("s1", "agent-1", [UserMessage(content="go")])

    assert await engine.store.list_checkpoints("s1") == []

  @pytest.mark.asyncio
  async def test_failing_tool_does_not_abort_its_siblings(self):
    def broken(arguments, execution_metadata):
      raise ValueError("bad input")

    model = MockModel(
      [
        {"tool_calls": [{"id": "c1", "name": "broken"}, {"id": "c2", "name": "echo", "arguments": {"x": 2}}]},
        {"content": "partially done"},
      ]
    )
    engine = create_engine(model, tools=[broken, echo])

    result = await engine.run("s1", "agent-1", [UserMessage(content="go")])

    first, second = [m for m in result.new_messages if isinstance(m, ToolMessage)]
    assert json.loads(first.content) == {"error": {"type": "ValueError", "message": "bad input"}}
    assert json.loads(second.content) == {"x": 2}

  @pytest.mark.asyncio
  async def test_tools_receive_execution_metadata(self):
    seen = []

    def whoami(arguments, execution_metadata):
      seen.append(execution_metadata)
      return "ok"

    model = MockModel([{"tool_calls": [{"id": "c1", "name": "whoami"}]}, {"content": "done"}])
    engine = create_engine(model, tools=[whoami], secrets=MockSecrets())

    await engine.run("s1", "agent-1", [UserMessage(content="go")])

    assert seen == [{"agent_id": "agent-1", "session_id": "s1", "private_key": "0xsecret-agent-1"}]

  @pytest.mark.asyncio
  async def test_catalog_failure_aborts_the_turn(self):
    class UnreachableCatalog:
      async def get_tool_by_name(self, name):
        raise ThreadStoreError(context={"reason": "connection lost"})

    model = MockModel([{"tool_calls": [{"id": "c1", "name": "echo", "arguments": {"x": 1}}]}, {"content": "done"}])
    engine = create_engine(model, tools=[echo])
    engine.dispatcher.registry = UnreachableCatalog()

    with pytest.raises(ThreadStoreError) as exc_info:
      await engine.run("s1", "agent-1", [UserMessage(content="go")])

    assert exc_info.value.context["reason"] == "connection lost"
    assert model.call_count == 1
    assert await engine.store.list_checkpoints("s1") == []

  @pytest.mark.asyncio
  async def test_title_runs_while_tools_are_dispatched(self):
    tool_started = asyncio.Event()
    title_started = asyncio.Event()
    finished = []

    async def wait_for_title(arguments, execution_metadata):
      tool_started.set()
      await asyncio.wait_for(title_started.wait(), timeout=1.0)
      finished.append("tool")
      return "ok"

    class SignallingTitleModel(MockModel):
      async def invoke(self, messages, tools=None, on_chunk=None, **kwargs):
        title_started.set()
        await asyncio.wait_for(tool_started.wait(), timeout=1.0)
        finished.append("title")
        return await super().invoke(messages, tools=tools, on_chunk=on_chunk, **kwargs)

    model = MockModel([{"tool_calls": [{"id": "c1", "name": "wait_for_title"}]}, {"content": "done"}])
    engine = create_engine(
      model, tools=[wait_for_title], title_model=SignallingTitleModel(default_content="Overlap")
    )

    result = await engine.run("s1", "agent-1", [UserMessage(content="go")])

    assert sorted(finished) == ["title", "tool"]
    assert result.title == "Overlap"

  @pytest.mark.asyncio
  async def test_model_sees_tool_results_on_the_next_call(self):
    model = MockModel([{"tool_calls": [{"id": "c1", "name": "echo", "arguments": {"x": 3}}]}, {"content": "3"}])
    engine = create_engine(model, tools=[echo])

    await engine.run("s1", "agent-1", [UserMessage(content="go")])

    second_call_messages = model.calls[1][0]
    assert isinstance(second_call_messages[-1], ToolMessage)
    assert second_call_messages[-1].tool_call_id == "c1"


# =============================================================================
# SECTION 4: Failures
# =============================================================================


class TestFailures:
  @pytest.mark.asyncio
  async def test_model_error_aborts_without_checkpoint(self):
    engine = create_engine(ErrorMockModel())

    with pytest.raises(ModelInvocationError) as exc_info:
      await engine.run("s1", "agent-1", [UserMessage(content="hi")])

    assert exc_info.value.retryable
    assert await engine.store.list_checkpoints("s1") == []

  @pytest.mark.asyncio
  async def test_unknown_agent(self):
    engine = create_engine(MockModel())

    with pytest.raises(AgentNotFoundError):
      await engine.run("s1", "nobody", [UserMessage(content="hi")])

  @pytest.mark.asyncio
  async def test_iteration_limit(self):
    looping = [{"tool_calls": [{"id": f"c{i}", "name": "echo", "arguments": {"x": i}}]} for i in range(5)]
    engine = create_engine(MockModel(looping), tools=[echo], max_iterations=2)

    with pytest.raises(TurnLimitExceededError):
      await engine.run("s1", "agent-1", [UserMessage(content="loop")])

    assert await engine.store.list_checkpoints("s1") == []

  @pytest.mark.asyncio
  async def test_execution_time_limit(self):
    engine = create_engine(SlowMockModel(delay=1.0), max_execution_time=0.05)

    with pytest.raises(TurnTimeoutError):
      await engine.run("s1", "agent-1", [UserMessage(content="hi")])

  @pytest.mark.asyncio
  async def test_orphaned_tool_result_is_rejected(self):
    engine = create_engine(MockModel())

    with pytest.raises(ValueError):
      await engine.run("s1", "agent-1", [ToolMessage(tool_call_id="nope", content="{}")])

  def test_from_config(self, monkeypatch):
    monkeypatch.setenv("AGENT_COMMONS_TITLE_MODEL", "gpt-4o-mini")
    base = create_engine()

    engine = ConversationEngine.from_config(
      {"max_iterations": 3, "abort_on_unresolved_tool": True},
      store=base.store,
      model=base.model,
      dispatcher=base.dispatcher,
      agents=base.agents,
    )

    assert engine.max_iterations == 3
    assert engine.abort_on_unresolved_tool
    assert engine.title_model.name == "gpt-4o-mini"
    assert engine.title_model.temperature == 0.3
    assert engine.title_model.max_tokens == 20

  def test_invalid_limits(self):
    with pytest.raises(ValueError):
      create_engine(max_iterations=0)
    with pytest.raises(ValueError):
      create_engine(max_execution_time=0)


# =============================================================================
# SECTION 5: Single writer per session
# =============================================================================


class TestSingleWriter:
  @pytest.mark.asyncio
  async def test_concurrent_turns_on_one_session_do_not_diverge(self):
    engine = create_engine(SlowMockModel(delay=0.05))

    outcomes = await asyncio.gather(
      engine.run("s1", "agent-1", [UserMessage(content="first")]),
      engine.run("s1", "agent-1", [UserMessage(content="second")]),
      return_exceptions=True,
    )

    conflicts = [o for o in outcomes if isinstance(o, CheckpointConflictError)]
    assert len(conflicts) == 1
    assert len(await engine.store.list_checkpoints("s1")) == 1

  @pytest.mark.asyncio
  async def test_serialized_turns_build_on_each_other(self):
    engine = create_engine(MockModel())

    await engine.run("s1", "agent-1", [UserMessage(content="first")])
    await engine.run("s1", "agent-1", [UserMessage(content="second")])

    checkpoints = await engine.store.list_checkpoints("s1")
    assert len(checkpoints) == 2
    assert checkpoints[1].parent_checkpoint_id == checkpoints[0].checkpoint_id


# =============================================================================
# SECTION 6: Streaming
# =============================================================================


class TestStreaming:
  @pytest.mark.asyncio
  async def test_stream_emits_step_events_in_order(self):
    model = MockModel([{"tool_calls": [{"id": "c1", "name": "echo", "arguments": {"x": 1}}]}, {"content": "hey"}])
    engine = create_engine(model, tools=[echo])

    events = [event async for event in engine.run_stream("s1", "agent-1", [UserMessage(content="go")])]

    assert [e.type for e in events] == [
      EventType.TOOL_DISPATCHED,
      EventType.TOOL_COMPLETED,
      EventType.TITLE_SET,
      EventType.MODEL_CHUNK,
      EventType.MODEL_CHUNK,
      EventType.MODEL_CHUNK,
      EventType.TURN_COMPLETED,
    ]
    assert "".join(e.payload["text"] for e in events if e.type == EventType.MODEL_CHUNK) == "hey"
    assert events[1].payload["content"] == {"x": 1}
    assert events[-1].payload["result"].final_message.content == "hey"

  @pytest.mark.asyncio
  async def test_blocking_and_streaming_persist_the_same_thread_shape(self):
    blocking = create_engine(MockModel([{"content": "same"}]))
    streaming = create_engine(MockModel([{"content": "same"}]))

    await blocking.run("s1", "agent-1", [UserMessage(content="hi")])
    async for _ in streaming.run_stream("s1", "agent-1", [UserMessage(content="hi")]):
      pass

    left = await blocking.store.get_latest("s1")
    right = await streaming.store.get_latest("s1")
    assert [(m.role, m.content) for m in left.messages[1:]] == [(m.role, m.content) for m in right.messages[1:]]
    assert left.title == right.title

  @pytest.mark.asyncio
  async def test_closing_the_stream_early_writes_nothing(self):
    engine = create_engine(MockModel([{"content": "a long answer"}]))

    stream = engine.run_stream("s1", "agent-1", [UserMessage(content="hi")])
    first = await stream.__anext__()
    await stream.aclose()

    assert first.type == EventType.MODEL_CHUNK
    assert await engine.store.list_checkpoints("s1") == []

  @pytest.mark.asyncio
  async def test_stream_surfaces_model_errors(self):
    engine = create_engine(ErrorMockModel())

    with pytest.raises(ModelInvocationError):
      async for _ in engine.run_stream("s1", "agent-1", [UserMessage(content="hi")]):
        pass


# =============================================================================
# SECTION 7: Session description
# =============================================================================


class TestDescribeSession:
  @pytest.mark.asyncio
  async def test_describe_session(self):
    engine = create_engine(MockModel())
    await engine.run("s1", "agent-1", [UserMessage(content="hi")])

    description = await engine.describe_session("s1")

    assert description["session_id"] == "s1"
    assert description["title"] == "Generated Title"
    assert description["message_count"] == 3
    assert description["created_at"] is not None
