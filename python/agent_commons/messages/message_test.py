import json

import pytest

from .message import (
  CONVERTER,
  AssistantMessage,
  ConversationRole,
  SystemMessage,
  ToolCall,
  ToolMessage,
  ToolResult,
  UserMessage,
  primary_text,
)


def test_structure_by_role():
  messages = CONVERTER.messages_from_list(
    [
      {"role": "system", "content": "be brief", "id": "m1"},
      {"role": "user", "content": "hi", "id": "m2", "name": "human:u1"},
      {
        "role": "assistant",
        "content": "",
        "id": "m3",
        "tool_calls": [{"id": "c1", "name": "echo", "arguments": {"x": 1}}],
      },
      {"role": "tool", "tool_call_id": "c1", "content": '{"x": 1}', "id": "m4"},
    ]
  )

  assert [type(m) for m in messages] == [SystemMessage, UserMessage, AssistantMessage, ToolMessage]
  assert messages[1].name == "human:u1"
  assert messages[2].tool_calls == [ToolCall(id="c1", name="echo", arguments={"x": 1})]
  assert messages[3].role == ConversationRole.TOOL


def test_unstructure_uses_role_values():
  data = CONVERTER.message_to_dict(AssistantMessage(content="ok", id="m1", tool_calls=[ToolCall("c1", "echo")]))

  assert data["role"] == "assistant"
  assert data["tool_calls"] == [{"id": "c1", "name": "echo", "arguments": {}}]


def test_json_round_trip_keeps_ids():
  message = UserMessage(content=[{"type": "text", "text": "hello"}], name="Ada")

  restored = CONVERTER.message_from_json(CONVERTER.message_to_json(message))

  assert restored == message


def test_unknown_role():
  with pytest.raises(ValueError):
    CONVERTER.message_from_dict({"role": "narrator", "content": "once upon a time"})


def test_messages_get_distinct_ids():
  assert UserMessage(content="a").id != UserMessage(content="a").id


def test_tool_result_to_message():
  message = ToolResult(tool_call_id="c1", name="echo", content={"x": 1}).to_message()

  assert message.tool_call_id == "c1"
  assert message.name == "echo"
  assert json.loads(message.content) == {"x": 1}


def test_tool_result_keeps_string_content():
  assert ToolResult(tool_call_id="c1", name="echo", content="plain").to_message().content == "plain"


def test_failed_tool_result_carries_the_error():
  error = {"error": {"type": "UpstreamError", "message": "503", "status": 503}}
  result = ToolResult(tool_call_id="c1", name="search", error=error)

  assert result.failed
  assert json.loads(result.to_message().content) == error


def test_primary_text():
  assert primary_text(UserMessage(content="hi")) == "hi"
  assert primary_text(UserMessage(content=[{"type": "image_url"}, {"type": "text", "text": "look"}])) == "look"
  assert primary_text(UserMessage(content={"data": 1})) == ""
