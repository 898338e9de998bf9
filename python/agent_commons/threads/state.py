from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..messages import ConversationMessage


@dataclass
class ThreadState:
  """
  Latest persisted state of one thread.

  ``metadata`` maps a message id to free-form JSON about that message and
  ``sessions`` maps an agent id to the sub-session the agent uses inside a
  space thread. ``checkpoint_id`` identifies the checkpoint this state was read
  from and is ``None`` for a thread that has never been written.
  """

  thread_id: str
  messages: List[ConversationMessage] = field(default_factory=list)
  metadata: Dict[str, Dict[str, Any]] = field(default_factory=dict)
  title: Optional[str] = None
  sessions: Dict[str, str] = field(default_factory=dict)
  checkpoint_id: Optional[str] = None
  created_at: Optional[datetime] = None

  def message_ids(self) -> set[str]:
    return {m.id for m in self.messages}


@dataclass
class ThreadDelta:
  """Everything a single turn adds to a thread, written as one checkpoint."""

  messages: List[ConversationMessage] = field(default_factory=list)
  metadata: Dict[str, Dict[str, Any]] = field(default_factory=dict)
  title: Optional[str] = None
  sessions: Dict[str, str] = field(default_factory=dict)

  def is_empty(self) -> bool:
    return not (self.messages or self.metadata or self.title or self.sessions)


@dataclass
class Checkpoint:
  checkpoint_id: str
  thread_id: str
  parent_checkpoint_id: Optional[str]
  created_at: datetime
  state: ThreadState


def merge_messages(existing: List[ConversationMessage], new: List[ConversationMessage]) -> List[ConversationMessage]:
  """
  Append ``new`` to ``existing`` in order, skipping ids that are already present.
  """
  seen = {m.id for m in existing}
  merged = list(existing)
  for message in new:
    if message.id in seen:
      continue
    seen.add(message.id)
    merged.append(message)
  return merged


def apply_delta(state: ThreadState, delta: ThreadDelta) -> ThreadState:
  """Return a new state with the delta reduced into it. ``state`` is left untouched."""
  metadata = deepcopy(state.metadata)
  for message_id, values in delta.metadata.items():
    metadata.setdefault(message_id, {}).update(values)

  return ThreadState(
    thread_id=state.thread_id,
    messages=merge_messages(state.messages, delta.messages),
    metadata=metadata,
    title=delta.title if delta.title else state.title,
    sessions={**state.sessions, **delta.sessions},
    checkpoint_id=state.checkpoint_id,
    created_at=state.created_at,
  )
