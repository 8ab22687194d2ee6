"""
Short-term memory: the conversation buffer of a single session.

Kept in process memory only. Knowledge worth keeping is moved into the
project's long-term memory by the knowledge extractor.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..llm.base import LLMMessage, MessageRole
from .types import format_datetime, parse_datetime, utc_now


@dataclass
class ConversationEntry:
    """One message in a session."""

    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": format_datetime(self.timestamp),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationEntry":
        return cls(
            role=MessageRole(data["role"]),
            content=data["content"],
            timestamp=parse_datetime(data.get("timestamp")) or utc_now(),
            metadata=data.get("metadata"),
        )


class ShortTermMemory:
    """
    Bounded conversation buffer.

    Holds at most ``max_messages`` messages, dropping the oldest first.
    The system prompt is not stored in the buffer, so it is never trimmed.
    """

    DEFAULT_MAX_MESSAGES = 50

    def __init__(
        self,
        session_id: str,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        system_prompt: Optional[str] = None,
    ):
        self.session_id = session_id
        self.max_messages = max_messages
        self.system_prompt = system_prompt
        self._messages: List[ConversationEntry] = []

    def add_message(
        self,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """Append a message and trim to the limit."""
        self._messages.append(ConversationEntry(
            role=MessageRole(role),
            content=content,
            metadata=metadata,
        ))
        self._trim_to_limit()

    def add_user_message(self, content: str, metadata: Optional[Dict[str, Any]] = None):
        self.add_message(MessageRole.USER, content, metadata)

    def add_assistant_message(self, content: str, metadata: Optional[Dict[str, Any]] = None):
        self.add_message(MessageRole.ASSISTANT, content, metadata)

    def get_messages(self) -> List[LLMMessage]:
        """Messages ready for a chat call, system prompt first."""
        messages = []
        if self.system_prompt:
            messages.append(LLMMessage(role=MessageRole.SYSTEM, content=self.system_prompt))
        messages.extend(
            LLMMessage(role=entry.role, content=entry.content)
            for entry in self._messages
        )
        return messages

    def get_raw_messages(self) -> List[ConversationEntry]:
        """A copy of the stored entries."""
        return list(self._messages)

    def get_summary(self, last_n: int = 5) -> str:
        """The last messages as ``role: content`` lines."""
        if last_n <= 0:
            return ""
        return "\n".join(
            f"{entry.role.value}: {entry.content}"
            for entry in self._messages[-last_n:]
        )

    def clear(self):
        self._messages = []

    @property
    def message_count(self) -> int:
        return len(self._messages)

    def _trim_to_limit(self):
        excess = len(self._messages) - self.max_messages
        if excess > 0:
            self._messages = self._messages[excess:]

    def export(self) -> Dict[str, Any]:
        """Serialize the session for persistence."""
        return {
            "session_id": self.session_id,
            "messages": [entry.to_dict() for entry in self._messages],
        }

    def load(self, data: Dict[str, Any]):
        """Replace the buffer with exported messages."""
        self._messages = [
            ConversationEntry.from_dict(message)
            for message in data.get("messages", [])
        ]
        self._trim_to_limit()
