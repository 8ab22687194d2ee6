"""
Knowledge extraction from conversations.

Asks a chat model which parts of a recent conversation are worth keeping
as project knowledge, validates its answer and stores it.
"""

import json
import logging
import re
from typing import Any, Dict, List

from ..llm.base import LLMMessage, LLMProvider, MessageRole
from .project_memory import ProjectMemory
from .short_term import ShortTermMemory
from .types import clamp_importance, coerce_memory_type


logger = logging.getLogger(__name__)


EXTRACTION_SYSTEM_PROMPT = (
    "You are a knowledge extraction assistant. Extract important project "
    "information and return valid JSON."
)

EXTRACTION_PROMPT = """Analyze the following conversation and extract any important PROJECT-RELATED information that should be remembered for future reference.

Return a JSON object with the following structure:
{
  "knowledge": [
    {
      "content": "the knowledge to remember",
      "type": "context|architecture|dependency|config|pattern|decision|todo|issue",
      "importance": 0.0-1.0,
      "tags": ["optional", "tags"]
    }
  ]
}

If there's nothing important to remember, return: { "knowledge": [] }

Focus on:
- Architecture decisions or patterns discussed
- Dependencies, tools, or libraries mentioned
- Configuration details
- Coding patterns or conventions
- Technical decisions made
- Issues identified and their solutions
- TODOs or tasks mentioned

Do NOT include:
- Conversational elements
- Information already in project context
- Generic programming knowledge

Conversation:
"""

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class KnowledgeExtractor:
    """Moves durable knowledge from a conversation into project memory."""

    # Messages of recent conversation sent for extraction
    CONVERSATION_WINDOW = 6

    def __init__(self, memory: ProjectMemory, llm: LLMProvider):
        self.memory = memory
        self.llm = llm

    async def extract(self, conversation: ShortTermMemory) -> List[Dict[str, Any]]:
        """
        Ask the model for knowledge items in the recent conversation.

        Chat errors propagate. Responses without a parseable JSON object
        yield an empty list.

        Returns:
            Validated items with content, type, importance and tags
        """
        transcript = conversation.get_summary(self.CONVERSATION_WINDOW)
        if not transcript.strip():
            return []

        response = await self.llm.chat(
            [
                LLMMessage(role=MessageRole.SYSTEM, content=EXTRACTION_SYSTEM_PROMPT),
                LLMMessage(role=MessageRole.USER, content=EXTRACTION_PROMPT + transcript),
            ],
            temperature=0,
        )
        return self.parse_response(response)

    @staticmethod
    def parse_response(response: str) -> List[Dict[str, Any]]:
        """Parse and validate the model's JSON answer."""
        match = _JSON_OBJECT_RE.search(response or "")
        if not match:
            logger.warning("Knowledge extraction response contained no JSON object")
            return []

        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            logger.warning(f"Could not parse knowledge extraction response: {e}")
            return []

        raw_items = data.get("knowledge") if isinstance(data, dict) else None
        if not isinstance(raw_items, list):
            return []

        items = []
        for raw in raw_items:
            if not isinstance(raw, dict):
                continue
            content = str(raw.get("content") or "").strip()
            if not content:
                continue

            try:
                importance = clamp_importance(raw.get("importance", 0.5))
            except (TypeError, ValueError):
                importance = 0.5

            tags = raw.get("tags")
            if not isinstance(tags, list):
                tags = None
            else:
                tags = [str(tag) for tag in tags]

            items.append({
                "content": content,
                "type": coerce_memory_type(raw.get("type")),
                "importance": importance,
                "tags": tags,
                "metadata": {"extracted_from": "conversation"},
            })
        return items

    async def extract_and_store(self, conversation: ShortTermMemory) -> List[str]:
        """
        Extract knowledge from a conversation and store it.

        Returns:
            Content of each stored item
        """
        items = await self.extract(conversation)
        if not items:
            return []

        await self.memory.store_many(items)
        logger.info(f"Stored {len(items)} knowledge items for project {self.memory.project_id}")
        return [item["content"] for item in items]
