"""
Server-sent event decoding for streamGenerateContent?alt=sse.
"""

import json
import logging
from typing import AsyncIterator, Optional

from pydantic import ValidationError

from gemini_chat.errors import TransportError
from gemini_chat.models.wire import GenerateContentResponse

logger = logging.getLogger(__name__)


def parse_event(data: str) -> Optional[GenerateContentResponse]:
    """Parse one `data:` payload. Returns None if invalid."""
    try:
        return GenerateContentResponse.model_validate(json.loads(data))
    except (json.JSONDecodeError, ValidationError):
        logger.warning("Skipping malformed stream chunk: %.120s", data)
        return None


async def iter_events(lines: AsyncIterator[str]) -> AsyncIterator[GenerateContentResponse]:
    """Group `data:` lines into events; a blank line terminates an event."""
    buffer: list[str] = []
    async for line in lines:
        if line.startswith("data:"):
            buffer.append(line[5:].lstrip())
            continue
        if line.strip() == "" and buffer:
            event = parse_event("\n".join(buffer))
            buffer = []
            if event is not None:
                yield event
    if buffer:
        event = parse_event("\n".join(buffer))
        if event is not None:
            yield event


async def iter_text(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Text fragments in receipt order; a blocked prompt is a transport failure."""
    async for event in iter_events(lines):
        if event.prompt_feedback and event.prompt_feedback.block_reason:
            raise TransportError(f"Prompt blocked: {event.prompt_feedback.block_reason}")
        if event.text:
            yield event.text
