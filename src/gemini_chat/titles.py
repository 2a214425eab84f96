"""
Session titles.

A provisional title is derived locally from the first user turn as soon as it
is sent; once the first answer completes, the inference worker asks the model
for a short summary and replaces it.
"""

import logging
import re
from typing import Optional, Sequence

from gemini_chat.errors import GeminiChatError
from gemini_chat.models.message import AttachmentPart
from gemini_chat.streaming import StreamingClient

logger = logging.getLogger(__name__)

PROVISIONAL_WORDS = 5
EXCERPT_CHARS = 500
DEFAULT_MAX_TITLE_LENGTH = 60

TITLE_PROMPT = (
    "Write a title of five words or fewer for the conversation below. "
    "Reply with the title only, without quotes or punctuation at the end.\n\n"
    "User: {user}\n\nAssistant: {model}"
)


def _shorten(name: str, limit: int) -> str:
    return name if len(name) <= limit else name[: limit - 3] + "..."


def provisional_title(text: str, attachments: Sequence[AttachmentPart] = ()) -> Optional[str]:
    """First five words of the text, else a summary of the attachments."""
    text = text.strip()
    if text:
        words = text.split()
        if len(words) > PROVISIONAL_WORDS:
            return " ".join(words[:PROVISIONAL_WORDS]) + "..."
        return " ".join(words)
    if not attachments:
        return None
    if len(attachments) == 1:
        return _shorten(attachments[0].name or attachments[0].mime_type, 30)
    kind = "Images" if all(a.mime_type.startswith("image/") for a in attachments) else "Files"
    first = _shorten(attachments[0].name or attachments[0].mime_type, 15)
    return f"{len(attachments)} {kind} (e.g. {first})"


def clean_candidate(raw: str) -> str:
    lines = [line for line in raw.strip().splitlines() if line.strip()]
    if not lines:
        return ""
    title = lines[0].strip()
    title = re.sub(r"^(title\s*:\s*)", "", title, flags=re.IGNORECASE)
    title = title.strip("*#_`\"'“”‘’ ")
    title = title.rstrip(".!?:;,")
    return re.sub(r"\s+", " ", title).strip()


class TitleInferenceWorker:
    def __init__(self, client: StreamingClient, max_length: int = DEFAULT_MAX_TITLE_LENGTH):
        self._client = client
        self._max_length = max_length

    async def infer(self, first_user_text: str, first_model_text: str) -> Optional[str]:
        """Ask the model for a short title. Returns None when no usable title came back."""
        prompt = TITLE_PROMPT.format(
            user=first_user_text[:EXCERPT_CHARS],
            model=first_model_text[:EXCERPT_CHARS],
        )
        try:
            raw = await self._client.generate_text(prompt)
        except GeminiChatError as e:
            logger.warning("Title inference failed: %s", e)
            return None
        candidate = clean_candidate(raw)
        if not candidate or len(candidate) > self._max_length:
            logger.debug("Rejected title candidate %r", raw)
            return None
        return candidate
