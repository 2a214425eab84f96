"""
Gemini REST shapes — generateContent / streamGenerateContent.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _Wire(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InlineData(_Wire):
    mime_type: str
    data: str


class WirePart(_Wire):
    text: Optional[str] = None
    inline_data: Optional[InlineData] = None


class Content(_Wire):
    role: str  # "user" | "model"
    parts: list[WirePart] = []


class GenerateContentRequest(_Wire):
    contents: list[Content]
    generation_config: Optional[dict[str, Any]] = None


class Candidate(_Wire):
    content: Optional[Content] = None
    finish_reason: Optional[str] = None


class PromptFeedback(_Wire):
    block_reason: Optional[str] = None


class GenerateContentResponse(_Wire):
    candidates: list[Candidate] = []
    prompt_feedback: Optional[PromptFeedback] = None

    @property
    def text(self) -> str:
        """Concatenated text of the first candidate."""
        if not self.candidates or self.candidates[0].content is None:
            return ""
        return "".join(p.text or "" for p in self.candidates[0].content.parts)
