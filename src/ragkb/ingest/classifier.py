"""LLM auto-tagging against an existing tag vocabulary.

The completion output is decoded into :class:`Classification`. Anything that
does not match the schema raises ClassificationError; the coordinator treats
that as "no auto-tags".
"""

from __future__ import annotations

import json
import re

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ragkb.errors import ClassificationError, ProviderError
from ragkb.rag.llm_client import CompletionGateway

logger = structlog.get_logger(logger_name=__name__)

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)

_SNIPPET_CHARS = 5000

_SYSTEM_TEMPLATE = (
    "You are an expert content curator. Your task is to analyze content and "
    "assign relevant TOPICS (tags).\n"
    "Context: EXISTING TOPICS: {vocabulary}"
)

_PROMPT_TEMPLATE = """\
Analyze the following content deeply.
1. Assign RELEVANT tags from the existing list.
2. Proactively CREATE NEW TOPICS if needed (concise, standard).
3. Return valid JSON only.

Content Snippet:
{snippet}

Output Format:
{{
    "tags": ["tag1", "new_tag2"],
    "newTags": ["new_tag2"],
    "reasoning": "Explanation..."
}}
"""


class Classification(BaseModel):
    """Decoded classifier output."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tags: list[str] = Field(default_factory=list)
    new_tags: list[str] = Field(default_factory=list, alias="newTags")
    reasoning: str = ""


def decode_classification(text: str) -> Classification:
    """Parse a completion into a Classification.

    Accepts bare JSON or JSON inside a markdown fence.

    Raises:
        ClassificationError: Not a JSON object of the expected shape.
    """
    body = text.strip()
    fence = _JSON_FENCE_RE.search(body)
    if fence:
        body = fence.group(1).strip()
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ClassificationError(f"Classifier returned invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ClassificationError(
            f"Classifier returned {type(data).__name__}, expected an object"
        )
    try:
        return Classification.model_validate(data)
    except ValidationError as exc:
        raise ClassificationError(f"Classifier output has the wrong shape: {exc}") from exc


class Classifier:
    """Assign tags to content with a completion capability."""

    def __init__(self, gateway: CompletionGateway) -> None:
        self._gateway = gateway

    async def classify(self, content: str, vocabulary: set[str]) -> Classification:
        """Return tags for *content*, preferring entries of *vocabulary*.

        Raises:
            ClassificationError: The completion failed or could not be decoded.
        """
        system = _SYSTEM_TEMPLATE.format(vocabulary=json.dumps(sorted(vocabulary)))
        prompt = _PROMPT_TEMPLATE.format(snippet=content[:_SNIPPET_CHARS])
        try:
            text = await self._gateway.generate(prompt, system=system)
        except ProviderError as exc:
            raise ClassificationError(f"Classifier call failed: {exc}") from exc
        result = decode_classification(text)
        logger.debug(
            "content_classified", tags=result.tags, new_tags=result.new_tags
        )
        return result
