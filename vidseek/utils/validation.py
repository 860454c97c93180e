import json
import re
from typing import Optional, Type, TypeVar
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaValidationError
from ..exceptions import ParseError

ModelT = TypeVar("ModelT", bound=BaseModel)

# A response that is exactly one fenced block, optionally tagged as json
_FENCED_BLOCK = re.compile(r"\A```(?:json)?[ \t]*\n(?P<body>.*?)\n?```\Z", re.DOTALL | re.IGNORECASE)


class ChannelWeights(BaseModel):
    """Per-channel multipliers for hybrid search. Not required to sum to 1."""

    model_config = ConfigDict(extra="forbid")

    image: float = Field(default=0.35, ge=0)
    keywords: float = Field(default=0.30, ge=0)
    transcript: float = Field(default=0.20, ge=0)
    summary: float = Field(default=0.15, ge=0)

    @property
    def text_enabled(self) -> bool:
        return self.keywords > 0 or self.transcript > 0 or self.summary > 0

    @property
    def any_enabled(self) -> bool:
        return self.image > 0 or self.text_enabled


class SearchRequest(BaseModel):
    """Request model for hybrid search."""

    model_config = ConfigDict(extra="forbid")

    query: str = Field(..., min_length=1, max_length=1000)
    limit: int = Field(default=20, ge=1, le=200)
    weights: ChannelWeights = Field(default_factory=ChannelWeights)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Query cannot be empty")
        return v


def extract_json_payload(raw: Optional[str]) -> str:
    """
    Return the JSON text of a model response.

    Accepts either a bare JSON object or a response consisting of exactly one
    markdown code fence around a JSON object. Anything else (prose around the
    object, several fences, arrays) is rejected.
    """
    if raw is None:
        raise ParseError("Empty response from model")

    text = raw.strip()
    match = _FENCED_BLOCK.match(text)
    if match:
        text = match.group("body").strip()

    if not (text.startswith("{") and text.endswith("}")):
        raise ParseError(
            "Model response is not a single JSON object",
            details={"response": raw[:500]}
        )
    return text


def parse_structured_response(raw: Optional[str], model: Type[ModelT]) -> ModelT:
    """
    Parse a model response into ``model``.

    Raises:
        ParseError: if the payload is not a single JSON object or fails validation
    """
    text = extract_json_payload(raw)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in model response: {e}", details={"response": raw[:500]})

    if not isinstance(payload, dict):
        raise ParseError("Model response is not a JSON object", details={"response": raw[:500]})

    try:
        return model.model_validate(payload)
    except SchemaValidationError as e:
        raise ParseError(
            f"Model response does not match {model.__name__}: {e.error_count()} error(s)",
            details={"errors": e.errors(include_url=False), "response": raw[:500]}
        )
