"""Conversation data model and the base class for model providers."""

import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Any, Optional, AsyncIterator, Union, Literal, Annotated
from pydantic import BaseModel, Field
import tiktoken


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """A tool-use request issued by the model."""
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """The result paired with a ToolUseBlock of the same id."""
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    output: str
    is_error: bool = False


class ImageBlock(BaseModel):
    """A base64 encoded image, used for screen captures."""
    type: Literal["image"] = "image"
    media_type: str = "image/png"
    data: str


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock, ImageBlock],
    Field(discriminator="type"),
]


class Role(str, Enum):
    OPERATOR = "operator"
    ASSISTANT = "assistant"


class Turn(BaseModel):
    """One message unit from either the operator or the model."""
    role: Role
    content: List[ContentBlock] = Field(default_factory=list)

    @classmethod
    def operator(cls, text: str, image: Optional[ImageBlock] = None) -> "Turn":
        blocks: List[Any] = [TextBlock(text=text)]
        if image is not None:
            blocks.append(image)
        return cls(role=Role.OPERATOR, content=blocks)

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> List[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    @property
    def tool_results(self) -> List[ToolResultBlock]:
        return [b for b in self.content if isinstance(b, ToolResultBlock)]


class StopReason(str, Enum):
    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ModelResponse(BaseModel):
    """Represents a complete response from the model endpoint."""
    content: List[ContentBlock] = Field(default_factory=list)
    stop_reason: StopReason = StopReason.END_TURN
    usage: Usage = Field(default_factory=Usage)
    model: str = ""

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> List[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    def to_turn(self) -> Turn:
        return Turn(role=Role.ASSISTANT, content=list(self.content))


class ToolDefinition(BaseModel):
    """Name, description and JSON schema of one catalog tool."""
    name: str
    description: str
    input_schema: Dict[str, Any]


class TextDelta(BaseModel):
    type: Literal["text_delta"] = "text_delta"
    text: str


class StreamComplete(BaseModel):
    type: Literal["complete"] = "complete"
    response: ModelResponse


StreamEvent = Union[TextDelta, StreamComplete]


def normalize_stop_reason(reason: Optional[str], has_tool_use: bool) -> StopReason:
    """Map provider stop/finish reasons onto StopReason."""
    if has_tool_use:
        return StopReason.TOOL_USE
    if reason in ("max_tokens", "length"):
        return StopReason.MAX_TOKENS
    return StopReason.END_TURN


def parse_tool_arguments(arguments: Union[str, Dict[str, Any], None]) -> Dict[str, Any]:
    """Decode a JSON arguments payload; malformed input becomes an empty dict.

    The registry validates the empty dict and reports the missing fields to
    the model as a tool error.
    """
    if isinstance(arguments, dict):
        return arguments
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class BaseLLMProvider(ABC):
    """Abstract base class for model providers."""

    def __init__(self, api_key: Optional[str] = None, model: str = "default", **kwargs):
        self.api_key = api_key
        self.model = model
        self.kwargs = kwargs
        self._client = None
        self._tokenizer = None

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the provider (async setup)."""
        pass

    @abstractmethod
    async def send(
        self,
        turns: List[Turn],
        system_prompt: str,
        tools: List[ToolDefinition],
        **kwargs
    ) -> ModelResponse:
        """Send the conversation and return the complete response."""
        pass

    @abstractmethod
    def stream(
        self,
        turns: List[Turn],
        system_prompt: str,
        tools: List[ToolDefinition],
        **kwargs
    ) -> AsyncIterator[StreamEvent]:
        """Yield text deltas followed by exactly one StreamComplete."""
        pass

    def count_tokens(self, text: str) -> int:
        """Count tokens in text."""
        if self._tokenizer is None:
            try:
                self._tokenizer = tiktoken.encoding_for_model(self.model)
            except KeyError:
                # Fallback to a general tokenizer
                self._tokenizer = tiktoken.get_encoding("cl100k_base")

        return len(self._tokenizer.encode(text))

    @property
    def name(self) -> str:
        """Get provider name."""
        return self.__class__.__name__.replace("Provider", "").lower()

    @property
    def is_available(self) -> bool:
        """Check if provider is available."""
        return self.api_key is not None
