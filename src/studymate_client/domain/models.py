"""Domain models for the chat client."""

from datetime import datetime, timezone
from typing import Any, List, Literal, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class WireModel(BaseModel):
    """Base model serialised with the backend's camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class DiagramNode(WireModel):
    """A node of a synthesized flowchart."""

    id: str
    shape: Literal["decision", "rectangle"] = "rectangle"
    label: str


class DiagramEdge(WireModel):
    """A directed edge between two synthesized nodes."""

    from_node: str
    to_node: str


class DiagramDescription(WireModel):
    """Renderer-neutral diagram: Mermaid text plus the parsed graph when synthesized."""

    kind: Literal["explicit", "synthesized"] = "explicit"
    source: str
    nodes: Tuple[DiagramNode, ...] = ()
    edges: Tuple[DiagramEdge, ...] = ()


class ContentSegment(WireModel):
    """One renderable piece of an assistant reply."""

    kind: Literal["text", "citation", "diagram"]
    value: str = ""
    index: Optional[int] = None  # diagram slot for kind == "diagram"


class ProcessedContent(WireModel):
    """Result of running raw assistant text through the post-processor."""

    cleaned_text: str = ""
    sources: Tuple[str, ...] = ()
    diagrams: Tuple[DiagramDescription, ...] = ()
    segments: Tuple[ContentSegment, ...] = ()


class Message(WireModel):
    """A single transcript entry. Instances are never mutated once appended."""

    id: str = Field(default_factory=_new_id)
    role: Literal["user", "assistant"] = "user"
    content: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)
    sources: Tuple[str, ...] = ()
    diagrams: Tuple[DiagramDescription, ...] = ()
    is_error: bool = False
    # Render layout of assistant replies; rebuilt locally, never sent
    segments: Tuple[ContentSegment, ...] = Field(default=(), exclude=True)
    pending: bool = Field(default=False, exclude=True)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        # Older records carry numeric millisecond ids
        if value is None:
            return _new_id()
        return str(value)

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("sources", mode="before")
    @classmethod
    def _coerce_sources(cls, value: Any) -> Any:
        if not value:
            return ()
        return tuple(str(s) for s in value if s)

    @field_validator("diagrams", mode="before")
    @classmethod
    def _drop_bad_diagrams(cls, value: Any) -> Any:
        if not isinstance(value, (list, tuple)):
            return ()
        kept = []
        for item in value:
            try:
                kept.append(DiagramDescription.model_validate(item))
            except ValidationError:
                continue
        return tuple(kept)

    @field_validator("is_error", mode="before")
    @classmethod
    def _coerce_is_error(cls, value: Any) -> Any:
        return bool(value)


class ChatSummary(WireModel):
    """Lightweight entry of the session list."""

    id: str = Field(alias="_id")
    title: str = "Untitled"
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value)

    @field_validator("title", mode="before")
    @classmethod
    def _default_title(cls, value: Any) -> Any:
        return value or "Untitled"


class ChatSession(WireModel):
    """A server-persisted chat record."""

    id: Optional[str] = Field(default=None, alias="_id")
    title: str = "New Chat"
    messages: List[Message] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @field_validator("messages", mode="before")
    @classmethod
    def _coerce_messages(cls, value: Any) -> Any:
        return value or []


class UploadedAttachment(BaseModel):
    """A file attached to the next completion requests. Never persisted."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    name: str
    size: int
    content: bytes = Field(repr=False)
    content_type: str = "application/octet-stream"
