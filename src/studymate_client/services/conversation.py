"""In-memory transcript for the active conversation."""

from typing import Iterable, List, Optional, Sequence, Tuple

import structlog

from ..domain.models import Message
from .postprocessor import dedupe, inline_sources, process

logger = structlog.get_logger()

ERROR_TEMPLATE = "Sorry, I encountered an error: {reason}"


class ConversationStore:
    """Ordered, append-only transcript owned by one active conversation.

    Messages keep insertion order and are never re-sorted. The only entry that
    may change is the pending assistant placeholder, which is swapped for a new
    message when the in-flight request finishes.
    """

    def __init__(self, messages: Optional[Iterable[Message]] = None) -> None:
        self._messages: List[Message] = list(messages or [])
        # Bumped whenever the transcript is swapped or cleared
        self.generation = 0

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(tuple(self._messages))

    def get(self, message_id: str) -> Optional[Message]:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    @property
    def has_pending(self) -> bool:
        return any(m.pending for m in self._messages)

    def transcript(self) -> List[Message]:
        """Messages to send to the backend, without the pending placeholder."""
        return [m for m in self._messages if not m.pending]

    def append_user(self, text: Optional[str]) -> Optional[str]:
        """Append a user message and return its id; blank input is ignored."""
        if not text or not text.strip():
            logger.debug("user_message_ignored", reason="blank")
            return None
        message = Message(role="user", content=text)
        self._messages.append(message)
        logger.info("user_message_appended", message_id=message.id, length=len(text))
        return message.id

    def mark_pending(self) -> Message:
        """Append the assistant placeholder shown while a request is in flight."""
        placeholder = Message(role="assistant", pending=True)
        self._messages.append(placeholder)
        return placeholder

    def append_assistant(
        self, raw_text: Optional[str], extra_sources: Optional[Sequence[str]] = None
    ) -> Message:
        """Post-process a reply and append it, replacing the pending placeholder."""
        processed = process(raw_text)
        sources = dedupe(
            list(extra_sources or [])
            + list(processed.sources)
            + list(inline_sources(processed.cleaned_text))
        )
        message = Message(
            role="assistant",
            content=processed.cleaned_text,
            sources=sources,
            diagrams=processed.diagrams,
            segments=processed.segments,
        )
        self._settle(message)
        logger.info(
            "assistant_message_appended",
            message_id=message.id,
            sources=len(message.sources),
            diagrams=len(message.diagrams),
        )
        return message

    def append_error(self, reason: Optional[str]) -> Message:
        """Append an error reply; the preceding user message is left as is."""
        message = Message(
            role="assistant",
            content=ERROR_TEMPLATE.format(reason=reason or "Unknown error"),
            is_error=True,
        )
        self._settle(message)
        logger.warning("error_message_appended", message_id=message.id, reason=reason)
        return message

    def replace_all(self, messages: Iterable[Message]) -> None:
        """Swap in a loaded transcript wholesale. Nothing is merged."""
        self._messages = [self._hydrate(m) for m in messages]
        self.generation += 1
        logger.info("transcript_replaced", count=len(self._messages))

    def clear(self) -> None:
        self._messages = []
        self.generation += 1

    def _settle(self, message: Message) -> None:
        for index in range(len(self._messages) - 1, -1, -1):
            if self._messages[index].pending:
                self._messages[index] = message
                return
        self._messages.append(message)

    @staticmethod
    def _hydrate(message: Message) -> Message:
        # Stored replies may predate post-processing; re-running it is idempotent
        if message.role != "assistant" or message.is_error:
            return message
        processed = process(message.content)
        return message.model_copy(
            update={
                "content": processed.cleaned_text,
                "sources": dedupe(
                    list(message.sources)
                    + list(processed.sources)
                    + list(inline_sources(processed.cleaned_text))
                ),
                "diagrams": processed.diagrams,
                "segments": processed.segments,
                "pending": False,
            }
        )
