"""Server-side persistence of the active transcript."""

import asyncio
from enum import Enum
from typing import Awaitable, List, Optional, Sequence, Set

import structlog

from ..api.client import BackendClient
from ..auth import Credentials
from ..domain.models import ChatSummary, Message
from ..exceptions import StudyMateError
from .conversation import ConversationStore

logger = structlog.get_logger()

DEFAULT_TITLE = "New Chat"
TITLE_LENGTH = 40


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    CREATING = "creating"
    ACTIVE = "active"


def derive_title(message: Optional[Message]) -> str:
    """First characters of the opening user message, or the default title."""
    content = (message.content if message else "") or ""
    return content.strip()[:TITLE_LENGTH] or DEFAULT_TITLE


class ChatSessionManager:
    """Maps one ConversationStore onto a lazily created server chat record.

    The local transcript is authoritative. Every persistence call is best
    effort: failures are logged and swallowed, never surfaced to the caller.
    Guests (no bearer token) persist nothing.
    """

    def __init__(
        self,
        store: ConversationStore,
        client: BackendClient,
        credentials: Optional[Credentials] = None,
    ) -> None:
        self.store = store
        self.client = client
        self.credentials = credentials or Credentials()
        self.state = SessionState.NO_SESSION
        self.session_id: Optional[str] = None
        self.summaries: List[ChatSummary] = []
        self._create_task: Optional["asyncio.Task[Optional[str]]"] = None
        self._created_with: Optional[str] = None
        # Bumped whenever the transcript is swapped; stale creates are discarded
        self._generation = 0
        self._background: Set[asyncio.Task] = set()
        # FIFO so turns reach the server in transcript order
        self._append_lock = asyncio.Lock()
        logger.info(
            "session_manager_initialized",
            authenticated=self.credentials.is_authenticated,
        )

    @property
    def is_guest(self) -> bool:
        return not self.credentials.is_authenticated

    def spawn(self, coro: Awaitable) -> asyncio.Task:
        """Run a coroutine in the background and keep a reference to it."""
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def ensure_session(self, first_user_message: Message) -> Optional[str]:
        """Return the session id, creating the server record on first use.

        Concurrent callers share the single in-flight create request.
        """
        if self.state is SessionState.ACTIVE:
            return self.session_id
        if self.is_guest:
            return None
        if self.state is SessionState.CREATING and self._create_task is not None:
            return await asyncio.shield(self._create_task)

        self.state = SessionState.CREATING
        self._create_task = asyncio.ensure_future(
            self._create(first_user_message, self._generation)
        )
        return await asyncio.shield(self._create_task)

    async def _create(self, first_user_message: Message, generation: int) -> Optional[str]:
        title = derive_title(first_user_message)
        try:
            chat_id = await self.client.create_chat(self.credentials, title, first_user_message)
        except asyncio.CancelledError:
            self._abandon_create(generation)
            raise
        except StudyMateError as e:
            logger.warning("chat_create_failed", error=str(e))
            self._abandon_create(generation)
            return None
        except Exception as e:
            logger.error("chat_create_failed", error=str(e), error_type=type(e).__name__)
            self._abandon_create(generation)
            return None

        if generation != self._generation:
            logger.info("chat_create_discarded", chat_id=chat_id)
            return None

        self.session_id = chat_id
        self.state = SessionState.ACTIVE
        self._created_with = first_user_message.id
        logger.info("chat_created", chat_id=chat_id, title=title)
        self.spawn(self.list_sessions())
        return chat_id

    def _abandon_create(self, generation: int) -> None:
        if generation == self._generation:
            self.state = SessionState.NO_SESSION
            self._create_task = None

    def append_turn(self, session_id: Optional[str], messages: Sequence[Message]) -> Optional[asyncio.Task]:
        """Persist a completed turn without waiting for the result."""
        if self.is_guest or not session_id or not messages:
            return None
        return self.spawn(self._append(session_id, list(messages)))

    async def _append(self, session_id: str, messages: List[Message]) -> bool:
        try:
            async with self._append_lock:
                await self.client.append_messages(self.credentials, session_id, messages)
        except StudyMateError as e:
            logger.warning(
                "chat_append_failed",
                chat_id=session_id,
                messages=len(messages),
                error=str(e),
            )
            return False
        logger.info("chat_appended", chat_id=session_id, messages=len(messages))
        self.spawn(self.list_sessions())
        return True

    def _is_stale(self, generation: Optional[int]) -> bool:
        return generation is not None and generation != self.store.generation

    async def persist_turn(
        self,
        user_message: Message,
        assistant_message: Message,
        generation: Optional[int] = None,
    ) -> None:
        """Create the session if needed, then append the turn.

        ``generation`` is the transcript generation the turn belongs to. A turn
        whose transcript has since been replaced or cleared is dropped.
        """
        if self.is_guest:
            return
        if self._is_stale(generation):
            logger.info("chat_turn_discarded", message_id=assistant_message.id)
            return
        session_id = await self.ensure_session(user_message)
        if session_id is None:
            return
        if self._is_stale(generation):
            logger.info("chat_turn_discarded", message_id=assistant_message.id)
            return
        turn = [user_message, assistant_message]
        if self._created_with == user_message.id:
            # The create request already carried this user message
            turn = [assistant_message]
        self.append_turn(session_id, turn)

    def record_turn(self, user_message: Message, assistant_message: Message) -> asyncio.Task:
        """Schedule persist_turn so the caller never blocks on persistence."""
        return self.spawn(
            self.persist_turn(user_message, assistant_message, self.store.generation)
        )

    async def load_chat(self, chat_id: str) -> bool:
        """Replace the local transcript with a stored session."""
        if self.is_guest:
            logger.info("chat_load_skipped", chat_id=chat_id, reason="guest")
            return False
        try:
            session = await self.client.get_chat(self.credentials, chat_id)
        except StudyMateError as e:
            logger.warning("chat_load_failed", chat_id=chat_id, error=str(e))
            return False

        self._generation += 1
        self.store.replace_all(session.messages)
        self.session_id = session.id or chat_id
        self.state = SessionState.ACTIVE
        self._created_with = None
        logger.info("chat_loaded", chat_id=self.session_id, messages=len(session.messages))
        return True

    async def list_sessions(self) -> List[ChatSummary]:
        """Summaries of the signed-in user's chats; empty for guests."""
        if self.is_guest:
            return []
        try:
            summaries = await self.client.list_chats(self.credentials)
        except StudyMateError as e:
            logger.warning("chat_list_failed", error=str(e))
            return []
        self.summaries = summaries
        return summaries

    def reset(self) -> None:
        """Detach from the current session so the next turn starts a new one."""
        self._generation += 1
        self.state = SessionState.NO_SESSION
        self.session_id = None
        self._create_task = None
        self._created_with = None

    async def flush(self) -> None:
        """Wait for all background persistence work to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def cleanup(self) -> None:
        """Cancel outstanding background work."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
