"""Chat controller: submit a question, record the reply, persist the turn."""

import asyncio
from typing import List, Optional

import structlog

from ..api.client import BackendClient
from ..auth import Credentials, clear_identity, save_guest, save_login
from ..config import Settings
from ..domain.models import ChatSummary, Message
from ..logging_config import configure_logging
from ..repositories.base import KeyValueStore
from ..repositories.file import JsonFileStore
from ..repositories.memory import InMemoryStore
from .attachments import AttachmentTray
from .conversation import ConversationStore
from .diagrams import DiagramRenderer, MermaidInkBackend
from .sessions import ChatSessionManager

logger = structlog.get_logger()


class ChatController:
    """Drives one conversation from user input to persisted turn.

    Submission is cooperative: while a completion is in flight, further
    submits are refused and callers are expected to disable their input.

    Without explicit settings the controller reads ``STUDYMATE_*`` from the
    environment and configures logging from them. Without an explicit
    renderer, diagrams are rendered through ``settings.diagram_url``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        state_store: Optional[KeyValueStore] = None,
        client: Optional[BackendClient] = None,
        renderer: Optional[DiagramRenderer] = None,
    ) -> None:
        if settings is None:
            settings = Settings.from_env()
            configure_logging(settings.log_level, settings.log_json)
        self.settings = settings
        if state_store is None:
            state_store = (
                JsonFileStore(self.settings.state_file)
                if self.settings.state_file
                else InMemoryStore()
            )
        self.state_store = state_store
        self.client = client or BackendClient(self.settings)
        self._owns_renderer = renderer is None
        self.renderer = renderer or DiagramRenderer(
            MermaidInkBackend(self.settings.diagram_url, timeout=self.settings.timeout)
        )
        self.conversation = ConversationStore()
        self.attachments = AttachmentTray(
            max_files=self.settings.max_attachments,
            max_bytes=self.settings.max_attachment_bytes,
        )
        self.sessions = self._build_sessions()
        self._busy = False

    def _build_sessions(self) -> ChatSessionManager:
        return ChatSessionManager(
            self.conversation,
            self.client,
            Credentials.from_store(self.state_store),
        )

    @property
    def credentials(self) -> Credentials:
        return self.sessions.credentials

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def messages(self) -> List[Message]:
        return list(self.conversation.messages)

    async def submit(self, text: str) -> Optional[Message]:
        """Send a question and return the appended reply (or error) message."""
        if self._busy:
            logger.warning("submit_rejected", reason="request_in_flight")
            return None
        user_id = self.conversation.append_user(text)
        if user_id is None:
            return None
        user_message = self.conversation.get(user_id)
        generation = self.conversation.generation

        self._busy = True
        self.conversation.mark_pending()
        try:
            result = await self.client.complete(
                self.conversation.transcript(),
                self.attachments.items,
                self.credentials,
            )
        except asyncio.CancelledError:
            if self.conversation.generation == generation:
                self.conversation.append_error("Request cancelled")
            raise
        except Exception as e:
            logger.warning("completion_failed", error=str(e), error_type=type(e).__name__)
            if self.conversation.generation != generation:
                return None
            return self.conversation.append_error(str(e) or type(e).__name__)
        finally:
            self._busy = False

        if self.conversation.generation != generation:
            # The transcript was replaced or cleared while the request was out
            logger.info("completion_discarded", message_id=user_id)
            return None

        reply = self.conversation.append_assistant(result.text, result.sources)
        if user_message is not None:
            self.sessions.record_turn(user_message, reply)
        self.renderer.schedule(reply)
        return reply

    def new_chat(self) -> None:
        """Start over with an empty transcript, no session and no attachments."""
        self.conversation.clear()
        self.sessions.reset()
        self.attachments.clear()
        logger.info("chat_reset")

    async def load_chat(self, chat_id: str) -> bool:
        return await self.sessions.load_chat(chat_id)

    async def list_sessions(self) -> List[ChatSummary]:
        return await self.sessions.list_sessions()

    async def _rebuild_sessions(self) -> None:
        # The manager reads credentials once, so identity changes need a new one.
        # The transcript is kept; its next turn starts a fresh server record.
        await self.sessions.flush()
        self.sessions = self._build_sessions()

    async def login(self, token: str, username: str = "") -> List[ChatSummary]:
        """Store a bearer token from the auth flow and fetch the user's chats."""
        save_login(self.state_store, token, username)
        await self._rebuild_sessions()
        logger.info("logged_in", username=username)
        return await self.sessions.list_sessions()

    async def continue_as_guest(self) -> None:
        save_guest(self.state_store)
        await self._rebuild_sessions()
        logger.info("guest_mode_enabled")

    async def logout(self) -> None:
        await self.sessions.flush()
        clear_identity(self.state_store)
        self.new_chat()
        await self._rebuild_sessions()
        logger.info("logged_out")

    @property
    def needs_login(self) -> bool:
        return self.credentials.needs_login

    async def aclose(self) -> None:
        await self.sessions.flush()
        await self.renderer.flush()
        if self._owns_renderer:
            await self.renderer.backend.aclose()
        await self.client.aclose()

    async def cleanup(self) -> None:
        """Cancel outstanding persistence and rendering work."""
        await self.sessions.cleanup()
        await self.renderer.cleanup()
