"""HTTP client for the StudyMate backend."""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog
from pydantic import ValidationError

from ..auth import Credentials
from ..config import Settings
from ..domain.models import ChatSession, ChatSummary, Message, UploadedAttachment
from ..exceptions import AuthenticationRequired, BackendError, BackendUnavailable

logger = structlog.get_logger()

CHAT_PATH = "/api/chat"
HISTORY_PATH = "/api/history/chats"
ERROR_SNIPPET_LENGTH = 200


@dataclass
class CompletionResult:
    """Reply of the chat-completion endpoint."""

    text: str
    sources: List[str] = field(default_factory=list)


class BackendClient:
    """Thin async wrapper over the completion and chat-history endpoints."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or Settings()
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.settings.api_url,
            timeout=self.settings.timeout,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, credentials: Credentials, **kwargs: Any) -> Any:
        try:
            response = await self._http.request(
                method, path, headers=credentials.headers(), **kwargs
            )
        except httpx.HTTPError as e:
            logger.warning("backend_unreachable", method=method, path=path, error=str(e))
            raise BackendUnavailable(str(e) or e.__class__.__name__) from e

        data = self._decode(response)
        if response.is_error:
            raise BackendError(self._error_message(response, data), response.status_code)
        return data

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if "application/json" not in response.headers.get("content-type", ""):
            return None
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _error_message(response: httpx.Response, data: Any) -> str:
        detail: Any = None
        if isinstance(data, dict):
            detail = data.get("details") or data.get("error")
        if detail is None and data is None:
            detail = response.text
        snippet = str(detail or "")[:ERROR_SNIPPET_LENGTH]
        return snippet or f"HTTP {response.status_code}"

    @staticmethod
    def _require_token(credentials: Credentials) -> None:
        if not credentials.is_authenticated:
            raise AuthenticationRequired("A bearer token is required for chat history")

    async def complete(
        self,
        messages: Sequence[Message],
        attachments: Sequence[UploadedAttachment] = (),
        credentials: Optional[Credentials] = None,
    ) -> CompletionResult:
        """Submit the transcript and attachments, return the reply text and sources."""
        credentials = credentials or Credentials()
        payload = json.dumps([m.to_wire() for m in messages])
        # A filename-less part keeps the request multipart even without files
        files: List[Any] = [("messages", (None, payload))]
        for attachment in attachments:
            part = (attachment.name, attachment.content, attachment.content_type)
            # Both field names are read by different backend versions
            files.append(("files", part))
            files.append(("pdfs", part))

        data = await self._request(
            "POST",
            CHAT_PATH,
            credentials,
            files=files,
        )
        if not isinstance(data, dict):
            data = {}
        logger.info(
            "completion_received",
            messages=len(messages),
            attachments=len(attachments),
        )
        return CompletionResult(
            text=str(data.get("response") or ""),
            sources=[str(s) for s in data.get("usedSources") or []],
        )

    async def list_chats(self, credentials: Credentials) -> List[ChatSummary]:
        self._require_token(credentials)
        data = await self._request("GET", HISTORY_PATH, credentials)
        if not isinstance(data, dict) or data.get("ok") is False:
            return []
        summaries = []
        for item in data.get("chats") or []:
            try:
                summaries.append(ChatSummary.model_validate(item))
            except ValidationError as e:
                logger.warning("chat_summary_invalid", error=str(e))
        return summaries

    async def create_chat(
        self, credentials: Credentials, title: str, first_message: Message
    ) -> str:
        self._require_token(credentials)
        data = await self._request(
            "POST",
            HISTORY_PATH,
            credentials,
            json={"title": title, "firstMessage": first_message.to_wire()},
        )
        chat_id = data.get("chatId") if isinstance(data, dict) else None
        if not chat_id:
            raise BackendError("Create chat response carried no chatId")
        return str(chat_id)

    async def append_messages(
        self, credentials: Credentials, chat_id: str, messages: Sequence[Message]
    ) -> None:
        self._require_token(credentials)
        await self._request(
            "POST",
            f"{HISTORY_PATH}/{chat_id}/messages",
            credentials,
            json={"messages": [m.to_wire() for m in messages]},
        )

    async def get_chat(self, credentials: Credentials, chat_id: str) -> ChatSession:
        self._require_token(credentials)
        data = await self._request("GET", f"{HISTORY_PATH}/{chat_id}", credentials)
        chat: Optional[Dict[str, Any]] = data.get("chat") if isinstance(data, dict) else None
        if not chat:
            raise BackendError(f"Chat {chat_id} not found", 404)
        try:
            session = ChatSession.model_validate(chat)
        except ValidationError as e:
            raise BackendError(f"Chat {chat_id} is malformed: {e.error_count()} errors") from e
        if session.id is None:
            session = session.model_copy(update={"id": chat_id})
        return session
