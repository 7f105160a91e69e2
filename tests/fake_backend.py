"""In-process stand-in for the StudyMate backend."""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, Form, Header, Request, UploadFile
from fastapi.responses import JSONResponse

TOKEN = "secret-token"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FakeBackend:
    """Records every request and serves canned completion replies."""

    def __init__(self, token: str = TOKEN) -> None:
        self.token = token
        self.replies: List[Dict[str, Any]] = []
        self.completion_requests: List[Dict[str, Any]] = []
        self.create_requests: List[Dict[str, Any]] = []
        self.append_requests: List[Dict[str, Any]] = []
        self.chats: Dict[str, Dict[str, Any]] = {}
        self.completion_failure: Optional[JSONResponse] = None
        self.history_down = False
        # When set, completions are held until the event fires
        self.completion_gate: Optional[asyncio.Event] = None
        self.app = self._build_app()

    def add_chat(self, chat_id: str, title: str, messages: List[Dict[str, Any]]) -> None:
        self.chats[chat_id] = {
            "_id": chat_id,
            "title": title,
            "messages": messages,
            "createdAt": _now(),
            "updatedAt": _now(),
        }

    def _authorized(self, authorization: Optional[str]) -> bool:
        return authorization == f"Bearer {self.token}"

    def _history_guard(self, authorization: Optional[str]) -> Optional[JSONResponse]:
        if self.history_down:
            return JSONResponse(status_code=503, content={"error": "history store offline"})
        if not self._authorized(authorization):
            return JSONResponse(status_code=401, content={"error": "Unauthorized"})
        return None

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="Fake StudyMate backend")

        @app.post("/api/chat")
        async def chat(
            messages: str = Form(...),
            files: Optional[List[UploadFile]] = File(default=None),
            pdfs: Optional[List[UploadFile]] = File(default=None),
            authorization: Optional[str] = Header(default=None),
        ):
            self.completion_requests.append({
                "messages": json.loads(messages),
                "files": [f.filename for f in files or []],
                "pdfs": [f.filename for f in pdfs or []],
                "authorization": authorization,
            })
            if self.completion_gate is not None:
                await self.completion_gate.wait()
            if self.completion_failure is not None:
                return self.completion_failure
            if self.replies:
                return self.replies.pop(0)
            return {"response": "Noted.", "usedSources": []}

        @app.get("/api/history/chats")
        async def list_chats(authorization: Optional[str] = Header(default=None)):
            denied = self._history_guard(authorization)
            if denied is not None:
                return denied
            return {
                "ok": True,
                "chats": [
                    {"_id": c["_id"], "title": c["title"], "updatedAt": c["updatedAt"]}
                    for c in self.chats.values()
                ],
            }

        @app.post("/api/history/chats")
        async def create_chat(request: Request, authorization: Optional[str] = Header(default=None)):
            denied = self._history_guard(authorization)
            if denied is not None:
                return denied
            body = await request.json()
            self.create_requests.append(body)
            chat_id = f"chat-{len(self.create_requests)}"
            self.add_chat(chat_id, body["title"], [body["firstMessage"]])
            return {"ok": True, "chatId": chat_id}

        @app.post("/api/history/chats/{chat_id}/messages")
        async def append_messages(
            chat_id: str, request: Request, authorization: Optional[str] = Header(default=None)
        ):
            denied = self._history_guard(authorization)
            if denied is not None:
                return denied
            if chat_id not in self.chats:
                return JSONResponse(status_code=404, content={"error": "Chat not found"})
            body = await request.json()
            self.append_requests.append({"chat_id": chat_id, **body})
            self.chats[chat_id]["messages"].extend(body["messages"])
            self.chats[chat_id]["updatedAt"] = _now()
            return {"ok": True}

        @app.get("/api/history/chats/{chat_id}")
        async def get_chat(chat_id: str, authorization: Optional[str] = Header(default=None)):
            denied = self._history_guard(authorization)
            if denied is not None:
                return denied
            if chat_id not in self.chats:
                return JSONResponse(status_code=404, content={"error": "Chat not found"})
            return {"ok": True, "chat": self.chats[chat_id]}

        return app
