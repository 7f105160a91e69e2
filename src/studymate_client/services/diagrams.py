"""Hand-off of diagram descriptions to an external rendering service."""

import asyncio
import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

import httpx
import structlog

from ..config import DEFAULT_DIAGRAM_URL
from ..domain.models import DiagramDescription, Message

logger = structlog.get_logger()

MERMAID_HEADERS = {
    "flowchart",
    "graph",
    "sequencediagram",
    "classdiagram",
    "statediagram",
    "statediagram-v2",
    "erdiagram",
    "journey",
    "gantt",
    "pie",
    "mindmap",
    "timeline",
    "gitgraph",
    "quadrantchart",
    "requirementdiagram",
    "xychart-beta",
    "sankey-beta",
    "block-beta",
    "c4context",
}


def target_id(message_id: str, index: int) -> str:
    """Render-target identifier, unique per (message, diagram index)."""
    return f"m-{message_id}-{index}"


def malformed_reason(description: DiagramDescription) -> Optional[str]:
    """Return why a description cannot be rendered, or None if it looks valid."""
    lines = [
        line.strip()
        for line in description.source.splitlines()
        if line.strip() and not line.strip().startswith("%%")
    ]
    if lines and lines[0] == "---":
        # YAML front matter
        closing = lines.index("---", 1) if "---" in lines[1:] else len(lines)
        lines = lines[closing + 1:]
    if not lines:
        return "empty"
    keyword = lines[0].split()[0].rstrip(":").lower()
    if keyword not in MERMAID_HEADERS:
        return f"unknown diagram type {keyword!r}"
    if len(lines) < 2:
        return "no diagram body"
    return None


class DiagramBackend(ABC):
    """Contract of the service that turns Mermaid text into markup."""

    @abstractmethod
    async def render(self, source: str) -> str:
        """Return SVG markup for the given diagram source."""
        pass

    async def aclose(self) -> None:
        """Release any connections held by the backend."""


class MermaidInkBackend(DiagramBackend):
    """Renders through a mermaid.ink compatible HTTP service."""

    def __init__(
        self,
        base_url: str = DEFAULT_DIAGRAM_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def render(self, source: str) -> str:
        encoded = base64.urlsafe_b64encode(source.encode("utf-8")).decode("ascii")
        response = await self._http.get(f"/svg/{encoded}")
        response.raise_for_status()
        return response.text

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


@dataclass(frozen=True)
class RenderedDiagram:
    target_id: str
    source: str
    svg: str


class DiagramRenderer:
    """Idempotent, best-effort diagram rendering keyed by render target."""

    def __init__(self, backend: DiagramBackend) -> None:
        self.backend = backend
        self._rendered: Dict[str, RenderedDiagram] = {}
        self._tasks: Set[asyncio.Task] = set()

    def get(self, target: str) -> Optional[RenderedDiagram]:
        return self._rendered.get(target)

    async def render(self, target: str, description: DiagramDescription) -> Optional[RenderedDiagram]:
        """Render one diagram. Never raises; malformed input is logged and skipped."""
        cached = self._rendered.get(target)
        if cached is not None and cached.source == description.source:
            return cached

        reason = malformed_reason(description)
        if reason:
            logger.warning("diagram_render_skipped", target_id=target, reason=reason)
            return None

        try:
            svg = await self.backend.render(description.source)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("diagram_render_failed", target_id=target, error=str(e))
            return None

        rendered = RenderedDiagram(target_id=target, source=description.source, svg=svg)
        self._rendered[target] = rendered
        logger.debug("diagram_rendered", target_id=target, kind=description.kind)
        return rendered

    def schedule(self, message: Message) -> List[asyncio.Task]:
        """Queue a deferred render of every diagram attached to a message."""
        tasks = []
        for index, description in enumerate(message.diagrams):
            task = asyncio.ensure_future(self.render(target_id(message.id, index), description))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)
        return tasks

    async def flush(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cleanup(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
