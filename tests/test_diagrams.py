"""Test suite for the diagram renderer adapter."""

import asyncio

import httpx
import pytest

from studymate_client.domain.models import DiagramDescription, Message
from studymate_client.services.diagrams import (
    DiagramBackend,
    DiagramRenderer,
    MermaidInkBackend,
    malformed_reason,
    target_id,
)
from studymate_client.services.postprocessor import process


class CountingBackend(DiagramBackend):
    def __init__(self, fail: bool = False):
        self.calls = 0
        self.fail = fail

    async def render(self, source):
        self.calls += 1
        if self.fail:
            raise RuntimeError("renderer crashed")
        return f"<svg>{self.calls}</svg>"


FLOW = DiagramDescription(source="flowchart TD\nA --> B")


def test_target_ids_are_unique_per_message_and_index():
    assert target_id("abc", 0) == "m-abc-0"
    assert target_id("abc", 0) != target_id("abc", 1)


@pytest.mark.parametrize(
    "source, reason",
    [
        ("", "empty"),
        ("%% only a comment", "empty"),
        ("hello world\nA --> B", "unknown diagram type 'hello'"),
        ("flowchart TD", "no diagram body"),
        ("---\ntitle: Demo\n---\ngraph LR\nA-->B", None),
        ("sequenceDiagram\nA->>B: hi", None),
    ],
)
def test_malformed_reason(source, reason):
    assert malformed_reason(DiagramDescription(source=source)) == reason


@pytest.mark.asyncio
async def test_render_is_idempotent():
    """Re-rendering the same target and source does not call the service again."""
    backend = CountingBackend()
    renderer = DiagramRenderer(backend)

    first = await renderer.render("m-1-0", FLOW)
    second = await renderer.render("m-1-0", FLOW)
    assert first == second
    assert backend.calls == 1

    changed = DiagramDescription(source="flowchart TD\nA --> C")
    third = await renderer.render("m-1-0", changed)
    assert third.source == changed.source
    assert backend.calls == 2


@pytest.mark.asyncio
async def test_malformed_description_is_skipped():
    backend = CountingBackend()
    renderer = DiagramRenderer(backend)
    assert await renderer.render("m-1-0", DiagramDescription(source="not a diagram")) is None
    assert backend.calls == 0


@pytest.mark.asyncio
async def test_backend_failure_is_logged_not_raised():
    renderer = DiagramRenderer(CountingBackend(fail=True))
    assert await renderer.render("m-1-0", FLOW) is None
    assert renderer.get("m-1-0") is None


@pytest.mark.asyncio
async def test_schedule_renders_every_diagram():
    """Each diagram of a message gets its own deferred render target."""
    backend = CountingBackend()
    renderer = DiagramRenderer(backend)
    processed = process("```mermaid\ngraph TD\nA-->B\n```\n```mermaid\npie\n\"a\": 1\n```")
    message = Message(role="assistant", content=processed.cleaned_text, diagrams=processed.diagrams)

    tasks = renderer.schedule(message)
    assert len(tasks) == 2
    await asyncio.gather(*tasks)
    assert renderer.get(target_id(message.id, 0)) is not None
    assert renderer.get(target_id(message.id, 1)) is not None


@pytest.mark.asyncio
async def test_mermaid_ink_backend_encodes_source():
    """The HTTP backend requests the base64 encoded diagram as SVG."""
    seen = []

    def handler(request):
        seen.append(request.url.path)
        return httpx.Response(200, text="<svg>ok</svg>")

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://mermaid.test")
    backend = MermaidInkBackend(http_client=http)
    svg = await backend.render("graph TD\nA-->B")
    await http.aclose()

    assert svg == "<svg>ok</svg>"
    assert seen == ["/svg/Z3JhcGggVEQKQS0tPkI="]
