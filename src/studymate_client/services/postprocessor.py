"""Post-processing of raw assistant replies.

Turns the text returned by the inference backend into a renderable form:

- header citations (``# SOURCE: notes.pdf`` lines) are lifted out of the body
  into an ordered, de-duplicated source list
- inline citations (``[source: notes.pdf]``) stay in place and are exposed as
  citation segments so a renderer can show them as badges
- fenced ``mermaid`` blocks become explicit diagrams
- when no explicit diagram exists, arrow chains such as
  ``Start -> Plan -> Decision -> End`` are synthesized into a linear flowchart

The scanner is built from three tokens (header line, inline bracket, fenced
block) and is deterministic: the same text always yields the same output.
Nothing in here raises; malformed markers are left as literal text.
"""

import re
from typing import Iterable, List, Optional, Sequence, Tuple

import structlog

from ..domain.models import (
    ContentSegment,
    DiagramDescription,
    DiagramEdge,
    DiagramNode,
    ProcessedContent,
)

logger = structlog.get_logger()

HEADER_SOURCE = re.compile(r"^(?:#+[ \t]*)?SOURCE:[ \t]*(?P<name>\S.*?)[ \t]*$", re.IGNORECASE)
INLINE_CITATION = re.compile(r"\[source:\s*(?P<name>[^\]]+?\.pdf)\s*\]", re.IGNORECASE)
FENCED_DIAGRAM = re.compile(r"```mermaid[ \t]*\r?\n(?P<body>.*?)```", re.IGNORECASE | re.DOTALL)
LINE_BREAK = re.compile(r"\r?\n")

FLOW_HINT = re.compile(r"->|=>|\b(?:start|end|decision)\b", re.IGNORECASE)
ARROW_SPLIT = re.compile(r"\s*(?:->|=>)+\s*")
DECISION_PREFIX = re.compile(r"^(?:yes|no|decision|risk|category)", re.IGNORECASE)
BRACKETS = re.compile(r"[\[\]]")
EMPHASIS = re.compile(r"[*`~]+")

MAX_NODES = 20
MAX_LABEL_LENGTH = 60


def dedupe(items: Iterable[str]) -> Tuple[str, ...]:
    """Drop repeats and blanks, keeping first-occurrence order."""
    seen = set()
    ordered = []
    for item in items:
        name = (item or "").strip()
        if name and name not in seen:
            seen.add(name)
            ordered.append(name)
    return tuple(ordered)


def strip_header_sources(text: str) -> Tuple[str, Tuple[str, ...]]:
    """Remove ``SOURCE:`` header lines and return (body, sources).

    Text without any header line is returned untouched.
    """
    lines = LINE_BREAK.split(text)
    kept: List[str] = []
    found: List[str] = []
    for line in lines:
        match = HEADER_SOURCE.match(line)
        if match:
            found.append(match.group("name"))
        else:
            kept.append(line)

    if not found:
        return text, ()
    return "\n".join(kept).strip(), dedupe(found)


def split_citations(text: str) -> List[ContentSegment]:
    """Split text into alternating prose and inline citation segments."""
    segments: List[ContentSegment] = []
    position = 0
    for match in INLINE_CITATION.finditer(text):
        if match.start() > position:
            segments.append(ContentSegment(kind="text", value=text[position:match.start()]))
        segments.append(ContentSegment(kind="citation", value=match.group("name").strip()))
        position = match.end()
    if position < len(text):
        segments.append(ContentSegment(kind="text", value=text[position:]))
    return segments


def inline_sources(text: str) -> Tuple[str, ...]:
    return dedupe(m.group("name") for m in INLINE_CITATION.finditer(text))


def extract_diagrams(text: str) -> Tuple[DiagramDescription, ...]:
    """Return the trimmed bodies of fenced mermaid blocks in appearance order."""
    return tuple(
        DiagramDescription(kind="explicit", source=m.group("body").strip())
        for m in FENCED_DIAGRAM.finditer(text)
    )


def _clean_label(fragment: str) -> str:
    label = EMPHASIS.sub("", fragment).replace("|", " ")
    label = " ".join(label.split())
    return label[:MAX_LABEL_LENGTH]


def _mermaid_label(label: str) -> str:
    return '"' + label.replace('"', "#quot;") + '"'


def to_mermaid(nodes: Sequence[DiagramNode], edges: Sequence[DiagramEdge]) -> str:
    """Encode a synthesized graph as a top-down Mermaid flowchart."""
    lines = ["flowchart TD"]
    for node in nodes:
        label = _mermaid_label(node.label)
        if node.shape == "decision":
            lines.append(f"{node.id}{{{label}}}")
        else:
            lines.append(f"{node.id}[{label}]")
    for edge in edges:
        lines.append(f"{edge.from_node} --> {edge.to_node}")
    return "\n".join(lines)


def synthesize_diagram(text: str) -> Optional[DiagramDescription]:
    """Build a linear flowchart from arrow-separated fragments, if any."""
    if not FLOW_HINT.search(text):
        return None

    fragments = [BRACKETS.sub("", part).strip() for part in ARROW_SPLIT.split(text)]
    fragments = [f for f in fragments if f][:MAX_NODES]
    if len(fragments) < 2:
        return None

    labels = [_clean_label(fragment) for fragment in fragments]
    nodes = tuple(
        DiagramNode(
            id=f"N{index}",
            shape="decision" if DECISION_PREFIX.match(label) else "rectangle",
            label=label,
        )
        for index, label in enumerate(labels)
    )
    edges = tuple(
        DiagramEdge(from_node=current.id, to_node=following.id)
        for current, following in zip(nodes, nodes[1:])
    )
    return DiagramDescription(
        kind="synthesized",
        source=to_mermaid(nodes, edges),
        nodes=nodes,
        edges=edges,
    )


def build_segments(text: str, synthesized: bool) -> Tuple[ContentSegment, ...]:
    """Lay out prose, citation badges and diagram slots in reading order."""
    segments: List[ContentSegment] = []
    position = 0
    slot = 0
    for match in FENCED_DIAGRAM.finditer(text):
        segments.extend(split_citations(text[position:match.start()]))
        segments.append(ContentSegment(kind="diagram", index=slot))
        slot += 1
        position = match.end()
    segments.extend(split_citations(text[position:]))
    if synthesized:
        segments.append(ContentSegment(kind="diagram", index=0))
    return tuple(segments)


def process(raw_text: Optional[str]) -> ProcessedContent:
    """Run the full post-processing pipeline on a raw reply."""
    text = raw_text if isinstance(raw_text, str) else ("" if raw_text is None else str(raw_text))
    try:
        cleaned, header_sources = strip_header_sources(text)
        diagrams = extract_diagrams(cleaned)
        synthesized = False
        if not diagrams:
            diagram = synthesize_diagram(cleaned)
            if diagram is not None:
                diagrams = (diagram,)
                synthesized = True

        return ProcessedContent(
            cleaned_text=cleaned,
            sources=header_sources,
            diagrams=diagrams,
            segments=build_segments(cleaned, synthesized),
        )
    except Exception as e:
        logger.error("content_processing_failed", error=str(e), length=len(text))
        return ProcessedContent(
            cleaned_text=text,
            segments=(ContentSegment(kind="text", value=text),) if text else (),
        )
