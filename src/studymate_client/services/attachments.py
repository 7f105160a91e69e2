"""Files attached to the active conversation."""

import mimetypes
from typing import Iterable, List, Optional, Tuple

import structlog

from ..domain.models import UploadedAttachment
from ..exceptions import AttachmentRejected

logger = structlog.get_logger()


def pretty_bytes(size: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 1):g} {units[unit]}"


class AttachmentTray:
    """Bounded list of uploads sent with every completion request."""

    def __init__(self, max_files: int = 10, max_bytes: int = 25 * 1024 * 1024) -> None:
        self.max_files = max_files
        self.max_bytes = max_bytes
        self._items: List[UploadedAttachment] = []

    @property
    def items(self) -> Tuple[UploadedAttachment, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def add(self, name: str, content: bytes, content_type: Optional[str] = None) -> UploadedAttachment:
        if len(self._items) >= self.max_files:
            raise AttachmentRejected(name, f"exceeds the {self.max_files} file limit.")
        if len(content) > self.max_bytes:
            raise AttachmentRejected(name, f"exceeds {pretty_bytes(self.max_bytes)} limit.")

        attachment = UploadedAttachment(
            name=name,
            size=len(content),
            content=content,
            content_type=content_type
            or mimetypes.guess_type(name)[0]
            or "application/octet-stream",
        )
        self._items.append(attachment)
        logger.info("attachment_added", name=name, size=attachment.size)
        return attachment

    def add_many(self, files: Iterable[Tuple[str, bytes]]) -> List[UploadedAttachment]:
        """Add what fits; rejected files are logged and skipped."""
        accepted = []
        for name, content in files:
            try:
                accepted.append(self.add(name, content))
            except AttachmentRejected as e:
                logger.warning("attachment_rejected", name=e.name, reason=e.reason)
        return accepted

    def remove(self, attachment_id: str) -> bool:
        before = len(self._items)
        self._items = [a for a in self._items if a.id != attachment_id]
        return len(self._items) != before

    def clear(self) -> None:
        self._items = []
