from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class ErrorKind(Enum):
    TIMEOUT = "Timeout"
    AUTH_OR_PERMISSION = "AuthOrPermission"
    NOT_FOUND = "NotFound"
    EMPTY_CONTENT = "EmptyContent"
    RENDER_FAILURE = "RenderFailure"
    UNKNOWN = "Unknown"
    CANCELLED = "Cancelled"

    @property
    def retryable(self):
        return self in (ErrorKind.TIMEOUT, ErrorKind.NOT_FOUND, ErrorKind.UNKNOWN)


@dataclass(frozen=True)
class ItemDescriptor:
    id: str
    title: str
    address: str
    original_index: int
    section_label: Optional[str] = None


@dataclass(frozen=True)
class Collection:
    title: str
    items: List[ItemDescriptor]


@dataclass
class RawContent:
    html: str
    source_url: str
    status: Optional[int] = None
    attempts: int = 1


@dataclass(frozen=True)
class SanitizedDocument:
    html: str
    source_url: str
    text_length: int
    image_count: int = 0


@dataclass(frozen=True)
class ArtifactHandle:
    path: str
    page_count: int


@dataclass
class ItemResult:
    original_index: int
    success: bool
    title: str
    artifact_path: Optional[str] = None
    source_url: Optional[str] = None
    content: Optional[str] = None
    page_count: int = 0
    attempts: int = 0
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    @classmethod
    def failed(cls, item, kind, message, attempts=0):
        return cls(
            original_index=item.original_index,
            success=False,
            title=item.title,
            attempts=attempts,
            error_kind=kind,
            error_message=message,
        )


@dataclass(frozen=True)
class ProgressEvent:
    completed: int
    total: int
    last_title: str
    last_success: bool
    last_index: int
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class OutlineEntry:
    title: str
    position: int


@dataclass
class MergedDeliverable:
    path: str
    item_count: int
    outline_entries: List[OutlineEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
