"""
Core protocol types for the sans-I/O WebDAV transfer engine.

These dataclasses represent requests, responses, parsed properties and
transfer results at the protocol level, independent of any I/O
implementation.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterable, Iterator, Optional, Union


class DAVMethod(Enum):
    """WebDAV HTTP methods."""

    GET = "GET"
    PUT = "PUT"
    DELETE = "DELETE"
    PROPFIND = "PROPFIND"
    MKCOL = "MKCOL"
    MOVE = "MOVE"
    COPY = "COPY"


Body = Union[bytes, AsyncIterable[bytes], None]


@dataclass(frozen=True)
class DAVRequest:
    """
    Represents an HTTP request to be made.

    This is a pure data structure with no I/O. It describes what request
    should be made, but does not make it.

    Attributes:
        method: HTTP method (GET, PUT, PROPFIND, etc.)
        url: Full, percent-encoded URL for the request
        headers: HTTP headers as dict
        body: Request body, either bytes or an async iterable of bytes
            for streamed uploads (optional)
        content_length: Size of a streamed body, used for progress totals
    """

    method: DAVMethod
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Body = None
    content_length: Optional[int] = None

    def with_header(self, name: str, value: str) -> "DAVRequest":
        """Return new request with additional header."""
        new_headers = {**self.headers, name: value}
        return DAVRequest(
            method=self.method,
            url=self.url,
            headers=new_headers,
            body=self.body,
            content_length=self.content_length,
        )

    def with_body(self, body: Body, content_length: Optional[int] = None) -> "DAVRequest":
        """Return new request with body."""
        return DAVRequest(
            method=self.method,
            url=self.url,
            headers=self.headers,
            body=body,
            content_length=content_length,
        )


@dataclass(frozen=True)
class DAVResponse:
    """
    Represents an HTTP response received.

    Attributes:
        status: HTTP status code
        headers: HTTP headers as dict
        body: Response body as bytes (empty when it was streamed to a sink)
    """

    status: int
    headers: dict[str, str]
    body: bytes

    @property
    def ok(self) -> bool:
        """True if status indicates success (2xx)."""
        return 200 <= self.status < 300

    @property
    def is_multistatus(self) -> bool:
        """True if this is a 207 Multi-Status response."""
        return self.status == 207

    @property
    def reason(self) -> str:
        """Return a reason phrase for the status code."""
        reasons = {
            200: "OK",
            201: "Created",
            204: "No Content",
            207: "Multi-Status",
            301: "Moved Permanently",
            302: "Found",
            304: "Not Modified",
            400: "Bad Request",
            401: "Unauthorized",
            403: "Forbidden",
            404: "Not Found",
            405: "Method Not Allowed",
            408: "Request Timeout",
            409: "Conflict",
            412: "Precondition Failed",
            415: "Unsupported Media Type",
            423: "Locked",
            429: "Too Many Requests",
            500: "Internal Server Error",
            501: "Not Implemented",
            502: "Bad Gateway",
            503: "Service Unavailable",
            504: "Gateway Timeout",
            507: "Insufficient Storage",
        }
        return reasons.get(self.status, "Unknown")


@dataclass(frozen=True)
class PropertyRecord:
    """
    Parsed properties of one remote resource.

    Optional properties the server did not return (or returned with a
    non-2xx propstat) are None.

    Attributes:
        href: Decoded path of the resource, relative to the base URL
        content_type: getcontenttype
        etag: getetag, with the surrounding quotes kept
        ctag: getctag, only on collections of servers supporting it
        creation_date: creationdate
        modification_date: getlastmodified
        content_length: getcontentlength
        is_collection: True if resourcetype holds a collection element
        status: HTTP status of the response entry (default 200)
    """

    href: str
    content_type: Optional[str] = None
    etag: Optional[str] = None
    ctag: Optional[str] = None
    creation_date: Optional[datetime] = None
    modification_date: Optional[datetime] = None
    content_length: Optional[int] = None
    is_collection: bool = False
    status: int = 200


class ResourceTree:
    """
    Ordered (path, PropertyRecord) pairs from a single level listing.

    The order is the document order of the multistatus response, so the
    first entry is the queried collection itself.
    """

    def __init__(self, entries: Optional[list[tuple[str, PropertyRecord]]] = None) -> None:
        self._entries: list[tuple[str, PropertyRecord]] = list(entries or [])

    def __iter__(self) -> Iterator[tuple[str, PropertyRecord]]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, idx: int) -> tuple[str, PropertyRecord]:
        return self._entries[idx]

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ResourceTree) and self._entries == other._entries

    def __repr__(self) -> str:
        return "ResourceTree(%r)" % [path for path, _ in self._entries]

    @property
    def paths(self) -> list[str]:
        return [path for path, _ in self._entries]

    @property
    def self_entry(self) -> Optional[PropertyRecord]:
        """Record of the queried resource itself"""
        return self._entries[0][1] if self._entries else None

    @property
    def children(self) -> list[tuple[str, PropertyRecord]]:
        return self._entries[1:]

    def get(self, path: str) -> Optional[PropertyRecord]:
        stripped = path.rstrip("/")
        for entry_path, record in self._entries:
            if entry_path.rstrip("/") == stripped:
                return record
        return None


@dataclass(frozen=True)
class ChunkDescriptor:
    """
    One piece of a file being uploaded.

    Attributes:
        index: Position in the chunk sequence, starting at 0
        offset: Byte offset of the chunk in the local file
        length: Number of bytes in the chunk
        remote_path: Decoded remote path the chunk is PUT to
    """

    index: int
    offset: int
    length: int
    remote_path: str


class OutcomeKind(Enum):
    SUCCESS = "success"
    ## network level failure, safe to retry
    RECOVERABLE_FAILURE = "recoverable_failure"
    ## server rejected the credentials, refresh before retrying
    CREDENTIAL_FAILURE = "credential_failure"
    MALFORMED_RESPONSE = "malformed_response"
    ## server refused the request (404, 409, 412 ...), retrying won't help
    REJECTED = "rejected"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TransferOutcome:
    """
    Tagged result of a transfer operation or a chunked upload.

    Attributes:
        kind: What happened
        payload: Parsed payload for listing operations (ResourceTree,
            PropertyRecord, user name ...), None for mutations
        error: The DAVError describing a failure
        status: HTTP status, if a response was received
        chunk_index: For chunked uploads, index of the failing chunk
            (the one to resume from)
        remote_path: For chunked uploads, the final destination
    """

    kind: OutcomeKind
    payload: Any = None
    error: Optional[Exception] = None
    status: Optional[int] = None
    chunk_index: Optional[int] = None
    remote_path: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def retryable(self) -> bool:
        return self.kind is OutcomeKind.RECOVERABLE_FAILURE
