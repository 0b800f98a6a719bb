"""
WebDAV protocol operations combining request building and response parsing.

This class provides a high-level interface to the WebDAV operations used
for file sync while remaining completely I/O-free.
"""

import posixpath
from typing import Mapping, Optional
from urllib.parse import unquote

from davtransfer.lib import error
from davtransfer.lib.auth import CredentialProvider
from davtransfer.lib.url import URL, has_control_characters, quote_path

from .types import (
    Body,
    ChunkDescriptor,
    DAVMethod,
    DAVRequest,
    DAVResponse,
    PropertyRecord,
    ResourceTree,
)
from .xml_builders import build_propfind_body
from .xml_parsers import (
    parse_properties_response,
    parse_propfind_response,
    parse_user_name_response,
)

## Path of the OCS endpoint answering "who am I", relative to the server root
OCS_USER_PATH = "ocs/v1.php/cloud/user"


class WebDAVProtocol:
    """
    Sans-I/O WebDAV protocol handler.

    Builds requests and parses responses without doing any I/O.
    All HTTP communication is delegated to an external I/O implementation.

    Remote paths are given decoded, relative to the base URL, e.g.
    ``"/Documents/report 2023.pdf"``.  They are encoded exactly once,
    when the request is built.

    Example:
        protocol = WebDAVProtocol(base_url="https://cloud.example.com/remote.php/webdav/")

        # Build request
        request = protocol.propfind_request("/Documents/", depth=1)

        # Execute with your I/O (not shown)
        response = await io.execute(request)

        # Parse response
        tree = protocol.parse_listing(response)
    """

    def __init__(
        self,
        base_url: str,
        credentials: Optional[CredentialProvider] = None,
        headers: Optional[Mapping[str, str]] = None,
        huge_tree: bool = False,
    ):
        """
        Initialize the protocol handler.

        Args:
            base_url: URL of the DAV root, e.g. https://host/remote.php/webdav
            credentials: Read-only provider for the Authorization/Cookie headers
            headers: Extra headers added to every request
            huge_tree: Allow parsing very large multistatus documents
        """
        url = URL.objectify(base_url)
        if not url or not url.scheme or not url.hostname:
            raise error.InvalidPathError(url=str(base_url), reason="base URL must be absolute")
        self.base_url = url.strip_trailing_slash()
        self.base_path = unquote(self.base_url.path).rstrip("/")
        self.credentials = credentials
        self.headers = dict(headers or {})
        self.huge_tree = huge_tree

    # =========================================================================
    # Paths
    # =========================================================================

    def url_for(self, path: str) -> str:
        """
        Resolve a decoded remote path to a full, encoded URL.

        Raises:
            InvalidPathError: if the path holds control characters or
                resolves outside the base URL
        """
        if path is None:
            raise error.InvalidPathError(reason="no path given")
        if has_control_characters(path):
            raise error.InvalidPathError(url=repr(path), reason="control characters in path")
        if "://" in path:
            raise error.InvalidPathError(url=path, reason="expected a path, not a URL")

        relative = path.lstrip("/")
        ## ".." segments must not climb out of the DAV root
        if relative and posixpath.normpath("/" + relative).startswith("/.."):
            raise error.InvalidPathError(url=path, reason="path resolves outside the base URL")
        if any(segment in (".", "..") for segment in relative.split("/")):
            raise error.InvalidPathError(url=path, reason="relative segments in path")

        url = "%s/%s" % (str(self.base_url).rstrip("/"), quote_path(relative))
        error.assert_(self.base_url.contains(url))
        return url

    def path_for(self, url: str) -> str:
        """
        Inverse of url_for: decode an encoded URL or absolute path back
        to the remote path relative to the base URL.
        """
        url = URL.objectify(url)
        if not self.base_url.contains(url):
            raise error.InvalidPathError(url=str(url), reason="URL is outside the base URL")
        decoded = unquote(url.path)
        return "/" + decoded[len(self.base_path):].lstrip("/")

    def _base_headers(self, extra: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        """Return base headers for all requests."""
        headers = dict(self.headers)
        if self.credentials is not None:
            headers.update(self.credentials.headers())
        if extra:
            headers.update(extra)
        return headers

    # =========================================================================
    # Request builders
    # =========================================================================

    def _transfer_request(
        self,
        method: DAVMethod,
        source: str,
        destination: str,
        overwrite: bool,
        headers: Optional[Mapping[str, str]],
    ) -> DAVRequest:
        if destination is None:
            raise error.InvalidPathError(reason=f"{method.value} needs a destination")
        return DAVRequest(
            method=method,
            url=self.url_for(source),
            headers={
                **self._base_headers(headers),
                "Destination": self.url_for(destination),
                "Overwrite": "T" if overwrite else "F",
            },
        )

    def copy_request(
        self,
        source: str,
        destination: str,
        overwrite: bool = True,
        headers: Optional[Mapping[str, str]] = None,
    ) -> DAVRequest:
        """Build a COPY request"""
        return self._transfer_request(DAVMethod.COPY, source, destination, overwrite, headers)

    def move_request(
        self,
        source: str,
        destination: str,
        overwrite: bool = True,
        headers: Optional[Mapping[str, str]] = None,
    ) -> DAVRequest:
        """Build a MOVE request"""
        return self._transfer_request(DAVMethod.MOVE, source, destination, overwrite, headers)

    def delete_request(
        self, path: str, headers: Optional[Mapping[str, str]] = None
    ) -> DAVRequest:
        return DAVRequest(
            method=DAVMethod.DELETE,
            url=self.url_for(path),
            headers=self._base_headers(headers),
        )

    def propfind_request(
        self,
        path: str,
        depth: int = 1,
        headers: Optional[Mapping[str, str]] = None,
    ) -> DAVRequest:
        """
        Build a PROPFIND request asking for the listing properties.

        Args:
            path: Resource path
            depth: 0 for the resource itself, 1 for a collection and its
                immediate children
        """
        if depth not in (0, 1):
            raise ValueError(f"unsupported depth {depth!r}, listing is one level at a time")
        return DAVRequest(
            method=DAVMethod.PROPFIND,
            url=self.url_for(path),
            headers={
                **self._base_headers(headers),
                "Depth": str(depth),
                "Content-Type": "application/xml; charset=utf-8",
            },
            body=build_propfind_body(),
        )

    def mkcol_request(
        self, path: str, headers: Optional[Mapping[str, str]] = None
    ) -> DAVRequest:
        return DAVRequest(
            method=DAVMethod.MKCOL,
            url=self.url_for(path),
            headers=self._base_headers(headers),
        )

    def get_request(
        self, path: str, headers: Optional[Mapping[str, str]] = None
    ) -> DAVRequest:
        return DAVRequest(
            method=DAVMethod.GET,
            url=self.url_for(path),
            headers=self._base_headers(headers),
        )

    def put_request(
        self,
        path: str,
        body: Body,
        content_length: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> DAVRequest:
        """
        Build a PUT request.

        Args:
            path: Destination path
            body: Bytes, or an async iterable of bytes for a streamed upload
            content_length: Size of a streamed body
        """
        if isinstance(body, (bytes, bytearray)):
            content_length = len(body)
        extra = {}
        if content_length is not None:
            extra["Content-Length"] = str(content_length)
        return DAVRequest(
            method=DAVMethod.PUT,
            url=self.url_for(path),
            headers={**self._base_headers(headers), **extra},
            body=body,
            content_length=content_length,
        )

    def chunk_put_request(
        self,
        chunk: ChunkDescriptor,
        body: Body,
        headers: Optional[Mapping[str, str]] = None,
    ) -> DAVRequest:
        """
        Build the PUT for one chunk of a chunked upload.  The server
        recognises the chunk by the OC-Chunked header and the name
        derived for it by davtransfer.chunking.
        """
        return self.put_request(
            chunk.remote_path,
            body,
            content_length=chunk.length,
            headers={**(headers or {}), "OC-Chunked": "1"},
        )

    def user_name_request(self, cookie: Optional[str] = None) -> DAVRequest:
        """
        Build the OCS request answering which user a session cookie
        belongs to.  The OCS API lives beside remote.php, not below it.
        """
        root = self.base_url.path
        if "/remote.php" in root:
            root = root[: root.index("/remote.php")]
        url = self.base_url.join(URL("%s/%s?format=json" % (root.rstrip("/"), OCS_USER_PATH)))
        headers = self._base_headers({"OCS-APIREQUEST": "true"})
        if cookie:
            headers["Cookie"] = cookie
        return DAVRequest(method=DAVMethod.GET, url=str(url), headers=headers)

    # =========================================================================
    # Response parsers
    # =========================================================================

    def parse_listing(self, response: DAVResponse, path: Optional[str] = None) -> ResourceTree:
        return parse_propfind_response(
            response, self.base_path, huge_tree=self.huge_tree, queried_path=path
        )

    def parse_properties(self, response: DAVResponse, path: Optional[str] = None) -> PropertyRecord:
        return parse_properties_response(
            response, self.base_path, huge_tree=self.huge_tree, queried_path=path
        )

    def parse_user_name(self, response: DAVResponse) -> str:
        return parse_user_name_response(response)
