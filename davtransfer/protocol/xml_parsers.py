"""
Pure functions for parsing WebDAV XML responses.

All functions in this module are pure - they take XML bytes in and return
structured data out, with no side effects or I/O.
"""

import json
import logging
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Optional
from urllib.parse import unquote

from lxml import etree
from lxml.etree import _Element

from davtransfer.elements import cs, dav
from davtransfer.lib import error
from davtransfer.lib.url import URL

from .types import DAVResponse, PropertyRecord, ResourceTree

log = logging.getLogger(__name__)


def parse_multistatus(
    body: bytes,
    base_path: str = "",
    huge_tree: bool = False,
    queried_path: Optional[str] = None,
) -> ResourceTree:
    """
    Parse a 207 Multi-Status response body into a ResourceTree.

    Args:
        body: Raw XML response bytes
        base_path: Decoded path of the DAV root, stripped from each href
            so the tree is keyed by paths relative to the base URL
        huge_tree: Allow parsing very large XML documents
        queried_path: Path the request was made for.  The first entry is
            keyed by it when it names the same resource, whether or not
            the server added or dropped a trailing slash

    Returns:
        ResourceTree with one record per response element, in document order

    Raises:
        MalformedResponseError: If body is not well-formed XML or the root
            element is not DAV:multistatus
    """
    if not body:
        raise error.MalformedResponseError(reason="empty multistatus body")
    parser = etree.XMLParser(huge_tree=huge_tree, resolve_entities=False)
    try:
        tree = etree.fromstring(body, parser)
    except etree.XMLSyntaxError as e:
        raise error.MalformedResponseError(reason=str(e)) from e

    if tree.tag != dav.MultiStatus.tag:
        raise error.MalformedResponseError(
            reason=f"expected {dav.MultiStatus.tag}, got {tree.tag}"
        )

    entries: list[tuple[str, PropertyRecord]] = []
    for elem in tree:
        if elem.tag != dav.Response.tag:
            continue

        href, propstats, status = _parse_response_element(elem)
        path = _relative_path(href, base_path)
        if not entries and queried_path is not None:
            path = _queried_self_path(path, queried_path)
        properties = _extract_properties(propstats)
        entries.append((path, _build_record(path, properties, _status_to_code(status))))

    return ResourceTree(entries)


def parse_propfind_response(
    response: DAVResponse,
    base_path: str = "",
    huge_tree: bool = False,
    queried_path: Optional[str] = None,
) -> ResourceTree:
    """
    Parse a PROPFIND response, checking the HTTP status first.

    Only the status codes a PROPFIND can succeed with are accepted here;
    the transfer operation classifies everything else before calling in.
    """
    if response.status not in (200, 207):
        raise error.MalformedResponseError(
            reason=f"PROPFIND answered with status {response.status}"
        )
    return parse_multistatus(
        response.body, base_path=base_path, huge_tree=huge_tree, queried_path=queried_path
    )


def parse_properties_response(
    response: DAVResponse,
    base_path: str = "",
    huge_tree: bool = False,
    queried_path: Optional[str] = None,
) -> PropertyRecord:
    """
    Parse a depth 0 PROPFIND response into the record of the single
    resource that was queried.
    """
    tree = parse_propfind_response(
        response, base_path=base_path, huge_tree=huge_tree, queried_path=queried_path
    )
    if tree.self_entry is None:
        raise error.MalformedResponseError(reason="multistatus without response")
    return tree.self_entry


def parse_user_name_response(response: DAVResponse) -> str:
    """
    Pull the user id out of an OCS ``cloud/user`` answer.
    """
    try:
        document = json.loads(response.body)
        return document["ocs"]["data"]["id"]
    except (ValueError, KeyError, TypeError) as e:
        raise error.MalformedResponseError(reason=f"unexpected user document: {e}") from e


# Helper functions


def _parse_response_element(
    response: _Element,
) -> tuple[str, list[_Element], Optional[str]]:
    """
    Parse a single DAV:response element.

    Returns:
        Tuple of (decoded href, propstat elements list, status string)
    """
    status: Optional[str] = None
    href: Optional[str] = None
    propstats: list[_Element] = []

    for elem in response:
        if elem.tag == dav.Status.tag:
            status = elem.text
        elif elem.tag == dav.Href.tag:
            text = (elem.text or "").strip()
            # Convert absolute URLs to paths before decoding, so an encoded
            # "?" or "#" in a file name doesn't get taken for a delimiter
            if "://" in text:
                text = URL(text).path
            href = unquote(text)
        elif elem.tag == dav.PropStat.tag:
            propstats.append(elem)

    if href is None:
        error.weirdness("response element without href", response)
    return (href or "", propstats, status)


def _relative_path(href: str, base_path: str) -> str:
    """
    Strip the DAV root from a decoded href.  Hrefs outside the root are
    returned unchanged.
    """
    base = base_path.rstrip("/")
    if base and (href == base or href.startswith(base + "/")):
        href = href[len(base):]
    return href or "/"


def _queried_self_path(path: str, queried_path: str) -> str:
    queried = "/" + queried_path.lstrip("/")
    if path.rstrip("/") == queried.rstrip("/"):
        return queried
    return path


def _extract_properties(propstats: list[_Element]) -> dict[str, Any]:
    """
    Extract properties from propstat elements into a dict.

    Propstats carrying a non-2xx status (typically 404 for a property
    the server does not know about) are skipped.

    Returns:
        Dict mapping property tag to the property element
    """
    properties: dict[str, Any] = {}

    for propstat in propstats:
        status_elem = propstat.find(dav.Status.tag)
        if status_elem is not None and status_elem.text:
            code = _status_to_code(status_elem.text)
            if not 200 <= code < 300:
                log.debug(f"skipping propstat with status {status_elem.text.strip()}")
                continue

        prop = propstat.find(dav.Prop.tag)
        if prop is None:
            continue

        for child in prop:
            properties[child.tag] = child

    return properties


def _text(properties: dict[str, Any], tag: str) -> Optional[str]:
    elem = properties.get(tag)
    if elem is None or elem.text is None:
        return None
    text = elem.text.strip()
    return text or None


def _build_record(path: str, properties: dict[str, Any], status: int) -> PropertyRecord:
    resourcetype = properties.get(dav.ResourceType.tag)
    is_collection = resourcetype is not None and any(
        child.tag == dav.Collection.tag for child in resourcetype
    )

    content_length = _text(properties, dav.GetContentLength.tag)
    try:
        length = int(content_length) if content_length is not None else None
    except ValueError:
        log.debug(f"ignoring unparseable content length {content_length!r} for {path}")
        length = None

    return PropertyRecord(
        href=path,
        content_type=_text(properties, dav.GetContentType.tag),
        etag=_text(properties, dav.GetEtag.tag),
        ctag=_text(properties, cs.GetCTag.tag),
        creation_date=_parse_creation_date(_text(properties, dav.CreationDate.tag)),
        modification_date=_parse_http_date(_text(properties, dav.GetLastModified.tag)),
        content_length=length,
        is_collection=is_collection,
        status=status,
    )


def _parse_creation_date(value: Optional[str]) -> Optional[datetime]:
    """creationdate is RFC 3339, but some servers send an HTTP date there too"""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return _parse_http_date(value)


def _parse_http_date(value: Optional[str]) -> Optional[datetime]:
    """getlastmodified is an RFC 1123 date"""
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        log.debug(f"ignoring unparseable date {value!r}")
        return None


def _status_to_code(status: Optional[str]) -> int:
    """
    Extract status code from status string like "HTTP/1.1 200 OK".

    Args:
        status: Status string

    Returns:
        Integer status code (defaults to 200 if parsing fails)
    """
    if not status:
        return 200

    parts = status.split()
    if len(parts) >= 2:
        try:
            return int(parts[1])
        except ValueError:
            pass

    return 200
