"""
Sans-I/O WebDAV protocol implementation.

This module provides protocol-level operations without any I/O.
It builds requests and parses responses as pure data transformations.

The protocol layer is organized into:
- types: Core data structures (DAVRequest, DAVResponse, PropertyRecord, ...)
- xml_builders: Pure functions to build XML request bodies
- xml_parsers: Pure functions to parse XML response bodies
- operations: WebDAVProtocol class combining builders and parsers

Example usage:

    from davtransfer.protocol import WebDAVProtocol

    protocol = WebDAVProtocol(base_url="https://cloud.example.com/remote.php/webdav")

    # Build a request (no I/O)
    request = protocol.propfind_request("/Documents/", depth=1)

    # Execute via your preferred I/O (async, threaded, or mock)
    response = await your_transport.execute(request)

    # Parse response (no I/O)
    tree = protocol.parse_listing(response)
"""

from .types import (
    # Enums
    DAVMethod,
    OutcomeKind,
    # Request/Response
    DAVRequest,
    DAVResponse,
    # Result types
    ChunkDescriptor,
    PropertyRecord,
    ResourceTree,
    TransferOutcome,
)
from .xml_builders import LISTING_PROPS, build_propfind_body
from .xml_parsers import (
    parse_multistatus,
    parse_properties_response,
    parse_propfind_response,
    parse_user_name_response,
)
from .operations import WebDAVProtocol

__all__ = [
    # Enums
    "DAVMethod",
    "OutcomeKind",
    # Request/Response
    "DAVRequest",
    "DAVResponse",
    # Result types
    "ChunkDescriptor",
    "PropertyRecord",
    "ResourceTree",
    "TransferOutcome",
    # XML Builders
    "LISTING_PROPS",
    "build_propfind_body",
    # XML Parsers
    "parse_multistatus",
    "parse_properties_response",
    "parse_propfind_response",
    "parse_user_name_response",
    # Protocol
    "WebDAVProtocol",
]
