"""
Pure functions for building WebDAV XML request bodies.

All functions in this module are pure - they take data in and return XML out,
with no side effects or I/O.
"""
from typing import List
from typing import Optional

from lxml import etree

from davtransfer.elements import cs
from davtransfer.elements import dav
from davtransfer.elements.base import BaseElement

## The fixed property set asked for on every PROPFIND.  Some servers are
## picky about the request body, so it never varies between calls.
LISTING_PROPS: List[BaseElement] = [
    dav.ResourceType(),
    dav.GetContentType(),
    dav.GetEtag(),
    cs.GetCTag(),
    dav.CreationDate(),
    dav.GetLastModified(),
    dav.GetContentLength(),
]


def build_propfind_body(props: Optional[List[BaseElement]] = None) -> bytes:
    """
    Build PROPFIND request body XML.

    Args:
        props: Property elements to ask for.  Defaults to LISTING_PROPS.

    Returns:
        UTF-8 encoded XML bytes
    """
    if props is None:
        props = LISTING_PROPS
    propfind = dav.Propfind() + (dav.Prop() + props)
    return etree.tostring(propfind.xmlelement(), encoding="utf-8", xml_declaration=True)
