#!/usr/bin/env python
import sys
from collections.abc import Iterable
from typing import ClassVar
from typing import Dict
from typing import List
from typing import Optional
from typing import Union

from lxml import etree
from lxml.etree import _Element

from davtransfer.lib.namespace import nsmap

if sys.version_info < (3, 11):
    from typing_extensions import Self
else:
    from typing import Self


class BaseElement:
    """
    An empty XML element with child elements, the only shape a PROPFIND
    body is made of.  ``a + b`` appends b (or every element of an
    iterable b) to a and returns a.
    """

    tag: ClassVar[Optional[str]] = None
    ## extra namespace declarations needed by this element only
    extra_nsmap: ClassVar[Optional[Dict[str, str]]] = None

    def __init__(self) -> None:
        self.children: List[BaseElement] = []

    def __add__(self, other: Union["BaseElement", Iterable["BaseElement"]]) -> Self:
        return self.append(other)

    def __repr__(self) -> str:
        return "%s(%d children)" % (self.__class__.__name__, len(self.children))

    def xmlelement(self) -> _Element:
        if self.tag is None:
            raise ValueError("Unexpected value None for self.tag")
        root = etree.Element(self.tag, nsmap={**nsmap, **(self.extra_nsmap or {})})
        for c in self.children:
            root.append(c.xmlelement())
        return root

    def append(self, element: Union["BaseElement", Iterable["BaseElement"]]) -> Self:
        if isinstance(element, Iterable):
            self.children.extend(element)
        else:
            self.children.append(element)
        return self
