#!/usr/bin/env python
from typing import ClassVar

from .base import BaseElement
from davtransfer.lib.namespace import ns
from davtransfer.lib.namespace import nsmap2


# Properties
class GetCTag(BaseElement):
    tag: ClassVar[str] = ns("CS", "getctag")
    extra_nsmap = {"CS": nsmap2["CS"]}
