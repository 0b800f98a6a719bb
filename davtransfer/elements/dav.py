#!/usr/bin/env python
from typing import ClassVar

from .base import BaseElement
from davtransfer.lib.namespace import ns


# Operations
class Propfind(BaseElement):
    tag: ClassVar[str] = ns("D", "propfind")


# Components / Data


class Prop(BaseElement):
    tag: ClassVar[str] = ns("D", "prop")


class Collection(BaseElement):
    tag: ClassVar[str] = ns("D", "collection")


# Properties
class ResourceType(BaseElement):
    tag: ClassVar[str] = ns("D", "resourcetype")


class GetContentType(BaseElement):
    tag: ClassVar[str] = ns("D", "getcontenttype")


class GetContentLength(BaseElement):
    tag: ClassVar[str] = ns("D", "getcontentlength")


class GetEtag(BaseElement):
    tag: ClassVar[str] = ns("D", "getetag")


class CreationDate(BaseElement):
    tag: ClassVar[str] = ns("D", "creationdate")


class GetLastModified(BaseElement):
    tag: ClassVar[str] = ns("D", "getlastmodified")


class Href(BaseElement):
    tag: ClassVar[str] = ns("D", "href")


class MultiStatus(BaseElement):
    tag: ClassVar[str] = ns("D", "multistatus")


class Response(BaseElement):
    tag: ClassVar[str] = ns("D", "response")


class PropStat(BaseElement):
    tag: ClassVar[str] = ns("D", "propstat")


class Status(BaseElement):
    tag: ClassVar[str] = ns("D", "status")
