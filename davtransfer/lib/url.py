#!/usr/bin/env python
import posixpath
import sys
import urllib.parse
from typing import Any
from typing import cast
from typing import Optional
from typing import Union
from urllib.parse import ParseResult
from urllib.parse import quote
from urllib.parse import SplitResult
from urllib.parse import unquote
from urllib.parse import urlparse
from urllib.parse import urlunparse

from davtransfer.lib.python_utilities import to_normal_str
from davtransfer.lib.python_utilities import to_unicode

if sys.version_info < (3, 11):
    from typing_extensions import Self
else:
    from typing import Self

## Characters that are left alone when a decoded remote path is put on
## the wire.  Everything else, including "%", is escaped, so a path that
## happens to contain "%20" literally is sent as "%2520".
PATH_SAFE = "/~!$&'()*+,=:@"


def quote_path(path: str) -> str:
    """Percent-encode a decoded remote path for use in a request line"""
    return quote(path, safe=PATH_SAFE)


def unquote_path(path: str) -> str:
    """Inverse of quote_path"""
    return unquote(path)


def has_control_characters(path: str) -> bool:
    return any(ord(c) < 0x20 or ord(c) == 0x7F for c in path)


class URL:
    """
    This class is for wrapping URLs into objects.  It's used
    internally in the library, end users should not need to know
    anything about this class.  All methods that accept URLs can be
    fed either with a URL object, a string or a urlparse.ParsedURL
    object.

    Addresses may be one out of three:

    1) a path relative to the DAV root, i.e. "Photos/2023" may refer to
    "https://cloud.example.com/remote.php/webdav/Photos/2023".

    2) an absolute path, i.e. "/remote.php/webdav/Photos/2023"

    3) a fully qualified URL, i.e.
    "https://cloud.example.com/remote.php/webdav/Photos/2023".

    Paths held by URL objects are always in their wire (encoded) form.
    """

    def __init__(self, url: Union[str, ParseResult, SplitResult]) -> None:
        if isinstance(url, ParseResult) or isinstance(url, SplitResult):
            self.url_parsed: Optional[Union[ParseResult, SplitResult]] = url
            self.url_raw = None
        else:
            self.url_raw = url
            self.url_parsed = None

    def __bool__(self) -> bool:
        if self.url_raw or self.url_parsed:
            return True
        else:
            return False

    def __ne__(self, other: object) -> bool:
        return not self == other

    def __eq__(self, other: object) -> bool:
        if str(self) == str(other):
            return True
        # The URLs could have insignificant differences
        me = self.canonical()
        if hasattr(other, "canonical"):
            other = other.canonical()
        return str(me) == str(other)

    def __hash__(self) -> int:
        return hash(str(self))

    @classmethod
    def objectify(cls, url: Union[Self, str, ParseResult, SplitResult]) -> "URL":
        if url is None or isinstance(url, URL):
            return url
        else:
            return URL(url)

    # To deal with all kind of methods/properties in the ParseResult
    # class
    def __getattr__(self, attr: str):
        if "url_parsed" not in vars(self):
            raise AttributeError
        if self.url_parsed is None:
            self.url_parsed = cast(urllib.parse.ParseResult, urlparse(self.url_raw))
        if hasattr(self.url_parsed, attr):
            return getattr(self.url_parsed, attr)
        else:
            return getattr(self.__unicode__(), attr)

    def __str__(self) -> str:
        return to_normal_str(self.__unicode__())

    def __unicode__(self) -> str:
        if self.url_raw is None:
            if self.url_parsed is None:
                raise ValueError("Unexpected value None for self.url_parsed")

            self.url_raw = self.url_parsed.geturl()
        return to_unicode(self.url_raw)

    def __repr__(self) -> str:
        return "URL(%s)" % str(self)

    def strip_trailing_slash(self) -> "URL":
        if str(self)[-1] == "/":
            return URL.objectify(str(self)[:-1])
        else:
            return self

    def canonical(self) -> "URL":
        """
        a canonical URL ... make sure there are no double slashes, and
        to make sure the URL is always the same, run it through the
        urlparser, and make sure path is properly quoted
        """
        arr = list(cast(urllib.parse.ParseResult, urlparse(str(self))))
        ## quoting path and removing double slashes
        arr[2] = quote_path(unquote(arr[2].replace("//", "/")))
        ## sensible defaults
        if not arr[0]:
            arr[0] = "https"
        if arr[1] and ":" not in arr[1]:
            if arr[0] == "https":
                portpart = ":443"
            elif arr[0] == "http":
                portpart = ":80"
            else:
                portpart = ""
            arr[1] += portpart

        return URL(urlunparse(arr))

    def same_origin(self, other: Any) -> bool:
        other = URL.objectify(other)
        return (
            not other.scheme
            or not self.scheme
            or (
                other.scheme == self.scheme
                and other.hostname == self.hostname
                and other.port == self.port
            )
        )

    def join(self, path: Any) -> "URL":
        """
        assumes this object is the base URL or base path.  If the path
        is relative, it should be appended to the base.  If the path
        is absolute, it should be added to the connection details of
        self.  If the path already contains connection details and the
        connection details differ from self, raise an error.
        """
        pathAsString = str(path)
        if not path or not pathAsString:
            return self
        path = URL.objectify(path)
        if not self.same_origin(path):
            raise ValueError("%s can't be joined with %s" % (self, path))

        if path.path[0] == "/":
            ret_path = path.path
        else:
            sep = "/"
            if self.path.endswith("/"):
                sep = ""
            ret_path = "%s%s%s" % (self.path, sep, path.path)
        return URL(
            ParseResult(
                self.scheme or path.scheme,
                self.netloc or path.netloc,
                ret_path,
                path.params,
                path.query,
                path.fragment,
            )
        )

    def contains(self, other: Any) -> bool:
        """
        True if other (a URL, or an encoded absolute path) lies at or
        below self once "." and ".." segments are resolved.
        """
        other = URL.objectify(other)
        if not self.same_origin(other):
            return False
        base = posixpath.normpath(unquote(self.path) or "/")
        target = posixpath.normpath(unquote(other.path) or "/")
        if base == "/":
            return True
        return target == base or target.startswith(base.rstrip("/") + "/")
