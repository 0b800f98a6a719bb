#!/usr/bin/env python
import logging
import os
from typing import Optional

from davtransfer import __version__

## Environmental variables prepended with "PYTHON_DAVTRANSFER" are used for debug purposes,
## environmental variables prepended with "DAVTRANSFER_" are for connection parameters
## one of DEBUG_PDB, DEBUG, DEVELOPMENT, PRODUCTION
debugmode = os.environ.get("PYTHON_DAVTRANSFER_DEBUGMODE")
if not debugmode:
    if "dev" in __version__:
        debugmode = "DEVELOPMENT"
    else:
        debugmode = "PRODUCTION"

log = logging.getLogger("davtransfer")
if debugmode.startswith("DEBUG"):
    log.setLevel(logging.DEBUG)


def errmsg(r) -> str:
    """Utility for formatting an error response to an error string"""
    return "%s %s\n\n%s" % (r.status, r.reason, r.body[:500])


def weirdness(*reasons):
    from davtransfer.lib.debug import xmlstring

    reason = " : ".join([xmlstring(x) for x in reasons])
    log.warning(f"Deviation from expectations found: {reason}")
    if debugmode == "DEBUG_PDB":
        log.error(f"Dropping into debugger due to {reason}")
        import pdb

        pdb.set_trace()


def assert_(condition: object) -> None:
    try:
        assert condition
    except AssertionError:
        if debugmode == "PRODUCTION":
            log.error("Deviation from expectations found.", exc_info=True)
        elif debugmode == "DEBUG_PDB":
            log.error("Deviation from expectations found.  Dropping into debugger")
            import pdb

            pdb.set_trace()
        else:
            raise


class DAVError(Exception):
    url: Optional[str] = None
    reason: str = "no reason"
    status: Optional[int] = None

    def __init__(
        self,
        url: Optional[str] = None,
        reason: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        if url:
            self.url = url
        if reason:
            self.reason = reason
        if status is not None:
            self.status = status

    def __str__(self) -> str:
        return "%s at '%s', reason %s" % (
            self.__class__.__name__,
            self.url,
            self.reason,
        )


class InvalidPathError(DAVError):
    """
    A remote path was rejected before any request was built, either
    because it carries control characters or because it resolves to
    somewhere outside the base URL.  Caller error, never retried.
    """

    pass


class MalformedResponseError(DAVError):
    """
    The server answered with a body that could not be decoded as a
    multistatus document.
    """

    pass


class RecoverableError(DAVError):
    """
    Transient failure at the network level (connection reset, timeout,
    5xx).  Whether and when to retry is up to the caller.
    """

    pass


class CredentialError(DAVError):
    """
    The server rejected the credentials (HTTP 401 or 403).  Must not be
    retried without refreshing the credentials first.
    """

    pass


class RejectedError(DAVError):
    """
    The server understood the request and refused it for a reason that
    a plain retry won't fix (404, 409, 412, 507 ...).
    """

    pass
