# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
Implements a DAVError class that is used to signal WebDAV and HTTP errors.

The lock coordinator raises one of the specialized subclasses, so callers
may catch exactly the failure they are interested in (or catch
:class:`DAVError` to get any of them):

- :class:`ConflictingLockError`: a new lock collides with an existing lock
- :class:`LockedError`: a lock must be held, but its token was not submitted
- :class:`BadRequestError`: malformed LOCK/UNLOCK request
- :class:`LockTokenMismatchError`: UNLOCK token does not match a lock on the URL
- :class:`MethodNotAllowedError`: locking is not enabled
"""

import datetime
from html import escape

from davlock import __version__, xml_tools
from davlock.xml_tools import etree

__docformat__ = "reStructuredText"

# ========================================================================
# List of HTTP Response Codes.
# ========================================================================
HTTP_OK = 200
HTTP_CREATED = 201
HTTP_NO_CONTENT = 204
HTTP_MULTI_STATUS = 207

HTTP_NOT_MODIFIED = 304
HTTP_BAD_REQUEST = 400
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_METHOD_NOT_ALLOWED = 405
HTTP_CONFLICT = 409
HTTP_PRECONDITION_FAILED = 412
HTTP_MEDIATYPE_NOT_SUPPORTED = 415
HTTP_LOCKED = 423
HTTP_FAILED_DEPENDENCY = 424

HTTP_INTERNAL_ERROR = 500
HTTP_NOT_IMPLEMENTED = 501
HTTP_BAD_GATEWAY = 502


# ========================================================================
# if ERROR_DESCRIPTIONS exists for an error code, the error description will be
# sent as the error response code.
# Otherwise only the numeric code itself is sent.
# ========================================================================
ERROR_DESCRIPTIONS = {
    HTTP_OK: "200 OK",
    HTTP_CREATED: "201 Created",
    HTTP_NO_CONTENT: "204 No Content",
    HTTP_MULTI_STATUS: "207 Multi-Status",
    HTTP_NOT_MODIFIED: "304 Not Modified",
    HTTP_BAD_REQUEST: "400 Bad Request",
    HTTP_FORBIDDEN: "403 Forbidden",
    HTTP_METHOD_NOT_ALLOWED: "405 Method Not Allowed",
    HTTP_NOT_FOUND: "404 Not Found",
    HTTP_CONFLICT: "409 Conflict",
    HTTP_PRECONDITION_FAILED: "412 Precondition Failed",
    HTTP_MEDIATYPE_NOT_SUPPORTED: "415 Media Type Not Supported",
    HTTP_LOCKED: "423 Locked",
    HTTP_FAILED_DEPENDENCY: "424 Failed Dependency",
    HTTP_INTERNAL_ERROR: "500 Internal Server Error",
    HTTP_NOT_IMPLEMENTED: "501 Not Implemented",
    HTTP_BAD_GATEWAY: "502 Bad Gateway",
}

# ========================================================================
# if ERROR_RESPONSES exists for an error code, a html output will be sent as response
# body including the ERROR_RESPONSES value. Otherwise a null response body is sent.
# Mostly for browser viewing
# ========================================================================

ERROR_RESPONSES = {
    HTTP_BAD_REQUEST: "An invalid request was specified",
    HTTP_NOT_FOUND: "The specified resource was not found",
    HTTP_FORBIDDEN: "Access denied to the specified resource",
    HTTP_LOCKED: "The resource is locked",
    HTTP_INTERNAL_ERROR: "An internal server error occurred",
    HTTP_NOT_IMPLEMENTED: "Not implemented",
}


# ========================================================================
# Condition codes
# http://www.webdav.org/specs/rfc4918.html#precondition.postcondition.xml.elements
# ========================================================================

PRECONDITION_CODE_MissingLockToken = "{DAV:}lock-token-submitted"
PRECONDITION_CODE_LockTokenMismatch = "{DAV:}lock-token-matches-request-uri"
PRECONDITION_CODE_LockConflict = "{DAV:}no-conflicting-lock"


class DAVErrorCondition:
    """May be embedded in :class:`DAVError` instances to store additional data.

    Args:
        condition_code (str): Should be PRECONDITION_CODE_...
    """

    def __init__(self, condition_code):
        self.condition_code = condition_code
        self.hrefs = []

    def __str__(self):
        return f"{self.condition_code}({self.hrefs})"

    def add_href(self, href):
        assert href.startswith("/")
        assert self.condition_code in (
            PRECONDITION_CODE_LockConflict,
            PRECONDITION_CODE_MissingLockToken,
        )
        if href not in self.hrefs:
            self.hrefs.append(href)

    def as_xml(self):
        if self.condition_code == PRECONDITION_CODE_MissingLockToken:
            assert (
                len(self.hrefs) > 0
            ), "lock-token-submitted requires at least one href"
        error_el = etree.Element("{DAV:}error")
        cond_el = etree.SubElement(error_el, self.condition_code)
        for href in self.hrefs:
            etree.SubElement(cond_el, "{DAV:}href").text = href
        return error_el

    def as_string(self):
        return xml_tools.xml_to_bytes(self.as_xml(), pretty=True).decode("utf-8")


# ========================================================================
# DAVError
# ========================================================================


class DAVError(Exception):
    """General error class that is used to signal HTTP and WEBDAV errors."""

    def __init__(
        self,
        status_code,
        context_info=None,
        *,
        src_exception=None,
        err_condition=None,
        add_headers=None,
    ):
        # allow passing of Pre- and Postconditions, see
        # http://www.webdav.org/specs/rfc4918.html#precondition.postcondition.xml.elements
        self.value = int(status_code)
        self.context_info = context_info
        self.src_exception = src_exception
        self.err_condition = err_condition
        self.add_headers = add_headers
        if isinstance(err_condition, str):
            self.err_condition = DAVErrorCondition(err_condition)
        assert self.err_condition is None or isinstance(
            self.err_condition, DAVErrorCondition
        )
        super().__init__(self.get_user_info())

    def __repr__(self):
        return f"{self.__class__.__name__}({self.get_user_info()})"

    def __str__(self):
        return self.__repr__()

    def get_user_info(self):
        """Return readable string."""
        if self.value in ERROR_DESCRIPTIONS:
            s = f"{ERROR_DESCRIPTIONS[self.value]}"
        else:
            s = f"{self.value}"

        if self.context_info:
            s += f": {self.context_info}"
        elif self.value in ERROR_RESPONSES:
            s += f": {ERROR_RESPONSES[self.value]}"

        if self.src_exception:
            s += f"\n    Source exception: {self.src_exception!r}"

        if self.err_condition:
            s += f"\n    Error condition: {self.err_condition!r}"
        return s

    def get_response_page(self):
        """Return a tuple (content-type, response page)."""
        # If it has pre- or post-condition: return as XML response
        if self.err_condition:
            return (
                "application/xml; charset=utf-8",
                self.err_condition.as_string().encode("utf-8"),
            )

        # Else return as HTML
        status = get_http_status_string(self)
        html = []
        html.append("<!DOCTYPE html>")
        html.append("<html><head>")
        html.append("  <meta http-equiv='Content-Type' content='text/html; charset=UTF-8'>")
        html.append(f"  <title>{status}</title>")
        html.append("</head><body>")
        html.append(f"  <h1>{status}</h1>")
        html.append(f"  <p>{escape(self.get_user_info())}</p>")
        html.append("<hr/>")
        html.append(
            "<a href='https://github.com/mar10/wsgidav/'>DavLock/{}</a> - {}".format(
                __version__, escape(str(datetime.datetime.now()))
            )
        )
        html.append("</body></html>")
        html = "\n".join(html)
        return ("text/html; charset=utf-8", html.encode("utf-8"))


# ========================================================================
# Lock related errors
# ========================================================================


class ConflictingLockError(DAVError):
    """A new lock request collides with an existing, incompatible lock.

    ``lock`` is the blocking lock.
    """

    def __init__(self, lock, context_info=None):
        self.lock = lock
        err_condition = DAVErrorCondition(PRECONDITION_CODE_LockConflict)
        if lock is not None:
            err_condition.add_href(lock.root)
        super().__init__(
            HTTP_LOCKED,
            context_info or "Resource is locked by a conflicting lock.",
            err_condition=err_condition,
        )


class LockedError(DAVError):
    """The client did not submit the token of a lock that must be held.

    ``lock`` is the first lock that was not satisfied.
    """

    def __init__(self, lock, context_info=None):
        self.lock = lock
        err_condition = None
        if lock is not None:
            err_condition = DAVErrorCondition(PRECONDITION_CODE_MissingLockToken)
            err_condition.add_href(lock.root)
        super().__init__(
            HTTP_LOCKED,
            context_info or "Resource is locked.",
            err_condition=err_condition,
        )


class BadRequestError(DAVError):
    def __init__(self, context_info=None, *, src_exception=None):
        super().__init__(HTTP_BAD_REQUEST, context_info, src_exception=src_exception)


class LockTokenMismatchError(DAVError):
    """The UNLOCK token does not match any lock of the request URL."""

    def __init__(self, context_info=None):
        super().__init__(
            HTTP_CONFLICT,
            context_info or "The lock token does not match the request URL.",
            err_condition=PRECONDITION_CODE_LockTokenMismatch,
        )


class MethodNotAllowedError(DAVError):
    def __init__(self, context_info=None):
        super().__init__(HTTP_METHOD_NOT_ALLOWED, context_info)


# ========================================================================
# Tool functions
# ========================================================================


def get_http_status_code(v):
    """Return HTTP response code as integer, e.g. 204."""
    if hasattr(v, "value"):
        return int(v.value)  # v is a DAVError
    else:
        return int(v)


def get_http_status_string(v):
    """Return HTTP response string, e.g. 204 -> ('204 No Content').
    The return string always includes descriptive text, to satisfy Apache mod_dav.

    `v`: status code or DAVError
    """
    code = get_http_status_code(v)
    try:
        return ERROR_DESCRIPTIONS[code]
    except KeyError:
        return f"{code} Status"


def as_DAVError(e):
    """Convert any non-DAVError exception to HTTP_INTERNAL_ERROR."""
    if isinstance(e, DAVError):
        return e
    elif isinstance(e, Exception):
        return DAVError(HTTP_INTERNAL_ERROR, src_exception=e)
    else:
        return DAVError(HTTP_INTERNAL_ERROR, f"{e}")
