# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
Parse and evaluate the WebDAV `If` request header.

The header is parsed into a list of :class:`Condition` tuples, one per list
production. Every condition holds the resource path it applies to, and a
tuple of :class:`IfToken` entries (lock tokens or entity tags)::

    If: </a> (<opaquelocktoken:1234> ["etag-1"]) (Not <DAV:no-lock>)

    [Condition(uri='/a', tokens=(IfToken(token='opaquelocktoken:1234', ...),
                                 IfToken(token='', etag='"etag-1"', ...))),
     Condition(uri='/a', tokens=(IfToken(token='DAV:no-lock', negated=True, ...),))]

Untagged lists apply to the request path.

See http://www.webdav.org/specs/rfc4918.html#HEADER_If
"""

import re
from collections import namedtuple

from davlock import util
from davlock.dav_error import BadRequestError
from davlock.lock_manager import normalize_lock_root

__docformat__ = "reStructuredText"

_logger = util.get_module_logger(__name__)

#: One state token or entity tag of an `If` list.
#: `valid_token` is set by :meth:`LockManager.validate_tokens`.
IfToken = namedtuple("IfToken", ["token", "negated", "etag", "valid_token"])
IfToken.__new__.__defaults__ = (False, "", False)

#: One `If` list, applied to a resource path.
Condition = namedtuple("Condition", ["uri", "tokens"])

reIfSeparator = re.compile(r"(\<([^>]+)\>)|(\(([^\)]+)\))")
reIfListItem = re.compile(r"(Not)|\<([^>]*)\>|\[([^\]]*)\]", re.I)


def parse_if_header(if_header, request_path, mount_path=""):
    """Return a list of :class:`Condition` for an `If` header value.

    if_header:
        Raw header value (may be None or empty).
    request_path:
        Resource path of the request, used for untagged lists.
    mount_path:
        Stripped from tagged resource URLs.

    Raise HTTP_BAD_REQUEST, if the header contains no list.
    """
    if not if_header or not if_header.strip():
        return []

    request_path = normalize_lock_root(request_path or "/")
    conditions = []
    uri = request_path
    for tag_part, tag_url, list_part, list_content in reIfSeparator.findall(if_header):
        if tag_part:
            uri = normalize_lock_root(util.url_to_path(tag_url, mount_path))
            continue

        tokens = []
        negated = False
        for not_part, token, etag in reIfListItem.findall(list_content):
            if not_part:
                negated = True
                continue
            if etag or not token:
                tokens.append(IfToken("", negated, etag.strip()))
            else:
                tokens.append(IfToken(token.strip(), negated))
            negated = False
        conditions.append(Condition(uri, tuple(tokens)))

    if not conditions:
        raise BadRequestError(f"Invalid If header: {if_header!r}.")

    _logger.debug(f"parse_if_header({if_header!r}) -> {conditions}")
    return conditions


def test_conditions(conditions, get_etag):
    """Return True, if the `If` header conditions are met.

    Every list is evaluated against its own resource path. A list is true, if
    all its tokens match; the header is true if at least one list is true
    (or no conditions were passed).

    conditions:
        List of Conditions, as returned by validate_tokens(), i.e. known lock
        tokens are flagged with `valid_token`.
    get_etag:
        Callable that returns the current entity tag of a path (or None).
    """
    if not conditions:
        return True

    for condition in conditions:
        match_failed = False
        for if_token in condition.tokens:
            if if_token.token:
                result = if_token.valid_token
            else:
                result = get_etag(condition.uri) == if_token.etag
            if result == if_token.negated:
                match_failed = True
                break
        if not match_failed:
            return True

    _logger.debug(f"test_conditions({conditions}) -> FAILED")
    return False


# Tell pytest to ignore this function
test_conditions.__test__ = False
