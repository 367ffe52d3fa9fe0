# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
Implements the `LockManager` object that provides the locking functionality.

The LockManager requires a lock storage object to implement persistence.
Two alternative lock storage classes are defined in the lock_storage module:

- davlock.lock_storage.LockStorageDict
- davlock.lock_storage.LockStorageShelve

The lock data model is the :class:`Lock` class with these fields:

    root:
        Resource URL.
    scope:
        Must be 'shared' or 'exclusive'.
    depth:
        Must be '0' or 'infinity'.
    owner:
        String identifying the owner (the serialized <owner> element).
    timeout:
        Requested lease duration in seconds, -1 for 'Infinite', or None to
        use the storage default.
        This value is passed to create() and refresh()
    expire:
        Converted timeout for persistence: expire = time() + timeout.
        Maintained by the lock storage.
    token:
        Automatically generated unique token (without the
        'opaquelocktoken:' prefix).

See http://www.webdav.org/specs/rfc4918.html#lock-model
"""

import time
import uuid

from davlock import util, xml_tools
from davlock.dav_error import (
    BadRequestError,
    ConflictingLockError,
    LockedError,
    LockTokenMismatchError,
    MethodNotAllowedError,
)
from davlock.xml_tools import etree

__docformat__ = "reStructuredText"

_logger = util.get_module_logger(__name__)

LOCK_SCOPE_EXCLUSIVE = "exclusive"
LOCK_SCOPE_SHARED = "shared"

DEPTH_ZERO = "0"
DEPTH_INFINITY = "infinity"

#: Timeout value that requests a lock that never expires
TIMEOUT_INFINITE = -1

#: Lock tokens are passed as `opaquelocktoken:<token>` in `If` headers
LOCK_TOKEN_PREFIX = "opaquelocktoken:"

#: Required locks by HTTP method: (include target, include children of
#: target, include destination)
_METHOD_LOCK_RULES = {
    "DELETE": (True, True, False),
    "MKCOL": (True, False, False),
    "MKCALENDAR": (True, False, False),
    "PROPPATCH": (True, False, False),
    "PUT": (True, False, False),
    "PATCH": (True, False, False),
    "MOVE": (True, True, True),
    "COPY": (False, False, True),
}


# ========================================================================
# Tool functions
# ========================================================================


def generate_lock_token():
    return str(uuid.uuid4())


def normalize_lock_root(path):
    # Normalize root: /foo/bar
    assert path
    path = util.to_str(path)
    path = "/" + path.strip("/")
    return path


def is_lock_expired(lock):
    expire = lock.expire
    return expire is not None and expire >= 0 and expire < time.time()


def lock_string(lock):
    """Return readable rep."""
    if not lock:
        return "Lock: None"

    if lock.expire is None:
        expire = "(not stored)"
    elif lock.expire < 0:
        expire = f"Infinite ({lock.expire})"
    else:
        expire = "{} (in {} seconds)".format(
            util.get_log_time(lock.expire), int(lock.expire - time.time())
        )

    return "Lock(<{}..>, '{}', {}, depth-{}, until {})".format(
        # first 8 significant token characters
        (lock.token or "?" * 8)[:8],
        lock.root,
        lock.scope,
        lock.depth,
        expire,
    )


def validate_lock(lock):
    assert isinstance(lock.root, str)
    assert lock.root.startswith("/")
    assert lock.scope in (LOCK_SCOPE_SHARED, LOCK_SCOPE_EXCLUSIVE)
    assert lock.depth in (DEPTH_ZERO, DEPTH_INFINITY)
    assert isinstance(lock.owner, str), lock
    if lock.timeout is not None:
        # raises TypeError:
        timeout = float(lock.timeout)
        assert timeout > 0 or timeout == TIMEOUT_INFINITE, "timeout must be positive or -1"
    if lock.token is not None:
        assert isinstance(lock.token, str)


# ========================================================================
# Lock
# ========================================================================


class Lock:
    """A write lock on a resource path."""

    def __init__(
        self,
        root,
        *,
        scope=LOCK_SCOPE_SHARED,
        depth=DEPTH_INFINITY,
        owner="",
        timeout=None,
        token=None,
        expire=None,
    ):
        self.root = root
        self.scope = scope
        self.depth = depth
        self.owner = owner
        self.timeout = timeout
        self.token = token
        self.expire = expire

    def __repr__(self):
        return lock_string(self)

    def __eq__(self, other):
        if not isinstance(other, Lock):
            return NotImplemented
        return self.token is not None and self.token == other.token

    def __hash__(self):
        return hash(self.token)

    @property
    def lock_token(self):
        """Return the token as used in `If` headers: 'opaquelocktoken:TOKEN'."""
        return LOCK_TOKEN_PREFIX + self.token

    @property
    def header_token(self):
        """Return the token as used in `Lock-Token` headers: '<opaquelocktoken:TOKEN>'."""
        return f"<{self.lock_token}>"

    def copy(self):
        return Lock(
            self.root,
            scope=self.scope,
            depth=self.depth,
            owner=self.owner,
            timeout=self.timeout,
            token=self.token,
            expire=self.expire,
        )


# ========================================================================
# Lock request parsing and lock property serialization
# ========================================================================


def parse_lock_request(lockinfo_el):
    """Return a new :class:`Lock` for a <lockinfo> request body.

    The scope defaults to 'shared', unless an <exclusive> element is found
    inside <lockscope>. The whole <owner> element is stored, so it can be
    returned verbatim with the lock discovery.
    Raise HTTP_BAD_REQUEST if the body is not a valid <lockinfo>.
    """
    if lockinfo_el.tag != "{DAV:}lockinfo":
        raise BadRequestError(f"Expected <lockinfo> body, got {lockinfo_el.tag!r}.")

    lock_scope = LOCK_SCOPE_SHARED
    lock_owner = ""

    for linode in lockinfo_el:
        if linode.tag == "{DAV:}lockscope":
            if linode.find("{DAV:}exclusive") is not None:
                lock_scope = LOCK_SCOPE_EXCLUSIVE
        elif linode.tag == "{DAV:}locktype":
            for ltnode in linode:
                if ltnode.tag != "{DAV:}write":
                    # Only write locks are defined
                    raise BadRequestError(f"Invalid locktype {ltnode.tag!r}.")
        elif linode.tag == "{DAV:}owner":
            # Store whole <owner> tag, so we can use etree.XML() later
            lock_owner = etree.tostring(linode, encoding="unicode").strip()

    return Lock(None, scope=lock_scope, owner=lock_owner, token=generate_lock_token())


def make_lockdiscovery_el(lock_list, *, href_prefix=""):
    """Return a {DAV:}lockdiscovery element describing a list of locks."""
    lockdiscoveryEL = etree.Element("{DAV:}lockdiscovery")
    for lock in lock_list:
        activelockEL = etree.SubElement(lockdiscoveryEL, "{DAV:}activelock")

        locktypeEL = etree.SubElement(activelockEL, "{DAV:}locktype")
        etree.SubElement(locktypeEL, "{DAV:}write")

        lockscopeEL = etree.SubElement(activelockEL, "{DAV:}lockscope")
        # Note: make sure `{DAV:}` is not handled as format tag:
        etree.SubElement(lockscopeEL, "{}{}".format("{DAV:}", lock.scope))

        etree.SubElement(activelockEL, "{DAV:}depth").text = lock.depth
        if lock.owner:
            # owner may be empty (#64)
            if lock.owner.lstrip().startswith("<"):
                ownerEL = xml_tools.string_to_xml(lock.owner)
            else:
                ownerEL = etree.Element("{DAV:}owner")
                ownerEL.text = lock.owner
            activelockEL.append(ownerEL)

        if lock.timeout is not None and lock.timeout < 0:
            timeout = "Infinite"
        elif lock.expire is not None and lock.expire >= 0:
            # The time remaining on the lock
            timeout = "Second-" + str(max(0, int(lock.expire - time.time())))
        else:
            timeout = "Second-" + str(int(lock.timeout or 0))
        etree.SubElement(activelockEL, "{DAV:}timeout").text = timeout

        locktokenEL = etree.SubElement(activelockEL, "{DAV:}locktoken")
        etree.SubElement(locktokenEL, "{DAV:}href").text = lock.lock_token

        lockrootEL = etree.SubElement(activelockEL, "{DAV:}lockroot")
        etree.SubElement(lockrootEL, "{DAV:}href").text = href_prefix + lock.root

    return lockdiscoveryEL


def make_supportedlock_el(supports_locks=True):
    """Return a {DAV:}supportedlock element (exclusive and shared write locks).

    The element is empty, if <supports_locks> is false.
    """
    supportedlockEL = etree.Element("{DAV:}supportedlock")
    if not supports_locks:
        return supportedlockEL
    for scope in (LOCK_SCOPE_EXCLUSIVE, LOCK_SCOPE_SHARED):
        lockentryEL = etree.SubElement(supportedlockEL, "{DAV:}lockentry")
        lockscopeEL = etree.SubElement(lockentryEL, "{DAV:}lockscope")
        etree.SubElement(lockscopeEL, "{}{}".format("{DAV:}", scope))
        locktypeEL = etree.SubElement(lockentryEL, "{DAV:}locktype")
        etree.SubElement(locktypeEL, "{DAV:}write")
    return supportedlockEL


# ========================================================================
# Conflict evaluation
# ========================================================================


def evaluate_conflict(existing_locks, lock_scope):
    """Raise ConflictingLockError, if a lock of `lock_scope` cannot be granted.

    `existing_locks` are all locks that apply to the target URL, including
    depth-infinity locks of its parents.

    - An exclusive lock conflicts with every new lock.
    - Any existing lock conflicts with a new exclusive lock.
    - Shared locks are compatible with other shared locks (even by the same
      client, see litmus 'double_sharedlock').
    """
    assert lock_scope in (LOCK_SCOPE_SHARED, LOCK_SCOPE_EXCLUSIVE)
    for lock in existing_locks:
        if lock.scope == LOCK_SCOPE_EXCLUSIVE:
            _logger.debug(f" -> DENIED due to exclusive {lock_string(lock)}")
            raise ConflictingLockError(lock)
    if existing_locks and lock_scope != LOCK_SCOPE_SHARED:
        _logger.debug(f" -> DENIED due to shared {lock_string(existing_locks[-1])}")
        raise ConflictingLockError(existing_locks[-1])
    return


# ========================================================================
# LockManager
# ========================================================================
class LockManager:
    """
    Implements locking functionality using a custom storage layer.

    storage:
        Lock storage object (None: locking is disabled, LOCK and UNLOCK
        are rejected and no lock checks are done).
    tree:
        Resource tree, used to create empty resources when an unmapped URL
        is locked (None: don't check).
    """

    def __init__(self, storage, tree=None):
        assert storage is None or hasattr(storage, "get_lock_list")
        self.storage = storage
        self.tree = tree
        if self.storage is not None:
            self.storage.open()

    def __del__(self):
        if getattr(self, "storage", None) is not None:
            self.storage.close()

    def __repr__(self):
        return f"{self.__class__.__name__}({self.storage!r})"

    def is_enabled(self):
        return self.storage is not None

    def get_http_methods(self):
        """Return the additional HTTP methods that are supported."""
        if self.storage is None:
            return []
        return ["LOCK", "UNLOCK"]

    def get_dav_compliance_level(self):
        """Return the value of the `DAV` response header."""
        if self.storage is None:
            return "1"
        return "1,2"

    def get_locks(self, url, *, include_children=False):
        """Return list of locks that protect <url> directly or indirectly.

        Locks of parent URLs are returned if they have depth 'infinity'.
        If include_children is True, locks of all descendants are returned
        as well.
        Side effect: expired locks are purged.
        """
        if self.storage is None:
            return []
        url = normalize_lock_root(url)
        return self.storage.get_lock_list(
            url, include_parents=True, include_children=include_children
        )

    def get_lock(self, token):
        """Return Lock, or None, if not found or expired."""
        if self.storage is None:
            return None
        return self.storage.get(token)

    def get_lock_properties(self, url, *, href_prefix=""):
        """Return a dict with the lock related live properties of <url>.

        Without lock storage both elements are reported empty.
        """
        return {
            "{DAV:}lockdiscovery": make_lockdiscovery_el(
                self.get_locks(url), href_prefix=href_prefix
            ),
            "{DAV:}supportedlock": make_supportedlock_el(self.is_enabled()),
        }

    # --- LOCK ---------------------------------------------------------------

    def lock(self, url, *, lockinfo_el=None, depth=DEPTH_INFINITY, timeout=None, conditions=()):
        """Create a new lock, or refresh an existing lock.

        A new lock is requested by passing the parsed <lockinfo> request body.
        If `lockinfo_el` is None, the request is a refresh and one of the
        tokens in `conditions` must match a lock on <url>.

        url:
            Request path.
        lockinfo_el:
            Parsed request body or None.
        depth:
            '0' or 'infinity' (ignored for refreshs).
        timeout:
            Value of the `Timeout` request header or None.
        conditions:
            Parsed `If` header (list of :class:`~davlock.if_header.Condition`).

        Return a tuple (lock, created), where created is True if an empty
        resource was created for an unmapped URL.
        On error raise a DAVError.
        """
        if self.storage is None:
            raise MethodNotAllowedError(
                "Locking support is not enabled: no lock storage was configured."
            )
        url = normalize_lock_root(url)

        with self.storage.atomic():
            existing_locks = self.get_locks(url)

            if lockinfo_el is not None:
                # New lock: an exclusive lock on <url> prevents any new lock,
                # even before we know the requested scope.
                for existing_lock in existing_locks:
                    if existing_lock.scope == LOCK_SCOPE_EXCLUSIVE:
                        raise ConflictingLockError(existing_lock)

                if depth not in (DEPTH_ZERO, DEPTH_INFINITY):
                    raise BadRequestError("Expected Depth: 'infinity' or '0'.")
                lock = parse_lock_request(lockinfo_el)
                lock.depth = depth
                lock.root = url
                evaluate_conflict(existing_locks, lock.scope)
                is_new = True
            else:
                lock = self._find_refresh_lock(existing_locks, conditions)
                # The resource could have been locked through another URL
                if url != lock.root:
                    _logger.debug(f"Refresh {url!r} re-targeted to {lock.root!r}")
                    url = lock.root
                is_new = False

            timeout_secs = util.read_timeout_value_header(timeout)
            if timeout_secs:
                lock.timeout = timeout_secs

            # http://www.webdav.org/specs/rfc4918.html#rfc.section.9.10.4
            # Locking unmapped URLs: must create an empty resource
            created = False
            if self.tree is not None and not self.tree.exists(url):
                self.tree.create_empty(url)
                created = True

            if is_new:
                lock = self.storage.create(url, lock)
                _logger.info(f"Granted {lock_string(lock)}")
            else:
                lock = self.storage.refresh(lock.token, lock.timeout)
                _logger.info(f"Refreshed {lock_string(lock)}")

        return lock, created

    def _find_refresh_lock(self, existing_locks, conditions):
        """Return the first existing lock whose token was submitted."""
        for existing_lock in existing_locks:
            for condition in conditions:
                for if_token in condition.tokens:
                    if if_token.token == existing_lock.lock_token:
                        return existing_lock

        # If none were found, this request is in error.
        if existing_locks:
            raise LockedError(
                existing_locks[0], "Refresh requested, but no matching lock token."
            )
        raise BadRequestError("An XML body is required for LOCK requests.")

    # --- UNLOCK -------------------------------------------------------------

    def unlock(self, url, lock_token):
        """Remove the lock identified by a `Lock-Token` header.

        Only locks that were created directly on <url> may be released.
        Return the removed Lock.
        """
        if self.storage is None:
            raise MethodNotAllowedError(
                "Locking support is not enabled: no lock storage was configured."
            )
        if not lock_token or not lock_token.strip():
            raise BadRequestError("No lock token was supplied.")

        # Windows sometimes forgets to include < and > in the Lock-Token header
        lock_token = lock_token.strip()
        if not lock_token.startswith("<"):
            lock_token = f"<{lock_token}>"
        if not lock_token[1:].startswith(LOCK_TOKEN_PREFIX):
            lock_token = f"<{LOCK_TOKEN_PREFIX}{lock_token[1:]}"

        url = normalize_lock_root(url)
        with self.storage.atomic():
            lock_list = self.storage.get_lock_list(
                url, include_parents=False, include_children=False
            )
            for lock in lock_list:
                if lock.header_token == lock_token:
                    self.storage.delete(lock.token)
                    _logger.info(f"Released {lock_string(lock)}")
                    return lock

        raise LockTokenMismatchError(f"{lock_token} does not match a lock on {url!r}.")

    def remove_all_locks(self, url, *, include_children=True):
        """Delete all locks that were created on <url> (and its descendants)."""
        if self.storage is None:
            return
        url = normalize_lock_root(url)
        with self.storage.atomic():
            lock_list = self.storage.get_lock_list(
                url, include_parents=False, include_children=include_children
            )
            for lock in lock_list:
                self.storage.delete(lock.token)

    # --- Authorization gate -------------------------------------------------

    def get_required_locks(self, method, url, *, destination=None):
        """Return the locks that must be submitted for a <method> request on <url>.

        The list is ordered and contains every lock only once (locks may be
        reachable by multiple URLs, e.g. because of shared parents).
        """
        rule = _METHOD_LOCK_RULES.get(method)
        if rule is None or self.storage is None:
            # Methods not in that list don't alter any resources
            return []
        include_target, include_children, include_destination = rule

        must_locks = []
        if include_target:
            must_locks.extend(self.get_locks(url, include_children=include_children))
        if include_destination and destination:
            must_locks.extend(self.get_locks(destination))

        unique = {}
        for lock in must_locks:
            unique.setdefault(lock.token, lock)
        return list(unique.values())

    def validate_tokens(self, method, url, conditions, *, destination=None):
        """Check that all locks required by a request were submitted.

        Every token of the `If` header conditions is checked against the
        locks that must be held for <method> on <url> (and <destination> for
        COPY and MOVE).
        A matching token satisfies exactly one required lock. Tokens that
        don't match a required lock are looked up for the condition's own
        URL, so known (but not required) tokens are still flagged as valid.

        Return a copy of `conditions`, where valid tokens have
        ``valid_token=True``.
        Raise LockedError, if a required lock was not submitted.
        """
        must_locks = self.get_required_locks(method, url, destination=destination)
        if must_locks:
            _logger.debug(
                "validate_tokens({} {}): must locks {}".format(
                    method, url, [lock_string(lock) for lock in must_locks]
                )
            )

        validated = []
        for condition in conditions:
            tokens = []
            for if_token in condition.tokens:
                if self._check_token(if_token.token, condition.uri, must_locks):
                    if_token = if_token._replace(valid_token=True)
                tokens.append(if_token)
            validated.append(condition._replace(tokens=tuple(tokens)))

        # If there are required locks left, the resource was locked and we
        # must block the request.
        if must_locks:
            _logger.info(f"{method} {url!r} denied due to {lock_string(must_locks[0])}")
            raise LockedError(must_locks[0])
        return validated

    def _check_token(self, token, condition_url, must_locks):
        """Return True, if <token> is a known lock token.

        A matching required lock is removed from `must_locks`.
        """
        if not token.startswith(LOCK_TOKEN_PREFIX):
            return False
        check_token = token[len(LOCK_TOKEN_PREFIX) :]

        for idx, must_lock in enumerate(must_locks):
            if must_lock.token == check_token:
                del must_locks[idx]
                return True

        # The token may have been passed for a URL that is not 'required' to
        # check, or the lock may be expired.
        # Make sure we really don't know this token.
        for odd_lock in self.get_locks(condition_url):
            if odd_lock.token == check_token:
                return True
        return False
