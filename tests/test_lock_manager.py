# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""Unit tests for davlock.lock_manager"""

import unittest

from davlock import lock_manager, lock_storage
from davlock.dav_error import (
    HTTP_CONFLICT,
    HTTP_LOCKED,
    HTTP_METHOD_NOT_ALLOWED,
    PRECONDITION_CODE_LockConflict,
    PRECONDITION_CODE_MissingLockToken,
    BadRequestError,
    ConflictingLockError,
    LockedError,
    LockTokenMismatchError,
    MethodNotAllowedError,
)
from davlock.if_header import Condition, IfToken
from davlock.lock_manager import (
    LOCK_SCOPE_EXCLUSIVE,
    LOCK_SCOPE_SHARED,
    Lock,
    LockManager,
    evaluate_conflict,
)
from davlock.resource_tree import MemoryResourceTree
from davlock.xml_tools import string_to_xml


def _lockinfo(scope=LOCK_SCOPE_EXCLUSIVE, owner="alice"):
    return string_to_xml(
        '<D:lockinfo xmlns:D="DAV:">'
        f"<D:lockscope><D:{scope}/></D:lockscope>"
        "<D:locktype><D:write/></D:locktype>"
        f"<D:owner>{owner}</D:owner>"
        "</D:lockinfo>"
    )


def _conditions(uri, *lock_tokens):
    return [Condition(uri, tuple(IfToken(t, False) for t in lock_tokens))]


# ========================================================================
# ConflictTest
# ========================================================================
class ConflictTest(unittest.TestCase):
    """Test evaluate_conflict()."""

    def testPreconditions(self):
        """Environment must be set."""
        self.assertTrue(
            __debug__, "__debug__ must be True, otherwise asserts are ignored"
        )

    def testNoLocks(self):
        self.assertIsNone(evaluate_conflict([], LOCK_SCOPE_EXCLUSIVE))
        self.assertIsNone(evaluate_conflict([], LOCK_SCOPE_SHARED))

    def testSharedWithShared(self):
        shared = Lock("/a", scope=LOCK_SCOPE_SHARED, token="t1")
        self.assertIsNone(evaluate_conflict([shared], LOCK_SCOPE_SHARED))

    def testExclusiveBlocksAll(self):
        excl = Lock("/a", scope=LOCK_SCOPE_EXCLUSIVE, token="t1")
        for scope in (LOCK_SCOPE_SHARED, LOCK_SCOPE_EXCLUSIVE):
            with self.assertRaises(ConflictingLockError) as cm:
                evaluate_conflict([excl], scope)
            self.assertIs(cm.exception.lock, excl)
            self.assertEqual(cm.exception.value, HTTP_LOCKED)
            self.assertEqual(
                cm.exception.err_condition.condition_code,
                PRECONDITION_CODE_LockConflict,
            )
            self.assertEqual(cm.exception.err_condition.hrefs, ["/a"])

    def testSharedBlocksExclusive(self):
        shared = Lock("/a", scope=LOCK_SCOPE_SHARED, token="t1")
        with self.assertRaises(ConflictingLockError) as cm:
            evaluate_conflict([shared], LOCK_SCOPE_EXCLUSIVE)
        self.assertIs(cm.exception.lock, shared)


# ========================================================================
# LockTest
# ========================================================================
class _LockManagerTestBase(unittest.TestCase):
    def setUp(self):
        self.storage = lock_storage.LockStorageDict()
        self.tree = MemoryResourceTree()
        self.lm = LockManager(self.storage, self.tree)

    def tearDown(self):
        self.storage.clear()
        del self.lm

    def _lock(self, url, scope=LOCK_SCOPE_EXCLUSIVE, depth="infinity", timeout=None):
        lock, _created = self.lm.lock(
            url, lockinfo_el=_lockinfo(scope), depth=depth, timeout=timeout
        )
        return lock


class LockTest(_LockManagerTestBase):
    """Test LockManager.lock() for new and refreshed locks."""

    def testPreconditions(self):
        """Environment must be set."""
        self.assertTrue(
            __debug__, "__debug__ must be True, otherwise asserts are ignored"
        )

    def testNewLock(self):
        lm = self.lm
        self.assertEqual(lm.get_http_methods(), ["LOCK", "UNLOCK"])
        self.assertEqual(lm.get_dav_compliance_level(), "1,2")

        lock, created = lm.lock(
            "/a", lockinfo_el=_lockinfo(), depth="infinity", timeout="Second-3600"
        )
        self.assertTrue(created)
        self.assertTrue(self.tree.exists("/a"))
        self.assertEqual(self.tree.get_content("/a"), b"")

        self.assertEqual(lock.root, "/a")
        self.assertEqual(lock.scope, LOCK_SCOPE_EXCLUSIVE)
        self.assertEqual(lock.depth, "infinity")
        self.assertEqual(lock.timeout, 3600)
        self.assertIn("alice", lock.owner)
        self.assertEqual(len(lock.token), 36)
        self.assertEqual(lock.lock_token, "opaquelocktoken:" + lock.token)
        self.assertEqual(lock.header_token, f"<opaquelocktoken:{lock.token}>")

        self.assertEqual(lm.get_lock(lock.token), lock)
        self.assertEqual(lm.get_locks("/a"), [lock])

        # Any further lock is rejected
        for scope in (LOCK_SCOPE_SHARED, LOCK_SCOPE_EXCLUSIVE):
            with self.assertRaises(ConflictingLockError) as cm:
                lm.lock("/a", lockinfo_el=_lockinfo(scope))
            self.assertEqual(cm.exception.lock, lock)

    def testLockExistingResource(self):
        self.tree.set_content("/a", b"data")
        lock, created = self.lm.lock("/a", lockinfo_el=_lockinfo())
        self.assertFalse(created)
        self.assertEqual(self.tree.get_content("/a"), b"data")
        # Storage default timeout
        self.assertEqual(lock.timeout, self.storage.LOCK_TIME_OUT_DEFAULT)

    def testSharedLocks(self):
        lock1 = self._lock("/b", LOCK_SCOPE_SHARED)
        lock2 = self._lock("/b", LOCK_SCOPE_SHARED)
        self.assertNotEqual(lock1.token, lock2.token)
        self.assertEqual(set(self.lm.get_locks("/b")), {lock1, lock2})

        with self.assertRaises(ConflictingLockError):
            self._lock("/b", LOCK_SCOPE_EXCLUSIVE)

    def testParentLocks(self):
        self.tree.make_collection("/col")
        self._lock("/col", depth="infinity")
        with self.assertRaises(ConflictingLockError):
            self._lock("/col/new", LOCK_SCOPE_SHARED)
        # The conflict did not create a resource
        self.assertFalse(self.tree.exists("/col/new"))

        self.tree.make_collection("/flat")
        self._lock("/flat", depth="0")
        lock = self._lock("/flat/member")
        self.assertEqual(lock.root, "/flat/member")

    def testInvalidRequests(self):
        with self.assertRaises(BadRequestError):
            self._lock("/a", depth="1")
        with self.assertRaises(BadRequestError):
            self.lm.lock("/a", lockinfo_el=string_to_xml('<D:prop xmlns:D="DAV:"/>'))
        with self.assertRaises(BadRequestError):
            self.lm.lock(
                "/a",
                lockinfo_el=string_to_xml(
                    '<D:lockinfo xmlns:D="DAV:">'
                    "<D:locktype><D:read/></D:locktype>"
                    "</D:lockinfo>"
                ),
            )
        # Invalid Timeout header
        with self.assertRaises(BadRequestError):
            self._lock("/a", timeout="Minutes-3")
        self.assertFalse(self.tree.exists("/a"))
        self.assertEqual(self.lm.get_locks("/a"), [])

    def testDefaultScope(self):
        lock, _created = self.lm.lock(
            "/a",
            lockinfo_el=string_to_xml(
                '<D:lockinfo xmlns:D="DAV:">'
                "<D:locktype><D:write/></D:locktype>"
                "<D:unknown>ignored</D:unknown>"
                "</D:lockinfo>"
            ),
        )
        self.assertEqual(lock.scope, LOCK_SCOPE_SHARED)
        self.assertEqual(lock.owner, "")

    def testRefresh(self):
        lock = self._lock("/a", timeout="Second-100")
        refreshed, created = self.lm.lock(
            "/a", timeout="Second-200", conditions=_conditions("/a", lock.lock_token)
        )
        self.assertFalse(created)
        self.assertEqual(refreshed.token, lock.token)
        self.assertEqual(refreshed.scope, lock.scope)
        self.assertEqual(refreshed.depth, lock.depth)
        self.assertEqual(refreshed.owner, lock.owner)
        self.assertEqual(refreshed.root, "/a")
        self.assertEqual(refreshed.timeout, 200)

        # No Timeout header keeps the current lease
        refreshed, _created = self.lm.lock(
            "/a", conditions=_conditions("/a", lock.lock_token)
        )
        self.assertEqual(refreshed.timeout, 200)

    def testRefreshThroughChild(self):
        self.tree.make_collection("/col")
        lock = self._lock("/col")
        refreshed, created = self.lm.lock(
            "/col/x", conditions=_conditions("/col/x", lock.lock_token)
        )
        self.assertFalse(created)
        self.assertEqual(refreshed.root, "/col")
        self.assertEqual(refreshed.token, lock.token)
        self.assertFalse(self.tree.exists("/col/x"))

    def testRefreshErrors(self):
        # No locks at all: a body was required
        with self.assertRaises(BadRequestError):
            self.lm.lock("/a", conditions=_conditions("/a", "opaquelocktoken:foo"))

        lock = self._lock("/a")
        with self.assertRaises(LockedError) as cm:
            self.lm.lock("/a", conditions=_conditions("/a", "opaquelocktoken:foo"))
        self.assertEqual(cm.exception.lock, lock)
        with self.assertRaises(LockedError):
            self.lm.lock("/a")

    def testLockProperties(self):
        lock = self._lock("/a")
        props = self.lm.get_lock_properties("/a", href_prefix="/dav")
        discovery = props["{DAV:}lockdiscovery"]
        self.assertEqual(
            discovery.find(".//{DAV:}locktoken/{DAV:}href").text, lock.lock_token
        )
        self.assertEqual(discovery.find(".//{DAV:}lockroot/{DAV:}href").text, "/dav/a")
        self.assertEqual(discovery.find(".//{DAV:}owner").text, "alice")
        self.assertEqual(discovery.find(".//{DAV:}depth").text, "infinity")
        supported = props["{DAV:}supportedlock"]
        self.assertEqual(len(supported.findall("{DAV:}lockentry")), 2)


# ========================================================================
# UnlockTest
# ========================================================================
class UnlockTest(_LockManagerTestBase):
    """Test LockManager.unlock()."""

    def testPreconditions(self):
        """Environment must be set."""
        self.assertTrue(
            __debug__, "__debug__ must be True, otherwise asserts are ignored"
        )

    def testUnlock(self):
        lock = self._lock("/a")
        removed = self.lm.unlock("/a", lock.header_token)
        self.assertEqual(removed, lock)
        self.assertIsNone(self.lm.get_lock(lock.token))
        self.assertEqual(self.lm.get_locks("/a"), [])

        # The token is gone for good
        with self.assertRaises(LockTokenMismatchError) as cm:
            self.lm.unlock("/a", lock.header_token)
        self.assertEqual(cm.exception.value, HTTP_CONFLICT)
        with self.assertRaises(BadRequestError):
            self.lm.lock("/a", conditions=_conditions("/a", lock.lock_token))

    def testUnlockWithoutBrackets(self):
        self.storage.create(
            "/a", Lock("/a", scope=LOCK_SCOPE_EXCLUSIVE, token="token123")
        )
        self.lm.unlock("/a", "opaquelocktoken:token123")
        self.assertIsNone(self.storage.get("token123"))

    def testUnlockBareToken(self):
        """A Lock-Token without brackets and scheme still matches."""
        self.storage.create(
            "/a", Lock("/a", scope=LOCK_SCOPE_EXCLUSIVE, token="token123")
        )
        lock = self.lm.unlock("/a", "token123")
        self.assertEqual(lock.token, "token123")
        self.assertIsNone(self.storage.get("token123"))
        self.assertEqual(self.lm.get_locks("/a"), [])

    def testUnlockErrors(self):
        lock = self._lock("/a")
        with self.assertRaises(BadRequestError):
            self.lm.unlock("/a", None)
        with self.assertRaises(BadRequestError):
            self.lm.unlock("/a", "  ")
        with self.assertRaises(LockTokenMismatchError):
            self.lm.unlock("/a", "<opaquelocktoken:other>")

        # Only direct locks can be released
        self.tree.make_collection("/col")
        col_lock = self._lock("/col")
        with self.assertRaises(LockTokenMismatchError):
            self.lm.unlock("/col/x", col_lock.header_token)
        self.assertEqual(self.lm.get_lock(lock.token), lock)
        self.assertEqual(self.lm.get_lock(col_lock.token), col_lock)

    def testRemoveAllLocks(self):
        self.tree.make_collection("/col")
        self.tree.make_collection("/col/sub")
        self._lock("/col/x")
        self._lock("/col/sub/y")
        other = self._lock("/other")
        self.lm.remove_all_locks("/col")
        self.assertEqual(self.lm.get_locks("/col", include_children=True), [])
        self.assertEqual(self.lm.get_locks("/other"), [other])


# ========================================================================
# GateTest
# ========================================================================
class GateTest(_LockManagerTestBase):
    """Test LockManager.validate_tokens()."""

    def testPreconditions(self):
        """Environment must be set."""
        self.assertTrue(
            __debug__, "__debug__ must be True, otherwise asserts are ignored"
        )

    def testMissingToken(self):
        lock = self._lock("/a")
        with self.assertRaises(LockedError) as cm:
            self.lm.validate_tokens("PUT", "/a", [])
        e = cm.exception
        self.assertEqual(e.lock, lock)
        self.assertEqual(e.value, HTTP_LOCKED)
        self.assertEqual(
            e.err_condition.condition_code, PRECONDITION_CODE_MissingLockToken
        )
        self.assertEqual(e.err_condition.hrefs, ["/a"])

        # Tokens of other locks don't help
        with self.assertRaises(LockedError):
            self.lm.validate_tokens(
                "PUT", "/a", _conditions("/a", "opaquelocktoken:foo")
            )

    def testSubmittedToken(self):
        lock = self._lock("/a")
        conditions = _conditions("/a", lock.lock_token)
        res = self.lm.validate_tokens("PUT", "/a", conditions)
        self.assertTrue(res[0].tokens[0].valid_token)
        self.assertEqual(res[0].uri, "/a")
        # Input was not modified
        self.assertFalse(conditions[0].tokens[0].valid_token)

    def testReadMethods(self):
        self._lock("/a")
        for method in ("GET", "HEAD", "OPTIONS", "PROPFIND"):
            self.assertEqual(self.lm.validate_tokens(method, "/a", []), [])

    def testDeleteChildLocks(self):
        self.tree.make_collection("/p")
        lock_x = self._lock("/p/x")
        lock_y = self._lock("/p/y")
        with self.assertRaises(LockedError):
            self.lm.validate_tokens("DELETE", "/p", [])
        with self.assertRaises(LockedError):
            self.lm.validate_tokens("DELETE", "/p", _conditions("/p", lock_x.lock_token))
        self.lm.validate_tokens(
            "DELETE", "/p", _conditions("/p", lock_x.lock_token, lock_y.lock_token)
        )
        # Child locks don't protect the parent itself
        self.assertEqual(self.lm.validate_tokens("PUT", "/p", []), [])

    def testMoveCopy(self):
        self.tree.make_collection("/src")
        src_lock = self._lock("/src")
        with self.assertRaises(LockedError):
            self.lm.validate_tokens("MOVE", "/src", [], destination="/dst")
        self.lm.validate_tokens(
            "MOVE", "/src", _conditions("/src", src_lock.lock_token), destination="/dst"
        )
        # COPY only modifies the destination
        self.lm.validate_tokens("COPY", "/src", [], destination="/dst")

        dst_lock = self._lock("/dst")
        with self.assertRaises(LockedError) as cm:
            self.lm.validate_tokens("COPY", "/src", [], destination="/dst")
        self.assertEqual(cm.exception.lock, dst_lock)
        self.lm.validate_tokens(
            "COPY", "/src", _conditions("/dst", dst_lock.lock_token), destination="/dst"
        )

    def testRequiredLocksAreUnique(self):
        self.tree.make_collection("/p")
        lock = self._lock("/p")
        must_locks = self.lm.get_required_locks("MOVE", "/p/a", destination="/p/b")
        self.assertEqual(must_locks, [lock])
        self.lm.validate_tokens(
            "MOVE", "/p/a", _conditions("/p/a", lock.lock_token), destination="/p/b"
        )

    def testOddLockToken(self):
        other = self._lock("/other")
        res = self.lm.validate_tokens(
            "PUT",
            "/a",
            [
                Condition("/other", (IfToken(other.lock_token, False),)),
                Condition("/a", (IfToken("opaquelocktoken:unknown", False),)),
                Condition("/a", (IfToken(other.token, False),)),
            ],
        )
        self.assertTrue(res[0].tokens[0].valid_token)
        self.assertFalse(res[1].tokens[0].valid_token)
        # Tokens without prefix are never valid
        self.assertFalse(res[2].tokens[0].valid_token)

    def testNoStorage(self):
        lm = LockManager(None, self.tree)
        self.assertFalse(lm.is_enabled())
        self.assertEqual(lm.get_http_methods(), [])
        self.assertEqual(lm.get_dav_compliance_level(), "1")
        props = lm.get_lock_properties("/a")
        self.assertEqual(len(props["{DAV:}lockdiscovery"]), 0)
        self.assertEqual(len(props["{DAV:}supportedlock"]), 0)

        conditions = _conditions("/a", "opaquelocktoken:foo")
        res = lm.validate_tokens("PUT", "/a", conditions)
        self.assertFalse(res[0].tokens[0].valid_token)

        with self.assertRaises(MethodNotAllowedError) as cm:
            lm.lock("/a", lockinfo_el=_lockinfo())
        self.assertEqual(cm.exception.value, HTTP_METHOD_NOT_ALLOWED)
        with self.assertRaises(MethodNotAllowedError):
            lm.unlock("/a", "<opaquelocktoken:foo>")
        self.assertFalse(self.tree.exists("/a"))


# ========================================================================
# ToolsTest
# ========================================================================
class ToolsTest(unittest.TestCase):
    """Test lock_manager tool functions."""

    def testPreconditions(self):
        """Environment must be set."""
        self.assertTrue(
            __debug__, "__debug__ must be True, otherwise asserts are ignored"
        )

    def testTools(self):
        self.assertEqual(lock_manager.normalize_lock_root("/a/b/"), "/a/b")
        self.assertEqual(lock_manager.normalize_lock_root("a"), "/a")
        self.assertEqual(lock_manager.normalize_lock_root("/"), "/")
        self.assertNotEqual(
            lock_manager.generate_lock_token(), lock_manager.generate_lock_token()
        )
        self.assertEqual(lock_manager.lock_string(None), "Lock: None")
        self.assertIn("'/a'", lock_manager.lock_string(Lock("/a", token="t1")))


if __name__ == "__main__":
    unittest.main()
