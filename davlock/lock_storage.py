# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
Implements two storage providers for `LockManager`.

Two alternative lock storage classes are defined here: one in-memory
(dict-based), and one persistent low performance variant using shelve.

See :class:`~davlock.lock_manager.LockManager`
"""

import os
import shelve
import threading
import time
from contextlib import contextmanager

from davlock import util
from davlock.lock_manager import (
    DEPTH_INFINITY,
    generate_lock_token,
    is_lock_expired,
    lock_string,
    normalize_lock_root,
    validate_lock,
)

__docformat__ = "reStructuredText"

_logger = util.get_module_logger(__name__)


# ========================================================================
# LockStorageDict
# ========================================================================
class LockStorageDict:
    """
    An in-memory lock manager storage implementation using a dictionary.

    R/W access is guarded by a re-entrant thread lock, that is also used by
    :meth:`atomic`, so a lock manager can make a sequence of calls
    without interference by other threads.

    Also, to make it work with a Shelve dictionary, modifying dictionary
    members is done by re-assignment and we call a _flush() method.

    This is obviously not persistent, but should be enough in some cases.
    For a persistent implementation, see lock_storage.LockStorageShelve().

    Notes:
        expire is stored as expiration date in seconds since epoch (not in
        seconds until expiration).

    The dictionary is built like::

        { 'URL2TOKEN:/temp/litmus/lockme': ['1d7b86a2-...', 'd7d4c0e5-...'],
          '1d7b86a2-...': Lock('/temp/litmus/lockme', scope='shared', ...),
          'd7d4c0e5-...': Lock('/temp/litmus/lockme', scope='shared', ...),
         }
    """

    LOCK_TIME_OUT_DEFAULT = 604800  # 1 week, in seconds
    LOCK_TIME_OUT_MAX = 4 * 604800  # 1 month, in seconds

    def __init__(self, *, timeout_default=None, timeout_max=None):
        self._dict = None
        self._lock = threading.RLock()
        self.timeout_default = timeout_default or self.LOCK_TIME_OUT_DEFAULT
        self.timeout_max = timeout_max or self.LOCK_TIME_OUT_MAX

    def __repr__(self):
        return self.__class__.__name__

    def _flush(self):
        """Overloaded by Shelve implementation."""
        pass

    def _normalize_timeout(self, timeout):
        if timeout is None:
            return self.timeout_default
        if timeout < 0 or timeout > self.timeout_max:
            return self.timeout_max
        return timeout

    def open(self):
        """Called before first use.

        May be implemented to initialize a storage.
        """
        assert self._dict is None
        self._dict = {}

    def close(self):
        """Called on shutdown."""
        self._dict = None

    def clear(self):
        """Delete all entries."""
        with self._lock:
            if self._dict is not None:
                self._dict.clear()
                self._flush()

    @contextmanager
    def atomic(self):
        """Context manager that serializes a read-check-write sequence."""
        with self._lock:
            yield self

    def get(self, token):
        """Return a Lock for a token.

        If the lock does not exist or is expired, None is returned.

        token:
            lock token (without 'opaquelocktoken:' prefix)
        Returns:
            Lock or <None>

        Side effect: if lock is expired, it will be purged and None is returned.
        """
        with self._lock:
            lock = self._dict.get(token)
            if lock is None:
                return None
            if is_lock_expired(lock):
                _logger.debug(f"Lock timed-out({lock.expire}): {lock_string(lock)}")
                self.delete(token)
                return None
            return lock.copy()

    def create(self, path, lock):
        """Create a direct lock for a resource path.

        path:
            Normalized path (no trailing '/')
        lock:
            Lock instance, a token is generated if missing
        Returns:
            The stored Lock (a copy)

        **Note:** the returned lock may differ from the passed lock:

        - lock.root is ignored and set to the normalized <path>
        - lock.timeout may be normalized and shorter than requested
        - lock.expire is set
        """
        with self._lock:
            assert lock.expire is None, "Use timeout instead of expire"
            assert path and "/" in path

            lock = lock.copy()
            org_path = path
            path = normalize_lock_root(path)
            lock.root = path

            # Normalize timeout from ttl to expire-date
            lock.timeout = self._normalize_timeout(lock.timeout)
            lock.expire = time.time() + lock.timeout

            if lock.token is None:
                lock.token = generate_lock_token()
            if lock.token in self._dict:
                raise ValueError(f"Lock token already exists: {lock.token!r}")

            validate_lock(lock)

            # Store lock
            self._dict[lock.token] = lock

            # Store locked path reference
            key = f"URL2TOKEN:{path}"
            if key not in self._dict:
                self._dict[key] = [lock.token]
            else:
                # Note: Shelve dictionary returns copies, so we must reassign
                # values:
                tokList = self._dict[key]
                tokList.append(lock.token)
                self._dict[key] = tokList
            self._flush()
            _logger.debug(f"LockStorageDict.create({org_path!r}): {lock_string(lock)}")
            return lock.copy()

    def refresh(self, token, timeout=None):
        """Modify an existing lock's timeout.

        token:
            Valid lock token.
        timeout:
            Suggested lifetime in seconds (-1 for infinite, None for the
            default). The real expiration time may be shorter than requested!
        Returns:
            The updated Lock.
            Raises ValueError, if token is invalid.
        """
        with self._lock:
            lock = self._dict.get(token)
            if lock is None:
                raise ValueError(f"Lock does not exist: {token!r}")
            timeout = self._normalize_timeout(timeout)

            # Note: shelve dictionary returns copies, so we must reassign
            # values:
            lock.timeout = timeout
            lock.expire = time.time() + timeout
            self._dict[token] = lock
            self._flush()
            return lock.copy()

    def delete(self, token):
        """Delete lock.

        Returns True on success. False, if token does not exist, or is expired.
        """
        with self._lock:
            lock = self._dict.get(token)
            _logger.debug(f"delete {lock_string(lock)}")
            if lock is None:
                return False
            # Remove url to lock mapping
            key = f"URL2TOKEN:{lock.root}"
            if key in self._dict:
                tokList = self._dict[key]
                if len(tokList) > 1:
                    # Note: shelve dictionary returns copies, so we must
                    # reassign values:
                    tokList.remove(token)
                    self._dict[key] = tokList
                else:
                    del self._dict[key]
            # Remove the lock
            del self._dict[token]

            self._flush()
        return True

    def get_lock_list(self, path, *, include_parents=True, include_children=False):
        """Return a list of locks that apply to <path>.

        Expired locks are *not* returned (but are purged).

        path:
            Normalized path (no trailing '/')
        include_parents:
            True: also return depth-infinity locks of all parent paths.
        include_children:
            True: also return locks of all sub-paths.
        Returns:
            List of valid Locks (may be empty). Direct locks come first, then
            locks of parents (nearest first), then locks of sub-paths.
        """
        assert path and path.startswith("/")

        def _append_locks(toklist, *, depth_infinity_only=False):
            for token in toklist:
                lock = self.get(token)
                if not lock:
                    continue
                if depth_infinity_only and lock.depth != DEPTH_INFINITY:
                    continue
                lockList.append(lock)

        path = normalize_lock_root(path)
        with self._lock:
            lockList = []
            # Iterate over a copy, since expired locks are purged while we go
            key = f"URL2TOKEN:{path}"
            _append_locks(list(self._dict.get(key, [])))

            if include_parents:
                parent = util.get_uri_parent(path)
                while parent:
                    parent = normalize_lock_root(parent)
                    parent_key = f"URL2TOKEN:{parent}"
                    _append_locks(
                        list(self._dict.get(parent_key, [])), depth_infinity_only=True
                    )
                    parent = util.get_uri_parent(parent)

            if include_children:
                child_keys = [
                    k
                    for k in self._dict.keys()
                    if k.startswith("URL2TOKEN:") and util.is_child_uri(key, k)
                ]
                for child_key in child_keys:
                    _append_locks(list(self._dict.get(child_key, [])))

            return lockList


# ========================================================================
# LockStorageShelve
# ========================================================================


class LockStorageShelve(LockStorageDict):
    """
    A low performance lock manager implementation using shelve.
    """

    def __init__(self, storage_path, *, timeout_default=None, timeout_max=None):
        super().__init__(timeout_default=timeout_default, timeout_max=timeout_max)
        self._storage_path = os.path.abspath(os.path.expanduser(storage_path))

    def __repr__(self):
        return f"LockStorageShelve({self._storage_path!r})"

    def _flush(self):
        """Write persistent dictionary to disc."""
        _logger.debug("_flush()")
        with self._lock:
            self._dict.sync()

    def clear(self):
        """Delete all entries."""
        with self._lock:
            was_closed = self._dict is None
            if was_closed:
                self.open()
            if len(self._dict):
                self._dict.clear()
                self._dict.sync()
            if was_closed:
                self.close()

    def open(self):
        _logger.debug(f"open({self._storage_path!r})")
        # Open with writeback=False, which is faster, but we have to be
        # careful to re-assign values to _dict after modifying them
        self._dict = shelve.open(self._storage_path, writeback=False)

    def close(self):
        _logger.debug("close()")
        with self._lock:
            if self._dict is not None:
                self._dict.close()
                self._dict = None
