# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
Resource trees that are served by :class:`~davlock.request_server.RequestServer`.

The lock manager only needs ``exists()`` and ``create_empty()`` (locking an
unmapped URL creates an empty resource). The request server uses the rest of
the interface to implement the basic HTTP and WebDAV verbs.

Two implementations are available:

- :class:`MemoryResourceTree`: all resources are kept in a dictionary
- :class:`FilesystemResourceTree`: maps resource paths to a folder on disk

Paths are absolute, '/'-separated, and never have a trailing slash (except
for the root '/').
"""

import hashlib
import os
import shutil
import threading

from davlock import util
from davlock.dav_error import (
    HTTP_CONFLICT,
    HTTP_FORBIDDEN,
    HTTP_METHOD_NOT_ALLOWED,
    HTTP_NOT_FOUND,
    DAVError,
)

__docformat__ = "reStructuredText"

_logger = util.get_module_logger(__name__)


def normalize_path(path):
    return "/" + path.strip("/")


def make_etag(data):
    """Return a strong, quoted entity tag for a byte string."""
    return '"{}"'.format(hashlib.md5(data).hexdigest())


# ========================================================================
# ResourceTree
# ========================================================================
class ResourceTree:
    """Abstract base class for resource trees."""

    def __repr__(self):
        return self.__class__.__name__

    def exists(self, path):
        raise NotImplementedError

    def is_collection(self, path):
        raise NotImplementedError

    def create_empty(self, path):
        """Create an empty (length-0) non-collection resource."""
        self.set_content(path, b"")

    def get_content(self, path):
        """Return the content of a non-collection resource as bytes."""
        raise NotImplementedError

    def set_content(self, path, data):
        """Create or overwrite a non-collection resource.

        Return True, if a new resource was created.
        """
        raise NotImplementedError

    def make_collection(self, path):
        raise NotImplementedError

    def delete(self, path):
        """Remove a resource or collection (recursive)."""
        raise NotImplementedError

    def copy(self, src_path, dest_path):
        """Copy a resource or collection (recursive) to a new, unmapped path."""
        raise NotImplementedError

    def move(self, src_path, dest_path):
        """Move a resource or collection (recursive) to a new, unmapped path."""
        raise NotImplementedError

    def get_etag(self, path):
        """Return a quoted entity tag, or None for collections and unmapped paths."""
        raise NotImplementedError

    def _check_parent(self, path):
        parent = util.get_uri_parent(path)
        if parent is None:
            raise DAVError(HTTP_FORBIDDEN, "The root collection cannot be modified.")
        parent = normalize_path(parent)
        if not self.is_collection(parent):
            raise DAVError(HTTP_CONFLICT, f"Parent collection does not exist: {parent!r}.")

    def check_copy_move(self, src_path, dest_path):
        """Raise DAVError, if <src_path> cannot be copied or moved to <dest_path>.

        Called before an existing destination is overwritten.
        """
        src_path = normalize_path(src_path)
        dest_path = normalize_path(dest_path)
        if not self.exists(src_path):
            raise DAVError(HTTP_NOT_FOUND, src_path)
        if util.is_equal_or_child_uri(src_path, dest_path):
            raise DAVError(HTTP_FORBIDDEN, "Cannot copy or move into itself.")
        if util.is_child_uri(dest_path, src_path):
            raise DAVError(HTTP_FORBIDDEN, "Cannot overwrite a parent of the source.")
        self._check_parent(dest_path)


# ========================================================================
# MemoryResourceTree
# ========================================================================
class MemoryResourceTree(ResourceTree):
    """Resource tree that keeps all data in a dictionary.

    Collections are stored with a value of None::

        {"/": None, "/docs": None, "/docs/readme.txt": b"Hello"}
    """

    def __init__(self):
        self._dict = {"/": None}
        self._lock = threading.RLock()

    def __repr__(self):
        return f"MemoryResourceTree({len(self._dict)} entries)"

    def exists(self, path):
        return normalize_path(path) in self._dict

    def is_collection(self, path):
        path = normalize_path(path)
        return path in self._dict and self._dict[path] is None

    def get_content(self, path):
        path = normalize_path(path)
        with self._lock:
            if path not in self._dict:
                raise DAVError(HTTP_NOT_FOUND, path)
            if self._dict[path] is None:
                raise DAVError(HTTP_FORBIDDEN, "Cannot read content of a collection.")
            return self._dict[path]

    def set_content(self, path, data):
        path = normalize_path(path)
        with self._lock:
            if self.is_collection(path):
                raise DAVError(HTTP_METHOD_NOT_ALLOWED, "Cannot write to a collection.")
            self._check_parent(path)
            created = path not in self._dict
            self._dict[path] = bytes(data)
            return created

    def make_collection(self, path):
        path = normalize_path(path)
        with self._lock:
            if path in self._dict:
                raise DAVError(HTTP_METHOD_NOT_ALLOWED, f"Already exists: {path!r}.")
            self._check_parent(path)
            self._dict[path] = None

    def _member_paths(self, path):
        return [p for p in self._dict if p == path or util.is_child_uri(path, p)]

    def delete(self, path):
        path = normalize_path(path)
        with self._lock:
            if path == "/":
                raise DAVError(HTTP_FORBIDDEN, "Cannot delete the root collection.")
            if path not in self._dict:
                raise DAVError(HTTP_NOT_FOUND, path)
            for p in self._member_paths(path):
                del self._dict[p]

    def copy(self, src_path, dest_path):
        src_path = normalize_path(src_path)
        dest_path = normalize_path(dest_path)
        with self._lock:
            self.check_copy_move(src_path, dest_path)
            # Sorted, so parents are copied before their members
            for p in sorted(self._member_paths(src_path)):
                self._dict[dest_path + p[len(src_path) :]] = self._dict[p]

    def move(self, src_path, dest_path):
        with self._lock:
            self.copy(src_path, dest_path)
            self.delete(src_path)

    def get_etag(self, path):
        path = normalize_path(path)
        data = self._dict.get(path)
        if data is None:
            return None
        return make_etag(data)


# ========================================================================
# FilesystemResourceTree
# ========================================================================
class FilesystemResourceTree(ResourceTree):
    """Resource tree that maps resource paths to a folder on disk."""

    def __init__(self, root_folder_path):
        root_folder_path = os.path.abspath(os.path.expanduser(root_folder_path))
        if not os.path.isdir(root_folder_path):
            raise ValueError(f"Invalid root path: {root_folder_path}")
        self.root_folder_path = root_folder_path

    def __repr__(self):
        return f"FilesystemResourceTree({self.root_folder_path!r})"

    def _loc_to_file_path(self, path):
        """Convert resource path to an absolute file path."""
        path_parts = path.strip("/").split("/")
        file_path = os.path.abspath(os.path.join(self.root_folder_path, *path_parts))
        if file_path != self.root_folder_path and not file_path.startswith(
            self.root_folder_path + os.sep
        ):
            raise RuntimeError(
                f"Security exception: tried to access file outside root: {file_path}"
            )
        return file_path

    def exists(self, path):
        return os.path.exists(self._loc_to_file_path(path))

    def is_collection(self, path):
        return os.path.isdir(self._loc_to_file_path(path))

    def get_content(self, path):
        fp = self._loc_to_file_path(path)
        if os.path.isdir(fp):
            raise DAVError(HTTP_FORBIDDEN, "Cannot read content of a collection.")
        if not os.path.isfile(fp):
            raise DAVError(HTTP_NOT_FOUND, path)
        with open(fp, "rb") as f:
            return f.read()

    def set_content(self, path, data):
        path = normalize_path(path)
        fp = self._loc_to_file_path(path)
        if os.path.isdir(fp):
            raise DAVError(HTTP_METHOD_NOT_ALLOWED, "Cannot write to a collection.")
        self._check_parent(path)
        created = not os.path.exists(fp)
        with open(fp, "wb") as f:
            f.write(data)
        return created

    def make_collection(self, path):
        path = normalize_path(path)
        fp = self._loc_to_file_path(path)
        if os.path.exists(fp):
            raise DAVError(HTTP_METHOD_NOT_ALLOWED, f"Already exists: {path!r}.")
        self._check_parent(path)
        os.mkdir(fp)

    def delete(self, path):
        path = normalize_path(path)
        if path == "/":
            raise DAVError(HTTP_FORBIDDEN, "Cannot delete the root collection.")
        fp = self._loc_to_file_path(path)
        if os.path.isdir(fp):
            shutil.rmtree(fp, ignore_errors=False)
        elif os.path.exists(fp):
            os.unlink(fp)
        else:
            raise DAVError(HTTP_NOT_FOUND, path)

    def copy(self, src_path, dest_path):
        src_path = normalize_path(src_path)
        dest_path = normalize_path(dest_path)
        self.check_copy_move(src_path, dest_path)
        fp_src = self._loc_to_file_path(src_path)
        fp_dest = self._loc_to_file_path(dest_path)
        if os.path.isdir(fp_src):
            shutil.copytree(fp_src, fp_dest)
        else:
            shutil.copy2(fp_src, fp_dest)

    def move(self, src_path, dest_path):
        src_path = normalize_path(src_path)
        dest_path = normalize_path(dest_path)
        self.check_copy_move(src_path, dest_path)
        fp_dest = self._loc_to_file_path(dest_path)
        _logger.debug(f"move({src_path}, {fp_dest})")
        shutil.move(self._loc_to_file_path(src_path), fp_dest)

    def get_etag(self, path):
        """Return a strong, quoted entity tag: inode-lastmodifiedtime-filesize."""
        fp = self._loc_to_file_path(path)
        if not os.path.isfile(fp):
            return None
        fstat = os.stat(fp)
        return f'"{fstat.st_ino}-{int(fstat.st_mtime)}-{fstat.st_size}"'
