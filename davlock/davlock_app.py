# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
WSGI container, that handles the HTTP requests. This object is passed to the
WSGI server and represents our DavLock application to the outside.

On init:

    Use the configuration dictionary to initialize lock storage, lock manager
    and resource tree.

    Initialize middleware objects and setup the WSGI application stack.

For every request:

    Strip the mount path and add or modify info in the WSGI ``environ``:

        environ["SCRIPT_NAME"]
            Mount-point of the application.
        environ["PATH_INFO"]
            Resource path, relative to the mount path.
        environ["davlock.config"]
            Configuration dictionary.
        environ["davlock.verbose"]
            Debug level [0-5].

    Log the HTTP request, then pass the request to the first middleware.
"""

import copy
import inspect
import platform
import time

from davlock import __version__, util
from davlock.dav_error import HTTP_NOT_FOUND, DAVError
from davlock.default_conf import DEFAULT_CONFIG
from davlock.lock_manager import LockManager
from davlock.lock_storage import LockStorageDict
from davlock.mw.base_mw import BaseMiddleware
from davlock.request_server import RequestServer
from davlock.resource_tree import FilesystemResourceTree, MemoryResourceTree
from davlock.util import dynamic_import_class, dynamic_instantiate_class_from_opts

__docformat__ = "reStructuredText"

_logger = util.get_module_logger(__name__)


def _check_config(config):
    errors = []

    mount_path = config.get("mount_path")
    if mount_path and (not mount_path.startswith("/") or mount_path.endswith("/")):
        errors.append(
            f"If a mount_path is set, it must start (but not end) with '/': {mount_path!r}."
        )

    if config.get("server") not in (None, "wsgiref", "cheroot"):
        errors.append(f"Invalid server {config.get('server')!r}: expected 'wsgiref' or 'cheroot'.")

    timeout_opts = util.get_dict_value(config, "lock_storage_options", as_dict=True)
    for key in ("timeout_default", "timeout_max"):
        value = timeout_opts.get(key)
        if value is not None and (type(value) is not int or value <= 0):
            errors.append(f"lock_storage_options.{key} must be a positive int: {value!r}.")

    if type(config.get("verbose", 3)) is not int:
        errors.append(f"verbose must be an int: {config.get('verbose')!r}.")

    if errors:
        raise ValueError("Invalid configuration:\n  - " + "\n  - ".join(errors))

    return True


def _make_lock_storage(config):
    """Return a lock storage instance (or None) for the `lock_storage` option."""
    lock_storage = config.get("lock_storage")
    storage_opts = util.get_dict_value(config, "lock_storage_options", as_dict=True)
    storage_opts = {k: v for k, v in storage_opts.items() if v is not None}

    if lock_storage is True:
        lock_storage = LockStorageDict(**storage_opts)
    elif isinstance(lock_storage, (str, dict)):
        lock_storage = dynamic_instantiate_class_from_opts(lock_storage)

    if not lock_storage:
        return None
    if not hasattr(lock_storage, "refresh") or not hasattr(lock_storage, "atomic"):
        raise ValueError(f"Invalid lock_storage: {lock_storage!r}")
    return lock_storage


def _make_resource_tree(config):
    """Return a resource tree instance for the `resource_tree` option."""
    resource_tree = config.get("resource_tree")

    if resource_tree in (None, True):
        return MemoryResourceTree()
    elif isinstance(resource_tree, str):
        # Folder path
        return FilesystemResourceTree(resource_tree)
    elif isinstance(resource_tree, dict):
        if "class" in resource_tree:
            return dynamic_instantiate_class_from_opts(resource_tree)
        elif "root" in resource_tree:
            return FilesystemResourceTree(resource_tree["root"])
        raise ValueError(
            f"resource_tree expected {{'class': ...}}` or {{'root': ...}}: {resource_tree}"
        )

    if not hasattr(resource_tree, "exists") or not hasattr(resource_tree, "create_empty"):
        raise ValueError(f"Invalid resource_tree: {resource_tree!r}")
    return resource_tree


class DavLockApp:
    def __init__(self, config):
        self.config = copy.deepcopy(DEFAULT_CONFIG)
        util.deep_update(self.config, config)
        config = self.config

        # Evaluate configuration and set defaults
        _check_config(config)

        if config["logging"].get("enable") is not False:
            util.init_logging(config)

        self.verbose = config.get("verbose", 3)
        self.mount_path = config.get("mount_path") or ""
        self.debug_methods = util.get_dict_value(config, "logging.debug_methods", None) or []

        self.lock_storage = _make_lock_storage(config)
        self.resource_tree = _make_resource_tree(config)
        # The lock manager is always created: without storage it rejects
        # LOCK/UNLOCK and does not require any tokens.
        self.lock_manager = LockManager(self.lock_storage, self.resource_tree)

        # Define WSGI application stack
        middleware_stack = config.get("middleware_stack", [])
        mw_list = []

        self.application = RequestServer(self)

        # Instantiate the middleware stack in reverse order, so each member
        # wraps the previous one
        for mw in reversed(middleware_stack):
            app = None
            if util.is_str(mw):
                app_class = dynamic_import_class(mw)
                app = app_class(self, self.application, config)
            elif inspect.isclass(mw):
                assert issubclass(mw, BaseMiddleware)
                app = mw(self, self.application, config)
            else:
                app = mw

            if app:
                if callable(getattr(app, "is_disabled", None)) and app.is_disabled():
                    _logger.warning(f"App {app}.is_disabled() returned True: skipping.")
                else:
                    mw_list.append(app)
                    self.application = app
            else:
                _logger.error(f"Could not add middleware {mw}.")

        _logger.info(
            f"DavLock/{__version__} Python/{util.PYTHON_VERSION} {platform.platform(aliased=True)}"
        )

        if self.verbose >= 3:
            _logger.info(f"Lock storage:  {self.lock_storage}")
            _logger.info(f"Resource tree: {self.resource_tree}")

        if self.verbose >= 4:
            _logger.info("Middleware stack:")
            for mw in reversed(mw_list):
                _logger.info(f"  - {mw}")

        if self.mount_path:
            _logger.info(f"Configured mount path: {self.mount_path!r}.")

        if not self.lock_manager.is_enabled():
            _logger.warning("Lock storage is disabled: LOCK and UNLOCK are rejected.")
        return

    def __call__(self, environ, start_response):
        path = environ.get("PATH_INFO") or "/"
        if not util.is_str(path):
            _logger.warning(f"Got non-native PATH_INFO: {path!r}")
            path = util.to_str(path)

        environ["davlock.config"] = self.config
        environ["davlock.verbose"] = self.verbose

        if self.verbose >= 5 or environ.get("REQUEST_METHOD") in self.debug_methods:
            environ["davlock.dump_request_body"] = True

        start_time = time.time()

        def _start_response_wrapper(status, response_headers, exc_info=None):
            if self.verbose >= 3:
                extra = []
                if "HTTP_DESTINATION" in environ:
                    extra.append('dest="{}"'.format(environ.get("HTTP_DESTINATION")))
                if environ.get("CONTENT_LENGTH", "") != "":
                    extra.append("length={}".format(environ.get("CONTENT_LENGTH")))
                if "HTTP_DEPTH" in environ:
                    extra.append("depth={}".format(environ.get("HTTP_DEPTH")))
                if "HTTP_TIMEOUT" in environ:
                    extra.append("timeout={}".format(environ.get("HTTP_TIMEOUT")))
                if self.verbose >= 4 and "HTTP_IF" in environ:
                    extra.append('if="{}"'.format(environ.get("HTTP_IF")))
                if self.verbose >= 4 and "HTTP_LOCK_TOKEN" in environ:
                    extra.append('lock-token="{}"'.format(environ.get("HTTP_LOCK_TOKEN")))
                extra.append(f"elap={time.time() - start_time:.3f}sec")
                extra = ", ".join(extra)

                _logger.info(
                    '{addr} - [{time}] "{method} {path}" {extra} -> {status}'.format(
                        addr=environ.get("REMOTE_ADDR", ""),
                        time=util.get_log_time(),
                        method=environ.get("REQUEST_METHOD"),
                        path=environ.get("PATH_INFO", ""),
                        extra=extra,
                        status=status,
                    )
                )
            return start_response(status, response_headers, exc_info)

        # Strip the mount path
        if self.mount_path and path != "*":
            if path.rstrip("/") == self.mount_path:
                path = "/"
            elif path.startswith(self.mount_path + "/"):
                path = path[len(self.mount_path) :]
            else:
                yield from util.send_status_response(
                    environ,
                    _start_response_wrapper,
                    DAVError(HTTP_NOT_FOUND, f"Outside of mount path: {path!r}"),
                )
                return
            environ["SCRIPT_NAME"] = environ.get("SCRIPT_NAME", "") + self.mount_path
        environ["PATH_INFO"] = path

        app_iter = self.application(environ, _start_response_wrapper)
        try:
            yield from app_iter
        finally:
            if hasattr(app_iter, "close"):
                app_iter.close()
