# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
WSGI middleware that blocks modifying requests on locked resources.

For every request the `If` header is parsed into a list of conditions and
passed to :meth:`~davlock.lock_manager.LockManager.validate_tokens`, which
raises HTTP_LOCKED, if a lock protects the target (or the `Destination` of
COPY and MOVE) and its token was not submitted.

The annotated conditions are stored as ``environ["davlock.conditions"]``
and then evaluated against the resource. A failing `If` header results in
HTTP_PRECONDITION_FAILED.

LOCK and UNLOCK requests are passed through: the lock manager evaluates
their tokens itself.
"""

from davlock import if_header, util
from davlock.dav_error import HTTP_PRECONDITION_FAILED, DAVError
from davlock.mw.base_mw import BaseMiddleware

__docformat__ = "reStructuredText"

_logger = util.get_module_logger(__name__)


class LockGate(BaseMiddleware):
    def __init__(self, davlock_app, next_app, config):
        super().__init__(davlock_app, next_app, config)
        self.lock_manager = davlock_app.lock_manager
        self.resource_tree = davlock_app.resource_tree
        self.mount_path = davlock_app.mount_path

    def __call__(self, environ, start_response):
        method = environ["REQUEST_METHOD"]
        path = environ["PATH_INFO"] or "/"

        conditions = if_header.parse_if_header(
            environ.get("HTTP_IF"), path, self.mount_path
        )

        if method not in ("LOCK", "UNLOCK"):
            destination = None
            if method in ("COPY", "MOVE") and environ.get("HTTP_DESTINATION"):
                destination = util.url_to_path(
                    environ["HTTP_DESTINATION"], self.mount_path
                )

            conditions = self.lock_manager.validate_tokens(
                method, path, conditions, destination=destination
            )

            if not if_header.test_conditions(conditions, self.resource_tree.get_etag):
                raise DAVError(HTTP_PRECONDITION_FAILED, "'If' header condition failed.")

        environ["davlock.conditions"] = conditions
        return self.next_app(environ, start_response)
