# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
WSGI application that handles one single WebDAV request.

Requests are dispatched by method name (see :attr:`RequestServer.handlers`).
LOCK and UNLOCK are delegated to the :class:`~davlock.lock_manager.LockManager`,
all other methods operate on the resource tree.

Lock tokens have already been checked by the
:class:`~davlock.mw.lock_gate.LockGate` middleware when a handler is called.
"""

import mimetypes

from davlock import util, xml_tools
from davlock.dav_error import (
    HTTP_BAD_REQUEST,
    HTTP_CREATED,
    HTTP_FORBIDDEN,
    HTTP_MEDIATYPE_NOT_SUPPORTED,
    HTTP_METHOD_NOT_ALLOWED,
    HTTP_MULTI_STATUS,
    HTTP_NO_CONTENT,
    HTTP_NOT_FOUND,
    HTTP_OK,
    HTTP_PRECONDITION_FAILED,
    get_http_status_string,
)
from davlock.lock_manager import DEPTH_INFINITY, make_lockdiscovery_el
from davlock.xml_tools import etree

__docformat__ = "reStructuredText"

_logger = util.get_module_logger(__name__)


# ========================================================================
# RequestServer
# ========================================================================
class RequestServer:
    def __init__(self, davlock_app):
        self.lock_manager = davlock_app.lock_manager
        self.resource_tree = davlock_app.resource_tree
        self.mount_path = davlock_app.mount_path
        self.config = davlock_app.config

        self.handlers = {
            "OPTIONS": self.do_OPTIONS,
            "GET": self.do_GET,
            "HEAD": self.do_HEAD,
            "PROPFIND": self.do_PROPFIND,
            "PUT": self.do_PUT,
            "DELETE": self.do_DELETE,
            "MKCOL": self.do_MKCOL,
            "COPY": self.do_COPY,
            "MOVE": self.do_MOVE,
            "LOCK": self.do_LOCK,
            "UNLOCK": self.do_UNLOCK,
        }

    def __repr__(self):
        return f"{self.__class__.__name__}({self.resource_tree!r})"

    def __call__(self, environ, start_response):
        requestmethod = environ["REQUEST_METHOD"]

        # Convert 'infinity' and 'T'/'F' to a common case
        if environ.get("HTTP_DEPTH") is not None:
            environ["HTTP_DEPTH"] = environ["HTTP_DEPTH"].lower()
        if environ.get("HTTP_OVERWRITE") is not None:
            environ["HTTP_OVERWRITE"] = environ["HTTP_OVERWRITE"].upper()

        # Dispatch HTTP request methods to 'do_METHOD()' handlers
        handler = self.handlers.get(requestmethod)
        if handler is None:
            _logger.error(f"Invalid HTTP method {requestmethod!r}")
            self._fail(HTTP_METHOD_NOT_ALLOWED)

        app_iter = handler(environ, start_response)
        try:
            yield from app_iter
        finally:
            if hasattr(app_iter, "close"):
                app_iter.close()
        return

    def _fail(self, value, context_info=None, *, src_exception=None, err_condition=None):
        """Wrapper to raise (and log) DAVError."""
        util.fail(
            value,
            context_info,
            src_exception=src_exception,
            err_condition=err_condition,
        )

    def _get_href(self, path):
        return self.mount_path + path

    def _get_destination_path(self, environ):
        if not environ.get("HTTP_DESTINATION"):
            self._fail(HTTP_BAD_REQUEST, "Missing required Destination header.")
        return util.url_to_path(environ["HTTP_DESTINATION"], self.mount_path)

    def _get_allowed_methods(self, path):
        tree = self.resource_tree
        allow = ["OPTIONS"]
        if tree.is_collection(path):
            allow.extend(["HEAD", "GET", "PROPFIND", "DELETE", "COPY", "MOVE"])
        elif tree.exists(path):
            allow.extend(["HEAD", "GET", "PROPFIND", "PUT", "DELETE", "COPY", "MOVE"])
        elif tree.is_collection(util.get_uri_parent(path) or "/"):
            # A new resource below an existing collection
            allow.extend(["PUT", "MKCOL"])
        else:
            self._fail(HTTP_NOT_FOUND, path)
        allow.extend(self.lock_manager.get_http_methods())
        return allow

    # --- OPTIONS ------------------------------------------------------------

    def do_OPTIONS(self, environ, start_response):
        """
        @see http://www.webdav.org/specs/rfc4918.html#HEADER_DAV
        """
        path = environ["PATH_INFO"]

        headers = [
            ("Content-Type", "text/html; charset=utf-8"),
            ("Content-Length", "0"),
            ("DAV", self.lock_manager.get_dav_compliance_level()),
            ("Date", util.get_rfc1123_time()),
        ]

        if path != "*":
            headers.append(("Allow", ", ".join(self._get_allowed_methods(path))))

        if self.config.get("add_header_MS_Author_Via", False):
            headers.append(("MS-Author-Via", "DAV"))

        start_response("200 OK", headers)
        return [b""]

    # --- GET, HEAD ----------------------------------------------------------

    def do_GET(self, environ, start_response):
        return self._send_resource(environ, start_response, is_head_method=False)

    def do_HEAD(self, environ, start_response):
        return self._send_resource(environ, start_response, is_head_method=True)

    def _send_resource(self, environ, start_response, is_head_method):
        path = environ["PATH_INFO"]
        tree = self.resource_tree

        if not tree.exists(path):
            self._fail(HTTP_NOT_FOUND, path)
        if tree.is_collection(path):
            self._fail(HTTP_FORBIDDEN, "Directory browsing is not supported.")

        data = tree.get_content(path)
        mimetype = mimetypes.guess_type(path)[0] or "application/octet-stream"
        headers = [
            ("Content-Type", mimetype),
            ("Content-Length", str(len(data))),
            ("Date", util.get_rfc1123_time()),
        ]
        etag = tree.get_etag(path)
        if etag:
            headers.append(("ETag", etag))

        start_response("200 OK", headers)
        if is_head_method:
            return [b""]
        return [data]

    # --- PUT, DELETE, MKCOL -------------------------------------------------

    def do_PUT(self, environ, start_response):
        path = environ["PATH_INFO"]
        data = util.read_request_body(environ)

        created = self.resource_tree.set_content(path, data)
        etag = self.resource_tree.get_etag(path)
        add_headers = [("ETag", etag)] if etag else None

        return util.send_status_response(
            environ,
            start_response,
            HTTP_CREATED if created else HTTP_NO_CONTENT,
            add_headers=add_headers,
        )

    def do_DELETE(self, environ, start_response):
        """
        @see: http://www.webdav.org/specs/rfc4918.html#METHOD_DELETE
        """
        path = environ["PATH_INFO"]
        if not self.resource_tree.exists(path):
            self._fail(HTTP_NOT_FOUND, path)

        # Only 'infinity' is allowed for collections
        if (
            self.resource_tree.is_collection(path)
            and environ.get("HTTP_DEPTH", DEPTH_INFINITY) != DEPTH_INFINITY
        ):
            self._fail(HTTP_BAD_REQUEST, "Only Depth: infinity is supported for DELETE.")

        self.resource_tree.delete(path)
        # Locks of removed resources are gone as well
        self.lock_manager.remove_all_locks(path, include_children=True)

        return util.send_status_response(environ, start_response, HTTP_NO_CONTENT)

    def do_MKCOL(self, environ, start_response):
        """Handle MKCOL request to create a new collection.

        @see http://www.webdav.org/specs/rfc4918.html#METHOD_MKCOL
        """
        path = environ["PATH_INFO"]

        # Do not understand ANY request body entities
        if util.get_content_length(environ) != 0:
            self._fail(
                HTTP_MEDIATYPE_NOT_SUPPORTED,
                "The server does not handle any body content.",
            )

        self.resource_tree.make_collection(path)
        return util.send_status_response(environ, start_response, HTTP_CREATED)

    # --- COPY, MOVE ---------------------------------------------------------

    def do_COPY(self, environ, start_response):
        return self._copy_or_move(environ, start_response, is_move=False)

    def do_MOVE(self, environ, start_response):
        return self._copy_or_move(environ, start_response, is_move=True)

    def _copy_or_move(self, environ, start_response, is_move):
        """
        @see: http://www.webdav.org/specs/rfc4918.html#METHOD_COPY
        @see: http://www.webdav.org/specs/rfc4918.html#METHOD_MOVE
        """
        src_path = environ["PATH_INFO"]
        dest_path = self._get_destination_path(environ)
        tree = self.resource_tree

        # Validate before an existing destination is deleted
        tree.check_copy_move(src_path, dest_path)

        dest_exists = tree.exists(dest_path)
        if dest_exists:
            if environ.get("HTTP_OVERWRITE", "T") != "T":
                self._fail(
                    HTTP_PRECONDITION_FAILED,
                    "Destination already exists and Overwrite is set to false",
                )
            tree.delete(dest_path)

        if is_move:
            tree.move(src_path, dest_path)
            # Locks don't move with the resource
            self.lock_manager.remove_all_locks(src_path, include_children=True)
        else:
            tree.copy(src_path, dest_path)

        return util.send_status_response(
            environ, start_response, HTTP_NO_CONTENT if dest_exists else HTTP_CREATED
        )

    # --- PROPFIND -----------------------------------------------------------

    def do_PROPFIND(self, environ, start_response):
        """Return the live properties of one resource (Depth 0).

        Reported properties: resourcetype, getcontentlength, getetag,
        lockdiscovery and supportedlock (empty, if locking is disabled).

        @see http://www.webdav.org/specs/rfc4918.html#METHOD_PROPFIND
        """
        path = environ["PATH_INFO"]
        tree = self.resource_tree

        # The request body (allprop, propname or prop) is read, but not
        # evaluated: we always return all live properties.
        util.read_request_body(environ)

        if not tree.exists(path):
            self._fail(HTTP_NOT_FOUND, path)

        multistatusEL = xml_tools.make_multistatus_el()
        responseEL = etree.SubElement(multistatusEL, "{DAV:}response")
        etree.SubElement(responseEL, "{DAV:}href").text = self._get_href(path)
        propstatEL = etree.SubElement(responseEL, "{DAV:}propstat")
        propEL = etree.SubElement(propstatEL, "{DAV:}prop")

        resourcetypeEL = etree.SubElement(propEL, "{DAV:}resourcetype")
        if tree.is_collection(path):
            etree.SubElement(resourcetypeEL, "{DAV:}collection")
        else:
            xml_tools.make_sub_element(
                propEL, "{DAV:}getcontentlength", str(len(tree.get_content(path)))
            )
            etag = tree.get_etag(path)
            if etag:
                xml_tools.make_sub_element(propEL, "{DAV:}getetag", etag)

        lock_props = self.lock_manager.get_lock_properties(
            path, href_prefix=self.mount_path
        )
        for el in lock_props.values():
            propEL.append(el)

        etree.SubElement(propstatEL, "{DAV:}status").text = "HTTP/1.1 {}".format(
            get_http_status_string(HTTP_OK)
        )

        return util.send_xml_response(
            environ, start_response, HTTP_MULTI_STATUS, multistatusEL
        )

    # --- LOCK, UNLOCK -------------------------------------------------------

    def do_LOCK(self, environ, start_response):
        """
        @see: http://www.webdav.org/specs/rfc4918.html#METHOD_LOCK
        """
        path = environ["PATH_INFO"]
        lockinfo_el = util.parse_xml_body(environ, allow_empty=True)

        lock, created = self.lock_manager.lock(
            path,
            lockinfo_el=lockinfo_el,
            depth=environ.get("HTTP_DEPTH", DEPTH_INFINITY),
            timeout=environ.get("HTTP_TIMEOUT"),
            conditions=environ.get("davlock.conditions", []),
        )

        prop_el = xml_tools.make_prop_el()
        prop_el.append(
            make_lockdiscovery_el([lock], href_prefix=self.mount_path)
        )

        return util.send_xml_response(
            environ,
            start_response,
            HTTP_CREATED if created else HTTP_OK,
            prop_el,
            add_headers=[("Lock-Token", lock.header_token)],
        )

    def do_UNLOCK(self, environ, start_response):
        """
        @see: http://www.webdav.org/specs/rfc4918.html#METHOD_UNLOCK
        """
        path = environ["PATH_INFO"]

        if util.get_content_length(environ) != 0:
            self._fail(
                HTTP_MEDIATYPE_NOT_SUPPORTED,
                "The server does not handle any body content.",
            )

        self.lock_manager.unlock(path, environ.get("HTTP_LOCK_TOKEN"))
        return util.send_status_response(environ, start_response, HTTP_NO_CONTENT)
