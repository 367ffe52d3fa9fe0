# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
WSGI middleware to catch application thrown DAVErrors and return proper
responses.

Lock errors that carry a precondition code (e.g. `{DAV:}lock-token-submitted`)
are returned as XML `<D:error>` body, all other errors as small HTML page.
"""

import traceback

from davlock import util
from davlock.dav_error import HTTP_INTERNAL_ERROR, DAVError, as_DAVError
from davlock.mw.base_mw import BaseMiddleware

__docformat__ = "reStructuredText"

_logger = util.get_module_logger(__name__)


# ========================================================================
# ErrorPrinter
# ========================================================================
class ErrorPrinter(BaseMiddleware):
    def __init__(self, davlock_app, next_app, config):
        super().__init__(davlock_app, next_app, config)
        self.err_config = util.get_dict_value(config, "error_printer", as_dict=True)

    def is_disabled(self):
        return self.err_config.get("enable") is False

    def __call__(self, environ, start_response):
        # Intercept start_response
        sub_app_start_response = util.SubAppStartResponse()

        try:
            try:
                # The request server may return a generator, so we must iterate
                # here. Otherwise we could not catch exceptions.
                response_started = False
                app_iter = self.next_app(environ, sub_app_start_response)
                for v in app_iter:
                    # Start response (the first time)
                    if not response_started:
                        start_response(
                            sub_app_start_response.status,
                            sub_app_start_response.response_headers,
                            sub_app_start_response.exc_info,
                        )
                    response_started = True

                    yield v

                # Close out iterator
                if hasattr(app_iter, "close"):
                    app_iter.close()

                # Start response (if it hasn't been done yet)
                if not response_started:
                    start_response(
                        sub_app_start_response.status,
                        sub_app_start_response.response_headers,
                        sub_app_start_response.exc_info,
                    )
                return
            except DAVError:
                raise  # Deliberately generated or already converted
            except Exception as e:
                # Caught a non-DAVError: return as 500 Internal Error
                _logger.error(f"{traceback.format_exc(10)}")
                raise as_DAVError(e) from None
        except DAVError as e:
            _logger.debug(f"Caught {e}")
            if e.value == HTTP_INTERNAL_ERROR:
                _logger.error(f"e.src_exception:\n{e.src_exception}")
            elif e.value >= 400:
                _logger.info(
                    "{} {!r} -> {}".format(
                        environ.get("REQUEST_METHOD"),
                        environ.get("PATH_INFO"),
                        e.get_user_info().splitlines()[0],
                    )
                )

            yield from util.send_status_response(
                environ,
                start_response,
                e,
                is_head=environ.get("REQUEST_METHOD") == "HEAD",
            )
            return
