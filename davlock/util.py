# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
Miscellaneous support functions for DavLock.
"""

import collections.abc
import importlib
import logging
import re
import sys
import time
from email.utils import formatdate
from typing import Optional
from urllib.parse import unquote, urlparse

from davlock import __version__
from davlock.dav_error import (
    HTTP_FORBIDDEN,
    HTTP_NO_CONTENT,
    HTTP_NOT_MODIFIED,
    BadRequestError,
    DAVError,
    as_DAVError,
    get_http_status_code,
    get_http_status_string,
)
from davlock.xml_tools import etree, xml_to_bytes

__docformat__ = "reStructuredText"

#: The base logger (silent by default)
BASE_LOGGER_NAME = "davlock"
_logger = logging.getLogger(BASE_LOGGER_NAME)

#: Currently used Python version as string
PYTHON_VERSION = ".".join([str(s) for s in sys.version_info[:3]])

#: Project name and version presented to the clients
public_davlock_info = f"DavLock/{__version__}"


class NO_DEFAULT:
    """"""


# ========================================================================
# String tools
# ========================================================================


def is_str(s):
    return isinstance(s, str)


def to_str(s, encoding="utf8"):
    """Convert data to str."""
    if type(s) is bytes:
        s = str(s, encoding)
    elif type(s) is not str:
        s = str(s)
    return s


# ========================================================================
# Dictionary tools
# ========================================================================


def get_dict_value(d, key_path, default=NO_DEFAULT, *, as_dict=False):
    """Return the value of a nested dict using dot-notation path.

    Args:
        d (dict):
        key_path (str):
        default  (any):
        as_dict (bool):
            Assume default is `{}` and also return `{}` if the key exists with
            a value of `None`. This covers the case where suboptions are
            supposed to be dicts, but are defined in a YAML file as entry
            without a value.

    Raises:
        KeyError:
        ValueError:
        IndexError:
    """
    if as_dict:
        try:
            res = get_dict_value(d, key_path, default={})
            return res if res is not None else {}
        except (AttributeError, KeyError, ValueError, IndexError):
            return {}

    if default is not NO_DEFAULT:
        try:
            return get_dict_value(d, key_path)
        except (AttributeError, KeyError, ValueError, IndexError):
            return default

    seg_list = key_path.split(".")
    seg = seg_list.pop(0)
    value = d[seg]

    while seg_list:
        seg = seg_list.pop(0)
        if isinstance(value, dict):
            value = value[seg]
        elif isinstance(value, (list, tuple)):
            if not seg.startswith("[") or not seg.endswith("]"):
                raise ValueError("Use `[INT]` syntax to address list items")
            seg = seg[1:-1]
            value = value[int(seg)]
        else:
            value = getattr(value, seg)

    return value


def deep_update(d, u):
    for k, v in u.items():
        if isinstance(v, collections.abc.Mapping):
            prev_val = d.get(k)
            if prev_val is None or type(prev_val) in (bool, float, int, str):
                # Prev. values is a scalar: replace it with a copy of the new dict
                d[k] = v.copy()
            else:
                # Merge new values into prev. dict
                d[k] = deep_update(d.get(k, {}), v)
        else:
            d[k] = v
    return d


# ========================================================================
# Time tools
# ========================================================================


def get_rfc1123_time(secs=None):
    """Return <secs> in rfc 1123 date/time format (pass secs=None for current date)."""
    # GC issue #20: time string must be locale independent
    return formatdate(timeval=secs, localtime=False, usegmt=True)


def get_log_time(secs=None):
    """Return <secs> in log time format (pass secs=None for current date)."""
    return time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime(secs))


# ========================================================================
# Logging
# ========================================================================


def init_logging(config):
    """Initialize base logger named 'davlock'.

    The base logger is filtered by the `verbose` configuration option.
    Log entries will have a time stamp and thread id.

    **Note:** init_logging() is automatically called by
    :class:`~davlock.davlock_app.DavLockApp`, unless the configuration
    contains ``"logging": { "enable": false }``.

    Module loggers
    ~~~~~~~~~~~~~~
    Module loggers (e.g 'davlock.lock_manager') are named loggers, that
    can be independently switched to DEBUG mode.

    Except for verbosity, they will inherit settings from the base logger.

    If enabled, module loggers will print DEBUG messages, even if verbose == 3.

    Example initialize and use a module logger::

        _logger = util.get_module_logger(__name__)
        [..]
        _logger.debug("foo: {!r}".format(s))

    This logger would be enabled by passing its name to init_logging()::

        config["logging"]["enable_loggers"] = ["lock_manager", "lock_storage"]
        util.init_logging(config)

    Log Level Matrix
    ~~~~~~~~~~~~~~~~

    +---------+--------+---------------------------------------------------------------+
    | Verbose | Option |                       Log level                               |
    | level   |        +-------------+------------------------+------------------------+
    |         |        | base logger | module logger(default) | module logger(enabled) |
    +=========+========+=============+========================+========================+
    |    0    | -qqq   | CRITICAL    | CRITICAL               | CRITICAL               |
    +---------+--------+-------------+------------------------+------------------------+
    |    1    | -qq    | ERROR       | ERROR                  | ERROR                  |
    +---------+--------+-------------+------------------------+------------------------+
    |    2    | -q     | WARN        | WARN                   | WARN                   |
    +---------+--------+-------------+------------------------+------------------------+
    |    3    |        | INFO        | INFO                   | **DEBUG**              |
    +---------+--------+-------------+------------------------+------------------------+
    |    4    | -v     | DEBUG       | DEBUG                  | DEBUG                  |
    +---------+--------+-------------+------------------------+------------------------+
    |    5    | -vv    | DEBUG       | DEBUG                  | DEBUG                  |
    +---------+--------+-------------+------------------------+------------------------+

    """
    from davlock.default_conf import DEFAULT_LOGGER_DATE_FORMAT, DEFAULT_LOGGER_FORMAT

    verbose = config.get("verbose", 3)
    log_opts = config.get("logging") or {}

    enable_loggers = log_opts.get("enable_loggers", [])
    if enable_loggers is None:
        enable_loggers = []

    logger_date_format = log_opts.get("logger_date_format", DEFAULT_LOGGER_DATE_FORMAT)
    logger_format = log_opts.get("logger_format", DEFAULT_LOGGER_FORMAT)

    formatter = logging.Formatter(logger_format, logger_date_format)

    # Define handlers
    consoleHandler = logging.StreamHandler(sys.stdout)
    consoleHandler.setFormatter(formatter)

    # Add the handlers to the base logger
    logger = logging.getLogger(BASE_LOGGER_NAME)

    if verbose >= 4:  # --verbose
        logger.setLevel(logging.DEBUG)
    elif verbose == 3:  # default
        logger.setLevel(logging.INFO)
    elif verbose == 2:  # --quiet
        logger.setLevel(logging.WARN)
    elif verbose == 1:  # -qq
        logger.setLevel(logging.ERROR)
    else:  # -qqq
        logger.setLevel(logging.CRITICAL)

    # Don't call the root's handlers after our custom handlers
    logger.propagate = False

    # Remove previous handlers
    for hdlr in logger.handlers[:]:  # Must iterate an array copy
        try:
            hdlr.flush()
            hdlr.close()
        except Exception:
            pass
        logger.removeHandler(hdlr)

    logger.addHandler(consoleHandler)

    if verbose >= 3:
        for e in enable_loggers:
            if not e.startswith(BASE_LOGGER_NAME + "."):
                e = BASE_LOGGER_NAME + "." + e
            lg = logging.getLogger(e.strip())
            lg.setLevel(logging.DEBUG)
    return


def get_module_logger(moduleName):
    """Create a module logger, that can be en/disabled by configuration.

    @see: unit.init_logging
    """
    if not moduleName.startswith(BASE_LOGGER_NAME + "."):
        moduleName = BASE_LOGGER_NAME + "." + moduleName
    logger = logging.getLogger(moduleName)
    return logger


# ========================================================================
# Module Import
# ========================================================================


def dynamic_import_class(name):
    """Import a class from a module string, e.g. ``my.module.ClassName``."""
    if "." not in name:
        raise ValueError(f"Expected `path.to.ClassName` string: {name!r}")
    module_name, class_name = name.rsplit(".", 1)
    try:
        module = importlib.import_module(module_name)
    except Exception as e:
        _logger.error(f"Dynamic import of {name!r} failed: {e}")
        raise
    the_class = getattr(module, class_name)
    return the_class


def dynamic_instantiate_class_from_opts(options):
    """Import a class and instantiate with custom args.

    Construct from class path, without constructor args::

        dynamic_instantiate_class_from_opts("davlock.lock_storage.LockStorageDict")

    Construct with constructor args::

        opts = {
            "class": "davlock.lock_storage.LockStorageShelve",
            "kwargs": {
                "storage_path": "~/davlock_locks.shelve",
            }
        }
        dynamic_instantiate_class_from_opts(opts)
    """
    if type(options) is str:
        options = {"class": options}

    unknown = set(options.keys()) - {"class", "args", "kwargs"}
    if unknown or "class" not in options:
        raise ValueError(f"Invalid class instantiation options: {options}")

    class_name = options["class"]
    pos_args = options.get("args") or []
    if not isinstance(pos_args, (tuple, list)):
        raise ValueError(f"Expected list format for `args` option: {options}")

    kwargs = options.get("kwargs") or {}
    if not isinstance(kwargs, dict):
        raise ValueError(f"Expected dict format for `kwargs` option: {options}")

    the_class = dynamic_import_class(class_name)
    inst = the_class(*pos_args, **kwargs)

    disp_args = [f"{o}" for o in pos_args] + [f"{k}={v!r}" for k, v in kwargs.items()]
    _logger.debug(f"Instantiate {class_name}({', '.join(disp_args)}) => {inst}")
    return inst


# ========================================================================
# Errors
# ========================================================================


def fail(
    value,
    context_info=None,
    *,
    src_exception=None,
    err_condition=None,
    add_headers=None,
):
    """Wrapper to raise (and log) DAVError."""
    if isinstance(value, Exception):
        e = as_DAVError(value)
    else:
        e = DAVError(
            value,
            context_info,
            src_exception=src_exception,
            err_condition=err_condition,
            add_headers=add_headers,
        )
    _logger.debug(f"Raising DAVError {e.get_user_info()}")
    raise e


# ========================================================================
# SubAppStartResponse
# ========================================================================
class SubAppStartResponse:
    def __init__(self):
        self.__status = ""
        self.__response_headers = []
        self.__exc_info = None

        super().__init__()

    @property
    def status(self):
        return self.__status

    @property
    def response_headers(self):
        return self.__response_headers

    @property
    def exc_info(self):
        return self.__exc_info

    def __call__(self, status, response_headers, exc_info=None):
        self.__status = status
        self.__response_headers = response_headers
        self.__exc_info = exc_info


# ========================================================================
# URLs
# ========================================================================


def get_uri_parent(uri: str) -> Optional[str]:
    """Return URI of parent collection with trailing '/', or None, if URI is top-level.

    This function simply strips the last segment. It does not test, if the
    target is a 'collection', or even exists.
    """
    if not uri or uri.strip() == "/":
        return None
    return uri.rstrip("/").rsplit("/", 1)[0] + "/"


def is_child_uri(parent_uri: str, child_uri: str) -> bool:
    """Return True, if child_uri is a child of parent_uri.

    This function accounts for the fact that '/a/b/c' and 'a/b/c/' are
    children of '/a/b' (and also of '/a/b/').
    Note that '/a/b/cd' is NOT a child of 'a/b/c'.
    """
    return (
        bool(parent_uri)
        and bool(child_uri)
        and child_uri.rstrip("/").startswith(parent_uri.rstrip("/") + "/")
    )


def is_equal_or_child_uri(parent_uri, child_uri):
    """Return True, if child_uri is a child of parent_uri or maps to the same resource.

    Similar to <util.is_child_uri>_ ,  but this method also returns True, if parent
    equals child. ('/a/b' is considered identical with '/a/b/').
    """
    return (
        bool(parent_uri)
        and bool(child_uri)
        and (child_uri.rstrip("/") + "/").startswith(parent_uri.rstrip("/") + "/")
    )


def url_to_path(url, mount_path=""):
    """Return the resource path for an absolute or relative URL.

    This is used to resolve `Destination` headers and tagged `If` lists.
    The scheme and host are dropped and the mount path is removed.

    Raise HTTP_FORBIDDEN, if the URL is outside the mount path.
    """
    path = unquote(urlparse(url).path)
    if mount_path:
        if path.rstrip("/") == mount_path:
            return "/"
        if not path.startswith(mount_path + "/"):
            raise DAVError(
                HTTP_FORBIDDEN,
                f"Requested URL {url!r} is outside of mount path {mount_path!r}.",
            )
        path = path[len(mount_path) :]
    return path or "/"


# ========================================================================
# WSGI
# ========================================================================


def get_content_length(environ):
    """Return a positive CONTENT_LENGTH in a safe way (return 0 otherwise)."""
    try:
        return max(0, int(environ.get("CONTENT_LENGTH", 0)))
    except ValueError:
        return 0


def read_request_body(environ):
    """Read exactly CONTENT_LENGTH bytes from wsgi.input (b"" if no body was sent)."""
    content_length = get_content_length(environ)
    if content_length == 0:
        return b""
    body = environ["wsgi.input"].read(content_length)
    return body


def parse_xml_body(environ, *, allow_empty=False):
    """Read request body XML into an etree.Element.

    Return None, if no request body was sent.
    Raise HTTP_BAD_REQUEST, if something else went wrong.

    Current approach: if CONTENT_LENGTH is

    - valid and >0:
      read body (exactly <CONTENT_LENGTH> bytes) and parse the result.
    - 0, missing or empty string:
      Assume empty body and return None or raise exception.
    - invalid (negative or not a number):
      raise HTTP_BAD_REQUEST
    """
    clHeader = environ.get("CONTENT_LENGTH", "").strip()
    if clHeader == "":
        requestbody = b""
    else:
        try:
            content_length = int(clHeader)
            if content_length < 0:
                raise BadRequestError("Negative content-length.")
        except ValueError:
            raise BadRequestError("content-length is not numeric.") from None

        requestbody = read_request_body(environ)

    if not requestbody.strip():
        if allow_empty:
            return None
        else:
            raise BadRequestError("Body must not be empty.")

    try:
        rootEL = etree.fromstring(requestbody)
    except Exception as e:
        raise BadRequestError("Invalid XML format.", src_exception=e) from None

    # If dumps of the body are desired, then this is the place to do it pretty:
    if environ.get("davlock.dump_request_body"):
        _logger.info(
            "{} XML request body:\n{}".format(
                environ["REQUEST_METHOD"],
                to_str(xml_to_bytes(rootEL, pretty=True)),
            )
        )
        environ["davlock.dump_request_body"] = False

    return rootEL


def send_status_response(environ, start_response, e, *, add_headers=None, is_head=False):
    """Start a WSGI response for a DAVError or status code."""
    status = get_http_status_string(e)
    headers = []
    if add_headers:
        headers.extend(add_headers)
    if isinstance(e, DAVError) and e.add_headers:
        headers.extend(e.add_headers)

    if get_http_status_code(e) in (HTTP_NOT_MODIFIED, HTTP_NO_CONTENT):
        # See paste.lint: these code don't have content
        start_response(
            status, [("Content-Length", "0"), ("Date", get_rfc1123_time())] + headers
        )
        return [b""]

    if not isinstance(e, DAVError):
        e = DAVError(e)

    content_type, body = e.get_response_page()
    if is_head:
        body = b""

    start_response(
        status,
        [
            ("Content-Type", content_type),
            ("Date", get_rfc1123_time()),
            ("Content-Length", str(len(body))),
        ]
        + headers,
    )
    return [body]


def send_xml_response(environ, start_response, status, element, *, add_headers=None):
    """Start a WSGI response with an XML body."""
    xml_data = xml_to_bytes(element, pretty=False)
    headers = [
        ("Content-Type", "application/xml; charset=utf-8"),
        ("Date", get_rfc1123_time()),
        ("Content-Length", str(len(xml_data))),
    ]
    if add_headers:
        headers.extend(add_headers)
    start_response(get_http_status_string(status), headers)
    return [xml_data]


# ========================================================================
# Timeout header
# ========================================================================

#: any numofsecs above the following limit is regarded as infinite
MAX_FINITE_TIMEOUT_LIMIT = 10 * 365 * 24 * 60 * 60  # approx 10 years
reSecondsReader = re.compile(r"^second\-([0-9]+)$", re.I)


def read_timeout_value_header(timeoutvalue):
    """Return the lease length requested by a `Timeout` header.

    Return -1 for 'Infinite', the number of seconds for 'Second-N', or 0 if
    the header is missing or empty.
    If a comma separated list is passed, only the first entry is evaluated.
    Raise HTTP_BAD_REQUEST for any other value.
    """
    if not timeoutvalue or not timeoutvalue.strip():
        return 0
    timeoutspec = timeoutvalue.split(",")[0].strip()
    if timeoutspec.lower() == "infinite":
        return -1
    match = reSecondsReader.match(timeoutspec)
    if not match:
        raise BadRequestError(f"Invalid HTTP Timeout header: {timeoutvalue!r}.")
    timeoutsecs = int(match.group(1))
    if timeoutsecs > MAX_FINITE_TIMEOUT_LIMIT:
        return -1
    return timeoutsecs
