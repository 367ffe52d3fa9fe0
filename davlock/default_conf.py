# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
Default configuration.
"""

from davlock.error_printer import ErrorPrinter
from davlock.mw.lock_gate import LockGate

__docformat__ = "reStructuredText"

# Use these settings, if config file does not define them (or is totally missing)
DEFAULT_VERBOSE = 3
DEFAULT_LOGGER_DATE_FORMAT = "%H:%M:%S"
DEFAULT_LOGGER_FORMAT = "%(asctime)s.%(msecs)03d - %(levelname)-8s: %(message)s"

DEFAULT_CONFIG = {
    "server": "wsgiref",
    "server_args": {},
    "host": "localhost",
    "port": 8080,
    "mount_path": None,  # Application root, e.g. <mount_path>/<res_path>
    #: True: use LockStorageDict, False/None: disable locking,
    #: or an instance, class path or `{"class": ..., "kwargs": ...}` dict
    "lock_storage": True,
    "lock_storage_options": {
        "timeout_default": None,  # None: 1 week
        "timeout_max": None,  # None: 4 weeks
    },
    #: True/None: in-memory tree, a directory path (or `{"root": ...}`):
    #: FilesystemResourceTree, an instance or `{"class": ..., "kwargs": ...}`
    "resource_tree": None,
    "add_header_MS_Author_Via": True,
    "middleware_stack": [
        ErrorPrinter,
        LockGate,
    ],
    #: Verbose Output
    #: 0 - no output
    #: 1 - no output (excepting application exceptions)
    #: 2 - show warnings
    #: 3 - show single line request summaries (for HTTP logging)
    #: 4 - show additional events
    #: 5 - show full request/response header info (HTTP Logging)
    #:     request body and GET response bodies not shown
    "verbose": DEFAULT_VERBOSE,
    #: Log options
    "logging": {
        "enable": None,  # True: activate 'davlock' logger (in library mode)
        "logger_date_format": DEFAULT_LOGGER_DATE_FORMAT,
        "logger_format": DEFAULT_LOGGER_FORMAT,
        "enable_loggers": [],
        "debug_methods": [],
    },
    "error_printer": {
        "enable": True,  # False: let DAVErrors propagate to the server
    },
}
