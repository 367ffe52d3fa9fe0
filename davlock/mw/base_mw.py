# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
Abstract base middleware class (optional use).
"""

from abc import ABC, abstractmethod

__docformat__ = "reStructuredText"


class BaseMiddleware(ABC):
    """Abstract base middleware class (optional).

    Note: this is a convenience class, that *may* be used to implement DavLock
    middlewares. However it is not a requirement: any object that implements
    the WSGI interface can be added to the stack.

    Derived classes in DavLock include::

        davlock.error_printer.ErrorPrinter
        davlock.mw.lock_gate.LockGate
    """

    def __init__(self, davlock_app, next_app, config):
        self.davlock_app = davlock_app
        self.next_app = next_app
        self.config = config
        self.verbose = config.get("verbose", 3)

    @abstractmethod
    def __call__(self, environ, start_response):
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__module__}.{self.__class__.__name__}"

    def is_disabled(self):
        """Optionally return True to skip this module on startup."""
        return False
