# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""Unit tests for davlock.util and davlock.if_header"""

import logging
import unittest

from davlock.dav_error import HTTP_FORBIDDEN, BadRequestError, DAVError
from davlock.if_header import (
    Condition,
    IfToken,
    parse_if_header,
    test_conditions,
)
from davlock.lock_storage import LockStorageDict
from davlock.util import (
    deep_update,
    dynamic_instantiate_class_from_opts,
    get_dict_value,
    get_module_logger,
    get_uri_parent,
    init_logging,
    is_child_uri,
    is_equal_or_child_uri,
    read_timeout_value_header,
    url_to_path,
)


class BasicTest(unittest.TestCase):
    """Test util module."""

    def testPreconditions(self):
        """Environment must be set."""
        self.assertTrue(
            __debug__, "__debug__ must be True, otherwise asserts are ignored"
        )

    def testBasics(self):
        """Test basic tool functions."""
        assert get_uri_parent("/") is None
        assert get_uri_parent("/a") == "/"
        assert get_uri_parent("/a/b") == "/a/"
        assert get_uri_parent("/a/b/") == "/a/"

        assert is_child_uri("/a", "/a/b")
        assert is_child_uri("/a/", "/a/b/")
        assert not is_child_uri("/a/b", "/a/bc")
        assert not is_child_uri("/a", "/a")

        assert is_equal_or_child_uri("/a", "/a")
        assert is_equal_or_child_uri("/a/", "/a/b")
        assert not is_equal_or_child_uri("/a/b", "/a/bc")

        d = {"a": {"b": 1, "c": 2}, "x": None}
        deep_update(d, {"a": {"c": 3}, "y": 4})
        assert d == {"a": {"b": 1, "c": 3}, "x": None, "y": 4}
        assert get_dict_value(d, "a.c") == 3
        assert get_dict_value(d, "a.z", None) is None
        assert get_dict_value(d, "x", as_dict=True) == {}

    def testTimeoutHeader(self):
        assert read_timeout_value_header(None) == 0
        assert read_timeout_value_header("") == 0
        assert read_timeout_value_header("Second-3600") == 3600
        assert read_timeout_value_header("second-10, Infinite") == 10
        assert read_timeout_value_header("Infinite") == -1
        assert read_timeout_value_header("Infinite, Second-4100000000") == -1
        assert read_timeout_value_header("Second-99999999999") == -1
        self.assertRaises(BadRequestError, read_timeout_value_header, "Minutes-3")
        self.assertRaises(BadRequestError, read_timeout_value_header, "Second-")

    def testUrlToPath(self):
        assert url_to_path("/a/b") == "/a/b"
        assert url_to_path("http://localhost:8080/a%20b") == "/a b"
        assert url_to_path("http://localhost/dav/a/b", "/dav") == "/a/b"
        assert url_to_path("/dav", "/dav") == "/"
        assert url_to_path("http://localhost", "") == "/"

        with self.assertRaises(DAVError) as cm:
            url_to_path("http://localhost/other/a", "/dav")
        assert cm.exception.value == HTTP_FORBIDDEN

    def testInitLogging(self):
        logger = logging.getLogger("davlock")
        module_logger = get_module_logger("lock_manager")
        assert module_logger.name == "davlock.lock_manager"
        assert get_module_logger("davlock.if_header").name == "davlock.if_header"
        try:
            init_logging({"verbose": 4, "logging": {"enable_loggers": []}})
            assert logger.level == logging.DEBUG
            assert not logger.propagate

            init_logging({"verbose": 3, "logging": {"enable_loggers": ["lock_manager"]}})
            assert logger.level == logging.INFO
            assert module_logger.level == logging.DEBUG
            assert len(logger.handlers) == 1

            init_logging({"verbose": 1})
            assert logger.level == logging.ERROR
        finally:
            for hdlr in logger.handlers[:]:
                logger.removeHandler(hdlr)
            logger.addHandler(logging.NullHandler())
            logger.setLevel(logging.INFO)
            module_logger.setLevel(logging.NOTSET)

    def testDynamicInstantiation(self):
        storage = dynamic_instantiate_class_from_opts(
            "davlock.lock_storage.LockStorageDict"
        )
        assert isinstance(storage, LockStorageDict)

        storage = dynamic_instantiate_class_from_opts(
            {
                "class": "davlock.lock_storage.LockStorageDict",
                "kwargs": {"timeout_default": 10},
            }
        )
        assert storage.timeout_default == 10


class IfHeaderTest(unittest.TestCase):
    """Test if_header module."""

    def testPreconditions(self):
        """Environment must be set."""
        self.assertTrue(
            __debug__, "__debug__ must be True, otherwise asserts are ignored"
        )

    def testParse(self):
        assert parse_if_header(None, "/a") == []
        assert parse_if_header("  ", "/a") == []

        res = parse_if_header("(<opaquelocktoken:abc>)", "/a/")
        assert res == [Condition("/a", (IfToken("opaquelocktoken:abc", False),))]

        res = parse_if_header(
            '<http://localhost/dav/b/> (<opaquelocktoken:x> ["etag1"]) (Not <DAV:no-lock>)',
            "/a",
            "/dav",
        )
        assert res == [
            Condition(
                "/b",
                (IfToken("opaquelocktoken:x", False), IfToken("", False, '"etag1"')),
            ),
            Condition("/b", (IfToken("DAV:no-lock", True),)),
        ]

        # Untagged and tagged lists may follow each other
        res = parse_if_header("(<opaquelocktoken:x>) </c> (<opaquelocktoken:y>)", "/a")
        assert [c.uri for c in res] == ["/a", "/c"]

        self.assertRaises(BadRequestError, parse_if_header, "foo", "/a")
        self.assertRaises(BadRequestError, parse_if_header, "</a>", "/a")

    def testConditions(self):
        def get_etag(path):
            return {"/a": '"etag-a"'}.get(path)

        valid = IfToken("opaquelocktoken:x", False, "", True)
        invalid = IfToken("opaquelocktoken:y", False)

        assert test_conditions([], get_etag)
        assert test_conditions([Condition("/a", (valid,))], get_etag)
        assert not test_conditions([Condition("/a", (invalid,))], get_etag)
        # All tokens of a list must match
        assert not test_conditions([Condition("/a", (valid, invalid))], get_etag)
        # Any list may match
        assert test_conditions(
            [Condition("/a", (invalid,)), Condition("/a", (valid,))], get_etag
        )
        # Negation
        assert test_conditions(
            [Condition("/a", (IfToken("DAV:no-lock", True),))], get_etag
        )
        assert not test_conditions(
            [Condition("/a", (IfToken("opaquelocktoken:x", True, "", True),))],
            get_etag,
        )
        # Entity tags
        assert test_conditions([Condition("/a", (IfToken("", False, '"etag-a"'),))], get_etag)
        assert not test_conditions(
            [Condition("/a", (IfToken("", False, '"other"'),))], get_etag
        )
        assert test_conditions([Condition("/a", (IfToken("", True, '"other"'),))], get_etag)
        assert not test_conditions(
            [Condition("/b", (IfToken("", False, '"etag-a"'),))], get_etag
        )


if __name__ == "__main__":
    unittest.main()
