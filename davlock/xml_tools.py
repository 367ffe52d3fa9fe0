# (c) 2009-2024 Martin Wendt and contributors; see WsgiDAV https://github.com/mar10/wsgidav
# Licensed under the MIT license:
# http://www.opensource.org/licenses/mit-license.php
"""
Small wrapper for the etree package.

Parsing always goes through defusedxml, so untrusted request bodies cannot
trigger entity expansion attacks.
"""

import logging
from xml.etree.ElementTree import Element, SubElement, indent, register_namespace, tostring

from defusedxml import ElementTree as etree

__docformat__ = "reStructuredText"

_logger = logging.getLogger("davlock")

# defusedxml doesn't define these non-parsing related objects
etree.Element = Element
etree.SubElement = SubElement
etree.tostring = tostring

# Serialize 'DAV:' elements as <D:...> instead of <ns0:...>
register_namespace("D", "DAV:")


# ========================================================================
# XML
# ========================================================================


def string_to_xml(text):
    """Convert XML string into etree.Element."""
    try:
        return etree.XML(text)
    except Exception:
        _logger.error(f"Error parsing XML string: {text!r}")
        raise


def xml_to_bytes(element, *, pretty=False):
    """Wrapper for etree.tostring, that takes care of pretty printing and
    prepends an encoding header."""
    if pretty:
        indent(element)
    xml = etree.tostring(element, encoding="UTF-8", xml_declaration=True)
    assert xml.startswith(b"<?xml ")  # ET should prepend an encoding header
    return xml


def make_multistatus_el():
    return etree.Element("{DAV:}multistatus")


def make_prop_el():
    return etree.Element("{DAV:}prop")


def make_sub_element(parent, tag, text=None):
    el = etree.SubElement(parent, tag)
    if text is not None:
        el.text = text
    return el
