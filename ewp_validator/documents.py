"""Parsing of response documents and extraction of values from them."""

from typing import Sequence

from lxml import etree

from ewp_validator.models import ValidatedApiInfo

ERROR_RESPONSE_NAMESPACE = (
    "https://github.com/erasmus-without-paper/ewp-specs-architecture/blob/stable-v1/"
    "common-types.xsd"
)
ERROR_RESPONSE_ELEMENT = "error-response"

Element = etree._Element  # pylint: disable=protected-access


class SchemaMismatch(Exception):
    """Raised when a response is not the document the API promises.

    This is a structural problem, reported differently from a response that
    is well formed but carries the wrong data.
    """

    pass


def _parser() -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)


def parse_xml(body: bytes) -> Element:
    """Parse a response body into an element tree.

    Raises:
        SchemaMismatch: If the body is empty or not well-formed XML.
    """
    if not body or not body.strip():
        raise SchemaMismatch("The response body is empty.")
    try:
        return etree.fromstring(body, _parser())
    except etree.XMLSyntaxError as e:
        raise SchemaMismatch(f"The response is not well-formed XML: {e}") from e


def parse_response(body: bytes, api_info: ValidatedApiInfo) -> Element:
    """Parse a response body and check it is the expected response document.

    Raises:
        SchemaMismatch: If the body is malformed or has a different root element.
    """
    root = parse_xml(body)
    qname = etree.QName(root)
    if qname.localname != api_info.response_element:
        raise SchemaMismatch(
            f"Expected <{api_info.response_element}> as the root element, "
            f"found <{qname.localname}>."
        )
    if qname.namespace != api_info.response_namespace:
        raise SchemaMismatch(
            f"The <{qname.localname}> element is in namespace {qname.namespace!r}, "
            f"expected {api_info.response_namespace!r}."
        )
    return root


def is_error_response(body: bytes) -> bool:
    """Check whether a body is an EWP ``<error-response>`` document."""
    try:
        root = parse_xml(body)
    except SchemaMismatch:
        return False
    qname = etree.QName(root)
    return (
        qname.localname == ERROR_RESPONSE_ELEMENT
        and qname.namespace == ERROR_RESPONSE_NAMESPACE
    )


def select_elements(root: Element, selector: Sequence[str]) -> list[Element]:
    """Follow a path of element local names from the root, ignoring namespaces."""
    nodes = [root]
    for name in selector:
        nodes = [
            child
            for node in nodes
            for child in node
            if isinstance(child.tag, str) and etree.QName(child).localname == name
        ]
    return nodes


def select_values(root: Element, selector: Sequence[str]) -> list[str]:
    """Text values, in document order, of the elements matched by a selector."""
    return [(element.text or "").strip() for element in select_elements(root, selector)]
