"""Composable assertions about the values found in a response document.

A verifier extracts the values matched by its selector (a path of element
local names starting at the response root) and checks them. The outcome is
kept on the verifier so later steps can depend on it, e.g. skip tests when a
listing turned out to be empty.
"""

from abc import ABC, abstractmethod
from collections import Counter
from typing import Iterable, Optional, Sequence

from ewp_validator.documents import Element, select_values
from ewp_validator.models import Status


class Verifier(ABC):
    """Base class for response verifiers.

    Args:
        selector: Element local names leading from the root to the checked values
        status: Severity reported when the verification fails
    """

    def __init__(self, selector: Sequence[str], status: Status = Status.FAILURE):
        self.selector = list(selector)
        self.status = status
        self.verification_result: Optional[bool] = None
        self.result_message: Optional[str] = None
        self._custom_error_message: Optional[str] = None

    @property
    def selector_path(self) -> str:
        return "/".join(self.selector)

    def set_custom_error_message(self, message: str) -> None:
        """Replace the generated message shown when verification fails."""
        self._custom_error_message = message

    def verify(self, document: Element) -> bool:
        """Check a parsed response document and remember the result."""
        problem = self.check(select_values(document, self.selector))
        self.verification_result = problem is None
        if problem is None:
            self.result_message = None
        else:
            self.result_message = self._custom_error_message or problem
        return self.verification_result

    @abstractmethod
    def check(self, values: list[str]) -> Optional[str]:
        """Return None when ``values`` are acceptable, else a description of the problem."""
        pass


class ListEqualVerifier(Verifier):
    """Expect exactly the given values.

    Values are compared as multisets unless ``ordered`` is set: ``[a, b]``
    equals ``[b, a]`` but not ``[a, b, b]``.
    """

    def __init__(
        self,
        expected: Iterable[str],
        selector: Sequence[str],
        status: Status = Status.FAILURE,
        ordered: bool = False,
    ):
        super().__init__(selector, status)
        self.expected = list(expected)
        self.ordered = ordered

    def check(self, values: list[str]) -> Optional[str]:
        if self.ordered:
            equal = values == self.expected
        else:
            equal = Counter(values) == Counter(self.expected)
        if equal:
            return None
        order = "in this order " if self.ordered else ""
        return (
            f"Expected {self.selector_path} values {order}{self.expected}, "
            f"but the response contained {values}."
        )


class InListVerifier(Verifier):
    """Expect every given value to be present. Other values are allowed."""

    def __init__(
        self,
        expected: Iterable[str],
        selector: Sequence[str],
        status: Status = Status.FAILURE,
    ):
        super().__init__(selector, status)
        self.expected = list(expected)

    def check(self, values: list[str]) -> Optional[str]:
        missing = [value for value in self.expected if value not in values]
        if not missing:
            return None
        return f"Expected {self.selector_path} to contain {missing}, but it did not."


class NotInListVerifier(Verifier):
    """Expect none of the given values to be present."""

    def __init__(
        self,
        unexpected: Iterable[str],
        selector: Sequence[str],
        status: Status = Status.FAILURE,
    ):
        super().__init__(selector, status)
        self.unexpected = list(unexpected)

    def check(self, values: list[str]) -> Optional[str]:
        present = [value for value in self.unexpected if value in values]
        if not present:
            return None
        return f"Expected {self.selector_path} not to contain {present}, but it did."


class CountVerifier(Verifier):
    """Expect the number of matched values to be empty or non-empty."""

    def __init__(
        self,
        selector: Sequence[str],
        expect_empty: bool,
        status: Status = Status.FAILURE,
    ):
        super().__init__(selector, status)
        self.expect_empty = expect_empty

    def check(self, values: list[str]) -> Optional[str]:
        if self.expect_empty and values:
            return f"Expected no {self.selector_path} in the response, got {values}."
        if not self.expect_empty and not values:
            return f"Expected at least one {self.selector_path} in the response, got none."
        return None


class VerifierFactory:
    """Creates verifiers sharing one selector.

    Example:
        >>> ids = VerifierFactory(["iia", "iia-id"])
        >>> ids.expect_response_to_contain(["abc"])
    """

    def __init__(self, selector: Sequence[str]):
        self.selector = list(selector)

    def expect_response_to_be_empty(self, status: Status = Status.FAILURE) -> Verifier:
        return CountVerifier(self.selector, expect_empty=True, status=status)

    def expect_response_to_be_not_empty(self, status: Status = Status.FAILURE) -> Verifier:
        return CountVerifier(self.selector, expect_empty=False, status=status)

    def expect_response_to_contain(
        self, expected: Iterable[str], status: Status = Status.FAILURE
    ) -> Verifier:
        return InListVerifier(expected, self.selector, status)

    def expect_response_to_not_contain(
        self, unexpected: Iterable[str], status: Status = Status.FAILURE
    ) -> Verifier:
        return NotInListVerifier(unexpected, self.selector, status)

    def expect_response_to_be_equal(
        self,
        expected: Iterable[str],
        status: Status = Status.FAILURE,
        ordered: bool = False,
    ) -> Verifier:
        return ListEqualVerifier(expected, self.selector, status, ordered)
