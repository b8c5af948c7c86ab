"""Tests for validation parameter declarations and resolution."""

import pytest

from ewp_validator.apis import iias
from ewp_validator.parameters import (
    ConflictingParameters,
    ParameterGraphError,
    UnknownParameter,
    UnsatisfiedDependency,
    ValidationParameter,
    ValidationParameters,
    check_parameter_graph,
    merge_parameters,
)


class TestValidationParameter:
    def test_fluent_declaration(self):
        parameter = (
            ValidationParameter("iia_id")
            .depends_on("hei_id")
            .blocked_by("partner_hei_id")
            .with_description("IIA to test with.")
        )
        assert parameter.dependencies == ["hei_id"]
        assert parameter.blockers == ["partner_hei_id"]
        assert parameter.description == "IIA to test with."

    def test_equality_ignores_description(self):
        assert ValidationParameter("a").with_description("x") == ValidationParameter("a")


class TestCheckParameterGraph:
    """Tests for declaration consistency checks."""

    def test_valid_graph(self):
        check_parameter_graph(iias.INDEX_PARAMETERS)

    def test_undeclared_reference(self):
        with pytest.raises(ParameterGraphError, match="undeclared"):
            check_parameter_graph([ValidationParameter("a").depends_on("b")])

    def test_dependency_cycle(self):
        declared = [
            ValidationParameter("a").depends_on("b"),
            ValidationParameter("b").depends_on("c"),
            ValidationParameter("c").depends_on("a"),
        ]
        with pytest.raises(ParameterGraphError, match="Cyclic"):
            check_parameter_graph(declared)

    def test_self_blocking(self):
        with pytest.raises(ParameterGraphError):
            check_parameter_graph([ValidationParameter("a").blocked_by("a")])

    def test_blocking_a_dependency(self):
        """A parameter blocked by something it needs could never be supplied."""
        declared = [
            ValidationParameter("a"),
            ValidationParameter("b").depends_on("a").blocked_by("a"),
        ]
        with pytest.raises(ParameterGraphError):
            check_parameter_graph(declared)

    def test_mutual_blocking_is_allowed(self):
        check_parameter_graph([
            ValidationParameter("a").blocked_by("b"),
            ValidationParameter("b").blocked_by("a"),
        ])


class TestResolve:
    """Tests for resolving supplied parameter values."""

    def test_valid_request(self):
        params = ValidationParameters({"hei_id": "uw.edu.pl", "partner_hei_id": "x.pl"})
        assert params.resolve(iias.INDEX_PARAMETERS) is params
        assert params.is_provided("partner_hei_id")
        assert params.value_of("hei_id") == "uw.edu.pl"

    def test_empty_request(self):
        params = ValidationParameters().resolve(iias.INDEX_PARAMETERS)
        assert len(params) == 0
        assert params.value_of("hei_id") is None

    def test_unknown_parameter(self):
        with pytest.raises(UnknownParameter, match="sending_hei_id"):
            ValidationParameters({"sending_hei_id": "x"}).resolve(iias.INDEX_PARAMETERS)

    def test_unsatisfied_dependency(self):
        """partner_hei_id needs hei_id."""
        with pytest.raises(UnsatisfiedDependency, match="hei_id"):
            ValidationParameters({"partner_hei_id": "x"}).resolve(iias.INDEX_PARAMETERS)

    def test_conflicting_parameters(self):
        params = ValidationParameters({"hei_id": "a", "iia_id": "b", "partner_hei_id": "c"})
        with pytest.raises(ConflictingParameters):
            params.resolve(iias.INDEX_PARAMETERS)

    def test_idempotent(self):
        params = ValidationParameters({"hei_id": "a", "iia_id": "b"})
        first = params.resolve(iias.INDEX_PARAMETERS).as_dict()
        second = params.resolve(iias.INDEX_PARAMETERS).as_dict()
        assert first == second == {"hei_id": "a", "iia_id": "b"}

    def test_failed_resolution_has_no_side_effects(self):
        params = ValidationParameters({"partner_hei_id": "x"})
        with pytest.raises(UnsatisfiedDependency):
            params.resolve(iias.INDEX_PARAMETERS)
        assert params.as_dict() == {"partner_hei_id": "x"}


class TestMergeParameters:
    def test_first_declaration_wins(self):
        merged = merge_parameters([
            [ValidationParameter("a").with_description("first")],
            [ValidationParameter("a").with_description("second"), ValidationParameter("b")],
        ])
        assert [p.name for p in merged] == ["a", "b"]
        assert merged[0].description == "first"
