"""Operator supplied validation parameters and their dependency rules.

Validators declare which parameters they accept. A parameter may depend on
other parameters (they must be supplied together) and may be blocked by
others (they must not be supplied together). Requests are checked against
these declarations before any network call is made.
"""

from typing import Iterable, Mapping, Optional

from ewp_validator.models import ValidatorError


class ParameterError(ValidatorError):
    """Base class for rejected parameter sets."""

    pass


class ParameterGraphError(ParameterError):
    """Raised when declared dependencies or blocks are inconsistent."""

    pass


class UnknownParameter(ParameterError):
    """Raised when a requested parameter is not declared by the validator."""

    pass


class UnsatisfiedDependency(ParameterError):
    """Raised when a parameter is requested without the parameters it depends on."""

    pass


class ConflictingParameters(ParameterError):
    """Raised when two mutually blocking parameters are both requested."""

    pass


class ValidationParameter:
    """Declaration of one parameter accepted by a validator."""

    def __init__(
        self,
        name: str,
        depends_on: Iterable[str] = (),
        blocked_by: Iterable[str] = (),
        description: Optional[str] = None,
    ):
        self.name = name
        self.dependencies: list[str] = list(depends_on)
        self.blockers: list[str] = list(blocked_by)
        self.description = description

    def depends_on(self, *names: str) -> "ValidationParameter":
        self.dependencies.extend(names)
        return self

    def blocked_by(self, *names: str) -> "ValidationParameter":
        self.blockers.extend(names)
        return self

    def with_description(self, description: str) -> "ValidationParameter":
        self.description = description
        return self

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationParameter):
            return NotImplemented
        return (
            self.name == other.name
            and self.dependencies == other.dependencies
            and self.blockers == other.blockers
        )

    def __hash__(self) -> int:
        return hash(self.name)

    def __repr__(self) -> str:
        return (
            f"ValidationParameter({self.name!r}, depends_on={self.dependencies!r}, "
            f"blocked_by={self.blockers!r})"
        )


def merge_parameters(
    groups: Iterable[Iterable[ValidationParameter]],
) -> list[ValidationParameter]:
    """Concatenate parameter lists of a suite chain, dropping repeated names."""
    merged: dict[str, ValidationParameter] = {}
    for group in groups:
        for parameter in group:
            merged.setdefault(parameter.name, parameter)
    return list(merged.values())


def _find_cycle(graph: Mapping[str, list[str]]) -> Optional[list[str]]:
    visiting: list[str] = []
    done: set[str] = set()

    def visit(node: str) -> Optional[list[str]]:
        if node in done:
            return None
        if node in visiting:
            return visiting[visiting.index(node):] + [node]
        visiting.append(node)
        for neighbour in graph.get(node, []):
            cycle = visit(neighbour)
            if cycle:
                return cycle
        visiting.pop()
        done.add(node)
        return None

    for start in graph:
        cycle = visit(start)
        if cycle:
            return cycle
    return None


def check_parameter_graph(declared: Iterable[ValidationParameter]) -> None:
    """Validate the declared dependency and blocking graphs.

    Both graphs must only reference declared parameters. The dependency graph
    must be acyclic. Blocking is symmetric, so ``a`` blocking ``b`` and ``b``
    blocking ``a`` is fine, but a parameter may not block itself nor anything
    it (transitively) depends on, as it could never be supplied.

    Raises:
        ParameterGraphError: If the declarations are inconsistent.
    """
    declared = list(declared)
    names = {parameter.name for parameter in declared}

    for parameter in declared:
        for referenced in parameter.dependencies + parameter.blockers:
            if referenced not in names:
                raise ParameterGraphError(
                    f"Parameter '{parameter.name}' references undeclared "
                    f"parameter '{referenced}'"
                )

    dependencies = {p.name: p.dependencies for p in declared}
    cycle = _find_cycle(dependencies)
    if cycle:
        raise ParameterGraphError(
            f"Cyclic dependency between parameters: {' -> '.join(cycle)}"
        )

    for parameter in declared:
        required = _transitive(dependencies, parameter.name) | {parameter.name}
        for blocker in parameter.blockers:
            if blocker in required:
                raise ParameterGraphError(
                    f"Parameter '{parameter.name}' is blocked by '{blocker}' "
                    f"which it requires"
                )


def _transitive(graph: Mapping[str, list[str]], start: str) -> set[str]:
    found: set[str] = set()
    pending = list(graph.get(start, []))
    while pending:
        node = pending.pop()
        if node not in found:
            found.add(node)
            pending.extend(graph.get(node, []))
    return found


class ValidationParameters:
    """Parameter values supplied with one validation request."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: dict[str, str] = dict(values or {})

    def resolve(
        self, declared: Iterable[ValidationParameter]
    ) -> "ValidationParameters":
        """Check the supplied values against the declared parameters.

        Resolving is pure and may be repeated with the same outcome.

        Returns:
            This instance, so calls can be chained.

        Raises:
            ParameterGraphError: If the declarations themselves are inconsistent.
            UnknownParameter: If a supplied name is not declared.
            UnsatisfiedDependency: If a dependency of a supplied parameter is missing.
            ConflictingParameters: If two mutually blocking parameters are supplied.
        """
        declared = list(declared)
        check_parameter_graph(declared)
        by_name = {parameter.name: parameter for parameter in declared}

        for name in self._values:
            if name not in by_name:
                raise UnknownParameter(f"Unknown parameter '{name}'")

        for name in self._values:
            missing = [dep for dep in by_name[name].dependencies if dep not in self._values]
            if missing:
                raise UnsatisfiedDependency(
                    f"Parameter '{name}' requires: {', '.join(missing)}"
                )

        for name in self._values:
            for blocker in by_name[name].blockers:
                if blocker in self._values:
                    raise ConflictingParameters(
                        f"Parameters '{name}' and '{blocker}' cannot be used together"
                    )
        return self

    def is_provided(self, name: str) -> bool:
        return name in self._values

    def value_of(self, name: str) -> Optional[str]:
        return self._values.get(name)

    def as_dict(self) -> dict[str, str]:
        return dict(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ValidationParameters({self._values!r})"
