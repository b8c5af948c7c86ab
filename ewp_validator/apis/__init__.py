"""Built-in validation suites, one module per EWP API."""

from ewp_validator.apis import iias, institutions, mobilities, mt_institutions, mt_projects

MODULES = (institutions, mt_institutions, mt_projects, iias, mobilities)


def register_all(manager) -> None:
    """Register the suites of every built-in API with ``manager``."""
    for module in MODULES:
        module.register(manager)
