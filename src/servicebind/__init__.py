"""Service container with constructor injection.

This package wires independently written services together: register service
types with an implementation class, a factory or a pre-built instance, then
resolve them with their constructor dependencies injected from `__init__`
annotations.

Exports:
- `Container`: registration, resolution, scopes and startup validation.
- `Lifetime`: singleton, transient or scoped instances.
- `Scope`: unit of work owning scoped instances; disposing it cleans them up.
- `ValidationReport`: result of `Container.validate_all()`.
- Errors: `ResolutionError` and its subclasses.
"""

from ._container import Container, ValidationFailure, ValidationReport
from ._errors import (
    CircularDependencyError,
    ContainerValidationError,
    ResolutionError,
    ScopeDisposedError,
    ServiceNotRegisteredError,
    UnresolvableConstructorError,
)
from ._registry import Descriptor, Lifetime
from ._scope import Scope


__all__ = [
    "CircularDependencyError",
    "Container",
    "ContainerValidationError",
    "Descriptor",
    "Lifetime",
    "ResolutionError",
    "Scope",
    "ScopeDisposedError",
    "ServiceNotRegisteredError",
    "UnresolvableConstructorError",
    "ValidationFailure",
    "ValidationReport",
]
