"""Minimal inversion-of-control container.

This package maps abstract types (base classes, ABCs or protocols) to concrete
classes or pre-built instances and resolves whole object graphs by constructor
injection.

Exports:
- `Container`: registry supporting transient, singleton and instance registrations.
  The first registration of a type wins; owned instances with a ``dispose()``
  method are disposed together with the container.
- `FactoryBuilder`: turns a class into a reusable constructing factory.
- `DependencyContainer` / `Disposable`: protocols for the container surface and
  for instances the container tears down.
- Errors: `ContainerError` and its subclasses `ResolutionError`,
  `ConstructionError`, `DisposedError` and `CircularDependencyError`.
"""

from ._container import (
    CircularDependencyError,
    ConstructionError,
    Container,
    ContainerError,
    DependencyContainer,
    Disposable,
    DisposedError,
    FactoryBuilder,
    ResolutionError,
)


__all__ = [
    "CircularDependencyError",
    "ConstructionError",
    "Container",
    "ContainerError",
    "DependencyContainer",
    "Disposable",
    "DisposedError",
    "FactoryBuilder",
    "ResolutionError",
]
