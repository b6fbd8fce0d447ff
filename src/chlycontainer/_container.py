from __future__ import annotations

import inspect
import logging
import threading
import types
import typing
from typing import (
    TYPE_CHECKING,
    Any,
    Protocol,
    TypeVar,
    cast,
    get_type_hints,
    runtime_checkable,
)


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    T = TypeVar("T")

    # A factory receives the container that owns it and returns an instance.
    Factory = Callable[["Container"], object]


class ContainerError(RuntimeError):
    """Base class for every failure raised by the container."""


class ResolutionError(ContainerError):
    """The requested type (or one of its dependencies) is not registered."""

    def __init__(self, token: type) -> None:
        self.token = token
        name = _type_name(token)
        super().__init__(f"Resolution for type {name} failed. {name} is not registered.")


class ConstructionError(ContainerError):
    """A class offers no constructor the container can inject into."""

    def __init__(self, impl: object, reason: str) -> None:
        self.impl = impl
        self.reason = reason
        super().__init__(f"Cannot build a factory for {_type_name(impl)}: {reason}")


class DisposedError(ContainerError):
    pass


class CircularDependencyError(ContainerError):
    def __init__(self, chain: list[type]) -> None:
        self.chain = chain
        path = " -> ".join(_type_name(tp) for tp in chain)
        super().__init__(f"Circular dependency detected: {path}")


@runtime_checkable
class Disposable(Protocol):
    """Anything with a ``dispose()`` hook; the container calls it once on teardown."""

    def dispose(self) -> None: ...


@runtime_checkable
class DependencyContainer(Protocol):
    def register(self, token: type[T], impl: type[T] | None = None) -> DependencyContainer: ...

    def register_instance(self, instance: T, token: type[T] | None = None) -> DependencyContainer: ...

    def register_singleton(self, token: type[T]) -> DependencyContainer: ...

    def resolve(self, token: type[T]) -> T: ...

    def dispose(self) -> None: ...


class Container:
    """Minimal IoC container.

    - register a class for a type (transient, built by constructor injection)
    - register a pre-built instance or an eagerly built singleton
    - the first registration of a type wins, later ones are ignored
    - owned instances exposing ``dispose()`` are torn down with the container.
    """

    def __init__(self) -> None:
        self._factories: dict[type, Factory] = {}
        self._disposables: list[Disposable] = []
        self._disposed = False
        self._resolving: list[type] = []
        self._builder = FactoryBuilder()
        self._lock = threading.RLock()

    def register(self, token: type[T], impl: type[T] | None = None) -> Container:
        """Register ``impl`` for ``token``; a new instance is built on every resolve.

        Example:
          container.register(IFoo, FooImpl)
          container.register(Settings)  # token maps to itself

        """
        _require_type(token, "token")
        if impl is None:
            impl = token
        else:
            _require_type(impl, "impl")

        with self._lock:
            self._ensure_not_disposed()
            if impl is not token:
                _validate_impl(token, impl)
            if token in self._factories:
                logger.debug("%s is already registered, ignoring %s", _type_name(token), _type_name(impl))
                return self

            self._factories[token] = self._builder.build(impl)
            logger.debug("Registered %s -> %s (transient)", _type_name(token), _type_name(impl))
        return self

    def register_instance(self, instance: T, token: type[T] | None = None) -> Container:
        """Register a pre-built instance, keyed by ``token`` or by its own class."""
        if instance is None:
            msg = "`instance` must not be None."
            raise ValueError(msg)

        if token is None:
            token = type(instance)
        else:
            _require_type(token, "token")

        with self._lock:
            self._ensure_not_disposed()
            _validate_instance(token, instance)
            if token in self._factories:
                logger.debug("%s is already registered, ignoring instance", _type_name(token))
                return self

            self._factories[token] = lambda _: instance
            self._own(instance)
            logger.debug("Registered instance of %s for %s", type(instance).__name__, _type_name(token))
        return self

    def register_singleton(self, token: type[T]) -> Container:
        """Build one instance of ``token`` now and return it on every resolve.

        Dependencies are resolved immediately, so a missing registration or a
        cycle fails here rather than on first use.
        """
        _require_type(token, "token")

        with self._lock:
            self._ensure_not_disposed()
            if token in self._factories:
                logger.debug("%s is already registered, ignoring singleton", _type_name(token))
                return self

            factory = self._builder.build(token)
            self._resolving.append(token)
            try:
                instance = factory(self)
            finally:
                self._resolving.pop()

            self._factories[token] = lambda _: instance
            self._own(instance)
            logger.debug("Registered %s (singleton)", _type_name(token))
        return self

    def register_factory(self, token: type[T], factory: Callable[[Container], T]) -> Container:
        """Register a callable producing ``token`` instances; it receives this container.

        Instances created by the factory are not owned by the container.
        """
        _require_type(token, "token")
        if not callable(factory):
            msg = f"`factory` must be callable, got {factory!r}."
            raise TypeError(msg)

        with self._lock:
            self._ensure_not_disposed()
            if token in self._factories:
                logger.debug("%s is already registered, ignoring factory", _type_name(token))
                return self

            self._factories[token] = factory
            logger.debug("Registered factory for %s", _type_name(token))
        return self

    def is_registered(self, token: type) -> bool:
        with self._lock:
            return token in self._factories

    def __contains__(self, token: object) -> bool:
        return self.is_registered(cast("type", token))

    def resolve(self, token: type[T]) -> T:
        """Resolve ``token`` to an instance.

        Raises ResolutionError naming the first type in the graph that has no
        registration.
        """
        with self._lock:
            self._ensure_not_disposed()
            if token is None:
                msg = "`token` must not be None."
                raise ValueError(msg)

            if token in self._resolving:
                start = self._resolving.index(token)
                raise CircularDependencyError([*self._resolving[start:], token])

            factory = self._factories.get(token)
            if factory is None:
                raise ResolutionError(token)

            self._resolving.append(token)
            try:
                return cast("T", factory(self))
            finally:
                self._resolving.pop()

    def dispose(self) -> None:
        """Dispose every owned instance in registration order, then lock the container.

        A failing ``dispose()`` propagates and the remaining instances are left
        alone; the container counts as disposed either way.
        """
        with self._lock:
            if self._disposed:
                return

            disposables, self._disposables = self._disposables, []
            logger.debug("Disposing container (%d owned instances)", len(disposables))
            try:
                for index, disposable in enumerate(disposables):
                    try:
                        disposable.dispose()
                    except Exception:
                        logger.error(
                            "Disposing %s failed, %d remaining instances were not disposed",
                            type(disposable).__name__,
                            len(disposables) - index - 1,
                        )
                        raise
            finally:
                self._disposed = True

    @property
    def disposed(self) -> bool:
        return self._disposed

    def __enter__(self) -> Container:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.dispose()

    def _own(self, instance: object) -> None:
        if not isinstance(instance, Disposable):
            return
        # Same object registered under several types is still disposed once.
        if any(owned is instance for owned in self._disposables):
            return
        self._disposables.append(instance)

    def _ensure_not_disposed(self) -> None:
        if self._disposed:
            msg = f"Cannot use a disposed {type(self).__name__}."
            raise DisposedError(msg)


class FactoryBuilder:
    """Derives a constructing factory from a class's ``__init__`` signature.

    The signature and type hints are inspected once; the returned factory
    only asks the container for each parameter type and calls the class.
    """

    def build(self, impl: type[T]) -> Callable[[Container], T]:
        if not inspect.isclass(impl):
            raise ConstructionError(impl, "not a class")
        if _is_protocol(impl):
            raise ConstructionError(impl, "protocols cannot be instantiated")
        if inspect.isabstract(impl):
            abstract = ", ".join(sorted(getattr(impl, "__abstractmethods__", ())))
            raise ConstructionError(impl, f"abstract methods are not implemented ({abstract})")

        try:
            sig = inspect.signature(impl)
        except (TypeError, ValueError) as e:
            raise ConstructionError(impl, f"constructor signature is not inspectable ({e})") from e

        hints = _get_init_type_hints(impl)
        steps = [
            (p.name, p.kind is p.POSITIONAL_ONLY, self._argument(impl, p, hints))
            for p in sig.parameters.values()
            if p.kind not in (p.VAR_POSITIONAL, p.VAR_KEYWORD)
        ]

        def factory(container: Container) -> T:
            args: list[Any] = []
            kwargs: dict[str, Any] = {}
            for name, positional, argument in steps:
                value = argument(container)
                if positional:
                    args.append(value)
                else:
                    kwargs[name] = value
            return impl(*args, **kwargs)

        return factory

    def _argument(
        self,
        impl: type,
        p: inspect.Parameter,
        hints: dict[str, Any],
    ) -> Callable[[Container], object]:
        annotation = _unwrap_optional(hints.get(p.name, p.annotation))
        default = p.default
        has_default = default is not inspect.Parameter.empty

        if annotation is inspect.Parameter.empty or not inspect.isclass(annotation):
            if has_default:
                return lambda _: default

            ann_repr = "no-annotation" if annotation is inspect.Parameter.empty else repr(annotation)
            reason = f"cannot determine the type of parameter '{p.name}' (annotation: {ann_repr})"
            raise ConstructionError(impl, reason)

        if has_default:

            def resolve_or_default(container: Container) -> object:
                if container.is_registered(annotation):
                    return container.resolve(annotation)
                return default

            return resolve_or_default

        return lambda container: container.resolve(annotation)


def _unwrap_optional(annotation: object) -> object:
    """``Optional[X]`` and ``X | None`` resolve as ``X``; other unions are left alone."""
    if typing.get_origin(annotation) not in (typing.Union, types.UnionType):
        return annotation

    args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
    if len(args) == 1:
        return args[0]
    return annotation


def _type_name(tp: object) -> str:
    return getattr(tp, "__qualname__", None) or repr(tp)


def _require_type(value: object, name: str) -> None:
    if value is None:
        msg = f"`{name}` must not be None."
        raise ValueError(msg)
    if not inspect.isclass(value):
        msg = f"`{name}` must be a class, got {value!r}."
        raise TypeError(msg)


def _validate_impl(token: type, impl: type) -> None:
    """Require ``impl`` to implement ``token``.

    Ordinary classes and ABCs need a real subclass. Protocols accept nominal
    subclasses or anything that structurally provides their methods.
    """
    if not _is_protocol(token):
        if not issubclass(impl, token):
            msg = f"Implementation {impl.__name__} must be a subclass of {token.__name__}"
            raise TypeError(msg)
        return

    if token in impl.__mro__:
        return
    _validate_protocol_members(token, impl)


def _validate_instance(token: type, instance: object) -> None:
    if not _is_protocol(token):
        if not isinstance(instance, token):
            msg = f"Instance of {type(instance).__name__} is not an instance of {token.__name__}"
            raise TypeError(msg)
        return

    if token in type(instance).__mro__:
        return
    _validate_protocol_members(token, type(instance), instance)


def _validate_protocol_members(proto: type, impl: type, instance: object | None = None) -> None:
    # Data members are usually assigned in __init__, so they are only checked on an instance.
    problems: list[str] = []

    for name, member in _protocol_members(proto).items():
        if member is None:
            if instance is not None and not hasattr(instance, name):
                problems.append(f"missing attribute {name}")
            continue

        if not hasattr(impl, name):
            problems.append(f"missing method {name}")
            continue

        impl_attr = getattr(impl, name)
        if not callable(impl_attr):
            problems.append(f"{name} is not callable")
            continue

        try:
            expected = _required_positional(inspect.signature(member))
            actual = _required_positional(inspect.signature(impl_attr))
        except (TypeError, ValueError):
            continue
        if actual < expected:
            problems.append(f"{name} takes {actual} required positional params, protocol expects {expected}")

    if problems:
        msg = f"{impl.__name__} does not conform to protocol {proto.__name__}: {'; '.join(problems)}"
        raise TypeError(msg)


def _protocol_members(proto: type) -> dict[str, object]:
    """Public members declared by ``proto`` and its protocol bases.

    Methods map to their function, annotated attributes map to None.
    """
    members: dict[str, object] = {}
    for base in reversed(proto.__mro__):
        if not _is_protocol(base):
            continue
        try:
            annotations = dict(getattr(base, "__annotations__", {}))
        except NameError:
            annotations = {}
        for name in annotations:
            if not name.startswith("_"):
                members[name] = None
        for name, attr in vars(base).items():
            if not name.startswith("_") and inspect.isfunction(attr):
                members[name] = attr
    return members


def _required_positional(sig: inspect.Signature) -> int:
    return sum(
        1
        for p in sig.parameters.values()
        if p.name != "self"
        and p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        and p.default is p.empty
    )


if hasattr(typing, "is_protocol"):
    # https://docs.python.org/3/library/typing.html#typing.is_protocol
    def _is_protocol(tp: object) -> bool:
        return inspect.isclass(tp) and typing.is_protocol(tp)

else:

    def _is_protocol(tp: object) -> bool:
        return inspect.isclass(tp) and tp is not Protocol and bool(getattr(tp, "_is_protocol", False))


def _get_init_type_hints(cls: type) -> dict[str, Any]:
    try:
        init = inspect.getattr_static(cls, "__init__")
        hints = get_type_hints(init)
    except TypeError:
        hints = {}
    except NameError as exc:
        logger.warning("'%s' name error retrieving %s (%s) type hints", exc.name, cls.__name__, cls.__qualname__)
        hints = {}

    return hints
