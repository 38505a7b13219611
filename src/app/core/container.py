"""Dependency injection container"""
from typing import Any, Dict, Type, TypeVar, Union, get_args, get_origin
from types import UnionType
import inspect


_OPTIONAL_UNRESOLVED = object()

T = TypeVar('T')

class DIContainer:
    """Minimal DI container: singletons and auto-wired service classes"""

    def __init__(self):
        self._services: Dict[Type, Any] = {}
        self._singletons: Dict[Type, Any] = {}

    def register_singleton(self, interface: Type[T], implementation: T) -> None:
        self._singletons[interface] = implementation

    def register_service(self, interface: Type[T], service_class: Type[T]) -> None:
        """Class whose constructor dependencies are resolved from annotations"""
        self._services[interface] = service_class

    def get(self, interface: Type[T]) -> T:
        if interface in self._singletons:
            return self._singletons[interface]

        # auto-wired services are cached after the first build
        if interface in self._services:
            instance = self._create_instance(self._services[interface])
            self._singletons[interface] = instance
            return instance

        interface_name = getattr(interface, "__name__", repr(interface))
        raise ValueError(f"Service {interface_name} not registered")

    def clear_cache(self) -> None:
        """Drop cached auto-wired instances so they are rebuilt on next lookup"""
        cached_services = [k for k in self._singletons.keys() if k in self._services]
        for service_type in cached_services:
            del self._singletons[service_type]

    def _create_instance(self, service_class: Type[T]) -> T:
        sig = inspect.signature(service_class.__init__)

        kwargs = {}
        for param_name, param in sig.parameters.items():
            if param_name == 'self':
                continue

            param_type = param.annotation
            if param_type == inspect.Parameter.empty:
                continue

            try:
                if self._is_union_type(param_type):
                    resolved = self._resolve_union_dependency(param_type)
                    kwargs[param_name] = None if resolved is _OPTIONAL_UNRESOLVED else resolved
                else:
                    kwargs[param_name] = self.get(param_type)
            except ValueError:
                if param.default != inspect.Parameter.empty:
                    kwargs[param_name] = param.default
                else:
                    raise ValueError(f"Cannot resolve dependency {param_type} for {service_class.__name__}")

        return service_class(**kwargs)

    @staticmethod
    def _is_union_type(annotation: Any) -> bool:
        return get_origin(annotation) in (Union, UnionType)

    def _resolve_union_dependency(self, annotation: Any) -> Any:
        args = get_args(annotation)
        non_none_args = [arg for arg in args if arg is not type(None)]

        # Optional[T]: None when T is not registered
        if len(non_none_args) == 1 and len(non_none_args) != len(args):
            try:
                return self.get(non_none_args[0])
            except ValueError:
                return _OPTIONAL_UNRESOLVED

        for candidate in non_none_args:
            try:
                return self.get(candidate)
            except ValueError:
                continue

        raise ValueError(f"Cannot resolve union dependency for {annotation}")

# global container
container = DIContainer()
