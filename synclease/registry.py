"""
JobRegistry - maps sync identifiers to job factories.

Each SyncEntityOptions names the job that syncs it by a sync identifier
(e.g. "orders"). The registry maps that identifier to a factory producing an
EntitySync. A fresh instance is built for every run, so jobs may keep
per-run state.

Jobs declared in configuration are referenced by dotted path
("package.module:attr") and loaded with ``load_object``.
"""

import importlib
from typing import TYPE_CHECKING, Any, Callable

from synclease.errors import ConfigurationError, EntityNotRegisteredError
from synclease.job import EntitySync, FunctionSync

if TYPE_CHECKING:
    from synclease.entities import SyncEntityOptions


JobFactory = Callable[[], EntitySync]


def load_object(path: str) -> Any:
    """
    Load an object by 'module:attr' path.

    Args:
        path: e.g. "myapp.sync.orders:OrderSync"

    Returns:
        The referenced attribute

    Raises:
        ConfigurationError: If the path is malformed, the module cannot be
            imported, or the attribute does not exist
    """
    if ":" not in path:
        raise ConfigurationError(f"Object path must be 'module:attr', got: {path}")

    module_path, attr_path = path.rsplit(":", 1)

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import module '{module_path}': {e}") from e

    obj: Any = module
    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ConfigurationError(
                f"Attribute '{attr_path}' not found in '{module_path}': {e}"
            ) from e

    return obj


def factory_from_object(obj: Any, path: str = "") -> JobFactory:
    """
    Turn a loaded object into a job factory.

    Accepts an EntitySync subclass (instantiated per run), an EntitySync
    instance (shared), or a plain function with the run signature.
    """
    if isinstance(obj, type):
        if not issubclass(obj, EntitySync):
            raise ConfigurationError(f"{path or obj.__name__} does not implement EntitySync")
        return obj
    if isinstance(obj, EntitySync):
        return lambda: obj
    if callable(obj):
        return lambda: FunctionSync(obj)
    raise ConfigurationError(f"{path or obj!r} is not a job class, instance or function")


class JobRegistry:
    """
    Registry for job dispatch by sync identifier.

    Usage:
        registry = JobRegistry()
        registry.register("orders", OrderSync)

        job = registry.resolve(orders_options)
        result = job.run(trigger, orders_options, report_progress)
    """

    def __init__(self) -> None:
        """Initialize an empty job registry."""
        self._factories: dict[str, JobFactory] = {}

    def register(self, sync_id: str, factory: JobFactory) -> "JobRegistry":
        """
        Register a job factory for a sync identifier.

        Args:
            sync_id: Identifier referenced by SyncEntityOptions.job
            factory: Zero-argument callable returning an EntitySync
                (an EntitySync subclass works as its own factory)

        Returns:
            The registry, for chaining
        """
        if not sync_id:
            raise ValueError("sync_id must be a non-empty string")
        if not callable(factory):
            raise TypeError(f"Factory for '{sync_id}' must be callable")
        self._factories[sync_id] = factory
        return self

    def register_path(self, sync_id: str, path: str) -> "JobRegistry":
        """Register a job referenced by 'module:attr' path."""
        return self.register(sync_id, factory_from_object(load_object(path), path))

    def has(self, sync_id: str) -> bool:
        return sync_id in self._factories

    def list_sync_ids(self) -> list[str]:
        return sorted(self._factories)

    def resolve(self, entity: "SyncEntityOptions") -> EntitySync:
        """
        Build the job for an entity.

        Args:
            entity: Entity options naming the job by sync identifier

        Returns:
            A new EntitySync instance

        Raises:
            EntityNotRegisteredError: If no factory is registered for entity.job
            ConfigurationError: If the factory does not produce an EntitySync
        """
        factory = self._factories.get(entity.job)
        if factory is None:
            raise EntityNotRegisteredError(
                f"No job registered for sync id '{entity.job}' (entity {entity.entity}). "
                f"Registered: {self.list_sync_ids()}"
            )

        job = factory()
        if not isinstance(job, EntitySync):
            raise ConfigurationError(
                f"Factory for sync id '{entity.job}' returned {type(job).__name__}, "
                "which does not implement EntitySync"
            )
        return job
