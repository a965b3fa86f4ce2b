"""
Entity options and entity list resolution.

SyncEntityOptions describes one syncable entity key: its name, the sync
identifier of the job that syncs it, its parameters and schema version, its
lease override and its eligibility strategy.

EntityResolver combines the statically configured entities with an optional
EntityProvider that is asked for additional entities on every pass.
"""

import dataclasses
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Sequence, TypeVar

from synclease.eligibility import (
    DEFAULT_ELIGIBILITY_INTERVAL,
    EligibilityStrategy,
    IntervalEligibility,
)
from synclease.errors import ConfigurationError
from synclease.parameters import serialize_parameters
from synclease.schemas import EntityKey

logger = logging.getLogger(__name__)

SCHEMA_VERSION_ATTR = "__sync_schema_version__"

T = TypeVar("T", bound=type)


def schema_version(version: int) -> Callable[[T], T]:
    """
    Class decorator recording the schema version of an entity model.

    Increment the version whenever the model's shape changes; entries
    recorded under another version are separate history.

    Usage:
        @schema_version(2)
        class Order:
            ...
    """
    if not isinstance(version, int) or isinstance(version, bool):
        raise TypeError(f"schema version must be an int, got {version!r}")

    def decorate(cls: T) -> T:
        setattr(cls, SCHEMA_VERSION_ATTR, version)
        return cls

    return decorate


def get_schema_version(model: type) -> Optional[int]:
    """Schema version declared directly on ``model`` (not inherited), if any."""
    return model.__dict__.get(SCHEMA_VERSION_ATTR)


def _default_eligibility() -> EligibilityStrategy:
    return IntervalEligibility(DEFAULT_ELIGIBILITY_INTERVAL)


@dataclass(frozen=True)
class SyncEntityOptions:
    """
    Options for one syncable entity key.

    Immutable: use ``configure`` to derive a reconfigured copy.

    Attributes:
        entity: Entity name
        job: Sync identifier the JobRegistry resolves to a job implementation
        schema_version: Optional schema version, part of the entity key
        lease_duration: Optional lease override (store default otherwise)
        eligibility: Strategy for non-manual triggers (default: 1 day interval)
        parameters: Optional parameter map distinguishing syncs of the same entity,
            e.g. a tenant id. Keys and values must be stable and JSON-serializable.
        entity_type: Optional model class the entity represents
    """
    entity: str
    job: str
    schema_version: Optional[int] = None
    lease_duration: Optional[timedelta] = None
    eligibility: EligibilityStrategy = field(default_factory=_default_eligibility)
    parameters: Optional[Mapping[str, Any]] = None
    entity_type: Optional[type] = None

    def __post_init__(self):
        if not self.entity:
            raise ConfigurationError("Entity name is required")
        if not self.job:
            raise ConfigurationError(f"Entity {self.entity}: job sync identifier is required")
        if self.lease_duration is not None and self.lease_duration <= timedelta(0):
            raise ConfigurationError(
                f"Entity {self.entity}: lease_duration must be positive, got {self.lease_duration}"
            )
        if self.parameters is not None:
            # Validates serializability and freezes a private copy
            serialize_parameters(self.parameters)
            object.__setattr__(
                self, "parameters", MappingProxyType(dict(sorted(self.parameters.items())))
            )

    @property
    def parameters_json(self) -> Optional[str]:
        return serialize_parameters(self.parameters)

    @property
    def key(self) -> EntityKey:
        return EntityKey(self.entity, self.parameters_json, self.schema_version)

    def configure(self, **changes: Any) -> "SyncEntityOptions":
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def create(
        cls,
        model: type,
        job: str,
        name: Optional[str] = None,
        **changes: Any,
    ) -> "SyncEntityOptions":
        """
        Create options for a model class.

        The entity name defaults to the class name and the schema version is
        taken from the @schema_version decorator when present.

        Args:
            model: The entity model class
            job: Sync identifier for the job registry
            name: Entity name override
            **changes: Any other SyncEntityOptions field

        Returns:
            New SyncEntityOptions
        """
        changes.setdefault("schema_version", get_schema_version(model))
        return cls(entity=name or model.__name__, job=job, entity_type=model, **changes)

    def describe(self) -> str:
        """Short label for log lines."""
        parts = [self.entity]
        if self.parameters_json:
            parts.append(self.parameters_json)
        if self.schema_version is not None:
            parts.append(f"v{self.schema_version}")
        return " ".join(parts)


class EntityProvider(ABC):
    """
    Supplies entities discovered at runtime (e.g. one per tenant).

    Called on every orchestration or fan-out pass, possibly from several
    threads, so implementations should be thread-safe.
    """

    @abstractmethod
    def get_entities(
        self, cancellation: Optional[threading.Event] = None
    ) -> list[SyncEntityOptions]:
        """
        Return additional entities. Must return a list (possibly empty), never None.
        """
        pass


class StaticEntityProvider(EntityProvider):
    """Provider returning a fixed list; convenient for configuration and tests."""

    def __init__(self, entities: Sequence[SyncEntityOptions]):
        self._entities = list(entities)

    def get_entities(self, cancellation=None) -> list[SyncEntityOptions]:
        return list(self._entities)


class EntityResolver:
    """
    Resolves the full entity list for a pass.

    Usage:
        resolver = EntityResolver([orders, customers], provider=TenantProvider())
        entities = resolver.resolve_entities()
    """

    def __init__(
        self,
        entities: Sequence[SyncEntityOptions] = (),
        provider: Optional[EntityProvider] = None,
    ) -> None:
        self._entities = list(entities)
        self._provider = provider

    @property
    def entities(self) -> list[SyncEntityOptions]:
        """Statically configured entities."""
        return list(self._entities)

    def add_entity(self, entity: SyncEntityOptions) -> "EntityResolver":
        self._entities.append(entity)
        return self

    def resolve_entities(
        self, cancellation: Optional[threading.Event] = None
    ) -> list[SyncEntityOptions]:
        """
        Combine configured entities with the provider's entities.

        Raises:
            ConfigurationError: If the provider returns None
        """
        entities = list(self._entities)

        if self._provider is not None:
            additional = self._provider.get_entities(cancellation)
            if additional is None:
                raise ConfigurationError(
                    f"Entity provider {type(self._provider).__name__} returned None; "
                    "it must return a list"
                )
            if not additional:
                logger.warning("Entity provider returned no additional entities. Using configured entities only.")
            else:
                logger.info(f"Entity provider returned {len(additional)} additional entities.")
                entities.extend(additional)

        return entities
