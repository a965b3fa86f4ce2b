"""
Build the runtime object graph from a SyncleaseConfig.

    config -> store, registry, entity resolver -> SyncService, SyncQueueService
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from synclease.clock import Clock, utcnow
from synclease.config import ConfigError, EntityConfig, SyncleaseConfig
from synclease.eligibility import AlwaysEligible, EligibilityStrategy, IntervalEligibility
from synclease.entities import EntityProvider, EntityResolver, SyncEntityOptions
from synclease.log_store import InMemoryLogStore, LogStore, SqliteLogStore
from synclease.queue import SyncQueueService
from synclease.registry import JobRegistry, load_object
from synclease.service import SyncService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a host process needs."""
    store: LogStore
    registry: JobRegistry
    resolver: EntityResolver
    sync: SyncService
    queue: SyncQueueService


def build_store(config: SyncleaseConfig, clock: Clock = utcnow) -> LogStore:
    kwargs = dict(
        machine_id=config.machine_id,
        default_lease_duration=timedelta(seconds=config.default_lease_seconds),
        clock=clock,
    )
    if config.store == "memory":
        return InMemoryLogStore(**kwargs)
    if config.store == "sqlite":
        return SqliteLogStore(config.sqlite_path, **kwargs)
    raise ConfigError(f"Unknown store type: {config.store}")


def build_registry(config: SyncleaseConfig) -> JobRegistry:
    registry = JobRegistry()
    for sync_id, path in config.jobs.items():
        registry.register_path(sync_id, path)
        logger.debug(f"Registered job {sync_id} -> {path}")
    return registry


def build_eligibility(entity: EntityConfig, clock: Clock = utcnow) -> EligibilityStrategy:
    kind = entity.eligibility.get("type", "interval")
    if kind == "always":
        return AlwaysEligible()
    seconds = entity.eligibility.get("seconds", 86400)
    try:
        return IntervalEligibility(timedelta(seconds=seconds), clock=clock)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Entity {entity.name}: invalid eligibility interval {seconds!r}: {e}") from e


def build_entities(config: SyncleaseConfig, clock: Clock = utcnow) -> list[SyncEntityOptions]:
    entities = []
    for entity in config.entities:
        entities.append(
            SyncEntityOptions(
                entity=entity.name,
                job=entity.job,
                schema_version=entity.schema_version,
                lease_duration=(
                    timedelta(seconds=entity.lease_seconds) if entity.lease_seconds else None
                ),
                eligibility=build_eligibility(entity, clock),
                parameters=entity.parameters,
            )
        )
    return entities


def build_provider(config: SyncleaseConfig) -> Optional[EntityProvider]:
    if not config.entity_provider:
        return None
    obj = load_object(config.entity_provider)
    provider = obj() if isinstance(obj, type) else obj
    if not isinstance(provider, EntityProvider):
        raise ConfigError(f"{config.entity_provider} is not an EntityProvider")
    return provider


def build_services(config: SyncleaseConfig, clock: Clock = utcnow) -> Services:
    """
    Build store, registry, resolver and services from configuration.

    Raises:
        ConfigurationError: If a job or provider path cannot be loaded, or
            an entity is misconfigured
        LogStoreError: If the store cannot be opened
    """
    store = build_store(config, clock)
    registry = build_registry(config)
    resolver = EntityResolver(build_entities(config, clock), provider=build_provider(config))

    unknown = sorted({e.job for e in resolver.entities if not registry.has(e.job)})
    if unknown:
        logger.warning(f"Entities reference unregistered jobs: {', '.join(unknown)}")

    return Services(
        store=store,
        registry=registry,
        resolver=resolver,
        sync=SyncService(store, registry, resolver, clock=clock, max_workers=config.max_workers),
        queue=SyncQueueService(store, resolver, clock=clock),
    )
