"""
Configuration schema (``payment_config.schema``).

Frozen dataclasses describing runtime settings.  Instances are produced by
``payment_config.loader`` from YAML plus environment overrides and are
never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///payment_requests.db"
    echo: bool = False


@dataclass(frozen=True)
class StorageSettings:
    """Local reference-file storage: files under ``root`` served at ``base_url``."""

    root: str = "storage"
    base_url: str = "/storage"


@dataclass(frozen=True)
class JobSettings:
    """Behaviour of the two periodic jobs."""

    requisites_retention_days: int = 7  # <= 0 disables pruning
    rule_batch_size: int = 100
    prune_batch_size: int = 200
    commit_every: int = 50  # items per transaction in a guarded run; 0 commits once at the end
    lock_ttl_seconds: int = 3600
    debug: bool = False  # log a snapshot of every active rule before each run
    system_actor_id: UUID | None = None


@dataclass(frozen=True)
class ScheduleSettings:
    """Cron triggers, evaluated in ``PaymentSettings.default_timezone``."""

    tick_interval_seconds: int = 60
    run_due_rules_cron: str = "* * * * *"
    prune_cron: str = "0 2 * * *"


@dataclass(frozen=True)
class PaymentSettings:
    default_timezone: str = "Europe/Kyiv"
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    jobs: JobSettings = field(default_factory=JobSettings)
    scheduling: ScheduleSettings = field(default_factory=ScheduleSettings)
