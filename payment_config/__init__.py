"""
payment_config -- typed runtime settings.

``load_settings()`` is the single entry point: packaged YAML defaults, an
optional override file, then ``PAYMENT_*`` environment variables, parsed
into frozen dataclasses.  The kernel never reads configuration itself;
settings are passed in by the batch orchestrator and the command line.
"""

from payment_config.loader import load_settings, parse_settings
from payment_config.schema import (
    DatabaseSettings,
    JobSettings,
    PaymentSettings,
    ScheduleSettings,
    StorageSettings,
)

__all__ = [
    "DatabaseSettings",
    "JobSettings",
    "PaymentSettings",
    "ScheduleSettings",
    "StorageSettings",
    "load_settings",
    "parse_settings",
]
