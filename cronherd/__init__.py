"""cronherd: cron-style jobs inside asyncio hosts, run once per occurrence across workers."""

from cronherd.claims import Claim, ClaimDirectory
from cronherd.config import SchedulerConfig, load_config
from cronherd.errors import ClaimError, ConfigurationError, CronherdError, ScheduleError
from cronherd.registration import JobDefinition, ScheduleTable, SingleSchedule
from cronherd.schedule import TimeBase, next_time
from cronherd.scheduler import CronScheduler

__version__ = "0.1.0"

__all__ = [
    "Claim",
    "ClaimDirectory",
    "ClaimError",
    "ConfigurationError",
    "CronScheduler",
    "CronherdError",
    "JobDefinition",
    "ScheduleError",
    "ScheduleTable",
    "SchedulerConfig",
    "SingleSchedule",
    "TimeBase",
    "load_config",
    "next_time",
]
