"""Project-level exception hierarchy."""


class CronherdError(Exception):
    """Base for all cronherd exceptions."""


class ConfigurationError(CronherdError):
    """Job registration payload or scheduler settings are invalid."""


class ScheduleError(ConfigurationError):
    """Cron expression could not be parsed or evaluated."""


class ClaimError(CronherdError):
    """Claim file could not be opened, locked, unlocked, closed or deleted."""
