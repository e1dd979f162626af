from __future__ import annotations


class ConfigError(ValueError):
    """Broken experiment setup (unsupported width, bad period, ...). Never retried."""


class HorizonTooLongError(ConfigError):
    """LCM of the station periods exceeds the configured horizon cap."""


class SolverError(RuntimeError):
    """The packet-to-round map for a horizon could not be computed."""


class ScheduleDesyncError(RuntimeError):
    """Internal bookkeeping no longer agrees with the active packet schedule."""
