"""Error taxonomy for the autosave engine."""


class AutoSaveError(Exception):
    """Base class for all autosave errors."""


class ConfigError(AutoSaveError):
    """An interval or path was rejected; the previous value stays in force."""


class ActionIOError(AutoSaveError):
    """A save, copy or delete failed. The action is retried on the next tick."""


class HostEnvironmentError(AutoSaveError):
    """A query against the host environment failed."""
