"""Exception hierarchy for the error pipeline."""


class ErrorPipelineError(Exception):
    """Base class for every error raised by errorpipe itself."""


class LifecycleError(ErrorPipelineError):
    """A component was used in the wrong lifecycle state."""


class NotInitializedError(LifecycleError):
    def __init__(self, component: str):
        super().__init__(f"{component} is not initialized")
        self.component = component


class AlreadyInitializedError(LifecycleError):
    def __init__(self, component: str):
        super().__init__(f"{component} is already initialized")
        self.component = component


class NoActiveAdapterError(LifecycleError):
    def __init__(self):
        super().__init__("No active adapter. Call use_adapter() first.")


class AdapterDisabledError(LifecycleError):
    """The adapter was configured with enabled=False and discards errors."""

    def __init__(self, name: str):
        super().__init__(f"Adapter '{name}' is disabled")
        self.name = name


class AdapterNotFoundError(ErrorPipelineError, KeyError):
    def __init__(self, name: str):
        super().__init__(f"Adapter '{name}' not found. Register it before use.")
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


class ConfigError(ErrorPipelineError, ValueError):
    """Raised when configuration is missing or invalid."""
