from typing import Optional


class SupervisorError(Exception):
    """Base class for all supervisor errors."""
    pass


class FatalSupervisorError(SupervisorError):
    """
    An error that requires operator intervention.
    The supervisor terminates with exit status 1 when one is raised or recorded.
    """

    def __init__(self, message: str, remediation: Optional[str] = None) -> None:
        super().__init__(message)
        self.remediation = remediation


class ConfigError(FatalSupervisorError):
    """Raised when the environment holds an invalid setting."""
    pass


class ExecutableError(FatalSupervisorError):
    """Raised when the launch path is missing or cannot be made executable."""
    pass


class BindError(FatalSupervisorError):
    """Raised when the liveness endpoint cannot open its listener."""
    pass


class PortInUseError(BindError):
    """Raised when the liveness port is already bound by another process."""
    pass
