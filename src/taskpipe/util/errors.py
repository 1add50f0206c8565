"""Application-level error types."""


class TaskpipeError(Exception):
    """Base error for taskpipe."""


class ConfigurationError(TaskpipeError):
    """Raised when task declarations or run preconditions are invalid."""


class UnknownTaskError(ConfigurationError):
    """Raised when a requested task is not declared."""

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown task: {name}")
        self.name = name


class UnknownDependencyError(ConfigurationError):
    """Raised when a task depends on an undeclared task."""

    def __init__(self, dependency: str, dependent: str) -> None:
        super().__init__(f"unknown dependency '{dependency}' of task '{dependent}'")
        self.dependency = dependency
        self.dependent = dependent


class DuplicateTaskError(ConfigurationError):
    """Raised when a task name is registered twice."""

    def __init__(self, name: str) -> None:
        super().__init__(f"task already declared: {name}")
        self.name = name


class MissingEnvironmentError(ConfigurationError):
    """Raised when a required environment variable is unset."""

    def __init__(self, variable: str) -> None:
        super().__init__(f"required environment variable is not set: {variable}")
        self.variable = variable


class CycleError(TaskpipeError):
    """Raised when the dependency graph has a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        super().__init__("dependency cycle: " + " -> ".join(cycle))
        self.cycle = cycle


class ExecutionError(TaskpipeError):
    """Raised when a task process cannot be created."""


class RunFailedError(TaskpipeError):
    """Raised when a run did not complete successfully."""

    def __init__(self, failed: list[str], *, interrupted: bool = False) -> None:
        if interrupted:
            detail = "run was interrupted"
        else:
            detail = "failed tasks: " + ", ".join(failed)
        super().__init__(f"run did not complete ({detail})")
        self.failed = failed
        self.interrupted = interrupted
