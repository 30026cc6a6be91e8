"""APIRunner custom exceptions."""

class APIRunnerError(Exception):
    """Base exception for APIRunner."""
    pass

class ConfigurationError(APIRunnerError):
    """Raised when configuration or a user supplied system selection is invalid."""
    pass

class CompilationError(APIRunnerError):
    """Raised when a scenario or payload document cannot be parsed."""
    pass

class TemplateError(APIRunnerError):
    """Raised when placeholder substitution produces malformed JSON."""
    pass

class PathResolutionError(APIRunnerError):
    """Raised when an extraction path cannot be evaluated."""
    pass

class DependencyError(APIRunnerError):
    """Base exception for dependency resolution failures."""
    pass

class DependencyNotFound(DependencyError):
    """Raised when a dependency endpoint cannot be located."""
    pass

class DependencyExecutionFailed(DependencyError):
    """Raised when a dependency endpoint executed but did not succeed."""
    pass

class CyclicDependencyError(DependencyExecutionFailed):
    """Raised when a dependency chain re-enters an endpoint already being resolved."""
    pass

class NetworkError(APIRunnerError):
    """Raised when network operations fail."""
    pass

class ScriptExecutionError(APIRunnerError):
    """Raised when a lifecycle script or sandboxed expression fails."""
    pass

class AssertionEvaluationError(APIRunnerError):
    """Raised when an assertion cannot be evaluated."""
    pass

class StorageError(APIRunnerError):
    """Raised when job history or response cache operations fail."""
    pass
