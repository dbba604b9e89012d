from column_compiler.models import ErrorKind


class PipelineError(Exception):
    """Base error for everything the pipeline classifies."""

    def __init__(self, kind, message):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self):
        return f"{self.kind.value}: {self.message}"


class FetchError(PipelineError):
    def __init__(self, kind, message, attempts=1):
        super().__init__(kind, message)
        self.attempts = attempts


class SanitizeError(PipelineError):
    def __init__(self, message):
        super().__init__(ErrorKind.EMPTY_CONTENT, message)


class RenderError(PipelineError):
    def __init__(self, message):
        super().__init__(ErrorKind.RENDER_FAILURE, message)


class MergeError(PipelineError):
    def __init__(self, message):
        super().__init__(ErrorKind.UNKNOWN, message)


class SessionStartupError(PipelineError):
    """Raised when the pool cannot open its rendering sessions. Fatal for the run."""

    def __init__(self, message):
        super().__init__(ErrorKind.UNKNOWN, message)


class ConfigError(ValueError):
    pass
