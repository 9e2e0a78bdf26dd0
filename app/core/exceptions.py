"""Core custom exceptions for the application."""


class PipelineError(Exception):
    """Base exception for pipeline-related errors."""


class ConfigurationError(PipelineError):
    """Exception for configuration-related errors (e.g., missing templates, invalid settings)."""


class NotFoundError(PipelineError):
    """A referenced project or question does not exist."""


class PromptTooLargeError(PipelineError):
    """The assembled prompt exceeds the configured size limit."""


class GenerationFailure(PipelineError):
    """The completion service returned no usable content."""


class GenerationTimeout(GenerationFailure):
    """The completion call did not finish within its time bound."""


class ParseFailure(PipelineError):
    """A completion could not be decoded into the expected structure."""


class PartialAggregationFailure(PipelineError):
    """One or more stance branches failed while building a project report."""

    def __init__(self, message: str, failed_question_ids: list[str] | None = None):
        super().__init__(message)
        self.failed_question_ids = failed_question_ids or []


class StoreError(PipelineError):
    """The persistence layer is unavailable or rejected an operation."""
