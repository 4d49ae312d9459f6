"""Exception taxonomy shared by the answer and synthesis engines."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base error; `stage` names the pipeline step that failed."""

    def __init__(self, message: str, stage: str | None = None) -> None:
        self.stage = stage
        self.message = message
        super().__init__(f"{stage}: {message}" if stage else message)


class InvalidInputError(PipelineError):
    """Empty question/PMID, missing collaborator, or otherwise unusable input."""


class InvalidConfigError(InvalidInputError):
    """Configuration failed validation."""


class UpstreamError(PipelineError):
    """A literature or completion collaborator raised."""


class RetrievalFailedError(UpstreamError):
    pass


class CompletionFailedError(UpstreamError):
    pass


class AllScoringFailedError(UpstreamError):
    """Every paper in a scoring batch failed; wraps the first underlying error."""

    def __init__(self, failed_count: int, first_error: BaseException, stage: str | None = "score") -> None:
        self.failed_count = failed_count
        self.first_error = first_error
        super().__init__(
            f"relevance scoring failed for all {failed_count} papers: {first_error}",
            stage=stage,
        )


class BusinessOutcomeError(PipelineError):
    """Terminal outcome that is not a transport failure."""


class NoResultsError(BusinessOutcomeError):
    pass


class FetchEmptyError(BusinessOutcomeError):
    pass


class ThresholdNotMetError(BusinessOutcomeError):
    pass


class EmptySynthesisError(BusinessOutcomeError):
    pass


class CancellationError(PipelineError):
    """The caller cancelled the operation; never converted into a default value."""
