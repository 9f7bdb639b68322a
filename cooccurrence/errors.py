"""Exceptions raised by the simulation and model building stages.

Every error carries the stage that failed (solve, sample, detect, build or
estimate) so that a run aborts with a message saying where and why.
"""


class CooccurrenceError(Exception):
    """Base class for errors tagged with the pipeline stage.

    Attributes:
        stage: name of the stage that failed
    """

    def __init__(self, message: str, stage: str = None) -> None:
        self.stage = stage
        if stage is not None:
            message = f'[{stage}] {message}'
        super().__init__(message)


class InvalidParameterError(CooccurrenceError, ValueError):
    """An input was rejected at the boundary, before any simulation."""


class InfeasibleConstraintError(CooccurrenceError):
    """No valid joint distribution matches the marginals and odds ratios."""

    def __init__(self, message: str, stage: str = 'solve') -> None:
        super().__init__(message, stage)


class DataBundleError(CooccurrenceError):
    """The data bundle or initial values are inconsistent with the model."""

    def __init__(self, message: str, stage: str = 'build') -> None:
        super().__init__(message, stage)


class SamplerError(CooccurrenceError):
    """The external sampler failed. Not retried."""

    def __init__(self, message: str, stage: str = 'estimate') -> None:
        super().__init__(message, stage)
