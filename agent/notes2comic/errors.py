class ComicGenerationError(Exception):
    """Base error for the comic pipeline.

    `retryable` tells the step runner whether another attempt can change the outcome.
    """
    retryable = True


class ExtractionError(ComicGenerationError):
    """Input artifact could not be read or turned into text."""


class UnsupportedInputError(ExtractionError):
    retryable = False


class AnalysisParseError(ComicGenerationError):
    """Analyzer response was not the expected JSON. Recovered with defaults."""


class ScriptParseError(ComicGenerationError):
    """Script response was not the expected JSON array. Recovered with defaults."""


class ImageSynthesisError(ComicGenerationError):
    """Image model produced no usable image. Recovered with a placeholder."""


class PersistenceError(ComicGenerationError):
    """Comic store or object storage failure."""


class NotFoundError(PersistenceError):
    retryable = False


class InvalidStatusTransition(ComicGenerationError):
    retryable = False

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move comic from '{current}' to '{target}'")


class InvalidOptionsError(ComicGenerationError):
    """Generation options failed validation."""
    retryable = False
