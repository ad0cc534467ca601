from .config import Settings
from .context import NarrativeContext
from .errors import (
    ComicGenerationError,
    ExtractionError,
    ImageSynthesisError,
    InvalidOptionsError,
    InvalidStatusTransition,
    NotFoundError,
    PersistenceError,
    UnsupportedInputError,
)
from .jobs import ComicLocks, ComicPipeline
from .models import Comic, ComicStatus, DetectedTextBox, GenerationOptions, InputType, Panel, PanelScript
from .parsing import parse_or_default
from .steps import DurableStep, RetryingStepRunner, RetryPolicy
from .store import ComicStore, InMemoryComicStore, S3ComicStore

__all__ = [
    'Settings',
    'NarrativeContext',
    'ComicGenerationError',
    'ExtractionError',
    'ImageSynthesisError',
    'InvalidOptionsError',
    'InvalidStatusTransition',
    'NotFoundError',
    'PersistenceError',
    'UnsupportedInputError',
    'ComicLocks',
    'ComicPipeline',
    'Comic',
    'ComicStatus',
    'DetectedTextBox',
    'GenerationOptions',
    'InputType',
    'Panel',
    'PanelScript',
    'parse_or_default',
    'DurableStep',
    'RetryingStepRunner',
    'RetryPolicy',
    'ComicStore',
    'InMemoryComicStore',
    'S3ComicStore',
]
