"""AudioShelf core: catalog, metadata, configuration and logging."""

__version__ = "1.0.0"

from audioshelf.core.config import ConfigResolver, ConversionSettings, Settings
from audioshelf.core.errors import (
    AudioShelfError,
    ConfigError,
    NotFoundError,
    PayloadTooLargeError,
    RangeNotSatisfiableError,
    TranscodeError,
    ValidationError,
)
from audioshelf.core.events import EventBus, get_event_bus
from audioshelf.core.logging import (
    VerbosityLevel,
    get_logger,
    get_verbosity,
    set_colors,
    set_verbosity,
    verbosity_from_name,
)
from audioshelf.core.metadata import MetadataStore
from audioshelf.core.models import Book, BookOverrides, Episode, ResolvedEpisode, Season
from audioshelf.core.parser import derive_id, extract_episode_ordinal, extract_ordinal
from audioshelf.core.scanner import Catalog, LibraryScanner

__all__ = [
    # Config
    "ConfigResolver",
    "ConversionSettings",
    "Settings",
    # Errors
    "AudioShelfError",
    "ConfigError",
    "NotFoundError",
    "PayloadTooLargeError",
    "RangeNotSatisfiableError",
    "TranscodeError",
    "ValidationError",
    # Events
    "EventBus",
    "get_event_bus",
    # Logging
    "VerbosityLevel",
    "get_logger",
    "get_verbosity",
    "set_colors",
    "set_verbosity",
    "verbosity_from_name",
    # Catalog
    "Book",
    "BookOverrides",
    "Catalog",
    "Episode",
    "LibraryScanner",
    "MetadataStore",
    "ResolvedEpisode",
    "Season",
    "derive_id",
    "extract_episode_ordinal",
    "extract_ordinal",
]
