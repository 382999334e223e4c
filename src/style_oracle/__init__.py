"""style_oracle: CSS computed-style oracle backed by a headless browser engine."""

from style_oracle.config import EngineConfig, EngineMode
from style_oracle.engine import StyleEngine, compute_style
from style_oracle.errors import (
    ConfigurationError,
    DecodeFailureError,
    ElementNotMatchedError,
    EngineNotFoundError,
    EngineShutdownError,
    EngineTimeoutError,
    ExtractionError,
    NoResultFoundError,
    SpawnFailureError,
    StyleComputationError,
    StyleEngineError,
)
from style_oracle.model import StyleQuery, StyleResult

__version__ = "0.1.0"

__all__ = [
    "StyleEngine",
    "compute_style",
    "EngineConfig",
    "EngineMode",
    "StyleQuery",
    "StyleResult",
    "StyleEngineError",
    "ConfigurationError",
    "EngineNotFoundError",
    "SpawnFailureError",
    "EngineTimeoutError",
    "EngineShutdownError",
    "ExtractionError",
    "NoResultFoundError",
    "DecodeFailureError",
    "StyleComputationError",
    "ElementNotMatchedError",
]
