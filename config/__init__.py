"""Configuration package: settings, logging, and exceptions."""

from config.exceptions import (
    QuillStoreError,
    NotFoundError,
    ConstraintViolationError,
    CycleDetectedError,
    BrokenChainError,
    StorageFailureError,
    KeySpaceExhausted,
    DeltaError,
)
from config.logging_config import setup_logging
from config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "setup_logging",
    "QuillStoreError",
    "NotFoundError",
    "ConstraintViolationError",
    "CycleDetectedError",
    "BrokenChainError",
    "StorageFailureError",
    "KeySpaceExhausted",
    "DeltaError",
]
