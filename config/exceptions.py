"""Custom exception hierarchy for the chapter store."""

from typing import Optional


class QuillStoreError(Exception):
    """Base exception for all chapter store errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


# ---- Lookup Errors ----

class NotFoundError(QuillStoreError):
    """Unknown novel, chapter or revision identifier."""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} not found", {"id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


# ---- Structural Errors ----

class ConstraintViolationError(QuillStoreError):
    """A structural rule was broken (cross-novel parent, empty field, bad key)."""


class CycleDetectedError(ConstraintViolationError):
    """A move would make a chapter its own ancestor."""

    def __init__(self, chapter_id: int, new_parent_id: int):
        super().__init__(
            "Move would create a cycle",
            {"chapter_id": chapter_id, "new_parent_id": new_parent_id},
        )
        self.chapter_id = chapter_id
        self.new_parent_id = new_parent_id


# ---- Version Chain Errors ----

class BrokenChainError(QuillStoreError):
    """A revision chain cannot be reconstructed; the database is corrupt."""

    def __init__(self, revision_id: int, reason: str):
        super().__init__(f"Broken revision chain: {reason}", {"revision_id": revision_id})
        self.revision_id = revision_id
        self.reason = reason


# ---- Storage Errors ----

class StorageFailureError(QuillStoreError):
    """The underlying SQLite database failed."""


# ---- Internal Signals ----

class KeySpaceExhausted(QuillStoreError):
    """No short enough sort key fits between two siblings; renumber them."""

    def __init__(self, lower: Optional[str], upper: Optional[str]):
        super().__init__("Sort key space exhausted", {"after": lower, "before": upper})
        self.lower = lower
        self.upper = upper


class DeltaError(QuillStoreError):
    """A delta is malformed or does not match the text it is applied to."""
