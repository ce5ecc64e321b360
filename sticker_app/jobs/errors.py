"""
Job Errors

Error taxonomy shared by the submitter, the queue runner and the HTTP layer.
Every error carries a stable `code` that is surfaced to API callers.
"""

from typing import Any, Dict, Optional


class StickerJobError(Exception):
    """Base class for sticker job errors."""
    code = "sticker_job_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"code": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(StickerJobError):
    """Malformed or missing request fields. Nothing was mutated."""
    code = "validation_error"


class NotFoundError(StickerJobError):
    """A referenced style, subject list or job does not exist."""
    code = "not_found"


class DependencyError(StickerJobError):
    """Queue, store or storage failed while an operation was in progress."""
    code = "dependency_error"


class RemoteGenerationError(StickerJobError):
    """The image generation service rejected or failed a request."""
    code = "remote_generation_error"

    def __init__(self, status: Optional[int], detail: str):
        if status is None:
            message = f"Image generation failed: {detail}"
        else:
            message = f"Image generation failed ({status}): {detail}"
        super().__init__(message, {"status": status})
        self.status = status
        self.detail = detail


class PoisonMessageError(StickerJobError):
    """A queue message that cannot be parsed or resolved to a work item."""
    code = "poison_message"


class InvalidTransitionError(StickerJobError):
    """A work item status change that the state machine does not allow."""
    code = "invalid_transition"
