"""
Error Types

Exceptions raised by the enrichment pipeline and the note store.
The queue converts them into terminal note states; the API layer
maps NoteNotFoundError to HTTP 404.
"""


class RemenError(Exception):
    """Base class for application errors."""


class InferenceError(RemenError):
    """A model call failed, timed out, or produced unusable output."""


class ModelNotReadyError(InferenceError):
    """A model handle was used before it reported ``is_ready``."""


class JobCancelled(RemenError):
    """Raised at a stage boundary once the job's cancellation token is set."""


class NoteNotFoundError(RemenError):
    """The referenced note does not exist (or was hard-deleted)."""

    def __init__(self, note_id: str) -> None:
        super().__init__(f"Note {note_id} not found")
        self.note_id = note_id
