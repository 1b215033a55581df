"""
Error taxonomy for splitting, grading and task processing.

Services raise these; routes translate them into HTTPException and the task
queue records them as a task's error message.
"""


class HomeworkError(Exception):
    """Base class for all homework processing errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidInput(HomeworkError):
    """Missing file, empty file, unsupported type or a bad parameter. Never retried."""


class PdfToolkitError(HomeworkError):
    """A PDF primitive (page count, extract, merge) failed."""


class ExtractionFailed(HomeworkError):
    """No page content could be produced for a split unit, even page by page."""


class EmptyOutput(HomeworkError):
    """A split unit's output file is missing or zero bytes."""


class PageCountMismatch(HomeworkError):
    """A split unit's page count differs from its page range (strict mode only)."""


class TransientModelFailure(HomeworkError):
    """Network, timeout or availability failure from the grading backend. Retried."""


class ContentPolicyRejected(HomeworkError):
    """The grading backend refused the content on safety grounds. Never retried."""


class InvalidResponseFormat(HomeworkError):
    """The grading backend's answer could not be parsed even after repair."""


class FileVanished(HomeworkError):
    """The file being graded disappeared or became unreadable between attempts."""


class TaskPanic(HomeworkError):
    """An unexpected fault escaped a task handler and was caught by the worker."""

    def __init__(self, message: str = "An unexpected error occurred while processing the task"):
        super().__init__(message)
