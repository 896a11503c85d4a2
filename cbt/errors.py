"""Exception types raised by the exam engine and its collaborators."""


class CBTError(Exception):
    """Base class for all engine errors."""


class SessionLoadError(CBTError):
    """Questions or settings could not be loaded; the session cannot start."""


class EmptyExamError(CBTError):
    """The exam has no questions."""


class SessionStateError(CBTError):
    """The operation is not allowed in the session's current state."""


class SubmissionError(CBTError):
    """The submission collaborator failed to persist a finished session."""


class ExamAccessError(CBTError):
    """Wrong token, or the exam window is not open."""


class GraderError(CBTError):
    """The essay grading oracle failed or returned something unusable."""


class ExamNotFoundError(CBTError):
    """No exam with the requested id."""


class SessionNotFoundError(CBTError):
    """The student has no running session for the exam."""
