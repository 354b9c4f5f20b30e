"""
Posting error taxonomy.

Every failure of the posting automaton surfaces as a PostingError whose
message is written verbatim to the post job. `kind` tells callers how
the failure should be treated.
"""

from enum import Enum


class FailureKind(Enum):
    """How a posting failure should be treated."""
    FATAL = "fatal"                # terminal for this attempt
    TRANSIENT = "transient"        # already retried internally, then escalated
    CONFIG_GATED = "config_gated"  # outcome depends on an operator setting


class PostingError(Exception):
    """Base error for the posting automaton."""

    kind: FailureKind = FailureKind.FATAL

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class BrowserLaunchError(PostingError):
    pass


class LoginRequiredError(PostingError):
    def __init__(self, message: str = "Login required"):
        super().__init__(message)


class WritePageUnreachableError(PostingError):
    kind = FailureKind.TRANSIENT

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not reach write page ({attempts} attempts)")


class UIContractError(PostingError):
    """A control the automaton depends on is missing from the page."""

    def __init__(self, control: str, detail: str = ""):
        self.control = control
        message = f"Required control not found: {control}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class AssetUploadError(PostingError):
    kind = FailureKind.CONFIG_GATED

    def __init__(self, detail: str):
        super().__init__(f"Image upload failed: {detail}")


class ChallengeFailedError(PostingError):
    kind = FailureKind.TRANSIENT

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Challenge solve failed after {attempts} attempts")


class SubmissionRejectedError(PostingError):
    def __init__(self, dialog_message: str):
        self.dialog_message = dialog_message
        super().__init__(f"Post rejected: {dialog_message}")


class LandingNotObservedError(PostingError):
    def __init__(self, detail: str = ""):
        message = "Post did not complete: list page was not reached after submit"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
