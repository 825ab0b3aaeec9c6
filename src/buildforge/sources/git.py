"""Classification of git clone failures surfaced by the source step.

The source step either writes an ``error-reason`` result directly or leaves
only its log output; :func:`classify_git_output` recognises the messages git
prints for the common credential and reference problems.
"""

from __future__ import annotations

import re
from enum import StrEnum

AUTH_PROMPTED_MESSAGE = "incomplete credentials, please check docs/faq"


class GitErrorClass(StrEnum):
    AUTH_INVALID_USER_OR_PASS = "AuthInvalidUserOrPass"
    AUTH_INVALID_KEY = "AuthInvalidKey"
    AUTH_EXPECTED_SSH = "AuthExpectedSSH"
    AUTH_UNEXPECTED_SSH = "AuthUnexpectedSSH"
    AUTH_PROMPTED = "AuthPrompted"
    REVISION_NOT_FOUND = "RevisionNotFound"
    REPOSITORY_NOT_FOUND = "RepositoryNotFound"
    UNKNOWN = "Unknown"

    def to_message(self) -> str:
        return _MESSAGES[self]


_MESSAGES: dict[GitErrorClass, str] = {
    GitErrorClass.AUTH_INVALID_USER_OR_PASS: (
        "Basic authentication has failed. Check your username or password. "
        "Note: GitHub requires a personal access token instead of your regular password."
    ),
    GitErrorClass.AUTH_INVALID_KEY: (
        "The key is invalid for the specified target. Please make sure that the remote "
        "source exists, you have sufficient rights and the key is in the right format."
    ),
    GitErrorClass.AUTH_EXPECTED_SSH: (
        "Credential/URL inconsistency: SSH credentials provided, but URL is not a SSH Git URL."
    ),
    GitErrorClass.AUTH_UNEXPECTED_SSH: (
        "Credential/URL inconsistency: No SSH credentials provided, but URL is a SSH Git URL."
    ),
    GitErrorClass.AUTH_PROMPTED: AUTH_PROMPTED_MESSAGE,
    GitErrorClass.REVISION_NOT_FOUND: (
        "The remote revision does not exist. Check your revision argument."
    ),
    GitErrorClass.REPOSITORY_NOT_FOUND: (
        "The source repository does not exist, or you have insufficient permission to access it."
    ),
    GitErrorClass.UNKNOWN: "Git encountered an unknown error.",
}

# Markers git prints when it wanted to ask for credentials but could not.
_AUTH_PROMPT_MARKERS = (
    re.compile(r"terminal prompts disabled", re.IGNORECASE),
    re.compile(r"could not read (Username|Password) for", re.IGNORECASE),
)

# Ordered: the first matching pattern wins.
_PATTERNS: list[tuple[re.Pattern[str], GitErrorClass]] = [
    (re.compile(r"Authentication failed for", re.IGNORECASE), GitErrorClass.AUTH_INVALID_USER_OR_PASS),
    (re.compile(r"invalid (format|key)|Permission denied \(publickey\)", re.IGNORECASE), GitErrorClass.AUTH_INVALID_KEY),
    (re.compile(r"ssh: Could not resolve hostname", re.IGNORECASE), GitErrorClass.AUTH_UNEXPECTED_SSH),
    (re.compile(r"Remote branch .* not found|couldn't find remote ref", re.IGNORECASE), GitErrorClass.REVISION_NOT_FOUND),
    (re.compile(r"Repository not found|does not appear to be a git repository", re.IGNORECASE), GitErrorClass.REPOSITORY_NOT_FOUND),
]


def is_auth_prompt(output: str) -> bool:
    """Whether *output* shows git blocked on an interactive credential prompt."""
    return any(marker.search(output) for marker in _AUTH_PROMPT_MARKERS)


def classify_git_output(output: str) -> GitErrorClass:
    """Map git's error output to a :class:`GitErrorClass`.

    The credential-prompt check runs first: a missing repository on most
    hosts looks like an authentication challenge to an anonymous client.
    """
    if is_auth_prompt(output):
        return GitErrorClass.AUTH_PROMPTED
    for pattern, error_class in _PATTERNS:
        if pattern.search(output):
            return error_class
    return GitErrorClass.UNKNOWN


def parse_error_class(value: str | None) -> GitErrorClass | None:
    """Return the :class:`GitErrorClass` named by *value*, if any."""
    if not value:
        return None
    try:
        return GitErrorClass(value)
    except ValueError:
        return None
