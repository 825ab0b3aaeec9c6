"""Source fetching helpers shared by the failure classifier."""

from buildforge.sources.git import (
    AUTH_PROMPTED_MESSAGE,
    GitErrorClass,
    classify_git_output,
    is_auth_prompt,
)

__all__ = ["AUTH_PROMPTED_MESSAGE", "GitErrorClass", "classify_git_output", "is_auth_prompt"]
