"""Validators for Build specs and their dispatcher."""

from buildforge.validate.base import Validator
from buildforge.validate.builtin import (
    RuntimeValidator,
    SecretsValidator,
    SourcesValidator,
    SourceURLValidator,
    StrategyValidator,
    check_url,
)
from buildforge.validate.dispatcher import collect_build_errors, new_validation, validate_build
from buildforge.validate.ownerrefs import OwnerReferencesValidator

__all__ = [
    "OwnerReferencesValidator",
    "RuntimeValidator",
    "SecretsValidator",
    "SourceURLValidator",
    "SourcesValidator",
    "StrategyValidator",
    "Validator",
    "check_url",
    "collect_build_errors",
    "new_validation",
    "validate_build",
]
