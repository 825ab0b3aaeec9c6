"""Selects and constructs the validator for a requested concern."""

from __future__ import annotations

from typing import Callable, Iterable

import structlog

from buildforge.core.constants import BUILD_VALIDATIONS, ValidationType
from buildforge.core.exceptions import UnknownValidationTypeError, ValidationError
from buildforge.core.scheme import Scheme
from buildforge.core.types import Build
from buildforge.store.base import ObjectStore
from buildforge.validate.base import Validator
from buildforge.validate.builtin import (
    RuntimeValidator,
    SecretsValidator,
    SourcesValidator,
    SourceURLValidator,
    StrategyValidator,
)
from buildforge.validate.ownerrefs import OwnerReferencesValidator

logger = structlog.get_logger(__name__)

_Factory = Callable[[Build, ObjectStore, Scheme | None], Validator]

_FACTORIES: dict[ValidationType, _Factory] = {
    ValidationType.SECRETS: lambda build, client, _: SecretsValidator(build, client),
    ValidationType.STRATEGIES: lambda build, client, _: StrategyValidator(build, client),
    ValidationType.SOURCE_URL: lambda build, client, _: SourceURLValidator(build, client),
    ValidationType.RUNTIME: lambda build, client, _: RuntimeValidator(build, client),
    ValidationType.SOURCES: lambda build, client, _: SourcesValidator(build, client),
    ValidationType.OWNER_REFERENCES: (
        lambda build, client, scheme: OwnerReferencesValidator(build, client, scheme)
    ),
}

if set(_FACTORIES) != set(ValidationType):  # pragma: no cover
    raise RuntimeError("every ValidationType needs a validator factory")


def new_validation(
    validation_type: str | ValidationType,
    build: Build,
    client: ObjectStore,
    scheme: Scheme | None = None,
) -> Validator:
    """Construct the validator for *validation_type* bound to *build*.

    Only the owner-references validator uses *scheme*.

    Raises:
        UnknownValidationTypeError: *validation_type* is not one of the
            known concerns.  Nothing is constructed.
    """
    try:
        concern = ValidationType(validation_type)
    except ValueError:
        raise UnknownValidationTypeError(
            "unknown validation type", details={"validation_type": str(validation_type)}
        ) from None
    return _FACTORIES[concern](build, client, scheme)


async def validate_build(
    build: Build,
    client: ObjectStore,
    validation_types: Iterable[str | ValidationType] = BUILD_VALIDATIONS,
    scheme: Scheme | None = None,
) -> None:
    """Run validations in order and raise the first error found."""
    for validation_type in validation_types:
        await new_validation(validation_type, build, client, scheme).validate()


async def collect_build_errors(
    build: Build,
    client: ObjectStore,
    validation_types: Iterable[str | ValidationType] = BUILD_VALIDATIONS,
    scheme: Scheme | None = None,
) -> list[ValidationError]:
    """Run every validation and return all errors instead of stopping early."""
    errors: list[ValidationError] = []
    for validation_type in validation_types:
        validator = new_validation(validation_type, build, client, scheme)
        try:
            await validator.validate()
        except ValidationError as exc:
            logger.debug(
                "validation_failed",
                validator=validator.name,
                build=build.metadata.name,
                reason=str(exc.reason),
            )
            errors.append(exc)
    return errors
