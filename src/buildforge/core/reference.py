"""Container image reference parsing.

Follows the distribution reference grammar::

    reference  := name [ ":" tag ] [ "@" digest ]
    name       := [domain "/"] path-component ["/" path-component]*

A first component is treated as a registry domain when it contains a ``.``
or a ``:`` or is ``localhost``; otherwise the image lives on Docker Hub.
"""

from __future__ import annotations

import re

from pydantic import BaseModel

from buildforge.core.exceptions import InvalidImageReferenceError

DEFAULT_REGISTRY = "docker.io"
_DOCKER_HUB_API = "registry-1.docker.io"

_PATH_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_DOMAIN = re.compile(
    r"^(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
    r"(?:\.(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9]))*"
    r"(?::[0-9]+)?$"
)
_TAG = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST = re.compile(
    r"^[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}$"
)
_MAX_NAME_LENGTH = 255


class ImageReference(BaseModel):
    """A parsed image reference."""

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    @property
    def api_host(self) -> str:
        """Host serving the registry HTTP API for this reference."""
        if self.registry == DEFAULT_REGISTRY:
            return _DOCKER_HUB_API
        return self.registry

    @property
    def identifier(self) -> str:
        """Digest when pinned, otherwise the tag (``latest`` by default)."""
        return self.digest or self.tag or "latest"

    def __str__(self) -> str:
        ref = f"{self.registry}/{self.repository}"
        if self.tag:
            ref += f":{self.tag}"
        if self.digest:
            ref += f"@{self.digest}"
        return ref


def parse_image_reference(reference: str) -> ImageReference:
    """Parse *reference* into its registry, repository, tag and digest.

    Raises:
        InvalidImageReferenceError: When *reference* is not a syntactically
            valid image reference.
    """
    if not reference or reference.strip() != reference:
        raise InvalidImageReferenceError(reference, "reference must be non-empty without whitespace")

    remainder = reference
    digest: str | None = None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
        if not _DIGEST.match(digest):
            raise InvalidImageReferenceError(reference, f"invalid digest {digest!r}")

    tag: str | None = None
    last_slash = remainder.rfind("/")
    colon = remainder.rfind(":")
    if colon > last_slash:
        remainder, tag = remainder[:colon], remainder[colon + 1 :]
        if not _TAG.match(tag):
            raise InvalidImageReferenceError(reference, f"invalid tag {tag!r}")

    if not remainder:
        raise InvalidImageReferenceError(reference, "missing repository name")
    if len(remainder) > _MAX_NAME_LENGTH:
        raise InvalidImageReferenceError(reference, "repository name too long")

    components = remainder.split("/")
    registry = DEFAULT_REGISTRY
    first = components[0]
    if len(components) > 1 and ("." in first or ":" in first or first == "localhost"):
        if not _DOMAIN.match(first):
            raise InvalidImageReferenceError(reference, f"invalid registry {first!r}")
        registry = first
        components = components[1:]

    for component in components:
        if not _PATH_COMPONENT.match(component):
            raise InvalidImageReferenceError(
                reference, f"invalid repository component {component!r}"
            )

    if registry == DEFAULT_REGISTRY and len(components) == 1:
        components = ["library", *components]

    return ImageReference(
        registry=registry,
        repository="/".join(components),
        tag=tag,
        digest=digest,
    )


def is_valid_image_reference(reference: str) -> bool:
    try:
        parse_image_reference(reference)
    except InvalidImageReferenceError:
        return False
    return True
