"""Registry collaborator: resolves the digest, size and platforms of an image.

Speaks the OCI distribution API over httpx.  Anonymous bearer-token
challenges (``WWW-Authenticate: Bearer realm=...``) are answered
automatically; optional basic-auth credentials are sent to the token realm.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog
from pydantic import BaseModel, Field

from buildforge.core.exceptions import (
    InvalidImageReferenceError,
    RegistryError,
    RegistryUnavailableError,
)
from buildforge.core.reference import ImageReference, parse_image_reference
from buildforge.core.types import Platform
from buildforge.resilience.retry import RetryPolicy

logger = structlog.get_logger(__name__)

MEDIA_TYPE_OCI_INDEX = "application/vnd.oci.image.index.v1+json"
MEDIA_TYPE_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_DOCKER_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
MEDIA_TYPE_DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"

_INDEX_TYPES = frozenset({MEDIA_TYPE_OCI_INDEX, MEDIA_TYPE_DOCKER_LIST})
_ACCEPT = ", ".join(
    (MEDIA_TYPE_OCI_INDEX, MEDIA_TYPE_DOCKER_LIST, MEDIA_TYPE_OCI_MANIFEST, MEDIA_TYPE_DOCKER_MANIFEST)
)
_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


class ImageInfo(BaseModel):
    digest: str
    size: int | None = None
    platforms: list[Platform] = Field(default_factory=list)


@runtime_checkable
class RegistryClient(Protocol):
    async def resolve(self, image: str) -> ImageInfo: ...


class HttpRegistryClient:
    """Resolves image metadata from an OCI registry.

    Args:
        http_client: Optional shared :class:`httpx.AsyncClient`; one is
            created per call when omitted.
        insecure: Use plain HTTP instead of HTTPS.
        timeout: Per-request timeout in seconds.
        credentials: Optional ``{registry_host: (username, password)}``
            used when answering token challenges.
        retry: Policy for requests that fail on the transport or with a
            5xx answer.  Each registry request is retried on its own.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        insecure: bool = False,
        timeout: float = 10.0,
        credentials: dict[str, tuple[str, str]] | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._http_client = http_client
        self._scheme = "http" if insecure else "https"
        self._timeout = timeout
        self._credentials = credentials or {}
        self._tokens: dict[str, str] = {}
        self._retry = retry or RetryPolicy(max_retries=2, backoff_base=0.2, backoff_max=2.0)
        self._get = self._retry.as_decorator()(self._get_once)

    async def resolve(self, image: str) -> ImageInfo:
        """Return digest, size and platforms for *image*.

        Raises:
            RegistryError: The reference is invalid or the registry could not
                be queried.
        """
        try:
            ref = parse_image_reference(image)
        except InvalidImageReferenceError as exc:
            raise RegistryError(str(exc)) from exc

        should_close = False
        client = self._http_client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout)
            should_close = True
        try:
            return await self._resolve(client, ref)
        except httpx.HTTPError as exc:
            raise RegistryError(f"registry request for {image} failed: {exc}") from exc
        finally:
            if should_close:
                await client.aclose()

    # ------------------------------------------------------------------

    async def _resolve(self, client: httpx.AsyncClient, ref: ImageReference) -> ImageInfo:
        response = await self._get(
            client, ref, f"/v2/{ref.repository}/manifests/{ref.identifier}", accept=_ACCEPT
        )
        body = response.content
        digest = response.headers.get("Docker-Content-Digest") or (
            "sha256:" + hashlib.sha256(body).hexdigest()
        )
        manifest: dict[str, Any] = response.json()
        media_type = manifest.get("mediaType") or response.headers.get("Content-Type", "")

        if media_type.split(";")[0].strip() in _INDEX_TYPES or "manifests" in manifest:
            platforms = [
                Platform(
                    os=entry["platform"]["os"],
                    architecture=entry["platform"]["architecture"],
                    variant=entry["platform"].get("variant"),
                )
                for entry in manifest.get("manifests", [])
                if entry.get("platform")
                and entry["platform"].get("os") not in (None, "unknown")
            ]
            logger.debug("registry_index_resolved", image=str(ref), platforms=len(platforms))
            return ImageInfo(digest=digest, platforms=platforms)

        size = int(manifest.get("config", {}).get("size", 0)) + sum(
            int(layer.get("size", 0)) for layer in manifest.get("layers", [])
        )
        platforms = []
        config_digest = manifest.get("config", {}).get("digest")
        if config_digest:
            config_response = await self._get(
                client, ref, f"/v2/{ref.repository}/blobs/{config_digest}"
            )
            config = config_response.json()
            if config.get("os") and config.get("architecture"):
                platforms.append(
                    Platform(
                        os=config["os"],
                        architecture=config["architecture"],
                        variant=config.get("variant"),
                    )
                )
        return ImageInfo(digest=digest, size=size, platforms=platforms)

    async def _get_once(
        self,
        client: httpx.AsyncClient,
        ref: ImageReference,
        path: str,
        *,
        accept: str | None = None,
    ) -> httpx.Response:
        url = f"{self._scheme}://{ref.api_host}{path}"
        headers: dict[str, str] = {}
        if accept:
            headers["Accept"] = accept
        token = self._tokens.get(ref.api_host)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await client.get(url, headers=headers, timeout=self._timeout)
            if response.status_code == 401 and "WWW-Authenticate" in response.headers:
                token = await self._fetch_token(client, ref, response.headers["WWW-Authenticate"])
                self._tokens[ref.api_host] = token
                headers["Authorization"] = f"Bearer {token}"
                response = await client.get(url, headers=headers, timeout=self._timeout)
        except httpx.TransportError as exc:
            raise RegistryUnavailableError(f"registry request to {url} failed: {exc}") from exc

        if response.status_code >= 500:
            raise RegistryUnavailableError(
                f"registry returned HTTP {response.status_code} for {url}",
                details={"status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise RegistryError(
                f"registry returned HTTP {response.status_code} for {url}",
                details={"status_code": response.status_code},
            )
        return response

    async def _fetch_token(
        self, client: httpx.AsyncClient, ref: ImageReference, challenge: str
    ) -> str:
        scheme, _, params_raw = challenge.partition(" ")
        if scheme.lower() != "bearer":
            raise RegistryError(f"unsupported auth challenge {scheme!r} from {ref.api_host}")
        params = dict(_CHALLENGE_PARAM.findall(params_raw))
        realm = params.pop("realm", None)
        if not realm:
            raise RegistryError(f"auth challenge from {ref.api_host} has no realm")
        params.setdefault("scope", f"repository:{ref.repository}:pull")

        auth = self._credentials.get(ref.registry)
        response = await client.get(
            realm,
            params=params,
            auth=httpx.BasicAuth(*auth) if auth else None,
            timeout=self._timeout,
        )
        if response.status_code >= 400:
            raise RegistryError(
                f"token request to {realm} failed with HTTP {response.status_code}"
            )
        payload = response.json()
        token = payload.get("token") or payload.get("access_token")
        if not token:
            raise RegistryError(f"token response from {realm} has no token")
        return str(token)
