"""Docker Registry API v2 / OCI distribution async client implementation."""

import asyncio
import json
import re
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urljoin

import aiohttp
import structlog

from ..exceptions import (
    AuthenticationError,
    BlobUploadError,
    DigestMismatchError,
    ImageNotFoundError,
    ManifestError,
    RegistryConnectionError,
    RegistryError,
)
from ..utils.digest import calculate_digest, ensure_digest
from .reference import ImageReference, normalize_registry, parse_reference
from .types import (
    DOCKER_MANIFEST_LIST,
    MANIFEST_ACCEPT,
    Descriptor,
    RegistryConfig,
    RemoteImage,
)

CHUNK_SIZE = 5 * 1024 * 1024  # 5MB
TAGS_PAGE_SIZE = 1000

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')
_LINK_NEXT = re.compile(r'<([^>]+)>\s*;\s*rel="?next"?')


@dataclass
class _Response:
    status: int
    headers: Mapping[str, str]
    body: bytes


def parse_auth_challenge(header: str) -> tuple[str, dict[str, str]]:
    """Parse a WWW-Authenticate header.

    Args:
        header: Header value (e.g. 'Bearer realm="https://auth",service="reg"')

    Returns:
        Lowercased scheme and its parameters
    """
    scheme, _, rest = header.strip().partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM.findall(rest))


def build_manifest_list(platform_images: Mapping[str, RemoteImage]) -> bytes:
    """Serialize a Docker manifest list for the given platform images.

    Platform keys are inserted in sorted order and the JSON is compact, so
    identical inputs always yield identical bytes (and digest) no matter
    how the mapping was populated.

    Args:
        platform_images: Mapping of "os/arch" to image handle

    Returns:
        Manifest list bytes
    """
    by_platform = {str(key): image for key, image in platform_images.items()}
    manifests = []
    for platform in sorted(by_platform):
        image = by_platform[platform]
        os_name, _, architecture = platform.partition("/")
        manifests.append(
            {
                "mediaType": image.media_type,
                "size": image.size,
                "digest": image.digest,
                "platform": {"architecture": architecture, "os": os_name},
            }
        )

    index = {
        "schemaVersion": 2,
        "mediaType": DOCKER_MANIFEST_LIST,
        "manifests": manifests,
    }
    return json.dumps(index, separators=(",", ":")).encode("utf-8")


class RegistryClient:
    """Docker Registry API v2 async client.

    Credentials are scoped to ``config.host``: requests to any other
    registry are made anonymously. Bearer token challenges are answered
    with the same credentials and tokens are cached per repository scope.
    """

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        *,
        logger=None,
        connector: Optional[aiohttp.TCPConnector] = None,
    ) -> None:
        """Initialize the registry client.

        Args:
            config: Registry host, credentials and timeout
            logger: Bound structlog logger
            connector: aiohttp connector for connection pooling
        """
        self.config = config or RegistryConfig()
        self.connector = connector
        self.session: Optional[aiohttp.ClientSession] = None
        self.log = logger or structlog.get_logger(__name__)
        self._tokens: dict[tuple[str, str], str] = {}

    async def __aenter__(self) -> "RegistryClient":
        """Enter async context manager."""
        self._open_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    def _open_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                connector=self.connector,
                timeout=aiohttp.ClientTimeout(
                    sock_connect=self.config.timeout, sock_read=self.config.timeout
                ),
            )
        return self.session

    # Transport

    def _basic_auth(self, ref: ImageReference) -> Optional[str]:
        if not self.config.has_credentials:
            return None
        if self.config.host and normalize_registry(self.config.host) != ref.registry:
            self.log.debug(
                "credentials not sent to foreign registry",
                registry=ref.registry,
                credential_host=self.config.host,
            )
            return None
        return aiohttp.BasicAuth(self.config.username, self.config.password).encode()

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        data: Optional[bytes],
        token: Optional[str],
        basic: Optional[str],
    ) -> _Response:
        session = self._open_session()
        request_headers = dict(headers)
        if token:
            request_headers["Authorization"] = f"Bearer {token}"
        elif basic:
            request_headers["Authorization"] = basic

        try:
            async with session.request(
                method, url, headers=request_headers, data=data
            ) as resp:
                body = b"" if method == "HEAD" else await resp.read()
                return _Response(resp.status, resp.headers, body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RegistryConnectionError(f"{method} {url} failed: {e}") from e

    async def _request(
        self,
        method: str,
        ref: ImageReference,
        path: str = "",
        *,
        url: Optional[str] = None,
        action: str = "pull",
        headers: Optional[dict[str, str]] = None,
        data: Optional[bytes] = None,
    ) -> _Response:
        url = url or f"{ref.base_url}/v2/{ref.repository}/{path}"
        scope = f"repository:{ref.repository}:{action}"
        token_key = (ref.registry, scope)
        basic = self._basic_auth(ref)

        resp = await self._send(
            method, url, headers or {}, data, self._tokens.get(token_key), basic
        )
        if resp.status != 401:
            return resp

        challenge = resp.headers.get("WWW-Authenticate", "")
        token = await self._fetch_token(ref, challenge, scope, basic)
        self._tokens[token_key] = token
        return await self._send(method, url, headers or {}, data, token, None)

    async def _fetch_token(
        self,
        ref: ImageReference,
        challenge: str,
        scope: str,
        basic: Optional[str],
    ) -> str:
        scheme, params = parse_auth_challenge(challenge)
        if scheme != "bearer" or "realm" not in params:
            reason = "rejected credentials" if basic else "requires credentials"
            raise AuthenticationError(f"Registry {ref.registry} {reason}")

        query = {"scope": scope}
        if "service" in params:
            query["service"] = params["service"]

        token_headers = {"Authorization": basic} if basic else {}
        session = self._open_session()
        try:
            async with session.get(
                params["realm"], params=query, headers=token_headers
            ) as resp:
                if resp.status in (401, 403):
                    raise AuthenticationError(
                        f"Token request to {params['realm']} denied (HTTP {resp.status})"
                    )
                if resp.status >= 400:
                    raise RegistryError(
                        f"Token request to {params['realm']} failed (HTTP {resp.status})"
                    )
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RegistryConnectionError(f"Token request failed: {e}") from e

        token = payload.get("token") or payload.get("access_token")
        if not token:
            raise AuthenticationError(f"Token response from {params['realm']} has no token")
        return token

    @staticmethod
    def _check(
        resp: _Response,
        what: str,
        error_cls: type[RegistryError] = RegistryError,
    ) -> None:
        if resp.status == 404:
            raise ImageNotFoundError(f"{what}: not found")
        if resp.status in (401, 403):
            raise AuthenticationError(f"{what}: access denied (HTTP {resp.status})")
        if resp.status >= 400:
            detail = resp.body[:200].decode("utf-8", errors="replace")
            raise error_cls(f"{what}: HTTP {resp.status} {detail}".rstrip())

    # Manifests

    async def get_manifest(self, ref: ImageReference) -> Descriptor:
        """Retrieve a manifest and digest it locally.

        Args:
            ref: Parsed image reference

        Returns:
            Descriptor holding the raw manifest bytes

        Raises:
            ImageNotFoundError: If the manifest does not exist
            DigestMismatchError: If a digest reference was served other content
            ManifestError: If retrieval fails
        """
        resp = await self._request(
            "GET",
            ref,
            f"manifests/{ref.reference}",
            headers={"Accept": MANIFEST_ACCEPT},
        )
        self._check(resp, f"Failed to get manifest {ref}", ManifestError)

        digest = calculate_digest(resp.body)
        if ref.digest and digest != ref.digest:
            raise DigestMismatchError(
                f"Registry served {digest} for {ref}, expected {ref.digest}"
            )

        media_type = resp.headers.get("Content-Type", "").split(";")[0].strip()
        if not media_type or media_type in ("application/json", "application/octet-stream"):
            try:
                media_type = json.loads(resp.body).get("mediaType", "")
            except (json.JSONDecodeError, AttributeError) as e:
                raise ManifestError(f"Invalid manifest JSON for {ref}: {e}") from e

        return Descriptor(
            media_type=media_type, digest=digest, size=len(resp.body), raw=resp.body
        )

    async def put_manifest(
        self, ref: ImageReference, raw: bytes, media_type: str
    ) -> str:
        """Upload manifest bytes verbatim.

        Returns:
            Digest of the uploaded bytes, computed locally

        Raises:
            ManifestError: If upload fails
        """
        resp = await self._request(
            "PUT",
            ref,
            f"manifests/{ref.reference}",
            action="pull,push",
            headers={"Content-Type": media_type},
            data=raw,
        )
        self._check(resp, f"Failed to upload manifest {ref}", ManifestError)
        return calculate_digest(raw)

    async def get_descriptor(self, image_ref: str) -> Descriptor:
        """Retrieve the descriptor of an image or index.

        Raises:
            InvalidReferenceError: If the reference is malformed
            ImageNotFoundError: If the image does not exist
            RegistryConnectionError: On network failure
        """
        return await self.get_manifest(parse_reference(image_ref))

    async def get_digest(self, image_ref: str) -> str:
        """Return the digest of the manifest a reference currently resolves to."""
        descriptor = await self.get_descriptor(image_ref)
        return descriptor.digest

    async def get_platform_digests(self, index_ref: str) -> dict[str, str]:
        """Return "os/arch" -> digest for every platform entry of an index.

        Entries without a platform field (e.g. attestations) are omitted.

        Raises:
            ManifestError: If the reference is not an index
        """
        descriptor = await self.get_descriptor(index_ref)
        if not descriptor.is_index:
            raise ManifestError(f"{index_ref} is not an image index")

        platform_digests = {}
        for entry in descriptor.manifest().get("manifests", []):
            platform = entry.get("platform")
            if not platform:
                continue
            key = f"{platform.get('os', '')}/{platform.get('architecture', '')}"
            platform_digests[key] = entry["digest"]

        return platform_digests

    async def get_image_handle(self, image_ref: str) -> RemoteImage:
        """Fetch a handle on a single-platform image.

        Raises:
            ManifestError: If the reference resolves to an index
        """
        descriptor = await self.get_descriptor(image_ref)
        if descriptor.is_index:
            raise ManifestError(f"{image_ref} is an index, expected a single image")
        return RemoteImage(
            reference=image_ref, media_type=descriptor.media_type, raw=descriptor.raw
        )

    async def check_exists(self, image_ref: str) -> bool:
        """Check if an image exists in the registry.

        Returns:
            True if the manifest exists, False only for a 404

        Raises:
            RegistryError: For every other failure (auth, network, bad reference)
        """
        ref = parse_reference(image_ref)
        resp = await self._request(
            "HEAD",
            ref,
            f"manifests/{ref.reference}",
            headers={"Accept": MANIFEST_ACCEPT},
        )
        if resp.status == 404:
            return False
        self._check(resp, f"Failed to check image existence {ref}")
        return True

    async def list_tags(self, image_ref: str) -> list[str]:
        """List tags for a repository, following pagination.

        Args:
            image_ref: Repository name, any tag or digest is ignored

        Returns:
            List of tag names

        Raises:
            RegistryError: If listing fails
        """
        ref = parse_reference(image_ref)
        url: Optional[str] = f"{ref.base_url}/v2/{ref.repository}/tags/list?n={TAGS_PAGE_SIZE}"
        tags: list[str] = []

        while url:
            resp = await self._request("GET", ref, url=url)
            self._check(resp, f"Failed to list tags for {ref.context}")
            try:
                data = json.loads(resp.body)
            except json.JSONDecodeError as e:
                raise RegistryError(f"Invalid tag list for {ref.context}: {e}") from e
            tags.extend(data.get("tags") or [])

            match = _LINK_NEXT.search(resp.headers.get("Link", ""))
            url = urljoin(ref.base_url, match.group(1)) if match else None

        return tags

    # Blobs

    async def check_blob_exists(self, ref: ImageReference, digest: str) -> bool:
        """Check if a blob exists in the registry.

        Args:
            ref: Repository the blob belongs to
            digest: Blob digest

        Returns:
            True if blob exists
        """
        resp = await self._request("HEAD", ref, f"blobs/{digest}", action="pull,push")
        if resp.status == 404:
            return False
        self._check(resp, f"Failed to check blob {digest} in {ref.context}")
        return True

    async def fetch_blob(self, ref: ImageReference, digest: str) -> bytes:
        """Download a blob and verify its content against its digest.

        Raises:
            DigestMismatchError: If the content does not match the digest
        """
        resp = await self._request("GET", ref, f"blobs/{digest}")
        self._check(resp, f"Failed to fetch blob {digest} from {ref.context}")
        ensure_digest(resp.body, digest, f"Blob {digest} from {ref.context}")
        return resp.body

    async def upload_blob(self, ref: ImageReference, data: bytes, digest: str) -> str:
        """Upload a blob to the registry.

        Args:
            ref: Target repository
            data: Blob data
            digest: Expected blob digest

        Returns:
            Blob digest

        Raises:
            BlobUploadError: If upload fails
        """
        resp = await self._request("POST", ref, "blobs/uploads/", action="pull,push")
        self._check(resp, f"Failed to start blob upload to {ref.context}", BlobUploadError)
        upload_url = self._location(ref, resp)

        for i in range(0, len(data), CHUNK_SIZE):
            chunk = data[i : i + CHUNK_SIZE]
            resp = await self._request(
                "PATCH",
                ref,
                url=upload_url,
                action="pull,push",
                headers={"Content-Type": "application/octet-stream"},
                data=chunk,
            )
            self._check(resp, f"Failed to upload blob {digest[:19]}", BlobUploadError)
            upload_url = self._location(ref, resp)

        # Finalize upload
        separator = "&" if "?" in upload_url else "?"
        resp = await self._request(
            "PUT",
            ref,
            url=f"{upload_url}{separator}digest={digest}",
            action="pull,push",
            headers={"Content-Length": "0"},
        )
        self._check(resp, f"Failed to finalize blob {digest[:19]}", BlobUploadError)
        return digest

    @staticmethod
    def _location(ref: ImageReference, resp: _Response) -> str:
        location = resp.headers.get("Location", "")
        if not location:
            raise BlobUploadError(f"Registry {ref.registry} returned no upload location")
        if not location.startswith("http"):
            location = urljoin(ref.base_url, location)
        return location

    # Copies

    async def copy_image(
        self, src_ref: str, dst_ref: str, dst_client: "RegistryClient"
    ) -> None:
        """Copy a single-platform image to another registry.

        Args:
            src_ref: Source reference, read with this client's credentials
            dst_ref: Destination reference
            dst_client: Client authenticated against the destination

        Raises:
            ManifestError: If the source is an index
        """
        src = parse_reference(src_ref)
        dst = parse_reference(dst_ref)
        self.log.debug("copying image", source=src_ref, destination=dst_ref)

        descriptor = await self.get_manifest(src)
        if descriptor.is_index:
            raise ManifestError(f"{src_ref} is an index, use copy_index")
        await self._copy_manifest(src, descriptor, dst, dst_client)

    async def copy_index(
        self, src_ref: str, dst_ref: str, dst_client: "RegistryClient"
    ) -> None:
        """Copy a multi-platform index and every manifest it references.

        Raises:
            ManifestError: If the source is not an index
        """
        src = parse_reference(src_ref)
        dst = parse_reference(dst_ref)
        self.log.debug("copying image index", source=src_ref, destination=dst_ref)

        descriptor = await self.get_manifest(src)
        if not descriptor.is_index:
            raise ManifestError(f"{src_ref} is not an image index")
        await self._copy_manifest(src, descriptor, dst, dst_client)

    async def copy_platform_image(
        self,
        src_ref: str,
        platform_digest: str,
        dst_ref: str,
        dst_client: "RegistryClient",
    ) -> None:
        """Copy exactly one platform image, addressed by its digest.

        Args:
            src_ref: Source repository without tag or digest
            platform_digest: Digest of the platform manifest
            dst_ref: Destination reference
            dst_client: Client authenticated against the destination
        """
        src_digest_ref = f"{src_ref}@{platform_digest}"
        self.log.debug(
            "copying platform image", source=src_digest_ref, destination=dst_ref
        )
        await self.copy_image(src_digest_ref, dst_ref, dst_client)

    async def _copy_manifest(
        self,
        src: ImageReference,
        descriptor: Descriptor,
        dst: ImageReference,
        dst_client: "RegistryClient",
    ) -> None:
        manifest = descriptor.manifest()

        if descriptor.is_index:
            for child in manifest.get("manifests", []):
                child_src = src.with_digest(child["digest"])
                child_descriptor = await self.get_manifest(child_src)
                await self._copy_manifest(
                    child_src,
                    child_descriptor,
                    dst.with_digest(child["digest"]),
                    dst_client,
                )
        else:
            blobs = [manifest["config"]] if "config" in manifest else []
            blobs.extend(manifest.get("layers", []))
            for blob in blobs:
                await self._copy_blob(src, blob["digest"], dst, dst_client)

        await dst_client.put_manifest(dst, descriptor.raw, descriptor.media_type)

    async def _copy_blob(
        self,
        src: ImageReference,
        digest: str,
        dst: ImageReference,
        dst_client: "RegistryClient",
    ) -> None:
        if await dst_client.check_blob_exists(dst, digest):
            self.log.debug("blob already present", digest=digest, destination=dst.context)
            return

        data = await self.fetch_blob(src, digest)
        await dst_client.upload_blob(dst, data, digest)

    async def push_manifest_list(
        self, list_ref: str, platform_images: Mapping[str, RemoteImage]
    ) -> str:
        """Create and push a manifest list from platform-specific images.

        Args:
            list_ref: Reference to push the list to
            platform_images: Mapping of "os/arch" to image handle

        Returns:
            Digest of the manifest list, computed from the bytes we built
        """
        self.log.debug(
            "creating and pushing manifest list",
            manifest=list_ref,
            platforms=len(platform_images),
        )

        raw = build_manifest_list(platform_images)
        digest = await self.put_manifest(
            parse_reference(list_ref), raw, DOCKER_MANIFEST_LIST
        )

        self.log.debug("manifest list pushed", digest=digest)
        return digest
