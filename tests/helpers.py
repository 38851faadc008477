"""In-process OCI registry and fake collaborators for tests."""

import base64
import json
import uuid
from typing import Optional

from aiohttp import web
from aiohttp.test_utils import TestServer

from cranberry.core.types import OCI_INDEX, OCI_MANIFEST
from cranberry.sdk import Runtime
from cranberry.tools.audit import AuditResult
from cranberry.tools.trivy import ScanReport
from cranberry.utils.digest import calculate_digest, validate_digest

TOKEN = "fake-registry-token"
CONFIG_MEDIA_TYPE = "application/vnd.oci.image.config.v1+json"
LAYER_MEDIA_TYPE = "application/vnd.oci.image.layer.v1.tar+gzip"


def basic_header(username: str, password: str) -> str:
    encoded = base64.b64encode(f"{username}:{password}".encode()).decode()
    return f"Basic {encoded}"


class FakeRegistry:
    """Minimal Docker Registry API v2 server.

    Enough of the OCI distribution API for the client: manifests by tag and
    digest, chunked blob uploads, paginated tag lists, and either Basic
    or Bearer token auth when credentials are configured. With false_digests
    every Docker-Content-Digest header it sends is wrong.
    """

    def __init__(
        self,
        credentials: Optional[tuple[str, str]] = None,
        bearer: bool = False,
        page_size: int = 1000,
        false_digests: bool = False,
    ) -> None:
        self.credentials = credentials
        self.bearer = bearer
        self.page_size = page_size
        self.false_digests = false_digests
        self.manifests: dict[tuple[str, str], tuple[str, bytes]] = {}
        self.blobs: dict[str, bytes] = {}
        self.uploads: dict[str, bytearray] = {}
        self.tampered: dict[str, bytes] = {}
        self.requests: list[tuple[str, str]] = []
        self.auth_headers: list[str] = []
        self.token_scopes: list[str] = []
        self.server: Optional[TestServer] = None

        self.app = web.Application()
        self.app.router.add_get("/token", self._token)
        self.app.router.add_route("*", "/v2/{tail:.*}", self._dispatch)

    async def start(self) -> "FakeRegistry":
        self.server = TestServer(self.app, host="127.0.0.1")
        await self.server.start_server()
        return self

    async def close(self) -> None:
        if self.server is not None:
            await self.server.close()

    @property
    def host(self) -> str:
        return f"127.0.0.1:{self.server.port}"

    def name(self, repository: str) -> str:
        return f"{self.host}/{repository}"

    # Seeding

    def add_blob(self, data: bytes, media_type: str = LAYER_MEDIA_TYPE) -> dict:
        digest = calculate_digest(data)
        self.blobs[digest] = data
        return {"mediaType": media_type, "digest": digest, "size": len(data)}

    def put(self, repository: str, tag: Optional[str], media_type: str, raw: bytes) -> str:
        digest = calculate_digest(raw)
        self.manifests[(repository, digest)] = (media_type, raw)
        if tag:
            self.manifests[(repository, tag)] = (media_type, raw)
        return digest

    def add_image(
        self,
        repository: str,
        tag: Optional[str] = None,
        platform: str = "linux/amd64",
        layers: Optional[list[bytes]] = None,
        media_type: str = OCI_MANIFEST,
    ) -> str:
        """Store a single-platform image and return its manifest digest."""
        os_name, _, architecture = platform.partition("/")
        config = json.dumps({"architecture": architecture, "os": os_name}).encode()
        if layers is None:
            layers = [f"{repository} {platform} layer".encode()]

        manifest = {
            "schemaVersion": 2,
            "mediaType": media_type,
            "config": self.add_blob(config, CONFIG_MEDIA_TYPE),
            "layers": [self.add_blob(layer) for layer in layers],
        }
        # Indented on purpose: copies must preserve the exact bytes
        return self.put(repository, tag, media_type, json.dumps(manifest, indent=2).encode())

    def add_index(
        self,
        repository: str,
        tag: Optional[str],
        platforms: dict[str, str],
        attestation: Optional[str] = None,
    ) -> str:
        """Store an OCI index over already-stored images and return its digest."""
        entries = []
        for platform, digest in platforms.items():
            media_type, raw = self.manifests[(repository, digest)]
            os_name, _, architecture = platform.partition("/")
            entries.append(
                {
                    "mediaType": media_type,
                    "digest": digest,
                    "size": len(raw),
                    "platform": {"architecture": architecture, "os": os_name},
                }
            )
        if attestation:
            media_type, raw = self.manifests[(repository, attestation)]
            entries.append(
                {
                    "mediaType": media_type,
                    "digest": attestation,
                    "size": len(raw),
                    "annotations": {"vnd.docker.reference.type": "attestation-manifest"},
                }
            )

        index = {"schemaVersion": 2, "mediaType": OCI_INDEX, "manifests": entries}
        return self.put(repository, tag, OCI_INDEX, json.dumps(index).encode())

    def manifest(self, repository: str, reference: str) -> tuple[str, bytes]:
        return self.manifests[(repository, reference)]

    def tags(self, repository: str) -> list[str]:
        return sorted(
            ref
            for repo, ref in self.manifests
            if repo == repository and not validate_digest(ref)
        )

    # HTTP

    def _digest_header(self, digest: str) -> str:
        return "sha256:" + "0" * 64 if self.false_digests else digest

    def _authorized(self, request: web.Request) -> bool:
        if self.credentials is None:
            return True
        header = request.headers.get("Authorization", "")
        if self.bearer:
            return header == f"Bearer {TOKEN}"
        return header == basic_header(*self.credentials)

    def _challenge(self) -> web.Response:
        if self.bearer:
            value = f'Bearer realm="http://{self.host}/token",service="fake-registry"'
        else:
            value = 'Basic realm="fake-registry"'
        return web.Response(status=401, headers={"WWW-Authenticate": value})

    async def _token(self, request: web.Request) -> web.Response:
        self.token_scopes.append(request.query.get("scope", ""))
        if request.headers.get("Authorization", "") != basic_header(*self.credentials):
            return web.Response(status=401)
        return web.json_response({"token": TOKEN})

    async def _dispatch(self, request: web.Request) -> web.Response:
        tail = request.match_info["tail"]
        self.requests.append((request.method, f"/v2/{tail}"))
        self.auth_headers.append(request.headers.get("Authorization", ""))

        if not self._authorized(request):
            return self._challenge()

        if tail.endswith("/tags/list"):
            return self._tag_list(request, tail[: -len("/tags/list")])
        if "/blobs/uploads/" in tail:
            repository, _, upload_id = tail.partition("/blobs/uploads/")
            return await self._upload(request, repository, upload_id)
        if "/manifests/" in tail:
            repository, _, reference = tail.rpartition("/manifests/")
            return await self._manifest(request, repository, reference)
        if "/blobs/" in tail:
            _, _, digest = tail.rpartition("/blobs/")
            return self._blob(request, digest)
        return web.Response(status=404)

    async def _manifest(
        self, request: web.Request, repository: str, reference: str
    ) -> web.Response:
        if request.method == "PUT":
            raw = await request.read()
            digest = calculate_digest(raw)
            if validate_digest(reference) and reference != digest:
                return web.Response(status=400, text="DIGEST_INVALID")
            missing = self._missing_references(repository, raw)
            if missing:
                return web.Response(status=400, text=f"BLOB_UNKNOWN {missing}")
            self.put(
                repository,
                None if validate_digest(reference) else reference,
                request.headers.get("Content-Type", ""),
                raw,
            )
            return web.Response(
                status=201,
                headers={
                    "Docker-Content-Digest": self._digest_header(digest),
                    "Location": f"/v2/{repository}/manifests/{digest}",
                },
            )

        entry = self.manifests.get((repository, reference))
        if entry is None:
            return web.Response(status=404, text="MANIFEST_UNKNOWN")

        media_type, raw = entry
        headers = {
            "Content-Type": media_type,
            "Docker-Content-Digest": self._digest_header(calculate_digest(raw)),
        }
        if request.method == "HEAD":
            return web.Response(status=200, headers=headers)
        return web.Response(body=raw, headers=headers)

    def _missing_references(self, repository: str, raw: bytes) -> list[str]:
        document = json.loads(raw)
        if "manifests" in document:
            return [
                entry["digest"]
                for entry in document["manifests"]
                if (repository, entry["digest"]) not in self.manifests
            ]
        blobs = [document["config"], *document.get("layers", [])]
        return [blob["digest"] for blob in blobs if blob["digest"] not in self.blobs]

    def _blob(self, request: web.Request, digest: str) -> web.Response:
        if digest not in self.blobs:
            return web.Response(status=404, text="BLOB_UNKNOWN")
        if request.method == "HEAD":
            return web.Response(
                status=200, headers={"Docker-Content-Digest": self._digest_header(digest)}
            )
        body = self.tampered.get(digest, self.blobs[digest])
        return web.Response(body=body, content_type="application/octet-stream")

    async def _upload(
        self, request: web.Request, repository: str, upload_id: str
    ) -> web.Response:
        if request.method == "POST":
            upload_id = uuid.uuid4().hex
            self.uploads[upload_id] = bytearray()
            return web.Response(
                status=202,
                headers={"Location": f"/v2/{repository}/blobs/uploads/{upload_id}"},
            )

        if upload_id not in self.uploads:
            return web.Response(status=404, text="BLOB_UPLOAD_UNKNOWN")

        if request.method == "PATCH":
            self.uploads[upload_id].extend(await request.read())
            return web.Response(
                status=202,
                headers={"Location": f"/v2/{repository}/blobs/uploads/{upload_id}"},
            )

        if request.method == "PUT":
            data = bytes(self.uploads.pop(upload_id)) + await request.read()
            digest = request.query.get("digest", "")
            if calculate_digest(data) != digest:
                return web.Response(status=400, text="DIGEST_INVALID")
            self.blobs[digest] = data
            return web.Response(
                status=201, headers={"Docker-Content-Digest": self._digest_header(digest)}
            )

        return web.Response(status=405)

    def _tag_list(self, request: web.Request, repository: str) -> web.Response:
        tags = self.tags(repository)
        if not tags:
            return web.Response(status=404, text="NAME_UNKNOWN")

        page_size = min(int(request.query.get("n", self.page_size)), self.page_size)
        last = request.query.get("last")
        if last:
            tags = [tag for tag in tags if tag > last]

        page = tags[:page_size]
        headers = {}
        if len(tags) > page_size:
            headers["Link"] = (
                f'</v2/{repository}/tags/list?n={page_size}&last={page[-1]}>; rel="next"'
            )
        return web.json_response({"name": repository, "tags": page}, headers=headers)


class FakeScanner:
    def __init__(self, report: ScanReport) -> None:
        self.report = report
        self.calls: list[tuple] = []

    async def scan_image(self, image_ref, severities=(), registry=None):
        self.calls.append((image_ref, tuple(severities), registry))
        return self.report


class FakeAuditor:
    def __init__(self, dockerfile_passed: bool = True, image_passed: bool = True) -> None:
        self.dockerfile_passed = dockerfile_passed
        self.image_passed = image_passed
        self.calls: list[tuple] = []

    async def audit_dockerfile(self, dockerfile):
        self.calls.append(("dockerfile", dockerfile))
        return AuditResult(issues=0, passed=self.dockerfile_passed, output="hadolint")

    async def audit_image(self, image_ref, rule_set="strict", ignore_checks=(), registry=None):
        self.calls.append(("image", image_ref, str(rule_set), tuple(ignore_checks), registry))
        return AuditResult(issues=0, passed=self.image_passed, output="dockle")


class FakeRemoteBuilder:
    def __init__(self, endpoint: str, calls: list) -> None:
        self.endpoint = endpoint
        self.calls = calls

    async def upload_context(self, local_path, remote_path):
        self.calls.append(("upload", self.endpoint, local_path, remote_path))

    async def build_multi_platform(self, context_path, dockerfile_path, platforms, tag):
        self.calls.append(("build", context_path, dockerfile_path, list(platforms), tag))
        return tag


class FakeRuntime(Runtime):
    """Runtime with fake tool collaborators and real registry clients."""

    def __init__(
        self,
        scanner: Optional[FakeScanner] = None,
        auditor: Optional[FakeAuditor] = None,
    ) -> None:
        super().__init__(timeout=5)
        self.fake_scanner = scanner or FakeScanner(ScanReport())
        self.fake_auditor = auditor or FakeAuditor()
        self.build_calls: list[tuple] = []

    def scanner(self, logger):
        return self.fake_scanner

    def auditor(self, logger):
        return self.fake_auditor

    def remote_builder(self, node, logger):
        return FakeRemoteBuilder(node.endpoint, self.build_calls)
