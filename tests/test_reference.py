"""Tests for image reference parsing."""

import pytest

from cranberry.core.reference import (
    ImageReference,
    architecture_of,
    parse_reference,
    strip_tag,
)
from cranberry.exceptions import InvalidReferenceError

DIGEST = "sha256:" + "a" * 64


class TestParseReference:
    """Test parse_reference across the accepted reference forms."""

    def test_docker_hub_official_image(self):
        """Single-component names live under library/ on Docker Hub."""
        ref = parse_reference("nginx")
        assert ref == ImageReference("docker.io", "library/nginx", None, None)
        assert str(ref) == "docker.io/library/nginx:latest"
        assert ref.api_host == "registry-1.docker.io"
        assert ref.scheme == "https"

    def test_docker_hub_user_image_with_tag(self):
        ref = parse_reference("timberio/vector:0.50.0-distroless-static")
        assert ref.registry == "docker.io"
        assert ref.repository == "timberio/vector"
        assert ref.tag == "0.50.0-distroless-static"
        assert ref.reference == "0.50.0-distroless-static"

    def test_docker_hub_aliases_normalize(self):
        assert parse_reference("index.docker.io/library/redis").registry == "docker.io"
        assert parse_reference("registry-1.docker.io/library/redis").registry == "docker.io"

    def test_registry_with_digest(self):
        ref = parse_reference(f"ghcr.io/org/app@{DIGEST}")
        assert ref.registry == "ghcr.io"
        assert ref.repository == "org/app"
        assert ref.digest == DIGEST
        assert ref.reference == DIGEST
        assert str(ref) == f"ghcr.io/org/app@{DIGEST}"

    def test_tag_and_digest_digest_wins(self):
        ref = parse_reference(f"ghcr.io/org/app:v1@{DIGEST}")
        assert ref.tag == "v1"
        assert ref.reference == DIGEST

    def test_registry_port_is_not_a_tag(self):
        ref = parse_reference("localhost:5000/app")
        assert ref.registry == "localhost:5000"
        assert ref.repository == "app"
        assert ref.tag is None
        assert ref.scheme == "http"
        assert ref.base_url == "http://localhost:5000"

    def test_loopback_and_local_hosts_use_http(self):
        assert parse_reference("127.0.0.1:5000/app:v1").scheme == "http"
        assert parse_reference("registry.local/app").scheme == "http"
        assert parse_reference("ghcr.io/app").scheme == "https"

    def test_localhost_without_port(self):
        ref = parse_reference("localhost/team/app:1.0")
        assert ref.registry == "localhost"
        assert ref.repository == "team/app"

    @pytest.mark.parametrize(
        "bad",
        [
            "",
            "   ",
            "UPPER/case",
            "ghcr.io/org/app:",
            "ghcr.io/org/app:bad tag",
            "ghcr.io/org/app@sha256:short",
            "ghcr.io/org/app@md5:" + "a" * 32,
        ],
    )
    def test_invalid_references(self, bad):
        with pytest.raises(InvalidReferenceError):
            parse_reference(bad)


class TestImageReference:
    """Test derived references."""

    def test_with_tag_clears_digest(self):
        ref = parse_reference(f"ghcr.io/org/app@{DIGEST}").with_tag("v2")
        assert ref.tag == "v2"
        assert ref.digest is None
        assert str(ref) == "ghcr.io/org/app:v2"

    def test_with_digest(self):
        ref = parse_reference("ghcr.io/org/app:v1").with_digest(DIGEST)
        assert str(ref) == f"ghcr.io/org/app@{DIGEST}"

    def test_with_invalid_tag_or_digest(self):
        ref = parse_reference("ghcr.io/org/app")
        with pytest.raises(InvalidReferenceError):
            ref.with_tag("-leading-dash")
        with pytest.raises(InvalidReferenceError):
            ref.with_digest("sha256:nothex")


def test_strip_tag():
    """Test removing tags and digests from reference strings."""
    assert strip_tag("ghcr.io/org/app:v1") == "ghcr.io/org/app"
    assert strip_tag(f"ghcr.io/org/app@{DIGEST}") == "ghcr.io/org/app"
    assert strip_tag(f"ghcr.io/org/app:v1@{DIGEST}") == "ghcr.io/org/app"
    assert strip_tag("localhost:5000/app") == "localhost:5000/app"
    assert strip_tag("localhost:5000/app:v1") == "localhost:5000/app"


def test_architecture_of():
    """Test extracting the architecture token of a platform."""
    assert architecture_of("linux/amd64") == "amd64"
    assert architecture_of("linux/arm64") == "arm64"
