"""Mirror a pinned upstream image into a private registry, scanning it on the way.

Usage:
    GHCR_USER=... GHCR_TOKEN=... python examples/mirror_plan.py [--dry-run]
"""

import asyncio
import sys

# Add parent directory to path
sys.path.insert(0, "src")

from cranberry import (
    CranberryError,
    CranberrySettings,
    configure_logging,
    load_env,
    must_get_env,
)
from cranberry.sdk import ExecutionContext, Plan, Platform

VECTOR_DIGEST = "sha256:5a1e6c0d1e3bd7bb6f3a8e6f3f1ab2c7e1d0c9f9a8b7c6d5e4f3a2b1c0d9e8f7"


def build_plan(settings: CranberrySettings) -> Plan:
    """Describe the resources; nothing touches the network until execute()."""
    plan = Plan("mirror-vector", settings=settings)

    ghcr = (
        plan.registry("ghcr.io")
        .username(must_get_env("GHCR_USER"))
        .password(must_get_env("GHCR_TOKEN"))
        .build()
    )

    upstream = (
        plan.image("timberio/vector")
        .version("0.50.0-distroless-static")
        .digest(VECTOR_DIGEST)
        .build()
    )
    plan.version_check("vector-updates").source(upstream).build()

    upstream_scan = (
        plan.scan("vector-upstream")
        .source(upstream)
        .severity("MEDIUM", "warn")
        .severity("CRITICAL", "error")
        .build()
    )

    mirrored = (
        plan.sync("vector")
        .source(upstream, upstream_scan)
        .destination(
            plan.image("ghcr.io/example/vector").version("0.50.0-distroless-static").build(),
            ghcr,
        )
        .platforms(Platform.AMD64, Platform.ARM64)
        .build()
    )

    # Runs after the sync, against the digest it produced
    plan.scan("vector-mirror").source(mirrored, ghcr).format("sarif").build()
    plan.audit("vector-image").source(mirrored, ghcr).rule_set("recommended").build()
    return plan


async def main() -> int:
    load_env()
    settings = CranberrySettings()
    configure_logging(settings.log_level, settings.log_json)

    plan = build_plan(settings)
    context = ExecutionContext(dry_run=settings.dry_run or "--dry-run" in sys.argv)

    try:
        await plan.execute(context)
    except CranberryError as e:
        print(f"plan failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
