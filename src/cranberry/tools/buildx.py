"""Remote multi-platform builds with docker buildx over SSH."""

import shlex
from typing import Iterable

import structlog

from ..exceptions import BuildError
from .process import run_command


class RemoteBuilder:
    """Drives ``docker buildx`` on a build node reachable over SSH.

    The endpoint is anything ssh accepts: an IP, a hostname or an alias
    from ~/.ssh/config.
    """

    def __init__(
        self, endpoint: str, logger=None, ssh: str = "ssh", scp: str = "scp"
    ) -> None:
        self.endpoint = endpoint
        self.ssh = ssh
        self.scp = scp
        self.log = logger or structlog.get_logger(__name__)

    async def execute(self, command: str) -> str:
        """Run a shell command on the build node, streaming its output to the log.

        Raises:
            BuildError: If the command exits non-zero
        """
        result = await run_command(
            self.ssh,
            self.endpoint,
            command,
            on_line=lambda line: self.log.debug("remote", line=line),
        )
        if not result.ok:
            self.log.error(
                "remote command failed",
                endpoint=self.endpoint,
                returncode=result.returncode,
                stderr=result.stderr,
            )
            raise BuildError(
                f"Command on {self.endpoint} exited with {result.returncode}: "
                f"{result.stderr.strip()}"
            )
        return result.stdout

    async def upload_context(self, local_path: str, remote_path: str) -> None:
        """Copy a local build context directory to the build node."""
        self.log.debug("uploading build context", local=local_path, remote=remote_path)
        await self.execute(f"rm -rf {shlex.quote(remote_path)} && mkdir -p {shlex.quote(remote_path)}")

        result = await run_command(
            self.scp, "-r", "-q", f"{local_path.rstrip('/')}/.", f"{self.endpoint}:{remote_path}"
        )
        if not result.ok:
            raise BuildError(
                f"Failed to upload build context to {self.endpoint}: {result.stderr.strip()}"
            )

    async def build_multi_platform(
        self,
        context_path: str,
        dockerfile_path: str,
        platforms: Iterable[str],
        tag: str,
    ) -> str:
        """Build for several platforms and push the resulting manifest list.

        Returns:
            The pushed tag
        """
        platform_list = ",".join(str(p) for p in platforms)
        self.log.info("starting multi-platform build", platforms=platform_list, tag=tag)

        command = " ".join(
            [
                "docker buildx build",
                f"--platform {shlex.quote(platform_list)}",
                "--push",
                f"-t {shlex.quote(tag)}",
                f"-f {shlex.quote(dockerfile_path)}",
                shlex.quote(context_path),
            ]
        )
        await self.execute(command)

        self.log.info("multi-platform build complete", tag=tag)
        return tag
