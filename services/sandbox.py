"""
Docker-backed execution sandbox.

Runs an untrusted script in a throwaway container with no network, a memory
cap and a pid limit. Attached media is downloaded first and mounted read-only
at /media; anything the script writes to /images is returned base64-encoded.
The sandbox enforces its own wall-clock timeout by killing the container.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import shutil
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import httpx

from services.stats import stats
from shellgei_bot.bot_config import TriggerConfig

logger = logging.getLogger(__name__)

MEDIA_DOWNLOAD_TIMEOUT = 30.0

# Exit status docker itself uses when the daemon rejects the run. A script can
# exit 125 too, so the status only counts together with a docker error message.
DOCKER_DAEMON_ERROR = 125
DOCKER_ERROR_PREFIXES = (
    "docker:",
    "Error response from daemon",
    "Cannot connect to the Docker daemon",
)


class SandboxUnavailable(Exception):
    """The sandbox could not run the script (infrastructure failure)."""


@dataclass
class SandboxOutput:
    """Raw output of one sandbox run."""

    stdout: str
    images: list[str] = field(default_factory=list)
    exit_code: int | None = 0
    timed_out: bool = False
    stderr: str = ""
    elapsed_ms: float = 0.0


def _media_filename(index: int, url: str) -> str:
    suffix = PurePosixPath(urlparse(url).path).suffix
    if not suffix or len(suffix) > 6:
        suffix = ".bin"
    return f"{index}{suffix}"


def _is_docker_error(returncode: int | None, stderr: str) -> bool:
    """True when docker itself failed, as opposed to the script exiting 125."""
    if returncode != DOCKER_DAEMON_ERROR:
        return False
    first_line = stderr.lstrip().split("\n", 1)[0]
    return first_line.startswith(DOCKER_ERROR_PREFIXES)


def _remove_workdir(path: str) -> None:
    """Delete a run's temp dir; files the container created may not be ours."""
    try:
        shutil.rmtree(path)
    except OSError as exc:
        logger.warning("Could not clean up sandbox dir %s: %s", path, exc)


class DockerSandbox:
    """Runs scripts with the docker CLI."""

    def __init__(
        self,
        docker_binary: str = "docker",
        *,
        download_timeout: float = MEDIA_DOWNLOAD_TIMEOUT,
    ):
        self._docker = docker_binary
        self._download_timeout = download_timeout

    async def _download_media(self, urls: tuple[str, ...], media_dir: Path) -> None:
        """Fetch every media URL into media_dir as 0.ext, 1.ext, ..."""
        if not urls:
            return

        async with httpx.AsyncClient(
            timeout=self._download_timeout,
            follow_redirects=True,
        ) as client:
            for index, url in enumerate(urls):
                try:
                    response = await client.get(url)
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    raise SandboxUnavailable(f"Media download failed for {url}: {exc}") from exc

                path = media_dir / _media_filename(index, url)
                await asyncio.to_thread(path.write_bytes, response.content)
                logger.debug("Downloaded media %s (%d bytes)", path.name, len(response.content))

    def _collect_images(self, images_dir: Path, limit: int) -> list[str]:
        """Base64-encode the first `limit` regular files the script wrote."""
        if limit <= 0:
            return []

        encoded: list[str] = []
        for path in sorted(images_dir.iterdir()):
            if not path.is_file() or path.is_symlink():
                continue
            try:
                data = path.read_bytes()
            except OSError as exc:
                logger.warning("Skipping unreadable output file %s: %s", path.name, exc)
                continue
            encoded.append(base64.b64encode(data).decode("ascii"))
            if len(encoded) >= limit:
                break
        return encoded

    async def _kill_container(self, name: str) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._docker,
                "kill",
                name,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await proc.wait()
        except OSError as exc:
            logger.warning("Failed to kill container %s: %s", name, exc)

    def _build_command(
        self,
        name: str,
        media_dir: Path,
        images_dir: Path,
        config: TriggerConfig,
    ) -> list[str]:
        return [
            self._docker,
            "run",
            "--rm",
            "-i",
            "--name",
            name,
            "--network",
            "none",
            "--memory",
            config.memory,
            "--pids-limit",
            "1024",
            "-v",
            f"{media_dir}:/media:ro",
            "-v",
            f"{images_dir}:/images",
            config.docker_image,
            "bash",
        ]

    async def run(
        self,
        script: str,
        media_urls: tuple[str, ...],
        config: TriggerConfig,
    ) -> SandboxOutput:
        """
        Run a script once.

        Args:
            script: Script text, fed to bash on stdin
            media_urls: Media to expose under /media, in order
            config: Snapshot carrying image, memory and timeout limits

        Returns:
            SandboxOutput (timed_out is set when the container was killed)

        Raises:
            SandboxUnavailable: docker is missing, the daemon refused the run,
                or media could not be downloaded
        """
        sandbox_stats = stats.get_service_stats("sandbox")
        start = time.time()
        name = f"shellgei-{uuid.uuid4().hex[:12]}"

        workdir = tempfile.mkdtemp(prefix="shellgei-")
        try:
            media_dir = Path(workdir) / "media"
            images_dir = Path(workdir) / "images"
            media_dir.mkdir()
            images_dir.mkdir()
            # The container user is not the host user
            os.chmod(images_dir, 0o777)

            try:
                await self._download_media(media_urls, media_dir)

                cmd = self._build_command(name, media_dir, images_dir, config)
                logger.debug("Running sandbox %s with image %s", name, config.docker_image)
                try:
                    proc = await asyncio.create_subprocess_exec(
                        *cmd,
                        stdin=asyncio.subprocess.PIPE,
                        stdout=asyncio.subprocess.PIPE,
                        stderr=asyncio.subprocess.PIPE,
                    )
                except OSError as exc:
                    raise SandboxUnavailable(f"Cannot start {self._docker}: {exc}") from exc

                try:
                    stdout, stderr = await asyncio.wait_for(
                        proc.communicate(script.encode("utf-8")),
                        timeout=config.timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    await self._kill_container(name)
                    if proc.returncode is None:
                        proc.kill()
                    await proc.wait()
                    elapsed_ms = (time.time() - start) * 1000
                    sandbox_stats.record_request(elapsed_ms, success=True)
                    logger.info("Sandbox %s timed out after %.1fs", name, config.timeout_seconds)
                    return SandboxOutput(
                        stdout="",
                        exit_code=None,
                        timed_out=True,
                        elapsed_ms=elapsed_ms,
                    )

                error_output = stderr.decode("utf-8", errors="replace")
                if _is_docker_error(proc.returncode, error_output):
                    raise SandboxUnavailable(error_output.strip())

                images = await asyncio.to_thread(
                    self._collect_images, images_dir, config.max_images
                )
            except SandboxUnavailable as exc:
                elapsed_ms = (time.time() - start) * 1000
                sandbox_stats.record_request(elapsed_ms, success=False, error=str(exc))
                stats.record_error("sandbox", str(exc), {"container": name})
                raise
        finally:
            await asyncio.to_thread(_remove_workdir, workdir)

        elapsed_ms = (time.time() - start) * 1000
        sandbox_stats.record_request(elapsed_ms, success=True)
        return SandboxOutput(
            stdout=stdout.decode("utf-8", errors="replace"),
            images=images,
            exit_code=proc.returncode,
            stderr=error_output,
            elapsed_ms=elapsed_ms,
        )


__all__ = ["DockerSandbox", "SandboxOutput", "SandboxUnavailable"]
