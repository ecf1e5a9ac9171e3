"""Sandbox image selection, container start, and best-effort removal."""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import docker
from docker.errors import DockerException, NotFound

from contract_forge.constants import (
    SANDBOX_IMAGE_TAGS,
    SANDBOX_LABEL,
    SANDBOX_NAME_PREFIX,
    SANDBOX_NAME_SUFFIX_LENGTH,
)
from contract_forge.errors import ArtifactCleanupError, SandboxDaemonError, UnknownImageTagError

if TYPE_CHECKING:
    from docker import APIClient

    from contract_forge.config.schema import SandboxSettings

logger = logging.getLogger(__name__)

# requests' transport errors subclass OSError, so this covers an unreachable daemon socket.
DAEMON_ERRORS: Final[tuple[type[BaseException], ...]] = (DockerException, OSError)

_NAME_ALPHABET: Final[str] = string.ascii_lowercase + string.digits


@dataclass(frozen=True, slots=True)
class ImageRef:
    repository: str
    tag: str

    @property
    def reference(self) -> str:
        return f"{self.repository}:{self.tag}"


@dataclass(frozen=True, slots=True)
class SandboxHandle:
    """One running sandbox owned by a single orchestration."""

    name: str
    image: ImageRef


def connect(settings: SandboxSettings) -> APIClient:
    """Open the low-level Docker API client shared read-only by all orchestrations."""

    try:
        if settings.docker_base_url:
            return docker.APIClient(
                base_url=settings.docker_base_url,
                timeout=settings.docker_timeout_seconds,
            )
        return docker.from_env(timeout=settings.docker_timeout_seconds).api
    except DAEMON_ERRORS as exc:
        raise SandboxDaemonError(f"cannot connect to docker: {exc}") from exc


def select_image_tag(requested: str | None, default: str = SANDBOX_IMAGE_TAGS[0]) -> str:
    """Return ``requested`` (or ``default``) if it is a supported image tag."""

    tag = requested if requested is not None else default
    if tag not in SANDBOX_IMAGE_TAGS:
        raise UnknownImageTagError(tag)
    return tag


def random_sandbox_name(
    prefix: str = SANDBOX_NAME_PREFIX,
    length: int = SANDBOX_NAME_SUFFIX_LENGTH,
) -> str:
    suffix = "".join(secrets.choice(_NAME_ALPHABET) for _ in range(length))
    return f"{prefix}{suffix}"


class SandboxLifecycle:
    """Pull, start, and remove sandbox containers through a Docker API client.

    Every daemon call runs in a worker thread so a slow daemon suspends only the calling
    orchestration.
    """

    def __init__(self, api: APIClient, *, label: str = SANDBOX_LABEL) -> None:
        self._api = api
        self._label = label

    @property
    def label(self) -> str:
        return self._label

    async def pull(self, repository: str, tag: str) -> ImageRef:
        try:
            events = await asyncio.to_thread(self._pull_events, repository, tag)
        except DAEMON_ERRORS as exc:
            raise SandboxDaemonError(f"image pull failed: {exc}") from exc

        if not events or all(_event_error(event) is not None for event in events):
            reason = _event_error(events[-1]) if events else "no status received"
            raise SandboxDaemonError(f"image pull failed for {repository}:{tag}: {reason}")

        image = ImageRef(repository=repository, tag=tag)
        logger.debug("pulled image %s (%d status events)", image.reference, len(events))
        return image

    async def start(self, name: str, image: ImageRef) -> SandboxHandle:
        try:
            await asyncio.to_thread(self._create_and_start, name, image)
        except DAEMON_ERRORS as exc:
            raise SandboxDaemonError(f"cannot start sandbox {name}: {exc}") from exc
        logger.debug("started sandbox %s from %s", name, image.reference)
        return SandboxHandle(name=name, image=image)

    async def remove(self, name: str) -> ArtifactCleanupError | None:
        """Force-remove sandbox ``name`` and its volumes.

        Never raises: an already-missing sandbox counts as removed, any other failure is
        logged and returned so callers can attach it to the outcome as a warning.
        """

        try:
            await asyncio.to_thread(self._api.remove_container, name, v=True, force=True)
        except NotFound:
            logger.debug("sandbox %s already gone", name)
            return None
        except DAEMON_ERRORS as exc:
            logger.warning("failed to remove sandbox %s: %s", name, exc)
            return ArtifactCleanupError(name, str(exc))
        logger.debug("removed sandbox %s", name)
        return None

    async def list_labelled(self) -> list[str]:
        """Names of every container (running or not) carrying this lifecycle's label."""

        try:
            containers = await asyncio.to_thread(
                self._api.containers, all=True, filters={"label": self._label}
            )
        except DAEMON_ERRORS as exc:
            raise SandboxDaemonError(f"cannot list sandboxes: {exc}") from exc
        names: list[str] = []
        for entry in containers:
            raw_names = entry.get("Names") or []
            if raw_names:
                names.append(str(raw_names[0]).lstrip("/"))
            elif entry.get("Id"):
                names.append(str(entry["Id"]))
        return sorted(names)

    def _pull_events(self, repository: str, tag: str) -> list[dict[str, Any]]:
        return list(self._api.pull(repository, tag=tag, stream=True, decode=True))

    def _create_and_start(self, name: str, image: ImageRef) -> None:
        host_config = self._api.create_host_config(privileged=True)
        self._api.create_container(
            image.reference,
            name=name,
            stdin_open=True,
            tty=True,
            host_config=host_config,
            labels={self._label: "1"},
        )
        self._api.start(name)


def _event_error(event: object) -> str | None:
    if not isinstance(event, dict):
        return None
    error = event.get("error")
    if error:
        return str(error)
    detail = event.get("errorDetail")
    if isinstance(detail, dict) and detail.get("message"):
        return str(detail["message"])
    return None


__all__ = [
    "DAEMON_ERRORS",
    "ImageRef",
    "SandboxHandle",
    "SandboxLifecycle",
    "connect",
    "random_sandbox_name",
    "select_image_tag",
]
