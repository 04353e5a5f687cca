"""
Render Controller - Static pod configuration reconciliation loop.

Watches the upstream control-plane configuration resources and, on every
change, renders the API server and scheduler configuration files and then
marks the ``ConfigStatus`` ready at a version derived from its inputs.

Each iteration is level-triggered: inputs are fully re-read, every document
is built and encoded before the first file is touched, and the status is
only published once all files are on disk.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

from config import RenderConfig
from converters import ConversionError, Converter, build_converters
from events import EventSubscription
from resources import (
    ADMISSION_CONTROL_CONFIG,
    ADMISSION_CONTROL_CONFIG_ID,
    AUDIT_POLICY_CONFIG,
    AUDIT_POLICY_CONFIG_ID,
    SCHEDULER_CONFIG,
    SCHEDULER_CONFIG_ID,
    STRUCTURED_AUTHENTICATION_CONFIG,
    STRUCTURED_AUTHENTICATION_CONFIG_ID,
    STRUCTURED_AUTHORIZATION_CONFIG,
    STRUCTURED_AUTHORIZATION_CONFIG_ID,
    Resource,
)
from serializer import SerializationError, Serializer
from status import StatusPublisher, compute_version
from store import NotFoundError, ResourceStore
from writer import WriteError, write_files

logger = logging.getLogger(__name__)

INPUT_KINDS = [
    ADMISSION_CONTROL_CONFIG,
    AUDIT_POLICY_CONFIG,
    STRUCTURED_AUTHENTICATION_CONFIG,
    STRUCTURED_AUTHORIZATION_CONFIG,
    SCHEDULER_CONFIG,
]

APISERVER_POD = "kube-apiserver"
SCHEDULER_POD = "kube-scheduler"

ADMISSION_CONTROL_FILE = "admission-control-config.yaml"
AUDIT_POLICY_FILE = "auditpolicy.yaml"
AUTHENTICATION_FILE = "authentication-config.yaml"
AUTHORIZATION_FILE = "authorization-config.yaml"
SCHEDULER_FILE = "scheduler-config.yaml"


class HostRuntime(Protocol):
    """What the controller needs from whatever runs it."""

    def signal_healthy(self) -> None:
        """Report a successful cycle so restart backoff can be reset."""


class RenderError(Exception):
    """Raised when a render cycle fails; fatal to the controller run."""

    def __init__(
        self, message: str, kind: Optional[str] = None, pod: Optional[str] = None
    ):
        self.message = message
        self.kind = kind
        self.pod = pod
        super().__init__(message)


@dataclass
class RenderInputs:
    """Upstream resources read for one iteration."""

    admission: Resource
    audit: Resource
    scheduler: Resource
    authentication: Optional[Resource] = None
    authorization: Optional[Resource] = None

    @property
    def version(self) -> str:
        return compute_version(
            self.admission.version, self.audit.version, self.scheduler.version
        )


@dataclass
class ConfigFile:
    """One file to render: which converter to run on which payload."""

    filename: str
    kind: str
    payload: Any


@dataclass
class PodConfigs:
    """All files for one static pod, sharing a directory and owner."""

    name: str
    directory: str
    uid: int
    gid: int
    configs: List[ConfigFile] = field(default_factory=list)


def _has_payload(resource: Optional[Resource]) -> bool:
    return resource is not None and bool(resource.spec.get("config"))


class RenderConfigsController:
    """
    Renders static pod configuration and publishes ConfigStatus.

    ``run()`` loops until ``shutdown_event`` is set. Missing inputs skip the
    iteration; every other failure raises ``RenderError`` and ends the run,
    leaving restarts to the host runtime.
    """

    name = "RenderConfigsStaticPodController"

    def __init__(
        self,
        store: ResourceStore,
        render_config: Optional[RenderConfig] = None,
        shutdown_event: Optional[asyncio.Event] = None,
        serializer: Optional[Serializer] = None,
        converters: Optional[Dict[str, Converter]] = None,
        status_publisher: Optional[StatusPublisher] = None,
    ):
        self.store = store
        self.render_config = render_config or RenderConfig()
        self.shutdown_event = shutdown_event or asyncio.Event()
        self.serializer = serializer or Serializer()
        self.converters = converters or build_converters(
            self.render_config.scheduler_kubeconfig
        )
        self.status_publisher = status_publisher or StatusPublisher(store)

    async def run(self, runtime: HostRuntime) -> None:
        """
        Run the reconciliation loop.

        The first iteration runs immediately; later ones wait for a change
        to any input. Shutdown is only observed while waiting, so a render
        in progress always finishes.

        Raises:
            RenderError: On any non-skippable failure
        """
        logger.info(f"Starting {self.name}")
        watch_id, subscription = await self.store.watch(INPUT_KINDS)

        try:
            first = True
            while not self.shutdown_event.is_set():
                if not first and not await self._wait_for_event(subscription):
                    break
                first = False

                if await self.render_once():
                    runtime.signal_healthy()
        finally:
            await self.store.unwatch(watch_id)
            logger.info(f"Stopped {self.name}")

    async def stop(self) -> None:
        """Ask the loop to exit at its next wait."""
        self.shutdown_event.set()

    async def _wait_for_event(self, subscription: EventSubscription) -> bool:
        """
        Block until an input changes or shutdown is requested.

        Notifications queued behind the first one are drained, so a burst of
        changes produces a single render.

        Returns:
            True to render, False to stop.
        """
        next_event = asyncio.ensure_future(subscription.__anext__())
        shutdown = asyncio.ensure_future(self.shutdown_event.wait())
        try:
            await asyncio.wait(
                {next_event, shutdown}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (next_event, shutdown):
                if not task.done():
                    task.cancel()

        if self.shutdown_event.is_set():
            return False

        try:
            event = next_event.result()
        except StopAsyncIteration:
            return False

        coalesced = subscription.drain()
        logger.debug(
            f"Woken by {event.event_type.value} {event.kind}/{event.resource_id}"
            f" ({coalesced} more coalesced)"
        )
        return True

    async def render_once(self) -> bool:
        """
        Perform one full render attempt.

        Returns:
            True if files were written and status published, False if a
            required input is missing.

        Raises:
            RenderError: On conversion, encoding, write or publish failure
        """
        try:
            inputs = await self._read_inputs()
        except NotFoundError as e:
            logger.debug(f"Skipping render, input not available: {e}")
            return False

        pods = self._plan(inputs)
        rendered = self._synthesize(pods)
        self._write(rendered)

        version = inputs.version
        try:
            await self.status_publisher.publish(version)
        except Exception as e:
            raise RenderError(f"error updating config status: {e}") from e

        logger.info(f"Rendered static pod configuration at version {version}")
        return True

    async def _get(self, kind: str, resource_id: str) -> Resource:
        try:
            return await self.store.get(kind, resource_id)
        except NotFoundError:
            raise
        except Exception as e:
            raise RenderError(f"error getting {kind} resource: {e}", kind=kind) from e

    async def _get_optional(self, kind: str, resource_id: str) -> Optional[Resource]:
        try:
            return await self._get(kind, resource_id)
        except NotFoundError:
            return None

    async def _read_inputs(self) -> RenderInputs:
        admission = await self._get(
            ADMISSION_CONTROL_CONFIG, ADMISSION_CONTROL_CONFIG_ID
        )
        audit = await self._get(AUDIT_POLICY_CONFIG, AUDIT_POLICY_CONFIG_ID)
        authentication = await self._get_optional(
            STRUCTURED_AUTHENTICATION_CONFIG, STRUCTURED_AUTHENTICATION_CONFIG_ID
        )
        authorization = await self._get_optional(
            STRUCTURED_AUTHORIZATION_CONFIG, STRUCTURED_AUTHORIZATION_CONFIG_ID
        )
        scheduler = await self._get(SCHEDULER_CONFIG, SCHEDULER_CONFIG_ID)

        return RenderInputs(
            admission=admission,
            audit=audit,
            scheduler=scheduler,
            authentication=authentication,
            authorization=authorization,
        )

    def _plan(self, inputs: RenderInputs) -> List[PodConfigs]:
        """Decide which files each pod gets for these inputs."""
        cfg = self.render_config

        apiserver = PodConfigs(
            name=APISERVER_POD,
            directory=cfg.apiserver_config_dir,
            uid=cfg.apiserver_run_user,
            gid=cfg.apiserver_run_group,
            configs=[
                ConfigFile(
                    ADMISSION_CONTROL_FILE,
                    ADMISSION_CONTROL_CONFIG,
                    inputs.admission.spec.get("config"),
                ),
                ConfigFile(
                    AUDIT_POLICY_FILE,
                    AUDIT_POLICY_CONFIG,
                    inputs.audit.spec.get("config"),
                ),
            ],
        )

        if _has_payload(inputs.authentication):
            apiserver.configs.append(
                ConfigFile(
                    AUTHENTICATION_FILE,
                    STRUCTURED_AUTHENTICATION_CONFIG,
                    inputs.authentication.spec["config"],
                )
            )

        if _has_payload(inputs.authorization):
            apiserver.configs.append(
                ConfigFile(
                    AUTHORIZATION_FILE,
                    STRUCTURED_AUTHORIZATION_CONFIG,
                    inputs.authorization.spec["config"],
                )
            )

        scheduler = PodConfigs(
            name=SCHEDULER_POD,
            directory=cfg.scheduler_config_dir,
            uid=cfg.scheduler_run_user,
            gid=cfg.scheduler_run_group,
            configs=[
                ConfigFile(
                    SCHEDULER_FILE,
                    SCHEDULER_CONFIG,
                    inputs.scheduler.spec.get("config"),
                ),
            ],
        )

        return [apiserver, scheduler]

    def _synthesize(
        self, pods: List[PodConfigs]
    ) -> List[Tuple[PodConfigs, List[Tuple[str, bytes]]]]:
        """Convert and encode every file before anything is written."""
        rendered = []
        for pod in pods:
            files = []
            for config_file in pod.configs:
                converter = self.converters[config_file.kind]
                try:
                    document = converter(config_file.payload)
                except ConversionError as e:
                    raise RenderError(
                        f"error generating configuration {config_file.filename!r} "
                        f"for {pod.name!r}: {e}",
                        kind=config_file.kind,
                        pod=pod.name,
                    ) from e

                try:
                    content = self.serializer.encode(document)
                except SerializationError as e:
                    raise RenderError(
                        f"error marshaling configuration {config_file.filename!r} "
                        f"for {pod.name!r}: {e}",
                        kind=config_file.kind,
                        pod=pod.name,
                    ) from e

                files.append((config_file.filename, content))
            rendered.append((pod, files))
        return rendered

    def _write(
        self, rendered: List[Tuple[PodConfigs, List[Tuple[str, bytes]]]]
    ) -> None:
        for pod, files in rendered:
            try:
                write_files(pod.directory, files, pod.uid, pod.gid)
            except WriteError as e:
                raise RenderError(
                    f"error writing configuration for {pod.name!r}: {e}",
                    pod=pod.name,
                ) from e
