"""Service manager collaborator.

The bootstrap only installs unit definitions and asks the manager to
reload them. start() and stop() exist for the redeploy tooling that swaps
the daemon binary; the orchestrator never calls them.
"""

import logging
from typing import Protocol, runtime_checkable

from artifacts import Artifact, write_new_file
from common import run_command
from errors import ServiceRegistrationFailure

logger = logging.getLogger(__name__)


@runtime_checkable
class ServiceManager(Protocol):
    """Protocol for the host's service manager."""

    def install_unit(self, artifact: Artifact, contents: str) -> None:
        """Install a unit definition. Never replaces an existing file."""
        ...

    def reload_definitions(self) -> None:
        """Make the manager re-read unit definitions."""
        ...

    def needs_reload(self, unit_name: str) -> bool:
        """True if the unit file changed since definitions were last loaded."""
        ...

    def start(self, unit_name: str) -> None:
        ...

    def stop(self, unit_name: str) -> None:
        ...


class SystemdServiceManager:
    """ServiceManager backed by systemctl."""

    def __init__(self, timeout: int = 60):
        self.timeout = timeout

    def _systemctl(self, *args: str) -> tuple[int, str, str]:
        return run_command(['systemctl', *args], timeout=self.timeout)

    def install_unit(self, artifact: Artifact, contents: str) -> None:
        try:
            write_new_file(artifact, contents)
        except OSError as e:
            raise ServiceRegistrationFailure(f"Failed to install {artifact.path}: {e}") from e
        logger.info(f"Installed unit {artifact.path}")

    def reload_definitions(self) -> None:
        rc, _, err = self._systemctl('daemon-reload')
        if rc != 0:
            raise ServiceRegistrationFailure(f"systemctl daemon-reload failed: {err.strip()}")
        logger.info("Reloaded systemd unit definitions")

    def needs_reload(self, unit_name: str) -> bool:
        rc, out, _ = self._systemctl('show', '--property=NeedDaemonReload', '--value', unit_name)
        return rc == 0 and out.strip() == 'yes'

    def start(self, unit_name: str) -> None:
        rc, _, err = self._systemctl('start', unit_name)
        if rc != 0:
            raise ServiceRegistrationFailure(f"Failed to start {unit_name}: {err.strip()}")
        logger.info(f"Started {unit_name}")

    def stop(self, unit_name: str) -> None:
        rc, _, err = self._systemctl('stop', unit_name)
        if rc != 0:
            raise ServiceRegistrationFailure(f"Failed to stop {unit_name}: {err.strip()}")
        logger.info(f"Stopped {unit_name}")
