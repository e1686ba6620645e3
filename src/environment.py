"""Host facts gathered once at the start of a run."""

import logging
import os
import shutil
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

# systemd creates this directory at boot; its presence means systemd is PID 1
SYSTEMD_RUNTIME_DIR = Path('/run/systemd/system')


@dataclass(frozen=True)
class HostEnvironment:
    """Read-only facts about the target host.

    tools maps each required executable to whether it resolves on PATH.
    """
    hostname: str
    fqdn: str = ''
    is_privileged: bool = False
    tools: dict = field(default_factory=dict)
    has_service_manager: bool = False
    has_log_router: bool = False
    has_log_rotation: bool = False

    @property
    def missing_tools(self) -> list[str]:
        return sorted(name for name, present in self.tools.items() if not present)

    def hostname_matches(self, domain: str) -> bool:
        """True if either the short hostname or the FQDN equals domain."""
        domain = domain.lower().rstrip('.')
        return domain in (self.hostname.lower(), self.fqdn.lower().rstrip('.'))


def _has_executable(name: str) -> bool:
    return shutil.which(name) is not None


def probe_host(required_tools: Iterable[str]) -> HostEnvironment:
    """Gather host facts. Reads only, never writes."""
    hostname = socket.gethostname()
    try:
        fqdn = socket.getfqdn()
    except OSError:
        fqdn = ''

    tools = {name: _has_executable(name) for name in required_tools}
    env = HostEnvironment(
        hostname=hostname,
        fqdn=fqdn,
        is_privileged=os.geteuid() == 0,
        tools=tools,
        has_service_manager=SYSTEMD_RUNTIME_DIR.is_dir(),
        has_log_router=_has_executable('rsyslogd'),
        has_log_rotation=_has_executable('logrotate'),
    )
    logger.debug(f"Host environment: {env}")
    return env
