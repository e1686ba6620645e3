"""Log routing and rotation steps.

Both are optional: the daemon runs without them. A missing subsystem
skips the step; a failed install is reported but does not stop the plan.
"""

import logging
import time
from dataclasses import dataclass

from artifacts import Artifact, read_text, write_new_file
from common import CheckResult, StepResult
from config import BootstrapConfig
from environment import HostEnvironment
from errors import LogIntegrationFailure

logger = logging.getLogger(__name__)

LOG_ROUTER = 'rsyslog'
LOG_ROTATION = 'logrotate'


def _subsystem_present(subsystem: str, env: HostEnvironment) -> bool:
    if subsystem == LOG_ROUTER:
        return env.has_log_router
    if subsystem == LOG_ROTATION:
        return env.has_log_rotation
    raise ValueError(f"Unknown log subsystem: {subsystem}")


@dataclass
class InstallLogConfigStep:
    """Install one rule file for a log subsystem."""
    name: str
    description: str
    subsystem: str
    artifact: Artifact
    contents: str

    def check(self, _config: BootstrapConfig, env: HostEnvironment) -> CheckResult:
        if not _subsystem_present(self.subsystem, env):
            return CheckResult(
                satisfied=False,
                message=f"{self.subsystem} not installed",
                available=False,
            )

        if not self.artifact.inspect():
            return CheckResult(satisfied=False, message=f"{self.artifact.path} not installed")

        if read_text(self.artifact) != self.contents:
            raise LogIntegrationFailure(
                f"{self.artifact.path} exists with different contents; left unchanged"
            )
        return CheckResult(satisfied=True, message=f"{self.artifact.path} installed")

    def apply(self, _config: BootstrapConfig, _env: HostEnvironment) -> StepResult:
        start = time.time()
        logger.info(f"[{self.name}] Installing {self.artifact.path}...")
        try:
            write_new_file(self.artifact, self.contents)
        except OSError as e:
            raise LogIntegrationFailure(f"Failed to install {self.artifact.path}: {e}") from e
        return StepResult(message=f"Installed {self.artifact.path}", duration=time.time() - start)
