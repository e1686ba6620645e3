"""Directory provisioning step."""

import logging
import time
from dataclasses import dataclass

from artifacts import Artifact, create_directory
from common import CheckResult, StepResult
from config import BootstrapConfig
from environment import HostEnvironment
from errors import ProvisionError

logger = logging.getLogger(__name__)


@dataclass
class EnsureDirectoryStep:
    """Create a directory with its mandated mode and owner.

    An existing directory is verified, never altered: it may hold
    operator-managed data.
    """
    name: str
    description: str
    artifact: Artifact

    def check(self, _config: BootstrapConfig, _env: HostEnvironment) -> CheckResult:
        path = self.artifact.path
        if self.artifact.inspect():
            return CheckResult(satisfied=True, message=f"{path} present")
        return CheckResult(satisfied=False, message=f"{path} missing")

    def apply(self, _config: BootstrapConfig, _env: HostEnvironment) -> StepResult:
        start = time.time()
        logger.info(f"[{self.name}] Creating {self.artifact.path}...")
        try:
            create_directory(self.artifact)
        except OSError as e:
            raise ProvisionError(f"Failed to create {self.artifact.path}: {e}") from e
        return StepResult(
            message=f"Created {self.artifact.path} ({self.artifact.mode:04o})",
            duration=time.time() - start,
        )
