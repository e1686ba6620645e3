"""Service registration step."""

import logging
import time
from dataclasses import dataclass

from artifacts import Artifact, read_text
from common import CheckResult, StepResult
from config import BootstrapConfig
from environment import HostEnvironment
from errors import ServiceRegistrationFailure
from service import ServiceManager

logger = logging.getLogger(__name__)


@dataclass
class InstallUnitStep:
    """Install the unit definition and reload the service manager.

    Does not enable or start the service.
    """
    name: str
    description: str
    artifact: Artifact
    contents: str
    service_manager: ServiceManager

    @property
    def unit_name(self) -> str:
        return self.artifact.path.name

    def check(self, _config: BootstrapConfig, _env: HostEnvironment) -> CheckResult:
        if not self.artifact.inspect():
            return CheckResult(satisfied=False, message=f"{self.artifact.path} not installed")

        if read_text(self.artifact) != self.contents:
            raise ServiceRegistrationFailure(
                f"{self.artifact.path} exists with different contents\n"
                f"  Refusing to overwrite; remove it or reconcile it by hand"
            )

        # File in place but a previous run stopped before daemon-reload
        if self.service_manager.needs_reload(self.unit_name):
            return CheckResult(satisfied=False, message=f"{self.unit_name} installed, definitions not reloaded")

        return CheckResult(satisfied=True, message=f"{self.unit_name} installed")

    def apply(self, _config: BootstrapConfig, _env: HostEnvironment) -> StepResult:
        start = time.time()
        if self.artifact.exists():
            message = f"Reloaded definitions for {self.unit_name}"
        else:
            logger.info(f"[{self.name}] Installing {self.artifact.path}...")
            self.service_manager.install_unit(self.artifact, self.contents)
            message = f"Installed {self.artifact.path}"

        self.service_manager.reload_definitions()
        return StepResult(message=message, duration=time.time() - start)
