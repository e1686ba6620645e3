"""Provision plan definition.

The plan is an ordered list of steps; order matters because later steps
depend on artifacts created by earlier ones (credentials live inside the
certificate store, the unit references both directories).
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from artifacts import (
    Artifact,
    CERTIFICATE,
    DIRECTORY,
    LOG_ROTATION_CONFIG,
    LOG_ROUTER_CONFIG,
    PRIVATE_KEY,
    SERVICE_UNIT,
)
from common import CheckResult, StepResult
from config import BootstrapConfig
from environment import HostEnvironment
from service import ServiceManager
from steps import (
    EnsureCredentialsStep,
    EnsureDirectoryStep,
    InstallLogConfigStep,
    InstallUnitStep,
    LOG_ROTATION,
    LOG_ROUTER,
)
from templates import render_log_rotation, render_log_router, render_unit
from tls import CERT_FILE_NAME, KEY_FILE_NAME

# Mandated modes
CONTENT_ROOT_MODE = 0o755
CERT_DIR_MODE = 0o700
KEY_MODE = 0o600
CERT_MODE = 0o644
SYSTEM_FILE_MODE = 0o644


@runtime_checkable
class Step(Protocol):
    """Protocol for provisioning steps.

    Attributes:
        name: Unique step identifier (e.g., 'content_root')
        description: Human-readable description
    """
    name: str
    description: str

    def check(self, config: BootstrapConfig, env: HostEnvironment) -> CheckResult:
        """Read-only precondition check."""
        ...

    def apply(self, config: BootstrapConfig, env: HostEnvironment) -> StepResult:
        """Bring the artifact into existence."""
        ...


@dataclass
class ProvisionPlan:
    """Ordered, uniquely named provisioning steps."""
    steps: list = field(default_factory=list)

    def __post_init__(self):
        seen = set()
        for step in self.steps:
            if step.name in seen:
                raise ValueError(f"Duplicate step name: {step.name}")
            seen.add(step.name)

    @property
    def names(self) -> list[str]:
        return [step.name for step in self.steps]

    def __iter__(self):
        return iter(self.steps)

    def __len__(self):
        return len(self.steps)


def build_plan(config: BootstrapConfig, service_manager: ServiceManager) -> ProvisionPlan:
    """Return the plan that provisions config's daemon instance."""
    service_owner = (config.user, config.group)
    system_owner = (config.system_user, config.system_group)

    domain_dir = config.domain_cert_dir

    return ProvisionPlan(steps=[
        EnsureDirectoryStep(
            name='content_root',
            description='Ensure content root',
            artifact=Artifact(DIRECTORY, config.content_root, CONTENT_ROOT_MODE, *service_owner),
        ),
        EnsureDirectoryStep(
            name='cert_dir',
            description='Ensure certificate store',
            artifact=Artifact(DIRECTORY, config.cert_dir, CERT_DIR_MODE, *service_owner),
        ),
        EnsureCredentialsStep(
            name='credentials',
            description=f'Ensure TLS key pair for {config.domain}',
            domain=config.domain,
            domain_dir=Artifact(DIRECTORY, domain_dir, CERT_DIR_MODE, *service_owner),
            key=Artifact(PRIVATE_KEY, domain_dir / KEY_FILE_NAME, KEY_MODE, *service_owner),
            cert=Artifact(CERTIFICATE, domain_dir / CERT_FILE_NAME, CERT_MODE, *service_owner),
            key_size=config.key_size,
            days=config.cert_days,
        ),
        InstallUnitStep(
            name='service_unit',
            description=f'Register {config.unit_name}',
            artifact=Artifact(SERVICE_UNIT, config.unit_path, SYSTEM_FILE_MODE, *system_owner),
            contents=render_unit(config),
            service_manager=service_manager,
        ),
        InstallLogConfigStep(
            name='log_router',
            description='Install rsyslog routing rule',
            subsystem=LOG_ROUTER,
            artifact=Artifact(LOG_ROUTER_CONFIG, config.log_router_path, SYSTEM_FILE_MODE, *system_owner),
            contents=render_log_router(config),
        ),
        InstallLogConfigStep(
            name='log_rotation',
            description='Install logrotate rule',
            subsystem=LOG_ROTATION,
            artifact=Artifact(LOG_ROTATION_CONFIG, config.log_rotation_path, SYSTEM_FILE_MODE, *system_owner),
            contents=render_log_rotation(config),
        ),
    ])
