"""Provisioning steps.

Each step pairs a read-only precondition check with an apply action.
check() returns whether the step is already satisfied; both raise a
ProvisionError subclass when the host is in a state they will not touch.
"""

from steps.directory import EnsureDirectoryStep
from steps.credentials import EnsureCredentialsStep
from steps.service_unit import InstallUnitStep
from steps.log_config import InstallLogConfigStep, LOG_ROUTER, LOG_ROTATION

__all__ = [
    'EnsureDirectoryStep',
    'EnsureCredentialsStep',
    'InstallUnitStep',
    'InstallLogConfigStep',
    'LOG_ROUTER',
    'LOG_ROTATION',
]
