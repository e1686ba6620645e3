"""Error taxonomy and exit codes for the bootstrap.

Preflight errors abort before anything is written. Step errors abort the
remaining plan unless the error class is non-fatal. Exit codes let calling
automation branch on the outcome class.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_PREFLIGHT = 2
EXIT_DRIFT = 3
EXIT_STEP_FAILED = 4
EXIT_DEGRADED = 5


class ProvisionError(Exception):
    """Base class for provisioning failures."""
    exit_code = EXIT_STEP_FAILED
    fatal = True


class PreflightError(ProvisionError):
    """Host is not ready to be provisioned."""
    exit_code = EXIT_PREFLIGHT


class MissingPrivilege(PreflightError):
    """Bootstrap is not running with elevated rights."""

    def __init__(self, message: str = ''):
        super().__init__(
            message or "Bootstrap requires root privileges\n"
                       "  Run with sudo or as root"
        )


class MissingDependency(PreflightError):
    """A required tool or subsystem is not available."""

    def __init__(self, tool: str, hint: str = ''):
        self.tool = tool
        message = f"Required tool not found: {tool}"
        if hint:
            message += f"\n  {hint}"
        super().__init__(message)


class MissingAccount(PreflightError):
    """A configured user or group does not exist on the host."""

    def __init__(self, name: str, kind: str = 'user'):
        self.name = name
        self.kind = kind
        if kind == 'user':
            hint = f"useradd --system --user-group {name}"
        else:
            hint = f"groupadd --system {name}"
        super().__init__(
            f"{kind.capitalize()} '{name}' does not exist\n"
            f"  Create it first, e.g.: {hint}"
        )


class PermissionDrift(ProvisionError):
    """An existing artifact does not match its required mode or owner.

    Never auto-corrected: the artifact may be operator-managed.
    """
    exit_code = EXIT_DRIFT

    def __init__(self, path: Path, detail: str):
        self.path = path
        self.detail = detail
        super().__init__(f"Permission drift on {path}: {detail}")


class CredentialGenerationFailure(ProvisionError):
    """Key or certificate could not be generated."""


class InvalidCredentials(ProvisionError):
    """Existing credential material is incomplete or unusable."""


class ServiceRegistrationFailure(ProvisionError):
    """Unit file could not be installed or definitions not reloaded."""


class LogIntegrationFailure(ProvisionError):
    """Log routing or rotation rule could not be installed.

    Non-fatal: the service runs without it.
    """
    exit_code = EXIT_DEGRADED
    fatal = False


@dataclass
class HostnameMismatch:
    """Warning: the host name differs from the certificate domain."""
    hostname: str
    domain: str
    fqdn: Optional[str] = None

    def __str__(self) -> str:
        seen = self.hostname
        if self.fqdn and self.fqdn != self.hostname:
            seen = f"{self.hostname} ({self.fqdn})"
        return (
            f"Hostname {seen} does not match domain {self.domain}; "
            f"the generated certificate will be issued for {self.domain}"
        )
