"""Credential provisioning step.

A pair is generated only when the per-domain directory is absent. An
existing pair is never regenerated, even if it looks wrong; clients may
have pinned its certificate.

Pairs are built in a hidden staging directory next to the domain
directory. The daemon treats every entry in the certificate store as a
domain, so staging left by an interrupted run is found by check() and
removed by apply().
"""

import logging
import os
import shutil
import stat
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from artifacts import Artifact
from common import CheckResult, StepResult
from config import BootstrapConfig
from environment import HostEnvironment
from errors import CredentialGenerationFailure, InvalidCredentials
from tls import CredentialPair, cert_matches_domain, generate_self_signed_cert, verify_cert_key_match

logger = logging.getLogger(__name__)


@dataclass
class EnsureCredentialsStep:
    """Generate the domain's key/certificate pair if none exists."""
    name: str
    description: str
    domain: str
    domain_dir: Artifact
    key: Artifact
    cert: Artifact
    key_size: int
    days: int

    @property
    def staging_prefix(self) -> str:
        return f'.{self.domain}.'

    def leftover_staging(self) -> list[Path]:
        """Staging entries left in the certificate store by an interrupted run."""
        store = self.domain_dir.path.parent
        try:
            names = os.listdir(store)
        except FileNotFoundError:
            return []
        return sorted(store / name for name in names if name.startswith(self.staging_prefix))

    def check(self, _config: BootstrapConfig, _env: HostEnvironment) -> CheckResult:
        leftovers = self.leftover_staging()

        if not self.domain_dir.inspect():
            return CheckResult(satisfied=False, message=f"No credentials for {self.domain}")

        has_key = self.key.exists()
        has_cert = self.cert.exists()
        if not has_key and not has_cert:
            raise InvalidCredentials(
                f"A folder for {self.domain} exists, but there is no certificate or key file\n"
                f"  Remove {self.domain_dir.path} to have a new pair generated"
            )
        if not has_cert:
            raise InvalidCredentials(f"The certificate file for {self.domain} is missing: {self.cert.path}")
        if not has_key:
            raise InvalidCredentials(f"The key file for {self.domain} is missing: {self.key.path}")

        self.key.verify()
        self.cert.verify()

        if not verify_cert_key_match(self.cert.path, self.key.path):
            raise InvalidCredentials(
                f"The certificate and key for {self.domain} do not belong together"
            )
        if not cert_matches_domain(self.cert.path, self.domain):
            raise InvalidCredentials(
                f"The certificate in {self.cert.path} is not valid for {self.domain}"
            )

        if leftovers:
            return CheckResult(
                satisfied=False,
                message=f"Leftover staging in {self.domain_dir.path.parent}: "
                        f"{', '.join(p.name for p in leftovers)}",
            )
        return CheckResult(satisfied=True, message=f"Credentials for {self.domain} present")

    def _remove_leftovers(self) -> list[Path]:
        removed = []
        for path in self.leftover_staging():
            st = os.lstat(path)
            if not stat.S_ISDIR(st.st_mode):
                raise InvalidCredentials(
                    f"Unexpected entry {path} in the certificate store\n"
                    f"  The daemon would read it as a domain; remove it by hand"
                )
            logger.warning(f"[{self.name}] Removing staging left by an interrupted run: {path}")
            try:
                shutil.rmtree(path)
            except OSError as e:
                raise CredentialGenerationFailure(f"Failed to remove {path}: {e}") from e
            removed.append(path)
        return removed

    def _build_pair(self, staging: Path) -> CredentialPair:
        try:
            pair = generate_self_signed_cert(staging, self.domain, days=self.days, key_size=self.key_size)
            self.key.apply_ownership(pair.key_path)
            self.cert.apply_ownership(pair.cert_path)
            self.domain_dir.apply_ownership(staging)
            if os.path.lexists(self.domain_dir.path):
                raise FileExistsError(f"{self.domain_dir.path} appeared during provisioning")
            os.rename(staging, self.domain_dir.path)
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode(errors='replace') if isinstance(e.stderr, bytes) else (e.stderr or '')
            raise CredentialGenerationFailure(
                f"openssl failed for {self.domain}: {stderr.strip()[-500:]}"
            ) from e
        except KeyError as e:
            raise CredentialGenerationFailure(f"Unknown owner for credentials of {self.domain}: {e}") from e
        except OSError as e:
            raise CredentialGenerationFailure(f"Failed to write credentials for {self.domain}: {e}") from e
        return pair

    def apply(self, _config: BootstrapConfig, _env: HostEnvironment) -> StepResult:
        start = time.time()
        store = self.domain_dir.path.parent

        removed = self._remove_leftovers()
        if self.domain_dir.exists():
            # Pair already verified by check(); only the leftovers needed work
            return StepResult(
                message=f"Removed leftover staging: {', '.join(p.name for p in removed)}",
                duration=time.time() - start,
            )

        # Build the pair in a private staging directory so it appears at
        # the target path complete or not at all
        try:
            staging = Path(tempfile.mkdtemp(prefix=self.staging_prefix, dir=store))
        except OSError as e:
            raise CredentialGenerationFailure(f"Cannot write to {store}: {e}") from e

        try:
            pair = self._build_pair(staging)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        return StepResult(
            message=f"Generated certificate for {self.domain} (SHA256 {pair.fingerprint})",
            duration=time.time() - start,
            context_updates={
                'cert_path': str(self.cert.path),
                'cert_fingerprint': pair.fingerprint,
            },
        )
