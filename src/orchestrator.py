"""Bootstrap orchestration.

Runs preflight, the hostname check and the provision plan strictly in
order. Preflight failures stop the run before anything is written. A
failing step stops the rest of the plan unless its error is non-fatal;
the outcomes of the steps already run are always kept in the report.
"""

import logging
import time
from typing import Any, Optional

from config import BootstrapConfig
from environment import HostEnvironment
from errors import ProvisionError
from plan import ProvisionPlan, build_plan
from reporting import ProvisionReport
from service import ServiceManager
from validation import check_hostname, validate_readiness

logger = logging.getLogger(__name__)

NOT_ATTEMPTED = "not attempted"


class Orchestrator:
    """Coordinates a provisioning run."""

    def __init__(
        self,
        config: BootstrapConfig,
        env: HostEnvironment,
        service_manager: ServiceManager,
        skip_steps: Optional[list[str]] = None,
        dry_run: bool = False,
        plan: Optional[ProvisionPlan] = None,
    ):
        self.config = config
        self.env = env
        self.service_manager = service_manager
        self.skip_steps = skip_steps or []
        self.dry_run = dry_run
        self.plan = plan or build_plan(config, service_manager)
        self.report = ProvisionReport(host=env.hostname, domain=config.domain, dry_run=dry_run)
        self.context: dict[str, Any] = {}

        unknown = [name for name in self.skip_steps if name not in self.plan.names]
        if unknown:
            raise ValueError(f"Unknown step(s): {', '.join(unknown)}. Available: {self.plan.names}")

    def _preflight(self) -> bool:
        """Run preflight and the hostname check. Returns True if ready."""
        errors = validate_readiness(self.config, self.env)
        if errors:
            for error in errors:
                logger.error(f"Preflight failed: {str(error).splitlines()[0]}")
            self.report.preflight_errors = errors
            self.report.error = errors[0]
            return False
        logger.info("Pre-flight validation passed")

        if mismatch := check_hostname(self.config, self.env):
            logger.warning(str(mismatch))
            self.report.warn(str(mismatch))
        return True

    def _skip_rest(self, steps: list) -> None:
        for step in steps:
            self.report.skipped(step.name, step.description, NOT_ATTEMPTED)

    def preview(self) -> ProvisionReport:
        """Check every step without applying anything."""
        self.report.start()
        if not self._preflight():
            self._skip_rest(self.plan.steps)
            self.report.finish()
            return self.report

        for step in self.plan:
            if step.name in self.skip_steps:
                self.report.skipped(step.name, step.description, "skipped by operator")
                continue
            try:
                check = step.check(self.config, self.env)
            except ProvisionError as e:
                logger.error(f"Step {step.name} would fail: {e}")
                self.report.failed(step.name, step.description, e)
                continue
            if not check.available:
                self.report.skipped(step.name, step.description, check.message)
            elif check.satisfied:
                self.report.already_satisfied(step.name, step.description, check.message)
            else:
                self.report.skipped(step.name, step.description, f"would apply: {check.message}")

        self.report.finish()
        return self.report

    def run(self) -> ProvisionReport:
        """Run the plan. Returns the report; errors are recorded in it."""
        if self.dry_run:
            return self.preview()

        logger.info(f"Starting bootstrap of {self.config.name} for {self.config.domain} on {self.env.hostname}")
        self.report.start()
        start_time = time.time()

        if not self._preflight():
            self._skip_rest(self.plan.steps)
            self.report.finish()
            return self.report

        steps = list(self.plan)
        for index, step in enumerate(steps):
            if step.name in self.skip_steps:
                logger.info(f"Skipping step: {step.name}")
                self.report.skipped(step.name, step.description, "skipped by operator")
                continue

            self.report.start_step(step.name)
            try:
                check = step.check(self.config, self.env)
                if not check.available:
                    logger.info(f"Step {step.name} skipped: {check.message}")
                    self.report.skipped(step.name, step.description, check.message)
                    continue
                if check.satisfied:
                    logger.info(f"Step {step.name} already satisfied")
                    self.report.already_satisfied(step.name, step.description, check.message)
                    continue

                logger.info(f"Running step: {step.name} - {step.description}")
                result = step.apply(self.config, self.env)
                logger.info(f"Step {step.name} created: {result.message}")
                self.report.created(step.name, step.description, result.message, result.duration)
                self.context.update(result.context_updates or {})
            except ProvisionError as e:
                self.report.failed(step.name, step.description, e)
                if not e.fatal:
                    logger.warning(f"Step {step.name} failed (non-fatal): {e}")
                    continue
                logger.error(f"Step {step.name} failed: {e}")
                self.report.error = e
                self._skip_rest(steps[index + 1:])
                break
            except Exception as e:
                logger.exception(f"Step {step.name} raised exception")
                error = ProvisionError(f"{step.name}: {e}")
                self.report.failed(step.name, step.description, error)
                self.report.error = error
                self._skip_rest(steps[index + 1:])
                break

        self.report.finish()
        logger.info(f"Bootstrap completed in {time.time() - start_time:.1f}s (exit code {self.report.exit_code})")
        return self.report


def provision(
    config: BootstrapConfig,
    env: HostEnvironment,
    service_manager: ServiceManager,
    skip_steps: Optional[list[str]] = None,
) -> ProvisionReport:
    """Provision config's daemon instance on the host described by env."""
    return Orchestrator(config, env, service_manager, skip_steps=skip_steps).run()
