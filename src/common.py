"""Common utilities and types for the bootstrap."""

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Step outcomes recorded in the report
CREATED = 'created'
ALREADY_SATISFIED = 'already_satisfied'
SKIPPED = 'skipped'
FAILED = 'failed'


@dataclass
class CheckResult:
    """Result of a step's precondition check.

    satisfied: artifact already present and correct, nothing to apply
    available: False when the subsystem the step targets is absent
    """
    satisfied: bool
    message: str = ''
    available: bool = True


@dataclass
class StepResult:
    """Result returned by a step's apply action."""
    message: str = ''
    duration: float = 0.0
    context_updates: dict = field(default_factory=dict)


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 120,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except OSError as e:
        return -1, '', str(e)
