"""Provision reporting."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from common import ALREADY_SATISFIED, CREATED, FAILED, SKIPPED
from errors import EXIT_DEGRADED, EXIT_OK, EXIT_STEP_FAILED, ProvisionError


@dataclass
class StepOutcome:
    """Outcome of one provisioning step."""
    name: str
    description: str
    status: str  # 'created', 'already_satisfied', 'skipped', 'failed'
    message: str = ''
    duration: float = 0.0
    error_type: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


@dataclass
class ProvisionReport:
    """Collects step outcomes and writes reports."""
    host: str
    domain: str = ''
    dry_run: bool = False
    steps: list[StepOutcome] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    preflight_errors: list[ProvisionError] = field(default_factory=list)
    error: Optional[ProvisionError] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    _phase_start: Optional[datetime] = field(default=None, repr=False)

    def start(self):
        """Mark run start."""
        self.started_at = datetime.now()

    def start_step(self, _name: str):
        """Mark step start."""
        self._phase_start = datetime.now()

    def created(self, name: str, description: str, message: str = '', duration: float = 0.0):
        self._record(name, description, CREATED, message, duration)

    def already_satisfied(self, name: str, description: str, message: str = ''):
        self._record(name, description, ALREADY_SATISFIED, message, 0.0)

    def skipped(self, name: str, description: str, message: str = ''):
        self._record(name, description, SKIPPED, message, 0.0)

    def failed(self, name: str, description: str, error: Exception, duration: float = 0.0):
        self._record(name, description, FAILED, str(error), duration, type(error).__name__)

    def warn(self, message: str):
        self.warnings.append(message)

    def _record(self, name: str, description: str, status: str, message: str,
                duration: float, error_type: Optional[str] = None):
        now = datetime.now()
        if duration == 0.0 and self._phase_start:
            duration = (now - self._phase_start).total_seconds()
        self.steps.append(StepOutcome(
            name=name,
            description=description,
            status=status,
            message=message,
            duration=duration,
            error_type=error_type,
            started_at=self._phase_start,
            finished_at=now,
        ))
        self._phase_start = None

    def finish(self):
        """Mark run end."""
        self.finished_at = datetime.now()

    @property
    def success(self) -> bool:
        """True if nothing failed (skipped optional steps are fine)."""
        return self.error is None and all(s.status != FAILED for s in self.steps)

    @property
    def changed(self) -> bool:
        return any(s.status == CREATED for s in self.steps)

    @property
    def exit_code(self) -> int:
        """Exit code for the outcome class (see errors.py)."""
        if self.error is not None:
            return self.error.exit_code
        if any(s.status == FAILED for s in self.steps):
            # Only non-fatal failures let the plan run to completion
            failed = [s for s in self.steps if s.status == FAILED]
            if all(s.error_type == 'LogIntegrationFailure' for s in failed):
                return EXIT_DEGRADED
            return EXIT_STEP_FAILED
        return EXIT_OK

    @property
    def duration(self) -> float:
        if self.finished_at and self.started_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def to_dict(self, context: Optional[dict] = None) -> dict:
        """Return report as dictionary for JSON output.

        Args:
            context: Optional context dict to include in output.
                     Only JSON-serializable values are included.
        """
        result = {
            'host': self.host,
            'domain': self.domain,
            'dry_run': self.dry_run,
            'success': self.success,
            'changed': self.changed,
            'exit_code': self.exit_code,
            'duration_seconds': round(self.duration, 1),
            'steps': [
                {
                    'name': s.name,
                    'status': s.status,
                    'message': s.message,
                    'duration': round(s.duration, 1),
                }
                for s in self.steps
            ],
            'warnings': list(self.warnings),
        }

        if self.preflight_errors:
            result['preflight_errors'] = [
                {'type': type(e).__name__, 'message': str(e)} for e in self.preflight_errors
            ]
        if self.error is not None:
            result['error'] = {'type': type(self.error).__name__, 'message': str(self.error)}

        if context:
            serializable_context = {}
            for key, value in context.items():
                # Skip internal/private keys
                if key.startswith('_'):
                    continue
                try:
                    json.dumps(value)
                    serializable_context[key] = value
                except (TypeError, ValueError):
                    pass
            if serializable_context:
                result['context'] = serializable_context

        return result

    def write(self, report_dir: Path, context: Optional[dict] = None) -> list[Path]:
        """Write JSON and markdown reports. Returns the written paths."""
        report_dir.mkdir(parents=True, exist_ok=True)
        json_path = self._report_filename(report_dir, 'json')
        with open(json_path, 'w', encoding="utf-8") as f:
            json.dump(self.to_dict(context), f, indent=2)

        md_path = self._report_filename(report_dir, 'md')
        with open(md_path, 'w', encoding="utf-8") as f:
            f.write(self.to_markdown())
        return [json_path, md_path]

    def to_markdown(self) -> str:
        status = 'SUCCEEDED' if self.success else 'FAILED'
        if self.dry_run:
            status = f'DRY-RUN ({status})'

        lines = [
            f"# Bootstrap: {self.domain}",
            "",
            f"**Host**: {self.host}",
            f"**Status**: {status}",
            f"**Exit code**: {self.exit_code}",
            f"**Date**: {self.started_at.strftime('%Y-%m-%d %H:%M:%S') if self.started_at else 'N/A'}",
            f"**Duration**: {self.duration:.1f}s",
            "",
        ]

        if self.warnings:
            lines.extend(["## Warnings", ""])
            lines.extend(f"- {w}" for w in self.warnings)
            lines.append("")

        if self.preflight_errors:
            lines.extend(["## Preflight", ""])
            lines.extend(f"- {str(e).splitlines()[0]}" for e in self.preflight_errors)
            lines.append("")

        lines.extend([
            "## Steps",
            "",
            "| Step | Status | Duration | Message |",
            "|------|--------|----------|---------|",
        ])
        for s in self.steps:
            marker = {CREATED: '✅', ALREADY_SATISFIED: '✔️', SKIPPED: '⏭️', FAILED: '❌'}.get(s.status, '❓')
            message = s.message.splitlines()[0] if s.message else ''
            lines.append(f"| {s.name} | {marker} {s.status} | {s.duration:.1f}s | {message} |")

        lines.extend(["", "---", f"Generated: {datetime.now().isoformat()}"])
        return '\n'.join(lines)

    def _report_filename(self, report_dir: Path, ext: str) -> Path:
        timestamp = self.started_at.strftime('%Y%m%d-%H%M%S') if self.started_at else 'unknown'
        status = 'passed' if self.success else 'failed'
        return report_dir / f"{timestamp}.bootstrap.{status}.{ext}"
