"""Provision reporting."""

from reporting.report import ProvisionReport, StepOutcome

__all__ = ['ProvisionReport', 'StepOutcome']
