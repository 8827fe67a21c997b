"""Readiness, prerequisite, recovery and registration services."""

from services.daemon_readiness import DaemonReadinessProber
from services.outcome_verifier import OutcomeVerifier, evaluate_connection
from services.prerequisites import PrerequisiteValidator
from services.recovery_policy import RecoveryExecutor, classify_error, lookup
from services.registration import RegistrationOrchestrator

__all__ = [
    "DaemonReadinessProber",
    "OutcomeVerifier",
    "PrerequisiteValidator",
    "RecoveryExecutor",
    "RegistrationOrchestrator",
    "classify_error",
    "evaluate_connection",
    "lookup",
]
