"""
Enrollment.

Registers security keys as passkeys for directory users and records the
assigned PINs.
"""

from provisioner.enrollment.models import EnrollmentRecord, GroupEnrollmentResult, Step
from provisioner.enrollment.orchestrator import EnrollmentOrchestrator, generate_pin
from provisioner.enrollment.output import OUTPUT_HEADER, EnrollmentLog
from provisioner.enrollment.prompts import ConsoleOperator, Operator

__all__ = [
    # Models
    "EnrollmentRecord",
    "GroupEnrollmentResult",
    "Step",
    # Orchestrator
    "EnrollmentOrchestrator",
    "generate_pin",
    # Output
    "OUTPUT_HEADER",
    "EnrollmentLog",
    # Prompts
    "ConsoleOperator",
    "Operator",
]
