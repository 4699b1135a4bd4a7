from .schema import Enrollment, EnrollmentSnapshot
from .store import EnrollmentStore
from .scheduler import ResumeScheduler
from .service import EnrollmentNotFoundError, EnrollmentService, WorkflowNotFoundError
from .database import init_db

__all__ = [
    "Enrollment",
    "EnrollmentSnapshot",
    "EnrollmentStore",
    "ResumeScheduler",
    "EnrollmentService",
    "EnrollmentNotFoundError",
    "WorkflowNotFoundError",
    "init_db",
]
