from app.core.models.audit_log import AuditLog
from app.core.models.counsellor import Counsellor
from app.core.models.course import Course
from app.core.models.lead import Lead
from app.core.models.payment_record import PaymentRecord
from app.core.models.payment_transaction import PaymentTransaction

__all__ = [
    "AuditLog",
    "Counsellor",
    "Course",
    "Lead",
    "PaymentRecord",
    "PaymentTransaction",
]
