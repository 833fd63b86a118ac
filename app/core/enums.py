from enum import Enum


class LeadSource(str, Enum):
    WEBSITE = "website"
    REFERRAL = "referral"
    SOCIAL_MEDIA = "social-media"
    ADVERTISEMENT = "advertisement"
    CAMPUS = "campus"


class DecisionState(str, Enum):
    NEW = "NEW"
    PENDING_REVIEW = "PENDING_REVIEW"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


OPEN_DECISION_STATES = (DecisionState.NEW.value, DecisionState.PENDING_REVIEW.value)
TERMINAL_DECISION_STATES = (DecisionState.ACCEPTED.value, DecisionState.REJECTED.value)

# Display-only value, composed from decision_state + interview
INTERVIEW_SCHEDULED = "INTERVIEW_SCHEDULED"


class DecisionAction(str, Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


class PaymentType(str, Enum):
    REGISTRATION = "REGISTRATION"
    COURSE_FEE = "COURSE_FEE"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class TransactionStatus(str, Enum):
    CREATED = "CREATED"
    PAID = "PAID"
    FAILED = "FAILED"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"
