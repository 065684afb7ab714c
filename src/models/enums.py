from __future__ import annotations

from enum import StrEnum


class ProviderType(StrEnum):
    __slots__ = ()

    HEALTHCARE = "healthcare"
    POLICE = "police"
    LEGAL = "legal"
    COUNSELING = "counseling"
    SOCIAL = "social"
    GBV_RESCUE = "gbv_rescue"
    CHW = "chw"  # Community Health Worker


class UrgencyLevel(StrEnum):
    __slots__ = ()

    IMMEDIATE = "immediate"
    URGENT = "urgent"
    ROUTINE = "routine"


class ServiceTag(StrEnum):
    """Support services a survivor can request when reporting an incident."""

    __slots__ = ()

    MEDICAL = "medical"
    EMERGENCY = "emergency"
    POLICE = "police"
    LEGAL = "legal"
    COUNSELING = "counseling"
    SHELTER = "shelter"
    FINANCIAL = "financial"


class CommunicationMethod(StrEnum):
    __slots__ = ()

    SMS = "sms"
    CALL = "call"
    SECURE_MESSAGE = "secure_message"


class AssignmentStatus(StrEnum):
    __slots__ = ()

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class RecipientRole(StrEnum):
    __slots__ = ()

    SURVIVOR = "survivor"
    PROVIDER = "provider"


class ReminderKind(StrEnum):
    __slots__ = ()

    TWENTY_FOUR_HOUR = "24_hour"
    TWO_HOUR = "2_hour"
    THIRTY_MINUTE = "30_minute"
    CUSTOM = "custom"


class ReminderStatus(StrEnum):
    __slots__ = ()

    SCHEDULED = "scheduled"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DeliveryMethod(StrEnum):
    __slots__ = ()

    IN_APP = "in_app"
    SMS = "sms"
    BOTH = "both"


class AppointmentStatus(StrEnum):
    __slots__ = ()

    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    RESCHEDULE_REQUESTED = "reschedule_requested"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StatusActor(StrEnum):
    __slots__ = ()

    PROVIDER = "provider"
    SURVIVOR = "survivor"
    SYSTEM = "system"


class UrgencyTag(StrEnum):
    """Delivery urgency attached to every composed notification."""

    __slots__ = ()

    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"


class SurvivorEvent(StrEnum):
    __slots__ = ()

    ASSIGNMENT = "assignment"
    CONTACT = "contact"
    APPOINTMENT = "appointment"
    CASE_UPDATE = "case_update"
    MESSAGE = "message"


class CaseUpdateType(StrEnum):
    __slots__ = ()

    STATUS_CHANGE = "status_change"
    PROGRESS_UPDATE = "progress_update"
    COMPLETION = "completion"


class OutboxOperationType(StrEnum):
    __slots__ = ()

    CREATE_INCIDENT = "CREATE_INCIDENT"
    UPDATE_INCIDENT = "UPDATE_INCIDENT"
    ACCEPT_ASSIGNMENT = "ACCEPT_ASSIGNMENT"
    DECLINE_ASSIGNMENT = "DECLINE_ASSIGNMENT"
    UPDATE_APPOINTMENT_STATUS = "UPDATE_APPOINTMENT_STATUS"
    SEND_MESSAGE = "SEND_MESSAGE"
