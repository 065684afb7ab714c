from src.models.appointment import (
    AppointmentParticipants,
    AppointmentStatusUpdate,
    RescheduleDetails,
)
from src.models.assignment import ProviderAssignment
from src.models.enums import (
    AppointmentStatus,
    AssignmentStatus,
    CaseUpdateType,
    CommunicationMethod,
    DeliveryMethod,
    OutboxOperationType,
    ProviderType,
    RecipientRole,
    ReminderKind,
    ReminderStatus,
    ServiceTag,
    StatusActor,
    SurvivorEvent,
    UrgencyLevel,
    UrgencyTag,
)
from src.models.incident import Coordinates, Incident, IncidentLocation, ProviderPreferences
from src.models.notification import Notification, NotificationPayload
from src.models.outbox import OutboxStatistics, PendingOperation
from src.models.provider import ContactInfo, ProviderLocation, ProviderProfile, WorkingHours
from src.models.reminder import (
    AppointmentDetails,
    FiredReminder,
    Reminder,
    ReminderPlan,
    ReminderPreferences,
    ReminderRecipient,
    ReminderStatistics,
)

__all__ = [
    "AppointmentDetails",
    "AppointmentParticipants",
    "AppointmentStatus",
    "AppointmentStatusUpdate",
    "AssignmentStatus",
    "CaseUpdateType",
    "CommunicationMethod",
    "ContactInfo",
    "Coordinates",
    "DeliveryMethod",
    "FiredReminder",
    "Incident",
    "IncidentLocation",
    "Notification",
    "NotificationPayload",
    "OutboxOperationType",
    "OutboxStatistics",
    "PendingOperation",
    "ProviderAssignment",
    "ProviderLocation",
    "ProviderPreferences",
    "ProviderProfile",
    "ProviderType",
    "RecipientRole",
    "Reminder",
    "ReminderKind",
    "ReminderPlan",
    "ReminderPreferences",
    "ReminderRecipient",
    "ReminderStatistics",
    "ReminderStatus",
    "RescheduleDetails",
    "ServiceTag",
    "StatusActor",
    "SurvivorEvent",
    "UrgencyLevel",
    "UrgencyTag",
    "WorkingHours",
]
