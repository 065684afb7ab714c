"""Tumaini service layer -- provider directory, routing, assignments,
reminders, appointment status, notifications and remote sync."""

from __future__ import annotations

from src.services.appointment_status import AppointmentStatusTracker
from src.services.assignments import AssignmentLifecycle
from src.services.clock import Clock, FixedClock, SystemClock
from src.services.notifications import (
    LoggingNotificationSink,
    NotificationComposer,
    NotificationSink,
    QueueNotificationSink,
)
from src.services.outbox import SyncOutbox
from src.services.provider_directory import ProviderDirectory
from src.services.reminder_engine import ReminderEngine
from src.services.reminders import ReminderScheduler
from src.services.remote_gateway import RemoteCaseGateway
from src.services.routing import ProviderRoutingService, RoutingEngine, RoutingPolicy
from src.services.store import JsonStateStore, create_state_store

__all__ = [
    "AppointmentStatusTracker",
    "AssignmentLifecycle",
    "Clock",
    "FixedClock",
    "JsonStateStore",
    "LoggingNotificationSink",
    "NotificationComposer",
    "NotificationSink",
    "ProviderDirectory",
    "ProviderRoutingService",
    "QueueNotificationSink",
    "ReminderEngine",
    "ReminderScheduler",
    "RemoteCaseGateway",
    "RoutingEngine",
    "RoutingPolicy",
    "SyncOutbox",
    "SystemClock",
    "create_state_store",
]
