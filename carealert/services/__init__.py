# Business Logic Services
from carealert.services.alert_lifecycle import AlertCreation, AlertLifecycle
from carealert.services.escalation_scheduler import EscalationScheduler
from carealert.services.notification_dispatcher import DispatchReport, NotificationDispatcher
from carealert.services.permission_resolver import PermissionResolver
from carealert.services.scheduler import (
    get_scheduler,
    start_scheduler,
    stop_scheduler,
)
from carealert.services.trigger_ingress import TriggerIngress

__all__ = [
    "AlertCreation",
    "AlertLifecycle",
    "DispatchReport",
    "EscalationScheduler",
    "NotificationDispatcher",
    "PermissionResolver",
    "TriggerIngress",
    "get_scheduler",
    "start_scheduler",
    "stop_scheduler",
]
