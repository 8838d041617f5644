# orderflow/models/__init__.py
from orderflow.models.audit_event import AuditEvent
from orderflow.models.courier import Courier
from orderflow.models.courier_booking import CourierBookingAttempt, CourierBookingQueueEntry
from orderflow.models.dispatch import Dispatch
from orderflow.models.order import Order
from orderflow.models.return_record import ReturnRecord
from orderflow.models.scan_record import ScanRecord
from orderflow.models.sync_queue import SyncQueueEntry

__all__ = [
    "AuditEvent",
    "Courier",
    "CourierBookingAttempt",
    "CourierBookingQueueEntry",
    "Dispatch",
    "Order",
    "ReturnRecord",
    "ScanRecord",
    "SyncQueueEntry",
]
