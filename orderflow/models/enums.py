# orderflow/models/enums.py
from __future__ import annotations

from enum import StrEnum


class OrderStatus(StrEnum):
    """
    订单权威状态（内部台账为准）：

    - PENDING     待处理（新建 / 撤销发运后回退）
    - CONFIRMED   已确认
    - BOOKED      已在快递侧下单（拿到运单号）
    - DISPATCHED  已交给快递
    - DELIVERED   已签收（终态）
    - RETURNED    已退回（终态）
    - CANCELLED   已取消（终态）
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    BOOKED = "booked"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    RETURNED = "returned"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.RETURNED, OrderStatus.CANCELLED}
)

# 下单成功后允许推进到 booked 的来源状态
BOOKABLE_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.BOOKED}
)


class ErrorKind(StrEnum):
    """
    失败分类（决定是否重试 / 给谁看）：

    - INPUT          录入格式问题，本地拒绝，不会走网络
    - LOOKUP         找不到订单，终止
    - CONFLICT       业务冲突（已发运 / 已收货 / 无快递），终止，不要重试
    - TRANSIENT      网络 / 5xx / 超时，可重试，进队列
    - CONFIGURATION  缺凭证 / 缺取件地址码，需要管理员处理，永不自动重试
    - TECHNICAL      其它技术错误（DB 写入失败等）
    """

    INPUT = "input"
    LOOKUP = "lookup"
    CONFLICT = "conflict"
    TRANSIENT = "transient"
    CONFIGURATION = "configuration"
    TECHNICAL = "technical"


class ErrorCode(StrEnum):
    """对操作员稳定的错误码词表。"""

    INVALID_FORMAT = "INVALID_FORMAT"
    NOT_FOUND = "NOT_FOUND"
    NO_COURIER = "NO_COURIER"
    ALREADY_DISPATCHED = "ALREADY_DISPATCHED"
    ALREADY_RECEIVED = "ALREADY_RECEIVED"
    NETWORK_DNS_ERROR = "NETWORK_DNS_ERROR"
    AUTH_HEADER_DROPPED = "AUTH_HEADER_DROPPED"
    CONFIGURATION_REQUIRED = "CONFIGURATION_REQUIRED"
    BOOKING_API_ERROR = "BOOKING_API_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    DUPLICATE_IN_FLIGHT = "DUPLICATE_IN_FLIGHT"
    MISSING_FIELDS = "MISSING_FIELDS"
    DB_ERROR = "DB_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    TOO_MANY_REDIRECTS = "TOO_MANY_REDIRECTS"
    INVALID_ORDER_TYPE = "INVALID_ORDER_TYPE"
    BOOKING_MISSING_TRACKING_ID = "BOOKING_MISSING_TRACKING_ID"
    BOOKING_NO_LABEL = "BOOKING_NO_LABEL"
    LABEL_TIMEOUT = "LABEL_TIMEOUT"
    COURIER_NOT_FOUND = "COURIER_NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    SESSION_INACTIVE = "SESSION_INACTIVE"

    @property
    def kind(self) -> ErrorKind:
        return ERROR_KINDS.get(self, ErrorKind.TECHNICAL)


ERROR_KINDS: dict[ErrorCode, ErrorKind] = {
    ErrorCode.INVALID_FORMAT: ErrorKind.INPUT,
    ErrorCode.MISSING_FIELDS: ErrorKind.INPUT,
    ErrorCode.DUPLICATE_IN_FLIGHT: ErrorKind.INPUT,
    ErrorCode.SESSION_INACTIVE: ErrorKind.INPUT,
    ErrorCode.NOT_FOUND: ErrorKind.LOOKUP,
    ErrorCode.ORDER_NOT_FOUND: ErrorKind.LOOKUP,
    ErrorCode.COURIER_NOT_FOUND: ErrorKind.LOOKUP,
    ErrorCode.NO_COURIER: ErrorKind.CONFLICT,
    ErrorCode.ALREADY_DISPATCHED: ErrorKind.CONFLICT,
    ErrorCode.ALREADY_RECEIVED: ErrorKind.CONFLICT,
    ErrorCode.ORDER_CANCELLED: ErrorKind.CONFLICT,
    ErrorCode.NETWORK_DNS_ERROR: ErrorKind.TRANSIENT,
    ErrorCode.NETWORK_ERROR: ErrorKind.TRANSIENT,
    ErrorCode.NETWORK_TIMEOUT: ErrorKind.TRANSIENT,
    ErrorCode.TOO_MANY_REDIRECTS: ErrorKind.TRANSIENT,
    ErrorCode.BOOKING_API_ERROR: ErrorKind.TRANSIENT,
    ErrorCode.CONFIGURATION_REQUIRED: ErrorKind.CONFIGURATION,
    ErrorCode.INVALID_ORDER_TYPE: ErrorKind.CONFIGURATION,
    ErrorCode.AUTH_HEADER_DROPPED: ErrorKind.CONFIGURATION,
    ErrorCode.BOOKING_MISSING_TRACKING_ID: ErrorKind.TECHNICAL,
    ErrorCode.BOOKING_NO_LABEL: ErrorKind.TECHNICAL,
    ErrorCode.LABEL_TIMEOUT: ErrorKind.TECHNICAL,
    ErrorCode.DB_ERROR: ErrorKind.TECHNICAL,
    ErrorCode.UNKNOWN_ERROR: ErrorKind.TECHNICAL,
}


class EntryType(StrEnum):
    TRACKING_ID = "tracking_id"
    ORDER_NUMBER = "order_number"


class MatchType(StrEnum):
    """定位命中的规则（按优先级）。"""

    TRACKING_ID = "tracking_id"
    ORDER_NUMBER = "order_number"
    PREFIXED = "prefixed"
    PARTIAL = "partial"
    ALTERNATE_ID = "alternate_id"


class DispatchStatus(StrEnum):
    DISPATCHED = "dispatched"


class ReturnStatus(StrEnum):
    IN_TRANSIT = "in_transit"
    CLAIMED = "claimed"
    RECEIVED = "received"


class AttemptStatus(StrEnum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class QueueStatus(StrEnum):
    PENDING = "pending"
    RETRYING = "retrying"
    FAILED = "failed"


class SyncStatus(StrEnum):
    PENDING = "pending"
    FAILED = "failed"
    DONE = "done"


class ScanKind(StrEnum):
    DISPATCH = "dispatch"
    RETURN = "return"
