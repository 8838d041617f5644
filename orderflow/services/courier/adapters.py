# orderflow/services/courier/adapters.py
"""
快递适配器：

  - MockCourierAdapter：确定性假运单号 + 假面单（联调 / COURIER_BOOKING_MODE=mock）
  - PostExAdapter：token 头认证，必须配置取件地址码；面单异步生成，需要轮询
  - LeopardAdapter：Bearer 认证，面单链接随下单返回
  - GenericJsonAdapter：按 couriers 表里的 endpoint / auth_type 配置调用
"""

from __future__ import annotations

import base64
import logging
import re
from typing import Any, Dict, Optional

import httpx

from orderflow.models.courier import Courier
from orderflow.models.enums import ErrorCode
from orderflow.models.order import Order
from orderflow.services.courier.classify import classify_text
from orderflow.services.courier.http import CourierHttp
from orderflow.services.courier.types import BookingRequest, BookingResponse, CourierError, LabelData

logger = logging.getLogger("orderflow.booking")

_ORDER_PREFIX_RE = re.compile(r"^[A-Z]+-")

POSTEX_BOOKING_URL = "https://api.postex.pk/services/integration/api/order/v3/create-order"
POSTEX_LABEL_URL = "https://api.postex.pk/services/integration/api/order/v1/get-invoice"
LEOPARD_BOOKING_URL = "https://api.leopardscourier.com/api/bookings/store"

_TRACKING_KEYS = ("tracking_number", "trackingNumber", "track_number", "tracking_id", "cn", "consignment_no")
_LABEL_KEYS = ("label_url", "labelUrl", "slip_link", "label")


def courier_reference(order_number: str) -> str:
    """SHOP-321274 → 321274（快递侧用不带前缀的单号）。"""
    return _ORDER_PREFIX_RE.sub("", order_number or "")


def _pick(data: Dict[str, Any], keys: tuple[str, ...]) -> Optional[str]:
    for k in keys:
        v = data.get(k)
        if v not in (None, ""):
            return str(v)
    return None


def _amount(v) -> float:
    return float(v) if v is not None else 0.0


def _ensure_ok(resp: httpx.Response, courier_name: str) -> Dict[str, Any]:
    if resp.is_success:
        try:
            body = resp.json()
        except ValueError:
            raise CourierError(
                ErrorCode.BOOKING_API_ERROR,
                f"{courier_name} returned a non-JSON response",
                response={"status": resp.status_code, "body": resp.text[:500]},
            )
        return body if isinstance(body, dict) else {"data": body}

    text = resp.text
    code = classify_text(text)
    raise CourierError(
        code,
        f"{courier_name} booking failed ({resp.status_code}): {text[:500]}",
        response={"status": resp.status_code, "body": text[:2000]},
    )


class CourierAdapter:
    """所有适配器的公共接口。"""

    supports_label_fetch = False

    def __init__(self, courier: Courier, http: CourierHttp) -> None:
        self.courier = courier
        self.http = http

    async def book(self, order: Order, req: BookingRequest) -> BookingResponse:
        raise NotImplementedError

    async def fetch_label(self, tracking_id: str) -> Optional[LabelData]:
        """面单没生成好返回 None（调用方继续轮询）。"""
        return None


class MockCourierAdapter(CourierAdapter):
    supports_label_fetch = True

    async def book(self, order: Order, req: BookingRequest) -> BookingResponse:
        ref = courier_reference(order.order_number)
        tracking = f"MOCK{self.courier.code.upper()}{ref}"
        label = LabelData(url=f"https://labels.example.invalid/{tracking}.pdf", format="pdf")
        return BookingResponse(tracking_id=tracking, label=label, raw={"mock": True, "reference": ref})

    async def fetch_label(self, tracking_id: str) -> Optional[LabelData]:
        return LabelData(url=f"https://labels.example.invalid/{tracking_id}.pdf", format="pdf")


class PostExAdapter(CourierAdapter):
    supports_label_fetch = True

    def _headers(self) -> Dict[str, str]:
        return {"token": self.courier.api_key or "", "Content-Type": "application/json"}

    async def book(self, order: Order, req: BookingRequest) -> BookingResponse:
        if not self.courier.api_key:
            raise CourierError(ErrorCode.CONFIGURATION_REQUIRED, "PostEx API key not configured")
        if not self.courier.pickup_address_code:
            raise CourierError(
                ErrorCode.CONFIGURATION_REQUIRED,
                "PostEx requires a Pickup Address Code; configure it on the courier",
            )

        if req.items:
            detail = ", ".join(f"{i.name} (x{i.quantity})" for i in req.items)
            count = sum(i.quantity for i in req.items)
        else:
            detail = f"{req.pieces} items"
            count = req.pieces

        body = {
            "customerName": req.delivery_address.name,
            "customerPhone": req.delivery_address.phone,
            "deliveryAddress": req.delivery_address.address,
            "cityName": req.delivery_address.city,
            "pickupCityName": req.pickup_address.city,
            "transactionNotes": req.special_instructions or "",
            "orderRefNumber": courier_reference(order.order_number),
            "invoicePayment": _amount(req.cod_amount),
            "orderType": "Normal",
            "orderDetail": detail,
            "pickupAddressCode": self.courier.pickup_address_code,
            "items": count,
        }
        url = self.courier.booking_endpoint or POSTEX_BOOKING_URL
        resp = await self.http.request("POST", url, headers=self._headers(), json=body)
        data = _ensure_ok(resp, self.courier.name)

        dist = data.get("dist") if isinstance(data.get("dist"), dict) else {}
        tracking = _pick(dist, _TRACKING_KEYS) or _pick(data, _TRACKING_KEYS)
        return BookingResponse(tracking_id=tracking, raw=data)

    async def fetch_label(self, tracking_id: str) -> Optional[LabelData]:
        url = self.courier.label_endpoint or POSTEX_LABEL_URL
        resp = await self.http.request(
            "GET",
            url,
            headers={"token": self.courier.api_key or ""},
            params={"trackingNumbers": tracking_id},
        )
        ctype = resp.headers.get("content-type", "")
        if resp.is_success and "application/pdf" in ctype:
            return LabelData(data=base64.b64encode(resp.content).decode("ascii"), format="pdf")
        logger.debug("postex label not ready for %s (status=%s ctype=%s)", tracking_id, resp.status_code, ctype)
        return None


class LeopardAdapter(CourierAdapter):
    async def book(self, order: Order, req: BookingRequest) -> BookingResponse:
        if not self.courier.api_key:
            raise CourierError(ErrorCode.CONFIGURATION_REQUIRED, "Leopard API key not configured")
        body = {
            "consignee_name": req.delivery_address.name,
            "consignee_phone_number_1": req.delivery_address.phone,
            "consignee_address": req.delivery_address.address,
            "destination_city": req.delivery_address.city,
            "origin_city": req.pickup_address.city,
            "weight": float(req.weight),
            "pieces": req.pieces,
            "amount": _amount(req.cod_amount),
            "service_type_id": 2 if req.cod_amount else 1,
            "special_instructions": req.special_instructions,
            "order_reference": courier_reference(order.order_number),
        }
        headers = {"Authorization": f"Bearer {self.courier.api_key}", "Content-Type": "application/json"}
        url = self.courier.booking_endpoint or LEOPARD_BOOKING_URL
        resp = await self.http.request("POST", url, headers=headers, json=body)
        data = _ensure_ok(resp, self.courier.name)

        label_url = _pick(data, _LABEL_KEYS)
        return BookingResponse(
            tracking_id=_pick(data, _TRACKING_KEYS),
            label=LabelData(url=label_url, format="pdf") if label_url else None,
            raw=data,
        )


class GenericJsonAdapter(CourierAdapter):
    """按配置的 booking_endpoint + auth_type 调用的通用 JSON 接口。"""

    def _headers(self) -> Dict[str, str]:
        cfg = self.courier.auth_config or {}
        key = self.courier.api_key or ""
        headers = {"Content-Type": "application/json"}
        auth_type = self.courier.auth_type
        if auth_type == "bearer_token":
            headers["Authorization"] = f"Bearer {key}"
        elif auth_type == "api_key_header":
            headers[cfg.get("header_name") or "X-API-Key"] = key
        elif auth_type == "basic_auth":
            raw = f"{cfg.get('username') or ''}:{key}".encode("utf-8")
            headers["Authorization"] = "Basic " + base64.b64encode(raw).decode("ascii")
        elif auth_type == "token_header":
            headers["token"] = key
        headers.update(cfg.get("custom_headers") or {})
        return headers

    async def book(self, order: Order, req: BookingRequest) -> BookingResponse:
        if not self.courier.booking_endpoint:
            raise CourierError(
                ErrorCode.CONFIGURATION_REQUIRED,
                f"{self.courier.name} has no booking endpoint configured",
            )
        body = {
            "reference": courier_reference(order.order_number),
            "consignee_name": req.delivery_address.name,
            "consignee_phone": req.delivery_address.phone,
            "consignee_address": req.delivery_address.address,
            "destination_city": req.delivery_address.city,
            "origin_city": req.pickup_address.city,
            "weight": float(req.weight),
            "pieces": req.pieces,
            "cod_amount": _amount(req.cod_amount),
        }
        resp = await self.http.request(
            "POST", self.courier.booking_endpoint, headers=self._headers(), json=body
        )
        data = _ensure_ok(resp, self.courier.name)
        label_url = _pick(data, _LABEL_KEYS)
        return BookingResponse(
            tracking_id=_pick(data, _TRACKING_KEYS),
            label=LabelData(url=label_url, format=self.courier.label_format) if label_url else None,
            raw=data,
        )


_ADAPTERS: Dict[str, type[CourierAdapter]] = {
    "postex": PostExAdapter,
    "leopard": LeopardAdapter,
}


def get_adapter(courier: Courier, http: CourierHttp, *, mock: bool = False) -> CourierAdapter:
    if mock:
        return MockCourierAdapter(courier, http)
    cls = _ADAPTERS.get((courier.code or "").lower(), GenericJsonAdapter)
    return cls(courier, http)
