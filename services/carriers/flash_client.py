"""
Flash Express Thailand client.

Auth: API-KEY header plus SIGNATURE = hex HMAC-SHA256 of the exact JSON
body, keyed by the API key. Every body carries the merchant id (mchId);
a response with code != 1 is an error even on HTTP 200.
"""

import hashlib
import hmac
import time
from typing import Dict, List, Optional

from app_config import CARRIER_TIMEOUT_SECONDS
from errors import CarrierAPIError
from models import (
    Address,
    AddressValidation,
    CarrierShipment,
    RateQuote,
    ShipmentRequest,
    TrackingInfo,
)
from .base import CarrierClient, tracking_events

EXPRESS_CATEGORIES = {"express": 1, "standard": 2, "economy": 3}


def sign_payload(body: str, api_key: str) -> str:
    return hmac.new(api_key.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


class FlashExpressClient(CarrierClient):
    provider = "flash"
    display_name = "Flash"
    production_url = "https://api.flashexpress.com/open/v1"
    sandbox_url = "https://sandbox-api.flashexpress.com/open/v1"

    def __init__(self, api_key: str, merchant_id: str, environment: str = "production",
                 api_url: Optional[str] = None, timeout: int = CARRIER_TIMEOUT_SECONDS):
        super().__init__(api_key, environment, api_url, timeout)
        self.merchant_id = merchant_id

    def auth_headers(self, body: Optional[str] = None) -> Dict[str, str]:
        return {
            "API-KEY": self.api_key,
            "SIGNATURE": sign_payload(body or "", self.api_key),
        }

    def _call(self, path: str, payload: dict) -> dict:
        data = self._request("POST", path, {"mchId": self.merchant_id, **payload})
        if data.get("code") != 1:
            raise CarrierAPIError(self.display_name, data.get("message") or "Unknown error")
        return data.get("data") or {}

    @staticmethod
    def map_service_type(service_type: Optional[str]) -> int:
        return EXPRESS_CATEGORIES.get(service_type or "", EXPRESS_CATEGORIES["standard"])

    def get_rate_quote(self, origin: str, destination: str, weight: float,
                       dimensions: Optional[dict] = None) -> List[RateQuote]:
        data = self._request("POST", "/rates", {
            "mchId": self.merchant_id,
            "srcPostalCode": origin,
            "dstPostalCode": destination,
            "weight": weight,
            "dimensions": dimensions,
        })
        if data.get("code") != 1:
            raise CarrierAPIError(self.display_name, data.get("message") or "Unknown error")
        return [
            RateQuote(
                provider=self.provider,
                service_type=rate.get("serviceCode"),
                service_name=rate.get("serviceName"),
                price=float(rate.get("price", 0)),
                estimated_days=rate.get("estimatedDays") or 1,
            )
            for rate in data.get("data") or []
        ]

    def create_shipment(self, request: ShipmentRequest) -> CarrierShipment:
        sender, recipient, parcel = request.sender_address, request.recipient_address, request.parcel
        data = self._call("/orders", {
            "outTradeNo": request.reference_number or f"FLASH-{int(time.time() * 1000)}",
            "srcName": sender.name,
            "srcPhone": sender.phone,
            "srcProvinceName": sender.province,
            "srcCityName": sender.district,
            "srcDistrictName": sender.district,
            "srcPostalCode": sender.postal_code,
            "srcDetailAddress": sender.address,
            "dstName": recipient.name,
            "dstPhone": recipient.phone,
            "dstProvinceName": recipient.province,
            "dstCityName": recipient.district,
            "dstDistrictName": recipient.district,
            "dstPostalCode": recipient.postal_code,
            "dstDetailAddress": recipient.address,
            "weight": parcel.weight,
            "width": parcel.width,
            "height": parcel.height,
            "length": parcel.length,
            "codAmount": parcel.cod_amount,
            "insuredValue": parcel.insurance_value,
            "itemName": parcel.description or "Goods",
            "expressCategory": self.map_service_type(request.service_type),
        })
        return CarrierShipment(
            tracking_number=data["pno"],
            status=data.get("state") or "created",
            estimated_delivery_date=data.get("estimatedDeliveryDate"),
            label_url=data.get("expressImage"),
            metadata={"pno": data["pno"], "sort_code": data.get("sortCode")},
        )

    def track_shipment(self, pno: str) -> TrackingInfo:
        data = self._call("/tracking", {"pno": pno})
        return TrackingInfo(
            provider=self.provider,
            tracking_number=data.get("pno", pno),
            status=data.get("state", ""),
            status_description=data.get("stateText", ""),
            status_date=data.get("stateDate", ""),
            estimated_delivery_date=data.get("estimatedDeliveryDate"),
            actual_delivery_date=data.get("signedDate"),
            recipient_name=data.get("signedName"),
            tracking_history=tracking_events(data.get("routes"), date_key="scanDate", time_key="scanTime"),
        )

    def cancel_shipment(self, pno: str, reason: Optional[str] = None) -> bool:
        data = self._request("POST", "/orders/cancel", {
            "mchId": self.merchant_id,
            "pno": pno,
            "cancelReason": reason or "Customer request",
        })
        return data.get("code") == 1

    def get_shipping_label(self, pno: str) -> str:
        data = self._call("/labels/pdf", {"pno": pno})
        return data.get("pdfUrl", "")

    def validate_address(self, address: Address) -> AddressValidation:
        """Flash has no validation endpoint; check the fields it requires."""
        errors = []
        if not address.postal_code or not address.postal_code.isdigit() or len(address.postal_code) != 5:
            errors.append("Postal code must be 5 digits")
        for name in ("name", "phone", "province", "district", "address"):
            if not getattr(address, name):
                errors.append(f"{name} is required")
        return AddressValidation(valid=not errors, errors=errors)
