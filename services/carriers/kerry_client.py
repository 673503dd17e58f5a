"""
Kerry Express Thailand client.

Auth: Authorization: Bearer <api key>
"""

import base64
from typing import Dict, List, Optional

from errors import CarrierAPIError
from models import (
    Address,
    AddressValidation,
    CarrierShipment,
    RateQuote,
    ShipmentRequest,
    TrackingInfo,
)
from .base import CarrierClient, address_payload, tracking_events, logger


class KerryExpressClient(CarrierClient):
    provider = "kerry"
    display_name = "Kerry"
    production_url = "https://api.kerryexpress.co.th/v1"
    sandbox_url = "https://sandbox-api.kerryexpress.co.th/v1"

    def auth_headers(self, body: Optional[str] = None) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def get_rate_quote(self, origin: str, destination: str, weight: float,
                       dimensions: Optional[dict] = None) -> List[RateQuote]:
        data = self._request("POST", "/rates", {
            "origin_postal_code": origin,
            "destination_postal_code": destination,
            "weight": weight,
            "dimensions": dimensions,
        })
        return [
            RateQuote(
                provider=self.provider,
                service_type=rate.get("service_code"),
                service_name=rate.get("service_name"),
                price=float(rate.get("total_charge", 0)),
                estimated_days=rate.get("estimated_delivery_days") or 1,
            )
            for rate in data.get("rates") or []
        ]

    def create_shipment(self, request: ShipmentRequest) -> CarrierShipment:
        parcel = request.parcel
        data = self._request("POST", "/shipments", {
            "sender": address_payload(request.sender_address),
            "recipient": address_payload(request.recipient_address),
            "parcel": {
                "weight": parcel.weight,
                "width": parcel.width,
                "height": parcel.height,
                "length": parcel.length,
                "cod_amount": parcel.cod_amount,
                "insurance_value": parcel.insurance_value,
                "description": parcel.description,
            },
            "service_type": request.service_type or "standard",
            "reference_number": request.reference_number,
        })
        return CarrierShipment(
            tracking_number=data["tracking_number"],
            status=data.get("status") or "created",
            estimated_delivery_date=data.get("estimated_delivery_date"),
            label_url=data.get("label_url"),
            metadata={"consignment_number": data.get("consignment_number")},
        )

    def track_shipment(self, tracking_number: str) -> TrackingInfo:
        data = self._request("GET", f"/tracking/{tracking_number}")
        return TrackingInfo(
            provider=self.provider,
            tracking_number=data.get("tracking_number", tracking_number),
            status=data.get("status_code", ""),
            status_description=data.get("status_description", ""),
            status_date=data.get("status_date", ""),
            estimated_delivery_date=data.get("estimated_delivery_date"),
            actual_delivery_date=data.get("actual_delivery_date"),
            recipient_name=data.get("recipient_name"),
            tracking_history=tracking_events(data.get("tracking_history")),
        )

    def cancel_shipment(self, tracking_number: str, reason: Optional[str] = None) -> bool:
        data = self._request("POST", f"/shipments/{tracking_number}/cancel",
                             {"reason": reason or "Customer request"})
        return bool(data.get("success", False))

    def get_shipping_label(self, tracking_number: str) -> str:
        """Label PDF as a base64 data URL."""
        response = self._send("GET", f"/labels/{tracking_number}", accept="application/pdf")
        encoded = base64.b64encode(response.content).decode("ascii")
        return f"data:application/pdf;base64,{encoded}"

    def validate_address(self, address: Address) -> AddressValidation:
        try:
            data = self._request("POST", "/address/validate", {
                "address": address.address,
                "district": address.district,
                "province": address.province,
                "postal_code": address.postal_code,
            })
        except CarrierAPIError as e:
            logger.warning(f"Kerry address validation failed: {e.message}")
            return AddressValidation(valid=False, errors=[e.message])
        return AddressValidation(
            valid=bool(data.get("valid", False)),
            suggestions=[str(s) for s in data.get("suggestions") or []],
        )
