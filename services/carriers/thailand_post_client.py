"""
Thailand Post client.

Auth: Authorization: Token <api token>
"""

from typing import Dict, List, Optional

from errors import CarrierAPIError
from models import (
    Address,
    AddressValidation,
    CarrierShipment,
    RateQuote,
    ShipmentRequest,
    TrackingEvent,
    TrackingInfo,
)
from .base import CarrierClient, address_payload, logger

SERVICE_CODES = {"ems": "EMS", "registered": "REGISTERED", "parcel": "PARCEL", "express": "EXPRESS"}


class ThailandPostClient(CarrierClient):
    provider = "thailand-post"
    display_name = "Thailand Post"
    production_url = "https://trackapi.thailandpost.co.th/post/api/v1"
    sandbox_url = "https://sandbox-trackapi.thailandpost.co.th/post/api/v1"

    def auth_headers(self, body: Optional[str] = None) -> Dict[str, str]:
        return {"Authorization": f"Token {self.api_key}"}

    @staticmethod
    def map_service_type(service_type: Optional[str]) -> str:
        return SERVICE_CODES.get(service_type or "", "REGISTERED")

    def get_rate_quote(self, origin: str, destination: str, weight: float,
                       dimensions: Optional[dict] = None) -> List[RateQuote]:
        dimensions = dimensions or {}
        data = self._request("POST", "/calculate/fee", {
            "origin_postcode": origin,
            "destination_postcode": destination,
            "weight": weight,
            "width": dimensions.get("width"),
            "height": dimensions.get("height"),
            "length": dimensions.get("length"),
        })
        return [
            RateQuote(
                provider=self.provider,
                service_type=service.get("service_code"),
                service_name=service.get("service_name"),
                price=float(service.get("fee", 0)),
                estimated_days=service.get("delivery_days") or 3,
            )
            for service in data.get("services") or []
        ]

    def create_shipment(self, request: ShipmentRequest) -> CarrierShipment:
        parcel = request.parcel
        data = self._request("POST", "/booking", {
            "sender": address_payload(request.sender_address, "postcode", with_country=False),
            "recipient": address_payload(request.recipient_address, "postcode", with_country=False),
            "parcel": {
                "weight": parcel.weight,
                "width": parcel.width,
                "height": parcel.height,
                "length": parcel.length,
                "cod_amount": parcel.cod_amount,
                "insured_value": parcel.insurance_value,
                "detail": parcel.description or "General Goods",
            },
            "service_type": self.map_service_type(request.service_type),
            "reference_no": request.reference_number,
        })
        return CarrierShipment(
            tracking_number=data["barcode"],
            status=data.get("status") or "created",
            estimated_delivery_date=data.get("estimated_delivery"),
            label_url=data.get("label_url"),
            metadata={"barcode": data["barcode"]},
        )

    def _tracking(self, item: dict) -> TrackingInfo:
        return TrackingInfo(
            provider=self.provider,
            tracking_number=item.get("barcode", ""),
            status=item.get("status", ""),
            status_description=item.get("status_description", ""),
            status_date=item.get("status_date", ""),
            estimated_delivery_date=item.get("estimated_delivery_date"),
            actual_delivery_date=item.get("delivery_date"),
            recipient_name=item.get("receiver_name"),
            tracking_history=[
                TrackingEvent(
                    date=event.get("status_date", ""),
                    time=event.get("status_time", ""),
                    status=event.get("status", ""),
                    location=event.get("location", ""),
                    description=event.get("status_description", ""),
                )
                for event in item.get("track_items") or []
            ],
        )

    def track_shipment(self, barcode: str) -> TrackingInfo:
        data = self._request("POST", "/track", {"status": "all", "language": "EN", "barcode": barcode})
        items = (data.get("response") or {}).get("items") or []
        if not items:
            raise CarrierAPIError(self.display_name, "Tracking information not found")
        return self._tracking(items[0])

    def track_multiple_shipments(self, barcodes: List[str]) -> List[TrackingInfo]:
        data = self._request("POST", "/track", {
            "status": "all", "language": "EN", "barcode": ",".join(barcodes),
        })
        items = (data.get("response") or {}).get("items") or []
        return [self._tracking(item) for item in items]

    def cancel_shipment(self, barcode: str, reason: Optional[str] = None) -> bool:
        data = self._request("POST", "/cancel", {
            "barcode": barcode,
            "cancel_reason": reason or "Customer request",
        })
        return data.get("status") == "success"

    def get_shipping_label(self, barcode: str) -> str:
        data = self._request("GET", f"/label/{barcode}")
        return data.get("label_url") or ""

    def verify_postal_code(self, postal_code: str) -> dict:
        try:
            data = self._request("POST", "/postcode/verify", {"postcode": postal_code})
        except CarrierAPIError as e:
            logger.warning(f"Thailand Post postcode verification failed: {e.message}")
            return {"valid": False}
        return {
            "valid": bool(data.get("valid", False)),
            "province": data.get("province"),
            "district": data.get("district"),
            "sub_district": data.get("sub_district"),
        }

    def validate_address(self, address: Address) -> AddressValidation:
        result = self.verify_postal_code(address.postal_code)
        if not result["valid"]:
            return AddressValidation(valid=False, errors=["Unknown postal code"])
        suggestions = []
        if result.get("province") and result["province"] != address.province:
            suggestions.append(f"Province for {address.postal_code} is {result['province']}")
        if result.get("district") and result["district"] != address.district:
            suggestions.append(f"District for {address.postal_code} is {result['district']}")
        return AddressValidation(valid=True, suggestions=suggestions)
