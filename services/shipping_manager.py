"""
Shipping Manager
=================
One entry point over the Kerry Express, Flash Express and Thailand Post
clients: rate shopping, booking, tracking, cancellation and labels, with
shipments and their tracking history persisted to the backend.

Tables:
  - shipments              (provider, tracking_number, order_id, status, label_url, metadata)
  - shipment_tracking      (shipment_id, status, location, description, timestamp)
  - shipping_rates_cache   (origin/destination postal code, weight, rates, expires_at)
  - order_shipping         (recipient + shipping address of an order)
"""

from datetime import timedelta
from typing import Dict, List, Optional

from app_config import (
    KERRY_API_KEY,
    KERRY_ENVIRONMENT,
    FLASH_API_KEY,
    FLASH_MERCHANT_ID,
    FLASH_ENVIRONMENT,
    THAILAND_POST_API_KEY,
    THAILAND_POST_ENVIRONMENT,
    SHIPPING_RATE_CACHE_HOURS,
    COMPANY_SENDER_ADDRESS,
)
from chat_logger import get_logger
from core.helpers import now_iso, utc_now
from db_client import get_db, rows
from errors import (
    CarrierAPIError,
    DatabaseError,
    ProviderNotConfiguredError,
    UnsupportedProviderError,
)
from models import (
    Address,
    Parcel,
    RateQuote,
    ShipmentRequest,
    ShippingProvider,
    TrackingInfo,
    UnifiedShipment,
)
from services.carriers import (
    CarrierClient,
    FlashExpressClient,
    KerryExpressClient,
    ThailandPostClient,
)

logger = get_logger("omnisales")

PROVIDER_NAMES = {
    ShippingProvider.KERRY.value: "Kerry Express",
    ShippingProvider.FLASH.value: "Flash Express",
    ShippingProvider.THAILAND_POST.value: "Thailand Post",
}

# Shipment status -> order status when a carrier update arrives
ORDER_STATUS_BY_SHIPMENT_STATUS = {
    "created": "processing",
    "picked_up": "shipped",
    "in_transit": "shipped",
    "out_for_delivery": "shipped",
    "delivered": "delivered",
    "cancelled": "cancelled",
    "returned": "return_requested",
}


def clients_from_env() -> Dict[str, CarrierClient]:
    """Carrier clients for every provider with credentials in the environment."""
    clients = {}
    if KERRY_API_KEY:
        clients[ShippingProvider.KERRY.value] = KerryExpressClient(KERRY_API_KEY, KERRY_ENVIRONMENT)
    if FLASH_API_KEY and FLASH_MERCHANT_ID:
        clients[ShippingProvider.FLASH.value] = FlashExpressClient(
            FLASH_API_KEY, FLASH_MERCHANT_ID, FLASH_ENVIRONMENT)
    if THAILAND_POST_API_KEY:
        clients[ShippingProvider.THAILAND_POST.value] = ThailandPostClient(
            THAILAND_POST_API_KEY, THAILAND_POST_ENVIRONMENT)
    return clients


class ShippingManager:

    def __init__(self, clients: Optional[Dict[str, CarrierClient]] = None):
        self.clients = clients_from_env() if clients is None else dict(clients)
        logger.info(f"Shipping manager ready | providers={sorted(self.clients)}")

    def _client(self, provider: str) -> CarrierClient:
        if provider not in PROVIDER_NAMES:
            raise UnsupportedProviderError(f"Unsupported shipping provider: {provider}")
        client = self.clients.get(provider)
        if client is None:
            raise ProviderNotConfiguredError(f"{PROVIDER_NAMES[provider]} client not initialized")
        return client

    # ─────────────────────────────────────────────
    # RATES
    # ─────────────────────────────────────────────

    def get_rates(self, origin: str, destination: str, weight: float,
                  dimensions: Optional[dict] = None) -> List[RateQuote]:
        """
        Quotes from every configured carrier, cheapest first.

        Unexpired cached quotes for the same route and weight are returned
        as-is. A carrier that fails is logged and left out.
        """
        cached = self._cached_rates(origin, destination, weight)
        if cached:
            logger.info(f"Shipping rates cache hit | {origin} -> {destination} | weight={weight}")
            return cached

        rates: List[RateQuote] = []
        for provider, client in self.clients.items():
            try:
                rates.extend(client.get_rate_quote(origin, destination, weight, dimensions))
            except CarrierAPIError as e:
                logger.error(f"Error getting {PROVIDER_NAMES[provider]} rates: {e.message}")

        rates.sort(key=lambda r: r.price)
        if rates:
            self._cache_rates(origin, destination, weight, rates)
        return rates

    def _cached_rates(self, origin: str, destination: str, weight: float) -> List[RateQuote]:
        row = get_db().select_one("shipping_rates_cache", {
            "origin_postal_code": origin,
            "destination_postal_code": destination,
            "weight": weight,
            "expires_at": ("gte", now_iso()),
        })
        if not row or not row.get("rates"):
            return []
        return [RateQuote(**rate) for rate in row["rates"]]

    def _cache_rates(self, origin: str, destination: str, weight: float, rates: List[RateQuote]) -> None:
        expires_at = utc_now() + timedelta(hours=SHIPPING_RATE_CACHE_HOURS)
        result = get_db().insert("shipping_rates_cache", {
            "origin_postal_code": origin,
            "destination_postal_code": destination,
            "weight": weight,
            "rates": [rate.to_dict() for rate in rates],
            "expires_at": expires_at.isoformat(),
        })
        if not result["success"]:
            logger.warning(f"Could not cache shipping rates: {result['error']}")

    # ─────────────────────────────────────────────
    # SHIPMENTS
    # ─────────────────────────────────────────────

    def create_shipment(self, request: ShipmentRequest) -> UnifiedShipment:
        client = self._client(request.provider)
        booked = client.create_shipment(request)

        shipment = UnifiedShipment(
            provider=request.provider,
            tracking_number=booked.tracking_number,
            order_id=request.order_id,
            status=booked.status,
            estimated_delivery_date=booked.estimated_delivery_date,
            label_url=booked.label_url,
            metadata=booked.metadata,
            created_at=now_iso(),
        )
        try:
            saved = self._save_shipment(shipment)
        except DatabaseError as e:
            # The carrier already holds this booking; keep enough to reconcile it
            logger.error(
                f"Carrier booking not recorded | provider={request.provider} | "
                f"tracking={booked.tracking_number} | order={request.order_id} | error={e.details.get('error')}"
            )
            e.details.update({"provider": request.provider, "tracking_number": booked.tracking_number,
                              "order_id": request.order_id})
            raise
        self._add_tracking_entry(saved.id, saved.status, "Origin", "Shipment created")
        logger.info(
            f"Shipment created | provider={saved.provider} | tracking={saved.tracking_number} | "
            f"order={saved.order_id}"
        )
        return saved

    def bulk_create_shipments(self, requests: List[ShipmentRequest]) -> List[UnifiedShipment]:
        shipments = []
        for request in requests:
            try:
                shipments.append(self.create_shipment(request))
            except (CarrierAPIError, DatabaseError, ProviderNotConfiguredError,
                    UnsupportedProviderError) as e:
                logger.error(f"Error creating shipment for order {request.order_id}: {e.message}")
        return shipments

    def track_shipment(self, provider: str, tracking_number: str) -> TrackingInfo:
        tracking = self._client(provider).track_shipment(tracking_number)

        shipment = get_db().select_one("shipments", {"tracking_number": tracking_number, "provider": provider})
        if shipment and tracking.tracking_history:
            latest = tracking.tracking_history[0]
            self._add_tracking_entry(shipment["id"], latest.status, latest.location, latest.description)
        return tracking

    def cancel_shipment(self, provider: str, tracking_number: str, reason: Optional[str] = None) -> bool:
        success = self._client(provider).cancel_shipment(tracking_number, reason)
        if not success:
            logger.warning(f"Cancellation refused | provider={provider} | tracking={tracking_number}")
            return False

        db = get_db()
        key = {"tracking_number": tracking_number, "provider": provider}
        db.update("shipments", {"status": "cancelled", "updated_at": now_iso()}, key)
        shipment = db.select_one("shipments", key)
        if shipment:
            self._add_tracking_entry(shipment["id"], "cancelled", "System", reason or "Shipment cancelled")
        logger.info(f"Shipment cancelled | provider={provider} | tracking={tracking_number}")
        return True

    def get_shipping_label(self, provider: str, tracking_number: str) -> str:
        return self._client(provider).get_shipping_label(tracking_number)

    def get_available_providers(self) -> List[dict]:
        return [
            {"id": provider, "name": name, "enabled": provider in self.clients}
            for provider, name in PROVIDER_NAMES.items()
        ]

    def get_shipment_by_order_id(self, order_id: str) -> Optional[UnifiedShipment]:
        row = get_db().select_one("shipments", {"order_id": order_id}, order="created_at.desc")
        return UnifiedShipment.from_row(row) if row else None

    def get_tracking_entries(self, shipment_id: str) -> List[dict]:
        return rows(get_db().select("shipment_tracking", {"shipment_id": shipment_id}, order="timestamp.desc"))

    def _save_shipment(self, shipment: UnifiedShipment) -> UnifiedShipment:
        result = get_db().insert("shipments", {
            "provider": shipment.provider,
            "tracking_number": shipment.tracking_number,
            "order_id": shipment.order_id,
            "status": shipment.status,
            "estimated_delivery_date": shipment.estimated_delivery_date,
            "label_url": shipment.label_url,
            "metadata": shipment.metadata,
            "created_at": shipment.created_at,
        })
        if not result["success"]:
            logger.error(f"Error saving shipment {shipment.tracking_number}: {result['error']}")
            raise DatabaseError("Failed to save shipment", {"error": result["error"]})
        return UnifiedShipment.from_row(result["data"])

    def _add_tracking_entry(self, shipment_id: str, status: str, location: str, description: str) -> None:
        result = get_db().insert("shipment_tracking", {
            "shipment_id": shipment_id,
            "status": status,
            "location": location,
            "description": description,
            "timestamp": now_iso(),
        })
        if not result["success"]:
            logger.warning(f"Could not record tracking entry for {shipment_id}: {result['error']}")

    # ─────────────────────────────────────────────
    # ORDER INTEGRATION
    # ─────────────────────────────────────────────

    def create_shipment_for_order(self, order_id: str, provider: str,
                                  service_type: Optional[str] = None) -> dict:
        """
        Book a shipment for an order and mark the order shipped.

        Returns {"success", "shipment_id", "tracking_number", "error"}.
        """
        db = get_db()
        order = db.select_one("orders", {"id": order_id})
        if not order:
            return {"success": False, "error": "Order not found"}

        existing = self.get_shipment_by_order_id(order_id)
        if existing:
            return {
                "success": False,
                "error": "Shipment already exists for this order",
                "shipment_id": existing.id,
                "tracking_number": existing.tracking_number,
            }

        shipping = db.select_one("order_shipping", {"order_id": order_id})
        if not shipping:
            return {"success": False, "error": "No shipping information found for order"}

        recipient = Address(
            name=shipping.get("recipient_name") or order.get("customer_name") or "",
            phone=shipping.get("recipient_phone") or order.get("customer_phone") or "",
            address=shipping.get("shipping_address") or "",
            district=shipping.get("district") or "",
            province=shipping.get("province") or "",
            postal_code=str(shipping.get("postal_code") or ""),
        )
        weight, description = self._order_parcel(order_id)
        request = ShipmentRequest(
            provider=provider,
            sender_address=Address.from_dict(COMPANY_SENDER_ADDRESS),
            recipient_address=recipient,
            parcel=Parcel(
                weight=weight,
                description=description,
                cod_amount=order.get("total") if order.get("payment_method") == "cod" else None,
            ),
            order_id=order_id,
            service_type=service_type or "standard",
            reference_number=order.get("order_number"),
        )

        try:
            shipment = self.create_shipment(request)
        except (CarrierAPIError, DatabaseError, ProviderNotConfiguredError,
                UnsupportedProviderError) as e:
            logger.error(f"Error auto-creating shipment for order {order_id}: {e.message}")
            return {"success": False, "error": e.message}

        now = now_iso()
        db.update("order_shipping", {
            "tracking_number": shipment.tracking_number,
            "carrier": provider,
            "shipping_status": "in_transit",
            "shipped_at": now,
        }, {"order_id": order_id})
        db.update("orders", {
            "status": "shipped",
            "tracking_number": shipment.tracking_number,
            "shipping_provider": provider,
            "updated_at": now,
        }, {"id": order_id})

        return {"success": True, "shipment_id": shipment.id, "tracking_number": shipment.tracking_number}

    def _order_parcel(self, order_id: str):
        """Total weight (1 kg when unknown) and item names of an order."""
        items = rows(get_db().select("order_items", {"order_id": order_id}))
        if not items:
            return 1, "Order items"

        product_ids = [item["product_id"] for item in items if item.get("product_id")]
        products = {}
        if product_ids:
            products = {p["id"]: p for p in rows(get_db().select("products", {"id": ("in", product_ids)}))}

        weight = 0.0
        names = []
        for item in items:
            product = products.get(item.get("product_id"), {})
            weight += float(product.get("weight") or 0) * int(item.get("quantity") or 1)
            if product.get("name"):
                names.append(product["name"])
        return (weight or 1), (", ".join(names) or "Order items")

    def update_order_from_shipment_status(self, shipment_id: str, new_status: str) -> bool:
        db = get_db()
        shipment = db.select_one("shipments", {"id": shipment_id})
        if not shipment or not shipment.get("order_id"):
            return False

        order_status = ORDER_STATUS_BY_SHIPMENT_STATUS.get(new_status)
        if not order_status:
            return False

        shipping_values = {"shipping_status": new_status}
        if new_status == "delivered":
            shipping_values["delivered_at"] = now_iso()
        db.update("order_shipping", shipping_values, {"order_id": shipment["order_id"]})
        result = db.update("orders", {"status": order_status, "updated_at": now_iso()},
                           {"id": shipment["order_id"]})
        return result["success"]

    def sync_active_shipments(self) -> dict:
        """Refresh every shipment not yet delivered or cancelled; returns {synced, failed}."""
        db = get_db()
        active = rows(db.select("shipments", {"status": ("not.in", ["delivered", "cancelled"])}))
        synced = failed = 0
        for shipment in active:
            try:
                tracking = self.track_shipment(shipment["provider"], shipment["tracking_number"])
            except (CarrierAPIError, ProviderNotConfiguredError, UnsupportedProviderError) as e:
                logger.error(f"Failed to sync shipment {shipment['id']}: {e.message}")
                failed += 1
                continue

            values = {"status": tracking.status, "updated_at": now_iso()}
            if tracking.actual_delivery_date:
                values["delivered_at"] = tracking.actual_delivery_date
            db.update("shipments", values, {"id": shipment["id"]})
            if tracking.status != shipment.get("status"):
                self.update_order_from_shipment_status(shipment["id"], tracking.status)
            synced += 1

        logger.info(f"Shipment sync done | synced={synced} | failed={failed}")
        return {"synced": synced, "failed": failed}


# ═══════════════════════════════════════════
# SINGLETON
# ═══════════════════════════════════════════

_manager: Optional[ShippingManager] = None


def get_shipping_manager() -> ShippingManager:
    global _manager
    if _manager is None:
        _manager = ShippingManager()
    return _manager


def reset_shipping_manager(clients: Optional[Dict[str, CarrierClient]] = None) -> ShippingManager:
    global _manager
    _manager = ShippingManager(clients)
    return _manager
