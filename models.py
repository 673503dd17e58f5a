"""
Data models for the OmniSales commerce services.
"""

from enum import Enum
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════
# CHATBOT
# ═══════════════════════════════════════════

class Intent(Enum):
    # Orders & Delivery
    ORDER_LOOKUP           = "order_lookup"
    SHIPPING_TRACKING      = "shipping_tracking"

    # ──── After-sales ────
    RETURN_REQUEST         = "return_request"
    REFUND_REQUEST         = "refund_request"

    # Discovery
    PRODUCT_RECOMMENDATION = "product_recommendation"
    FAQ                    = "faq"

    # ──── Hand-off to an agent ────
    ESCALATE_TO_HUMAN      = "escalate_to_human"
    ACCOUNT_MANAGEMENT     = "account_management"
    COMPLAINT              = "complaint"

    GENERAL_INQUIRY        = "general_inquiry"


class Confidence(Enum):
    HIGH   = "high"
    MEDIUM = "medium"
    LOW    = "low"


class EscalationReason(Enum):
    COMPLEX_ISSUE  = "complex_issue"
    USER_REQUEST   = "user_request"
    LOW_CONFIDENCE = "low_confidence"
    SENSITIVE_DATA = "sensitive_data"


@dataclass
class IntentDetectionResult:
    intent: Intent
    confidence: Confidence
    score: float
    entities: Dict[str, Any] = field(default_factory=dict)
    should_escalate: bool = False
    escalation_reason: Optional[EscalationReason] = None

    def to_dict(self) -> dict:
        return {
            "intent": self.intent.value,
            "confidence": self.confidence.value,
            "score": round(self.score, 2),
            "entities": self.entities,
            "should_escalate": self.should_escalate,
            "escalation_reason": self.escalation_reason.value if self.escalation_reason else None,
        }


@dataclass
class IntentActionResult:
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    should_escalate: bool = False
    escalation_reason: Optional[EscalationReason] = None

    @property
    def message(self) -> str:
        return self.data.get("message") or self.error or ""


@dataclass
class ChatRequest:
    message: str
    conversation_id: Optional[str] = None
    customer_id: Optional[str] = None
    # customer_info, order_history, previous_intents
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatResponse:
    conversation_id: str
    message_id: str
    response: str
    intent: Intent
    intent_confidence: Confidence
    entities: Dict[str, Any] = field(default_factory=dict)
    suggestions: List[str] = field(default_factory=list)
    escalated: bool = False
    escalation_reason: Optional[EscalationReason] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
            "response": self.response,
            "intent": self.intent.value,
            "intent_confidence": self.intent_confidence.value,
            "entities": self.entities,
            "suggestions": self.suggestions,
            "escalated": self.escalated,
            "escalation_reason": self.escalation_reason.value if self.escalation_reason else None,
            "metadata": self.metadata,
        }


@dataclass
class SecurityCheckResult:
    allowed: bool
    sanitized_message: str
    warnings: List[str] = field(default_factory=list)
    rate_limit_info: Optional[Dict[str, Any]] = None
    rate_limited: bool = False


# ═══════════════════════════════════════════
# SHIPPING
# ═══════════════════════════════════════════

class ShippingProvider(Enum):
    KERRY         = "kerry"
    FLASH         = "flash"
    THAILAND_POST = "thailand-post"


@dataclass
class Address:
    name: str
    phone: str
    address: str
    district: str
    province: str
    postal_code: str
    country: str = "TH"

    @classmethod
    def from_dict(cls, data: dict) -> "Address":
        return cls(
            name=data.get("name", ""),
            phone=data.get("phone", ""),
            address=data.get("address", ""),
            district=data.get("district", ""),
            province=data.get("province", ""),
            postal_code=str(data.get("postal_code", "")),
            country=data.get("country") or "TH",
        )


@dataclass
class Parcel:
    weight: float
    width: Optional[float] = None
    height: Optional[float] = None
    length: Optional[float] = None
    cod_amount: Optional[float] = None
    insurance_value: Optional[float] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Parcel":
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__ if k in data})


@dataclass
class ShipmentRequest:
    provider: str
    sender_address: Address
    recipient_address: Address
    parcel: Parcel
    order_id: Optional[str] = None
    service_type: str = "standard"
    reference_number: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ShipmentRequest":
        return cls(
            provider=data.get("provider", ""),
            sender_address=Address.from_dict(data.get("sender_address") or {}),
            recipient_address=Address.from_dict(data.get("recipient_address") or {}),
            parcel=Parcel.from_dict(data.get("parcel") or {"weight": 0}),
            order_id=data.get("order_id"),
            service_type=data.get("service_type") or "standard",
            reference_number=data.get("reference_number"),
        )


@dataclass
class RateQuote:
    provider: str
    service_type: str
    service_name: str
    price: float
    estimated_days: int
    currency: str = "THB"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TrackingEvent:
    date: str
    time: str
    status: str
    location: str
    description: str


@dataclass
class TrackingInfo:
    provider: str
    tracking_number: str
    status: str
    status_description: str
    status_date: str
    estimated_delivery_date: Optional[str] = None
    actual_delivery_date: Optional[str] = None
    recipient_name: Optional[str] = None
    tracking_history: List[TrackingEvent] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CarrierShipment:
    """What a carrier returns after booking a parcel."""
    tracking_number: str
    status: str
    estimated_delivery_date: Optional[str] = None
    label_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class UnifiedShipment:
    provider: str
    tracking_number: str
    status: str
    order_id: Optional[str] = None
    estimated_delivery_date: Optional[str] = None
    label_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "UnifiedShipment":
        return cls(
            id=row.get("id"),
            provider=row.get("provider"),
            tracking_number=row.get("tracking_number"),
            order_id=row.get("order_id"),
            status=row.get("status"),
            estimated_delivery_date=row.get("estimated_delivery_date"),
            label_url=row.get("label_url"),
            metadata=row.get("metadata") or {},
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AddressValidation:
    valid: bool
    suggestions: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
