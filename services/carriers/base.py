"""
Shared HTTP plumbing for the Thai carrier APIs.
"""

import json
import time
from typing import Any, Dict, List, Optional

import requests

from app_config import CARRIER_TIMEOUT_SECONDS
from chat_logger import get_logger
from errors import CarrierAPIError
from models import Address, TrackingEvent

logger = get_logger("omnisales")


class CarrierClient:
    """Base class: one requests.Session per carrier, JSON in and out."""

    provider = ""
    display_name = ""
    production_url = ""
    sandbox_url = ""

    def __init__(self, api_key: str, environment: str = "production",
                 api_url: Optional[str] = None, timeout: int = CARRIER_TIMEOUT_SECONDS):
        self.api_key = api_key
        self.environment = environment or "production"
        self.api_url = (api_url or (
            self.production_url if self.environment == "production" else self.sandbox_url
        )).rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def auth_headers(self, body: Optional[str] = None) -> Dict[str, str]:
        raise NotImplementedError

    # ─────────────────────────────────────────────
    # INTERNAL: single request
    # ─────────────────────────────────────────────

    def _send(self, method: str, path: str, payload: Optional[dict] = None,
              accept: Optional[str] = None) -> requests.Response:
        """Send a request and return the raw response; HTTP errors raise CarrierAPIError."""
        url = f"{self.api_url}{path}"
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False) if payload is not None else None
        headers = self.auth_headers(body)
        if body is not None:
            headers["Content-Type"] = "application/json"
        if accept:
            headers["Accept"] = accept

        start_time = time.time()
        logger.info(f"{self.display_name} request: {method} {path}")
        try:
            response = self.session.request(
                method=method,
                url=url,
                data=body.encode("utf-8") if body is not None else None,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            response_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f"{self.display_name} error: {method} {path} | error={str(e)} | "
                f"response_time_ms={response_time_ms}",
                exc_info=True,
            )
            raise CarrierAPIError(self.display_name, str(e)) from e

        response_time_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"{self.display_name} response: {method} {path} | status={response.status_code} | "
            f"response_time_ms={response_time_ms}"
        )
        if not response.ok:
            raise CarrierAPIError(self.display_name, _error_message(response), response.status_code)
        return response

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        response = self._send(method, path, payload)
        try:
            return response.json()
        except ValueError as e:
            raise CarrierAPIError(self.display_name, "Invalid JSON response", response.status_code) from e


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason or f"HTTP {response.status_code}"


def address_payload(address: Address, postal_key: str = "postal_code", with_country: bool = True) -> dict:
    payload = {
        "name": address.name,
        "phone": address.phone,
        "address": address.address,
        "district": address.district,
        "province": address.province,
        postal_key: address.postal_code,
    }
    if with_country:
        payload["country"] = address.country or "TH"
    return payload


def tracking_events(items: Optional[List[dict]], date_key: str = "date", time_key: str = "time",
                    description_key: str = "description") -> List[TrackingEvent]:
    return [
        TrackingEvent(
            date=item.get(date_key, ""),
            time=item.get(time_key, ""),
            status=item.get("status", ""),
            location=item.get("location", ""),
            description=item.get(description_key, ""),
        )
        for item in items or []
    ]
