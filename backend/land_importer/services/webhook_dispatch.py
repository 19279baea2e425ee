"""Deliver signed webhook payloads for import lifecycle events."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)
TIMEOUT_SECONDS = 10


def sign_payload(payload: dict, secret: str) -> str:
    """Generate HMAC signature for webhook payload."""
    payload_str = json.dumps(payload, sort_keys=True)
    signature = hmac.new(
        secret.encode("utf-8"),
        payload_str.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return signature


def dispatch_event(
    url: str,
    payload: dict[str, Any],
    secret: str | None = None,
    *,
    transport: httpx.BaseTransport | None = None,
) -> dict[str, Any]:
    """POST the payload to ``url`` and return delivery metrics.

    Args:
        url: Webhook endpoint
        payload: Event envelope ({"event", "timestamp", "data"})
        secret: Optional shared secret used for the X-Webhook-Signature header
        transport: Optional httpx transport, used by tests

    Returns:
        Dictionary with:
            - status: HTTP status code or error string
            - response_time_ms: Response time in milliseconds
            - success: Boolean indicating if delivery succeeded
            - error: Error message if failed
    """
    start_time = time.time()
    result: dict[str, Any] = {
        "status": None,
        "response_time_ms": None,
        "success": False,
        "error": None,
    }
    event = payload.get("event", "unknown")

    headers = {
        "Content-Type": "application/json",
        "User-Agent": "Land-Registry-Importer/1.0",
    }
    if secret:
        headers["X-Webhook-Signature"] = f"sha256={sign_payload(payload, secret)}"

    try:
        with httpx.Client(timeout=TIMEOUT_SECONDS, follow_redirects=True, transport=transport) as client:
            response = client.post(url, content=json.dumps(payload), headers=headers)

        elapsed_ms = int((time.time() - start_time) * 1000)
        result["response_time_ms"] = elapsed_ms
        result["status"] = response.status_code
        result["success"] = 200 <= response.status_code < 300
        if not result["success"]:
            result["error"] = f"HTTP {response.status_code}: {response.text[:200]}"

        logger.info(f"Webhook {event} delivered to {url}: status={result['status']}, time={elapsed_ms}ms")

    except httpx.TimeoutException as e:
        result["response_time_ms"] = int((time.time() - start_time) * 1000)
        result["status"] = "timeout"
        result["error"] = f"Request timeout after {TIMEOUT_SECONDS}s"
        logger.warning(f"Webhook {event} timeout: {e}")

    except httpx.RequestError as e:
        result["response_time_ms"] = int((time.time() - start_time) * 1000)
        result["status"] = "error"
        result["error"] = f"Request failed: {str(e)}"
        logger.error(f"Webhook {event} request error: {e}", exc_info=True)

    return result
