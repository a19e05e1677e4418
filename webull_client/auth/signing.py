"""Request signing helpers for the Webull REST API."""

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional


def generate_timestamp() -> str:
    """Current time in milliseconds since the epoch, as a string."""
    return str(int(time.time() * 1000))


def canonical_body(body: Any) -> str:
    """Serialize a request body the same way it is sent on the wire."""
    if body is None:
        return ""
    return json.dumps(body, separators=(",", ":"), sort_keys=True)


def generate_signature(secret: str, message: str) -> str:
    """
    Generate a base64 HMAC-SHA256 signature.

    Args:
        secret: API secret used as the HMAC key
        message: Message to sign

    Returns:
        Base64-encoded signature
    """
    digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def encode_password(password: str) -> str:
    """Encode a password for the login endpoint."""
    return base64.b64encode(password.encode()).decode()


def signed_headers(
    api_key: Optional[str],
    api_secret: Optional[str],
    device_id: str,
    body: Any = None,
) -> Dict[str, str]:
    """
    Build the signing headers attached to every REST request.

    The signature covers the timestamp followed by the canonical JSON body.
    It is omitted when no API secret is configured.

    Args:
        api_key: Application API key
        api_secret: Application secret
        device_id: Device identifier
        body: JSON request body (None for bodiless requests)

    Returns:
        Header dictionary
    """
    timestamp = generate_timestamp()
    headers = {"did": device_id, "timestamp": timestamp}

    if api_key:
        headers["api-key"] = api_key

    if api_secret:
        headers["signature"] = generate_signature(
            api_secret, f"{timestamp}{canonical_body(body)}"
        )

    return headers
