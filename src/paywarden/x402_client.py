"""
x402 fetch-and-pay client.

Requests a URL; when the server answers 402 Payment Required, runs the
authorizer over the offered requirements and, if it signs, repeats the
request with the ``X-PAYMENT`` header. Settlement is the server's business:
an ``X-PAYMENT-RESPONSE`` header is decoded when present but never verified.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import httpx

from .models import X_PAYMENT_HEADER, X_PAYMENT_RESPONSE_HEADER, AuthorizeOptions, PaymentIntent, SelectionHints
from .payment import Authorized, PaymentAuthorizer, PaymentOutcome

logger = logging.getLogger(__name__)

PAYMENT_REQUIRED = 402


@dataclass
class FetchResult:
    status_code: int
    body: bytes = field(default=b"", repr=False)
    outcome: Optional[PaymentOutcome] = None
    settlement: Optional[dict[str, Any]] = None

    @property
    def paid(self) -> bool:
        return isinstance(self.outcome, Authorized) and self.status_code < 400

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def to_dict(self) -> dict[str, Any]:
        return {
            "status_code": self.status_code,
            "outcome": self.outcome.to_dict() if self.outcome is not None else None,
            "settlement": self.settlement,
        }


def decode_payment_response(value: Optional[str]) -> Optional[dict[str, Any]]:
    if not value:
        return None
    try:
        decoded = json.loads(base64.b64decode(value.encode("ascii"), validate=True))
    except (binascii.Error, UnicodeError, json.JSONDecodeError):
        logger.warning("Ignoring undecodable %s header", X_PAYMENT_RESPONSE_HEADER)
        return None
    return decoded if isinstance(decoded, dict) else None


class X402Client:
    """HTTP client that pays x402 challenges through a PaymentAuthorizer."""

    def __init__(
        self,
        authorizer: PaymentAuthorizer,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.authorizer = authorizer
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._http = httpx.Client(timeout=timeout, transport=transport)

    def fetch(
        self,
        url: str,
        why: str,
        caller: str = "paywarden",
        method: str = "GET",
        selection: Optional[SelectionHints] = None,
        options: Optional[AuthorizeOptions] = None,
        trace_id: Optional[str] = None,
        **kwargs: Any,
    ) -> FetchResult:
        headers = dict(kwargs.pop("headers", None) or {})
        response = self._send(method, url, headers, **kwargs)
        if response.status_code != PAYMENT_REQUIRED:
            return FetchResult(status_code=response.status_code, body=response.content)

        try:
            challenge = response.json()
        except ValueError:
            challenge = {}
        if not isinstance(challenge, Mapping):
            challenge = {}

        intent = PaymentIntent(
            why=why,
            http_method=method.upper(),
            http_url=url,
            caller=caller,
            trace_id=trace_id,
        )
        outcome = self.authorizer.authorize(challenge, intent, selection=selection, options=options)
        if not isinstance(outcome, Authorized):
            logger.info("Not paying %s: %s", url, outcome.status)
            return FetchResult(status_code=response.status_code, body=response.content, outcome=outcome)

        # Replays reuse the same signed header; the nonce makes duplicates harmless.
        paid_headers = {**headers, X_PAYMENT_HEADER: outcome.header_value}
        paid = self._send(method, url, paid_headers, **kwargs)
        if paid.status_code >= 400:
            logger.warning("Payment rejected by %s (%d)", url, paid.status_code)
        return FetchResult(
            status_code=paid.status_code,
            body=paid.content,
            outcome=outcome,
            settlement=decode_payment_response(paid.headers.get(X_PAYMENT_RESPONSE_HEADER)),
        )

    def _send(self, method: str, url: str, headers: dict[str, str], **kwargs: Any) -> httpx.Response:
        attempt = 0
        while True:
            try:
                return self._http.request(method, url, headers=headers, **kwargs)
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt >= self.max_retries:
                    raise
                attempt += 1
                logger.info(
                    "Transport error (attempt %d/%d): %s",
                    attempt,
                    self.max_retries + 1,
                    e,
                )
                time.sleep(self.retry_delay * attempt)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "X402Client":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
