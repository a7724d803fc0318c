"""Hotmart and Green REST API clients"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx

from core.interfaces import IVendorApiClient


logger = logging.getLogger(__name__)


class VendorAPIError(RuntimeError):
    """Vendor REST API error"""

    def __init__(
        self,
        message: str,
        status_code: int,
        payload: Optional[Dict[str, Any]] = None,
        *,
        code: Optional[str] = None,
        vendor: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}
        self.vendor = vendor
        self.code = code or self._extract_error_code()

    def _extract_error_code(self) -> Optional[str]:
        """Pull an error code out of the response payload"""

        error = self.payload.get("error") if isinstance(self.payload, dict) else None
        if isinstance(error, dict):
            return error.get("code") or error.get("type")
        if isinstance(error, str) and error.strip():
            return error
        return None


class VendorApiClient(IVendorApiClient):
    """Async REST client with retry and error-message mapping shared by both vendors"""

    vendor_name = "vendor"
    tag = "VENDOR"

    ERROR_CODE_MESSAGES: Dict[str, str] = {}

    STATUS_MESSAGES: Dict[int, str] = {
        400: "invalid request parameters",
        401: "authentication failed",
        403: "access denied",
        404: "resource not found",
        409: "resource state conflict",
        429: "rate limited, try again later",
        500: "vendor server error",
        503: "vendor service temporarily unavailable",
    }

    RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        *,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(0, int(max_retries))
        self.backoff_factor = max(0.0, float(backoff_factor))

    async def _auth_headers(self) -> Dict[str, str]:
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            **(await self._auth_headers()),
        }

        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, headers=headers, json=json, params=params)
            except httpx.RequestError as exc:
                logger.warning(
                    "[%s] API request network error: %s %s attempt=%s error=%s",
                    self.tag,
                    method,
                    path,
                    attempt + 1,
                    exc,
                )

                if attempt == self.max_retries:
                    raise VendorAPIError(
                        f"{self.vendor_name} API network error",
                        status_code=0,
                        payload={"error": {"message": str(exc)}},
                        code="network_error",
                        vendor=self.vendor_name,
                    ) from exc

                await self._sleep_backoff(attempt)
                continue

            if response.status_code >= 400:
                payload = self._safe_json(response)
                message, code = self._resolve_error_message(payload, response.status_code)

                error = VendorAPIError(message, response.status_code, payload, code=code, vendor=self.vendor_name)

                if self._is_retryable_status(response.status_code) and attempt < self.max_retries:
                    logger.warning(
                        "[%s] API request retry: %s %s status=%s code=%s attempt=%s",
                        self.tag,
                        method,
                        path,
                        response.status_code,
                        error.code,
                        attempt + 1,
                    )
                    await self._sleep_backoff(attempt)
                    continue

                logger.error(
                    "[%s] API request failed: %s %s status=%s code=%s payload=%s",
                    self.tag,
                    method,
                    path,
                    response.status_code,
                    error.code,
                    payload,
                )
                raise error

            try:
                return response.json()
            except Exception as exc:  # pragma: no cover
                logger.error("[%s] failed to parse API response: %s", self.tag, exc)
                raise VendorAPIError(
                    f"{self.vendor_name} API response could not be parsed",
                    response.status_code,
                    payload={"error": {"message": str(exc)}},
                    code="parse_error",
                    vendor=self.vendor_name,
                ) from exc

        raise VendorAPIError(f"{self.vendor_name} API request kept failing", status_code=0, vendor=self.vendor_name)

    async def _sleep_backoff(self, attempt: int) -> None:
        """Exponential backoff before the next attempt"""

        delay = self.backoff_factor * (2**attempt)
        if delay > 0:
            await asyncio.sleep(delay)

    def _is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.RETRYABLE_STATUS

    def _resolve_error_message(self, payload: Dict[str, Any], status_code: int) -> tuple[str, Optional[str]]:
        """Pick the message and code from a vendor error response"""

        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            code = error.get("code") or error.get("type")
            if code and code in self.ERROR_CODE_MESSAGES:
                return self.ERROR_CODE_MESSAGES[code], code

            message = error.get("message")
            if isinstance(message, str) and message.strip():
                return message, code
        elif isinstance(error, str) and error in self.ERROR_CODE_MESSAGES:
            return self.ERROR_CODE_MESSAGES[error], error

        message = payload.get("message") if isinstance(payload, dict) else None
        if isinstance(message, str) and message.strip():
            return message, None

        status_message = self.STATUS_MESSAGES.get(status_code)
        if status_message:
            return f"{self.vendor_name} API: {status_message}", None

        return f"{self.vendor_name} API request failed", None

    @staticmethod
    def _safe_json(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
            return payload if isinstance(payload, dict) else {"data": payload}
        except Exception:
            return {"error": {"message": response.text}}


class GreenApiClient(VendorApiClient):
    """Green gateway REST API"""

    vendor_name = "green"
    tag = "GREEN"

    ERROR_CODE_MESSAGES: Dict[str, str] = {
        "payment_not_found": "Green payment was not found",
        "invalid_api_key": "Green API key is invalid",
        "rate_limited": "Green API rate limit reached, try again later",
    }

    def __init__(self, api_key: str, base_url: str = "https://api.green.com.br/v1", **kwargs: Any) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("GREEN_API_KEY is not configured")
        super().__init__(base_url, **kwargs)
        self.api_key = api_key

    async def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def get_payment(self, payment_id: str) -> Dict[str, Any]:
        """Payment details as Green sees them"""

        return await self._request("GET", f"/payments/{payment_id}")

    async def fetch_payment_status(self, vendor_transaction_id: str) -> Dict[str, Any]:
        payment = await self.get_payment(vendor_transaction_id)
        return {
            "status": payment.get("status"),
            "amount": payment.get("amount"),
            "currency": payment.get("currency"),
            "updated_at": payment.get("updated_at"),
        }


class HotmartApiClient(VendorApiClient):
    """Hotmart developer API with OAuth client-credentials tokens"""

    vendor_name = "hotmart"
    tag = "HOTMART"

    ERROR_CODE_MESSAGES: Dict[str, str] = {
        "invalid_client": "Hotmart client credentials were rejected",
        "invalid_token": "Hotmart access token is invalid or expired",
        "transaction_not_found": "Hotmart transaction was not found",
    }

    # refresh slightly before the vendor-declared expiry
    TOKEN_EXPIRY_MARGIN = 60

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        basic_token: Optional[str] = None,
        base_url: str = "https://developers.hotmart.com",
        auth_url: str = "https://api-sec-vlc.hotmart.com/security/oauth/token",
        **kwargs: Any,
    ) -> None:
        if not client_id or not client_secret:
            raise ValueError("HOTMART_CLIENT_ID / HOTMART_CLIENT_SECRET are not configured")
        super().__init__(base_url, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.basic_token = basic_token
        self.auth_url = auth_url
        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

    async def _auth_headers(self) -> Dict[str, str]:
        token = await self.get_access_token()
        return {"Authorization": f"Bearer {token}"}

    async def get_access_token(self) -> str:
        """Cached OAuth token, fetched again once it is about to expire"""

        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            headers = {"Accept": "application/json"}
            if self.basic_token:
                headers["Authorization"] = f"Basic {self.basic_token}"
            params = {
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            }

            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.auth_url, headers=headers, params=params)
            except httpx.RequestError as exc:
                logger.error("[HOTMART] token request network error: %s", exc)
                raise VendorAPIError(
                    "hotmart token request failed",
                    status_code=0,
                    payload={"error": {"message": str(exc)}},
                    code="network_error",
                    vendor=self.vendor_name,
                ) from exc

            payload = self._safe_json(response)
            if response.status_code >= 400 or not payload.get("access_token"):
                message, code = self._resolve_error_message(payload, response.status_code)
                logger.error("[HOTMART] token request failed: status=%s code=%s", response.status_code, code)
                raise VendorAPIError(message, response.status_code, payload, code=code, vendor=self.vendor_name)

            try:
                expires_in = int(payload.get("expires_in") or 0)
            except (TypeError, ValueError):
                expires_in = 0

            self._access_token = payload["access_token"]
            self._token_expires_at = time.monotonic() + max(0, expires_in - self.TOKEN_EXPIRY_MARGIN)
            logger.info("[HOTMART] access token refreshed (expires_in=%s)", expires_in)
            return self._access_token

    async def get_transaction(self, transaction_id: str) -> Dict[str, Any]:
        """Transaction details as Hotmart sees them"""

        return await self._request("GET", f"/payments/api/v1/transactions/{transaction_id}")

    async def fetch_payment_status(self, vendor_transaction_id: str) -> Dict[str, Any]:
        transaction = await self.get_transaction(vendor_transaction_id)
        purchase = transaction.get("purchase") if isinstance(transaction.get("purchase"), dict) else {}
        return {
            "status": transaction.get("status") or purchase.get("status"),
            "amount": transaction.get("amount") or purchase.get("price"),
            "currency": transaction.get("currency") or purchase.get("currency"),
            "updated_at": transaction.get("updated_at"),
        }
