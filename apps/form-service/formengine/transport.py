"""Transports the auto-fill engine uses to fetch field data."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from formengine.errors import AutoFillError
from formengine.models import AutoFillResponse

log = logging.getLogger(__name__)

MOCK_PREFIX = "/api/"
MOCK_DELAY_MS = 250

ADDRESS_BY_ZIP: Dict[str, Dict[str, Any]] = {
    "1000": {"city": "Sofia", "state": "Sofia City", "region": "Sofia City", "country": "Bulgaria"},
    "4000": {"city": "Plovdiv", "state": "Plovdiv", "region": "Plovdiv", "country": "Bulgaria"},
    "5000": {
        "city": "Veliko Tarnovo",
        "state": "Veliko Tarnovo",
        "region": "Veliko Tarnovo",
        "country": "Bulgaria",
    },
    "6000": {"city": "Stara Zagora", "state": "Stara Zagora", "region": "Stara Zagora", "country": "Bulgaria"},
    "7000": {"city": "Ruse", "state": "Ruse", "region": "Ruse", "country": "Bulgaria"},
    "8000": {"city": "Burgas", "state": "Burgas", "region": "Burgas", "country": "Bulgaria"},
    "9000": {"city": "Varna", "state": "Varna", "region": "Varna", "country": "Bulgaria"},
}

COMPANY_BY_VAT: Dict[str, Dict[str, Any]] = {
    "BG123456789": {
        "companyName": "Tech Solutions Ltd",
        "address": "123 Main St",
        "companyAddress": "123 Main St",
        "city": "Sofia",
        "companyCity": "Sofia",
    },
    "DE123456789": {
        "companyName": "Berlin Data GmbH",
        "address": "Alexanderplatz 8",
        "companyAddress": "Alexanderplatz 8",
        "city": "Berlin",
        "companyCity": "Berlin",
    },
}


class AutoFillTransport(ABC):
    @abstractmethod
    async def request(self, endpoint: str, params: Dict[str, Any]) -> Optional[AutoFillResponse]:
        """Fetch auto-fill data for ``params``; ``None`` means the endpoint is not handled."""


def _normalize(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _first_param(params: Dict[str, Any], *names: str) -> Any:
    for name in names:
        if params.get(name) is not None:
            return params[name]
    return None


def lookup_address(params: Dict[str, Any]) -> AutoFillResponse:
    zip_code = _normalize(
        _first_param(params, "zipCode", "postalCode", "personalPostalCode", "businessPostalCode")
    )
    if not zip_code:
        return AutoFillResponse(success=False, error="Postal code is required for address auto-fill")

    data = ADDRESS_BY_ZIP.get(zip_code)
    if data is None:
        return AutoFillResponse(success=False, error=f"No Bulgarian city found for postal code {zip_code}")
    return AutoFillResponse(success=True, data=dict(data))


def lookup_company(params: Dict[str, Any]) -> AutoFillResponse:
    vat_number = _normalize(
        _first_param(params, "vatNumber", "companyVatNumber", "businessVatNumber")
    ).upper()
    if not vat_number:
        return AutoFillResponse(success=False, error="VAT number is required for company auto-fill")

    data = COMPANY_BY_VAT.get(vat_number)
    if data is None:
        return AutoFillResponse(success=False, error=f"No company found for VAT number {vat_number}")
    return AutoFillResponse(success=True, data=dict(data))


MOCK_ENDPOINTS = {
    "/api/address": lookup_address,
    "/api/company": lookup_company,
}


class MockAutoFillTransport(AutoFillTransport):
    """Serves the demo lookup tables for endpoints under ``/api/``."""

    def __init__(self, delay_ms: int = MOCK_DELAY_MS):
        self._delay_ms = delay_ms

    async def request(self, endpoint: str, params: Dict[str, Any]) -> Optional[AutoFillResponse]:
        if not endpoint.startswith(MOCK_PREFIX):
            return None

        if self._delay_ms:
            await asyncio.sleep(self._delay_ms / 1000)

        handler = MOCK_ENDPOINTS.get(endpoint)
        if handler is None:
            return AutoFillResponse(success=False, error=f'Mock endpoint "{endpoint}" is not implemented')
        return handler(params)


class HttpAutoFillTransport(AutoFillTransport):
    """POSTs dependency values as JSON and returns the JSON body as data."""

    def __init__(self, base_url: str = "", timeout: float = 10.0, session: Optional[requests.Session] = None):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")) or not self._base_url:
            return endpoint
        return f"{self._base_url}/{endpoint.lstrip('/')}"

    def _post(self, endpoint: str, params: Dict[str, Any]) -> AutoFillResponse:
        url = self._url(endpoint)
        try:
            response = self._session.post(url, json=params, timeout=self._timeout)
        except requests.RequestException as exc:
            log.warning("Auto-fill request to %s failed: %s", url, exc)
            raise AutoFillError(str(exc), endpoint=endpoint) from exc

        if response.status_code >= 400:
            return AutoFillResponse(success=False, error=f"API error: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise AutoFillError(f"Invalid JSON from {url}", endpoint=endpoint) from exc

        if not isinstance(payload, dict):
            raise AutoFillError(f"Unexpected response shape from {url}", endpoint=endpoint)
        if isinstance(payload.get("success"), bool):
            # already a {success, data|error} envelope
            return AutoFillResponse.model_validate(payload)
        return AutoFillResponse(success=True, data=payload)

    async def request(self, endpoint: str, params: Dict[str, Any]) -> Optional[AutoFillResponse]:
        return await asyncio.to_thread(self._post, endpoint, params)


class AutoFillClient(AutoFillTransport):
    """Mock endpoints first, real HTTP otherwise; failures become responses."""

    def __init__(
        self,
        mock: Optional[MockAutoFillTransport] = None,
        http: Optional[HttpAutoFillTransport] = None,
    ):
        self._mock = mock or MockAutoFillTransport()
        self._http = http or HttpAutoFillTransport()

    async def request(self, endpoint: str, params: Dict[str, Any]) -> AutoFillResponse:
        try:
            mock_result = await self._mock.request(endpoint, params)
            if mock_result is not None:
                return mock_result
            result = await self._http.request(endpoint, params)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            return AutoFillResponse(success=False, error=str(exc))
        if result is None:
            return AutoFillResponse(success=False, error=f"No transport handled {endpoint}")
        return result
