"""
Async HTTP client the kiosk uses to talk to the attendance server.
"""
import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

import httpx

from config import API_BASE_URL, API_TIMEOUT
from errors import ConflictError, NotFoundError, TransientNetworkError

logger = logging.getLogger(__name__)


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)


class AttendanceApiClient:
    """
    Thin wrapper around the server's endpoints.

    Status codes are translated into the shared error taxonomy: 404 becomes
    ``NotFoundError``, 409 becomes ``ConflictError``, transport failures and 5xx
    become ``TransientNetworkError``. Nothing is retried here.
    """

    def __init__(self, base_url: str = API_BASE_URL, timeout: float = API_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, url: str, conflict_statuses=(409,), **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise TransientNetworkError(f"Could not reach the server: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(_detail(response))
        if response.status_code in conflict_statuses:
            raise ConflictError(_detail(response))
        if response.status_code >= 500:
            logger.warning(f"{method} {url} returned {response.status_code}")
            raise TransientNetworkError(_detail(response))
        response.raise_for_status()
        return response

    # Companies and people

    async def list_companies(self) -> List[Dict]:
        response = await self._request("GET", "/companies")
        return response.json()

    async def create_company(self, name: str) -> Dict:
        response = await self._request("POST", "/companies", conflict_statuses=(400, 409), data={"name": name})
        return response.json()

    async def roster(self, company_id: int) -> Tuple[List[str], int]:
        response = await self._request("GET", "/roster", params={"companyId": company_id})
        body = response.json()
        return body["labels"], body["totalUsers"]

    async def enrollment_photo(self, label: str, company_id: int) -> bytes:
        response = await self._request("GET", "/enrollment-photo", params={"label": label, "companyId": company_id})
        return response.content

    async def person_id(self, label: str, company_id: int) -> int:
        response = await self._request("GET", "/person-id", params={"label": label, "companyId": company_id})
        return response.json()["id"]

    async def enroll(
        self,
        name: str,
        national_id: str,
        title: str,
        company_id: int,
        photo: bytes,
        filename: str = "photo.jpg",
        content_type: str = "image/jpeg",
    ) -> Dict:
        response = await self._request(
            "POST",
            "/enroll",
            conflict_statuses=(400, 409),
            data={"name": name, "nationalId": national_id, "title": title, "companyId": str(company_id)},
            files={"photo": (filename, photo, content_type)},
        )
        return response.json()

    # Attendance

    async def entry_exists(self, person_id: int, company_id: int, day: Optional[date] = None) -> bool:
        return await self._exists("/attendance/entry-exists", person_id, company_id, day)

    async def exit_exists(self, person_id: int, company_id: int, day: Optional[date] = None) -> bool:
        return await self._exists("/attendance/exit-exists", person_id, company_id, day)

    async def _exists(self, url: str, person_id: int, company_id: int, day: Optional[date]) -> bool:
        params = {"personId": person_id, "companyId": company_id}
        if day is not None:
            params["day"] = day.isoformat()
        response = await self._request("GET", url, params=params)
        return bool(response.json()["exists"])

    async def register_entry(
        self,
        person_id: int,
        company_id: int,
        timestamp: datetime,
        location: Optional[str] = None,
        auth_result: Optional[str] = None,
    ) -> Dict:
        payload = {"personId": person_id, "companyId": company_id, "timestamp": timestamp.isoformat()}
        if location is not None:
            payload["location"] = location
        if auth_result is not None:
            payload["authResult"] = auth_result
        response = await self._request("POST", "/attendance/entry", json=payload)
        return response.json()

    async def register_exit(self, person_id: int, company_id: int, timestamp: datetime) -> Dict:
        payload = {"personId": person_id, "companyId": company_id, "timestamp": timestamp.isoformat()}
        response = await self._request("POST", "/attendance/exit", json=payload)
        return response.json()
