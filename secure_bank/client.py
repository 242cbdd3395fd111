"""
SecureBank API Client Module

REST client for the SecureBank API. Remembers the session token returned by
signup/signin and sends it as a bearer credential on later calls.
"""

import httpx
import logging
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger("secure_bank.client")


class ApiError(Exception):
    """Non-2xx response from the API"""

    def __init__(self, status_code: int, code: Optional[str], message: str):
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(f"{status_code} {code}: {message}")


class SecureBankClient:
    """REST client for the SecureBank API"""

    def __init__(
        self,
        base_url: str = "http://localhost:5000",
        timeout: float = 10.0,
        token: Optional[str] = None,
        http_client: Optional[httpx.Client] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(base_url=self.base_url, timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> Any:
        response = self._client.request(method, path, json=json, headers=self._headers())
        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        logger.warning(f"{method} {path} returned {response.status_code}")
        raise ApiError(
            response.status_code,
            body.get("code"),
            body.get("error", response.text)
        )

    def _remember_token(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("token"):
            self.token = data["token"]
        return data

    def signup(self, email: str, password: str, full_name: str) -> Dict[str, Any]:
        """Register and keep the returned session token"""
        data = self._request("POST", "/api/auth/signup", json={
            "email": email,
            "password": password,
            "fullName": full_name
        })
        return self._remember_token(data)

    def signin(self, email: str, password: str) -> Dict[str, Any]:
        """Sign in and keep the returned session token"""
        data = self._request("POST", "/api/auth/signin", json={
            "email": email,
            "password": password
        })
        return self._remember_token(data)

    def logout(self) -> None:
        """Forget the session token; tokens are stateless so nothing is sent"""
        self.token = None

    def get_profile(self) -> Dict[str, Any]:
        return self._request("GET", "/api/user/profile")

    def get_accounts(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/accounts")

    def get_transactions(self, account_id: Union[int, str]) -> List[Dict[str, Any]]:
        return self._request("GET", f"/api/transactions/{account_id}")

    def close(self):
        """Close the HTTP client if this instance created it"""
        if self._owns_client:
            self._client.close()
