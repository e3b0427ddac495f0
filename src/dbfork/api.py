from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any

import httpx

from .app_logging import register_secret
from .config import ApiConfig
from .errors import ApiError, MalformedResponseError, NetworkError, ValidationError
from .models import ForkRequest, Service
from .utils import truncate


@dataclass(frozen=True, slots=True)
class ApiCredentials:
    public_key: str
    secret_key: str

    @classmethod
    def from_api_key(cls, api_key: str) -> ApiCredentials:
        public_key, separator, secret_key = api_key.strip().partition(":")
        if not separator or not public_key or not secret_key:
            raise ValidationError("api_key must be in the form publicKey:secretKey")
        return cls(public_key=public_key, secret_key=secret_key)

    @property
    def api_key(self) -> str:
        return f"{self.public_key}:{self.secret_key}"

    def authorization_header(self) -> str:
        encoded = base64.b64encode(self.api_key.encode("utf-8")).decode("ascii")
        return f"Basic {encoded}"


class ApiClient:
    def __init__(
        self,
        config: ApiConfig,
        credentials: ApiCredentials,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self.credentials = credentials
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client()
        self._authorization = credentials.authorization_header()
        register_secret(credentials.secret_key)
        register_secret(credentials.api_key)
        register_secret(self._authorization.split(" ", 1)[1])

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> ApiClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    def _require_ok(self, response: httpx.Response, method: str, url: str) -> None:
        if response.is_success:
            return
        message = (
            f"API request failed: {method} {url} returned "
            f"{response.status_code} {response.reason_phrase}"
        )
        text = response.text
        if not text:
            raise ApiError(message, status_code=response.status_code)
        try:
            payload = json.loads(text)
        except ValueError:
            excerpt = truncate(text)
            raise ApiError(
                f"{message}\nResponse: {excerpt}",
                status_code=response.status_code,
                body_excerpt=excerpt,
            ) from None
        if isinstance(payload, dict) and payload.get("message"):
            code = str(payload["code"]) if payload.get("code") else None
            detail = str(payload["message"])
            raise ApiError(
                f"API Error ({code or response.status_code}): {detail}",
                status_code=response.status_code,
                code=code,
                detail=detail,
                body_excerpt=truncate(text),
            )
        raise ApiError(message, status_code=response.status_code, body_excerpt=truncate(text))

    def request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        url = self._url(path)
        headers = {
            "Authorization": self._authorization,
            "Content-Type": "application/json",
        }
        content = json.dumps(body) if body is not None else None
        try:
            response = self._http.request(
                method,
                url,
                headers=headers,
                content=content,
                timeout=self.config.request_timeout_seconds,
            )
        except httpx.RequestError as exc:
            raise NetworkError(method, url, str(exc) or exc.__class__.__name__) from exc

        self._require_ok(response, method, url)

        # 202/204 responses commonly carry no body.
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"API response for {method} {url} is not valid JSON: {truncate(response.text)}"
            ) from exc
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"API response for {method} {url} is not a JSON object")
        return payload

    def _service(self, payload: dict[str, Any], context: str) -> Service:
        try:
            return Service.from_api(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedResponseError(f"{context} returned an unexpected service payload: {exc}") from exc

    def fork_service(self, project_id: str, service_id: str, request: ForkRequest) -> Service:
        path = f"/projects/{project_id}/services/{service_id}/forkService"
        payload = self.request("POST", path, request.to_payload())
        return self._service(payload, f"fork of {service_id}")

    def get_service(self, project_id: str, service_id: str) -> Service:
        payload = self.request("GET", f"/projects/{project_id}/services/{service_id}")
        return self._service(payload, f"lookup of {service_id}")

    def delete_service(self, project_id: str, service_id: str) -> None:
        self.request("DELETE", f"/projects/{project_id}/services/{service_id}")
