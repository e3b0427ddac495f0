from __future__ import annotations


class ForkError(RuntimeError):
    pass


class ValidationError(ForkError):
    """Bad local input; raised before any network call is made."""


class TransportError(ForkError):
    pass


class NetworkError(TransportError):
    def __init__(self, method: str, url: str, cause: str) -> None:
        super().__init__(
            f"Network request failed for {method} {url}: {cause}. "
            "Please check your network connection and verify the API endpoint is accessible."
        )
        self.method = method
        self.url = url
        self.cause = cause


class ApiError(TransportError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        code: str | None = None,
        detail: str | None = None,
        body_excerpt: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.detail = detail
        self.body_excerpt = body_excerpt


class MalformedResponseError(TransportError):
    pass


class TerminalFailureError(ForkError):
    def __init__(self, service_id: str, status: str) -> None:
        super().__init__(f"Service {service_id} entered terminal state: {status}")
        self.service_id = service_id
        self.status = status


class PollTimeoutError(ForkError):
    def __init__(self, service_id: str, timeout_seconds: float, elapsed_seconds: float) -> None:
        super().__init__(
            f"Timeout: Service {service_id} did not become ready within {timeout_seconds:g} seconds"
        )
        self.service_id = service_id
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds
