"""Remote options source client.

Choice questions may take their options from an external endpoint. The
engine only ever calls it through test_endpoint(), which never raises: an
unreachable or malformed endpoint degrades to "no dynamic options available"
and is reported as a failed EndpointTestResult.

Endpoint tests are the one place the engine waits on the network, so
submit_test() runs them on a dedicated thread pool; a slow endpoint occupies
one of those workers and nothing else.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse
import logging
import time

import requests

from formbuilder import payloads
from formbuilder.config import get_settings
from formbuilder.errors import InvalidConfiguration, RemoteEndpointError
from formbuilder.models import PicklistOption

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EndpointTestResult:
    """Outcome of calling an options endpoint.

    Attributes:
        success: Whether usable options came back
        options: Options parsed from the response (empty on failure)
        response_time_ms: Round-trip time, when a response was received
        status_code: HTTP status, when a response was received
        error: Failure description (None on success)
    """
    success: bool
    options: Tuple[PicklistOption, ...] = ()
    response_time_ms: Optional[int] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        if not self.success:
            result: Dict[str, Any] = {"success": False, "error": self.error}
            if self.status_code is not None:
                result["statusCode"] = self.status_code
            return result
        return {
            "success": True,
            "data": [{"label": o.label, "value": o.value} for o in self.options],
            "responseTimeMs": self.response_time_ms,
            "statusCode": self.status_code,
        }


def _check_url(url: str) -> None:
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidConfiguration(f"Options endpoint {url!r} is not an http(s) URL")


class RemoteOptionsClient:
    """Calls remote options endpoints with requests.

    Attributes:
        timeout: Per-request timeout in seconds
        session: requests session used for every call

    Examples:
        >>> client = RemoteOptionsClient(timeout=2.0)
        >>> client.test_endpoint("not a url").success
        False
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        max_workers: Optional[int] = None,
    ):
        settings = get_settings()
        self.session = session or requests.Session()
        self.timeout = timeout if timeout is not None else settings.REMOTE_TIMEOUT_SECONDS
        self._max_workers = max_workers or settings.REMOTE_MAX_WORKERS
        self._executor: Optional[ThreadPoolExecutor] = None

    def fetch_options(self, url: str) -> Tuple[Tuple[PicklistOption, ...], int, int]:
        """Call the endpoint and parse its options.

        Returns:
            (options, status_code, response_time_ms)

        Raises:
            InvalidConfiguration: If url is not an http(s) URL
            RemoteEndpointError: If the endpoint is unreachable, answers with
                an error status, or returns a malformed payload
        """
        _check_url(url)
        started = time.monotonic()
        try:
            response = self.session.get(url, timeout=self.timeout, headers={"Accept": "application/json"})
        except requests.RequestException as exc:
            raise RemoteEndpointError(f"Failed to connect to options endpoint: {exc}") from exc
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if response.status_code >= 400:
            raise RemoteEndpointError(
                f"Options endpoint answered with HTTP {response.status_code}",
                details={"statusCode": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteEndpointError("Options endpoint did not return JSON") from exc

        problems = payloads.payload_errors(payloads.ENDPOINT_OPTIONS_SCHEMA, body)
        if problems:
            raise RemoteEndpointError(
                "Options endpoint returned a malformed option list",
                details={"errors": problems, "statusCode": response.status_code},
            )

        items = body["data"] if isinstance(body, dict) else body
        options = tuple(
            PicklistOption(
                label=item["label"],
                value=item["value"],
                id=item.get("id"),
                order=index + 1,
            )
            for index, item in enumerate(items)
        )
        return options, response.status_code, elapsed_ms

    def test_endpoint(self, url: str) -> EndpointTestResult:
        """Call the endpoint and report the outcome; never raises."""
        try:
            options, status_code, elapsed_ms = self.fetch_options(url)
        except (InvalidConfiguration, RemoteEndpointError) as exc:
            logger.warning("options endpoint test failed url=%s error=%s", url, exc.message)
            return EndpointTestResult(
                success=False,
                error=exc.message,
                status_code=exc.details.get("statusCode"),
            )

        logger.info(
            "options endpoint test ok url=%s status=%d options=%d elapsed_ms=%d",
            url,
            status_code,
            len(options),
            elapsed_ms,
        )
        return EndpointTestResult(
            success=True,
            options=options,
            response_time_ms=elapsed_ms,
            status_code=status_code,
        )

    def submit_test(self, url: str) -> "Future[EndpointTestResult]":
        """Run test_endpoint on the client's own worker pool."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix="formbuilder-options",
            )
        return self._executor.submit(self.test_endpoint, url)

    def close(self) -> None:
        """Shut down the worker pool and the HTTP session."""
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        self.session.close()


__all__ = [
    "EndpointTestResult",
    "RemoteOptionsClient",
]
