import asyncio
import base64
import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

import httpx

from hookscheduler.core.config import get_settings
from hookscheduler.schemas.scheduler import AuthType, DispatchOutcome, RetryPolicy, WebhookRequest

logger = logging.getLogger(__name__)

BODY_METHODS = {"POST", "PUT", "PATCH"}

# Connection refused, DNS failure, resets and timeouts are worth another attempt
RETRYABLE_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    asyncio.TimeoutError,
)


class WebhookDispatcher:
    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.webhook_max_retries,
            delay_seconds=settings.webhook_retry_delay_seconds,
        )
        self.user_agent = user_agent or settings.webhook_user_agent
        self._transport = transport

    # --- Request construction ---

    def parse_body(self, request: WebhookRequest) -> Any:
        try:
            return json.loads(request.json_body or "{}")
        except (TypeError, ValueError):
            logger.warning("Invalid JSON body for schedule %s, using empty object", request.name)
            return {}

    def build_headers(self, request: WebhookRequest) -> httpx.Headers:
        headers = httpx.Headers(
            {
                "Content-Type": "application/json",
                "User-Agent": self.user_agent,
            }
        )

        if request.auth_type == AuthType.BEARER:
            if request.auth_token:
                headers["Authorization"] = f"Bearer {request.auth_token}"
        elif request.auth_type == AuthType.API_KEY:
            if request.auth_api_key_name and request.auth_api_key_value:
                headers[request.auth_api_key_name] = request.auth_api_key_value
        elif request.auth_type == AuthType.BASIC:
            if request.auth_username and request.auth_password:
                raw = f"{request.auth_username}:{request.auth_password}".encode("utf-8")
                headers["Authorization"] = f"Basic {base64.b64encode(raw).decode('ascii')}"

        for key, value in self._parse_custom_headers(request).items():
            if key and value:
                headers[str(key)] = str(value)

        # Custom headers may not replace the identifying agent string
        headers["User-Agent"] = self.user_agent
        return headers

    def _parse_custom_headers(self, request: WebhookRequest) -> Dict[str, Any]:
        if not request.custom_headers:
            return {}
        try:
            parsed = json.loads(request.custom_headers)
        except (TypeError, ValueError):
            logger.warning("Invalid custom headers JSON for schedule %s", request.name)
            return {}
        if not isinstance(parsed, dict):
            logger.warning("Custom headers for schedule %s are not a JSON object", request.name)
            return {}
        return parsed

    def build_request(self, request: WebhookRequest) -> Dict[str, Any]:
        method = request.http_method.upper()
        kwargs: Dict[str, Any] = {
            "method": method,
            "url": request.webhook_url,
            "headers": self.build_headers(request),
        }
        if method in BODY_METHODS:
            kwargs["content"] = json.dumps(self.parse_body(request))
        return kwargs

    # --- Delivery ---

    async def dispatch(self, request: WebhookRequest) -> DispatchOutcome:
        """Call the webhook, retrying according to the retry policy."""
        started = time.monotonic()
        max_attempts = self.retry_policy.max_retries + 1
        attempt = 0
        outcome: Optional[DispatchOutcome] = None

        while attempt < max_attempts:
            attempt += 1
            logger.info(
                "Calling webhook for schedule %s (attempt %s/%s)",
                request.name,
                attempt,
                max_attempts,
            )
            outcome, retryable = await self._attempt(request)
            if outcome.success or not retryable or attempt >= max_attempts:
                break
            logger.warning(
                "Webhook for schedule %s failed (%s), retrying in %.1fs",
                request.name,
                outcome.error or outcome.status_code,
                self.retry_policy.delay_seconds,
            )
            await asyncio.sleep(self.retry_policy.delay_seconds)

        outcome.attempts = attempt
        outcome.duration_ms = int((time.monotonic() - started) * 1000)
        return outcome

    async def _attempt(self, request: WebhookRequest) -> Tuple[DispatchOutcome, bool]:
        timeout = request.timeout_seconds
        try:
            kwargs = self.build_request(request)
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await asyncio.wait_for(client.request(**kwargs), timeout=timeout)
        except RETRYABLE_ERRORS as exc:
            message = _describe_error(exc, timeout)
            logger.error("Transport error calling webhook for schedule %s: %s", request.name, message)
            return DispatchOutcome(success=False, error=message), True
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            logger.error("Error calling webhook for schedule %s: %s", request.name, exc)
            return DispatchOutcome(success=False, error=str(exc) or exc.__class__.__name__), False

        status_code = response.status_code
        success = 200 <= status_code < 400
        outcome = DispatchOutcome(
            success=success,
            status_code=status_code,
            body=response.text,
            error=None if success else f"Webhook responded with status {status_code}",
        )
        if success:
            logger.info("Webhook for schedule %s answered %s", request.name, status_code)
        else:
            logger.warning("Webhook for schedule %s answered %s", request.name, status_code)
        return outcome, status_code >= 500


def _describe_error(exc: BaseException, timeout: float) -> str:
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return f"Request timed out after {timeout:g}s"
    return str(exc) or exc.__class__.__name__
