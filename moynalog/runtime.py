"""
Moy Nalog Runtime: configuration, error taxonomy and the core HTTP client.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Dict, Optional

import requests
from requests import RequestException, Response

if TYPE_CHECKING:
    from moynalog.services.auth import TokenManager

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://lknpd.nalog.ru/api/v1"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class NalogConfig:
    """Configuration for the Moy Nalog client."""

    base_url: str = DEFAULT_BASE_URL
    timezone: str = "Europe/Moscow"
    auto_refresh_token: bool = True
    save_token: bool = False
    save_token_path: str = "session-token.json"
    token_secret: Optional[str] = None   # enables AES-256-GCM for the token file

    # Credential exchange parameters / out-of-band session
    inn: Optional[str] = None
    password: Optional[str] = None
    phone: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    device_id: Optional[str] = None

    refresh_threshold: timedelta = field(default_factory=lambda: timedelta(minutes=5))
    app_version: str = "1.0.0"
    user_agent: str = DEFAULT_USER_AGENT
    timeout: Optional[float] = None      # seconds; None means transport default
    debug: bool = False


class NalogApiError(Exception):
    """
    Raised whenever the Moy Nalog API rejects a request, the transport fails,
    or a credential exchange cannot be attempted.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        response: Any = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.response = response
        self.status_code = status_code

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(status_code={self.status_code!r}, "
            f"code={self.code!r}, message={self.message!r})"
        )


class NalogConfigurationError(NalogApiError):
    """No usable credentials are configured, or a required INN is missing."""


class PhoneAuthRequiredError(NalogConfigurationError):
    """Only a phone number is configured; the SMS flow must be driven explicitly."""


class NalogRuntime:
    """
    Low-level HTTP client for the Moy Nalog API.

    Responsibilities:
    - Asks the token manager for a valid access token before authenticated calls.
    - Injects the JSON content-type/accept pair and the bearer credential.
    - Decodes responses leniently: JSON when possible, raw text otherwise,
      ``None`` for an empty body.
    - Raises NalogApiError on any non-2xx status or transport failure.

    There is no retry policy: every failure surfaces to the caller at once.
    """

    def __init__(self, config: NalogConfig) -> None:
        self._config = config
        self._session = requests.Session()
        self._session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json, text/plain, */*",
        })
        self._token_manager: Optional[TokenManager] = None

    @property
    def config(self) -> NalogConfig:
        return self._config

    @property
    def debug(self) -> bool:
        return self._config.debug

    def bind(self, token_manager: TokenManager) -> None:
        """Attach the token manager consulted before authenticated requests."""
        self._token_manager = token_manager

    def request(
        self,
        method: str,
        endpoint: str,
        body: Any = None,
        require_auth: bool = True,
        *,
        base_url: Optional[str] = None,
    ) -> Any:
        """
        Execute a single HTTP request.

        Args:
            method:       HTTP verb (e.g. "POST").
            endpoint:     Path relative to the base URL (e.g. "income").
            body:         JSON-serialisable request payload, or None.
            require_auth: Whether the call needs a bearer access token.
            base_url:     Override the configured base URL for this call.

        Returns:
            Decoded JSON, the raw text when the body is not JSON, or None
            for an empty body.

        Raises:
            NalogApiError: On non-2xx responses, transport errors, or a
                failed implicit credential exchange.
        """
        if require_auth and self._config.auto_refresh_token and self._token_manager:
            self._token_manager.ensure_valid_token()

        headers: Dict[str, str] = {}
        if require_auth and self._token_manager:
            access_token = self._token_manager.state.access_token
            if access_token:
                headers["Authorization"] = f"Bearer {access_token}"

        url = f"{base_url or self._config.base_url}/{endpoint}"
        serialised_body: Optional[str] = json.dumps(body) if body is not None else None
        self._log_request(method, url, body)

        try:
            response = self._session.request(
                method,
                url,
                data=serialised_body,
                headers=headers,
                timeout=self._config.timeout,
            )
        except RequestException as exc:
            logger.debug("[Nalog] Network error on %s %s: %s", method, url, exc)
            raise NalogApiError(f"Network error: {exc}") from exc

        return self._handle_response(response)

    def _handle_response(self, response: Response) -> Any:
        """Return the decoded body on 2xx; raise NalogApiError otherwise."""
        data = _decode_body(response.text)

        if response.ok:
            if self.debug:
                logger.debug("[Nalog] Response %d: %r", response.status_code, _redact(data))
            return data

        error_body = data if isinstance(data, dict) else {}
        message = error_body.get("message") or f"HTTP Error: {response.status_code}"
        code = error_body.get("code")

        if self.debug:
            logger.error("[Nalog] Error: HTTP %d: %s", response.status_code, message)

        raise NalogApiError(message, code=code, response=data, status_code=response.status_code)

    def _log_request(self, method: str, url: str, body: Any) -> None:
        if not self.debug:
            return
        logger.debug("[Nalog] HTTP Request: %s %s", method, url)
        if body is not None:
            logger.debug("[Nalog] Body: %s", json.dumps(_redact(body), ensure_ascii=False, indent=2))


def _decode_body(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


_SECRET_FIELDS = frozenset({"password", "token", "refreshToken", "code", "challengeToken"})


def _redact(body: Any) -> Any:
    if not isinstance(body, dict):
        return body
    return {k: ("***" if k in _SECRET_FIELDS else v) for k, v in body.items()}
