"""
TokenManager: owns the session and decides, before every authenticated call,
whether to reuse the access token, refresh it, or run a credential exchange.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import ValidationError

from moynalog.interfaces.auth import DeviceInfo, TokenResponse
from moynalog.models.schemas import InnPasswordCredentials, PhoneCredentials, SavedTokens
from moynalog.runtime import (
    NalogApiError,
    NalogConfigurationError,
    NalogRuntime,
    PhoneAuthRequiredError,
)
from moynalog.services.storage import CredentialStore
from moynalog.session import AuthStatus, SessionState, classify, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class TokenManager:
    """
    Token lifecycle manager.

    The authentication status is recomputed from the session on every check
    (see :func:`moynalog.session.classify`); there is no background timer.
    Exchanges are never retried, and a failed refresh leaves the session
    exactly as it was.
    """

    def __init__(
        self,
        runtime: NalogRuntime,
        store: CredentialStore,
        device: DeviceInfo,
        *,
        inn: Optional[str] = None,
        password: Optional[str] = None,
        phone: Optional[str] = None,
        refresh_threshold: timedelta = timedelta(minutes=5),
        clock: Clock = utcnow,
    ) -> None:
        self._runtime = runtime
        self._store = store
        self._credentials = (
            _validated(InnPasswordCredentials, inn=inn, password=password) if inn and password else None
        )
        self._phone = _validated(PhoneCredentials, phone=phone) if phone else None
        self._refresh_threshold = refresh_threshold
        self._clock = clock
        self.device = device
        self._state = SessionState()
        runtime.bind(self)

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> AuthStatus:
        return classify(self._state, self._clock(), self._refresh_threshold)

    def set_inn(self, inn: Optional[str]) -> None:
        self._state = self._state.with_inn(inn)

    def set_tokens(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        inn: Optional[str] = None,
        token_expire_in: Optional[datetime] = None,
    ) -> None:
        """
        Install an access token obtained out-of-band.

        The refresh token and INN are only replaced when given. Without
        ``token_expire_in`` the new access token is treated as fresh until
        the API rejects it.
        """
        self._state = SessionState(
            access_token=access_token,
            refresh_token=refresh_token or self._state.refresh_token,
            token_expire_in=token_expire_in,
            inn=inn or self._state.inn,
        )

    def restore(self, record: SavedTokens) -> None:
        """Install a persisted record, dropping an access token that has expired."""
        expire_in = _safe_parse(record.token_expire_in)
        access_token = record.access_token or None
        if expire_in is None or expire_in <= self._clock():
            access_token = None
        self._state = SessionState(
            access_token=access_token,
            refresh_token=record.refresh_token,
            token_expire_in=expire_in,
            inn=record.inn,
        )

    def seed(
        self,
        inn: Optional[str] = None,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ) -> None:
        """Fill the session slots that are still empty with configured values."""
        state = self._state
        self._state = SessionState(
            access_token=state.access_token or access_token,
            refresh_token=state.refresh_token or refresh_token,
            token_expire_in=state.token_expire_in,
            inn=state.inn or inn,
        )

    def clear(self) -> None:
        """Forget every token; future authenticated calls start from scratch."""
        self._state = SessionState(inn=self._state.inn)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ensure_valid_token(self) -> None:
        status = self.status
        if status in (AuthStatus.UNAUTHENTICATED, AuthStatus.REFRESHABLE):
            self.authenticate()
        elif status is AuthStatus.STALE:
            logger.debug("[Nalog] Access token expires soon, refreshing")
            self.refresh()

    def authenticate(self) -> TokenResponse:
        """
        Obtain tokens from whatever credentials are available.

        Precedence: a held refresh token, then INN + password. A phone-only
        setup raises :class:`PhoneAuthRequiredError` since the SMS code has to
        be entered by a human.

        Raises:
            NalogConfigurationError: No usable credentials are configured.
            NalogApiError: The exchange was rejected.
        """
        if self._state.refresh_token:
            return self.refresh()

        if self._credentials:
            return self.auth_by_inn(self._credentials.inn, self._credentials.password)

        if self._phone:
            raise PhoneAuthRequiredError(
                "Phone login needs an SMS code: call request_sms_code() and then auth_by_phone()"
            )

        raise NalogConfigurationError(
            "No credentials configured: provide inn and password, a refresh token, or a phone"
        )

    def refresh(self) -> TokenResponse:
        """Exchange the held refresh token for a new token pair."""
        if not self._state.refresh_token:
            raise NalogApiError("Refresh token is missing")

        raw = self._runtime.request(
            "POST",
            "auth/token",
            {
                "refreshToken": self._state.refresh_token,
                "deviceInfo": self.device.as_dict(),
            },
            require_auth=False,
        )
        response = self._accept(raw)
        logger.info("[Nalog] Access token refreshed")
        return response

    def auth_by_inn(self, inn: str, password: str) -> TokenResponse:
        """Log in with the INN and password of the personal tax account."""
        credentials = _validated(InnPasswordCredentials, inn=inn, password=password)
        raw = self._runtime.request(
            "POST",
            "auth/lkfl",
            {
                "inn": credentials.inn,
                "password": credentials.password,
                "deviceInfo": self.device.as_dict(),
            },
            require_auth=False,
        )
        response = self._accept(raw, inn=credentials.inn)
        logger.info("[Nalog] Authenticated by INN %s", credentials.inn)
        return response

    def request_sms_code(self, phone: str) -> str:
        """
        Start phone login. Returns the challenge token for :meth:`auth_by_phone`.

        The session is not touched.
        """
        normalized = _validated(PhoneCredentials, phone=phone).phone
        data = self._runtime.request(
            "POST",
            "auth/challenge/sms/start",
            {
                "phone": normalized,
                "requireTpToBeActive": True,
                "deviceData": {"sourceType": self.device.source_type.value},
            },
            require_auth=False,
            base_url=_v2_base_url(self._runtime.config.base_url),
        )
        if not isinstance(data, dict) or not data.get("challengeToken"):
            raise NalogApiError("SMS challenge response has no challengeToken", response=data)
        logger.info("[Nalog] SMS code requested")
        return data["challengeToken"]

    def auth_by_phone(self, phone: str, challenge_token: str, code: str) -> TokenResponse:
        """Finish phone login with the SMS ``code``."""
        normalized = _validated(PhoneCredentials, phone=phone).phone
        raw = self._runtime.request(
            "POST",
            "auth/challenge/sms/verify",
            {
                "phone": normalized,
                "code": code,
                "challengeToken": challenge_token,
                "deviceInfo": self.device.as_dict(),
            },
            require_auth=False,
        )
        response = self._accept(raw)
        logger.info("[Nalog] Authenticated by phone")
        return response

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _accept(self, raw, inn: Optional[str] = None) -> TokenResponse:
        """Install the tokens of a successful exchange and persist them."""
        try:
            response = TokenResponse.from_dict(raw)
            expire_in = parse_timestamp(response.token_expire_in)
        except (KeyError, TypeError, ValueError) as exc:
            raise NalogApiError("Malformed token response", response=raw) from exc

        state = self._state.with_tokens(response.token, response.refresh_token, expire_in)
        if inn:
            state = state.with_inn(inn)
        elif response.profile and response.profile.inn:
            state = state.with_inn(response.profile.inn)
        self._state = state

        self.save()
        return response

    def save(self) -> None:
        state = self._state
        self._store.save(SavedTokens(
            access_token=state.access_token or "",
            refresh_token=state.refresh_token or "",
            token_expire_in=state.token_expire_in.isoformat() if state.token_expire_in else "",
            inn=state.inn,
            device_id=self.device.source_device_id,
            saved_at=self._clock().isoformat(),
        ))


def _v2_base_url(base_url: str) -> str:
    return base_url.replace("/v1", "/v2", 1)


def _safe_parse(value: Optional[str]) -> Optional[datetime]:
    try:
        return parse_timestamp(value)
    except ValueError:
        return None


def _validated(model, **fields):
    try:
        return model(**fields)
    except ValidationError as exc:
        raise NalogConfigurationError(f"Invalid credentials: {exc}") from exc
