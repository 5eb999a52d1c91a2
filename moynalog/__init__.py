"""
Moy Nalog Python SDK: receipts for the self-employed (lknpd.nalog.ru).

Usage::

    from moynalog import NalogApi, CreateIncomeParams

    api = NalogApi(inn="123456789012", password="s3cr3t", save_token=True)
    api.auth()

    receipt = api.add_income(CreateIncomeParams(name="Consulting", amount=5000))
    print(receipt.print_url)
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from moynalog.interfaces.auth import DeviceInfo, SourceType, TokenResponse, UserInfo, generate_device_id
from moynalog.interfaces.income import (
    CancelIncomeParams,
    CancelReason,
    CreateIncomeParams,
    CreateMultipleIncomeParams,
    IncomeClient,
    IncomeResult,
    IncomeService,
    IncomeType,
    PaymentType,
    Receipt,
)
from moynalog.runtime import (
    DEFAULT_BASE_URL,
    DEFAULT_USER_AGENT,
    NalogApiError,
    NalogConfig,
    NalogConfigurationError,
    NalogRuntime,
    PhoneAuthRequiredError,
)
from moynalog.services.auth import TokenManager
from moynalog.services.income import IncomeResource
from moynalog.services.storage import CredentialStore
from moynalog.session import AuthStatus, SessionState, utcnow

__all__ = [
    "NalogApi",
    "NalogConfig",
    "NalogApiError",
    "NalogConfigurationError",
    "PhoneAuthRequiredError",
    # Session
    "AuthStatus",
    "SessionState",
    "DeviceInfo",
    "SourceType",
    "TokenResponse",
    "UserInfo",
    # Income
    "CancelIncomeParams",
    "CancelReason",
    "CreateIncomeParams",
    "CreateMultipleIncomeParams",
    "IncomeClient",
    "IncomeResult",
    "IncomeService",
    "IncomeType",
    "PaymentType",
    "Receipt",
]

logger = logging.getLogger(__name__)


class NalogApi:
    """
    Main entry point for the Moy Nalog Python SDK.

    Args:
        inn:                INN of the self-employed taxpayer.
        password:           Password of the personal tax account (used with ``inn``).
        phone:              Phone number for SMS login (see :meth:`request_sms_code`).
        access_token:       Access token from an earlier session.
        refresh_token:      Refresh token from an earlier session.
        device_id:          Stable device identifier; generated when omitted.
        timezone:           IANA zone used to timestamp receipts.
        base_url:           Override the API base URL.
        auto_refresh_token: Obtain and refresh tokens before authenticated calls.
                            When ``False`` tokens must be managed by hand.
        save_token:         Persist the session to ``save_token_path``.
        save_token_path:    Location of the session file.
        token_secret:       Encrypt the session file with this secret.
        debug:              When ``True``, HTTP requests/responses are logged at
                            ``DEBUG`` level via the ``moynalog`` loggers.
    """

    income: IncomeResource
    tokens: TokenManager

    def __init__(
        self,
        inn: Optional[str] = None,
        password: Optional[str] = None,
        phone: Optional[str] = None,
        *,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        device_id: Optional[str] = None,
        timezone: str = "Europe/Moscow",
        base_url: str = DEFAULT_BASE_URL,
        auto_refresh_token: bool = True,
        save_token: bool = False,
        save_token_path: str = "session-token.json",
        token_secret: Optional[str] = None,
        refresh_threshold: timedelta = timedelta(minutes=5),
        app_version: str = "1.0.0",
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: Optional[float] = None,
        debug: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        config = NalogConfig(
            base_url=base_url.rstrip("/"),
            timezone=timezone,
            auto_refresh_token=auto_refresh_token,
            save_token=save_token,
            save_token_path=save_token_path,
            token_secret=token_secret,
            inn=inn,
            password=password,
            phone=phone,
            access_token=access_token,
            refresh_token=refresh_token,
            device_id=device_id,
            refresh_threshold=refresh_threshold,
            app_version=app_version,
            user_agent=user_agent,
            timeout=timeout,
            debug=debug,
        )
        self.config = config
        runtime = NalogRuntime(config)
        store = CredentialStore(save_token_path, enabled=save_token, secret=token_secret)
        saved = store.load()

        device = DeviceInfo(
            source_device_id=device_id or (saved and saved.device_id) or generate_device_id(),
            app_version=app_version,
            user_agent=user_agent,
        )
        self.tokens = TokenManager(
            runtime,
            store,
            device,
            inn=inn,
            password=password,
            phone=phone,
            refresh_threshold=refresh_threshold,
            clock=clock,
        )
        if saved:
            self.tokens.restore(saved)
            logger.debug("[Nalog] Restored session from %s", store.path)
        self.tokens.seed(inn=inn, access_token=access_token, refresh_token=refresh_token)

        self._runtime = runtime
        self._store = store
        self.income = IncomeResource(runtime, self.tokens, clock=clock)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def auth(self) -> TokenResponse:
        """
        Authenticate with the configured credentials.

        Raises:
            NalogConfigurationError: Nothing to authenticate with.
            PhoneAuthRequiredError:  Only a phone is configured.
            NalogApiError:           The API rejected the exchange.
        """
        return self.tokens.authenticate()

    def auth_by_inn(self, inn: str, password: str) -> TokenResponse:
        return self.tokens.auth_by_inn(inn, password)

    def request_sms_code(self, phone: str) -> str:
        """Send an SMS code to ``phone``; returns the challenge token."""
        return self.tokens.request_sms_code(phone)

    def auth_by_phone(self, phone: str, challenge_token: str, code: str) -> TokenResponse:
        return self.tokens.auth_by_phone(phone, challenge_token, code)

    def refresh_access_token(self) -> TokenResponse:
        return self.tokens.refresh()

    def ensure_valid_token(self) -> None:
        self.tokens.ensure_valid_token()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def get_auth_state(self) -> SessionState:
        """Snapshot of the current session (immutable)."""
        return self.tokens.state

    def get_inn(self) -> Optional[str]:
        return self.tokens.state.inn

    def set_inn(self, inn: str) -> None:
        self.tokens.set_inn(inn)

    def set_tokens(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        inn: Optional[str] = None,
    ) -> None:
        """Restore a session obtained elsewhere."""
        self.tokens.set_tokens(access_token, refresh_token, inn)

    def clear_saved_tokens(self) -> None:
        """Delete the session file. The in-memory session is kept."""
        self._store.clear()

    def logout(self) -> None:
        """Forget the in-memory tokens and delete the session file."""
        self.tokens.clear()
        self._store.clear()

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------

    def get_user_info(self) -> UserInfo:
        """Fetch the account details; fills in the INN when the API returns one."""
        raw = self._runtime.request("GET", "user")
        if not isinstance(raw, dict):
            raise NalogApiError("Unexpected response to user info request", response=raw)
        info = UserInfo.from_dict(raw)
        if info.inn:
            self.tokens.set_inn(info.inn)
        return info

    def add_income(self, params: CreateIncomeParams) -> Receipt:
        return self.income.add_income(params)

    def add_multiple_income(self, params: CreateMultipleIncomeParams) -> Receipt:
        return self.income.add_multiple_income(params)

    def cancel_income(self, params: CancelIncomeParams) -> IncomeResult:
        return self.income.cancel_income(params)

    def get_receipt_print_url(self, receipt_uuid: str, inn: Optional[str] = None) -> str:
        return self.income.get_receipt_print_url(receipt_uuid, inn)

    def get_receipt_json_url(self, receipt_uuid: str, inn: Optional[str] = None) -> str:
        return self.income.get_receipt_json_url(receipt_uuid, inn)

    def get_receipt_json(self, receipt_uuid: str, inn: Optional[str] = None) -> Any:
        return self.income.get_receipt_json(receipt_uuid, inn)

    def call(self, endpoint: str, body: Any = None, method: Optional[str] = None) -> Any:
        """
        Call an arbitrary authenticated endpoint, e.g. ``api.call("incomes/summary")``.

        ``method`` defaults to POST when a body is given and GET otherwise.
        """
        return self._runtime.request(method or ("POST" if body is not None else "GET"), endpoint, body)
