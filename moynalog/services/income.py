"""
IncomeResource: receipt registration, cancellation and lookup.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from moynalog.interfaces.income import (
    CancelIncomeParams,
    CreateIncomeParams,
    CreateMultipleIncomeParams,
    IncomeClient,
    IncomeResult,
    Receipt,
    format_amount,
)
from moynalog.runtime import NalogApiError, NalogConfigurationError, NalogRuntime
from moynalog.services.auth import TokenManager
from moynalog.session import utcnow

logger = logging.getLogger(__name__)


class IncomeResource:
    """Exposes the income endpoints of the Moy Nalog API."""

    def __init__(
        self,
        runtime: NalogRuntime,
        tokens: TokenManager,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._runtime = runtime
        self._tokens = tokens
        self._clock = clock
        try:
            self._zone = ZoneInfo(runtime.config.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise NalogConfigurationError(f"Unknown time zone: {runtime.config.timezone}") from exc

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_income(self, params: CreateIncomeParams) -> Receipt:
        """Register a single-item income and return the issued receipt."""
        return self.add_multiple_income(params.to_multiple())

    def add_multiple_income(self, params: CreateMultipleIncomeParams) -> Receipt:
        """Register an income with several line items."""
        client = params.client or IncomeClient()
        body = {
            "operationTime": self.format_date(params.operation_time),
            "requestTime": self.format_date(),
            "paymentType": params.payment_type.value,
            "ignoreMaxTotalIncomeRestriction": params.ignore_max_total_income_restriction,
            "client": client.as_dict(),
            "services": [s.as_dict() for s in params.services],
            "totalAmount": format_amount(params.total_amount),
        }
        if self._runtime.debug:
            logger.debug('{"event": "Registering income", "services": %d}', len(params.services))
        raw = self._runtime.request("POST", "income", body)
        if not isinstance(raw, dict):
            raise NalogApiError("Unexpected response to income registration", response=raw)
        result = IncomeResult.from_dict(raw)
        if not result.approved_receipt_uuid:
            raise NalogApiError("Income response has no approvedReceiptUuid", response=result.raw)
        return self._build_receipt(result.approved_receipt_uuid)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_income(self, params: CancelIncomeParams) -> IncomeResult:
        """Cancel a receipt. The reason text is sent when no comment is given."""
        body = {
            "receiptUuid": params.receipt_uuid,
            "comment": params.comment or params.reason.text,
            "operationTime": self.format_date(params.operation_time),
            "requestTime": self.format_date(params.request_time),
            "partnerCode": None,
        }
        raw = self._runtime.request("POST", "cancel", body)
        logger.info("[Nalog] Receipt %s cancelled (%s)", params.receipt_uuid, params.reason.value)
        return IncomeResult.from_dict(raw if isinstance(raw, dict) else None)

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    def get_receipt_print_url(self, receipt_uuid: str, inn: Optional[str] = None) -> str:
        return f"{self._receipt_base(receipt_uuid, inn)}/print"

    def get_receipt_json_url(self, receipt_uuid: str, inn: Optional[str] = None) -> str:
        return f"{self._receipt_base(receipt_uuid, inn)}/json"

    def get_receipt_json(self, receipt_uuid: str, inn: Optional[str] = None) -> Dict[str, Any]:
        """Fetch the JSON representation of a receipt."""
        return self._runtime.request("GET", f"receipt/{self._require_inn(inn)}/{receipt_uuid}/json")

    def format_date(self, moment: Optional[datetime] = None) -> str:
        """
        Render ``moment`` (default: now) in the configured time zone with
        millisecond precision, e.g. ``2024-05-01T12:00:00.000+03:00``.
        Naive datetimes are taken to be in that zone already.
        """
        moment = moment or self._clock()
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=self._zone)
        return moment.astimezone(self._zone).isoformat(timespec="milliseconds")

    def _build_receipt(self, receipt_uuid: str) -> Receipt:
        inn = self._tokens.state.inn
        if not inn:
            raise NalogConfigurationError(
                "INN is unknown: authenticate first or set it with set_inn()"
            )
        return Receipt(
            receipt_uuid=receipt_uuid,
            print_url=self.get_receipt_print_url(receipt_uuid, inn),
            json_url=self.get_receipt_json_url(receipt_uuid, inn),
        )

    def _receipt_base(self, receipt_uuid: str, inn: Optional[str]) -> str:
        return f"{self._runtime.config.base_url}/receipt/{self._require_inn(inn)}/{receipt_uuid}"

    def _require_inn(self, inn: Optional[str]) -> str:
        inn = inn or self._tokens.state.inn
        if not inn:
            raise NalogConfigurationError("INN is not specified")
        return inn
