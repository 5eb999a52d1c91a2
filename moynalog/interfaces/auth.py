"""
Authentication interfaces: device identity and credential exchange responses.

Field names follow Python's snake_case convention. ``as_dict()`` produces the
camelCase wire format and ``from_dict()`` reads it back.
"""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from moynalog.runtime import DEFAULT_USER_AGENT


class SourceType(str, enum.Enum):
    WEB = "WEB"
    ANDROID = "android"
    IOS = "ios"


def generate_device_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class DeviceInfo:
    """Device identity sent with every credential exchange."""

    source_device_id: str = field(default_factory=generate_device_id)
    source_type: SourceType = SourceType.WEB
    app_version: str = "1.0.0"
    user_agent: str = DEFAULT_USER_AGENT

    def as_dict(self) -> Dict[str, Any]:
        return {
            "sourceDeviceId": self.source_device_id,
            "sourceType": self.source_type.value,
            "appVersion": self.app_version,
            "metaDetails": {"userAgent": self.user_agent},
        }


@dataclass
class AuthProfile:
    """Taxpayer profile returned alongside a phone-verification token."""

    inn: Optional[str] = None
    id: Optional[int] = None
    display_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> AuthProfile:
        return cls(
            inn=raw.get("inn"),
            id=raw.get("id"),
            display_name=raw.get("displayName"),
            phone=raw.get("phone"),
            email=raw.get("email"),
            status=raw.get("status"),
        )


@dataclass
class TokenResponse:
    """Result of any credential exchange (password, SMS verify, refresh)."""

    token: str
    refresh_token: str
    token_expire_in: str
    refresh_token_expires_in: Optional[str] = None
    profile: Optional[AuthProfile] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> TokenResponse:
        profile = raw.get("profile")
        return cls(
            token=raw["token"],
            refresh_token=raw["refreshToken"],
            token_expire_in=raw["tokenExpireIn"],
            refresh_token_expires_in=raw.get("refreshTokenExpiresIn"),
            profile=AuthProfile.from_dict(profile) if profile else None,
        )


@dataclass
class UserInfo:
    """Account details returned by ``GET user``."""

    inn: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    first_receipt_register_time: Optional[str] = None
    region: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> UserInfo:
        return cls(
            inn=raw.get("inn"),
            phone=raw.get("phone"),
            email=raw.get("email"),
            display_name=raw.get("displayName"),
            first_receipt_register_time=raw.get("firstReceiptRegisterTime"),
            region=raw.get("region"),
            raw=raw,
        )
