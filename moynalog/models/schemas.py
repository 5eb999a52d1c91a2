import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """
    Bring a Russian phone number to the ``7XXXXXXXXXX`` form the API expects.

    ``8 (999) 123-45-67``, ``+7 999 123 45 67`` and ``9991234567`` all become
    ``79991234567``; anything else is returned as bare digits.
    """
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) == 11 and digits.startswith("8"):
        return "7" + digits[1:]
    if len(digits) == 10:
        return "7" + digits
    return digits


class InnPasswordCredentials(BaseModel):
    """
    Model for validating INN and password (personal tax account login).
    """
    inn: str = Field(..., pattern=r"^(\d{10}|\d{12})$")
    password: str = Field(..., min_length=1)


class PhoneCredentials(BaseModel):
    """
    Model for a phone number pending SMS verification.
    """
    phone: str

    @field_validator("phone")
    @classmethod
    def _normalize(cls, value: str) -> str:
        normalized = normalize_phone(value)
        if not normalized:
            raise ValueError("phone must contain digits")
        return normalized


class SavedTokens(BaseModel):
    """
    Model for the persisted credential record (camelCase on disk).
    """
    model_config = ConfigDict(populate_by_name=True)

    access_token: Optional[str] = Field(None, alias="accessToken")
    refresh_token: Optional[str] = Field(None, alias="refreshToken")
    token_expire_in: Optional[str] = Field(None, alias="tokenExpireIn")
    inn: Optional[str] = None
    device_id: Optional[str] = Field(None, alias="deviceId")
    saved_at: Optional[str] = Field(None, alias="savedAt")

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
