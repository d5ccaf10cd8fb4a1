"""
Account (tenant) model.

Accounts are created by the identity collaborator on first sign-in and synced
into billing storage. The billing core only reads them.
"""

import re

from pydantic import BaseModel, Field, field_validator

from src.utils.timestamps import now_ms


class Account(BaseModel):
    """
    Tenant in the multi-tenant system.

    created_at anchors the rolling billing cycle for accounts without a paid
    subscription, so it must never change after the first sync.
    """

    account_id: str = Field(
        ...,
        min_length=3,
        max_length=64,
        description="Stable internal identifier (lowercase, alphanumeric, hyphens, underscores)",
    )
    external_id: str = Field(
        ..., min_length=1, max_length=255, description="Identity-provider subject id (opaque)"
    )
    email: str = Field(..., description="Primary contact email")
    created_at: int = Field(default_factory=now_ms, ge=0, description="Epoch milliseconds")

    @field_validator("account_id")
    @classmethod
    def validate_account_id_format(cls, v: str) -> str:
        if not re.match(r"^[a-z0-9_-]+$", v):
            raise ValueError(
                "account_id must be lowercase alphanumeric with hyphens or underscores only"
            )
        return v

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v: str) -> str:
        """Basic email validation."""
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Invalid email format")
        return v.lower()


class AccountUpsert(BaseModel):
    """Schema used by the identity collaborator to sync an account."""

    account_id: str = Field(..., min_length=3, max_length=64)
    external_id: str = Field(..., min_length=1, max_length=255)
    email: str
    created_at: int | None = Field(
        default=None,
        ge=0,
        description="Sign-up time in epoch milliseconds (defaults to now on first sync)",
    )

    def to_account(self) -> Account:
        data = self.model_dump(exclude_none=True)
        return Account(**data)
