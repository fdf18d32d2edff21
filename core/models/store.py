"""Store profile models."""

from pydantic import BaseModel, Field, field_validator


class BankProfile(BaseModel):
    """Store's receiving bank account, used for transfer QR codes."""

    bank_id: str = Field(..., min_length=1)
    account_number: str = Field(..., pattern=r"^\d{8,19}$")
    account_name: str = Field(..., min_length=1)

    @field_validator("account_name")
    @classmethod
    def uppercase_account_name(cls, value: str) -> str:
        """Banks print account names in upper case."""
        value = value.strip()
        if not value:
            raise ValueError("Account name is required")
        return value.upper()
