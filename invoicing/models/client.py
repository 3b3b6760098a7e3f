from pydantic import BaseModel, ConfigDict, EmailStr, Field
from .common import gen_id

class Client(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=gen_id)
    user_id: str | None = None
    name: str
    company_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    billing_address: str | None = None
    gst_number: str | None = None
    notes: str | None = None

class BankAccount(BaseModel):
    """Payee bank record printed on invoices when present."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=gen_id)
    user_id: str | None = None
    account_holder: str
    account_number: str
    ifsc_code: str
    bank_name: str
    branch: str | None = None

class BusinessProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    business_name: str | None = None
    address: str | None = None
    pan_number: str | None = None
    phone: str | None = None
    logo_url: str | None = None
    primary_color: str | None = None
    secondary_color: str | None = None
    footer_text: str | None = None
