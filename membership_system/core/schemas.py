"""
Pydantic input models shared by the services and the HTTP layer.
"""
from typing import Annotated, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    EmailStr,
    Field,
    HttpUrl,
    TypeAdapter,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError

from membership_system.database.models import (
    AccreditationStatus,
    DocumentType,
    MembershipStatus,
    MembershipType,
    Province,
    RepositoryStatus,
)

_http_url = TypeAdapter(HttpUrl)


def _validate_web_url(value: str) -> str:
    try:
        return str(_http_url.validate_python(value))
    except PydanticValidationError:
        raise ValueError("must be a valid http(s) URL")


# Validated as an http(s) URL, stored as plain text.
WebUrl = Annotated[str, AfterValidator(_validate_web_url)]


class RegistrationRequest(BaseModel):
    """Institution registration form."""

    email: EmailStr = Field(..., description="Login email")
    password: str = Field(..., min_length=6, description="Plaintext password (min 6 chars)")
    institution_name: str = Field(..., min_length=1)
    head_librarian_name: str = Field(..., min_length=1)
    head_librarian_phone: str = Field(..., min_length=1, max_length=20)
    agency: str = Field(..., min_length=1)
    contact_name: str = Field(..., min_length=1)
    contact_phone: str = Field(..., min_length=1, max_length=20)
    address: str = Field(..., min_length=1)
    province: Province
    institution_email: EmailStr
    website_url: WebUrl
    automation_url: WebUrl
    repository_status: RepositoryStatus
    collection_count: int = Field(..., ge=0)
    accreditation_status: AccreditationStatus
    membership_type: MembershipType

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "email": "library@unu.ac.id",
                    "password": "secret123",
                    "institution_name": "Universitas Nahdlatul Ulama Surabaya",
                    "head_librarian_name": "Siti Aminah",
                    "head_librarian_phone": "081234567890",
                    "agency": "UNUSA",
                    "contact_name": "Ahmad Fauzi",
                    "contact_phone": "081298765432",
                    "address": "Jl. Raya Jemursari No. 57, Surabaya",
                    "province": "Jawa Timur",
                    "institution_email": "perpustakaan@unusa.ac.id",
                    "website_url": "https://unusa.ac.id",
                    "automation_url": "https://slims.unusa.ac.id",
                    "repository_status": "Sudah",
                    "collection_count": 12000,
                    "accreditation_status": "Akreditasi A",
                    "membership_type": "Pendaftaran Baru",
                }
            ]
        }
    }


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserUpdateRequest(BaseModel):
    """
    Admin partial update.

    Only the fields present in the request body are written; use
    ``model_dump(exclude_unset=True)`` to tell "not provided" from a value.
    """

    email: Optional[EmailStr] = None
    institution_name: Optional[str] = Field(default=None, min_length=1)
    head_librarian_name: Optional[str] = Field(default=None, min_length=1)
    head_librarian_phone: Optional[str] = Field(default=None, min_length=1, max_length=20)
    agency: Optional[str] = Field(default=None, min_length=1)
    contact_name: Optional[str] = Field(default=None, min_length=1)
    contact_phone: Optional[str] = Field(default=None, min_length=1, max_length=20)
    address: Optional[str] = Field(default=None, min_length=1)
    province: Optional[Province] = None
    institution_email: Optional[EmailStr] = None
    website_url: Optional[WebUrl] = None
    automation_url: Optional[WebUrl] = None
    repository_status: Optional[RepositoryStatus] = None
    collection_count: Optional[int] = Field(default=None, ge=0)
    accreditation_status: Optional[AccreditationStatus] = None
    membership_type: Optional[MembershipType] = None
    membership_status: Optional[MembershipStatus] = None

    @field_validator("*")
    @classmethod
    def reject_explicit_null(cls, v: object) -> object:
        # Every profile column is NOT NULL, so an explicit null is never a valid update.
        if v is None:
            raise ValueError("Field cannot be null")
        return v


class UserListFilter(BaseModel):
    membership_status: Optional[MembershipStatus] = None
    province: Optional[Province] = None
    membership_type: Optional[MembershipType] = None
    limit: Optional[int] = Field(default=None, ge=0)
    offset: Optional[int] = Field(default=None, ge=0)


class CreatePaymentRequest(BaseModel):
    user_id: int = Field(..., description="Paying member")
    amount: float = Field(..., gt=0, description="Amount in rupiah; fractions allowed")

    model_config = {"json_schema_extra": {"examples": [{"user_id": 1, "amount": 500000}]}}


class MidtransNotification(BaseModel):
    """HTTP notification body sent by Midtrans for a transaction."""

    order_id: str
    status_code: str
    gross_amount: str
    signature_key: str
    transaction_status: str
    transaction_id: Optional[str] = None
    payment_type: Optional[str] = None
    transaction_time: Optional[str] = None
    settlement_time: Optional[str] = None

    model_config = {"extra": "ignore"}


class DocumentUploadRequest(BaseModel):
    user_id: int
    document_type: DocumentType
    file_name: str = Field(..., min_length=1, max_length=255)
    file_path: str = Field(..., min_length=1)
    file_size: Optional[int] = Field(default=None, ge=0)
    mime_type: Optional[str] = Field(default=None, max_length=100)


class CertificateRequest(BaseModel):
    user_id: int


class ReceiptRequest(BaseModel):
    user_id: int
    payment_id: int


class WhatsAppNotificationRequest(BaseModel):
    phone_number: str = Field(default="", description="Phone number in any common format")
    message: str = Field(default="", description="Message body (max 4096 characters)")


class AdminBootstrapRequest(BaseModel):
    """Operator-created admin account; profile fields get placeholders."""

    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(default="Administrator", min_length=1)
