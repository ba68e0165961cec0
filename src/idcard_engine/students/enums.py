"""Status vocabularies shared by the fact store, resolver and transitions."""

from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    PIX = "pix"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DocumentType(str, Enum):
    RG = "rg"
    ADDRESS = "endereco"
    ENROLLMENT = "matricula"
    PHOTO = "foto"
    SELFIE = "selfie"


# Document slots that must each hold an approved document for eligibility.
# The selfie only feeds face validation.
REQUIRED_DOCUMENT_TYPES: frozenset[str] = frozenset({
    DocumentType.RG.value,
    DocumentType.ADDRESS.value,
    DocumentType.ENROLLMENT.value,
    DocumentType.PHOTO.value,
})


class CardStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ShippingStatus(str, Enum):
    PENDING = "pending"
    PRINTED = "printed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    FAILED = "failed"


# Education levels at which a law student goes through plan selection.
QUALIFYING_LAW_LEVELS: frozenset[str] = frozenset({
    "graduacao",
    "pos_lato",
    "stricto_sensu",
})


class PaymentPurpose(str, Enum):
    CARD = "card"
    PHYSICAL_UPGRADE = "physical_upgrade"
