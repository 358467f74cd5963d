from billing_api.schemas.auth import (
    EmailSchema,
    GoogleStartSchema,
    GoogleTokensSchema,
    ProfileUpdateSchema,
    RefreshSchema,
    SigninSchema,
    SignupSchema,
    UpdatePasswordSchema,
)
from billing_api.schemas.invoices import (
    InvoiceBodySchema,
    InvoiceEnvelopeSchema,
    InvoiceListEnvelopeSchema,
    InvoiceSchema,
    InvoiceStatsEnvelopeSchema,
    InvoiceStatsSchema,
    MessageEnvelopeSchema,
)

__all__ = [
    "EmailSchema",
    "GoogleStartSchema",
    "GoogleTokensSchema",
    "InvoiceBodySchema",
    "InvoiceEnvelopeSchema",
    "InvoiceListEnvelopeSchema",
    "InvoiceSchema",
    "InvoiceStatsEnvelopeSchema",
    "InvoiceStatsSchema",
    "MessageEnvelopeSchema",
    "ProfileUpdateSchema",
    "RefreshSchema",
    "SigninSchema",
    "SignupSchema",
    "UpdatePasswordSchema",
]
