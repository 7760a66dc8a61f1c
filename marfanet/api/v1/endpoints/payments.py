"""API endpoints for payments."""
from fastapi import APIRouter, status

from marfanet.api.deps import DB, http_error
from marfanet.core.exceptions import LedgerEngineError
from marfanet.schemas.invoice import (
    PaymentCreate,
    PaymentResponse,
    PaymentResultResponse,
    InvoiceResponse,
)
from marfanet.schemas.ledger import LedgerEntryResponse
from marfanet.services.invoice_lifecycle_service import InvoiceLifecycleService

router = APIRouter()


@router.post("", response_model=PaymentResultResponse, status_code=status.HTTP_201_CREATED)
async def record_payment(
    data: PaymentCreate,
    db: DB,
):
    """
    Record a payment.

    With invoice_id the invoice becomes paid once its payments reach the
    total; overpayments are accepted and reported in `warnings`. Without
    invoice_id the payment is credited on account to representative_id.
    """
    try:
        result = await InvoiceLifecycleService(db).record_payment(
            data.amount,
            invoice_id=data.invoice_id,
            representative_id=data.representative_id,
            payment_method=data.payment_method,
            notes=data.notes,
        )
    except LedgerEngineError as e:
        raise http_error(e)

    await db.commit()
    return PaymentResultResponse(
        payment=PaymentResponse.model_validate(result.payment),
        invoice=InvoiceResponse.model_validate(result.invoice) if result.invoice else None,
        ledger_entry=LedgerEntryResponse.model_validate(result.ledger_entry),
        warnings=result.warnings,
    )
