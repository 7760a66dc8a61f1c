"""
Invoice Aging Job

Moves pending invoices whose due date has passed to overdue. Runs every
OVERDUE_SWEEP_INTERVAL_MINUTES; the same sweep is exposed over HTTP.
"""

import logging
from typing import Any, Dict, Optional
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


async def sweep_overdue_invoices(now: Optional[datetime] = None) -> Dict[str, Any]:
    """Run one overdue sweep in its own session and transaction."""
    from marfanet.database import get_db_session
    from marfanet.services.invoice_lifecycle_service import InvoiceLifecycleService

    now = now or datetime.now(timezone.utc)
    logger.info("Starting overdue invoice sweep...")

    try:
        async with get_db_session() as session:
            invoices = await InvoiceLifecycleService(session).mark_overdue_invoices(now)
            invoice_numbers = [invoice.invoice_number for invoice in invoices]
    except Exception as e:
        logger.error(f"Overdue invoice sweep failed: {e}")
        return {"status": "failed", "error": str(e), "marked_count": 0}

    duration = (datetime.now(timezone.utc) - now).total_seconds()
    logger.info(f"Overdue sweep completed in {duration:.2f}s: {len(invoice_numbers)} invoices marked")
    return {"status": "success", "marked_count": len(invoice_numbers), "invoice_numbers": invoice_numbers}
