"""Integration tests for the invoice lifecycle."""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from invoicing.exceptions import NotFoundError, ValidationError
from invoicing.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from invoicing.models.payment import Payment, PaymentProvider, PaymentStatus
from invoicing.schemas.error import ErrorCode
from invoicing.schemas.invoice import InvoiceCreate, InvoiceUpdate
from invoicing.services.invoice_service import InvoiceService
from utils.factories import InvoiceFactory, InvoiceItemFactory


def _service(db_session, pdf_service, notifier) -> InvoiceService:
    return InvoiceService(db_session, pdf_service=pdf_service, notifier=notifier)


async def _count(db_session: AsyncSession, model, *where) -> int:
    result = await db_session.execute(select(func.count()).select_from(model).where(*where))
    return result.scalar() or 0


@pytest.mark.asyncio
async def test_create_invoice_computes_totals(db_session, test_user, test_client, pdf_service, notifier) -> None:
    """Test that totals are computed from the items with per-item rounding."""
    service = _service(db_session, pdf_service, notifier)

    invoice = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {
                    "user_id": test_user.id,
                    "client_id": test_client.id,
                    "items": [
                        {"name": "Design", "quantity": 2, "unit_price": Decimal("10.00"), "tax_rate": Decimal("10")},
                        {"name": "Hosting", "quantity": 1, "unit_price": Decimal("33.33"), "tax_rate": Decimal("7.25")},
                    ],
                }
            )
        )
    )

    assert invoice.status == InvoiceStatus.DRAFT
    assert invoice.invoice_number == "INV-0001"
    assert invoice.sub_total == Decimal("53.33")
    assert invoice.tax_amount == Decimal("4.42")
    assert invoice.total == Decimal("57.75")
    assert invoice.amount_paid == Decimal("0.00")
    assert [item.total for item in invoice.items] == [Decimal("22.00"), Decimal("35.75")]
    assert [item.position for item in invoice.items] == [0, 1]

    # Drafts are not delivered
    assert pdf_service.rendered == []
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_invoice_numbers_are_sequential_per_user(
    db_session, test_user, test_client, pdf_service, notifier
) -> None:
    """Test that each new invoice takes the next number."""
    service = _service(db_session, pdf_service, notifier)
    data = {"user_id": test_user.id, "client_id": test_client.id}

    first = await service.create_invoice(InvoiceCreate(**InvoiceFactory.create(data)))
    second = await service.create_invoice(InvoiceCreate(**InvoiceFactory.create(data)))

    assert first.invoice_number == "INV-0001"
    assert second.invoice_number == "INV-0002"


@pytest.mark.asyncio
async def test_open_invoice_is_stored_and_emailed(db_session, test_user, test_client, pdf_service, notifier) -> None:
    """Test that creating a client-visible invoice stores a PDF and emails the client."""
    service = _service(db_session, pdf_service, notifier)

    invoice = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {"user_id": test_user.id, "client_id": test_client.id, "status": InvoiceStatus.OPEN}
            )
        )
    )

    assert invoice.pdf_url == f"https://files.test/invoices/invoice-{invoice.id}.pdf"
    assert (pdf_service.storage_dir / f"invoice-{invoice.id}.pdf").read_bytes().startswith(b"%PDF")
    assert invoice.sent_count == 1

    emails = notifier.sent_of("invoice")
    assert len(emails) == 1
    assert emails[0]["to"] == test_client.email
    assert invoice.invoice_number in emails[0]["subject"]


@pytest.mark.asyncio
async def test_create_invoice_without_email(db_session, test_user, test_client, pdf_service, notifier) -> None:
    """Test that send_email=False stores the document but sends nothing."""
    service = _service(db_session, pdf_service, notifier)

    invoice = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {
                    "user_id": test_user.id,
                    "client_id": test_client.id,
                    "status": InvoiceStatus.SENT,
                    "send_email": False,
                }
            )
        )
    )

    assert invoice.pdf_url is not None
    assert invoice.sent_count == 0
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_create_invoice_requires_client(db_session, test_user, pdf_service, notifier) -> None:
    """Test that a missing client_id is a validation error and nothing is stored."""
    service = _service(db_session, pdf_service, notifier)

    with pytest.raises(ValidationError) as exc_info:
        await service.create_invoice(InvoiceCreate(**InvoiceFactory.create({"user_id": test_user.id})))

    assert exc_info.value.code == ErrorCode.MISSING_REQUIRED_FIELD
    assert exc_info.value.field == "client_id"
    assert await _count(db_session, Invoice) == 0


@pytest.mark.asyncio
async def test_create_invoice_for_unknown_client(db_session, test_user, pdf_service, notifier) -> None:
    """Test that a client id that does not exist is reported as not found."""
    from uuid import uuid4

    service = _service(db_session, pdf_service, notifier)

    with pytest.raises(NotFoundError) as exc_info:
        await service.create_invoice(
            InvoiceCreate(**InvoiceFactory.create({"user_id": test_user.id, "client_id": uuid4()}))
        )

    assert exc_info.value.code == ErrorCode.CLIENT_NOT_FOUND


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [InvoiceStatus.PAID, InvoiceStatus.PARTIALLY_PAID])
async def test_payment_status_cannot_be_set_directly(
    db_session, test_user, test_client, pdf_service, notifier, status
) -> None:
    """Test that paid statuses are only reachable through payments."""
    service = _service(db_session, pdf_service, notifier)
    invoice = await service.create_invoice(
        InvoiceCreate(**InvoiceFactory.create({"user_id": test_user.id, "client_id": test_client.id}))
    )

    with pytest.raises(ValidationError):
        await service.create_invoice(
            InvoiceCreate(
                **InvoiceFactory.create({"user_id": test_user.id, "client_id": test_client.id, "status": status})
            )
        )
    with pytest.raises(ValidationError) as exc_info:
        await service.update_invoice(invoice.id, InvoiceUpdate(status=status))

    assert exc_info.value.code == ErrorCode.INVALID_STATE_TRANSITION


@pytest.mark.asyncio
async def test_delivery_failures_do_not_undo_invoice(
    db_session, test_user, test_client, pdf_service, notifier
) -> None:
    """Test that PDF and email outages are tolerated after the invoice is committed."""
    pdf_service.fail = True
    notifier.fail = True
    service = _service(db_session, pdf_service, notifier)

    invoice = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {"user_id": test_user.id, "client_id": test_client.id, "status": InvoiceStatus.OPEN}
            )
        )
    )

    stored = await service.get_invoice(invoice.id)
    assert stored.status == InvoiceStatus.OPEN
    assert stored.pdf_url is None
    assert stored.sent_count == 0
    assert len(stored.items) == 1


@pytest.mark.asyncio
async def test_update_replaces_all_items(db_session, test_user, test_client, pdf_service, notifier) -> None:
    """Test that supplied items replace the previous set and totals follow."""
    service = _service(db_session, pdf_service, notifier)
    invoice = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {
                    "user_id": test_user.id,
                    "client_id": test_client.id,
                    "items": [InvoiceItemFactory.create(), InvoiceItemFactory.create()],
                }
            )
        )
    )

    updated = await service.update_invoice(
        invoice.id,
        InvoiceUpdate(
            title="Revised",
            items=[{"name": "Consulting", "quantity": 5, "unit_price": Decimal("4.00"), "tax_rate": Decimal("0")}],
        ),
    )

    assert updated.title == "Revised"
    assert [item.name for item in updated.items] == ["Consulting"]
    assert updated.sub_total == Decimal("20.00")
    assert updated.tax_amount == Decimal("0.00")
    assert updated.total == Decimal("20.00")
    assert await _count(db_session, InvoiceItem, InvoiceItem.invoice_id == invoice.id) == 1


@pytest.mark.asyncio
async def test_failed_item_replacement_keeps_previous_items(
    db_session, session_factory, test_user, test_client, pdf_service, notifier, monkeypatch
) -> None:
    """Test that a failure halfway through item replacement leaves the old items and totals."""
    service = _service(db_session, pdf_service, notifier)
    invoice = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {
                    "user_id": test_user.id,
                    "client_id": test_client.id,
                    "items": [
                        {"name": "Setup", "quantity": 1, "unit_price": Decimal("150.00")},
                        {"name": "Support", "quantity": 3, "unit_price": Decimal("25.00"), "tax_rate": Decimal("20")},
                    ],
                }
            )
        )
    )
    invoice_id = invoice.id

    original_build_item = InvoiceService._build_item
    calls = []

    def failing_build_item(self, position, item, totals):
        calls.append(position)
        if len(calls) == 2:
            raise RuntimeError("connection lost while writing items")
        return original_build_item(self, position, item, totals)

    monkeypatch.setattr(InvoiceService, "_build_item", failing_build_item)

    with pytest.raises(RuntimeError):
        await service.update_invoice(
            invoice_id,
            InvoiceUpdate(items=[InvoiceItemFactory.create(), InvoiceItemFactory.create(), InvoiceItemFactory.create()]),
        )

    async with session_factory() as fresh:
        stored = await InvoiceService(fresh, pdf_service=pdf_service, notifier=notifier).get_invoice(invoice_id)
        assert [item.name for item in stored.items] == ["Setup", "Support"]
        assert stored.sub_total == Decimal("225.00")
        assert stored.tax_amount == Decimal("15.00")
        assert stored.total == Decimal("240.00")
        assert stored.total == sum((item.total for item in stored.items), Decimal("0.00"))


@pytest.mark.asyncio
async def test_items_of_paid_invoice_are_locked(db_session, test_user, test_client, pdf_service, notifier) -> None:
    """Test that a paid invoice's items cannot change."""
    from invoicing.services.payment_service import PaymentService

    service = _service(db_session, pdf_service, notifier)
    invoice = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {"user_id": test_user.id, "client_id": test_client.id, "status": InvoiceStatus.OPEN}
            )
        )
    )
    paid = await PaymentService(db_session, notifier=notifier).record_manual_payment(invoice.id)
    assert paid.status == InvoiceStatus.PAID

    with pytest.raises(ValidationError) as exc_info:
        await service.update_invoice(invoice.id, InvoiceUpdate(items=[InvoiceItemFactory.create()]))

    assert exc_info.value.code == ErrorCode.INVOICE_ALREADY_PAID


@pytest.mark.asyncio
async def test_draft_becoming_visible_is_delivered(db_session, test_user, test_client, pdf_service, notifier) -> None:
    """Test that moving a draft to sent stores the PDF and emails the client."""
    service = _service(db_session, pdf_service, notifier)
    invoice = await service.create_invoice(
        InvoiceCreate(**InvoiceFactory.create({"user_id": test_user.id, "client_id": test_client.id}))
    )
    assert invoice.pdf_url is None

    updated = await service.update_invoice(invoice.id, InvoiceUpdate(status=InvoiceStatus.SENT, send_email=True))

    assert updated.status == InvoiceStatus.SENT
    assert updated.pdf_url is not None
    assert updated.sent_count == 1
    assert len(notifier.sent_of("invoice")) == 1


@pytest.mark.asyncio
async def test_list_invoices_filters_by_status(db_session, test_user, test_client, pdf_service, notifier) -> None:
    """Test pagination totals and the status filter."""
    service = _service(db_session, pdf_service, notifier)
    for status in (InvoiceStatus.DRAFT, InvoiceStatus.OPEN, InvoiceStatus.OPEN):
        await service.create_invoice(
            InvoiceCreate(
                **InvoiceFactory.create(
                    {"user_id": test_user.id, "client_id": test_client.id, "status": status, "send_email": False}
                )
            )
        )

    invoices, total = await service.list_invoices(user_id=test_user.id, status=InvoiceStatus.OPEN)
    assert total == 2
    assert {invoice.status for invoice in invoices} == {InvoiceStatus.OPEN}

    page, total = await service.list_invoices(user_id=test_user.id, page=2, page_size=2)
    assert total == 3
    assert len(page) == 1


@pytest.mark.asyncio
async def test_delete_invoice(db_session, test_user, test_client, pdf_service, notifier) -> None:
    """Test that an invoice without payments is deleted with its items."""
    service = _service(db_session, pdf_service, notifier)
    invoice = await service.create_invoice(
        InvoiceCreate(**InvoiceFactory.create({"user_id": test_user.id, "client_id": test_client.id}))
    )

    await service.delete_invoice(invoice.id)

    with pytest.raises(NotFoundError):
        await service.get_invoice(invoice.id)
    assert await _count(db_session, InvoiceItem, InvoiceItem.invoice_id == invoice.id) == 0


@pytest.mark.asyncio
async def test_delete_invoice_with_payments_is_blocked(
    db_session, test_user, test_client, pdf_service, notifier
) -> None:
    """Test that invoices referenced by payments are kept."""
    service = _service(db_session, pdf_service, notifier)
    invoice = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {"user_id": test_user.id, "client_id": test_client.id, "status": InvoiceStatus.OPEN}
            )
        )
    )
    db_session.add(
        Payment(
            invoice_id=invoice.id,
            client_id=test_client.id,
            provider=PaymentProvider.STRIPE,
            status=PaymentStatus.FAILED,
            amount=invoice.total,
            currency="USD",
            refunded_amount=Decimal("0.00"),
        )
    )
    await db_session.commit()

    with pytest.raises(ValidationError) as exc_info:
        await service.delete_invoice(invoice.id)

    assert exc_info.value.code == ErrorCode.INVOICE_HAS_PAYMENTS
    assert (await service.get_invoice(invoice.id)).id == invoice.id


@pytest.mark.asyncio
async def test_void_invoice_is_never_reconciled(db_session, test_user, test_client, pdf_service, notifier) -> None:
    """Test that a void invoice keeps its status when payments are recomputed."""
    service = _service(db_session, pdf_service, notifier)
    invoice = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {"user_id": test_user.id, "client_id": test_client.id, "status": InvoiceStatus.OPEN}
            )
        )
    )

    voided = await service.void_invoice(invoice.id)
    assert voided.status == InvoiceStatus.VOID
    # Voiding twice is a no-op
    assert (await service.void_invoice(invoice.id)).status == InvoiceStatus.VOID

    db_session.add(
        Payment(
            invoice_id=invoice.id,
            provider=PaymentProvider.MANUAL,
            status=PaymentStatus.SUCCEEDED,
            amount=invoice.total,
            currency="USD",
            refunded_amount=Decimal("0.00"),
        )
    )
    await db_session.flush()
    reconciled = await service.reconcile_invoice_status(invoice.id)
    await db_session.commit()

    assert reconciled.status == InvoiceStatus.VOID
    assert reconciled.amount_paid == invoice.total


@pytest.mark.asyncio
async def test_void_invoice_with_payments_is_rejected(
    db_session, test_user, test_client, pdf_service, notifier
) -> None:
    """Test that money must be refunded before voiding."""
    from invoicing.services.payment_service import PaymentService

    service = _service(db_session, pdf_service, notifier)
    invoice = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {"user_id": test_user.id, "client_id": test_client.id, "status": InvoiceStatus.OPEN}
            )
        )
    )
    await PaymentService(db_session, notifier=notifier).record_manual_payment(invoice.id, amount=Decimal("1.00"))

    with pytest.raises(ValidationError):
        await service.void_invoice(invoice.id)


@pytest.mark.asyncio
async def test_unpaid_invoice_past_due_is_overdue(db_session, test_user, test_client, pdf_service, notifier) -> None:
    """Test that reconciliation without payments yields overdue or unpaid depending on the due date."""
    service = _service(db_session, pdf_service, notifier)
    late = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {
                    "user_id": test_user.id,
                    "client_id": test_client.id,
                    "status": InvoiceStatus.OPEN,
                    "due_date": datetime.utcnow() - timedelta(days=1),
                    "send_email": False,
                }
            )
        )
    )
    current = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {"user_id": test_user.id, "client_id": test_client.id, "status": InvoiceStatus.OPEN, "send_email": False}
            )
        )
    )

    assert (await service.reconcile_invoice_status(late.id)).status == InvoiceStatus.OVERDUE
    assert (await service.reconcile_invoice_status(current.id)).status == InvoiceStatus.UNPAID
    await db_session.commit()


@pytest.mark.asyncio
async def test_resend_draft_is_rejected(db_session, test_user, test_client, pdf_service, notifier) -> None:
    """Test that drafts cannot be emailed."""
    service = _service(db_session, pdf_service, notifier)
    invoice = await service.create_invoice(
        InvoiceCreate(**InvoiceFactory.create({"user_id": test_user.id, "client_id": test_client.id}))
    )

    with pytest.raises(ValidationError):
        await service.resend_invoice(invoice.id)


@pytest.mark.asyncio
async def test_numbering_continues_after_deleting_older_invoice(
    db_session, test_user, test_client, pdf_service, notifier
) -> None:
    """Test that deleting an older invoice does not hand out an existing number again."""
    service = _service(db_session, pdf_service, notifier)
    data = {"user_id": test_user.id, "client_id": test_client.id}
    first = await service.create_invoice(InvoiceCreate(**InvoiceFactory.create(data)))
    await service.create_invoice(InvoiceCreate(**InvoiceFactory.create(data)))
    await service.create_invoice(InvoiceCreate(**InvoiceFactory.create({**data, "invoice_number": "INV-CUSTOM"})))

    await service.delete_invoice(first.id)
    third = await service.create_invoice(InvoiceCreate(**InvoiceFactory.create(data)))

    assert third.invoice_number == "INV-0003"
    assert await _count(db_session, Invoice, Invoice.user_id == test_user.id) == 3


@pytest.mark.asyncio
async def test_item_replacement_reconciles_collected_payments(
    db_session, test_user, test_client, pdf_service, notifier
) -> None:
    """Test that lowering the total to what was already paid settles the invoice."""
    from invoicing.services.payment_service import PaymentService

    service = _service(db_session, pdf_service, notifier)
    invoice = await service.create_invoice(
        InvoiceCreate(
            **InvoiceFactory.create(
                {
                    "user_id": test_user.id,
                    "client_id": test_client.id,
                    "status": InvoiceStatus.OPEN,
                    "send_email": False,
                    "items": [{"name": "Retainer", "quantity": 1, "unit_price": Decimal("100.00")}],
                }
            )
        )
    )
    partially_paid = await PaymentService(db_session, notifier=notifier).record_manual_payment(
        invoice.id, amount=Decimal("50.00")
    )
    assert partially_paid.status == InvoiceStatus.PARTIALLY_PAID

    updated = await service.update_invoice(
        invoice.id,
        InvoiceUpdate(items=[{"name": "Retainer (reduced)", "quantity": 1, "unit_price": Decimal("50.00")}]),
    )

    assert updated.total == Decimal("50.00")
    assert updated.amount_paid == Decimal("50.00")
    assert updated.status == InvoiceStatus.PAID
    assert updated.paid_at is not None


@pytest.mark.asyncio
async def test_item_replacement_keeps_draft_status(db_session, test_user, test_client, pdf_service, notifier) -> None:
    """Test that editing a draft without payments leaves it a draft."""
    service = _service(db_session, pdf_service, notifier)
    invoice = await service.create_invoice(
        InvoiceCreate(**InvoiceFactory.create({"user_id": test_user.id, "client_id": test_client.id}))
    )

    updated = await service.update_invoice(invoice.id, InvoiceUpdate(items=[InvoiceItemFactory.create()]))

    assert updated.status == InvoiceStatus.DRAFT
