"""Initial schema: users, clients, recurring invoices, invoices, invoice items, payments

Revision ID: a1c4e7f2b930
Revises:
Create Date: 2026-01-05 09:00:12.418230

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c4e7f2b930'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

invoice_status = sa.Enum(
    'DRAFT', 'SENT', 'OPEN', 'UNPAID', 'VIEWED', 'PARTIALLY_PAID', 'PAID', 'OVERDUE', 'SIGNED', 'COMPLETED', 'VOID',
    name='invoicestatus',
)
payment_status = sa.Enum(
    'PENDING', 'SUCCEEDED', 'FAILED', 'CANCELED', 'REFUNDED', 'PARTIALLY_REFUNDED', name='paymentstatus'
)
payment_provider = sa.Enum('STRIPE', 'MANUAL', name='paymentprovider')
recurring_status = sa.Enum('PENDING', 'ACTIVE', 'PAUSED', 'CANCELLED', name='recurringstatus')


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def upgrade() -> None:
    """Create all tables for invoicing and payment reconciliation."""
    # 1. Users (no dependencies)
    op.create_table(
        'users',
        *_timestamps(),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('company_name', sa.String(), nullable=True),
        sa.Column('stripe_account_id', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'])
    op.create_index(op.f('ix_users_created_at'), 'users', ['created_at'])
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    # 2. Clients (depends on users)
    op.create_table(
        'clients',
        *_timestamps(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('company_name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_clients_id'), 'clients', ['id'])
    op.create_index(op.f('ix_clients_created_at'), 'clients', ['created_at'])
    op.create_index(op.f('ix_clients_user_id'), 'clients', ['user_id'])
    op.create_index(op.f('ix_clients_email'), 'clients', ['email'])

    # 3. Recurring invoice schedules (depends on users, clients)
    op.create_table(
        'recurring_invoices',
        *_timestamps(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('interval', sa.String(length=10), nullable=False),
        sa.Column('day_of_month', sa.Integer(), nullable=True),
        sa.Column('day_of_week', sa.Integer(), nullable=True),
        sa.Column('next_send_date', sa.DateTime(), nullable=False),
        sa.Column('status', recurring_status, nullable=False, server_default='ACTIVE'),
        sa.Column('auto_pay', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('send_first_now', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('first_paid_at', sa.DateTime(), nullable=True),
        sa.Column('last_sent_at', sa.DateTime(), nullable=True),
        sa.Column('stripe_customer_id', sa.String(), nullable=True),
        sa.Column('stripe_payment_method_id', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_recurring_invoices_id'), 'recurring_invoices', ['id'])
    op.create_index(op.f('ix_recurring_invoices_created_at'), 'recurring_invoices', ['created_at'])
    op.create_index(op.f('ix_recurring_invoices_user_id'), 'recurring_invoices', ['user_id'])
    op.create_index(op.f('ix_recurring_invoices_client_id'), 'recurring_invoices', ['client_id'])
    op.create_index(op.f('ix_recurring_invoices_next_send_date'), 'recurring_invoices', ['next_send_date'])
    op.create_index(op.f('ix_recurring_invoices_status'), 'recurring_invoices', ['status'])

    # 4. Invoices (depends on users, clients, recurring_invoices)
    op.create_table(
        'invoices',
        *_timestamps(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('client_id', sa.Uuid(), nullable=False),
        sa.Column('invoice_number', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', invoice_status, nullable=False, server_default='DRAFT'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('issue_date', sa.DateTime(), nullable=False),
        sa.Column('due_date', sa.DateTime(), nullable=True),
        sa.Column('sub_total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('amount_refunded', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('sent_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pdf_url', sa.String(), nullable=True),
        sa.Column('recurring', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('recurring_interval', sa.String(length=10), nullable=True),
        sa.Column('recurring_day_of_month', sa.Integer(), nullable=True),
        sa.Column('recurring_day_of_week', sa.Integer(), nullable=True),
        sa.Column('next_occurrence', sa.DateTime(), nullable=True),
        sa.Column('recurring_parent_id', sa.Uuid(), nullable=True),
        sa.Column('recurring_period_start', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.ForeignKeyConstraint(['recurring_parent_id'], ['recurring_invoices.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'invoice_number', name='uq_invoices_user_number'),
        sa.UniqueConstraint('recurring_parent_id', 'recurring_period_start', name='uq_invoices_recurring_period'),
    )
    op.create_index(op.f('ix_invoices_id'), 'invoices', ['id'])
    op.create_index(op.f('ix_invoices_created_at'), 'invoices', ['created_at'])
    op.create_index(op.f('ix_invoices_user_id'), 'invoices', ['user_id'])
    op.create_index(op.f('ix_invoices_client_id'), 'invoices', ['client_id'])
    op.create_index(op.f('ix_invoices_invoice_number'), 'invoices', ['invoice_number'])
    op.create_index(op.f('ix_invoices_status'), 'invoices', ['status'])
    op.create_index(op.f('ix_invoices_due_date'), 'invoices', ['due_date'])
    op.create_index(op.f('ix_invoices_recurring_parent_id'), 'invoices', ['recurring_parent_id'])

    # 5. Invoice items (depends on invoices)
    op.create_table(
        'invoice_items',
        *_timestamps(),
        sa.Column('invoice_id', sa.Uuid(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=True),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity >= 0', name='ck_invoice_items_quantity'),
        sa.CheckConstraint('unit_price >= 0', name='ck_invoice_items_unit_price'),
    )
    op.create_index(op.f('ix_invoice_items_id'), 'invoice_items', ['id'])
    op.create_index(op.f('ix_invoice_items_created_at'), 'invoice_items', ['created_at'])
    op.create_index(op.f('ix_invoice_items_invoice_id'), 'invoice_items', ['invoice_id'])

    # 6. Payments (depends on invoices, clients)
    op.create_table(
        'payments',
        *_timestamps(),
        sa.Column('invoice_id', sa.Uuid(), nullable=False),
        sa.Column('client_id', sa.Uuid(), nullable=True),
        sa.Column('provider', payment_provider, nullable=False, server_default='STRIPE'),
        sa.Column('status', payment_status, nullable=False, server_default='PENDING'),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('fee_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('net_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('refunded_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(), nullable=True),
        sa.Column('stripe_charge_id', sa.String(), nullable=True),
        sa.Column('stripe_checkout_session_id', sa.String(), nullable=True),
        sa.Column('stripe_customer_id', sa.String(), nullable=True),
        sa.Column('stripe_balance_transaction_id', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id']),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('refunded_amount >= 0', name='ck_payments_refunded_non_negative'),
        sa.CheckConstraint('refunded_amount <= amount', name='ck_payments_refunded_le_amount'),
    )
    op.create_index(op.f('ix_payments_id'), 'payments', ['id'])
    op.create_index(op.f('ix_payments_created_at'), 'payments', ['created_at'])
    op.create_index(op.f('ix_payments_invoice_id'), 'payments', ['invoice_id'])
    op.create_index(op.f('ix_payments_client_id'), 'payments', ['client_id'])
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'])
    op.create_index(op.f('ix_payments_stripe_payment_intent_id'), 'payments', ['stripe_payment_intent_id'], unique=True)
    op.create_index(op.f('ix_payments_stripe_charge_id'), 'payments', ['stripe_charge_id'])
    op.create_index(
        op.f('ix_payments_stripe_checkout_session_id'), 'payments', ['stripe_checkout_session_id'], unique=True
    )


def downgrade() -> None:
    """Drop all tables and enum types."""
    op.drop_table('payments')
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.drop_table('recurring_invoices')
    op.drop_table('clients')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in (recurring_status, payment_provider, payment_status, invoice_status):
        enum_type.drop(bind, checkfirst=True)
