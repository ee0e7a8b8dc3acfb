from sqlalchemy import Column, Text, TIMESTAMP, ForeignKey, Integer, Index
from sqlalchemy.sql import func

from .base import Base, JSONType, generate_id

TRANSACTION_TYPES = ('subscription_grant', 'manual_grant', 'purchase', 'consumption')
CREDIT_TYPES = ('general', 'linkedin_reveal', 'email_reveal', 'phone_reveal')


class Organization(Base):
    """
    Billing owner of searches.

    ``credits`` is the only column the credit ledger writes; it always
    equals ``balance_after`` of the organization's latest transaction.
    """
    __tablename__ = 'organization'

    id = Column(Text, primary_key=True, default=generate_id)
    name = Column(Text, nullable=False)
    credits = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())


class CreditTransaction(Base):
    """Immutable ledger row. Consumption rows carry a negative amount."""
    __tablename__ = 'credit_transaction'

    id = Column(Text, primary_key=True, default=generate_id)
    organization_id = Column(Text, ForeignKey('organization.id', ondelete='CASCADE'), nullable=False)
    user_id = Column(Text, nullable=False)
    type = Column(Text, nullable=False)
    credit_type = Column(Text, nullable=False)
    amount = Column(Integer, nullable=False)
    balance_before = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    related_entity_id = Column(Text, nullable=True)
    description = Column(Text, nullable=False)
    metadata_ = Column('metadata', JSONType, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index('idx_credit_tx_org_created', 'organization_id', 'created_at'),
        Index('idx_credit_tx_type', 'type'),
    )
