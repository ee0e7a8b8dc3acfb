"""
Credit ledger.

Every balance change is one database transaction that locks the
organization row, writes the new balance and inserts an immutable
``CreditTransaction``. Threshold analytics go out only after commit.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.exceptions import InsufficientCreditsError, NotFoundError, ValidationError
from database.models import CREDIT_TYPES, TRANSACTION_TYPES
from database.uow import sourcing_uow
from notification import analytics as analytics_events
from notification.analytics import AnalyticsClient

logger = logging.getLogger(__name__)

RECENT_TRANSACTIONS = 10


@dataclass
class CreditTransactionRecord:
    """Detached copy of a ledger row, safe to use after the session closes."""
    id: str
    organization_id: str
    user_id: str
    type: str
    credit_type: str
    amount: int
    balance_before: int
    balance_after: int
    related_entity_id: Optional[str]
    description: str
    metadata: Optional[Dict[str, Any]]
    created_at: Optional[datetime]

    @classmethod
    def from_model(cls, tx) -> "CreditTransactionRecord":
        return cls(
            id=tx.id,
            organization_id=tx.organization_id,
            user_id=tx.user_id,
            type=tx.type,
            credit_type=tx.credit_type,
            amount=tx.amount,
            balance_before=tx.balance_before,
            balance_after=tx.balance_after,
            related_entity_id=tx.related_entity_id,
            description=tx.description,
            metadata=tx.metadata_,
            created_at=tx.created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CreditLedger:
    def __init__(
        self,
        session_factory=None,
        analytics: Optional[AnalyticsClient] = None,
        low_threshold: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.analytics = analytics
        self.low_threshold = low_threshold

    def _validate_credit_type(self, credit_type: str) -> None:
        if credit_type not in CREDIT_TYPES:
            raise ValidationError(f"Unknown credit type: {credit_type}")

    def _load_org(self, repo, organization_id: str, for_update: bool = False):
        org = repo.credits.get_organization(organization_id, for_update=for_update)
        if org is None:
            raise NotFoundError(f"Organization {organization_id} not found")
        return org

    def deduct_credits(
        self,
        organization_id: str,
        user_id: str,
        amount: int,
        credit_type: str = 'general',
        related_entity_id: Optional[str] = None,
        description: str = 'Credit consumption',
        metadata: Optional[Dict[str, Any]] = None
    ) -> CreditTransactionRecord:
        """
        Atomically debit an organization.

        Args:
            organization_id: Organization to charge
            user_id: Member who triggered the consumption
            amount: Positive number of credits to remove
            credit_type: One of CREDIT_TYPES
            related_entity_id: What the credits were spent on (e.g. a candidate id)
            description: Human-readable ledger line
            metadata: Free-form JSON stored on the ledger row

        Returns:
            The committed ledger row, with a negative amount

        Raises:
            InsufficientCreditsError: amount <= 0 or balance < amount; nothing is written
            NotFoundError: unknown organization
        """
        if amount is None or amount <= 0:
            raise InsufficientCreditsError("Deduction amount must be positive")
        self._validate_credit_type(credit_type)

        with sourcing_uow(self.session_factory) as repo:
            org = self._load_org(repo, organization_id, for_update=True)
            before = org.credits
            if before < amount:
                raise InsufficientCreditsError(
                    f"Insufficient credits: balance {before}, required {amount}"
                )
            after = before - amount
            tx = repo.credits.insert_transaction(
                organization=org,
                user_id=user_id,
                tx_type='consumption',
                credit_type=credit_type,
                amount=-amount,
                balance_before=before,
                balance_after=after,
                description=description,
                related_entity_id=related_entity_id,
                metadata=metadata,
            )
            record = CreditTransactionRecord.from_model(repo.credits.get_transaction(tx.id))

        logger.info(
            f"Deducted {amount} {credit_type} credits from org {organization_id}: {before} -> {after}"
        )
        self._signal_thresholds(organization_id, user_id, before, after, credit_type)
        return record

    def add_credits(
        self,
        organization_id: str,
        user_id: str,
        amount: int,
        tx_type: str = 'manual_grant',
        credit_type: str = 'general',
        related_entity_id: Optional[str] = None,
        description: str = 'Credit grant',
        metadata: Optional[Dict[str, Any]] = None
    ) -> CreditTransactionRecord:
        """Grant or sell credits. Raises ValidationError for a non-positive amount."""
        if amount is None or amount <= 0:
            raise ValidationError("Amount must be positive")
        if tx_type not in TRANSACTION_TYPES or tx_type == 'consumption':
            raise ValidationError(f"Invalid grant type: {tx_type}")
        self._validate_credit_type(credit_type)

        with sourcing_uow(self.session_factory) as repo:
            org = self._load_org(repo, organization_id, for_update=True)
            before = org.credits
            after = before + amount
            tx = repo.credits.insert_transaction(
                organization=org,
                user_id=user_id,
                tx_type=tx_type,
                credit_type=credit_type,
                amount=amount,
                balance_before=before,
                balance_after=after,
                description=description,
                related_entity_id=related_entity_id,
                metadata=metadata,
            )
            record = CreditTransactionRecord.from_model(repo.credits.get_transaction(tx.id))

        logger.info(f"Added {amount} {credit_type} credits to org {organization_id}: {before} -> {after}")
        self._signal_thresholds(organization_id, user_id, before, after, credit_type)
        return record

    def set_credits_balance(
        self,
        organization_id: str,
        user_id: str,
        new_balance: int,
        tx_type: str = 'subscription_grant',
        credit_type: str = 'general',
        related_entity_id: Optional[str] = None,
        description: str = 'Balance reset',
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[CreditTransactionRecord]:
        """
        Reset the balance to an absolute value (subscription renewal).

        Returns:
            The ledger row, or None when the balance already equals new_balance
        """
        if new_balance is None or new_balance < 0:
            raise ValidationError("Balance cannot be negative")
        if tx_type not in TRANSACTION_TYPES:
            raise ValidationError(f"Invalid transaction type: {tx_type}")
        self._validate_credit_type(credit_type)

        with sourcing_uow(self.session_factory) as repo:
            org = self._load_org(repo, organization_id, for_update=True)
            before = org.credits
            if new_balance == before:
                return None
            tx = repo.credits.insert_transaction(
                organization=org,
                user_id=user_id,
                tx_type=tx_type,
                credit_type=credit_type,
                amount=new_balance - before,
                balance_before=before,
                balance_after=new_balance,
                description=description,
                related_entity_id=related_entity_id,
                metadata=metadata,
            )
            record = CreditTransactionRecord.from_model(repo.credits.get_transaction(tx.id))

        logger.info(f"Set org {organization_id} balance: {before} -> {new_balance}")
        return record

    def get_balance(self, organization_id: str, credit_type: Optional[str] = None) -> int:
        """Organization balance, or the net of all transactions of one credit type."""
        with sourcing_uow(self.session_factory) as repo:
            org = self._load_org(repo, organization_id)
            if credit_type is None:
                return org.credits
            return repo.credits.sum_for_credit_type(organization_id, credit_type)

    def can_afford(self, organization_id: str, amount: int, credit_type: Optional[str] = None) -> bool:
        return self.get_balance(organization_id, credit_type) >= amount

    def get_credits_usage_for_period(
        self,
        organization_id: str,
        start: datetime,
        end: datetime,
        credit_type: Optional[str] = None
    ) -> int:
        """Credits consumed between start and end (inclusive)."""
        if start > end:
            raise ValidationError("start must not be after end")
        with sourcing_uow(self.session_factory) as repo:
            return repo.credits.usage_for_period(organization_id, start, end, credit_type)

    def get_credit_history(
        self,
        organization_id: str,
        credit_type: Optional[str] = None,
        transaction_type: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[CreditTransactionRecord]:
        with sourcing_uow(self.session_factory) as repo:
            rows = repo.credits.list_transactions(
                organization_id,
                credit_type=credit_type,
                transaction_type=transaction_type,
                user_id=user_id,
                start=start,
                end=end,
                limit=limit,
                offset=offset,
            )
            return [CreditTransactionRecord.from_model(row) for row in rows]

    def get_credit_stats(self, organization_id: str) -> Dict[str, Any]:
        with sourcing_uow(self.session_factory) as repo:
            by_type = {ct: {'used': 0, 'added': 0} for ct in CREDIT_TYPES}
            by_type.update(repo.credits.totals_by_credit_type(organization_id))
            recent = repo.credits.list_transactions(organization_id, limit=RECENT_TRANSACTIONS)
            return {
                'total_used': sum(v['used'] for v in by_type.values()),
                'total_added': sum(v['added'] for v in by_type.values()),
                'by_type': by_type,
                'recent_transactions': [CreditTransactionRecord.from_model(row) for row in recent],
            }

    def get_ledger(self, organization_id: str, limit: int = 50) -> Dict[str, Any]:
        with sourcing_uow(self.session_factory) as repo:
            org = self._load_org(repo, organization_id)
            rows = repo.credits.list_transactions(organization_id, limit=limit)
            return {
                'balance': org.credits,
                'transactions': [CreditTransactionRecord.from_model(row) for row in rows],
            }

    def _signal_thresholds(
        self,
        organization_id: str,
        user_id: str,
        before: int,
        after: int,
        credit_type: str
    ) -> None:
        if self.analytics is None:
            return

        properties = {
            'organization_id': organization_id,
            'user_id': user_id,
            'credit_type': credit_type,
            'balance_before': before,
            'balance_after': after,
            'threshold': self.low_threshold,
        }
        try:
            if after == 0:
                self.analytics.capture(analytics_events.CREDITS_EXHAUSTED, organization_id, properties)
            elif (
                self.low_threshold is not None
                and before > self.low_threshold >= after > 0
            ):
                self.analytics.capture(analytics_events.CREDITS_LOW, organization_id, properties)
        except Exception as e:
            logger.warning(f"Credit threshold signal failed for org {organization_id}: {e}")
