import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, case

from database.models import Organization, CreditTransaction
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class CreditRepository(BaseRepository):
    def get_organization(self, organization_id: str, for_update: bool = False) -> Optional[Organization]:
        stmt = select(Organization).where(Organization.id == organization_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def create_organization(self, name: str, credits: int = 0, organization_id: Optional[str] = None) -> Organization:
        org = Organization(name=name, credits=credits)
        if organization_id:
            org.id = organization_id
        self.db.add(org)
        self.db.flush()
        return org

    def insert_transaction(
        self,
        organization: Organization,
        user_id: str,
        tx_type: str,
        credit_type: str,
        amount: int,
        balance_before: int,
        balance_after: int,
        description: str,
        related_entity_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditTransaction:
        """Write the new balance and its ledger row in the caller's transaction."""
        organization.credits = balance_after
        tx = CreditTransaction(
            organization_id=organization.id,
            user_id=user_id,
            type=tx_type,
            credit_type=credit_type,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            related_entity_id=related_entity_id,
            description=description,
            metadata_=metadata,
            created_at=self.now(),
        )
        self.db.add(tx)
        self.db.flush()
        return tx

    def get_transaction(self, transaction_id: str) -> Optional[CreditTransaction]:
        stmt = select(CreditTransaction).where(CreditTransaction.id == transaction_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def sum_for_credit_type(self, organization_id: str, credit_type: str) -> int:
        stmt = select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            CreditTransaction.organization_id == organization_id,
            CreditTransaction.credit_type == credit_type,
        )
        return int(self.db.execute(stmt).scalar_one())

    def usage_for_period(
        self,
        organization_id: str,
        start: datetime,
        end: datetime,
        credit_type: Optional[str] = None,
    ) -> int:
        stmt = select(func.coalesce(func.sum(func.abs(CreditTransaction.amount)), 0)).where(
            CreditTransaction.organization_id == organization_id,
            CreditTransaction.type == 'consumption',
            CreditTransaction.created_at >= start,
            CreditTransaction.created_at <= end,
        )
        if credit_type:
            stmt = stmt.where(CreditTransaction.credit_type == credit_type)
        return int(self.db.execute(stmt).scalar_one())

    def list_transactions(
        self,
        organization_id: str,
        credit_type: Optional[str] = None,
        transaction_type: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> List[CreditTransaction]:
        stmt = select(CreditTransaction).where(CreditTransaction.organization_id == organization_id)
        if credit_type:
            stmt = stmt.where(CreditTransaction.credit_type == credit_type)
        if transaction_type:
            stmt = stmt.where(CreditTransaction.type == transaction_type)
        if user_id:
            stmt = stmt.where(CreditTransaction.user_id == user_id)
        if start:
            stmt = stmt.where(CreditTransaction.created_at >= start)
        if end:
            stmt = stmt.where(CreditTransaction.created_at <= end)

        stmt = stmt.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.db.execute(stmt).scalars().all()

    def totals_by_credit_type(self, organization_id: str) -> Dict[str, Dict[str, int]]:
        amount = CreditTransaction.amount
        stmt = (
            select(
                CreditTransaction.credit_type,
                func.coalesce(func.sum(case((amount < 0, -amount), else_=0)), 0).label('used'),
                func.coalesce(func.sum(case((amount > 0, amount), else_=0)), 0).label('added'),
            )
            .where(CreditTransaction.organization_id == organization_id)
            .group_by(CreditTransaction.credit_type)
        )
        return {
            row.credit_type: {'used': int(row.used), 'added': int(row.added)}
            for row in self.db.execute(stmt).all()
        }
