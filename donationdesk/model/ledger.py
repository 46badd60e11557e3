from __future__ import annotations
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts
from .orm import Donation, PAYMENT_OFFLINE, PAYMENT_ONLINE


@dataclass
class DonorFields:
    """What the donor typed into the form, forwarded verbatim."""
    full_name: str = ""
    address: str = ""
    mobile: str = ""
    email: str = ""
    amount_inr: Optional[Decimal] = None
    comment: str = ""


class DonationLedger:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _add(self, donation: Donation) -> Donation:
        self.db.add(donation)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise
        return donation

    async def record_offline(self, donor: DonorFields) -> Donation:
        return await self._add(self._new(donor, PAYMENT_OFFLINE))

    async def record_online(
        self, donor: DonorFields, order_id: str, payment_id: str
    ) -> Donation:
        # caller must have verified the provider signature
        d = self._new(donor, PAYMENT_ONLINE)
        d.provider_order_id = order_id
        d.provider_payment_id = payment_id
        return await self._add(d)

    async def list_newest_first(self) -> List[Donation]:
        result = await self.db.execute(
            select(Donation).order_by(Donation.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_by_payment_id(self, payment_id: str) -> Optional[Donation]:
        result = await self.db.execute(
            select(Donation).where(Donation.provider_payment_id == payment_id)
        )
        return result.scalars().first()

    async def get(self, donation_id: str) -> Optional[Donation]:
        if not donation_id:
            return None
        return await self.db.get(Donation, donation_id)

    @staticmethod
    def _new(donor: DonorFields, method: str) -> Donation:
        return Donation(
            id=uuid.uuid4().hex,
            full_name=donor.full_name,
            address=donor.address,
            mobile=donor.mobile,
            email=donor.email,
            amount_inr=donor.amount_inr,
            comment=donor.comment,
            payment_method=method,
            created_at=now_ts(),
        )
