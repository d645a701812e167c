from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class AgingBucket(BaseModel):
    """Days-past-due range: lower inclusive, upper exclusive, None = unbounded."""
    model_config = ConfigDict(frozen=True)

    label: str
    lower_days: Optional[int] = None
    upper_days: Optional[int] = None

    def contains(self, days_overdue: int) -> bool:
        if self.lower_days is not None and days_overdue < self.lower_days:
            return False
        if self.upper_days is not None and days_overdue >= self.upper_days:
            return False
        return True


DEFAULT_BUCKETS: tuple = (
    AgingBucket(label="Current", lower_days=None, upper_days=1),
    AgingBucket(label="1-30", lower_days=1, upper_days=31),
    AgingBucket(label="31-60", lower_days=31, upper_days=61),
    AgingBucket(label="61-90", lower_days=61, upper_days=91),
    AgingBucket(label="90+", lower_days=91, upper_days=None),
)


class BucketTotal(BaseModel):
    label: str
    amount_cents: int = 0
    count: int = 0
    percentage: float = 0.0


class CounterpartyAging(BaseModel):
    counterparty_id: str
    amounts: Dict[str, int]
    total_cents: int = 0


class AgingReport(BaseModel):
    as_of: date
    buckets: List[BucketTotal]
    by_counterparty: List[CounterpartyAging]
    total_cents: int
    assignments: Dict[str, str]  # invoice id -> bucket label
