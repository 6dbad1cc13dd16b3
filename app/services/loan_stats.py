from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone

from sqlalchemy import func, select, true
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from app.core.permissions import UNRESTRICTED_READ_ROLES
from app.models.loan_application import LoanApplication
from app.schemas.loan import LoanStatsResponse
from app.schemas.reports import (
    BranchBucket,
    DashboardReport,
    MonthBucket,
    ProductBucket,
    StatusBucket,
)
from app.services.loan_details import LoanDetails
from app.services.loan_visibility import Viewer, branch_filter


STATUS_LABELS = {
    "pending": "მოლოდინში",
    "in_progress": "მუშავდება",
    "approved": "დამტკიცებული",
    "rejected": "უარყოფილი",
    "cancelled": "გაუქმებული",
}
MONTH_LABELS = ("იან", "თებ", "მარ", "აპრ", "მაი", "ივნ", "ივლ", "აგვ", "სექ", "ოქტ", "ნოე", "დეკ")
OTHER_PRODUCT = "სხვა"


def local_now() -> datetime:
    return datetime.now().astimezone()


def _month_start(now: datetime, offset: int = 0) -> datetime:
    """First instant of the month ``offset`` months away from ``now`` (calendar-local)."""
    index = now.year * 12 + (now.month - 1) + offset
    return now.replace(year=index // 12, month=index % 12 + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


def _utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


async def _count(db: AsyncSession, *conditions: ColumnElement[bool]) -> int:
    stmt = select(func.count(LoanApplication.id)).where(*conditions)
    return int((await db.execute(stmt)).scalar_one() or 0)


async def loan_stats(db: AsyncSession, viewer: Viewer, now: datetime | None = None) -> LoanStatsResponse:
    now = now or local_now()
    scope = true() if viewer.role in UNRESTRICTED_READ_ROLES else branch_filter(viewer.branches)
    start_of_day = _utc(now.replace(hour=0, minute=0, second=0, microsecond=0))
    start_of_month = _utc(_month_start(now))

    return LoanStatsResponse(
        today=await _count(db, scope, LoanApplication.created_at >= start_of_day),
        month=await _count(db, scope, LoanApplication.created_at >= start_of_month),
        pending=await _count(db, scope, LoanApplication.status == "pending"),
        approved=await _count(db, scope, LoanApplication.status == "approved"),
        rejected=await _count(db, scope, LoanApplication.status == "rejected"),
    )


async def dashboard_report(
    db: AsyncSession,
    branch: str | None = None,
    now: datetime | None = None,
) -> DashboardReport:
    now = now or local_now()
    all_branches = not branch or branch.lower() == "all"
    scope = true() if all_branches else LoanApplication.branch == branch

    start_of_day = _utc(now.replace(hour=0, minute=0, second=0, microsecond=0))
    start_of_month = _utc(_month_start(now))
    start_of_last_month = _utc(_month_start(now, -1))
    start_of_year = _utc(now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0))
    in_year = LoanApplication.created_at >= start_of_year

    today = await _count(db, scope, LoanApplication.created_at >= start_of_day)
    this_month = await _count(db, scope, LoanApplication.created_at >= start_of_month)
    last_month = await _count(
        db,
        scope,
        LoanApplication.created_at >= start_of_last_month,
        LoanApplication.created_at < start_of_month,
    )
    this_year = await _count(db, scope, in_year)

    if last_month > 0:
        monthly_trend = (this_month - last_month) / last_month * 100
    else:
        monthly_trend = 100.0 if this_month > 0 else 0.0

    status_rows = (
        await db.execute(
            select(LoanApplication.status, func.count(LoanApplication.id))
            .where(scope, in_year)
            .group_by(LoanApplication.status)
        )
    ).all()
    status_distribution = [
        StatusBucket(status=STATUS_LABELS.get(status, status), status_key=status, count=int(count))
        for status, count in status_rows
    ]

    branch_distribution: list[BranchBucket] = []
    if all_branches:
        count_col = func.count(LoanApplication.id)
        branch_rows = (
            await db.execute(
                select(LoanApplication.branch, count_col)
                .where(in_year)
                .group_by(LoanApplication.branch)
                .order_by(count_col.desc(), LoanApplication.branch)
            )
        ).all()
        branch_distribution = [BranchBucket(branch=name, count=int(count)) for name, count in branch_rows]

    products: Counter[str] = Counter()
    detail_rows = (await db.execute(select(LoanApplication.details).where(scope, in_year))).scalars()
    for raw in detail_rows:
        products[LoanDetails.from_raw(raw).product or OTHER_PRODUCT] += 1
    product_distribution = [
        ProductBucket(product=name, count=count)
        for name, count in sorted(products.items(), key=lambda item: (-item[1], item[0]))
    ]

    monthly_data: list[MonthBucket] = []
    for offset in range(-11, 1):
        month_start = _month_start(now, offset)
        next_start = _month_start(now, offset + 1)
        count = await _count(
            db,
            scope,
            LoanApplication.created_at >= _utc(month_start),
            LoanApplication.created_at < _utc(next_start),
        )
        monthly_data.append(MonthBucket(month=MONTH_LABELS[month_start.month - 1], count=count))

    return DashboardReport(
        today=today,
        this_month=this_month,
        last_month=last_month,
        this_year=this_year,
        monthly_trend=round(monthly_trend, 2),
        status_distribution=status_distribution,
        branch_distribution=branch_distribution,
        product_distribution=product_distribution,
        most_requested_product=product_distribution[0] if product_distribution else None,
        monthly_data=monthly_data,
    )
