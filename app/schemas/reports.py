from pydantic import BaseModel


class StatusBucket(BaseModel):
    status: str
    status_key: str
    count: int


class BranchBucket(BaseModel):
    branch: str
    count: int


class ProductBucket(BaseModel):
    product: str
    count: int


class MonthBucket(BaseModel):
    month: str
    count: int


class DashboardReport(BaseModel):
    today: int
    this_month: int
    last_month: int
    this_year: int
    monthly_trend: float
    status_distribution: list[StatusBucket]
    branch_distribution: list[BranchBucket]
    product_distribution: list[ProductBucket]
    most_requested_product: ProductBucket | None = None
    monthly_data: list[MonthBucket]
