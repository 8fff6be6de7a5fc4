"""
Reports API Router.

Store-wide bestsellers, trending, aging and new-arrival views.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from collection_resort.routers.dependencies import get_report_service, get_shop_context
from collection_resort.services.reports import ReportKind, ReportParams, ReportService

router = APIRouter(dependencies=[Depends(get_shop_context)])


class ReportRowResponse(BaseModel):
    product_id: str
    title: str
    vendor: Optional[str]
    units_sold: int
    revenue: float
    inventory: int
    created_at: Optional[datetime]
    age_days: Optional[int] = None
    is_new: bool = False
    trend: Optional[str] = None
    previous_units: Optional[int] = None


class ReportPageResponse(BaseModel):
    kind: str
    rows: List[ReportRowResponse]
    page: int
    page_size: int
    total: int
    has_next: bool
    has_previous: bool
    truncated: bool


@router.get("/{kind}", response_model=ReportPageResponse)
async def get_report(
    kind: ReportKind,
    window_days: Optional[int] = Query(None, ge=1, le=365),
    days_ago: int = Query(0, ge=0, le=1),
    search: Optional[str] = Query(None),
    exclude_out_of_stock: bool = Query(False),
    min_age_days: int = Query(30, ge=0),
    max_sales: int = Query(10, ge=0),
    require_inventory: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=250),
    service: ReportService = Depends(get_report_service),
):
    params = ReportParams(
        kind=kind,
        window_days=window_days,
        days_ago=days_ago,
        search=search,
        exclude_out_of_stock=exclude_out_of_stock,
        min_age_days=min_age_days,
        max_sales=max_sales,
        require_inventory=require_inventory,
        page=page,
        page_size=page_size,
    )
    report = await service.compute_report(params)
    return ReportPageResponse(
        kind=report.kind.value,
        rows=[
            ReportRowResponse(**{**row.to_dict(), "revenue": float(row.revenue), "created_at": row.created_at})
            for row in report.rows
        ],
        page=report.page,
        page_size=report.page_size,
        total=report.total,
        has_next=report.has_next,
        has_previous=report.has_previous,
        truncated=report.truncated,
    )
