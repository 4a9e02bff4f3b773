# homejiak/services/analytics_service.py

"""
Merchant analytics: event tracking, dashboard statistics and revenue charts.

Order rows are loaded into a pandas DataFrame and aggregated in memory;
timestamps are bucketed in Singapore local time.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import pandas as pd
from sqlalchemy import func
from sqlalchemy.orm import Session

from homejiak.models import (
    AnalyticsEvent, Order, OrderItem, OrderStatus, Product, ProductView
)
from homejiak.exceptions import NotFoundError, ValidationError
from homejiak.utils.date_utils import date_bounds, singapore_day_bounds, to_singapore, utcnow

logger = logging.getLogger(__name__)

REVENUE_STATUSES = (OrderStatus.COMPLETED, OrderStatus.DELIVERED)
PRESET_DAYS = {'today': 0, '7days': 7, '30days': 30, '90days': 90}
RESAMPLE_RULES = {'day': 'D', 'week': 'W-MON', 'month': 'MS'}
TOP_PRODUCTS = 10
ORDER_COLUMNS = ['id', 'status', 'total', 'customer_id', 'customer_phone', 'created_at']


def resolve_date_range(preset: Optional[str] = None, date_from=None, date_to=None,
                       now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Turn a preset or explicit range into naive UTC bounds (end exclusive).

    Presets count whole Singapore days back from today; with nothing given the
    last 30 days are used.
    """
    now = now or utcnow()
    if preset and preset != 'custom':
        if preset not in PRESET_DAYS:
            raise ValidationError(f"Invalid date preset: {preset}")
        today = to_singapore(now).date()
        start, _ = singapore_day_bounds(today - timedelta(days=PRESET_DAYS[preset]))
        _, end = singapore_day_bounds(today)
        return start, end

    start, end = date_bounds(date_from, date_to)
    if end is None:
        _, end = singapore_day_bounds(to_singapore(now).date())
    if start is None:
        start = end - timedelta(days=30)
    if start >= end:
        raise ValidationError("date_from must be before date_to")
    return start, end


def _local_times(series: pd.Series) -> pd.Series:
    """Naive UTC timestamps to naive Singapore wall-clock timestamps."""
    return pd.to_datetime(series).dt.tz_localize('UTC').dt.tz_convert('Asia/Singapore').dt.tz_localize(None)


def _change(current: float, previous: float) -> Dict:
    if previous > 0:
        change = (current - previous) / previous * 100
    else:
        change = 100.0 if current > 0 else 0.0
    return {'value': current, 'change': round(change, 2), 'trend': 'up' if change >= 0 else 'down'}


class AnalyticsService:
    """Service for merchant analytics."""

    def __init__(self, session: Session):
        """Initialize the analytics service.

        Args:
            session: Database session
        """
        self.session = session

    def track_event(self, merchant_id: Optional[str], event: str, data: Optional[Dict] = None,
                    session_id: Optional[str] = None) -> AnalyticsEvent:
        """Record an analytics event.

        Args:
            merchant_id: Merchant the event belongs to
            event: Event name, e.g. ``storefront_view`` or ``add_to_cart``
            data: Event properties
            session_id: Anonymous browser session

        Returns:
            Stored event
        """
        if not event:
            raise ValidationError("Event name is required")
        record = AnalyticsEvent(merchant_id=merchant_id, event=event, data=data or {}, session_id=session_id)
        self.session.add(record)
        self.session.commit()
        return record

    def track_product_view(self, product_id: str, customer_id: Optional[str] = None,
                           session_id: Optional[str] = None) -> ProductView:
        product = self.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")

        view = ProductView(
            product_id=product.id,
            merchant_id=product.merchant_id,
            customer_id=customer_id,
            session_id=session_id,
        )
        product.view_count = (product.view_count or 0) + 1
        self.session.add(view)
        self.session.commit()
        return view

    def _orders_frame(self, merchant_id: str, start: datetime, end: datetime) -> pd.DataFrame:
        rows = self.session.query(
            Order.id, Order.status, Order.total, Order.customer_id, Order.customer_phone, Order.created_at
        ).filter(
            Order.merchant_id == merchant_id,
            Order.created_at >= start,
            Order.created_at < end,
        ).all()

        frame = pd.DataFrame([tuple(row) for row in rows], columns=ORDER_COLUMNS)
        if frame.empty:
            return frame
        frame['status'] = frame['status'].map(lambda s: s.value)
        frame['total'] = frame['total'].astype(float)
        frame['local_time'] = _local_times(frame['created_at'])
        # Guest orders are identified by phone
        frame['customer'] = frame['customer_id'].fillna(frame['customer_phone'])
        return frame

    def _revenue_frame(self, frame: pd.DataFrame) -> pd.DataFrame:
        if frame.empty:
            return frame
        return frame[frame['status'].isin([s.value for s in REVENUE_STATUSES])]

    def _top_products(self, merchant_id: str, start: datetime, end: datetime) -> List[Dict]:
        rows = self.session.query(
            OrderItem.product_id, OrderItem.product_name, OrderItem.quantity, OrderItem.total
        ).join(Order).filter(
            Order.merchant_id == merchant_id,
            Order.status.in_(REVENUE_STATUSES),
            Order.created_at >= start,
            Order.created_at < end,
        ).all()
        if not rows:
            return []

        items = pd.DataFrame([tuple(r) for r in rows], columns=['product_id', 'name', 'quantity', 'revenue'])
        items['revenue'] = items['revenue'].astype(float)
        top = items.groupby('product_id') \
            .agg(name=('name', 'last'), quantity=('quantity', 'sum'), revenue=('revenue', 'sum')) \
            .sort_values('revenue', ascending=False) \
            .head(TOP_PRODUCTS)

        views = dict(
            self.session.query(ProductView.product_id, func.count(ProductView.id))
            .filter(
                ProductView.product_id.in_(list(top.index)),
                ProductView.created_at >= start,
                ProductView.created_at < end,
            )
            .group_by(ProductView.product_id)
            .all()
        )

        result = []
        for product_id, row in top.iterrows():
            view_count = int(views.get(product_id, 0))
            quantity = int(row['quantity'])
            result.append({
                'id': product_id,
                'name': row['name'],
                'quantity': quantity,
                'revenue': round(float(row['revenue']), 2),
                'views': view_count,
                'conversion_rate': round(quantity / view_count * 100, 2) if view_count else 0.0,
            })
        return result

    def get_dashboard_stats(self, merchant_id: str, date_from=None, date_to=None,
                            preset: Optional[str] = None, now: Optional[datetime] = None) -> Dict:
        """Headline analytics for a period, compared with the period before it.

        Args:
            merchant_id: Merchant ID
            date_from: Start of a custom range
            date_to: End of a custom range
            preset: today, 7days, 30days or 90days
            now: Reference time (defaults to now)

        Returns:
            Dictionary with revenue, orders, average order value, customers,
            repeat customer rate, orders by status, top products and peak hours
        """
        start, end = resolve_date_range(preset, date_from, date_to, now)
        previous_start = start - (end - start)

        frame = self._orders_frame(merchant_id, start, end)
        previous = self._orders_frame(merchant_id, previous_start, start)

        paid = self._revenue_frame(frame)
        previous_paid = self._revenue_frame(previous)
        revenue = round(float(paid['total'].sum()), 2) if not paid.empty else 0.0
        previous_revenue = round(float(previous_paid['total'].sum()), 2) if not previous_paid.empty else 0.0
        average = round(revenue / len(paid), 2) if len(paid) else 0.0

        if frame.empty:
            by_status, customers, repeat_rate = {}, 0, 0.0
            hourly = [0] * 24
        else:
            by_status = {status: int(count) for status, count in frame['status'].value_counts().items()}
            per_customer = frame['customer'].dropna().value_counts()
            customers = int(len(per_customer))
            repeat_rate = round(float((per_customer > 1).sum()) / customers * 100, 2) if customers else 0.0
            hourly = frame['local_time'].dt.hour.value_counts().reindex(range(24), fill_value=0).tolist()

        peak_hours = [h for h in sorted(range(24), key=lambda h: (-hourly[h], h)) if hourly[h]][:3]

        return {
            'period': {'from': start.isoformat(), 'to': end.isoformat()},
            'revenue': _change(revenue, previous_revenue),
            'orders': _change(len(frame), len(previous)),
            'average_order_value': average,
            'customers': customers,
            'repeat_customer_rate': repeat_rate,
            'orders_by_status': by_status,
            'top_products': self._top_products(merchant_id, start, end),
            'hourly_distribution': [{'hour': h, 'orders': int(hourly[h])} for h in range(24)],
            'peak_hours': peak_hours,
        }

    def get_revenue_chart(self, merchant_id: str, period: str = 'day', date_from=None, date_to=None,
                          preset: Optional[str] = None, now: Optional[datetime] = None) -> List[Dict]:
        """Revenue per day, week (starting Monday) or month, with empty buckets as zero.

        Returns:
            List of ``{"date", "revenue", "orders"}`` in chronological order
        """
        if period not in RESAMPLE_RULES:
            raise ValidationError(f"Invalid period: {period}. Use day, week or month")

        start, end = resolve_date_range(preset, date_from, date_to, now)
        paid = self._revenue_frame(self._orders_frame(merchant_id, start, end))

        rule = RESAMPLE_RULES[period]
        first = pd.Timestamp(to_singapore(start).replace(tzinfo=None)).normalize()
        last = pd.Timestamp(to_singapore(end - timedelta(microseconds=1)).replace(tzinfo=None)).normalize()
        if period == 'week':
            first = first - pd.Timedelta(days=first.weekday())
        elif period == 'month':
            first = first.replace(day=1)
        buckets = pd.date_range(first, last, freq=rule)

        if paid.empty:
            revenue = pd.Series(0.0, index=buckets)
            counts = pd.Series(0, index=buckets)
        else:
            series = paid.set_index('local_time')['total'].sort_index()
            resampled = series.resample(rule, label='left', closed='left')
            revenue = resampled.sum().reindex(buckets, fill_value=0.0)
            counts = resampled.count().reindex(buckets, fill_value=0)

        fmt = '%Y-%m' if period == 'month' else '%Y-%m-%d'
        return [
            {'date': ts.strftime(fmt), 'revenue': round(float(revenue[ts]), 2), 'orders': int(counts[ts])}
            for ts in buckets
        ]
