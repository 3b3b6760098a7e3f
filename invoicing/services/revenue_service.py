from __future__ import annotations
import logging
import os
from collections import OrderedDict
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from invoicing import config
from invoicing.models.revenue import (
    ClientRevenue,
    ClientRevenueReport,
    MonthlyRevenue,
    MonthlyRevenueReport,
    RevenueEntry,
)
from invoicing.models.settings import CurrencySettings
from invoicing.services.currency import DEFAULT_CONVERSION_RATE, round_money
from invoicing.storage.json_repo import JsonRepository

logger = logging.getLogger(__name__)


def _in_currency(amount_inr: float, amount_usd: float, preferred: str, rate: float) -> float:
    if preferred == "USD":
        return amount_usd + amount_inr / rate
    return amount_inr + amount_usd * rate


def _in_period(entries: Iterable[RevenueEntry], start: Optional[date], end: Optional[date]) -> List[RevenueEntry]:
    if not start or not end:
        raise ValueError("Start and end dates are required")
    return [e for e in entries if start <= e.payment_date <= end]


def monthly_revenue(
    entries: Iterable[RevenueEntry],
    start: date,
    end: date,
    preferred_currency: str = "INR",
    conversion_rate: float = DEFAULT_CONVERSION_RATE,
) -> MonthlyRevenueReport:
    """Revenue per YYYY-MM (newest first) with totals in the preferred currency."""
    rate = conversion_rate or DEFAULT_CONVERSION_RATE
    months: Dict[str, MonthlyRevenue] = {}
    for e in _in_period(entries, start, end):
        period = f"{e.payment_date.year:04d}-{e.payment_date.month:02d}"
        m = months.setdefault(period, MonthlyRevenue(period=period))
        m.amount_inr += e.amount_inr or 0.0
        m.amount_usd += e.amount_usd or 0.0

    total_inr = total_usd = 0.0
    for m in months.values():
        total_inr += m.amount_inr
        total_usd += m.amount_usd
        m.total = round_money(_in_currency(m.amount_inr, m.amount_usd, preferred_currency, rate))
        m.amount_inr = round_money(m.amount_inr)
        m.amount_usd = round_money(m.amount_usd)

    return MonthlyRevenueReport(
        total=round_money(_in_currency(total_inr, total_usd, preferred_currency, rate)),
        inr=round_money(total_inr),
        usd=round_money(total_usd),
        history=sorted(months.values(), key=lambda m: m.period, reverse=True),
    )


def revenue_by_client(
    entries: Iterable[RevenueEntry],
    start: date,
    end: date,
    preferred_currency: str = "INR",
    conversion_rate: float = DEFAULT_CONVERSION_RATE,
    client_names: Optional[Mapping[str, str]] = None,
) -> ClientRevenueReport:
    """Per-client revenue, largest first, with each client's share of the total (1 decimal)."""
    rate = conversion_rate or DEFAULT_CONVERSION_RATE
    names = client_names or {}
    clients: "OrderedDict[Optional[str], ClientRevenue]" = OrderedDict()
    for e in _in_period(entries, start, end):
        c = clients.setdefault(
            e.client_id, ClientRevenue(client_id=e.client_id, client_name=names.get(e.client_id or ""))
        )
        c.amount_inr += e.amount_inr or 0.0
        c.amount_usd += e.amount_usd or 0.0

    for c in clients.values():
        c.total = round_money(_in_currency(c.amount_inr, c.amount_usd, preferred_currency, rate))
        c.amount_inr = round_money(c.amount_inr)
        c.amount_usd = round_money(c.amount_usd)

    total = sum(c.total for c in clients.values())
    for c in clients.values():
        c.percentage = round(c.total / total * 100, 1) if total > 0 else 0.0

    return ClientRevenueReport(
        data=sorted(clients.values(), key=lambda c: c.total, reverse=True),
        total=round_money(total),
    )


class RevenueService:
    def __init__(self, data_dir: Optional[os.PathLike | str] = None):
        base = Path(data_dir) if data_dir else config.data_dir()
        self.repo = JsonRepository(base / "revenue_entries.json", entity_name="revenue_entry")

    def add_entry(self, e: RevenueEntry) -> RevenueEntry:
        self.repo.add(e.model_dump(mode="json"))
        return e

    def list_entries(self, user_id: Optional[str] = None) -> List[RevenueEntry]:
        out: List[RevenueEntry] = []
        for d in self.repo.list_all():
            if user_id is not None and d.get("user_id") != user_id:
                continue
            try:
                out.append(RevenueEntry(**d))
            except ValidationError:
                logger.warning("Skipping invalid revenue entry %s", d.get("id"))
        return out

    def monthly(
        self, user_id: str, start: date, end: date, settings: Optional[CurrencySettings] = None
    ) -> MonthlyRevenueReport:
        s = settings or config.currency_settings()
        return monthly_revenue(self.list_entries(user_id), start, end, s.preferred_currency, s.usd_to_inr_rate)

    def by_client(
        self,
        user_id: str,
        start: date,
        end: date,
        settings: Optional[CurrencySettings] = None,
        client_names: Optional[Mapping[str, str]] = None,
    ) -> ClientRevenueReport:
        s = settings or config.currency_settings()
        return revenue_by_client(
            self.list_entries(user_id), start, end, s.preferred_currency, s.usd_to_inr_rate, client_names
        )
