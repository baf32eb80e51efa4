# src/PACE/api/deps.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from starlette.requests import Request

from PACE.core.config import Settings, settings as default_settings
from PACE.services.attendance import AttendanceCounter
from PACE.services.catalog import MilestoneCatalog
from PACE.services.groups import GroupService
from PACE.services.ledger import ProgressLedger
from PACE.services.notifications import MessagingGateway, Notifier, SmsGateway
from PACE.services.people import PeopleService
from PACE.services.reconciliation import Reconciler


@dataclass
class Services:
    """One wired set of engine components per process (the catalog cache lives here)."""
    catalog: MilestoneCatalog
    notifier: Notifier
    ledger: ProgressLedger
    counter: AttendanceCounter
    reconciler: Reconciler
    people: PeopleService
    groups: GroupService


def build_services(cfg: Settings | None = None, gateway: Optional[MessagingGateway] = None) -> Services:
    cfg = cfg or default_settings
    catalog = MilestoneCatalog(ttl_seconds=cfg.CATALOG_CACHE_SECONDS)
    notifier = Notifier(gateway if gateway is not None else SmsGateway.from_settings(cfg))
    ledger = ProgressLedger(catalog, notifier)
    counter = AttendanceCounter(
        ledger,
        catalog,
        goal=cfg.ATTENDANCE_GOAL,
        notifier=notifier,
        service_weekday=cfg.ATTENDANCE_SERVICE_WEEKDAY,
        max_backdate_days=cfg.ATTENDANCE_MAX_BACKDATE_DAYS,
    )
    return Services(
        catalog=catalog,
        notifier=notifier,
        ledger=ledger,
        counter=counter,
        reconciler=Reconciler(ledger, counter, catalog, batch_size=cfg.RECONCILE_BATCH_SIZE),
        people=PeopleService(ledger, catalog, notifier),
        groups=GroupService(),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
