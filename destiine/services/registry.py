"""
Service wiring

Everything the booking API needs, constructed once at process start and
kept on app.state.services. Collaborators can be passed in explicitly
(tests pass in-memory ones); anything omitted is built from settings.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from destiine.core.database import get_db_session
from destiine.core.utils import utcnow
from destiine.services.accounts import AccountRepository, SqlAccountRepository
from destiine.services.booking_service import (
    BookingOrchestrator,
    FlightBookingOrchestrator,
    HotelBookingOrchestrator,
)
from destiine.services.catalog import OfferRepository, build_offer_repository
from destiine.services.contention import ContentionChecker
from destiine.services.email_provider import MailConfig, build_mail_config
from destiine.services.hold_store import HoldStore, InMemoryHoldStore, build_hold_store
from destiine.services.hold_sweeper import HoldSweeper
from destiine.services.payments import PaymentsConfig, build_payments_config

logger = logging.getLogger(__name__)


@dataclass
class BookingServices:
    store: HoldStore
    checker: ContentionChecker
    catalog: OfferRepository
    payments: PaymentsConfig
    mailer: MailConfig
    accounts: AccountRepository
    flights: FlightBookingOrchestrator
    hotels: HotelBookingOrchestrator
    bookings: BookingOrchestrator
    sweeper: HoldSweeper
    clock: Callable[[], datetime] = utcnow

    def orchestrator_for(self, kind: Optional[str]) -> BookingOrchestrator:
        if kind == self.flights.kind:
            return self.flights
        if kind == self.hotels.kind:
            return self.hotels
        return self.bookings

    async def close(self) -> None:
        await self.mailer.close()


async def build_services(
    settings,
    store: Optional[HoldStore] = None,
    catalog: Optional[OfferRepository] = None,
    payments: Optional[PaymentsConfig] = None,
    mailer: Optional[MailConfig] = None,
    accounts: Optional[AccountRepository] = None,
    clock: Callable[[], datetime] = utcnow,
) -> BookingServices:
    catalog = catalog or build_offer_repository(settings)
    store = store or build_hold_store(settings)
    if isinstance(store, InMemoryHoldStore):
        added = store.add_units(await catalog.inventory_units())
        logger.info(f"Seeded {added} inventory units from the catalog")

    checker = ContentionChecker(store, clock=clock)
    payments = payments or build_payments_config(settings)
    mailer = mailer or build_mail_config(settings)
    accounts = accounts or SqlAccountRepository(get_db_session)

    collaborators = dict(
        store=store,
        checker=checker,
        catalog=catalog,
        payments=payments,
        mailer=mailer,
        accounts=accounts,
        hold_ttl_minutes=settings.HOLD_TTL_MINUTES,
        clock=clock,
    )
    return BookingServices(
        store=store,
        checker=checker,
        catalog=catalog,
        payments=payments,
        mailer=mailer,
        accounts=accounts,
        flights=FlightBookingOrchestrator(**collaborators),
        hotels=HotelBookingOrchestrator(**collaborators),
        bookings=BookingOrchestrator(**collaborators),
        sweeper=HoldSweeper(
            store,
            interval_seconds=settings.HOLD_SWEEP_INTERVAL_SECONDS,
            batch_size=settings.HOLD_SWEEP_BATCH_SIZE,
            clock=clock,
        ),
        clock=clock,
    )
