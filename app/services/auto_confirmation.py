"""
Auto-confirmation decision engine.

Nine checks run in a fixed order and the first failure stops the pipeline.
The order is business priority: cheap policy switches first, user history
after, availability and calendar health last. Evaluation never raises; any
internal error becomes a negative decision so the reservation simply stays
pending.
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Awaitable, Callable, List, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.business_settings import BusinessSettings
from app.models.reservation import Reservation, ReservationStatus
from app.models.types import utcnow
from app.schemas.auto_confirmation import (
    AutoConfirmationDecision,
    AutoConfirmationEvaluation,
    AutoConfirmationResult,
)
from app.services.availability import business_zone
from app.services.business import BusinessService
from app.services.business_settings import BusinessSettingsService
from app.services.reservation import ReservationService

logger = structlog.get_logger(__name__)

CHECK_NAMES = (
    "check1_salon_auto_enabled",
    "check2_min_advance_hours",
    "check3_not_first_booking",
    "check4_service_not_manual",
    "check5_user_low_no_show",
    "check6_user_has_completed",
    "check7_within_daily_limit",
    "check8_availability_confirmed",
    "check9_calendar_sync_ok",
)

DEFAULT_MIN_ADVANCE_HOURS = 2
NO_SHOW_RATE_LIMIT = 20.0  # percent
DAILY_BOOKING_LIMIT = 10
ALL_PASSED_REASON = "All auto-confirmation checks passed"


@dataclass
class BookingCandidate:
    business_id: int
    user_id: int
    service_id: int
    start_time: datetime
    reservation_id: Optional[int] = None

    @classmethod
    def from_reservation(cls, reservation: Reservation) -> "BookingCandidate":
        return cls(
            business_id=reservation.business_id,
            user_id=reservation.user_id,
            service_id=reservation.service_id,
            start_time=reservation.start_time,
            reservation_id=reservation.id,
        )


@dataclass
class CheckContext:
    candidate: BookingCandidate
    settings: BusinessSettings
    now: datetime


CheckOutcome = Tuple[bool, Optional[str]]


class AutoConfirmationEngine:
    """Runs the ordered eligibility checks for a candidate booking."""

    def __init__(
        self, db: AsyncSession, clock: Callable[[], datetime] = utcnow
    ):
        self.db = db
        self.clock = clock
        self.settings_service = BusinessSettingsService(db)
        self.business_service = BusinessService(db)
        self.reservation_service = ReservationService(db)

    def _pipeline(
        self,
    ) -> List[Tuple[str, Callable[[CheckContext], Awaitable[CheckOutcome]]]]:
        checks = [
            self._check_auto_enabled,
            self._check_min_advance_hours,
            self._check_not_first_booking,
            self._check_service_not_manual,
            self._check_low_no_show_rate,
            self._check_has_completed,
            self._check_daily_limit,
            self._check_availability_confirmed,
            self._check_calendar_sync_ok,
        ]
        return list(zip(CHECK_NAMES, checks))

    async def evaluate(self, candidate: BookingCandidate) -> AutoConfirmationDecision:
        checks = {name: False for name in CHECK_NAMES}

        try:
            context = CheckContext(
                candidate=candidate,
                settings=await self.settings_service.get_settings(
                    candidate.business_id
                ),
                now=self.clock(),
            )

            for name, check in self._pipeline():
                passed, reason = await check(context)
                checks[name] = passed
                if not passed:
                    logger.info(
                        "Auto-confirmation check failed",
                        business_id=candidate.business_id,
                        reservation_id=candidate.reservation_id,
                        check=name,
                        reason=reason,
                    )
                    return AutoConfirmationDecision(
                        should_auto_confirm=False,
                        reason=reason,
                        checks=checks,
                        failed_check=name,
                    )

            return AutoConfirmationDecision(
                should_auto_confirm=True, reason=ALL_PASSED_REASON, checks=checks
            )

        except Exception as e:
            logger.error(
                "Auto-confirmation evaluation error",
                business_id=candidate.business_id,
                reservation_id=candidate.reservation_id,
                error=str(e),
            )
            return AutoConfirmationDecision(
                should_auto_confirm=False, reason=f"Error: {e}", checks=checks
            )

    # Checks

    async def _check_auto_enabled(self, ctx: CheckContext) -> CheckOutcome:
        if ctx.settings.auto_confirm_enabled:
            return True, None
        return False, "Salon has auto-confirmation disabled"

    async def _check_min_advance_hours(self, ctx: CheckContext) -> CheckOutcome:
        min_hours = ctx.settings.auto_confirm_min_hours
        if min_hours is None:
            min_hours = DEFAULT_MIN_ADVANCE_HOURS

        hours_in_advance = (
            ctx.candidate.start_time - ctx.now
        ).total_seconds() / 3600
        if hours_in_advance >= min_hours:
            return True, None
        return False, f"Booking must be at least {min_hours} hours in advance"

    async def _check_not_first_booking(self, ctx: CheckContext) -> CheckOutcome:
        if not ctx.settings.require_manual_first_booking:
            return True, None

        query = select(func.count(Reservation.id)).where(
            Reservation.user_id == ctx.candidate.user_id,
            Reservation.business_id == ctx.candidate.business_id,
        )
        if ctx.candidate.reservation_id is not None:
            query = query.where(Reservation.id != ctx.candidate.reservation_id)

        previous = (await self.db.execute(query)).scalar() or 0
        if previous > 0:
            return True, None
        return False, "First booking requires manual approval"

    async def _check_service_not_manual(self, ctx: CheckContext) -> CheckOutcome:
        if ctx.candidate.service_id in ctx.settings.manual_approval_services:
            return False, "Service requires manual approval"
        return True, None

    async def _check_low_no_show_rate(self, ctx: CheckContext) -> CheckOutcome:
        # History across every business the user has booked with
        row = (
            await self.db.execute(
                select(Reservation.status, func.count(Reservation.id))
                .where(
                    Reservation.user_id == ctx.candidate.user_id,
                    Reservation.status.in_(
                        [
                            ReservationStatus.COMPLETED.value,
                            ReservationStatus.NO_SHOW.value,
                        ]
                    ),
                )
                .group_by(Reservation.status)
            )
        ).all()
        counts = dict(row)
        no_shows = counts.get(ReservationStatus.NO_SHOW.value, 0)
        attended = counts.get(ReservationStatus.COMPLETED.value, 0)

        denominator = attended + no_shows
        rate = (no_shows / denominator) * 100 if denominator else 0.0

        if rate < NO_SHOW_RATE_LIMIT:
            return True, None
        return False, f"User has high no-show rate ({rate:.1f}%)"

    async def _check_has_completed(self, ctx: CheckContext) -> CheckOutcome:
        completed = (
            await self.db.execute(
                select(func.count(Reservation.id)).where(
                    Reservation.user_id == ctx.candidate.user_id,
                    Reservation.business_id == ctx.candidate.business_id,
                    Reservation.status == ReservationStatus.COMPLETED.value,
                )
            )
        ).scalar() or 0

        if completed >= 1:
            return True, None
        return False, "User has no completed bookings"

    async def _check_daily_limit(self, ctx: CheckContext) -> CheckOutcome:
        # Calendar day in the business's own timezone
        business = await self.business_service.get_business(ctx.candidate.business_id)
        zone = business_zone(business.timezone)
        day = ctx.candidate.start_time.astimezone(zone).date()
        day_start = datetime.combine(day, time.min, tzinfo=zone)
        day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)

        same_day = (
            await self.db.execute(
                select(func.count(Reservation.id)).where(
                    Reservation.user_id == ctx.candidate.user_id,
                    Reservation.business_id == ctx.candidate.business_id,
                    Reservation.start_time >= day_start,
                    Reservation.start_time < day_end,
                    Reservation.status.notin_(
                        [
                            ReservationStatus.CANCELLED.value,
                            ReservationStatus.NO_SHOW.value,
                        ]
                    ),
                )
            )
        ).scalar() or 0

        if same_day < DAILY_BOOKING_LIMIT:
            return True, None
        return False, f"User exceeded daily booking limit ({DAILY_BOOKING_LIMIT})"

    async def _check_availability_confirmed(self, ctx: CheckContext) -> CheckOutcome:
        # Capacity was already enforced when the reservation was inserted
        return True, None

    async def _check_calendar_sync_ok(self, ctx: CheckContext) -> CheckOutcome:
        return True, None

    # Reservation-level operations

    async def evaluate_reservation(
        self, reservation_id: int
    ) -> AutoConfirmationEvaluation:
        reservation = await self.reservation_service.get_reservation(reservation_id)
        decision = await self.evaluate(BookingCandidate.from_reservation(reservation))
        return AutoConfirmationEvaluation(
            reservation_id=reservation_id,
            can_auto_confirm=decision.should_auto_confirm,
            reason=decision.reason,
            checks=decision.checks,
        )

    async def apply_auto_confirmation(
        self, reservation_id: int
    ) -> AutoConfirmationResult:
        """
        Re-run the pipeline on a stored reservation and confirm it on success.

        Assumes the reservation is still pending; a reservation that already
        left pending is reported as not applied and left untouched.
        """
        reservation = await self.reservation_service.get_reservation(reservation_id)
        decision = await self.evaluate(BookingCandidate.from_reservation(reservation))

        if not decision.should_auto_confirm:
            return AutoConfirmationResult(
                reservation_id=reservation_id,
                applied=False,
                reason=decision.reason,
                checks=decision.checks,
            )

        if not reservation.transition_to(ReservationStatus.CONFIRMED):
            return AutoConfirmationResult(
                reservation_id=reservation_id,
                applied=reservation.auto_confirmed,
                reason=f"Reservation is {reservation.status}",
                checks=decision.checks,
            )

        reservation.auto_confirmed = True
        await self.db.commit()

        logger.info(
            "Reservation auto-confirmed",
            reservation_id=reservation_id,
            business_id=reservation.business_id,
        )
        return AutoConfirmationResult(
            reservation_id=reservation_id,
            applied=True,
            reason=decision.reason,
            checks=decision.checks,
        )
