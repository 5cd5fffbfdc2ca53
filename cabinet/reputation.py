"""Minister reputation: rating aggregation and the status state machine.

``apply_rating`` and ``revise_rating`` are pure. ``RatingService`` is the only
writer of reputation state and only accepts ratings for finished briefs, so
it never races with a running deliberation.
"""

import logging
from dataclasses import dataclass, replace

from cabinet.models import BriefStatus, MinisterStatus, Rating, ReputationState, StatusChange
from cabinet.store import DeliberationStore
from config.config_loader import ReputationConfig

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = ReputationConfig()


def _evaluate(
    minister_id: str,
    state: ReputationState,
    thresholds: ReputationConfig,
) -> tuple[ReputationState, StatusChange | None]:
    """Apply the first matching status rule. Only runs once enough sessions are rated."""
    if state.rating_count < thresholds.min_sessions:
        return state, None

    average = state.average
    status = state.status

    if state.consecutive_low >= thresholds.consecutive_low and status != MinisterStatus.SUSPENDED:
        new_state = replace(state, status=MinisterStatus.SUSPENDED)
        return new_state, StatusChange(
            minister_id=minister_id,
            event="suspended",
            old_status=status,
            new_status=MinisterStatus.SUSPENDED,
            reason=f"{state.consecutive_low} consecutive low ratings",
        )

    if average < thresholds.warning_avg and status == MinisterStatus.ACTIVE:
        warnings = state.warnings + 1
        if warnings >= thresholds.probation_warnings:
            new_state = replace(state, warnings=warnings, status=MinisterStatus.PROBATION)
            return new_state, StatusChange(
                minister_id=minister_id,
                event="probation",
                old_status=status,
                new_status=MinisterStatus.PROBATION,
                reason=f"Average rating {average:.1f} with {warnings} warnings",
            )
        return replace(state, warnings=warnings), StatusChange(
            minister_id=minister_id,
            event="warning",
            old_status=status,
            new_status=status,
            reason=f"Warning issued - average rating {average:.1f}",
        )

    if status == MinisterStatus.PROBATION and average < thresholds.suspension_avg:
        return replace(state, status=MinisterStatus.SUSPENDED), StatusChange(
            minister_id=minister_id,
            event="suspended",
            old_status=status,
            new_status=MinisterStatus.SUSPENDED,
            reason=f"Average {average:.1f} while on probation",
        )

    if status == MinisterStatus.PROBATION and average >= thresholds.warning_avg:
        new_state = replace(state, status=MinisterStatus.ACTIVE, warnings=max(0, state.warnings - 1))
        return new_state, StatusChange(
            minister_id=minister_id,
            event="active",
            old_status=status,
            new_status=MinisterStatus.ACTIVE,
            reason="Performance improved",
        )

    return state, None


def _check_rating(rating: int) -> None:
    if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
        raise ValueError(f"Rating must be an integer from 1 to 5, got {rating!r}")


def apply_rating(
    state: ReputationState,
    rating: int,
    thresholds: ReputationConfig = DEFAULT_THRESHOLDS,
    minister_id: str = "",
) -> tuple[ReputationState, StatusChange | None]:
    """Fold one new rating into the state and advance the status machine."""
    _check_rating(rating)
    streak = state.consecutive_low + 1 if rating <= thresholds.low_rating else 0
    updated = replace(
        state,
        rating_sum=state.rating_sum + rating,
        rating_count=state.rating_count + 1,
        consecutive_low=streak,
    )
    return _evaluate(minister_id, updated, thresholds)


def revise_rating(
    state: ReputationState,
    old: int,
    new: int,
    thresholds: ReputationConfig = DEFAULT_THRESHOLDS,
    minister_id: str = "",
) -> tuple[ReputationState, StatusChange | None]:
    """Replace a previously applied rating for the same brief. Count is unchanged."""
    _check_rating(new)
    if old == new:
        return state, None

    old_low = old <= thresholds.low_rating
    new_low = new <= thresholds.low_rating
    if new_low and not old_low:
        streak = state.consecutive_low + 1
    elif not new_low:
        streak = 0
    else:
        streak = state.consecutive_low

    updated = replace(state, rating_sum=state.rating_sum - old + new, consecutive_low=streak)
    return _evaluate(minister_id, updated, thresholds)


@dataclass
class RatingOutcome:
    minister_id: str
    name: str
    average: float
    status: MinisterStatus
    warnings: int
    sessions: int
    change: StatusChange | None = None


class RatingService:
    """Records end-of-session ratings and drives reputation transitions."""

    def __init__(self, store: DeliberationStore, thresholds: ReputationConfig = DEFAULT_THRESHOLDS) -> None:
        self._store = store
        self._thresholds = thresholds

    def submit(self, brief_id: str, ratings: list[Rating]) -> list[RatingOutcome]:
        """Upsert each rating and update the rated minister's reputation.

        Raises:
            KeyError: Unknown brief.
            ValueError: Brief still running, or a rating outside 1..5.
        """
        brief = self._store.get_brief(brief_id)
        if brief is None:
            raise KeyError(brief_id)
        if brief.status != BriefStatus.DONE:
            raise ValueError(f"Brief {brief_id} is {brief.status.value}; ratings open once it is done")
        for r in ratings:
            _check_rating(r.rating)

        outcomes: list[RatingOutcome] = []
        for r in ratings:
            minister = self._store.get_minister(r.minister_id)
            if minister is None:
                logger.warning("Rating for unknown minister %s skipped", r.minister_id)
                continue

            previous = self._store.upsert_rating(replace(r, brief_id=brief_id))
            if previous is None:
                state, change = apply_rating(minister.reputation, r.rating, self._thresholds, minister.id)
            else:
                state, change = revise_rating(
                    minister.reputation, previous.rating, r.rating, self._thresholds, minister.id
                )

            self._store.update_reputation(minister.id, state)
            if change is not None:
                self._store.log_status_change(change)
                logger.info("Minister %s: %s (%s)", minister.name, change.event, change.reason)

            outcomes.append(
                RatingOutcome(
                    minister_id=minister.id,
                    name=minister.name,
                    average=round(state.average, 2),
                    status=state.status,
                    warnings=state.warnings,
                    sessions=state.rating_count,
                    change=change,
                )
            )
        return outcomes
