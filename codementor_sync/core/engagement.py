"""EngagementTracker: weighted activity score with a one-shot threshold latch."""

from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from typing import Callable

from ..types import (
    EngagementAnalytics,
    EngagementConfig,
    EngagementEvent,
    Scheduler,
    SyncEventType,
    TimerHandle,
)
from .signals import Debouncer, PeriodicTimer, SignalSource

logger = logging.getLogger(__name__)

# Policy constants
MESSAGE_POINTS = 1.0
CODE_EXECUTION_POINTS = 2.0
SCROLL_POINTS = 0.5
INTERACTION_POINTS = 0.5
TIME_BONUS_POINTS = 0.5
COMPLETION_POINTS = 5.0

INTERACTION_SIGNALS = ("mousemove", "keydown", "click")
SCROLL_SIGNAL = "scroll"

FollowUpPolicy = Callable[[str], str]

PRACTICE_SESSION_TYPES = frozenset({"practice", "coding", "project", "exercise"})


def session_type_policy(session_type: str) -> str:
    """Practice-oriented sessions get a practice prompt, everything else a quiz."""
    return "practice" if session_type in PRACTICE_SESSION_TYPES else "quiz"


def coin_flip_policy(rng: random.Random | None = None) -> FollowUpPolicy:
    """Even-odds choice, independent of session type."""
    rng = rng or random.Random()

    def choose(session_type: str) -> str:
        return "quiz" if rng.random() > 0.5 else "practice"

    return choose


def always(activity: str) -> FollowUpPolicy:
    if activity not in ("quiz", "practice"):
        raise ValueError(f"Unknown follow-up activity: {activity}")
    return lambda session_type: activity


def policy_from_name(name: str) -> FollowUpPolicy:
    if name == "session_type":
        return session_type_policy
    if name == "coin_flip":
        return coin_flip_policy()
    return always(name)


class EngagementTracker:
    """Accumulate activity into a score and fire follow-ups once per session.

    States: idle -> tracking -> idle. ``is_threshold_reached`` is a latch
    independent of that state: once set, the score keeps growing but the
    threshold callbacks do not fire again until ``start_tracking`` or
    ``reset_tracking``.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        threshold: float | None = None,
        *,
        session_type: str = "lesson",
        on_threshold_reached: Callable[[], None] | None = None,
        on_quiz_trigger: Callable[[], None] | None = None,
        on_practice_trigger: Callable[[], None] | None = None,
        on_preference_poll: Callable[[], None] | None = None,
        follow_up_policy: FollowUpPolicy = session_type_policy,
        auto_trigger: bool | None = None,
        activity_source: SignalSource | None = None,
        sync=None,
        config: EngagementConfig | None = None,
    ) -> None:
        self.config = config or EngagementConfig()
        self.scheduler = scheduler
        self.threshold = self.config.threshold if threshold is None else threshold
        self.session_type = session_type
        self.on_threshold_reached = on_threshold_reached
        self.on_quiz_trigger = on_quiz_trigger
        self.on_practice_trigger = on_practice_trigger
        self.on_preference_poll = on_preference_poll
        self.follow_up_policy = follow_up_policy
        self.auto_trigger = self.config.auto_trigger if auto_trigger is None else auto_trigger
        self.activity_source = activity_source
        self.sync = sync

        self.score = 0.0
        self.is_threshold_reached = False
        self.is_tracking = False
        self.triggered_activity: str | None = None
        self.events: list[EngagementEvent] = []

        self._started_at = scheduler.now()
        self._active_since_tick = False
        self._interaction_debounce = Debouncer(
            scheduler, self.config.interaction_debounce_s, self.track_interaction
        )
        self._scroll_debounce = Debouncer(scheduler, self.config.scroll_debounce_s, self.track_scroll)
        self._time_timer = PeriodicTimer(
            scheduler, self.config.time_bonus_interval_s, self.track_time_engagement
        )
        self._listening_to: SignalSource | None = None
        self._poll_handle: TimerHandle | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_tracking(self) -> None:
        """Reset state and begin listening. Replaces any previous tracking internals."""
        self._teardown()
        self.score = 0.0
        self.is_threshold_reached = False
        self.events = []
        self.triggered_activity = None
        self._started_at = self.scheduler.now()
        self._active_since_tick = False
        self.is_tracking = True

        self._time_timer.start()
        if self.activity_source is not None:
            for name in INTERACTION_SIGNALS:
                self.activity_source.add_listener(name, self._on_raw_interaction)
            self.activity_source.add_listener(SCROLL_SIGNAL, self._on_raw_scroll)
            self._listening_to = self.activity_source
        logger.debug("Engagement tracking started (threshold=%s)", self.threshold)

    def stop_tracking(self) -> None:
        """Stop timers and listeners. The score is kept."""
        self.is_tracking = False
        self._teardown()

    def reset_tracking(self) -> None:
        self.score = 0.0
        self.is_threshold_reached = False
        self.events = []
        self.triggered_activity = None
        self._active_since_tick = False

    def _teardown(self) -> None:
        self._time_timer.stop()
        self._interaction_debounce.cancel()
        self._scroll_debounce.cancel()
        if self._poll_handle is not None:
            self._poll_handle.cancel()
            self._poll_handle = None
        if self._listening_to is not None:
            for name in INTERACTION_SIGNALS:
                self._listening_to.remove_listener(name, self._on_raw_interaction)
            self._listening_to.remove_listener(SCROLL_SIGNAL, self._on_raw_scroll)
            self._listening_to = None

    # ------------------------------------------------------------------
    # Raw signals (debounced)
    # ------------------------------------------------------------------

    def _on_raw_interaction(self) -> None:
        self._interaction_debounce.trigger()

    def _on_raw_scroll(self) -> None:
        self._scroll_debounce.trigger()

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def track_activity(self, event_type: str, points: float = 1.0) -> None:
        """The single mutation point for the score."""
        if not self.is_tracking:
            return

        self.events.append(
            EngagementEvent(type=event_type, points=points, timestamp=datetime.now(timezone.utc))
        )
        self.score += points
        if event_type != "time":
            self._active_since_tick = True
        logger.debug(
            "Engagement tracking: %s (+%s) = %s/%s", event_type, points, self.score, self.threshold
        )

        if self.sync is not None:
            self.sync.broadcast(
                SyncEventType.ENGAGEMENT_UPDATED,
                {"score": self.score, "threshold": self.threshold, "eventType": event_type},
            )

        if self.score >= self.threshold and not self.is_threshold_reached:
            self.is_threshold_reached = True
            logger.info("Engagement threshold reached (%s/%s)", self.score, self.threshold)
            if self.sync is not None:
                self.sync.broadcast(
                    SyncEventType.THRESHOLD_REACHED,
                    {"score": self.score, "threshold": self.threshold},
                )
            if self.on_threshold_reached is not None:
                self.on_threshold_reached()
            if self.auto_trigger:
                self._dispatch_follow_up()

    def _dispatch_follow_up(self) -> None:
        activity = self.follow_up_policy(self.session_type)
        if activity not in ("quiz", "practice"):
            logger.warning("Follow-up policy returned %r; defaulting to quiz", activity)
            activity = "quiz"
        self.triggered_activity = activity
        logger.info("Great engagement! Offering a %s.", activity)

        if activity == "quiz":
            if self.sync is not None:
                self.sync.broadcast(SyncEventType.QUIZ_UNLOCKED, {"sessionType": self.session_type})
            if self.on_quiz_trigger is not None:
                self.on_quiz_trigger()
        else:
            if self.sync is not None:
                self.sync.broadcast(SyncEventType.PRACTICE_UNLOCKED, {"sessionType": self.session_type})
            if self.on_practice_trigger is not None:
                self.on_practice_trigger()

    def track_message(self) -> None:
        self.track_activity("message", MESSAGE_POINTS)

    def track_code_execution(self) -> None:
        self.track_activity("code_execution", CODE_EXECUTION_POINTS)

    def track_scroll(self) -> None:
        self.track_activity("scroll", SCROLL_POINTS)

    def track_interaction(self) -> None:
        self.track_activity("interaction", INTERACTION_POINTS)

    def track_time_engagement(self) -> None:
        """Periodic tick: bonus only if there was activity during the last interval."""
        if not self._active_since_tick:
            return
        self._active_since_tick = False
        self.track_activity("time", TIME_BONUS_POINTS)

    def track_quiz_completion(self) -> None:
        self._track_completion("quiz_completed")

    def track_practice_completion(self) -> None:
        self._track_completion("practice_completed")

    def _track_completion(self, event_type: str) -> None:
        self.track_activity(event_type, COMPLETION_POINTS)
        self.triggered_activity = None
        if self.on_preference_poll is not None:
            if self._poll_handle is not None:
                self._poll_handle.cancel()
            self._poll_handle = self.scheduler.call_later(
                self.config.preference_poll_delay_s, self._fire_preference_poll
            )

    def _fire_preference_poll(self) -> None:
        self._poll_handle = None
        if self.on_preference_poll is not None:
            self.on_preference_poll()

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_engagement_analytics(self) -> EngagementAnalytics:
        duration = max(self.scheduler.now() - self._started_at, 0.0)
        by_type: dict[str, int] = {}
        for event in self.events:
            by_type[event.type] = by_type.get(event.type, 0) + 1
        minutes = duration / 60.0
        per_minute = round(self.score / minutes, 2) if self.events and minutes > 0 else 0.0
        return EngagementAnalytics(
            score=self.score,
            threshold=self.threshold,
            is_threshold_reached=self.is_threshold_reached,
            triggered_activity=self.triggered_activity,
            session_duration_s=int(duration),
            event_count=len(self.events),
            events_by_type=by_type,
            average_points_per_minute=per_minute,
        )
