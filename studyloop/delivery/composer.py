"""
Session Composer.

Builds the ordered list of items for a study session (or an "add more"
continuation of one) from three candidate pools:

- Recent misses: graded Hard or timed out in the last 72 hours (highest priority)
- Due reviews: ranked by 1/ease, boosted when long overdue
- New items: lowest priority, capped once the learner has history

Short sessions are backfilled from not-yet-due reviews (and, for a
first-time learner, more new items). Insight cards are then interleaved
between the graded items, and the served ids are recorded on the session
before the list is returned.
"""

from __future__ import annotations

import random
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger

from studyloop.content.topics import normalize_topic
from studyloop.core.errors import ContentNotFound, RepositoryUnavailable, SessionCompositionError
from studyloop.items import ItemKind
from studyloop.items.base import Item

from .repository import StudyRepository
from .scheduler import UTC, ScheduleState, resolve_timezone, start_of_local_day


@dataclass
class ComposerConfig:
    """Configuration for session composition."""

    max_new_initial: int = 5
    max_new_add_more: int = 8
    recent_miss_hours: int = 72
    recent_miss_limit: int = 6
    recent_miss_scan_limit: int = 50  # Raw attempts read before de-duplication
    due_pool_limit: int = 200
    new_pool_limit: int = 100
    overdue_bonus_days: int = 7
    urgency_bonus: float = 1.5
    miss_priority: float = 200.0
    due_priority_scale: float = 100.0
    new_priority: float = 20.0
    priority_noise: float = 5.0  # +/- jitter so ties don't always resolve the same way
    insight_min_regular: int = 5
    insight_every: int = 5
    insight_pool_limit: int = 10

    @classmethod
    def from_settings(cls, settings) -> ComposerConfig:
        return cls(
            max_new_initial=settings.max_new_initial,
            max_new_add_more=settings.max_new_add_more,
            recent_miss_hours=settings.recent_miss_hours,
            recent_miss_limit=settings.recent_miss_limit,
            due_pool_limit=settings.due_pool_limit,
            new_pool_limit=settings.new_pool_limit,
            overdue_bonus_days=settings.overdue_bonus_days,
        )


@dataclass
class _Candidate:
    item: Item
    priority: float
    source: str  # 'miss', 'due', 'new'

    @property
    def is_new(self) -> bool:
        return self.source == "new"


def interleave_insights(
    regular: list[Item],
    insights: list[Item],
    size: int,
    every: int = 5,
    min_regular: int = 5,
) -> list[Item]:
    """
    Place insight cards between graded items.

    An insight follows the 4th, 9th, 14th... graded item, so there is at most
    one per `every` graded items, none first, none last and never two in a
    row. Graded items are dropped from the tail when that is what it takes
    to fit an insight within `size`.

    Args:
        regular: Selected graded items, in order
        insights: Available insight items
        size: Maximum length of the result
        every: Graded items per insight
        min_regular: Fewest graded items that still get insights

    Returns:
        Ordered list of at most `size` items
    """
    if not insights or len(regular) < min_regular:
        return regular[:size]

    for count in range(min(len(regular), size), min_regular - 1, -1):
        slots = list(range(every - 2, count - 1, every))
        placed = min(len(insights), len(slots))
        if placed and count + placed <= size:
            break
    else:
        return regular[:size]

    after = set(slots[:placed])
    pending = iter(insights[:placed])
    result: list[Item] = []
    for index, item in enumerate(regular[:count]):
        result.append(item)
        if index in after:
            result.append(next(pending))
    return result


class SessionComposer:
    """
    Composes study sessions from a learner's schedule and attempt history.

    The algorithm:
    1. Decide the new-item cap (unbounded for a first-time learner)
    2. Score recent misses, due reviews and (if still short) new items
    3. Walk candidates by priority, skipping served, excluded and
       already-failed-today items
    4. Backfill from not-yet-due reviews, then new items for first-timers
    5. Interleave insights and record the served ids
    """

    def __init__(
        self,
        repo: StudyRepository,
        config: ComposerConfig | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        default_timezone: str = "America/Toronto",
    ):
        """
        Initialize the composer.

        Args:
            repo: Storage for items, schedules, attempts and sessions
            config: Custom configuration (uses defaults if None)
            rng: Random source for priority jitter
            clock: Returns the current instant (UTC)
            default_timezone: Timezone for learners without a profile
        """
        self.repo = repo
        self.config = config or ComposerConfig()
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: datetime.now(UTC))
        self.default_timezone = default_timezone

    def build_session(
        self,
        user_id: str,
        topic: str,
        size: int,
        already_served_ids: Iterable[str] = (),
        exclude_ids: Iterable[str] = (),
        add_more: bool = False,
        session_id: str | None = None,
    ) -> list[Item]:
        """
        Build the next batch of items for a learner.

        Args:
            user_id: Learner
            topic: Topic name or slug
            size: Requested number of items
            already_served_ids: Ids served earlier in this session (never repeated)
            exclude_ids: Further ids the caller does not want
            add_more: True for a continuation of an existing session
            session_id: Session to record served ids on (None = don't record)

        Returns:
            Ordered items; shorter than `size` only when the topic runs out

        Raises:
            SessionCompositionError: If a repository call failed
        """
        topic = normalize_topic(topic)
        if size <= 0:
            return []

        try:
            return self._build(
                user_id,
                topic,
                size,
                blocked=set(already_served_ids) | set(exclude_ids),
                add_more=add_more,
                session_id=session_id,
            )
        except RepositoryUnavailable as e:
            logger.error(f"Session composition failed for {user_id}/{topic}: {e}")
            raise SessionCompositionError(f"Could not compose session for topic {topic!r}") from e

    # =========================================================================
    # Internals
    # =========================================================================

    def _build(
        self,
        user_id: str,
        topic: str,
        size: int,
        blocked: set[str],
        add_more: bool,
        session_id: str | None,
    ) -> list[Item]:
        cfg = self.config
        repo = self.repo
        now = self.clock()
        tz = resolve_timezone(repo.get_learner_profile(user_id).timezone, self.default_timezone)

        has_history = repo.has_any_schedule(user_id, topic)
        new_cap = None
        if has_history:
            new_cap = cfg.max_new_add_more if add_more else cfg.max_new_initial

        hard_today = repo.find_hard_attempt_item_ids(user_id, topic, since=start_of_local_day(now, tz))

        candidates = self._recent_miss_candidates(user_id, topic, now, blocked)
        candidates += self._due_candidates(user_id, topic, now, blocked, {c.item.id for c in candidates})

        eligible = sum(1 for c in candidates if c.item.id not in hard_today)
        if eligible < size:
            for item in repo.find_unseen_items(user_id, topic, blocked, cfg.new_pool_limit):
                candidates.append(_Candidate(item, cfg.new_priority + self._noise(), "new"))

        selected: list[Item] = []
        taken: set[str] = set()
        new_ids: set[str] = set()
        picked = Counter()
        for candidate in sorted(candidates, key=lambda c: c.priority, reverse=True):
            if len(selected) >= size:
                break
            item_id = candidate.item.id
            if item_id in blocked or item_id in taken or item_id in hard_today:
                continue
            if candidate.is_new:
                if new_cap is not None and len(new_ids) >= new_cap:
                    continue
                new_ids.add(item_id)
            selected.append(candidate.item)
            taken.add(item_id)
            picked[candidate.source] += 1

        if len(selected) < size:
            for scheduled in repo.find_not_yet_due_schedules(
                user_id, topic, now, blocked | taken, cfg.due_pool_limit
            ):
                if len(selected) >= size:
                    break
                item = scheduled.item
                if item.id in taken or item.id in hard_today or not item.is_graded:
                    continue
                selected.append(item)
                taken.add(item.id)
                picked["backfill"] += 1

        if len(selected) < size and not has_history:
            for item in repo.find_unseen_items(user_id, topic, blocked | taken, size - len(selected)):
                if len(selected) >= size:
                    break
                if item.id in taken:
                    continue
                selected.append(item)
                taken.add(item.id)
                new_ids.add(item.id)
                picked["new"] += 1

        insights: list[Item] = []
        if len(selected) >= cfg.insight_min_regular:
            insights = repo.find_items_by_topic(
                topic,
                exclude_ids=blocked | taken,
                limit=cfg.insight_pool_limit,
                kinds=[ItemKind.INSIGHT.value],
            )
            self.rng.shuffle(insights)

        served = interleave_insights(
            selected,
            insights,
            size,
            every=cfg.insight_every,
            min_regular=cfg.insight_min_regular,
        )
        new_count = sum(1 for item in served if item.id in new_ids)

        if session_id is not None and served:
            with repo.transaction():
                repo.append_served_ids(session_id, [item.id for item in served], new_item_count=new_count)

        logger.info(
            f"Composed {'add-more' if add_more else 'initial'} batch for {user_id}/{topic}: "
            f"{len(served)}/{size} items (misses={picked['miss']} due={picked['due']} "
            f"new={new_count} backfill={picked['backfill']} "
            f"insight={sum(1 for item in served if not item.is_graded)})"
            f"{'' if has_history else ' (first exposure)'}"
        )
        return served

    def _recent_miss_candidates(
        self,
        user_id: str,
        topic: str,
        now: datetime,
        blocked: set[str],
    ) -> list[_Candidate]:
        cfg = self.config
        attempts = self.repo.find_recent_miss_attempts(
            user_id,
            topic,
            since=now - timedelta(hours=cfg.recent_miss_hours),
            exclude_ids=blocked,
            limit=cfg.recent_miss_scan_limit,
        )

        # Attempts arrive most recent first; one candidate per graded item
        seen: set[str] = set()
        candidates: list[_Candidate] = []
        for attempt in attempts:
            if len(candidates) >= cfg.recent_miss_limit:
                break
            if attempt.item_id in seen:
                continue
            seen.add(attempt.item_id)
            try:
                item = self.repo.get_item(attempt.item_id)
            except ContentNotFound:
                logger.warning(f"Skipping recent miss for missing item {attempt.item_id}")
                continue
            if item.is_graded:
                candidates.append(_Candidate(item, cfg.miss_priority + self._noise(), "miss"))
        return candidates

    def _due_candidates(
        self,
        user_id: str,
        topic: str,
        now: datetime,
        blocked: set[str],
        skip_ids: set[str],
    ) -> list[_Candidate]:
        cfg = self.config
        candidates = []
        for scheduled in self.repo.find_due_schedules(user_id, topic, now, blocked, cfg.due_pool_limit):
            if scheduled.item.id in skip_ids or not scheduled.item.is_graded:
                continue
            candidates.append(_Candidate(scheduled.item, self._due_priority(scheduled.state, now), "due"))
        return candidates

    def _due_priority(self, state: ScheduleState, now: datetime) -> float:
        cfg = self.config
        urgency = cfg.urgency_bonus if state.days_overdue(now) > cfg.overdue_bonus_days else 1.0
        return (1.0 / state.ease) * urgency * cfg.due_priority_scale + self._noise()

    def _noise(self) -> float:
        spread = self.config.priority_noise
        return self.rng.uniform(-spread, spread) if spread else 0.0
