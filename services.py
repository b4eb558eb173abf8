import logging
from datetime import datetime

import pytz
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from extensions import db
from gamification import (
    BADGES,
    MAX_USER_ID_LENGTH,
    ProgressConflictError,
    ProgressTracker,
    ProgressValidationError,
    default_progress,
)
from models import CompletedTask, ProgressRecord, UserBadge

logger = logging.getLogger(__name__)


class Clock:
    """Supplies the current time in the timezone streak days roll over in."""

    def __init__(self, tz_name='UTC'):
        self.tz = pytz.timezone(tz_name)

    def now(self):
        return datetime.now(self.tz)

    def today(self):
        return self.now().date()

    def utcnow(self):
        # Naive UTC, same as the rest of the DateTime columns
        return self.now().astimezone(pytz.utc).replace(tzinfo=None)


class ProgressStore:
    """Loads and saves ProgressRecord rows through the Flask-SQLAlchemy session."""

    def fetch(self, user_id, for_update=False):
        query = ProgressRecord.query.filter_by(user_id=user_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def completed_ids(self, user_id, task_ids):
        """Return which of `task_ids` the user already has credited."""
        task_ids = list(task_ids)
        if not task_ids:
            return frozenset()
        rows = (
            db.session.query(CompletedTask.task_id)
            .filter(CompletedTask.user_id == user_id, CompletedTask.task_id.in_(task_ids))
            .all()
        )
        return frozenset(task_id for (task_id,) in rows)

    def load(self, user_id):
        row = self.fetch(user_id)
        return row.to_domain() if row else default_progress()

    def get_or_create(self, user_id):
        row = self.fetch(user_id)
        if row:
            return row

        row = ProgressRecord(user_id=user_id, total_points=0, level=1, current_streak=0,
                             longest_streak=0, completed_task_count=0)
        db.session.add(row)
        try:
            db.session.commit()
        except IntegrityError:
            # Someone else created it first
            db.session.rollback()
            row = self.fetch(user_id)
        else:
            logger.info("Created progress record for user %s", user_id)
        return row

    def save(self, user_id, progress, row=None, points_earned=0, known_task_ids=frozenset()):
        """Write `progress` onto the user's row, inserting what is new.

        Does not commit. Task ids not in `known_task_ids` become CompletedTask
        rows carrying `points_earned`; new badge ids become UserBadge rows.
        """
        if row is None:
            row = ProgressRecord(user_id=user_id)
            db.session.add(row)
            known_badges = set()
        else:
            known_badges = {badge.badge_id for badge in row.badges}

        row.total_points = progress.total_points
        row.level = progress.level
        row.current_streak = progress.current_streak
        row.longest_streak = progress.longest_streak
        row.completed_task_count = progress.completed_task_count
        row.last_active_date = progress.last_active_date

        # Added straight to the session so the task history is never loaded
        for task_id in sorted(progress.completed_task_ids - known_task_ids):
            db.session.add(CompletedTask(
                user_id=user_id,
                task_id=task_id,
                points_earned=points_earned,
                completed_on=progress.last_active_date,
            ))

        for badge_id, unlocked_at in progress.unlocked_badges.items():
            if badge_id not in known_badges:
                db.session.add(UserBadge(user_id=user_id, badge_id=badge_id, unlocked_at=unlocked_at))

        return row


def validate_user_id(user_id):
    if not isinstance(user_id, str) or not user_id.strip():
        raise ProgressValidationError('user_id must be a non-empty string')
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise ProgressValidationError(f'user_id cannot be longer than {MAX_USER_ID_LENGTH} characters')


class GamificationService:
    """Serialised read-modify-write of user progress around ProgressTracker."""

    def __init__(self, clock=None, store=None, catalog=BADGES, max_retries=3):
        self.clock = clock or Clock()
        self.store = store or ProgressStore()
        self.catalog = catalog
        self.max_retries = max_retries

    def _run(self, user_id, apply, task_ids=()):
        """Run load -> apply -> save, retrying when a concurrent writer wins.

        Only `task_ids` are looked up in the user's task history.
        `apply(row, progress)` returns (result, new_progress, points_earned);
        new_progress None means nothing needs saving.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                row = self.store.fetch(user_id, for_update=True)
                if row:
                    known = self.store.completed_ids(user_id, task_ids)
                    progress = row.to_domain(task_ids=known)
                else:
                    known = frozenset()
                    progress = default_progress()

                result, new_progress, points_earned = apply(row, progress)
                if new_progress is None:
                    db.session.rollback()
                    return result
                self.store.save(user_id, new_progress, row=row, points_earned=points_earned,
                                known_task_ids=known)
                db.session.commit()
                return result
            except (StaleDataError, IntegrityError) as e:
                db.session.rollback()
                logger.warning("Progress update for user %s lost a race (attempt %d/%d): %s",
                               user_id, attempt, self.max_retries, e.__class__.__name__)
            except Exception:
                db.session.rollback()
                raise

        raise ProgressConflictError(
            f"Could not update progress for user {user_id} after {self.max_retries} attempts"
        )

    def get_progress(self, user_id):
        validate_user_id(user_id)
        return self.store.get_or_create(user_id).to_domain()

    def complete_task(self, user_id, task_id):
        validate_user_id(user_id)
        ProgressTracker.validate_task_id(task_id)
        today = self.clock.today()
        now = self.clock.utcnow()

        def apply(row, progress):
            update = ProgressTracker.record_task_completion(progress, task_id, today, now, self.catalog)
            if not update.credited:
                return update, None, 0
            return update, update.progress, update.points_earned

        update = self._run(user_id, apply, task_ids=[task_id])

        if not update.credited:
            logger.info("Task %s already credited for user %s", task_id, user_id)
            return update

        logger.info("User %s completed task %s: +%d points (total %d, streak %d)",
                    user_id, task_id, update.points_earned,
                    update.progress.total_points, update.progress.current_streak)
        if update.leveled_up:
            logger.info("User %s reached level %d", user_id, update.progress.level)
        for badge in update.new_badges:
            logger.info("User %s unlocked badge %s", user_id, badge.id)
        return update

    def refresh_badges(self, user_id):
        """Credit badges added to the catalog after the user already qualified."""
        validate_user_id(user_id)
        now = self.clock.utcnow()

        def apply(row, progress):
            updated, new_badges = ProgressTracker.evaluate_badges(progress, now, self.catalog)
            if row is None or not new_badges:
                return new_badges, None, 0
            return new_badges, updated, 0

        new_badges = self._run(user_id, apply)
        for badge in new_badges:
            logger.info("User %s unlocked badge %s on refresh", user_id, badge.id)
        return new_badges

    def badge_overview(self, user_id):
        validate_user_id(user_id)
        progress = self.store.load(user_id)
        earned = []
        available = []
        for badge in self.catalog:
            if progress.has_badge(badge.id):
                entry = badge.to_dict()
                entry['unlocked_at'] = progress.unlocked_badges[badge.id].isoformat()
                earned.append(entry)
            else:
                available.append(badge.to_dict())
        return {'earned': earned, 'available': available}

    def leaderboard(self, limit, user_id=None):
        badge_count = (
            db.select(db.func.count(UserBadge.id))
            .where(UserBadge.user_id == ProgressRecord.user_id)
            .correlate(ProgressRecord)
            .scalar_subquery()
        )
        top_users = (
            db.session.query(ProgressRecord, badge_count.label('badge_count'))
            .order_by(ProgressRecord.total_points.desc(), ProgressRecord.level.desc(),
                      ProgressRecord.user_id.asc())
            .limit(limit)
            .all()
        )
        result = {
            'leaderboard': [
                dict(record.to_summary(badges), rank=position)
                for position, (record, badges) in enumerate(top_users, start=1)
            ],
        }

        if user_id is not None:
            # Rank is 1 + number of users with more points
            mine = self.store.fetch(user_id)
            my_points = mine.total_points if mine else 0
            result['my_rank'] = ProgressRecord.query.filter(
                ProgressRecord.total_points > my_points
            ).count() + 1
        return result
