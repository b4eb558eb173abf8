"""
Progress & Badge Engine

Points, streaks, levels and badge unlocks for completed study tasks.
Nothing in here touches Flask or the database: the service layer loads a
UserProgress, hands it to ProgressTracker and saves whatever comes back.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum


# Column sizes in the progress tables
MAX_USER_ID_LENGTH = 128
MAX_TASK_ID_LENGTH = 255


class ProgressError(Exception):
    """Base class for progress tracking errors."""


class ProgressValidationError(ProgressError, ValueError):
    """Raised when a completion event or progress record is malformed."""


class ProgressConflictError(ProgressError):
    """Raised when a progress update keeps losing to concurrent writers."""


class RequirementKind(str, Enum):
    POINTS = 'points'
    STREAK = 'streak'
    TASKS = 'tasks'


@dataclass(frozen=True)
class BadgeRequirement:
    kind: RequirementKind
    value: int

    def is_met(self, progress):
        if self.kind is RequirementKind.POINTS:
            return progress.total_points >= self.value
        if self.kind is RequirementKind.STREAK:
            # longest_streak is the best current_streak ever seen, so a badge
            # added to the catalog later still credits an earlier streak.
            return max(progress.current_streak, progress.longest_streak) >= self.value
        return progress.completed_task_count >= self.value


@dataclass(frozen=True)
class Badge:
    id: str
    name: str
    description: str
    icon: str
    requirement: BadgeRequirement

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'icon': self.icon,
            'requirement': {
                'type': self.requirement.kind.value,
                'value': self.requirement.value,
            },
        }


# Order matters: newly unlocked badges are reported in catalog order.
BADGES = (
    Badge('first-task', 'First Step', 'Complete your first study task', '🎯',
          BadgeRequirement(RequirementKind.TASKS, 1)),
    Badge('streak-3', 'Consistent Learner', 'Maintain a 3-day study streak', '🔥',
          BadgeRequirement(RequirementKind.STREAK, 3)),
    Badge('streak-7', 'Week Warrior', 'Maintain a 7-day study streak', '📅',
          BadgeRequirement(RequirementKind.STREAK, 7)),
    Badge('points-100', 'Century Club', 'Earn 100 points', '💯',
          BadgeRequirement(RequirementKind.POINTS, 100)),
    Badge('points-500', 'High Achiever', 'Earn 500 points', '🏆',
          BadgeRequirement(RequirementKind.POINTS, 500)),
    Badge('tasks-10', 'Dedicated Student', 'Complete 10 study tasks', '📚',
          BadgeRequirement(RequirementKind.TASKS, 10)),
    Badge('tasks-50', 'Study Master', 'Complete 50 study tasks', '🎓',
          BadgeRequirement(RequirementKind.TASKS, 50)),
)


def get_badge(badge_id, catalog=BADGES):
    for badge in catalog:
        if badge.id == badge_id:
            return badge
    raise KeyError(badge_id)


@dataclass(frozen=True)
class UserProgress:
    total_points: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    completed_task_count: int = 0
    completed_task_ids: frozenset = field(default_factory=frozenset)
    last_active_date: date = None
    level: int = 1
    # badge id -> unlocked_at
    unlocked_badges: dict = field(default_factory=dict)

    def has_badge(self, badge_id):
        return badge_id in self.unlocked_badges

    def to_dict(self):
        return {
            'total_points': self.total_points,
            'current_streak': self.current_streak,
            'longest_streak': self.longest_streak,
            'completed_task_count': self.completed_task_count,
            'completed_task_ids': sorted(self.completed_task_ids),
            'last_active_date': self.last_active_date.isoformat() if self.last_active_date else None,
            'level': self.level,
            'badges': [
                {'id': badge_id, 'unlocked_at': unlocked_at.isoformat()}
                for badge_id, unlocked_at in self.unlocked_badges.items()
            ],
        }


def default_progress():
    """Zero-valued progress for a user who has never completed a task."""
    return UserProgress()


def progress_from_dict(data):
    """Build a UserProgress from a loosely shaped mapping, filling in defaults.

    Accepts the JSON shape produced by UserProgress.to_dict() as well as
    older documents that only carry some of the keys.
    """
    if not data:
        return default_progress()

    last_active = data.get('last_active_date')
    if isinstance(last_active, str):
        last_active = date.fromisoformat(last_active) if last_active else None
    elif isinstance(last_active, datetime):
        last_active = last_active.date()

    badges = {}
    for entry in data.get('badges') or []:
        badge_id = entry.get('id')
        unlocked_at = entry.get('unlocked_at')
        # Both are required; there is no default unlock time
        if not badge_id:
            raise ProgressValidationError('badge entry is missing its id')
        if not unlocked_at:
            raise ProgressValidationError(f'badge {badge_id} is missing unlocked_at')
        if isinstance(unlocked_at, str):
            unlocked_at = datetime.fromisoformat(unlocked_at)
        badges[badge_id] = unlocked_at

    total_points = int(data.get('total_points') or 0)
    return UserProgress(
        total_points=total_points,
        current_streak=int(data.get('current_streak') or 0),
        longest_streak=int(data.get('longest_streak') or 0),
        completed_task_count=int(data.get('completed_task_count') or 0),
        completed_task_ids=frozenset(data.get('completed_task_ids') or ()),
        last_active_date=last_active,
        level=ProgressTracker.calculate_level(max(total_points, 0)),
        unlocked_badges=badges,
    )


@dataclass(frozen=True)
class LevelProgress:
    level: int
    progress_percent: float
    next_level_points: int
    points_to_next_level: int

    def to_dict(self):
        return {
            'level': self.level,
            'progress_percent': self.progress_percent,
            'next_level_points': self.next_level_points,
            'points_to_next_level': self.points_to_next_level,
        }


@dataclass(frozen=True)
class ProgressUpdate:
    progress: UserProgress
    points_earned: int
    new_badges: tuple = ()
    leveled_up: bool = False

    @property
    def credited(self):
        return self.points_earned > 0


class ProgressTracker:
    """Central logic for points, streaks, levels and badges."""

    BASE_POINTS = 10
    STREAK_BONUS_MULTIPLIER = 0.5  # 50% of base per extra streak day
    POINTS_PER_LEVEL = 100

    @staticmethod
    def calculate_level(total_points):
        # Level = floor(total_points / 100) + 1
        return total_points // ProgressTracker.POINTS_PER_LEVEL + 1

    @staticmethod
    def level_progress(total_points):
        level = ProgressTracker.calculate_level(total_points)
        next_level_points = level * ProgressTracker.POINTS_PER_LEVEL
        percent = (total_points % ProgressTracker.POINTS_PER_LEVEL) / ProgressTracker.POINTS_PER_LEVEL * 100
        return LevelProgress(
            level=level,
            progress_percent=percent,
            next_level_points=next_level_points,
            points_to_next_level=next_level_points - total_points,
        )

    @staticmethod
    def streak_points(current_streak):
        base = ProgressTracker.BASE_POINTS
        bonus = int(base * (current_streak - 1) * ProgressTracker.STREAK_BONUS_MULTIPLIER)
        return base + bonus

    @staticmethod
    def next_streak(progress, today):
        """Return (current_streak, longest_streak) after activity on `today`."""
        if progress.last_active_date is None:
            current = 1
        else:
            day_diff = (today - progress.last_active_date).days
            if day_diff == 0:
                current = progress.current_streak
            elif day_diff == 1:
                current = progress.current_streak + 1
            else:
                current = 1  # missed a day
        # A same-day completion on a zeroed record still counts as one day.
        current = max(current, 1)
        return current, max(progress.longest_streak, current)

    @staticmethod
    def validate_task_id(task_id):
        if not isinstance(task_id, str) or not task_id.strip():
            raise ProgressValidationError('task_id must be a non-empty string')
        if len(task_id) > MAX_TASK_ID_LENGTH:
            raise ProgressValidationError(f'task_id cannot be longer than {MAX_TASK_ID_LENGTH} characters')

    @staticmethod
    def validate(progress, today):
        if not isinstance(today, date) or isinstance(today, datetime):
            raise ProgressValidationError('today must be a calendar date')

        for name in ('total_points', 'current_streak', 'longest_streak', 'completed_task_count'):
            if getattr(progress, name) < 0:
                raise ProgressValidationError(f'{name} cannot be negative')
        if progress.longest_streak < progress.current_streak:
            raise ProgressValidationError('longest_streak cannot be below current_streak')

        if progress.last_active_date is not None and today < progress.last_active_date:
            raise ProgressValidationError(
                f'completion dated {today.isoformat()} is earlier than last activity '
                f'{progress.last_active_date.isoformat()}'
            )

    @staticmethod
    def evaluate_badges(progress, now, catalog=BADGES):
        """Unlock every catalog badge whose requirement `progress` now meets.

        Returns (progress, newly_unlocked) where newly_unlocked keeps catalog
        order. Already unlocked badges are never revisited or revoked.
        """
        newly_unlocked = [
            badge for badge in catalog
            if not progress.has_badge(badge.id) and badge.requirement.is_met(progress)
        ]
        if not newly_unlocked:
            return progress, ()

        badges = dict(progress.unlocked_badges)
        for badge in newly_unlocked:
            badges[badge.id] = now
        return replace(progress, unlocked_badges=badges), tuple(newly_unlocked)

    @staticmethod
    def record_task_completion(progress, task_id, today, now=None, catalog=BADGES):
        """Apply one task completion to `progress` and report what changed.

        `progress` is never mutated. Completing a task id that was already
        credited is a no-op that earns nothing.
        """
        ProgressTracker.validate_task_id(task_id)

        # 1. Idempotence, before any date checks: a repeat is never an error
        if task_id in progress.completed_task_ids:
            return ProgressUpdate(progress=progress, points_earned=0)

        ProgressTracker.validate(progress, today)
        if now is None:
            now = datetime.combine(today, datetime.min.time())

        # 2. Streak
        current_streak, longest_streak = ProgressTracker.next_streak(progress, today)

        # 3. Points
        earned = ProgressTracker.streak_points(current_streak)
        total_points = progress.total_points + earned

        # 4. Level (pure function of total_points)
        level = ProgressTracker.calculate_level(total_points)

        updated = replace(
            progress,
            total_points=total_points,
            current_streak=current_streak,
            longest_streak=longest_streak,
            completed_task_count=progress.completed_task_count + 1,
            completed_task_ids=progress.completed_task_ids | {task_id},
            last_active_date=today,
            level=level,
        )

        # 5. Badges
        updated, new_badges = ProgressTracker.evaluate_badges(updated, now, catalog)

        return ProgressUpdate(
            progress=updated,
            points_earned=earned,
            new_badges=new_badges,
            leveled_up=level > progress.level,
        )
