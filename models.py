from datetime import datetime

from extensions import db
from gamification import MAX_TASK_ID_LENGTH, MAX_USER_ID_LENGTH, UserProgress


# Database Models
class ProgressRecord(db.Model):
    __tablename__ = 'user_progress'

    user_id = db.Column(db.String(MAX_USER_ID_LENGTH), primary_key=True)
    total_points = db.Column(db.Integer, nullable=False, default=0)
    level = db.Column(db.Integer, nullable=False, default=1)
    current_streak = db.Column(db.Integer, nullable=False, default=0)
    longest_streak = db.Column(db.Integer, nullable=False, default=0)
    completed_task_count = db.Column(db.Integer, nullable=False, default=0)
    last_active_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Bumped on every flush; a concurrent writer gets StaleDataError
    version = db.Column(db.Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    completed_tasks = db.relationship('CompletedTask', backref='progress', lazy=True)
    badges = db.relationship('UserBadge', backref='progress', lazy=True)

    def to_domain(self, task_ids=None):
        """Convert to a UserProgress.

        `task_ids` are the completed ids the caller already looked up; None
        loads the user's whole task history.
        """
        if task_ids is None:
            task_ids = (task.task_id for task in self.completed_tasks)
        return UserProgress(
            total_points=self.total_points,
            current_streak=self.current_streak,
            longest_streak=self.longest_streak,
            completed_task_count=self.completed_task_count,
            completed_task_ids=frozenset(task_ids),
            last_active_date=self.last_active_date,
            level=self.level,
            unlocked_badges={badge.badge_id: badge.unlocked_at for badge in self.badges},
        )

    def to_summary(self, badge_count):
        return {
            'user_id': self.user_id,
            'total_points': self.total_points,
            'level': self.level,
            'current_streak': self.current_streak,
            'badges': badge_count,
        }


class CompletedTask(db.Model):
    __tablename__ = 'completed_task'
    __table_args__ = (db.UniqueConstraint('user_id', 'task_id', name='uq_completed_task_user_task'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(MAX_USER_ID_LENGTH), db.ForeignKey('user_progress.user_id'),
                        nullable=False, index=True)
    task_id = db.Column(db.String(MAX_TASK_ID_LENGTH), nullable=False)
    points_earned = db.Column(db.Integer, nullable=False)
    completed_on = db.Column(db.Date, nullable=False)
    completed_at = db.Column(db.DateTime, default=datetime.utcnow)


class UserBadge(db.Model):
    __tablename__ = 'user_badge'
    __table_args__ = (db.UniqueConstraint('user_id', 'badge_id', name='uq_user_badge_user_badge'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(MAX_USER_ID_LENGTH), db.ForeignKey('user_progress.user_id'),
                        nullable=False, index=True)
    badge_id = db.Column(db.String(50), nullable=False)
    unlocked_at = db.Column(db.DateTime, default=datetime.utcnow)
