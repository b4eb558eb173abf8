"""Store doubles that replay what a concurrent writer would do."""

from sqlalchemy import text

from extensions import db
from services import ProgressStore


class RacingStore(ProgressStore):
    """Store that lets a phantom writer bump the row version after each locked read."""

    def __init__(self, races):
        self.races = races
        self.locked_reads = 0

    def fetch(self, user_id, for_update=False):
        row = super().fetch(user_id, for_update)
        if for_update:
            self.locked_reads += 1
            if row is not None and self.races > 0:
                self.races -= 1
                db.session.execute(
                    text('UPDATE user_progress SET version = version + 1 WHERE user_id = :uid'),
                    {'uid': user_id},
                )
        return row


class StaleTaskViewStore(ProgressStore):
    """Store whose first task lookups miss rows another writer already committed."""

    def __init__(self, stale_lookups):
        self.stale_lookups = stale_lookups
        self.lookups = 0

    def completed_ids(self, user_id, task_ids):
        self.lookups += 1
        if self.stale_lookups > 0:
            self.stale_lookups -= 1
            return frozenset()
        return super().completed_ids(user_id, task_ids)


class LateInsertStore(ProgressStore):
    """Store whose first read misses a row another writer has just inserted."""

    def __init__(self):
        self.reads = 0

    def fetch(self, user_id, for_update=False):
        self.reads += 1
        if self.reads == 1:
            return None
        return super().fetch(user_id, for_update)
