"""Tests for the pure points / streak / level / badge engine."""

from datetime import date, datetime, timedelta

import pytest

from gamification import (
    BADGES,
    Badge,
    BadgeRequirement,
    MAX_TASK_ID_LENGTH,
    ProgressTracker,
    ProgressValidationError,
    RequirementKind,
    UserProgress,
    default_progress,
    get_badge,
    progress_from_dict,
)

DAY_1 = date(2024, 3, 1)
NOW = datetime(2024, 3, 1, 9, 30)


def complete(progress, task_id, today, now=NOW):
    return ProgressTracker.record_task_completion(progress, task_id, today, now)


# ============================================================================
# WORKED EXAMPLE
# ============================================================================


def test_first_completion_from_zero():
    update = complete(default_progress(), 't1', DAY_1)

    assert update.points_earned == 10
    assert update.progress.total_points == 10
    assert update.progress.current_streak == 1
    assert update.progress.longest_streak == 1
    assert update.progress.level == 1
    assert update.progress.last_active_date == DAY_1
    assert update.progress.completed_task_ids == {'t1'}
    assert [badge.id for badge in update.new_badges] == ['first-task']
    assert update.progress.unlocked_badges == {'first-task': NOW}


def test_next_day_completion_earns_streak_bonus():
    day_1 = complete(default_progress(), 't1', DAY_1).progress
    update = complete(day_1, 't2', DAY_1 + timedelta(days=1))

    assert update.progress.current_streak == 2
    assert update.points_earned == 15
    assert update.progress.total_points == 25
    assert update.progress.completed_task_count == 2
    assert update.new_badges == ()


def test_repeated_task_id_is_a_no_op():
    day_1 = complete(default_progress(), 't1', DAY_1).progress
    day_2 = complete(day_1, 't2', DAY_1 + timedelta(days=1)).progress

    update = complete(day_2, 't2', DAY_1 + timedelta(days=2))

    assert update.points_earned == 0
    assert update.new_badges == ()
    assert not update.credited
    assert update.progress is day_2


def test_reaching_100_points_is_level_2():
    progress = UserProgress(total_points=90, current_streak=1, longest_streak=1,
                            completed_task_count=9, completed_task_ids=frozenset(f't{i}' for i in range(9)),
                            last_active_date=DAY_1, level=1,
                            unlocked_badges={'first-task': NOW})

    update = complete(progress, 't9', DAY_1)

    assert update.progress.total_points == 100
    assert update.progress.level == 2
    assert update.leveled_up
    assert [badge.id for badge in update.new_badges] == ['points-100', 'tasks-10']


# ============================================================================
# STREAKS
# ============================================================================


@pytest.fixture
def five_day_streak():
    return UserProgress(total_points=200, current_streak=5, longest_streak=5,
                        completed_task_count=5, completed_task_ids=frozenset({'a', 'b', 'c', 'd', 'e'}),
                        last_active_date=DAY_1, level=3)


def test_streak_continues_on_next_day(five_day_streak):
    update = complete(five_day_streak, 'f', DAY_1 + timedelta(days=1))

    assert update.progress.current_streak == 6
    assert update.progress.longest_streak == 6
    # 10 + floor(10 * 5 * 0.5)
    assert update.points_earned == 35


def test_streak_unchanged_on_same_day(five_day_streak):
    update = complete(five_day_streak, 'f', DAY_1)

    assert update.progress.current_streak == 5
    assert update.points_earned == 30


def test_streak_resets_after_missed_day(five_day_streak):
    update = complete(five_day_streak, 'f', DAY_1 + timedelta(days=2))

    assert update.progress.current_streak == 1
    assert update.progress.longest_streak == 5
    assert update.points_earned == 10


def test_streak_and_level_invariants_over_a_month():
    progress = default_progress()
    longest_seen = 0
    today = DAY_1
    for i in range(40):
        # Skip every ninth day to break the streak now and then
        today += timedelta(days=2 if i % 9 == 8 else 1)
        progress = complete(progress, f'task-{i}', today).progress

        assert progress.longest_streak >= progress.current_streak
        assert progress.longest_streak >= longest_seen
        assert progress.level == progress.total_points // 100 + 1
        longest_seen = progress.longest_streak

    assert progress.completed_task_count == 40


# ============================================================================
# BADGES
# ============================================================================


def test_new_badges_follow_catalog_order():
    progress = UserProgress(current_streak=2, longest_streak=2, last_active_date=DAY_1)

    update = complete(progress, 't1', DAY_1 + timedelta(days=1))

    assert [badge.id for badge in update.new_badges] == ['first-task', 'streak-3']


def test_unlocked_badges_keep_their_original_timestamp():
    first = complete(default_progress(), 't1', DAY_1).progress
    later = datetime(2024, 3, 2, 18, 0)

    update = complete(first, 't2', DAY_1 + timedelta(days=1), now=later)

    assert update.progress.unlocked_badges['first-task'] == NOW


def test_badges_are_not_revoked_when_streak_breaks():
    progress = UserProgress(total_points=300, current_streak=3, longest_streak=3,
                            completed_task_count=3, completed_task_ids=frozenset({'a', 'b', 'c'}),
                            last_active_date=DAY_1, level=4,
                            unlocked_badges={'first-task': NOW, 'streak-3': NOW, 'points-100': NOW})

    update = complete(progress, 'd', DAY_1 + timedelta(days=5))

    assert update.progress.current_streak == 1
    assert update.progress.has_badge('streak-3')


def test_evaluate_badges_credits_historical_streak():
    progress = UserProgress(total_points=40, current_streak=1, longest_streak=7,
                            completed_task_count=1, completed_task_ids=frozenset({'a'}),
                            last_active_date=DAY_1, level=1,
                            unlocked_badges={'first-task': NOW})

    updated, new_badges = ProgressTracker.evaluate_badges(progress, NOW)

    assert [badge.id for badge in new_badges] == ['streak-3', 'streak-7']
    assert set(updated.unlocked_badges) == {'first-task', 'streak-3', 'streak-7'}


def test_evaluate_badges_with_custom_catalog():
    catalog = BADGES + (
        Badge('points-25', 'Warm Up', 'Earn 25 points', '🌱',
              BadgeRequirement(RequirementKind.POINTS, 25)),
    )
    progress = UserProgress(total_points=25, completed_task_count=2, level=1,
                            unlocked_badges={'first-task': NOW})

    updated, new_badges = ProgressTracker.evaluate_badges(progress, NOW, catalog)

    assert [badge.id for badge in new_badges] == ['points-25']


def test_evaluate_badges_nothing_new_returns_same_progress():
    progress = default_progress()

    updated, new_badges = ProgressTracker.evaluate_badges(progress, NOW)

    assert updated is progress
    assert new_badges == ()


def test_get_badge():
    assert get_badge('streak-7').name == 'Week Warrior'
    with pytest.raises(KeyError):
        get_badge('does-not-exist')


def test_badge_to_dict_uses_type_value_requirement():
    assert get_badge('points-500').to_dict()['requirement'] == {'type': 'points', 'value': 500}


# ============================================================================
# VALIDATION
# ============================================================================


@pytest.mark.parametrize('task_id', ['', '   ', None])
def test_empty_task_id_is_rejected(task_id):
    with pytest.raises(ProgressValidationError):
        complete(default_progress(), task_id, DAY_1)


def test_completion_before_last_activity_is_rejected():
    progress = UserProgress(current_streak=1, longest_streak=1, last_active_date=DAY_1)

    with pytest.raises(ProgressValidationError, match='earlier than last activity'):
        complete(progress, 't1', DAY_1 - timedelta(days=1))


def test_repeated_task_id_dated_before_last_activity_is_a_no_op():
    progress = complete(default_progress(), 't1', DAY_1).progress

    update = complete(progress, 't1', DAY_1 - timedelta(days=1))

    assert update.points_earned == 0
    assert update.progress is progress


def test_overlong_task_id_is_rejected():
    with pytest.raises(ProgressValidationError, match='longer than'):
        complete(default_progress(), 't' * (MAX_TASK_ID_LENGTH + 1), DAY_1)


def test_negative_counters_are_rejected():
    with pytest.raises(ProgressValidationError, match='total_points'):
        complete(UserProgress(total_points=-5), 't1', DAY_1)


def test_longest_streak_below_current_is_rejected():
    with pytest.raises(ProgressValidationError):
        complete(UserProgress(current_streak=3, longest_streak=1), 't1', DAY_1)


def test_datetime_is_not_a_calendar_date():
    with pytest.raises(ValueError):
        complete(default_progress(), 't1', datetime(2024, 3, 1, 8, 0))


def test_input_progress_is_not_mutated():
    progress = default_progress()
    complete(progress, 't1', DAY_1)

    assert progress == UserProgress()


# ============================================================================
# LEVELS & SERIALISATION
# ============================================================================


@pytest.mark.parametrize('points, level', [(0, 1), (99, 1), (100, 2), (250, 3), (1000, 11)])
def test_calculate_level(points, level):
    assert ProgressTracker.calculate_level(points) == level


def test_level_progress():
    info = ProgressTracker.level_progress(250)

    assert info.level == 3
    assert info.progress_percent == 50.0
    assert info.next_level_points == 300
    assert info.points_to_next_level == 50


def test_progress_from_dict_fills_defaults():
    progress = progress_from_dict({'total_points': 130, 'last_active_date': '2024-03-01'})

    assert progress.total_points == 130
    assert progress.level == 2
    assert progress.current_streak == 0
    assert progress.completed_task_ids == frozenset()
    assert progress.last_active_date == DAY_1


def test_progress_from_dict_reads_to_dict_output():
    original = complete(default_progress(), 't1', DAY_1).progress

    assert progress_from_dict(original.to_dict()) == original


def test_progress_from_empty_dict_is_default():
    assert progress_from_dict(None) == default_progress()


def test_progress_from_dict_rejects_badge_without_unlock_time():
    with pytest.raises(ProgressValidationError, match='unlocked_at'):
        progress_from_dict({'badges': [{'id': 'first-task'}]})


def test_progress_from_dict_rejects_badge_without_id():
    with pytest.raises(ProgressValidationError, match='missing its id'):
        progress_from_dict({'badges': [{'unlocked_at': '2024-03-01T09:30:00'}]})
