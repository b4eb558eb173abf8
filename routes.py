from flask import Blueprint, current_app, jsonify, request

from gamification import ProgressConflictError, ProgressTracker, ProgressValidationError

progress_bp = Blueprint('progress', __name__)


def get_service():
    return current_app.extensions['gamification']


def progress_payload(progress, include_task_ids=True):
    data = progress.to_dict()
    if not include_task_ids:
        # Only the task just completed was looked up
        del data['completed_task_ids']
    data['level_progress'] = ProgressTracker.level_progress(progress.total_points).to_dict()
    return data


@progress_bp.errorhandler(ProgressValidationError)
def handle_validation_error(e):
    return jsonify({'status': 'error', 'message': str(e)}), 400


@progress_bp.errorhandler(ProgressConflictError)
def handle_conflict_error(e):
    current_app.logger.error("Progress conflict: %s", e)
    return jsonify({'status': 'error', 'message': str(e)}), 409


@progress_bp.route('/health')
def health():
    return jsonify({'status': 'ok'})


@progress_bp.route('/api/progress/<user_id>', methods=['GET'])
def get_progress(user_id):
    progress = get_service().get_progress(user_id)
    return jsonify({'status': 'success', 'user_id': user_id, 'progress': progress_payload(progress)})


@progress_bp.route('/api/progress/<user_id>/tasks/<path:task_id>/complete', methods=['POST'])
def complete_task(user_id, task_id):
    update = get_service().complete_task(user_id, task_id)
    return jsonify({
        'status': 'success',
        'user_id': user_id,
        'task_id': task_id,
        'points_earned': update.points_earned,
        'leveled_up': update.leveled_up,
        'new_badges': [badge.to_dict() for badge in update.new_badges],
        'progress': progress_payload(update.progress, include_task_ids=False),
    })


@progress_bp.route('/api/progress/<user_id>/badges', methods=['GET'])
def user_badges(user_id):
    overview = get_service().badge_overview(user_id)
    return jsonify(dict(overview, status='success', user_id=user_id))


@progress_bp.route('/api/progress/<user_id>/badges/refresh', methods=['POST'])
def refresh_badges(user_id):
    new_badges = get_service().refresh_badges(user_id)
    return jsonify({
        'status': 'success',
        'user_id': user_id,
        'new_badges': [badge.to_dict() for badge in new_badges],
    })


@progress_bp.route('/api/badges', methods=['GET'])
def list_badges():
    return jsonify({'badges': [badge.to_dict() for badge in get_service().catalog]})


@progress_bp.route('/api/leaderboard', methods=['GET'])
def leaderboard():
    """Global leaderboard by total points."""
    default_limit = current_app.config['LEADERBOARD_DEFAULT_LIMIT']
    max_limit = current_app.config['LEADERBOARD_MAX_LIMIT']
    limit = request.args.get('limit', default_limit, type=int)
    if limit < 1:
        return jsonify({'status': 'error', 'message': 'limit must be a positive integer'}), 400
    limit = min(limit, max_limit)

    result = get_service().leaderboard(limit, request.args.get('user_id'))
    return jsonify(dict(result, status='success'))
