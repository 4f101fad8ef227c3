"""
Main application routes: session ingestion and concurrency statistics.
"""
import logging

from flask import Blueprint, jsonify, request

from flask_app.services.concurrency_service import ConcurrencyService
from flask_app.services.config_service import ConfigService
from flask_app.services.consolidation_service import ConsolidationService
from flask_app.services.history_sync_service import HistorySyncService
from watchstats.exceptions import BatchCancelledError, InvalidSessionError
from watchstats.models import SessionReport, TimeFilter

logger = logging.getLogger(__name__)

main_bp = Blueprint('main', __name__)

MAX_DAYS = 3650


def _parse_time_filter(args) -> TimeFilter:
    """
    Build a TimeFilter from query parameters.

    Raises:
        ValueError: If a parameter is present but not a valid integer
    """
    def int_arg(name):
        raw = args.get(name)
        if raw is None or raw == '':
            return None
        try:
            return int(raw)
        except ValueError:
            raise ValueError(f"{name} must be an integer")

    days = int_arg('days')
    if days is not None and (days < 1 or days > MAX_DAYS):
        raise ValueError(f"Invalid day range. Use 1-{MAX_DAYS}.")

    try:
        server_ids = [int(v) for v in args.getlist('server_id')]
    except ValueError:
        raise ValueError("server_id must be an integer")

    time_filter = TimeFilter(
        days=days,
        start=int_arg('start'),
        end=int_arg('end'),
        server_ids=server_ids
    )
    if time_filter.start is not None and time_filter.end is not None and time_filter.end < time_filter.start:
        raise ValueError("end must not be before start")
    return time_filter


@main_bp.route('/api/sessions', methods=['POST'])
def api_insert_session():
    """Admit a single session report."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({'error': 'Expected a JSON object.'}), 400

    try:
        report = SessionReport.from_dict(payload)
        session_id = ConsolidationService().insert_session(report)
        return jsonify({'id': session_id, 'created': session_id > 0})
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception("Session insert failed")
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/sessions', methods=['GET'])
def api_list_sessions():
    """List the canonical sessions for one (server, user, title)."""
    server_id = request.args.get('server_id', type=int)
    user = request.args.get('user', '')
    title = request.args.get('title', '')
    if not server_id or not user or not title:
        return jsonify({'error': 'server_id, user and title are required.'}), 400

    sessions = ConsolidationService.get_group_sessions(server_id, user, title)
    return jsonify([s.to_dict() for s in sessions])


@main_bp.route('/api/sessions/batch', methods=['POST'])
def api_insert_sessions_batch():
    """Admit an ordered batch of session reports in one transaction."""
    payload = request.get_json(silent=True)
    items = payload.get('sessions') if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        return jsonify({'error': 'Expected a JSON list of sessions.'}), 400

    reports = []
    unparsed = 0
    for item in items:
        try:
            reports.append(SessionReport.from_dict(item if isinstance(item, dict) else {}))
        except InvalidSessionError as e:
            logger.warning("Skipping unparseable session report: %s", e)
            unparsed += 1

    try:
        result = ConsolidationService().insert_sessions_batch(reports)
        return jsonify({
            'inserted': result.inserted,
            'skipped': result.skipped + unparsed,
            'merged': result.merged
        })
    except BatchCancelledError as e:
        return jsonify({'error': str(e)}), 409
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception("Batch session insert failed")
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/sessions/consolidate', methods=['POST'])
def api_consolidate_sessions():
    """Run the one-time historical consolidation and zombie cleanup passes."""
    payload = request.get_json(silent=True) or {}
    force = bool(payload.get('force', False))

    try:
        service = ConsolidationService()
        zombies_fixed = service.cleanup_zombie_sessions()
        result = service.run_backfill_consolidation(force=force)
        return jsonify({
            'groups': result.groups,
            'merged': result.merged,
            'duplicates_removed': result.duplicates_removed,
            'already_done': result.already_done,
            'zombies_fixed': zombies_fixed
        })
    except Exception as e:
        logger.exception("Session consolidation failed")
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/concurrent-streams')
def api_concurrent_streams():
    """Return concurrent streams chart JSON for the requested window."""
    try:
        time_filter = _parse_time_filter(request.args)
        result = ConcurrencyService.get_concurrent_streams_json(time_filter)
        return jsonify(result)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception("Concurrent streams query failed")
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/concurrent-peaks')
def api_concurrent_peaks():
    """Return peak concurrent streams; all time unless a window is given."""
    try:
        time_filter = _parse_time_filter(request.args)
        peaks = ConcurrencyService.get_concurrent_peaks(time_filter)
        return jsonify(peaks.to_dict())
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception("Concurrent peaks query failed")
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/history/sync', methods=['POST'])
def api_history_sync():
    """Import Tautulli history, either a backfill over N days or incremental."""
    if not ConfigService.has_valid_config():
        return jsonify({'error': 'No server configuration found.'}), 400

    payload = request.get_json(silent=True) or {}
    mode = payload.get('mode', 'incremental')

    try:
        sync_service = HistorySyncService()
        if mode == 'backfill':
            days = int(payload.get('days', 60))
            if days < 1 or days > MAX_DAYS:
                return jsonify({'error': f'Days must be between 1 and {MAX_DAYS}.'}), 400
            started = sync_service.start_backfill(days)
        elif mode == 'incremental':
            started = sync_service.start_incremental_sync()
        else:
            return jsonify({'error': f"Unknown sync mode '{mode}'."}), 400

        if not started:
            return jsonify({'error': 'A history sync is already in progress or no history exists yet.'}), 409
        return jsonify(sync_service.get_sync_status())
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception("History sync failed")
        return jsonify({'error': str(e)}), 500


@main_bp.route('/api/history/sync/cancel', methods=['POST'])
def api_history_sync_cancel():
    """Cancel a running history sync; the page in flight is rolled back."""
    HistorySyncService().cancel()
    return jsonify({'status': 'cancelling'})


@main_bp.route('/api/history/sync/status')
def api_history_sync_status():
    """Get current history sync status for polling."""
    try:
        sync_service = HistorySyncService()
        status = sync_service.get_sync_status()
        status['history'] = sync_service.get_history_stats()
        return jsonify(status)
    except Exception as e:
        return jsonify({'error': str(e)}), 500
