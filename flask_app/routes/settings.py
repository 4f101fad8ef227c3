"""
Settings routes for managing servers and consolidation settings.
"""
import logging
from dataclasses import asdict

from flask import Blueprint, jsonify, request

from flask_app.models import db, ServerConfig
from flask_app.services.config_service import ConfigService
from flask_app.utils.validators import validate_server_config, validate_session_settings
from watchstats.api_client import TautulliClient
from watchstats.config_loader import SessionSettings

logger = logging.getLogger(__name__)

settings_bp = Blueprint('settings', __name__)


def _server_to_dict(server: ServerConfig) -> dict:
    return {
        'id': server.id,
        'name': server.name,
        'ip_address': server.ip_address,
        'has_tautulli': server.has_tautulli,
        'use_ssl': bool(server.use_ssl),
        'verify_ssl': bool(server.verify_ssl),
        'is_active': bool(server.is_active),
    }


@settings_bp.route('/sessions', methods=['GET'])
def get_session_settings():
    """Current dedup/consolidation windows and watched threshold."""
    return jsonify(asdict(ConfigService.get_session_settings()))


@settings_bp.route('/sessions', methods=['POST'])
def update_session_settings():
    """Update any subset of the consolidation settings."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Expected a JSON object.'}), 400

    errors = validate_session_settings(data)
    if errors:
        return jsonify({'error': ' '.join(errors)}), 400

    current = asdict(ConfigService.get_session_settings())
    current.update({k: v for k, v in data.items() if k in current})

    try:
        ConfigService.update_session_settings(SessionSettings(**current))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception("Updating session settings failed")
        return jsonify({'error': str(e)}), 500

    return jsonify(asdict(ConfigService.get_session_settings()))


@settings_bp.route('/servers', methods=['GET'])
def list_servers():
    """All configured servers (API keys are never returned)."""
    servers = ServerConfig.query.order_by(ServerConfig.id).all()
    return jsonify([_server_to_dict(s) for s in servers])


@settings_bp.route('/servers', methods=['POST'])
def save_server():
    """Add or update a server configuration."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Expected a JSON object.'}), 400

    errors = validate_server_config(data)
    if errors:
        return jsonify({'error': ' '.join(errors)}), 400

    try:
        server_id = data.get('id')
        if server_id:
            server = db.session.get(ServerConfig, int(server_id))
            if not server:
                return jsonify({'error': 'Server not found.'}), 404
        else:
            server = ServerConfig()
            db.session.add(server)

        server.name = data['name'].strip()
        server.ip_address = (data.get('ip_address') or '').strip() or None
        server.api_key = (data.get('api_key') or '').strip() or None
        server.use_ssl = bool(data.get('use_ssl', False))
        server.verify_ssl = bool(data.get('verify_ssl', False))
        server.is_active = bool(data.get('is_active', True))

        db.session.commit()
        logger.info("Saved server '%s'", server.name)
        return jsonify(_server_to_dict(server))
    except Exception as e:
        db.session.rollback()
        logger.exception("Saving server failed")
        return jsonify({'error': str(e)}), 500


@settings_bp.route('/servers/<int:server_id>', methods=['DELETE'])
def delete_server(server_id):
    """Delete a server configuration. Stored sessions are kept."""
    server = db.session.get(ServerConfig, server_id)
    if not server:
        return jsonify({'error': 'Server not found.'}), 404
    db.session.delete(server)
    db.session.commit()
    return jsonify({'status': 'deleted', 'id': server_id})


@settings_bp.route('/servers/<int:server_id>/test', methods=['POST'])
def check_server_connection(server_id):
    """Check that the server's Tautulli connection answers."""
    server = db.session.get(ServerConfig, server_id)
    if not server:
        return jsonify({'error': 'Server not found.'}), 404
    if not server.has_tautulli:
        return jsonify({'error': 'Server has no Tautulli connection configured.'}), 400

    client = TautulliClient(server.to_tautulli_config())
    return jsonify({'connected': client.test_connection()})


@settings_bp.route('/import-from-ini', methods=['POST'])
def import_from_ini():
    """Import the Tautulli connection and session settings from config.ini."""
    try:
        from watchstats.config_loader import load_config

        tautulli_config, session_settings = load_config()

        if tautulli_config:
            ConfigService.create_or_update_server(tautulli_config.name, tautulli_config)

        ConfigService.update_session_settings(session_settings)
        return jsonify({'status': 'imported', 'tautulli': tautulli_config is not None})
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception("Importing config.ini failed")
        return jsonify({'error': str(e)}), 500
