"""ClientPulse Flask Application.

Factory-pattern Flask application serving the customer success dashboard
API. The periodic health score sweep runs in the worker process
(workers/health_score_worker.py), not here.
"""
import logging

from flask import Flask, jsonify, request

from .api import api_bp
from .cache import get_cache
from .config import get_config
from .health.errors import (
    ClientNotFound, IncidentNotFound, TransientStoreError, ValidationError,
)
from .health.scheduler import get_scheduler
from .health.service import build_health_service
from .models import get_store
from .simulation import SimulationService

logger = logging.getLogger(__name__)


def create_app(config_name=None, store=None, cache=None):
    """Application factory.

    Args:
        config_name: Configuration to use ('development', 'production', 'testing').
                     Defaults to FLASK_ENV environment variable or 'development'.
        store: Store to serve from instead of the configured backend.
        cache: Cache to use instead of the configured one.

    Returns:
        Configured Flask application instance.
    """
    app_config = get_config(config_name)

    logging.basicConfig(
        level=getattr(logging, app_config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    app = Flask(__name__)
    app.config.from_object(app_config)

    if store is None:
        store = get_store(app_config)
    if cache is None:
        cache = get_cache(app_config)
    service = build_health_service(app_config, store=store, cache=cache)

    app.extensions['clientpulse'] = {
        'store': store,
        'cache': cache,
        'service': service,
        'scheduler': get_scheduler(app_config, service),
        'simulation': SimulationService(store, cache),
    }

    app.register_blueprint(api_bp)

    # ----------------------------------------------------------------
    # Error handlers
    # ----------------------------------------------------------------
    @app.errorhandler(ClientNotFound)
    def client_not_found(e):
        return jsonify({'success': False, 'error': e.message, 'client_id': e.client_id}), 404

    @app.errorhandler(TransientStoreError)
    def store_unavailable(e):
        logger.error(f"Store unavailable during {request.method} {request.path}: {e}")
        return jsonify({'success': False, 'error': 'Service temporarily unavailable'}), 503

    @app.errorhandler(IncidentNotFound)
    def incident_not_found(e):
        return jsonify({'success': False, 'error': e.message, 'incident_id': e.incident_id}), 404

    @app.errorhandler(ValidationError)
    def bad_request(e):
        return jsonify({'success': False, 'error': e.message}), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'success': False, 'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({'success': False, 'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({'success': False, 'error': 'Internal server error'}), 500

    logger.info(f"ClientPulse app created ({app_config.__name__}, store={app_config.STORE_BACKEND})")
    return app


if __name__ == '__main__':
    app = create_app()
    app.run(host='0.0.0.0', port=5000, debug=app.config.get('DEBUG', False))
