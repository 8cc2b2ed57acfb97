"""
Web Application Module

This module provides a Flask-based HTTP interface to the collection control
operations and the metric queries.
"""

from flask import Flask, jsonify, request
from datetime import datetime, timezone
import logging

from proxmon.errors import (
    CollectionInProgressError,
    CollectionTimeoutError,
    ProxmonError,
    SourceRejectedError,
    SourceUnreachableError,
    ValidationError,
)
from proxmon.metrics.query import MetricQueryService
from proxmon.metrics.storage import MetricStore
from proxmon.scheduler import CollectionScheduler

logger = logging.getLogger(__name__)


def error_status(error: ProxmonError) -> int:
    """Map an application error to an HTTP status code."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, CollectionInProgressError):
        return 409
    if isinstance(error, SourceUnreachableError):
        return 502
    if isinstance(error, SourceRejectedError):
        return error.status_code
    if isinstance(error, CollectionTimeoutError):
        return 504
    return 500


def _listing(data):
    return jsonify({'success': True, 'count': len(data), 'data': data})


def create_app(scheduler: CollectionScheduler, metric_store: MetricStore) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(__name__)
    queries = MetricQueryService(metric_store)

    @app.errorhandler(ProxmonError)
    def handle_error(error: ProxmonError):
        status = error_status(error)
        if status >= 500:
            logger.error(f"[ERROR] {status} - {error}")
        return jsonify({'success': False, 'error': str(error)}), status

    @app.route('/health')
    def health():
        """Report collection state and the last cycle."""
        last = scheduler.last_result
        return jsonify({
            'status': 'ok',
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'services': {
                'metrics_collection': 'running' if scheduler.is_running() else 'stopped',
                'collecting': scheduler.is_collecting(),
                'last_cycle': last.to_dict() if last else None,
                'last_error': scheduler.last_error
            }
        })

    @app.route('/api/metrics/start', methods=['POST'])
    def start_collection():
        scheduler.start()
        return jsonify({'success': True, 'message': 'Metrics collection started'})

    @app.route('/api/metrics/stop', methods=['POST'])
    def stop_collection():
        scheduler.stop()
        return jsonify({'success': True, 'message': 'Metrics collection stopped'})

    @app.route('/api/metrics/collect', methods=['POST'])
    def collect_now():
        """Run one collection cycle and report its outcome."""
        timeout = request.args.get('timeout', type=float)
        result = scheduler.trigger_now(timeout=timeout)
        return jsonify({
            'success': True,
            'message': 'Metrics collection triggered successfully',
            'result': result.to_dict()
        })

    @app.route('/api/metrics/')
    def get_metrics():
        return _listing(queries.raw(request.args))

    @app.route('/api/metrics/latest')
    def get_latest_metrics():
        return _listing(queries.latest(request.args))

    @app.route('/api/metrics/aggregated')
    def get_aggregated_metrics():
        return _listing(queries.aggregated(request.args))

    @app.route('/api/metrics/historical')
    def get_historical_metrics():
        data = queries.historical(request.args)
        return jsonify({
            'success': True,
            'count': len(data),
            'metric': request.args.get('metric'),
            'data': data
        })

    return app
