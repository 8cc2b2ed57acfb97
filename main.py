"""
ProxMon Application Entry Point

This is the main entry point for the cluster metrics monitoring application.
It initializes all components and starts the web server with metric collection.
"""

import argparse
import logging
import sys

from apscheduler.schedulers.background import BackgroundScheduler

from proxmon.cluster import ClusterProviderFactory, ProxmoxSource
from proxmon.errors import CollectionError
from proxmon.metrics import InMemoryMetricStore, JsonMetricStore, MetricsCollector
from proxmon.scheduler import CollectionScheduler, RetentionSweeper
from proxmon.settings import load_settings
from proxmon.web import create_app

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_store(storage_settings: dict):
    backend = storage_settings.get('backend', 'json')
    if backend == 'memory':
        return InMemoryMetricStore()
    if backend == 'json':
        return JsonMetricStore(base_dir=storage_settings['metrics_dir'])
    raise ValueError(f"Unknown storage backend: {backend}")


def main():
    """Main application entry point."""
    parser = argparse.ArgumentParser(description='Cluster Metrics Monitor')
    parser.add_argument('--config', '-c', default='config/settings.yaml',
                        help='Path to settings file')
    parser.add_argument('--host', default=None,
                        help='Web server host')
    parser.add_argument('--port', '-p', type=int, default=None,
                        help='Web server port')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug mode')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable debug logging')
    parser.add_argument('--no-collection', action='store_true',
                        help='Do not start the collection timer')
    parser.add_argument('--collect-once', action='store_true',
                        help='Run a single collection cycle and exit')
    args = parser.parse_args()

    setup_logging(args.verbose)

    # Load settings
    settings = load_settings(args.config)
    logger.info(f"Starting {settings['app']['name']}")
    logger.info(f"Configuration loaded from: {args.config}")

    # Initialize cluster provider and source adapter
    provider_config = settings['cluster_provider']
    cluster_provider = ClusterProviderFactory.create(
        provider_type=provider_config['type'],
        config=provider_config.get('config', {})
    )
    clusters = cluster_provider.get_clusters()
    logger.info(f"Discovered {len(clusters)} clusters")
    for cluster in clusters:
        logger.info(f"  - {cluster.id}: {cluster.name} ({cluster.host})")

    collection = settings['collection']
    source = ProxmoxSource(clusters, timeout=collection['request_timeout_seconds'])

    # Initialize metric storage
    storage_settings = settings['storage']
    metric_store = create_store(storage_settings)
    logger.info(f"Metric storage initialized: {storage_settings['backend']}")

    collector = MetricsCollector(source, metric_store, max_workers=collection['max_concurrency'])

    if args.collect_once:
        try:
            result = collector.collect_all()
        except CollectionError as e:
            logger.error(f"Collection failed: {e}")
            sys.exit(1)
        finally:
            source.close()
        logger.info(f"Collected {result.written} metrics ({result.failed} failures)")
        return

    background = BackgroundScheduler(timezone='UTC')
    background.start()

    retention = RetentionSweeper(
        metric_store,
        retention_days=storage_settings['retention_days'],
        sweep_interval_minutes=storage_settings['sweep_interval_minutes'],
        scheduler=background
    )
    retention.start()

    scheduler = CollectionScheduler(
        collector,
        interval_minutes=collection['interval_minutes'],
        scheduler=background
    )
    if collection['enabled'] and not args.no_collection:
        scheduler.start()

    # Create and configure Flask app
    app = create_app(scheduler, metric_store)

    # Determine host and port
    host = args.host or settings['web']['host']
    port = args.port or settings['web']['port']
    debug = args.debug or settings['app']['debug']

    logger.info(f"Starting web server on http://{host}:{port}")

    try:
        app.run(host=host, port=port, debug=debug, use_reloader=False)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        retention.stop()
        scheduler.shutdown()
        source.close()
        logger.info("Application stopped")


if __name__ == '__main__':
    main()
