from datetime import timedelta

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from proxmon.errors import (
    CollectionFailedError,
    CollectionInProgressError,
    CollectionTimeoutError,
    QueryValidationError,
    SourceRejectedError,
    SourceUnreachableError,
    StoreError,
    UnknownClusterError,
)
from proxmon.metrics.collector import MetricsCollector
from proxmon.metrics.record import utcnow
from proxmon.scheduler import CollectionScheduler
from proxmon.web import create_app
from proxmon.web.app import error_status


@pytest.fixture
def background():
    scheduler = BackgroundScheduler(timezone='UTC')
    yield scheduler
    if scheduler.running:
        scheduler.shutdown(wait=False)


@pytest.fixture
def scheduler(fake_source, memory_store, background):
    fake_source.add_cluster(1, 'main')
    fake_source.add_node(1, 'pve1')
    fake_source.add_vm(1, 'pve1', 101, 'web')
    collector = MetricsCollector(fake_source, memory_store, max_workers=2)
    return CollectionScheduler(collector, interval_minutes=5, scheduler=background)


@pytest.fixture
def client(scheduler, memory_store):
    app = create_app(scheduler, memory_store)
    app.config['TESTING'] = True
    return app.test_client()


class TestErrorStatus:

    @pytest.mark.parametrize('error, status', [
        (QueryValidationError("bad"), 400),
        (CollectionInProgressError("busy"), 409),
        (SourceUnreachableError("down"), 502),
        (SourceRejectedError(403, "Permission check failed"), 403),
        (UnknownClusterError(9), 404),
        (CollectionTimeoutError("slow"), 504),
        (CollectionFailedError("all failed"), 500),
        (StoreError("disk full"), 500),
    ])
    def test_mapping(self, error, status):
        assert error_status(error) == status


class TestHealth:

    def test_reports_stopped_collection(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        body = response.get_json()
        assert body['status'] == 'ok'
        assert body['services']['metrics_collection'] == 'stopped'
        assert body['services']['last_cycle'] is None


class TestCollectionControl:

    def test_start_and_stop(self, client, scheduler):
        assert client.post('/api/metrics/start').status_code == 200
        assert scheduler.is_running()
        assert client.get('/health').get_json()['services']['metrics_collection'] == 'running'

        assert client.post('/api/metrics/stop').status_code == 200
        assert not scheduler.is_running()

    def test_collect_now(self, client, memory_store):
        response = client.post('/api/metrics/collect')

        assert response.status_code == 200
        body = response.get_json()
        assert body['success'] is True
        assert body['result']['written'] == 2
        assert len(memory_store) == 2

    def test_collect_total_failure(self, client, fake_source):
        fake_source.fail('list_nodes', 1)

        response = client.post('/api/metrics/collect')

        assert response.status_code == 500
        assert response.get_json()['success'] is False

    def test_health_reports_last_cycle(self, client):
        client.post('/api/metrics/collect')
        last = client.get('/health').get_json()['services']['last_cycle']
        assert last['written'] == 2


class TestMetricQueries:

    def test_raw_metrics(self, client, memory_store, make_record):
        now = utcnow()
        for minutes in range(3):
            memory_store.append(make_record(timestamp=now - timedelta(minutes=minutes)))

        response = client.get('/api/metrics/?limit=2&cluster_id=1')

        body = response.get_json()
        assert response.status_code == 200
        assert body['count'] == 2
        assert body['data'][0]['timestamp'] == now.isoformat()

    def test_invalid_cluster_id(self, client):
        response = client.get('/api/metrics/?cluster_id=abc')
        assert response.status_code == 400
        assert 'cluster_id' in response.get_json()['error']

    def test_latest(self, client, memory_store, make_record):
        now = utcnow()
        memory_store.append(make_record(type='vm', vmid=101, name='web', timestamp=now - timedelta(minutes=5)))
        memory_store.append(make_record(type='vm', vmid=101, name='web', timestamp=now))

        body = client.get('/api/metrics/latest?type=vm').get_json()

        assert body['count'] == 1
        assert body['data'][0]['timestamp'] == now.isoformat()

    def test_aggregated(self, client, memory_store, make_record):
        memory_store.append(make_record(cpu=20.0))

        body = client.get('/api/metrics/aggregated?interval=day&duration=2').get_json()

        assert body['count'] == 1
        assert body['data'][0]['avg_cpu_usage'] == 20.0

    def test_aggregated_invalid_interval(self, client):
        assert client.get('/api/metrics/aggregated?interval=month').status_code == 400

    def test_historical(self, client, memory_store, make_record):
        memory_store.append(make_record(cpu=35.0))

        body = client.get('/api/metrics/historical?metric=cpu').get_json()

        assert body['metric'] == 'cpu'
        assert body['data'][0]['usage'] == 35.0

    def test_historical_requires_metric(self, client):
        response = client.get('/api/metrics/historical')
        assert response.status_code == 400
        assert 'Metric type is required' in response.get_json()['error']
