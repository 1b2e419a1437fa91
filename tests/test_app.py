import pytest

from attendance_scanner.app import create_app
from attendance_scanner.scanner import ScannerService
from attendance_scanner.store import MemoryStore

from conftest import FakeCamera, FakeDetector, ManualLoop, ManualTimer, make_detection, unit


@pytest.fixture
def client(config, clock):
    store = MemoryStore()
    store.add_identity('S1', unit(0), name='Sara')
    camera = FakeCamera()
    service = ScannerService(
        config=config,
        store=store,
        detector=FakeDetector([make_detection(unit(0))]),
        camera_opener=lambda cfg: camera,
        loop_factory=ManualLoop,
        timer_factory=ManualTimer,
        clock=clock,
    )
    app = create_app(service, config)
    app.config['TESTING'] = True
    return app.test_client()


def test_health_endpoint(client):
    response = client.get('/health')
    assert response.status_code == 200
    body = response.get_json()
    assert body['status'] == 'ok'
    assert body['mode'] == 'idle'


def test_recognition_start_stop(client):
    response = client.post('/api/recognition/start')
    assert response.status_code == 200
    assert response.get_json()['running'] is True

    response = client.get('/api/recognition/status')
    assert response.get_json()['running'] is True

    response = client.post('/api/recognition/stop')
    assert response.get_json() == {'stopped': True}


def test_enrollment_requires_subject(client):
    response = client.post('/api/enrollment/start', json={})
    assert response.status_code == 400


def test_busy_camera_is_conflict(client):
    client.post('/api/recognition/start')

    response = client.post('/api/enrollment/start', json={'subjectId': 'S2'})

    assert response.status_code == 409
    assert 'busy' in response.get_json()['error']


def test_enrollment_start_status_cancel(client):
    response = client.post('/api/enrollment/start', json={'subjectId': 'S2', 'name': 'Sam'})
    assert response.status_code == 200
    assert response.get_json()['subjectId'] == 'S2'

    response = client.get('/api/enrollment/status')
    body = response.get_json()
    assert body['status'] == 'scanning'
    assert body['active'] is True

    response = client.post('/api/enrollment/cancel')
    assert response.get_json() == {'cancelled': True}


def test_save_without_enrollment_is_conflict(client):
    response = client.post('/api/enrollment/save')
    assert response.status_code == 409


def test_reload_identities(client):
    response = client.post('/api/identities/reload')
    assert response.get_json() == {'identities': 1}
