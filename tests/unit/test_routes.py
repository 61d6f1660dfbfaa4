"""
Unit tests for run history routes (forgeback/routes/runs_routes.py).
"""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from forgeback.models import BackupRun, SourceOutcome


@pytest.fixture
def runs(db):
    """Two stored runs: an older failed one and a newer successful one."""
    older = BackupRun(status='failed', started_at=datetime(2026, 1, 14, 3, 0),
                      completed_at=datetime(2026, 1, 14, 3, 20), logs='[2026-01-14 03:00:00 UTC] Starting backup run')
    older.outcomes.append(SourceOutcome(kind='svn', outcome='failed', repositories=1,
                                        error_message='demo [verify_restore]: Loading failed; backup may be lost'))
    older.outcomes.append(SourceOutcome(kind='git', outcome='success', repositories=3))

    newer = BackupRun(status='success', started_at=datetime(2026, 1, 15, 3, 0),
                      completed_at=datetime(2026, 1, 15, 3, 0) + timedelta(minutes=5))
    newer.outcomes.append(SourceOutcome(kind='svn', outcome='success', repositories=2))
    newer.outcomes.append(SourceOutcome(kind='hg', outcome='disabled'))

    db.session.add_all([older, newer])
    db.session.commit()
    return older, newer


class TestListRuns:
    """Test GET /api/runs."""

    def test_list_newest_first(self, client, runs):
        response = client.get('/api/runs')

        assert response.status_code == 200
        data = response.get_json()
        assert data['total'] == 2
        assert [r['status'] for r in data['records']] == ['success', 'failed']
        assert data['records'][0]['duration_seconds'] == 300
        assert data['records'][1]['outcomes'][0]['kind'] == 'svn'

    def test_status_filter(self, client, runs):
        data = client.get('/api/runs?status=failed').get_json()

        assert data['total'] == 1
        assert data['records'][0]['status'] == 'failed'

    def test_invalid_status_filter(self, client, runs):
        response = client.get('/api/runs?status=running')

        assert response.status_code == 400

    def test_limit_capped(self, client, runs):
        data = client.get('/api/runs?limit=1000&offset=-5').get_json()

        assert data['limit'] == 200
        assert data['offset'] == 0

    def test_pagination(self, client, runs):
        data = client.get('/api/runs?limit=1&offset=1').get_json()

        assert len(data['records']) == 1
        assert data['records'][0]['status'] == 'failed'


class TestRunDetail:
    """Test GET /api/runs/<id>."""

    def test_detail_includes_logs(self, client, runs):
        older, _ = runs

        data = client.get(f'/api/runs/{older.id}').get_json()

        assert data['logs'] == '[2026-01-14 03:00:00 UTC] Starting backup run'
        assert data['outcomes'][0]['error_message'].startswith('demo [verify_restore]')

    def test_not_found(self, client, db):
        assert client.get('/api/runs/999').status_code == 404


class TestLatestOutcomes:
    """Test GET /api/runs/latest."""

    def test_latest_per_kind(self, client, runs):
        _, newer = runs

        data = client.get('/api/runs/latest').get_json()

        assert data['svn']['outcome'] == 'success'
        assert data['svn']['run_id'] == newer.id
        assert data['git']['outcome'] == 'success'
        assert data['hg']['outcome'] == 'disabled'
        assert data['bzr'] is None
        assert data['app'] is None


class TestTriggerRun:
    """Test POST /api/runs/trigger."""

    def test_scheduler_not_running(self, client, db):
        response = client.post('/api/runs/trigger')

        assert response.status_code == 503

    @patch('forgeback.scheduler.trigger_run_now', return_value='manual_1768446000')
    @patch('forgeback.scheduler.is_scheduler_running', return_value=True)
    def test_trigger(self, mock_running, mock_trigger, client, db):
        response = client.post('/api/runs/trigger')

        assert response.status_code == 202
        assert response.get_json()['job_id'] == 'manual_1768446000'
        mock_trigger.assert_called_once()


class TestHealth:
    """Test /health."""

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy'}
