"""
Test suite for health, readiness and metrics endpoints.
"""

import pytest
import time
from unittest.mock import patch

REQUEST_ID = '0b6e1f7a-7b1c-4a43-9d2b-3f7f0c9e2a11'


class TestHealthEndpoint:
    """Test /healthz endpoint functionality."""

    def test_health_endpoint_always_returns_200(self, client):
        response = client.get('/healthz')
        assert response.status_code == 200

    def test_health_alias(self, client):
        response = client.get('/health')
        assert response.status_code == 200

    def test_health_endpoint_response_format(self, client):
        """Test health endpoint response format."""
        response = client.get('/healthz')
        data = response.get_json()

        assert set(data.keys()) == {'status', 'service', 'timestamp'}
        assert data['status'] == 'healthy'
        assert data['service'] == 'headshop-api'
        assert abs(time.time() - data['timestamp']) < 5

    def test_health_endpoint_head_method(self, client):
        response = client.head('/healthz')
        assert response.status_code == 200
        assert response.data == b''


class TestReadinessEndpoint:
    """Test /readyz endpoint functionality."""

    def test_ready_with_database(self, client):
        response = client.get('/readyz')
        assert response.status_code == 200

        data = response.get_json()
        assert data['status'] == 'ready'
        assert data['checks']['database'] is True
        assert isinstance(data['checks']['circuits'], dict)

    def test_not_ready_when_database_fails(self, client):
        """Readiness fails while liveness stays OK."""
        with patch('headshop.routes.health.db.session.execute', side_effect=Exception("db down")):
            response = client.get('/readyz')
        assert response.status_code == 503
        data = response.get_json()
        assert data['status'] == 'not_ready'
        assert data['checks']['database'] is False

        assert client.get('/healthz').status_code == 200


class TestMetricsEndpoint:

    def test_metrics_exposed(self, client):
        client.get('/healthz')
        response = client.get('/metrics')
        assert response.status_code == 200
        assert b'headshop_http_requests_total' in response.data

    def test_route_ids_normalized(self, app):
        service = app.extensions['metrics']
        assert service._normalize_route('/api/checkout/payment-status/123') == '/api/checkout/payment-status/{id}'
        assert service._normalize_route(
            '/api/admin/orders/3f2504e0-4f89-11d3-9a0c-0305e82c3301/approve-payment'
        ) == '/api/admin/orders/{uuid}/approve-payment'


class TestRequestContext:

    def test_request_id_echoed(self, client):
        response = client.get('/healthz', headers={'X-Request-ID': REQUEST_ID})
        assert response.headers.get('X-Request-ID') == REQUEST_ID

    def test_request_id_generated(self, client):
        response = client.get('/healthz')
        assert response.headers.get('X-Request-ID')


if __name__ == '__main__':
    pytest.main([__file__])
