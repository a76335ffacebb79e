"""
Tests for the health check endpoint and request id middleware.
"""
from unittest.mock import patch

import pytest


@pytest.mark.django_db
class TestHealthCheck:

    def test_healthy(self, api_client):
        response = api_client.get('/v1/health/')

        assert response.status_code == 200
        assert response.json() == {'status': 'healthy', 'database': 'healthy', 'cache': 'healthy'}

    def test_cache_outage_returns_503(self, api_client):
        with patch('django.core.cache.backends.locmem.LocMemCache.set', side_effect=ConnectionError('redis down')):
            response = api_client.get('/v1/health/')

        body = response.json()
        assert response.status_code == 503
        assert body['cache'] == 'unhealthy'
        assert body['errors'] == ['Cache: unavailable']

    def test_response_carries_request_id(self, api_client):
        response = api_client.get('/v1/health/', HTTP_X_REQUEST_ID='trace-abc')
        assert response['X-Request-ID'] == 'trace-abc'

    def test_request_id_generated_when_absent(self, api_client):
        response = api_client.get('/v1/health/')
        assert len(response['X-Request-ID']) == 36
