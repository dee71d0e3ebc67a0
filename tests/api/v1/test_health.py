from fastapi import status
from fastapi.testclient import TestClient


class TestHealthCheckAPI:
    """Test cases for the /health endpoint"""

    def test_get_health_success(self, client: TestClient):
        """Test successful health check endpoint"""
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "ok"}

    def test_get_health_content_type(self, client: TestClient):
        """Test that health check returns JSON content type"""
        response = client.get("/health")

        assert "application/json" in response.headers.get("content-type", "")

    def test_get_health_no_authentication_required(self, client: TestClient):
        """Test that health check endpoint doesn't require authentication"""
        response = client.get("/health", headers={"Authorization": "Bearer invalid-token"})
        assert response.status_code == status.HTTP_200_OK

    def test_unknown_route(self, client: TestClient):
        assert client.get("/does-not-exist").status_code == status.HTTP_404_NOT_FOUND
