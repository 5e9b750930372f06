import pytest
from conftest import FALLBACK_URLS, make_settings
from fastapi.testclient import TestClient

from rpc_dashboard.api import create_app


def test_read_root(client):
    """Landing page lists every plan with its price."""
    response = client.get("/")
    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]
    assert "Multi-RPC" in response.text
    for plan, price in (("Free", "$0"), ("Starter", "$29"), ("Pro", "$99"), ("Enterprise", "$299")):
        assert plan in response.text
        assert price in response.text


@pytest.mark.parametrize(
    ("path", "heading"),
    [
        ("/auth", "Create an account"),
        ("/dashboard", "Overview"),
        ("/dashboard/keys", "API Keys"),
        ("/dashboard/billing", "Billing"),
        ("/dashboard/settings", "Settings"),
        ("/dashboard/analytics", "Analytics"),
        ("/dashboard/endpoints", "Custom Endpoints"),
        ("/dashboard/profile", "Profile"),
    ],
)
def test_pages_render_in_development_mode(client, path, heading):
    response = client.get(path)
    assert response.status_code == 200
    assert heading in response.text


def test_billing_page_offers_paid_plans_only(client):
    text = client.get("/dashboard/billing").text
    assert 'data-plan="STARTER"' in text
    assert 'data-plan="ENTERPRISE"' in text
    assert 'data-plan="FREE"' not in text


def test_monitoring_page_lists_endpoints(client, call):
    call(client.app.state.balancer.check_all)

    text = client.get("/dashboard/monitoring").text
    for url in FALLBACK_URLS:
        assert url in text
    assert "healthy" in text
    assert "unhealthy" in text


@pytest.fixture
def privy_client(rpc_mock):
    settings = make_settings(privy_app_id="app-123", privy_app_secret="secret", privy_verification_key="not-a-key")
    with TestClient(create_app(settings), follow_redirects=False) as client:
        yield client


def test_dashboard_redirects_without_token(privy_client):
    response = privy_client.get("/dashboard/keys")
    assert response.status_code == 307
    assert response.headers["location"] == "/auth"


def test_invalid_token_cookie_redirects(privy_client):
    privy_client.cookies.set("privy-token", "garbage")
    for path in ("/dashboard", "/dashboard/analytics", "/dashboard/profile"):
        response = privy_client.get(path)
        assert response.status_code == 307
        assert response.headers["location"] == "/auth"


def test_auth_page_open_without_token(privy_client):
    assert privy_client.get("/auth").status_code == 200
    assert privy_client.get("/").status_code == 200
