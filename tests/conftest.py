import base64
import json
import os
from types import SimpleNamespace

import pytest
import requests
import stripe

from storefront import Settings, create_app
from storefront.catalog import load_catalog
from storefront.config import PACKAGE_DIR
from storefront.paypal import PayPalClient
from storefront.visitors import VisitorLog

SAMPLE_CATALOG = os.path.join(PACKAGE_DIR, "data", "products.json")
ADMIN_USER = "admin"
ADMIN_PASS = "s3cret-pass"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeSession:
    """Stands in for requests.Session; replays queued responses or exceptions."""

    def __init__(self, *responses):
        self.headers = {}
        self.queue = list(responses)
        self.calls = []

    def _next(self, method, url, kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        item = self.queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)


@pytest.fixture
def catalog():
    return load_catalog(SAMPLE_CATALOG)


@pytest.fixture
def digital_dir(tmp_path, catalog):
    d = tmp_path / "digital"
    d.mkdir()
    for p in catalog:
        (d / p.download).write_bytes(f"asset for {p.id}".encode())
    return d


@pytest.fixture
def settings(digital_dir):
    return Settings(
        environment="testing",
        secret_key="test-secret-key",
        stripe_secret_key="sk_test_dummy",
        public_url="http://shop.test",
        paypal_client_id="client-id",
        paypal_client_secret="client-secret",
        paypal_api_base="https://paypal.test",
        admin_username=ADMIN_USER,
        admin_password=ADMIN_PASS,
        catalog_path=SAMPLE_CATALOG,
        digital_dir=str(digital_dir),
        geoip_url="",
        log_level="WARNING",
    )


@pytest.fixture
def paypal_session():
    return FakeSession()


@pytest.fixture
def visitor_log():
    return VisitorLog(200)


@pytest.fixture
def make_app(settings, paypal_session, visitor_log):
    def _make(geo_locator=None, **overrides):
        s = settings.with_overrides(**overrides) if overrides else settings
        paypal = PayPalClient(
            s.paypal_client_id,
            s.paypal_client_secret,
            api_base=s.paypal_api_base,
            timeout=s.provider_timeout,
            session=paypal_session,
        )
        app = create_app(s, visitor_log=visitor_log, geo_locator=geo_locator, paypal=paypal)
        app.config["TESTING"] = True
        return app

    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def stripe_calls(monkeypatch):
    """Record Session.create kwargs; each call returns a fresh session."""
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        n = len(calls)
        return SimpleNamespace(id=f"cs_test_{n}", url=f"https://checkout.stripe.test/pay/cs_test_{n}")

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    return calls


def basic_auth(username, password):
    raw = f"{username}:{password}".encode("utf-8")
    return {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}
