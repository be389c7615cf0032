import json
from types import SimpleNamespace

import pytest
import stripe
from bs4 import BeautifulSoup

from storefront.catalog import Product, format_price, load_catalog


def test_home_lists_catalog(client, catalog):
    resp = client.get("/")
    assert resp.status_code == 200
    soup = BeautifulSoup(resp.data, "lxml")
    names = [h.get_text() for h in soup.select(".card h3")]
    assert names == [p.name for p in catalog]
    assert "$4.99" in resp.get_data(as_text=True)


def test_cancel_page_exists(client):
    resp = client.get("/cart.html")
    assert resp.status_code == 200
    assert b"checkout-btn" in resp.data


def test_products_json_hides_asset_names(client):
    data = client.get("/products.json").get_json()
    assert data[0] == {"id": 1, "name": "Drake Dancing", "price": 499, "image": "images/drake-dancing.gif"}
    assert all("download" not in p for p in data)


def test_no_store_headers(client):
    resp = client.get("/health")
    assert resp.headers["Cache-Control"].startswith("no-store")


def test_cors_for_allowed_origin_only(make_app):
    client = make_app(cors_origin="https://front.example").test_client()
    ok = client.get("/health", headers={"Origin": "https://front.example"})
    assert ok.headers["Access-Control-Allow-Origin"] == "https://front.example"
    other = client.get("/health", headers={"Origin": "https://evil.example"})
    assert "Access-Control-Allow-Origin" not in other.headers


def test_cors_preflight_for_checkout(make_app):
    client = make_app(cors_origin="https://front.example").test_client()
    resp = client.options(
        "/create-checkout-session",
        headers={
            "Origin": "https://front.example",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Content-Type",
        },
    )
    assert resp.status_code == 200
    assert resp.headers["Access-Control-Allow-Origin"] == "https://front.example"
    assert "POST" in resp.headers["Access-Control-Allow-Methods"]


def test_cors_off_by_default(client):
    resp = client.get("/health", headers={"Origin": "https://front.example"})
    assert "Access-Control-Allow-Origin" not in resp.headers


def test_format_price():
    assert format_price(1999) == "$19.99"
    assert format_price(123456) == "$1,234.56"
    assert format_price(None) == "$0.00"


def test_load_catalog_skips_bad_records(tmp_path):
    path = tmp_path / "products.json"
    path.write_text(json.dumps([
        {"id": 1, "name": "A", "price": 100, "download": "a.zip"},
        {"id": 1, "name": "duplicate", "price": 100},
        {"id": "x", "name": "B", "price": 100},
        {"id": 2, "name": "", "price": 100},
        {"id": 3, "name": "C", "price": -5},
        "junk",
    ]), encoding="utf-8")
    assert load_catalog(str(path)) == [Product(1, "A", 100, "", "a.zip")]
    assert load_catalog(str(tmp_path / "missing.json")) == []


def test_broken_catalog_file_serves_empty_shop(make_app, tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text('[{"id": 1, "name": "A",', encoding="utf-8")
    assert load_catalog(str(broken)) == []

    client = make_app(catalog_path=str(broken)).test_client()
    assert client.get("/").status_code == 200
    assert client.get("/products.json").get_json() == []


# -------------------------
# Checkout success
# -------------------------
@pytest.fixture
def paid_session(monkeypatch):
    seen = []

    def retrieve(session_id):
        seen.append(session_id)
        return SimpleNamespace(id=session_id, payment_status="paid", metadata={"product_ids": "[1, 5]"})

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", retrieve)
    return seen


def test_success_page_lists_download_links(make_app, paid_session):
    client = make_app(download_tokens="required").test_client()
    resp = client.get("/checkout/success?session_id=cs_test_1&products=1,5")
    assert resp.status_code == 200
    assert paid_session == ["cs_test_1"]

    links = BeautifulSoup(resp.data, "lxml").select("a.download")
    assert [a.get_text() for a in links] == ["Drake Dancing", "Death Drummer"]
    download = client.get(links[1]["href"])
    assert download.status_code == 200
    assert "death-drummer.zip" in download.headers["Content-Disposition"]


def test_success_page_unpaid_session(client, monkeypatch):
    monkeypatch.setattr(
        stripe.checkout.Session, "retrieve",
        lambda session_id: SimpleNamespace(payment_status="unpaid", metadata={}),
    )
    resp = client.get("/checkout/success?session_id=cs_test_2")
    assert resp.status_code == 403
    assert not BeautifulSoup(resp.data, "lxml").select("a.download")


def test_success_page_unknown_session(client, monkeypatch):
    def retrieve(session_id):
        raise stripe.InvalidRequestError("No such checkout.session", "id")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", retrieve)
    assert client.get("/checkout/success?session_id=cs_nope").status_code == 400


def test_success_page_without_session_id(client):
    resp = client.get("/checkout/success")
    assert resp.status_code == 200
    assert b"Payment not confirmed" in resp.data
