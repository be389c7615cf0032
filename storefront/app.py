from __future__ import annotations

import logging
import os
import secrets
from typing import Any, Dict, List, Optional

import stripe
from flask import Flask, jsonify, render_template, request, send_file, url_for
from flask_cors import CORS

from .admin import register_admin
from .cart import lines_from_items
from .catalog import Product, find_product, format_price, load_catalog
from .checkout import create_checkout_session, retrieve_paid_session, session_product_ids
from .config import Settings
from .errors import (
    AssetError,
    CaptureDeclined,
    NotFoundError,
    ProviderError,
    StoreError,
    TokenError,
    ValidationError,
)
from .fulfillment import DownloadTokens, download_table, lookup_download, missing_assets, resolve_download
from .paypal import PayPalClient
from .visitors import GeoLocator, VisitorLog, register_visitor_logging

log = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# -------------------------
# App factory
# -------------------------
def create_app(
    settings: Optional[Settings] = None,
    *,
    visitor_log: Optional[VisitorLog] = None,
    geo_locator: Optional[GeoLocator] = None,
    paypal: Optional[PayPalClient] = None,
) -> Flask:
    settings = settings or Settings.from_env()
    settings.validate()
    if not settings.secret_key:
        settings = settings.with_overrides(secret_key=secrets.token_hex(32))
    configure_logging(settings.log_level)

    app = Flask(__name__)
    app.secret_key = settings.secret_key
    app.config["STORE_SETTINGS"] = settings
    app.config["SEND_FILE_MAX_AGE_DEFAULT"] = 0

    # Stripe configuration; every outbound call is bounded by PROVIDER_TIMEOUT.
    stripe.api_key = settings.stripe_secret_key or None
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.provider_timeout)

    if paypal is None:
        paypal = PayPalClient(
            settings.paypal_client_id,
            settings.paypal_client_secret,
            api_base=settings.paypal_api_base,
            timeout=settings.provider_timeout,
        )
    if visitor_log is None:
        visitor_log = VisitorLog(settings.visitor_log_size)
    if geo_locator is None and settings.geoip_url:
        geo_locator = GeoLocator(settings.geoip_url, timeout=settings.geoip_timeout)

    tokens = DownloadTokens(settings.secret_key, settings.download_ttl_seconds)

    app.extensions["visitor_log"] = visitor_log
    app.extensions["paypal"] = paypal
    app.extensions["download_tokens"] = tokens

    app.add_template_filter(format_price, name="price")

    app.extensions["geo_resolver"] = register_visitor_logging(app, visitor_log, geo_locator)
    register_admin(app, settings, visitor_log)

    # -------------------------
    # Catalog
    # -------------------------
    def get_catalog() -> List[Product]:
        return load_catalog(settings.catalog_path)

    def base_url() -> str:
        return settings.public_url or request.url_root.rstrip("/")

    def download_links(product_ids: List[int], reference: str) -> List[Dict[str, Any]]:
        if not product_ids:
            return []
        token = tokens.issue(product_ids, reference=reference)
        catalog = get_catalog()
        links = []
        for pid in product_ids:
            p = find_product(catalog, pid)
            links.append({
                "id": pid,
                "name": p.name if p else f"Product {pid}",
                "url": url_for("download", product_id=pid, token=token),
            })
        return links

    startup_table = download_table(get_catalog())
    missing = missing_assets(startup_table, settings.digital_dir)
    if missing:
        log.warning("Catalog products without an asset in %s: %s", settings.digital_dir, missing)
    if not settings.download_tokens_required:
        log.warning("DOWNLOAD_TOKENS=off: /download/<id> serves files without proof of payment")

    # -------------------------
    # Headers
    # -------------------------
    @app.after_request
    def add_headers(resp):
        resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        resp.headers["Pragma"] = "no-cache"
        resp.headers["Expires"] = "0"
        return resp

    if settings.cors_origin:
        CORS(
            app,
            origins="*" if settings.cors_origin == "*" else [settings.cors_origin],
            methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type"],
        )

    @app.errorhandler(StoreError)
    def store_error(e: StoreError):
        return jsonify({"error": e.public_message}), e.status_code

    # -------------------------
    # Routes
    # -------------------------
    @app.get("/")
    def home():
        return render_template("index.html", title="Shop", products=get_catalog())

    @app.get("/cart.html")
    def cart_page():
        # Stripe's cancel_url lands here; the cart itself lives in localStorage.
        return render_template("index.html", title="Cart", products=get_catalog())

    @app.get("/products.json")
    def products_json():
        return jsonify([p.to_json() for p in get_catalog()])

    @app.get("/health")
    def health():
        return jsonify({"ok": True})

    @app.post("/create-checkout-session")
    def create_checkout():
        payload = request.get_json(silent=True) or {}
        try:
            lines = lines_from_items(payload.get("items") if isinstance(payload, dict) else None)
            url = create_checkout_session(lines, base_url=base_url(), currency=settings.currency)
        except ValidationError as e:
            return jsonify({"error": e.message}), 400
        except ProviderError:
            return jsonify({"error": "Stripe checkout failed"}), 500
        return jsonify({"url": url})

    @app.get("/checkout/success")
    def checkout_success():
        """Verify the Stripe payment and hand out download links."""
        session_id = (request.args.get("session_id") or "").strip()
        if not session_id:
            return render_template("success.html", title="Thank you", paid=False, downloads=[])

        try:
            cs = retrieve_paid_session(session_id)
        except ValidationError as e:
            return render_template("success.html", title="Payment", paid=False, downloads=[], error=e.message), 400
        except ProviderError as e:
            return render_template("success.html", title="Payment", paid=False, downloads=[], error=e.message), 403

        downloads = download_links(session_product_ids(cs), reference=session_id)
        return render_template("success.html", title="Thank you", paid=True, downloads=downloads)

    @app.post("/capture-paypal-order")
    def capture_paypal_order():
        payload = request.get_json(silent=True) or {}
        order_id = str(payload.get("orderID") or "").strip() if isinstance(payload, dict) else ""
        if not order_id:
            return jsonify({"success": False, "details": {"error": "orderID is required"}}), 400

        try:
            result = paypal.capture(order_id)
        except CaptureDeclined as e:
            return jsonify({"success": False, "details": e.details}), 400
        except ProviderError as e:
            log.error("PayPal %s step failed for order %s: %s", e.step, order_id, e.message)
            return jsonify({"success": False, "details": {"step": e.step, "error": e.message}}), 400
        except Exception:
            log.exception("Unexpected error capturing PayPal order %s", order_id)
            return jsonify({"success": False}), 500

        body: Dict[str, Any] = {"success": True}
        downloads = download_links(result.product_ids(), reference=order_id)
        if downloads:
            body["downloads"] = downloads
        return jsonify(body)

    @app.get("/download/<product_id>")
    def download(product_id: str):
        try:
            table = download_table(get_catalog())
            lookup_download(product_id, table)
            if settings.download_tokens_required:
                tokens.check(request.args.get("token") or "", product_id)
            path = resolve_download(product_id, table, settings.digital_dir)
        except NotFoundError:
            return "File not found", 404
        except TokenError as e:
            log.info("Download of %s refused: %s", product_id, e.message)
            return e.public_message, e.status_code
        except AssetError as e:
            log.error("Download error: %s", e.message)
            return "Error downloading file", 500

        try:
            return send_file(path, as_attachment=True, download_name=os.path.basename(path))
        except OSError as e:
            log.error("Download error for product %s: %s", product_id, e)
            return "Error downloading file", 500

    return app
