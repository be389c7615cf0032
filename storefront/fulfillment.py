from __future__ import annotations

import os
from typing import Any, Dict, Iterable, List, Tuple

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .catalog import Product
from .errors import AssetError, NotFoundError, TokenError, TokenExpired

TOKEN_SALT = "downloads-v1"


def download_table(catalog: Iterable[Product]) -> Dict[int, str]:
    """Map product id -> asset filename, taken from the catalog records."""
    return {p.id: p.download for p in catalog if p.download}


def missing_assets(table: Dict[int, str], digital_dir: str) -> List[int]:
    return sorted(pid for pid, name in table.items() if not os.path.isfile(os.path.join(digital_dir, name)))


def safe_goods_path(digital_dir: str, filename: str) -> str:
    """Return absolute path under digital_dir, preventing path traversal."""
    name = (filename or "").replace("\\", "/")
    if not name or "/" in name or name in (".", ".."):
        raise AssetError(f"Refusing asset name {filename!r}")
    base = os.path.abspath(digital_dir)
    ap = os.path.abspath(os.path.join(base, name))
    if os.path.dirname(ap) != base:
        raise AssetError(f"Refusing asset name {filename!r}")
    return ap


def lookup_download(product_id: Any, table: Dict[int, str]) -> Tuple[int, str]:
    """Return ``(id, filename)`` for a mapped product or raise ``NotFoundError``."""
    try:
        pid = int(str(product_id).strip())
    except (TypeError, ValueError):
        raise NotFoundError(f"No download for product {product_id!r}")

    filename = table.get(pid)
    if not filename:
        raise NotFoundError(f"No download for product {pid}")
    return pid, filename


def resolve_download(product_id: Any, table: Dict[int, str], digital_dir: str) -> str:
    """Resolve a product id to the asset path on disk.

    Unknown ids raise ``NotFoundError``; a mapped id whose file is not
    readable raises ``AssetError``.
    """
    pid, filename = lookup_download(product_id, table)
    path = safe_goods_path(digital_dir, filename)
    if not os.path.isfile(path):
        raise AssetError(f"Asset for product {pid} missing: {path}")
    if not os.access(path, os.R_OK):
        raise AssetError(f"Asset for product {pid} not readable: {path}")
    return path


# -------------------------
# Signed download links (payment-bound)
# -------------------------
class DownloadTokens:
    def __init__(self, secret_key: str, max_age: int):
        self.max_age = max_age
        self._serializer = URLSafeTimedSerializer(secret_key, salt=TOKEN_SALT)

    def issue(self, product_ids: Iterable[int], *, reference: str = "") -> str:
        """Sign the list of purchased ids; ``reference`` is the payment id."""
        payload = {"ids": sorted({int(pid) for pid in product_ids}), "ref": reference}
        return self._serializer.dumps(payload)

    def read(self, token: str) -> Dict[str, Any]:
        try:
            data = self._serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            raise TokenExpired("Download link expired")
        except BadSignature:
            raise TokenError("Invalid download link")
        if not isinstance(data, dict):
            raise TokenError("Invalid download link")
        return data

    def check(self, token: str, product_id: Any) -> None:
        """Raise unless ``token`` covers ``product_id``."""
        if not token:
            raise TokenError("Download link required")
        data = self.read(token)
        try:
            pid = int(str(product_id).strip())
        except ValueError:
            raise NotFoundError(f"No download for product {product_id!r}")
        if pid not in (data.get("ids") or []):
            raise TokenError(f"Token does not cover product {pid}")
