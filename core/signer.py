from __future__ import annotations

import hashlib
import hmac
from typing import Optional


def sign_partner(
    *,
    partner_id: int,
    partner_key: str,
    path: str,
    timestamp: int,
    access_token: Optional[str] = None,
    shop_id: Optional[int] = None,
) -> str:
    """HMAC-SHA256 hex digest over partner_id + path + timestamp [+ access_token] [+ shop_id].

    ``path`` is the endpoint path only (``/api/v2/product/get_item_list``), no host
    and no query string.
    """
    if "?" in path:
        raise ValueError(f"path must not contain a query string: {path!r}")
    base = f"{partner_id}{path}{timestamp}"
    if access_token is not None:
        base += access_token
    if shop_id is not None:
        base += str(shop_id)
    return hmac.new(
        partner_key.strip().encode("utf-8"), base.encode("utf-8"), hashlib.sha256
    ).hexdigest()
