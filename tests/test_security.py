from __future__ import annotations

import base64
import hashlib
import hmac

import pytest
from fastapi import HTTPException

from mup_app.security import normalize_shop_domain, require_internal_api_token, verify_webhook_hmac


def _webhook_hmac(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def test_normalize_shop_domain_accepts_valid_domain():
    assert normalize_shop_domain(" Example-Shop.myshopify.com ") == "example-shop.myshopify.com"


@pytest.mark.parametrize("shop", ["example.com", "", "evil.myshopify.com.attacker.io"])
def test_normalize_shop_domain_rejects_invalid_domain(shop):
    with pytest.raises(HTTPException) as exc_info:
        normalize_shop_domain(shop)
    assert exc_info.value.status_code == 400


def test_verify_webhook_hmac_accepts_valid_signature():
    body = b'{"id": 1}'
    assert verify_webhook_hmac(body=body, supplied_hmac=_webhook_hmac(body, "test_secret"))


def test_verify_webhook_hmac_rejects_tampered_body_and_missing_header():
    signature = _webhook_hmac(b'{"id": 1}', "test_secret")
    assert not verify_webhook_hmac(body=b'{"id": 2}', supplied_hmac=signature)
    assert not verify_webhook_hmac(body=b'{"id": 1}', supplied_hmac=None)


def test_require_internal_api_token():
    require_internal_api_token("Bearer internal_token")
    with pytest.raises(HTTPException) as missing:
        require_internal_api_token(None)
    with pytest.raises(HTTPException) as wrong:
        require_internal_api_token("Bearer nope")
    assert missing.value.status_code == 401
    assert wrong.value.status_code == 403
