"""Webhook signature verification"""
import pytest

from mocks import sign
from services.signature_verifier import (
    SCHEME_TOKEN,
    VerificationPolicy,
    compute_signature,
    verify_signature,
)

BODY = b'{"event_type":"payment.completed","data":{"id":"tx_1"}}'
SECRET = "s3cret"

DEV_BYPASS = VerificationPolicy(environment="development", allow_unsigned=True)
STRICT = VerificationPolicy.strict()


def test_valid_hmac_is_accepted():
    assert verify_signature(BODY, sign(BODY, SECRET), SECRET, STRICT)


def test_sha256_prefix_and_uppercase_hex_are_accepted():
    provided = "sha256=" + sign(BODY, SECRET).upper()
    assert verify_signature(BODY, provided, SECRET, STRICT)


def test_signature_from_another_secret_is_rejected():
    assert not verify_signature(BODY, sign(BODY, "other-secret"), SECRET, STRICT)


def test_tampered_body_is_rejected():
    signature = sign(BODY, SECRET)
    assert not verify_signature(BODY + b" ", signature, SECRET, STRICT)


@pytest.mark.parametrize("signature, secret", [(None, SECRET), ("", SECRET), ("abc", None), ("abc", "")])
def test_missing_signature_or_secret_fails_closed(signature, secret):
    assert not verify_signature(BODY, signature, secret, STRICT)


def test_bypass_accepts_unsigned_delivery_outside_production():
    assert verify_signature(BODY, None, SECRET, DEV_BYPASS)
    assert verify_signature(BODY, "anything", None, DEV_BYPASS)


def test_bypass_never_accepts_a_wrong_signature():
    assert not verify_signature(BODY, sign(BODY, "wrong"), SECRET, DEV_BYPASS)


def test_bypass_policy_cannot_be_built_for_production():
    with pytest.raises(ValueError):
        VerificationPolicy(environment="production", allow_unsigned=True)


def test_policy_from_settings_ignores_bypass_in_production():
    class _Settings:
        ENVIRONMENT = "production"
        WEBHOOK_VERIFY_BYPASS = True

    policy = VerificationPolicy.from_settings(_Settings())
    assert policy.allow_unsigned is False


def test_policy_from_settings_allows_bypass_in_test_environment():
    class _Settings:
        ENVIRONMENT = "Test"
        WEBHOOK_VERIFY_BYPASS = True

    policy = VerificationPolicy.from_settings(_Settings())
    assert policy.allow_unsigned is True
    assert policy.environment == "test"


def test_token_scheme_compares_header_with_shared_token():
    assert verify_signature(BODY, "hottok-1", "hottok-1", STRICT, scheme=SCHEME_TOKEN)
    assert not verify_signature(BODY, "hottok-2", "hottok-1", STRICT, scheme=SCHEME_TOKEN)


def test_unknown_scheme_is_rejected():
    assert not verify_signature(BODY, sign(BODY, SECRET), SECRET, STRICT, scheme="md5")


def test_compute_signature_is_hex_hmac_sha256():
    assert compute_signature(BODY, SECRET) == sign(BODY, SECRET)
    assert len(compute_signature(BODY, SECRET)) == 64
