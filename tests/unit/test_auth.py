"""Tests for HTTP Basic authentication."""

import base64

import pytest

from conftest import USER_EMAIL, USER_ID, USER_PASSWORD, basic_auth
from life_carddav.auth import (
    AuthenticationError,
    BasicAuthenticator,
    hash_password,
    verify_password,
)


@pytest.fixture
def authenticator(users):
    return BasicAuthenticator(users, realm="Test Realm")


def test_password_hashing():
    """Test that hashes verify only the original password."""
    password_hash = hash_password("s3cret")
    assert password_hash != "s3cret"
    assert verify_password("s3cret", password_hash)
    assert not verify_password("wrong", password_hash)
    assert not verify_password("s3cret", "not-a-hash")


@pytest.mark.asyncio
async def test_authenticate(authenticator):
    """Test that valid credentials resolve to the user."""
    user = await authenticator.authenticate(basic_auth(USER_EMAIL, USER_PASSWORD)["Authorization"])
    assert user.user_id == USER_ID
    assert user.email == USER_EMAIL


@pytest.mark.asyncio
async def test_email_is_case_insensitive(authenticator):
    """Test that the email part of the credentials ignores case."""
    header = basic_auth(USER_EMAIL.upper(), USER_PASSWORD)["Authorization"]
    user = await authenticator.authenticate(header)
    assert user.user_id == USER_ID


@pytest.mark.asyncio
@pytest.mark.parametrize("scheme", ["basic", "BASIC", "bAsIc"])
async def test_scheme_is_case_insensitive(authenticator, scheme):
    """Test that the Basic scheme name matches regardless of case."""
    header = basic_auth(USER_EMAIL, USER_PASSWORD)["Authorization"].replace("Basic", scheme, 1)
    user = await authenticator.authenticate(header)
    assert user.user_id == USER_ID


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "Bearer abc",
        "Basic !!!not-base64",
        "Basic " + base64.b64encode(b"no-colon").decode(),
        "Basic " + base64.b64encode(b"alice@example.com:").decode(),
        basic_auth(USER_EMAIL, "wrong")["Authorization"],
        basic_auth("nobody@example.com", USER_PASSWORD)["Authorization"],
    ],
)
async def test_rejected(authenticator, header):
    """Test that missing, malformed and wrong credentials are a 401."""
    with pytest.raises(AuthenticationError) as exc_info:
        await authenticator.authenticate(header)
    assert exc_info.value.code == 401


@pytest.mark.asyncio
async def test_challenge_header(authenticator):
    """Test that the 401 carries the Basic challenge for the realm."""
    with pytest.raises(AuthenticationError) as exc_info:
        await authenticator.authenticate(None)
    assert exc_info.value.headers == {"WWW-Authenticate": 'Basic realm="Test Realm"'}
