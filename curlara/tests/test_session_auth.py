import jwt
import pytest

from curlara.core.errors import MissingConfigurationError
from curlara.core.session_auth import SessionTokenVerifier, bearer_token, create_test_session_token
from curlara.tests.mocks import JWT_SECRET


def test_verifies_supabase_token():
    token = create_test_session_token(sub="u1", email="u1@example.com", secret=JWT_SECRET)

    session = SessionTokenVerifier(JWT_SECRET)(token)

    assert session.subject_id == "u1"
    assert session.email == "u1@example.com"


def test_rejects_expired_token():
    token = create_test_session_token(secret=JWT_SECRET, exp_minutes=-5)

    with pytest.raises(jwt.ExpiredSignatureError):
        SessionTokenVerifier(JWT_SECRET)(token)


def test_rejects_wrong_audience():
    token = create_test_session_token(secret=JWT_SECRET, audience="anon")

    with pytest.raises(jwt.InvalidAudienceError):
        SessionTokenVerifier(JWT_SECRET)(token)


def test_requires_secret():
    with pytest.raises(MissingConfigurationError):
        SessionTokenVerifier(None)(create_test_session_token())


@pytest.mark.parametrize(
    "header,expected",
    [(None, None), ("", None), ("Bearer abc", "abc"), ("bearer  abc ", "abc"), ("Bearer ", None)],
)
def test_bearer_token(header, expected):
    assert bearer_token(header) == expected
