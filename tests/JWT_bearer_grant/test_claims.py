from datetime import UTC, datetime, timedelta

import pytest

import jwt_bearer_grant as m
from support import ISSUER, NOW, SUBJECT, TOKEN_URL, default_claims


class StubReplay:
    """ReplayGuard stand-in recording lookups."""

    def __init__(self, used: bool = False):
        self.used = used
        self.lookups: list[str] = []

    def is_used(self, ctx, jti):
        self.lookups.append(jti)
        return self.used


def _claims(**overrides) -> m.AssertionClaims:
    return m.AssertionClaims.from_mapping(default_claims(**overrides))


def _ts(delta: timedelta) -> int:
    return int((NOW + delta).timestamp())


@pytest.fixture
def replay() -> StubReplay:
    return StubReplay()


@pytest.fixture
def validator(config, replay) -> m.ClaimValidator:
    return m.ClaimValidator(config, replay)  # type: ignore[arg-type]


class TestFromMapping:
    def test_converts_registered_claims(self):
        claims = _claims(nbf=_ts(timedelta(minutes=-1)))

        assert claims.issuer == ISSUER
        assert claims.subject == SUBJECT
        assert claims.audience == (TOKEN_URL,)
        assert claims.expires_at == NOW + timedelta(minutes=5)
        assert claims.not_before == NOW - timedelta(minutes=1)
        assert claims.issued_at == NOW
        assert claims.expires_at.tzinfo is UTC
        assert claims.jwt_id == "abc123"

    def test_string_audience_becomes_tuple(self):
        assert _claims(aud=TOKEN_URL).audience == (TOKEN_URL,)

    def test_float_numeric_date(self):
        claims = _claims(exp=NOW.timestamp() + 0.5)
        assert claims.expires_at == NOW + timedelta(milliseconds=500)

    def test_missing_optional_claims(self):
        claims = _claims(jti=None, iat=None)
        assert claims.jwt_id == ""
        assert claims.issued_at is None
        assert claims.not_before is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"exp": "tomorrow"},
            {"exp": True},
            {"iat": [1]},
            {"aud": ["ok", 3]},
            {"aud": 42},
            {"sub": 7},
            {"exp": 10**20},
        ],
    )
    def test_wrong_types_raise_value_error(self, overrides):
        with pytest.raises(ValueError):
            _claims(**overrides)


class TestRuleOrder:
    """Each rule, and that earlier rules win over later ones."""

    def test_valid_claims_pass(self, validator, replay):
        validator.validate(None, _claims(), NOW)
        assert replay.lookups == ["abc123"]

    def test_missing_audience(self, validator):
        with pytest.raises(m.InvalidGrant, match=r'"aud" \(audience\) claim\.'):
            validator.validate(None, _claims(aud=[]), NOW)

    def test_audience_without_token_url_even_if_expired(self, validator):
        claims = _claims(aud=["https://other.example"], exp=_ts(timedelta(minutes=-5)))
        with pytest.raises(m.InvalidGrant, match="intended audience"):
            validator.validate(None, claims, NOW)

    def test_token_url_among_several_audiences(self, validator):
        validator.validate(None, _claims(aud=["https://rs.example", TOKEN_URL]), NOW)

    def test_missing_expiry(self, validator):
        with pytest.raises(m.InvalidGrant, match="expiration time"):
            validator.validate(None, _claims(exp=None), NOW)

    def test_expired_exactly_now(self, validator):
        with pytest.raises(m.InvalidGrant, match="request parameter expired"):
            validator.validate(None, _claims(exp=_ts(timedelta(0))), NOW)

    def test_not_before_in_future(self, validator):
        with pytest.raises(m.InvalidGrant, match="not before"):
            validator.validate(None, _claims(nbf=_ts(timedelta(seconds=30))), NOW)

    def test_not_before_exactly_now_fails(self, validator):
        with pytest.raises(m.InvalidGrant, match="not before"):
            validator.validate(None, _claims(nbf=_ts(timedelta(0))), NOW)

    def test_not_before_in_past_passes(self, validator):
        validator.validate(None, _claims(nbf=_ts(timedelta(seconds=-1))), NOW)

    def test_missing_issued_at(self, validator):
        with pytest.raises(m.InvalidGrant, match="issued at"):
            validator.validate(None, _claims(iat=None), NOW)

    def test_lifetime_exactly_max_passes(self, validator):
        validator.validate(None, _claims(exp=_ts(timedelta(hours=1))), NOW)

    def test_lifetime_over_max(self, validator):
        with pytest.raises(m.InvalidGrant, match="unreasonably far"):
            validator.validate(None, _claims(exp=_ts(timedelta(hours=1, seconds=1))), NOW)

    def test_lifetime_measured_from_issued_at(self, validator):
        claims = _claims(
            iat=_ts(timedelta(minutes=-50)),
            exp=_ts(timedelta(minutes=20)),
        )
        with pytest.raises(m.InvalidGrant, match="unreasonably far"):
            validator.validate(None, claims, NOW)

    def test_missing_jti(self, validator, replay):
        with pytest.raises(m.InvalidGrant, match="JWT ID"):
            validator.validate(None, _claims(jti=None), NOW)
        assert replay.lookups == []

    def test_known_jti(self, config):
        replay = StubReplay(used=True)
        validator = m.ClaimValidator(config, replay)  # type: ignore[arg-type]
        with pytest.raises(m.JTIKnown):
            validator.validate(None, _claims(), NOW)

    def test_stateless_failure_skips_replay_lookup(self, config):
        replay = StubReplay(used=True)
        validator = m.ClaimValidator(config, replay)  # type: ignore[arg-type]
        with pytest.raises(m.InvalidGrant) as exc:
            validator.validate(None, _claims(exp=_ts(timedelta(0))), NOW)
        assert type(exc.value) is m.InvalidGrant
        assert replay.lookups == []


class TestOptionalClaims:
    def test_optional_issued_at_uses_now(self, replay):
        cfg = m.JWTBearerGrantConfig(
            token_url=TOKEN_URL,
            jwt_issued_date_optional=True,
            jwt_max_duration=timedelta(hours=1),
        )
        validator = m.ClaimValidator(cfg, replay)  # type: ignore[arg-type]

        validator.validate(None, _claims(iat=None, exp=_ts(timedelta(minutes=30))), NOW)
        with pytest.raises(m.InvalidGrant, match="unreasonably far"):
            validator.validate(None, _claims(iat=None, exp=_ts(timedelta(hours=2))), NOW)

    def test_optional_jti_skips_replay_lookup(self, replay):
        cfg = m.JWTBearerGrantConfig(token_url=TOKEN_URL, jwt_id_optional=True)
        validator = m.ClaimValidator(cfg, replay)  # type: ignore[arg-type]

        validator.validate(None, _claims(jti=None), NOW)
        assert replay.lookups == []

    def test_cancelled_context_checked_before_replay_lookup(self, validator, replay):
        ctx = m.RequestContext()
        ctx.cancel()
        with pytest.raises(m.ServerError):
            validator.validate(ctx, _claims(), NOW)
        assert replay.lookups == []


def test_clock_is_the_only_time_source(validator):
    later = datetime(2030, 1, 1, tzinfo=UTC)
    with pytest.raises(m.InvalidGrant, match="request parameter expired"):
        validator.validate(None, _claims(), later)
