import asyncio

import pyotp
import pytest

from clock_errors import TotpFailed
from otp_auth import PyOtpProvider, OathtoolProvider, totp_from_secret, provider_for

SECRET = "JBSWY3DPEHPK3PXP"


def test_pyotp_code_matches_reference():
    code = asyncio.run(PyOtpProvider().generate(SECRET))
    assert len(code) == 6 and code.isdigit()
    assert pyotp.TOTP(SECRET).verify(code)


def test_secret_normalization():
    assert totp_from_secret("jbsw y3dp ehpk 3pxp").secret == SECRET


def test_otpauth_uri():
    totp = totp_from_secret(f"otpauth://totp/Acme:me?secret={SECRET}&digits=8&period=60")
    assert totp.secret == SECRET
    assert totp.digits == 8
    assert totp.interval == 60


def test_hotp_uri_is_rejected():
    with pytest.raises(TotpFailed, match="Unsupported"):
        totp_from_secret(f"otpauth://hotp/Acme:me?secret={SECRET}")


@pytest.mark.parametrize("secret", ["", "   ", "not base32!"])
def test_bad_secret_raises_totp_failed(secret):
    with pytest.raises(TotpFailed):
        asyncio.run(PyOtpProvider().generate(secret))


def test_missing_oathtool_raises_totp_failed():
    provider = OathtoolProvider(executable="oathtool-does-not-exist")
    with pytest.raises(TotpFailed, match="unavailable"):
        asyncio.run(provider.generate(SECRET))


def test_provider_for():
    assert isinstance(provider_for("pyotp"), PyOtpProvider)
    assert isinstance(provider_for("oathtool"), OathtoolProvider)
    with pytest.raises(ValueError):
        provider_for("sms")
