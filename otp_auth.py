import asyncio
import logging
from urllib.parse import urlparse, parse_qs

import pyotp

from clock_errors import TotpFailed

logger = logging.getLogger("timesheet.otp")


def _mask_code(code: str) -> str:
    if not code:
        return ""
    # At debug level, show full code for testing
    if logger.isEnabledFor(logging.DEBUG):
        return code
    if len(code) <= 2:
        return "*" * len(code)
    return "*" * (len(code) - 2) + code[-2:]


def totp_from_secret(secret: str) -> pyotp.TOTP:
    """Build a TOTP generator from a base32 secret or an otpauth://totp URI."""
    secret = (secret or "").strip()
    if secret.lower().startswith("otpauth://"):
        parsed = urlparse(secret)
        if parsed.netloc.lower() != "totp":
            raise TotpFailed(f"Unsupported OTP type: {parsed.netloc}")
        params = parse_qs(parsed.query or "")
        key = (params.get("secret") or [""])[0]
        digits = int((params.get("digits") or ["6"])[0])
        period = int((params.get("period") or ["30"])[0])
        return pyotp.TOTP(_normalize(key), digits=digits, interval=period)
    return pyotp.TOTP(_normalize(secret))


def _normalize(secret: str) -> str:
    normalized = "".join(secret.split()).upper()
    if not normalized:
        raise TotpFailed("TOTP secret is empty")
    return normalized


class PyOtpProvider:
    async def generate(self, secret: str) -> str:
        try:
            code = totp_from_secret(secret).now()
        except TotpFailed:
            raise
        except (ValueError, TypeError) as e:
            # pyotp raises binascii.Error (a ValueError) on bad base32
            raise TotpFailed(f"TOTP generation failed: {e}") from e
        logger.debug(f"Generated TOTP code: {_mask_code(code)}")
        return code


class OathtoolProvider:
    """Generates the code with the `oathtool` binary in a child process."""

    def __init__(self, executable: str = "oathtool"):
        self.executable = executable

    async def generate(self, secret: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable, "--totp", "-b", secret,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TotpFailed(f"TOTP generator unavailable: {e}") from e
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", "replace").strip() or f"exit code {proc.returncode}"
            raise TotpFailed(f"TOTP generation failed: {detail}")
        code = stdout.decode("utf-8", "replace").strip()
        logger.debug(f"Generated TOTP code: {_mask_code(code)}")
        return code


def provider_for(backend: str):
    if backend == "oathtool":
        return OathtoolProvider()
    if backend in ("", "pyotp"):
        return PyOtpProvider()
    raise ValueError(f"Unknown TOTP backend: {backend}")
