"""
Pickup serviceability by Indian pincode.

Both checkers answer with the same ServiceabilityResult, so the local rule
can be swapped for a remote lookup without touching callers.
"""
import logging
import re
from typing import Iterable, Optional

import httpx

from errors import ServiceabilityUnknown
from schemas import ServiceabilityResult

logger = logging.getLogger(__name__)

PIN_REGEX = re.compile(r"^[1-9][0-9]{5}$")
DEFAULT_PREFIXES = ("5", "6", "7", "8")

INVALID_FORMAT_MESSAGE = "Invalid pincode format."


def is_valid_pincode(code: Optional[str]) -> bool:
    return bool(code) and PIN_REGEX.match(code) is not None


def invalid_format(code: str) -> ServiceabilityResult:
    return ServiceabilityResult(serviceable=False, code=code, message=INVALID_FORMAT_MESSAGE)


class LocalPincodeChecker:
    """Serviceable when the first digit is in the allow-list."""

    def __init__(self, prefixes: Iterable[str] = DEFAULT_PREFIXES):
        self.prefixes = tuple(prefixes)

    def check(self, code: Optional[str]) -> ServiceabilityResult:
        code = str(code or "").strip()
        if not is_valid_pincode(code):
            return invalid_format(code)
        serviceable = code[0] in self.prefixes
        if serviceable:
            return ServiceabilityResult(serviceable=True, code=code, region="Serviceable Region",
                                        message="Pickup available in this area.")
        return ServiceabilityResult(serviceable=False, code=code, region="Outside service area",
                                    message="Sorry, pickup is not available in this pincode.")


class RemotePincodeChecker:
    """Asks another deployment's /api/check-pincode. Format is still checked locally first."""

    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client

    def check(self, code: Optional[str]) -> ServiceabilityResult:
        code = str(code or "").strip()
        if not is_valid_pincode(code):
            return invalid_format(code)

        url = f"{self.base_url}/api/check-pincode"
        try:
            if self.client is not None:
                res = self.client.get(url, params={"code": code}, timeout=self.timeout)
            else:
                res = httpx.get(url, params={"code": code}, timeout=self.timeout)
            if res.status_code == 400:
                return invalid_format(code)
            res.raise_for_status()
            return ServiceabilityResult.model_validate(res.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Serviceability lookup for %s failed: %s", code, e)
            raise ServiceabilityUnknown("Couldn't check serviceability. Please try again.")


def build_checker(service_url: Optional[str] = None, prefixes: Iterable[str] = DEFAULT_PREFIXES,
                  timeout: float = 5.0):
    if service_url:
        return RemotePincodeChecker(service_url, timeout=timeout)
    return LocalPincodeChecker(prefixes)
