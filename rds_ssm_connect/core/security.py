"""
Allow-list validation for values interpolated into AWS CLI invocations.

Every value that ends up in a command line, whether it came from the caller
(profile, project patterns) or from a previous AWS query (instance id,
hostname), is checked here first.
"""
import re
from typing import Optional

from rds_ssm_connect.core.exceptions import ValidationError

PROFILE_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
SEARCH_PATTERN = re.compile(r"^[A-Za-z0-9._*-]{1,128}$")
SECRET_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9._/-]{1,256}$")
REGION_PATTERN = re.compile(r"^[a-z]{2}(-[a-z]+-\d+)$")
INSTANCE_ID_PATTERN = re.compile(r"^i-[0-9a-f]{8,17}$")
HOSTNAME_PATTERN = re.compile(
    r"^(?=.{1,253}$)[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$"
)
SECRET_NAME_PATTERN = re.compile(r"^[A-Za-z0-9._/+=@-]{1,512}$")
PORT_PATTERN = re.compile(r"[0-9]{1,5}")


def _check(pattern: re.Pattern, field: str, value: Optional[str]) -> str:
    if not isinstance(value, str) or not pattern.fullmatch(value):
        raise ValidationError(field, value)
    return value


def validate_profile(value: Optional[str]) -> str:
    return _check(PROFILE_PATTERN, "profile", value)


def validate_search_pattern(value: Optional[str], field: str = "search pattern") -> str:
    return _check(SEARCH_PATTERN, field, value)


def validate_secret_prefix(value: Optional[str]) -> str:
    return _check(SECRET_PREFIX_PATTERN, "secret prefix", value)


def validate_secret_name(value: Optional[str]) -> str:
    return _check(SECRET_NAME_PATTERN, "secret name", value)


def validate_region(value: Optional[str]) -> str:
    return _check(REGION_PATTERN, "region", value)


def validate_instance_id(value: Optional[str]) -> str:
    """Instance ids are ``i-`` followed by 8 to 17 lowercase hex digits."""
    return _check(INSTANCE_ID_PATTERN, "instance id", value)


def validate_hostname(value: Optional[str]) -> str:
    return _check(HOSTNAME_PATTERN, "hostname", value)


def validate_port(value: object, field: str = "port") -> int:
    """Accept an int or a string of ASCII digits in the TCP port range."""
    if isinstance(value, bool) or not PORT_PATTERN.fullmatch(str(value)):
        raise ValidationError(field, value)
    port = int(str(value))
    if not 0 < port < 65536:
        raise ValidationError(field, value)
    return port
