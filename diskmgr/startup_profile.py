from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse


@dataclass
class StartupProfile:
    host: str
    port: int
    database_url: str


def _require_valid_port(port: int, field_name: str = "port") -> None:
    if int(port) < 1 or int(port) > 65535:
        raise ValueError(f"{field_name} must be in range 1..65535")


def _require_non_empty_host(host: str) -> None:
    if not str(host or "").strip():
        raise ValueError("host is required")


def validate_service_profile(profile: StartupProfile) -> None:
    _require_non_empty_host(profile.host)
    _require_valid_port(profile.port)

    scheme = urlparse(str(profile.database_url or "").strip()).scheme
    if not scheme.startswith(("sqlite", "postgresql")):
        raise ValueError("database_url must be a sqlite or postgresql URL")


def validate_base_url(base_url: str) -> None:
    parsed = urlparse(str(base_url or "").strip())
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("base_url must be a valid http(s) URL")
