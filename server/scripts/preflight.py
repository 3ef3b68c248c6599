"""Configuration preflight for the TalkFlair lip-sync gateway.

Validates the same `Settings` the server boots with (importing `talkflair`
loads the .env files), so a clean run here means a clean start:
  python server/scripts/preflight.py

Also probe the storage and provider API hosts:
  python server/scripts/preflight.py --check-http
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from typing import Literal, Optional

import httpx

from talkflair.config import VALID_PROVIDERS, VALID_RESPONSE_MODES, Settings
from talkflair.services.providers.base import is_http_url


Level = Literal["pass", "warn", "fail"]

CLOUDINARY_API_URL = "https://api.cloudinary.com"

# Settings attribute -> env var, per provider.
PROVIDER_CREDENTIALS: dict[str, tuple[tuple[str, str], ...]] = {
    "hedra": (("hedra_api_key", "HEDRA_API_KEY"),),
    "runpod": (("runpod_api_key", "RUNPOD_API_KEY"), ("runpod_endpoint_id", "RUNPOD_ENDPOINT_ID")),
    "visionstory": (("visionstory_api_key", "VISIONSTORY_API_KEY"),),
    "replicate": (
        ("replicate_api_token", "REPLICATE_API_TOKEN"),
        ("replicate_model_version", "REPLICATE_MODEL_VERSION"),
    ),
}
PROVIDER_BASE_URLS = {name: f"{name}_api_base" for name in VALID_PROVIDERS}

# Most reverse proxies give up on an idle request well before this.
SYNCED_WAIT_WARN_SECONDS = 600


@dataclass
class Finding:
    level: Level
    message: str


@dataclass
class Report:
    findings: list[Finding] = field(default_factory=list)

    def add(self, level: Level, message: str) -> None:
        self.findings.append(Finding(level, message))

    def messages(self, level: Level) -> list[str]:
        return [item.message for item in self.findings if item.level == level]

    @property
    def has_failures(self) -> bool:
        return any(item.level == "fail" for item in self.findings)


def _mask(value: str) -> str:
    trimmed = value.strip()
    return f"{trimmed[:4]}...{trimmed[-4:]}" if len(trimmed) >= 8 else "***"


def load_settings(report: Report) -> Optional[Settings]:
    try:
        return Settings.from_env()
    except ValueError as exc:
        report.add("fail", str(exc))
        return None


def check_storage(report: Report, settings: Settings) -> None:
    """Cloudinary is needed for every file upload; URL-only requests work without it."""
    missing = [
        env_name
        for attr, env_name in (
            ("cloudinary_cloud_name", "CLOUDINARY_CLOUD_NAME"),
            ("cloudinary_api_key", "CLOUDINARY_API_KEY"),
            ("cloudinary_api_secret", "CLOUDINARY_API_SECRET"),
        )
        if not getattr(settings, attr)
    ]
    if missing:
        report.add("fail", f"Cloudinary not configured; missing {', '.join(missing)}.")
        return
    report.add(
        "pass",
        f"Cloudinary cloud {settings.cloudinary_cloud_name} ({_mask(settings.cloudinary_api_key or '')}).",
    )


def check_provider(report: Report, settings: Settings) -> Optional[str]:
    """Validate the selected provider; returns its API base URL when usable."""
    name = settings.generation_provider
    if name not in PROVIDER_CREDENTIALS:
        report.add("fail", f"GENERATION_PROVIDER must be one of {', '.join(VALID_PROVIDERS)}, got {name!r}.")
        return None

    for attr, env_name in PROVIDER_CREDENTIALS[name]:
        value = getattr(settings, attr) or ""
        if value:
            report.add("pass", f"{env_name} set ({_mask(value)}).")
        else:
            report.add("fail", f"{env_name} is required when GENERATION_PROVIDER={name}.")

    base_url = getattr(settings, PROVIDER_BASE_URLS[name])
    if not is_http_url(base_url):
        report.add("fail", f"{name} API base is not an absolute http(s) URL: {base_url!r}")
        return None
    report.add("pass", f"Provider {name} at {base_url}.")
    return base_url


def check_delivery(report: Report, settings: Settings) -> None:
    """Response mode, poll budget and upload limit."""
    if settings.response_mode not in VALID_RESPONSE_MODES:
        report.add(
            "fail",
            f"RESPONSE_MODE must be one of {', '.join(VALID_RESPONSE_MODES)}, got {settings.response_mode!r}.",
        )
    else:
        report.add("pass", f"RESPONSE_MODE={settings.response_mode}.")

    bounds = (
        ("POLL_INTERVAL_SECONDS", settings.poll_interval_seconds, 0.1),
        ("POLL_MAX_ATTEMPTS", settings.poll_max_attempts, 1),
        ("POLL_MAX_CONSECUTIVE_FAILURES", settings.poll_max_consecutive_failures, 1),
        ("REQUEST_TIMEOUT_SECONDS", settings.request_timeout_seconds, 1.0),
        ("MAX_UPLOAD_MB", settings.max_upload_mb, 1),
    )
    for env_name, value, minimum in bounds:
        if value < minimum:
            report.add("fail", f"{env_name} must be >= {minimum}, got {value}.")

    budget = settings.poll_interval_seconds * settings.poll_max_attempts
    if settings.poll_max_consecutive_failures > settings.poll_max_attempts:
        report.add("warn", "POLL_MAX_CONSECUTIVE_FAILURES exceeds POLL_MAX_ATTEMPTS and can never trip.")
    if settings.response_mode == "synced" and budget > SYNCED_WAIT_WARN_SECONDS:
        report.add("warn", f"Synced /generate may hold a request open for {budget:g}s.")
    if settings.request_timeout_seconds > budget:
        report.add("warn", "REQUEST_TIMEOUT_SECONDS is longer than the whole poll budget.")
    report.add(
        "pass",
        f"Poll budget {settings.poll_max_attempts} x {settings.poll_interval_seconds:g}s = {budget:g}s.",
    )


def check_enhancer(report: Report, settings: Settings) -> None:
    if settings.enhancer_configured:
        report.add("pass", f"ElevenLabs voice isolation on ({_mask(settings.elevenlabs_api_key or '')}).")
    else:
        report.add("warn", "ELEVENLABS_API_KEY not set; audio is uploaded as received.")


def probe(url: str, *, timeout_seconds: float) -> Finding:
    """Any answer below 500 means the host is up; auth errors are expected here."""
    try:
        with httpx.Client(timeout=timeout_seconds, follow_redirects=True) as client:
            response = client.get(url)
    except httpx.HTTPError as exc:
        return Finding("fail", f"{url} unreachable ({exc.__class__.__name__}: {exc}).")
    if response.status_code >= 500:
        return Finding("fail", f"{url} answered HTTP {response.status_code}.")
    return Finding("pass", f"{url} reachable (HTTP {response.status_code}).")


def check_reachability(report: Report, urls: list[str], *, timeout_seconds: float) -> None:
    for url in urls:
        report.findings.append(probe(url, timeout_seconds=timeout_seconds))


def render(report: Report) -> str:
    tags = {"pass": "[PASS]", "warn": "[WARN]", "fail": "[FAIL]"}
    lines = [f"{tags[level]} {message}" for level in tags for message in report.messages(level)]
    lines.append("")
    lines.append(
        f"{len(report.messages('pass'))} passed, {len(report.messages('warn'))} warnings, "
        f"{len(report.messages('fail'))} failures."
    )
    return "\n".join(lines)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="TalkFlair gateway preflight checks")
    parser.add_argument(
        "--check-http",
        action="store_true",
        help="Also probe the Cloudinary and provider API hosts.",
    )
    parser.add_argument(
        "--http-timeout",
        type=float,
        default=3.0,
        help="Seconds per HTTP probe (default: 3.0).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    report = Report()

    settings = load_settings(report)
    if settings is not None:
        check_storage(report, settings)
        provider_url = check_provider(report, settings)
        check_delivery(report, settings)
        check_enhancer(report, settings)
        if args.check_http:
            urls = [CLOUDINARY_API_URL] + ([provider_url] if provider_url else [])
            check_reachability(report, urls, timeout_seconds=max(args.http_timeout, 0.1))

    print(render(report))
    return 1 if report.has_failures else 0


if __name__ == "__main__":
    sys.exit(main())
