"""Emergency-contact email alerts for SafeRide.

Renders the alert email for a silent dispatch or an emergency escalation
and hands it to a pluggable email provider:

    * ``http`` -- POSTs ``{to, from, subject, html, text}`` as JSON to an
      email gateway (any transactional-mail HTTP API or relay).
    * ``mock`` -- logs the message and reports a simulated success; used
      in development and whenever no gateway is configured.

:class:`EmailNotifier` never raises: every failure, including timeouts,
comes back as ``SendResult(success=False, error=...)`` so one bad
address cannot stall the escalation for the other contacts.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from html import escape
from typing import Any, Final, Protocol, runtime_checkable
from uuid import uuid4

import structlog
from pydantic import BaseModel

from src.models.ride import EmergencyContact, Location, VehicleInfo

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Message models
# ---------------------------------------------------------------------------


class AlertEmail(BaseModel):
    to: str
    subject: str
    html_body: str
    text_body: str


class SendResult(BaseModel):
    success: bool
    error: str | None = None
    message_id: str | None = None
    simulated: bool = False


@runtime_checkable
class EmailSender(Protocol):
    """Anything that can deliver an :class:`AlertEmail`."""

    async def send(self, message: AlertEmail) -> SendResult: ...


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class _EmailProviderBase:
    async def send(self, message: AlertEmail, *, sender: str) -> dict[str, Any]:
        raise NotImplementedError


class _HTTPGatewayProvider(_EmailProviderBase):
    """Delivers mail through an HTTP email gateway."""

    def __init__(self, url: str, api_key: str, timeout_seconds: float) -> None:
        if not url:
            raise ValueError("HTTP email provider requires a gateway URL.")
        self._url = url
        self._api_key = api_key
        self._timeout = timeout_seconds

    async def send(self, message: AlertEmail, *, sender: str) -> dict[str, Any]:
        import httpx

        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload = {
            "to": message.to,
            "from": sender,
            "subject": message.subject,
            "html": message.html_body,
            "text": message.text_body,
        }
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._url, json=payload, headers=headers)
            response.raise_for_status()
            body = response.json() if response.content else {}

        if isinstance(body, dict) and body.get("success") is False:
            raise RuntimeError(str(body.get("error") or "gateway rejected message"))
        return body if isinstance(body, dict) else {}


class _MockProvider(_EmailProviderBase):
    """Logs instead of sending."""

    async def send(self, message: AlertEmail, *, sender: str) -> dict[str, Any]:
        logger.info(
            "mock_email.sent",
            to=message.to,
            subject=message.subject,
            length=len(message.text_body),
        )
        return {"message_id": f"mock_{uuid4().hex[:12]}", "simulated": True}


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------


class EmailNotifier:
    """Sends alert emails with a hard timeout and no exceptions."""

    __slots__ = ("_provider", "_provider_name", "_sender", "_timeout")

    def __init__(
        self,
        *,
        provider: str = "mock",
        gateway_url: str = "",
        api_key: str = "",
        sender: str = "SafeRide Alerts <alerts@saferide.local>",
        timeout_seconds: float = 10.0,
    ) -> None:
        self._provider_name = provider
        self._sender = sender
        self._timeout = timeout_seconds
        if provider == "http":
            self._provider: _EmailProviderBase = _HTTPGatewayProvider(gateway_url, api_key, timeout_seconds)
        elif provider == "mock":
            self._provider = _MockProvider()
        else:
            raise ValueError(f"Unknown email provider: {provider!r}")

    @property
    def provider_name(self) -> str:
        return self._provider_name

    async def send(self, message: AlertEmail) -> SendResult:
        log = logger.bind(provider=self._provider_name, to=message.to)
        try:
            body = await asyncio.wait_for(
                self._provider.send(message, sender=self._sender),
                timeout=self._timeout,
            )
        except TimeoutError:
            log.warning("notifications.email_timeout", timeout_seconds=self._timeout)
            return SendResult(success=False, error=f"timed out after {self._timeout:g}s")
        except Exception as exc:
            log.warning("notifications.email_failed", error=str(exc))
            return SendResult(success=False, error=str(exc) or type(exc).__name__)

        log.info("notifications.email_sent")
        return SendResult(
            success=True,
            message_id=body.get("message_id") or body.get("id"),
            simulated=bool(body.get("simulated", False)),
        )


# ---------------------------------------------------------------------------
# Alert rendering
# ---------------------------------------------------------------------------

_EMERGENCY_COLOR: Final[str] = "#dc2626"
_DISPATCH_COLOR: Final[str] = "#f59e0b"


def map_link(location: Location) -> str:
    return f"https://www.google.com/maps?q={location.lat},{location.lng}"


def _format_location(location: Location) -> str:
    return f"Lat: {location.lat:.6f}, Lng: {location.lng:.6f}"


def _format_time(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, UTC).strftime("%d %b %Y, %H:%M UTC")


def _vehicle_lines(vehicle: VehicleInfo | None) -> list[str]:
    if vehicle is None:
        return []
    lines: list[str] = []
    if vehicle.license_plate:
        lines.append(f"License Plate: {vehicle.license_plate}")
    description = " ".join(p for p in (vehicle.vehicle_color, vehicle.vehicle_model) if p)
    if description:
        lines.append(f"Vehicle: {description}")
    if vehicle.driver_name:
        lines.append(f"Driver: {vehicle.driver_name}")
    return lines


def render_alert_email(
    *,
    contact: EmergencyContact,
    rider_name: str,
    emergency: bool,
    threat_score: float,
    location: Location | None,
    vehicle_info: VehicleInfo | None,
    now_ms: int,
) -> AlertEmail:
    """Build the subject, HTML and plain-text bodies of an alert."""
    threat_percent = f"{threat_score * 100:.0f}"
    if emergency:
        subject = f"EMERGENCY ALERT: {rider_name} needs immediate help!"
        headline = "needs immediate help!"
        title = "EMERGENCY ALERT"
    else:
        subject = f"SafeRide Alert: {rider_name} may be in danger"
        headline = "may be in a potentially dangerous situation."
        title = "SAFETY ALERT"
    color = _EMERGENCY_COLOR if emergency else _DISPATCH_COLOR

    if location is not None:
        location_text = [
            _format_location(location),
            f"Time: {_format_time(location.timestamp or now_ms)}",
            f"Map: {map_link(location)}",
        ]
        location_html = (
            f"<p>{escape(_format_location(location))}</p>"
            f"<p>Time: {escape(_format_time(location.timestamp or now_ms))}</p>"
            f'<a href="{map_link(location)}">View on Google Maps</a>'
        )
    else:
        location_text = ["Location unavailable"]
        location_html = "<p>Location unavailable</p>"

    vehicle = _vehicle_lines(vehicle_info)
    vehicle_html = (
        "<h3>Vehicle Information</h3>" + "".join(f"<div>{escape(line)}</div>" for line in vehicle)
        if vehicle else ""
    )

    html = (
        f'<html><body style="font-family: Arial, sans-serif;">'
        f'<div style="background: {color}; color: white; padding: 20px;">'
        f"<h1>{title}</h1><p>SafeRide Passive Safety System</p></div>"
        f"<p>Dear {escape(contact.name)},</p>"
        f"<p><strong>{escape(rider_name)}</strong> {headline}</p>"
        f'<p style="color: {color}; font-weight: bold;">Threat Level: {threat_percent}%</p>'
        f"<h3>Last Known Location</h3>{location_html}"
        f"{vehicle_html}"
        "<h3>What You Should Do:</h3><ul>"
        f"<li>Try to contact {escape(rider_name)} immediately</li>"
        "<li>If no response, consider calling emergency services (112)</li>"
        "<li>Keep this email for reference</li></ul>"
        f"<p>Alert Time: {escape(_format_time(now_ms))}</p>"
        "<p>You are receiving this because you are listed as an emergency contact.</p>"
        "</body></html>"
    )

    text_parts = [
        f"{title} - SafeRide",
        "",
        f"Dear {contact.name},",
        "",
        f"{rider_name} {headline}",
        "",
        f"Threat Level: {threat_percent}%",
        "",
        "Last Known Location:",
        *location_text,
    ]
    if vehicle:
        text_parts += ["", "Vehicle Information:", *vehicle]
    text_parts += [
        "",
        "What You Should Do:",
        f"- Try to contact {rider_name} immediately",
        "- If no response, consider calling emergency services (112)",
        "- Keep this email for reference",
        "",
        f"Alert Time: {_format_time(now_ms)}",
        "",
        "---",
        "SafeRide Passive Safety System",
    ]

    return AlertEmail(
        to=contact.email,
        subject=subject,
        html_body=html,
        text_body="\n".join(text_parts),
    )
