"""Backup summary email: HTML rendering and delivery.

Delivery goes through the narrow ``EmailSender`` capability; the default
implementation posts to the Resend HTTP API.  Every value interpolated into
the HTML is escaped, since row data is user-entered.
"""

import html
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import httpx

from db_snapshot.backup.snapshot import SnapshotEnvelope
from db_snapshot.config.models import SnapshotSettings
from db_snapshot.errors import NotificationError

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 10.0

_STYLE = """
  body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
  h1, h2 { color: #1e40af; }
  table { width: 100%; border-collapse: collapse; margin: 10px 0; }
  th { background-color: #f3f4f6; }
  th, td { border: 1px solid #ddd; padding: 6px; text-align: left; font-size: 12px; }
  .errors { background: #fee2e2; padding: 10px; border-radius: 5px; }
  .download { display: inline-block; background: #2563eb; color: white;
              padding: 12px 24px; text-decoration: none; border-radius: 6px; }
"""


class EmailSender(Protocol):
    async def send(self, html_body: str, to: str, subject: str) -> None: ...


class ResendEmailSender:
    """``EmailSender`` using the Resend ``POST /emails`` endpoint.

    Args:
        api_key: Resend API key.
        sender: ``From`` address, e.g. ``"Backup <onboarding@resend.dev>"``.
        http_client: Optional ``httpx.AsyncClient`` for testing.  A default
            client is created if not provided.
    """

    def __init__(
        self,
        api_key: str,
        sender: str,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = "https://api.resend.com",
    ) -> None:
        self._api_key = api_key
        self._sender = sender
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=_TIMEOUT_SECONDS)
        self._owns_client = http_client is None

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def send(self, html_body: str, to: str, subject: str) -> None:
        """Send one message.

        Raises:
            NotificationError: On transport errors or a non-2xx response.
        """
        try:
            response = await self._client.post(
                f"{self._base_url}/emails",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "from": self._sender,
                    "to": [to],
                    "subject": subject,
                    "html": html_body,
                },
            )
        except httpx.HTTPError as e:
            raise NotificationError(f"Email error: {e}") from e

        if response.is_error:
            raise NotificationError(f"Email error: HTTP {response.status_code}: {response.text}")
        logger.info(f"Email sent to {to}")


# ============================================================================
# Rendering
# ============================================================================


def civil_now(offset_hours: int) -> datetime:
    return datetime.now(timezone(timedelta(hours=offset_hours)))


def report_subject(settings: SnapshotSettings, when: datetime | None = None) -> str:
    when = when or civil_now(settings.civil_utc_offset_hours)
    return f"Full database backup - {when:%d/%m/%Y}"


def _cell(value: Any) -> str:
    if value is None or value == "":
        return "-"
    return html.escape(str(value))


def _preview_table(rows: list[dict[str, Any]], columns: list[str], limit: int) -> str:
    if not rows:
        return "<p>No data</p>"

    header = "".join(f"<th>{html.escape(c)}</th>" for c in ["#", *columns])
    body = []
    for index, row in enumerate(rows[:limit], start=1):
        cells = "".join(f"<td>{_cell(row.get(c))}</td>" for c in columns)
        body.append(f"<tr><td>{index}</td>{cells}</tr>")
    more = ""
    if len(rows) > limit:
        more = f"<p>... and {len(rows) - limit} more</p>"
    return f"<table><thead><tr>{header}</tr></thead><tbody>{''.join(body)}</tbody></table>{more}"


def render_backup_report(
    envelope: SnapshotEnvelope,
    file_name: str,
    download_url: str | None,
    errors: list[str],
    settings: SnapshotSettings,
    generated_at: datetime | None = None,
) -> str:
    """HTML summary of one backup run.

    Args:
        envelope: The captured snapshot.
        file_name: Artifact name in storage.
        download_url: Signed link, or ``None`` when publishing failed.
        errors: Messages collected during the run.
        settings: Preview tables, bucket and civil timezone.
        generated_at: Report time (default: now, in civil time).
    """
    when = generated_at or civil_now(settings.civil_utc_offset_hours)
    counts = envelope.record_counts

    parts = [
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">",
        f"<style>{_STYLE}</style></head><body>",
        "<h1>Full database backup report</h1>",
        f"<p><strong>Time:</strong> {html.escape(when.strftime('%H:%M:%S %d/%m/%Y'))}</p>",
        f"<p><strong>Backup file:</strong> {html.escape(file_name)}</p>",
        f"<p><strong>Total records:</strong> {envelope.metadata.total_records}</p>",
        f"<h2>All {len(counts)} tables</h2>",
        "<ul>",
        *(f"<li><strong>{html.escape(name)}:</strong> {count} records</li>" for name, count in counts.items()),
        "</ul>",
    ]

    if settings.preview_tables:
        parts.append("<h2>Data preview</h2>")
        for table, columns in settings.preview_tables.items():
            rows = envelope.tables.get(table, [])
            parts.append(f"<h3>{html.escape(table.upper())} ({len(rows)} records)</h3>")
            parts.append(_preview_table(rows, columns, settings.preview_limit))

    if errors:
        parts.append("<h2 style=\"color: red;\">Errors</h2>")
        parts.append(f"<pre class=\"errors\">{html.escape(chr(10).join(errors))}</pre>")

    if download_url:
        hours = settings.signed_url_ttl // 3600
        parts.append("<h2>Download</h2>")
        parts.append(f"<a href=\"{html.escape(download_url, quote=True)}\" class=\"download\">Download full backup JSON</a>")
        parts.append(f"<p style=\"color: #666; font-size: 12px;\">Link expires in {hours} hours</p>")

    parts.append(
        "<hr><p style=\"color: #666; font-size: 12px;\">"
        f"Backup stored in bucket <strong>{html.escape(settings.bucket)}</strong>.</p>"
    )
    parts.append("</body></html>")
    return "\n".join(parts)
