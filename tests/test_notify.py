"""Tests for the backup report email."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from db_snapshot.backup.notify import ResendEmailSender, render_backup_report, report_subject
from db_snapshot.backup.snapshot import SnapshotEnvelope
from db_snapshot.config.models import SnapshotSettings
from db_snapshot.errors import NotificationError

WHEN = datetime(2026, 1, 15, 9, 0, tzinfo=timezone(timedelta(hours=7)))


def _sender(handler) -> ResendEmailSender:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ResendEmailSender("re_test", "Backup <b@example.com>", http_client=client)


class TestResendEmailSender:
    async def test_posts_message(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "em_1"})

        await _sender(handler).send("<p>hi</p>", "ops@example.com", "Subject")

        request = seen[0]
        assert request.url == "https://api.resend.com/emails"
        assert request.headers["Authorization"] == "Bearer re_test"
        assert json.loads(request.content) == {
            "from": "Backup <b@example.com>",
            "to": ["ops@example.com"],
            "subject": "Subject",
            "html": "<p>hi</p>",
        }

    async def test_error_status_raises(self):
        sender = _sender(lambda request: httpx.Response(422, text="invalid from"))

        with pytest.raises(NotificationError, match="HTTP 422: invalid from"):
            await sender.send("x", "ops@example.com", "s")

    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        with pytest.raises(NotificationError, match="refused"):
            await _sender(handler).send("x", "ops@example.com", "s")

    async def test_close_leaves_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        await ResendEmailSender("k", "s", http_client=client).close()
        assert not client.is_closed


class TestRenderBackupReport:
    @pytest.fixture
    def envelope(self) -> SnapshotEnvelope:
        return SnapshotEnvelope.from_payload(
            {
                "_metadata": {"backup_version": "2.0", "total_tables": 2, "total_records": 3},
                "employees": [
                    {"full_name": "<script>alert(1)</script>", "position": None},
                    {"full_name": "Bình", "position": "Engineer"},
                ],
                "projects": [{"name": "Bridge"}],
            }
        )

    def test_subject_uses_civil_date(self):
        assert report_subject(SnapshotSettings(), WHEN) == "Full database backup - 15/01/2026"

    def test_counts_and_escaping(self, envelope):
        settings = SnapshotSettings(preview_tables={"employees": ["full_name", "position"]})

        body = render_backup_report(envelope, "full-backup-x.json", None, [], settings, WHEN)

        assert "<li><strong>employees:</strong> 2 records</li>" in body
        assert "<li><strong>projects:</strong> 1 records</li>" in body
        assert "<script>" not in body
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in body
        assert "<td>-</td>" in body
        assert "09:00:00 15/01/2026" in body
        assert "Download" not in body

    def test_preview_truncated(self, envelope):
        settings = SnapshotSettings(preview_tables={"employees": ["full_name"]}, preview_limit=1)

        body = render_backup_report(envelope, "f.json", None, [], settings, WHEN)

        assert "<p>... and 1 more</p>" in body
        assert "Bình" not in body

    def test_empty_preview_table(self, envelope):
        settings = SnapshotSettings(preview_tables={"tasks": ["title"]})
        body = render_backup_report(envelope, "f.json", None, [], settings, WHEN)
        assert "<h3>TASKS (0 records)</h3>" in body
        assert "<p>No data</p>" in body

    def test_errors_and_download_link(self, envelope):
        settings = SnapshotSettings(preview_tables={})

        body = render_backup_report(
            envelope, "f.json", "https://s/f.json?a=1&b=2", ["Error fetching tasks: <boom>"], settings, WHEN
        )

        assert "Error fetching tasks: &lt;boom&gt;" in body
        assert 'href="https://s/f.json?a=1&amp;b=2"' in body
        assert "Link expires in 24 hours" in body
