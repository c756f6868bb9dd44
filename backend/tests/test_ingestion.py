# tests/test_ingestion.py
import json
from datetime import datetime
from pathlib import Path

from rentmap.adapters.ingestion.stub_json import StubJsonChannelSource
from rentmap.config import settings
from rentmap.jobs import scheduler
from rentmap.jobs.scheduler import build_scheduler, scheduled_channels

FIXTURES = Path(__file__).resolve().parents[1] / "data" / "channels"


async def test_reads_telegram_export_fixture():
    src = StubJsonChannelSource(fixtures_dir=FIXTURES)
    posts = await src.fetch("@tbilisi_rentals")

    assert [p.external_id for p in posts] == ["1001", "1002", "1003", "1004", "1005"]
    first = posts[0]
    assert first.channel == "tbilisi_rentals"
    assert first.media == ("https://cdn.example.org/tbilisi_rentals/1001-1.jpg",)
    assert first.captured_at == datetime(2026, 10, 1, 9, 15)

    assert len(await src.fetch("tbilisi_rentals", limit=2)) == 2


async def test_missing_fixture_means_no_posts(tmp_path):
    assert await StubJsonChannelSource(fixtures_dir=tmp_path).fetch("nobody") == []


async def test_text_fragments_and_plain_lists(tmp_path):
    (tmp_path / "frag.json").write_text(
        json.dumps(
            [
                {"id": 1, "date": 1760000000, "text": ["Сдается ", {"type": "bold", "text": "квартира"}, " в Ваке"]},
                {"message_id": "2", "caption": "photo only", "media": "https://cdn.example/2.jpg"},
                {"text": "no id, skipped"},
            ]
        ),
        encoding="utf-8",
    )
    posts = await StubJsonChannelSource(fixtures_dir=tmp_path).fetch("frag")
    assert [p.external_id for p in posts] == ["1", "2"]
    assert posts[0].text == "Сдается квартира в Ваке"
    assert posts[0].captured_at is not None
    assert posts[1].media == ("https://cdn.example/2.jpg",)


class RecordingPipeline:
    def __init__(self):
        self.posts = []

    def submit_posts(self, posts, *, priority=0):
        self.posts.extend(posts)
        return len(posts)


class Services:
    def __init__(self):
        self.channel_source = StubJsonChannelSource(fixtures_dir=FIXTURES)
        self.pipeline = RecordingPipeline()
        self.session_maker = None


async def test_scheduled_parse_queues_configured_channels(monkeypatch):
    monkeypatch.setattr(settings, "SCHED_CHANNELS", " tbilisi_rentals , ,missing_channel")
    assert scheduled_channels() == ["tbilisi_rentals", "missing_channel"]

    services = Services()
    await scheduler._run_channel_parse(services)
    assert len(services.pipeline.posts) == 5


async def test_scheduled_parse_is_quiet_without_channels(monkeypatch):
    monkeypatch.setattr(settings, "SCHED_CHANNELS", "")
    services = Services()
    await scheduler._run_channel_parse(services)
    assert services.pipeline.posts == []


def test_scheduler_registers_jobs():
    sched = build_scheduler(Services())
    assert {j.id for j in sched.get_jobs()} == {"channel_parse", "maintenance"}
