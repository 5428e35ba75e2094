"""Tests for the A3 landscape site report."""

import threading
from datetime import date, timedelta

import pytest

from sitelog.models import MediaFile, ProcessedMessageRecord
from sitelog.pdf_report import ReportBuilder

from conftest import T0, jpeg_bytes

DAY = date(2026, 3, 2)


def add_record(journal, msg_id, site="260016", text=None, media=None, error=None, minutes=0):
    ts = T0 + timedelta(minutes=minutes)
    journal.append(
        ProcessedMessageRecord(
            received_at=ts,
            provider_timestamp=ts,
            sender_id="4917012345",
            message_id=msg_id,
            message_type="image" if media else "text",
            site_code=site,
            text=text,
            media=media,
            error=error,
        )
    )


def add_image(journal, media_id, site="260016", minutes=0, size=(64, 48)):
    ts = T0 + timedelta(minutes=minutes)
    name = journal.save_media(site, ts, media_id, jpeg_bytes(size=size), "image/jpeg")
    return MediaFile(path=name, mime_type="image/jpeg")


def test_build_writes_pdf_with_listing_and_grid(journal):
    add_record(journal, "m1", text="#260016 Lieferung da")
    add_record(journal, "m2", media=add_image(journal, "IMG1", minutes=1), minutes=1)

    result = ReportBuilder(journal).build("260016", DAY)

    assert result.pdf_path == journal.report_path("260016", DAY)
    assert result.pdf_path.read_bytes().startswith(b"%PDF")
    assert (result.entries, result.images) == (2, 1)
    # title + listing + one image page
    assert result.pages == 3


def test_images_are_paged_six_per_sheet(journal):
    for i in range(7):
        add_record(journal, f"m{i}", media=add_image(journal, f"IMG{i}", minutes=i, size=(40 + i, 30)), minutes=i)

    result = ReportBuilder(journal).build("260016", DAY)
    assert result.images == 7
    assert result.pages == 1 + 1 + 2


def test_day_without_images_gets_placeholder_page(journal):
    add_record(journal, "m1", text="nur Text")
    result = ReportBuilder(journal).build("260016", DAY)
    assert result.images == 0
    assert result.pages == 3


def test_long_listing_spills_onto_more_pages(journal):
    long_text = "Betonlieferung verspätet, Kran steht still. " * 40
    for i in range(30):
        add_record(journal, f"m{i}", text=long_text, error="media download failed: HTTP 404", minutes=i)
    result = ReportBuilder(journal).build("260016", DAY)
    assert result.entries == 30
    assert result.pages > 3


def test_unreadable_image_does_not_break_report(journal):
    add_record(journal, "m1", text="#260016")
    broken = journal.day_dir("260016", DAY) / "20260302-100000_BROKEN.jpg"
    broken.write_bytes(b"definitely not a jpeg")
    add_image(journal, "IMG1")

    result = ReportBuilder(journal).build("260016", DAY)
    assert result.images == 2
    assert result.pdf_path.exists()


def test_rebuild_overwrites_previous_pdf(journal):
    add_record(journal, "m1", text="eins")
    builder = ReportBuilder(journal)
    first = builder.build("260016", DAY)
    add_record(journal, "m2", text="zwei", minutes=5)
    second = builder.build("260016", DAY)
    assert first.pdf_path == second.pdf_path
    assert second.entries == 2
    # the report itself is not picked up as an image
    assert second.images == 0


@pytest.mark.asyncio
async def test_build_daily_covers_numeric_sites_only(journal):
    add_record(journal, "m1", site="260016", text="#260016")
    add_record(journal, "m2", site="111", text="#111")
    add_record(journal, "m3", site="unknown", text="Hallo")
    add_record(journal, "m4", site="999", text="gestern", minutes=-24 * 60)

    mailed = []

    async def mail_fn(site, day, pdf_path):
        mailed.append((site, day, pdf_path.name))

    summary = await ReportBuilder(journal).build_daily(DAY, mail_fn=mail_fn)
    assert summary["date"] == "2026-03-02"
    assert summary["count"] == 2
    assert [d["site"] for d in summary["done"]] == ["111", "260016"]
    assert [m[0] for m in mailed] == ["111", "260016"]
    assert mailed[1][2] == "Baustellenprotokoll_260016_2026-03-02.pdf"


@pytest.mark.asyncio
async def test_build_daily_skips_failing_site(journal):
    add_record(journal, "m1", site="111", text="#111")
    add_record(journal, "m2", site="222", text="#222")

    async def mail_fn(site, day, pdf_path):
        if site == "111":
            raise RuntimeError("smtp down")

    summary = await ReportBuilder(journal).build_daily(DAY, mail_fn=mail_fn)
    assert [d["site"] for d in summary["done"]] == ["222"]


@pytest.mark.asyncio
async def test_build_daily_renders_off_the_event_loop_thread(journal, monkeypatch):
    add_record(journal, "m1", text="#260016")
    builder = ReportBuilder(journal)
    render_threads = []
    real_build = builder.build

    def recording_build(site, day):
        render_threads.append(threading.get_ident())
        return real_build(site, day)

    monkeypatch.setattr(builder, "build", recording_build)
    summary = await builder.build_daily(DAY)

    assert summary["count"] == 1
    assert render_threads and threading.get_ident() not in render_threads
