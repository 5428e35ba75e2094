import asyncio
from datetime import date, datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

from .logs import json_log
from .mailer import Mailer, MailError
from .pdf_report import ReportBuilder

# Background tasks started by the app; cancelled on shutdown.
workers: List[asyncio.Task] = []


def seconds_until(now: datetime, hour: int) -> float:
    """
    Seconds from ``now`` (timezone-aware, local) until the next ``hour``:00.
    Exactly on the hour counts as the next day.
    """
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target = target + timedelta(days=1)
    return (target - now).total_seconds()


def report_day(now: datetime) -> date:
    """The scheduled run always covers the previous local day, which is complete by then."""
    return (now - timedelta(days=1)).date()


async def mail_report(mailer: Optional[Mailer], site, day, pdf_path) -> None:
    if mailer is None or not mailer.configured:
        json_log("report_mail_skipped", site=site, date=day.isoformat(), reason="mail_not_configured")
        return
    try:
        await mailer.send_report_async(site, day, pdf_path)
    except MailError as e:
        json_log("report_mail_failed", site=site, date=day.isoformat(), error=str(e))


async def run_daily_reports(builder: ReportBuilder, mailer: Optional[Mailer], day=None):
    day = day or builder.journal.today()

    async def _mail(site, d, pdf_path):
        await mail_report(mailer, site, d, pdf_path)

    summary = await builder.build_daily(day, mail_fn=_mail)
    json_log("daily_reports_done", **summary)
    return summary


async def daily_report_loop(builder: ReportBuilder, mailer: Optional[Mailer], tz: str, hour: int):
    zone = ZoneInfo(tz)
    while True:
        try:
            delay = seconds_until(datetime.now(zone), hour)
            json_log("daily_reports_scheduled", in_seconds=int(delay), hour=hour, tz=tz)
            await asyncio.sleep(delay)
            await run_daily_reports(builder, mailer, day=report_day(datetime.now(zone)))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            json_log("daily_reports_error", error=str(e))
            await asyncio.sleep(60)
