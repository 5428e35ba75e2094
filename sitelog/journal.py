import json
import mimetypes
import re
import shutil
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from .logs import json_log
from .models import ProcessedMessageRecord

LOG_NAME = "log.jsonl"
IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".webp"}

# mimetypes picks odd defaults for a few WhatsApp types (e.g. .jpe, .oga)
_PREFERRED_EXT = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "video/mp4": ".mp4",
    "application/pdf": ".pdf",
}

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")
_SITE_DIR = re.compile(r"[0-9]+")


def extension_for(mime_type: Optional[str]) -> str:
    if not mime_type:
        return ".bin"
    base = mime_type.split(";", 1)[0].strip().lower()
    return _PREFERRED_EXT.get(base) or mimetypes.guess_extension(base) or ".bin"


class Journal:
    """
    Append-only per-site, per-day message log:

        <base>/<site>/<YYYY-MM-DD>/log.jsonl
        <base>/<site>/<YYYY-MM-DD>/<media files>

    Lines are only ever appended; nothing here rewrites or deletes them.
    """

    def __init__(self, base: Path = Path("storage/sites"), tz: str = "Europe/Berlin"):
        self.base = Path(base)
        self.tz = ZoneInfo(tz)

    def ensure_layout(self):
        self.base.mkdir(parents=True, exist_ok=True)

    def day_for(self, ts: datetime) -> date:
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(self.tz).date()

    def today(self) -> date:
        return datetime.now(self.tz).date()

    def day_dir(self, site: str, day: date) -> Path:
        return self.base / site / day.isoformat()

    def log_path(self, site: str, day: date) -> Path:
        return self.day_dir(site, day) / LOG_NAME

    def report_path(self, site: str, day: date) -> Path:
        return self.day_dir(site, day) / f"Baustellenprotokoll_{site}_{day.isoformat()}.pdf"

    def append(self, record: ProcessedMessageRecord) -> Path:
        day = self.day_for(record.occurred_at)
        path = self.log_path(record.site_code, day)
        path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record.to_json(), ensure_ascii=False)
        with path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
        return path

    def media_filename(self, ts: datetime, media_id: str, mime_type: Optional[str]) -> str:
        """
        Same (timestamp, media id) always maps to the same name, so a re-delivered
        media file lands on itself instead of next to a copy.
        """
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        stamp = ts.astimezone(self.tz).strftime("%Y%m%d-%H%M%S")
        safe_id = _UNSAFE.sub("_", media_id).strip("._") or "media"
        return f"{stamp}_{safe_id}{extension_for(mime_type)}"

    def save_media(self, site: str, ts: datetime, media_id: str, data: bytes, mime_type: Optional[str]) -> str:
        day_dir = self.day_dir(site, self.day_for(ts))
        day_dir.mkdir(parents=True, exist_ok=True)
        name = self.media_filename(ts, media_id, mime_type)
        target = day_dir / name

        # write to tmp then move, a half-written image must never show up in a report
        with tempfile.NamedTemporaryFile(dir=str(day_dir), prefix=".dl_", delete=False) as tmp:
            tmp.write(data)
            tmp_path = Path(tmp.name)
        shutil.move(str(tmp_path), str(target))
        return name

    def read_records(self, site: str, day: date) -> List[ProcessedMessageRecord]:
        path = self.log_path(site, day)
        if not path.exists():
            return []
        records: List[ProcessedMessageRecord] = []
        with path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(ProcessedMessageRecord.from_json(json.loads(line)))
                except (ValueError, KeyError, TypeError) as e:
                    json_log("journal_line_skipped", path=str(path), line=lineno, error=str(e))
        return records

    def list_images(self, site: str, day: date) -> List[Path]:
        d = self.day_dir(site, day)
        if not d.exists():
            return []
        return sorted(p for p in d.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_EXTS and not p.name.startswith("."))

    def list_sites(self) -> List[str]:
        if not self.base.exists():
            return []
        return sorted(p.name for p in self.base.iterdir() if p.is_dir() and _SITE_DIR.fullmatch(p.name))

    def list_days(self, site: str) -> List[date]:
        d = self.base / site
        if not d.exists():
            return []
        days: List[date] = []
        for p in d.iterdir():
            if not p.is_dir():
                continue
            try:
                days.append(date.fromisoformat(p.name))
            except ValueError:
                continue
        return sorted(days)

    def has_content(self, site: str, day: date) -> bool:
        return self.log_path(site, day).exists() or bool(self.list_images(site, day))

    def sites_with_content(self, day: date, sites: Optional[Iterable[str]] = None) -> List[str]:
        return [s for s in (sites if sites is not None else self.list_sites()) if self.has_content(s, day)]
