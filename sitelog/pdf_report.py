import asyncio
import io
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from PIL import Image, ImageOps
from reportlab.lib.pagesizes import A3, landscape
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from .journal import Journal
from .logs import json_log
from .models import ProcessedMessageRecord

MailFn = Callable[[str, date, Path], Awaitable[Any]]


@dataclass
class ReportResult:
    pdf_path: Path
    pages: int
    images: int
    entries: int


class ReportBuilder:
    """
    Renders one site/day journal into an A3 landscape PDF: title page, the
    chronological message listing, then all photos in a fixed grid.
    """

    def __init__(
        self,
        journal: Journal,
        cols: int = 3,
        rows: int = 2,
        margin: float = 24.0,
        gap: float = 12.0,
        jpeg_quality: int = 70,
        image_dpi: int = 150,
    ):
        self.journal = journal
        self.cols = cols
        self.rows = rows
        self.margin = margin
        self.gap = gap
        self.jpeg_quality = jpeg_quality
        self.image_dpi = image_dpi
        self.page_w, self.page_h = landscape(A3)

    def _fit_image_to_jpeg(self, path: Path, max_w_pt: float, max_h_pt: float) -> Tuple[ImageReader, int, int]:
        max_w = max(1, int(max_w_pt / 72.0 * self.image_dpi))
        max_h = max(1, int(max_h_pt / 72.0 * self.image_dpi))
        with Image.open(path) as im:
            im = ImageOps.exif_transpose(im)
            im = im.convert("RGB")
            im.thumbnail((max_w, max_h), Image.LANCZOS)
            buf = io.BytesIO()
            im.save(buf, "JPEG", quality=self.jpeg_quality)
            w, h = im.size
        buf.seek(0)
        return ImageReader(buf), w, h

    def _title_page(self, c: canvas.Canvas, site: str, day: date, records: List[ProcessedMessageRecord], n_images: int):
        x = self.margin
        y = self.page_h - self.margin - 28
        c.setFont("Helvetica-Bold", 28)
        c.drawString(x, y, "Baustellenprotokoll")
        y -= 40
        c.setFont("Helvetica", 18)
        c.drawString(x, y, f"Baustelle #{site}")
        y -= 24
        c.setFont("Helvetica", 14)
        c.drawString(x, y, f"Datum: {day.isoformat()}")
        y -= 20
        senders = sorted({r.sender_id for r in records})
        c.drawString(x, y, f"Nachrichten: {len(records)}   Bilder: {n_images}   Absender: {len(senders)}")
        y -= 30
        c.setFont("Helvetica", 10)
        c.setFillColorRGB(0.4, 0.4, 0.4)
        c.drawString(x, y, "Automatisch erstellt.")
        c.setFillColorRGB(0, 0, 0)
        c.showPage()

    def _entry_lines(self, record: ProcessedMessageRecord) -> List[str]:
        local = record.occurred_at.astimezone(self.journal.tz)
        head = f"{local.strftime('%H:%M:%S')}  {record.sender_id}  [{record.message_type}]"
        lines = [head]
        if record.text:
            lines.append(record.text)
        if record.media is not None:
            lines.append(f"Datei: {record.media.path}")
        if record.error:
            lines.append(f"Fehler: {record.error}")
        return lines

    def _listing_pages(self, c: canvas.Canvas, records: List[ProcessedMessageRecord]) -> int:
        if not records:
            return 0
        width = self.page_w - 2 * self.margin
        line_h = 13
        pages = 1
        y = self.page_h - self.margin - 18
        c.setFont("Helvetica-Bold", 16)
        c.drawString(self.margin, y, "Verlauf")
        y -= 26
        for record in sorted(records, key=lambda r: r.occurred_at):
            for i, raw in enumerate(self._entry_lines(record)):
                font = "Helvetica-Bold" if i == 0 else "Helvetica"
                indent = 0 if i == 0 else 16
                for part in simpleSplit(raw, font, 10, width - indent) or [""]:
                    if y < self.margin + line_h:
                        c.showPage()
                        pages += 1
                        y = self.page_h - self.margin - 10
                    c.setFont(font, 10)
                    c.drawString(self.margin + indent, y, part)
                    y -= line_h
            y -= 6
        c.showPage()
        return pages

    def _image_pages(self, c: canvas.Canvas, images: List[Path]) -> int:
        if not images:
            c.setFont("Helvetica", 14)
            c.drawString(self.margin, self.page_h - self.margin - 14, "Keine Bilder für diesen Tag gefunden.")
            c.showPage()
            return 1

        inner_w = self.page_w - 2 * self.margin
        inner_h = self.page_h - 2 * self.margin
        cell_w = (inner_w - self.gap * (self.cols - 1)) / self.cols
        cell_h = (inner_h - self.gap * (self.rows - 1)) / self.rows
        caption_h = 16
        img_max_w, img_max_h = cell_w, cell_h - caption_h
        per_page = self.cols * self.rows

        pages = 0
        for idx, path in enumerate(images):
            pos = idx % per_page
            if pos == 0:
                if idx > 0:
                    c.showPage()
                pages += 1
            r, col = divmod(pos, self.cols)
            x = self.margin + col * (cell_w + self.gap)
            # reportlab origin is bottom-left; row 0 is the top row
            top = self.page_h - self.margin - r * (cell_h + self.gap)
            try:
                reader, _, _ = self._fit_image_to_jpeg(path, img_max_w, img_max_h)
                c.drawImage(reader, x, top - img_max_h, width=img_max_w, height=img_max_h, preserveAspectRatio=True, anchor="c")
            except (OSError, ValueError) as e:
                json_log("report_image_skipped", file=str(path), error=str(e))
                c.setFont("Helvetica", 10)
                c.drawString(x, top - img_max_h / 2, "Bild konnte nicht gelesen werden")
            c.setFont("Helvetica", 9)
            c.drawCentredString(x + cell_w / 2, top - img_max_h - 11, path.name)
        c.showPage()
        return pages

    def build(self, site: str, day: date) -> ReportResult:
        records = self.journal.read_records(site, day)
        images = self.journal.list_images(site, day)
        out = self.journal.report_path(site, day)
        out.parent.mkdir(parents=True, exist_ok=True)

        c = canvas.Canvas(str(out), pagesize=(self.page_w, self.page_h))
        c.setTitle(f"Baustellenprotokoll {site} {day.isoformat()}")
        self._title_page(c, site, day, records, len(images))
        pages = 1
        pages += self._listing_pages(c, records)
        pages += self._image_pages(c, images)
        c.save()

        json_log("report_built", site=site, date=day.isoformat(), pdf=str(out), pages=pages, images=len(images), entries=len(records))
        return ReportResult(pdf_path=out, pages=pages, images=len(images), entries=len(records))

    async def build_daily(self, day: date, mail_fn: Optional[MailFn] = None) -> Dict[str, Any]:
        """
        Build reports for every site that has something logged on ``day`` and hand
        each one to ``mail_fn``. A failing site is logged and skipped.
        """
        done: List[Dict[str, Any]] = []
        for site in self.journal.sites_with_content(day):
            try:
                result = await asyncio.to_thread(self.build, site, day)
                if mail_fn is not None:
                    await mail_fn(site, day, result.pdf_path)
            except Exception as e:
                json_log("report_failed", site=site, date=day.isoformat(), error=str(e))
                continue
            done.append({"site": site, "pdf": str(result.pdf_path), "images": result.images})
        return {"date": day.isoformat(), "count": len(done), "done": done}
