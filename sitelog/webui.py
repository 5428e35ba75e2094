import asyncio
import html
import re
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse

from .tasks import mail_report, run_daily_reports

router = APIRouter()

_SITE_RE = re.compile(r"^[0-9]+$|^unknown$")


def check_auth(request: Request, token: Optional[str]):
    expected = request.app.state.settings.admin_token
    if expected and token != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def _parse_site(site: str) -> str:
    if not _SITE_RE.match(site):
        raise HTTPException(status_code=400, detail="invalid site code")
    return site


def _parse_day(value: Optional[str], request: Request) -> date:
    if not value:
        return request.app.state.journal.today()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid date, expected YYYY-MM-DD")


def html_page(body: str) -> HTMLResponse:
    page = f"""
<!doctype html>
<html>
  <head>
    <meta charset="utf-8"/>
    <title>Baustellenprotokoll</title>
    <meta name="viewport" content="width=device-width, initial-scale=1"/>
    <style>
      body {{ margin: 0; font-family: system-ui, -apple-system, Segoe UI, Roboto, Arial, sans-serif; color: #1d1f2b; background: #f4f5f8; }}
      header {{ padding: 20px; background: #1d1f2b; color: #fff; font-weight: 700; }}
      .container {{ padding: 24px; max-width: 1100px; margin: 0 auto; }}
      .card {{ background: #fff; border-radius: 10px; padding: 16px; margin-bottom: 16px; box-shadow: 0 2px 8px rgba(0,0,0,0.06); }}
      table {{ width: 100%; border-collapse: collapse; }}
      th, td {{ text-align: left; padding: 6px 8px; border-bottom: 1px solid #e4e6ee; }}
      .muted {{ color: #7a7f95; }}
      .button {{ display: inline-block; padding: 4px 10px; border-radius: 6px; background: #3a56d4; color: #fff; text-decoration: none; border: 0; cursor: pointer; }}
    </style>
  </head>
  <body>
    <header>Baustellenprotokoll</header>
    <div class="container">{body}</div>
  </body>
</html>
"""
    return HTMLResponse(page)


@router.get("/ui")
def ui(request: Request, token: Optional[str] = Query(default=None)):
    check_auth(request, token)
    journal = request.app.state.journal
    tok = html.escape(token or "", quote=True)

    rows = ""
    for site in journal.list_sites() + (["unknown"] if (journal.base / "unknown").is_dir() else []):
        for day in reversed(journal.list_days(site)):
            entries = len(journal.read_records(site, day))
            images = len(journal.list_images(site, day))
            pdf = journal.report_path(site, day)
            actions = ""
            if site != "unknown":
                actions = (
                    f'<form method="post" action="/ui/report/{site}/{day.isoformat()}?token={tok}" style="display:inline">'
                    f'<button class="button" type="submit">PDF erstellen</button></form>'
                )
                if pdf.exists():
                    actions += f' <a class="button" href="/ui/file/{site}/{day.isoformat()}?token={tok}">Öffnen</a>'
            rows += f"<tr><td>#{html.escape(site)}</td><td>{day.isoformat()}</td><td>{entries}</td><td>{images}</td><td>{actions}</td></tr>"

    if not rows:
        rows = '<tr><td colspan="5" class="muted">Noch keine Nachrichten protokolliert.</td></tr>'

    body = f"""
    <div class="card">
      <h3>Protokolle</h3>
      <table>
        <tr><th>Baustelle</th><th>Datum</th><th>Einträge</th><th>Bilder</th><th></th></tr>
        {rows}
      </table>
    </div>
    """
    return html_page(body)


@router.get("/ui/file/{site}/{day}")
def get_pdf(site: str, day: str, request: Request, token: Optional[str] = Query(default=None)):
    check_auth(request, token)
    site = _parse_site(site)
    d = _parse_day(day, request)
    p = request.app.state.journal.report_path(site, d)
    if not p.exists():
        raise HTTPException(404)
    return FileResponse(str(p), media_type="application/pdf", filename=p.name)


@router.post("/ui/report/{site}/{day}")
async def build_report(
    site: str,
    day: str,
    request: Request,
    token: Optional[str] = Query(default=None),
    mail: bool = Query(default=False),
):
    check_auth(request, token)
    site = _parse_site(site)
    d = _parse_day(day, request)
    journal = request.app.state.journal
    if not journal.has_content(site, d):
        raise HTTPException(404, "no journal for this site and day")
    result = await asyncio.to_thread(request.app.state.builder.build, site, d)
    if mail:
        await mail_report(request.app.state.mailer, site, d, result.pdf_path)
    return JSONResponse(
        {
            "ok": True,
            "site": site,
            "date": d.isoformat(),
            "pdf": str(result.pdf_path),
            "pages": result.pages,
            "images": result.images,
            "entries": result.entries,
            "mail_requested": mail,
        }
    )


@router.post("/ui/reports/daily")
async def build_daily(request: Request, token: Optional[str] = Query(default=None), day: Optional[str] = Query(default=None)):
    check_auth(request, token)
    d = _parse_day(day, request)
    summary = await run_daily_reports(request.app.state.builder, request.app.state.mailer, day=d)
    return JSONResponse({"ok": True, **summary})
