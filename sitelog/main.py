import asyncio
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .attribution import AttributionEngine, AttributionPolicy
from .config import Settings
from .graph_api import GraphAPIClient
from .journal import Journal
from .logs import configure_logging, json_log
from .mailer import Mailer
from .meta import verify_subscription
from .pdf_report import ReportBuilder
from .pipeline import MessageProcessor
from .state import JsonFileSenderStore, SenderStateStore
from .tasks import daily_report_loop, workers
from .webui import router as web_router

APP_TITLE = "WhatsApp Baustellenprotokoll"
VERSION = "1.0.0"


def _first_param(request: Request, *names: str) -> Optional[str]:
    for name in names:
        value = request.query_params.get(name)
        if value is not None:
            return value
    return None


def create_app(
    settings: Optional[Settings] = None,
    graph: Optional[GraphAPIClient] = None,
    mailer: Optional[Mailer] = None,
    store: Optional[SenderStateStore] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    app = FastAPI(title=APP_TITLE, version=VERSION)

    journal = Journal(base=settings.data_dir, tz=settings.report_tz)
    state_store = store or JsonFileSenderStore(settings.state_file)
    engine = AttributionEngine(state_store, AttributionPolicy.from_settings(settings))
    graph = graph or GraphAPIClient.from_settings(settings)
    processor = MessageProcessor(engine, journal, graph, prompt_text=settings.prompt_text)

    app.state.settings = settings
    app.state.journal = journal
    app.state.engine = engine
    app.state.processor = processor
    app.state.builder = ReportBuilder(journal)
    app.state.mailer = mailer or Mailer.from_settings(settings)

    @app.on_event("startup")
    async def on_startup():
        # Failing to create the storage directories is the one fatal condition
        journal.ensure_layout()
        settings.state_file.parent.mkdir(parents=True, exist_ok=True)
        engine.load()
        json_log(
            "startup",
            version=VERSION,
            data_dir=str(settings.data_dir),
            senders=len(engine.state.senders),
            sticky_window_minutes=settings.sticky_window_minutes,
            prompt_cooldown_minutes=settings.prompt_cooldown_minutes,
        )
        if settings.report_schedule:
            workers.append(
                asyncio.create_task(
                    daily_report_loop(app.state.builder, app.state.mailer, settings.report_tz, settings.report_hour)
                )
            )

    @app.on_event("shutdown")
    async def on_shutdown():
        json_log("shutdown")
        for w in workers:
            w.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        workers.clear()

    async def process_delivery(payload: Dict[str, Any]):
        try:
            records = await processor.handle_delivery(payload)
            json_log("webhook_processed", messages=len(records))
        except Exception as e:
            # the provider already got its 200; nothing to report back to it
            json_log("webhook_processing_failed", error=str(e))

    async def verify(request: Request):
        mode = _first_param(request, "hub.mode", "mode")
        token = _first_param(request, "hub.verify_token", "verify_token")
        challenge = _first_param(request, "hub.challenge", "challenge")
        answer = verify_subscription(mode, token, challenge, settings.verify_token)
        if answer is None:
            json_log("webhook_verify_failed", mode=mode)
            return Response(status_code=403)
        json_log("webhook_verified")
        return PlainTextResponse(answer, status_code=200)

    async def webhook(request: Request, background: BackgroundTasks):
        try:
            payload = await request.json()
        except ValueError:
            raw = await request.body()
            json_log("webhook_invalid_json", size=len(raw))
            return JSONResponse({"ok": True, "ignored": "invalid_json"}, status_code=200)

        json_log("webhook_received", object=payload.get("object") if isinstance(payload, dict) else None)
        background.add_task(process_delivery, payload)
        return JSONResponse({"ok": True}, status_code=200)

    for path in ("/webhook", "/webhook/whatsapp"):
        app.add_api_route(path, verify, methods=["GET"])
        app.add_api_route(path, webhook, methods=["POST"])

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "Webhook läuft"

    @app.get("/health")
    async def health():
        return {"ok": True, "version": VERSION}

    app.include_router(web_router)

    return app


configure_logging()
app = create_app()


def run():
    import uvicorn

    settings = app.state.settings
    uvicorn.run("sitelog.main:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    run()
