import dataclasses
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

DEFAULT_PROMPT_TEXT = (
    "Hallo! Bitte sende zuerst den Baustellencode, z.B. #260016. "
    "Danach werden deine Fotos und Nachrichten automatisch der Baustelle zugeordnet."
)


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(value: Optional[str], default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


@dataclass
class Settings:
    data_dir: Path = Path("storage/sites")
    state_file: Path = Path("storage/sender_state.json")

    # WhatsApp Cloud API
    verify_token: str = ""
    access_token: str = ""
    phone_number_id: str = ""
    graph_base_url: str = "https://graph.facebook.com"
    graph_api_version: str = "v19.0"

    admin_token: str = ""  # if non-empty, required as ?token= on admin endpoints

    # Attribution policy
    sticky_window_minutes: int = 240  # 0 means no expiry
    prompt_cooldown_minutes: int = 30
    code_min_digits: int = 3
    caption_code_sticky: bool = True
    seen_retention_days: int = 7
    prompt_text: str = DEFAULT_PROMPT_TEXT

    # Reports
    report_tz: str = "Europe/Berlin"
    report_hour: int = 6  # the scheduled run reports the previous local day
    report_schedule: bool = True

    # Mail
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    mail_from: str = ""
    mail_to: str = ""

    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            data_dir=Path(env.get("DATA_DIR") or defaults.data_dir),
            state_file=Path(env.get("STATE_FILE") or defaults.state_file),
            verify_token=env.get("WHATSAPP_VERIFY_TOKEN", ""),
            access_token=env.get("WHATSAPP_TOKEN", ""),
            phone_number_id=env.get("WHATSAPP_PHONE_NUMBER_ID", ""),
            graph_base_url=env.get("GRAPH_API_BASE_URL") or defaults.graph_base_url,
            graph_api_version=env.get("GRAPH_API_VERSION") or defaults.graph_api_version,
            admin_token=env.get("ADMIN_TOKEN", ""),
            sticky_window_minutes=_env_int(env.get("STICKY_WINDOW_MINUTES"), defaults.sticky_window_minutes),
            prompt_cooldown_minutes=_env_int(env.get("PROMPT_COOLDOWN_MINUTES"), defaults.prompt_cooldown_minutes),
            code_min_digits=max(1, _env_int(env.get("CODE_MIN_DIGITS"), defaults.code_min_digits)),
            caption_code_sticky=_env_bool(env.get("CAPTION_CODE_STICKY"), defaults.caption_code_sticky),
            seen_retention_days=_env_int(env.get("SEEN_RETENTION_DAYS"), defaults.seen_retention_days),
            prompt_text=env.get("PROMPT_TEXT") or defaults.prompt_text,
            report_tz=env.get("REPORT_TZ") or defaults.report_tz,
            report_hour=_env_int(env.get("REPORT_HOUR"), defaults.report_hour) % 24,
            report_schedule=_env_bool(env.get("REPORT_SCHEDULE"), defaults.report_schedule),
            smtp_host=env.get("SMTP_HOST", ""),
            smtp_port=_env_int(env.get("SMTP_PORT"), defaults.smtp_port),
            smtp_user=env.get("SMTP_USER", ""),
            smtp_pass=env.get("SMTP_PASS", ""),
            mail_from=env.get("MAIL_FROM", ""),
            mail_to=env.get("MAIL_TO", ""),
            host=env.get("HOST") or defaults.host,
            port=_env_int(env.get("PORT"), defaults.port),
        )

    @property
    def sticky_window(self) -> Optional[timedelta]:
        if self.sticky_window_minutes <= 0:
            return None
        return timedelta(minutes=self.sticky_window_minutes)

    @property
    def prompt_cooldown(self) -> timedelta:
        return timedelta(minutes=max(0, self.prompt_cooldown_minutes))

    @property
    def seen_retention(self) -> timedelta:
        return timedelta(days=max(1, self.seen_retention_days))

    def to_json(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        for secret in ("access_token", "verify_token", "admin_token", "smtp_pass"):
            if data.get(secret):
                data[secret] = "***"
        data["data_dir"] = str(self.data_dir)
        data["state_file"] = str(self.state_file)
        return data
