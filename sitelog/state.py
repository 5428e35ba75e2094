import copy
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .logs import json_log
from .models import SenderState, StoreSnapshot


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _dt_from_str(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def snapshot_to_json(snapshot: StoreSnapshot) -> Dict[str, Any]:
    senders: Dict[str, Any] = {}
    for sender_id, st in snapshot.senders.items():
        senders[sender_id] = {
            "last_code": st.last_code,
            "last_code_set_at": _dt_to_str(st.last_code_set_at),
            "last_prompt_at": _dt_to_str(st.last_prompt_at),
        }
    seen = {msg_id: _dt_to_str(ts) for msg_id, ts in snapshot.seen.items()}
    return {"senders": senders, "seen": seen}


def snapshot_from_json(data: Any) -> StoreSnapshot:
    """
    Rebuild a snapshot from its JSON form. Entries that do not have the
    expected shape are dropped one by one instead of failing the whole load.
    """
    snapshot = StoreSnapshot()
    if not isinstance(data, dict):
        return snapshot

    senders = data.get("senders")
    if isinstance(senders, dict):
        for sender_id, raw in senders.items():
            if not isinstance(raw, dict):
                continue
            code = raw.get("last_code")
            # absence of a code is None, never "" or "unknown"
            if not isinstance(code, str) or not code or code == "unknown":
                code = None
            set_at = _dt_from_str(raw.get("last_code_set_at"))
            snapshot.senders[str(sender_id)] = SenderState(
                last_code=code,
                last_code_set_at=set_at if code else None,
                last_prompt_at=_dt_from_str(raw.get("last_prompt_at")),
            )

    seen = data.get("seen")
    if isinstance(seen, dict):
        for msg_id, raw_ts in seen.items():
            ts = _dt_from_str(raw_ts)
            if ts is not None:
                snapshot.seen[str(msg_id)] = ts
    return snapshot


class SenderStateStore:
    """
    Persistence for sender state and the seen-message set.
    load() never raises; save() replaces the whole document.
    """

    def load(self) -> StoreSnapshot:
        raise NotImplementedError

    def save(self, snapshot: StoreSnapshot) -> None:
        raise NotImplementedError


class InMemorySenderStore(SenderStateStore):
    def __init__(self, snapshot: Optional[StoreSnapshot] = None):
        self._snapshot = copy.deepcopy(snapshot) if snapshot is not None else StoreSnapshot()
        self.saves = 0

    def load(self) -> StoreSnapshot:
        return copy.deepcopy(self._snapshot)

    def save(self, snapshot: StoreSnapshot) -> None:
        self._snapshot = copy.deepcopy(snapshot)
        self.saves += 1


class JsonFileSenderStore(SenderStateStore):
    def __init__(self, path: Path):
        self.path = Path(path)

    def ensure_layout(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> StoreSnapshot:
        if not self.path.exists():
            return StoreSnapshot()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as e:
            json_log("state_load_failed", path=str(self.path), error=str(e))
            return StoreSnapshot()
        snapshot = snapshot_from_json(data)
        json_log("state_loaded", path=str(self.path), senders=len(snapshot.senders), seen=len(snapshot.seen))
        return snapshot

    def dumps(self, snapshot: StoreSnapshot) -> str:
        return json.dumps(snapshot_to_json(snapshot), ensure_ascii=False, indent=2, sort_keys=True) + "\n"

    def save(self, snapshot: StoreSnapshot) -> None:
        """
        Write to a temp file next to the target, fsync, then rename over it so a
        crash leaves either the old or the new document, never a truncated one.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        text = self.dumps(snapshot)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
