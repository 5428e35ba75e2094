"""
Site attribution: decides which construction site an inbound message belongs to.

Per sender the state is either "no code" or "has code (code, set_at)". A message
with an explicit ``#<digits>`` code switches the sender to that code; codeless
messages inherit the sender's code while the sticky window is open and are filed
under ``unknown`` otherwise. Senders stuck on ``unknown`` get a nudge at most
once per prompt cooldown. Provider message ids are remembered for a few days so
re-delivered webhooks are recognised and skipped.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Pattern

from .config import Settings
from .logs import json_log
from .models import UNKNOWN_SITE, AttributionResult, InboundMessage, SenderState, StoreSnapshot
from .state import SenderStateStore

_PATTERNS: Dict[int, Pattern[str]] = {}


def _code_pattern(min_digits: int) -> Pattern[str]:
    pattern = _PATTERNS.get(min_digits)
    if pattern is None:
        pattern = re.compile(r"#([0-9]{%d,})" % min_digits)
        _PATTERNS[min_digits] = pattern
    return pattern


def extract_code(text: Optional[str], min_digits: int = 3) -> Optional[str]:
    """
    Return the digits of the first ``#`` marker followed by at least
    ``min_digits`` digits, e.g. "Baustelle #260016 bitte" -> "260016".
    Anything that is not a usable string yields None.
    """
    if not isinstance(text, str) or "#" not in text:
        return None
    match = _code_pattern(max(1, min_digits)).search(text)
    return match.group(1) if match else None


@dataclass(frozen=True)
class AttributionPolicy:
    sticky_window: Optional[timedelta] = timedelta(hours=4)  # None: the code never expires
    prompt_cooldown: timedelta = timedelta(minutes=30)
    code_min_digits: int = 3
    caption_code_sticky: bool = True
    seen_retention: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AttributionPolicy":
        return cls(
            sticky_window=settings.sticky_window,
            prompt_cooldown=settings.prompt_cooldown,
            code_min_digits=settings.code_min_digits,
            caption_code_sticky=settings.caption_code_sticky,
            seen_retention=settings.seen_retention,
        )


def code_is_active(state: SenderState, now: datetime, sticky_window: Optional[timedelta]) -> bool:
    if not state.last_code:
        return False
    if sticky_window is None:
        return True
    if state.last_code_set_at is None:
        return False
    return now - state.last_code_set_at <= sticky_window


def prompt_due(state: SenderState, now: datetime, cooldown: timedelta) -> bool:
    if state.last_prompt_at is None:
        return True
    return now - state.last_prompt_at >= cooldown


class AttributionEngine:
    def __init__(self, store: SenderStateStore, policy: Optional[AttributionPolicy] = None):
        self.store = store
        self.policy = policy or AttributionPolicy()
        self.state = StoreSnapshot()

    def load(self) -> None:
        self.state = self.store.load()

    def flush(self, now: Optional[datetime] = None) -> None:
        self.prune_seen(now)
        self.store.save(self.state)

    def sender(self, sender_id: str) -> SenderState:
        st = self.state.senders.get(sender_id)
        if st is None:
            st = SenderState()
            self.state.senders[sender_id] = st
        return st

    def is_duplicate(self, message_id: Optional[str]) -> bool:
        return bool(message_id) and message_id in self.state.seen

    def forget(self, message_id: Optional[str]) -> None:
        """Drop ``message_id`` from the seen set so a redelivery is handled again."""
        if message_id and self.state.seen.pop(message_id, None) is not None:
            json_log("message_forgotten", message_id=message_id)

    def prune_seen(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.policy.seen_retention
        stale = [msg_id for msg_id, ts in self.state.seen.items() if ts < cutoff]
        for msg_id in stale:
            del self.state.seen[msg_id]
        if stale:
            json_log("seen_pruned", removed=len(stale), kept=len(self.state.seen))
        return len(stale)

    def resolve(self, message: InboundMessage, now: Optional[datetime] = None) -> AttributionResult:
        now = now or datetime.now(timezone.utc)

        if self.is_duplicate(message.message_id):
            return AttributionResult(site_code=None, duplicate=True)

        explicit = extract_code(message.code_text, self.policy.code_min_digits)
        state = self.sender(message.sender_id)

        if explicit:
            site = explicit
            if not message.from_caption or self.policy.caption_code_sticky:
                state.set_code(explicit, now)
        elif code_is_active(state, now, self.policy.sticky_window):
            site = state.last_code
        else:
            if state.last_code:
                json_log("sticky_code_expired", sender=message.sender_id, code=state.last_code)
            state.clear_code()
            site = UNKNOWN_SITE

        should_prompt = False
        if site == UNKNOWN_SITE and prompt_due(state, now, self.policy.prompt_cooldown):
            should_prompt = True
            state.last_prompt_at = now

        if message.message_id:
            self.state.seen[message.message_id] = now
        else:
            json_log("message_without_id", sender=message.sender_id, type=message.message_type)

        return AttributionResult(site_code=site, should_prompt=should_prompt, explicit_code=explicit)
