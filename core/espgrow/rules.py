"""
Rule Store

Mirror of the controller's automation rules. Schedule rule times are held
as local wall clock here and as UTC on the controller; conversion happens
only when rules are sent or received.
"""

import logging
from datetime import datetime, tzinfo
from typing import Callable, Optional

from .channel import ChannelManager
from .messages import RuleRecord, parse_collection
from .models import RULE_WIRE_NAMES, AutomationRule, RuleKind, RuleUpdate
from .schedule import local_to_utc, utc_to_local

logger = logging.getLogger(__name__)


class RuleStore:
    """Controller automation rules."""

    def __init__(
        self,
        channel: ChannelManager,
        tz: Optional[tzinfo] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize rule store.

        Args:
            channel: Shared controller channel
            tz: Local zone for schedule times (None = host zone)
            now: Clock used to resolve the UTC offset (default: current time)
        """
        self.channel = channel
        self.tz = tz
        self._now = now
        self.rules: list[AutomationRule] = []

        channel.subscribe("rules", self._on_rules)

    def get(self, rule_id: str) -> Optional[AutomationRule]:
        return next((r for r in self.rules if r.id == rule_id), None)

    def rules_for_device(self, device_id: str) -> list[AutomationRule]:
        return [r for r in self.rules if r.device_id == device_id]

    # --- Commands -----------------------------------------------------------

    def request_rules(self) -> None:
        self.channel.send("get_rules")

    def add_rule(self, rule: AutomationRule) -> None:
        """Ask the controller to create a rule; it appears with the next push."""
        payload = RuleUpdate(
            name=rule.name,
            enabled=rule.enabled,
            kind=rule.kind,
            sensor_id=rule.sensor_id,
            operator=rule.operator,
            threshold=rule.threshold,
            threshold_off=rule.threshold_off,
            use_hysteresis=rule.use_hysteresis,
            min_run_time_ms=rule.min_run_time_ms,
            on_time=rule.on_time,
            off_time=rule.off_time,
            device_id=rule.device_id,
            action=rule.action,
        ).to_wire()
        self.channel.send("add_rule", {"id": rule.id, **self._times_to_wire(payload)})

    def update_rule(self, rule_id: str, update: RuleUpdate) -> None:
        self.channel.send("update_rule", {"id": rule_id, **self._times_to_wire(update.to_wire())})

    def remove_rule(self, rule_id: str) -> None:
        self.channel.send("remove_rule", {"id": rule_id})

    def toggle_rule(self, rule_id: str) -> None:
        self.channel.send("toggle_rule", {"id": rule_id})

    # --- Conversion -----------------------------------------------------------

    def _clock(self) -> Optional[datetime]:
        return self._now() if self._now else None

    def _times_to_wire(self, payload: dict) -> dict:
        for attr in ("on_time", "off_time"):
            key = RULE_WIRE_NAMES[attr]
            if payload.get(key):
                payload[key] = local_to_utc(payload[key], self.tz, self._clock())
        return payload

    def _on_rules(self, payload) -> None:
        rules = []
        for record in parse_collection(payload, RuleRecord):
            rule = record.to_model()
            if rule.kind is RuleKind.SCHEDULE:
                try:
                    if rule.on_time:
                        rule.on_time = utc_to_local(rule.on_time, self.tz, self._clock())
                    if rule.off_time:
                        rule.off_time = utc_to_local(rule.off_time, self.tz, self._clock())
                except ValueError as e:
                    logger.debug(f"Skipping rule {rule.id}: {e}")
                    continue
            rules.append(rule)

        self.rules = rules
        logger.debug(f"Rule list replaced ({len(self.rules)} rules)")
