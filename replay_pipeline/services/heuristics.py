# replay_pipeline/services/heuristics.py
"""
Boolean signals derived from parsed replay telemetry.

A rule is any callable ``rule(telemetry) -> bool`` registered under a flag
name. ``run_heuristics`` evaluates every registered rule and returns
``{flag_name: bool}``; the worker merges that mapping into the result
artifact under ``"heuristics"``.

Telemetry shape, as produced by the parser service::

    {"events": [{"timestamp": 12.5, "type": "damage_dealt", "data": {...}}],
     "timeline": [{"timestamp": 12.5, "player_id": "p1",
                   "position": {"x": 0.0, "y": 0.0, "z": 0.0}}]}
"""
import math
from typing import Any, Callable, Dict, List, Optional

FIGHT_GAP_SECONDS = 8
NO_HEAL_WINDOW_SECONDS = 20
LOW_HP_THRESHOLD = 75

DAMAGE_EVENTS = ("damage_dealt", "damage_taken")
HEAL_EVENTS = ("healing", "item_used")
STORM_EVENTS = ("storm_damage",)

Rule = Callable[[Dict[str, Any]], bool]

_RULES: Dict[str, Rule] = {}


def register(name: str, registry: Optional[Dict[str, Rule]] = None):
    """Decorator registering ``fn`` as the rule for flag ``name``."""
    target = _RULES if registry is None else registry

    def deco(fn: Rule) -> Rule:
        target[name] = fn
        return fn
    return deco


def default_rules() -> Dict[str, Rule]:
    return dict(_RULES)


def run_heuristics(telemetry: Dict[str, Any], rules: Optional[Dict[str, Rule]] = None) -> Dict[str, bool]:
    rules = _RULES if rules is None else rules
    return {name: bool(rule(telemetry)) for name, rule in rules.items()}


# ---------------------------
# Helpers
# ---------------------------

def _number(value) -> Optional[float]:
    """``value`` as a finite float, or None when it is missing or unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _events(telemetry: Dict[str, Any]) -> List[Dict[str, Any]]:
    # events without a usable timestamp cannot be placed in a fight
    events = [
        e for e in (telemetry.get("events") or [])
        if isinstance(e, dict) and _number(e.get("timestamp") or 0.0) is not None
    ]
    return sorted(events, key=_ts)


def _ts(event: Dict[str, Any]) -> float:
    return _number(event.get("timestamp") or 0.0) or 0.0


def _hp(event: Dict[str, Any]) -> Optional[float]:
    data = event.get("data")
    if not isinstance(data, dict):
        return None
    return _number(data.get("hp"))


def detect_fights(events: List[Dict[str, Any]]) -> List[Dict[str, float]]:
    """
    Group damage events into fights: consecutive damage events less than
    FIGHT_GAP_SECONDS apart belong to the same fight.
    """
    fights = []
    start = last = None
    for ev in events:
        if ev.get("type") not in DAMAGE_EVENTS:
            continue
        t = _ts(ev)
        if last is not None and t - last > FIGHT_GAP_SECONDS:
            fights.append({"start": start, "end": last})
            start = None
        if start is None:
            start = t
        last = t
    if start is not None:
        fights.append({"start": start, "end": last})
    return fights


# ---------------------------
# Default rules
# ---------------------------

@register("fight_detected")
def fight_detected(telemetry: Dict[str, Any]) -> bool:
    return bool(detect_fights(_events(telemetry)))


@register("no_heal_detected")
def no_heal_detected(telemetry: Dict[str, Any]) -> bool:
    """A fight ended below LOW_HP_THRESHOLD and no heal followed within the window."""
    events = _events(telemetry)
    for fight in detect_fights(events):
        end = fight["end"]
        window_end = end + NO_HEAL_WINDOW_SECONDS

        hp_at_end = None
        for ev in events:
            if _ts(ev) > end:
                break
            hp = _hp(ev)
            if hp is not None:
                hp_at_end = hp
        if hp_at_end is None or hp_at_end >= LOW_HP_THRESHOLD:
            continue

        healed = any(
            ev.get("type") in HEAL_EVENTS and end <= _ts(ev) <= window_end
            for ev in events
        )
        if not healed:
            return True
    return False


@register("storm_damage_detected")
def storm_damage_detected(telemetry: Dict[str, Any]) -> bool:
    """Explicit storm events, or HP dropping on a tick that is not a damage event."""
    prev_hp = None
    for ev in _events(telemetry):
        if ev.get("type") in STORM_EVENTS:
            return True
        hp = _hp(ev)
        if hp is None:
            continue
        if prev_hp is not None and hp < prev_hp and ev.get("type") not in DAMAGE_EVENTS:
            return True
        prev_hp = hp
    return False
