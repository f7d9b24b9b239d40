# replay_pipeline/supervisors/health.py
"""
Periodic health probes of the services the pipeline depends on.

Each dependency starts UNKNOWN and moves to UP or DOWN after every probe.
Nothing is persisted: a restarted supervisor starts from UNKNOWN again.
"""
import time
import logging
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from replay_pipeline.metrics import DEPENDENCY_UP, HEALTH_ALERTS

logger = logging.getLogger(__name__)

UNKNOWN = "UNKNOWN"
UP = "UP"
DOWN = "DOWN"


class HttpProbe:
    """GET ``<base_url>/health``; healthy means 200 and an "ok" body."""

    def __init__(self, name: str, base_url: str, path: str = "/health", session: Optional[requests.Session] = None):
        self.name = name
        self.url = f"{base_url.rstrip('/')}{path}"
        self._session = session or requests.Session()

    def check(self, timeout: float) -> bool:
        resp = self._session.get(self.url, timeout=timeout)
        if resp.status_code != 200:
            logger.warning(f"{self.name}: HTTP {resp.status_code}", extra={"dependency": self.name})
            return False
        try:
            body = resp.json()
        except ValueError:
            return False
        return is_healthy_body(body)


class RedisProbe:
    def __init__(self, client, name: str = "redis"):
        self.name = name
        self._client = client

    def check(self, timeout: float) -> bool:
        return bool(self._client.ping())


class DatabaseProbe:
    def __init__(self, store, name: str = "postgres"):
        self.name = name
        self._store = store

    def check(self, timeout: float) -> bool:
        self._store.ping(timeout=timeout)
        return True


def is_healthy_body(body) -> bool:
    # {"status": "ok"} from the parser/API services, {"ok": true} from /healthz
    if not isinstance(body, dict):
        return False
    return str(body.get("status", "")).lower() == "ok" or body.get("ok") is True


@dataclass
class HealthReport:
    states: Dict[str, str]
    down: List[str] = field(default_factory=list)
    alerted: bool = False


def format_alert(down: List[str]) -> str:
    lines = "\n".join(f"- {name}" for name in down)
    return f"⚠️ **Health Check Alert**\n\nServices down:\n{lines}"


class HealthSupervisor:
    """
    Runs every probe with the same bounded timeout; a probe that raises or
    does not finish in time counts as DOWN. While anything is DOWN each
    cycle sends one alert listing the DOWN dependencies.

    Probes run on one long-lived pool with a thread per dependency. A probe
    still hung from an earlier cycle is not started again: its dependency is
    DOWN until that call returns, so threads never pile up.
    """

    def __init__(self, probes, alert_sink, timeout: float = 5):
        self.probes = list(probes)
        self.alert_sink = alert_sink
        self.timeout = timeout
        self.states: Dict[str, str] = {p.name: UNKNOWN for p in self.probes}
        self._pool = ThreadPoolExecutor(max_workers=max(1, len(self.probes)), thread_name_prefix="health-probe")
        self._inflight: Dict[str, Future] = {}

    def _collect(self, name: str, future, deadline: float) -> bool:
        try:
            return bool(future.result(timeout=max(0.0, deadline - time.monotonic())))
        except FutureTimeout:
            logger.error(f"{name}: probe timed out after {self.timeout:g}s", extra={"dependency": name})
        except Exception as e:
            logger.error(f"{name}: probe failed: {e}", extra={"dependency": name})
        return False

    def probe_all(self) -> Dict[str, bool]:
        deadline = time.monotonic() + self.timeout
        results: Dict[str, bool] = {}
        futures = {}
        for p in self.probes:
            previous = self._inflight.get(p.name)
            if previous is not None and not previous.done():
                logger.error(f"{p.name}: previous probe still running", extra={"dependency": p.name})
                results[p.name] = False
                continue
            futures[p.name] = self._inflight[p.name] = self._pool.submit(p.check, self.timeout)

        for name, future in futures.items():
            results[name] = self._collect(name, future, deadline)
        return {p.name: results[p.name] for p in self.probes}

    def close(self):
        self._pool.shutdown(wait=False, cancel_futures=True)

    def run_cycle(self) -> HealthReport:
        logger.info("Running health checks...")
        results = self.probe_all()

        down = []
        for name, healthy in results.items():
            new_state = UP if healthy else DOWN
            old_state = self.states.get(name, UNKNOWN)
            if new_state != old_state:
                log = logger.info if healthy else logger.error
                log(f"{name}: {old_state} -> {new_state}", extra={"dependency": name})
            self.states[name] = new_state
            DEPENDENCY_UP.labels(dependency=name).set(1 if healthy else 0)
            if not healthy:
                down.append(name)

        report = HealthReport(states=dict(self.states), down=down)
        if down:
            HEALTH_ALERTS.inc()
            self.alert_sink.send(format_alert(down))
            report.alerted = True
        return report
