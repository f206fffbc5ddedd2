"""
Unsealer daemon — the always-on reconciliation process.

Fetches the unseal keys once at startup, then keeps every configured
vault node unsealed: sweeping all targets on a fixed interval,
refreshing the keys hourly, and exposing a small HTTP API for
liveness, readiness, counters and status.
"""

from __future__ import annotations

import json
import logging
import os
import signal
import sys
import threading
import time
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional

from .config import UnsealerConfig
from .counters import UnsealCounters
from .engine import UnsealEngine
from .errors import UnsealerError
from .fetcher import SecretsFetcher
from .guard import InFlightGuard
from .keycache import KeyCache
from .node import VaultNodeClient
from .scheduler import ReconciliationScheduler
from .secrets_client import BitwardenSecretsClient, SecretsClient

logger = logging.getLogger("unsealer.daemon")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
MAX_ERRORS = 50


def setup_logging(level: str = "INFO") -> None:
    """Send all unsealer logs to stdout in a single line format."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())


class DaemonState:
    """Thread-safe bookkeeping for the status endpoint.

    Stores lifecycle timestamps and recent errors. Counters, keys and
    in-flight targets live in their own objects.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.started_at: Optional[datetime] = None
        self.last_refresh: Optional[datetime] = None
        self.refreshes_completed: int = 0
        self.refresh_failures: int = 0
        self.errors: list[str] = []
        self.running: bool = False

    def snapshot(self) -> dict:
        """Return a serializable snapshot of current state."""
        with self._lock:
            return {
                "running": self.running,
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "uptime_seconds": (
                    (datetime.now(timezone.utc) - self.started_at).total_seconds()
                    if self.started_at
                    else 0
                ),
                "last_refresh": self.last_refresh.isoformat() if self.last_refresh else None,
                "refreshes_completed": self.refreshes_completed,
                "refresh_failures": self.refresh_failures,
                "recent_errors": self.errors[-10:],
                "pid": os.getpid(),
            }

    def record_refresh(self) -> None:
        """Record a successful key refresh."""
        with self._lock:
            self.last_refresh = datetime.now(timezone.utc)
            self.refreshes_completed += 1

    def record_refresh_failure(self, error: str) -> None:
        with self._lock:
            self.refresh_failures += 1
        self.record_error(f"Key refresh: {error}")

    def record_error(self, error: str) -> None:
        """Record an error, keeping only the last 50."""
        with self._lock:
            ts = datetime.now(timezone.utc).isoformat()
            self.errors.append(f"[{ts}] {error}")
            if len(self.errors) > MAX_ERRORS:
                self.errors = self.errors[-MAX_ERRORS:]


class DaemonService:
    """The unsealer daemon process.

    Owns every piece of shared state and hands it to the fetcher,
    engine and scheduler at construction time.

    Args:
        config: Validated configuration.
        secrets_client: Secrets manager capability. Defaults to the
            Bitwarden adapter built from config.
        node: Vault node client. Defaults to one built from config.
    """

    def __init__(
        self,
        config: UnsealerConfig,
        secrets_client: Optional[SecretsClient] = None,
        node: Optional[VaultNodeClient] = None,
    ):
        self.config = config
        self.state = DaemonState()
        self.cache = KeyCache()
        self.guard = InFlightGuard()
        self.counters = UnsealCounters()
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._server: Optional[HTTPServer] = None
        self._stopped = False

        self.fetcher = SecretsFetcher(
            secrets_client or BitwardenSecretsClient(config.api_url, config.identity_url),
            self.cache,
            config.secret_ids,
            config.access_token,
            config.organization_id,
        )
        self.engine = UnsealEngine(
            node or VaultNodeClient(config.request_timeout, config.verify_cert),
            self.counters,
            cancel_event=self._stop_event,
            max_attempts=config.max_attempts,
            backoff_base=config.backoff_base,
        )
        self.scheduler = ReconciliationScheduler(
            config.targets,
            self.engine,
            self.cache,
            self.guard,
            self.counters,
            poll_interval=config.poll_interval,
            stop_event=self._stop_event,
        )

    @property
    def port(self) -> int:
        """Port the API is bound to (resolved when configured as 0)."""
        if self._server:
            return self._server.server_address[1]
        return self.config.http_port

    def start(self) -> None:
        """Start the daemon.

        Brings up the API (readiness stays 503 until keys arrive), does
        the blocking initial key fetch, then starts the refresh and
        reconciliation workers.

        Raises:
            UnsealerError: If the initial login or key fetch fails.
        """
        self._setup_signals()
        self.state.running = True
        self.state.started_at = datetime.now(timezone.utc)

        logger.info(
            "Unsealer starting — %d target(s), poll=%.0fs refresh=%.0fs api=%s:%d",
            len(self.config.targets),
            self.config.poll_interval,
            self.config.refresh_interval,
            self.config.http_host,
            self.config.http_port,
        )

        self._start_api_server()

        try:
            self.fetcher.login()
            self.fetcher.refresh()
        except Exception:
            self.state.running = False
            self._shutdown_api_server()
            raise
        self.state.record_refresh()

        workers = [
            ("refresh", self._refresh_loop),
            ("scheduler", self.scheduler.run),
        ]
        for name, target in workers:
            t = threading.Thread(target=target, name=f"unsealer-{name}", daemon=True)
            t.start()
            self._threads.append(t)

        logger.info("Unsealer started — PID %d", os.getpid())

    def stop(self) -> None:
        """Stop sweeps, cancel runs, drain workers, then close the API."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Unsealer stopping...")
        self._stop_event.set()
        self.state.running = False

        deadline = time.monotonic() + self.config.shutdown_timeout
        for t in self._threads:
            t.join(timeout=max(0.0, deadline - time.monotonic()))

        if not self.scheduler.drain(timeout=max(0.0, deadline - time.monotonic())):
            logger.warning("Targets still in flight at shutdown: %s", self.guard.active())

        self._shutdown_api_server(timeout=max(0.0, deadline - time.monotonic()))
        logger.info("Unsealer stopped.")

    def run_forever(self) -> None:
        """Block until stop is signaled.

        Typically called after start() in the main process.
        """
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=1)
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def refresh_keys(self) -> bool:
        """Refresh the key cache, keeping the old keys on failure.

        Returns:
            bool: True if the cache was replaced.
        """
        try:
            self.fetcher.refresh()
        except UnsealerError as exc:
            logger.error("Key refresh failed, keeping %d cached key(s): %s", len(self.cache), exc)
            self.state.record_refresh_failure(str(exc))
            return False
        self.state.record_refresh()
        return True

    def status(self) -> dict:
        """Full status document served at /status."""
        snap = self.state.snapshot()
        snap.update(
            {
                "ready": self.cache.is_ready,
                "keys_cached": len(self.cache),
                "targets": list(self.config.targets),
                "in_flight": self.guard.active(),
                "sweeps_started": self.scheduler.sweeps_started,
                "last_sweep": (
                    self.scheduler.last_sweep.isoformat() if self.scheduler.last_sweep else None
                ),
                "last_outcomes": dict(self.scheduler.last_outcomes),
                "counters": self.counters.snapshot().model_dump(),
            }
        )
        return snap

    def _refresh_loop(self) -> None:
        """Periodically refresh the key cache."""
        while not self._stop_event.wait(timeout=self.config.refresh_interval):
            try:
                self.refresh_keys()
            except Exception as exc:
                logger.exception("Key refresh crashed, retrying next interval")
                self.state.record_refresh_failure(f"{type(exc).__name__}: {exc}")

    def _start_api_server(self) -> None:
        """Start the operational HTTP API in a background thread."""
        service = self

        class UnsealerHandler(BaseHTTPRequestHandler):
            """HTTP handler for the operational API."""

            def do_GET(self):
                """Handle GET requests to the operational API."""
                path = self.path.split("?", 1)[0]
                if path == "/healthz":
                    self._json_response({"status": "ok"})
                elif path == "/readyz":
                    ready = service.cache.is_ready
                    self._json_response({"ready": ready}, status=200 if ready else 503)
                elif path == "/metrics":
                    self._json_response(service.counters.snapshot().model_dump())
                elif path == "/status":
                    self._json_response(service.status())
                else:
                    self._json_response(
                        {"endpoints": ["/healthz", "/readyz", "/metrics", "/status"]},
                        status=404,
                    )

            def _json_response(self, data: dict, status: int = 200):
                body = json.dumps(data, default=str).encode()
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format, *args):
                logger.debug("API: %s", format % args)

        try:
            self._server = HTTPServer((self.config.http_host, self.config.http_port), UnsealerHandler)
        except OSError as exc:
            logger.error("Failed to start API server: %s", exc)
            self.state.record_error(f"API server: {exc}")
            return

        t = threading.Thread(
            target=self._server.serve_forever,
            name="unsealer-api",
            daemon=True,
        )
        t.start()
        logger.info("API server listening on http://%s:%d", self.config.http_host, self.port)

    def _shutdown_api_server(self, timeout: Optional[float] = None) -> None:
        if timeout is None:
            timeout = self.config.shutdown_timeout
        server, self._server = self._server, None
        if server is None:
            return
        closer = threading.Thread(target=server.shutdown, name="unsealer-api-stop", daemon=True)
        closer.start()
        closer.join(timeout=timeout)
        if closer.is_alive():
            # Serving thread is a daemon thread; it dies with the process.
            logger.warning("API server did not stop within the shutdown timeout")
            return
        server.server_close()

    def _setup_signals(self) -> None:
        """Register signal handlers for graceful shutdown."""
        if threading.current_thread() is not threading.main_thread():
            return
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        """Handle shutdown signals."""
        logger.info("Received signal %s — stopping", signal.Signals(signum).name)
        self._stop_event.set()


def get_daemon_status(host: str = "127.0.0.1", port: int = 8080) -> Optional[dict]:
    """Query a running daemon's status via its HTTP API.

    Returns:
        Status dict from the daemon, or None if unreachable.
    """
    import urllib.error
    import urllib.request

    try:
        url = f"http://{host}:{port}/status"
        with urllib.request.urlopen(url, timeout=3) as resp:
            return json.loads(resp.read())
    except (urllib.error.URLError, OSError, json.JSONDecodeError):
        return None


def unseal_once(
    config: UnsealerConfig,
    secrets_client: Optional[SecretsClient] = None,
    node: Optional[VaultNodeClient] = None,
) -> dict[str, str]:
    """Fetch keys, run one sweep, and wait for every target to finish.

    Returns:
        dict: Outcome value per target.

    Raises:
        UnsealerError: If the keys cannot be fetched.
    """
    svc = DaemonService(config, secrets_client=secrets_client, node=node)
    svc.fetcher.login()
    svc.fetcher.refresh()
    svc.scheduler.sweep()
    svc.scheduler.drain()
    return dict(svc.scheduler.last_outcomes)
