"""Probe executor: runs a single health check against one target."""

import asyncio
import platform
import time
from dataclasses import dataclass

import httpx
import structlog

from statuspage.config import settings
from statuspage.core.exceptions import ConfigurationError
from statuspage.services.health import CheckType, EffectiveCheckConfig, ProbeResult

logger = structlog.get_logger()

HEALTH_UP_TOKENS = {"up", "ok", "healthy", "pass"}
TCP_ECHO_PORT = 7
DEFAULT_TCP_PORT = 80


@dataclass(frozen=True)
class ProbeTarget:
    """Validated probe target."""

    url: str | None = None
    host: str | None = None
    port: int | None = None


def _extract_hostname(target: str) -> str:
    hostname = target.strip()
    for prefix in ("http://", "https://", "tcp://"):
        if hostname.lower().startswith(prefix):
            hostname = hostname[len(prefix):]
            break
    hostname = hostname.split("/", 1)[0]
    if hostname.startswith("["):
        # IPv6 literal: [::1]:8080
        return hostname[1:].split("]", 1)[0]
    return hostname.split(":", 1)[0]


def validate_target(config: EffectiveCheckConfig) -> ProbeTarget:
    """Validate the target for the configured check type.

    Raises ConfigurationError for a missing check type or a malformed target.
    """
    if config.check_type == CheckType.NONE:
        raise ConfigurationError("No check type configured")
    if not config.url:
        raise ConfigurationError("No check URL configured")

    if config.check_type in (CheckType.HTTP_GET, CheckType.HEALTH_ENDPOINT):
        try:
            url = httpx.URL(config.url)
        except (httpx.InvalidURL, TypeError) as e:
            raise ConfigurationError(f"Invalid URL: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigurationError(f"Invalid URL: {config.url}")
        return ProbeTarget(url=str(url))

    if config.check_type == CheckType.TCP_PORT:
        raw = config.url.strip()
        if raw.lower().startswith("tcp://"):
            raw = raw[len("tcp://"):]
        raw = raw.rstrip("/")
        host, port = raw, DEFAULT_TCP_PORT
        if raw.startswith("["):
            host, _, rest = raw[1:].partition("]")
            if rest.startswith(":"):
                port = rest[1:]
        elif ":" in raw:
            host, port = raw.rsplit(":", 1)
        try:
            port = int(port)
        except ValueError as e:
            raise ConfigurationError("Invalid port number") from e
        if not host or not 0 < port < 65536:
            raise ConfigurationError(f"Invalid TCP target: {config.url}")
        return ProbeTarget(host=host, port=port)

    hostname = _extract_hostname(config.url)
    if not hostname:
        raise ConfigurationError(f"Invalid host: {config.url}")
    return ProbeTarget(host=hostname)


def _error_text(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


class ProbeExecutor:
    """Executes PING, TCP_PORT, HTTP_GET and HEALTH_ENDPOINT checks.

    Every outcome, including timeouts, refused connections, DNS failures and
    unexpected responses, is returned as a ProbeResult.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None, ping_command: str = "ping"):
        self._http_client = http_client
        self._owns_client = http_client is None
        self._ping_command = ping_command

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                follow_redirects=True,
                headers={"User-Agent": settings.status_http_user_agent},
            )
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def probe(self, config: EffectiveCheckConfig) -> ProbeResult:
        start = time.perf_counter()
        try:
            target = validate_target(config)
            timeout = float(config.timeout_seconds)
            if config.check_type == CheckType.HTTP_GET:
                success, message = await self._http_get(target.url, timeout, config.expected_status, start)
            elif config.check_type == CheckType.HEALTH_ENDPOINT:
                success, message = await self._health_endpoint(target.url, timeout, start)
            elif config.check_type == CheckType.TCP_PORT:
                success, message = await self._tcp_connect(target.host, target.port, timeout, start)
            else:
                success, message = await self._ping(target.host, timeout, start)
        except ConfigurationError as e:
            success, message = False, e.message
        except Exception as e:
            logger.debug("probe_unexpected_error", check_type=config.check_type.value, error=_error_text(e))
            success, message = False, f"Check error: {_error_text(e)}"

        return ProbeResult(success=success, message=message, duration_ms=_elapsed_ms(start))

    # ── HTTP ─────────────────────────────────────────────────────────────────

    async def _http_get(self, url: str, timeout: float, expected_status: int, start: float) -> tuple[bool, str]:
        try:
            resp = await self._client().get(url, timeout=_http_timeout(timeout))
        except httpx.TimeoutException:
            return False, f"Timed out after {timeout:g}s"
        except httpx.HTTPError as e:
            logger.debug("http_probe_failed", url=url, error=_error_text(e))
            return False, f"HTTP request failed: {_error_text(e)}"

        if resp.status_code == expected_status:
            return True, f"HTTP {resp.status_code} ({_elapsed_ms(start)}ms)"
        return False, f"HTTP {resp.status_code} (expected {expected_status})"

    async def _health_endpoint(self, url: str, timeout: float, start: float) -> tuple[bool, str]:
        try:
            resp = await self._client().get(
                url, timeout=_http_timeout(timeout), headers={"Accept": "application/json"}
            )
        except httpx.TimeoutException:
            return False, f"Timed out after {timeout:g}s"
        except httpx.HTTPError as e:
            logger.debug("health_endpoint_probe_failed", url=url, error=_error_text(e))
            return False, f"Health check failed: {_error_text(e)}"

        if not resp.is_success:
            return False, f"HTTP {resp.status_code}"

        try:
            body = resp.json()
        except ValueError:
            return False, "Health: invalid response body"

        indicator = body.get("status") if isinstance(body, dict) else None
        if indicator is None:
            return False, "Health: UNKNOWN"
        if str(indicator).strip().lower() in HEALTH_UP_TOKENS:
            return True, f"Health: {str(indicator).upper()} ({_elapsed_ms(start)}ms)"
        return False, f"Health: {indicator}"

    # ── TCP ──────────────────────────────────────────────────────────────────

    async def _tcp_connect(self, host: str, port: int, timeout: float, start: float) -> tuple[bool, str]:
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
        except asyncio.TimeoutError:
            return False, f"Timed out after {timeout:g}s"
        except OSError as e:
            logger.debug("tcp_probe_failed", host=host, port=port, error=_error_text(e))
            return False, f"TCP connection failed: {_error_text(e)}"

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True, f"TCP connection successful ({_elapsed_ms(start)}ms)"

    # ── PING ─────────────────────────────────────────────────────────────────

    async def _ping(self, host: str, timeout: float, start: float) -> tuple[bool, str]:
        wait_flag = "-t" if platform.system() == "Darwin" else "-W"
        try:
            proc = await asyncio.create_subprocess_exec(
                self._ping_command,
                "-c",
                "1",
                wait_flag,
                str(max(1, int(timeout))),
                host,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except (FileNotFoundError, PermissionError):
            # No usable ping binary, fall back to TCP echo
            return await self._tcp_echo(host, timeout, start)

        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=timeout + 1)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return False, f"Timed out after {timeout:g}s"

        if returncode == 0:
            return True, f"Ping successful ({_elapsed_ms(start)}ms)"
        return False, "Host unreachable"

    async def _tcp_echo(self, host: str, timeout: float, start: float) -> tuple[bool, str]:
        """Reachability via TCP echo: an accepted or refused connection both prove the host is up."""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, TCP_ECHO_PORT), timeout=timeout
            )
            writer.close()
        except ConnectionRefusedError:
            pass
        except asyncio.TimeoutError:
            return False, "Host unreachable"
        except OSError as e:
            return False, f"Ping failed: {_error_text(e)}"
        return True, f"Ping successful ({_elapsed_ms(start)}ms)"


def _http_timeout(timeout: float) -> httpx.Timeout:
    return httpx.Timeout(timeout, connect=min(timeout, settings.status_http_connect_timeout))


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
