"""
Diagnostic Capture
Builds a DiagnosticReport when a document fails to render: client browser
and document state, recent console errors, recent network calls and
performance entries.

Console errors are collected continuously by a ConsoleSink (a loguru sink,
a stdlib logging handler and excepthook wrappers). Network calls are
collected by a NetworkSink exposed as an aiohttp TraceConfig, or reported
explicitly with ``record_network_request``.
"""
import asyncio
import logging
import random
import string
import sys
import threading
import traceback
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import aiohttp
from bs4 import BeautifulSoup

from flipbook_monitoring.config import Settings, get_settings
from flipbook_monitoring.errors import RenderingError, create_diagnostics
from flipbook_monitoring.models.diagnostics import (
    BrowserStateSnapshot,
    ConsoleErrorEntry,
    DiagnosticCaptureConfig,
    DiagnosticReport,
    DocumentStateSnapshot,
    NetworkLogEntry,
    PerformanceEntry,
)
from flipbook_monitoring.utils.bounded_log import BoundedLog
from flipbook_monitoring.utils.helpers import epoch_ms, iso, utc_now
from flipbook_monitoring.utils.logger import log

MAX_PERFORMANCE_ENTRIES = 50
MAX_REQUEST_BODY = 1000

ScreenshotProvider = Callable[[], Awaitable[Optional[str]]]


class ClientEnvironment(Protocol):
    """
    State reported by (or read from) the viewing client.

    Every method may be missing or return nothing; that only means the
    corresponding part of the report stays empty.
    """

    def browser_state(self) -> Dict[str, Any]: ...

    def document_html(self) -> Optional[str]: ...

    def performance_entries(self) -> List[Dict[str, Any]]: ...

    def browser_info(self) -> Dict[str, Any]: ...


class ReportedClientEnvironment:
    """ClientEnvironment backed by the JSON a browser posts along with a render error"""

    def __init__(self, payload: Optional[Dict[str, Any]] = None):
        self.payload = payload or {}

    def browser_state(self) -> Dict[str, Any]:
        return dict(self.payload.get("browserState") or {})

    def document_html(self) -> Optional[str]:
        return self.payload.get("documentHtml")

    def performance_entries(self) -> List[Dict[str, Any]]:
        return list(self.payload.get("performanceEntries") or [])

    def browser_info(self) -> Dict[str, Any]:
        info = dict(self.payload.get("browserInfo") or {})
        user_agent = self.browser_state().get("userAgent")
        if user_agent and "userAgent" not in info:
            info["userAgent"] = user_agent
        return info


def _call_optional(environment, name: str, default):
    method = getattr(environment, name, None)
    if method is None:
        return default
    result = method()
    return default if result is None else result


def _to_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(float(value))


def _to_float(value) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def extract_document_state(
    html: str,
    document_id: str,
    pdf_url: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> DocumentStateSnapshot:
    """
    Read viewer state from a DOM snapshot.

    The viewer exposes its state through data attributes:
    ``[data-pdf-viewer]`` (current page, page count, scale, spread mode),
    ``[data-loading]``, ``[data-error]``, and ``[data-page-number]`` /
    ``[data-page-rendered="true"]`` for progress.
    """
    soup = BeautifulSoup(html, "html.parser")

    snapshot = DocumentStateSnapshot(
        timestamp=timestamp or utc_now(),
        document_id=document_id,
        pdf_url=pdf_url,
        canvas_elements=len(soup.find_all("canvas")),
        image_elements=len(soup.find_all("img")),
        dom_element_count=len(soup.find_all(True)),
    )

    try:
        viewer = soup.select_one("[data-pdf-viewer]")
        if viewer is not None:
            snapshot.current_page = _to_int(viewer.get("data-current-page"))
            snapshot.total_pages = _to_int(viewer.get("data-pages-count"))
            snapshot.zoom_level = _to_float(viewer.get("data-current-scale"))
            snapshot.view_mode = viewer.get("data-spread-mode")

        loading = soup.select_one("[data-loading]")
        if loading is not None:
            snapshot.loading_state = loading.get_text().strip() or "loading"

        error = soup.select_one("[data-error]")
        if error is not None:
            snapshot.error_state = error.get_text().strip() or "error"

        rendered_pages = len(soup.select('[data-page-rendered="true"]'))
        page_elements = len(soup.select("[data-page-number]"))
        if page_elements > 0:
            snapshot.rendering_progress = rendered_pages / page_elements * 100
    except Exception as e:
        log.debug(f"Error capturing viewer state: {str(e)}")

    return snapshot


def build_browser_state(state: Dict[str, Any], timestamp: datetime) -> BrowserStateSnapshot:
    if not state:
        return BrowserStateSnapshot()
    return BrowserStateSnapshot(
        timestamp=timestamp,
        url=state.get("url"),
        user_agent=state.get("userAgent"),
        viewport=state.get("viewport"),
        scroll_position=state.get("scrollPosition"),
        active_element=state.get("activeElement"),
        visibility_state=state.get("visibilityState"),
        connection_type=state.get("connectionType"),
        online_status=state.get("onlineStatus"),
        memory_info=state.get("memoryInfo"),
        storage_quota=state.get("storageQuota"),
    )


def filter_performance_entries(entries: List[Any]) -> List[PerformanceEntry]:
    """Entries related to PDF loading and rendering, plus navigation and resources; last 50"""
    relevant = []
    for raw in entries:
        entry = raw if isinstance(raw, PerformanceEntry) else PerformanceEntry.from_dict(raw)
        if (
            "pdf" in entry.name
            or "render" in entry.name
            or "load" in entry.name
            or entry.entry_type in ("navigation", "resource")
        ):
            relevant.append(entry)
    return relevant[-MAX_PERFORMANCE_ENTRIES:]


class _RootLoggingHandler(logging.Handler):
    def __init__(self, sink: "ConsoleSink"):
        super().__init__(level=logging.WARNING)
        self.sink = sink

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stack = None
            if record.exc_info:
                stack = "".join(traceback.format_exception(*record.exc_info))
            self.sink.record(
                level="error" if record.levelno >= logging.ERROR else "warn",
                message=record.getMessage(),
                stack=stack,
                source=record.pathname,
                line=record.lineno,
            )
        except Exception:
            self.handleError(record)


def _live_hook(hook, original_attr: str):
    """Skip past wrappers of sinks that were uninstalled while wrapped by another sink"""
    owner = getattr(hook, "__self__", None)
    while isinstance(owner, ConsoleSink) and not owner.installed:
        hook = getattr(owner, original_attr)
        owner = getattr(hook, "__self__", None)
    return hook


def _chain_contains(hook, target, original_attr: str) -> bool:
    while hook is not None:
        if hook == target:
            return True
        owner = getattr(hook, "__self__", None)
        if not isinstance(owner, ConsoleSink):
            return False
        hook = getattr(owner, original_attr)
    return False


class ConsoleSink:
    """
    Captures warnings and errors written by the process.

    Sources: loguru records at WARNING and above, stdlib logging records on
    the root logger (asyncio reports unhandled task exceptions there), and
    uncaught exceptions on the main thread or worker threads.
    """

    def __init__(self, on_entry: Callable[[ConsoleErrorEntry], None], clock=utc_now):
        self.on_entry = on_entry
        self._clock = clock
        self.installed = False
        self._loguru_handler_id: Optional[int] = None
        self._logging_handler: Optional[_RootLoggingHandler] = None
        self._original_excepthook = None
        self._original_threading_excepthook = None

    def record(
        self,
        level: str,
        message: str,
        stack: Optional[str] = None,
        source: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        self.on_entry(ConsoleErrorEntry(
            timestamp=self._clock(),
            level=level,
            message=message,
            stack=stack,
            source=source,
            line=line,
            column=column,
        ))

    def install(self) -> None:
        if self.installed:
            return

        self._loguru_handler_id = log.add(self._loguru_sink, level="WARNING", format="{message}", catch=True)

        self._logging_handler = _RootLoggingHandler(self)
        logging.getLogger().addHandler(self._logging_handler)

        # A wrapper left inside another sink's chain comes back to life as is
        if not _chain_contains(sys.excepthook, self._excepthook, "_original_excepthook"):
            self._original_excepthook = sys.excepthook
            sys.excepthook = self._excepthook

        if not _chain_contains(threading.excepthook, self._threading_excepthook, "_original_threading_excepthook"):
            self._original_threading_excepthook = threading.excepthook
            threading.excepthook = self._threading_excepthook

        self.installed = True

    def uninstall(self) -> None:
        if not self.installed:
            return

        if self._loguru_handler_id is not None:
            try:
                log.remove(self._loguru_handler_id)
            except ValueError:
                pass
            self._loguru_handler_id = None

        if self._logging_handler is not None:
            logging.getLogger().removeHandler(self._logging_handler)
            self._logging_handler = None

        self.installed = False

        # Another sink may have wrapped ours since; then our wrapper stays in
        # its chain and just delegates until that sink restores past it
        if sys.excepthook == self._excepthook:
            sys.excepthook = _live_hook(self._original_excepthook, "_original_excepthook")
        if threading.excepthook == self._threading_excepthook:
            threading.excepthook = _live_hook(self._original_threading_excepthook, "_original_threading_excepthook")

    def _loguru_sink(self, message) -> None:
        record = message.record
        stack = None
        if record["exception"] is not None:
            exc_type, exc_value, exc_tb = record["exception"]
            if exc_type is not None:
                stack = "".join(traceback.format_exception(exc_type, exc_value, exc_tb))
        self.record(
            level="warn" if record["level"].name == "WARNING" else "error",
            message=record["message"],
            stack=stack,
            source=record["name"],
            line=record["line"],
        )

    def _record_exception(self, exc_type, exc_value, exc_tb, source: Optional[str] = None) -> None:
        frames = traceback.extract_tb(exc_tb) if exc_tb is not None else []
        last = frames[-1] if frames else None
        self.record(
            level="error",
            message=f"{exc_type.__name__}: {exc_value}",
            stack="".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            source=source or (last.filename if last else None),
            line=last.lineno if last else None,
        )

    def _excepthook(self, exc_type, exc_value, exc_tb) -> None:
        try:
            if self.installed:
                self._record_exception(exc_type, exc_value, exc_tb)
        finally:
            self._original_excepthook(exc_type, exc_value, exc_tb)

    def _threading_excepthook(self, args) -> None:
        try:
            if self.installed:
                thread_name = args.thread.name if args.thread is not None else "unknown"
                self._record_exception(
                    args.exc_type, args.exc_value, args.exc_traceback, source=f"thread:{thread_name}"
                )
        finally:
            self._original_threading_excepthook(args)


class NetworkSink:
    """
    Records outgoing HTTP calls made through aiohttp sessions created with
    ``trace_configs=[sink.trace_config]``.
    """

    def __init__(self, on_entry: Callable[[NetworkLogEntry], None], clock=utc_now):
        self.on_entry = on_entry
        self._clock = clock
        self.enabled = False
        self.trace_config = aiohttp.TraceConfig()
        self.trace_config.on_request_start.append(self._on_request_start)
        self.trace_config.on_request_end.append(self._on_request_end)
        self.trace_config.on_request_exception.append(self._on_request_exception)

    async def _on_request_start(self, session, ctx, params) -> None:
        ctx.started = asyncio.get_running_loop().time()
        ctx.entry = NetworkLogEntry(
            timestamp=self._clock(),
            url=str(params.url),
            method=params.method,
            request_headers=dict(params.headers) if params.headers else None,
        )

    def _finish(self, ctx) -> Optional[NetworkLogEntry]:
        entry = getattr(ctx, "entry", None)
        if entry is None:
            return None
        entry.duration = (asyncio.get_running_loop().time() - ctx.started) * 1000
        return entry

    async def _on_request_end(self, session, ctx, params) -> None:
        entry = self._finish(ctx)
        if entry is None or not self.enabled:
            return
        entry.status = params.response.status
        entry.status_text = params.response.reason
        entry.response_headers = dict(params.response.headers)
        self.on_entry(entry)

    async def _on_request_exception(self, session, ctx, params) -> None:
        entry = self._finish(ctx)
        if entry is None or not self.enabled:
            return
        entry.error = str(params.exception) or type(params.exception).__name__
        self.on_entry(entry)


def _generate_report_id(now: datetime) -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"diag_{epoch_ms(now)}_{suffix}"


class DiagnosticCapture:
    """
    Assembles failure reports and keeps bounded console and network buffers.

    ``capture_failure_diagnostics`` never raises: if assembling the report
    fails it returns a minimal report with ``additional_context["captureError"]``.
    """

    def __init__(
        self,
        config: Optional[DiagnosticCaptureConfig] = None,
        settings: Optional[Settings] = None,
        environment: Optional[ClientEnvironment] = None,
        screenshot_provider: Optional[ScreenshotProvider] = None,
        monitoring_endpoint: Optional[str] = None,
        monitoring_api_key: Optional[str] = None,
        clock=utc_now,
    ):
        settings = settings or get_settings()
        self.config = config or DiagnosticCaptureConfig.from_settings(settings)
        self.environment = environment
        self.screenshot_provider = screenshot_provider
        self.monitoring_endpoint = monitoring_endpoint if monitoring_endpoint is not None else settings.monitoring_endpoint
        self.monitoring_api_key = monitoring_api_key if monitoring_api_key is not None else settings.monitoring_api_key
        self._clock = clock

        retain = self.config.max_log_entries // 2
        self._console_errors: BoundedLog[ConsoleErrorEntry] = BoundedLog(self.config.max_log_entries, retain)
        self._network_logs: BoundedLog[NetworkLogEntry] = BoundedLog(self.config.max_log_entries, retain)
        self._lock = threading.RLock()

        self.console_sink = ConsoleSink(self._add_console_entry, clock=clock)
        self.network_sink = NetworkSink(self._add_network_entry, clock=clock)
        self.is_capturing = False

        self.initialize()

    @property
    def trace_config(self) -> aiohttp.TraceConfig:
        return self.network_sink.trace_config

    def initialize(self) -> None:
        if self.is_capturing:
            return
        if self.config.capture_console_errors:
            self.console_sink.install()
        if self.config.capture_network_logs:
            self.network_sink.enabled = True
        self.is_capturing = True

    def destroy(self) -> None:
        """Remove every hook and clear the buffers; safe to call repeatedly"""
        self.console_sink.uninstall()
        self.network_sink.enabled = False
        with self._lock:
            self._console_errors.clear()
            self._network_logs.clear()
        self.is_capturing = False

    # Buffers

    def _add_console_entry(self, entry: ConsoleErrorEntry) -> None:
        with self._lock:
            self._console_errors.append(entry)

    def _add_network_entry(self, entry: NetworkLogEntry) -> None:
        with self._lock:
            self._network_logs.append(entry)

    def record_console_error(
        self,
        level: str,
        message: str,
        stack: Optional[str] = None,
        source: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        """Explicit reporting path, e.g. for console errors forwarded by a browser"""
        self.console_sink.record(level, message, stack=stack, source=source, line=line, column=column)

    def record_network_request(
        self,
        url: str,
        method: str = "GET",
        status: Optional[int] = None,
        status_text: Optional[str] = None,
        duration: Optional[float] = None,
        error: Optional[str] = None,
        request_headers: Optional[Dict[str, str]] = None,
        response_headers: Optional[Dict[str, str]] = None,
        request_body: Optional[str] = None,
    ) -> None:
        if request_body is not None and len(request_body) >= MAX_REQUEST_BODY:
            request_body = None
        self._add_network_entry(NetworkLogEntry(
            timestamp=self._clock(),
            url=url,
            method=method,
            status=status,
            status_text=status_text,
            duration=duration,
            error=error,
            request_headers=request_headers,
            response_headers=response_headers,
            request_body=request_body,
        ))

    def get_console_errors(self) -> List[ConsoleErrorEntry]:
        with self._lock:
            return self._console_errors.snapshot()

    def get_network_logs(self) -> List[NetworkLogEntry]:
        with self._lock:
            return self._network_logs.snapshot()

    # Capture

    async def capture_failure_diagnostics(
        self,
        document_id: str,
        error: RenderingError,
        additional_context: Optional[Dict[str, Any]] = None,
        environment: Optional[ClientEnvironment] = None,
    ) -> DiagnosticReport:
        timestamp = self._clock()
        report_id = _generate_report_id(timestamp)
        environment = environment or self.environment

        log.bind(
            reportId=report_id,
            documentId=document_id,
            errorType=error.type.value,
            errorMessage=error.message,
        ).info("Capturing failure diagnostics")

        try:
            pdf_url = error.diagnostics.pdf_url if error.diagnostics else ""
            browser_info = _call_optional(environment, "browser_info", {}) if environment else {}
            diagnostics = create_diagnostics(
                document_id,
                pdf_url,
                error.type,
                browser_info=browser_info,
                additional_context=additional_context,
            )

            browser_state = BrowserStateSnapshot()
            if self.config.capture_browser_state and environment is not None:
                browser_state = build_browser_state(_call_optional(environment, "browser_state", {}), self._clock())

            document_state = DocumentStateSnapshot()
            if self.config.capture_document_state and environment is not None:
                html = _call_optional(environment, "document_html", None)
                if html:
                    document_state = extract_document_state(html, document_id, pdf_url or None, self._clock())

            screenshot = None
            if self.config.capture_screenshots:
                screenshot = await self._capture_screenshot()

            performance_entries: List[PerformanceEntry] = []
            if self.config.capture_performance_metrics and environment is not None:
                performance_entries = filter_performance_entries(
                    _call_optional(environment, "performance_entries", [])
                )

            report = DiagnosticReport(
                report_id=report_id,
                timestamp=timestamp,
                document_id=document_id,
                error=error,
                diagnostics=diagnostics,
                console_errors=self.get_console_errors(),
                network_logs=self.get_network_logs(),
                browser_state=browser_state,
                document_state=document_state,
                screenshot=screenshot,
                performance_entries=performance_entries,
                additional_context=additional_context,
            )

            self._log_report(report)
            await self._send_to_monitoring_service(report)
            return report

        except Exception as capture_error:
            log.bind(reportId=report_id, documentId=document_id, originalError=error.message).error(
                f"Failed to capture diagnostics: {str(capture_error)}"
            )
            return DiagnosticReport(
                report_id=report_id,
                timestamp=timestamp,
                document_id=document_id,
                error=error,
                diagnostics=error.diagnostics,
                additional_context={
                    **(additional_context or {}),
                    "captureError": str(capture_error) or type(capture_error).__name__,
                },
            )

    async def _capture_screenshot(self) -> Optional[str]:
        if self.screenshot_provider is None:
            return None
        try:
            data_url = await self.screenshot_provider()
        except Exception as e:
            log.warning(f"Failed to capture screenshot: {str(e)}")
            return None

        if data_url and len(data_url) > self.config.max_screenshot_size:
            log.bind(size=len(data_url), maxSize=self.config.max_screenshot_size).warning(
                "Screenshot too large, skipping"
            )
            return None
        return data_url or None

    def _log_report(self, report: DiagnosticReport) -> None:
        log.bind(
            reportId=report.report_id,
            documentId=report.document_id,
            errorType=report.error.type.value,
            errorMessage=report.error.message,
            consoleErrorCount=len(report.console_errors),
            networkLogCount=len(report.network_logs),
            hasScreenshot=bool(report.screenshot),
            performanceEntryCount=len(report.performance_entries),
            browserInfo={
                "userAgent": report.browser_state.user_agent,
                "viewport": report.browser_state.viewport,
                "onlineStatus": report.browser_state.online_status,
                "memoryUsage": (report.browser_state.memory_info or {}).get("usedJSHeapSize"),
            },
            documentState={
                "currentPage": report.document_state.current_page,
                "totalPages": report.document_state.total_pages,
                "renderingProgress": report.document_state.rendering_progress,
                "canvasElements": report.document_state.canvas_elements,
            },
        ).error("Diagnostic report generated")

    async def _send_to_monitoring_service(self, report: DiagnosticReport) -> None:
        if not (self.monitoring_endpoint and self.monitoring_api_key):
            return

        payload = {
            "type": "diagnostic_report",
            "report": report.to_dict(),
            "timestamp": iso(self._clock()),
        }
        try:
            await self._post_report(payload)
            log.bind(reportId=report.report_id, endpoint=self.monitoring_endpoint).info(
                "Diagnostic report sent to monitoring service"
            )
        except Exception as e:
            log.bind(reportId=report.report_id).warning(
                f"Failed to send diagnostic report to monitoring service: {str(e)}"
            )

    async def _post_report(self, payload: Dict[str, Any]) -> None:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.monitoring_api_key}",
        }
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30)) as session:
            async with session.post(self.monitoring_endpoint, json=payload, headers=headers) as response:
                if response.status >= 300:
                    raise RuntimeError(f"Monitoring service responded with {response.status}")
