"""
Rendering error taxonomy

Every render failure reported to the monitoring service is described by a
RenderingError: a typed exception carrying severity, user facing text and
optional diagnostics about the browser and document involved.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from flipbook_monitoring.utils.helpers import iso, utc_now


class RenderingErrorType(str, Enum):
    # Network
    NETWORK_TIMEOUT = "network_timeout"
    NETWORK_FAILURE = "network_failure"
    NETWORK_UNAVAILABLE = "network_unavailable"

    # PDF parsing
    PDF_PARSING_FAILED = "pdf_parsing_failed"
    PDF_CORRUPTED = "pdf_corrupted"
    PDF_INVALID_FORMAT = "pdf_invalid_format"
    PDF_PASSWORD_PROTECTED = "pdf_password_protected"

    # PDF rendering
    PDF_RENDERING_FAILED = "pdf_rendering_failed"
    PDF_PAGE_RENDER_FAILED = "pdf_page_render_failed"
    PDF_CANVAS_ERROR = "pdf_canvas_error"

    # Browser compatibility
    BROWSER_COMPATIBILITY = "browser_compatibility"
    BROWSER_WEBGL_UNAVAILABLE = "browser_webgl_unavailable"
    BROWSER_CANVAS_UNAVAILABLE = "browser_canvas_unavailable"

    # Security
    SECURITY_CORS_ERROR = "security_cors_error"
    SECURITY_PERMISSION_DENIED = "security_permission_denied"
    SECURITY_CSP_VIOLATION = "security_csp_violation"

    # Memory
    MEMORY_EXHAUSTED = "memory_exhausted"
    MEMORY_ALLOCATION_FAILED = "memory_allocation_failed"

    UNKNOWN_ERROR = "unknown_error"
    INITIALIZATION_FAILED = "initialization_failed"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_SEVERITY = {
    RenderingErrorType.BROWSER_COMPATIBILITY: ErrorSeverity.CRITICAL,
    RenderingErrorType.BROWSER_CANVAS_UNAVAILABLE: ErrorSeverity.CRITICAL,
    RenderingErrorType.MEMORY_EXHAUSTED: ErrorSeverity.CRITICAL,
    RenderingErrorType.INITIALIZATION_FAILED: ErrorSeverity.CRITICAL,
    RenderingErrorType.PDF_PARSING_FAILED: ErrorSeverity.HIGH,
    RenderingErrorType.PDF_CORRUPTED: ErrorSeverity.HIGH,
    RenderingErrorType.PDF_INVALID_FORMAT: ErrorSeverity.HIGH,
    RenderingErrorType.PDF_PASSWORD_PROTECTED: ErrorSeverity.HIGH,
    RenderingErrorType.SECURITY_PERMISSION_DENIED: ErrorSeverity.HIGH,
    RenderingErrorType.SECURITY_CSP_VIOLATION: ErrorSeverity.HIGH,
    RenderingErrorType.BROWSER_WEBGL_UNAVAILABLE: ErrorSeverity.LOW,
    RenderingErrorType.MEMORY_ALLOCATION_FAILED: ErrorSeverity.LOW,
    RenderingErrorType.PDF_CANVAS_ERROR: ErrorSeverity.LOW,
}

_USER_MESSAGES = {
    RenderingErrorType.NETWORK_TIMEOUT: "The document is taking too long to load",
    RenderingErrorType.NETWORK_FAILURE: "Failed to load the document due to network issues",
    RenderingErrorType.NETWORK_UNAVAILABLE: "No internet connection available",
    RenderingErrorType.PDF_PARSING_FAILED: "Unable to read the PDF document",
    RenderingErrorType.PDF_CORRUPTED: "The PDF file appears to be corrupted",
    RenderingErrorType.PDF_INVALID_FORMAT: "The file is not a valid PDF document",
    RenderingErrorType.PDF_PASSWORD_PROTECTED: "This PDF is password protected",
    RenderingErrorType.PDF_RENDERING_FAILED: "Failed to display the PDF document",
    RenderingErrorType.PDF_PAGE_RENDER_FAILED: "Some pages could not be displayed",
    RenderingErrorType.PDF_CANVAS_ERROR: "Display error occurred while rendering",
    RenderingErrorType.BROWSER_COMPATIBILITY: "Your browser is not compatible with the PDF viewer",
    RenderingErrorType.BROWSER_WEBGL_UNAVAILABLE: "Advanced graphics features are not available",
    RenderingErrorType.BROWSER_CANVAS_UNAVAILABLE: "Canvas support is required but not available",
    RenderingErrorType.SECURITY_CORS_ERROR: "Security restrictions prevent loading this document",
    RenderingErrorType.SECURITY_PERMISSION_DENIED: "You do not have permission to view this document",
    RenderingErrorType.SECURITY_CSP_VIOLATION: "Security policy prevents loading this document",
    RenderingErrorType.MEMORY_EXHAUSTED: "Not enough memory to display this document",
    RenderingErrorType.MEMORY_ALLOCATION_FAILED: "Memory allocation failed during rendering",
    RenderingErrorType.INITIALIZATION_FAILED: "Failed to initialize the document viewer",
}

_SUGGESTIONS = {
    RenderingErrorType.NETWORK_TIMEOUT: "Check your internet connection and try again. Large files may take longer to load.",
    RenderingErrorType.NETWORK_FAILURE: "Check your internet connection and try refreshing the page.",
    RenderingErrorType.NETWORK_UNAVAILABLE: "Please connect to the internet and try again.",
    RenderingErrorType.PDF_PARSING_FAILED: "Try re-uploading the PDF file or contact support if the issue persists.",
    RenderingErrorType.PDF_CORRUPTED: "The PDF file may be damaged. Try re-uploading or using a different file.",
    RenderingErrorType.PDF_INVALID_FORMAT: "Please ensure you are uploading a valid PDF file.",
    RenderingErrorType.PDF_PASSWORD_PROTECTED: "Password-protected PDFs are not currently supported. Please remove the password and try again.",
    RenderingErrorType.PDF_RENDERING_FAILED: "Try refreshing the page or using a different browser.",
    RenderingErrorType.PDF_PAGE_RENDER_FAILED: "Some pages may still be viewable. Try scrolling or refreshing the page.",
    RenderingErrorType.PDF_CANVAS_ERROR: "Try refreshing the page or clearing your browser cache.",
    RenderingErrorType.BROWSER_COMPATIBILITY: "Please update your browser or try using Chrome, Firefox, or Safari.",
    RenderingErrorType.BROWSER_WEBGL_UNAVAILABLE: "Some features may be limited. Consider updating your browser or graphics drivers.",
    RenderingErrorType.BROWSER_CANVAS_UNAVAILABLE: "Please update your browser to view PDF documents.",
    RenderingErrorType.SECURITY_CORS_ERROR: "Contact the document owner or administrator for access.",
    RenderingErrorType.SECURITY_PERMISSION_DENIED: "Contact the document owner to request viewing permissions.",
    RenderingErrorType.SECURITY_CSP_VIOLATION: "Contact your system administrator for assistance.",
    RenderingErrorType.MEMORY_EXHAUSTED: "Try closing other browser tabs or applications to free up memory.",
    RenderingErrorType.MEMORY_ALLOCATION_FAILED: "Try refreshing the page or restarting your browser.",
}

# Types that can neither be recovered from nor retried
_FATAL_TYPES = {
    RenderingErrorType.PDF_CORRUPTED,
    RenderingErrorType.PDF_INVALID_FORMAT,
    RenderingErrorType.PDF_PASSWORD_PROTECTED,
    RenderingErrorType.BROWSER_COMPATIBILITY,
    RenderingErrorType.BROWSER_CANVAS_UNAVAILABLE,
    RenderingErrorType.SECURITY_PERMISSION_DENIED,
    RenderingErrorType.SECURITY_CSP_VIOLATION,
    RenderingErrorType.MEMORY_EXHAUSTED,
}

DEFAULT_SUGGESTION = "Try refreshing the page. If the problem persists, contact support."


def get_error_severity(error_type: RenderingErrorType) -> ErrorSeverity:
    return _SEVERITY.get(error_type, ErrorSeverity.MEDIUM)


def get_user_message(error_type: RenderingErrorType) -> str:
    return _USER_MESSAGES.get(error_type, "An unexpected error occurred")


def get_error_suggestion(error_type: RenderingErrorType) -> str:
    return _SUGGESTIONS.get(error_type, DEFAULT_SUGGESTION)


def get_technical_message(error_type: RenderingErrorType, original_error: Optional[BaseException] = None) -> str:
    base = f"Rendering error: {error_type.value}"
    if original_error is not None:
        return f"{base} - {original_error}"
    return base


def is_recoverable(error_type: RenderingErrorType) -> bool:
    return error_type not in _FATAL_TYPES


def is_retryable(error_type: RenderingErrorType) -> bool:
    return error_type not in _FATAL_TYPES


@dataclass
class RenderingDiagnostics:
    """Context about the document and browser at the time of a failure"""
    document_id: str
    pdf_url: str
    error_type: RenderingErrorType
    timestamp: datetime = field(default_factory=utc_now)
    browser_info: Dict[str, Any] = field(default_factory=dict)
    document_info: Optional[Dict[str, Any]] = None
    performance_metrics: Optional[Dict[str, Any]] = None
    network_context: Optional[Dict[str, Any]] = None
    additional_context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "documentId": self.document_id,
            "pdfUrl": self.pdf_url,
            "errorType": self.error_type.value,
            "timestamp": iso(self.timestamp),
            "browserInfo": self.browser_info,
        }
        if self.document_info is not None:
            data["documentInfo"] = self.document_info
        if self.performance_metrics is not None:
            data["performanceMetrics"] = self.performance_metrics
        if self.network_context is not None:
            data["networkContext"] = self.network_context
        if self.additional_context is not None:
            data["additionalContext"] = self.additional_context
        return data


class RenderingError(Exception):
    """A classified document rendering failure"""

    def __init__(
        self,
        type: RenderingErrorType,
        message: str,
        severity: ErrorSeverity,
        user_message: str,
        technical_message: str,
        suggestion: str,
        recoverable: bool,
        retryable: bool,
        diagnostics: Optional[RenderingDiagnostics] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.type = type
        self.message = message
        self.severity = severity
        self.user_message = user_message
        self.technical_message = technical_message
        self.suggestion = suggestion
        self.recoverable = recoverable
        self.retryable = retryable
        self.diagnostics = diagnostics
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": "RenderingError",
            "type": self.type.value,
            "message": self.message,
            "severity": self.severity.value,
            "userMessage": self.user_message,
            "technicalMessage": self.technical_message,
            "suggestion": self.suggestion,
            "recoverable": self.recoverable,
            "retryable": self.retryable,
        }
        if self.diagnostics is not None:
            data["diagnostics"] = self.diagnostics.to_dict()
        if self.original_error is not None:
            data["originalError"] = str(self.original_error)
        return data


def create_rendering_error(
    error_type: RenderingErrorType,
    message: Optional[str] = None,
    original_error: Optional[BaseException] = None,
    diagnostics: Optional[RenderingDiagnostics] = None,
) -> RenderingError:
    """Build a RenderingError with severity, messages and retry policy derived from its type"""
    user_message = get_user_message(error_type)
    return RenderingError(
        type=error_type,
        message=message or user_message,
        severity=get_error_severity(error_type),
        user_message=user_message,
        technical_message=get_technical_message(error_type, original_error),
        suggestion=get_error_suggestion(error_type),
        recoverable=is_recoverable(error_type),
        retryable=is_retryable(error_type),
        diagnostics=diagnostics,
        original_error=original_error,
    )


def parse_rendering_error(error: BaseException) -> RenderingError:
    """
    Classify an arbitrary exception by its message.

    More specific patterns are checked first (timeouts, CORS, permissions,
    memory) before the generic network and rendering buckets.
    """
    if isinstance(error, RenderingError):
        return error

    message = str(error)
    text = message.lower()
    name = type(error).__name__.lower()

    if "timeout" in text or isinstance(error, TimeoutError):
        error_type = RenderingErrorType.NETWORK_TIMEOUT
    elif "cors" in name or "cors" in text:
        error_type = RenderingErrorType.SECURITY_CORS_ERROR
    elif "permission" in text or "denied" in text:
        error_type = RenderingErrorType.SECURITY_PERMISSION_DENIED
    elif "memory" in text or isinstance(error, MemoryError):
        if "exhausted" in text or "out of memory" in text or isinstance(error, MemoryError):
            error_type = RenderingErrorType.MEMORY_EXHAUSTED
        else:
            error_type = RenderingErrorType.MEMORY_ALLOCATION_FAILED
    elif "worker" in text:
        error_type = RenderingErrorType.INITIALIZATION_FAILED
    elif "corrupt" in text or "damaged" in text:
        error_type = RenderingErrorType.PDF_CORRUPTED
    elif (
        ("invalid" in text and "pdf" in text)
        or ("not" in text and "pdf" in text)
        or "format not recognized" in text
        or "unsupported file format" in text
    ):
        error_type = RenderingErrorType.PDF_INVALID_FORMAT
    elif "network" in name or "network" in text or isinstance(error, ConnectionError):
        error_type = RenderingErrorType.NETWORK_FAILURE
    elif "password" in text or "encrypt" in text:
        error_type = RenderingErrorType.PDF_PASSWORD_PROTECTED
    elif "canvas" in text:
        error_type = RenderingErrorType.PDF_CANVAS_ERROR
    elif "render" in text:
        error_type = RenderingErrorType.PDF_RENDERING_FAILED
    else:
        error_type = RenderingErrorType.UNKNOWN_ERROR

    return create_rendering_error(error_type, message or None, original_error=error)


def create_diagnostics(
    document_id: str,
    pdf_url: str,
    error_type: RenderingErrorType,
    browser_info: Optional[Dict[str, Any]] = None,
    additional_context: Optional[Dict[str, Any]] = None,
) -> RenderingDiagnostics:
    return RenderingDiagnostics(
        document_id=document_id,
        pdf_url=pdf_url,
        error_type=error_type,
        browser_info=dict(browser_info or {}),
        additional_context=additional_context,
    )
