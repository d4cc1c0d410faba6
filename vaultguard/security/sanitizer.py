"""Input normalization and threat classification for request payloads and uploads."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional

from vaultguard.audit.logger import AuditLogger
from vaultguard.audit.models import Severity
from vaultguard.domain.models.request import InboundRequest, UploadedFile
from vaultguard.security.exceptions import MaliciousInputDetected, OversizedOrInvalidUpload

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
# Whole-body cap: one maximal upload plus multipart framing and form fields
MAX_REQUEST_BYTES = MAX_UPLOAD_BYTES + 1024 * 1024
ALLOWED_EXTENSIONS = frozenset({"json", "txt", "csv"})
ALLOWED_MIME_TYPES = frozenset({"application/json", "text/plain", "text/csv", "application/csv"})
AUDIT_INPUT_PREVIEW = 500

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


@dataclass(frozen=True)
class ThreatSignature:
    category: str
    name: str
    pattern: re.Pattern


def _sig(category: str, name: str, pattern: str, flags: int = re.IGNORECASE) -> ThreatSignature:
    return ThreatSignature(category, name, re.compile(pattern, flags))


# Evaluated in order; the first match wins.
THREAT_SIGNATURES: tuple[ThreatSignature, ...] = (
    # XSS
    _sig("xss", "script_block", r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>"),
    _sig("xss", "script_tag", r"<script\b"),
    _sig("xss", "javascript_uri", r"javascript:"),
    _sig("xss", "event_handler", r"\bon[a-z]+\s*="),
    _sig("xss", "iframe", r"<iframe\b[^>]*>"),
    _sig("xss", "object", r"<object\b[^>]*>"),
    _sig("xss", "embed", r"<embed\b[^>]*>"),
    # SQL injection
    _sig("sql_injection", "union_select", r"\bunion\s+(?:all\s+)?select\b"),
    _sig("sql_injection", "select_from", r"\bselect\s+.*\s+from\b"),
    _sig("sql_injection", "dml_ddl", r"\binsert\s+into\b|\bdelete\s+from\b|\bdrop\s+table\b"),
    _sig("sql_injection", "exec_call", r"\bexec(?:ute)?\s*\("),
    _sig("sql_injection", "tautology", r"'\s*or\s+'?\d+'?\s*=\s*'?\d+|'\s*;\s*--"),
    # Command injection
    _sig("command_injection", "function_call", r"\b(?:eval|system|shell_exec|passthru|popen|proc_open)\s*\("),
    _sig("command_injection", "chained_command",
         r"(?:;|&&|\|\|?)\s*(?:cat|ls|rm|wget|curl|nc|bash|sh|chmod|id|whoami|uname|ping)\b"),
    _sig("command_injection", "backticks", r"`[^`]+`"),
    _sig("command_injection", "subshell", r"\$\([^)]*\)"),
    # Path traversal
    _sig("path_traversal", "dot_dot", r"\.\.[/\\]"),
    _sig("path_traversal", "encoded_dot_dot", r"%2e%2e(?:%2f|%5c|/|\\)"),
    _sig("path_traversal", "system_dirs", r"/(?:etc|proc|sys|dev)/"),
    # LDAP injection
    _sig("ldap_injection", "filter_break", r"\*\)\s*\(|\)\s*\(\s*[|&!]|\(\s*[|&]\s*\("),
    # XXE
    _sig("xxe", "entity", r"<!ENTITY\b"),
    _sig("xxe", "doctype_system", r"<!DOCTYPE[^>]*\bSYSTEM\b"),
    _sig("xxe", "system_literal", r"\bSYSTEM\s+[\"']"),
    # Template injection
    _sig("template_injection", "mustache", r"\{\{.*\}\}"),
    _sig("template_injection", "dollar_brace", r"\$\{.*\}"),
    _sig("template_injection", "jinja_block", r"\{%.*%\}"),
    # NoSQL injection
    _sig("nosql_injection", "operator", r"\$(?:where|ne|gt|gte|lt|lte|regex|nin)\b"),
)

# Checked against uploaded file content.
MALICIOUS_CONTENT_PATTERNS: tuple[re.Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"<script\b",
        r"javascript:",
        r"<iframe\b",
        r"eval\s*\(",
        r"exec\s*\(",
        r"system\s*\(",
        r"shell_exec\s*\(",
        r"passthru\s*\(",
        r"file_get_contents\s*\(",
        r"file_put_contents\s*\(",
        r"fopen\s*\(",
        r"curl_exec\s*\(",
        r"__import__\s*\(",
        r"<\?php",
    )
)


def sanitize_string(value: str) -> str:
    value = value.replace("\0", "")
    value = value.replace("\r\n", "\n").replace("\r", "\n")
    value = _CONTROL_CHARS.sub("", value)
    return value.strip()


def sanitize(payload: Any) -> Any:
    """
    Recursive, lossy normalization: strings lose NUL/control characters, line endings
    become LF, surrounding whitespace is trimmed. Keys and nesting are preserved and
    non-string leaves pass through. Idempotent.
    """
    if isinstance(payload, str):
        return sanitize_string(payload)
    if isinstance(payload, dict):
        return {key: sanitize(value) for key, value in payload.items()}
    if isinstance(payload, list):
        return [sanitize(value) for value in payload]
    if isinstance(payload, tuple):
        return tuple(sanitize(value) for value in payload)
    return payload


def match_threat(*subjects: Optional[str]) -> Optional[ThreatSignature]:
    """First signature (in order) that matches any subject, or None."""
    for signature in THREAT_SIGNATURES:
        for subject in subjects:
            if subject and signature.pattern.search(subject):
                return signature
    return None


def contains_malicious_content(content: bytes | str) -> bool:
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return any(p.search(content) for p in MALICIOUS_CONTENT_PATTERNS)


class InputSanitizer:
    """
    Sanitizes payloads, then scans them for threats. Detections are audited at
    critical severity and the source IP is penalized before the request is rejected.
    """

    def __init__(
        self,
        audit: AuditLogger,
        add_penalty: Callable[[str], Awaitable[Any]],
    ) -> None:
        self._audit = audit
        self._add_penalty = add_penalty

    async def inspect(self, request: InboundRequest) -> None:
        """Sanitize in place, then threat-scan, then validate uploads."""
        self.sanitize_request(request)
        await self.scan_request(request)

    @staticmethod
    def sanitize_request(request: InboundRequest) -> None:
        request.params = sanitize(request.params)

    async def scan_request(self, request: InboundRequest) -> None:
        await self.check_body_size(request)
        await self.scan_for_threats(
            json.dumps(request.params, default=str, ensure_ascii=False),
            request.url,
            request.user_agent,
            request=request,
        )
        await self.validate_uploads(request.files, request=request)

    async def scan_for_threats(
        self,
        serialized_input: str,
        url: str,
        user_agent: Optional[str],
        *,
        request: Optional[InboundRequest] = None,
    ) -> None:
        signature = match_threat(serialized_input, url, user_agent)
        if signature is None:
            return
        await self._reject(
            request,
            signature.name,
            {
                "input": serialized_input[:AUDIT_INPUT_PREVIEW],
                "url": url,
                "user_agent": user_agent,
                "category": signature.category,
                "pattern": signature.pattern.pattern,
            },
        )
        raise MaliciousInputDetected("Malicious input detected")

    async def check_body_size(self, request: InboundRequest) -> None:
        """413 for bodies the transport refused to buffer past MAX_REQUEST_BYTES."""
        if not request.oversized_body:
            return
        await self._reject(
            request,
            "oversized_request",
            {"content_length": request.header("content-length"), "limit": MAX_REQUEST_BYTES},
        )
        raise OversizedOrInvalidUpload("Request body too large", status_code=413)

    async def validate_uploads(
        self, files: Iterable[UploadedFile], *, request: Optional[InboundRequest] = None
    ) -> None:
        for upload in files:
            if upload.size > MAX_UPLOAD_BYTES:
                await self._reject(
                    request, "oversized_file", {"file_size": upload.size, "file_name": upload.name}
                )
                raise OversizedOrInvalidUpload("File too large", status_code=413)

            if upload.extension not in ALLOWED_EXTENSIONS:
                await self._reject(
                    request,
                    "invalid_file_extension",
                    {"file_extension": upload.extension, "file_name": upload.name},
                )
                raise OversizedOrInvalidUpload("Invalid file type", status_code=400)

            if upload.mime_type.split(";")[0].strip().lower() not in ALLOWED_MIME_TYPES:
                await self._reject(
                    request,
                    "invalid_mime_type",
                    {"mime_type": upload.mime_type, "file_name": upload.name},
                )
                raise OversizedOrInvalidUpload("Invalid file format", status_code=400)

            if contains_malicious_content(upload.content):
                await self._reject(request, "malicious_file_content", {"file_name": upload.name})
                raise OversizedOrInvalidUpload("Malicious file content detected", status_code=400)

    async def _reject(
        self, request: Optional[InboundRequest], detection: str, context: dict[str, Any]
    ) -> None:
        ip = request.client_ip if request else None
        origin = {}
        if request is not None:
            origin = {"ip_address": ip, "endpoint": request.path, "method": request.method}
        await self._audit.record(
            "malicious_input_detected",
            new_values={**context, "detection_type": detection, **origin},
            severity=Severity.CRITICAL,
            description=f"Malicious input detected: {detection} from IP {ip}",
            ip=ip,
        )
        if ip:
            await self._add_penalty(ip)
