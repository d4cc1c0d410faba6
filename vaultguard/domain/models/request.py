"""Transport-neutral view of an inbound request, as seen by the security pipeline."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class UploadedFile:
    """An uploaded file as declared by the client, plus its content."""

    name: str
    size: int
    mime_type: str
    content: bytes = b""

    @property
    def extension(self) -> str:
        _, dot, ext = self.name.rpartition(".")
        return ext.lower() if dot else ""


@dataclass
class InboundRequest:
    """
    One request entering the pipeline. params is replaced by its sanitized form
    during processing; everything else is read-only by convention.
    user_id/session_id are set by upstream authentication, None when anonymous.
    """

    method: str
    path: str
    client_ip: str
    url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    files: List[UploadedFile] = field(default_factory=list)
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    # Body exceeded the read cap and was not buffered; params/files hold only the query string.
    oversized_body: bool = False

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}
        if not self.url:
            self.url = self.path

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    @property
    def user_agent(self) -> str:
        return self.header("user-agent") or ""

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id and self.session_id)
