"""Preview resolution: where a website's current build can be reached."""
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from app.config import settings
from app.constants import BuildStatus
from app.models.website import Website
from app.services.project_analysis import find_index_file


@dataclass
class PreviewTarget:
    """Resolved preview location for one website."""
    kind: str  # proxy | static | unavailable
    status: str
    address: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    reason: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.kind != "unavailable"


class PreviewResolver:
    """Maps build state to a proxy target or a direct content reference.

    Resolution only; serving and TLS belong to the upstream gateway.
    """

    def __init__(self, host: Optional[str] = None, public_base_url: Optional[str] = None):
        self.host = host or settings.preview_host
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")

    def static_content_url(self, website_id: str, file_name: str) -> str:
        return f"{self.public_base_url}/api/websites/{website_id}/preview/content/{quote(file_name)}"

    def proxy_address(self, port: int) -> str:
        return f"http://{self.host}:{port}"

    def resolve(
        self,
        website: Website,
        port: Optional[int] = None,
        index_file: Optional[str] = None,
    ) -> PreviewTarget:
        """
        Resolve a website's preview.

        Args:
            website: The website record (build_status drives the answer)
            port: The port currently leased to the website, if any
            index_file: Entry file for static sites; detected from the files when omitted

        Returns:
            PreviewTarget of kind proxy, static or unavailable
        """
        status = website.build_status
        if status != BuildStatus.RUNNING:
            return PreviewTarget(kind="unavailable", status=status, reason=f"Website is {status}")

        if not website.is_process_backed:
            entry = index_file or find_index_file([f.name for f in website.files])
            if not entry:
                return PreviewTarget(kind="unavailable", status=status, reason="No HTML entry file")
            return PreviewTarget(
                kind="static",
                status=status,
                address=self.static_content_url(str(website.id), entry),
            )

        if port is None:
            return PreviewTarget(kind="unavailable", status=status, reason="No port leased")
        return PreviewTarget(
            kind="proxy",
            status=status,
            address=self.proxy_address(port),
            host=self.host,
            port=port,
        )
