"""Port allocation for supervised dev-server processes."""
import socket
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from app.config import settings
from app.utils.exceptions import ResourceConflict, ResourceExhausted
from app.utils.logger import logger


def _port_is_bindable(host: str, port: int) -> bool:
    """Return True if nothing on this host currently holds the port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


@dataclass(frozen=True)
class PortLease:
    """Exclusive binding of a port to a website while its process runs."""
    port: int
    website_id: str
    leased_at: datetime


class PortAllocator:
    """Hands out ports from an inclusive range, one lease per website.

    The lease table is the single source of truth for which website holds
    which port; every read and write goes through one mutex.
    """

    def __init__(
        self,
        range_start: Optional[int] = None,
        range_end: Optional[int] = None,
        host: Optional[str] = None,
        probe: Optional[bool] = None,
    ):
        self.range_start = settings.port_range_start if range_start is None else range_start
        self.range_end = settings.port_range_end if range_end is None else range_end
        if self.range_end < self.range_start:
            raise ValueError(f"Invalid port range {self.range_start}-{self.range_end}")
        self.host = host or settings.preview_host
        self.probe = settings.port_probe_enabled if probe is None else probe

        self._leases: Dict[str, PortLease] = {}
        self._ports: Dict[int, str] = {}
        self._cursor = self.range_start
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self.range_end - self.range_start + 1

    def acquire(self, website_id: str) -> int:
        """
        Lease a free port to a website.

        Scans round-robin from just after the last port handed out, so a port
        released a moment ago is the last one to be picked again.

        Raises:
            ResourceConflict: If the website already holds a lease
            ResourceExhausted: If every port in the range is leased or bound
        """
        website_id = str(website_id)
        with self._lock:
            if website_id in self._leases:
                raise ResourceConflict(
                    f"Website {website_id} already holds port {self._leases[website_id].port}"
                )

            for offset in range(self.capacity):
                port = self.range_start + (self._cursor - self.range_start + offset) % self.capacity
                if port in self._ports:
                    continue
                if self.probe and not _port_is_bindable(self.host, port):
                    logger.debug(f"[PORTS] Skipping port {port}: bound outside the orchestrator")
                    continue

                lease = PortLease(port=port, website_id=website_id, leased_at=datetime.now(timezone.utc))
                self._leases[website_id] = lease
                self._ports[port] = website_id
                self._cursor = port + 1 if port < self.range_end else self.range_start
                logger.info(f"[PORTS] Leased port {port} to website {website_id}")
                return port

        raise ResourceExhausted(
            f"No preview ports available in {self.range_start}-{self.range_end}"
        )

    def release(self, website_id: str) -> Optional[int]:
        """Free the website's port. Releasing an unleased id is a no-op."""
        website_id = str(website_id)
        with self._lock:
            lease = self._leases.pop(website_id, None)
            if lease is None:
                return None
            self._ports.pop(lease.port, None)
        logger.info(f"[PORTS] Released port {lease.port} from website {website_id}")
        return lease.port

    def lease_for(self, website_id: str) -> Optional[int]:
        """Return the port currently leased to the website, or None."""
        with self._lock:
            lease = self._leases.get(str(website_id))
            return lease.port if lease else None

    def leases(self) -> List[PortLease]:
        """Snapshot of every active lease, ordered by port."""
        with self._lock:
            return sorted(self._leases.values(), key=lambda lease: lease.port)

    def available(self) -> int:
        with self._lock:
            return self.capacity - len(self._leases)
