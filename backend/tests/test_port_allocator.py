import socket
import threading
from uuid import uuid4

import pytest

from app.services.port_allocator import PortAllocator
from app.utils.exceptions import ResourceConflict, ResourceExhausted


def test_acquire_hands_out_distinct_ports_in_range():
    allocator = PortAllocator(range_start=5000, range_end=5002, probe=False)

    ports = [allocator.acquire(f"site-{i}") for i in range(3)]

    assert sorted(ports) == [5000, 5001, 5002]
    assert allocator.available() == 0
    assert allocator.lease_for("site-1") == ports[1]


def test_exhausted_pool_raises():
    allocator = PortAllocator(range_start=5000, range_end=5000, probe=False)
    allocator.acquire("a")

    with pytest.raises(ResourceExhausted):
        allocator.acquire("b")


def test_second_lease_for_same_website_is_a_conflict():
    allocator = PortAllocator(range_start=5000, range_end=5005, probe=False)
    allocator.acquire("a")

    with pytest.raises(ResourceConflict):
        allocator.acquire("a")


def test_release_is_idempotent_and_frees_the_port():
    allocator = PortAllocator(range_start=5000, range_end=5000, probe=False)
    port = allocator.acquire("a")

    assert allocator.release("a") == port
    assert allocator.release("a") is None
    assert allocator.lease_for("a") is None
    assert allocator.acquire("b") == port


def test_released_port_is_not_handed_out_immediately_again():
    allocator = PortAllocator(range_start=5000, range_end=5002, probe=False)
    first = allocator.acquire("a")
    allocator.release("a")

    assert allocator.acquire("b") != first


def test_probe_skips_ports_bound_by_other_processes():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
        holder.bind(("127.0.0.1", 0))
        holder.listen(1)
        busy_port = holder.getsockname()[1]

        allocator = PortAllocator(range_start=busy_port, range_end=busy_port, host="127.0.0.1", probe=True)
        with pytest.raises(ResourceExhausted):
            allocator.acquire("a")


def test_concurrent_acquires_never_share_a_port():
    allocator = PortAllocator(range_start=6000, range_end=6049, probe=False)
    results: list[int] = []
    errors: list[Exception] = []
    lock = threading.Lock()

    def _worker():
        try:
            port = allocator.acquire(str(uuid4()))
        except ResourceExhausted as e:
            with lock:
                errors.append(e)
            return
        with lock:
            results.append(port)

    threads = [threading.Thread(target=_worker) for _ in range(80)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 50
    assert len(set(results)) == 50
    assert len(errors) == 30
    assert [lease.port for lease in allocator.leases()] == sorted(results)


def test_invalid_range_is_rejected():
    with pytest.raises(ValueError):
        PortAllocator(range_start=5001, range_end=5000, probe=False)
