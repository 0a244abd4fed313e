from __future__ import annotations

import threading
import time
from collections.abc import Iterator

import pytest

from sysmaint.probe.patterns import default_derived_facts
from sysmaint.probe.prober import STILL_RUNNING, UNKNOWN_FACT, DerivedFact, FactProber


@pytest.fixture
def release() -> Iterator[threading.Event]:
    event = threading.Event()
    yield event
    # Unblock abandoned workers so they exit with the test.
    event.set()


def _sleeper(value: object, delay: float):
    def query() -> object:
        time.sleep(delay)
        return value

    return query


def test_probe_runs_queries_concurrently() -> None:
    sources = {f"fact_{index}": _sleeper(f"v{index}", 0.3) for index in range(12)}
    prober = FactProber(sources, max_workers=12)

    started = time.monotonic()
    snapshot = prober.probe(sources, individual_timeout=2.0)
    elapsed = time.monotonic() - started

    assert len(snapshot) == 12
    assert snapshot.value("fact_7") == "v7"
    assert elapsed < 1.5


def test_hanging_query_is_recorded_as_timeout(release: threading.Event) -> None:
    prober = FactProber({"gpu_list": lambda: release.wait(), "is_admin": lambda: True})

    started = time.monotonic()
    snapshot = prober.probe({"gpu_list", "is_admin"}, individual_timeout=0.2)
    elapsed = time.monotonic() - started

    assert snapshot["gpu_list"].error == "timeout"
    assert snapshot["gpu_list"].value is None
    assert snapshot.value("is_admin") is True
    assert elapsed < 0.2 + 0.5


def test_probe_duration_does_not_grow_with_fact_count(release: threading.Event) -> None:
    sources = {f"stuck_{index}": (lambda: release.wait()) for index in range(25)}
    prober = FactProber(sources, max_workers=25)

    started = time.monotonic()
    snapshot = prober.probe(sources, individual_timeout=0.3)
    elapsed = time.monotonic() - started

    assert all(fact.error == "timeout" for fact in snapshot.values())
    assert elapsed < 0.3 + 0.5


def test_raising_query_does_not_affect_siblings() -> None:
    def broken() -> str:
        raise OSError("WMI provider unavailable")

    prober = FactProber({"cpu_name": broken, "os_build": lambda: "22631"})

    snapshot = prober.probe({"cpu_name", "os_build"}, individual_timeout=1.0)

    assert snapshot["cpu_name"].value is None
    assert snapshot["cpu_name"].error == "OSError: WMI provider unavailable"
    assert snapshot.value("os_build") == "22631"


def test_values_are_normalized_and_bad_types_fail() -> None:
    prober = FactProber(
        {
            "gpu_list": lambda: ["NVIDIA RTX 4070", "Intel UHD"],
            "total_memory_gb": lambda: 31.7,
            "secure_boot": lambda: None,
        }
    )

    snapshot = prober.probe({"gpu_list", "total_memory_gb", "secure_boot"}, individual_timeout=1.0)

    assert snapshot.value("gpu_list") == ("NVIDIA RTX 4070", "Intel UHD")
    assert "unsupported value type float" in (snapshot["total_memory_gb"].error or "")
    assert snapshot["secure_boot"].ok
    assert snapshot["secure_boot"].value is None


def test_unknown_fact_is_recorded_not_raised() -> None:
    prober = FactProber({"is_admin": lambda: True})

    snapshot = prober.probe({"is_admin", "tpm_version"}, individual_timeout=1.0)

    assert snapshot["tpm_version"].error == UNKNOWN_FACT
    assert snapshot.value("is_admin") is True


def test_derived_fact_pulls_in_its_inputs(fact_sources) -> None:
    prober = FactProber(fact_sources(), default_derived_facts())

    snapshot = prober.probe({"is_virtual_machine", "gpu_vendors"}, individual_timeout=1.0)

    assert snapshot.value("is_virtual_machine") is False
    assert snapshot.value("gpu_vendors") == ("nvidia", "intel")
    assert snapshot.value("system_manufacturer") == "Dell Inc."
    assert "gpu_list" in snapshot


def test_derived_fact_is_absent_when_an_input_failed(fact_sources) -> None:
    sources = fact_sources()

    def broken() -> str:
        raise RuntimeError("CIM query failed")

    sources["system_model"] = broken
    prober = FactProber(sources, default_derived_facts())

    snapshot = prober.probe({"is_virtual_machine"}, individual_timeout=1.0)

    fact = snapshot["is_virtual_machine"]
    assert fact.value is None
    assert fact.error is not None and "system_model" in fact.error


def test_derived_fact_is_absent_when_an_input_is_absent() -> None:
    derived = DerivedFact("boot_mode", ("secure_boot",), lambda inputs: "secure" if inputs["secure_boot"] else "open")
    prober = FactProber({"secure_boot": lambda: None}, [derived])

    snapshot = prober.probe({"boot_mode"}, individual_timeout=1.0)

    assert snapshot["boot_mode"].value is None
    assert snapshot["boot_mode"].error == "input 'secure_boot' is absent"


def test_probe_rejects_non_positive_timeout() -> None:
    prober = FactProber({"is_admin": lambda: True})

    with pytest.raises(ValueError):
        prober.probe({"is_admin"}, individual_timeout=0)


def test_capped_pool_still_returns_within_one_timeout(release: threading.Event) -> None:
    sources = {f"stuck_{index:02d}": (lambda: release.wait()) for index in range(20)}
    prober = FactProber(sources)

    started = time.monotonic()
    snapshot = prober.probe(sources, individual_timeout=0.2)
    elapsed = time.monotonic() - started

    assert len(snapshot) == 20
    assert all(fact.error == "timeout" for fact in snapshot.values())
    assert elapsed < 0.2 + 0.2


def test_capped_pool_starts_queued_queries_in_order() -> None:
    order: list[str] = []
    lock = threading.Lock()

    def tracked(key: str):
        def query() -> str:
            with lock:
                order.append(key)
            time.sleep(0.05)
            return key

        return query

    sources = {key: tracked(key) for key in ("a_fact", "b_fact", "c_fact")}
    prober = FactProber(sources, max_workers=1)

    snapshot = prober.probe(sources, individual_timeout=1.0)

    assert order == ["a_fact", "b_fact", "c_fact"]
    assert all(fact.ok for fact in snapshot.values())


def test_hung_query_is_not_relaunched_while_still_running(release: threading.Event) -> None:
    launches: list[str] = []

    def hung() -> bool:
        launches.append("gpu_list")
        release.wait()
        return True

    prober = FactProber({"gpu_list": hung, "is_admin": lambda: True})

    first = prober.probe({"gpu_list", "is_admin"}, individual_timeout=0.1)
    second = prober.probe({"gpu_list", "is_admin"}, individual_timeout=0.1)

    assert first["gpu_list"].error == "timeout"
    assert second["gpu_list"].error == STILL_RUNNING
    assert second.value("is_admin") is True
    assert launches == ["gpu_list"]


def test_finished_worker_frees_its_key_for_the_next_call() -> None:
    gate = threading.Event()
    launches: list[int] = []

    def slow() -> str:
        launches.append(1)
        gate.wait(1.0)
        return "22631"

    prober = FactProber({"os_build": slow})

    assert prober.probe({"os_build"}, individual_timeout=0.05)["os_build"].error == "timeout"
    gate.set()
    time.sleep(0.1)
    snapshot = prober.probe({"os_build"}, individual_timeout=1.0)

    assert snapshot.value("os_build") == "22631"
    assert len(launches) == 2
