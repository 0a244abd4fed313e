from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from sysmaint.core.types import Fact, FactValue, Snapshot

_FIREWALL_DEFAULT = {"domain": True, "private": True, "public": True}
_DHCP_DNS = ["192.168.1.1"]


class FakeSystem:
    """In-memory stand-in for the Windows mutation source.

    Every mutating call is appended to ``calls``; reads go to ``reads``.
    """

    def __init__(self) -> None:
        self.registry: dict[tuple[str, str], object] = {}
        self.services: dict[str, str] = {
            "DiagTrack": "automatic",
            "dmwappushservice": "manual",
            "SysMain": "automatic",
        }
        self.running: set[str] = {"DiagTrack", "SysMain"}
        self.firewall: dict[str, bool] = dict(_FIREWALL_DEFAULT)
        self.dns: list[str] = list(_DHCP_DNS)
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.reads: list[tuple[str, dict[str, Any]]] = []
        self.failing: set[str] = set()

    def state(self) -> dict[str, Any]:
        return {
            "registry": dict(self.registry),
            "services": dict(self.services),
            "running": set(self.running),
            "firewall": dict(self.firewall),
            "dns": list(self.dns),
        }

    def _record(self, operation: str, **kwargs: Any) -> None:
        if operation in self.failing:
            raise RuntimeError(f"{operation} rejected by fake")
        self.calls.append((operation, kwargs))

    def set_registry_value(self, path: str, name: str, value: object, kind: str = "REG_DWORD") -> str:
        self._record("set_registry_value", path=path, name=name, value=value, kind=kind)
        self.registry[(path, name)] = value
        return f"{name}={value}"

    def get_registry_value(self, path: str, name: str) -> object:
        self.reads.append(("get_registry_value", {"path": path, "name": name}))
        return self.registry.get((path, name))

    def delete_registry_value(self, path: str, name: str) -> str:
        self._record("delete_registry_value", path=path, name=name)
        self.registry.pop((path, name), None)
        return f"{name} deleted"

    def set_service_startup(self, name: str, startup: str) -> str:
        self._record("set_service_startup", name=name, startup=startup)
        self.services[name] = startup
        return f"{name} startup={startup}"

    def get_service_startup(self, name: str) -> str:
        self.reads.append(("get_service_startup", {"name": name}))
        return self.services[name]

    def stop_service(self, name: str) -> str:
        self._record("stop_service", name=name)
        self.running.discard(name)
        return f"{name} stopped"

    def start_service(self, name: str) -> str:
        self._record("start_service", name=name)
        self.running.add(name)
        return f"{name} started"

    def set_firewall_profile(self, profile: str, enabled: bool) -> str:
        self._record("set_firewall_profile", profile=profile, enabled=enabled)
        self.firewall[profile] = enabled
        return f"{profile}={enabled}"

    def get_firewall_profile(self, profile: str) -> bool:
        self.reads.append(("get_firewall_profile", {"profile": profile}))
        return self.firewall[profile]

    def reset_firewall(self) -> str:
        self._record("reset_firewall")
        self.firewall = dict(_FIREWALL_DEFAULT)
        return "reset"

    def set_dns_servers(self, servers: list[str], interface: str | None = None) -> str:
        self._record("set_dns_servers", servers=list(servers), interface=interface)
        self.dns = list(servers)
        return ",".join(servers)

    def get_dns_servers(self, interface: str | None = None) -> list[str]:
        self.reads.append(("get_dns_servers", {"interface": interface}))
        return list(self.dns)

    def reset_dns_servers(self, interface: str | None = None) -> str:
        self._record("reset_dns_servers", interface=interface)
        self.dns = list(_DHCP_DNS)
        return "reset"

    def flush_dns_cache(self) -> str:
        self._record("flush_dns_cache")
        return "flushed"

    def operations(self) -> dict[str, Callable[..., object]]:
        names = [
            "set_registry_value",
            "get_registry_value",
            "delete_registry_value",
            "set_service_startup",
            "get_service_startup",
            "stop_service",
            "start_service",
            "set_firewall_profile",
            "get_firewall_profile",
            "reset_firewall",
            "set_dns_servers",
            "get_dns_servers",
            "reset_dns_servers",
            "flush_dns_cache",
        ]
        return {name: getattr(self, name) for name in names}


def fake_fact_sources(**overrides: object) -> dict[str, Callable[[], object]]:
    values: dict[str, object] = {
        "firmware_type": "UEFI",
        "is_admin": True,
        "secure_boot": True,
        "system_manufacturer": "Dell Inc.",
        "system_model": "XPS 15 9530",
        "cpu_name": "13th Gen Intel(R) Core(TM) i7-13700H",
        "gpu_list": ["NVIDIA GeForce RTX 4070 Laptop GPU", "Intel(R) Iris(R) Xe Graphics"],
        "os_caption": "Microsoft Windows 11 Pro",
        "os_build": "22631",
        "total_memory_gb": "31.7",
    }
    values.update(overrides)
    return {key: (lambda value=value: value) for key, value in values.items()}


@pytest.fixture
def fake_system() -> FakeSystem:
    return FakeSystem()


@pytest.fixture
def fact_sources() -> Callable[..., dict[str, Callable[[], object]]]:
    return fake_fact_sources


@pytest.fixture
def make_snapshot() -> Callable[..., Snapshot]:
    def factory(**values: FactValue) -> Snapshot:
        return Snapshot(Fact(key, value=value) for key, value in values.items())

    return factory
