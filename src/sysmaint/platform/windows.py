"""Windows fact queries and mutation operations backed by stock command-line tools."""

from __future__ import annotations

import ctypes
import ipaddress
import logging
import os
import re
import subprocess
from collections.abc import Iterable, Sequence
from typing import Protocol

from sysmaint.core.errors import CommandError
from sysmaint.core.types import FactQuery, Operation

logger = logging.getLogger(__name__)

_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0)

# sc.exe exit codes that mean the service is already in the requested state.
_SERVICE_NOT_ACTIVE = 1062
_SERVICE_ALREADY_RUNNING = 1056

_STARTUP_MODES = {
    "disabled": "disabled",
    "manual": "demand",
    "automatic": "auto",
    "delayed": "delayed-auto",
}
_FIREWALL_PROFILES = ("domain", "private", "public")
_REG_LINE = re.compile(r"^\s*(?P<name>\S.*?)\s{2,}(?P<kind>REG_\w+)\s{2,}(?P<data>.*)$")


class CommandRunner(Protocol):
    def __call__(self, command: list[str], *, timeout: float, ok_codes: Sequence[int] = (0,)) -> str: ...


def run_command(command: list[str], *, timeout: float, ok_codes: Sequence[int] = (0,)) -> str:
    """Run a console command and return its stripped stdout."""
    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout,
            creationflags=_NO_WINDOW,
        )
    except FileNotFoundError as exc:
        raise CommandError(command, None, str(exc)) from exc
    except subprocess.TimeoutExpired as exc:
        raise CommandError(command, None, f"timed out after {timeout:.0f}s") from exc

    if completed.returncode not in ok_codes:
        output = ((completed.stdout or "") + "\n" + (completed.stderr or "")).strip()
        raise CommandError(command, completed.returncode, output)
    return (completed.stdout or "").strip()


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _ps_bool(raw: str) -> bool:
    text = raw.strip().lower()
    if text not in {"true", "false"}:
        raise ValueError(f"expected True/False, got {raw!r}")
    return text == "true"


class WindowsSystem:
    """Concrete OS-facts source and OS-mutation source for Windows hosts.

    Every query and mutation shells out through ``runner`` so tests can swap
    in a recording fake without touching the real system.
    """

    def __init__(self, runner: CommandRunner = run_command, *, timeout: float = 30.0) -> None:
        self._runner = runner
        self._timeout = timeout

    def fact_sources(self) -> dict[str, FactQuery]:
        return {
            "firmware_type": self.firmware_type,
            "is_admin": self.is_admin,
            "secure_boot": self.secure_boot,
            "system_manufacturer": lambda: self._cim_property("Win32_ComputerSystem", "Manufacturer"),
            "system_model": lambda: self._cim_property("Win32_ComputerSystem", "Model"),
            "cpu_name": lambda: self._cim_property("Win32_Processor", "Name"),
            "gpu_list": self.gpu_list,
            "os_caption": lambda: self._cim_property("Win32_OperatingSystem", "Caption"),
            "os_build": lambda: self._cim_property("Win32_OperatingSystem", "BuildNumber"),
            "total_memory_gb": self.total_memory_gb,
        }

    def operations(self) -> dict[str, Operation]:
        return {
            "set_registry_value": self.set_registry_value,
            "get_registry_value": self.get_registry_value,
            "delete_registry_value": self.delete_registry_value,
            "set_service_startup": self.set_service_startup,
            "get_service_startup": self.get_service_startup,
            "stop_service": self.stop_service,
            "start_service": self.start_service,
            "set_firewall_profile": self.set_firewall_profile,
            "get_firewall_profile": self.get_firewall_profile,
            "reset_firewall": self.reset_firewall,
            "set_dns_servers": self.set_dns_servers,
            "get_dns_servers": self.get_dns_servers,
            "reset_dns_servers": self.reset_dns_servers,
            "flush_dns_cache": self.flush_dns_cache,
        }

    # -- facts -------------------------------------------------------------

    def firmware_type(self) -> str:
        value = os.environ.get("firmware_type", "").strip()
        if value:
            return value
        return self.powershell("(Get-ComputerInfo -Property BiosFirmwareType).BiosFirmwareType")

    @staticmethod
    def is_admin() -> bool:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]

    def secure_boot(self) -> bool | None:
        # Legacy BIOS machines and unprivileged callers cannot answer.
        try:
            return _ps_bool(self.powershell("Confirm-SecureBootUEFI"))
        except (CommandError, ValueError):
            return None

    def gpu_list(self) -> list[str]:
        output = self.powershell("Get-CimInstance Win32_VideoController | ForEach-Object { $_.Name }")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def total_memory_gb(self) -> str:
        return self.powershell(
            "[math]::Round((Get-CimInstance Win32_ComputerSystem).TotalPhysicalMemory / 1GB, 1)"
        )

    def _cim_property(self, cim_class: str, name: str) -> str:
        return self.powershell(f"(Get-CimInstance {cim_class} | Select-Object -First 1).{name}")

    # -- registry ----------------------------------------------------------

    def set_registry_value(self, path: str, name: str, value: int | str, kind: str = "REG_DWORD") -> str:
        self._run(["reg", "add", path, "/v", name, "/t", kind, "/d", str(value), "/f"])
        return f"{path}\\{name}={value}"

    def get_registry_value(self, path: str, name: str) -> int | str | None:
        # reg query exits 1 when the key or value does not exist.
        output = self._run(["reg", "query", path, "/v", name], ok_codes=(0, 1))
        for line in output.splitlines():
            match = _REG_LINE.match(line)
            if match is None or match.group("name") != name:
                continue
            data = match.group("data").strip()
            if match.group("kind") in {"REG_DWORD", "REG_QWORD"}:
                return int(data, 16)
            return data
        return None

    def delete_registry_value(self, path: str, name: str) -> str:
        if self.get_registry_value(path, name) is None:
            return f"{path}\\{name} already absent"
        self._run(["reg", "delete", path, "/v", name, "/f"])
        return f"{path}\\{name} deleted"

    # -- services ----------------------------------------------------------

    def set_service_startup(self, name: str, startup: str) -> str:
        mode = _STARTUP_MODES.get(startup)
        if mode is None:
            raise ValueError(f"unknown startup mode {startup!r}; expected one of {sorted(_STARTUP_MODES)}")
        self._run(["sc", "config", name, "start=", mode])
        return f"{name} startup={startup}"

    def get_service_startup(self, name: str) -> str:
        output = self.powershell(f"(Get-Service -Name {_ps_quote(name)}).StartType")
        return output.strip().lower()

    def stop_service(self, name: str) -> str:
        self._run(["sc", "stop", name], ok_codes=(0, _SERVICE_NOT_ACTIVE))
        return f"{name} stopped"

    def start_service(self, name: str) -> str:
        self._run(["sc", "start", name], ok_codes=(0, _SERVICE_ALREADY_RUNNING))
        return f"{name} started"

    # -- firewall ----------------------------------------------------------

    def set_firewall_profile(self, profile: str, enabled: bool) -> str:
        profile = self._firewall_profile(profile)
        state = "on" if enabled else "off"
        self._run(["netsh", "advfirewall", "set", f"{profile}profile", "state", state])
        return f"{profile} firewall {state}"

    def get_firewall_profile(self, profile: str) -> bool:
        profile = self._firewall_profile(profile)
        return _ps_bool(self.powershell(f"(Get-NetFirewallProfile -Name {profile.capitalize()}).Enabled"))

    def reset_firewall(self) -> str:
        self._run(["netsh", "advfirewall", "reset"])
        return "firewall policy reset"

    @staticmethod
    def _firewall_profile(profile: str) -> str:
        normalized = profile.strip().lower()
        if normalized not in _FIREWALL_PROFILES:
            raise ValueError(f"unknown firewall profile {profile!r}")
        return normalized

    # -- dns ---------------------------------------------------------------

    def set_dns_servers(self, servers: Iterable[str], interface: str | None = None) -> str:
        addresses = [str(ipaddress.ip_address(server)) for server in servers]
        if not addresses:
            raise ValueError("at least one DNS server is required")
        server_list = ",".join(_ps_quote(address) for address in addresses)
        self.powershell(f"{self._adapters(interface)} | Set-DnsClientServerAddress -ServerAddresses ({server_list})")
        return f"dns={','.join(addresses)}"

    def get_dns_servers(self, interface: str | None = None) -> list[str]:
        output = self.powershell(
            f"{self._adapters(interface)} | Get-DnsClientServerAddress -AddressFamily IPv4"
            " | ForEach-Object { $_.ServerAddresses }"
        )
        servers: list[str] = []
        for line in output.splitlines():
            address = line.strip()
            if address and address not in servers:
                servers.append(address)
        return servers

    def reset_dns_servers(self, interface: str | None = None) -> str:
        self.powershell(f"{self._adapters(interface)} | Set-DnsClientServerAddress -ResetServerAddresses")
        return "dns reset to adapter defaults"

    def flush_dns_cache(self) -> str:
        self._run(["ipconfig", "/flushdns"])
        return "dns cache flushed"

    @staticmethod
    def _adapters(interface: str | None) -> str:
        if interface:
            return f"Get-NetAdapter -Name {_ps_quote(interface)}"
        return "Get-NetAdapter | Where-Object Status -eq 'Up'"

    # -- plumbing ----------------------------------------------------------

    def powershell(self, script: str) -> str:
        return self._run(["powershell", "-NoProfile", "-NonInteractive", "-Command", script])

    def _run(self, command: list[str], *, ok_codes: Sequence[int] = (0,)) -> str:
        logger.debug("command_run argv=%s", command[:3])
        return self._runner(command, timeout=self._timeout, ok_codes=ok_codes)


def windows_sources(
    runner: CommandRunner = run_command, *, timeout: float = 30.0
) -> tuple[dict[str, FactQuery], dict[str, Operation]]:
    """Return the fact-source and mutation-source mappings for this host."""
    system = WindowsSystem(runner, timeout=timeout)
    return system.fact_sources(), system.operations()


