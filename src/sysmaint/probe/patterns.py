"""Ordered pattern lookup tables and the derived facts built on them."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence

from sysmaint.core.types import FactValue
from sysmaint.probe.prober import DerivedFact


class PatternTable:
    """Case-insensitive regex rules evaluated in order; first match wins."""

    def __init__(self, rules: Sequence[tuple[str, str]], default: str) -> None:
        self._rules = [(re.compile(pattern, re.IGNORECASE), label) for pattern, label in rules]
        self.default = default

    def match(self, text: str) -> str:
        for pattern, label in self._rules:
            if pattern.search(text):
                return label
        return self.default

    def match_all(self, items: Iterable[str]) -> tuple[str, ...]:
        """Classify each item, keeping first-seen order without duplicates."""
        labels: list[str] = []
        for item in items:
            label = self.match(item)
            if label not in labels:
                labels.append(label)
        return tuple(labels)


VIRTUALIZATION_VENDORS = PatternTable(
    [
        (r"vmware", "vmware"),
        (r"virtualbox|innotek", "virtualbox"),
        (r"qemu|kvm|bochs", "kvm"),
        (r"microsoft corporation.*virtual machine|hyper-v", "hyper-v"),
        (r"\bxen\b", "xen"),
        (r"parallels", "parallels"),
    ],
    default="physical",
)

GPU_VENDORS = PatternTable(
    [
        (r"nvidia|geforce|quadro|\btesla\b", "nvidia"),
        (r"\bamd\b|radeon|advanced micro devices|\bati\b", "amd"),
        (r"intel", "intel"),
        (r"vmware svga|virtualbox|hyper-v video", "virtual"),
        (r"microsoft basic (display|render)", "basic"),
    ],
    default="unknown",
)

CPU_VENDORS = PatternTable(
    [
        (r"intel", "intel"),
        (r"\bamd\b|ryzen|epyc|threadripper", "amd"),
        (r"snapdragon|qualcomm|\barm\b", "arm"),
    ],
    default="unknown",
)


def _platform_text(inputs: Mapping[str, FactValue]) -> str:
    return f"{inputs['system_manufacturer']} {inputs['system_model']}"


def default_derived_facts() -> list[DerivedFact]:
    return [
        DerivedFact(
            "virtualization_vendor",
            ("system_manufacturer", "system_model"),
            lambda inputs: VIRTUALIZATION_VENDORS.match(_platform_text(inputs)),
        ),
        DerivedFact(
            "is_virtual_machine",
            ("system_manufacturer", "system_model"),
            lambda inputs: VIRTUALIZATION_VENDORS.match(_platform_text(inputs))
            != VIRTUALIZATION_VENDORS.default,
        ),
        DerivedFact(
            "gpu_vendors",
            ("gpu_list",),
            lambda inputs: GPU_VENDORS.match_all(inputs["gpu_list"]),  # type: ignore[arg-type]
        ),
        DerivedFact(
            "cpu_vendor",
            ("cpu_name",),
            lambda inputs: CPU_VENDORS.match(str(inputs["cpu_name"])),
        ),
    ]
