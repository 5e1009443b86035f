"""
Decoding of the resource monitoring artifact.

The monitor running inside a job writes one JSON log record per line. The
``message`` field says what a record describes; records with a message not in
:data:`ENTRY_TYPES` are skipped.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import tempfile
import time
from typing import Any, ClassVar, Dict, List, Optional, Type, Union
import zipfile

import humanize
import pydantic

from runledger.github.model import UTCDateTime

logger = logging.getLogger("runledger")

CPU_SYSTEM_INFO = "CPU System Info"
MEMORY_SYSTEM_INFO = "System Memory Info"
DISK_SYSTEM_INFO = "System Disk Info"
OBSERVED_ENV_VARS = "Observed GitHub Actions Environment Variables"
OBSERVED_CPU = "Observed CPU Usage"
OBSERVED_MEMORY = "Observed Memory Usage"
OBSERVED_DISK = "Observed Disk Usage"
OBSERVED_IO = "Observed IO Usage"

# set by the monitoring action, GitHub has no native way to name the job
JOB_NAME_ENV_VAR = "GITHUB_JOB_NAME"


class MonitorArtifactError(Exception):
    pass


class Model(pydantic.BaseModel):
    pass


class SystemCPUInfo(Model):
    num: int = 0
    model: str = ""
    vendor: str = ""
    family: str = ""
    cache_size: int = 0
    cores: int = 0
    mhz: float = 0.0


class SystemMemoryInfo(Model):
    total: int = 0


class SystemDiskInfo(Model):
    total: int = 0


class SystemInfo(Model):
    cpu: List[SystemCPUInfo] = pydantic.Field(default_factory=list)
    memory: Optional[SystemMemoryInfo] = None
    disk: Optional[SystemDiskInfo] = None
    github_actions_env_vars: Optional[Dict[str, Any]] = None


class CPUMeasurement(Model):
    time: UTCDateTime
    num: int
    used_percent: float


class MemoryMeasurement(Model):
    time: UTCDateTime
    available: int
    used: int


class DiskMeasurement(Model):
    time: UTCDateTime
    used: int
    available: int
    used_percent: float


class IOMeasurement(Model):
    time: UTCDateTime
    bytes_sent: int
    bytes_recv: int
    packets_sent: int
    packets_recv: int


class Analysis(Model):
    job_name: Optional[str] = None
    system_info: SystemInfo = pydantic.Field(default_factory=SystemInfo)
    cpu_measurements: Dict[int, List[CPUMeasurement]] = pydantic.Field(
        default_factory=dict
    )
    memory_measurements: List[MemoryMeasurement] = pydantic.Field(
        default_factory=list
    )
    disk_measurements: List[DiskMeasurement] = pydantic.Field(default_factory=list)
    io_measurements: List[IOMeasurement] = pydantic.Field(default_factory=list)


class MonitorEntry(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="ignore")

    tag: ClassVar[str]

    message: str
    time: Optional[UTCDateTime] = None

    def apply(self, analysis: Analysis) -> None:
        raise NotImplementedError


class CPUInfoEntry(MonitorEntry):
    tag: ClassVar[str] = CPU_SYSTEM_INFO

    num: int = 0
    model: str = ""
    vendor: str = ""
    family: str = ""
    cache_size: int = 0
    cores: int = 0
    mhz: float = 0.0

    def apply(self, analysis: Analysis) -> None:
        analysis.system_info.cpu.append(
            SystemCPUInfo(
                num=self.num,
                model=self.model,
                vendor=self.vendor,
                family=self.family,
                cache_size=self.cache_size,
                cores=self.cores,
                mhz=self.mhz,
            )
        )


class MemoryInfoEntry(MonitorEntry):
    tag: ClassVar[str] = MEMORY_SYSTEM_INFO

    total: int = 0

    def apply(self, analysis: Analysis) -> None:
        analysis.system_info.memory = SystemMemoryInfo(total=self.total)


class DiskInfoEntry(MonitorEntry):
    tag: ClassVar[str] = DISK_SYSTEM_INFO

    total: int = 0

    def apply(self, analysis: Analysis) -> None:
        analysis.system_info.disk = SystemDiskInfo(total=self.total)


class EnvVarsEntry(MonitorEntry):
    tag: ClassVar[str] = OBSERVED_ENV_VARS

    github_actions_env_vars: Dict[str, Any] = pydantic.Field(default_factory=dict)

    def apply(self, analysis: Analysis) -> None:
        analysis.system_info.github_actions_env_vars = self.github_actions_env_vars
        analysis.job_name = self.github_actions_env_vars.get(JOB_NAME_ENV_VAR)


class CPUObservation(MonitorEntry):
    tag: ClassVar[str] = OBSERVED_CPU

    time: UTCDateTime
    num: int = 0
    used_percent: float = 0.0

    def apply(self, analysis: Analysis) -> None:
        analysis.cpu_measurements.setdefault(self.num, []).append(
            CPUMeasurement(time=self.time, num=self.num, used_percent=self.used_percent)
        )


class MemoryObservation(MonitorEntry):
    tag: ClassVar[str] = OBSERVED_MEMORY

    time: UTCDateTime
    available: int = 0
    used: int = 0

    def apply(self, analysis: Analysis) -> None:
        analysis.memory_measurements.append(
            MemoryMeasurement(time=self.time, available=self.available, used=self.used)
        )


class DiskObservation(MonitorEntry):
    tag: ClassVar[str] = OBSERVED_DISK

    time: UTCDateTime
    used: int = 0
    available: int = 0
    used_percent: float = 0.0

    def apply(self, analysis: Analysis) -> None:
        analysis.disk_measurements.append(
            DiskMeasurement(
                time=self.time,
                used=self.used,
                available=self.available,
                used_percent=self.used_percent,
            )
        )


class IOObservation(MonitorEntry):
    tag: ClassVar[str] = OBSERVED_IO

    time: UTCDateTime
    bytes_sent: int = 0
    bytes_recv: int = 0
    packets_sent: int = 0
    packets_recv: int = 0

    def apply(self, analysis: Analysis) -> None:
        analysis.io_measurements.append(
            IOMeasurement(
                time=self.time,
                bytes_sent=self.bytes_sent,
                bytes_recv=self.bytes_recv,
                packets_sent=self.packets_sent,
                packets_recv=self.packets_recv,
            )
        )


ENTRY_TYPES: Dict[str, Type[MonitorEntry]] = {
    entry_type.tag: entry_type
    for entry_type in (
        CPUInfoEntry,
        MemoryInfoEntry,
        DiskInfoEntry,
        EnvVarsEntry,
        CPUObservation,
        MemoryObservation,
        DiskObservation,
        IOObservation,
    )
}


def decode_entry(raw: Dict[str, Any]) -> Optional[MonitorEntry]:
    if not isinstance(raw, dict):
        raise MonitorArtifactError(f"monitor entry is not an object: {raw!r}")
    entry_type = ENTRY_TYPES.get(raw.get("message"))
    if entry_type is None:
        return None
    return entry_type.model_validate(raw)


def analyze(data_file: Union[str, Path]) -> Analysis:
    start = time.monotonic()
    analysis = Analysis()
    lines_scanned = 0
    skipped = 0

    with open(data_file) as fh:
        for lines_scanned, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                entry = decode_entry(json.loads(line))
            except (TypeError, ValueError, pydantic.ValidationError) as e:
                raise MonitorArtifactError(
                    f"failed to decode entry {lines_scanned} of {data_file}: {e}"
                ) from e
            if entry is None:
                skipped += 1
                continue
            entry.apply(analysis)

    logger.debug(
        "Analyzed %d monitor lines (%d skipped) for job %s in %s",
        lines_scanned,
        skipped,
        analysis.job_name,
        humanize.precisedelta(time.monotonic() - start, minimum_unit="milliseconds"),
    )
    return analysis


def extract_monitor_file(archive: Path, target_dir: Path, suffix: str) -> Path:
    """
    Copy the monitor log out of ``archive`` into a temporary file in
    ``target_dir``. The caller removes the returned file.
    """
    try:
        with zipfile.ZipFile(archive) as zf:
            for info in zf.infolist():
                if not info.filename.endswith(suffix):
                    continue
                fd, name = tempfile.mkstemp(dir=target_dir, suffix=f"-{suffix}")
                with os.fdopen(fd, "wb") as out, zf.open(info) as src:
                    while chunk := src.read(64 * 1024):
                        out.write(chunk)
                return Path(name)
    except zipfile.BadZipFile as e:
        raise MonitorArtifactError(f"{archive} is not a zip archive") from e

    raise MonitorArtifactError(f"no file ending in {suffix} inside {archive}")
