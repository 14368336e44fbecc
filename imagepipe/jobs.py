# -*- coding: utf-8 -*-
from dataclasses import dataclass, field
from typing import List, Union

from .codecs import CodecSelection
from .pipeline import PipelineSpec


@dataclass(frozen=True)
class JobDescriptor:
    input_path: str
    output_path: str
    backup: bool
    pipeline: PipelineSpec
    codec: CodecSelection


@dataclass(frozen=True)
class JobSuccess:
    input_path: str
    output_path: str
    bytes_read: int
    bytes_written: int

    @property
    def ok(self) -> bool:
        return True

    @property
    def size_change_percent(self) -> float:
        if self.bytes_read <= 0:
            return 0.0
        return (self.bytes_written - self.bytes_read) / self.bytes_read * 100


@dataclass(frozen=True)
class JobFailure:
    input_path: str
    error_kind: str
    cause: str

    @property
    def ok(self) -> bool:
        return False


JobResult = Union[JobSuccess, JobFailure]


@dataclass
class BatchReport:
    successes: List[JobSuccess] = field(default_factory=list)
    failures: List[JobFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    interrupted: bool = False

    def add(self, result: JobResult):
        if result.ok:
            self.successes.append(result)
        else:
            self.failures.append(result)

    @property
    def total(self) -> int:
        return len(self.successes) + len(self.failures)

    @property
    def exit_code(self) -> int:
        if self.interrupted:
            return 130
        return 1 if self.failures else 0
