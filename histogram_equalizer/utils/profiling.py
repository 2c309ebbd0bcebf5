"""
Stage profiling - per-submission timestamps and pipeline-wide totals.

Every device submission returns a ProfilingEvent carrying four nanosecond
timestamps (queued, submitted, started, ended). A StageTiming summarises
one pipeline stage, which may span several submissions, and the
orchestrator-owned ProfilingTotals accumulates execution, queueing and
submission time across stages.

The detailed report integer-divides each figure by the chosen resolution on
its own, so at coarse resolutions the parts need not add up to the total.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .logger import get_logger

logger = get_logger(__name__)


class ProfilingResolution(Enum):
    """Divisor and unit label for the detailed report."""
    NS = (1, "ns")
    US = (1_000, "us")
    MS = (1_000_000, "ms")
    S = (1_000_000_000, "s")

    @property
    def divisor(self) -> int:
        return self.value[0]

    @property
    def unit(self) -> str:
        return self.value[1]

    @classmethod
    def from_unit(cls, unit: str) -> "ProfilingResolution":
        for member in cls:
            if member.unit == unit:
                return member
        raise ValueError(f"Unknown profiling resolution: {unit!r}")


@dataclass(frozen=True)
class ProfilingEvent:
    """Timestamps of one submitted command, in nanoseconds."""
    queued: int
    submitted: int
    started: int
    ended: int
    label: str = ""


@dataclass(frozen=True)
class StageTiming:
    """Timing of one pipeline stage."""
    name: str
    queued: int
    submitted: int
    started: int
    ended: int
    submissions: int = 1

    @property
    def execution_ns(self) -> int:
        return self.ended - self.started

    @property
    def submission_ns(self) -> int:
        return self.started - self.submitted

    @property
    def queueing_ns(self) -> int:
        return self.submitted - self.queued

    @property
    def total_ns(self) -> int:
        return self.ended - self.queued

    @classmethod
    def from_events(cls, name: str, events: Iterable[ProfilingEvent]) -> "StageTiming":
        """
        Builds a stage timing from one or more events.

        A multi-submission stage (e.g. copy + scan) is measured from the first
        event's queued/submitted/started times to the last event's end.
        """
        events = list(events)
        if not events:
            raise ValueError(f"Stage '{name}' has no profiling events")
        first, last = events[0], events[-1]
        return cls(
            name=name,
            queued=first.queued,
            submitted=first.submitted,
            started=first.started,
            ended=last.ended,
            submissions=len(events),
        )

    @classmethod
    def accumulate(cls, name: str, events: Iterable[ProfilingEvent]) -> "StageTiming":
        """
        Builds a timing whose derived figures are the sums over the events.

        Used for buffer transfers, which are scattered across the run and
        must not be measured as one continuous span.
        """
        execution = queueing = submission = count = 0
        for event in events:
            execution += event.ended - event.started
            queueing += event.submitted - event.queued
            submission += event.started - event.submitted
            count += 1
        return cls(
            name=name,
            queued=0,
            submitted=queueing,
            started=queueing + submission,
            ended=queueing + submission + execution,
            submissions=count,
        )


@dataclass
class ProfilingTotals:
    """Pipeline-wide accumulator owned by the orchestrator."""
    execution_ns: int = 0
    queueing_ns: int = 0
    submission_ns: int = 0

    def add(self, timing: StageTiming) -> None:
        self.execution_ns += timing.execution_ns
        self.queueing_ns += timing.queueing_ns
        self.submission_ns += timing.submission_ns

    @property
    def total_ns(self) -> int:
        return self.execution_ns + self.queueing_ns + self.submission_ns


def get_full_profiling_info(
    timing: StageTiming,
    resolution: ProfilingResolution = ProfilingResolution.US,
) -> str:
    """
    Formats queue, submission and execution time of a stage at a resolution.

    Each figure is divided independently, so e.g. at microsecond resolution
    'Total' can differ by one or two units from the sum of the parts.
    """
    div = resolution.divisor
    return (
        f"Queued {timing.queueing_ns // div}, "
        f"Submitted {timing.submission_ns // div}, "
        f"Executed {timing.execution_ns // div}, "
        f"Total {timing.total_ns // div} [{resolution.unit}]"
    )


@dataclass
class ProfilingReport:
    """Structured timing report handed to the CLI layer."""
    stages: Dict[str, StageTiming] = field(default_factory=dict)
    transfers: Optional[StageTiming] = None
    totals: ProfilingTotals = field(default_factory=ProfilingTotals)

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        """Nanosecond figures per stage plus the pipeline-wide totals."""
        out: Dict[str, Dict[str, int]] = {}
        timings: List[StageTiming] = list(self.stages.values())
        if self.transfers is not None:
            timings.append(self.transfers)
        for timing in timings:
            out[timing.name] = {
                "execution_ns": timing.execution_ns,
                "queueing_ns": timing.queueing_ns,
                "submission_ns": timing.submission_ns,
                "submissions": timing.submissions,
            }
        out["total"] = {
            "execution_ns": self.totals.execution_ns,
            "queueing_ns": self.totals.queueing_ns,
            "submission_ns": self.totals.submission_ns,
            "total_ns": self.totals.total_ns,
        }
        return out


class StageProfiler:
    """
    Records device-submitted stages into a ProfilingReport.

    The report's totals are mutated strictly sequentially by the single host
    thread driving the pipeline, so no locking is needed.
    """

    def __init__(
        self,
        report: Optional[ProfilingReport] = None,
        resolution: ProfilingResolution = ProfilingResolution.US,
    ) -> None:
        self.report = report if report is not None else ProfilingReport()
        self.resolution = resolution
        self._transfer_events: List[ProfilingEvent] = []

    @property
    def totals(self) -> ProfilingTotals:
        return self.report.totals

    def record(self, name: str, events: Iterable[ProfilingEvent]) -> StageTiming:
        """Records a kernel stage, adds it to the totals and logs both reports."""
        timing = StageTiming.from_events(name, events)
        self.report.stages[name] = timing
        self.totals.add(timing)
        logger.debug(self.execution_summary(timing))
        logger.debug("Full %s kernel information: %s", name,
                    get_full_profiling_info(timing, self.resolution))
        return timing

    def record_transfer(self, event: ProfilingEvent) -> None:
        """Remembers a buffer write/read; they are folded in by finish()."""
        self._transfer_events.append(event)

    def finish(self) -> ProfilingReport:
        """Folds the accumulated transfers into the report and returns it."""
        if self._transfer_events:
            transfers = StageTiming.accumulate("transfers", self._transfer_events)
            self.report.transfers = transfers
            self.totals.add(transfers)
            logger.debug("Accumulated buffer read/write time in nanoseconds: %d",
                        transfers.execution_ns)
            self._transfer_events = []
        logger.debug(
            "Totals [ns]: execution %d, queue %d, submission %d, overall %d",
            self.totals.execution_ns,
            self.totals.queueing_ns,
            self.totals.submission_ns,
            self.totals.total_ns,
        )
        return self.report

    @staticmethod
    def execution_summary(timing: StageTiming) -> str:
        """Single-line execution-time report."""
        label = timing.name.replace("_", " ").capitalize()
        return f"{label} kernel execution time in nanoseconds: {timing.execution_ns}"
