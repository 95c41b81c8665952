"""Scheduling of the next resumption and overlap detection.

Every resumption gets its own ``RunContext``; the policy keeps no state
between resumptions other than what it persists on the job.
"""
import math
import os
import time
from dataclasses import dataclass
from typing import Callable

import structlog

from dbdump_core.jobs.repo import JobHandle, get_option, set_option
from dbdump_core.resume.ticks import TickSource

logger = structlog.get_logger()

DEFAULT_RESUME_INTERVAL = 100
MIN_RESUME_INTERVAL = 60
MAX_RESUME_INTERVAL_OVERLAP = 900
SAFETY_MARGIN = 30
OVERLAP_INCREMENT = 120
# 15 seconds more than SAFETY_MARGIN, the window used to spot file activity.
NEAR_DUE_WINDOW = 45
ESCALATION_RESUMPTION = 9
ESCALATION_FLOOR = 75
LONG_RUN_INTERVAL = 720
LONG_RUN_RESCHEDULE = 600
CLEAR_RANGE = 100

INITIAL_INTERVAL_OPTION = "initial_resume_interval"
INITIAL_INTERVAL_TTL = 8 * 86400


@dataclass
class RunContext:
    """Bookkeeping for one resumption of one job."""

    job_id: str
    resumption: int
    started_at: float
    scheduled_for: float | None = None
    useful: bool = False


@dataclass(frozen=True)
class Overlap:
    """Evidence that another resumption is still working on the job."""

    source: str
    time_mod: float
    increase: bool


def initial_resume_interval() -> int:
    """Learned interval from earlier jobs, or the default."""
    value = get_option(INITIAL_INTERVAL_OPTION)
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    return DEFAULT_RESUME_INTERVAL


def clear_all_scheduled(ticks: TickSource, job_id: str, upto: int = CLEAR_RANGE) -> int:
    """Retract every pending resumption of a job."""
    cleared = sum(1 for n in range(upto + 1) if ticks.cancel(job_id, n))
    logger.info("schedule_cleared", job_id=job_id, cleared=cleared)
    return cleared


class ReschedulePolicy:
    """Decides when the next resumption runs and whether this one may run."""

    def __init__(
        self,
        handle: JobHandle,
        ticks: TickSource,
        ctx: RunContext,
        clock: Callable[[], float] = time.time,
    ):
        self.handle = handle
        self.ticks = ticks
        self.ctx = ctx
        self.clock = clock
        if not handle.job.resume_interval:
            handle.update(resume_interval=initial_resume_interval())

    @classmethod
    def start(
        cls,
        handle: JobHandle,
        ticks: TickSource,
        resumption: int,
        clock: Callable[[], float] = time.time,
    ) -> "ReschedulePolicy":
        ctx = RunContext(job_id=handle.id, resumption=resumption, started_at=clock())
        return cls(handle, ticks, ctx, clock=clock)

    @property
    def resume_interval(self) -> int:
        return self.handle.job.resume_interval or DEFAULT_RESUME_INTERVAL

    def elapsed(self) -> float:
        return self.clock() - self.ctx.started_at

    def record_still_alive(self):
        """Record this run's duration and widen the interval if it is too tight."""
        elapsed = self.elapsed()
        timings = dict(self.handle.job.run_timings)
        timings[self.ctx.resumption] = elapsed
        update = {"run_timings": timings}

        if elapsed + SAFETY_MARGIN > self.resume_interval:
            new_interval = math.ceil(elapsed + SAFETY_MARGIN)
            set_option(INITIAL_INTERVAL_OPTION, new_interval, ttl=INITIAL_INTERVAL_TTL)
            update["resume_interval"] = new_interval
            logger.info(
                "resume_interval_raised",
                job_id=self.ctx.job_id,
                resumption=self.ctx.resumption,
                interval=new_interval,
            )
        self.handle.update(**update)

    def something_useful_happened(self):
        """Note forward progress; may schedule a safety-net resumption."""
        self.record_still_alive()

        if not self.ctx.useful:
            checkins = set(self.handle.job.useful_checkins)
            if self.ctx.resumption not in checkins:
                checkins.add(self.ctx.resumption)
                self.handle.update(useful_checkins=checkins)
        self.ctx.useful = True

        if self.ctx.resumption >= ESCALATION_RESUMPTION and self.ctx.scheduled_for is None:
            interval = max(self.resume_interval, ESCALATION_FLOOR)
            when = self.clock() + interval
            self.ctx.scheduled_for = when
            self.ticks.schedule_at(when, self.ctx.job_id, self.ctx.resumption + 1)
            logger.info(
                "safety_resumption_scheduled",
                job_id=self.ctx.job_id,
                resumption=self.ctx.resumption + 1,
                delay=interval,
            )
        else:
            self.reschedule_if_needed()

    def reschedule_if_needed(self):
        """Push back a scheduled resumption that is about to fire mid-run."""
        if self.ctx.scheduled_for is None:
            return
        time_away = self.ctx.scheduled_for - self.clock()
        if 1 < time_away <= NEAR_DUE_WINDOW:
            self.increase_resume_and_reschedule(NEAR_DUE_WINDOW)

    def reschedule(self, how_far_ahead: float):
        """Schedule the next resumption, replacing any earlier entry for it."""
        if self.handle.job.finished:
            return
        next_resumption = self.ctx.resumption + 1
        self.ticks.cancel(self.ctx.job_id, next_resumption)

        how_far_ahead = max(how_far_ahead, MIN_RESUME_INTERVAL)
        when = self.clock() + how_far_ahead
        self.ticks.schedule_at(when, self.ctx.job_id, next_resumption)
        self.ctx.scheduled_for = when
        logger.info(
            "resumption_scheduled",
            job_id=self.ctx.job_id,
            resumption=next_resumption,
            delay=how_far_ahead,
        )

    def increase_resume_and_reschedule(self, howmuch: int = OVERLAP_INCREMENT, due_to_overlap: bool = False):
        interval = max(self.resume_interval, 120 if howmuch == 0 else 300)
        new_interval = interval + howmuch

        elapsed = self.elapsed()
        if elapsed > new_interval:
            new_interval = math.ceil(elapsed) + NEAR_DUE_WINDOW

        how_far_ahead = min(new_interval, MAX_RESUME_INTERVAL_OVERLAP) if due_to_overlap else new_interval
        if self.ctx.resumption <= 1 and new_interval > LONG_RUN_INTERVAL:
            how_far_ahead = LONG_RUN_RESCHEDULE

        if self.ctx.scheduled_for is not None or due_to_overlap:
            self.reschedule(how_far_ahead)
        self.handle.update(resume_interval=new_interval)

    def detect_overlap(self) -> Overlap | None:
        """Look for signs that an earlier resumption is still running.

        Either the dump file was written to very recently, or a recorded run
        started recently enough that it could still be going.
        """
        if self.ctx.resumption == 0:
            return None
        job = self.handle.job
        now = self.clock()

        if job.output_path and os.path.exists(job.output_path):
            time_mod = os.path.getmtime(job.output_path)
            if now - time_mod < SAFETY_MARGIN:
                return Overlap(os.path.basename(job.output_path), time_mod, True)

        for run, passed in job.run_timings.items():
            started = job.run_start_times.get(run)
            if started is not None and started + passed + SAFETY_MARGIN > now:
                increase = not (run and run == self.ctx.resumption)
                return Overlap("check-in", started + passed, increase)
        return None

    def terminate_due_to_activity(self, overlap: Overlap):
        """Give way to the other run: widen the interval and reschedule."""
        self.record_still_alive()

        now = self.clock()
        path = self.handle.job.output_path
        size = f"{round(os.path.getsize(path) / 1024, 1)}KB" if path and os.path.isfile(path) else "n/a"
        message = (
            f"File activity detected on {overlap.source} (time_mod={overlap.time_mod:.0f}, "
            f"time_now={now:.0f}, diff={math.floor(now - overlap.time_mod)}, size={size})"
        )
        self.handle.update(activity_detected=message)
        logger.warning(
            "overlap_detected",
            job_id=self.ctx.job_id,
            resumption=self.ctx.resumption,
            source=overlap.source,
            diff=math.floor(now - overlap.time_mod),
        )
        self.increase_resume_and_reschedule(OVERLAP_INCREMENT if overlap.increase else 0, due_to_overlap=True)

    def clear_all(self):
        clear_all_scheduled(self.ticks, self.ctx.job_id)
