import time
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class RunMetric:
    run_num: int
    step: str
    path: str
    start_time: float
    end_time: Optional[float] = None
    outcome: Optional[str] = None
    error: Optional[str] = None


@dataclass
class MetricsTracker:
    start_time: float = field(default_factory=time.time)
    runs: dict[int, RunMetric] = field(default_factory=dict)

    def start_run(self, num: int, step: str, path: str) -> None:
        self.runs[num] = RunMetric(
            run_num=num,
            step=step,
            path=path,
            start_time=time.time()
        )

    def end_run(
        self,
        num: int,
        outcome: str,
        error: Optional[str] = None
    ) -> None:
        if num in self.runs:
            self.runs[num].end_time = time.time()
            self.runs[num].outcome = outcome
            self.runs[num].error = error

    def get_summary(self) -> dict:
        failed = sum(1 for r in self.runs.values() if r.outcome == "failed")
        last = self.runs[max(self.runs)] if self.runs else None

        return {
            "total_runs": len(self.runs),
            "failed": failed,
            "final_step": last.step if last else None,
            "final_outcome": last.outcome if last else None,
            "total_time_seconds": time.time() - self.start_time,
            "per_run": [
                {
                    "num": r.run_num,
                    "step": r.step,
                    "path": r.path,
                    "time_seconds": round((r.end_time or time.time()) - r.start_time, 2),
                    "outcome": r.outcome,
                    "error": r.error
                }
                for r in sorted(self.runs.values(), key=lambda x: x.run_num)
            ]
        }

    def print_summary(self) -> None:
        s = self.get_summary()
        print(f"\n{'='*50}")
        print("VPS RENEWAL - RESULTS")
        print(f"{'='*50}")
        print(f"Pages handled: {s['total_runs']} ({s['failed']} failed)")
        for r in s["per_run"]:
            line = f"  {r['num']}. {r['step']:<17} {r['outcome'] or 'running':<14} {r['time_seconds']:.1f}s"
            if r["error"]:
                line += f"  ({r['error']})"
            print(line)
        print(f"Final: {s['final_step']} -> {s['final_outcome']}")
        print(f"Total time: {s['total_time_seconds']:.1f}s")
        print(f"{'='*50}\n")
