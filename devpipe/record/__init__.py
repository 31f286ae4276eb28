from .recorder import (
    HISTORY_WINDOW,
    RUN_FILE,
    SUMMARY_FILE,
    RunRecorder,
    build_run_record,
    load_historical_averages,
    make_run_id,
)

__all__ = [
    "HISTORY_WINDOW",
    "RUN_FILE",
    "SUMMARY_FILE",
    "RunRecorder",
    "build_run_record",
    "load_historical_averages",
    "make_run_id",
]
