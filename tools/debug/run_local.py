#!/usr/bin/env python3
"""Run one complete scheduling chain in-process against the configured server."""
from __future__ import annotations

import sys
from pathlib import Path


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def main() -> int:
    repo = _repo_root()
    sys.path.insert(0, str(repo / "runtime" / "core"))

    from api.main import build_components
    from config.logging import apply_logging_config
    from config.settings import load_runtime_config
    from errors import BookkeepingLostError
    from events.model import Event
    from scheduler.runner import LocalEventDriver
    from users.service import YamlUserDataService

    config_dir = repo / "runtime" / "core" / "config"
    runtime = load_runtime_config(config_dir / "runtime.yaml")
    apply_logging_config(config_dir / "logging.yaml")
    users = YamlUserDataService.load(config_dir / "users.yaml")

    components = build_components(runtime, users)
    realtime = "--realtime" in sys.argv[1:]
    driver = LocalEventDriver(components.distinct_processors(), realtime=realtime)
    driver.submit(Event(runtime.scheduler.event_name))

    try:
        report = driver.run_until_idle()
    except BookkeepingLostError as e:
        print(f"run_status=ABORTED reason={e}")
        return 2
    finally:
        components.close()

    print(f"processed={report.processed}")
    print(f"succeeded={report.succeeded}")
    print(f"failed={report.failed}")
    print(f"done_events={len(report.terminal)}")
    return 0 if report.failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
