"""Loop bodies, the step pipeline, bootstrapping and scheduling.

Public API
----------
* :func:`~listing_manager.orchestrator.scheduler.run_continuous` — default
  runtime entry-point; runs the bootstrapper and the three loops until
  stopped.
* :func:`~listing_manager.orchestrator.runner.run_once` — log in and run one
  tick of selected loops; backs ``--once``.
* :func:`~listing_manager.orchestrator.fulfillment.fulfill_new_orders` —
  one order-loop tick.
* :func:`~listing_manager.orchestrator.health.check_rented_devices` /
  :func:`~listing_manager.orchestrator.health.check_listed_devices` — one
  health-loop tick each.
* :func:`~listing_manager.orchestrator.bootstrap.login_admin` — admin session
  bootstrapper.
* :func:`~listing_manager.orchestrator.pipeline.run_steps` — ordered,
  short-circuiting step pipeline.
"""

from listing_manager.orchestrator.bootstrap import load_admin_credentials, login_admin
from listing_manager.orchestrator.fulfillment import (
    FulfillmentOutcome,
    FulfillmentState,
    fulfill_new_orders,
)
from listing_manager.orchestrator.health import (
    ListedCheckStats,
    RemovalReason,
    RentedCheckStats,
    check_listed_devices,
    check_rented_devices,
)
from listing_manager.orchestrator.pipeline import (
    PipelineOutcome,
    StepResult,
    report_tick_error,
    run_steps,
)
from listing_manager.orchestrator.runner import LoopName, RunSummary, run_once, run_tick
from listing_manager.orchestrator.scheduler import loop_periods, run_continuous, run_periodic

__all__ = [
    # Bootstrap
    "load_admin_credentials",
    "login_admin",
    # Order loop
    "FulfillmentOutcome",
    "FulfillmentState",
    "fulfill_new_orders",
    # Health loops
    "ListedCheckStats",
    "RemovalReason",
    "RentedCheckStats",
    "check_listed_devices",
    "check_rented_devices",
    # Pipeline
    "PipelineOutcome",
    "StepResult",
    "report_tick_error",
    "run_steps",
    # Entry-points
    "LoopName",
    "RunSummary",
    "run_once",
    "run_tick",
    "loop_periods",
    "run_continuous",
    "run_periodic",
]
