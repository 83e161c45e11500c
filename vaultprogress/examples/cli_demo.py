"""
VaultProgress CLI Demo

Command-line walkthrough of a tracked extraction.
Run with: python -m vaultprogress.examples.cli_demo

This shows how all components work together:
1. A background extraction job publishing progress and checkpoints
2. A subscriber rendering live progress from the change feed
3. A phase failure, the recovery prompt, and a resume from checkpoints
"""

import logging
import time

from vaultprogress.core.store import ProgressStore
from vaultprogress.services.notification import ChangeFeed
from vaultprogress.services.observability import ExtractionObservability
from vaultprogress.services.orchestrator import (
    ExtractionJob, ExtractionJobRunner, ExtractionPhase
)
from vaultprogress.services.recovery import RecoveryController
from vaultprogress.services.subscriber import ProgressState, ProgressSubscriber

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def print_state(state: ProgressState):
    """Pretty print a progress update."""

    green = '\033[92m'
    yellow = '\033[93m'
    reset = '\033[0m'
    bold = '\033[1m'

    color = green if state.is_complete else yellow
    bar = '#' * (state.progress // 5)

    print(f"{color}{bold}[{state.progress:3d}%]{reset} {bar:<20} "
          f"{state.phase}: {state.message} ({state.items_extracted} items)")


def build_phases(fail_once: dict):
    """Demo phases. 'competencies' fails on its first run."""

    def extract_skills(ctx):
        for step in range(1, 4):
            time.sleep(0.1)
            ctx.report(step / 3, f"Extracting skills ({step}/3)...", items=step * 4)
        return 12, {'skills': ['python', 'sql', 'leadership']}

    def extract_achievements(ctx):
        time.sleep(0.2)
        return 30, {'power_phrases': 30}

    def infer_competencies(ctx):
        if fail_once.pop('competencies', False):
            raise RuntimeError("AI provider timed out")
        time.sleep(0.2)
        return 45, {'competencies': 45}

    return [
        ExtractionPhase("skills", extract_skills, weight=1, message="Extracting skills..."),
        ExtractionPhase("achievements", extract_achievements, weight=2),
        ExtractionPhase("competencies", infer_competencies, weight=2),
    ]


def run_demo():
    """Run the demo end to end."""

    print("\n" + "=" * 60)
    print("VAULTPROGRESS DEMO")
    print("=" * 60 + "\n")

    feed = ChangeFeed()
    store = ProgressStore.from_url("sqlite://", feed=feed)
    observability = ExtractionObservability(store)
    fail_once = {'competencies': True}
    vault_id = "vault-demo"

    runner = ExtractionJobRunner(
        lambda vid: ExtractionJob(vid, build_phases(fail_once), store,
                                  observability=observability)
    )

    with ProgressSubscriber(store, feed, vault_id) as subscriber:
        subscriber.add_listener(print_state)
        recovery = RecoveryController(subscriber, runner, stall_timeout=1.0)

        print_state(subscriber.state)
        runner.start(vault_id)
        runner.join(vault_id, timeout=10)

        # The failed phase leaves the bar where it was; wait for the stall
        while recovery.check() is None:
            time.sleep(0.2)

        prompt = recovery.check()
        print(f"\nJob stalled at {prompt.last_progress}% in '{prompt.last_phase}'. "
              f"Choices: {', '.join(c.value for c in prompt.choices)}")
        print("Choosing: resume\n")

        recovery.resume()
        result = runner.join(vault_id, timeout=10)

        print(f"\nFinished: {subscriber.progress}% "
              f"({subscriber.items_extracted} items, complete={subscriber.is_complete})")
        if result:
            print(f"Skipped (from checkpoints): {', '.join(result.skipped_phases)}")
            report = observability.generate_report(result.session_id)
            print(f"Report: {report.status.value}, {report.retry_count} retries, "
                  f"{report.error_count} errors")
            for rec in report.recommendations:
                print(f"  - {rec}")

    print(f"\nOpen subscriptions after close: {feed.active_count}")


if __name__ == "__main__":
    run_demo()
