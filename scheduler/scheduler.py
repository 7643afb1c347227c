#!/usr/bin/env python3
"""
Campaign Automation Scheduler
Runs the campaign sync cycle (fetch -> persist -> evaluate rules) on a fixed interval

Schedules:
- Every SYNC_INTERVAL_MINUTES (default 1) in UTC: campaign sync + rule evaluation

Usage:
    python -m scheduler.scheduler              # run blocking scheduler
    python -m scheduler.scheduler --run-once   # one sync cycle, then exit
    python -m scheduler.scheduler --dry-run    # show the job and exit
"""

import logging
import sys
import threading
from datetime import datetime
from typing import Any, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from automation_core.config import AutomationConfig
from automation_core.models import SyncResult
from scheduler.sync_service import SyncService

logger = logging.getLogger(__name__)

JOB_ID = 'campaign_sync'
JOB_NAME = 'Campaign Sync'


class SyncScheduler:
    """
    Interval scheduler around a SyncService

    start() twice is a no-op; stop() only prevents future firings, an
    in-flight cycle runs to completion.
    """

    def __init__(self, sync_service: SyncService, config: Optional[AutomationConfig] = None):
        self.sync_service = sync_service
        self.config = config or sync_service.config
        self.is_running = False
        self._scheduler: Optional[BackgroundScheduler] = None
        self._lock = threading.Lock()
        self._startup_sync_done = False

        self.last_run: Optional[datetime] = None
        self.last_result: Optional[SyncResult] = None
        self.last_error: Optional[str] = None
        self.run_count = 0
        self.failure_count = 0

    def _trigger(self) -> IntervalTrigger:
        return IntervalTrigger(
            minutes=self.config.sync_interval_minutes,
            timezone=self.config.scheduler_timezone
        )

    def start(self) -> bool:
        """Start the interval job; returns False if already running"""
        with self._lock:
            if self.is_running:
                logger.info("Scheduler is already running")
                return False

            self._scheduler = BackgroundScheduler(timezone=self.config.scheduler_timezone)
            self._scheduler.add_job(
                self.run_scheduled_sync,
                self._trigger(),
                id=JOB_ID,
                name=JOB_NAME,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )
            self._scheduler.start()
            self.is_running = True

        logger.info(
            f"Scheduler started: campaign sync every {self.config.sync_interval_minutes} "
            f"minute(s) ({self.config.scheduler_timezone})"
        )
        return True

    def stop(self) -> bool:
        """Stop future firings; returns False if not running"""
        with self._lock:
            if not self.is_running:
                logger.info("Scheduler is not running")
                return False

            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            self.is_running = False

        logger.info("Scheduler stopped")
        return True

    def next_run_time(self) -> Optional[datetime]:
        if not self.is_running or self._scheduler is None:
            return None
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    def status(self) -> Dict[str, Any]:
        """Current scheduler status"""
        next_run = self.next_run_time()
        with self._lock:
            last_run = self.last_run
            last_result = self.last_result
            last_error = self.last_error
            run_count = self.run_count
            failure_count = self.failure_count

        return {
            'is_running': self.is_running,
            'next_run': next_run.isoformat() if next_run else None,
            'interval_minutes': self.config.sync_interval_minutes,
            'timezone': self.config.scheduler_timezone,
            'last_run': last_run.isoformat() if last_run else None,
            'last_result': last_result.model_dump(mode='json', exclude={'action_logs'})
            if last_result else None,
            'last_error': last_error,
            'run_count': run_count,
            'failure_count': failure_count,
        }

    def _record(self, result: Optional[SyncResult], error: Optional[Exception]) -> None:
        # Called from the job thread and from request threads
        with self._lock:
            self.last_run = datetime.utcnow()
            self.run_count += 1
            if error is None:
                self.last_result = result
                self.last_error = None
            else:
                self.failure_count += 1
                self.last_error = str(error)

    def run_scheduled_sync(self) -> Optional[SyncResult]:
        """Timer callback: never raises, failures are logged and retried next tick"""
        try:
            result = self.sync_service.sync_campaign_data()
        except Exception as e:
            logger.error(f"Scheduled campaign sync failed: {e}", exc_info=True)
            self._record(None, e)
            return None

        self._record(result, None)
        return result

    def trigger_sync(self) -> SyncResult:
        """Manual one-shot sync on the caller's thread; errors propagate"""
        logger.info("Manual campaign sync triggered")
        try:
            result = self.sync_service.sync_campaign_data()
        except Exception as e:
            self._record(None, e)
            raise

        self._record(result, None)
        return result

    def run_startup_sync(self) -> Optional[SyncResult]:
        """Run one sync at process startup, at most once per scheduler"""
        with self._lock:
            if self._startup_sync_done:
                logger.debug("Startup sync already ran")
                return None
            self._startup_sync_done = True

        logger.info("Running startup campaign sync")
        return self.run_scheduled_sync()


def main():
    """Main scheduler entry point"""
    import argparse

    from dotenv import load_dotenv

    from automation_core.cli import get_repository

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    parser = argparse.ArgumentParser(description='Campaign Automation Scheduler')
    parser.add_argument('--run-once', action='store_true',
                        help='Run one sync cycle and exit (for testing)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Show scheduled job without starting scheduler')
    args = parser.parse_args()

    config = AutomationConfig()

    # Dry run mode - show job and exit
    if args.dry_run:
        logger.info("=" * 60)
        logger.info("DRY RUN MODE - Scheduled Jobs")
        logger.info("=" * 60)
        logger.info(f"{JOB_NAME}: every {config.sync_interval_minutes} minute(s) ({config.scheduler_timezone})")
        logger.info(f"  - Fetch metrics for campaign {config.meta_campaign_id}")
        logger.info("  - Upsert campaign snapshot")
        logger.info("  - Evaluate active rules and execute actions")
        logger.info("=" * 60)
        sys.exit(0)

    sync_service = SyncService(get_repository(config), config=config)

    if args.run_once:
        logger.info("TEST MODE: Running campaign sync once")
        try:
            sync_service.sync_campaign_data()
        except Exception:
            sys.exit(1)
        sys.exit(0)

    sync_scheduler = SyncScheduler(sync_service, config)
    if config.sync_on_startup:
        sync_scheduler.run_startup_sync()

    scheduler = BlockingScheduler(timezone=config.scheduler_timezone)
    scheduler.add_job(
        sync_scheduler.run_scheduled_sync,
        IntervalTrigger(minutes=config.sync_interval_minutes, timezone=config.scheduler_timezone),
        id=JOB_ID,
        name=JOB_NAME,
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )

    logger.info("=" * 60)
    logger.info("Campaign Automation Scheduler started")
    logger.info(f"Campaign sync: every {config.sync_interval_minutes} minute(s) ({config.scheduler_timezone})")
    logger.info("=" * 60)

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")


if __name__ == '__main__':
    main()
