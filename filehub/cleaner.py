from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler


def start_session_reaper(sessions, idle_hours, logger):
    scheduler = BackgroundScheduler()

    def _job():
        try:
            pruned = sessions.prune_idle(timedelta(hours=idle_hours))
            if pruned:
                logger.info("event=sessions_pruned count=%s remaining=%s", pruned, len(sessions))
        except Exception as e:
            logger.error("Unexpected error in session reaper job: %s", str(e))

    scheduler.add_job(_job, "interval", hours=1)
    scheduler.start()
    return scheduler
