import logging

import apprise

from launchpad.core.config import get_settings
from launchpad.models import Job

logger = logging.getLogger(__name__)


class NotificationService:
    def send_notification(self, message: str, title: str = "Launchpad Alert") -> bool:
        settings = get_settings()
        if not settings.APPRISE_URL:
            return False

        apobj = apprise.Apprise()

        # Support both direct service URLs (tgram://) and config URLs (http://)
        config = apprise.AppriseConfig()
        if config.add(settings.APPRISE_URL):
            apobj.add(config)
        else:
            apobj.add(settings.APPRISE_URL)

        return bool(apobj.notify(body=message, title=title))

    def send_job_notification(self, job: Job, template_name: str) -> bool:
        """Sends a job outcome alert if the configured policy asks for it.

        Failures to deliver are logged; they never change the job.
        """
        settings = get_settings()
        status = job.status
        wanted = (status == "success" and settings.NOTIFY_ON_SUCCESS) or (
            status == "failed" and settings.NOTIFY_ON_FAILURE
        )
        if not wanted:
            return False

        emoji = "✅" if status == "success" else "🚨"
        duration = "Unknown"
        if job.started_at and job.finished_at:
            duration = str(job.finished_at - job.started_at).split('.')[0]

        msg = (
            f"{emoji} Template: {template_name} (job #{job.id})\n"
            f"Status: {status.upper()}\n"
            f"Duration: {duration}\n"
            f"Return Code: {job.return_code}\n"
            f"Launched By: {job.launched_by or 'N/A'}\n"
            f"Started: {job.started_at.strftime('%Y-%m-%d %H:%M:%S') if job.started_at else 'N/A'}\n"
            f"Finished: {job.finished_at.strftime('%Y-%m-%d %H:%M:%S') if job.finished_at else 'N/A'}"
        )
        try:
            return self.send_notification(msg, title=f"Launchpad: {template_name} [{status.upper()}]")
        except Exception as e:
            logger.error(f"Failed to send notification for job {job.id}: {e}")
            return False
