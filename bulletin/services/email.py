import html
import logging
import os
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List

from beanie.operators import In

from bulletin.config import settings
from bulletin.models.announcement import Announcement
from bulletin.models.employee import Employee

logger = logging.getLogger(__name__)


class EmailService:
    """Service for announcement email notifications"""

    def __init__(self):
        self.smtp_host = settings.SMTP_HOST
        self.smtp_port = settings.SMTP_PORT
        self.smtp_user = settings.SMTP_USER
        self.smtp_password = settings.SMTP_PASSWORD
        self.email_from = settings.EMAIL_FROM

        # Path to templates
        self.template_dir = os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates", "emails")

    def _get_template(self, template_name):
        """Read an HTML template from file"""
        try:
            with open(os.path.join(self.template_dir, f"{template_name}.html"), "r", encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            logger.error("Error reading email template %s: %s", template_name, e)
            return None

    async def send_email(self, to_email, subject, html_content):
        """Send one email (logged only if no credentials are configured)"""
        if not self.smtp_user or not self.smtp_password:
            logger.info("MOCK EMAIL to %s: %s (%d bytes)", to_email, subject, len(html_content))
            return True

        try:
            msg = MIMEMultipart()
            msg['From'] = self.email_from
            msg['To'] = to_email
            msg['Subject'] = subject

            msg.attach(MIMEText(html_content, 'html'))

            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

            return True
        except Exception as e:
            logger.warning("Failed to send email to %s: %s", to_email, e)
            return False

    def render_announcement(self, announcement: Announcement, recipient_name: str):
        template = self._get_template("announcement")
        if not template:
            return f"<p>{html.escape(announcement.created_by_name)} posted: {html.escape(announcement.title)}</p>"

        category = announcement.category.label or announcement.category.name.value
        content = template.replace("{{name}}", html.escape(recipient_name))
        content = content.replace("{{sender_name}}", html.escape(announcement.created_by_name or "Someone"))
        content = content.replace("{{category}}", html.escape(category))
        content = content.replace("{{title}}", html.escape(announcement.title))
        content = content.replace("{{description}}", html.escape(announcement.description))
        content = content.replace("{{expires_at}}", announcement.expires_at.strftime("%d %b, %Y %H:%M UTC"))
        content = content.replace("{{announcement_url}}", f"{settings.FRONTEND_URL}/announcements/{announcement.id}")
        content = content.replace("{{year}}", str(datetime.now().year))
        return content

    async def send_announcement_emails(self, announcement: Announcement, recipient_ids: List[str]) -> int:
        """Email every recipient that has an address; returns the number sent"""
        if not recipient_ids:
            return 0

        recipients = await Employee.find(In(Employee.employee_id, recipient_ids)).to_list()
        subject = f"New Announcement: {announcement.title}"
        sent = 0
        for employee in recipients:
            content = self.render_announcement(announcement, employee.full_name)
            if await self.send_email(employee.email, subject, content):
                sent += 1

        logger.info("Announcement %s emailed to %d/%d recipients", announcement.id, sent, len(recipient_ids))
        return sent


# Global instance
email_service = EmailService()
