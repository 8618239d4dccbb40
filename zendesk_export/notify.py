"""Send the report-ready email via SMTP (uses STARTTLS)."""

import os
import smtplib
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from zendesk_export.errors import ConfigurationError

XLSX_SUBTYPE = "vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class SmtpNotifier:
    def __init__(self, sender, password, host="smtp.gmail.com", port=587, timeout=30):
        self.sender = sender
        self.password = password
        self.host = host
        self.port = port
        self.timeout = timeout

    @classmethod
    def from_config(cls, smtp_cfg):
        return cls(sender=smtp_cfg.sender, password=smtp_cfg.password, host=smtp_cfg.host, port=smtp_cfg.port)

    def build_message(self, window_id, location, recipients, attachment_path=None):
        """Report-ready message; the workbook is attached when a path is given."""
        msg = MIMEMultipart()
        msg['Subject'] = f"Zendesk Monthly Report - {window_id}"
        msg['From'] = self.sender
        msg['To'] = ", ".join(recipients)
        msg.attach(MIMEText(f"Export complete:\n{location}"))

        if attachment_path:
            with open(attachment_path, "rb") as f:
                part = MIMEApplication(f.read(), _subtype=XLSX_SUBTYPE)
            part.add_header("Content-Disposition", "attachment", filename=os.path.basename(attachment_path))
            msg.attach(part)
        return msg

    def send_report_ready(self, window_id, location, recipients, attachment_path=None):
        if not all([self.sender, self.password]):
            raise ConfigurationError("Missing SMTP configuration. Please set GMAIL_SENDER and GMAIL_APP_PASSWORD.")

        msg = self.build_message(window_id, location, recipients, attachment_path)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            server.login(self.sender, self.password)
            server.sendmail(self.sender, list(recipients), msg.as_string())
        print(f"-> Notification sent to {len(recipients)} recipient(s)")
