import logging
import smtplib
from email.mime.text import MIMEText

logger = logging.getLogger(__name__)


class SmtpOtpSender:
    """Delivers OTP codes over SMTP with STARTTLS."""

    def __init__(self, server, port, username, password, from_email, expiry_minutes=10,
                 cooldown_minutes=60):
        self.server = server
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email or username
        self.expiry_minutes = expiry_minutes
        self.cooldown_minutes = cooldown_minutes

    @classmethod
    def from_config(cls, config):
        return cls(
            server=config["SMTP_SERVER"],
            port=int(config["SMTP_PORT"]),
            username=config.get("EMAIL_USER"),
            password=config.get("EMAIL_PASS"),
            from_email=config.get("FROM_EMAIL"),
            expiry_minutes=int(config["OTP_EXPIRY_SECONDS"]) // 60,
            cooldown_minutes=int(config["OTP_COOLDOWN_SECONDS"]) // 60,
        )

    def build_message(self, to_email, otp):
        msg = MIMEText(
            f"Your one time OTP is: {otp}. Ensure you use this OTP within "
            f"{self.expiry_minutes} mins or else you will have to wait "
            f"{self.cooldown_minutes} mins to request another one."
        )
        msg["Subject"] = "Your Voting OTP"
        msg["From"] = self.from_email
        msg["To"] = to_email
        return msg

    def __call__(self, to_email, otp):
        msg = self.build_message(to_email, otp)
        with smtplib.SMTP(self.server, self.port, timeout=30) as server:
            server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)
        logger.info("OTP email sent to %s", to_email)
