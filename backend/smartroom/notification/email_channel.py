"""
邮件通知渠道 - SMTP 发送客人欢迎邮件
"""
import html
import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Dict, List, Optional

from smartroom.config import settings
from smartroom.notification.channel import INotificationChannel

logger = logging.getLogger(__name__)


class EmailNotConfigured(RuntimeError):
    """SMTP 账号、密码或发件人未配置"""

    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"SMTP not configured. Missing: {', '.join(missing)}")


class EmailChannel(INotificationChannel):
    """SMTP 邮件通知渠道"""

    def __init__(
        self,
        smtp_host: str = "localhost",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        sender_email: str = "",
        sender_name: str = "",
        use_tls: bool = True,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.sender_email = sender_email or smtp_user
        self.sender_name = sender_name
        self.use_tls = use_tls

    @classmethod
    def from_settings(cls) -> "EmailChannel":
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_user=settings.SMTP_USER,
            smtp_password=settings.SMTP_PASSWORD,
            sender_email=settings.SMTP_FROM or "",
            sender_name=settings.SMTP_FROM_NAME,
            use_tls=settings.SMTP_USE_TLS,
        )

    def missing_settings(self) -> List[str]:
        missing = []
        if not self.smtp_user:
            missing.append("SMTP_USER")
        if not self.smtp_password:
            missing.append("SMTP_PASSWORD")
        if not self.sender_email:
            missing.append("SMTP_FROM")
        return missing

    def send(
        self,
        recipient: str,
        subject: str,
        content: str,
        extra: Optional[Dict] = None,
    ) -> bool:
        """发送邮件

        Args:
            recipient: 收件人邮箱地址
            subject: 邮件标题
            content: 邮件内容
            extra: 可选参数 (content_type: 'html'|'plain', recipient_name)

        Raises:
            EmailNotConfigured: SMTP 配置不完整
        """
        missing = self.missing_settings()
        if missing:
            raise EmailNotConfigured(missing)

        extra = extra or {}
        content_type = extra.get("content_type", "plain")

        msg = MIMEMultipart()
        msg["From"] = formataddr((self.sender_name, self.sender_email)) if self.sender_name else self.sender_email
        recipient_name = extra.get("recipient_name")
        msg["To"] = formataddr((recipient_name, recipient)) if recipient_name else recipient
        msg["Subject"] = subject
        msg.attach(MIMEText(content, content_type, "utf-8"))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                if self.use_tls:
                    server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {recipient}: {e}")
            return False

        logger.info(f"Email sent to {recipient}: {subject}")
        return True

    def get_channel_type(self) -> str:
        return "email"


WELCOME_SUBJECT = "Welcome to {hotel} - Your Room Access Details"


def render_welcome_email(full_name: str, room_number: str, access_code: str, email: str,
                         hotel_name: Optional[str] = None) -> str:
    """客人欢迎邮件正文（所有变量都做 HTML 转义）"""
    hotel = html.escape(hotel_name or settings.HOTEL_NAME)
    name = html.escape(full_name)
    room = html.escape(room_number)
    code = html.escape(access_code)
    login = html.escape(email)
    year = datetime.now().year
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"></head>
<body style="margin:0;padding:0;font-family:'Segoe UI',Tahoma,sans-serif;background-color:#f4f4f4;">
  <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="padding:40px 20px;">
    <tr><td align="center">
      <table role="presentation" width="600" cellspacing="0" cellpadding="0" style="background:#ffffff;border-radius:12px;">
        <tr><td style="background:#1a472a;padding:32px;text-align:center;">
          <h1 style="color:#d4af37;margin:0;font-size:28px;">{hotel}</h1>
        </td></tr>
        <tr><td style="padding:32px 30px 16px 30px;">
          <h2 style="color:#1a472a;margin:0 0 12px 0;">Welcome, {name}!</h2>
          <p style="color:#555555;font-size:16px;line-height:1.6;margin:0;">
            Your smart room is ready. Below are your access credentials.
          </p>
        </td></tr>
        <tr><td style="padding:0 30px 24px 30px;">
          <p style="margin:0;color:#6c757d;font-size:14px;">Room Number</p>
          <p style="margin:0 0 12px 0;color:#1a472a;font-size:24px;font-weight:700;">{room}</p>
          <p style="margin:0;color:#6c757d;font-size:14px;">Access Code (Password)</p>
          <p style="margin:0 0 12px 0;color:#d4af37;font-size:24px;font-weight:700;letter-spacing:3px;">{code}</p>
          <p style="margin:0;color:#6c757d;font-size:14px;">Login Email</p>
          <p style="margin:0;color:#1a472a;font-size:16px;">{login}</p>
        </td></tr>
        <tr><td style="padding:0 30px 24px 30px;color:#555555;font-size:14px;line-height:1.8;">
          Sign in with your room number or email address and use the access code as your password.
          Please keep the code confidential.
        </td></tr>
        <tr><td style="background:#1a472a;padding:20px;text-align:center;color:#a8c5b5;font-size:12px;">
          &copy; {year} {hotel}. This is an automated message.
        </td></tr>
      </table>
    </td></tr>
  </table>
</body>
</html>
"""
