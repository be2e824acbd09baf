"""
Transactional email through the Resend HTTP API.

Senders never raise: failures are logged and reported through EmailResult.
Without RESEND_API_KEY messages are only logged (development).
"""
import html
import logging
import os
from dataclasses import dataclass

import httpx

from libs.common.qr import app_url

logger = logging.getLogger(__name__)

APP_NAME = "Corbez"
RESEND_API_URL = "https://api.resend.com/emails"
DEFAULT_FROM = "Corbez <noreply@corbez.com>"


@dataclass
class EmailResult:
    success: bool
    id: str | None = None
    error: str | None = None


def _layout(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
  <body style="font-family: sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="color: #2563eb;">{APP_NAME}</h1>
    {body}
    <p style="color: #94a3b8; font-size: 12px;">&copy; {APP_NAME}. Corporate dining benefits.</p>
  </body>
</html>"""


def _button(url: str, label: str) -> str:
    return (
        f'<p style="text-align: center; margin: 30px 0;"><a href="{html.escape(url)}" '
        f'style="background: #2563eb; color: white; padding: 14px 32px; text-decoration: none; border-radius: 8px;">'
        f"{html.escape(label)}</a></p>"
    )


class Mailer:
    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("RESEND_API_KEY", "")
        self.from_email = from_email or os.getenv("EMAIL_FROM") or DEFAULT_FROM
        self._transport = transport

    async def send(self, to: str, subject: str, body_html: str) -> EmailResult:
        if not self.api_key:
            logger.warning("[Email] RESEND_API_KEY is not set - email not sent")
            logger.info("[Email] to: %s, subject: %s", to, subject)
            return EmailResult(success=True, id="dev-mode")

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=10.0) as client:
                response = await client.post(
                    RESEND_API_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"from": self.from_email, "to": [to], "subject": subject, "html": body_html},
                )
            if response.status_code >= 400:
                logger.error("[Email] send failed - to: %s, status: %s, body: %s", to, response.status_code, response.text)
                return EmailResult(success=False, error=response.text or f"HTTP {response.status_code}")
            email_id = response.json().get("id")
            logger.info("[Email] sent - to: %s, id: %s", to, email_id)
            return EmailResult(success=True, id=email_id)
        except httpx.HTTPError as e:
            logger.error("[Email] send failed - to: %s, error: %s", to, e)
            return EmailResult(success=False, error=str(e))

    async def send_verification_email(self, email: str, token: str, first_name: str | None = None) -> EmailResult:
        url = f"{app_url()}/verify-email?token={token}"
        name = first_name or email.split("@")[0]
        body = (
            f"<h2>Hi {html.escape(name)}!</h2>"
            f"<p>Thanks for signing up for {APP_NAME}. Please verify your email address to access your corporate benefits.</p>"
            f"{_button(url, 'Verify Email')}"
            "<p>This link expires in 24 hours.</p>"
        )
        return await self.send(email, f"Verify your email for {APP_NAME}", _layout("Verify your email", body))

    async def send_welcome_email(self, email: str, first_name: str, role: str) -> EmailResult:
        body = (
            f"<h2>Welcome, {html.escape(first_name)}!</h2>"
            f"<p>Your email is verified and your {html.escape(role.lower().replace('_', ' '))} account is ready.</p>"
            f"{_button(f'{app_url()}/dashboard', 'Go to Dashboard')}"
        )
        return await self.send(email, f"Welcome to {APP_NAME}!", _layout("Welcome", body))

    async def send_password_reset_email(self, email: str, token: str, first_name: str | None = None) -> EmailResult:
        url = f"{app_url()}/reset-password?token={token}"
        name = first_name or email.split("@")[0]
        body = (
            f"<h2>Hi {html.escape(name)},</h2>"
            "<p>We received a request to reset your password.</p>"
            f"{_button(url, 'Reset Password')}"
            "<p>This link expires in 1 hour. If you did not request a reset, ignore this email.</p>"
        )
        return await self.send(email, f"Reset your {APP_NAME} password", _layout("Reset your password", body))

    async def send_invite_email(
        self,
        email: str,
        invite_code: str,
        company_name: str,
        inviter_name: str | None = None,
    ) -> EmailResult:
        url = f"{app_url()}/register?invite={invite_code}"
        inviter = f"{html.escape(inviter_name)} invited you" if inviter_name else "You have been invited"
        body = (
            f"<p>{inviter} to join <strong>{html.escape(company_name)}</strong> on {APP_NAME}.</p>"
            f"<p>Your invite code: <strong>{html.escape(invite_code)}</strong></p>"
            f"{_button(url, 'Accept Invite')}"
        )
        return await self.send(
            email,
            f"You're invited to join {company_name} on {APP_NAME}",
            _layout("Company invite", body),
        )

    async def send_referral_invite_email(self, email: str, referrer_name: str, referral_code: str) -> EmailResult:
        url = f"{app_url()}/register?ref={referral_code}"
        body = (
            f"<p>{html.escape(referrer_name)} thinks you'd love {APP_NAME}: exclusive restaurant discounts for corporate employees.</p>"
            f"{_button(url, 'Join Now')}"
        )
        return await self.send(
            email,
            f"{referrer_name} invited you to join {APP_NAME}",
            _layout("Referral invite", body),
        )

    async def send_merchant_approved_email(self, email: str, business_name: str) -> EmailResult:
        body = (
            f"<h2>{html.escape(business_name)} is approved!</h2>"
            "<p>Your restaurant is now live and can start accepting employee discounts.</p>"
            f"{_button(f'{app_url()}/dashboard/merchant', 'Open Dashboard')}"
        )
        return await self.send(email, f"Your {APP_NAME} merchant account is approved", _layout("Approved", body))

    async def send_merchant_rejected_email(self, email: str, business_name: str, reason: str) -> EmailResult:
        body = (
            f"<h2>Update on {html.escape(business_name)}</h2>"
            "<p>We were unable to approve your merchant account at this time.</p>"
            f"<p><strong>Reason:</strong> {html.escape(reason)}</p>"
        )
        return await self.send(email, f"Your {APP_NAME} merchant application", _layout("Application update", body))

    async def send_merchant_referral_invitation_email(
        self,
        email: str,
        referrer_business_name: str,
        referred_business_name: str,
        contact_name: str | None = None,
        reward_months: int = 9,
    ) -> EmailResult:
        url = f"{app_url()}/for-restaurants?ref=merchant"
        greeting = f"Hi {html.escape(contact_name)}," if contact_name else "Hi there,"
        body = (
            f"<p>{greeting}</p>"
            f"<p>{html.escape(referrer_business_name)} recommended {APP_NAME} for "
            f"<strong>{html.escape(referred_business_name)}</strong>.</p>"
            f"<p>Join now and get {reward_months} months free.</p>"
            f"{_button(url, 'Learn More')}"
        )
        return await self.send(
            email,
            f"{referrer_business_name} recommended {APP_NAME} for {referred_business_name}",
            _layout("Restaurant referral", body),
        )
