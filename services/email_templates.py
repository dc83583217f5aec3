"""HTML bodies for transactional mails. Content is opaque to the billing logic."""
from datetime import datetime
from html import escape


def _layout(title: str, body: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px;">
        <h2>{escape(title)}</h2>
        {body}
        <hr style="border:none; border-top:1px solid #eee; margin: 24px 0;">
        <p>Best regards,<br><strong>The TeamFlow Team</strong></p>
    </div>
    """


def _day(moment: datetime) -> str:
    return moment.strftime("%a %b %d %Y")


def trial_started(name: str, plan: str, trial_days: int, trial_end: datetime) -> str:
    return _layout(
        "Your free trial has started",
        f"<p>Hi {escape(name)},</p>"
        f"<p>Your <strong>{escape(plan)}</strong> trial is active for {trial_days} days "
        f"and ends on <strong>{_day(trial_end)}</strong>.</p>",
    )


def payment_receipt(name: str, plan: str, amount: float, transaction_id: str, billing_date: datetime, invoice_url: str) -> str:
    link = f'<p><a href="{escape(invoice_url)}">View invoice</a></p>' if invoice_url else ""
    return _layout(
        "Payment received",
        f"<p>Hi {escape(name)},</p>"
        f"<p>We received <strong>{amount:.2f}</strong> for your {escape(plan)} plan on {_day(billing_date)}.</p>"
        f"<p>Transaction: {escape(transaction_id)}</p>{link}",
    )


def payment_failed(name: str, plan: str, billing_date: datetime, attempts: int, max_attempts: int) -> str:
    return _layout(
        "Payment failed",
        f"<p>Hi {escape(name)},</p>"
        f"<p>We could not charge your card for the {escape(plan)} plan ({_day(billing_date)}).</p>"
        f"<p>Attempt {attempts} of {max_attempts}. Please update your payment method to avoid cancellation.</p>",
    )


def subscription_cancelled(name: str, plan: str, reason: str, cancel_date: datetime) -> str:
    reason_html = f"<p>Reason: {escape(reason)}</p>" if reason else ""
    return _layout(
        "Subscription cancelled",
        f"<p>Hi {escape(name)},</p>"
        f"<p>Your {escape(plan)} subscription was cancelled on {_day(cancel_date)}.</p>{reason_html}",
    )


def subscription_reminder(name: str, plan: str, end_date: datetime, days: int) -> str:
    unit = "day" if days == 1 else "days"
    return _layout(
        "Your billing period is ending soon",
        f"<p>Hi {escape(name)},</p>"
        f"<p>Your {escape(plan)} period ends in {days} {unit}, on <strong>{_day(end_date)}</strong>.</p>",
    )


def task_due(name: str, organization: str, task_title: str, due_date: datetime) -> str:
    return _layout(
        "Task due soon",
        f"<p>Hi {escape(name)},</p>"
        f"<p>Your task <strong>{escape(task_title)}</strong> in {escape(organization)} is due {_day(due_date)}.</p>",
    )


def organization_invite(inviter: str, organization: str, role: str, invite_url: str, valid_days: int) -> str:
    return _layout(
        f"You're invited to join {organization}",
        f"<p><strong>{escape(inviter)}</strong> invited you to <strong>{escape(organization)}</strong> "
        f"as <strong>{escape(role.title())}</strong>.</p>"
        f'<p style="text-align: center; margin: 20px 0;"><a href="{escape(invite_url)}">Accept Invitation</a></p>'
        f"<p><small>This invitation will expire in {valid_days} days.</small></p>",
    )
