"""
Member-facing message texts: direct messages and the verification email.
"""

from dataclasses import dataclass
from html import escape

DEFAULT_WELCOME = (
    "👋 Welcome to the server!\n\n"
    "To gain access, you need to verify your work email address.\n\n"
    "Please reply to this message with your work email address "
    "(e.g., yourname@company.com).\n\n"
    "Your email must be from one of our approved company domains."
)

ALREADY_VERIFIED = "✅ You're already verified!"
ALREADY_PENDING = (
    "❌ You've already started the verification process. "
    "Please check your email for the verification link."
)
RESTRICTED = (
    "⚠️ Your access has been temporarily restricted. Please contact a moderator "
    "to reactivate your account. You cannot use the automatic verification system."
)
INVALID_FORMAT = "❌ That doesn't look like a valid email address. Please try again."
EMAIL_TAKEN = "❌ This email address is already registered. Each email can only be used once."
EMAIL_FAILED = "❌ Failed to send verification email. Please contact an administrator."
GENERIC_FAILURE = "❌ An error occurred. Please try again later."
RESET_NOTICE = (
    "Your verification has been reset by an administrator. Please send me your "
    "work email address to start the verification process again."
)
PURGE_NOTICE = (
    "Your data has been permanently deleted from our system. If you wish to "
    "rejoin in the future, you will need to complete the verification process again."
)
ROLES_DEGRADED = "Verified, but role assignment failed. Please contact a moderator."


def domain_not_approved(email: str) -> str:
    return (
        f"❌ Sorry, the domain for {email} is not approved. "
        "Please use your work email from an approved company domain."
    )


def verification_sent(email: str, team_selection: bool) -> str:
    text = (
        f"✅ Verification email sent to **{email}**!\n\n"
        "Please check your inbox and click the verification link."
    )
    if team_selection:
        return text + " You'll be asked to select your team, and then you'll have full access to the server."
    return text + " Once you verify, you'll have full access to the server."


def verification_complete(team: str) -> str:
    if team:
        return f"✅ Verification complete! Welcome to the {team} team. You now have access to the server."
    return "✅ Verification complete! You now have access to the server."


def manually_verified(team: str) -> str:
    if team:
        return (
            "✅ You have been manually verified by a moderator! "
            f"Welcome to the **{team}** team. You now have access to the server."
        )
    return "✅ You have been manually verified by a moderator! You now have access to the server."


def team_changed(old: str, new: str) -> str:
    return f"📝 Your team has been changed from **{old or 'none'}** to **{new}** by a moderator."


def restricted_notice(reason: str | None) -> str:
    text = "⚠️ Your server access has been temporarily restricted by a moderator."
    if reason:
        text += f"\n**Reason:** {reason}"
    return text + (
        "\n\nYou cannot use the automatic verification system. "
        "Please contact a moderator to restore your account."
    )


def unrestricted_notice(team: str) -> str:
    if team:
        return f"✅ Your server access has been restored by a moderator! Welcome back to the **{team}** team."
    return "✅ Your server access has been restored by a moderator! Welcome back."


@dataclass(frozen=True)
class EmailContent:
    subject: str
    text_body: str
    html_body: str


def verification_email(display_name: str, url: str, team_selection: bool) -> EmailContent:
    """Compose the multipart verification email."""
    steps = ["Confirm your email address"]
    if team_selection:
        steps.append("Select your team role")
    text_steps = "\n".join(f"{i}. {step}" for i, step in enumerate(steps, 1))
    html_steps = "".join(f"<li>{escape(step)}</li>" for step in steps)

    text_body = (
        f"Hello {display_name},\n\n"
        "Welcome to the server! Please verify your email address by clicking the link below:\n\n"
        f"{url}\n\n"
        f"This link will allow you to:\n{text_steps}\n\n"
        "Once you've completed these steps, you'll be granted access to the server.\n\n"
        "If you didn't request this verification, please ignore this email."
    )
    html_body = (
        "<!DOCTYPE html><html><head><meta charset=\"UTF-8\"></head>"
        "<body style=\"font-family: Arial, sans-serif; line-height: 1.6; color: #333;\">"
        f"<p>Hello <strong>{escape(display_name)}</strong>,</p>"
        "<p>Welcome to the server! Please verify your email address to complete your registration.</p>"
        f"<p><a href=\"{escape(url)}\">Verify My Email</a></p>"
        f"<p>Or copy and paste this link into your browser:<br><code>{escape(url)}</code></p>"
        f"<p><strong>This link will allow you to:</strong></p><ol>{html_steps}</ol>"
        "<p>If you didn't request this verification, please ignore this email.</p>"
        "</body></html>"
    )
    return EmailContent("Verify Your Account", text_body, html_body)
