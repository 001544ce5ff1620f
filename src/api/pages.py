"""
HTML pages for the web completion flow.

Pages are small enough to build as strings; every interpolated value is
escaped. The verify page posts JSON to /api/verify from the browser.
"""

from html import escape

from src.domain.ports import IdentityRecord

_STYLE = """
body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
       background: #5865f2; min-height: 100vh; margin: 0; display: flex;
       align-items: center; justify-content: center; padding: 20px; }
.container { background: #fff; border-radius: 12px; padding: 40px; max-width: 500px;
             width: 100%; box-shadow: 0 20px 60px rgba(0, 0, 0, 0.3); text-align: center; }
h1 { color: #333; font-size: 26px; margin-bottom: 10px; }
p { color: #666; line-height: 1.5; }
.user-info { background: #f5f5f5; border-radius: 8px; padding: 15px; margin: 20px 0; text-align: left; }
.team-option { display: block; border: 2px solid #e0e0e0; border-radius: 8px; padding: 12px;
               margin: 10px 0; cursor: pointer; text-align: left; }
button { background: #5865f2; color: #fff; border: none; border-radius: 8px; padding: 14px;
         width: 100%; font-size: 16px; font-weight: 600; cursor: pointer; margin-top: 16px; }
button:disabled { background: #ccc; cursor: not-allowed; }
.message { margin-top: 20px; padding: 12px; border-radius: 8px; display: none; }
.message.success { background: #d4edda; color: #155724; display: block; }
.message.error { background: #f8d7da; color: #721c24; display: block; }
"""

_SCRIPT = """
<script>
document.getElementById('verifyForm').addEventListener('submit', async (event) => {
    event.preventDefault();
    const button = document.getElementById('submitBtn');
    const message = document.getElementById('message');
    const selected = document.querySelector('input[name="team"]:checked');
    button.disabled = true;
    button.textContent = 'Verifying...';
    try {
        const response = await fetch('/api/verify', {
            method: 'POST',
            headers: { 'Content-Type': 'application/json' },
            body: JSON.stringify({ code: %(code)s, team: selected ? selected.value : null }),
        });
        const data = await response.json();
        message.className = response.ok ? 'message success' : 'message error';
        message.textContent = response.ok ? data.message : (data.detail || 'Verification failed');
        if (response.ok) { button.textContent = 'Verified'; return; }
    } catch (err) {
        message.className = 'message error';
        message.textContent = 'Network error. Please try again.';
    }
    button.disabled = false;
    button.textContent = 'Complete Verification';
});
</script>
"""


def _layout(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(title)}</title>
    <style>{_STYLE}</style>
</head>
<body>
    <div class="container">
{body}
    </div>
</body>
</html>
"""


def _user_info(record: IdentityRecord) -> str:
    return (
        '<div class="user-info">'
        f"<p><strong>Username:</strong> {escape(record.display_name)}</p>"
        f"<p><strong>Email:</strong> {escape(record.email)}</p>"
        "</div>"
    )


def render_verification_page(record: IdentityRecord, teams: list[str]) -> str:
    """Team picker when teams are given, otherwise a single confirm button."""
    if teams:
        intro = "<p>Select your team to complete verification.</p>"
        options = "".join(
            f'<label class="team-option"><input type="radio" name="team" value="{escape(team)}" required> '
            f"{escape(team)}</label>"
            for team in teams
        )
    else:
        intro = "<p>Confirm your details to complete verification.</p>"
        options = ""

    # Codes are hex; anything else is dropped before embedding in the script
    code_literal = '"' + "".join(ch for ch in record.verification_code if ch.isalnum()) + '"'
    body = (
        "<h1>Verify Your Account</h1>"
        f"{intro}{_user_info(record)}"
        f'<form id="verifyForm">{options}'
        '<button type="submit" id="submitBtn">Complete Verification</button>'
        "</form>"
        '<div id="message" class="message"></div>'
        + _SCRIPT % {"code": code_literal}
    )
    return _layout("Verify Your Account", body)


def render_already_verified(record: IdentityRecord) -> str:
    team = f"<p><strong>Team:</strong> {escape(record.team_role)}</p>" if record.team_role else ""
    body = (
        "<h1>Already Verified</h1>"
        "<p>Your account is already verified. You have access to the server.</p>"
        f"{_user_info(record)}{team}"
    )
    return _layout("Already Verified", body)


def render_restricted() -> str:
    body = (
        "<h1>Access Restricted</h1>"
        "<p>Your access has been temporarily restricted. Please contact a moderator "
        "to reactivate your account.</p>"
    )
    return _layout("Access Restricted", body)


def render_error(title: str, message: str) -> str:
    return _layout(title, f"<h1>{escape(title)}</h1><p>{escape(message)}</p>")
