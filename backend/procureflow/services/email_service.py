"""
RFP dispatch emails: HTML rendering and delivery through Resend.
Without RESEND_API_KEY the send is logged and skipped (nothing leaves the process).
"""
import logging
import os
from typing import Any, Optional

from jinja2 import Environment, select_autoescape

from procureflow.models.rfp import RFP
from procureflow.models.vendor import Vendor

logger = logging.getLogger(__name__)

RFP_FROM_EMAIL = os.getenv("RFP_FROM_EMAIL", "procurement@example.com")
RESEND_INBOUND_EMAIL = os.getenv("RESEND_INBOUND_EMAIL", "proposals@example.com")

_env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))

RFP_EMAIL_TEMPLATE = _env.from_string("""\
<h2>Request for Proposal: {{ rfp.title }}</h2>
<p>Dear {{ vendor.name }},</p>
<p>{{ rfp.description }}</p>
<h3>Key Requirements:</h3>
<ul>
    <li><strong>Budget:</strong> {{ budget }}</li>
    <li><strong>Deadline:</strong> {{ deadline }}</li>
{%- if payment_terms %}
    <li><strong>Payment terms:</strong> {{ payment_terms }}</li>
{%- endif %}
{%- if warranty %}
    <li><strong>Warranty:</strong> {{ warranty }}</li>
{%- endif %}
</ul>
{%- if items %}
<h3>Required Items:</h3>
<ul>
{%- for item in items %}
    <li>{{ item.quantity }} x {{ item.name }}{% if item.specifications %} ({{ item.specifications | join(", ") }}){% endif %}</li>
{%- endfor %}
</ul>
{%- endif %}
<p>Please review the requirements and submit your proposal to: {{ inbound_email }}</p>
<p><strong>IMPORTANT:</strong> For tracking, please include the line "RFP-ID: {{ rfp.id }}" in the body of your reply.</p>
""")


class EmailDeliveryError(Exception):
    pass


def _format_budget(budget: Optional[float]) -> str:
    if not budget:
        return "TBD"
    return f"${budget:,.2f}".replace(".00", "")


def rfp_subject(rfp: RFP) -> str:
    return f"RFP: {rfp.title} - Response Required"


def render_rfp_email(rfp: RFP, vendor: Vendor) -> str:
    requirements: dict[str, Any] = rfp.requirements if isinstance(rfp.requirements, dict) else {}
    items = [i for i in (requirements.get("required_items") or []) if isinstance(i, dict)]
    return RFP_EMAIL_TEMPLATE.render(
        rfp=rfp,
        vendor=vendor,
        budget=_format_budget(rfp.budget),
        deadline=rfp.deadline.date().isoformat() if rfp.deadline else "TBD",
        payment_terms=requirements.get("payment_terms"),
        warranty=requirements.get("warranty"),
        items=items,
        inbound_email=RESEND_INBOUND_EMAIL,
    )


def send_email(to: str, subject: str, html: str) -> Optional[str]:
    """Send one email. Returns the provider message id, or None when delivery is disabled."""
    api_key = os.getenv("RESEND_API_KEY", "").strip()
    if not api_key:
        logger.info("Email to %s not sent: no RESEND_API_KEY (subject=%r)", to, subject)
        return None
    import resend

    resend.api_key = api_key
    try:
        result = resend.Emails.send({
            "from": RFP_FROM_EMAIL,
            "to": [to],
            "subject": subject,
            "html": html,
        })
    except Exception as e:
        logger.error("Error sending email to %s: %s", to, e)
        raise EmailDeliveryError(f"Failed to send email to {to}") from e
    message_id = result.get("id") if isinstance(result, dict) else getattr(result, "id", None)
    logger.info("Email sent to %s id=%s", to, message_id)
    return message_id


def send_rfp_to_vendor(rfp: RFP, vendor: Vendor) -> Optional[str]:
    return send_email(vendor.email, rfp_subject(rfp), render_rfp_email(rfp, vendor))
