import re
from html import escape
from typing import List, Optional, Sequence

from crm_reminders.schemas.reminder_schemas import DigestItem, FollowUpTask, LeadContact
from crm_reminders.services.email.email_service import EmailMessage
from crm_reminders.utils.timezone import format_date_label

BRAND_NAME = "LeadMarka"

_COLORS = {
    "accent": "#f97316",
    "dark": "#1f2937",
    "muted": "#6b7280",
    "border": "#e5e7eb",
    "whatsapp": "#25d366",
    "overdue_bg": "#fef3c7",
    "overdue_text": "#92400e",
}

_FONT = "'DM Sans', -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif"


def _clean_base_url(frontend_url: str) -> str:
    return (frontend_url or "").strip().rstrip("/")


def whatsapp_url(phone_number: Optional[str]) -> str:
    digits = re.sub(r"\D", "", phone_number or "")
    return f"https://wa.me/{digits}" if digits else ""


def _button(href: str, label: str, color: str) -> str:
    if not href:
        return ""
    return (
        f'<a href="{escape(href)}" style="display:inline-block;padding:12px 22px;'
        f"border-radius:10px;background:{color};color:#ffffff;font-family:{_FONT};"
        f'font-weight:700;text-decoration:none;">{escape(label)}</a>'
    )


def _layout(title: str, subtitle: str, body_html: str, cta_html: str, frontend_url: str) -> str:
    footer_link = (
        f'Open <a href="{escape(frontend_url)}" style="color:{_COLORS["accent"]};">'
        f"{BRAND_NAME}</a> to view all your follow-ups."
        if frontend_url
        else f"Open {BRAND_NAME} to view all your follow-ups."
    )
    return f"""<!doctype html>
<html>
  <body style="margin:0;padding:24px;background:#fafafa;font-family:{_FONT};color:{_COLORS["dark"]};">
    <div style="max-width:560px;margin:0 auto;background:#ffffff;border:1px solid {_COLORS["border"]};border-radius:14px;padding:24px;">
      <h1 style="margin:0 0 4px 0;font-size:22px;">{escape(title)}</h1>
      <p style="margin:0 0 16px 0;color:{_COLORS["muted"]};">{escape(subtitle)}</p>
      {body_html}
      <div style="margin-top:18px;">{cta_html}</div>
      <p style="margin-top:22px;padding-top:16px;border-top:1px solid {_COLORS["border"]};font-size:12px;color:{_COLORS["muted"]};">
        {footer_link}<br />{BRAND_NAME} - WhatsApp CRM
      </p>
    </div>
  </body>
</html>"""


def render_reminder_email(
    task: FollowUpTask, lead: LeadContact, frontend_url: str = ""
) -> EmailMessage:
    frontend_url = _clean_base_url(frontend_url)
    date_label = format_date_label(task.scheduled_date)
    time_label = task.scheduled_time
    chat_url = whatsapp_url(lead.phone_number)

    rows = [
        ("Phone", lead.phone_number or "-"),
        ("Date", date_label),
        ("Time", time_label),
    ]
    if task.note:
        rows.append(("Note", task.note))

    details = "".join(
        f'<div style="margin:8px 0 0 0;"><span style="color:{_COLORS["muted"]};">{escape(label)}</span><br />'
        f'<strong>{escape(value)}</strong></div>'
        for label, value in rows
    )
    body_html = (
        f'<div style="border:1px solid {_COLORS["border"]};border-left:6px solid {_COLORS["accent"]};'
        f'border-radius:12px;padding:16px;">'
        f'<div style="font-size:18px;font-weight:800;">{escape(lead.name)}</div>{details}</div>'
    )
    cta_html = (
        _button(chat_url, "Chat on WhatsApp", _COLORS["whatsapp"])
        if chat_url
        else _button(frontend_url, f"Open {BRAND_NAME}", _COLORS["accent"])
    )

    text_lines: List[Optional[str]] = [
        f"{BRAND_NAME} Follow-up reminder",
        "",
        "You have a follow-up scheduled:",
        "",
        f"Name: {lead.name or '-'}",
        f"Phone: {lead.phone_number or '-'}",
        f"Date: {date_label}",
        f"Time: {time_label}",
        f"Note: {task.note}" if task.note else None,
        "",
        f"Chat on WhatsApp: {chat_url}" if chat_url else None,
        f"Open {BRAND_NAME}: {frontend_url}" if frontend_url else None,
    ]

    return EmailMessage(
        subject=f"Reminder: Follow-up with {lead.name}",
        html=_layout(
            "Follow-up reminder",
            "You have a follow-up scheduled.",
            body_html,
            cta_html,
            frontend_url,
        ),
        text="\n".join(line for line in text_lines if line is not None),
    )


def _digest_section(title: str, lines: Sequence[str], background: str, accent: str, title_color: str) -> str:
    if not lines:
        return ""
    items = "".join(f'<div style="margin:6px 0;font-size:13px;">{line}</div>' for line in lines)
    return (
        f'<div style="margin-top:14px;background:{background};border:1px solid {_COLORS["border"]};'
        f'border-left:6px solid {accent};border-radius:12px;padding:14px;">'
        f'<div style="margin:0 0 8px 0;font-size:14px;font-weight:800;color:{title_color};">{escape(title)}</div>'
        f"{items}</div>"
    )


def render_digest_email(
    today: str,
    overdue: Sequence[DigestItem],
    due_today: Sequence[DigestItem],
    frontend_url: str = "",
) -> EmailMessage:
    frontend_url = _clean_base_url(frontend_url)
    total = len(overdue) + len(due_today)

    overdue_html = _digest_section(
        f"{len(overdue)} Overdue",
        [
            f'<strong>{escape(item.lead_name)}</strong>'
            f'<span style="color:{_COLORS["muted"]};"> &middot; Due {escape(item.scheduled_date.isoformat())}</span>'
            for item in overdue
        ],
        _COLORS["overdue_bg"],
        "#f59e0b",
        _COLORS["overdue_text"],
    )
    today_html = _digest_section(
        f"{len(due_today)} Today",
        [
            f'<strong>{escape(item.lead_name)}</strong>'
            f'<span style="color:{_COLORS["muted"]};"> &middot; {escape(item.scheduled_time)}</span>'
            for item in due_today
        ],
        "#f9fafb",
        _COLORS["accent"],
        _COLORS["dark"],
    )
    body_html = (
        f"<p style=\"margin:0;font-size:14px;\">You have <strong>{total}</strong> "
        f"follow-ups requiring your attention today.</p>{overdue_html}{today_html}"
    )

    text_lines: List[Optional[str]] = [
        f"{BRAND_NAME} Daily Summary ({today})",
        "",
        f"You have {total} follow-ups pending.",
    ]
    if overdue:
        text_lines += ["", f"{len(overdue)} overdue:"]
        text_lines += [f"- {item.lead_name} (due {item.scheduled_date.isoformat()})" for item in overdue]
    if due_today:
        text_lines += ["", f"{len(due_today)} today:"]
        text_lines += [f"- {item.lead_name} ({item.scheduled_time})" for item in due_today]
    if frontend_url:
        text_lines += ["", f"Open {BRAND_NAME}: {frontend_url}"]

    return EmailMessage(
        subject=f"Your {BRAND_NAME} Daily Summary - {total} follow-ups pending",
        html=_layout(
            "Good morning!",
            "Here's what needs your attention today.",
            body_html,
            _button(frontend_url, f"Open {BRAND_NAME}", _COLORS["accent"]),
            frontend_url,
        ),
        text="\n".join(line for line in text_lines if line is not None),
    )
