"""Subjects and bodies for the tasks and notes the automation writes to Simpro.

Task subjects double as business keys: an existing task with the exact same
subject means the work was already done, so every subject embeds the job or
quote number it belongs to.
"""

from __future__ import annotations

from html import escape

from src.scheduling import to_date_string
from src.schemas.renewals import RenewalSchedule
from src.schemas.simpro import JobLinkInfo, QuoteAutomationView

SIGNATURE = "Dacha SSI Limited"

_DIV_OPEN = '<div style="font-family: Arial, sans-serif; font-size: 10pt; line-height: 1.4;">'


def _job_ref(job: JobLinkInfo) -> str:
    return f"Job #{job.display_number}"


# Subjects

def conversion_task_subject(job: JobLinkInfo) -> str:
    return f"Maintenance Contract Included – Review Required - {_job_ref(job)}"


def completion_task_subject(job: JobLinkInfo) -> str:
    return f"Job Completed – Maintenance Contract Activated & Renewal Alerts Scheduled - {_job_ref(job)}"


def quote_review_subject(quote: QuoteAutomationView) -> str:
    return f"Quote review required: #{quote.quote_number or quote.quote_id}"


_REMINDER_SUBJECTS = {
    3: "Upcoming Maintenance Renewal – Advance Notice",
    2: "Maintenance Contract Renewal – Action Required Soon",
    1: "Final Reminder – Maintenance Contract Renewal Due",
    0: "Maintenance Contract Expired – Coverage Status Update",
}


def reminder_task_subject(job: JobLinkInfo, months_before: int) -> str:
    return f"{_REMINDER_SUBJECTS.get(months_before, _REMINDER_SUBJECTS[1])} - {_job_ref(job)}"


# Note markers

def tag_note_marker(job: JobLinkInfo, tag_id: int) -> str:
    return f"[MC_AUTOMATION:TAG:{tag_id}:JOB:{job.job_id}]"


def completion_note_marker(job: JobLinkInfo, schedule: RenewalSchedule) -> str:
    return f"[MC_AUTOMATION:COMPLETION:JOB:{job.job_id}:{to_date_string(schedule.start_date)}]"


# Task descriptions

def build_conversion_task_description(job: JobLinkInfo) -> str:
    details = [f"Job: <strong>#{escape(job.display_number)}</strong>"]
    if job.quote_id:
        details.append(f"Quote ID: {escape(job.quote_id)}")
    if job.customer_name:
        details.append(f"Customer: {escape(job.customer_name)}")
    if job.site_name:
        details.append(f"Site: {escape(job.site_name)}")
    return (
        f"{_DIV_OPEN}"
        "<p><strong>Maintenance Contract Automation</strong></p>"
        "<p>This job was converted from a quote flagged with a maintenance contract.</p>"
        "<hr/>"
        f"<p><strong>Details</strong><br/>{'<br/>'.join(details)}</p>"
        "<p><strong>Action required</strong><br/>"
        "Please review the job and quote for maintenance details and confirm the renewal "
        "value and customer contact details are correct.</p>"
        "</div>"
    )


def build_completion_task_description(
    job: JobLinkInfo,
    schedule: RenewalSchedule,
    maintenance_value: str = "TBC",
) -> str:
    t3, t2, t1 = (to_date_string(r.date) for r in schedule.reminders[:3])
    return (
        f"{_DIV_OPEN}"
        "<p>Hello Team,</p>"
        f"<p><strong>Job {escape(job.display_number)}</strong> has been marked as <strong>Completed</strong>.</p>"
        "<p>This job includes an annual maintenance contract, which is now active from the job completion date.</p>"
        "<hr/>"
        "<p><strong>Maintenance Contract Details</strong><br/>"
        f"Customer: {escape(job.customer_name or 'Customer')}<br/>"
        f"Site: {escape(job.site_name)}<br/>"
        f"Maintenance Start Date: {to_date_string(schedule.start_date)}<br/>"
        f"Maintenance End Date (Renewal Due): {to_date_string(schedule.renewal_due_date)}<br/>"
        f"Annual Maintenance Value: £{escape(maintenance_value)}<br/>"
        "Year 1 Status: Included with installation (100% discounted)</p>"
        "<hr/>"
        "<p><strong>Automation Status</strong><br/>"
        "Renewal reminder tasks will be created by the daily runner on:<br/>"
        f"- T-3 months: {t3}<br/>"
        f"- T-2 months: {t2}<br/>"
        f"- T-1 month: {t1}</p>"
        "<p>No further action is required unless the maintenance value or customer contact details change.</p>"
        f"<p>Regards,<br/>{SIGNATURE} – Automation Notification</p>"
        "</div>"
    )


def build_quote_review_description(
    quote: QuoteAutomationView,
    trigger_label: str,
    yes_value: str,
    assignee_name: str = "",
) -> str:
    number = quote.quote_number or quote.quote_id
    customer = f" for {quote.customer_name}" if quote.customer_name else ""
    lines = [
        f"Automated flag triggered (custom field {trigger_label or 'unknown'} = {yes_value}).",
        f"Please review quote #{number}{customer}.",
        f"Quote ID: {quote.quote_id}",
    ]
    if assignee_name:
        lines.append(f"Assignee: {assignee_name}")
    return "\n".join(lines) + "\n"


_REMINDER_BODIES = {
    3: (
        "We're writing to let you know that the 12-month maintenance period for your system "
        "installed under Job {job_number} at {site_name} is due to expire on {renewal_date}.\n\n"
        "Your first year of maintenance was included as part of your original installation. "
        "We're providing advance notice so you have time to review renewal options for Year 2.\n\n"
        "Annual Maintenance Cost: £{maintenance_value}\n"
        "Coverage Period: {renewal_date} – {renewal_end_date}\n\n"
        "We'll be in touch again closer to the renewal date, but please contact us if you'd like "
        "to proceed sooner or have any questions.\n\n"
    ),
    2: (
        "This is a reminder that the maintenance contract for your system at {site_name} is due "
        "for renewal on {renewal_date}.\n\n"
        "Renewing your maintenance ensures:\n\n"
        "Continued system support\n"
        "Priority response\n"
        "Ongoing compliance and performance checks\n\n"
        "Annual Maintenance Cost: £{maintenance_value}\n"
        "Renewal Date: {renewal_date}\n\n"
        "If you would like to renew, please reply to this email and we will arrange the renewal documentation.\n\n"
    ),
    1: (
        "Your maintenance contract for {site_name} will expire on {renewal_date}.\n\n"
        "To avoid any lapse in support or maintenance coverage, please confirm whether you wish "
        "to proceed with renewal.\n\n"
        "Annual Maintenance Cost: £{maintenance_value}\n\n"
        "If we do not hear from you before the renewal date, maintenance coverage may lapse.\n\n"
        "Please reply to this email or contact us if you would like to proceed.\n\n"
    ),
    0: (
        "We're writing to confirm that the maintenance contract for {site_name} expired on {renewal_date}.\n\n"
        "At present, no renewal has been confirmed and the system is no longer covered under an "
        "active maintenance agreement.\n\n"
        "If you would like to reinstate maintenance coverage or discuss options, please contact us "
        "and we'll be happy to assist.\n\n"
    ),
}


def build_reminder_task_description(
    job: JobLinkInfo,
    schedule: RenewalSchedule,
    months_before: int,
    maintenance_value: str = "TBC",
) -> str:
    body = _REMINDER_BODIES.get(months_before, _REMINDER_BODIES[1]).format(
        job_number=job.display_number,
        site_name=job.site_name,
        renewal_date=to_date_string(schedule.renewal_due_date),
        renewal_end_date=to_date_string(schedule.renewal_end_date),
        maintenance_value=maintenance_value,
    )
    reminder = "Expiry/Lapsed" if months_before == 0 else f"T-{months_before} months"
    return (
        "COPY/PASTE EMAIL TEMPLATE:\n\n"
        f"Hello {job.customer_name or 'Customer'},\n\n"
        f"{body}"
        f"Kind regards,\n{SIGNATURE}\n\n"
        "---\n"
        "Internal:\n"
        f"Job ID: {job.job_id}\n"
        f"Reminder schedule: {reminder}\n"
    )


# Audit notes

def build_tag_audit_note(job: JobLinkInfo, tag_id: int, trigger_label: str, yes_value: str) -> str:
    return (
        "Maintenance Contract automation\n"
        f"Tag ID {tag_id} applied to job #{job.display_number}.\n"
        f"Trigger: quote {job.quote_id} custom field {trigger_label} = {yes_value}."
    )


def build_schedule_audit_note(job: JobLinkInfo, schedule: RenewalSchedule) -> str:
    lines = [
        "Maintenance Contract automation",
        f"Job #{job.display_number} completed; maintenance contract active.",
        f"Maintenance start date: {to_date_string(schedule.start_date)}",
        f"Renewal due date: {to_date_string(schedule.renewal_due_date)}",
    ]
    lines.extend(
        f"Reminder T-{r.months_before}: {to_date_string(r.date)}"
        for r in schedule.reminders
        if not r.expiry
    )
    return "\n".join(lines)
