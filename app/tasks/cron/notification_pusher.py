from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from app.db.models import (
    CandidateStatus,
    NotificationCandidate,
    NotificationHistory,
    TemplateChannel,
)
from app.schemas.notification_schemas import WorkflowPayload
from app.tasks.context import WorkerContext
from app.utils.errors import ConfigurationError, DispatchError

SYSTEM_USER = "system.PusherWorker"
HISTORY_CHANNEL = "EMAIL_TEAMS_PA"
HISTORY_SYSTEM = "SAR_DB_WORKER"
HISTORY_STATUS_SENT_TO_PA = "SENT_TO_PA"

CONFIG_PA_FLOW_URL = ("PA_FLOW_URL", "DEFAULT")
CONFIG_DEFAULT_CC = ("EMAIL", "DEFAULT_CC")


async def run_notification_pusher(context: WorkerContext) -> Dict[str, Any]:
    """
    Claim a batch of pending notification candidates and push each one to
    the workflow endpoint.

    Every candidate is handled on its own: a failure is logged, recorded on
    that candidate, and the batch goes on with the next one.
    A missing workflow URL raises ConfigurationError before anything is claimed.
    """
    log = context.log
    repository = context.repository
    options = context.options
    log.info("Running Notification Pusher Worker...")

    today = context.clock.today()
    workflow_url = (
        await repository.get_system_config(*CONFIG_PA_FLOW_URL, as_of=today)
        or options.workflow_url
    )
    default_cc = (
        await repository.get_system_config(*CONFIG_DEFAULT_CC, as_of=today)
        or options.default_cc
    )

    if not workflow_url:
        log.error("PA_FLOW_URL is not configured. Worker stopping.")
        raise ConfigurationError(
            "PA_FLOW_URL is not configured", error_code="WORKFLOW_URL_MISSING"
        )

    with repository.transaction():
        candidates = await repository.claim_pending_candidates(
            options.batch_size, context.clock.naive_utc_now()
        )

    if not candidates:
        log.info("No pending notifications to push.")
        return {"success": True, "claimed": 0, "sent": 0, "failed": 0, "retrying": 0}

    log.info(f"Found {len(candidates)} notifications to process.")

    sent = 0
    failed = 0
    retrying = 0
    for candidate in candidates:
        try:
            await push_candidate(context, candidate, workflow_url, default_cc)
            sent += 1
            log.info(f"Successfully processed and pushed candidate ID: {candidate.id}")
        except Exception as e:
            log.opt(exception=e).error(
                f"Failed to process candidate ID: {candidate.id}: {str(e)}"
            )
            final_status = await _record_failure(context, candidate, e)
            if final_status == CandidateStatus.FAILED:
                failed += 1
            else:
                retrying += 1

    return {
        "success": True,
        "claimed": len(candidates),
        "sent": sent,
        "failed": failed,
        "retrying": retrying,
    }


async def push_candidate(
    context: WorkerContext,
    candidate: NotificationCandidate,
    workflow_url: str,
    default_cc: Optional[str],
) -> None:
    repository = context.repository
    locale = context.options.template_locale

    recipient = await repository.resolve_recipient(
        candidate.item_code, candidate.approver_id, as_of=context.clock.today()
    )
    if recipient is None or not recipient.email:
        raise DispatchError(
            f"No email recipient found for APPROVER_ID {candidate.approver_id}",
            error_code="RECIPIENT_NOT_FOUND",
        )

    email_template = await repository.resolve_template(
        candidate.item_code, locale, TemplateChannel.EMAIL
    )
    teams_template = await repository.resolve_template(
        candidate.item_code, locale, TemplateChannel.TEAMS
    )
    if email_template is None and teams_template is None:
        raise DispatchError(
            f"No active templates found for ITEM_CODE: {candidate.item_code}",
            error_code="TEMPLATE_NOT_FOUND",
        )

    payload = WorkflowPayload(
        recipient_email=recipient.email,
        recipient_teams_id=recipient.teams_id,
        cc_email=default_cc or "",
        email_subject=(email_template.subject_tpl or "") if email_template else "",
        email_body_code=email_template.body_tpl if email_template else "",
        teams_subject=(teams_template.subject_tpl or "") if teams_template else "",
        teams_body_code=teams_template.body_tpl if teams_template else "",
        item_code=candidate.item_code,
        request_id=candidate.request_id,
        due_date=_format_due_date(candidate.due_date),
        task_count=_task_count(candidate.link_detail),
    )

    response = await context.workflow_client.post(
        workflow_url, payload.model_dump(by_alias=True)
    )
    if not response.ok:
        raise DispatchError(
            f"Workflow call failed: {response.status} - {response.body[:200]}",
            status_code=response.status,
        )

    sent_at = context.clock.naive_utc_now()
    with repository.transaction():
        await repository.insert_notification_history(
            NotificationHistory(
                candidate_id=candidate.id,
                request_id=candidate.request_id,
                item_code=candidate.item_code,
                channel=HISTORY_CHANNEL,
                system=HISTORY_SYSTEM,
                recipient=candidate.approver_id,
                status=HISTORY_STATUS_SENT_TO_PA,
                sent_at=sent_at,
                created_by=SYSTEM_USER,
                created_at=sent_at,
            )
        )
        await repository.set_candidate_status(
            candidate.id, CandidateStatus.SENT, attempts=candidate.attempts + 1
        )


def retry_delay_seconds(attempts: int, base_seconds: int, max_seconds: int) -> int:
    """Exponential backoff after the ``attempts``-th failed try: base, 2*base, 4*base ... capped."""
    return min(base_seconds * 2 ** max(attempts - 1, 0), max_seconds)


async def _record_failure(
    context: WorkerContext, candidate: NotificationCandidate, error: Exception
) -> CandidateStatus:
    options = context.options
    attempts = candidate.attempts + 1

    status = CandidateStatus.FAILED
    next_attempt_at = None
    if attempts < options.max_attempts:
        status = CandidateStatus.PENDING
        next_attempt_at = context.clock.naive_utc_now() + timedelta(
            seconds=retry_delay_seconds(
                attempts, options.retry_base_seconds, options.retry_max_seconds
            )
        )

    try:
        with context.repository.transaction():
            await context.repository.set_candidate_status(
                candidate.id,
                status,
                attempts=attempts,
                next_attempt_at=next_attempt_at,
                last_error=str(error) or error.__class__.__name__,
            )
    except Exception as e:
        # Candidate stays PROCESSING; an operator has to look at it
        context.log.opt(exception=e).error(
            f"Could not record failure for candidate ID: {candidate.id}"
        )
        return CandidateStatus.FAILED

    if status == CandidateStatus.PENDING:
        context.log.warning(
            f"Candidate ID: {candidate.id} will be retried at {next_attempt_at} "
            f"(attempt {attempts} of {options.max_attempts})"
        )
    return status


def _format_due_date(due_date: Optional[datetime]) -> str:
    if due_date is None:
        return "null"
    return due_date.replace(tzinfo=timezone.utc).isoformat()


def _task_count(link_detail: Optional[str]) -> int:
    try:
        return int(link_detail or "1") or 1
    except ValueError:
        return 1
