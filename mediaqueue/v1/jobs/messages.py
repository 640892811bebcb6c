"""User-facing status messages for transfer summaries."""

from mediaqueue.v1.jobs.schemas import TransferStatusResponse, TransferSummary


def plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def transfer_message(summary: TransferSummary) -> str:
    pending = summary.queued + summary.sending
    done = summary.sent + summary.failed

    if pending:
        return (
            f"Sending media to processing server... ({summary.sent}/{summary.total} complete)"
        )
    if summary.failed:
        return (
            f"{summary.sent} of {plural(summary.total, 'item')} sent successfully, "
            f"{summary.failed} failed"
        )
    if summary.unknown and not done:
        return f"No record of {plural(summary.unknown, 'job')}"
    return f"All {plural(summary.sent, 'item')} sent successfully!"


def build_transfer_response(summary: TransferSummary) -> TransferStatusResponse:
    """Decorate a summary with the fields the upload UI polls for."""
    pending = summary.queued + summary.sending
    all_transferred = pending == 0
    return TransferStatusResponse(
        **summary.model_dump(),
        pending=pending,
        all_transferred=all_transferred,
        has_failures=summary.failed > 0,
        summary={
            "message": transfer_message(summary),
            # Processing continues server-side once everything is handed off
            "can_leave": all_transferred,
        },
    )
