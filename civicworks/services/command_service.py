"""
Command runner: one transaction and one receipt per command.

Every state-changing request goes through ``run_command``:

  1. If the caller sent a request id that already has a receipt, the stored
     response is returned unchanged (``replayed=True``); nothing runs. A
     receipt is only replayed to the actor that created it; anyone else
     reusing the id gets CONFLICT.
  2. Otherwise the command function runs, its JSON projection is stored as a
     receipt (when a request id is present) and the transaction commits.
  3. Any exception rolls everything back. A lost optimistic-lock race
     (``StaleDataError``) or a unique-key race (``IntegrityError``) becomes
     CONFLICT; if the unique-key race was on the receipt itself, the winner's
     stored response is replayed instead.

Services never commit; they only flush.
"""

import json
import logging
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from civicworks.core.exceptions import ConflictError
from civicworks.models import db
from civicworks.models.command import CommandReceipt
from civicworks.services.permission import Actor

logger = logging.getLogger(__name__)


def find_receipt(request_id: str) -> CommandReceipt | None:
    return CommandReceipt.query.filter_by(request_id=request_id).first()


def _replay(receipt: CommandReceipt, command: str, actor: Actor) -> tuple[dict, int, bool]:
    if receipt.actor != actor.id:
        logger.warning("Request id reused by another actor request_id=%s owner=%s caller=%s",
                       receipt.request_id, receipt.actor, actor.id)
        raise ConflictError(
            f"Request id {receipt.request_id} belongs to another caller",
            details={"request_id": receipt.request_id},
        )
    if receipt.command != command:
        raise ConflictError(
            f"Request id {receipt.request_id} was already used for {receipt.command}",
            details={"request_id": receipt.request_id, "command": receipt.command},
        )
    logger.info("Command replay request_id=%s command=%s", receipt.request_id, command,
                extra={"request_id": receipt.request_id, "action": command})
    return receipt.response, receipt.status_code, True


def run_command(
    command: str,
    actor: Actor,
    fn: Callable[[], dict],
    *,
    request_id: str | None = None,
    success_status: int = 200,
) -> tuple[dict, int, bool]:
    """
    Execute ``fn`` as one atomic, replay-safe command.

    Args:
        command: Command name (e.g. 'approve_material_request'), stored on the receipt.
        actor: Resolved caller identity.
        fn: Does the work (flush only) and returns the JSON-ready response body.
        request_id: Caller-supplied idempotency key; None disables replay.
        success_status: HTTP status recorded for a first, successful run.

    Returns:
        ``(body, http_status, replayed)``
    """
    if request_id:
        receipt = find_receipt(request_id)
        if receipt is not None:
            return _replay(receipt, command, actor)

    try:
        body = fn()
        if request_id:
            db.session.add(CommandReceipt(
                request_id=request_id,
                command=command,
                actor=actor.id,
                status_code=success_status,
                response_json=json.dumps(body, default=str),
            ))
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning("Command lost optimistic-lock race command=%s actor=%s", command, actor.id)
        raise ConflictError(
            "The record was changed by another request; reload and retry",
            details={"command": command},
        ) from None
    except IntegrityError as exc:
        db.session.rollback()
        if request_id:
            receipt = find_receipt(request_id)
            if receipt is not None:
                return _replay(receipt, command, actor)
        logger.warning("Command hit a unique constraint command=%s: %s", command, exc.orig)
        raise ConflictError(
            "Conflicting concurrent write; retry the command",
            details={"command": command},
        ) from None
    except Exception:
        db.session.rollback()
        raise

    logger.info("Command applied command=%s actor=%s role=%s", command, actor.id, actor.role,
                extra={"request_id": request_id, "action": command, "actor": actor.id})
    return body, success_status, False
