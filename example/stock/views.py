from __future__ import annotations

import json

from django.db import connections
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from inventory_lock import Applied, Dispatcher, Failed, LockedMutator, Rejected, adjust
from inventory_lock.models import NOT_FOUND, AdjustmentOutcome


def _outcome_payload(outcome: AdjustmentOutcome) -> dict:
    if isinstance(outcome, Applied):
        return {"ok": True, "actor": outcome.actor_id, "qty": outcome.new_quantity}
    if isinstance(outcome, Rejected):
        return {
            "ok": False,
            "actor": outcome.actor_id,
            "detail": outcome.reason,
            "qty": outcome.current_quantity,
            "delta": outcome.attempted_delta,
        }
    return {"ok": False, "actor": outcome.actor_id, "detail": outcome.cause.code}


def _status(outcome: AdjustmentOutcome) -> int:
    if isinstance(outcome, Applied):
        return 200
    if isinstance(outcome, Rejected):
        return 404 if outcome.reason == NOT_FOUND else 409
    return 503


def parse_deltas(raw: bytes) -> list[int]:
    """
    Read ``{"deltas": [...]}`` from a request body.

    Raises ValueError for anything else, including invalid JSON.
    """
    body = json.loads(raw or b"{}")
    if not isinstance(body, dict):
        raise ValueError("body must be a JSON object")

    deltas = body.get("deltas", [])
    if not isinstance(deltas, list) or not all(
        isinstance(d, int) and not isinstance(d, bool) for d in deltas
    ):
        raise ValueError("deltas must be a list of integers")
    return deltas


def _bad_request(detail: str) -> JsonResponse:
    return JsonResponse({"ok": False, "detail": detail}, status=400)


@csrf_exempt  # demo-only: curl-friendly
@require_POST
def adjust_record(request: HttpRequest, record_id: int, delta: int) -> HttpResponse:
    """
    Apply a single adjustment under a row lock.

    409 when the record would go negative, 503 when the database failed.
    """
    outcome = adjust(record_id, delta, lock_timeout=2.0)
    return JsonResponse(_outcome_payload(outcome), status=_status(outcome))


@csrf_exempt  # demo-only: curl-friendly
@require_POST
def burst(request: HttpRequest, record_id: int) -> HttpResponse:
    """
    Fire one concurrent actor per delta in the JSON body ``{"deltas": [...]}``.

    Individual rejections and failures are reported per actor; only a
    malformed body is an error (400).
    """
    try:
        deltas = parse_deltas(request.body)
    except ValueError as e:
        return _bad_request(str(e))

    dispatcher = Dispatcher(LockedMutator(lock_timeout=2.0), on_actor_exit=connections.close_all)
    outcomes = dispatcher.run(record_id, deltas)
    return JsonResponse({
        "applied": sum(isinstance(o, Applied) for o in outcomes),
        "rejected": sum(isinstance(o, Rejected) for o in outcomes),
        "failed": sum(isinstance(o, Failed) for o in outcomes),
        "outcomes": [_outcome_payload(o) for o in outcomes],
    })
