# paygate/x402/audit.py
"""
Audit logging for x402 payments.

Every payment lifecycle event is appended to a JSON-lines file so that
settlements can be reconciled against on-chain state after the fact,
including attempts whose client disconnected before the response.

Log location: X402_AUDIT_LOG_PATH (disabled with X402_AUDIT_ENABLED=false)

Events logged:
- 402 returned (price, asset, network, resource)
- Payment received (payer, value)
- Payment rejected (decode/validation failure category)
- Payment submitted (batch id)
- Payment settled (transaction hash)
- Payment failed (stage, internal reason)
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from paygate.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_SUBMITTED = "payment_submitted"
    PAYMENT_SETTLED = "payment_settled"
    PAYMENT_FAILED = "payment_failed"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a short request ID for correlating events."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    return Path(settings.X402_AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "wallet_address": wallet_address,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an audit event to the audit log.

    Write failures are logged and swallowed: auditing must never change
    the outcome of a payment.

    Returns:
        The request_id used for this event, or None if disabled or on error
    """
    if not settings.X402_AUDIT_ENABLED:
        return None

    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


def log_payment_required_sent(
    client_ip: str,
    amount: str,
    asset: str,
    network: str,
    pay_to: str,
    resource: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 Payment Required response event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={
            "amount": amount,
            "asset": asset,
            "network": network,
            "pay_to": pay_to,
            "resource": resource,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_received(
    client_ip: str,
    payer: str,
    value: int,
    network: Optional[str],
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_RECEIVED,
        data={
            "value": str(value),
            "network": network,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_payment_rejected(
    client_ip: str,
    error_type: str,
    reason: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a payment header rejected before any chain interaction."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REJECTED,
        data={
            "error_type": error_type,
            "reason": reason,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_submitted(
    client_ip: str,
    payer: str,
    attempt_id: str,
    batch_id: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_SUBMITTED,
        data={
            "attempt_id": attempt_id,
            "batch_id": batch_id,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_payment_settled(
    client_ip: str,
    payer: str,
    attempt_id: str,
    batch_id: Optional[str],
    transaction_hash: Optional[str],
    network: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a confirmed settlement."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_SETTLED,
        data={
            "attempt_id": attempt_id,
            "batch_id": batch_id,
            "transaction_hash": transaction_hash,
            "network": network,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_payment_failed(
    client_ip: str,
    error_type: str,
    reason: str,
    stage: str,
    batch_id: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a settlement failure with its internal reason."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_FAILED,
        data={
            "error_type": error_type,
            "reason": reason,
            "stage": stage,
            "batch_id": batch_id,
        },
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )


def log_error(
    client_ip: str,
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        client_ip=client_ip,
        request_id=request_id
    )


def read_audit_log(
    max_entries: int = 100,
    event_type: Optional[AuditEventType] = None,
    request_id: Optional[str] = None
) -> list:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        request_id: Filter by request ID (optional)

    Returns:
        List of audit events (most recent first)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    events = []
    try:
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if event_type and event.get("event_type") != event_type.value:
                    continue
                if request_id and event.get("request_id") != request_id:
                    continue
                events.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    return list(reversed(events))[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """Event counts by type for the current audit log."""
    log_path = get_audit_log_path()
    events_by_type: Dict[str, int] = {}
    total = 0

    for event in read_audit_log(max_entries=10 ** 9):
        total += 1
        name = event.get("event_type", "unknown")
        events_by_type[name] = events_by_type.get(name, 0) + 1

    return {
        "total_events": total,
        "events_by_type": events_by_type,
        "log_path": str(log_path),
        "log_exists": log_path.exists(),
    }
