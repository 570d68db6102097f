import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from google.cloud import firestore
from google.api_core.exceptions import GoogleAPICallError, RetryError, ServiceUnavailable

logger = logging.getLogger(__name__)

# -----------------------
# SETTINGS
# -----------------------
COLLECTION_NAME = "order_events"
MAX_RETRIES = 3
RETRY_SLEEP_SECONDS = 1.0

# lifecycle events written by the API
ORDER_PLACED = "ORDER_PLACED"
PAYMENT_CAPTURED = "PAYMENT_CAPTURED"
DELIVERY_ASSIGNED = "DELIVERY_ASSIGNED"
STATUS_CHANGED = "STATUS_CHANGED"

_clients: Dict[str, firestore.Client] = {}


def get_client(database_id: str = "default") -> firestore.Client:
    """
    Creates and caches a Firestore client per database id.
    Use the Firestore Native database id "default", not "(default)"
    which is Datastore mode.
    """
    client = _clients.get(database_id)
    if client is None:
        client = firestore.Client(database=database_id)
        _clients[database_id] = client
    return client


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_order_event(
    order_id: Any,
    customer_email: str,
    event: str,
    payload: Optional[Dict[str, Any]] = None,
    database_id: str = "default",
) -> str:
    """
    Writes an order event document into Firestore. Returns the document id.

    Temporary errors are retried; after MAX_RETRIES the last error is raised
    as RuntimeError.
    """
    db = get_client(database_id)

    doc = {
        "order_id": str(order_id),
        "customer_email": customer_email or "",
        "event": event,
        "payload": payload or {},
        "created_at": firestore.SERVER_TIMESTAMP,
        "created_at_iso": _now_iso(),
    }

    last_err = None
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            ref = db.collection(COLLECTION_NAME).document()
            ref.set(doc)
            return ref.id

        except (ServiceUnavailable, GoogleAPICallError, RetryError) as e:
            last_err = e
            logger.warning("Firestore write failed (attempt %d/%d): %s", attempt, MAX_RETRIES, e)
            time.sleep(RETRY_SLEEP_SECONDS * attempt)

    raise RuntimeError(f"Firestore write failed after {MAX_RETRIES} attempts: {last_err}")
