import copy
import os
import threading
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import pytest
from fastapi.testclient import TestClient

# Avant l'import de l'app: pas de Redis en tests
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

from storefront.app import app as fastapi_app
from storefront.errors import WebhookVerificationError
from storefront.payments.base import (
    CaptureResult,
    EventHandler,
    PaymentProcessor,
    PricedLine,
    RedirectUrls,
    SessionResult,
)
from storefront.payments.registry import get_processor

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

class InMemoryOrderStore:
    """
    Double du store Supabase: mêmes fonctions que storefront.orders.repository,
    avec la sémantique compare-and-set de transition_order.
    """

    def __init__(self) -> None:
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.user_orders: Dict[tuple, Dict[str, Any]] = {}
        self.transition_calls = 0
        self.fail_insert = False
        self._lock = threading.Lock()

    def _find(self, column: str, value: Optional[str]) -> Optional[Dict[str, Any]]:
        if not value:
            return None
        for order in self.orders.values():
            if order.get(column) == value:
                return copy.deepcopy(order)
        return None

    def insert_pending_order(self, order: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            if self.fail_insert:
                return None
            key = order.get("idempotency_key")
            if key and any(o.get("idempotency_key") == key for o in self.orders.values()):
                return None
            self.orders[order["id"]] = copy.deepcopy(order)
            return copy.deepcopy(order)

    def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        order = self.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    def find_order_by_reference(self, reference: str):
        return self._find("processor_reference", reference)

    def find_order_by_payment_reference(self, payment_reference: str):
        return self._find("payment_reference", payment_reference)

    def find_order_by_idempotency_key(self, key: str):
        return self._find("idempotency_key", key)

    def attach_processor_reference(self, order_id: str, reference: str, approval_url: Optional[str]) -> bool:
        with self._lock:
            order = self.orders.get(order_id)
            if not order:
                return False
            order["processor_reference"] = reference
            order["approval_url"] = approval_url
            return True

    def transition_order(self, order_id, *, from_statuses, updates, refunded_below=None):
        with self._lock:
            self.transition_calls += 1
            order = self.orders.get(order_id)
            statuses = [getattr(s, "value", s) for s in from_statuses]
            if not order or order.get("status") not in statuses:
                return None
            if refunded_below is not None and not float(order.get("refunded_amount") or 0) < refunded_below:
                return None
            order.update(copy.deepcopy(updates))
            return copy.deepcopy(order)

    def upsert_user_order(self, summary: Dict[str, Any]) -> None:
        with self._lock:
            self.user_orders[(summary["user_id"], summary["order_id"])] = copy.deepcopy(summary)

    def add(self, **fields) -> Dict[str, Any]:
        """Insère directement une commande (état initial d'un test)."""
        order = {
            "id": fields.pop("id", "order-1"),
            "processor": "stripe",
            "processor_reference": None,
            "payment_reference": None,
            "approval_url": None,
            "status": "pending",
            "items": [],
            "customer_email": "buyer@example.com",
            "user_id": None,
            "amount_total": None,
            "refunded_amount": 0,
            "currency": "USD",
            "metadata": {},
            "created_at": "2024-01-01T00:00:00+00:00",
            "updated_at": "2024-01-01T00:00:00+00:00",
            "paid_at": None,
            "refunded_at": None,
        }
        order.update(fields)
        self.orders[order["id"]] = order
        return copy.deepcopy(order)

ORDER_STORE_FUNCTIONS = (
    "insert_pending_order",
    "get_order",
    "find_order_by_reference",
    "find_order_by_payment_reference",
    "find_order_by_idempotency_key",
    "attach_processor_reference",
    "transition_order",
    "upsert_user_order",
)

@pytest.fixture()
def order_store(monkeypatch) -> InMemoryOrderStore:
    store = InMemoryOrderStore()
    for name in ORDER_STORE_FUNCTIONS:
        monkeypatch.setattr(f"storefront.orders.repository.{name}", getattr(store, name))
    return store

class FakeProcessor(PaymentProcessor):
    """
    Processeur factice configurable:
    - two_phase=True: se comporte comme un processeur à capture explicite
    - fail_with: exception levée par create_session
    - capture_status: statut renvoyé par capture
    """

    def __init__(self, two_phase: bool = False) -> None:
        self.kind = "paypal" if two_phase else "stripe"
        self.supports_capture = two_phase
        self.sessions: List[Dict[str, Any]] = []
        self.by_reference: Dict[str, Dict[str, Any]] = {}
        self.captures: List[str] = []
        self.fail_with: Optional[Exception] = None
        self.capture_status = "COMPLETED"
        self.capture_amount = None
        self._handlers: Dict[str, EventHandler] = {}

    @property
    def webhook_handlers(self) -> Dict[str, EventHandler]:
        return self._handlers

    def create_session(
        self,
        *,
        order_id: str,
        lines: List[PricedLine],
        currency: str,
        urls: RedirectUrls,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> SessionResult:
        if self.fail_with is not None:
            raise self.fail_with
        self.sessions.append({
            "order_id": order_id,
            "lines": lines,
            "currency": currency,
            "urls": urls,
            "metadata": metadata,
            "customer_email": customer_email,
            "idempotency_key": idempotency_key,
        })
        reference = f"ref_{len(self.sessions)}"
        self.by_reference[reference] = self.sessions[-1]
        return SessionResult(reference=reference, approval_url=f"https://processor.test/approve/{reference}")

    def capture(self, reference: str) -> CaptureResult:
        self.captures.append(reference)
        if self.fail_with is not None:
            raise self.fail_with
        session = self.by_reference.get(reference)
        amount = self.capture_amount
        if amount is None and session:
            amount = Decimal(sum(line.line_total for line in session["lines"])) / 100
        return CaptureResult(
            status=self.capture_status,
            capture_id=f"cap_{reference}" if self.capture_status == "COMPLETED" else None,
            amount=amount if self.capture_status == "COMPLETED" else None,
            currency="USD",
            order_id=session["order_id"] if session else None,
            payer_email="ada@example.com",
            payer_name="Ada Buyer",
        )

    def parse_event(self, payload: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        raise WebhookVerificationError()

@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c

@pytest.fixture()
def fake_processor(app) -> FakeProcessor:
    processor = FakeProcessor()
    app.dependency_overrides[get_processor] = lambda: processor
    yield processor
    app.dependency_overrides.pop(get_processor, None)

@pytest.fixture()
def two_phase_processor(app) -> FakeProcessor:
    processor = FakeProcessor(two_phase=True)
    app.dependency_overrides[get_processor] = lambda: processor
    yield processor
    app.dependency_overrides.pop(get_processor, None)
