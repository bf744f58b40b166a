import os
from contextlib import redirect_stderr, redirect_stdout
from io import StringIO
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest
import stripe
from alembic import command
from alembic.config import Config

# Ensure tests run against SQLite when DATABASE_URL is not defined
os.environ.setdefault("DATABASE_URL", "sqlite:////tmp/intrend_test.db")
os.environ.setdefault("STRIPE_PER_ACCOUNT_BASIC_MONTHLY_PRICE_ID", "price_basic_m")
os.environ.setdefault("STRIPE_PER_ACCOUNT_BASIC_ANNUAL_PRICE_ID", "price_basic_y")
os.environ.setdefault("STRIPE_PER_ACCOUNT_PRO_MONTHLY_PRICE_ID", "price_pro_m")
os.environ.setdefault("STRIPE_PER_ACCOUNT_PRO_ANNUAL_PRICE_ID", "price_pro_y")
os.environ.setdefault("N8N_WEBHOOK_URL", "https://n8n.test/webhook/analyze")

from fastapi.testclient import TestClient  # noqa: E402

from app import db as db_module  # noqa: E402
from app.config import Settings  # noqa: E402
from app.db import init_db  # noqa: E402
from app.dependencies import (  # noqa: E402
    get_graph_client,
    get_image_fetcher,
    get_n8n_client,
    get_settings,
    get_stripe_billing,
)
from app.main import app  # noqa: E402
from app.models import Base, User  # noqa: E402
from app.services.graph import GraphClient  # noqa: E402
from app.services.image_proxy import ImageFetcher  # noqa: E402
from app.services.n8n import N8nClient  # noqa: E402
from app.services.stripe_billing import WebhookVerificationError  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    """Apply Alembic migrations before running tests."""
    cfg_path = Path(__file__).resolve().parent.parent / "alembic.ini"
    config = Config(str(cfg_path))
    stdout_buf, stderr_buf = StringIO(), StringIO()
    try:
        with redirect_stdout(stdout_buf), redirect_stderr(stderr_buf):
            command.upgrade(config, "head")
    except Exception as exc:
        print("Alembic upgrade failed:", exc)
        print("stdout:\n", stdout_buf.getvalue())
        print("stderr:\n", stderr_buf.getvalue())
        raise
    init_db(Settings())


@pytest.fixture(scope="session", autouse=True)
def remove_test_db():
    """Remove temporary SQLite database after tests finish."""
    yield
    db_url = os.environ.get("DATABASE_URL")
    if db_url and db_url.startswith("sqlite:///"):
        db_path = Path(db_url.replace("sqlite:///", ""))
        if db_path.exists():
            db_path.unlink()


@pytest.fixture(scope="module")
def client(apply_migrations):
    """Yields a TestClient with lifespan events."""
    with TestClient(app) as client:
        yield client


@pytest.fixture(autouse=True)
def clean_tables(apply_migrations):
    yield
    with db_module.SessionLocal() as db:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
    app.dependency_overrides.clear()


@pytest.fixture
def user():
    with db_module.SessionLocal() as db:
        row = User(email="owner@example.com", first_name="Ada", last_name="Lee")
        db.add(row)
        db.commit()
        db.refresh(row)
        return row


def _mock_transport(handler):
    return httpx.MockTransport(handler)


@pytest.fixture
def graph_handler():
    """Install a Graph client whose HTTP calls go to a test handler.

    Returns a setter taking ``handler(request) -> httpx.Response``; every
    request seen is appended to ``.requests``.
    """
    state = SimpleNamespace(requests=[])

    def install(handler):
        def _recording(request: httpx.Request) -> httpx.Response:
            state.requests.append(request)
            return handler(request)

        graph = GraphClient(
            "https://graph.test", "v23.0", transport=_mock_transport(_recording)
        )
        app.dependency_overrides[get_graph_client] = lambda: graph
        return state

    return install


@pytest.fixture
def image_handler():
    def install(handler):
        fetcher = ImageFetcher(transport=_mock_transport(handler))
        app.dependency_overrides[get_image_fetcher] = lambda: fetcher
        return fetcher

    return install


@pytest.fixture
def n8n_handler():
    def install(handler, webhook_url="https://n8n.test/webhook/analyze"):
        client = N8nClient(webhook_url, transport=_mock_transport(handler))
        app.dependency_overrides[get_n8n_client] = lambda: client
        return client

    return install


class FakeStripeBilling:
    """In-memory stand-in for :class:`StripeBilling` recording every call."""

    configured = True

    def __init__(self):
        self.calls = []
        self.fail_accounts: set[str] = set()
        # set to a StripeError instance to make update/cancel raise it
        self.update_error = None
        self.cancel_error = None
        self.checkout_session = None
        self.customers_by_email: dict[str, str] = {}
        self.usage = []
        self.subscription_item = "si_test"
        self.upcoming = None
        self.event = None
        self._seq = 0

    def _next(self, prefix):
        self._seq += 1
        return f"{prefix}_{self._seq}"

    def create_customer(self, email, user_id):
        self.calls.append(("create_customer", email, user_id))
        return {"id": self._next("cus")}

    def create_subscription(self, customer_id, price_id, metadata):
        self.calls.append(("create_subscription", customer_id, price_id, metadata))
        if metadata.get("adAccountId") in self.fail_accounts:
            raise stripe.error.CardError("Your card was declined.", None, "card_declined")
        return {
            "id": self._next("sub"),
            "status": "active",
            "current_period_start": 1767225600,
            "current_period_end": 1769904000,
            "latest_invoice": None,
        }

    def retrieve_subscription(self, subscription_id):
        return {
            "id": subscription_id,
            "status": "active",
            "current_period_start": 1767225600,
            "current_period_end": 1769904000,
            "items": {
                "data": [
                    {
                        "id": "si_checkout",
                        "price": {
                            "id": "price_basic_m",
                            "unit_amount": 1000,
                            "currency": "usd",
                        },
                    }
                ]
            },
        }

    def update_subscription_price(self, subscription_id, price_id):
        self.calls.append(("update_subscription_price", subscription_id, price_id))
        if self.update_error is not None:
            raise self.update_error
        return {
            "id": subscription_id,
            "status": "active",
            "current_period_start": 1767225600,
            "current_period_end": 1769904000,
        }

    def cancel_subscription(self, subscription_id):
        self.calls.append(("cancel_subscription", subscription_id))
        if self.cancel_error is not None:
            raise self.cancel_error
        return {"id": subscription_id, "status": "canceled"}

    def first_active_subscription_item(self, customer_id):
        return self.subscription_item

    def set_usage(self, item_id, quantity, timestamp=None):
        self.usage.append((item_id, quantity))
        return {"id": "mbur_1", "quantity": quantity}

    def create_checkout_session(
        self, customer_id, price_id, quantity, success_url, cancel_url, metadata
    ):
        self.calls.append(
            ("create_checkout_session", customer_id, price_id, quantity, metadata)
        )
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    def retrieve_checkout_session(self, session_id):
        self.calls.append(("retrieve_checkout_session", session_id))
        if self.checkout_session is None:
            raise stripe.error.InvalidRequestError(
                f"No such checkout.session: '{session_id}'", "id"
            )
        return self.checkout_session

    def find_customer_by_email(self, email):
        return self.customers_by_email.get(email)

    def create_portal_session(self, customer_id, return_url):
        self.calls.append(("create_portal_session", customer_id, return_url))
        return {"id": "bps_1", "url": f"https://billing.stripe.test/{customer_id}"}

    def retrieve_upcoming_invoice(self, customer_id):
        return self.upcoming

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise WebhookVerificationError("Invalid signature")
        return self.event


@pytest.fixture
def fake_stripe():
    fake = FakeStripeBilling()
    app.dependency_overrides[get_stripe_billing] = lambda: fake
    return fake


@pytest.fixture
def settings():
    return get_settings()
