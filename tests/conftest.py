from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

HERE = Path(__file__).resolve().parent
ROOT = HERE.parent
for p in (ROOT, HERE):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("AUDIT_LOG_ENABLED", "0")

from creatorpay.core.settings import S  # noqa: E402
from creatorpay.core.tables import T  # noqa: E402

from fakes import WEBHOOK_SECRET, FakeLedger  # noqa: E402


@pytest.fixture
def ledger():
    fake = FakeLedger()
    saved = (T.ledger, T.client)
    object.__setattr__(T, "ledger", fake)
    object.__setattr__(T, "client", fake)
    yield fake
    object.__setattr__(T, "ledger", saved[0])
    object.__setattr__(T, "client", saved[1])


@pytest.fixture
def stripe_settings():
    saved = (S.stripe_secret_key, S.stripe_webhook_secret, S.ops_user_ids)
    object.__setattr__(S, "stripe_secret_key", "sk_test")
    object.__setattr__(S, "stripe_webhook_secret", WEBHOOK_SECRET)
    object.__setattr__(S, "ops_user_ids", "ops-1")
    yield S
    object.__setattr__(S, "stripe_secret_key", saved[0])
    object.__setattr__(S, "stripe_webhook_secret", saved[1])
    object.__setattr__(S, "ops_user_ids", saved[2])
