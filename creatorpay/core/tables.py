from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .aws import ddb, ddb_client
from .settings import S

@dataclass(frozen=True)
class Tables:
    ledger: Any
    client: Any

T = Tables(
    ledger=ddb.Table(S.ledger_table_name),
    client=ddb_client,
)
