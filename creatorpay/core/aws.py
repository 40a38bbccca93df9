from __future__ import annotations

import boto3

from .settings import S

_session = boto3.session.Session(region_name=S.aws_region or "us-east-1")

ddb = _session.resource("dynamodb")
# Low-level client; TransactWriteItems takes typed attribute values.
ddb_client = _session.client("dynamodb")
