from __future__ import annotations

from typing import Any

import boto3
from botocore.config import Config

from receipt_ledger.core.config import settings


def aws_region() -> str:
    region = settings.aws_region
    if not region or region.lower() == "auto":
        return "us-east-1"
    return region


def aws_client(service_name: str, *, endpoint_url: str | None = None) -> Any:
    session = boto3.session.Session(
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
        region_name=aws_region(),
    )
    config = Config(
        retries={"max_attempts": 3, "mode": "adaptive"},
        connect_timeout=10,
        read_timeout=60,
    )
    # Treat empty string as None (use default AWS endpoint)
    return session.client(service_name, endpoint_url=endpoint_url or None, config=config)
