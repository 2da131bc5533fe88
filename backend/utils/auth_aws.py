from functools import lru_cache
from typing import Any

import boto3
from botocore.config import Config

from backend.config import get_settings


@lru_cache
def get_session() -> boto3.Session:
    settings = get_settings()
    session_kwargs = {
        "region_name": settings.aws_region,
    }
    if settings.aws_access_key_id and settings.aws_secret_access_key:
        session_kwargs.update(
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
        )

    return boto3.Session(**session_kwargs)


def get_client(service: str, config: Config | None = None) -> Any:
    settings = get_settings()
    kwargs: dict[str, Any] = {"region_name": settings.aws_region}
    if settings.aws_endpoint_url:
        # e.g. DynamoDB Local or LocalStack during development
        kwargs["endpoint_url"] = settings.aws_endpoint_url
    if config is not None:
        kwargs["config"] = config
    return get_session().client(service, **kwargs)
