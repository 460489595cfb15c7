"""
unibo.db.session

Backend client factories.

Responsibilities:
- Create the synchronous SQLAlchemy engine from settings.
- Create the pymongo client and resolve the configured database.
- Create the boto3 DynamoDB low-level client.
"""

from __future__ import annotations

from typing import Any

import boto3
import sqlalchemy as sa
from pymongo import MongoClient
from pymongo.database import Database

from unibo.settings import Settings


def create_sql_engine(settings: Settings) -> sa.Engine:
    # pool_pre_ping helps detect stale connections in long-lived processes.
    return sa.create_engine(settings.database_url, pool_pre_ping=True)


def create_mongo_client(settings: Settings) -> MongoClient:
    return MongoClient(
        settings.mongo_url,
        serverSelectionTimeoutMS=settings.mongo_timeout_ms,
        tz_aware=True,
    )


def mongo_database(client: MongoClient, settings: Settings) -> Database:
    return client[settings.mongo_db]


def create_dynamodb_client(settings: Settings) -> Any:
    kwargs: dict[str, Any] = {"region_name": settings.dynamodb_region}
    if settings.dynamodb_endpoint_url:
        kwargs["endpoint_url"] = settings.dynamodb_endpoint_url
    if settings.aws_access_key_id and settings.aws_secret_access_key:
        kwargs["aws_access_key_id"] = settings.aws_access_key_id
        kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
    return boto3.client("dynamodb", **kwargs)


# --- Module Notes -----------------------------------------------------------
# Clients are thread-safe and meant to be shared by every DAO of a process.
