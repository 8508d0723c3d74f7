from __future__ import annotations

import posixpath
from dataclasses import dataclass, field

import aioboto3
from botocore.config import Config as BotoConfig

from cdn_console.config import Settings


class ObjectStorageConfigError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class ObjectStorageConfig:
    endpoint: str | None
    access_key: str
    secret_key: str
    region: str

    @staticmethod
    def from_settings(settings: Settings) -> "ObjectStorageConfig":
        if not settings.object_storage_access_key:
            raise ObjectStorageConfigError(
                "OBJECT_STORAGE_ACCESS_KEY is required when object storage is enabled"
            )
        if not settings.object_storage_secret_key:
            raise ObjectStorageConfigError(
                "OBJECT_STORAGE_SECRET_KEY is required when object storage is enabled"
            )

        return ObjectStorageConfig(
            endpoint=settings.object_storage_endpoint,
            access_key=settings.object_storage_access_key,
            secret_key=settings.object_storage_secret_key,
            region=settings.object_storage_region,
        )


@dataclass(frozen=True, slots=True)
class UploadPolicy:
    """Presigned POST target plus the form fields the browser must send."""

    url: str
    fields: dict[str, str]


@dataclass(frozen=True, slots=True)
class StoredObject:
    key: str
    size: int
    etag: str | None = None
    last_modified: str | None = None


@dataclass(frozen=True, slots=True)
class ObjectListing:
    items: list[StoredObject] = field(default_factory=list)
    next_token: str | None = None


def upload_policy_conditions(key: str, content_type: str, max_bytes: int) -> list:
    """
    POST-policy conditions enforced by the storage layer itself.

    The exact key is also bound through the policy's ``key`` field.
    """
    key_directory = posixpath.dirname(key)
    key_prefix = f"{key_directory}/" if key_directory else ""
    return [
        ["content-length-range", 1, max_bytes],
        ["eq", "$Content-Type", content_type],
        ["starts-with", "$key", key_prefix],
    ]


class ObjectStorageService:
    def __init__(self, settings: Settings) -> None:
        self._enabled = settings.object_storage_enabled
        self._config = ObjectStorageConfig.from_settings(settings) if self._enabled else None

    def _require_enabled(self) -> ObjectStorageConfig:
        if not self._enabled or self._config is None:
            raise RuntimeError("Object storage is not enabled (set OBJECT_STORAGE_ENABLED=true)")
        return self._config

    def _client_kwargs(self, config: ObjectStorageConfig) -> dict:
        return {
            "service_name": "s3",
            "endpoint_url": config.endpoint,
            "aws_access_key_id": config.access_key,
            "aws_secret_access_key": config.secret_key,
            "region_name": config.region,
            "config": BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
        }

    async def issue_upload_policy(
        self,
        *,
        bucket: str,
        key: str,
        content_type: str,
        max_bytes: int,
        ttl: int,
    ) -> UploadPolicy:
        config = self._require_enabled()
        session = aioboto3.Session()
        async with session.client(**self._client_kwargs(config)) as s3:
            result = await s3.generate_presigned_post(
                Bucket=bucket,
                Key=key,
                Fields={"Content-Type": content_type},
                Conditions=upload_policy_conditions(key, content_type, max_bytes),
                ExpiresIn=ttl,
            )
        return UploadPolicy(url=result["url"], fields=dict(result["fields"]))

    async def issue_download_url(self, *, bucket: str, key: str, ttl: int) -> str:
        config = self._require_enabled()
        session = aioboto3.Session()
        async with session.client(**self._client_kwargs(config)) as s3:
            return await s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=ttl,
            )

    async def delete_object(self, *, bucket: str, key: str) -> None:
        config = self._require_enabled()
        session = aioboto3.Session()
        async with session.client(**self._client_kwargs(config)) as s3:
            await s3.delete_object(Bucket=bucket, Key=key)

    async def list_objects(
        self,
        *,
        bucket: str,
        prefix: str = "",
        continuation_token: str | None = None,
    ) -> ObjectListing:
        config = self._require_enabled()
        params = {"Bucket": bucket, "Prefix": prefix, "MaxKeys": 1000}
        if continuation_token:
            params["ContinuationToken"] = continuation_token

        session = aioboto3.Session()
        async with session.client(**self._client_kwargs(config)) as s3:
            response = await s3.list_objects_v2(**params)

        items = [
            StoredObject(
                key=obj["Key"],
                size=obj.get("Size", 0),
                etag=obj.get("ETag"),
                last_modified=obj["LastModified"].isoformat() if obj.get("LastModified") else None,
            )
            for obj in response.get("Contents", [])
        ]
        return ObjectListing(items=items, next_token=response.get("NextContinuationToken"))
