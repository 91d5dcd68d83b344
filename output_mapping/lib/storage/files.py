"""Push local files into the cloud storage behind a prepared file resource.

The Storage API hands out a file resource with temporary credentials
(``files/prepare`` with a federation token). The bytes then go straight
to S3 (boto3) or Azure Blob Storage (azure-storage-blob).
"""

from __future__ import annotations

import gzip
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

import boto3
from azure.core.exceptions import AzureError
from azure.storage.blob import BlobServiceClient, ContainerClient
from botocore.exceptions import BotoCoreError, ClientError

from output_mapping.lib.errors import StorageApiError

logger = logging.getLogger(__name__)

__all__ = ["compress_file", "file_size", "upload_prepared_file", "SLICE_MANIFEST_NAME"]

SLICE_MANIFEST_NAME = "manifest"
GZIP_SUFFIX = ".gz"


def compress_file(path: str, work_dir: str) -> str:
    """Gzip ``path`` into ``work_dir`` unless it is already gzipped."""
    if path.endswith(GZIP_SUFFIX):
        return path
    target = Path(work_dir) / (Path(path).name + GZIP_SUFFIX)
    with open(path, "rb") as src, gzip.open(target, "wb") as dst:
        shutil.copyfileobj(src, dst)
    return str(target)


def upload_prepared_file(
    prepared: Dict[str, Any],
    files: Sequence[Tuple[str, str]],
    *,
    sliced: bool,
) -> None:
    """Upload ``(local_path, name)`` pairs for a prepared file resource.

    A non-sliced resource takes exactly one file. A sliced resource gets
    every slice under its key prefix plus a JSON slice manifest.
    """
    provider = prepared.get("provider", "aws")
    if provider == "azure":
        _upload_azure(prepared, files, sliced=sliced)
    elif provider == "aws":
        _upload_s3(prepared, files, sliced=sliced)
    else:
        raise StorageApiError(f"Unsupported file storage provider '{provider}'")


def _upload_s3(prepared: Dict[str, Any], files: Sequence[Tuple[str, str]], *, sliced: bool) -> None:
    params = prepared["uploadParams"]
    credentials = params["credentials"]
    client = boto3.client(
        "s3",
        region_name=prepared.get("region"),
        aws_access_key_id=credentials["AccessKeyId"],
        aws_secret_access_key=credentials["SecretAccessKey"],
        aws_session_token=credentials.get("SessionToken"),
    )
    extra_args = {"ACL": params["acl"]} if params.get("acl") else {}
    if params.get("x-amz-server-side-encryption"):
        extra_args["ServerSideEncryption"] = params["x-amz-server-side-encryption"]

    bucket = params["bucket"]
    key = params["key"]
    try:
        if not sliced:
            local_path, _ = files[0]
            client.upload_file(local_path, bucket, key, ExtraArgs=extra_args)
            return

        entries: List[Dict[str, Any]] = []
        for local_path, name in files:
            client.upload_file(local_path, bucket, key + name, ExtraArgs=extra_args)
            entries.append({"url": f"s3://{bucket}/{key}{name}", "mandatory": True})
            logger.debug("Uploaded slice %s to s3://%s/%s%s", local_path, bucket, key, name)
        client.put_object(
            Bucket=bucket,
            Key=key + SLICE_MANIFEST_NAME,
            Body=json.dumps({"entries": entries}).encode("utf-8"),
            **extra_args,
        )
    except (BotoCoreError, ClientError) as exc:
        raise StorageApiError(f"Failed to upload file to S3: {exc}") from exc


def _upload_azure(prepared: Dict[str, Any], files: Sequence[Tuple[str, str]], *, sliced: bool) -> None:
    params = prepared["absUploadParams"]
    service = BlobServiceClient.from_connection_string(
        params["absCredentials"]["SASConnectionString"]
    )
    container: ContainerClient = service.get_container_client(params["container"])
    blob_name = params["blobName"]
    try:
        if not sliced:
            local_path, _ = files[0]
            with open(local_path, "rb") as handle:
                container.upload_blob(blob_name, handle, overwrite=True)
            return

        entries: List[Dict[str, Any]] = []
        for local_path, name in files:
            with open(local_path, "rb") as handle:
                container.upload_blob(blob_name + name, handle, overwrite=True)
            entries.append(
                {
                    "url": f"azure://{container.account_name}.blob.core.windows.net/"
                    f"{params['container']}/{blob_name}{name}",
                }
            )
        container.upload_blob(
            blob_name + SLICE_MANIFEST_NAME,
            json.dumps({"entries": entries}).encode("utf-8"),
            overwrite=True,
        )
    except AzureError as exc:
        raise StorageApiError(f"Failed to upload file to Azure Blob Storage: {exc}") from exc


def file_size(paths: Sequence[str]) -> int:
    return sum(os.path.getsize(path) for path in paths)
