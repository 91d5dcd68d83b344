"""HTTP client for the Storage API.

Implements ``StorageClient`` and ``MetadataClient`` on top of httpx with
tenacity-based retries for transient failures.

Example:
    from output_mapping.lib.settings import StorageApiSettings
    from output_mapping.lib.storage.client import HttpStorageClient

    client = HttpStorageClient.from_settings(StorageApiSettings())
    if not client.bucket_exists("out.c-main"):
        client.create_bucket("main", "out")
"""

from __future__ import annotations

import csv
import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx
import requests_toolbelt
import tenacity
from requests_toolbelt.utils.user_agent import user_agent

from output_mapping import __version__
from output_mapping.lib.errors import StorageApiError
from output_mapping.lib.resilience import PollConfig, RetryConfig, build_retrying, poll_until
from output_mapping.lib.settings import StorageApiSettings
from output_mapping.lib.storage.base import (
    JOB_STATUS_ERROR,
    TERMINAL_JOB_STATUSES,
    MetadataClient,
    StorageClient,
)
from output_mapping.lib.storage.files import compress_file, file_size, upload_prepared_file

logger = logging.getLogger(__name__)

__all__ = ["HttpStorageClient", "HttpMetadataClient", "encode_form"]

TOKEN_HEADER = "X-StorageApi-Token"
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD"})

_USER_AGENT = user_agent(
    "keboola-output-mapping",
    __version__,
    extras=[
        ("httpx", getattr(httpx, "__version__", "unknown")),
        ("tenacity", getattr(tenacity, "__version__", "unknown")),
        ("requests-toolbelt", getattr(requests_toolbelt, "__version__", "unknown")),
    ],
)


def encode_form(params: Mapping[str, Any]) -> List[Tuple[str, str]]:
    """Encode nested params the way the Storage API expects form data.

    Lists become ``key[]`` (scalars) or ``key[i][field]`` (dicts), booleans
    become ``1``/``0`` and ``None`` values are skipped.

    Example:
        >>> encode_form({"columns": ["a", "b"], "incremental": True})
        [('columns[]', 'a'), ('columns[]', 'b'), ('incremental', '1')]
    """
    pairs: List[Tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                if isinstance(item, Mapping):
                    for field, field_value in item.items():
                        pairs.append((f"{key}[{index}][{field}]", _scalar(field_value)))
                else:
                    pairs.append((f"{key}[]", _scalar(item)))
        else:
            pairs.append((key, _scalar(value)))
    return pairs


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


class _HttpBase:
    """Shared transport: base URL, token, branch prefix, retries."""

    def __init__(
        self,
        url: str,
        token: str,
        *,
        branch_id: Optional[str] = None,
        timeout: float = 120.0,
        retry_config: Optional[RetryConfig] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.branch_id = branch_id
        self.retry_config = retry_config or RetryConfig()
        headers = {TOKEN_HEADER: token, "User-Agent": _USER_AGENT}
        if http_client is None:
            http_client = httpx.Client(base_url=self.url, timeout=timeout, headers=headers)
        else:
            http_client.headers.update(headers)
        self._http = http_client

    def _path(self, path: str, *, branched: bool = True) -> str:
        if branched and self.branch_id:
            return f"/v2/storage/branch/{self.branch_id}/{path.lstrip('/')}"
        return f"/v2/storage/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        branched: bool = True,
        form: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
        retry: Optional[bool] = None,
    ) -> Any:
        """Send one request and decode the JSON body.

        Only idempotent methods are retried unless ``retry`` says otherwise;
        a write that timed out may already have been applied.
        """
        url = self._path(path, branched=branched)
        if retry is None:
            retry = method in IDEMPOTENT_METHODS

        def do_request() -> Any:
            logger.debug("%s %s", method, url)
            try:
                response = self._http.request(
                    method,
                    url,
                    data=dict(_group(encode_form(form))) if form else None,
                    params=encode_form(params) if params else None,
                )
            except httpx.RequestError as exc:
                raise StorageApiError(f"Storage API request failed: {exc}") from exc
            if response.status_code >= 400:
                raise _error_from_response(response)
            if not response.content:
                return None
            return response.json()

        if not retry:
            return do_request()
        return build_retrying(self.retry_config, operation_name=f"{method} {url}")(do_request)

    def close(self) -> None:
        self._http.close()


def _group(pairs: List[Tuple[str, str]]) -> Dict[str, Any]:
    """httpx takes repeated form keys as list values."""
    grouped: Dict[str, Any] = {}
    for key, value in pairs:
        if key in grouped:
            existing = grouped[key]
            grouped[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            grouped[key] = value
    return grouped


def _error_from_response(response: httpx.Response) -> StorageApiError:
    message = response.reason_phrase or "Storage API error"
    error_code = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("error") or body.get("message") or message
        error_code = body.get("code")
    return StorageApiError(str(message), response.status_code, error_code=error_code)


class HttpStorageClient(_HttpBase, StorageClient):
    """Storage API client for buckets, tables, files and jobs."""

    def __init__(self, url: str, token: str, *, poll_config: Optional[PollConfig] = None, **kwargs: Any) -> None:
        super().__init__(url, token, **kwargs)
        self.poll_config = poll_config or PollConfig()

    @classmethod
    def from_settings(cls, settings: StorageApiSettings, **kwargs: Any) -> "HttpStorageClient":
        return cls(
            settings.url,
            settings.token,
            branch_id=settings.branch_id,
            timeout=settings.timeout,
            retry_config=RetryConfig(
                max_attempts=settings.max_retries, backoff_seconds=settings.backoff_factor
            ),
            poll_config=PollConfig(
                interval=settings.job_poll_interval,
                max_interval=settings.job_poll_max_interval,
                max_wait=settings.job_max_wait,
            ),
            **kwargs,
        )

    # Buckets

    def bucket_exists(self, bucket_id: str) -> bool:
        return self._exists(f"buckets/{bucket_id}")

    def create_bucket(self, name: str, stage: str) -> str:
        bucket = self._request("POST", "buckets", form={"name": name, "stage": stage})
        logger.info("Created bucket %s", bucket["id"])
        return str(bucket["id"])

    # Tables

    def table_exists(self, table_id: str) -> bool:
        return self._exists(f"tables/{table_id}")

    def get_table(self, table_id: str) -> Dict[str, Any]:
        return self._request("GET", f"tables/{table_id}")

    def create_table_async(
        self,
        bucket_id: str,
        name: str,
        columns: Sequence[str],
        primary_key: str = "",
        distribution_key: Optional[str] = None,
    ) -> str:
        with tempfile.TemporaryDirectory() as tmp:
            header_path = Path(tmp) / f"{name}.header.csv"
            with open(header_path, "w", newline="", encoding="utf-8") as handle:
                csv.writer(handle, quoting=csv.QUOTE_ALL).writerow(columns)
            file_id = self.upload_file(str(header_path), compress=False)

        job = self._request(
            "POST",
            f"buckets/{bucket_id}/tables-async",
            form={
                "name": name,
                "dataFileId": file_id,
                "primaryKey": primary_key,
                "distributionKey": distribution_key,
            },
        )
        job = self._wait_successful(job)
        return str((job.get("results") or {}).get("id") or f"{bucket_id}.{name}")

    def delete_table_rows(self, table_id: str, options: Dict[str, Any]) -> Dict[str, Any]:
        job = self._request("DELETE", f"tables/{table_id}/rows", params=options)
        return self._wait_successful(job)

    def remove_table_primary_key(self, table_id: str) -> None:
        self._wait_if_job(self._request("DELETE", f"tables/{table_id}/primary-key"))

    def create_table_primary_key(self, table_id: str, columns: Sequence[str]) -> None:
        self._wait_if_job(
            self._request("POST", f"tables/{table_id}/primary-key", form={"columns": list(columns)})
        )

    def load_table_async(self, table_id: str, options: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"tables/{table_id}/import-async", form=options)

    # Files

    def upload_file(self, path: str, *, compress: bool = True, tags: Sequence[str] = ()) -> str:
        with tempfile.TemporaryDirectory() as tmp:
            upload_path = compress_file(path, tmp) if compress else path
            prepared = self._prepare_file(
                Path(upload_path).name, file_size([upload_path]), sliced=False, tags=tags
            )
            upload_prepared_file(prepared, [(upload_path, Path(upload_path).name)], sliced=False)
        logger.debug("Uploaded %s as file %s", path, prepared["id"])
        return str(prepared["id"])

    def upload_sliced_file(
        self,
        slices: Sequence[str],
        file_name: str,
        *,
        compress: bool = True,
        tags: Sequence[str] = (),
    ) -> str:
        with tempfile.TemporaryDirectory() as tmp:
            paths = [compress_file(path, tmp) if compress else path for path in slices]
            name = file_name + (".gz" if compress else "")
            prepared = self._prepare_file(name, file_size(paths), sliced=True, tags=tags)
            upload_prepared_file(prepared, [(path, Path(path).name) for path in paths], sliced=True)
        logger.debug("Uploaded %d slices of %s as file %s", len(slices), file_name, prepared["id"])
        return str(prepared["id"])

    def _prepare_file(self, name: str, size: int, *, sliced: bool, tags: Sequence[str]) -> Dict[str, Any]:
        return self._request(
            "POST",
            "files/prepare",
            branched=False,
            form={
                "name": name,
                "sizeBytes": size,
                "isSliced": sliced,
                "federationToken": True,
                "tags": list(tags) or None,
            },
        )

    # Jobs

    def get_job(self, job_id: str) -> Dict[str, Any]:
        return self._request("GET", f"jobs/{job_id}", branched=False)

    def wait_for_job(self, job_id: str) -> Dict[str, Any]:
        return poll_until(
            lambda: self.get_job(job_id),
            lambda job: job.get("status") in TERMINAL_JOB_STATUSES,
            self.poll_config,
            description=f"job {job_id}",
        )

    def _wait_successful(self, job: Dict[str, Any]) -> Dict[str, Any]:
        result = self.wait_for_job(str(job["id"]))
        if result.get("status") == JOB_STATUS_ERROR:
            error = result.get("error") or {}
            raise StorageApiError(
                error.get("message", f"Job {job['id']} failed"),
                _status_of(error),
                error_code=error.get("code"),
            )
        return result

    def _wait_if_job(self, response: Any) -> None:
        if isinstance(response, dict) and "status" in response and "id" in response:
            self._wait_successful(response)

    def _exists(self, path: str) -> bool:
        try:
            self._request("GET", path)
        except StorageApiError as e:
            if e.is_not_found:
                return False
            raise
        return True


def _status_of(error: Dict[str, Any]) -> int:
    # Job errors carry an exception code, not an HTTP status
    try:
        return int(error.get("httpCode") or 400)
    except (TypeError, ValueError):
        return 400


class HttpMetadataClient(_HttpBase, MetadataClient):
    """Storage API client for bucket, table and column metadata."""

    @classmethod
    def from_settings(cls, settings: StorageApiSettings, **kwargs: Any) -> "HttpMetadataClient":
        return cls(
            settings.url,
            settings.token,
            branch_id=settings.branch_id,
            timeout=settings.timeout,
            retry_config=RetryConfig(
                max_attempts=settings.max_retries, backoff_seconds=settings.backoff_factor
            ),
            **kwargs,
        )

    def list_bucket_metadata(self, bucket_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"buckets/{bucket_id}/metadata") or []

    def list_table_metadata(self, table_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"tables/{table_id}/metadata") or []

    def post_bucket_metadata(
        self, bucket_id: str, provider: str, metadata: List[Dict[str, str]]
    ) -> List[Dict[str, Any]]:
        return self._post_metadata(f"buckets/{bucket_id}/metadata", provider, metadata)

    def post_table_metadata(
        self, table_id: str, provider: str, metadata: List[Dict[str, str]]
    ) -> List[Dict[str, Any]]:
        return self._post_metadata(f"tables/{table_id}/metadata", provider, metadata)

    def post_column_metadata(
        self, column_id: str, provider: str, metadata: List[Dict[str, str]]
    ) -> List[Dict[str, Any]]:
        return self._post_metadata(f"columns/{column_id}/metadata", provider, metadata)

    def _post_metadata(
        self, path: str, provider: str, metadata: List[Dict[str, str]]
    ) -> List[Dict[str, Any]]:
        return self._request("POST", path, form={"provider": provider, "metadata": metadata}) or []
