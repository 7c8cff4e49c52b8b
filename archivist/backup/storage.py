"""
Storage handlers for backup archives.

Supports:
- LocalStorage: Store archives in a local directory
- S3Storage: Store archives in AWS S3 or an S3-compatible object store

Backends are plain tagged records (see archivist.models); the module-level
functions pick the handler for a backend on every operation.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from archivist.models import Archive, Backend, LocalBackend, S3Backend
from .compression import is_archive_name
from .errors import StorageError, UploadError


logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
# S3 requires every multipart part except the last to be at least 5MB
PART_SIZE = 8 * 1024 * 1024

WriteProgress = Callable[[int], None]


def _sort_newest_first(archives: List[Archive]) -> List[Archive]:
    return sorted(archives, key=lambda a: (a.created_at, a.name), reverse=True)


def _client_error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


class LocalStorage:
    """
    Handler for storing archives in a local directory.

    Archives are kept flat in base_path; listing only looks at its immediate
    entries.
    """

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)

    def _resolve(self, key: str) -> Path:
        path = Path(key)
        if not path.is_absolute():
            path = self.base_path / path
        return path

    def list_archives(self, task_prefix: Optional[str] = None) -> List[Archive]:
        """
        List archives belonging to a task, newest first.

        Args:
            task_prefix: Only include names starting with "{task_prefix}-"

        Returns:
            List of Archive records whose path is the full filesystem path

        Raises:
            StorageError: If the directory cannot be read
        """
        if not self.base_path.exists():
            logger.info(f"Local backend path does not exist yet: {self.base_path}")
            return []

        archives = []
        try:
            with os.scandir(self.base_path) as entries:
                for entry in entries:
                    if not is_archive_name(entry.name, task_prefix):
                        continue
                    try:
                        if not entry.is_file():
                            continue
                        stat = entry.stat()
                    except FileNotFoundError:
                        continue

                    archives.append(Archive(
                        name=entry.name,
                        path=entry.path,
                        size=stat.st_size,
                        created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
                    ))
        except OSError as e:
            raise StorageError(f"Failed to list local archives in {self.base_path}: {e}")

        return _sort_newest_first(archives)

    def write(self, name: str, stream: BinaryIO, progress_callback: Optional[WriteProgress] = None) -> str:
        """
        Copy a byte stream into the backend directory.

        The data is written to a ".part" file first and renamed into place
        once it has been synced, so a crash never leaves a file that looks
        like a finished archive.

        Args:
            name: Archive filename
            stream: Readable binary stream
            progress_callback: Optional callable receiving bytes written so far

        Returns:
            Full path of the stored archive

        Raises:
            UploadError: If writing fails
        """
        dest_path = self._resolve(name)
        part_path = dest_path.with_name(dest_path.name + '.part')

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            written = 0
            with open(part_path, 'wb') as out:
                while True:
                    data = stream.read(CHUNK_SIZE)
                    if not data:
                        break
                    out.write(data)
                    written += len(data)
                    if progress_callback:
                        progress_callback(written)
                out.flush()
                os.fsync(out.fileno())

            os.replace(part_path, dest_path)
            return str(dest_path)

        except OSError as e:
            if part_path.exists():
                try:
                    part_path.unlink()
                except OSError:
                    logger.warning(f"Failed to remove partial file {part_path}")
            raise UploadError(f"Failed to write {dest_path}: {e}")

    def delete(self, key: str):
        """
        Delete an archive from local storage.

        Args:
            key: Full path or path relative to base_path

        Raises:
            StorageError: If deletion fails
        """
        full_path = self._resolve(key)

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete local file {full_path}: {e}")


class S3Storage:
    """
    Handler for storing archives in an S3 bucket.

    Keys have the form {s3_prefix}/{filename}; without a prefix the archive
    sits at the bucket root.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        region: str = 'us-east-1',
        endpoint: Optional[str] = None,
        prefix: Optional[str] = None,
        force_path_style: Optional[bool] = None,
        ssl_enabled: bool = True
    ):
        """
        Initialize S3 storage handler.

        Args:
            access_key: Access key ID
            secret_key: Secret access key
            bucket_name: Bucket name
            region: Region (default: us-east-1)
            endpoint: Custom endpoint URL for S3-compatible providers
            prefix: Optional key prefix all archives are stored under
            force_path_style: Use path-style addressing (defaults to True when an endpoint is set)
            ssl_enabled: Use TLS when talking to the endpoint
        """
        if not access_key or not secret_key:
            raise StorageError("S3 backend requires both an access key ID and a secret access key")

        self.bucket_name = bucket_name
        self.region = region
        self.prefix = (prefix or '').strip('/')

        if force_path_style is None:
            force_path_style = bool(endpoint)

        client_kwargs = {
            'aws_access_key_id': access_key,
            'aws_secret_access_key': secret_key,
            'region_name': region,
            'use_ssl': ssl_enabled,
        }
        if endpoint:
            client_kwargs['endpoint_url'] = endpoint
        if force_path_style:
            client_kwargs['config'] = BotoConfig(s3={'addressing_style': 'path'})

        try:
            self.s3_client = boto3.client('s3', **client_kwargs)
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    @property
    def key_prefix(self) -> str:
        return f"{self.prefix}/" if self.prefix else ''

    def key_for(self, name: str) -> str:
        return f"{self.key_prefix}{name}"

    def list_archives(self, task_prefix: Optional[str] = None) -> List[Archive]:
        """
        List archives belonging to a task, newest first.

        Only keys directly under the backend prefix are considered.

        Raises:
            StorageError: If listing fails
        """
        list_prefix = self.key_prefix + (f"{task_prefix}-" if task_prefix else '')
        archives = []

        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=list_prefix):
                for obj in page.get('Contents', []):
                    key = obj['Key']
                    filename = key[len(self.key_prefix):]
                    if '/' in filename or not is_archive_name(filename, task_prefix):
                        continue

                    archives.append(Archive(
                        name=filename,
                        path=key,
                        size=obj.get('Size', 0),
                        created_at=obj['LastModified']
                    ))

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

        return _sort_newest_first(archives)

    def write(self, name: str, stream: BinaryIO, progress_callback: Optional[WriteProgress] = None) -> str:
        """
        Upload a byte stream to S3.

        Bodies smaller than one part go up with a single put_object; larger
        ones use a multipart upload holding at most one part in memory.

        Returns:
            Key of the uploaded object

        Raises:
            UploadError: If the upload fails
        """
        key = self.key_for(name)

        try:
            first = stream.read(PART_SIZE)
            if len(first) < PART_SIZE:
                self.s3_client.put_object(Bucket=self.bucket_name, Key=key, Body=first)
                if progress_callback:
                    progress_callback(len(first))
            else:
                self._multipart_upload(key, first, stream, progress_callback)

            return key

        except ClientError as e:
            raise UploadError(f"S3 upload failed ({_client_error_code(e)}): {e}")
        except (BotoCoreError, OSError) as e:
            raise UploadError(f"Failed to upload to S3: {e}")

    def _multipart_upload(self, key: str, first: bytes, stream: BinaryIO,
                          progress_callback: Optional[WriteProgress] = None):
        response = self.s3_client.create_multipart_upload(Bucket=self.bucket_name, Key=key)
        upload_id = response['UploadId']

        parts = []
        sent = 0

        try:
            data = first
            part_number = 1

            while data:
                response = self.s3_client.upload_part(
                    Bucket=self.bucket_name,
                    Key=key,
                    PartNumber=part_number,
                    UploadId=upload_id,
                    Body=data
                )
                parts.append({'PartNumber': part_number, 'ETag': response['ETag']})

                sent += len(data)
                if progress_callback:
                    progress_callback(sent)

                part_number += 1
                data = stream.read(PART_SIZE)

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id} for {key}: {abort_error}")
            raise

    def delete(self, key: str):
        """
        Delete an object from S3.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete from S3: {e}")


def storage_for(backend: Backend):
    """
    Build the storage handler for a backend record.

    Raises:
        StorageError: If the backend type is not supported
    """
    if isinstance(backend, LocalBackend):
        return LocalStorage(backend.path)

    if isinstance(backend, S3Backend):
        return S3Storage(
            access_key=backend.access_key_id,
            secret_key=backend.secret_access_key,
            bucket_name=backend.bucket,
            region=backend.region,
            endpoint=backend.endpoint,
            prefix=backend.s3_prefix,
            force_path_style=backend.force_path_style,
            ssl_enabled=backend.ssl_enabled
        )

    raise StorageError(f"Unsupported backend type: {getattr(backend, 'type', type(backend).__name__)}")


def list_archives(backend: Backend, task_prefix: Optional[str] = None) -> List[Archive]:
    """List a task's archives on a backend, newest first."""
    return storage_for(backend).list_archives(task_prefix)


def write_archive(backend: Backend, name: str, stream: BinaryIO,
                  progress_callback: Optional[WriteProgress] = None) -> str:
    """Write an archive stream to a backend, returning its storage key."""
    return storage_for(backend).write(name, stream, progress_callback)


def delete_archive(backend: Backend, key: str):
    """Delete an archive from a backend by storage key."""
    storage_for(backend).delete(key)


def object_key(backend: Backend, name: str) -> str:
    """Storage key an archive named `name` gets on a backend."""
    if isinstance(backend, S3Backend):
        prefix = (backend.s3_prefix or '').strip('/')
        return f"{prefix}/{name}" if prefix else name
    return os.path.join(backend.path, name)
