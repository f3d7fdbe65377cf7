"""
S3 storage handler for backup artifacts.

All operations are scoped to one bucket and region. S3 has no rename, so
rotation is built from put, copy, list and delete.
"""

import logging
from typing import IO, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ConnectivityError


logger = logging.getLogger(__name__)


class StorageError(ConnectivityError):
    """Raised when storage operation fails."""
    pass


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Handler for storing backups in AWS S3 or an S3-compatible store.
    """

    def __init__(self, bucket_name: str, region: str = 'us-east-1',
                 access_key: Optional[str] = None, secret_key: Optional[str] = None,
                 endpoint_url: Optional[str] = None):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
            access_key: AWS access key ID (default: boto3 credential chain)
            secret_key: AWS secret access key (default: boto3 credential chain)
            endpoint_url: Custom endpoint for S3-compatible stores
        """
        self.bucket_name = bucket_name
        self.region = region

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}") from e

    def put(self, key: str, stream: IO[bytes]):
        """
        Upload a stream to S3.

        The stream is read in chunks and sent as a multipart upload, so it
        does not need to be seekable or fit in memory.

        Args:
            key: Destination object key
            stream: Readable binary stream

        Raises:
            StorageError: If upload fails
        """
        try:
            self.s3_client.upload_fileobj(
                stream,
                self.bucket_name,
                key,
                ExtraArgs={'ContentType': 'application/gzip'}
            )
        except ClientError as e:
            raise StorageError(f"S3 upload of {key} failed ({_error_code(e)}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 upload of {key} failed: {e}") from e

    def copy(self, source_key: str, dest_key: str):
        """
        Copy an object within the bucket.

        Args:
            source_key: Existing object key
            dest_key: Destination object key

        Raises:
            StorageError: If copy fails
        """
        try:
            self.s3_client.copy(
                {'Bucket': self.bucket_name, 'Key': source_key},
                self.bucket_name,
                dest_key
            )
        except ClientError as e:
            raise StorageError(f"S3 copy {source_key} -> {dest_key} failed ({_error_code(e)}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 copy {source_key} -> {dest_key} failed: {e}") from e

    def delete(self, key: str):
        """
        Delete an object from S3.

        Args:
            key: S3 object key to delete

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=key
            )
        except ClientError as e:
            raise StorageError(f"S3 delete of {key} failed ({_error_code(e)}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 delete of {key} failed: {e}") from e

    def list_objects(self, prefix: str) -> List[dict]:
        """
        List objects in S3 with given prefix.

        Args:
            prefix: S3 key prefix to filter by

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size']
                    })

            return objects

        except ClientError as e:
            raise StorageError(f"S3 list of {prefix} failed ({_error_code(e)}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 list of {prefix} failed: {e}") from e

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Returns:
            True if connection is successful

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = _error_code(e)
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.bucket_name}") from e
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}") from e
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to connect to S3: {e}") from e
