"""S3 storage service for photo and face-crop objects."""
import asyncio
import logging
from typing import Dict, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from gallery_ai.app.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class S3ServiceError(Exception):
    """Custom exception for S3 service errors."""
    pass


class S3Service:
    """Service for S3 operations used by the analysis pipeline."""

    def __init__(self, client=None, config: Optional[Settings] = None):
        """Initialize S3 client with configuration."""
        self.config = config or default_settings
        self.bucket_name = self.config.S3_BUCKET_NAME
        if client is not None:
            self.s3_client = client
            return
        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=self.config.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=self.config.AWS_SECRET_ACCESS_KEY,
                region_name=self.config.AWS_REGION,
                config=Config(
                    signature_version='s3v4',
                    s3={'addressing_style': 'virtual'}
                )
            )
            logger.info(f"S3 Service initialized for bucket: {self.bucket_name}")
        except Exception as e:
            logger.error(f"Failed to initialize S3 client: {e}")
            raise S3ServiceError(f"S3 initialization failed: {str(e)}")

    def download_file(self, s3_key: str) -> bytes:
        """
        Download file from S3 and return raw bytes.

        Args:
            s3_key: S3 object key

        Returns:
            File content as bytes

        Raises:
            S3ServiceError: If download fails
        """
        try:
            response = self.s3_client.get_object(
                Bucket=self.bucket_name,
                Key=s3_key
            )
            file_bytes = response['Body'].read()
            logger.debug(f"Downloaded {len(file_bytes)} bytes from: {s3_key}")
            return file_bytes

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', '')
            if error_code in ('NoSuchKey', '404'):
                raise S3ServiceError(f"Object not found: {s3_key}")
            logger.error(f"Error downloading file: {e}")
            raise S3ServiceError(f"Failed to download file: {str(e)}")
        except BotoCoreError as e:
            logger.error(f"Error downloading file: {e}")
            raise S3ServiceError(f"Failed to download file: {str(e)}")

    def upload_file(
        self,
        file_data: bytes,
        s3_key: str,
        content_type: str = 'application/octet-stream',
        metadata: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Upload file bytes directly to S3.

        Raises:
            S3ServiceError: If upload fails
        """
        try:
            params = {
                'Bucket': self.bucket_name,
                'Key': s3_key,
                'Body': file_data,
                'ContentType': content_type
            }

            if metadata:
                params['Metadata'] = metadata

            self.s3_client.put_object(**params)
            logger.info(f"Uploaded {len(file_data)} bytes to: {s3_key}")
            return True

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading file: {e}")
            raise S3ServiceError(f"Failed to upload file: {str(e)}")

    async def fetch(self, s3_key: str) -> bytes:
        """Async download used by the analysis pipeline."""
        return await asyncio.to_thread(self.download_file, s3_key)

    async def put(self, s3_key: str, data: bytes, content_type: str = 'image/jpeg') -> None:
        await asyncio.to_thread(self.upload_file, data, s3_key, content_type)
