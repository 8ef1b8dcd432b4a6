import asyncio
import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from gallery_ai.services.storage.s3 import S3Service, S3ServiceError


@pytest.fixture
def client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def service(client, test_settings):
    return S3Service(client=client, config=test_settings)


def test_fetch(client, service):
    body = StreamingBody(io.BytesIO(b"jpeg-bytes"), len(b"jpeg-bytes"))
    with Stubber(client) as stubber:
        stubber.add_response(
            "get_object",
            {"Body": body},
            {"Bucket": service.bucket_name, "Key": "galleries/g/thumbs/0.jpg"},
        )

        assert asyncio.run(service.fetch("galleries/g/thumbs/0.jpg")) == b"jpeg-bytes"


def test_fetch_missing_object(client, service):
    with Stubber(client) as stubber:
        stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)

        with pytest.raises(S3ServiceError, match="Object not found"):
            asyncio.run(service.fetch("galleries/g/thumbs/404.jpg"))


def test_put(client, service):
    with Stubber(client) as stubber:
        stubber.add_response(
            "put_object",
            {},
            {
                "Bucket": service.bucket_name,
                "Key": "faces/g/p/face_0.jpg",
                "Body": b"crop",
                "ContentType": "image/jpeg",
            },
        )

        asyncio.run(service.put("faces/g/p/face_0.jpg", b"crop"))
        stubber.assert_no_pending_responses()


def test_put_failure(client, service):
    with Stubber(client) as stubber:
        stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)

        with pytest.raises(S3ServiceError):
            asyncio.run(service.put("faces/g/p/face_0.jpg", b"crop"))
