import re
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

from foody.storage import (
    InMemoryStorageClient,
    ObjectNotFoundError,
    S3StorageClient,
    build_image_key,
    guess_content_type,
    parse_s3_url,
)


def _client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "GetObject")


class StorageHelperTests(unittest.TestCase):
    def test_build_image_key(self):
        now = datetime(2025, 3, 1, 12, 30, 45, 123000, tzinfo=timezone.utc)
        key = build_image_key("photo.png", now)
        self.assertRegex(
            key, r"^food-image_2025-03-01T12-30-45-123Z_[0-9a-f]{8}\.png$"
        )
        self.assertTrue(re.search(r"\.jpg$", build_image_key("noextension", now)))

    def test_parse_s3_url(self):
        self.assertEqual(
            parse_s3_url("s3://bucket/path/to/a.jpg"), ("bucket", "path/to/a.jpg")
        )
        self.assertIsNone(parse_s3_url("https://bucket/a.jpg"))
        self.assertIsNone(parse_s3_url("s3://bucket"))
        self.assertIsNone(parse_s3_url(""))

    def test_guess_content_type(self):
        self.assertEqual(guess_content_type("a.PNG"), "image/png")
        self.assertEqual(guess_content_type("a.webp"), "image/webp")
        self.assertEqual(guess_content_type("a.bmp"), "image/jpeg")
        self.assertEqual(guess_content_type("noext"), "image/jpeg")


class InMemoryStorageClientTests(unittest.TestCase):
    def test_roundtrip_and_delete(self):
        storage = InMemoryStorageClient()
        url = storage.upload_bytes("k.jpg", b"abc", "image/jpeg")
        self.assertTrue(url.endswith("/foody-images-test/k.jpg"))
        self.assertEqual(storage.get_object("k.jpg").body, b"abc")
        self.assertTrue(storage.delete_object("k.jpg"))
        self.assertFalse(storage.delete_object("k.jpg"))
        with self.assertRaises(ObjectNotFoundError):
            storage.get_object("k.jpg")


class S3StorageClientTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("foody.storage.boto3.client")
        self.mock_boto_client = patcher.start()
        self.addCleanup(patcher.stop)
        self.s3 = MagicMock()
        self.mock_boto_client.return_value = self.s3
        self.storage = S3StorageClient(bucket="foody-images", region="eu-west-1")

    def test_upload_returns_public_url(self):
        url = self.storage.upload_bytes(
            "a.jpg", b"abc", "image/jpeg", metadata={"upload-source": "foody-app"}
        )
        self.assertEqual(url, "https://foody-images.s3.eu-west-1.amazonaws.com/a.jpg")
        self.s3.put_object.assert_called_once_with(
            Bucket="foody-images",
            Key="a.jpg",
            Body=b"abc",
            ContentType="image/jpeg",
            Metadata={"upload-source": "foody-app"},
        )

    def test_endpoint_override(self):
        storage = S3StorageClient(
            bucket="b", region="us-east-1", endpoint="http://localhost:9000/"
        )
        self.assertEqual(
            storage.upload_bytes("k", b"", "image/png"), "http://localhost:9000/b/k"
        )

    def test_get_object(self):
        body = MagicMock()
        body.read.return_value = b"img"
        self.s3.get_object.return_value = {"Body": body, "ContentType": "image/png"}
        stored = self.storage.get_object("a.png")
        self.assertEqual(stored.body, b"img")
        self.assertEqual(stored.content_type, "image/png")

    def test_get_missing_object(self):
        self.s3.get_object.side_effect = _client_error("NoSuchKey")
        with self.assertRaises(ObjectNotFoundError):
            self.storage.get_object("missing.png")

    def test_other_client_errors_propagate(self):
        self.s3.get_object.side_effect = _client_error("AccessDenied")
        with self.assertRaises(ClientError):
            self.storage.get_object("secret.png")

    def test_delete_object(self):
        self.assertTrue(self.storage.delete_object("a.jpg"))
        self.s3.delete_object.assert_called_once_with(Bucket="foody-images", Key="a.jpg")

        self.s3.head_object.side_effect = _client_error("404")
        self.assertFalse(self.storage.delete_object("gone.jpg"))
        self.assertEqual(self.s3.delete_object.call_count, 1)


if __name__ == "__main__":
    unittest.main()
