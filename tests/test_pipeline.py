"""Tests for gmail_archiver.pipeline."""

from __future__ import annotations

import asyncio
import dataclasses
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError
from sqlalchemy.exc import SQLAlchemyError

from gmail_archiver.config import S3Config
from gmail_archiver.credentials import Credential
from gmail_archiver.db.store import ArchiveStore
from gmail_archiver.errors import AuthError, TransientFetchError
from gmail_archiver.pipeline import IngestOutcome, MessageIngestionPipeline
from gmail_archiver.storage import S3AttachmentStore

from tests.conftest import make_attachment_part, make_message, make_part


@pytest.fixture
def s3_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
async def object_store(s3_config: S3Config, s3_client: MagicMock) -> S3AttachmentStore:
    store = S3AttachmentStore(s3_config)
    with patch("gmail_archiver.storage.boto3") as mock_boto3:
        mock_boto3.client.return_value = s3_client
        await store.start()
    return store


@pytest.fixture
def gmail() -> AsyncMock:
    client = AsyncMock()
    client.get_attachment_bytes = AsyncMock(side_effect=lambda _c, _m, att_id: f"bytes-{att_id}".encode())
    return client


@pytest.fixture
def credentials(credential: Credential) -> AsyncMock:
    service = AsyncMock()
    service.force_refresh = AsyncMock(
        return_value=dataclasses.replace(credential, access_token="refreshed-token")
    )
    return service


@pytest.fixture
def pipeline(
    store: ArchiveStore,
    gmail: AsyncMock,
    object_store: S3AttachmentStore,
    credentials: AsyncMock,
):
    return MessageIngestionPipeline(store, gmail, object_store, credentials)


def _uploaded_keys(s3_client: MagicMock) -> list[str]:
    """Keys of attachment objects (folder markers excluded)."""
    return [
        c.kwargs["Key"]
        for c in s3_client.put_object.call_args_list
        if not c.kwargs["Key"].endswith("/")
    ]


class TestIngest:
    @pytest.mark.asyncio
    async def test_message_without_attachments(
        self, pipeline, gmail, store: ArchiveStore, s3_client, credential: Credential
    ):
        gmail.get_message.return_value = make_message("m1", body_text="Hi")

        outcome = await pipeline.ingest(credential, "m1")

        assert outcome is IngestOutcome.STORED
        email = await store.get_email("m1")
        assert email.body_text == "Hi"
        assert email.account_id == credential.account_id
        assert email.attachments == []
        gmail.get_attachment_bytes.assert_not_awaited()
        s3_client.head_object.assert_not_called()
        s3_client.put_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_single_attachment_goes_to_root(
        self, pipeline, gmail, store: ArchiveStore, s3_client, credential: Credential
    ):
        gmail.get_message.return_value = make_message(
            "m1", attachments=[make_attachment_part("1", "invoice.pdf")]
        )

        assert await pipeline.ingest(credential, "m1") is IngestOutcome.STORED

        keys = _uploaded_keys(s3_client)
        assert len(keys) == 1
        assert keys[0].startswith("Email Attachments/")
        assert keys[0].count("/") == 1
        attachments = await store.list_attachments_for("m1")
        assert [a.filename for a in attachments] == ["invoice.pdf"]
        assert attachments[0].mime_type == "application/pdf"
        assert attachments[0].link.endswith(keys[0].replace(" ", "%20"))

    @pytest.mark.asyncio
    async def test_failed_download_skips_only_that_attachment(
        self, pipeline, gmail, store: ArchiveStore, s3_client, credential: Credential
    ):
        gmail.get_message.return_value = make_message(
            "m1",
            subject="Q3 numbers",
            attachments=[
                make_attachment_part("1", "a.pdf"),
                make_attachment_part("2", "b.pdf"),
                make_attachment_part("3", "c.pdf"),
            ],
        )

        async def _download(_cred, _message_id, attachment_id):
            if attachment_id == "att-2":
                raise TransientFetchError("boom")
            return attachment_id.encode()

        gmail.get_attachment_bytes.side_effect = _download

        assert await pipeline.ingest(credential, "m1") is IngestOutcome.STORED

        keys = _uploaded_keys(s3_client)
        assert len(keys) == 2
        folders = {key.rsplit("/", 1)[0] for key in keys}
        assert len(folders) == 1
        assert folders.pop().startswith("Email Attachments/Q3 numbers-")
        attachments = await store.list_attachments_for("m1")
        assert sorted(a.filename for a in attachments) == ["a.pdf", "c.pdf"]

    @pytest.mark.asyncio
    async def test_inline_attachment_data(
        self, pipeline, gmail, store: ArchiveStore, s3_client, credential: Credential
    ):
        gmail.get_message.return_value = make_message(
            "m1", attachments=[make_part(part_id="1", filename="note.txt", data="inline")]
        )

        await pipeline.ingest(credential, "m1")

        gmail.get_attachment_bytes.assert_not_awaited()
        bodies = [c.kwargs["Body"] for c in s3_client.put_object.call_args_list]
        assert b"inline" in bodies

    @pytest.mark.asyncio
    async def test_corrupt_inline_attachment_skips_only_that_attachment(
        self, pipeline, gmail, store: ArchiveStore, s3_client, credential: Credential
    ):
        corrupt = make_part(part_id="2", filename="broken.txt", data="placeholder")
        corrupt["body"]["data"] = "abcde"
        gmail.get_message.return_value = make_message(
            "m1",
            attachments=[
                make_attachment_part("1", "a.pdf"),
                corrupt,
                make_part(part_id="3", filename="note.txt", data="inline"),
            ],
        )

        assert await pipeline.ingest(credential, "m1") is IngestOutcome.STORED

        attachments = await store.list_attachments_for("m1")
        assert sorted(a.filename for a in attachments) == ["a.pdf", "note.txt"]
        assert len(_uploaded_keys(s3_client)) == 2

    @pytest.mark.asyncio
    async def test_record_failure_skips_only_that_attachment(
        self, pipeline, gmail, store: ArchiveStore, s3_client, credential: Credential
    ):
        gmail.get_message.return_value = make_message(
            "m1",
            attachments=[
                make_attachment_part("1", "a.pdf"),
                make_attachment_part("2", "b.pdf"),
                make_attachment_part("3", "c.pdf"),
            ],
        )
        original = store.create_attachment
        calls = []

        async def _create(email_id, **kwargs):
            calls.append(kwargs["filename"])
            if len(calls) == 1:
                raise SQLAlchemyError("database is locked")
            return await original(email_id, **kwargs)

        with patch.object(store, "create_attachment", side_effect=_create):
            assert await pipeline.ingest(credential, "m1") is IngestOutcome.STORED

        assert calls == ["a.pdf", "b.pdf", "c.pdf"]
        attachments = await store.list_attachments_for("m1")
        assert sorted(a.filename for a in attachments) == ["b.pdf", "c.pdf"]
        assert len(_uploaded_keys(s3_client)) == 3

    @pytest.mark.asyncio
    async def test_upload_failure_records_nothing_for_that_attachment(
        self, pipeline, gmail, store: ArchiveStore, s3_client, credential: Credential
    ):
        gmail.get_message.return_value = make_message(
            "m1", attachments=[make_attachment_part("1", "a.pdf")]
        )
        s3_client.put_object_acl.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied"}}, "PutObjectAcl"
        )

        assert await pipeline.ingest(credential, "m1") is IngestOutcome.STORED
        assert await store.list_attachments_for("m1") == []
        assert await store.email_exists("m1")

    @pytest.mark.asyncio
    async def test_folder_failure_keeps_email(
        self, pipeline, gmail, store: ArchiveStore, s3_client, credential: Credential
    ):
        gmail.get_message.return_value = make_message(
            "m1", attachments=[make_attachment_part("1", "a.pdf")]
        )
        s3_client.head_object.side_effect = ClientError({"Error": {"Code": "403"}}, "HeadObject")

        assert await pipeline.ingest(credential, "m1") is IngestOutcome.STORED
        assert await store.email_exists("m1")
        assert await store.count_attachments() == 0


class TestIdempotence:
    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(
        self, pipeline, gmail, store: ArchiveStore, s3_client, credential: Credential
    ):
        gmail.get_message.return_value = make_message(
            "m1", attachments=[make_attachment_part("1", "a.pdf")]
        )

        assert await pipeline.ingest(credential, "m1") is IngestOutcome.STORED
        assert await pipeline.ingest(credential, "m1") is IngestOutcome.ALREADY_STORED

        assert gmail.get_message.await_count == 1
        assert len(_uploaded_keys(s3_client)) == 1
        assert await store.count_emails() == 1
        assert await store.count_attachments() == 1

    @pytest.mark.asyncio
    async def test_concurrent_runs_store_once(
        self, pipeline, gmail, store: ArchiveStore, s3_client, credential: Credential
    ):
        gmail.get_message.return_value = make_message(
            "m1", attachments=[make_attachment_part("1", "a.pdf")]
        )

        outcomes = await asyncio.gather(
            pipeline.ingest(credential, "m1"),
            pipeline.ingest(credential, "m1"),
        )

        assert outcomes.count(IngestOutcome.STORED) == 1
        assert await store.count_emails() == 1
        assert await store.count_attachments() == 1
        assert len(_uploaded_keys(s3_client)) == 1


class TestFailures:
    @pytest.mark.asyncio
    async def test_fetch_failure(self, pipeline, gmail, store: ArchiveStore, credential: Credential):
        gmail.get_message.side_effect = TransientFetchError("503")
        assert await pipeline.ingest(credential, "m1") is IngestOutcome.FAILED
        assert not await store.email_exists("m1")

    @pytest.mark.asyncio
    async def test_auth_failure(self, pipeline, gmail, credentials, credential: Credential):
        gmail.get_message.side_effect = AuthError("revoked")
        assert await pipeline.ingest(credential, "m1") is IngestOutcome.AUTH_FAILED
        credentials.force_refresh.assert_awaited_once_with(credential.account_id)
        assert gmail.get_message.await_count == 2

    @pytest.mark.asyncio
    async def test_missing_payload(self, pipeline, gmail, store: ArchiveStore, credential: Credential):
        gmail.get_message.return_value = {"id": "m1"}
        assert await pipeline.ingest(credential, "m1") is IngestOutcome.EMPTY
        assert not await store.email_exists("m1")

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, pipeline, gmail, credential: Credential):
        gmail.get_message.side_effect = RuntimeError("bug")
        assert await pipeline.ingest(credential, "m1") is IngestOutcome.FAILED


class TestTokenRefresh:
    @pytest.mark.asyncio
    async def test_rejected_token_is_refreshed_and_retried(
        self, pipeline, gmail, credentials, store: ArchiveStore, credential: Credential
    ):
        gmail.get_message.side_effect = [
            AuthError("expired"),
            make_message("m1", attachments=[make_attachment_part("1", "a.pdf")]),
        ]

        assert await pipeline.ingest(credential, "m1") is IngestOutcome.STORED

        credentials.force_refresh.assert_awaited_once_with(credential.account_id)
        tokens = [c.args[0].access_token for c in gmail.get_message.await_args_list]
        assert tokens == ["access-token", "refreshed-token"]
        # The refreshed credential carries over to attachment downloads
        assert gmail.get_attachment_bytes.await_args.args[0].access_token == "refreshed-token"
        assert await store.email_exists("m1")

    @pytest.mark.asyncio
    async def test_attachment_download_refreshes_once(
        self, pipeline, gmail, credentials, store: ArchiveStore, credential: Credential
    ):
        gmail.get_message.return_value = make_message(
            "m1", attachments=[make_attachment_part("1", "a.pdf")]
        )
        gmail.get_attachment_bytes.side_effect = [AuthError("expired"), b"%PDF"]

        assert await pipeline.ingest(credential, "m1") is IngestOutcome.STORED

        credentials.force_refresh.assert_awaited_once()
        assert [a.filename for a in await store.list_attachments_for("m1")] == ["a.pdf"]

    @pytest.mark.asyncio
    async def test_rejected_refresh_token(
        self, pipeline, gmail, credentials, store: ArchiveStore, credential: Credential
    ):
        gmail.get_message.side_effect = AuthError("expired")
        credentials.force_refresh.side_effect = AuthError("invalid_grant")

        assert await pipeline.ingest(credential, "m1") is IngestOutcome.AUTH_FAILED
        assert gmail.get_message.await_count == 1
        assert not await store.email_exists("m1")
