"""
Integration tests for idempotent message archiving
"""

import pytest
from unittest.mock import MagicMock, patch
from sqlalchemy import select, func
from core.exceptions import ValidationError
from models.raw_message import Conversation, RawMessage


async def count_messages(db_session):
    return (await db_session.execute(select(func.count()).select_from(RawMessage))).scalar()


@pytest.mark.asyncio
async def test_archive_is_idempotent_on_external_id(db_session, context, make_inbound):
    archive = context.archive(db_session)

    first = await archive.archive(make_inbound("wamid.001", "WTS 316 SS pipe"))
    second = await archive.archive(make_inbound("wamid.001", "WTS 316 SS pipe"))

    assert first.created is True
    assert first.status == "archived"
    assert second.created is False
    assert second.status == "already_archived"
    assert second.raw_message.id == first.raw_message.id
    assert await count_messages(db_session) == 1


@pytest.mark.asyncio
async def test_archived_message_fields(db_session, context, make_inbound):
    result = await context.archive(db_session).archive(
        make_inbound("wamid.002", "WTB 2in ball valve", quotedExternalId="wamid.001", forwarded=True)
    )
    raw = result.raw_message

    assert raw.processed is False
    assert raw.body == "WTB 2in ball valve"
    assert raw.sender_id == "+971500000001"
    assert raw.quoted_external_id == "wamid.001"
    assert raw.forwarded is True
    assert raw.message_type == "text"
    assert raw.sent_at is not None
    assert raw.raw_payload["externalId"] == "wamid.002"


@pytest.mark.asyncio
async def test_conversation_reused_across_messages(db_session, context, make_inbound):
    archive = context.archive(db_session)
    await archive.archive(make_inbound("wamid.010", "first"))
    await archive.archive(make_inbound("wamid.011", "second"))
    await archive.archive(make_inbound("wamid.012", "other group", conversation="group-2@g.us"))

    conversations = (await db_session.execute(select(Conversation))).scalars().all()
    assert sorted(c.external_id for c in conversations) == ["group-1@g.us", "group-2@g.us"]


@pytest.mark.asyncio
async def test_blank_external_id_rejected(db_session, context, make_inbound):
    with pytest.raises(ValidationError):
        await context.archive(db_session).archive(make_inbound("  ", "hello"))

    assert await count_messages(db_session) == 0


@pytest.mark.asyncio
async def test_new_messages_are_handed_to_pipeline(db_session, context, make_inbound):
    pipeline = MagicMock()
    archive = context.archive(db_session, pipeline=pipeline)

    result = await archive.archive(make_inbound("wamid.020", "WTS valves"))
    await archive.archive(make_inbound("wamid.020", "WTS valves"))

    pipeline.submit.assert_called_once_with(result.raw_message.id)


@pytest.mark.asyncio
async def test_concurrent_insert_treated_as_duplicate(db_session, session_factory, context, make_inbound):
    async with session_factory() as other:
        winner = (await context.archive(other).archive(make_inbound("wamid.040", "WTS pipe"))).raw_message

    pipeline = MagicMock()
    archive = context.archive(db_session, pipeline=pipeline)
    lookup = archive._find_existing
    calls = []

    async def miss_first_lookup(external_id):
        # The duplicate check ran before the other writer committed
        calls.append(external_id)
        if len(calls) == 1:
            return None
        return await lookup(external_id)

    with patch.object(archive, "_find_existing", new=miss_first_lookup):
        result = await archive.archive(make_inbound("wamid.040", "WTS pipe"))

    assert calls == ["wamid.040", "wamid.040"]
    assert result.created is False
    assert result.status == "already_archived"
    assert result.raw_message.id == winner.id
    assert await count_messages(db_session) == 1
    pipeline.submit.assert_not_called()


@pytest.mark.asyncio
async def test_media_is_stored_locally(db_session, context, make_inbound, tmp_path):
    result = await context.archive(db_session).archive(
        make_inbound(
            "wamid.030",
            "photo of the lot",
            mediaUrl="https://media.test/abc",
            mediaMimeType="image/jpeg",
        )
    )
    raw = result.raw_message

    assert raw.message_type == "image"
    assert raw.media_local_path is not None
    assert raw.media_local_path.endswith(f"{raw.id}.jpg")
    assert (tmp_path / "media" / str(raw.conversation_id) / f"{raw.id}.jpg").exists()
