import pytest
from sqlalchemy.exc import OperationalError

from app.chat.entity.chat import MessageRecord, ToolInvocation, Turn
from app.chat.exceptions import PersistenceError
from app.chat.repository.message_repository import MessageRepository
from app.chat.service.decoder import decode_records
from app.chat.service.encoder import encode_turn


def _record(chat_id: str, content: str, role: str = "user") -> MessageRecord:
    return MessageRecord(chat_id=chat_id, role=role, content=content)


@pytest.mark.asyncio
async def test_batch_then_single_append_keeps_submission_order(message_repo, chat_repo):
    chat = await chat_repo.create_chat("u-1")
    batch = [_record(chat.chat_id, f"m{i}", role="user" if i % 2 == 0 else "assistant") for i in range(5)]

    assert await message_repo.append_batch(batch) == 5
    await message_repo.append(_record(chat.chat_id, "last"))

    records = await message_repo.list_by_chat(chat.chat_id)
    assert [r.content for r in records] == ["m0", "m1", "m2", "m3", "m4", "last"]

    timestamps = [t.created_at for t in decode_records(records)]
    assert timestamps == sorted(timestamps)
    assert len(set(timestamps)) == len(timestamps)


@pytest.mark.asyncio
async def test_append_assigns_ids_and_stores_parts(message_repo, chat_repo):
    chat = await chat_repo.create_chat("u-1")
    turn = Turn(
        role="assistant",
        content="",
        tool_invocations=[ToolInvocation(tool_call_id="t1", tool_name="getMemories", args={}, state="result", result=[])],
    )

    message_id = await message_repo.append(encode_turn(turn, chat.chat_id))

    [stored] = await message_repo.list_by_chat(chat.chat_id)
    assert stored.id == message_id
    assert stored.user_id is None
    assert decode_records([stored])[0].tool_invocations[0].tool_call_id == "t1"


@pytest.mark.asyncio
async def test_messages_are_scoped_to_their_chat(message_repo, chat_repo):
    first = await chat_repo.create_chat("u-1")
    second = await chat_repo.create_chat("u-1")
    await message_repo.append(_record(first.chat_id, "a"))
    await message_repo.append(_record(second.chat_id, "b"))

    assert [r.content for r in await message_repo.list_by_chat(first.chat_id)] == ["a"]


@pytest.mark.asyncio
async def test_delete_by_chat_clears_only_that_chat(message_repo, chat_repo):
    first = await chat_repo.create_chat("u-1")
    second = await chat_repo.create_chat("u-1")
    await message_repo.append_batch([_record(first.chat_id, "a"), _record(first.chat_id, "b")])
    await message_repo.append(_record(second.chat_id, "c"))

    assert await message_repo.delete_by_chat(first.chat_id) == 2
    assert await message_repo.list_by_chat(first.chat_id) == []
    assert len(await message_repo.list_by_chat(second.chat_id)) == 1


@pytest.mark.asyncio
async def test_empty_batch_is_a_no_op(message_repo):
    assert await message_repo.append_batch([]) == 0


@pytest.mark.asyncio
async def test_driver_errors_surface_as_persistence_error():
    class BrokenSession:
        async def __aenter__(self):
            raise OperationalError("INSERT", {}, Exception("database is gone"))

        async def __aexit__(self, *exc):
            return False

    repo = MessageRepository(lambda: BrokenSession())

    with pytest.raises(PersistenceError):
        await repo.append(_record("c-1", "x"))
    with pytest.raises(PersistenceError):
        await repo.list_by_chat("c-1")


@pytest.mark.asyncio
async def test_delete_chat_removes_its_messages(message_repo, chat_repo):
    chat = await chat_repo.create_chat("u-1", title="Plans")
    await message_repo.append(_record(chat.chat_id, "a"))

    await chat_repo.delete_chat(chat.chat_id)

    assert await chat_repo.get_chat(chat.chat_id) is None
    assert await message_repo.list_by_chat(chat.chat_id) == []


@pytest.mark.asyncio
async def test_list_chats_filters_by_owner_and_project(chat_repo):
    await chat_repo.create_chat("u-1", project_id="p-1")
    await chat_repo.create_chat("u-1")
    await chat_repo.create_chat("u-2", project_id="p-1")

    assert len(await chat_repo.list_chats("u-1")) == 2
    [in_project] = await chat_repo.list_chats("u-1", project_id="p-1")
    assert in_project.project_id == "p-1"
    assert in_project.title == "New Chat"
