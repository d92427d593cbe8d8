import pytest

from chatflow.contracts import DraftStatus, EntityKind
from chatflow.db import DraftRecord, SQLEntityRepository
from chatflow.errors import PersistenceError


@pytest.mark.asyncio
async def test_entity_db_lifecycle(tmp_path):
    repo = SQLEntityRepository(f"sqlite+aiosqlite:///{tmp_path / 'drafts.db'}")
    await repo.init_db()

    draft_id = await repo.insert_draft(
        EntityKind.INVOICE, "bob", {"freelancer_name": "Bob Builder"}
    )
    draft = await repo.get_draft(draft_id)
    assert draft.kind == EntityKind.INVOICE
    assert draft.number.startswith("INV-")
    assert draft.status == DraftStatus.DRAFT
    assert draft.fields == {"freelancer_name": "Bob Builder"}

    await repo.update_draft(draft_id, {"client_name": "Acme", "quantity": 10})
    await repo.update_draft(draft_id, {"rate": "150"})
    draft = await repo.get_draft(draft_id)
    assert draft.fields == {
        "freelancer_name": "Bob Builder",
        "client_name": "Acme",
        "quantity": 10,
        "rate": "150",
    }
    assert draft.revision == 2

    await repo.set_status(draft_id, DraftStatus.PENDING_DELIVERY)
    latest = await repo.latest_for_user(
        "bob",
        [EntityKind.INVOICE, EntityKind.PROPOSAL],
        status=DraftStatus.PENDING_DELIVERY,
    )
    assert latest is not None and latest.id == draft_id
    assert await repo.latest_for_user("bob", [EntityKind.PURCHASE]) is None

    async with repo.session() as session:
        row = await session.get(DraftRecord, draft_id)
        assert row.status == "pending-delivery"
        assert row.user_id == "bob"

    await repo.dispose()


@pytest.mark.asyncio
async def test_entity_db_lists_and_deletes(tmp_path):
    repo = SQLEntityRepository(f"sqlite+aiosqlite:///{tmp_path / 'list.db'}")
    await repo.init_db()

    first = await repo.insert_draft(EntityKind.TRANSFER, "bob", {"token": "USDC"})
    second = await repo.insert_draft(EntityKind.PURCHASE, "bob", {"token": "USDT"})
    await repo.insert_draft(EntityKind.PROPOSAL, "carol", {})

    assert [d.id for d in await repo.list_for_user("bob")] == [first, second]

    await repo.delete_draft(first)
    await repo.delete_draft(first)
    assert await repo.get_draft(first) is None
    assert [d.id for d in await repo.list_for_user("bob")] == [second]

    await repo.dispose()


@pytest.mark.asyncio
async def test_entity_db_missing_draft_raises(tmp_path):
    repo = SQLEntityRepository(f"sqlite+aiosqlite:///{tmp_path / 'missing.db'}")
    await repo.init_db()

    with pytest.raises(PersistenceError):
        await repo.set_status("missing", DraftStatus.SENT)
    with pytest.raises(PersistenceError):
        await repo.update_draft("missing", {"a": 1})

    await repo.dispose()
