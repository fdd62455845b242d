import pytest
from sqlalchemy import update
from sqlalchemy.future import select

from models.content_item import ContentItem
from models.ingestion_job import IngestionJob
from models.linked_account import LinkedAccount
from models.user import User
from services.connectors import ContentPage, Provider, ProviderContentItem
from services.content_sync import run_content_sync_for_all_accounts, sync_account_content
from services.crypto import encrypt_token
from services.errors import ProviderError


def _item(item_id, *media_urls, text=None):
    return ProviderContentItem(provider_item_id=item_id, kind="post", text=text, media_urls=tuple(media_urls))


async def _seed_account(session_maker, *, user_id="sync-user", provider="instagram", access_token="token-1"):
    async with session_maker() as db:
        db.add(User(id=user_id, email=f"{user_id}@example.com"))
        account = LinkedAccount(
            user_id=user_id,
            provider=provider,
            provider_account_id=f"{provider}-acct",
            access_token_encrypted=encrypt_token(access_token),
        )
        db.add(account)
        await db.commit()
        return account.id


async def _load_account(db, account_id) -> LinkedAccount:
    return (await db.execute(select(LinkedAccount).where(LinkedAccount.id == account_id))).scalar_one()


@pytest.mark.asyncio
async def test_sync_follows_cursor_until_exhausted(session_maker, fake_adapter_cls):
    account_id = await _seed_account(session_maker)
    adapter = fake_adapter_cls(
        Provider.INSTAGRAM,
        pages=[
            ContentPage(items=[_item("p1", "https://cdn.example.com/1.jpg")], next_cursor="c2"),
            ContentPage(items=[_item("p2"), _item("p3", "https://cdn.example.com/3.jpg")]),
        ],
    )

    async with session_maker() as db:
        result = await sync_account_content(db, await _load_account(db, account_id), adapter=adapter, max_pages=5)

    assert result.pages_fetched == 2
    assert result.items_upserted == 3
    assert result.media_jobs_enqueued == 2
    assert result.warnings == []
    assert [call["cursor"] for call in adapter.fetch_calls] == [None, "c2"]
    assert adapter.fetch_calls[0]["external_id"] == "instagram-acct"
    async with session_maker() as db:
        account = await _load_account(db, account_id)
    assert account.last_synced_at is not None


@pytest.mark.asyncio
async def test_sync_stops_at_max_pages(session_maker, fake_adapter_cls):
    account_id = await _seed_account(session_maker)
    adapter = fake_adapter_cls(
        Provider.INSTAGRAM,
        pages=[ContentPage(items=[_item(f"p{index}")], next_cursor=f"c{index + 1}") for index in range(4)],
    )

    async with session_maker() as db:
        result = await sync_account_content(db, await _load_account(db, account_id), adapter=adapter, max_pages=2)

    assert result.pages_fetched == 2
    assert len(adapter.fetch_calls) == 2


@pytest.mark.asyncio
async def test_resync_updates_items_without_duplicating_jobs(session_maker, fake_adapter_cls):
    account_id = await _seed_account(session_maker)
    first = fake_adapter_cls(Provider.INSTAGRAM, pages=[ContentPage(items=[_item("p1", "https://cdn.example.com/1.jpg", text="v1")])])
    second = fake_adapter_cls(Provider.INSTAGRAM, pages=[ContentPage(items=[_item("p1", "https://cdn.example.com/1.jpg", text="v2")])])

    async with session_maker() as db:
        await sync_account_content(db, await _load_account(db, account_id), adapter=first)
    async with session_maker() as db:
        result = await sync_account_content(db, await _load_account(db, account_id), adapter=second)

    assert result.media_jobs_enqueued == 0
    async with session_maker() as db:
        items = (await db.execute(select(ContentItem))).scalars().all()
        jobs = (await db.execute(select(IngestionJob))).scalars().all()
    assert [(item.provider_item_id, item.text) for item in items] == [("p1", "v2")]
    assert len(jobs) == 1


@pytest.mark.asyncio
async def test_auth_failure_retries_once_with_reloaded_credential(session_maker, fake_adapter_cls):
    account_id = await _seed_account(session_maker, access_token="stale")

    class RotatingAdapter(fake_adapter_cls):
        async def fetch_content_page(self, access_token, cursor=None, external_id=None):
            if access_token == "stale":
                self.fetch_calls.append({"access_token": access_token, "cursor": cursor, "external_id": external_id})
                async with session_maker() as other:
                    await other.execute(
                        update(LinkedAccount)
                        .where(LinkedAccount.id == account_id)
                        .values(access_token_encrypted=encrypt_token("fresh"))
                    )
                    await other.commit()
                raise ProviderError("instagram", "token expired", status_code=401)
            return await super().fetch_content_page(access_token, cursor, external_id)

    adapter = RotatingAdapter(Provider.INSTAGRAM, pages=[ContentPage(items=[_item("p1")])])

    async with session_maker() as db:
        result = await sync_account_content(db, await _load_account(db, account_id), adapter=adapter)

    assert [call["access_token"] for call in adapter.fetch_calls] == ["stale", "fresh"]
    assert result.items_upserted == 1
    assert result.warnings == []


@pytest.mark.asyncio
async def test_repeated_auth_failure_becomes_warning(session_maker, fake_adapter_cls):
    account_id = await _seed_account(session_maker)
    adapter = fake_adapter_cls(
        Provider.INSTAGRAM,
        pages=[
            ProviderError("instagram", "unauthorized", status_code=401),
            ProviderError("instagram", "unauthorized", status_code=401),
        ],
    )

    async with session_maker() as db:
        result = await sync_account_content(db, await _load_account(db, account_id), adapter=adapter)

    assert len(adapter.fetch_calls) == 2
    assert result.items_upserted == 0
    assert len(result.warnings) == 1
    assert "content fetch failed" in result.warnings[0]


@pytest.mark.asyncio
async def test_sync_all_accounts_isolates_failures(session_maker, fake_adapter_cls):
    await _seed_account(session_maker, user_id="sync-a", provider="twitter")
    await _seed_account(session_maker, user_id="sync-b", provider="linkedin")
    adapters = {
        Provider.TWITTER: fake_adapter_cls(Provider.TWITTER, pages=[ProviderError("twitter", "boom", status_code=500)]),
        Provider.LINKEDIN: fake_adapter_cls(Provider.LINKEDIN, pages=[ContentPage(items=[_item("li-1")])]),
    }

    results = await run_content_sync_for_all_accounts(
        session_maker=session_maker,
        adapter_resolver=lambda provider: adapters[provider],
    )

    by_provider = {result.provider: result for result in results}
    assert by_provider["twitter"].warnings
    assert by_provider["linkedin"].items_upserted == 1
    assert by_provider["linkedin"].warnings == []
