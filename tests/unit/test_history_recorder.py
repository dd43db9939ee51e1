from unittest.mock import AsyncMock

import pytest

from opera_gateway.core.database import create_db_and_tables, create_engine, create_session_factory
from opera_gateway.core.exceptions import HistoryWriteError
from opera_gateway.engines.enhancement.models import HistoryEntry
from opera_gateway.engines.enhancement.repositories import HistoryRepository
from opera_gateway.engines.enhancement.services import HistoryRecorder


def make_entry(user_id: str = "user-1", job_id: str = "job-1") -> HistoryEntry:
    return HistoryEntry(
        user_id=user_id,
        job_id=job_id,
        enhancement_settings={"scale": 2, "sharpen": 37, "denoise": 25, "faceRecovery": False},
        result_url=f"https://store.test/{job_id}.png",
    )


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'history.db'}")
    yield engine
    await engine.dispose()


@pytest.mark.asyncio
async def test_append_persists_entry(engine):
    await create_db_and_tables(engine)
    repo = HistoryRepository(create_session_factory(engine))
    recorder = HistoryRecorder(repo)

    assert await recorder.append(make_entry(job_id="job-1")) is True
    assert await recorder.append(make_entry(job_id="job-2")) is True
    assert await recorder.append(make_entry(user_id="someone-else", job_id="job-3")) is True

    entries = await repo.list_for_user("user-1")
    assert {e.job_id for e in entries} == {"job-1", "job-2"}
    assert entries[0].created_at >= entries[1].created_at
    assert entries[0].enhancement_settings["sharpen"] == 37
    assert entries[0].processing_type == "general_enhancement"
    assert entries[0].credits_consumed == 1


@pytest.mark.asyncio
async def test_list_for_user_respects_limit(engine):
    await create_db_and_tables(engine)
    repo = HistoryRepository(create_session_factory(engine))
    for i in range(4):
        await repo.add(make_entry(job_id=f"job-{i}"))

    assert len(await repo.list_for_user("user-1", limit=2)) == 2


@pytest.mark.asyncio
async def test_repository_wraps_database_errors(engine):
    # Tables never created
    repo = HistoryRepository(create_session_factory(engine))
    with pytest.raises(HistoryWriteError) as exc_info:
        await repo.add(make_entry())
    assert exc_info.value.job_id == "job-1"


@pytest.mark.asyncio
async def test_recorder_swallows_write_failures():
    repo = AsyncMock(spec=HistoryRepository)
    repo.add.side_effect = HistoryWriteError("disk full", job_id="job-1")
    recorder = HistoryRecorder(repo)

    assert await recorder.append(make_entry()) is False
    repo.add.assert_awaited_once()


@pytest.mark.asyncio
async def test_recorder_swallows_unexpected_errors():
    repo = AsyncMock(spec=HistoryRepository)
    repo.add.side_effect = OSError("unable to open database file")
    recorder = HistoryRecorder(repo)

    assert await recorder.append(make_entry()) is False


def test_created_at_is_timezone_aware():
    assert make_entry().created_at.tzinfo is not None
