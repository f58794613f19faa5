import hashlib
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from planstore.data_init import open_planner
from planstore.errors import (
    NotFoundError,
    RecordValidationError,
    ReferentialConflictError,
    StorageUnavailableError,
)
from planstore.kv_store import CATEGORIES_KEY, NOTES_KEY, PROJECTS_KEY, TASKS_KEY
from planstore.repositories import NoteRepository, is_task_overdue
from planstore.schemas import CategoryCreate, CustomReminder, ProjectPatch, TaskCreate, TaskPatch

from tests.conftest import make_settings

DUE = datetime(2030, 6, 1, 12, tzinfo=timezone.utc)


async def _category(planner, name="Work"):
    return await planner.categories.create(CategoryCreate(name=name, color="#2196f3", icon="briefcase"))


async def _project(planner, category_id, name="Launch"):
    return await planner.projects.create({"name": name, "category_id": category_id})


async def _task(planner, project_id, title="Task", **extra):
    return await planner.tasks.create(TaskCreate(title=title, due_date=DUE, project_id=project_id, **extra))


@pytest.mark.asyncio
async def test_create_then_get_by_id_returns_the_record(planner):
    category = await _category(planner)
    assert category.id
    assert category.created_at.tzinfo is not None
    assert await planner.categories.get_by_id(category.id) == category
    assert await planner.categories.exists(category.id) is True
    assert await planner.categories.exists("missing") is False


@pytest.mark.asyncio
async def test_writes_are_mirrored_into_key_value_store(planner):
    category = await _category(planner)
    project = await _project(planner, category.id)
    records = await planner.selector.fallback.get_collection(PROJECTS_KEY)
    assert records == [
        {
            "id": project.id,
            "name": "Launch",
            "categoryId": category.id,
            "createdAt": records[0]["createdAt"],
        }
    ]


@pytest.mark.asyncio
async def test_update_merges_only_patched_fields(planner):
    category = await _category(planner)
    project = await _project(planner, category.id)

    updated = await planner.projects.update(project.id, ProjectPatch(description="first release"))

    assert updated.name == "Launch"
    assert updated.description == "first release"
    assert updated.created_at == project.created_at
    assert await planner.projects.get_by_id(project.id) == updated
    cleared = await planner.projects.update(project.id, {"description": None})
    assert cleared.description is None


@pytest.mark.asyncio
async def test_update_missing_record_raises_not_found(planner):
    with pytest.raises(NotFoundError):
        await planner.categories.update("nope", {"name": "x"})


@pytest.mark.asyncio
async def test_update_rejects_empty_display_fields(planner):
    category = await _category(planner)
    with pytest.raises(RecordValidationError):
        await planner.categories.update(category.id, {"icon": ""})
    assert (await planner.categories.get_by_id(category.id)).icon == "briefcase"


@pytest.mark.asyncio
async def test_delete_category_referenced_by_project_conflicts(planner):
    category = await _category(planner)
    project = await _project(planner, category.id)

    with pytest.raises(ReferentialConflictError) as exc_info:
        await planner.categories.delete(category.id)

    assert exc_info.value.dependents == [project.id]
    assert await planner.categories.get_by_id(category.id) == category
    assert await planner.projects.get_by_id(project.id) == project


@pytest.mark.asyncio
async def test_delete_unreferenced_category(planner):
    category = await _category(planner)
    await planner.categories.delete(category.id)
    assert await planner.categories.get_all() == []
    assert await planner.selector.fallback.get_collection(CATEGORIES_KEY) == []


@pytest.mark.asyncio
async def test_get_all_dedupes_and_skips_corrupt_records(planner):
    category = await _category(planner)
    fallback = planner.selector.fallback
    records = await fallback.get_collection(CATEGORIES_KEY)
    records.append(dict(records[0]))
    records.append({"id": "no-icon", "name": "Home", "color": "#ffffff", "createdAt": "2024-01-01T00:00:00Z"})
    await fallback.set_collection(CATEGORIES_KEY, records)
    await planner.selector.sync_from_fallback()

    assert [item.id for item in await planner.categories.get_all()] == [category.id]


@pytest.mark.asyncio
async def test_projects_by_category(planner):
    work = await _category(planner, "Work")
    home = await _category(planner, "Home")
    launch = await _project(planner, work.id, "Launch")
    await _project(planner, home.id, "Garden")
    assert await planner.projects.get_by_category(work.id) == [launch]


@pytest.mark.asyncio
async def test_end_to_end_project_lifecycle(planner):
    category = await planner.categories.create({"name": "Work", "color": "#2196f3", "icon": "briefcase"})
    project = await _project(planner, category.id)
    other = await _project(planner, category.id, "Other")
    first = await _task(planner, project.id, "first")
    second = await _task(planner, project.id, "second")
    survivor = await _task(planner, other.id, "elsewhere")

    by_project = await planner.tasks.get_by_project(project.id)
    assert [task.id for task in by_project] == [first.id, second.id]
    assert [task.order for task in by_project] == [0, 1]

    await planner.projects.delete(project.id)

    assert await planner.projects.get_by_id(project.id) is None
    assert [task.id for task in await planner.tasks.get_all()] == [survivor.id]
    mirrored = await planner.selector.fallback.get_collection(TASKS_KEY)
    assert [record["id"] for record in mirrored] == [survivor.id]


@pytest.mark.asyncio
async def test_task_order_is_monotonic_after_deletion(planner):
    first = await _task(planner, "p1")
    second = await _task(planner, "p1")
    await planner.tasks.delete(first.id)
    third = await _task(planner, "p1")
    assert (second.order, third.order) == (1, 2)
    assert (await _task(planner, "p2")).order == 0


@pytest.mark.asyncio
async def test_task_defaults_and_optional_fields(planner):
    reminder = CustomReminder(custom_date_time=DUE - timedelta(hours=2))
    task = await _task(
        planner,
        "p1",
        start_time=DUE - timedelta(hours=1),
        end_time=DUE,
        notification=reminder,
        image="file:///photo.jpg",
    )
    assert task.completed is False
    stored = await planner.tasks.get_by_id(task.id)
    assert stored == task
    assert stored.notification.kind == "custom"


@pytest.mark.asyncio
async def test_task_time_window_is_validated(planner):
    with pytest.raises(RecordValidationError):
        await planner.tasks.create(
            {"title": "bad", "due_date": DUE, "project_id": "p1", "start_time": DUE, "end_time": DUE}
        )
    task = await _task(planner, "p1")
    with pytest.raises(RecordValidationError):
        await planner.tasks.update(task.id, TaskPatch(start_time=DUE, end_time=DUE - timedelta(minutes=5)))


@pytest.mark.asyncio
async def test_toggle_completed(planner):
    task = await _task(planner, "p1")
    done = await planner.tasks.toggle_completed(task.id, True)
    assert done.completed is True
    assert (await planner.tasks.get_by_id(task.id)).completed is True


@pytest.mark.asyncio
async def test_move_to_project_appends_at_end(planner):
    existing = await _task(planner, "p2")
    moving = await _task(planner, "p1")

    moved = await planner.tasks.move_to_project(moving.id, "p2")

    assert moved.project_id == "p2"
    assert moved.order == existing.order + 1
    assert [task.id for task in await planner.tasks.get_by_project("p2")] == [existing.id, moving.id]
    assert await planner.tasks.get_by_project("p1") == []


@pytest.mark.asyncio
async def test_move_missing_task_raises_not_found(planner):
    with pytest.raises(NotFoundError):
        await planner.tasks.move_to_project("missing", "p1")


@pytest.mark.asyncio
async def test_reorder_assigns_positions_and_ignores_unknown_ids(planner):
    a = await _task(planner, "p1", "a")
    b = await _task(planner, "p1", "b")
    c = await _task(planner, "p1", "c")
    foreign = await _task(planner, "p2", "foreign")

    result = await planner.tasks.reorder("p1", [c.id, "unknown", a.id, foreign.id])

    orders = {task.id: task.order for task in result}
    assert orders == {c.id: 0, a.id: 2, b.id: 1}
    assert (await planner.tasks.get_by_id(foreign.id)).order == 0
    mirrored = {record["id"]: record["order"] for record in await planner.selector.fallback.get_collection(TASKS_KEY)}
    assert mirrored[c.id] == 0 and mirrored[a.id] == 2


@pytest.mark.asyncio
async def test_overdue_tasks(planner):
    past = await planner.tasks.create(
        {"title": "late", "due_date": datetime.now(timezone.utc) - timedelta(days=3), "project_id": "p1"}
    )
    await _task(planner, "p1", "future")
    finished = await planner.tasks.create(
        {"title": "done", "due_date": datetime.now(timezone.utc) - timedelta(days=3), "project_id": "p1"}
    )
    await planner.tasks.toggle_completed(finished.id, True)

    assert [task.id for task in await planner.tasks.get_overdue()] == [past.id]


@pytest.mark.asyncio
async def test_is_task_overdue_compares_calendar_days(planner):
    task = await _task(planner, "p1")
    assert is_task_overdue(task, today=DUE.astimezone().date() + timedelta(days=1)) is True
    assert is_task_overdue(task, today=DUE.astimezone().date()) is False
    done = task.model_copy(update={"completed": True})
    assert is_task_overdue(done, today=date(2099, 1, 1)) is False


@pytest.mark.asyncio
async def test_protected_note_round_trip(planner):
    note = await planner.notes.create({"title": "Diary", "content": "dear diary"}, "secret")

    assert note.protected is True
    assert note.password_hash and note.password_hash != "secret"
    assert await planner.notes.unlock(note.id, "secret") == note
    assert await planner.notes.unlock(note.id, "wrong") is None
    assert await planner.notes.unlock("missing", "secret") is None
    stored = await planner.selector.fallback.get_collection(NOTES_KEY)
    assert "secret" not in str(stored)


@pytest.mark.asyncio
async def test_note_password_changes(planner):
    note = await planner.notes.create({"title": "Plain", "content": "text"})
    assert note.protected is False and note.password_hash is None
    assert await planner.notes.unlock(note.id, "anything") == note

    locked = await planner.notes.update(note.id, {"content": "hidden"}, password="pw")
    assert locked.protected is True
    assert NoteRepository.verify_password("pw", locked.password_hash)
    assert locked.modified_at >= note.modified_at

    retitled = await planner.notes.update(note.id, {"title": "Renamed"})
    assert retitled.protected is True
    assert retitled.password_hash == locked.password_hash

    unlocked = await planner.notes.update(note.id, password="  ")
    assert unlocked.protected is False
    assert unlocked.password_hash is None
    assert (await planner.notes.get_by_id(note.id)).content == "hidden"


@pytest.mark.asyncio
async def test_delete_note(planner):
    note = await planner.notes.create({"title": "Temp", "content": ""})
    await planner.notes.delete(note.id)
    assert await planner.notes.get_all() == []
    assert await planner.selector.fallback.get_collection(NOTES_KEY) == []


@pytest.mark.asyncio
async def test_delete_by_project_removes_only_that_projects_tasks(planner):
    category = await _category(planner)
    first = await _project(planner, category.id, "First")
    second = await _project(planner, category.id, "Second")
    await _task(planner, first.id, "a")
    await _task(planner, first.id, "b")
    kept = await _task(planner, second.id, "c")

    await planner.tasks.delete_by_project(first.id)

    assert await planner.tasks.get_by_project(first.id) == []
    assert await planner.tasks.get_all() == [kept]
    assert [record["id"] for record in await planner.selector.fallback.get_collection(TASKS_KEY)] == [kept.id]
    assert await planner.projects.exists(first.id) is True


def test_password_hashes_are_salted():
    first = NoteRepository.hash_password("secret")
    second = NoteRepository.hash_password("secret")
    assert first != second
    assert first.startswith("$2")
    assert NoteRepository.verify_password("secret", first)
    assert NoteRepository.verify_password("secret", second)
    assert not NoteRepository.verify_password("wrong", first)
    assert not NoteRepository.verify_password("secret", "not-a-hash")
    assert not NoteRepository.verify_password("secret", None)


def test_legacy_sha256_digest_still_verifies():
    digest = hashlib.sha256(b"secret").hexdigest()
    assert NoteRepository.verify_password("secret", digest)
    assert not NoteRepository.verify_password("Secret", digest)


def test_overlong_password_is_rejected():
    with pytest.raises(RecordValidationError):
        NoteRepository.hash_password("x" * 73)


@pytest.mark.asyncio
async def test_whitespace_password_leaves_note_unprotected(planner):
    note = await planner.notes.create({"title": "Open", "content": ""}, "   ")
    assert note.protected is False
    assert note.password_hash is None


@pytest.mark.asyncio
async def test_relational_write_failures_propagate(tmp_path):
    planner = await open_planner(make_settings(tmp_path), probe=lambda: True)
    try:
        category = await _category(planner)
        failure = StorageUnavailableError("database is locked")
        with patch("planstore.relational.RelationalStore.save_category", side_effect=failure):
            with pytest.raises(StorageUnavailableError):
                await _category(planner, "Home")
            with pytest.raises(StorageUnavailableError):
                await planner.categories.update(category.id, {"name": "Renamed"})
        with patch("planstore.relational.RelationalStore.delete_category", side_effect=failure):
            with pytest.raises(StorageUnavailableError):
                await planner.categories.delete(category.id)

        assert await planner.categories.get_all() == [category]
        records = await planner.selector.fallback.get_collection(CATEGORIES_KEY)
        assert [(record["id"], record["name"]) for record in records] == [(category.id, "Work")]
    finally:
        await planner.close()


@pytest.mark.asyncio
async def test_key_value_write_failures_propagate(tmp_path):
    settings = make_settings(tmp_path, PLANSTORE_FALLBACK_PATH=str(tmp_path / "fallback.json"))
    planner = await open_planner(settings, probe=lambda: False)
    try:
        category = await _category(planner)
        with patch("planstore.kv_store._write_document", side_effect=OSError("disk full")):
            with pytest.raises(StorageUnavailableError):
                await _category(planner, "Home")
            with pytest.raises(StorageUnavailableError):
                await planner.categories.update(category.id, {"name": "Renamed"})
            with pytest.raises(StorageUnavailableError):
                await planner.categories.delete(category.id)

        assert await planner.categories.get_all() == [category]
    finally:
        await planner.close()
