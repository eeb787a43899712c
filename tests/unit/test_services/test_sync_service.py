"""
Test Sync Service
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from msk.cli import render_summary
from msk.core.deadline import Deadline
from msk.core.exceptions import (
    RemoteInconsistentPaging,
    RemoteProtocolError,
    RunCancelled,
    StoreConnectionFailed,
    StoreWriteFailed,
)
from msk.core.pagination import Page
from msk.models.project import Project
from msk.schemas.sync import ACTION_INSERT, ACTION_UPDATE, FieldChange
from msk.schemas.tidbcloud import ProjectItem
from msk.services.project_store_service import PROJECT_SCOPE, ProjectStoreService
from msk.services.sync_service import SyncService


def _projects(start, count):
    return [
        ProjectItem.model_validate(
            {"id": f"p-{i:03d}", "orgId": "org", "name": f"p{i}", "clusterCount": 1, "createTimestamp": "1"}
        )
        for i in range(start, start + count)
    ]


class FakeSource:
    """按页返回预置数据；failures 中的页抛出异常"""

    resource = "projects"

    def __init__(self, items, total=None, failures=None, pages=None):
        self.items = items
        self.total = len(items) if total is None else total
        self.failures = failures or {}
        self.pages = pages
        self.calls = []

    def fetch(self, parent_key, page, page_size):
        self.calls.append((parent_key, page, page_size))
        if page in self.failures:
            raise self.failures[page]
        if self.pages is not None:
            return Page(items=self.pages.get(page, []), total=self.total)
        start = (page - 1) * page_size
        return Page(items=self.items[start:start + page_size], total=self.total)


class RecordingStore:
    def __init__(self, live_ids=None, stale_count=0):
        self.stored = []
        self.stale_calls = []
        self.live = set(live_ids or [])
        self.stale_count = stale_count

    def store(self, parent_key, items):
        self.stored.append((parent_key, [item.identifier for item in items]))

    def mark_stale(self, parent_key, sync_epoch):
        self.stale_calls.append((parent_key, sync_epoch))
        return self.stale_count

    def list_live_ids(self, parent_key):
        return set(self.live)

    def preview(self, parent_key, items):
        return []


def test_pagination_walks_every_page(clock):
    """测试 45 条数据按 20 条分页，恰好请求 3 页"""
    source = FakeSource(_projects(0, 45))
    store = RecordingStore(stale_count=2)

    summary = SyncService(source, store, page_size=20, clock=clock).sync(["*"])

    assert [call[1] for call in source.calls] == [1, 2, 3]
    assert [len(ids) for _, ids in store.stored] == [20, 20, 5]
    assert summary.items_processed == 45
    assert summary.items_marked_stale == 2
    assert summary.parents_processed == 1
    assert summary.parents[0].pages_fetched == 3


def test_sync_epoch_precedes_fetch(clock):
    """测试同步纪元在第一次拉取之前获取"""
    observed = {}

    class ClockedSource(FakeSource):
        def fetch(self, parent_key, page, page_size):
            observed.setdefault("first_fetch", clock())
            return super().fetch(parent_key, page, page_size)

    store = RecordingStore()
    SyncService(ClockedSource(_projects(0, 3)), store, clock=clock).sync(["*"])

    epoch = store.stale_calls[0][1]
    assert epoch < observed["first_fetch"]


def test_empty_listing(clock):
    """测试远端为空时仍执行标记删除"""
    source = FakeSource([], total=0)
    store = RecordingStore(stale_count=4)

    summary = SyncService(source, store, clock=clock).sync(["*"])

    assert store.stored == []
    assert len(store.stale_calls) == 1
    assert summary.items_marked_stale == 4


def test_empty_page_before_total_is_inconsistent(clock):
    """测试未达到 total 时收到空页"""
    source = FakeSource([], total=30, pages={1: _projects(0, 20)})
    store = RecordingStore()

    with pytest.raises(RemoteInconsistentPaging) as exc_info:
        SyncService(source, store, page_size=20, clock=clock).sync(["*"])

    assert exc_info.value.context["page"] == 2
    assert exc_info.value.context["processed"] == 20
    assert exc_info.value.context["total"] == 30
    assert store.stale_calls == []


def test_total_from_first_page_bounds_loop(clock):
    """测试以第一页的 total 为准，不会无限拉取"""
    source = FakeSource(_projects(0, 100), total=25)
    store = RecordingStore()

    summary = SyncService(source, store, page_size=10, clock=clock).sync(["*"])

    assert [call[1] for call in source.calls] == [1, 2, 3]
    assert summary.items_processed == 30


def test_parents_processed_in_order(clock):
    """测试多个 parent key 依次处理并汇总"""
    source = FakeSource(_projects(0, 3))
    store = RecordingStore(stale_count=1)

    summary = SyncService(source, store, clock=clock).sync(["a", "b"])

    assert [call[0] for call in source.calls] == ["a", "b"]
    assert summary.parents_processed == 2
    assert summary.items_processed == 6
    assert summary.items_marked_stale == 2
    assert summary.parent("b").items_processed == 3


def test_failure_aborts_whole_run(clock):
    """测试第一个 parent 失败后不再处理后续 parent"""
    source = FakeSource(_projects(0, 3), failures={1: RemoteProtocolError("boom")})
    store = RecordingStore()

    with pytest.raises(RemoteProtocolError) as exc_info:
        SyncService(source, store, clock=clock).sync(["a", "b"])

    assert [call[0] for call in source.calls] == ["a"]
    assert exc_info.value.context["parent_key"] == "a"
    assert exc_info.value.context["page"] == 1


def test_mid_run_failure_keeps_committed_pages(db_session, clock):
    """测试第 2 页失败：第 1 页已持久化，第 3 页不再请求，不执行标记删除"""
    items = _projects(0, 60)
    source = FakeSource(items, failures={2: RemoteProtocolError("server error")})
    store = ProjectStoreService(db_session, clock=clock)
    store.store(PROJECT_SCOPE, _projects(900, 1))

    with pytest.raises(RemoteProtocolError) as exc_info:
        SyncService(source, store, page_size=20, clock=clock).sync([PROJECT_SCOPE])

    assert exc_info.value.context["page"] == 2
    assert [call[1] for call in source.calls] == [1, 2]
    stored_ids = {p.id for p in db_session.query(Project).filter(Project.is_deleted == False)}  # noqa: E712
    assert stored_ids == {item.id for item in items[:20]} | {"p-900"}


def test_store_failure_reports_page(clock):
    """测试写入失败时错误包含页码与记录ID"""
    class FailingStore(RecordingStore):
        def store(self, parent_key, items):
            raise StoreWriteFailed("bad row", item_id=items[0].identifier)

    source = FakeSource(_projects(0, 5))

    with pytest.raises(StoreWriteFailed) as exc_info:
        SyncService(source, FailingStore(), clock=clock).sync(["*"])

    assert exc_info.value.context == {"item_id": "p-000", "parent_key": "*", "stage": "store", "page": 1}


def test_full_sync_marks_missing_records(db_session, clock):
    """测试完整同步后未出现的记录被标记删除，重复同步结果不变"""
    store = ProjectStoreService(db_session, clock=clock)
    store.store(PROJECT_SCOPE, _projects(0, 5))

    source = FakeSource(_projects(0, 3))
    summary = SyncService(source, store, page_size=2, clock=clock).sync([PROJECT_SCOPE])
    assert summary.items_marked_stale == 2

    again = SyncService(FakeSource(_projects(0, 3)), store, page_size=2, clock=clock).sync([PROJECT_SCOPE])
    assert again.items_marked_stale == 0
    assert store.list_live_ids(PROJECT_SCOPE) == {"p-000", "p-001", "p-002"}


def test_dry_run_never_mutates(db_session, clock):
    """测试 dry-run 只报告，不写库"""
    store = ProjectStoreService(db_session, clock=clock)
    store.store(PROJECT_SCOPE, _projects(0, 4))
    db_session.expire_all()
    before = {p.id: (p.updated_at, p.is_deleted) for p in db_session.query(Project).all()}

    source = FakeSource(_projects(2, 4))
    summary = SyncService(source, store, page_size=3, clock=clock, dry_run=True).sync([PROJECT_SCOPE])

    db_session.expire_all()
    after = {p.id: (p.updated_at, p.is_deleted) for p in db_session.query(Project).all()}
    assert before == after
    assert summary.dry_run is True
    assert summary.items_processed == 4
    assert summary.parents[0].would_mark_stale == ["p-000", "p-001"]
    assert [c.record_id for c in summary.parents[0].would_change] == ["p-004", "p-005"]
    assert summary.items_marked_stale == 2


def test_cancelled_deadline_stops_before_fetch(clock):
    """测试时限耗尽时在拉取前中断"""
    deadline = Deadline(60)
    deadline.cancel()
    source = FakeSource(_projects(0, 3))

    with pytest.raises(RunCancelled) as exc_info:
        SyncService(source, RecordingStore(), deadline=deadline, clock=clock).sync(["*"])

    assert source.calls == []
    assert exc_info.value.context["parent_key"] == "*"


def test_page_size_is_clamped(clock):
    """测试分页大小被限制在 1..100"""
    assert SyncService(FakeSource([]), RecordingStore(), page_size=500, clock=clock).page_size == 100
    assert SyncService(FakeSource([]), RecordingStore(), page_size=0, clock=clock).page_size == 20


def test_store_failure_on_second_page_keeps_first_page(db_session, clock, monkeypatch):
    """测试第 2 页写入失败：第 1 页已持久化，第 2 页整页回滚，第 3 页不再请求"""
    items = _projects(0, 60)
    source = FakeSource(items)
    store = ProjectStoreService(db_session, clock=clock)
    original_upsert = store.upsert

    def failing_upsert(model, values, now):
        if values["id"] == "p-025":
            raise IntegrityError("INSERT INTO projects", {}, Exception("duplicate entry"))
        return original_upsert(model, values, now)

    monkeypatch.setattr(store, "upsert", failing_upsert)

    with pytest.raises(StoreWriteFailed) as exc_info:
        SyncService(source, store, page_size=20, clock=clock).sync([PROJECT_SCOPE])

    assert exc_info.value.context == {"item_id": "p-025", "parent_key": PROJECT_SCOPE, "stage": "store", "page": 2}
    assert [call[1] for call in source.calls] == [1, 2]
    stored_ids = {p.id for p in db_session.query(Project).all()}
    assert stored_ids == {item.id for item in items[:20]}


def test_dry_run_reports_field_changes(db_session, clock):
    """测试 dry-run 报告新增记录与字段的旧值/新值"""
    store = ProjectStoreService(db_session, clock=clock)
    store.store(PROJECT_SCOPE, _projects(0, 2))

    renamed = _projects(0, 1)[0].model_copy(update={"name": "RENAMED"})
    source = FakeSource([renamed] + _projects(1, 2))
    summary = SyncService(source, store, clock=clock, dry_run=True).sync([PROJECT_SCOPE])

    result = summary.parents[0]
    assert [(c.record_id, c.action) for c in result.would_change] == [
        ("p-000", ACTION_UPDATE),
        ("p-002", ACTION_INSERT),
    ]
    assert result.changes_by_action(ACTION_UPDATE)[0].changes == [FieldChange(field="name", old="p0", new="RENAMED")]
    inserted = {c.field: c.new for c in result.changes_by_action(ACTION_INSERT)[0].changes}
    assert inserted["name"] == "p2"
    assert "name: 'p0' -> 'RENAMED'" in render_summary(summary)

    db_session.expire_all()
    assert db_session.get(Project, "p-000").name == "p0"
    assert db_session.get(Project, "p-002") is None


def test_dry_run_reports_revived_record(db_session, clock):
    """测试 dry-run 中重新出现的已删除记录被报告为恢复"""
    store = ProjectStoreService(db_session, clock=clock)
    store.store(PROJECT_SCOPE, _projects(0, 2))
    epoch = clock()
    store.store(PROJECT_SCOPE, _projects(0, 1))
    store.mark_stale(PROJECT_SCOPE, epoch)

    summary = SyncService(FakeSource(_projects(0, 2)), store, clock=clock, dry_run=True).sync([PROJECT_SCOPE])

    change = summary.parents[0].would_change[0]
    assert change.record_id == "p-001"
    assert change.changes == [FieldChange(field="is_deleted", old=True, new=False)]


def test_dry_run_read_failure_has_context(db_session, clock, monkeypatch):
    """测试 dry-run 读取失败时映射为连接异常并带上 parent 信息"""
    store = ProjectStoreService(db_session, clock=clock)

    def broken_query(*args, **kwargs):
        raise OperationalError("SELECT projects.id", {}, Exception("server has gone away"))

    monkeypatch.setattr(db_session, "query", broken_query)

    with pytest.raises(StoreConnectionFailed) as exc_info:
        SyncService(FakeSource([], total=0), store, clock=clock, dry_run=True).sync([PROJECT_SCOPE])

    assert exc_info.value.context == {"parent_key": PROJECT_SCOPE, "stage": "mark_stale"}
