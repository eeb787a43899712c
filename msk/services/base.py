"""
Base Service Class
"""

from typing import Any, Callable, Dict, Generic, List, Optional, Set, TypeVar
from datetime import datetime

from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from msk.core.exceptions import CustomException, StoreConnectionFailed, StoreWriteFailed
from msk.models.base import BaseModel
from msk.schemas.sync import ACTION_INSERT, ACTION_UPDATE, FieldChange, RecordChange
from msk.utils.date_utils import utc_now

ModelType = TypeVar("ModelType", bound=BaseModel)

# upsert 时不覆盖的列
_INSERT_ONLY_COLUMNS = {"created_at"}


class BaseService(Generic[ModelType]):
    """基础服务类：按主键 upsert + 软删除"""

    def __init__(self, db: Session, model: type, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.model = model
        self.clock = clock

    @property
    def dialect_name(self) -> str:
        return self.db.get_bind().dialect.name

    def _primary_key_names(self, model: type) -> List[str]:
        return [column.name for column in model.__table__.primary_key.columns]

    def _build_upsert(self, model: type, values: Dict[str, Any]):
        """构造按主键 insert-or-update 的语句，所有可变列都被覆盖"""
        table = model.__table__
        keys = self._primary_key_names(model)
        update_columns = [
            name for name in values if name not in keys and name not in _INSERT_ONLY_COLUMNS
        ]
        dialect = self.dialect_name
        if dialect == "mysql":
            stmt = mysql_insert(table).values(**values)
            return stmt.on_duplicate_key_update({name: stmt.inserted[name] for name in update_columns})
        if dialect == "sqlite":
            stmt = sqlite_insert(table).values(**values)
            return stmt.on_conflict_do_update(
                index_elements=keys, set_={name: stmt.excluded[name] for name in update_columns}
            )
        if dialect == "postgresql":
            stmt = postgresql_insert(table).values(**values)
            return stmt.on_conflict_do_update(
                index_elements=keys, set_={name: stmt.excluded[name] for name in update_columns}
            )
        raise StoreWriteFailed(f"upsert is not supported for dialect '{dialect}'")

    def upsert(self, model: type, values: Dict[str, Any], now: datetime) -> None:
        """写入一行；重新出现的记录同时被恢复（is_deleted=False）"""
        row = dict(values)
        row.setdefault("created_at", now)
        row["updated_at"] = now
        row["is_deleted"] = False
        row["deleted_at"] = None
        self.db.execute(self._build_upsert(model, row))

    def live_ids(self, *filters) -> Set[str]:
        """未删除记录的主键集合（只读）"""
        try:
            query = self.db.query(self.model.id).filter(self.model.is_deleted == False, *filters)  # noqa: E712
            return {row[0] for row in query.all()}
        except SQLAlchemyError as exc:
            raise self.read_error(exc) from exc

    def load_existing(self, model: type, *filters) -> List[Any]:
        """读取已存储的记录（含已删除），总是从数据库刷新"""
        try:
            return self.db.query(model).filter(*filters).populate_existing().all()
        except SQLAlchemyError as exc:
            raise self.read_error(exc) from exc

    def compare(self, record_id: str, existing: Optional[Any], values: Dict[str, Any]) -> Optional[RecordChange]:
        """对比已存储记录与将要写入的值，无变化时返回 None"""
        if existing is None:
            return RecordChange(
                record_id=record_id,
                action=ACTION_INSERT,
                changes=[FieldChange(field=name, new=value) for name, value in values.items()],
            )
        changes = [
            FieldChange(field=name, old=getattr(existing, name), new=value)
            for name, value in values.items()
            if getattr(existing, name) != value
        ]
        if existing.is_deleted:
            changes.append(FieldChange(field="is_deleted", old=True, new=False))
        if not changes:
            return None
        return RecordChange(record_id=record_id, action=ACTION_UPDATE, changes=changes)

    def soft_delete(self, model: type, now: datetime, *filters) -> int:
        """把满足条件且未删除的记录标记为删除，返回影响行数"""
        return (
            self.db.query(model)
            .filter(model.is_deleted == False, *filters)  # noqa: E712
            .update({model.is_deleted: True, model.deleted_at: now}, synchronize_session=False)
        )

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def write_error(self, exc: Exception, item_id: Optional[str] = None) -> CustomException:
        """把底层异常转换为存储异常"""
        if isinstance(exc, CustomException):
            return exc.add_context(item_id=item_id)
        if isinstance(exc, OperationalError):
            return StoreConnectionFailed(f"database unavailable: {exc.orig}", item_id=item_id)
        if isinstance(exc, SQLAlchemyError):
            return StoreWriteFailed(f"failed to write record: {exc}", item_id=item_id)
        return StoreWriteFailed(f"invalid record: {exc}", item_id=item_id)

    def read_error(self, exc: SQLAlchemyError) -> CustomException:
        if isinstance(exc, OperationalError):
            return StoreConnectionFailed(f"database unavailable: {exc.orig}")
        return StoreWriteFailed(f"failed to read stored records: {exc}")
