import json
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

from career_relay.config.settings import settings
from career_relay.domain.accounts import Account, AccountStore, Plan
from career_relay.domain.exceptions import BusinessError
from career_relay.domain.models import ProviderName
from career_relay.domain.records import JD_TITLE_LENGTH, RECENT_RECORDS_LIMIT, JobRecord, RecordStore


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _safe_id(value: str, code: str) -> str:
    if not value or "/" in value or "\\" in value or value.startswith("."):
        raise BusinessError(code=code, message=value or "")
    return value


def _write_json(path: Path, obj: Dict[str, Any]) -> None:
    """先写临时文件再 os.replace，读者不会看到写了一半的文件。"""
    tmp_path = path.with_name(f"{path.stem}.{uuid4().hex}.json.tmp")
    try:
        tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as e:
        raise BusinessError(code="STORE_WRITE_ERROR", message=str(e), http_status=500)


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise BusinessError(code="STORE_READ_ERROR", message=str(e), http_status=500)


class JsonAccountStore(AccountStore):
    """每个账户一个 JSON 文件：<root>/accounts/<id>.json。

    locked(account_id) 返回账户级的可重入锁；写方法自身也在锁内执行，
    调用方可以把“读取-判定-写回”整体放进同一把锁里。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._acc_root = self._root / "accounts"
        self._acc_root.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def locked(self, account_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(account_id, threading.RLock())
        with lock:
            yield

    def create(self, account_id: Optional[str] = None, plan: Plan = "free") -> Account:
        account = Account(
            id=account_id or f"u-{uuid4().hex}",
            plan=plan,
            usage_count=0,
            usage_reset_at=datetime.now(timezone.utc),
        )
        self.save(account)
        return account

    def get(self, account_id: str) -> Optional[Account]:
        path = self._path(account_id)
        if not path.exists():
            return None
        return self._to_account(_read_json(path))

    def save(self, account: Account) -> None:
        _write_json(
            self._path(account.id),
            {
                "id": account.id,
                "plan": account.plan,
                "usage_count": account.usage_count,
                "usage_reset_at": _iso(account.usage_reset_at),
                "custom_provider": account.custom_provider,
                "custom_api_key": account.custom_api_key,
                "custom_model": account.custom_model,
            },
        )

    def set_api_key(self, account_id: str, provider: ProviderName, api_key: str, model: Optional[str]) -> Account:
        with self.locked(account_id):
            account = self._require(account_id)
            account.custom_provider = provider
            account.custom_api_key = api_key
            account.custom_model = model or None
            self.save(account)
        return account

    def clear_api_key(self, account_id: str) -> Account:
        with self.locked(account_id):
            account = self._require(account_id)
            account.custom_provider = None
            account.custom_api_key = None
            account.custom_model = None
            self.save(account)
        return account

    def record_usage(self, account_id: str, usage_count: int, usage_reset_at: datetime) -> Account:
        """写回 check_access 给出的用量变化。"""
        with self.locked(account_id):
            account = self._require(account_id)
            account.usage_count = usage_count
            account.usage_reset_at = usage_reset_at
            self.save(account)
        return account

    def _require(self, account_id: str) -> Account:
        account = self.get(account_id)
        if account is None:
            raise BusinessError(code="ACCOUNT_NOT_FOUND", message=account_id, http_status=404)
        return account

    def _path(self, account_id: str) -> Path:
        return self._acc_root / f"{_safe_id(account_id, 'INVALID_ACCOUNT_ID')}.json"

    def _to_account(self, data: Dict[str, Any]) -> Account:
        return Account(
            id=data["id"],
            plan=data.get("plan") or "free",
            usage_count=int(data.get("usage_count", 0)),
            usage_reset_at=_parse_iso(data["usage_reset_at"]),
            custom_provider=data.get("custom_provider"),
            custom_api_key=data.get("custom_api_key"),
            custom_model=data.get("custom_model"),
        )


class JsonRecordStore(RecordStore):
    """每条求职记录一个 JSON 文件：<root>/records/<id>.json。

    所有读写都带 user_id，访问他人的记录与记录不存在同样处理。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._rec_root = self._root / "records"
        self._rec_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def create(self, user_id: str, company: str, jd_content: str, resume: str) -> JobRecord:
        now = datetime.now(timezone.utc)
        record = JobRecord(
            id=f"r-{uuid4().hex}",
            user_id=user_id,
            company=company,
            jd_title=jd_content[:JD_TITLE_LENGTH],
            jd_content=jd_content,
            resume=resume,
            created_at=now,
            updated_at=now,
        )
        self._write(record)
        return record

    def get(self, record_id: str, user_id: str) -> Optional[JobRecord]:
        path = self._path(record_id)
        if not path.exists():
            return None
        record = self._to_record(_read_json(path))
        return record if record.user_id == user_id else None

    def list_recent(self, user_id: str, limit: int = RECENT_RECORDS_LIMIT) -> List[JobRecord]:
        items: List[JobRecord] = []
        for path in self._rec_root.glob("*.json"):
            try:
                record = self._to_record(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, json.JSONDecodeError, KeyError, ValueError):
                continue
            if record.user_id == user_id:
                items.append(record)
        items.sort(key=lambda r: r.updated_at, reverse=True)
        return items[:limit]

    def merge_result(self, record_id: str, user_id: str, action_type: str, content: str) -> Optional[JobRecord]:
        """把某个功能的最终文本写入 results[action_type]，其余结果保留。"""
        with self._lock:
            record = self.get(record_id, user_id)
            if record is None:
                return None
            record.results[action_type] = content
            record.updated_at = datetime.now(timezone.utc)
            self._write(record)
        return record

    def delete(self, record_id: str, user_id: str) -> None:
        with self._lock:
            if self.get(record_id, user_id) is None:
                return
            try:
                self._path(record_id).unlink()
            except FileNotFoundError:
                return
            except OSError as e:
                raise BusinessError(code="STORE_DELETE_ERROR", message=str(e), http_status=500)

    def _path(self, record_id: str) -> Path:
        return self._rec_root / f"{_safe_id(record_id, 'INVALID_RECORD_ID')}.json"

    def _write(self, record: JobRecord) -> None:
        _write_json(
            self._path(record.id),
            {
                "id": record.id,
                "user_id": record.user_id,
                "company": record.company,
                "jd_title": record.jd_title,
                "jd_content": record.jd_content,
                "resume": record.resume,
                "results": record.results,
                "created_at": _iso(record.created_at),
                "updated_at": _iso(record.updated_at),
            },
        )

    def _to_record(self, data: Dict[str, Any]) -> JobRecord:
        results = data.get("results")
        return JobRecord(
            id=data["id"],
            user_id=data["user_id"],
            company=data.get("company") or "",
            jd_title=data.get("jd_title") or "",
            jd_content=data.get("jd_content") or "",
            resume=data.get("resume") or "",
            results=dict(results) if isinstance(results, dict) else {},
            created_at=_parse_iso(data["created_at"]),
            updated_at=_parse_iso(data["updated_at"]),
        )
