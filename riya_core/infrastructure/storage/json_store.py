import json
import os
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from riya_core.config.settings import settings
from riya_core.domain.conversation import DailyUsage, UserProfile
from riya_core.domain.exceptions import BusinessError, PersistenceError, ValidationError
from riya_core.domain.models import ConversationRow, Role
from riya_core.domain.session import GuestSession

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_dt(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonConversationStore:
    """基于 JSON 文件的会话存储。

    目录结构::

        <root>/sessions/<session_id>/meta.json       访客会话记录
        <root>/sessions/<session_id>/messages.jsonl  追加写的消息行
        <root>/users/<user_id>.json                  登录用户资料、每日用量与 Pro 标记

    同时实现 ConversationStore、GuestSessionStore 与 UserStore 三个协议。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._sessions_root = self._root / "sessions"
        self._users_root = self._root / "users"
        self._sessions_root.mkdir(parents=True, exist_ok=True)
        self._users_root.mkdir(parents=True, exist_ok=True)

    # ---- ConversationStore ----

    def append_message(self, session_id: str, role: Role, content: str) -> ConversationRow:
        sdir = self._session_dir(session_id)
        row = ConversationRow(
            id=f"m-{uuid4().hex}",
            session_id=session_id,
            role=role,
            content=content,
            created_at=datetime.now(timezone.utc),
        )
        payload = {
            "id": row.id,
            "session_id": row.session_id,
            "role": row.role,
            "content": row.content,
            "created_at": _iso(row.created_at),
        }
        try:
            sdir.mkdir(parents=True, exist_ok=True)
            with (sdir / "messages.jsonl").open("a", encoding="utf-8") as f:
                f.write(json.dumps(payload, ensure_ascii=False) + "\n")
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e), session_id=session_id)
        return row

    def list_messages(self, session_id: str) -> List[ConversationRow]:
        msgs_path = self._session_dir(session_id) / "messages.jsonl"
        items: List[ConversationRow] = []
        if not msgs_path.exists():
            return items
        try:
            lines = msgs_path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e), session_id=session_id)
        for line in lines:
            try:
                data = json.loads(line)
                items.append(self._to_row(data))
            except (json.JSONDecodeError, KeyError, ValueError):
                continue
        # 同一时间戳的行保持写入顺序（sort 是稳定的）
        items.sort(key=lambda r: r.created_at)
        return items

    # ---- GuestSessionStore ----

    def create_session(self, session_id: str, user_agent: Optional[str] = None) -> GuestSession:
        sdir = self._session_dir(session_id)
        sdir.mkdir(parents=True, exist_ok=True)
        session = GuestSession(session_id=session_id, message_count=0, converted=False, user_agent=user_agent)
        self._write_meta(sdir, session)
        return session

    def get_session(self, session_id: str) -> Optional[GuestSession]:
        meta_path = self._session_dir(session_id) / "meta.json"
        if not meta_path.exists():
            return None
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e), session_id=session_id)
        return GuestSession(
            session_id=data["session_id"],
            message_count=int(data.get("message_count", 0)),
            converted=bool(data.get("converted", False)),
            user_agent=data.get("user_agent"),
        )

    def update_message_count(self, session_id: str, message_count: int) -> None:
        session = self._require_session(session_id)
        session.message_count = message_count
        self._write_meta(self._session_dir(session_id), session)

    def mark_converted(self, session_id: str) -> None:
        session = self._require_session(session_id)
        session.converted = True
        self._write_meta(self._session_dir(session_id), session)

    # ---- UserStore ----

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        data = self._read_usage(user_id).get("profile")
        if not data:
            return None
        return UserProfile(
            user_id=user_id,
            username=data.get("username") or "",
            user_age=int(data.get("user_age", 0)),
            user_gender=data.get("user_gender") or "",
        )

    def save_profile(self, profile: UserProfile) -> None:
        data = self._read_usage(profile.user_id)
        data["profile"] = {
            "username": profile.username,
            "user_age": profile.user_age,
            "user_gender": profile.user_gender,
        }
        self._write_usage(profile.user_id, data)

    def get_usage(self, user_id: str, usage_date: date) -> DailyUsage:
        data = self._read_usage(user_id)
        count = int(data.get("days", {}).get(usage_date.isoformat(), 0))
        return DailyUsage(user_id=user_id, usage_date=usage_date, message_count=count)

    def increment_usage(self, user_id: str, usage_date: date, by: int = 1) -> DailyUsage:
        data = self._read_usage(user_id)
        days: Dict[str, Any] = data.setdefault("days", {})
        key = usage_date.isoformat()
        days[key] = int(days.get(key, 0)) + by
        self._write_usage(user_id, data)
        return DailyUsage(user_id=user_id, usage_date=usage_date, message_count=days[key])

    def is_pro(self, user_id: str) -> bool:
        return bool(self._read_usage(user_id).get("pro", False))

    def set_pro(self, user_id: str, pro: bool) -> None:
        data = self._read_usage(user_id)
        data["pro"] = pro
        self._write_usage(user_id, data)

    # ---- 内部工具 ----

    def _session_dir(self, session_id: str) -> Path:
        if not session_id or not _SAFE_ID.match(session_id) or session_id in {".", ".."}:
            raise ValidationError(code="INVALID_SESSION_ID", message=repr(session_id))
        return self._sessions_root / session_id

    def _require_session(self, session_id: str) -> GuestSession:
        session = self.get_session(session_id)
        if session is None:
            raise BusinessError(code="SESSION_NOT_FOUND", message=session_id, http_status=404)
        return session

    def _write_meta(self, sdir: Path, session: GuestSession) -> None:
        obj = {
            "session_id": session.session_id,
            "message_count": session.message_count,
            "converted": session.converted,
            "user_agent": session.user_agent,
            "updated_at": _iso(datetime.now(timezone.utc)),
        }
        self._atomic_write(sdir / "meta.json", obj)

    def _read_usage(self, user_id: str) -> Dict[str, Any]:
        path = self._usage_path(user_id)
        if not path.exists():
            return {"user_id": user_id, "pro": False, "days": {}}
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e), user_id=user_id)

    def _write_usage(self, user_id: str, data: Dict[str, Any]) -> None:
        self._atomic_write(self._usage_path(user_id), data)

    def _usage_path(self, user_id: str) -> Path:
        if not user_id or not _SAFE_ID.match(user_id) or user_id in {".", ".."}:
            raise ValidationError(code="INVALID_USER_ID", message=repr(user_id))
        return self._users_root / f"{user_id}.json"

    @staticmethod
    def _atomic_write(path: Path, obj: Dict[str, Any]) -> None:
        tmp_path = path.parent / f"{path.stem}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_row(data: Dict[str, Any]) -> ConversationRow:
        return ConversationRow(
            id=data["id"],
            session_id=data["session_id"],
            role=data["role"],
            content=data.get("content") or "",
            created_at=_parse_dt(data["created_at"]),
        )
