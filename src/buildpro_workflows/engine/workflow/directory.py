"""Project membership lookup used by the assignment resolver.

Team management is an external collaborator; :class:`ProjectDirectoryStore` is the
file-backed stand-in the server and CLI use.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

from .persistence import safe_load_json_list, save_json_list


class ProjectDirectory(Protocol):
    def members_with_role(self, project_id: str, role: str) -> list[str]: ...

    def is_member(self, project_id: str, user_id: str) -> bool: ...


class ProjectMember(BaseModel):
    project_id: str
    user_id: str
    roles: list[str] = Field(default_factory=list)


class ProjectDirectoryStore:
    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[ProjectMember]:
        return [ProjectMember.model_validate(item) for item in safe_load_json_list(self._path)]

    def list(self, project_id: str) -> list[ProjectMember]:
        with self._lock:
            return [m for m in self._load_unlocked() if m.project_id == project_id]

    def members_with_role(self, project_id: str, role: str) -> list[str]:
        wanted = role.strip().lower()
        return sorted(
            m.user_id
            for m in self.list(project_id)
            if any(r.strip().lower() == wanted for r in m.roles)
        )

    def is_member(self, project_id: str, user_id: str) -> bool:
        return any(m.user_id == user_id for m in self.list(project_id))

    def upsert(self, member: ProjectMember) -> ProjectMember:
        with self._lock:
            members = [
                m
                for m in self._load_unlocked()
                if not (m.project_id == member.project_id and m.user_id == member.user_id)
            ]
            members.append(member)
            save_json_list(self._path, members)
        return member

    def remove(self, project_id: str, user_id: str) -> None:
        with self._lock:
            members = [
                m
                for m in self._load_unlocked()
                if not (m.project_id == project_id and m.user_id == user_id)
            ]
            save_json_list(self._path, members)
