"""
Entity repository: one AtomicFileStore per collection (users, sessions, clubs).
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, Type, TypeVar, Union

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from badly.database.models import Session, User
from badly.database.store import AtomicFileStore, StorageCorruptionError

load_dotenv()

logger = logging.getLogger(__name__)

# Directory holding users.json, sessions.json, clubs.json and their .bak mirrors
DATA_DIR = os.getenv("DATA_DIR", "data")

ModelT = TypeVar("ModelT", bound=BaseModel)


def _validate_records(store: AtomicFileStore, model: Type[ModelT]) -> List[ModelT]:
    try:
        return [model.model_validate(record) for record in store.read()]
    except ValidationError as e:
        logger.error(f"Invalid {model.__name__} record in {store.file_path}: {e}")
        raise StorageCorruptionError(f"Invalid {model.__name__} record in {store.file_path}") from e


class EntityRepository:
    """Typed access to the three entity collections."""

    def __init__(self, data_dir: Union[str, Path] = DATA_DIR):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.users = AtomicFileStore(self.data_dir / "users.json")
        self.sessions = AtomicFileStore(self.data_dir / "sessions.json")
        self.clubs = AtomicFileStore(self.data_dir / "clubs.json")

    # --- Users ---
    def read_users(self) -> List[User]:
        return _validate_records(self.users, User)

    def write_users(self, users: List[User]) -> None:
        self.users.write([user.to_record() for user in users])

    # --- Sessions ---
    def read_sessions(self) -> List[Session]:
        return _validate_records(self.sessions, Session)

    def write_sessions(self, sessions: List[Session]) -> None:
        self.sessions.write([session.to_record() for session in sessions])

    # --- Clubs ---
    def read_clubs(self) -> List[str]:
        return [str(club) for club in self.clubs.read()]

    def write_clubs(self, clubs: List[str]) -> None:
        self.clubs.write(list(clubs))


_repository: Optional[EntityRepository] = None


def get_repository() -> EntityRepository:
    """
    Get the process-wide repository, creating it on first use.

    Also usable as a FastAPI dependency:
        async def my_route(repo: EntityRepository = Depends(get_repository)):
            ...
    """
    global _repository
    if _repository is None:
        _repository = EntityRepository(DATA_DIR)
        logger.info(f"Entity repository initialized in {_repository.data_dir.resolve()}")
    return _repository


def set_repository(repository: Optional[EntityRepository]) -> None:
    """Replace the process-wide repository (used by tests and scripts)."""
    global _repository
    _repository = repository
