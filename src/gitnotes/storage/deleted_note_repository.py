"""Repository for deleted-note records (tombstones)."""
import logging
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine

from gitnotes.models.db_models import DBDeletedNote, get_session_factory, init_db
from gitnotes.models.schema import DeletedNote, ensure_timezone_aware, utc_now
from gitnotes.storage.base import DeletedNoteRegistry, db_errors

logger = logging.getLogger(__name__)


class DeletedNoteRepository(DeletedNoteRegistry):
    """SQLite-backed tombstone store."""

    def __init__(self, engine: Optional[Engine] = None):
        """Initialize the repository.

        Args:
            engine: SQLAlchemy engine. If None, uses default from config.
        """
        self.engine = engine or init_db()
        self.session_factory = get_session_factory(self.engine)
        logger.info("DeletedNoteRepository initialized")

    def save(
        self,
        owner: str,
        notebook: str,
        title: str,
        last_ref: Optional[str],
        content: str,
    ) -> DeletedNote:
        with db_errors("save"), self.session_factory() as session:
            db_note = DBDeletedNote(
                owner=owner,
                notebook=notebook,
                title=title,
                last_ref=last_ref,
                content=content,
                deleted_at=utc_now(),
            )
            session.add(db_note)
            session.commit()
            logger.debug(f"Recorded tombstone {db_note.id} for {notebook}/{title}")
            return self._db_to_model(db_note)

    def find_by_id_and_owner(self, id: int, owner: str) -> Optional[DeletedNote]:
        with db_errors("find"), self.session_factory() as session:
            db_note = session.scalar(
                select(DBDeletedNote).where(
                    DBDeletedNote.id == id, DBDeletedNote.owner == owner
                )
            )
            if not db_note:
                return None
            return self._db_to_model(db_note)

    def find_all_by_owner(self, owner: str) -> List[DeletedNote]:
        with db_errors("find"), self.session_factory() as session:
            result = session.execute(
                select(DBDeletedNote)
                .where(DBDeletedNote.owner == owner)
                .order_by(DBDeletedNote.deleted_at.desc(), DBDeletedNote.id.desc())
            )
            return [self._db_to_model(db) for db in result.scalars().all()]

    def delete_by_id_and_owner(self, id: int, owner: str) -> bool:
        with db_errors("delete"), self.session_factory() as session:
            result = session.execute(
                delete(DBDeletedNote).where(
                    DBDeletedNote.id == id, DBDeletedNote.owner == owner
                )
            )
            session.commit()
            return result.rowcount > 0

    def delete_all_by_owner(self, owner: str) -> int:
        with db_errors("delete"), self.session_factory() as session:
            result = session.execute(
                delete(DBDeletedNote).where(DBDeletedNote.owner == owner)
            )
            session.commit()
            logger.info(f"Cleared {result.rowcount} tombstones for {owner}")
            return result.rowcount

    @staticmethod
    def _db_to_model(db_note: DBDeletedNote) -> DeletedNote:
        return DeletedNote(
            id=db_note.id,
            owner=db_note.owner,
            notebook=db_note.notebook,
            title=db_note.title,
            last_ref=db_note.last_ref,
            content=db_note.content or "",
            deleted_at=ensure_timezone_aware(db_note.deleted_at),
        )
