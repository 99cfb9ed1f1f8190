"""Repository for unsaved drafts."""
import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine

from gitnotes.models.db_models import DBDraftNote, get_session_factory, init_db
from gitnotes.models.schema import Draft, ensure_timezone_aware, utc_now
from gitnotes.storage.base import DraftRegistry, db_errors

logger = logging.getLogger(__name__)


class DraftRepository(DraftRegistry):
    """SQLite-backed draft store. Saving a note clears its draft."""

    def __init__(self, engine: Optional[Engine] = None):
        self.engine = engine or init_db()
        self.session_factory = get_session_factory(self.engine)

    def save_draft(self, owner: str, notebook: str, title: str, content: str) -> Draft:
        with db_errors("save"), self.session_factory() as session:
            db_draft = session.scalar(self._key_query(owner, notebook, title))
            if db_draft is None:
                db_draft = DBDraftNote(owner=owner, notebook=notebook, title=title)
                session.add(db_draft)
            db_draft.content = content
            db_draft.updated_at = utc_now()
            session.commit()
            return self._db_to_model(db_draft)

    def find_draft(self, owner: str, notebook: str, title: str) -> Optional[Draft]:
        with db_errors("find"), self.session_factory() as session:
            db_draft = session.scalar(self._key_query(owner, notebook, title))
            return self._db_to_model(db_draft) if db_draft else None

    def delete_by_owner_and_notebook_and_title(
        self, owner: str, notebook: str, title: str
    ) -> bool:
        with db_errors("delete"), self.session_factory() as session:
            result = session.execute(
                delete(DBDraftNote).where(
                    DBDraftNote.owner == owner,
                    DBDraftNote.notebook == notebook,
                    DBDraftNote.title == title,
                )
            )
            session.commit()
            if result.rowcount:
                logger.debug(f"Cleared draft for {owner}:{notebook}/{title}")
            return result.rowcount > 0

    @staticmethod
    def _key_query(owner: str, notebook: str, title: str):
        return select(DBDraftNote).where(
            DBDraftNote.owner == owner,
            DBDraftNote.notebook == notebook,
            DBDraftNote.title == title,
        )

    @staticmethod
    def _db_to_model(db_draft: DBDraftNote) -> Draft:
        return Draft(
            owner=db_draft.owner,
            notebook=db_draft.notebook,
            title=db_draft.title,
            content=db_draft.content or "",
            updated_at=ensure_timezone_aware(db_draft.updated_at),
        )
