import logging

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from .entities import BookRecord
from .models import MAX_STORE_INT, Book, CreateBook, UpdateBook

logger = logging.getLogger("books_api.repository")


class BookStoreError(RuntimeError):
    """The store accepted a write but the row could not be read back."""


def _storable(book_id: int) -> bool:
    # ids outside the INTEGER range cannot be bound, so no row can match them
    return -MAX_STORE_INT - 1 <= book_id <= MAX_STORE_INT


class BookRepository:
    def __init__(self, session: Session):
        self.session = session

    def find_all(self) -> list[Book]:
        stmt = (
            select(BookRecord)
            .order_by(BookRecord.created_at.desc(), BookRecord.id.desc())
            .execution_options(populate_existing=True)
        )
        records = self.session.execute(stmt).scalars().all()
        return [self._to_schema(record) for record in records]

    def find_by_id(self, book_id: int) -> Book | None:
        if not _storable(book_id):
            return None
        stmt = (
            select(BookRecord)
            .where(BookRecord.id == book_id)
            .execution_options(populate_existing=True)
        )
        record = self.session.execute(stmt).scalar_one_or_none()
        if record is None:
            return None
        return self._to_schema(record)

    def create(self, payload: CreateBook) -> Book:
        record = BookRecord(title=payload.title, author=payload.author, year=payload.year)
        self.session.add(record)
        self.session.commit()

        book = self.find_by_id(record.id)
        if book is None:
            raise BookStoreError("Failed to create book")
        logger.info("book.created", extra={"book_id": book.id})
        return book

    def update(self, book_id: int, payload: UpdateBook) -> Book | None:
        book = self.find_by_id(book_id)
        if book is None:
            return None

        changes = payload.changes()
        if not changes:
            return book

        self.session.execute(update(BookRecord).where(BookRecord.id == book_id).values(**changes))
        self.session.commit()
        logger.info("book.updated", extra={"book_id": book_id, "fields": sorted(changes)})
        return self.find_by_id(book_id)

    def delete(self, book_id: int) -> bool:
        if not _storable(book_id):
            return False
        result = self.session.execute(delete(BookRecord).where(BookRecord.id == book_id))
        self.session.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info("book.deleted", extra={"book_id": book_id})
        return deleted

    def delete_all(self) -> None:
        self.session.execute(delete(BookRecord))
        self.session.commit()

    @staticmethod
    def _to_schema(record: BookRecord) -> Book:
        return Book.model_validate(record, from_attributes=True)
