"""
Inventory routes: books, copies, shelves and members.

These are plain repository calls inside one request-scoped session. The
guards that protect circulation (no deleting a copy on loan, no emptying a
shelf by deletion, no status edits on a checked out copy) live in the
repositories, so the routes only translate query parameters.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..database.book_repository import BookRepository
from ..database.copy_repository import CopyRepository
from ..database.member_repository import MemberRepository
from ..database.shelf_repository import ShelfRepository
from ..errors import InvalidCredentials, InvalidPayload, MemberNotFound
from ..models.book import BookCopyCreate, BookCreate, BookUpdate, CopyStatus
from ..models.member import MemberCreate, MemberStatus, MemberUpdate
from ..models.shelf import ShelfCreate, ShelfUpdate
from ..services.loan_engine import LoanEngine
from .dependencies import envelope, get_engine, get_session, respond
from .schemas import CopyMove, CopyStatusUpdate, MemberLogin, ShelfReassign

router = APIRouter(tags=["Inventory"])


# === Books ===


@router.get("/books")
def list_books(
    q: str | None = Query(None),
    category: str | None = Query(None),
    session: Session = Depends(get_session),
):
    books = BookRepository(session).search(q, category)
    return envelope({"books": books, "count": len(books)})


@router.post("/books")
def create_book(body: BookCreate, session: Session = Depends(get_session)):
    book = BookRepository(session).create(body)
    return respond({"book": book}, f"Book '{book.title}' created", status.HTTP_201_CREATED)


@router.get("/books/popular")
def get_popular_books(limit: int = Query(5, ge=1, le=50), engine: LoanEngine = Depends(get_engine)):
    return envelope({"books": engine.get_popular_books(limit)})


@router.get("/books/categories/popular")
def get_popular_categories(limit: int = Query(5, ge=1, le=50), session: Session = Depends(get_session)):
    return envelope({"categories": BookRepository(session).popular_categories(limit)})


@router.get("/books/{book_id}")
def get_book(book_id: int, session: Session = Depends(get_session)):
    return envelope({"book": BookRepository(session).get(book_id)})


@router.patch("/books/{book_id}")
def update_book(book_id: int, body: BookUpdate, session: Session = Depends(get_session)):
    return envelope({"book": BookRepository(session).update(book_id, body)}, "Book updated")


@router.delete("/books/{book_id}")
def delete_book(book_id: int, session: Session = Depends(get_session)):
    BookRepository(session).delete(book_id)
    return envelope(None, f"Book {book_id} deleted")


@router.get("/books/{book_id}/availability")
def get_book_availability(book_id: int, session: Session = Depends(get_session)):
    return envelope({"availability": BookRepository(session).availability(book_id)})


# === Copies ===


@router.get("/copies")
def list_copies(
    book_id: int | None = Query(None, alias="bookId"),
    shelf_id: int | None = Query(None, alias="shelfId"),
    copy_status: CopyStatus | None = Query(None, alias="status"),
    session: Session = Depends(get_session),
):
    copies = CopyRepository(session).list_copies(book_id, shelf_id, copy_status)
    return envelope({"copies": copies, "count": len(copies)})


@router.post("/copies")
def create_copy(body: BookCopyCreate, session: Session = Depends(get_session)):
    copy = CopyRepository(session).create(body)
    return respond({"copy": copy}, f"Copy {copy.barcode} added", status.HTTP_201_CREATED)


@router.get("/copies/{copy_id}")
def get_copy(copy_id: int, session: Session = Depends(get_session)):
    return envelope({"copy": CopyRepository(session).get(copy_id)})


@router.patch("/copies/{copy_id}/status")
def set_copy_status(copy_id: int, body: CopyStatusUpdate, session: Session = Depends(get_session)):
    copy = CopyRepository(session).set_status(copy_id, body.status)
    return envelope({"copy": copy}, f"Copy status set to {copy.status.value}")


@router.patch("/copies/{copy_id}/move")
def move_copy(copy_id: int, body: CopyMove, session: Session = Depends(get_session)):
    copy = CopyRepository(session).move_copy(copy_id, body.shelf_id)
    return envelope({"copy": copy}, "Copy moved")


@router.delete("/copies/{copy_id}")
def delete_copy(copy_id: int, session: Session = Depends(get_session)):
    CopyRepository(session).delete(copy_id)
    return envelope(None, f"Copy {copy_id} deleted")


# === Shelves ===


@router.get("/shelves")
def list_shelves(session: Session = Depends(get_session)):
    shelves = ShelfRepository(session).get_all(order_by="name")
    return envelope({"shelves": shelves, "count": len(shelves)})


@router.post("/shelves")
def create_shelf(body: ShelfCreate, session: Session = Depends(get_session)):
    shelf = ShelfRepository(session).create(body)
    return respond({"shelf": shelf}, f"Shelf '{shelf.name}' created", status.HTTP_201_CREATED)


@router.get("/shelves/capacities")
def get_shelf_capacities(session: Session = Depends(get_session)):
    return envelope({"shelves": ShelfRepository(session).shelf_capacities()})


@router.get("/shelves/{shelf_id}")
def get_shelf(shelf_id: int, session: Session = Depends(get_session)):
    repo = ShelfRepository(session)
    return envelope({"shelf": repo.get(shelf_id), "copyCount": repo.count_copies(shelf_id)})


@router.patch("/shelves/{shelf_id}")
def update_shelf(shelf_id: int, body: ShelfUpdate, session: Session = Depends(get_session)):
    return envelope({"shelf": ShelfRepository(session).update(shelf_id, body)}, "Shelf updated")


@router.delete("/shelves/{shelf_id}")
def delete_shelf(shelf_id: int, session: Session = Depends(get_session)):
    ShelfRepository(session).delete(shelf_id)
    return envelope(None, f"Shelf {shelf_id} deleted")


@router.post("/shelves/{shelf_id}/reassign")
def reassign_shelf(shelf_id: int, body: ShelfReassign, session: Session = Depends(get_session)):
    moved = ShelfRepository(session).reassign_copies(shelf_id, body.target_shelf_id)
    return envelope(
        {"moved": moved, "sourceShelfId": shelf_id, "targetShelfId": body.target_shelf_id},
        f"Moved {moved} copies",
    )


# === Members ===


@router.get("/members")
def list_members(
    q: str | None = Query(None),
    member_status: MemberStatus | None = Query(None, alias="status"),
    session: Session = Depends(get_session),
):
    members = MemberRepository(session).search(q, member_status)
    return envelope({"members": members, "count": len(members)})


@router.post("/members")
def create_member(body: MemberCreate, session: Session = Depends(get_session)):
    member = MemberRepository(session).create(body)
    return respond({"member": member}, f"Member '{member.name}' created", status.HTTP_201_CREATED)


@router.get("/members/lookup")
def lookup_member(
    email: str | None = Query(None),
    pin: str | None = Query(None),
    qr: str | None = Query(None),
    session: Session = Depends(get_session),
):
    """Desk login: find a member by email and PIN, or by the code on their card."""
    repo = MemberRepository(session)
    if qr:
        member = repo.get_by_qr_code(qr)
    elif email and pin:
        member = repo.get_by_credentials(email, pin)
    else:
        raise InvalidPayload("Either email and pin, or qr, is required")
    if member is None:
        raise MemberNotFound("No member matches the given credentials")
    return envelope({"member": member})


@router.post("/members/login")
def member_login(body: MemberLogin, session: Session = Depends(get_session)):
    member = MemberRepository(session).get_by_credentials(body.email, body.pin)
    if member is None:
        raise InvalidCredentials("Invalid email or PIN")
    if not member.is_active:
        raise InvalidCredentials("Member account is inactive")
    return envelope({"member": member}, f"Welcome, {member.name}")


@router.get("/members/{member_id}")
def get_member(member_id: int, session: Session = Depends(get_session)):
    repo = MemberRepository(session)
    member = repo.get(member_id)
    return envelope({"member": member, "openLoans": repo.count_open_loans(member_id)})


@router.get("/members/{member_id}/statistics")
def get_member_statistics(member_id: int, engine: LoanEngine = Depends(get_engine)):
    return envelope({"statistics": engine.get_member_statistics(member_id)})


@router.patch("/members/{member_id}")
def update_member(member_id: int, body: MemberUpdate, session: Session = Depends(get_session)):
    return envelope({"member": MemberRepository(session).update(member_id, body)}, "Member updated")


@router.delete("/members/{member_id}")
def delete_member(member_id: int, session: Session = Depends(get_session)):
    MemberRepository(session).delete(member_id)
    return envelope(None, f"Member {member_id} deleted")
