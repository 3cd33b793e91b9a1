"""Tests for the circulation tool handlers the MCP server registers."""

import pytest

from library_circulation.tools import build_all_tools


@pytest.fixture
def tools(engine):
    return {tool["name"]: tool["handler"] for tool in build_all_tools(engine)}


def test_tool_definitions(engine):
    definitions = build_all_tools(engine)
    names = [tool["name"] for tool in definitions]

    assert "loans_borrow_books" in names
    assert "loans_return_books_via_qr_code" in names
    assert len(names) == len(set(names))
    for tool in definitions:
        assert tool["description"]
        assert tool["inputSchema"]["type"] == "object"


class TestBorrowTool:
    async def test_success(self, tools, library):
        result = await tools["loans_borrow_books"](
            {"member_id": library.alice_id, "book_copies": library.copy_ids[:2]}
        )

        assert "isError" not in result
        assert result["content"][0]["text"] == f"Checked out 2 book(s) to member {library.alice_id}"
        assert len(result["data"]["loans"]) == 2
        assert result["data"]["transaction_id"].startswith("LOAN-")

    async def test_nothing_lent_is_an_error(self, tools, library):
        await tools["loans_borrow_books"]({"memberId": library.bob_id, "bookCopyId": library.copy_ids[0]})

        result = await tools["loans_borrow_books"](
            {"memberId": library.alice_id, "bookCopyId": library.copy_ids[0]}
        )

        assert result["isError"] is True
        assert result["data"]["errors"][0]["book_copy_id"] == library.copy_ids[0]
        assert "could not be checked out" in result["content"][0]["text"]

    async def test_library_error_kind(self, tools, library):
        result = await tools["loans_borrow_books"]({"memberId": 999, "bookCopyId": 1})

        assert result["isError"] is True
        assert result["data"]["kind"] == "not_found"
        assert result["data"]["code"] == "MemberNotFound"

    async def test_invalid_arguments(self, tools, library):
        result = await tools["loans_borrow_books"]({"memberId": library.alice_id})

        assert result["isError"] is True
        assert result["data"]["kind"] == "validation"


class TestReturnTools:
    async def test_return_book_expands_group(self, tools, library, clock):
        borrowed = await tools["loans_borrow_books"](
            {"memberId": library.alice_id, "bookCopyIds": library.copy_ids[:2]}
        )
        clock.advance(days=15)

        result = await tools["loans_return_book"]({"loan_id": borrowed["data"]["loans"][0]["id"]})

        assert len(result["data"]["returned"]) == 2
        assert result["data"]["total_fine"] == 10.0
        assert result["content"][0]["text"] == "Returned 2 book(s); fine due: 10.00"

    async def test_return_book_requires_loan_id(self, tools, library):
        result = await tools["loans_return_book"]({"condition": "Good"})

        assert result["isError"] is True
        assert result["data"]["code"] == "InvalidPayload"

    async def test_batch_return_unknown_ids(self, tools, library):
        result = await tools["loans_return_books"]({"returns": [{"loanId": 404}]})

        assert result["isError"] is True
        assert result["data"]["code"] == "InvalidLoanIds"

    async def test_qr_return(self, tools, library):
        borrowed = await tools["loans_borrow_books"](
            {"memberId": library.alice_id, "bookCopyIds": library.copy_ids[3:5]}
        )
        loan_ids = [loan["id"] for loan in borrowed["data"]["loans"]]

        result = await tools["loans_return_books_via_qr_code"](
            {"qrData": {"loansIds": loan_ids, "memberId": library.alice_id}}
        )

        assert "isError" not in result
        assert result["data"]["count"] == 2
        assert result["content"][0]["text"] == "Successfully returned 2 book(s)"


class TestLoanTools:
    async def test_renew_and_pay(self, tools, library, clock):
        borrowed = await tools["loans_borrow_books"](
            {"memberId": library.alice_id, "bookCopyId": library.copy_ids[0]}
        )
        loan_id = borrowed["data"]["loans"][0]["id"]

        renewed = await tools["loans_renew"]({"loanId": loan_id, "extensionDays": 7})
        assert renewed["data"]["loan"]["renewal_count"] == 1

        clock.advance(days=23)
        await tools["loans_return_book"]({"loanId": loan_id})
        paid = await tools["loans_pay_fine"]({"loanId": loan_id, "amount": 10})

        assert paid["data"]["loan"]["fine_paid"] is True
        assert paid["content"][0]["text"] == f"Fine of 10.00 paid on loan {loan_id}"

    async def test_queries(self, tools, library, clock):
        await tools["loans_borrow_books"]({"memberId": library.alice_id, "bookCopyIds": library.copy_ids[:2]})
        clock.advance(days=16)

        overdue = await tools["loans_get_overdue"]({"daysOverdue": 1})
        stats = await tools["loans_get_statistics"]({})
        transactions = await tools["loans_get_transactions"]({"memberId": library.alice_id, "openOnly": True})

        assert len(overdue["data"]["loans"]) == 2
        assert stats["data"]["statistics"]["overdue_loans"] == 2
        assert transactions["data"]["transactions"][0]["total_books"] == 2

    async def test_negative_overdue_days(self, tools, library):
        result = await tools["loans_get_overdue"]({"days_overdue": -2})

        assert result["isError"] is True
        assert result["data"]["kind"] == "validation"
