"""
tests/integration/test_expenses.py — Integration tests for expense endpoints.

Endpoints covered:
  GET    /expenses            → 200
  POST   /expenses            → 201 / 400 / 403 / 404 / 422
  DELETE /expenses/:id        → 200 / 403 / 404
  POST   /shares/:id/paid     → 200 / 403 / 404

Properties verified:
  - Money is sent as strings with two decimal places, never floats
  - Share mismatches are accepted with a warning by default and rejected
    with 422 under STRICT_SHARE_RECONCILIATION
  - Equal splits leave the rounding gap as a warning by default; strict
    mode hands the leftover cents out instead
  - An expense appears once in a list even when several rules make it visible
"""

from __future__ import annotations

import uuid

from .conftest import (
    add_friend,
    add_manual_friend,
    auth_headers,
    make_expense,
    make_group,
    person,
    register,
)


def _setup(client):
    alice = register(client, "alice")
    bob = register(client, "bob")
    add_friend(client, alice["access_token"], "bob@test.com")
    return alice, bob


def _list(client, token) -> list[dict]:
    resp = client.get("/api/v1/expenses", headers=auth_headers(token))
    assert resp.status_code == 200
    return resp.get_json()["data"]


class TestCreateExpense:

    def test_equal_split_between_participants(self, client):
        alice, bob = _setup(client)

        resp = make_expense(
            client, alice["access_token"], "60.00", title="Dinner",
            participants=[person(alice["user"]), person(bob["user"])],
        )
        assert resp.status_code == 201
        body = resp.get_json()
        expense = body["data"]

        assert body["warnings"] == []
        assert expense["title"] == "Dinner"
        assert expense["total_amount"] == "60.00"
        assert expense["is_owner"] is True
        assert expense["creator"]["id"] == alice["user"]["id"]
        assert sorted(s["amount"] for s in expense["shares"]) == ["30.00", "30.00"]
        assert all(s["paid"] is False for s in expense["shares"])
        assert expense["user_share"]["amount"] == "30.00"

    def test_custom_shares_with_manual_friend(self, client):
        alice, _ = _setup(client)
        sam = add_manual_friend(client, alice["access_token"], "Sam")

        resp = make_expense(
            client, alice["access_token"], "25.50",
            shares=[
                {**person(sam), "amount": "20.50"},
                {**person(alice["user"]), "amount": "5.00"},
            ],
        )
        assert resp.status_code == 201
        shares = {s["person"]["name"]: s["amount"] for s in resp.get_json()["data"]["shares"]}
        assert shares == {"Sam": "20.50", "alice": "5.00"}

    def test_group_expense_defaults_to_roster(self, client):
        alice, bob = _setup(client)
        group = make_group(
            client, alice["access_token"], name="Flat",
            members=[person(bob["user"]), {"name": "Sam"}],
        ).get_json()["data"]

        resp = make_expense(client, alice["access_token"], "90.00", group_id=group["id"])
        assert resp.status_code == 201
        expense = resp.get_json()["data"]
        assert expense["group_name"] == "Flat"
        assert [s["amount"] for s in expense["shares"]] == ["30.00"] * 3

    def test_member_splits_across_owners_manual_friend(self, client):
        alice, bob = _setup(client)
        group = make_group(
            client, alice["access_token"], name="Flat",
            members=[person(bob["user"]), {"name": "Sam"}],
        ).get_json()["data"]
        roster = {m["id"] for m in group["members"]}

        resp = make_expense(client, bob["access_token"], "30.00", group_id=group["id"])
        assert resp.status_code == 201
        expense = resp.get_json()["data"]
        assert expense["is_owner"] is True
        assert {s["person"]["id"] for s in expense["shares"]} == roster
        assert [s["amount"] for s in expense["shares"]] == ["10.00"] * 3

    def test_group_expense_rejects_manual_friend_off_the_roster(self, client):
        alice, bob = _setup(client)
        group = make_group(
            client, alice["access_token"], members=[person(bob["user"])],
        ).get_json()["data"]
        kim = add_manual_friend(client, alice["access_token"], "Kim")

        resp = make_expense(
            client, bob["access_token"], "10.00", group_id=group["id"],
            participants=[person(bob["user"]), person(kim)],
        )
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "MANUAL_FRIEND_NOT_FOUND"

    def test_non_member_cannot_log_group_expense(self, client):
        alice, bob = _setup(client)
        group = make_group(client, alice["access_token"]).get_json()["data"]

        resp = make_expense(client, bob["access_token"], "10.00", group_id=group["id"])
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"

    def test_unknown_group(self, client):
        alice, _ = _setup(client)
        resp = make_expense(client, alice["access_token"], "10.00", group_id=str(uuid.uuid4()))
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "GROUP_NOT_FOUND"

    def test_personal_expense_needs_participants(self, client):
        alice, _ = _setup(client)
        resp = make_expense(client, alice["access_token"], "10.00")
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_SPLIT"

    def test_someone_elses_manual_friend(self, client):
        alice, bob = _setup(client)
        bobs_sam = add_manual_friend(client, bob["access_token"], "Sam")

        resp = make_expense(
            client, alice["access_token"], "10.00",
            participants=[person(alice["user"]), person(bobs_sam)],
        )
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "MANUAL_FRIEND_NOT_FOUND"

    def test_unknown_user(self, client):
        alice, _ = _setup(client)
        resp = make_expense(
            client, alice["access_token"], "10.00",
            participants=[{"id": str(uuid.uuid4())}],
        )
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "USER_NOT_FOUND"


class TestAmountValidation:

    def test_three_decimal_places_rejected(self, client):
        alice, bob = _setup(client)
        resp = make_expense(
            client, alice["access_token"], "10.005",
            participants=[person(bob["user"])],
        )
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_AMOUNT_PRECISION"
        assert error["field"] == "amount"

    def test_zero_amount_rejected(self, client):
        alice, bob = _setup(client)
        resp = make_expense(client, alice["access_token"], "0", participants=[person(bob["user"])])
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "amount"

    def test_unknown_split_mode(self, client):
        alice, bob = _setup(client)
        resp = make_expense(
            client, alice["access_token"], "10.00",
            participants=[person(bob["user"])], split_mode="percent",
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_SPLIT_MODE"

    def test_shares_with_equal_mode(self, client):
        alice, bob = _setup(client)
        resp = make_expense(
            client, alice["access_token"], "10.00", split_mode="equal",
            shares=[{**person(bob["user"]), "amount": "10.00"}],
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "SHARES_SENT_FOR_EQUAL_MODE"

    def test_duplicate_share_person(self, client):
        alice, bob = _setup(client)
        resp = make_expense(
            client, alice["access_token"], "10.00",
            shares=[
                {**person(bob["user"]), "amount": "5.00"},
                {**person(bob["user"]), "amount": "5.00"},
            ],
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "DUPLICATE_SHARE_PERSON"


class TestShareReconciliation:

    def test_mismatch_is_a_warning_by_default(self, client):
        alice, bob = _setup(client)
        resp = make_expense(
            client, alice["access_token"], "100.00",
            shares=[
                {**person(alice["user"]), "amount": "40.00"},
                {**person(bob["user"]), "amount": "40.00"},
            ],
        )
        assert resp.status_code == 201
        [warning] = resp.get_json()["warnings"]
        assert warning["code"] == "SHARE_SUM_MISMATCH"
        assert warning["shares_total"] == "80.00"
        assert warning["amount"] == "100.00"

    def test_mismatch_rejected_in_strict_mode(self, client, strict_mode):
        alice, bob = _setup(client)
        resp = make_expense(
            client, alice["access_token"], "100.00",
            shares=[
                {**person(alice["user"]), "amount": "40.00"},
                {**person(bob["user"]), "amount": "40.00"},
            ],
        )
        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "SHARE_SUM_MISMATCH"
        assert _list(client, alice["access_token"]) == []

    def test_equal_rounding_gap_warns_by_default(self, client):
        alice, bob = _setup(client)
        carol = register(client, "carol")

        resp = make_expense(
            client, alice["access_token"], "10.00",
            participants=[person(alice["user"]), person(bob["user"]), person(carol["user"])],
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert [s["amount"] for s in body["data"]["shares"]] == ["3.33"] * 3
        assert body["warnings"][0]["code"] == "SHARE_SUM_MISMATCH"

    def test_equal_rounding_gap_reconciled_in_strict_mode(self, client, strict_mode):
        alice, bob = _setup(client)
        carol = register(client, "carol")

        resp = make_expense(
            client, alice["access_token"], "10.00",
            participants=[person(alice["user"]), person(bob["user"]), person(carol["user"])],
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert sorted(s["amount"] for s in body["data"]["shares"]) == ["3.33", "3.33", "3.34"]
        assert body["warnings"] == []


class TestListExpenses:

    def test_visibility(self, client):
        alice, bob = _setup(client)
        carol = register(client, "carol")
        make_expense(
            client, alice["access_token"], "20.00",
            participants=[person(alice["user"]), person(bob["user"])],
        )

        alice_list = _list(client, alice["access_token"])
        bob_list = _list(client, bob["access_token"])

        assert len(alice_list) == len(bob_list) == 1
        assert bob_list[0]["is_owner"] is False
        assert bob_list[0]["user_share"]["amount"] == "10.00"
        assert _list(client, carol["access_token"]) == []

    def test_expense_listed_once(self, client):
        alice, bob = _setup(client)
        group = make_group(
            client, alice["access_token"], members=[person(bob["user"])],
        ).get_json()["data"]
        make_expense(client, alice["access_token"], "40.00", group_id=group["id"])

        # alice is both creator and a share holder
        assert len(_list(client, alice["access_token"])) == 1

    def test_creator_without_share_has_no_user_share(self, client):
        alice, bob = _setup(client)
        make_expense(client, alice["access_token"], "15.00", participants=[person(bob["user"])])

        [expense] = _list(client, alice["access_token"])
        assert expense["user_share"] is None
        assert [s["person"]["id"] for s in expense["shares"]] == [bob["user"]["id"]]


class TestDeleteAndPay:

    def _expense(self, client, alice, bob) -> dict:
        resp = make_expense(
            client, alice["access_token"], "30.00",
            participants=[person(alice["user"]), person(bob["user"])],
        )
        assert resp.status_code == 201
        return resp.get_json()["data"]

    def test_creator_deletes(self, client):
        alice, bob = _setup(client)
        expense = self._expense(client, alice, bob)

        resp = client.delete(f"/api/v1/expenses/{expense['id']}", headers=auth_headers(alice["access_token"]))
        assert resp.status_code == 200
        assert _list(client, bob["access_token"]) == []

    def test_only_creator_deletes(self, client):
        alice, bob = _setup(client)
        expense = self._expense(client, alice, bob)

        resp = client.delete(f"/api/v1/expenses/{expense['id']}", headers=auth_headers(bob["access_token"]))
        assert resp.status_code == 403

    def test_delete_unknown(self, client):
        alice, _ = _setup(client)
        resp = client.delete(f"/api/v1/expenses/{uuid.uuid4()}", headers=auth_headers(alice["access_token"]))
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "EXPENSE_NOT_FOUND"

    def test_mark_share_paid_is_idempotent(self, client):
        alice, bob = _setup(client)
        expense = self._expense(client, alice, bob)
        bobs_share = next(s for s in expense["shares"] if s["person"]["id"] == bob["user"]["id"])
        url = f"/api/v1/shares/{bobs_share['id']}/paid"

        first = client.post(url, headers=auth_headers(alice["access_token"]))
        second = client.post(url, headers=auth_headers(alice["access_token"]))

        assert first.status_code == second.status_code == 200
        assert second.get_json()["data"]["paid"] is True

        [listed] = _list(client, bob["access_token"])
        assert listed["user_share"]["paid"] is True

    def test_only_creator_marks_paid(self, client):
        alice, bob = _setup(client)
        expense = self._expense(client, alice, bob)
        share_id = expense["shares"][0]["id"]

        resp = client.post(f"/api/v1/shares/{share_id}/paid", headers=auth_headers(bob["access_token"]))
        assert resp.status_code == 403

    def test_unknown_share(self, client):
        alice, _ = _setup(client)
        resp = client.post(f"/api/v1/shares/{uuid.uuid4()}/paid", headers=auth_headers(alice["access_token"]))
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "SHARE_NOT_FOUND"
