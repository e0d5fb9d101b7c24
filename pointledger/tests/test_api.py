"""
Tests for the HTTP surface: routing, payload shapes and error mapping.
"""

import pytest
from fastapi.testclient import TestClient

from pointledger.api import create_app
from pointledger.collaborators import LocalFileStore
from pointledger.config import PlatformConfig
from pointledger.errors import SettlementStateError

from conftest import FixedRandom


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


def signup(client, phone="+243810001111", **extra):
    payload = {"username": "amina", "phone": phone, "password": "pw", **extra}
    response = client.post("/api/register", json=payload)
    assert response.status_code == 201
    return response.json()


def fund(client, account_id, amount="1000"):
    response = client.post("/api/deposit", json={
        "account_id": account_id, "amount": amount,
        "phone_number": "+243810000000", "method": "airtel",
    })
    assert response.status_code == 200
    return response.json()


class TestAccountRoutes:

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_register_and_login(self, client, service):
        body = signup(client)
        assert body["account"]["points"] == 0

        refused = client.post("/api/login", json={"phone": "+243810001111", "password": "pw"})
        assert refused.status_code == 403

        _, code = service.code_sender.sent[-1]
        verified = client.post("/api/verify-account", json={"phone": "+243810001111", "code": code})
        assert verified.json()["verified"] is True

        login = client.post("/api/login", json={"phone": "+243810001111", "password": "pw"})
        assert login.status_code == 200
        assert login.json()["id"] == body["account"]["id"]

    def test_duplicate_phone_is_conflict(self, client):
        signup(client)
        response = client.post("/api/register", json={"username": "b", "phone": "+243810001111", "password": "x"})

        assert response.status_code == 409

    def test_bad_password_is_unauthorized(self, client):
        signup(client)
        response = client.post("/api/login", json={"phone": "+243810001111", "password": "nope"})

        assert response.status_code == 401

    def test_unknown_account_is_not_found(self, client):
        response = client.get("/api/accounts/00000000-0000-0000-0000-000000000000")
        assert response.status_code == 404

    def test_malformed_body_is_rejected(self, client):
        response = client.post("/api/deposit", json={"account_id": "not-a-uuid", "amount": "x"})
        assert response.status_code == 422

    def test_profile_picture_upload(self, make_service, tmp_path):
        client = TestClient(create_app(make_service(file_store=LocalFileStore(str(tmp_path)))))
        account_id = signup(client)["account"]["id"]

        response = client.put(
            f"/api/accounts/{account_id}/profile-picture?filename=me.png", content=b"\x89PNG....",
        )

        assert response.status_code == 200
        assert response.json()["profile_picture"].endswith(".png")
        assert client.get(f"/api/accounts/{account_id}").json()["profile_picture"] == response.json()["profile_picture"]


class TestMoneyRoutes:

    def test_deposit_then_withdraw(self, client):
        account_id = signup(client)["account"]["id"]

        deposit = fund(client, account_id, "10000")
        assert deposit["points_added"] == 100

        response = client.post("/api/withdraw", json={
            "account_id": account_id, "amount": 40,
            "phone_number": "+243810000000", "method": "airtel",
        })
        assert response.status_code == 200
        assert response.json()["new_balance"] == 60

    def test_below_minimum_deposit_is_bad_request(self, client):
        account_id = signup(client)["account"]["id"]
        response = client.post("/api/deposit", json={
            "account_id": account_id, "amount": "100",
            "phone_number": "+243810000000", "method": "airtel",
        })

        assert response.status_code == 400
        assert "Minimum deposit" in response.json()["detail"]

    def test_overdraw_is_bad_request(self, client):
        account_id = signup(client)["account"]["id"]
        fund(client, account_id)

        response = client.post("/api/withdraw", json={
            "account_id": account_id, "amount": 50,
            "phone_number": "+243810000000", "method": "airtel",
        })
        assert response.status_code == 400


class TestGameRoutes:

    def test_list_and_play(self, make_service):
        client = TestClient(create_app(make_service(rng=FixedRandom(index=6))))
        account_id = signup(client)["account"]["id"]
        fund(client, account_id)

        games = {g["id"] for g in client.get("/api/games").json()}
        assert {"crash", "fortune-slots", "dice"} <= games

        response = client.post("/api/play", json={
            "account_id": account_id, "game_id": "fortune-slots", "bet_amount": 10,
        })
        assert response.status_code == 200
        body = response.json()
        assert body["outcome_kind"] == "win"
        assert body["win_amount"] == 30
        assert body["new_balance"] == 30

    def test_spin_and_history(self, make_service):
        client = TestClient(create_app(make_service(PlatformConfig(wheel_prizes=(10,)))))
        account_id = signup(client)["account"]["id"]

        spin = client.post("/api/spin-wheel", json={"account_id": account_id})
        assert spin.json()["prize_delta"] == 10
        assert client.post("/api/spin-wheel", json={"account_id": account_id}).status_code == 400

        history = client.get(f"/api/user-history/{account_id}").json()
        assert history["current_balance"] == 10
        assert history["items"][0]["kind"] == "wheel_prize"

    def test_offer_walls(self, make_service):
        config = PlatformConfig(offer_walls={"cpaGrip": "https://offers.example/wall?user=7"})
        client = TestClient(create_app(make_service(config)))

        response = client.get("/api/offer-walls")

        assert response.status_code == 200
        assert response.json() == {"cpaGrip": "https://offers.example/wall?user=7"}

    def test_default_offer_walls_listed(self, client):
        assert set(client.get("/api/offer-walls").json()) == {"cpaGrip", "ogAds", "adWorkMedia"}

    def test_history_rejects_negative_paging(self, client):
        account_id = signup(client)["account"]["id"]

        assert client.get(f"/api/user-history/{account_id}?limit=-1").status_code == 422
        assert client.get(f"/api/user-history/{account_id}?offset=-5").status_code == 422

    def test_complete_task(self, client):
        account_id = signup(client)["account"]["id"]

        assert len(client.get("/api/tasks").json()) == 5
        response = client.post("/api/complete-task", json={"account_id": account_id, "task_id": 5})
        assert response.json() == {"task_points": 100, "new_balance": 100}


class TestErrorMapping:

    def test_admin_route_forbidden_for_players(self, client):
        account_id = signup(client)["account"]["id"]
        response = client.post("/api/admin/withdraw-earnings", json={"account_id": account_id})

        assert response.status_code == 403

    def test_state_conflict_is_internal_error(self, service, monkeypatch):
        client = TestClient(create_app(service))
        account_id = signup(client)["account"]["id"]

        def conflicted(request):
            raise SettlementStateError("settlement 'complete_task' is committed, expected applying")

        monkeypatch.setattr(service, "complete_task", conflicted)
        response = client.post("/api/complete-task", json={"account_id": account_id, "task_id": 1})

        assert response.status_code == 500
        assert response.json()["detail"] == "Internal ledger error"
