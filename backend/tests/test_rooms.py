"""Tests for the dashboard, room creation and room history endpoints."""


class TestCreateRoom:
    def test_create_room(self, api_client, make_user):
        _, headers = make_user("alice")
        resp = api_client.post("/createroom", json={"name": "general"}, headers=headers)
        assert resp.status_code == 201
        body = resp.json()
        assert body["message"] == "Room created!"
        assert body["roomId"]

    def test_duplicate_name_is_400(self, api_client, make_user):
        _, headers = make_user("alice")
        api_client.post("/createroom", json={"name": "general"}, headers=headers)
        resp = api_client.post("/createroom", json={"name": "general"}, headers=headers)
        assert resp.status_code == 400
        assert resp.json() == {"message": "Room already exists"}

    def test_blank_name_is_422(self, api_client, make_user):
        _, headers = make_user("alice")
        resp = api_client.post("/createroom", json={"name": "   "}, headers=headers)
        assert resp.status_code == 422

    def test_requires_token(self, api_client):
        resp = api_client.post("/createroom", json={"name": "general"})
        assert resp.status_code == 400


class TestDashboard:
    def test_lists_rooms_and_other_users_with_presence(self, api_client, make_user):
        alice, headers = make_user("alice")
        bob, _ = make_user("bob")
        carol, _ = make_user("carol")
        room_id = api_client.post("/createroom", json={"name": "general"}, headers=headers).json()["roomId"]

        with api_client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "register", "userId": bob})
            assert ws.receive_json()["type"] == "registered"

            body = api_client.get("/dashboard", headers=headers).json()

        assert [r["id"] for r in body["publicRooms"]] == [room_id]
        assert body["publicRooms"][0]["createdBy"] == alice
        users = {u["username"]: u for u in body["users"]}
        assert set(users) == {"bob", "carol"}
        assert users["bob"]["status"] == "Online"
        assert users["carol"]["status"] == "Offline"
        assert users["carol"]["id"] == carol
        assert "passwordHash" not in users["bob"]

        # bob disconnected
        body = api_client.get("/dashboard", headers=headers).json()
        assert all(u["status"] == "Offline" for u in body["users"])


class TestRoomHistory:
    def test_unknown_room_is_404(self, api_client, make_user):
        _, headers = make_user("alice")
        resp = api_client.get("/room-messages/nope", headers=headers)
        assert resp.status_code == 404
        assert resp.json() == {"message": "Room not found"}

    def test_empty_room(self, api_client, make_user):
        _, headers = make_user("alice")
        room_id = api_client.post("/createroom", json={"name": "quiet"}, headers=headers).json()["roomId"]
        assert api_client.get(f"/room-messages/{room_id}", headers=headers).json() == []


def test_health(api_client):
    assert api_client.get("/health").json() == {"status": "ok", "online": 0}
