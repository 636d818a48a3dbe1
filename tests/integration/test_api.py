"""
API 통합 테스트
REST 엔드포인트와 WebSocket 동기화
"""
import pytest

from app.models.product import ProductDetails, ProductOffer

GIFT_DIALOGUE = {
    "response_type": "dialogue",
    "output": "Lovely idea! What does she enjoy?",
    "quick_replies": ["Jewelry", "Perfume"],
    "category": "gifts",
}

SAMSUNG_SEARCH = {
    "response_type": "search",
    "output": "Here are some Samsung Galaxy S24 offers",
    "search_phrase": "Samsung Galaxy S24",
    "search_type": "exact",
    "category": "smartphones",
}


@pytest.fixture
def other_auth_headers(container):
    """user-2 액세스 토큰 헤더"""
    token = container.jwt.create_access_token("user-2")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def access_token(auth_headers):
    return auth_headers["Authorization"].split(" ", 1)[1]


class TestHealth:
    """헬스체크 테스트"""

    def test_root_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_api_health(self, client):
        """API 키 없이도 응답, 상태는 unhealthy"""
        response = client.get("/api/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["llm_provider"] == "gemini"
        assert data["redis"] == "disabled"
        assert data["search_api"] == "unchecked"
        assert data["active_sessions"] == 0


class TestChatEndpoint:
    """REST 채팅 테스트"""

    def test_chat_dialogue(self, client, llm, sample_gift_query):
        """대화 응답 구조"""
        llm.script(GIFT_DIALOGUE)

        response = client.post("/api/chat", json={"message": sample_gift_query, "country": "CH"})
        assert response.status_code == 200

        data = response.json()
        assert data["type"] == "dialogue"
        assert data["output"] == GIFT_DIALOGUE["output"]
        assert data["quick_replies"] == ["Jewelry", "Perfume"]
        assert data["session_id"]
        assert data["message_id"]
        assert data["message_count"] == 1
        assert data["search_state"]["max_searches"] == 5
        assert data["error"] is None

    def test_chat_search(self, client, llm, sample_search_query):
        llm.script(SAMSUNG_SEARCH)

        response = client.post("/api/chat", json={"message": sample_search_query, "browser_id": "b-1"})
        assert response.status_code == 200

        data = response.json()
        assert data["type"] == "search"
        assert len(data["products"]) == 3
        assert data["products"][0]["price"] == "CHF 699.00"
        assert data["search_state"]["search_count"] == 1
        assert data["search_state"]["anonymous_search_used"] == 1

    def test_empty_message(self, client):
        """빈 메시지 검증"""
        response = client.post("/api/chat", json={"message": ""})
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "validation_error"

    def test_message_too_long(self, client):
        response = client.post("/api/chat", json={"message": "a" * 2001})
        assert response.status_code == 422

    def test_invalid_token(self, client):
        """유효하지 않은 토큰은 401"""
        response = client.post(
            "/api/chat",
            json={"message": "hello"},
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "invalid_token"

    def test_anonymous_limit_status(self, client, llm, container):
        """익명 한도 도달 시에도 200과 로그인 필요 표시"""
        llm.script(SAMSUNG_SEARCH, SAMSUNG_SEARCH, SAMSUNG_SEARCH)
        session_id = None
        for _ in range(3):
            response = client.post(
                "/api/chat",
                json={"message": "Samsung Galaxy S24", "browser_id": "b-2", "session_id": session_id},
            )
            session_id = response.json()["session_id"]

        response = client.post(
            "/api/chat",
            json={"message": "Samsung Galaxy S24", "browser_id": "b-2", "session_id": session_id},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["type"] == "text"
        assert data["search_state"]["requires_authentication"] is True


class TestSignedSessions:
    """세션 서명 테스트"""

    def test_sign_new_session(self, client, settings):
        response = client.post("/api/sessions/sign", json={})
        assert response.status_code == 200

        data = response.json()
        assert data["session_id"]
        assert data["signed_session_id"].startswith("s1.")
        assert data["expires_in"] == settings.signed_session_ttl_hours * 3600

    def test_owner_can_chat(self, client, llm, auth_headers):
        """소유자는 서명된 ID로 채팅, 원본 ID로 응답"""
        llm.script(GIFT_DIALOGUE)
        signed = client.post("/api/sessions/sign", json={"session_id": "s-owned"}, headers=auth_headers).json()

        response = client.post(
            "/api/chat",
            json={"message": "hello", "session_id": signed["signed_session_id"]},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["session_id"] == "s-owned"

    def test_other_user_rejected(self, client, llm, auth_headers, other_auth_headers):
        """다른 사용자의 서명된 세션은 403"""
        signed = client.post("/api/sessions/sign", json={"session_id": "s-owned"}, headers=auth_headers).json()

        response = client.post(
            "/api/chat",
            json={"message": "hello", "session_id": signed["signed_session_id"]},
            headers=other_auth_headers,
        )
        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "session_ownership"
        assert llm.assistant_prompts == []

    def test_tampered_signature(self, client):
        signed = client.post("/api/sessions/sign", json={"session_id": "s-1"}).json()["signed_session_id"]
        tampered = signed.rsplit(".", 1)[0] + ".invalidsignature"

        response = client.post("/api/chat", json={"message": "hello", "session_id": tampered})
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_session"

    def test_already_signed(self, client):
        signed = client.post("/api/sessions/sign", json={"session_id": "s-1"}).json()["signed_session_id"]

        response = client.post("/api/sessions/sign", json={"session_id": signed})
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_session"


class TestMessages:
    """세션 메시지 조회 테스트"""

    def test_list_messages(self, client, llm):
        llm.script(GIFT_DIALOGUE)
        chat = client.post("/api/chat", json={"message": "hello"}).json()

        response = client.get("/api/chat/messages", params={"session_id": chat["session_id"]})
        assert response.status_code == 200

        messages = response.json()["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant"]
        assert messages[1]["content"] == GIFT_DIALOGUE["output"]
        assert messages[1]["id"] == chat["message_id"]

    def test_other_user_forbidden(self, client, llm, auth_headers, other_auth_headers):
        """소유자가 있는 세션은 다른 사용자가 조회할 수 없음"""
        llm.script(GIFT_DIALOGUE)
        chat = client.post("/api/chat", json={"message": "hello"}, headers=auth_headers).json()

        response = client.get(
            "/api/chat/messages",
            params={"session_id": chat["session_id"]},
            headers=other_auth_headers,
        )
        assert response.status_code == 403

    def test_messages_since(self, client, llm):
        """마지막으로 받은 메시지 이후의 메시지만 반환"""
        llm.script(GIFT_DIALOGUE, GIFT_DIALOGUE)
        first = client.post("/api/chat", json={"message": "hello"}).json()
        client.post("/api/chat", json={"message": "perfume", "session_id": first["session_id"]})

        listed = client.get("/api/chat/messages", params={"session_id": first["session_id"]}).json()
        last_seen = listed["messages"][1]["created_at"]

        response = client.get(
            "/api/chat/messages/since",
            params={"session_id": first["session_id"], "since": last_seen},
        )
        assert response.status_code == 200

        data = response.json()
        assert data["message_count"] == 2
        assert [m["content"] for m in data["messages"]] == ["perfume", GIFT_DIALOGUE["output"]]
        assert data["messages"][0]["id"] == listed["messages"][2]["id"]

    def test_messages_since_utc_offset(self, client, llm):
        """시간대가 붙은 ISO 시각도 UTC로 비교"""
        llm.script(GIFT_DIALOGUE)
        chat = client.post("/api/chat", json={"message": "hello"}).json()

        response = client.get(
            "/api/chat/messages/since",
            params={"session_id": chat["session_id"], "since": "2000-01-01T00:00:00Z"},
        )
        assert response.status_code == 200
        assert response.json()["message_count"] == 2

    def test_messages_since_other_user_forbidden(self, client, llm, auth_headers, other_auth_headers):
        llm.script(GIFT_DIALOGUE)
        chat = client.post("/api/chat", json={"message": "hello"}, headers=auth_headers).json()

        response = client.get(
            "/api/chat/messages/since",
            params={"session_id": chat["session_id"], "since": "2000-01-01T00:00:00Z"},
            headers=other_auth_headers,
        )
        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "session_ownership"


class TestProductDetails:
    """상품 상세 조회 테스트"""

    def test_details(self, client, search_client):
        search_client.details = ProductDetails(
            title="Samsung Galaxy S24 128GB",
            price="CHF 699.00",
            offers=[ProductOffer(merchant="Digitec", price="CHF 699.00", link="https://digitec.example/1")],
        )

        response = client.post("/api/product-details", json={"page_token": "token-1"})
        assert response.status_code == 200

        data = response.json()
        assert data["title"] == "Samsung Galaxy S24 128GB"
        assert data["offers"][0]["merchant"] == "Digitec"
        assert search_client.details_calls == [("token-1", "CH")]

    def test_country_override(self, client, search_client):
        search_client.details = ProductDetails(title="Galaxy S24")
        client.post("/api/product-details", json={"page_token": "token-1", "country": "de"})
        assert search_client.details_calls == [("token-1", "DE")]

    @pytest.mark.parametrize("body", [{}, {"page_token": ""}, {"page_token": "   "}])
    def test_missing_token(self, client, search_client, body):
        """page_token이 없으면 검색 API를 호출하지 않고 400"""
        response = client.post("/api/product-details", json=body)
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "validation_error"
        assert search_client.details_calls == []

    def test_search_failure(self, client):
        """검색 API 실패는 502"""
        response = client.post("/api/product-details", json={"page_token": "token-1"})
        assert response.status_code == 502
        assert response.json()["detail"]["error"] == "search_failed"


class TestStats:
    """통계 테스트"""

    def test_stats(self, client, llm):
        llm.script(GIFT_DIALOGUE)
        client.post("/api/chat", json={"message": "hello"})

        response = client.get("/api/stats")
        assert response.status_code == 200

        data = response.json()
        assert data["server_id"] == "test-server"
        assert data["token_usage"]["total_requests"] >= 1
        assert data["connections"] == {"connections": 0, "authenticated_users": 0}
        assert data["active_sessions"] == 1
        assert data["active_turns"] == 0


class TestWebSocket:
    """WebSocket 테스트"""

    def test_ping_pong(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

    def test_chat(self, client, llm):
        llm.script(GIFT_DIALOGUE)

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "chat", "message": "I need a gift for my wife"})
            event = ws.receive_json()

        assert event["type"] == "dialogue"
        assert event["output"] == GIFT_DIALOGUE["output"]
        assert event["session_id"]
        assert "timestamp" in event

    def test_chat_empty_message(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "chat", "message": ""})
            event = ws.receive_json()

        assert event["type"] == "error"
        assert event["error"] == "validation_error"

    @pytest.mark.parametrize(
        "raw,error",
        [
            ("not json", "validation_error"),
            ('{"message": "missing type"}', "validation_error"),
            ('{"type": "dance"}', "unknown_message_type"),
        ],
    )
    def test_bad_messages(self, client, raw: str, error: str):
        """잘못된 메시지에도 연결 유지"""
        with client.websocket_connect("/ws") as ws:
            ws.send_text(raw)
            event = ws.receive_json()
            assert event["type"] == "error"
            assert event["error"] == error

            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

    def test_sync_requires_auth(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "sync_preferences", "preferences": {"currency": "EUR"}})
            event = ws.receive_json()

        assert event["error"] == "auth_required"

    def test_sync_preferences_between_devices(self, client, access_token):
        """같은 사용자의 다른 기기로 환경설정 전파"""
        with client.websocket_connect("/ws") as phone, client.websocket_connect("/ws") as laptop:
            laptop.send_json({"type": "ping", "access_token": access_token})
            assert laptop.receive_json()["type"] == "pong"

            phone.send_json({
                "type": "sync_preferences",
                "access_token": access_token,
                "preferences": {"currency": "EUR"},
            })
            ack = phone.receive_json()
            event = laptop.receive_json()

        assert ack["type"] == "sync_ack"
        assert ack["message"] == "preferences_updated"
        assert event["type"] == "preferences_updated"
        assert event["payload"] == {"currency": "EUR"}

    def test_chat_synced_to_other_device(self, client, llm, access_token):
        """WebSocket 채팅은 발신 기기를 제외한 다른 기기에 동기화"""
        llm.script(GIFT_DIALOGUE)

        with client.websocket_connect("/ws") as phone, client.websocket_connect("/ws") as laptop:
            laptop.send_json({"type": "ping", "access_token": access_token})
            assert laptop.receive_json()["type"] == "pong"

            phone.send_json({
                "type": "chat",
                "message": "hello",
                "session_id": "s-sync",
                "access_token": access_token,
            })
            reply = phone.receive_json()
            user_sync = laptop.receive_json()
            assistant_sync = laptop.receive_json()

            phone.send_json({"type": "ping"})
            assert phone.receive_json()["type"] == "pong"

        assert reply["type"] == "dialogue"
        assert user_sync["type"] == "user_message_sync"
        assert user_sync["output"] == "hello"
        assert user_sync["session_id"] == "s-sync"
        assert assistant_sync["type"] == "assistant_message_sync"
        assert assistant_sync["message_id"] == reply["message_id"]

    def test_rest_chat_synced_to_websocket(self, client, llm, auth_headers, access_token):
        """REST 채팅 결과가 같은 사용자의 WebSocket 연결로 전달"""
        llm.script(GIFT_DIALOGUE)

        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "ping", "access_token": access_token})
            assert ws.receive_json()["type"] == "pong"

            response = client.post(
                "/api/chat",
                json={"message": "hello", "session_id": "s-rest"},
                headers=auth_headers,
            )
            user_sync = ws.receive_json()
            assistant_sync = ws.receive_json()

        assert response.status_code == 200
        assert user_sync["type"] == "user_message_sync"
        assert assistant_sync["type"] == "assistant_message_sync"
        assert assistant_sync["output"] == GIFT_DIALOGUE["output"]
