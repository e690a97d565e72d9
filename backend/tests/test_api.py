"""
HTTP tests for the gateway API.

Runs the FastAPI app against the per-test SQLite database by overriding
the get_db dependency. Startup (init_db) is not triggered because the
client is used without a context manager.
"""
import pytest
from datetime import timedelta
from fastapi.testclient import TestClient

from app import config
from app.auth import create_access_token, hash_api_key
from app.database import get_db
from app.main import app
from app.models.db_models import (
    CommandDB,
    CommandStatus,
    RuleAction,
    UserDB,
    UserRole,
    UserTier,
    utcnow,
)


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_header(user: UserDB) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
def member(make_user):
    return make_user(name="member", role=UserRole.MEMBER, tier=UserTier.JUNIOR, credits=10)


@pytest.fixture
def rules(make_rule):
    return {
        "rm": make_rule(r"rm\s+-rf\s+/", RuleAction.AUTO_REJECT, priority=99),
        "sudo": make_rule(r"sudo\s+", RuleAction.REQUIRE_APPROVAL, priority=80, approval_threshold=2),
        "basic": make_rule(r"^(ls|cat|pwd|echo)", RuleAction.AUTO_ACCEPT, priority=49),
    }


def _credits(db, user_id):
    db.expire_all()
    return db.query(UserDB.credits).filter(UserDB.id == user_id).scalar()


# =============================================================================
# TEST: BASICS AND AUTH
# =============================================================================

class TestAuth:

    def test_health(self, client):
        """Health check answers without auth."""
        assert client.get("/health").json()["status"] == "healthy"

    def test_token_exchange(self, client, make_user):
        """A valid API key is exchanged for a working bearer token."""
        api_key = "member_0123456789abcdef"
        user = make_user(name="keyed", api_key_hash=hash_api_key(api_key))

        response = client.post("/auth/token", json={"user_id": user.id, "api_key": api_key})
        assert response.status_code == 200
        token = response.json()["access_token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["id"] == user.id
        assert me.json()["tier"] == "junior"

    def test_wrong_api_key(self, client, make_user):
        """A wrong API key answers 401."""
        user = make_user(name="keyed", api_key_hash=hash_api_key("member_right"))
        response = client.post("/auth/token", json={"user_id": user.id, "api_key": "member_wrong"})
        assert response.status_code == 401

    def test_missing_token(self, client):
        """Protected routes refuse anonymous callers."""
        assert client.post("/commands", json={"command_text": "ls"}).status_code in (401, 403)

    def test_garbage_token(self, client):
        """A malformed JWT answers 401."""
        response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


# =============================================================================
# TEST: COMMANDS
# =============================================================================

class TestCommands:

    def test_submit_auto_accept(self, client, db, member, rules):
        """POST /commands executes an auto-accepted command."""
        response = client.post("/commands", json={"command_text": "ls -la"}, headers=auth_header(member))

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "executed"
        assert body["new_balance"] == 9
        assert _credits(db, member.id) == 9

    def test_submit_dangerous(self, client, db, member, rules):
        """A dangerous command comes back rejected with the balance unchanged."""
        response = client.post("/commands", json={"command_text": "rm -rf /"}, headers=auth_header(member))

        body = response.json()
        assert body["status"] == "rejected"
        assert "dangerous pattern" in body["reason"]
        assert body["credits"] == 10

    def test_submit_without_credits(self, client, make_user, rules):
        """No credits answers 403 with the balance."""
        broke = make_user(name="broke", credits=0)
        response = client.post("/commands", json={"command_text": "ls"}, headers=auth_header(broke))

        assert response.status_code == 403
        assert response.json() == {"error": "Insufficient credits.", "credits": 0}

    def test_submit_empty_text(self, client, member):
        """Empty command text fails request validation."""
        response = client.post("/commands", json={"command_text": ""}, headers=auth_header(member))
        assert response.status_code == 422

    def test_members_see_only_their_commands(self, client, member, admins, make_user, make_command):
        """Members list their own commands, admins list all."""
        other = make_user(name="other")
        make_command(member, "ls", status=CommandStatus.EXECUTED)
        make_command(other, "pwd", status=CommandStatus.EXECUTED)

        mine = client.get("/commands", headers=auth_header(member)).json()
        everyone = client.get("/commands", headers=auth_header(admins[0])).json()

        assert mine["total"] == 1
        assert mine["commands"][0]["commandText"] == "ls"
        assert everyone["total"] == 2

    def test_command_detail_ownership(self, client, member, make_user, make_command):
        """Command detail is owner-only and 404s on unknown ids."""
        command = make_command(member, "ls", status=CommandStatus.EXECUTED)
        other = make_user(name="other")

        assert client.get(f"/commands/{command.id}", headers=auth_header(member)).status_code == 200
        assert client.get(f"/commands/{command.id}", headers=auth_header(other)).status_code == 403
        assert client.get("/commands/missing", headers=auth_header(member)).status_code == 404


# =============================================================================
# TEST: APPROVALS
# =============================================================================

class TestApprovals:

    def test_two_admin_approval_flow(self, client, db, member, admins, rules):
        """Two admins approve over HTTP and the command executes once."""
        submitted = client.post(
            "/commands", json={"command_text": "sudo reboot"}, headers=auth_header(member)
        ).json()
        assert submitted["status"] == "awaiting_approval"
        assert submitted["required_approvals"] == 2

        pending = client.get("/commands/pending/approvals", headers=auth_header(admins[0])).json()
        assert [c["id"] for c in pending] == [submitted["id"]]

        first = client.post(
            f"/commands/{submitted['id']}/approve",
            json={"decision": "approved"},
            headers=auth_header(admins[0]),
        ).json()
        repeat = client.post(
            f"/commands/{submitted['id']}/approve",
            json={"decision": "approved"},
            headers=auth_header(admins[0]),
        ).json()
        second = client.post(
            f"/commands/{submitted['id']}/approve",
            json={"decision": "approved"},
            headers=auth_header(admins[1]),
        ).json()

        assert first["result"] == "vote_recorded"
        assert first["approvalCount"] == 1
        assert repeat["result"] == "already_voted"
        assert repeat["success"] is False
        assert second["result"] == "executed"
        assert second["newBalance"] == 9
        assert _credits(db, member.id) == 9

        detail = client.get(f"/commands/{submitted['id']}", headers=auth_header(member)).json()
        assert detail["status"] == "executed"
        assert len(detail["approvals"]) == 2

    def test_member_cannot_vote(self, client, member, rules):
        """Members get 403 on the approve route."""
        submitted = client.post(
            "/commands", json={"command_text": "sudo reboot"}, headers=auth_header(member)
        ).json()
        response = client.post(
            f"/commands/{submitted['id']}/approve",
            json={"decision": "approved"},
            headers=auth_header(member),
        )
        assert response.status_code == 403

    def test_vote_on_finished_command(self, client, member, admins, rules):
        """Voting on an executed command answers 400 with its status."""
        submitted = client.post(
            "/commands", json={"command_text": "ls"}, headers=auth_header(member)
        ).json()
        response = client.post(
            f"/commands/{submitted['id']}/approve",
            json={"decision": "rejected"},
            headers=auth_header(admins[0]),
        )
        assert response.status_code == 400
        assert response.json()["currentStatus"] == "executed"

    def test_invalid_decision(self, client, member, admins, rules):
        """Unknown decisions fail request validation."""
        submitted = client.post(
            "/commands", json={"command_text": "sudo reboot"}, headers=auth_header(member)
        ).json()
        response = client.post(
            f"/commands/{submitted['id']}/approve",
            json={"decision": "maybe"},
            headers=auth_header(admins[0]),
        )
        assert response.status_code == 422

    def test_resubmit(self, client, db, member, admins, rules, add_vote):
        """Resubmitting an approved command executes it."""
        submitted = client.post(
            "/commands", json={"command_text": "sudo reboot"}, headers=auth_header(member)
        ).json()
        command = db.get(CommandDB, submitted["id"])
        add_vote(command, admins[0])
        add_vote(command, admins[1])

        response = client.post(f"/commands/{submitted['id']}/resubmit", headers=auth_header(member))

        assert response.status_code == 200
        assert response.json()["status"] == "executed"


# =============================================================================
# TEST: RULES
# =============================================================================

class TestRules:

    def test_members_can_list_but_not_create(self, client, member, rules):
        """Members read rules but cannot create them."""
        assert len(client.get("/rules", headers=auth_header(member)).json()) == 3

        response = client.post(
            "/rules",
            json={"pattern": "^whoami$", "action": "AUTO_ACCEPT"},
            headers=auth_header(member),
        )
        assert response.status_code == 403

    def test_create_update_delete(self, client, admins):
        """Rule CRUD round trip through the API."""
        headers = auth_header(admins[0])
        created = client.post(
            "/rules",
            json={
                "pattern": r"docker\s+run",
                "action": "REQUIRE_APPROVAL",
                "priority": 75,
                "approvalThreshold": 1,
                "timeRestrictions": {"allowAutoAcceptDuring": {"days": [1, 2, 3, 4, 5], "startHour": 9, "endHour": 18}},
            },
            headers=headers,
        )
        assert created.status_code == 201
        rule = created.json()
        assert rule["createdBy"] == {"name": admins[0].name}

        updated = client.put(f"/rules/{rule['id']}", json={"priority": 10}, headers=headers).json()
        assert updated["priority"] == 10
        assert updated["timeRestrictions"] is not None

        cleared = client.put(f"/rules/{rule['id']}", json={"timeRestrictions": None}, headers=headers).json()
        assert cleared["timeRestrictions"] is None

        deleted = client.delete(f"/rules/{rule['id']}", headers=headers)
        assert deleted.json() == {"message": "Rule deleted successfully."}
        assert client.get(f"/rules/{rule['id']}", headers=headers).status_code == 404

    def test_invalid_pattern(self, client, admins):
        """A bad regex answers 400 with the compile error."""
        response = client.post(
            "/rules",
            json={"pattern": "a(b", "action": "AUTO_ACCEPT"},
            headers=auth_header(admins[0]),
        )
        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid regex pattern")

    @pytest.mark.parametrize("body", [
        {"pattern": "^whoami$", "action": "ALLOW"},
        {"pattern": "^whoami$", "action": "AUTO_ACCEPT", "approvalThreshold": 0},
        {"pattern": "", "action": "AUTO_ACCEPT"},
        {"pattern": "^whoami$", "action": "AUTO_ACCEPT", "timeRestrictions": {
            "allowAutoAcceptDuring": {"days": [1], "startHour": 18, "endHour": 9}}},
    ])
    def test_bad_rule_values_answer_400(self, client, admins, body):
        """Bad action, threshold, pattern or window all map to 400 with an error body."""
        response = client.post("/rules", json=body, headers=auth_header(admins[0]))
        assert response.status_code == 400
        assert "error" in response.json()

    def test_bad_update_values_answer_400(self, client, admins, rules):
        """Updates share the create-time value checks."""
        headers = auth_header(admins[0])
        rule_id = rules["basic"].id

        assert client.put(f"/rules/{rule_id}", json={"approvalThreshold": 0}, headers=headers).status_code == 400
        assert client.put(f"/rules/{rule_id}", json={"action": "ALLOW"}, headers=headers).status_code == 400

    def test_conflict(self, client, admins, rules):
        """A conflicting rule answers 409 naming the existing rule."""
        response = client.post(
            "/rules",
            json={"pattern": "rm -rf", "action": "AUTO_REJECT"},
            headers=auth_header(admins[0]),
        )
        assert response.status_code == 409
        assert response.json()["conflictingRules"][0]["id"] == rules["rm"].id

    def test_pattern_tester(self, client, admins):
        """The pattern tester reports a match."""
        response = client.post(
            "/rules/test",
            json={"pattern": r"git\s+status", "testCommand": "git status"},
            headers=auth_header(admins[0]),
        )
        assert response.json()["matches"] is True


# =============================================================================
# TEST: AUDIT AND SCHEDULER
# =============================================================================

class TestAuditAndScheduler:

    def test_audit_is_admin_only(self, client, member, admins, rules):
        """Audit listing is admin-only and filters by user and action."""
        client.post("/commands", json={"command_text": "ls"}, headers=auth_header(member))

        assert client.get("/audit", headers=auth_header(member)).status_code == 403

        body = client.get(
            "/audit",
            params={"userId": member.id, "action": "COMMAND_EXECUTED"},
            headers=auth_header(admins[0]),
        ).json()
        assert body["total"] == 1
        assert body["logs"][0]["details"]["newCredits"] == 9

    def test_escalations_require_internal_key(self, client):
        """The escalation trigger needs the internal key."""
        response = client.post("/internal/escalations", headers={"x-internal-key": "wrong"})
        assert response.status_code == 403

    def test_escalations(self, client, member, rules, make_command):
        """The escalation trigger flags stale commands."""
        stale = make_command(
            member, "sudo reboot", rule=rules["sudo"], created_at=utcnow() - timedelta(hours=3)
        )

        response = client.post(
            "/internal/escalations",
            params={"timeout_minutes": 60},
            headers={"x-internal-key": config.INTERNAL_API_KEY},
        )

        assert response.status_code == 200
        assert response.json() == {"escalated": 1, "command_ids": [stale.id]}
