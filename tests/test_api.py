"""
Tests de bout en bout de l'API HTTP
"""
from datetime import datetime, timedelta
import re

import pytest

from conftest import auth_headers, descriptor_at_distance
from inclass.models import UserRole
from inclass.services.face_service import FaceEngineMode, FaceRecognitionService, get_face_service


@pytest.fixture
def faculty(seed):
    return seed.user(user_id=1, role=UserRole.FACULTY, name="Pr. Haddad", roll_no=None)


@pytest.fixture
def student(seed):
    return seed.user(user_id=42)


@pytest.fixture
def course(seed, faculty, student):
    course = seed.course(faculty.id, class_id=3)
    seed.enroll(student.id, course.id)
    return course


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_register_login_and_me(client):
    response = client.post("/api/auth/register", json={
        "email": "nadia@univ-lyon.fr", "name": "Nadia Ouali", "roll_no": "CS-007", "password": "motdepasse",
    })
    assert response.status_code == 201

    response = client.post("/api/auth/token", data={"username": "nadia@univ-lyon.fr", "password": "motdepasse"})
    assert response.status_code == 200
    token = response.json()["access_token"]

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.json()["role"] == "student"

    response = client.post("/api/auth/register", json={
        "email": "Nadia@Univ-Lyon.fr", "name": "Nadia", "password": "autremotdepasse",
    })
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "EMAIL_EXISTS"


def test_missing_token_uses_error_envelope(client):
    response = client.post("/api/attendance/mark", json={"code": "A1B2C3"})
    assert response.status_code == 401
    assert response.json()["success"] is False
    assert response.json()["error"]["code"] == "AUTHENTICATION_ERROR"


def test_start_session(client, faculty, course):
    response = client.post("/api/faculty/start-session", json={"class_id": course.id}, headers=auth_headers(faculty))
    assert response.status_code == 201
    body = response.json()
    assert re.fullmatch(r"[0-9A-F]{6}", body["code"])
    expires_at = datetime.fromisoformat(body["expires_at"])
    assert timedelta(minutes=4) < expires_at - datetime.utcnow() <= timedelta(minutes=5)


def test_start_session_requires_faculty_owning_the_class(client, seed, student, course):
    response = client.post("/api/faculty/start-session", json={"class_id": course.id}, headers=auth_headers(student))
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ROLE_REQUIRED"

    other = seed.user(role=UserRole.FACULTY)
    response = client.post("/api/faculty/start-session", json={"class_id": course.id}, headers=auth_headers(other))
    assert response.status_code == 404


def test_mark_rejections(client, seed, student, course):
    headers = auth_headers(student)

    response = client.post("/api/attendance/mark", json={}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "CODE_REQUIRED"

    response = client.post("/api/attendance/mark", json={"code": "ABCDEF"}, headers=headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "INVALID_CODE"

    expired = seed.session(course.id, code="DEAD00", expires_at=datetime.utcnow() - timedelta(seconds=1))
    response = client.post("/api/attendance/mark", json={"code": "DEAD00"}, headers=headers)
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "CODE_EXPIRED"
    assert error["expired"] is True
    assert error["sessionId"] == expired.id

    seed.session(course.id, code="B0B0B0")
    response = client.post("/api/attendance/mark", json={"code": "B0B0B0"}, headers=headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FACE_NOT_ENROLLED"


def test_full_enrollment_and_attendance_flow(client, seed, student, course, authenticator, hub):
    headers = auth_headers(student)

    # Visage
    response = client.post("/api/face/enroll", json={"embedding": [0.0] * 128}, headers=headers)
    assert response.status_code == 200
    assert response.json()["updated"] is False

    # Authentificateur de plateforme
    options = client.post("/api/fingerprint/enroll/start", headers=headers).json()["options"]
    assert options["authenticatorSelection"]["userVerification"] == "required"
    response = client.post(
        "/api/fingerprint/enroll/complete",
        json={"registrationResponse": authenticator.register(options["challenge"]), "deviceName": "Pixel"},
        headers=headers,
    )
    assert response.status_code == 201
    assert response.json()["credentialId"] == authenticator.credential_id_b64

    status = client.get("/api/biometrics/status", headers=headers).json()
    assert status["webauthn"]["enrolled"] is True
    assert status["face"]["enrolled"] is True

    # Présence
    session = seed.session(course.id, code="A1B2C3")
    options = client.post("/api/fingerprint/verify/start", headers=headers).json()["options"]
    challenge = options["challenge"]
    response = client.post(
        "/api/attendance/mark",
        json={
            "code": "A1B2C3",
            "faceEmbedding": descriptor_at_distance(1 / 0.81 - 1),
            "fingerprintAuthResponse": authenticator.authenticate(challenge, counter=1),
            "fingerprintChallenge": challenge,
        },
        headers=headers,
    )
    assert response.status_code == 200, response.json()
    data = response.json()["data"]
    assert data["faceVerified"] is True
    assert data["faceMatchScore"] == pytest.approx(0.81)
    assert data["fingerprintVerified"] is True
    assert data["sessionId"] == session.id

    # Deuxième tentative
    options = client.post("/api/fingerprint/verify/start", headers=headers).json()["options"]
    challenge = options["challenge"]
    response = client.post(
        "/api/attendance/mark",
        json={
            "code": "A1B2C3",
            "faceEmbedding": [0.0] * 128,
            "fingerprintAuthResponse": authenticator.authenticate(challenge, counter=2),
            "fingerprintChallenge": challenge,
        },
        headers=headers,
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "ALREADY_MARKED"
    assert seed.scalar("SELECT COUNT(*) FROM attendance") == 1


def test_duplicate_enrollment_of_same_authenticator(client, student, authenticator):
    headers = auth_headers(student)
    for expected in (201, 409):
        options = client.post("/api/fingerprint/enroll/start", headers=headers).json()["options"]
        response = client.post(
            "/api/fingerprint/enroll/complete",
            json={"registrationResponse": authenticator.register(options["challenge"])},
            headers=headers,
        )
        assert response.status_code == expected

    options = client.post("/api/fingerprint/enroll/start", headers=headers).json()["options"]
    assert [c["id"] for c in options["excludeCredentials"]] == [authenticator.credential_id_b64]


def test_enroll_complete_without_challenge(client, student, authenticator, challenge_store):
    response = client.post(
        "/api/fingerprint/enroll/complete",
        json={"registrationResponse": authenticator.register("AAAA")},
        headers=auth_headers(student),
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "CHALLENGE_EXPIRED"
    assert response.json()["error"]["expired"] is True


def test_standalone_fingerprint_verification_consumes_challenge(
    client, seed, student, authenticator, challenge_store
):
    seed.credential(student.id, authenticator, counter=5)
    headers = auth_headers(student)

    challenge = client.post("/api/fingerprint/verify/start", headers=headers).json()["options"]["challenge"]
    assertion = authenticator.authenticate(challenge, counter=9)
    response = client.post("/api/fingerprint/verify/complete", json={"authenticationResponse": assertion}, headers=headers)
    assert response.status_code == 200
    assert response.json()["verified"] is True
    assert seed.scalar("SELECT counter FROM webauthn_credentials") == 9

    response = client.post("/api/fingerprint/verify/complete", json={"authenticationResponse": assertion}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "CHALLENGE_EXPIRED"


def test_revoked_credential_is_not_offered(client, seed, student, authenticator):
    seed.credential(student.id, authenticator)
    headers = auth_headers(student)

    response = client.delete(f"/api/fingerprint/enroll/{authenticator.credential_id_b64}", headers=headers)
    assert response.status_code == 200
    assert seed.scalar("SELECT COUNT(*) FROM webauthn_credentials") == 1

    response = client.post("/api/fingerprint/verify/start", headers=headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "WEBAUTHN_NOT_ENROLLED"


def test_face_verify_is_advisory(client, student, monkeypatch):
    headers = auth_headers(student)
    client.post("/api/face/enroll", json={"embedding": [0.0] * 128}, headers=headers)

    monkeypatch.setenv("FACE_SIMILARITY_THRESHOLD", "0.6")
    response = client.post("/api/face/verify", json={"embedding": descriptor_at_distance(1.0)}, headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["verified"] is False
    assert body["score"] == pytest.approx(0.5)
    assert body["threshold"] == 0.6
    assert body["mode"] == "full"

    response = client.post("/api/face/enroll", json={"embedding": [0.1] * 128}, headers=headers)
    assert response.json()["updated"] is True


def test_face_enroll_rejects_bad_embedding(client, student):
    response = client.post("/api/face/enroll", json={"embedding": [0.0] * 12}, headers=auth_headers(student))
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_FACE_EMBEDDING"


def test_override_then_duplicate_detection_purges_session(client, seed, faculty, student, course):
    session = seed.session(course.id, code="A1B2C3", session_id=7)
    headers = auth_headers(faculty)

    response = client.post(
        "/api/faculty/attendance/override",
        json={"session_id": 7, "student_id": 42, "reason": "Téléphone déchargé"},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "Manual"

    # Doublon introduit hors contrainte (course entre deux saisies manuelles)
    seed.execute("DROP INDEX uq_attendance_student_session")
    seed.execute(
        "INSERT INTO attendance (student_id, session_id, status, face_verified, fingerprint_verified, "
        "is_overridden, is_duplicate, created_at) VALUES (42, 7, 'Manual', 0, 0, 1, 0, '2026-03-02 09:31:00')"
    )
    assert seed.scalar("SELECT COUNT(*) FROM attendance WHERE session_id = 7") == 2

    response = client.post("/api/faculty/duplicate-detection", json={"session_id": session.id}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "CONFIRMATION_REQUIRED"

    response = client.post(
        "/api/faculty/duplicate-detection", json={"session_id": session.id, "confirm": True}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["duplicatesFound"] == 1
    assert seed.scalar("SELECT COUNT(*) FROM attendance WHERE session_id = 7") == 0


def test_duplicate_detection_without_duplicates(client, seed, faculty, course):
    session = seed.session(course.id)
    response = client.post(
        "/api/faculty/duplicate-detection", json={"session_id": session.id, "confirm": True},
        headers=auth_headers(faculty),
    )
    assert response.json()["duplicatesFound"] == 0


def test_expired_code_report_workflow(client, seed, faculty, student, course):
    session = seed.session(course.id, code="DEAD00", expires_at=datetime.utcnow() - timedelta(minutes=1))

    response = client.post(
        "/api/reports/expired-code",
        json={"session_id": session.id, "reason": "Le code a expiré pendant la saisie"},
        headers=auth_headers(student),
    )
    assert response.status_code == 201
    report_id = response.json()["id"]

    response = client.get("/api/reports/expired-codes", params={"status": "Pending"}, headers=auth_headers(faculty))
    assert [r["id"] for r in response.json()] == [report_id]

    response = client.post(
        f"/api/reports/expired-code/{report_id}/approve", json={"response": "Accepté"}, headers=auth_headers(faculty)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "Approved"
    assert seed.scalar("SELECT status FROM attendance WHERE student_id = 42") == "Manual"

    response = client.post(
        f"/api/reports/expired-code/{report_id}/reject", json={}, headers=auth_headers(faculty)
    )
    assert response.status_code == 409


def test_report_for_live_session_is_refused(client, seed, student, course):
    session = seed.session(course.id)
    response = client.post(
        "/api/reports/expired-code", json={"session_id": session.id, "reason": "?"}, headers=auth_headers(student)
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "CODE_NOT_EXPIRED"


def test_courses_and_roster(client, seed, faculty):
    headers = auth_headers(faculty)
    response = client.post("/api/faculty/courses", json={"course_code": "ma201", "title": "Analyse"}, headers=headers)
    assert response.status_code == 201
    class_id = response.json()["id"]
    assert response.json()["course_code"] == "MA201"

    newcomer = seed.user()
    response = client.post(f"/api/faculty/courses/{class_id}/students", json={"student_id": newcomer.id}, headers=headers)
    assert response.status_code == 201
    response = client.post(f"/api/faculty/courses/{class_id}/students", json={"student_id": newcomer.id}, headers=headers)
    assert response.status_code == 409

    assert [c["course_code"] for c in client.get("/api/faculty/courses", headers=headers).json()] == ["MA201"]


def test_closed_session_code_is_invalid(client, seed, faculty, student, course):
    session = seed.session(course.id, code="C1C2C3")
    response = client.post(f"/api/faculty/sessions/{session.id}/close", headers=auth_headers(faculty))
    assert response.status_code == 200

    response = client.post("/api/attendance/mark", json={"code": "C1C2C3"}, headers=auth_headers(student))
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "INVALID_CODE"


def test_websocket_receives_attendance_events(client, faculty, hub):
    token = auth_headers(faculty)["Authorization"].split()[1]
    with client.websocket_connect(f"/ws/attendance?token={token}") as websocket:
        websocket.send_json({"action": "joinSession", "sessionId": 7})
        assert websocket.receive_json() == {"event": "joined", "room": "session_7"}
        assert "session_7" in hub.rooms


def test_non_ascii_challenge_is_refused(client, seed, student, course, authenticator):
    seed.face(student.id, [0.0] * 128)
    seed.credential(student.id, authenticator, counter=1)
    seed.session(course.id, code="A1B2C3")
    headers = auth_headers(student)

    challenge = client.post("/api/fingerprint/verify/start", headers=headers).json()["options"]["challenge"]
    response = client.post(
        "/api/attendance/mark",
        json={
            "code": "A1B2C3",
            "faceEmbedding": [0.0] * 128,
            "fingerprintAuthResponse": authenticator.authenticate(challenge, counter=2),
            "fingerprintChallenge": "défi",
        },
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "CHALLENGE_EXPIRED"


def test_liveness_unavailable_in_degraded_mode(client, student):
    client.app.dependency_overrides[get_face_service] = lambda: FaceRecognitionService(mode=FaceEngineMode.DEGRADED)
    response = client.post(
        "/api/face/liveness", json={"frames": ["aW1hZ2U=", "aW1hZ2U="]}, headers=auth_headers(student)
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "FACE_ENGINE_DEGRADED"
