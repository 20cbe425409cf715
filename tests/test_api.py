from conftest import correct_answers
from db.models.exam_blocks import ExamBlock


def answers_payload(assessment, right):
    return [{"questionId": q, "optionId": o} for q, o in correct_answers(assessment, right)]


class TestAuth:
    def test_missing_token(self, client):
        assert client.get("/exams/tryouts").status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/exams/tryouts", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_admin_routes_reject_learners(self, client, learner, auth_headers):
        response = client.get("/admin/exams/blocks", headers=auth_headers(learner))
        assert response.status_code == 403


class TestAttemptFlow:
    def test_start_submit_review(self, client, learner, make_assessment, auth_headers):
        assessment = make_assessment(questions=10, is_free=True)
        headers = auth_headers(learner)

        listing = client.get("/exams/tryouts", headers=headers).json()
        assert listing["status"] == "success"
        assert [a["slug"] for a in listing["data"]] == [assessment.slug]

        started = client.post(f"/exams/tryouts/{assessment.slug}/start", headers=headers).json()["data"]
        attempt_id = started["attemptId"]

        paper = client.get(f"/exams/attempts/{attempt_id}/paper", headers=headers).json()["data"]
        assert len(paper["questions"]) == 10

        submitted = client.post(
            f"/exams/tryouts/{assessment.slug}/submit",
            headers=headers,
            json={"attemptId": attempt_id, "answers": answers_payload(assessment, 6)},
        )
        assert submitted.status_code == 200
        assert submitted.json()["data"] == {"attemptId": attempt_id, "score": 60.0, "correct": 6, "total": 10}

        review = client.get(f"/exams/attempts/{attempt_id}/review", headers=headers).json()["data"]
        assert review["completed"] is True
        assert review["score"] == 60.0

        history = client.get("/exams/tryouts-history", headers=headers).json()["data"]
        assert history[0]["score"] == 60.0

        stats = client.get("/exams/stats", headers=headers).json()["data"]
        assert stats["tryout"]["completed"] == 1

    def test_paid_tryout_without_membership(self, client, learner, make_assessment, auth_headers):
        assessment = make_assessment()
        response = client.post(f"/exams/tryouts/{assessment.slug}/start", headers=auth_headers(learner))

        assert response.status_code == 403
        assert response.json()["status"] == "error"
        assert response.json()["code"] == "MEMBERSHIP_REQUIRED"

    def test_quota_exhausted(self, client, learner, make_membership, make_assessment, auth_headers):
        make_membership(learner, practice_quota=1, practice_used=1)
        assessment = make_assessment(kind="PRACTICE")

        response = client.post(f"/exams/practice/{assessment.slug}/start", headers=auth_headers(learner))
        assert response.status_code == 403
        assert response.json()["code"] == "QUOTA_EXHAUSTED"

    def test_unknown_slug(self, client, learner, auth_headers):
        response = client.get("/exams/tryouts/nope/info", headers=auth_headers(learner))
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


class TestBlocks:
    def test_violation_blocks_then_unlock(self, client, db_session, learner, make_assessment, auth_headers):
        assessment = make_assessment(is_free=True)
        headers = auth_headers(learner)
        attempt_id = client.post(f"/exams/tryouts/{assessment.slug}/start", headers=headers).json()["data"]["attemptId"]

        reported = client.post("/exams/blocks", headers=headers, json={"type": "TRYOUT", "reason": "Tab switch"})
        assert reported.status_code == 201

        submit = client.post(
            f"/exams/tryouts/{assessment.slug}/submit",
            headers=headers,
            json={"attemptId": attempt_id, "answers": []},
        )
        assert submit.status_code == 423
        assert submit.json()["code"] == "EXAM_BLOCKED"

        blocks = client.get("/exams/blocks", headers=headers).json()["data"]
        assert len(blocks) == 1
        assert "code" not in blocks[0]

        code = db_session.query(ExamBlock).filter(ExamBlock.user_id == learner.id).one().code
        wrong = "000000" if code != "000000" else "111111"
        assert client.post("/exams/blocks/unlock", headers=headers, json={"type": "TRYOUT", "code": wrong}).status_code == 400

        unlocked = client.post("/exams/blocks/unlock", headers=headers, json={"type": "TRYOUT", "code": code})
        assert unlocked.status_code == 200
        assert client.get("/exams/blocks", headers=headers).json()["data"] == []

    def test_malformed_code_is_rejected(self, client, learner, auth_headers):
        response = client.post("/exams/blocks/unlock", headers=auth_headers(learner), json={"type": "TRYOUT", "code": "12ab"})
        assert response.status_code == 422

    def test_disabled_type_is_skipped(self, client, learner, admin, auth_headers):
        client.put(
            "/admin/exams/block-config",
            headers=auth_headers(admin),
            json={"practiceEnabled": False, "tryoutEnabled": True, "examEnabled": True},
        )

        response = client.post("/exams/blocks", headers=auth_headers(learner), json={"type": "PRACTICE"})
        assert response.status_code == 200
        assert response.json()["data"] == {"skipped": True, "type": "PRACTICE"}

    def test_ujian_reads_exam_flag(self, client, learner, admin, auth_headers):
        client.put(
            "/admin/exams/block-config",
            headers=auth_headers(admin),
            json={"practiceEnabled": True, "tryoutEnabled": True, "examEnabled": False},
        )

        response = client.post("/ujian/blocks", headers=auth_headers(learner), json={"type": "TRYOUT"})
        assert response.json()["data"]["skipped"] is True

    def test_admin_regenerate_and_resolve(self, client, learner, admin, auth_headers):
        client.post("/exams/blocks", headers=auth_headers(learner), json={"type": "PRACTICE"})
        admin_headers = auth_headers(admin)

        active = client.get("/admin/exams/blocks", headers=admin_headers).json()["data"]
        assert len(active) == 1
        assert active[0]["userId"] == learner.id
        block_id = active[0]["id"]

        regenerated = client.post(f"/admin/exams/blocks/{block_id}/regenerate", headers=admin_headers).json()["data"]
        assert len(regenerated["code"]) == 6

        resolved = client.post(f"/admin/exams/blocks/{block_id}/resolve", headers=admin_headers)
        assert resolved.status_code == 200
        assert client.get("/admin/exams/blocks", headers=admin_headers).json()["data"] == []

        assert client.post("/admin/exams/blocks/9999/resolve", headers=admin_headers).status_code == 404


class TestBlockConfig:
    def test_update_bumps_version(self, client, admin, learner, auth_headers):
        before = client.get("/exams/block-config", headers=auth_headers(learner)).json()["data"]
        assert before == {"practiceEnabled": True, "tryoutEnabled": True, "examEnabled": True, "version": 0}

        updated = client.put(
            "/admin/exams/block-config",
            headers=auth_headers(admin),
            json={"practiceEnabled": False, "tryoutEnabled": True, "examEnabled": False},
        ).json()["data"]

        assert updated["version"] == 1
        assert updated["practiceEnabled"] is False
        after = client.get("/ujian/block-config", headers=auth_headers(learner)).json()["data"]
        assert after == updated


class TestCermat:
    def test_drill_over_http(self, client, learner, make_membership, cermat_store, auth_headers):
        make_membership(learner)
        headers = auth_headers(learner)

        started = client.post("/exams/cermat/session", headers=headers, json={"mode": "LETTER"})
        assert started.status_code == 200
        view = started.json()["data"]
        assert view["mode"] == "LETTER"
        assert view["sessionIndex"] == 1
        assert len(view["baseSet"]) == 5

        live = cermat_store.get(view["sessionId"])
        answers = [{"order": order, "value": q["answer"]} for order, q in live.questions.items()]
        step = client.post(f"/exams/cermat/session/{view['sessionId']}/submit", headers=headers, json={"answers": answers})

        body = step.json()["data"]
        assert body["completed"] is False
        assert body["sessionSummary"]["score"] == 100
        assert body["nextSession"]["sessionIndex"] == 2

        retry = client.post(f"/exams/cermat/session/{view['sessionId']}/submit", headers=headers, json={"answers": answers})
        assert retry.status_code == 404

        history = client.get("/exams/cermat/history", headers=headers).json()["data"]
        assert len(history) == 1

    def test_bad_mode(self, client, learner, make_membership, auth_headers):
        make_membership(learner)
        response = client.post("/exams/cermat/session", headers=auth_headers(learner), json={"mode": "EMOJI"})
        assert response.status_code == 422


class TestMembership:
    def test_status(self, client, learner, make_membership, auth_headers):
        assert client.get("/me/membership", headers=auth_headers(learner)).json()["data"] == {"isActive": False}

        make_membership(learner, tryout_quota=5, tryout_used=2)
        data = client.get("/me/membership", headers=auth_headers(learner)).json()["data"]
        assert data["isActive"] is True
        assert data["tryoutRemaining"] == 3
        assert data["practiceRemaining"] is None


class TestAdminImport:
    def test_import_and_validation_error(self, client, admin, auth_headers):
        payload = {
            "kind": "PRACTICE",
            "title": "Practice TIU",
            "slug": "practice-tiu",
            "duration_minutes": 30,
            "questions": [
                {
                    "prompt": "2 + 2",
                    "explanation": "Basic addition",
                    "options": [{"label": "4", "is_correct": True}, {"label": "5"}],
                }
            ],
        }
        created = client.post("/admin/assessments", headers=auth_headers(admin), json=payload)
        assert created.status_code == 201
        assert created.json()["data"]["totalQuestions"] == 1

        duplicate = client.post("/admin/assessments", headers=auth_headers(admin), json=payload)
        assert duplicate.status_code == 422
        assert duplicate.json()["code"] == "VALIDATION_FAILED"


class TestAdminRanking:
    def test_ranking_after_submission(self, client, learner, admin, make_assessment, auth_headers):
        assessment = make_assessment(questions=4, is_free=True)
        headers = auth_headers(learner)
        attempt_id = client.post(f"/exams/tryouts/{assessment.slug}/start", headers=headers).json()["data"]["attemptId"]
        client.post(
            f"/exams/tryouts/{assessment.slug}/submit",
            headers=headers,
            json={"attemptId": attempt_id, "answers": answers_payload(assessment, 3)},
        )

        assert client.get("/admin/exams/ranking", headers=headers).status_code == 403

        summary = client.get("/admin/exams/ranking", headers=auth_headers(admin)).json()["data"]["summary"]
        assert len(summary) == 1
        assert summary[0]["user"]["id"] == learner.id
        assert summary[0]["tryoutAvg"] == 75
        assert summary[0]["overallAvg"] == 75

        later = client.get(
            "/admin/exams/ranking",
            headers=auth_headers(admin),
            params={"startDate": "2999-01-01T00:00:00"},
        ).json()["data"]["summary"]
        assert later == []
