from datetime import datetime, timezone
from clerva.models import Match, Profile
from clerva.services.partner_service import score_profile
from clerva.utils.db import get_session


def auth_header(t):
    return {"Authorization": f"Bearer {t}"}


def _profile(**kw):
    base = {"subjects": [], "interests": [], "skill_level": "BEGINNER", "study_style": "VISUAL"}
    base.update(kw)
    return Profile(**base)


def test_score_profile():
    mine = _profile(subjects=["Math", "Physics"], interests=["Chess"], skill_level="ADVANCED")
    other = _profile(subjects=["Math", "Physics", "Art"], interests=["Chess"], skill_level="ADVANCED",
                     study_style="SOLO")
    score, reasons = score_profile(mine, other)
    assert score == 20 * 2 + 15 + 10
    assert reasons == ["2 shared subject(s)", "1 shared interest(s)", "Same skill level"]


def test_score_is_capped_and_needs_own_profile():
    subjects = ["A", "B", "C", "D", "E", "F"]
    assert score_profile(_profile(subjects=subjects), _profile(subjects=subjects))[0] == 100
    assert score_profile(None, _profile(subjects=subjects)) == (0, [])


def _searcher(make_user, token_for):
    uid = make_user(name="Searcher", profile={"subjects": ["Math"], "interests": ["Chess"],
                                              "skill_level": "INTERMEDIATE"})
    return uid, auth_header(token_for(uid))


def _search(client, headers, **body):
    return client.post("/api/partners/search", json=body, headers=headers)


def test_search_filters_scores_and_sorts(client, make_user, token_for):
    me, headers = _searcher(make_user, token_for)
    best = make_user(name="Best", profile={"subjects": ["Math"], "interests": ["Chess"],
                                           "skill_level": "INTERMEDIATE", "school": "MIT"})
    ok = make_user(name="Ok", profile={"subjects": ["Math", "Art"], "school": "Stanford"})
    make_user(name="Other", profile={"subjects": ["Art"]})

    r = _search(client, headers, subjects=["Math"])
    assert r.status_code == 200, r.data
    assert r.headers["Cache-Control"] == "private, max-age=30, stale-while-revalidate=60"
    body = r.get_json()
    assert [p["userId"] for p in body["profiles"]] == [best, ok]
    assert body["profiles"][0]["matchScore"] == 55
    assert body["profiles"][1]["matchScore"] == 30
    assert "Same skill level" in body["profiles"][0]["matchReasons"]
    assert body["pagination"] == {"page": 1, "limit": 20, "total": 2, "totalPages": 1}

    r = _search(client, headers, subjects=["Math"], school="stan")
    assert [p["userId"] for p in r.get_json()["profiles"]] == [ok]

    r = _search(client, headers, searchQuery="best")
    assert [p["userId"] for p in r.get_json()["profiles"]] == [best]

    r = _search(client, headers, skillLevel="INTERMEDIATE")
    assert [p["userId"] for p in r.get_json()["profiles"]] == [best]


def test_search_excludes_pending_matches_and_flags_partners(client, make_user, token_for):
    me, headers = _searcher(make_user, token_for)
    partner = make_user(name="Partner", profile={"subjects": ["Math"]})
    pending = make_user(name="Pending", profile={"subjects": ["Math"]})
    banned = make_user(name="Banned", profile={"subjects": ["Math"]}, deactivated_at=datetime.now(timezone.utc))
    with get_session() as s:
        s.add(Match(sender_id=me, receiver_id=partner, status="ACCEPTED"))
        s.add(Match(sender_id=pending, receiver_id=me, status="PENDING"))
        s.commit()

    profiles = _search(client, headers, subjects=["Math"]).get_json()["profiles"]
    ids = {p["userId"]: p for p in profiles}
    assert pending not in ids
    assert banned not in ids
    assert ids[partner]["isAlreadyPartner"] is True


def test_search_pagination(client, make_user, token_for):
    me, headers = _searcher(make_user, token_for)
    for i in range(5):
        make_user(profile={"subjects": ["Math"]})
    body = _search(client, headers, subjects=["Math"], page=2, limit=2).get_json()
    assert len(body["profiles"]) == 2
    assert body["pagination"] == {"page": 2, "limit": 2, "total": 5, "totalPages": 3}


def test_search_validation(client, user_headers):
    r = _search(client, user_headers)
    assert r.status_code == 400
    assert r.get_json()["error"] == "At least one search filter or criteria must be provided"

    r = _search(client, user_headers, subjects="Math", page="1")
    assert r.status_code == 400
    body = r.get_json()
    assert body["error"] == "Invalid data"
    assert set(body["details"]) == {"subjects", "page"}

    assert _search(client, user_headers, searchQuery="   ").status_code == 400
