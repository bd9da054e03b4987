"""
End-to-end contest flow over the HTTP API.
"""

import pytest
from sqlalchemy import func, select

from contest.models import Score
from contest.tests.factories import (
    auth_headers,
    make_admin,
    make_user,
    submission_payload,
    utc,
    vote_payload,
)

N_USERS = 50


class TestFullContest:
    @pytest.mark.asyncio
    async def test_fifty_users_submit_review_and_rank(self, client, service):
        admin = await make_admin(service)
        users = [
            await make_user(service, email=f"designer{i}@example.com", name=f"D{i}")
            for i in range(N_USERS)
        ]

        # Submission window open
        windows = {
            "submission_start": utc(hours=-1).isoformat(),
            "submission_end": utc(hours=1).isoformat(),
            "voting_start": utc(hours=2).isoformat(),
            "voting_end": utc(hours=3).isoformat(),
        }
        response = await client.put(
            "/api/config", json=windows, headers=auth_headers(admin)
        )
        assert response.status_code == 200, response.text

        owner_of = {}
        for i, user in enumerate(users):
            response = await client.post(
                "/api/submissions",
                json=submission_payload(figma_link=f"https://figma.com/file/{i}"),
                headers=auth_headers(user),
            )
            assert response.status_code == 200, response.text
            owner_of[response.json()["id"]] = str(user.id)

        # Submissions close; the clock assigns reviews
        windows.update(
            submission_end=utc(minutes=-1).isoformat(),
            voting_start=utc(hours=1).isoformat(),
        )
        await client.put("/api/config", json=windows, headers=auth_headers(admin))
        tick = await service.tick()
        assert tick.assigned

        assignments_by_user = {}
        for user in users:
            response = await client.get(
                "/api/vote_assignments/mine", headers=auth_headers(user)
            )
            assert response.status_code == 200
            assignments = response.json()
            assert len(assignments) <= 6
            for assignment in assignments:
                assert owner_of[assignment["submission_id"]] != str(user.id)
            assignments_by_user[user.id] = assignments
        assert all(len(a) == 6 for a in assignments_by_user.values())

        # Voting open
        windows.update(
            voting_start=utc(minutes=-1).isoformat(),
            voting_end=utc(hours=1).isoformat(),
        )
        await client.put("/api/config", json=windows, headers=auth_headers(admin))

        for i, user in enumerate(users):
            for j, assignment in enumerate(assignments_by_user[user.id]):
                response = await client.post(
                    "/api/votes",
                    json=vote_payload(assignment["submission_id"], (i + j) % 6),
                    headers=auth_headers(user),
                )
                assert response.status_code == 200, response.text

        # Voting closes; the clock scores
        windows.update(voting_end=utc(minutes=-1).isoformat())
        await client.put("/api/config", json=windows, headers=auth_headers(admin))
        tick = await service.tick()
        assert tick.scored and not tick.assigned

        async with service.async_session() as session:
            n_scores = (
                await session.execute(select(func.count()).select_from(Score))
            ).scalar_one()
        assert n_scores == N_USERS

        hidden = await client.get("/api/scores")
        assert hidden.status_code == 404

        await service.set_show_leaderboard(True)
        shown = await client.get("/api/scores")
        assert shown.status_code == 200
        leaderboard = shown.json()
        assert len(leaderboard) == N_USERS
        finals = [row["final_score"] for row in leaderboard]
        assert all(f >= 0 for f in finals)
        assert finals == sorted(finals, reverse=True)
