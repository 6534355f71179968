from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest
import requests

from codesprint.engine.cancellation import CancellationToken
from codesprint.engine.errors import DispatchError, GradingCancelled, PollTimeoutError
from codesprint.engine.executor import ExecutionClient, map_language, parse_time_ms
from codesprint.engine.grader import Grader
from codesprint.models.models import SubmissionStatus


class FakeResponse:
    def __init__(self, status_code: int, body: Any = None):
        self.status_code = status_code
        self._body = body

    def json(self) -> Any:
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    """Replays queued responses and records every request"""

    def __init__(self, posts: Optional[List[Any]] = None, gets: Optional[List[Any]] = None):
        self.posts = list(posts or [])
        self.gets = list(gets or [])
        self.requests: List[Dict[str, Any]] = []

    def _next(self, queue: List[Any]) -> FakeResponse:
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, params=None, json=None, timeout=None):
        self.requests.append({"method": "POST", "url": url, "params": params, "json": json, "timeout": timeout})
        return self._next(self.posts)

    def get(self, url, params=None, timeout=None):
        self.requests.append({"method": "GET", "url": url, "params": params, "timeout": timeout})
        return self._next(self.gets)


def status_body(status_id: int, stdout: Optional[str] = "", time: Optional[str] = "0.010") -> Dict[str, Any]:
    return {
        "token": "abc",
        "status": {"id": status_id, "description": "whatever"},
        "stdout": stdout,
        "time": time,
        "memory": 3200,
        "compile_output": None,
    }


@pytest.mark.parametrize(
    "tag, language_id",
    [("c", 50), ("cpp", 54), ("c++", 54), ("python", 92), ("python3", 92)],
)
def test_map_language_known_tags(tag: str, language_id: int) -> None:
    assert map_language(tag) == language_id


@pytest.mark.parametrize("tag", ["java", "rust", "", "CPP", "Python"])
def test_map_language_unknown_tags_fall_back_to_c(tag: str) -> None:
    assert map_language(tag) == 50


def test_parse_time_ms_rounds_down_without_float_drift() -> None:
    assert parse_time_ms("0.029") == 29
    assert parse_time_ms("1.0019") == 1001
    assert parse_time_ms(None) == 0
    assert parse_time_ms("n/a") == 0


def test_submit_posts_judge0_payload_and_returns_token() -> None:
    session = FakeSession(posts=[FakeResponse(201, {"token": "tok-1"})])
    client = ExecutionClient("http://judge:2358/", request_timeout=3, session=session)

    token = client.submit("print(1)", "python3", "1\n", time_limit_ms=2500)

    assert token == "tok-1"
    sent = session.requests[0]
    assert sent["url"] == "http://judge:2358/submissions"
    assert sent["params"] == {"base64_encoded": "false", "wait": "false"}
    assert sent["json"] == {"source_code": "print(1)", "language_id": 92, "stdin": "1\n", "cpu_time_limit": 2.5}
    assert sent["timeout"] == 3


def test_submit_rejects_non_created_status() -> None:
    session = FakeSession(posts=[FakeResponse(200, {"token": "tok-1"})])
    client = ExecutionClient(session=session)

    with pytest.raises(DispatchError):
        client.submit("code", "c", "")


def test_submit_wraps_transport_errors() -> None:
    session = FakeSession(posts=[requests.ConnectionError("refused")])
    client = ExecutionClient(session=session)

    with pytest.raises(DispatchError, match="refused"):
        client.submit("code", "c", "")


def test_submit_requires_a_token() -> None:
    session = FakeSession(posts=[FakeResponse(201, {"message": "queued"})])
    client = ExecutionClient(session=session)

    with pytest.raises(DispatchError):
        client.submit("code", "c", "")


def test_fetch_parses_result_fields() -> None:
    session = FakeSession(gets=[FakeResponse(200, status_body(3, stdout=None, time="0.125"))])
    client = ExecutionClient(session=session)

    result = client.fetch("abc")

    assert session.requests[0]["url"].endswith("/submissions/abc")
    assert result.status_id == 3
    assert result.stdout == ""
    assert result.time_ms == 125
    assert result.memory_kb == 3200
    assert result.is_terminal


def test_fetch_rejects_bad_responses() -> None:
    client = ExecutionClient(session=FakeSession(gets=[FakeResponse(500, {})]))
    with pytest.raises(DispatchError):
        client.fetch("abc")

    client = ExecutionClient(session=FakeSession(gets=[FakeResponse(200, ValueError("not json"))]))
    with pytest.raises(DispatchError):
        client.fetch("abc")


def test_poll_returns_first_terminal_result() -> None:
    session = FakeSession(gets=[
        FakeResponse(200, status_body(1)),
        FakeResponse(200, status_body(2)),
        FakeResponse(200, status_body(5)),
    ])
    client = ExecutionClient(session=session)

    result = client.poll_until_terminal("abc", max_attempts=5, interval=0)

    assert result.status_id == 5
    assert len(session.requests) == 3


def test_poll_treats_unknown_status_ids_as_non_terminal() -> None:
    session = FakeSession(gets=[FakeResponse(200, status_body(13)) for _ in range(3)])
    client = ExecutionClient(session=session)

    with pytest.raises(PollTimeoutError):
        client.poll_until_terminal("abc", max_attempts=3, interval=0)
    assert len(session.requests) == 3


def test_poll_timeout_is_a_builtin_timeout_error() -> None:
    session = FakeSession(gets=[FakeResponse(200, status_body(1))])
    client = ExecutionClient(session=session)

    with pytest.raises(TimeoutError):
        client.poll_until_terminal("abc", max_attempts=1, interval=0)


def test_poll_propagates_fetch_failures() -> None:
    session = FakeSession(gets=[FakeResponse(200, status_body(1)), requests.Timeout("slow")])
    client = ExecutionClient(session=session)

    with pytest.raises(DispatchError):
        client.poll_until_terminal("abc", max_attempts=5, interval=0)


def test_poll_stops_when_cancelled() -> None:
    session = FakeSession(gets=[FakeResponse(200, status_body(1)) for _ in range(5)])
    client = ExecutionClient(session=session)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(GradingCancelled):
        client.poll_until_terminal("abc", max_attempts=5, interval=10, cancel_token=token)
    assert session.requests == []


def test_poll_respects_deadline() -> None:
    session = FakeSession(gets=[FakeResponse(200, status_body(1)) for _ in range(5)])
    client = ExecutionClient(session=session)

    with pytest.raises(PollTimeoutError):
        client.poll_until_terminal("abc", max_attempts=5, interval=0.01, deadline=0)
    assert len(session.requests) == 1


def test_check_connection_never_raises() -> None:
    client = ExecutionClient(session=FakeSession(gets=[requests.ConnectionError("down")]))
    assert client.check_connection() is False

    client = ExecutionClient(session=FakeSession(gets=[FakeResponse(200, {"version": "1.13"})]))
    assert client.check_connection() is True


@pytest.mark.parametrize("body", [
    {"token": "abc", "status": "Accepted"},
    {"token": "abc", "status": {"id": "x"}},
    {"token": "abc", "status": {"id": None}},
    {"token": "abc"},
    dict(status_body(3), stdout=["2"]),
])
def test_fetch_rejects_malformed_results(body: Dict[str, Any]) -> None:
    client = ExecutionClient(session=FakeSession(gets=[FakeResponse(200, body)]))

    with pytest.raises(DispatchError):
        client.fetch("abc")


def test_malformed_result_fails_the_submission(repo) -> None:
    contest = repo.add_contest()
    problem = repo.add_problem(contest.id, [("1\n", "2\n")])
    submission = repo.create_submission("alice", contest.id, problem.id, "python3", "print(2)")
    session = FakeSession(
        posts=[FakeResponse(201, {"token": "abc"})],
        gets=[FakeResponse(200, {"token": "abc", "status": "Accepted"})],
    )

    report = Grader(repo, ExecutionClient(session=session), poll_interval=0).grade(submission)

    assert report.status == SubmissionStatus.RUNTIME_ERROR
    assert repo.get_submission(submission.id).status == SubmissionStatus.RUNTIME_ERROR
