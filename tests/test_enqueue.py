import pytest

import enqueue


class FakeResponse:
    def __init__(self, job_id, status_code=200):
        self.status_code = status_code
        self._job_id = job_id

    def json(self):
        if self._job_id is None:
            return {}
        return {"job_id": self._job_id}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise enqueue.requests.exceptions.HTTPError(f"status {self.status_code}")


class FakeSession:
    def __init__(self, status_code=200, with_job_id=True):
        self.status_code = status_code
        self.with_job_id = with_job_id
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        job_id = f"job-{len(self.posts)}" if self.with_job_id else None
        return FakeResponse(job_id, self.status_code)


def test_build_payloads():
    assert enqueue.build_payloads(8, 3, 4) == [
        {"type": "bbp_hex", "start": 8, "count": 4},
        {"type": "bbp_hex", "start": 12, "count": 4},
        {"type": "bbp_hex", "start": 16, "count": 4},
    ]


def test_build_payloads_randomized_covers_all():
    payloads = enqueue.build_payloads(0, 10, 2, randomize=True)
    assert sorted(p["start"] for p in payloads) == list(range(0, 20, 2))


def test_main_posts_jobs(monkeypatch, capsys):
    session = FakeSession()
    monkeypatch.setattr(enqueue.requests, "Session", lambda: session)
    enqueue.main(["--start", "0", "--count", "2", "--digits", "4", "--base", "http://pi/"])
    assert [url for url, _ in session.posts] == ["http://pi/enqueue"] * 2
    assert session.posts[1][1]["start"] == 4
    assert "2 succeeded, 0 failed" in capsys.readouterr().out


def test_main_exits_on_failure(monkeypatch):
    monkeypatch.setattr(enqueue.requests, "Session", lambda: FakeSession(500))
    with pytest.raises(SystemExit) as e:
        enqueue.main(["--start", "0", "--count", "1"])
    assert e.value.code == 1


@pytest.mark.parametrize("argv", [
    ["--start", "-1", "--count", "1"],
    ["--start", "0", "--count", "0"],
    ["--start", "0", "--count", "1", "--digits", "0"],
])
def test_main_bad_args(argv):
    with pytest.raises(SystemExit) as e:
        enqueue.main(argv)
    assert e.value.code == 1


def test_main_tolerates_response_without_job_id(monkeypatch, capsys):
    session = FakeSession(with_job_id=False)
    monkeypatch.setattr(enqueue.requests, "Session", lambda: session)
    enqueue.main(["--start", "0", "--count", "3"])
    assert len(session.posts) == 3
    assert "3 succeeded, 0 failed" in capsys.readouterr().out
