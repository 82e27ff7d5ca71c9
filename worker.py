import os
import time
import requests

from bbp import compute_hex_digit, MAX_DIGITS_PER_JOB, PRECISION_CEILING

BASE = os.environ.get("PI_SERVER_BASE", "http://localhost:8099")
IDLE_SLEEP_SEC = 1.0

S = requests.Session()


class LeaseLost(Exception):
    """リース切れでジョブが他の worker に渡った"""


def do_job(payload: dict, on_digit=None) -> dict:
    if payload.get("type") != "bbp_hex":
        raise ValueError(f"unknown job type: {payload.get('type')}")
    start = int(payload["start"])
    count = int(payload["count"])
    if start < 0 or count <= 0 or count > MAX_DIGITS_PER_JOB:
        raise ValueError(f"bad start/count (0 < count <= {MAX_DIGITS_PER_JOB})")
    if start + count > PRECISION_CEILING:
        raise ValueError(f"start+count exceeds precision ceiling {PRECISION_CEILING}")

    digits = []
    for i in range(start, start + count):
        digits.append(compute_hex_digit(i))
        if on_digit is not None:
            on_digit(i)
    return {"hex": "".join(digits), "start": start, "count": count}


def process_one(session=S, base=BASE) -> bool:
    """
    /job から1件取って処理し、/result か /fail に報告する。
    計算中はリースの半分が過ぎるたびに /job/{id}/extend で延長する。
    キューが空なら False。
    """
    r = session.get(f"{base}/job", timeout=10)
    if r.status_code == 204:
        return False
    r.raise_for_status()
    job = r.json()

    job_id = job["job_id"]
    payload = job["payload"]
    lease_sec = job["lease_sec"]
    extended_at = time.monotonic()

    def extend(index):
        nonlocal extended_at, lease_sec
        if time.monotonic() - extended_at < lease_sec / 2:
            return
        res = session.post(f"{base}/job/{job_id}/extend", timeout=10)
        if res.status_code == 404:
            raise LeaseLost(job_id)
        res.raise_for_status()
        lease_sec = res.json()["lease_sec"]
        extended_at = time.monotonic()

    try:
        result = do_job(payload, on_digit=extend)
    except LeaseLost:
        print(f"job {job_id}: lease lost, dropped")
        return True
    except (ValueError, KeyError, TypeError) as e:
        print(f"job {job_id} failed: {e!r}")
        session.post(f"{base}/fail",
                     json={"job_id": job_id, "error": repr(e)},
                     timeout=10).raise_for_status()
        return True

    print(f"job {job_id}: start={result['start']} hex={result['hex']}")
    session.post(f"{base}/result",
                 json={"job_id": job_id, "result": result},
                 timeout=20).raise_for_status()
    return True


def main():
    while True:
        try:
            if not process_one():
                time.sleep(IDLE_SLEEP_SEC)
        except requests.exceptions.RequestException as e:
            # サーバー停止中などはしばらく待って再試行
            print(f"server error: {e}")
            time.sleep(IDLE_SLEEP_SEC)
        except (KeyError, ValueError) as e:
            # /job の応答が壊れている
            print(f"bad job response: {e!r}")
            time.sleep(IDLE_SLEEP_SEC)


if __name__ == "__main__":
    main()
