import os, time, json, uuid, asyncio, math
from typing import Optional, Any, Dict, List, Literal
from collections import deque

from fastapi import FastAPI, HTTPException, Query, status
from fastapi.responses import Response, PlainTextResponse
from pydantic import BaseModel, Field
from contextlib import asynccontextmanager

import redis

from bbp import compute_hex_digits, estimate_digit_sec, MAX_DIGITS_PER_JOB, PRECISION_CEILING

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
ROOT_PATH = os.environ.get("ROOT_PATH", "/os")  # nginxのprefixに合わせる

QUEUE_KEY = "pi:queue"          # List: job_id
INFLIGHT_KEY = "pi:inflight"    # ZSET: score=deadline(unix sec), member=job_id
PAYLOAD_KEY_PREFIX = "pi:payload:"  # String: JSON payload
RESULT_KEY_PREFIX = "pi:result:"    # String: JSON result

LEASE_SEC = 10  # 最短リース。実際は桁位置に応じて延ばす
REQUEUE_PERIOD_SEC = 1  # 回収ループの周期
RECENT_RESULTS = 50
INLINE_MAX_INDEX = 10_000  # /digits で同期計算する上限。これより先は /enqueue へ

recent_results: deque = deque(maxlen=RECENT_RESULTS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(requeue_loop())
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


r = redis.Redis.from_url(REDIS_URL, decode_responses=True)
app = FastAPI(
    lifespan=lifespan,
    root_path=ROOT_PATH
)


class HexJobIn(BaseModel):
    type: Literal["bbp_hex"] = "bbp_hex"
    start: int = Field(ge=0)
    count: int = Field(default=1, gt=0, le=MAX_DIGITS_PER_JOB)


class JobOut(BaseModel):
    job_id: str
    payload: Dict[str, Any]
    lease_sec: int


class ResultIn(BaseModel):
    job_id: str
    result: Dict[str, Any]


class FailIn(BaseModel):
    job_id: str
    error: str


def payload_key(job_id: str) -> str:
    return f"{PAYLOAD_KEY_PREFIX}{job_id}"

def result_key(job_id: str) -> str:
    return f"{RESULT_KEY_PREFIX}{job_id}"

def get_queue_state() -> dict:
    """Get current queue state"""
    return {
        "queue_length": r.llen(QUEUE_KEY),
        "inflight_count": r.zcard(INFLIGHT_KEY)
    }

def load_jobs(job_ids: List[str]) -> List[dict]:
    """payload が読めるものだけ返す"""
    jobs = []
    for job_id in job_ids:
        payload_json = r.get(payload_key(job_id))
        if payload_json:
            try:
                jobs.append({"job_id": job_id, "payload": json.loads(payload_json)})
            except json.JSONDecodeError:
                print(f"broken payload: {job_id}")
    return jobs

def lease_for(payload: dict) -> int:
    """
    リース秒数。worker は1桁ごとに延長するので、
    最後の桁1つを計算する時間の2倍あれば足りる。
    """
    last = int(payload.get("start", 0)) + int(payload.get("count", 1)) - 1
    return LEASE_SEC + math.ceil(2 * estimate_digit_sec(last))

def store_result(job_id: str, result: dict) -> bool:
    """
    結果を保存し、in-flight から削除。
    すでに結果があれば上書きしない（重複報告対策）。
    """
    if r.exists(result_key(job_id)):
        r.zrem(INFLIGHT_KEY, job_id)
        return False

    pipe = r.pipeline()
    pipe.set(result_key(job_id), json.dumps(result))
    pipe.zrem(INFLIGHT_KEY, job_id)
    pipe.execute()

    recent_results.append({
        "job_id": job_id,
        "result": result,
        "timestamp": int(time.time())
    })
    return True


@app.post("/enqueue")
def enqueue(job: HexJobIn):
    if job.start + job.count > PRECISION_CEILING:
        raise HTTPException(422, f"start+count exceeds precision ceiling {PRECISION_CEILING}")
    job_id = str(uuid.uuid4())
    r.set(payload_key(job_id), json.dumps(job.model_dump()))
    r.lpush(QUEUE_KEY, job_id)
    return {"job_id": job_id}

@app.get("/job", response_model=Optional[JobOut])
def get_job():
    """
    1件取り出して in-flight に登録(期限=now+lease_for(payload))して返す。
    キューが空なら 204。
    """
    job_id = r.rpop(QUEUE_KEY)
    if job_id is None:
        return Response(status_code=204)

    payload_json = r.get(payload_key(job_id))
    if payload_json is None:
        raise HTTPException(500, "payload missing")

    payload = json.loads(payload_json)
    lease_sec = lease_for(payload)
    r.zadd(INFLIGHT_KEY, {job_id: int(time.time()) + lease_sec})

    return JobOut(job_id=job_id, payload=payload, lease_sec=lease_sec)

@app.post("/job/{job_id}/extend")
def extend_job(job_id: str):
    """
    計算中の worker がリースを延長する。
    期限切れで queue に戻された後なら 404（worker は計算を打ち切る）。
    """
    if r.zscore(INFLIGHT_KEY, job_id) is None:
        raise HTTPException(404, "lease lost")
    payload_json = r.get(payload_key(job_id))
    if payload_json is None:
        raise HTTPException(404, "payload missing")

    lease_sec = lease_for(json.loads(payload_json))
    r.zadd(INFLIGHT_KEY, {job_id: int(time.time()) + lease_sec})
    return {"job_id": job_id, "lease_sec": lease_sec}

@app.post("/result", status_code=204)
def post_result(x: ResultIn):
    if store_result(x.job_id, x.result):
        print(f"result: {x.result}")
    return Response(status_code=204)

@app.post("/fail", status_code=204)
def post_fail(x: FailIn):
    """worker 側で失敗したジョブ。再投入はせずエラーを結果として残す"""
    print(f"fail: {x.job_id} {x.error}")
    store_result(x.job_id, {"error": x.error})
    return Response(status_code=204)

@app.get("/result/{job_id}")
def get_result(job_id: str):
    v = r.get(result_key(job_id))
    if v is None:
        raise HTTPException(404, "no result")
    return json.loads(v)

@app.get("/digits")
def get_digits(start: int = Query(0, ge=0),
               count: int = Query(1, gt=0, le=MAX_DIGITS_PER_JOB)):
    """キューを通さずにその場で計算する（小さい桁位置のみ）"""
    if start + count > INLINE_MAX_INDEX:
        raise HTTPException(422, f"start+count exceeds {INLINE_MAX_INDEX}; use /enqueue")
    return {"hex": compute_hex_digits(start, count), "start": start, "count": count}

@app.get("/queue/status")
def get_queue_status():
    """Get current queue state and recent results"""
    state = get_queue_state()
    return {
        "queue_length": state["queue_length"],
        "inflight_count": state["inflight_count"],
        "recent_results": list(recent_results)
    }

@app.get("/queue/jobs")
def get_queue_jobs():
    """Get current queue and inflight job details"""
    return {
        "queue_jobs": load_jobs(r.lrange(QUEUE_KEY, 0, -1)),
        "inflight_jobs": load_jobs(r.zrange(INFLIGHT_KEY, 0, -1))
    }

@app.post("/queue/clear", status_code=204)
def clear_queue():
    """Clear all queue data: queue, inflight, payloads, and results"""
    queue_job_ids = r.lrange(QUEUE_KEY, 0, -1)
    inflight_job_ids = r.zrange(INFLIGHT_KEY, 0, -1)
    all_job_ids = set(queue_job_ids + inflight_job_ids)

    pipe = r.pipeline()
    for job_id in all_job_ids:
        pipe.delete(payload_key(job_id))
        pipe.delete(result_key(job_id))
    pipe.execute()

    r.delete(QUEUE_KEY)
    r.delete(INFLIGHT_KEY)
    recent_results.clear()

    return Response(status_code=204)

@app.get("/ping", response_class=PlainTextResponse)
def ping():
    return "pong"

@app.get("/healthz")
def healthz():
    try:
        r.ping()
        return {
            "status": "ok",
            "redis": "ok",
            "time": int(time.time())
        }
    except redis.exceptions.RedisError:
        return Response(
            content='{"status":"ng","redis":"ng"}',
            media_type="application/json",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

def requeue_expired(now: int) -> List[str]:
    """in-flight の期限切れを最大100件 queue に戻す"""
    expired = r.zrange(INFLIGHT_KEY, "-inf", now, byscore=True, offset=0, num=100)
    if expired:
        pipe = r.pipeline()
        for job_id in expired:
            pipe.zrem(INFLIGHT_KEY, job_id)
            pipe.lpush(QUEUE_KEY, job_id)
        pipe.execute()
    return expired

async def requeue_loop():
    while True:
        try:
            expired = await asyncio.to_thread(requeue_expired, int(time.time()))
            if expired:
                print(f"requeued: {len(expired)}")
        except redis.exceptions.RedisError as e:
            # Redis が戻るまで回収を続ける
            print(f"requeue error: {e!r}")
        await asyncio.sleep(REQUEUE_PERIOD_SEC)
