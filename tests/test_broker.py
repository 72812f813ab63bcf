"""Tests for the Celery broker integration."""

import pytest

from api.models import Blog
from processor import broker
from processor.broker import PRIORITIES, BrokerGateway, ExecutionHistory, analyze_content, connect_broker
from processor.config import ProcessorSettings
from processor.queue_manager import AnalysisQueueManager
from processor.records import AnalysisRecord, ContentKind
from processor.services.model_client import TieredModelClient
from processor.worker import SingleFlightQueue


class FakeRedis:
    """Just enough of a Redis client for list history."""

    def __init__(self):
        self.lists = {}

    def pipeline(self):
        return FakePipeline(self)

    def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def lpush(self, key, value):
        self.ops.append(("lpush", key, value))

    def ltrim(self, key, start, end):
        self.ops.append(("ltrim", key, start, end))

    def execute(self):
        for op, key, *args in self.ops:
            items = self.client.lists.setdefault(key, [])
            if op == "lpush":
                items.insert(0, args[0])
            else:
                self.client.lists[key] = items[args[0]:args[1] + 1]


class Retrying(Exception):
    pass


@pytest.fixture
def history(monkeypatch):
    history = ExecutionHistory(FakeRedis(), "test-queue", keep_completed=10, keep_failed=5)
    monkeypatch.setattr(analyze_content, "_history", history)
    return history


@pytest.fixture
def model_queue(monkeypatch):
    """Task-owned model queue; the fake jobs below never use it."""
    queue = object()
    monkeypatch.setattr(analyze_content, "_model_queue", queue)
    return queue


def test_history_keeps_most_recent_entries():
    history = ExecutionHistory(FakeRedis(), "test-queue", keep_completed=10, keep_failed=5)

    for job_id in range(12):
        history.record("completed", {"job_id": job_id})
    for job_id in range(7):
        history.record("failed", {"job_id": job_id, "error": "boom"})

    recent = history.recent()
    assert [e["job_id"] for e in recent["completed"]] == list(range(11, 1, -1))
    assert [e["job_id"] for e in recent["failed"]] == [6, 5, 4, 3, 2]
    assert recent["failed"][0]["finished_at"]


def test_publish_maps_priority(monkeypatch):
    sent = {}

    class Result:
        id = "task-1"

    def fake_apply_async(**kwargs):
        sent.update(kwargs)
        return Result()

    monkeypatch.setattr(analyze_content, "apply_async", fake_apply_async)
    gateway = BrokerGateway(config=ProcessorSettings(BROKER_URL="redis://broker.test:6379/0"))

    task_id = gateway.publish(7, "dua", "abc", priority="low")

    assert task_id == "task-1"
    assert sent["priority"] == PRIORITIES["low"] == 3
    assert sent["kwargs"] == {"job_id": 7, "content_kind": "dua", "content_id": "abc"}
    assert sent["queue"] == "ai-processing"


def test_no_broker_configured_means_inline():
    assert connect_broker(ProcessorSettings(BROKER_URL="")) is None


def test_unreachable_broker_means_inline(monkeypatch):
    monkeypatch.setattr(BrokerGateway, "is_reachable", lambda self: False)

    assert connect_broker(ProcessorSettings(BROKER_URL="redis://broker.test:6379/0")) is None


def test_failed_attempt_with_retries_left_is_retried(monkeypatch, history, model_queue):
    calls = []

    async def failing_job(queue, job_id, content_kind, content_id, final_attempt):
        calls.append(final_attempt)
        raise RuntimeError("model down")

    retries = {}

    def fake_retry(exc=None, countdown=None, **kwargs):
        retries["countdown"] = countdown
        return Retrying()

    monkeypatch.setattr(broker, "_run_job", failing_job)
    monkeypatch.setattr(analyze_content, "retry", fake_retry)

    analyze_content.push_request(retries=1)
    try:
        with pytest.raises(Retrying):
            analyze_content.run(1, "blog", "b1")
    finally:
        analyze_content.pop_request()

    assert calls == [False]
    assert retries["countdown"] == 4
    assert history.recent()["failed"] == []


def test_final_attempt_failure_is_recorded(monkeypatch, history, model_queue):
    calls = []

    async def failing_job(queue, job_id, content_kind, content_id, final_attempt):
        calls.append(final_attempt)
        raise RuntimeError("model down")

    monkeypatch.setattr(broker, "_run_job", failing_job)

    analyze_content.push_request(retries=2)
    try:
        with pytest.raises(RuntimeError):
            analyze_content.run(1, "blog", "b1")
    finally:
        analyze_content.pop_request()

    assert calls == [True]
    failed = history.recent()["failed"]
    assert failed[0]["job_id"] == 1
    assert failed[0]["attempts"] == 3
    assert failed[0]["error"] == "model down"


def test_success_is_recorded(monkeypatch, history, model_queue):
    async def ok_job(queue, job_id, content_kind, content_id, final_attempt):
        return {"source": "local_fallback", "confidence": 0.6}

    monkeypatch.setattr(broker, "_run_job", ok_job)

    analyze_content.push_request(retries=0)
    try:
        result = analyze_content.run(5, "answer", "a1")
    finally:
        analyze_content.pop_request()

    assert result == {"job_id": 5, "source": "local_fallback", "confidence": 0.6}
    assert history.recent()["completed"][0]["job_id"] == 5


def test_task_passes_its_own_model_queue(monkeypatch, history, model_queue):
    seen = []

    async def ok_job(queue, job_id, content_kind, content_id, final_attempt):
        seen.append(queue)
        return {"source": "primary_model", "confidence": 0.8}

    monkeypatch.setattr(broker, "_run_job", ok_job)

    for job_id in (1, 2):
        analyze_content.push_request(retries=0)
        try:
            analyze_content.run(job_id, "dua", "d1")
        finally:
            analyze_content.pop_request()

    assert seen == [model_queue, model_queue]


@pytest.mark.anyio
async def test_redelivered_finished_job_is_skipped(monkeypatch, session_factory, make_model, add_content, db):
    blog_id = add_content(Blog, title="Sabr", content="Patience")
    queue_manager = AnalysisQueueManager(db)
    job_id = queue_manager.enqueue(ContentKind.BLOG, blog_id)
    queue_manager.complete(job_id, AnalysisRecord(summary="Stored summary", source="primary_model"))
    monkeypatch.setattr(broker, "SessionLocal", session_factory)

    primary = make_model("primary", '{"analysis": {}, "corrections": [], "summary": "New summary"}')
    client = TieredModelClient(primary=primary, secondary=make_model("secondary", "{}"))
    queue = SingleFlightQueue(client.handle, cooldown=0.0)

    outcome = await broker._run_job(queue, job_id, "blog", blog_id, True)

    assert outcome == {"skipped": True}
    assert primary.calls == 0
    assert queue_manager.get(job_id).result.summary == "Stored summary"
    db.expire_all()
    assert db.get(Blog, blog_id).ai_summary is None
