"""End-to-end tests for job dispatch in inline and broker modes."""

import json

import pytest
from sqlalchemy.exc import OperationalError

from api.models import Answer, Blog, Dua
from processor.dispatcher import MODE_BROKER, MODE_INLINE
from processor.integrations.inference import ModelRequestError
from processor.records import ContentKind, JobStatus, SOURCE_LOCAL, SOURCE_PRIMARY
from processor.services.content_accessor import ContentNotFoundError, InvalidContentError
from processor.services.status_reporter import JobStatusReporter
from processor.utils.local_analyzer import SUGGESTIONS

GOOD_OUTPUT = json.dumps(
    {
        "analysis": {},
        "corrections": [{"field": "title", "issue_english": "Too short"}],
        "summary": {"english": "Needs a better title.", "bangla": "ভাল শিরোনাম প্রয়োজন।"},
    }
)


class FakeBroker:
    def __init__(self, fail=False):
        self.fail = fail
        self.published = []

    def publish(self, job_id, content_kind, content_id, priority="normal"):
        if self.fail:
            raise ConnectionError("broker went away")
        self.published.append((job_id, content_kind, content_id, priority))
        return f"task-{job_id}"

    def history(self):
        return {"completed": [], "failed": []}


def job_count(db):
    from api.models import AnalysisJob

    return db.query(AnalysisJob).count()


@pytest.mark.anyio
async def test_unreachable_models_fall_back_to_local_analysis(make_dispatcher, unavailable, add_content, db):
    dua_id = add_content(Dua, title="", arabic_text="x")
    dispatcher = make_dispatcher(*unavailable)

    try:
        handle = await dispatcher.submit(ContentKind.DUA, dua_id)
        job = await dispatcher.get_status(ContentKind.DUA, dua_id)
    finally:
        await dispatcher.close()

    assert dispatcher.mode == MODE_INLINE
    assert handle.status == JobStatus.COMPLETED
    assert job.status == JobStatus.COMPLETED
    assert job.result.source == SOURCE_LOCAL
    assert job.result.confidence == 0.6
    assert SUGGESTIONS["missing_title"] in job.result.corrections
    assert SUGGESTIONS["missing_meaning"] in job.result.corrections

    db.expire_all()
    dua = db.get(Dua, dua_id)
    assert json.loads(dua.ai_summary)["english"].startswith("Basic analysis")
    assert SUGGESTIONS["missing_title"] in json.loads(dua.ai_corrections)


@pytest.mark.anyio
async def test_model_answer_is_written_back(make_dispatcher, make_model, add_content, db):
    blog_id = add_content(Blog, title="Sabr", content="Patience in hardship. " * 10)
    dispatcher = make_dispatcher(make_model("primary", GOOD_OUTPUT), make_model("secondary", GOOD_OUTPUT))

    try:
        await dispatcher.submit(ContentKind.BLOG, blog_id)
        job = await dispatcher.get_status("blog", blog_id)
    finally:
        await dispatcher.close()

    assert job.result.source == SOURCE_PRIMARY
    assert job.result.corrections[0].field == "title"
    db.expire_all()
    assert json.loads(db.get(Blog, blog_id).ai_summary)["english"] == "Needs a better title."


@pytest.mark.anyio
async def test_rejected_request_marks_job_failed(make_dispatcher, make_model, add_content):
    answer_id = add_content(Answer, content="A complete answer with references.")
    dispatcher = make_dispatcher(make_model("primary", ModelRequestError("HTTP 401")), make_model("secondary", "{}"))

    try:
        handle = await dispatcher.submit(ContentKind.ANSWER, answer_id)
        job = await dispatcher.get_status(ContentKind.ANSWER, answer_id)
    finally:
        await dispatcher.close()

    assert handle.status == JobStatus.FAILED
    assert job.status == JobStatus.FAILED
    assert "HTTP 401" in job.error_message
    assert job.result is None


@pytest.mark.anyio
async def test_invalid_kind_rejected_before_job_exists(make_dispatcher, unavailable, db):
    dispatcher = make_dispatcher(*unavailable)

    with pytest.raises(InvalidContentError):
        await dispatcher.submit("video", "1")

    assert job_count(db) == 0


@pytest.mark.anyio
async def test_missing_content_rejected_before_job_exists(make_dispatcher, unavailable, db):
    dispatcher = make_dispatcher(*unavailable)

    with pytest.raises(ContentNotFoundError):
        await dispatcher.submit(ContentKind.DUA, "missing")

    assert job_count(db) == 0


@pytest.mark.anyio
async def test_duplicate_submissions_create_separate_jobs(make_dispatcher, unavailable, add_content, db):
    answer_id = add_content(Answer, content="short")
    dispatcher = make_dispatcher(*unavailable)

    try:
        first = await dispatcher.submit(ContentKind.ANSWER, answer_id)
        second = await dispatcher.submit(ContentKind.ANSWER, answer_id)
    finally:
        await dispatcher.close()

    assert first.job_id != second.job_id
    assert job_count(db) == 2
    assert (await dispatcher.get_status(ContentKind.ANSWER, answer_id)).id == second.job_id


@pytest.mark.anyio
async def test_broker_mode_publishes_pending_job(make_dispatcher, unavailable, add_content):
    blog_id = add_content(Blog, title="Dhikr", content="Remembrance")
    broker = FakeBroker()
    dispatcher = make_dispatcher(*unavailable, broker=broker)

    handle = await dispatcher.submit(ContentKind.BLOG, blog_id, priority="high")
    job = await dispatcher.get_status(ContentKind.BLOG, blog_id)

    assert dispatcher.mode == MODE_BROKER
    assert handle.status == JobStatus.PENDING
    assert handle.task_id == f"task-{handle.job_id}"
    assert broker.published == [(handle.job_id, "blog", blog_id, "high")]
    assert job.status == JobStatus.PENDING
    assert unavailable[0].calls == 0


@pytest.mark.anyio
async def test_publish_failure_marks_job_failed(make_dispatcher, unavailable, add_content):
    blog_id = add_content(Blog, title="Dhikr", content="Remembrance")
    dispatcher = make_dispatcher(*unavailable, broker=FakeBroker(fail=True))

    handle = await dispatcher.submit(ContentKind.BLOG, blog_id)
    job = await dispatcher.get_status(ContentKind.BLOG, blog_id)

    assert handle.status == JobStatus.FAILED
    assert job.status == JobStatus.FAILED
    assert "broker went away" in job.error_message


@pytest.mark.anyio
async def test_publish_failure_survives_unrecordable_job(monkeypatch, make_dispatcher, unavailable, add_content):
    from processor.queue_manager import AnalysisQueueManager

    def database_down(self, job_id, error):
        raise OperationalError("UPDATE ai_processing_queue", {}, Exception("database is down"))

    blog_id = add_content(Blog, title="Dhikr", content="Remembrance")
    dispatcher = make_dispatcher(*unavailable, broker=FakeBroker(fail=True))
    monkeypatch.setattr(AnalysisQueueManager, "fail", database_down)

    handle = await dispatcher.submit(ContentKind.BLOG, blog_id)

    assert handle.status == JobStatus.FAILED
    assert handle.job_id is not None


@pytest.mark.anyio
async def test_finished_job_is_not_reprocessed(make_dispatcher, make_model, add_content, db):
    blog_id = add_content(Blog, title="Sabr", content="Patience in hardship. " * 10)
    first = make_dispatcher(make_model("primary", GOOD_OUTPUT), make_model("secondary", GOOD_OUTPUT))
    try:
        handle = await first.submit(ContentKind.BLOG, blog_id)
    finally:
        await first.close()

    db.expire_all()
    stored_summary = db.get(Blog, blog_id).ai_summary
    other_output = GOOD_OUTPUT.replace("Needs a better title.", "Something else entirely.")
    primary = make_model("primary", other_output)
    second = make_dispatcher(primary, make_model("secondary", other_output))
    try:
        record = await second.processor.process(handle.job_id, ContentKind.BLOG, blog_id)
        job = await second.get_status(ContentKind.BLOG, blog_id)
    finally:
        await second.close()

    assert record is None
    assert primary.calls == 0
    assert job.status == JobStatus.COMPLETED
    assert job.result.summary.english == "Needs a better title."
    db.expire_all()
    assert db.get(Blog, blog_id).ai_summary == stored_summary


class FailsJobWhileGenerating:
    """Model tier that sees its job failed by someone else mid-request."""

    name = "primary"

    def __init__(self, session_factory, content_id):
        self.session_factory = session_factory
        self.content_id = content_id

    async def generate(self, prompt):
        from processor.queue_manager import AnalysisQueueManager

        db = self.session_factory()
        try:
            queue = AnalysisQueueManager(db)
            job = queue.get_latest(ContentKind.BLOG, self.content_id)
            queue.fail(job.id, "cancelled by operator")
        finally:
            db.close()
        return GOOD_OUTPUT


@pytest.mark.anyio
async def test_rejected_completion_reports_stored_status(make_dispatcher, make_model, session_factory, add_content, db):
    blog_id = add_content(Blog, title="Sabr", content="Patience in hardship. " * 10)
    dispatcher = make_dispatcher(
        FailsJobWhileGenerating(session_factory, blog_id),
        make_model("secondary", GOOD_OUTPUT),
    )

    try:
        handle = await dispatcher.submit(ContentKind.BLOG, blog_id)
        job = await dispatcher.get_status(ContentKind.BLOG, blog_id)
    finally:
        await dispatcher.close()

    assert handle.status == JobStatus.FAILED
    assert job.status == JobStatus.FAILED
    assert job.error_message == "cancelled by operator"
    assert job.result is None
    db.expire_all()
    assert db.get(Blog, blog_id).ai_summary is None


@pytest.mark.anyio
async def test_unknown_priority_rejected(make_dispatcher, unavailable, add_content, db):
    blog_id = add_content(Blog, title="Dhikr", content="Remembrance")
    dispatcher = make_dispatcher(*unavailable, broker=FakeBroker())

    with pytest.raises(InvalidContentError):
        await dispatcher.submit(ContentKind.BLOG, blog_id, priority="urgent")

    assert job_count(db) == 0


@pytest.mark.anyio
async def test_analyze_draft_does_not_persist(make_dispatcher, unavailable, db):
    dispatcher = make_dispatcher(*unavailable)

    try:
        record = await dispatcher.analyze_draft(ContentKind.QUESTION, {"title": "Is it allowed?", "content": ""})
    finally:
        await dispatcher.close()

    assert record.source == SOURCE_LOCAL
    assert SUGGESTIONS["short_body"] in record.corrections
    assert job_count(db) == 0


@pytest.mark.anyio
async def test_analyze_draft_requires_some_content(make_dispatcher, unavailable):
    dispatcher = make_dispatcher(*unavailable)

    with pytest.raises(InvalidContentError):
        await dispatcher.analyze_draft(ContentKind.BLOG, {"title": "", "content": None})


@pytest.mark.anyio
async def test_queue_status(make_dispatcher, unavailable, add_content):
    answer_id = add_content(Answer, content="short")
    dispatcher = make_dispatcher(*unavailable)

    try:
        await dispatcher.submit(ContentKind.ANSWER, answer_id)
        status = await dispatcher.queue_status()
    finally:
        await dispatcher.close()

    assert status["mode"] == MODE_INLINE
    assert status["queue_status"]["answer"]["completed"] == 1
    assert status["queue_status"]["dua"]["pending"] == 0
    assert status["model_queue"]["is_busy"] is False
    assert status["broker_history"] is None


def test_status_reporter_groups_by_kind(session_factory, db):
    from processor.queue_manager import AnalysisQueueManager

    queue = AnalysisQueueManager(db)
    queue.enqueue(ContentKind.DUA, "d1")
    failed = queue.enqueue(ContentKind.DUA, "d2")
    queue.fail(failed, "boom")
    queue.enqueue(ContentKind.BLOG, "b1")

    summary = JobStatusReporter(session_factory).summarize()

    assert summary["dua"] == {"pending": 1, "processing": 0, "completed": 0, "failed": 1}
    assert summary["blog"]["pending"] == 1
    assert summary["question"] == {"pending": 0, "processing": 0, "completed": 0, "failed": 0}
