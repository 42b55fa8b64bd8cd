"""Ephemeral contexts may vanish at any point; a fresh one must pick up the work."""
import pytest

from job_applier.job_store import JobStore
from job_applier.models import JobStatus
from job_applier.protocol import Continue
from job_applier.synchronizer import StateClient

from tests.conftest import cand


class ContextTornDown(BaseException):
    """Stands in for the page context disappearing mid-call."""


def _tear_down_once(op):
    fired = []

    def hook(job):
        if not fired:
            fired.append(job.id)
            raise ContextTornDown(op)

    return hook


def test_teardown_during_extraction_resumes_same_job(harness):
    harness.page.listings = [[cand("A"), cand("B")]]
    harness.page.descriptions = {"A": "x", "B": "y"}
    harness.page.hooks["describe"] = _tear_down_once("describe")

    first = harness.session()
    first.attach()
    with pytest.raises(ContextTornDown):
        first.controller.start()
    first.detach()

    state = harness.state()
    assert state.is_processing is True
    assert state.current_job_id == "A"
    assert harness.job("A").status is JobStatus.PENDING

    second = harness.session()
    assert second.attach() is True
    second.detach()

    assert harness.page.ops("describe") == ["A", "A"]
    assert harness.job("A").status is JobStatus.REVIEWING
    assert harness.job("B").status is JobStatus.PENDING
    assert harness.reviews == ["A"]


def test_durable_context_restart_restores_state_from_disk(harness):
    harness.page.listings = [[cand("A")]]
    harness.page.descriptions = {"A": "x"}
    harness.page.hooks["describe"] = _tear_down_once("describe")

    first = harness.session()
    first.attach()
    with pytest.raises(ContextTornDown):
        first.controller.start()
    first.detach()

    harness.restart_supervisor()
    assert harness.state().current_job_id == "A"
    with harness.session():
        pass
    assert harness.job("A").status is JobStatus.REVIEWING


def test_open_decision_is_surfaced_again(harness):
    harness.page.listings = [[cand("A")]]
    harness.page.descriptions = {"A": "x"}
    with harness.session() as s:
        s.controller.start()

    with harness.session() as s:
        assert harness.reviews == ["A", "A"]
        assert s.controller.review_job.id == "A"
        s.controller.approve()
    assert harness.job("A").status is JobStatus.APPLIED
    assert harness.page.ops("describe") == ["A"]


@pytest.mark.parametrize("went_through,submissions", [(True, 1), (False, 2)])
def test_teardown_during_submission(harness, went_through, submissions):
    harness.page.listings = [[cand("C")]]
    harness.page.descriptions = {"C": "x"}
    harness.page.hooks["submit"] = _tear_down_once("submit")
    if went_through:
        harness.page.already_applied.add("C")

    first = harness.session()
    first.attach()
    first.controller.start()
    with pytest.raises(ContextTornDown):
        first.controller.approve()
    first.detach()
    assert harness.job("C").status is JobStatus.APPLYING

    with harness.session():
        pass

    c = harness.job("C")
    assert c.status is JobStatus.APPLIED
    assert c.submitted_at is not None
    assert harness.page.ops("verify") == ["C"]
    assert len(harness.page.ops("submit")) == submissions
    assert harness.state().is_processing is False


def test_dangling_current_job_resumes_from_next_pending(harness):
    harness.jobs().append_unique([cand("A")])
    harness.page.descriptions = {"A": "x"}
    harness.supervisor.synchronizer.update_state({"is_processing": True, "current_job_id": "gone"})

    with harness.session():
        pass
    assert harness.job("A").status is JobStatus.REVIEWING
    assert harness.state().current_job_id == "A"


def test_paused_pipeline_is_not_resumed(harness):
    harness.jobs().append_unique([cand("A")])
    harness.supervisor.synchronizer.update_state(
        {"is_processing": True, "is_paused": True, "current_job_id": "A"}
    )
    session = harness.session()
    assert session.attach() is False
    session.detach()
    assert harness.page.calls == []


def test_idle_pipeline_is_not_resumed(harness):
    harness.jobs().append_unique([cand("A")])
    session = harness.session()
    assert session.attach() is False
    session.detach()
    assert harness.job("A").status is JobStatus.PENDING


def test_continue_wakes_an_idle_attachment(harness):
    harness.page.descriptions = {"A": "x"}
    with harness.session():
        harness.jobs().append_unique([cand("A")])
        harness.supervisor.synchronizer.update_state({"is_processing": True, "current_job_id": "A"})
        assert harness.job("A").status is JobStatus.REVIEWING
    assert harness.page.ops("describe") == ["A"]


def test_continue_is_ignored_while_running(harness):
    harness.page.listings = [[cand("A")]]
    harness.page.descriptions = {"A": "x"}
    session = harness.session()
    harness.page.hooks["describe"] = lambda job: session.controller.handle(Continue(job=job))
    with session:
        session.controller.start()
    assert harness.page.ops("describe") == ["A"]
    assert harness.job("A").status is JobStatus.REVIEWING


def test_pause_from_another_supervisor_is_observed(harness):
    harness.page.listings = [[cand("A"), cand("B"), cand("C")]]
    harness.page.descriptions = {"B": "y", "C": "z"}
    other = harness.another_supervisor()

    def pause_elsewhere(job):
        if job.id == "A":
            StateClient(other.bus).update(is_paused=True, is_processing=False)

    harness.page.hooks["describe"] = pause_elsewhere
    with harness.session() as s:
        s.controller.start()

    assert harness.page.ops("describe") == ["A"]
    assert harness.job("A").status is JobStatus.SKIPPED
    assert harness.job("B").status is JobStatus.PENDING
    state = harness.another_supervisor().synchronizer.get_state()
    assert state.is_paused is True
    assert state.is_processing is False


def test_star_from_another_supervisor_survives_a_running_session(harness):
    harness.page.listings = [[cand("A"), cand("B")]]
    harness.page.descriptions = {"A": "x"}
    other = harness.another_supervisor()

    def star_elsewhere(job):
        if job.id == "A":
            JobStore(other.storage).toggle_star("B")

    harness.page.hooks["describe"] = star_elsewhere
    with harness.session() as s:
        s.controller.start()

    assert harness.job("A").status is JobStatus.REVIEWING
    assert harness.job("B").starred is True
    assert JobStore(other.storage).find("B").starred is True


def test_second_attachment_does_not_process_the_same_job(harness):
    harness.page.listings = [[cand("A")]]
    harness.page.descriptions = {"A": "x"}
    first, second = harness.session(), harness.session()
    second.attach(resume=False)
    refused = []

    def nudge_second(job):
        refused.append(second.controller.handle(Continue(job=job)))
        refused.append(second.controller.resume())
        refused.append(second.controller.start())

    harness.page.hooks["describe"] = nudge_second
    with first:
        first.controller.start()
    second.detach()

    assert refused == [None, False, 0]
    assert harness.page.ops("describe") == ["A"]
    assert harness.page.ops("discover") == ["backend engineer"]
    assert harness.analyzer.calls == ["A"]
    assert harness.reviews == ["A"]


def test_two_supervisors_share_one_cursor(harness):
    harness.page.listings = [[cand("A"), cand("B")]]
    harness.page.descriptions = {"A": "x", "B": "y"}
    other = harness.another_supervisor()
    elsewhere = harness.session(other)
    refused = []

    def compete(job):
        harness.assert_single_flight()
        refused.append(elsewhere.controller.process_specific("B"))
        refused.append(elsewhere.controller.resume())

    harness.page.hooks["describe"] = compete
    with harness.session() as s:
        s.controller.start()

    assert refused == [False, False]
    assert harness.page.ops("describe") == ["A"]
    assert harness.job("B").status is JobStatus.PENDING

    # the lease is free again once the first session's request returned
    harness.page.hooks.clear()
    with elsewhere:
        assert elsewhere.controller.review_job.id == "A"
        elsewhere.controller.decline()
    assert harness.job("A").status is JobStatus.SKIPPED
    assert harness.job("B").status is JobStatus.REVIEWING
