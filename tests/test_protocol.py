import pytest

from job_applier.errors import ProtocolError
from job_applier.models import ApplicationState, Job
from job_applier.protocol import (
    Ack,
    Claim,
    Continue,
    DescriptionFound,
    GetState,
    ListingsFound,
    Release,
    StateReply,
    SubmitResult,
    UpdateState,
    decode,
    encode,
)

from tests.conftest import cand


def test_messages_cross_the_wire_unchanged():
    messages = [
        GetState(),
        UpdateState(partial={"is_paused": True}),
        UpdateState(partial={"current_job_id": None, "is_processing": False}),
        StateReply(state=ApplicationState(is_processing=True, current_job_id="A")),
        Ack(ack=False),
        Claim(owner="session-1"),
        Release(owner="session-1"),
        Continue(job=Job.from_candidate(cand("A"))),
        ListingsFound(candidates=(cand("A"), cand("B"))),
        DescriptionFound(job_id="A", text="body"),
        DescriptionFound(job_id="A", error="gone"),
        SubmitResult(job_id="A", success=False, error="captcha"),
    ]
    for message in messages:
        assert decode(encode(message)) == message


def test_encoded_form_is_tagged():
    assert encode(GetState()) == {"type": "GET_STATE"}
    assert encode(SubmitResult(job_id="A", success=True)) == {
        "type": "SUBMIT_RESULT",
        "job_id": "A",
        "success": True,
    }


def test_description_ok():
    assert DescriptionFound(job_id="A", text="x").ok
    assert not DescriptionFound(job_id="A", text="").ok
    assert not DescriptionFound(job_id="A", error="boom").ok


@pytest.mark.parametrize(
    "raw",
    [
        "GET_STATE",
        {},
        {"type": "REFRESH"},
        {"type": "UPDATE_STATE"},
        {"type": "UPDATE_STATE", "partial": {"is_running": True}},
        {"type": "UPDATE_STATE", "partial": {"is_processing": "false"}},
        {"type": "UPDATE_STATE", "partial": {"is_paused": 1}},
        {"type": "UPDATE_STATE", "partial": {"current_job_id": 0}},
        {"type": "CLAIM"},
        {"type": "RELEASE", "owner": None},
        {"type": "ACK", "ack": "yes"},
        {"type": "SUBMIT_RESULT", "job_id": "A"},
        {"type": "DESCRIPTION_FOUND", "job_id": 7, "text": "x"},
        {"type": "LISTINGS_FOUND", "candidates": [{"title": "no id"}]},
        {"type": "CONTINUE", "job": {"id": "A"}},
    ],
)
def test_malformed_messages_are_rejected(raw):
    with pytest.raises(ProtocolError):
        decode(raw)
